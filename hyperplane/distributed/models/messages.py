"""
Message contracts carried over the channel.

Subjects:
    drone.heartbeat             DroneHeartbeat
    drone.drain                 DrainDrone
    session.assign              SessionAssign (broadcast to every drone)
    session.status              SessionStatus
    session.drain               SessionDrain
    session.schedule            ScheduleRequest
    session.schedule.<request>  ScheduleResponse
"""

import time
from typing import ClassVar

import msgspec

from .message import Message
from .session import SessionSpec, SessionState


class DroneHeartbeat(Message, kw_only=True):
    subject: ClassVar[str] = "drone.heartbeat"

    drone_id: str
    address: str
    capacity: int
    current_load: int
    timestamp: float = msgspec.field(default_factory=time.time)
    ready: bool = True
    running_sessions: list[str] = msgspec.field(default_factory=list)


class DrainDrone(Message, kw_only=True):
    subject: ClassVar[str] = "drone.drain"

    drone_id: str
    drain: bool = True


class SessionAssign(Message, kw_only=True):
    subject: ClassVar[str] = "session.assign"

    session_id: str
    drone_id: str
    epoch: int
    spec: SessionSpec


class SessionStatus(Message, kw_only=True):
    subject: ClassVar[str] = "session.status"

    session_id: str
    epoch: int
    state: SessionState
    reporter: str
    address: str | None = None
    drone_id: str | None = None
    cause: str | None = None
    timestamp: float = msgspec.field(default_factory=time.time)

    def key(self) -> tuple[str, int, SessionState, str | None]:
        return (self.session_id, self.epoch, self.state, self.address)


class SessionDrain(Message, kw_only=True):
    subject: ClassVar[str] = "session.drain"

    session_id: str
    reason: str
    epoch: int = 0


class SessionActivity(Message, kw_only=True):
    """
    Published by whatever fronts a session (an edge proxy or the
    backend itself) while clients are using it. Keeps the session
    clear of its idle timeout. ``epoch`` 0 applies to any epoch.
    """
    subject: ClassVar[str] = "session.activity"

    session_id: str
    epoch: int = 0
    timestamp: float = msgspec.field(default_factory=time.time)


class ScheduleRequest(Message, kw_only=True):
    subject: ClassVar[str] = "session.schedule"

    request_id: str
    spec: SessionSpec
    session_id: str | None = None

    def reply_subject(self) -> str:
        return f"{self.subject}.{self.request_id}"


class ScheduleResponse(Message, kw_only=True):
    subject: ClassVar[str] = "session.schedule"

    request_id: str
    scheduled: bool
    session_id: str | None = None
    drone_id: str | None = None
    epoch: int = 0
    error: str | None = None

    def subject_for(self) -> str:
        return f"{self.subject}.{self.request_id}"

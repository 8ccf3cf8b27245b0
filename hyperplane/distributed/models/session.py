from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

import msgspec


class SessionState(Enum):
    """Lifecycle of a session as reported over the channel."""
    PENDING = "pending"
    ASSIGNING = "assigning"
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.TERMINATED, SessionState.ERROR)


class ResourceLimits(msgspec.Struct, kw_only=True):
    cpu_millis: int | None = None
    memory_mb: int | None = None


class SessionSpec(msgspec.Struct, kw_only=True):
    """Desired specification of a session workload."""
    image: str
    command: list[str] = msgspec.field(default_factory=list)
    env: dict[str, str] = msgspec.field(default_factory=dict)
    port: int = 8080
    slots: int = 1
    resource_limits: ResourceLimits = msgspec.field(default_factory=ResourceLimits)
    idle_timeout: float | None = None
    metadata: dict[str, str] = msgspec.field(default_factory=dict)


@dataclass(slots=True)
class SessionRecord:
    """
    Controller-side view of a session.

    The epoch is only ever incremented by the placement engine.
    """
    session_id: str
    spec: SessionSpec
    epoch: int = 0
    state: SessionState = SessionState.PENDING
    drone_id: str | None = None
    address: str | None = None
    created_at: float = field(default_factory=time.monotonic)
    updated_at: float = field(default_factory=time.monotonic)
    attempts: int = 0
    last_cause: str | None = None

    @property
    def idle_timeout(self) -> float | None:
        return self.spec.idle_timeout

    def touch(self, now: float | None = None) -> None:
        self.updated_at = now if now is not None else time.monotonic()

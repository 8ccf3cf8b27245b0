from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DroneLiveness(Enum):
    HEALTHY = "healthy"
    SUSPECT = "suspect"
    DEAD = "dead"


@dataclass(slots=True)
class DroneRecord:
    """
    Controller-side membership entry for one drone.

    ``sessions`` maps the session ids the controller has placed on the
    drone to the capacity slots each one holds.
    """
    drone_id: str
    address: str
    capacity: int
    reported_load: int = 0
    last_heartbeat: float = 0.0
    first_seen: float = 0.0
    liveness: DroneLiveness = DroneLiveness.HEALTHY
    ready: bool = True
    dead_since: float | None = None
    sessions: dict[str, int] = field(default_factory=dict)
    reported_sessions: list[str] = field(default_factory=list)

    @property
    def owned_slots(self) -> int:
        return sum(self.sessions.values())

    @property
    def used(self) -> int:
        return max(self.reported_load, self.owned_slots)

    @property
    def available(self) -> int:
        return max(0, self.capacity - self.used)

    @property
    def eligible(self) -> bool:
        return self.liveness == DroneLiveness.HEALTHY and self.ready


@dataclass(slots=True, frozen=True)
class LivenessChange:
    drone_id: str
    previous: DroneLiveness | None
    current: DroneLiveness
    at: float
    forgotten: bool = False

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Iterable

from hyperplane.distributed.errors import CapacityExceededError

from .drone_record import DroneLiveness, DroneRecord, LivenessChange
from .scoring import Scorer, least_loaded


LivenessListener = Callable[[LivenessChange], Awaitable[None]]


class DroneRegistry:
    """
    Membership table for the drones of one cluster.

    Liveness is derived from the age of the last heartbeat as observed
    on the controller clock:

        age <= suspect_after            HEALTHY
        suspect_after < age <= dead_after   SUSPECT
        age > dead_after                DEAD

    Dead drones are forgotten once they have been dead for
    ``forget_after`` seconds. Each drone record is only mutated by the
    heartbeat consumer, the sweep loop and the placement engine, all
    running on the controller's event loop.
    """

    def __init__(
        self,
        suspect_after: float = 5.0,
        dead_after: float = 15.0,
        forget_after: float = 300.0,
        scorer: Scorer = least_loaded,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if dead_after < suspect_after:
            raise ValueError("dead_after must not be shorter than suspect_after")

        self._suspect_after = suspect_after
        self._dead_after = dead_after
        self._forget_after = forget_after
        self._scorer = scorer
        self._clock = clock
        self._drones: dict[str, DroneRecord] = {}
        self._listeners: list[LivenessListener] = []

    @property
    def dead_after(self) -> float:
        return self._dead_after

    def __contains__(self, drone_id: str) -> bool:
        return drone_id in self._drones

    def __len__(self) -> int:
        return len(self._drones)

    def get(self, drone_id: str) -> DroneRecord | None:
        return self._drones.get(drone_id)

    def records(self) -> list[DroneRecord]:
        return sorted(self._drones.values(), key=lambda record: record.drone_id)

    def add_listener(self, listener: LivenessListener) -> None:
        self._listeners.append(listener)

    def observe_heartbeat(
        self,
        drone_id: str,
        capacity: int,
        load: int,
        ts: float | None = None,
        address: str | None = None,
        ready: bool = True,
        running_sessions: Iterable[str] | None = None,
    ) -> LivenessChange | None:
        """
        Upsert a drone from a heartbeat observed at ``ts`` (controller
        clock). Returns the liveness change when a suspect or dead
        drone comes back.
        """
        now = ts if ts is not None else self._clock()
        record = self._drones.get(drone_id)

        if record is None:
            record = DroneRecord(
                drone_id=drone_id,
                address=address or drone_id,
                capacity=capacity,
                first_seen=now,
            )
            self._drones[drone_id] = record

        # Out of order heartbeats never move liveness backwards.
        if now < record.last_heartbeat:
            return None

        record.capacity = capacity
        record.reported_load = load
        record.last_heartbeat = now
        record.ready = ready

        if address:
            record.address = address

        if running_sessions is not None:
            record.reported_sessions = list(running_sessions)

        previous = record.liveness
        record.liveness = DroneLiveness.HEALTHY
        record.dead_since = None

        if previous != DroneLiveness.HEALTHY:
            return LivenessChange(
                drone_id=drone_id,
                previous=previous,
                current=DroneLiveness.HEALTHY,
                at=now,
            )

        return None

    def sweep(self, now: float | None = None) -> list[LivenessChange]:
        now = now if now is not None else self._clock()
        changes: list[LivenessChange] = []

        for drone_id in sorted(self._drones):
            record = self._drones[drone_id]
            age = now - record.last_heartbeat

            if age > self._dead_after:
                liveness = DroneLiveness.DEAD
            elif age > self._suspect_after:
                liveness = DroneLiveness.SUSPECT
            else:
                liveness = DroneLiveness.HEALTHY

            if liveness != record.liveness:
                changes.append(
                    LivenessChange(
                        drone_id=drone_id,
                        previous=record.liveness,
                        current=liveness,
                        at=now,
                    )
                )
                record.liveness = liveness
                record.dead_since = now if liveness == DroneLiveness.DEAD else None

            if (
                record.liveness == DroneLiveness.DEAD
                and record.dead_since is not None
                and now - record.dead_since > self._forget_after
                and not record.sessions
            ):
                del self._drones[drone_id]
                changes.append(
                    LivenessChange(
                        drone_id=drone_id,
                        previous=DroneLiveness.DEAD,
                        current=DroneLiveness.DEAD,
                        at=now,
                        forgotten=True,
                    )
                )

        return changes

    async def notify(self, changes: Iterable[LivenessChange]) -> None:
        for change in changes:
            if self._listeners:
                await asyncio.gather(
                    *[listener(change) for listener in self._listeners]
                )

    def candidates(
        self,
        requirement: int = 1,
        exclude: Iterable[str] = (),
    ) -> list[DroneRecord]:
        excluded = set(exclude)
        eligible = [
            record
            for record in self._drones.values()
            if record.eligible
            and record.drone_id not in excluded
            and record.available >= requirement
        ]

        return sorted(
            eligible,
            key=lambda record: (self._scorer(record), record.drone_id),
        )

    def reserve(self, drone_id: str, session_id: str, slots: int = 1) -> None:
        record = self._drones.get(drone_id)
        if record is None:
            raise CapacityExceededError(slots, session_id)

        if session_id in record.sessions:
            return

        if record.capacity - record.owned_slots < slots:
            raise CapacityExceededError(slots, session_id)

        record.sessions[session_id] = slots

    def release(self, drone_id: str, session_id: str) -> bool:
        record = self._drones.get(drone_id)
        if record is None:
            return False

        return record.sessions.pop(session_id, None) is not None

    def sessions_of(self, drone_id: str) -> list[str]:
        record = self._drones.get(drone_id)
        if record is None:
            return []

        return sorted(record.sessions)

    def set_draining(self, drone_id: str, draining: bool) -> bool:
        record = self._drones.get(drone_id)
        if record is None:
            return False

        record.ready = not draining
        return True

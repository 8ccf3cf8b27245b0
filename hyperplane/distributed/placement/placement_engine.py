from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from hyperplane.distributed.channel import TypedChannel
from hyperplane.distributed.directory import SessionDirectory
from hyperplane.distributed.errors import (
    AssignmentTimeoutError,
    CapacityExceededError,
    HyperplaneError,
    TransportUnavailableError,
)
from hyperplane.distributed.models import (
    SessionAssign,
    SessionDrain,
    SessionRecord,
    SessionSpec,
    SessionState,
    SessionStatus,
)
from hyperplane.distributed.registry import (
    DroneLiveness,
    DroneRegistry,
    LivenessChange,
)
from hyperplane.logging import Logger
from hyperplane.logging.hyperplane_logging_models import (
    SessionDebug,
    SessionError,
    SessionInfo,
    SessionWarning,
)


@dataclass(slots=True)
class PendingAcceptance:
    """Acceptance wait for one (session, epoch, drone) assignment."""
    session_id: str
    epoch: int
    drone_id: str
    accepted: asyncio.Future[bool]


@dataclass(slots=True)
class PlacementRun:
    task: asyncio.Task
    excluded: set[str] = field(default_factory=set)
    pending: PendingAcceptance | None = None


class PlacementEngine:
    """
    Chooses drones for sessions and issues fenced assignments.

    Every (re)assignment increments the session epoch, publishes an
    ASSIGNING fence status for that epoch and then broadcasts the
    assignment. The engine waits for the target drone to report the new
    epoch (ASSIGNING or RUNNING) for ``accept_timeout`` seconds and
    retries up to ``max_attempts`` times, preferring drones it has not
    tried yet. When attempts are exhausted the session is marked ERROR
    and an ERROR status carrying the cause is published.

    Reassignment never waits for the previous holder. The higher epoch
    is what stops it.
    """

    def __init__(
        self,
        controller_id: str,
        registry: DroneRegistry,
        directory: SessionDirectory,
        channel: TypedChannel,
        accept_timeout: float = 10.0,
        max_attempts: int = 3,
        terminated_retention: float = 60.0,
        logger: Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._controller_id = controller_id
        self._registry = registry
        self._directory = directory
        self._channel = channel
        self._accept_timeout = accept_timeout
        self._max_attempts = max(1, max_attempts)
        self._terminated_retention = terminated_retention
        self._logger = logger or Logger()
        self._clock = clock
        self._id_factory = id_factory

        self._sessions: dict[str, SessionRecord] = {}
        self._runs: dict[str, PlacementRun] = {}

    @property
    def controller_id(self) -> str:
        return self._controller_id

    def get(self, session_id: str) -> SessionRecord | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[SessionRecord]:
        return list(self._sessions.values())

    async def place(self, spec: SessionSpec, session_id: str | None = None) -> str:
        """
        Create a session and assign it to the best eligible drone.
        Returns once the drone has accepted the assignment.

        Raises:
            CapacityExceededError: no eligible drone has room.
            AssignmentTimeoutError: no drone accepted within the attempt limit.
            TransportUnavailableError: the assignment could not be published.
        """
        session_id = (session_id or self._id_factory()).lower()
        record = self._sessions.get(session_id)

        if record is not None:
            run = self._runs.get(session_id)
            if run is not None:
                await asyncio.shield(run.task)
                return session_id

            if record.state != SessionState.ERROR:
                # Duplicate request for a live or recently terminated session.
                return session_id

        else:
            if not self._registry.candidates(spec.slots):
                raise CapacityExceededError(spec.slots, session_id)

            record = SessionRecord(
                session_id=session_id,
                spec=spec,
                created_at=self._clock(),
                updated_at=self._clock(),
            )
            self._sessions[session_id] = record

        run = self._start_run(record, excluded=set(), reason="placement")
        await asyncio.shield(run.task)
        return session_id

    async def reassign(
        self,
        session_id: str,
        from_drone: str | None = None,
        expected_epoch: int | None = None,
        reason: str = "reassignment",
    ) -> bool:
        """
        Move a session to another drone with a new epoch. Returns False
        when the request no longer applies (unknown or terminated
        session, epoch moved on, or the session left ``from_drone``).
        The acceptance wait runs in the background.
        """
        record = self._sessions.get(session_id)
        if record is None or record.state == SessionState.TERMINATED:
            return False

        if expected_epoch is not None and record.epoch != expected_epoch:
            return False

        if from_drone is not None and record.drone_id != from_drone:
            return False

        excluded = {from_drone} if from_drone else set()

        run = self._runs.get(session_id)
        if run is not None:
            run.excluded.update(excluded)
            if run.pending is not None and not run.pending.accepted.done():
                run.pending.accepted.set_result(False)

            return True

        await self._logger.log(
            SessionInfo(
                message=f"Reassigning session away from {record.drone_id}: {reason}",
                node_id=self._controller_id,
                session_id=session_id,
                epoch=record.epoch,
            )
        )

        self._start_run(record, excluded=excluded, reason=reason)
        return True

    async def drain(self, session_id: str, reason: str = "drain requested") -> bool:
        record = self._sessions.get(session_id)
        if record is None or record.state.is_terminal or record.drone_id is None:
            return False

        record.state = SessionState.DRAINING
        record.touch(self._clock())

        await self._channel.publish(
            SessionDrain(
                session_id=session_id,
                reason=reason,
                epoch=record.epoch,
            )
        )
        return True

    async def observe_status(self, status: SessionStatus) -> bool:
        """
        Apply a drone's status report to the controller session record.
        Returns True when the record changed.
        """
        if status.reporter == self._controller_id:
            return False

        record = self._sessions.get(status.session_id)
        if record is None:
            return False

        if status.epoch != record.epoch or status.reporter != record.drone_id:
            await self._logger.log(
                SessionDebug(
                    message=f"Ignoring stale {status.state.value} from {status.reporter} (current epoch {record.epoch})",
                    node_id=self._controller_id,
                    session_id=status.session_id,
                    epoch=status.epoch,
                )
            )
            return False

        run = self._runs.get(status.session_id)
        pending = run.pending if run is not None else None
        awaiting = (
            pending is not None
            and pending.epoch == status.epoch
            and pending.drone_id == status.reporter
            and not pending.accepted.done()
        )

        if awaiting:
            if status.state in (SessionState.ASSIGNING, SessionState.RUNNING):
                pending.accepted.set_result(True)

            elif status.state == SessionState.ERROR:
                record.last_cause = status.cause
                pending.accepted.set_result(False)
                return True

        if record.state == status.state and record.address == status.address:
            return False

        record.state = status.state
        record.address = status.address if status.state == SessionState.RUNNING else None
        record.touch(self._clock())

        if status.state.is_terminal:
            record.last_cause = status.cause or record.last_cause
            self._registry.release(status.reporter, status.session_id)

        return True

    async def handle_liveness(self, change: LivenessChange) -> None:
        if change.current != DroneLiveness.DEAD or change.forgotten:
            return

        for session_id in self._registry.sessions_of(change.drone_id):
            await self.reassign(
                session_id,
                from_drone=change.drone_id,
                reason=f"drone {change.drone_id} is dead",
            )

    def purge(self, now: float | None = None) -> list[str]:
        now = now if now is not None else self._clock()
        purged: list[str] = []

        for session_id, record in list(self._sessions.items()):
            if (
                record.state.is_terminal
                and session_id not in self._runs
                and now - record.updated_at > self._terminated_retention
            ):
                del self._sessions[session_id]
                purged.append(session_id)

        return purged

    async def close(self) -> None:
        runs = list(self._runs.values())
        for run in runs:
            run.task.cancel()

        await asyncio.gather(*[run.task for run in runs], return_exceptions=True)

    def _start_run(
        self,
        record: SessionRecord,
        excluded: set[str],
        reason: str,
    ) -> PlacementRun:
        task = asyncio.create_task(self._assign_until_accepted(record, reason))
        run = PlacementRun(task=task, excluded=set(excluded))
        self._runs[record.session_id] = run

        task.add_done_callback(lambda _: self._finish_run(record.session_id, run))
        task.add_done_callback(self._consume_result)

        return run

    def _finish_run(self, session_id: str, run: PlacementRun) -> None:
        if self._runs.get(session_id) is run:
            del self._runs[session_id]

    def _consume_result(self, task: asyncio.Task) -> None:
        # Failures are recorded on the session and logged, background
        # reassignments have no caller to raise to.
        if not task.cancelled():
            task.exception()

    def _select(self, record: SessionRecord, run: PlacementRun, tried: set[str]) -> str | None:
        candidates = self._registry.candidates(
            record.spec.slots,
            exclude=run.excluded,
        )

        # Keep counting the slots already held by this session.
        if record.drone_id is not None and record.drone_id not in run.excluded:
            current = self._registry.get(record.drone_id)
            if (
                current is not None
                and current.eligible
                and record.session_id in current.sessions
                and all(candidate.drone_id != current.drone_id for candidate in candidates)
            ):
                candidates.append(current)

        untried = [candidate for candidate in candidates if candidate.drone_id not in tried]
        if untried:
            return untried[0].drone_id

        if candidates:
            return candidates[0].drone_id

        return None

    async def _assign_until_accepted(self, record: SessionRecord, reason: str) -> None:
        run = self._runs[record.session_id]
        tried: set[str] = set()
        session_id = record.session_id

        try:
            for attempt in range(self._max_attempts):
                drone_id = self._select(record, run, tried)
                if drone_id is None:
                    raise CapacityExceededError(record.spec.slots, session_id)

                tried.add(drone_id)
                if await self._assign(record, run, drone_id, attempt):
                    return

            raise AssignmentTimeoutError(session_id, record.epoch, self._max_attempts)

        except (CapacityExceededError, AssignmentTimeoutError, TransportUnavailableError) as err:
            await self._fail(record, err)
            raise

    async def _assign(
        self,
        record: SessionRecord,
        run: PlacementRun,
        drone_id: str,
        attempt: int,
    ) -> bool:
        session_id = record.session_id

        if record.drone_id is not None and record.drone_id != drone_id:
            self._registry.release(record.drone_id, session_id)

        self._registry.reserve(drone_id, session_id, record.spec.slots)

        record.epoch += 1
        record.drone_id = drone_id
        record.state = SessionState.ASSIGNING
        record.address = None
        record.attempts += 1
        record.touch(self._clock())

        pending = PendingAcceptance(
            session_id=session_id,
            epoch=record.epoch,
            drone_id=drone_id,
            accepted=asyncio.get_running_loop().create_future(),
        )
        run.pending = pending

        fence = SessionStatus(
            session_id=session_id,
            epoch=record.epoch,
            state=SessionState.ASSIGNING,
            reporter=self._controller_id,
            drone_id=drone_id,
        )
        self._directory.apply(fence)

        await self._logger.log(
            SessionInfo(
                message=f"Assigning to drone {drone_id} (attempt {attempt + 1} of {self._max_attempts})",
                node_id=self._controller_id,
                session_id=session_id,
                epoch=record.epoch,
            )
        )

        await self._channel.publish(fence)
        await self._channel.publish(
            SessionAssign(
                session_id=session_id,
                drone_id=drone_id,
                epoch=record.epoch,
                spec=record.spec,
            )
        )

        try:
            accepted = await asyncio.wait_for(
                asyncio.shield(pending.accepted),
                timeout=self._accept_timeout,
            )

        except asyncio.TimeoutError:
            accepted = False
            record.last_cause = f"drone {drone_id} did not accept within {self._accept_timeout}s"

        finally:
            run.pending = None

        if not accepted:
            await self._logger.log(
                SessionWarning(
                    message=f"Drone {drone_id} did not accept: {record.last_cause or 'superseded'}",
                    node_id=self._controller_id,
                    session_id=session_id,
                    epoch=record.epoch,
                )
            )

        return accepted

    async def _fail(self, record: SessionRecord, err: HyperplaneError) -> None:
        cause = str(err)
        record.state = SessionState.ERROR
        record.address = None
        record.last_cause = cause
        record.touch(self._clock())

        if record.drone_id is not None:
            self._registry.release(record.drone_id, record.session_id)

        await self._logger.log(
            SessionError(
                message="Placement failed",
                node_id=self._controller_id,
                session_id=record.session_id,
                epoch=record.epoch,
                cause=cause,
            )
        )

        status = SessionStatus(
            session_id=record.session_id,
            epoch=record.epoch,
            state=SessionState.ERROR,
            reporter=self._controller_id,
            drone_id=record.drone_id,
            cause=cause,
        )
        self._directory.apply(status)

        try:
            await self._channel.publish(status)

        except TransportUnavailableError as publish_err:
            await self._logger.log(
                SessionError(
                    message="Could not publish placement failure",
                    node_id=self._controller_id,
                    session_id=record.session_id,
                    epoch=record.epoch,
                    cause=str(publish_err),
                )
            )

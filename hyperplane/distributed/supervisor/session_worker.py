from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from hyperplane.distributed.errors import (
    EpochStaleError,
    InvalidTransitionError,
    PersistenceFailureError,
    RuntimeFaultError,
    TransportUnavailableError,
)
from hyperplane.distributed.ledger import AssignRecord, PurgeRecord
from hyperplane.distributed.models import SessionState, SessionStatus
from hyperplane.distributed.runtime import WorkloadHandle, WorkloadState
from hyperplane.logging.hyperplane_logging_models import (
    SessionDebug,
    SessionError,
    SessionInfo,
    SessionWarning,
)

from .recovery import state_record
from .states import (
    Assign,
    Assigning,
    Drain,
    Draining,
    Errored,
    Faulted,
    Running,
    Stable,
    Started,
    Superseded,
    SupervisorState,
    Terminated,
    TornDown,
    advance,
    handle_of,
    phase_of,
    reported_state,
)

if TYPE_CHECKING:
    from .session_supervisor import SessionSupervisor


@dataclass(slots=True)
class Reconcile:
    """
    Reconciliation tick. ``live`` holds the runtime's workloads for the
    session when the tick comes from a full runtime listing.
    """
    live: tuple[WorkloadHandle, ...] | None = None
    done: asyncio.Future | None = field(default=None, compare=False)


_SHUTDOWN = object()


class SessionWorker:
    """
    Single writer for one session's supervisor state.

    Assignments, drains, supersessions and reconciliation ticks are
    queued and handled one at a time. When the queue stays empty for
    the reconcile interval (or until a scheduled restart) the worker
    runs a reconciliation tick on its own.
    """

    def __init__(
        self,
        supervisor: SessionSupervisor,
        state: SupervisorState,
    ) -> None:
        self.session_id = state.session_id
        self.state = state
        self._supervisor = supervisor
        self._config = supervisor.config
        self._clock = supervisor.clock
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._retry_at: float | None = self._clock() if isinstance(state, Assigning) else None
        self._terminated_at: float | None = None
        self._unpublished = False
        self._running_since = self._clock()
        self.last_activity = self._clock()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    @property
    def started(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def submit(self, command: object) -> None:
        self._queue.put_nowait(command)

    def stop(self) -> None:
        self._queue.put_nowait(_SHUTDOWN)

    def record_activity(self) -> None:
        self.last_activity = self._clock()

    def _next_timeout(self) -> float:
        timeout = self._config.reconcile_interval
        if self._retry_at is not None:
            timeout = min(timeout, max(0.0, self._retry_at - self._clock()))

        return timeout

    async def _run(self) -> None:
        while True:
            try:
                command = await asyncio.wait_for(
                    self._queue.get(),
                    timeout=self._next_timeout(),
                )

            except asyncio.TimeoutError:
                command = Reconcile()

            if command is _SHUTDOWN:
                return

            try:
                purged = await self._handle(command)

            except PersistenceFailureError as err:
                await self._supervisor.fail(err)
                return

            finally:
                if isinstance(command, Reconcile) and command.done is not None and not command.done.done():
                    command.done.set_result(None)

            if purged:
                return

    async def _handle(self, command: object) -> bool:
        try:
            match command:
                case Assign():
                    await self._on_assign(command)

                case Drain():
                    await self._on_drain(command)

                case Superseded():
                    await self._on_superseded(command)

                case Reconcile():
                    return await self._on_reconcile(command.live)

        except RuntimeFaultError as err:
            await self._log_error("Runtime operation failed", err.cause)

        except InvalidTransitionError as err:
            await self._log_error("Rejected transition", str(err))

        return False

    async def _on_assign(self, event: Assign) -> None:
        try:
            next_state = advance(self.state, event)

        except EpochStaleError as err:
            if event.epoch == self.state.epoch and isinstance(self.state, (Assigning, Running)):
                # Redelivered assignment for the epoch we hold.
                await self._publish()
                return

            await self._log_debug(f"Rejected assignment: {err}")
            return

        previous = self.state
        await self._supervisor.durable_log.append(
            AssignRecord(
                session_id=self.session_id,
                epoch=event.epoch,
                drone_id=self._supervisor.drone_id,
                spec=event.spec,
            )
        )

        self.state = next_state
        self._retry_at = None
        self._terminated_at = None

        await self._log_info(f"Accepted assignment (previous phase {phase_of(previous)})")
        await self._publish()

        previous_handle = handle_of(previous)
        if previous_handle is not None:
            await self._teardown(previous_handle)

        await self._start_workload()

    async def _start_workload(self) -> None:
        state = self.state
        if not isinstance(state, Assigning):
            return

        created: list[WorkloadHandle] = []

        try:
            handle = await asyncio.wait_for(
                self._create_until_ready(state, created),
                timeout=self._config.start_timeout,
            )

        except RuntimeFaultError as err:
            await self._abandon(created)
            await self._fault(err.cause)
            return

        except asyncio.TimeoutError:
            await self._abandon(created)
            await self._fault(f"workload not ready within {self._config.start_timeout}s")
            return

        await self._started(handle)

    async def _create_until_ready(
        self,
        state: Assigning,
        created: list[WorkloadHandle],
    ) -> WorkloadHandle:
        """
        Create the workload and wait until it accepts connections. The
        caller bounds both steps with ``start_timeout``.
        """
        runtime = self._supervisor.runtime

        handle = await runtime.create(self.session_id, state.epoch, state.spec)
        created.append(handle)

        while not await runtime.ready(handle):
            status = await runtime.inspect(handle)
            if not status.running:
                raise RuntimeFaultError(
                    self.session_id,
                    f"workload {status.state.value} before accepting connections",
                )

            await asyncio.sleep(self._config.readiness_interval)

        return handle

    async def _abandon(self, created: list[WorkloadHandle]) -> None:
        for handle in created:
            await self._teardown(handle)

    async def _started(self, handle: WorkloadHandle) -> None:
        self.state = advance(self.state, Started(handle))
        self._retry_at = None
        self._running_since = self._clock()
        self.last_activity = self._clock()
        await self._persist()

        await self._log_info(f"Workload {handle.workload_id} running at {handle.address}")
        await self._publish()

    async def _fault(self, cause: str) -> None:
        attempt = self.state.attempt
        retry = self._config.restart_policy.should_restart(attempt)
        failed_handle = handle_of(self.state)

        self.state = advance(self.state, Faulted(cause=cause, retry=retry))
        await self._persist(cause)

        if failed_handle is not None:
            await self._teardown(failed_handle)

        if retry:
            delay = self._config.restart_policy.delay(attempt)
            self._retry_at = self._clock() + delay
            await self._log_warning(
                f"Workload fault ({cause}), restart {attempt + 1} of "
                f"{self._config.restart_policy.max_restarts} in {delay:.2f}s"
            )
            return

        self._retry_at = None
        await self._log_error("Workload failed, restart limit reached", cause)
        await self._publish()

    async def _on_drain(self, event: Drain) -> None:
        try:
            next_state = advance(self.state, event)

        except EpochStaleError as err:
            await self._log_debug(f"Ignored drain: {err}")
            return

        except InvalidTransitionError:
            if isinstance(self.state, Terminated):
                await self._publish()

            return

        if next_state is self.state:
            return

        self.state = next_state
        self._retry_at = None
        await self._persist()

        await self._log_info(f"Draining: {event.reason}")
        await self._publish()
        await self._finish_drain()

    async def _finish_drain(self) -> None:
        handle = handle_of(self.state)
        if handle is not None:
            await self._teardown(handle)

        self.state = advance(self.state, TornDown())
        self._terminated_at = self._clock()
        await self._persist()
        await self._publish()

    async def _on_superseded(self, event: Superseded) -> None:
        try:
            next_state = advance(self.state, event)

        except EpochStaleError:
            return

        previous_handle = handle_of(self.state)

        self.state = next_state
        self._retry_at = None
        self._terminated_at = self._clock()
        await self._persist()

        if previous_handle is not None:
            await self._teardown(previous_handle)

        await self._log_info(f"Superseded by epoch {event.epoch}, workload torn down")

    async def _on_reconcile(self, live: tuple[WorkloadHandle, ...] | None) -> bool:
        if live is not None:
            await self._reconcile_live(live)

        state = self.state
        now = self._clock()

        if isinstance(state, Running):
            status = await self._supervisor.runtime.inspect(state.handle)

            if status.state == WorkloadState.RUNNING:
                policy = self._config.restart_policy
                if state.attempt > 0 and policy.is_stable(now - self._running_since):
                    self.state = advance(state, Stable())
                    await self._persist()
                    await self._log_info(f"Workload stable, restart count reset after {state.attempt}")

                idle_timeout = state.spec.idle_timeout
                if idle_timeout is not None and now - self.last_activity > idle_timeout:
                    await self._on_drain(Drain(reason="idle timeout", epoch=state.epoch))
                    return False

            elif status.state == WorkloadState.EXITED and status.exit_code == 0:
                await self._on_drain(Drain(reason="workload exited", epoch=state.epoch))
                return False

            elif status.state == WorkloadState.EXITED:
                await self._fault(f"workload exited with code {status.exit_code}")
                return False

            else:
                await self._fault("workload is missing from the runtime")
                return False

        elif isinstance(state, Assigning):
            if self._retry_at is None or now >= self._retry_at:
                await self._start_workload()
                return False

        elif isinstance(state, Draining):
            await self._finish_drain()
            return False

        elif isinstance(state, Terminated):
            if self._terminated_at is None:
                self._terminated_at = now

            elif now - self._terminated_at > self._config.terminated_retention:
                await self._supervisor.durable_log.append(
                    PurgeRecord(session_id=self.session_id, epoch=state.epoch)
                )
                self._supervisor.purged(self)
                return True

        if self._unpublished:
            await self._publish()

        return False

    async def _reconcile_live(self, live: tuple[WorkloadHandle, ...]) -> None:
        current = handle_of(self.state)

        for handle in live:
            if current is not None and handle.workload_id == current.workload_id:
                continue

            if (
                current is None
                and isinstance(self.state, Assigning)
                and handle.epoch == self.state.epoch
            ):
                await self._started(handle)
                current = handle
                continue

            await self._log_warning(
                f"Removing workload {handle.workload_id} for epoch {handle.epoch}"
            )
            await self._teardown(handle)

    async def _teardown(self, handle: WorkloadHandle) -> None:
        runtime = self._supervisor.runtime
        await runtime.stop(handle, grace=self._config.drain_grace_period)
        await runtime.remove(handle)

    async def _persist(self, cause: str | None = None) -> None:
        await self._supervisor.durable_log.append(state_record(self.state, cause))

    async def _publish(self) -> None:
        state = self.state
        cause = state.cause if isinstance(state, Errored) else None

        status = SessionStatus(
            session_id=self.session_id,
            epoch=state.epoch,
            state=reported_state(state),
            reporter=self._supervisor.drone_id,
            drone_id=self._supervisor.drone_id,
            address=self._supervisor.advertise_address if isinstance(state, Running) else None,
            cause=cause,
        )

        if status.state == SessionState.PENDING:
            return

        try:
            await self._supervisor.channel.publish(status)
            self._unpublished = False

        except TransportUnavailableError as err:
            self._unpublished = True
            await self._log_warning(f"Status publish failed, will retry: {err}")

    async def _log_debug(self, message: str) -> None:
        await self._supervisor.logger.log(
            SessionDebug(
                message=message,
                node_id=self._supervisor.drone_id,
                session_id=self.session_id,
                epoch=self.state.epoch,
            )
        )

    async def _log_info(self, message: str) -> None:
        await self._supervisor.logger.log(
            SessionInfo(
                message=message,
                node_id=self._supervisor.drone_id,
                session_id=self.session_id,
                epoch=self.state.epoch,
            )
        )

    async def _log_warning(self, message: str) -> None:
        await self._supervisor.logger.log(
            SessionWarning(
                message=message,
                node_id=self._supervisor.drone_id,
                session_id=self.session_id,
                epoch=self.state.epoch,
            )
        )

    async def _log_error(self, message: str, cause: str) -> None:
        await self._supervisor.logger.log(
            SessionError(
                message=message,
                node_id=self._supervisor.drone_id,
                session_id=self.session_id,
                epoch=self.state.epoch,
                cause=cause,
            )
        )

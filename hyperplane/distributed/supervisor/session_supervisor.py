from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable

from hyperplane.distributed.channel import TypedChannel
from hyperplane.distributed.errors import PersistenceFailureError, RuntimeFaultError
from hyperplane.distributed.ledger import DurableLog
from hyperplane.distributed.models import SessionAssign, SessionDrain
from hyperplane.distributed.reliability import EpochCache
from hyperplane.distributed.runtime import RuntimeClient, WorkloadHandle
from hyperplane.logging import Logger
from hyperplane.logging.hyperplane_logging_models import (
    ServerFatal,
    ServerInfo,
    ServerWarning,
    SessionDebug,
)

from .recovery import rebuild, snapshot
from .restart_policy import RestartPolicy
from .session_worker import Reconcile, SessionWorker
from .states import (
    Assign,
    Assigning,
    Drain,
    Draining,
    Idle,
    Running,
    Superseded,
    SupervisorState,
)


@dataclass(slots=True)
class SupervisorConfig:
    restart_policy: RestartPolicy = field(default_factory=RestartPolicy)
    start_timeout: float = 30.0
    readiness_interval: float = 0.1
    drain_grace_period: float = 10.0
    reconcile_interval: float = 2.0
    terminated_retention: float = 60.0
    foreign_epoch_limit: int = 10_000


class SessionSupervisor:
    """
    Drone-side owner of every session assigned to this drone.

    Each session has one ``SessionWorker`` task that is the only writer
    of its state. The supervisor routes channel messages to workers,
    runs runtime-wide reconciliation and keeps epoch high-water marks
    for purged sessions and for sessions held by other drones.

    A ``PersistenceFailureError`` from any worker sets ``failed``; the
    drone process is expected to stop.
    """

    def __init__(
        self,
        drone_id: str,
        advertise_address: str,
        runtime: RuntimeClient,
        durable_log: DurableLog,
        channel: TypedChannel,
        config: SupervisorConfig | None = None,
        logger: Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.drone_id = drone_id
        self.advertise_address = advertise_address
        self.runtime = runtime
        self.durable_log = durable_log
        self.channel = channel
        self.config = config or SupervisorConfig()
        self.logger = logger or Logger()
        self.clock = clock

        self._workers: dict[str, SessionWorker] = {}
        self._purged: dict[str, int] = {}
        self._foreign = EpochCache(self.config.foreign_epoch_limit)
        self._accepting = True

        self.failed = asyncio.Event()
        self.failure: PersistenceFailureError | None = None

    def state_of(self, session_id: str) -> SupervisorState | None:
        worker = self._workers.get(session_id)
        return worker.state if worker is not None else None

    def epoch_of(self, session_id: str) -> int:
        worker = self._workers.get(session_id)
        if worker is not None:
            return worker.state.epoch

        return self._purged.get(session_id, 0)

    def sessions(self) -> dict[str, SupervisorState]:
        return {session_id: worker.state for session_id, worker in self._workers.items()}

    def running_sessions(self) -> list[str]:
        return sorted(
            session_id
            for session_id, worker in self._workers.items()
            if isinstance(worker.state, Running)
        )

    def load(self) -> int:
        return sum(
            worker.state.spec.slots
            for worker in self._workers.values()
            if isinstance(worker.state, (Assigning, Running, Draining))
        )

    def record_activity(self, session_id: str, epoch: int = 0) -> bool:
        """
        Push back the idle timeout of a live session. Activity for
        another epoch than the one held here is ignored.
        """
        worker = self._workers.get(session_id)
        if worker is None or (epoch and epoch != worker.state.epoch):
            return False

        worker.record_activity()
        return True

    async def recover(self) -> int:
        """
        Rebuild desired state from the durable log and compact it.
        Workers are started by the following ``reconcile`` so they see
        the runtime's live workloads before acting.
        """
        records = await self.durable_log.replay()
        recovered = rebuild(records)

        await self.durable_log.compact(
            snapshot(self.drone_id, recovered.states, recovered.purged)
        )

        self._purged = dict(recovered.purged)
        for state in recovered.states.values():
            self._workers[state.session_id] = SessionWorker(self, state)

        await self.logger.log(
            ServerInfo(
                message=f"Recovered {len(recovered.states)} session(s) from {len(records)} record(s)",
                node_id=self.drone_id,
                node_role="drone",
            )
        )

        return len(recovered.states)

    async def reconcile(self, wait: bool = True) -> None:
        """
        Compare every worker's desired (session, epoch) against the
        runtime's live workloads. Workloads no worker claims are
        removed.
        """
        live = await self.runtime.list_workloads()

        by_session: dict[str, list[WorkloadHandle]] = defaultdict(list)
        for handle in live:
            by_session[handle.session_id].append(handle)

        loop = asyncio.get_running_loop()
        pending: list[asyncio.Future] = []

        for session_id, worker in list(self._workers.items()):
            handles = tuple(by_session.pop(session_id, []))
            if worker.task is not None and worker.task.done():
                continue

            done = loop.create_future()
            worker.submit(Reconcile(live=handles, done=done))
            worker.start()
            pending.append(done)

        for session_id, handles in by_session.items():
            for handle in handles:
                await self._remove_orphan(handle)

        if wait and pending:
            await asyncio.gather(*pending)

    async def _remove_orphan(self, handle: WorkloadHandle) -> None:
        await self.logger.log(
            ServerWarning(
                message=f"Removing unclaimed workload {handle.workload_id} (session {handle.session_id}, epoch {handle.epoch})",
                node_id=self.drone_id,
                node_role="drone",
            )
        )

        try:
            await self.runtime.stop(handle, grace=self.config.drain_grace_period)
            await self.runtime.remove(handle)

        except RuntimeFaultError as err:
            await self.logger.log(
                ServerWarning(
                    message=f"Could not remove workload {handle.workload_id}: {err.cause}",
                    node_id=self.drone_id,
                    node_role="drone",
                )
            )

    async def handle_assign(self, assignment: SessionAssign) -> None:
        session_id = assignment.session_id

        if assignment.drone_id != self.drone_id:
            self._foreign.observe(session_id, assignment.epoch)

            worker = self._workers.get(session_id)
            if worker is not None:
                worker.submit(Superseded(epoch=assignment.epoch))

            return

        if not self._accepting:
            return

        foreign_epoch = self._foreign.get(session_id)
        if assignment.epoch <= foreign_epoch:
            await self.logger.log(
                SessionDebug(
                    message=f"Ignoring assignment already superseded by epoch {foreign_epoch}",
                    node_id=self.drone_id,
                    session_id=session_id,
                    epoch=assignment.epoch,
                )
            )
            return

        worker = self._workers.get(session_id)
        if worker is None:
            worker = SessionWorker(
                self,
                Idle(session_id=session_id, epoch=self._purged.get(session_id, 0)),
            )
            self._workers[session_id] = worker

        worker.submit(Assign(epoch=assignment.epoch, spec=assignment.spec))
        worker.start()

    async def handle_drain(self, drain: SessionDrain) -> None:
        worker = self._workers.get(drain.session_id)
        if worker is None:
            await self.logger.log(
                SessionDebug(
                    message=f"Drain for unknown session ignored: {drain.reason}",
                    node_id=self.drone_id,
                    session_id=drain.session_id,
                    epoch=drain.epoch,
                )
            )
            return

        worker.submit(Drain(reason=drain.reason, epoch=drain.epoch))
        worker.start()

    def purged(self, worker: SessionWorker) -> None:
        if self._workers.get(worker.session_id) is worker:
            del self._workers[worker.session_id]
            self._purged[worker.session_id] = worker.state.epoch

    async def fail(self, err: PersistenceFailureError) -> None:
        if self.failure is None:
            self.failure = err

        await self.logger.log(
            ServerFatal(
                message=f"Durable log failure, supervisor halting: {err}",
                node_id=self.drone_id,
                node_role="drone",
            )
        )
        self.failed.set()

    async def compact(self) -> None:
        await self.durable_log.compact(
            snapshot(self.drone_id, self.sessions(), self._purged)
        )

    async def close(self, deadline: float = 30.0) -> None:
        """
        Stop accepting assignments and let each worker finish its
        current unit of work (including in-flight drains) for up to
        ``deadline`` seconds. Workloads are left running.
        """
        self._accepting = False

        workers = list(self._workers.values())
        tasks = [worker.task for worker in workers if worker.task is not None]
        for worker in workers:
            worker.stop()

        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=deadline)
        for task in pending:
            task.cancel()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

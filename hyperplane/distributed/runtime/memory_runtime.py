from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass

from hyperplane.distributed.errors import RuntimeFaultError
from hyperplane.distributed.models import SessionSpec

from .runtime_client import (
    RuntimeClient,
    WorkloadHandle,
    WorkloadState,
    WorkloadStatus,
)


@dataclass(slots=True)
class MemoryWorkload:
    handle: WorkloadHandle
    spec: SessionSpec
    state: WorkloadState = WorkloadState.RUNNING
    exit_code: int | None = None
    stop_grace: float | None = None
    ready: bool = True


class MemoryRuntime(RuntimeClient):
    """
    Simulated runtime for tests and local development.

    Faults are injected with ``fail_starts`` (the next N creates for a
    session raise), ``crash`` (a workload exits with a code) and
    ``vanish`` (a workload disappears without a trace). Workloads of a
    session passed to ``hold_ready`` stay unready until ``mark_ready``.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        base_port: int = 20000,
        start_delay: float = 0.0,
    ) -> None:
        self._host = host
        self._ports = itertools.count(base_port)
        self._ids = itertools.count(1)
        self._start_delay = start_delay
        self._start_failures: dict[str, int] = {}
        self._held: set[str] = set()
        self.workloads: dict[str, MemoryWorkload] = {}
        self.created: list[WorkloadHandle] = []
        self.stopped: list[WorkloadHandle] = []
        self.removed: list[WorkloadHandle] = []

    def fail_starts(self, session_id: str, count: int = 1) -> None:
        self._start_failures[session_id] = self._start_failures.get(session_id, 0) + count

    def hold_ready(self, session_id: str) -> None:
        self._held.add(session_id)

    def mark_ready(self, session_id: str) -> None:
        self._held.discard(session_id)
        for workload in self.workloads.values():
            if workload.handle.session_id == session_id:
                workload.ready = True

    def crash(self, session_id: str, exit_code: int = 1) -> list[WorkloadHandle]:
        crashed: list[WorkloadHandle] = []
        for workload in self.workloads.values():
            if workload.handle.session_id == session_id and workload.state == WorkloadState.RUNNING:
                workload.state = WorkloadState.EXITED
                workload.exit_code = exit_code
                crashed.append(workload.handle)

        return crashed

    def vanish(self, session_id: str) -> None:
        for workload_id, workload in list(self.workloads.items()):
            if workload.handle.session_id == session_id:
                del self.workloads[workload_id]

    def running(self, session_id: str | None = None) -> list[WorkloadHandle]:
        return [
            workload.handle
            for workload in self.workloads.values()
            if workload.state == WorkloadState.RUNNING
            and (session_id is None or workload.handle.session_id == session_id)
        ]

    async def create(self, session_id: str, epoch: int, spec: SessionSpec) -> WorkloadHandle:
        if self._start_delay > 0:
            await asyncio.sleep(self._start_delay)

        remaining = self._start_failures.get(session_id, 0)
        if remaining > 0:
            self._start_failures[session_id] = remaining - 1
            raise RuntimeFaultError(session_id, f"image {spec.image} failed to start")

        handle = WorkloadHandle(
            workload_id=f"{session_id}-{epoch}-{next(self._ids)}",
            session_id=session_id,
            epoch=epoch,
            address=f"{self._host}:{next(self._ports)}",
        )

        self.workloads[handle.workload_id] = MemoryWorkload(
            handle=handle,
            spec=spec,
            ready=session_id not in self._held,
        )
        self.created.append(handle)
        return handle

    async def inspect(self, handle: WorkloadHandle) -> WorkloadStatus:
        workload = self.workloads.get(handle.workload_id)
        if workload is None:
            return WorkloadStatus(state=WorkloadState.MISSING)

        return WorkloadStatus(
            state=workload.state,
            exit_code=workload.exit_code,
            address=workload.handle.address,
        )

    async def ready(self, handle: WorkloadHandle, timeout: float = 1.0) -> bool:
        workload = self.workloads.get(handle.workload_id)
        return (
            workload is not None
            and workload.state == WorkloadState.RUNNING
            and workload.ready
        )

    async def stop(self, handle: WorkloadHandle, grace: float = 10.0) -> None:
        workload = self.workloads.get(handle.workload_id)
        if workload is None:
            return

        if workload.state == WorkloadState.RUNNING:
            workload.state = WorkloadState.EXITED
            workload.exit_code = 0

        workload.stop_grace = grace
        self.stopped.append(handle)

    async def remove(self, handle: WorkloadHandle) -> None:
        if self.workloads.pop(handle.workload_id, None) is not None:
            self.removed.append(handle)

    async def list_workloads(self) -> list[WorkloadHandle]:
        return [workload.handle for workload in self.workloads.values()]

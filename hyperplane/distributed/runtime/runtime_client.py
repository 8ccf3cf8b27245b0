from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from hyperplane.distributed.models import SessionSpec


class WorkloadState(Enum):
    RUNNING = "running"
    EXITED = "exited"
    MISSING = "missing"


@dataclass(slots=True, frozen=True)
class WorkloadHandle:
    """
    Reference to a runtime workload. The session id and epoch are
    stored as labels on the workload itself so a restarted drone can
    rediscover them with ``list_workloads``.
    """
    workload_id: str
    session_id: str
    epoch: int
    address: str | None = None


@dataclass(slots=True, frozen=True)
class WorkloadStatus:
    state: WorkloadState
    exit_code: int | None = None
    address: str | None = None

    @property
    def running(self) -> bool:
        return self.state == WorkloadState.RUNNING


class RuntimeClient(ABC):
    """
    Container/process runtime that materializes session workloads.

    ``create`` raises ``RuntimeFaultError`` when a workload cannot be
    started. ``stop`` and ``remove`` are no-ops for missing workloads.
    """

    @abstractmethod
    async def create(self, session_id: str, epoch: int, spec: SessionSpec) -> WorkloadHandle:
        ...

    @abstractmethod
    async def inspect(self, handle: WorkloadHandle) -> WorkloadStatus:
        ...

    @abstractmethod
    async def stop(self, handle: WorkloadHandle, grace: float = 10.0) -> None:
        """
        Ask the workload to exit, forcing termination once ``grace``
        seconds have passed.
        """
        ...

    @abstractmethod
    async def remove(self, handle: WorkloadHandle) -> None:
        ...

    @abstractmethod
    async def list_workloads(self) -> list[WorkloadHandle]:
        ...

    async def ready(self, handle: WorkloadHandle, timeout: float = 1.0) -> bool:
        """
        True once the workload accepts TCP connections on its published
        address. Handles without an address are taken as ready.
        """
        if handle.address is None:
            return True

        host, _, port = handle.address.rpartition(":")

        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host.strip("[]"), int(port)),
                timeout=timeout,
            )

        except (OSError, asyncio.TimeoutError):
            return False

        writer.close()
        try:
            await writer.wait_closed()

        except OSError:
            # Reset by the backend after the connect, which is enough.
            pass

        return True

    async def close(self) -> None:
        pass

from __future__ import annotations

import asyncio
import functools
import math
from typing import Any, Callable, TypeVar

import docker
from docker.errors import APIError, ImageNotFound, NotFound
from docker.models.containers import Container

from hyperplane.distributed.errors import RuntimeFaultError
from hyperplane.distributed.models import SessionSpec

from .runtime_client import (
    RuntimeClient,
    WorkloadHandle,
    WorkloadState,
    WorkloadStatus,
)


T = TypeVar("T")

LABEL_MANAGED = "dev.hyperplane.managed"
LABEL_SESSION = "dev.hyperplane.session"
LABEL_EPOCH = "dev.hyperplane.epoch"
LABEL_PORT = "dev.hyperplane.port"


class DockerRuntime(RuntimeClient):
    """
    Runs session workloads as Docker containers.

    Each container publishes ``spec.port`` on an ephemeral host port of
    ``bind_host``. The workload address is ``advertise_host:<host port>``.
    SDK calls are blocking and run in the default executor.
    """

    def __init__(
        self,
        client: docker.DockerClient | None = None,
        advertise_host: str = "127.0.0.1",
        bind_host: str = "0.0.0.0",
        network: str | None = None,
        name_prefix: str = "hyperplane",
    ) -> None:
        self._client = client
        self._advertise_host = advertise_host
        self._bind_host = bind_host
        self._network = network
        self._name_prefix = name_prefix

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()

        return self._client

    async def _run(self, call: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(call, *args, **kwargs))

    async def create(self, session_id: str, epoch: int, spec: SessionSpec) -> WorkloadHandle:
        return await self._run(self._create_sync, session_id, epoch, spec)

    def _create_sync(self, session_id: str, epoch: int, spec: SessionSpec) -> WorkloadHandle:
        labels = {
            LABEL_MANAGED: "true",
            LABEL_SESSION: session_id,
            LABEL_EPOCH: str(epoch),
            LABEL_PORT: str(spec.port),
            **{f"dev.hyperplane.meta.{key}": value for key, value in spec.metadata.items()},
        }

        options: dict[str, Any] = {
            "detach": True,
            "name": f"{self._name_prefix}-{session_id}-{epoch}",
            "environment": dict(spec.env),
            "labels": labels,
            "ports": {f"{spec.port}/tcp": (self._bind_host, None)},
        }

        if spec.command:
            options["command"] = list(spec.command)

        if self._network:
            options["network"] = self._network

        if spec.resource_limits.cpu_millis:
            options["nano_cpus"] = spec.resource_limits.cpu_millis * 1_000_000

        if spec.resource_limits.memory_mb:
            options["mem_limit"] = f"{spec.resource_limits.memory_mb}m"

        try:
            container: Container = self.client.containers.run(spec.image, **options)
            container.reload()

        except ImageNotFound as err:
            raise RuntimeFaultError(session_id, f"image {spec.image} not found") from err

        except APIError as err:
            raise RuntimeFaultError(session_id, f"docker error: {err.explanation or err}") from err

        return WorkloadHandle(
            workload_id=container.id,
            session_id=session_id,
            epoch=epoch,
            address=self._address_of(container, spec.port),
        )

    def _address_of(self, container: Container, port: int) -> str | None:
        bindings = (container.attrs.get("NetworkSettings") or {}).get("Ports") or {}
        published = bindings.get(f"{port}/tcp") or []

        for binding in published:
            host_port = binding.get("HostPort")
            if host_port:
                return f"{self._advertise_host}:{host_port}"

        return None

    async def inspect(self, handle: WorkloadHandle) -> WorkloadStatus:
        return await self._run(self._inspect_sync, handle)

    def _inspect_sync(self, handle: WorkloadHandle) -> WorkloadStatus:
        try:
            container: Container = self.client.containers.get(handle.workload_id)

        except NotFound:
            return WorkloadStatus(state=WorkloadState.MISSING)

        state = container.attrs.get("State") or {}
        if container.status in ("running", "created", "restarting"):
            return WorkloadStatus(state=WorkloadState.RUNNING, address=handle.address)

        return WorkloadStatus(
            state=WorkloadState.EXITED,
            exit_code=state.get("ExitCode"),
            address=handle.address,
        )

    async def stop(self, handle: WorkloadHandle, grace: float = 10.0) -> None:
        await self._run(self._stop_sync, handle, grace)

    def _stop_sync(self, handle: WorkloadHandle, grace: float) -> None:
        try:
            container: Container = self.client.containers.get(handle.workload_id)
            # Docker sends SIGKILL once the timeout passes.
            container.stop(timeout=max(0, math.ceil(grace)))

        except NotFound:
            return

        except APIError as err:
            raise RuntimeFaultError(handle.session_id, f"stop failed: {err.explanation or err}") from err

    async def remove(self, handle: WorkloadHandle) -> None:
        await self._run(self._remove_sync, handle)

    def _remove_sync(self, handle: WorkloadHandle) -> None:
        try:
            container: Container = self.client.containers.get(handle.workload_id)
            container.remove(force=True)

        except NotFound:
            return

        except APIError as err:
            raise RuntimeFaultError(handle.session_id, f"remove failed: {err.explanation or err}") from err

    async def list_workloads(self) -> list[WorkloadHandle]:
        return await self._run(self._list_sync)

    def _list_sync(self) -> list[WorkloadHandle]:
        containers: list[Container] = self.client.containers.list(
            all=True,
            filters={"label": f"{LABEL_MANAGED}=true"},
        )

        handles: list[WorkloadHandle] = []
        for container in containers:
            labels = container.labels or {}
            try:
                epoch = int(labels.get(LABEL_EPOCH, ""))
                port = int(labels.get(LABEL_PORT, "0"))

            except ValueError:
                continue

            handles.append(
                WorkloadHandle(
                    workload_id=container.id,
                    session_id=labels.get(LABEL_SESSION, ""),
                    epoch=epoch,
                    address=self._address_of(container, port) if port else None,
                )
            )

        return handles

    async def close(self) -> None:
        if self._client is not None:
            await self._run(self._client.close)
            self._client = None

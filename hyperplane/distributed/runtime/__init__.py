from .docker_runtime import DockerRuntime as DockerRuntime
from .memory_runtime import (
    MemoryRuntime as MemoryRuntime,
    MemoryWorkload as MemoryWorkload,
)
from .runtime_client import (
    RuntimeClient as RuntimeClient,
    WorkloadHandle as WorkloadHandle,
    WorkloadState as WorkloadState,
    WorkloadStatus as WorkloadStatus,
)

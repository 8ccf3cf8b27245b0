"""
Drone configuration for DroneServer.

Loads environment settings for heartbeats, the session supervisor,
certificate renewal and the durable log location.
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import psutil

from hyperplane.distributed.certs import CertificateAuthority, CertificateManager
from hyperplane.distributed.errors import CertificateFailureError, TransportUnavailableError
from hyperplane.distributed.reliability import JitterStrategy, RetryConfig
from hyperplane.distributed.supervisor import RestartPolicy, SupervisorConfig
from hyperplane.logging import Logger

if TYPE_CHECKING:
    from hyperplane.distributed.env import Env


def _get_os_cpus() -> int:
    return psutil.cpu_count(logical=False) or os.cpu_count() or 1


def _default_drone_id() -> str:
    return f"drone-{socket.gethostname()}"


@dataclass(slots=True)
class DroneConfig:
    """
    Configuration for DroneServer.

    ``capacity`` is the number of session slots the drone offers and
    defaults to the physical core count.
    """

    drone_id: str
    address: str = "127.0.0.1"
    cluster_domain: str = "hyperplane.local"
    capacity: int = field(default_factory=_get_os_cpus)

    # Heartbeats and reconciliation
    heartbeat_interval_seconds: float = 1.0
    reconcile_interval_seconds: float = 2.0

    # Session lifecycle
    start_timeout_seconds: float = 30.0
    drain_grace_period_seconds: float = 10.0
    terminated_retention_seconds: float = 60.0
    max_restarts: int = 3
    restart_base_delay_seconds: float = 0.5
    restart_max_delay_seconds: float = 10.0
    restart_stable_after_seconds: float = 60.0

    durable_log_path: Path = field(
        default_factory=lambda: Path(os.getcwd()) / "hyperplane-drone.wal"
    )

    # Certificates
    cert_directory: Path = field(default_factory=lambda: Path(os.getcwd()) / "certs")
    cert_renew_before_seconds: float = 30 * 24 * 3600.0
    cert_check_interval_seconds: float = 3600.0
    cert_retries: int = 5
    cert_domains: list[str] = field(default_factory=list)

    # Channel publishing
    publish_retries: int = 5
    publish_base_delay_seconds: float = 0.1
    publish_max_delay_seconds: float = 5.0

    shutdown_deadline_seconds: float = 30.0

    # Logging, unset values leave the global LoggingConfig alone
    log_level: str | None = None
    log_output: str | None = None
    logs_directory: str | None = None

    @property
    def certified_domains(self) -> list[str]:
        return self.cert_domains or [self.cluster_domain]

    def supervisor_config(self) -> SupervisorConfig:
        return SupervisorConfig(
            restart_policy=RestartPolicy(
                max_restarts=self.max_restarts,
                base_delay=self.restart_base_delay_seconds,
                max_delay=self.restart_max_delay_seconds,
                stable_after=self.restart_stable_after_seconds,
            ),
            start_timeout=self.start_timeout_seconds,
            drain_grace_period=self.drain_grace_period_seconds,
            reconcile_interval=self.reconcile_interval_seconds,
            terminated_retention=self.terminated_retention_seconds,
        )

    def publish_retry(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.publish_retries,
            base_delay=self.publish_base_delay_seconds,
            max_delay=self.publish_max_delay_seconds,
            jitter=JitterStrategy.FULL,
            retryable_exceptions=(TransportUnavailableError,),
        )

    def cert_retry(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.cert_retries,
            base_delay=1.0,
            max_delay=60.0,
            jitter=JitterStrategy.EQUAL,
            retryable_exceptions=(
                CertificateFailureError,
                ConnectionError,
                TimeoutError,
            ),
        )

    def certificate_manager(
        self,
        authority: CertificateAuthority,
        logger: Logger | None = None,
    ) -> CertificateManager:
        return CertificateManager(
            authority,
            self.cert_directory,
            renew_before=self.cert_renew_before_seconds,
            check_interval=self.cert_check_interval_seconds,
            retry=self.cert_retry(),
            node_id=self.drone_id,
            logger=logger,
        )

    @classmethod
    def from_env(
        cls,
        env: Env,
        drone_id: str | None = None,
        address: str | None = None,
    ) -> DroneConfig:
        """
        Create drone configuration from Env object.

        Args:
            env: Env configuration object
            drone_id: Overrides HYPERPLANE_DRONE_ID
            address: Overrides HYPERPLANE_DRONE_ADDRESS

        Returns:
            DroneConfig instance
        """
        capacity = getattr(env, "HYPERPLANE_DRONE_CAPACITY", None)
        if not capacity:
            capacity = _get_os_cpus()

        return cls(
            drone_id=(
                drone_id
                or getattr(env, "HYPERPLANE_DRONE_ID", None)
                or _default_drone_id()
            ),
            address=address or getattr(env, "HYPERPLANE_DRONE_ADDRESS", "127.0.0.1"),
            cluster_domain=getattr(env, "HYPERPLANE_CLUSTER_DOMAIN", "hyperplane.local"),
            capacity=capacity,
            heartbeat_interval_seconds=getattr(env, "HYPERPLANE_HEARTBEAT_INTERVAL", 1.0),
            reconcile_interval_seconds=getattr(env, "HYPERPLANE_RECONCILE_INTERVAL", 2.0),
            start_timeout_seconds=getattr(env, "HYPERPLANE_START_TIMEOUT", 30.0),
            drain_grace_period_seconds=getattr(
                env, "HYPERPLANE_DRAIN_GRACE_PERIOD", 10.0
            ),
            terminated_retention_seconds=getattr(
                env, "HYPERPLANE_TERMINATED_RETENTION", 60.0
            ),
            max_restarts=getattr(env, "HYPERPLANE_MAX_RESTARTS", 3),
            restart_base_delay_seconds=getattr(
                env, "HYPERPLANE_RESTART_BASE_DELAY", 0.5
            ),
            restart_max_delay_seconds=getattr(
                env, "HYPERPLANE_RESTART_MAX_DELAY", 10.0
            ),
            restart_stable_after_seconds=getattr(
                env, "HYPERPLANE_RESTART_STABLE_AFTER", 60.0
            ),
            durable_log_path=Path(
                getattr(env, "HYPERPLANE_DURABLE_LOG_PATH", "hyperplane-drone.wal")
            ),
            cert_directory=Path(getattr(env, "HYPERPLANE_CERT_DIRECTORY", "certs")),
            cert_renew_before_seconds=getattr(
                env, "HYPERPLANE_CERT_RENEW_BEFORE", 30 * 24 * 3600.0
            ),
            cert_check_interval_seconds=getattr(
                env, "HYPERPLANE_CERT_CHECK_INTERVAL", 3600.0
            ),
            cert_retries=getattr(env, "HYPERPLANE_CERT_RETRIES", 5),
            publish_retries=getattr(env, "HYPERPLANE_PUBLISH_RETRIES", 5),
            publish_base_delay_seconds=getattr(
                env, "HYPERPLANE_PUBLISH_BASE_DELAY", 0.1
            ),
            publish_max_delay_seconds=getattr(env, "HYPERPLANE_PUBLISH_MAX_DELAY", 5.0),
            shutdown_deadline_seconds=getattr(
                env, "HYPERPLANE_SHUTDOWN_DEADLINE", 30.0
            ),
            log_level=getattr(env, "HYPERPLANE_LOG_LEVEL", None),
            log_output=getattr(env, "HYPERPLANE_LOG_OUTPUT", None),
            logs_directory=getattr(env, "HYPERPLANE_LOGS_DIRECTORY", None),
        )

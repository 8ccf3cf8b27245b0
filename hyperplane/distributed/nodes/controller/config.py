"""
Controller configuration for ControllerServer.

Liveness thresholds, placement limits, DNS binding and publish retry
settings, loaded from ``Env``.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hyperplane.distributed.reliability import JitterStrategy, RetryConfig
from hyperplane.distributed.errors import TransportUnavailableError

if TYPE_CHECKING:
    from hyperplane.distributed.env import Env


def _default_controller_id() -> str:
    return f"controller-{socket.gethostname()}"


@dataclass(slots=True)
class ControllerConfig:
    """
    Configuration for ControllerServer.
    """

    controller_id: str
    cluster_domain: str = "hyperplane.local"

    # Drone liveness
    suspect_after_seconds: float = 5.0
    dead_after_seconds: float = 15.0
    forget_after_seconds: float = 300.0
    sweep_interval_seconds: float = 1.0

    # Placement
    accept_timeout_seconds: float = 10.0
    placement_attempts: int = 3
    terminated_retention_seconds: float = 60.0

    # Name resolution
    dns_enabled: bool = True
    dns_host: str = "0.0.0.0"
    dns_port: int = 53
    dns_ttl: int = 5
    soa_email: str | None = None

    # Channel publishing
    publish_retries: int = 5
    publish_base_delay_seconds: float = 0.1
    publish_max_delay_seconds: float = 5.0

    shutdown_deadline_seconds: float = 30.0

    # Logging, unset values leave the global LoggingConfig alone
    log_level: str | None = None
    log_output: str | None = None
    logs_directory: str | None = None

    def publish_retry(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.publish_retries,
            base_delay=self.publish_base_delay_seconds,
            max_delay=self.publish_max_delay_seconds,
            jitter=JitterStrategy.FULL,
            retryable_exceptions=(TransportUnavailableError,),
        )

    @classmethod
    def from_env(
        cls,
        env: Env,
        controller_id: str | None = None,
    ) -> ControllerConfig:
        """
        Create controller configuration from Env object.

        Args:
            env: Env configuration object
            controller_id: Reporter id used on fence and error statuses

        Returns:
            ControllerConfig instance
        """
        return cls(
            controller_id=controller_id or _default_controller_id(),
            cluster_domain=getattr(env, "HYPERPLANE_CLUSTER_DOMAIN", "hyperplane.local"),
            suspect_after_seconds=getattr(env, "HYPERPLANE_SUSPECT_AFTER", 5.0),
            dead_after_seconds=getattr(env, "HYPERPLANE_DEAD_AFTER", 15.0),
            forget_after_seconds=getattr(env, "HYPERPLANE_FORGET_AFTER", 300.0),
            sweep_interval_seconds=getattr(env, "HYPERPLANE_SWEEP_INTERVAL", 1.0),
            accept_timeout_seconds=getattr(env, "HYPERPLANE_ACCEPT_TIMEOUT", 10.0),
            placement_attempts=getattr(env, "HYPERPLANE_PLACEMENT_ATTEMPTS", 3),
            terminated_retention_seconds=getattr(
                env, "HYPERPLANE_TERMINATED_RETENTION", 60.0
            ),
            dns_enabled=getattr(env, "HYPERPLANE_DNS_ENABLED", True),
            dns_host=getattr(env, "HYPERPLANE_DNS_HOST", "0.0.0.0"),
            dns_port=getattr(env, "HYPERPLANE_DNS_PORT", 53),
            dns_ttl=getattr(env, "HYPERPLANE_DNS_TTL", 5),
            soa_email=getattr(env, "HYPERPLANE_SOA_EMAIL", None),
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

from __future__ import annotations
import os
from pydantic import BaseModel, StrictBool, StrictStr, StrictInt, StrictFloat
from typing import Callable, Dict, Literal, Union

PrimaryType = Union[str, int, float, bytes, bool]


class Env(BaseModel):
    HYPERPLANE_LOG_LEVEL: StrictStr = "info"
    HYPERPLANE_LOG_OUTPUT: Literal["stdout", "stderr"] = "stderr"
    HYPERPLANE_LOGS_DIRECTORY: StrictStr | None = None

    # Messaging
    HYPERPLANE_PUBLISH_RETRIES: StrictInt = 5
    HYPERPLANE_PUBLISH_BASE_DELAY: StrictFloat = 0.1
    HYPERPLANE_PUBLISH_MAX_DELAY: StrictFloat = 5.0

    # Controller
    HYPERPLANE_CLUSTER_DOMAIN: StrictStr = "hyperplane.local"
    HYPERPLANE_SUSPECT_AFTER: StrictFloat = 5.0
    HYPERPLANE_DEAD_AFTER: StrictFloat = 15.0
    HYPERPLANE_FORGET_AFTER: StrictFloat = 300.0
    HYPERPLANE_SWEEP_INTERVAL: StrictFloat = 1.0
    HYPERPLANE_ACCEPT_TIMEOUT: StrictFloat = 10.0
    HYPERPLANE_PLACEMENT_ATTEMPTS: StrictInt = 3
    HYPERPLANE_TERMINATED_RETENTION: StrictFloat = 60.0
    HYPERPLANE_DNS_HOST: StrictStr = "0.0.0.0"
    HYPERPLANE_DNS_PORT: StrictInt = 53
    HYPERPLANE_DNS_TTL: StrictInt = 5
    HYPERPLANE_DNS_ENABLED: StrictBool = True
    HYPERPLANE_SOA_EMAIL: StrictStr | None = None

    # Drone
    HYPERPLANE_DRONE_ID: StrictStr | None = None
    HYPERPLANE_DRONE_ADDRESS: StrictStr = "127.0.0.1"
    HYPERPLANE_DRONE_CAPACITY: StrictInt | None = None
    HYPERPLANE_HEARTBEAT_INTERVAL: StrictFloat = 1.0
    HYPERPLANE_RECONCILE_INTERVAL: StrictFloat = 2.0
    HYPERPLANE_START_TIMEOUT: StrictFloat = 30.0
    HYPERPLANE_DRAIN_GRACE_PERIOD: StrictFloat = 10.0
    HYPERPLANE_MAX_RESTARTS: StrictInt = 3
    HYPERPLANE_RESTART_BASE_DELAY: StrictFloat = 0.5
    HYPERPLANE_RESTART_MAX_DELAY: StrictFloat = 10.0
    HYPERPLANE_RESTART_STABLE_AFTER: StrictFloat = 60.0
    HYPERPLANE_DURABLE_LOG_PATH: StrictStr = os.path.join(os.getcwd(), "hyperplane-drone.wal")

    # Certificates
    HYPERPLANE_CERT_DIRECTORY: StrictStr = os.path.join(os.getcwd(), "certs")
    HYPERPLANE_CERT_RENEW_BEFORE: StrictFloat = 30 * 24 * 3600.0
    HYPERPLANE_CERT_CHECK_INTERVAL: StrictFloat = 3600.0
    HYPERPLANE_CERT_RETRIES: StrictInt = 5

    HYPERPLANE_SHUTDOWN_DEADLINE: StrictFloat = 30.0

    @classmethod
    def types_map(cls) -> Dict[str, Callable[[str], PrimaryType]]:
        return {
            "HYPERPLANE_LOG_LEVEL": str,
            "HYPERPLANE_LOG_OUTPUT": str,
            "HYPERPLANE_LOGS_DIRECTORY": str,
            "HYPERPLANE_PUBLISH_RETRIES": int,
            "HYPERPLANE_PUBLISH_BASE_DELAY": float,
            "HYPERPLANE_PUBLISH_MAX_DELAY": float,
            "HYPERPLANE_CLUSTER_DOMAIN": str,
            "HYPERPLANE_SUSPECT_AFTER": float,
            "HYPERPLANE_DEAD_AFTER": float,
            "HYPERPLANE_FORGET_AFTER": float,
            "HYPERPLANE_SWEEP_INTERVAL": float,
            "HYPERPLANE_ACCEPT_TIMEOUT": float,
            "HYPERPLANE_PLACEMENT_ATTEMPTS": int,
            "HYPERPLANE_TERMINATED_RETENTION": float,
            "HYPERPLANE_DNS_HOST": str,
            "HYPERPLANE_DNS_PORT": int,
            "HYPERPLANE_DNS_TTL": int,
            "HYPERPLANE_DNS_ENABLED": _to_bool,
            "HYPERPLANE_SOA_EMAIL": str,
            "HYPERPLANE_DRONE_ID": str,
            "HYPERPLANE_DRONE_ADDRESS": str,
            "HYPERPLANE_DRONE_CAPACITY": int,
            "HYPERPLANE_HEARTBEAT_INTERVAL": float,
            "HYPERPLANE_RECONCILE_INTERVAL": float,
            "HYPERPLANE_START_TIMEOUT": float,
            "HYPERPLANE_DRAIN_GRACE_PERIOD": float,
            "HYPERPLANE_MAX_RESTARTS": int,
            "HYPERPLANE_RESTART_BASE_DELAY": float,
            "HYPERPLANE_RESTART_MAX_DELAY": float,
            "HYPERPLANE_RESTART_STABLE_AFTER": float,
            "HYPERPLANE_DURABLE_LOG_PATH": str,
            "HYPERPLANE_CERT_DIRECTORY": str,
            "HYPERPLANE_CERT_RENEW_BEFORE": float,
            "HYPERPLANE_CERT_CHECK_INTERVAL": float,
            "HYPERPLANE_CERT_RETRIES": int,
            "HYPERPLANE_SHUTDOWN_DEADLINE": float,
        }


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")

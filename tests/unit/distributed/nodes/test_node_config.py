from pathlib import Path

from hyperplane.distributed.certs import CertificateManager, SelfSignedAuthority
from hyperplane.distributed.env import Env
from hyperplane.distributed.errors import CertificateFailureError, TransportUnavailableError
from hyperplane.distributed.nodes import ControllerConfig, DroneConfig
from hyperplane.distributed.reliability import JitterStrategy


class TestControllerConfig:
    def test_from_env(self) -> None:
        env = Env(
            HYPERPLANE_CLUSTER_DOMAIN="sessions.test",
            HYPERPLANE_DEAD_AFTER=30.0,
            HYPERPLANE_PLACEMENT_ATTEMPTS=5,
            HYPERPLANE_DNS_PORT=5353,
            HYPERPLANE_DNS_ENABLED=False,
            HYPERPLANE_SOA_EMAIL="ops@sessions.test",
            HYPERPLANE_LOG_LEVEL="debug",
        )

        config = ControllerConfig.from_env(env, controller_id="controller-a")

        assert config.controller_id == "controller-a"
        assert config.cluster_domain == "sessions.test"
        assert config.dead_after_seconds == 30.0
        assert config.suspect_after_seconds == 5.0
        assert config.placement_attempts == 5
        assert config.dns_port == 5353
        assert config.dns_enabled is False
        assert config.soa_email == "ops@sessions.test"
        assert config.log_level == "debug"
        assert config.log_output == "stderr"

    def test_default_id_uses_hostname(self) -> None:
        config = ControllerConfig.from_env(Env())

        assert config.controller_id.startswith("controller-")

    def test_publish_retry(self) -> None:
        config = ControllerConfig(controller_id="c", publish_retries=7)

        retry = config.publish_retry()

        assert retry.max_attempts == 7
        assert retry.jitter == JitterStrategy.FULL
        assert retry.retryable_exceptions == (TransportUnavailableError,)
        assert config.log_level is None


class TestDroneConfig:
    def test_from_env(self, tmp_path: Path) -> None:
        env = Env(
            HYPERPLANE_DRONE_ID="drone-7",
            HYPERPLANE_DRONE_ADDRESS="10.0.0.7",
            HYPERPLANE_DRONE_CAPACITY=12,
            HYPERPLANE_MAX_RESTARTS=1,
            HYPERPLANE_RESTART_STABLE_AFTER=120.0,
            HYPERPLANE_DURABLE_LOG_PATH=str(tmp_path / "drone.wal"),
            HYPERPLANE_CERT_DIRECTORY=str(tmp_path / "certs"),
        )

        config = DroneConfig.from_env(env)

        assert config.drone_id == "drone-7"
        assert config.address == "10.0.0.7"
        assert config.capacity == 12
        assert config.durable_log_path == tmp_path / "drone.wal"
        assert config.cert_directory == tmp_path / "certs"
        assert config.supervisor_config().restart_policy.max_restarts == 1
        assert config.supervisor_config().restart_policy.stable_after == 120.0

    def test_arguments_override_env(self) -> None:
        env = Env(HYPERPLANE_DRONE_ID="drone-7", HYPERPLANE_DRONE_ADDRESS="10.0.0.7")

        config = DroneConfig.from_env(env, drone_id="drone-8", address="10.0.0.8")

        assert config.drone_id == "drone-8"
        assert config.address == "10.0.0.8"

    def test_capacity_defaults_to_cores(self) -> None:
        config = DroneConfig.from_env(Env())

        assert config.capacity >= 1
        assert config.drone_id.startswith("drone-")

    def test_certified_domains(self) -> None:
        config = DroneConfig(drone_id="d", cluster_domain="sessions.test")
        assert config.certified_domains == ["sessions.test"]

        config.cert_domains = ["a.test", "b.test"]
        assert config.certified_domains == ["a.test", "b.test"]

    def test_supervisor_config(self) -> None:
        config = DroneConfig(
            drone_id="d",
            start_timeout_seconds=3.0,
            drain_grace_period_seconds=4.0,
            reconcile_interval_seconds=0.5,
            restart_base_delay_seconds=0.2,
            restart_max_delay_seconds=2.0,
            restart_stable_after_seconds=30.0,
        )

        supervisor_config = config.supervisor_config()

        assert supervisor_config.start_timeout == 3.0
        assert supervisor_config.drain_grace_period == 4.0
        assert supervisor_config.reconcile_interval == 0.5
        assert supervisor_config.restart_policy.base_delay == 0.2
        assert supervisor_config.restart_policy.max_delay == 2.0
        assert supervisor_config.restart_policy.stable_after == 30.0

    def test_certificate_manager_uses_cert_settings(self, tmp_path: Path) -> None:
        config = DroneConfig(
            drone_id="d",
            cluster_domain="sessions.test",
            cert_directory=tmp_path / "certs",
            cert_retries=2,
        )

        manager = config.certificate_manager(SelfSignedAuthority())

        assert isinstance(manager, CertificateManager)
        assert config.cert_retry().max_attempts == 2
        assert config.cert_retry().jitter == JitterStrategy.EQUAL
        assert CertificateFailureError in config.cert_retry().retryable_exceptions
        assert not manager.available("sessions.test")

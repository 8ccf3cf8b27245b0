from pathlib import Path

import pytest

from hyperplane.distributed.env import Env, load_env


class TestLoadEnv:
    """Test building Env from process variables and .env files."""

    def test_defaults(self, tmp_path: Path) -> None:
        env = load_env(Env, env_file=str(tmp_path / "missing.env"))

        assert env.HYPERPLANE_CLUSTER_DOMAIN == "hyperplane.local"
        assert env.HYPERPLANE_DNS_ENABLED is True
        assert env.HYPERPLANE_DRONE_CAPACITY is None

    def test_process_variables_are_converted(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("HYPERPLANE_DNS_PORT", "5353")
        monkeypatch.setenv("HYPERPLANE_DEAD_AFTER", "20")
        monkeypatch.setenv("HYPERPLANE_DNS_ENABLED", "false")
        monkeypatch.setenv("HYPERPLANE_CLUSTER_DOMAIN", "sessions.example.com")

        env = load_env(Env, env_file=str(tmp_path / "missing.env"))

        assert env.HYPERPLANE_DNS_PORT == 5353
        assert env.HYPERPLANE_DEAD_AFTER == 20.0
        assert env.HYPERPLANE_DNS_ENABLED is False
        assert env.HYPERPLANE_CLUSTER_DOMAIN == "sessions.example.com"

    def test_env_file_overrides_process(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("HYPERPLANE_DRONE_CAPACITY", "2")
        env_file = tmp_path / ".env"
        env_file.write_text(
            "HYPERPLANE_DRONE_CAPACITY=8\n"
            "HYPERPLANE_DRONE_ID=drone-a\n"
            "UNRELATED=ignored\n"
        )

        env = load_env(Env, env_file=str(env_file))

        assert env.HYPERPLANE_DRONE_CAPACITY == 8
        assert env.HYPERPLANE_DRONE_ID == "drone-a"

    def test_override_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HYPERPLANE_DNS_TTL", "30")

        env = load_env(
            Env,
            env_file=str(tmp_path / "missing.env"),
            override=Env(HYPERPLANE_DNS_TTL=1),
        )

        assert env.HYPERPLANE_DNS_TTL == 1

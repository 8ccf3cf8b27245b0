from pathlib import Path

import msgspec
import pytest

from hyperplane.logging import Entry, Logger, LoggingConfig, LogLevel
from hyperplane.logging.hyperplane_logging_models import (
    ServerInfo,
    ServerWarning,
    SessionError,
)


class TestLoggingConfig:
    def test_level_filtering(self) -> None:
        config = LoggingConfig()
        config.update(log_level="warn")

        assert config.level == LogLevel.WARN
        assert config.enabled("default", LogLevel.ERROR)
        assert config.enabled("default", LogLevel.WARN)
        assert not config.enabled("default", LogLevel.INFO)

    def test_unknown_level_defaults_to_info(self) -> None:
        assert LogLevel.to_level("verbose") == LogLevel.INFO
        assert LogLevel.to_level("fatal") == LogLevel.FATAL

    def test_disabled_logger(self) -> None:
        config = LoggingConfig()
        config.update(log_level="trace")
        config.disable("noisy")

        assert not config.enabled("noisy", LogLevel.FATAL)
        assert config.enabled("default", LogLevel.TRACE)


class TestEntry:
    def test_to_template(self, sample_entry: Entry) -> None:
        line = sample_entry.to_template("{level}: {message} ({origin})", context={"origin": "test"})

        assert line == "INFO: Test log message (test)"

    def test_session_entries_carry_context(self) -> None:
        entry = SessionError(
            message="Placement failed",
            node_id="controller-1",
            session_id="s1",
            epoch=3,
            cause="no capacity",
        )

        line = entry.to_template("{session_id}@{epoch} {message}: {cause}")

        assert entry.level == LogLevel.ERROR
        assert line == "s1@3 Placement failed: no capacity"


class TestLogger:
    @pytest.mark.asyncio
    async def test_log_to_json_file(self, tmp_path: Path) -> None:
        LoggingConfig().update(log_level="info")
        logger = Logger()
        path = tmp_path / "hyperplane.json"

        await logger.log(
            ServerInfo(message="Controller started", node_id="controller-1", node_role="controller"),
            path=str(path),
        )
        await logger.log(
            ServerWarning(message="Drone suspect", node_id="controller-1", node_role="controller"),
            path=str(path),
        )
        await logger.close()

        records = [msgspec.json.decode(line) for line in path.read_bytes().splitlines()]

        assert [record["entry"]["message"] for record in records] == [
            "Controller started",
            "Drone suspect",
        ]
        assert records[0]["entry"]["level"] == "INFO"
        assert records[0]["entry"]["node_role"] == "controller"
        assert records[0]["function_name"] == "test_log_to_json_file"

    @pytest.mark.asyncio
    async def test_entries_below_level_are_dropped(self, tmp_path: Path) -> None:
        LoggingConfig().update(log_level="error")
        logger = Logger()
        path = tmp_path / "hyperplane.json"

        await logger.log(
            ServerInfo(message="hidden", node_id="drone-1", node_role="drone"),
            path=str(path),
        )
        await logger.close()

        assert not path.exists()

    @pytest.mark.asyncio
    async def test_log_to_stream(self, capsys: pytest.CaptureFixture[str]) -> None:
        config = LoggingConfig()
        config.update(log_level="info", log_output="stdout")
        logger = Logger()

        try:
            await logger.log(
                ServerWarning(message="Heartbeat not delivered", node_id="drone-1", node_role="drone"),
            )

        finally:
            config.update(log_output="stderr")

        captured = capsys.readouterr()
        assert "WARN" in captured.out
        assert "Heartbeat not delivered" in captured.out

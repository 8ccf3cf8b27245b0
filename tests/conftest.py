"""
Pytest configuration shared by unit and integration tests.

Async tests are marked with ``@pytest.mark.asyncio``.
"""

import tempfile
from typing import Generator

import pytest

from hyperplane.distributed.channel import LocalChannel
from hyperplane.distributed.models import SessionSpec
from hyperplane.logging import LoggingConfig
from hyperplane.logging.models import Entry, LogLevel


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture(autouse=True)
def quiet_logging() -> Generator[None, None, None]:
    """Only surface errors while tests run."""
    logging_config = LoggingConfig()
    previous = logging_config.level
    logging_config.update(log_level="error")
    yield
    logging_config.update(log_level=previous.value.lower())


@pytest.fixture
def local_channel() -> LocalChannel:
    return LocalChannel()


@pytest.fixture
def session_spec() -> SessionSpec:
    return SessionSpec(
        image="registry.local/notebook:1.4",
        command=["serve", "--port", "8080"],
        env={"MODE": "test"},
    )


@pytest.fixture
def temp_directory() -> Generator[str, None, None]:
    with tempfile.TemporaryDirectory() as directory:
        yield directory


@pytest.fixture
def sample_entry() -> Entry:
    return Entry(
        message="Test log message",
        level=LogLevel.INFO,
    )

import contextvars
from typing import Literal

from hyperplane.logging.models import LogLevel

from .stream_type import StreamType


LogOutput = Literal['stdout', 'stderr']

# Shared by every node in the process. Values set in a task are seen by
# tasks spawned from it afterwards.
_log_level = contextvars.ContextVar("hyperplane_log_level", default=LogLevel.INFO)
_log_output = contextvars.ContextVar("hyperplane_log_output", default=StreamType.STDOUT)
_log_directory: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "hyperplane_log_directory",
    default=None,
)
_disabled_loggers: contextvars.ContextVar[frozenset[str]] = contextvars.ContextVar(
    "hyperplane_disabled_loggers",
    default=frozenset(),
)


class LoggingConfig:
    """
    Process-wide logging settings. Nodes call ``update`` once at start
    with the values from their config; ``None`` leaves a setting as is.
    """

    def update(
        self,
        log_directory: str | None = None,
        log_level: str | None = None,
        log_output: LogOutput | str | None = None,
    ):
        if log_directory:
            _log_directory.set(log_directory)

        if log_level:
            _log_level.set(LogLevel.to_level(log_level))

        if log_output:
            _log_output.set(
                StreamType.STDERR if log_output.lower() == 'stderr' else StreamType.STDOUT
            )

    def disable(self, logger_name: str):
        _disabled_loggers.set(_disabled_loggers.get() | {logger_name})

    def enabled(self, logger_name: str, log_level: LogLevel) -> bool:
        if logger_name in _disabled_loggers.get():
            return False

        return log_level.severity >= _log_level.get().severity

    @property
    def level(self) -> LogLevel:
        return _log_level.get()

    @property
    def output(self) -> StreamType:
        return _log_output.get()

    @property
    def directory(self) -> str | None:
        return _log_directory.get()

from __future__ import annotations

from enum import Enum
from typing import Literal


LogLevelName = Literal[
    'trace',
    'debug',
    'info',
    'warn',
    'error',
    'critical',
    'fatal',
]


class LogLevel(Enum):
    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
    FATAL = "FATAL"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def to_level(cls, level_name: str) -> LogLevel:
        """Unknown names (HYPERPLANE_LOG_LEVEL typos included) fall back to INFO."""
        try:
            return cls(level_name.upper())

        except ValueError:
            return cls.INFO


_SEVERITY = {level: rank for rank, level in enumerate(LogLevel)}

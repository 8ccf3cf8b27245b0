from abc import ABC, abstractmethod
from typing import Sequence

from .records import Record


class DurableLog(ABC):
    """
    Append-only local log of supervisor records.

    ``replay`` is read once at startup and returns records in append
    order. Unreadable or unwritable storage raises
    ``PersistenceFailureError``.
    """

    @abstractmethod
    async def append(self, record: Record) -> int:
        """Durably append ``record`` and return its LSN."""
        ...

    @abstractmethod
    async def replay(self) -> list[Record]:
        ...

    @abstractmethod
    async def compact(self, records: Sequence[Record]) -> None:
        """Atomically replace the log contents with ``records``."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

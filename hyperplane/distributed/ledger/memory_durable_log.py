from typing import Sequence

from hyperplane.distributed.errors import PersistenceFailureError

from .durable_log import DurableLog
from .records import Record


class MemoryDurableLog(DurableLog):
    """
    Durable log kept in memory. Sharing one instance between two
    supervisors simulates a drone restart. ``fail_appends`` and
    ``unreadable`` inject persistence failures.
    """

    def __init__(self, records: Sequence[Record] | None = None) -> None:
        self.records: list[Record] = list(records or [])
        self.fail_appends = False
        self.unreadable = False
        self.compactions = 0
        self.closed = False

    async def append(self, record: Record) -> int:
        if self.fail_appends:
            raise PersistenceFailureError("memory", "append failed")

        self.records.append(record)
        return len(self.records) - 1

    async def replay(self) -> list[Record]:
        if self.unreadable:
            raise PersistenceFailureError("memory", "log unreadable")

        return list(self.records)

    async def compact(self, records: Sequence[Record]) -> None:
        if self.fail_appends:
            raise PersistenceFailureError("memory", "compaction failed")

        self.records = list(records)
        self.compactions += 1

    async def close(self) -> None:
        self.closed = True

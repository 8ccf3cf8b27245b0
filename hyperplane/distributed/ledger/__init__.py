from .durable_log import DurableLog as DurableLog
from .file_durable_log import FileDurableLog as FileDurableLog
from .ledger_entry import LedgerEntry as LedgerEntry
from .memory_durable_log import MemoryDurableLog as MemoryDurableLog
from .records import (
    AssignRecord as AssignRecord,
    LedgerRecord as LedgerRecord,
    PurgeRecord as PurgeRecord,
    Record as Record,
    StateRecord as StateRecord,
)

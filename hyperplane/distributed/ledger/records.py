import time

import msgspec

from hyperplane.distributed.models import SessionSpec


class LedgerRecord(msgspec.Struct, tag_field="kind", kw_only=True):
    session_id: str
    epoch: int
    recorded_at: float = msgspec.field(default_factory=time.time)


class AssignRecord(LedgerRecord, tag="assign", kw_only=True):
    """Written before any runtime action for a newly accepted epoch."""
    drone_id: str
    spec: SessionSpec


class StateRecord(LedgerRecord, tag="state", kw_only=True):
    """Supervisor state after a transition."""
    phase: str
    attempt: int = 0
    cause: str | None = None
    workload_id: str | None = None
    backend_address: str | None = None


class PurgeRecord(LedgerRecord, tag="purge", kw_only=True):
    """
    The session's local record was purged. The epoch stays behind as
    the fencing high-water mark.
    """


Record = AssignRecord | StateRecord | PurgeRecord

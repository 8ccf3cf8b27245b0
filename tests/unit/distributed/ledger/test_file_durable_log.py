import shutil
import tempfile
from pathlib import Path

import pytest

from hyperplane.distributed.errors import PersistenceFailureError
from hyperplane.distributed.ledger import (
    AssignRecord,
    FileDurableLog,
    LedgerEntry,
    PurgeRecord,
    StateRecord,
)
from hyperplane.distributed.models import SessionSpec


SPEC = SessionSpec(image="registry.local/app:1", env={"MODE": "test"})


@pytest.fixture
def temp_log_directory():
    temp_dir = tempfile.mkdtemp(prefix="test_ledger_")
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


def sample_records() -> list:
    return [
        AssignRecord(session_id="s1", epoch=1, drone_id="drone-1", spec=SPEC),
        StateRecord(
            session_id="s1",
            epoch=1,
            phase="running",
            workload_id="w-1",
            backend_address="127.0.0.1:20000",
        ),
        PurgeRecord(session_id="s0", epoch=4),
    ]


# =============================================================================
# Entry Framing Tests
# =============================================================================


class TestLedgerEntry:
    def test_entry_round_trip(self) -> None:
        entry = LedgerEntry(lsn=7, payload=b'{"kind":"purge"}')

        decoded = LedgerEntry.from_bytes(entry.to_bytes())

        assert decoded.lsn == 7
        assert decoded.payload == b'{"kind":"purge"}'

    def test_corrupt_entry_rejected(self) -> None:
        data = bytearray(LedgerEntry(lsn=0, payload=b"payload").to_bytes())
        data[-1] ^= 0xFF

        with pytest.raises(ValueError, match="CRC mismatch"):
            LedgerEntry.from_bytes(bytes(data))

    def test_scan_stops_at_torn_tail(self) -> None:
        first = LedgerEntry(lsn=0, payload=b"first").to_bytes()
        second = LedgerEntry(lsn=1, payload=b"second").to_bytes()
        data = first + second[:-3]

        entries, valid_length = LedgerEntry.scan(data)

        assert [entry.lsn for entry in entries] == [0]
        assert valid_length == len(first)

    def test_scan_stops_at_corrupt_entry(self) -> None:
        first = LedgerEntry(lsn=0, payload=b"first").to_bytes()
        second = bytearray(LedgerEntry(lsn=1, payload=b"second").to_bytes())
        third = LedgerEntry(lsn=2, payload=b"third").to_bytes()
        second[-1] ^= 0x01

        entries, valid_length = LedgerEntry.scan(first + bytes(second) + third)

        assert [entry.lsn for entry in entries] == [0]
        assert valid_length == len(first)


# =============================================================================
# File Log Tests
# =============================================================================


class TestFileDurableLog:
    @pytest.mark.asyncio
    async def test_replay_of_missing_file_is_empty(self, temp_log_directory: str) -> None:
        durable_log = FileDurableLog(Path(temp_log_directory) / "drone.log")

        assert await durable_log.replay() == []
        assert durable_log.next_lsn == 0

        await durable_log.close()

    @pytest.mark.asyncio
    async def test_append_then_replay(self, temp_log_directory: str) -> None:
        path = Path(temp_log_directory) / "nested" / "drone.log"
        durable_log = FileDurableLog(path)
        written = sample_records()

        lsns = [await durable_log.append(record) for record in written]
        await durable_log.close()

        assert lsns == [0, 1, 2]

        reopened = FileDurableLog(path)
        records = await reopened.replay()

        assert records == written
        assert records[0].spec == SPEC
        assert isinstance(records[2], PurgeRecord)
        assert reopened.next_lsn == 3

        assert await reopened.append(PurgeRecord(session_id="s1", epoch=1)) == 3
        await reopened.close()

    @pytest.mark.asyncio
    async def test_torn_tail_truncated(self, temp_log_directory: str) -> None:
        path = Path(temp_log_directory) / "drone.log"
        durable_log = FileDurableLog(path)
        for record in sample_records():
            await durable_log.append(record)
        await durable_log.close()

        intact_size = path.stat().st_size
        with open(path, "ab") as logfile:
            logfile.write(LedgerEntry(lsn=3, payload=b'{"kind":"purge"}').to_bytes()[:10])

        reopened = FileDurableLog(path)
        records = await reopened.replay()

        assert len(records) == 3
        assert path.stat().st_size == intact_size

        await reopened.append(PurgeRecord(session_id="s1", epoch=1))
        await reopened.close()

        final = FileDurableLog(path)
        assert len(await final.replay()) == 4
        await final.close()

    @pytest.mark.asyncio
    async def test_undecodable_entry_raises(self, temp_log_directory: str) -> None:
        path = Path(temp_log_directory) / "drone.log"
        path.write_bytes(LedgerEntry(lsn=0, payload=b"not a record").to_bytes())

        durable_log = FileDurableLog(path)

        with pytest.raises(PersistenceFailureError, match="unreadable"):
            await durable_log.replay()

    @pytest.mark.asyncio
    async def test_unreadable_path_raises(self, temp_log_directory: str) -> None:
        durable_log = FileDurableLog(temp_log_directory)

        with pytest.raises(PersistenceFailureError):
            await durable_log.replay()

    @pytest.mark.asyncio
    async def test_compact_replaces_contents(self, temp_log_directory: str) -> None:
        path = Path(temp_log_directory) / "drone.log"
        durable_log = FileDurableLog(path)
        for record in sample_records():
            await durable_log.append(record)

        await durable_log.compact([PurgeRecord(session_id="s1", epoch=2)])
        assert durable_log.next_lsn == 1

        await durable_log.append(PurgeRecord(session_id="s2", epoch=1))
        await durable_log.close()

        reopened = FileDurableLog(path)
        records = await reopened.replay()

        assert [(record.session_id, record.epoch) for record in records] == [
            ("s1", 2),
            ("s2", 1),
        ]
        assert not path.with_name("drone.log.compact").exists()
        await reopened.close()

    @pytest.mark.asyncio
    async def test_append_after_close_raises(self, temp_log_directory: str) -> None:
        durable_log = FileDurableLog(Path(temp_log_directory) / "drone.log")
        await durable_log.close()

        with pytest.raises(PersistenceFailureError, match="closed"):
            await durable_log.append(PurgeRecord(session_id="s1", epoch=1))

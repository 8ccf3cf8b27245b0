from __future__ import annotations

import asyncio
import io
import os
from pathlib import Path
from typing import Sequence

import msgspec

from hyperplane.distributed.errors import PersistenceFailureError

from .durable_log import DurableLog
from .ledger_entry import LedgerEntry
from .records import Record


class FileDurableLog(DurableLog):
    """
    CRC-framed append-only file. Appends are serialized by one lock and
    flushed and fsynced in the default executor before returning.

    Replay stops at the first torn or corrupt entry and truncates the
    file there so later appends are not hidden behind it. A payload
    that passes its checksum but cannot be decoded, or a file that
    cannot be read at all, raises ``PersistenceFailureError``.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._encoder = msgspec.json.Encoder()
        self._decoder = msgspec.json.Decoder(Record)
        self._lock = asyncio.Lock()
        self._file: io.BufferedWriter | None = None
        self._next_lsn = 0
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def next_lsn(self) -> int:
        return self._next_lsn

    async def replay(self) -> list[Record]:
        loop = asyncio.get_running_loop()
        async with self._lock:
            entries = await loop.run_in_executor(None, self._replay_sync)

        records: list[Record] = []
        for entry in entries:
            try:
                records.append(self._decoder.decode(entry.payload))

            except (msgspec.DecodeError, msgspec.ValidationError) as err:
                raise PersistenceFailureError(
                    str(self._path),
                    f"entry {entry.lsn} is unreadable: {err}",
                ) from err

            self._next_lsn = max(self._next_lsn, entry.lsn + 1)

        return records

    def _replay_sync(self) -> list[LedgerEntry]:
        try:
            if not self._path.exists():
                return []

            with open(self._path, "rb") as logfile:
                data = logfile.read()

            entries, valid_length = LedgerEntry.scan(data)

            if valid_length < len(data):
                with open(self._path, "r+b") as logfile:
                    logfile.truncate(valid_length)
                    logfile.flush()
                    os.fsync(logfile.fileno())

            return entries

        except OSError as err:
            raise PersistenceFailureError(str(self._path), str(err)) from err

    async def append(self, record: Record) -> int:
        if self._closed:
            raise PersistenceFailureError(str(self._path), "log is closed")

        loop = asyncio.get_running_loop()
        payload = self._encoder.encode(record)

        async with self._lock:
            lsn = self._next_lsn
            data = LedgerEntry(lsn=lsn, payload=payload).to_bytes()

            await loop.run_in_executor(None, self._append_sync, data)
            self._next_lsn = lsn + 1

        return lsn

    def _append_sync(self, data: bytes) -> None:
        try:
            if self._file is None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._file = open(self._path, "ab")

            self._file.write(data)
            self._file.flush()
            os.fsync(self._file.fileno())

        except OSError as err:
            raise PersistenceFailureError(str(self._path), str(err)) from err

    async def compact(self, records: Sequence[Record]) -> None:
        if self._closed:
            raise PersistenceFailureError(str(self._path), "log is closed")

        loop = asyncio.get_running_loop()
        data = b"".join(
            LedgerEntry(lsn=lsn, payload=self._encoder.encode(record)).to_bytes()
            for lsn, record in enumerate(records)
        )

        async with self._lock:
            await loop.run_in_executor(None, self._compact_sync, data)
            self._next_lsn = len(records)

    def _compact_sync(self, data: bytes) -> None:
        temp_path = self._path.with_name(f"{self._path.name}.compact")

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "wb") as temp_file:
                temp_file.write(data)
                temp_file.flush()
                os.fsync(temp_file.fileno())

            if self._file is not None:
                self._file.close()
                self._file = None

            os.replace(temp_path, self._path)

        except OSError as err:
            raise PersistenceFailureError(str(self._path), str(err)) from err

    async def close(self) -> None:
        async with self._lock:
            self._closed = True
            if self._file is not None:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self._file.close)
                self._file = None

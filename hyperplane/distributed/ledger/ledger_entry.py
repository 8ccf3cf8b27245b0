from __future__ import annotations

import struct
import zlib


HEADER_FORMAT = ">I I Q"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)


class LedgerEntry:
    """
    Binary durable log entry with CRC32 checksum.

    Wire format (16 byte header + variable payload):
    +----------+----------+----------+
    | CRC32    | Length   | LSN      |
    | (4 bytes)| (4 bytes)| (8 bytes)|
    +----------+----------+----------+
    |      Payload (msgspec JSON)    |
    +--------------------------------+

    Length covers the header and payload. The CRC covers everything
    after itself.
    """

    __slots__ = ("_lsn", "_payload")

    def __init__(self, lsn: int, payload: bytes) -> None:
        self._lsn = lsn
        self._payload = payload

    @property
    def lsn(self) -> int:
        return self._lsn

    @property
    def payload(self) -> bytes:
        return self._payload

    def to_bytes(self) -> bytes:
        body = struct.pack(">I Q", HEADER_SIZE + len(self._payload), self._lsn) + self._payload
        crc = zlib.crc32(body) & 0xFFFFFFFF
        return struct.pack(">I", crc) + body

    @classmethod
    def from_bytes(cls, data: bytes) -> LedgerEntry:
        if len(data) < HEADER_SIZE:
            raise ValueError(f"Ledger entry too short: {len(data)} < {HEADER_SIZE}")

        stored_crc = struct.unpack(">I", data[:4])[0]
        body = data[4:]

        computed_crc = zlib.crc32(body) & 0xFFFFFFFF
        if stored_crc != computed_crc:
            raise ValueError(
                f"CRC mismatch: stored={stored_crc:08x}, computed={computed_crc:08x}"
            )

        _, lsn = struct.unpack(">I Q", body[:12])
        return cls(lsn=lsn, payload=body[12:])

    @staticmethod
    def scan(data: bytes) -> tuple[list[LedgerEntry], int]:
        """
        Parse entries from the start of ``data``. Stops at the first
        torn or corrupt entry and returns the entries read plus the
        offset where the valid prefix ends.
        """
        entries: list[LedgerEntry] = []
        offset = 0

        while offset + HEADER_SIZE <= len(data):
            total_length = struct.unpack(">I", data[offset + 4:offset + 8])[0]
            if total_length < HEADER_SIZE or offset + total_length > len(data):
                break

            try:
                entries.append(LedgerEntry.from_bytes(data[offset:offset + total_length]))

            except ValueError:
                break

            offset += total_length

        return entries, offset

    def __repr__(self) -> str:
        return f"LedgerEntry(lsn={self._lsn}, size={len(self._payload)})"

from __future__ import annotations

from dataclasses import dataclass

from hyperplane.distributed.models import SessionState, SessionStatus


@dataclass(slots=True, frozen=True)
class DirectoryEntry:
    session_id: str
    address: str
    epoch: int
    drone_id: str | None = None


class SessionDirectory:
    """
    Resolvable mapping of session id to backend address.

    An entry exists only while the most recently accepted status for a
    session is RUNNING. Per session the directory keeps an epoch
    high-water mark:

    - statuses below the high-water mark are ignored
    - an ASSIGNING fence applies only with a strictly greater epoch and
      removes any current entry
    - RUNNING upserts, every other state removes the entry and closes
      that epoch, so a duplicated RUNNING for it cannot resurrect it

    Entries are immutable and replaced wholesale, so ``resolve`` never
    observes a half-written entry. The high-water marks are kept for
    the lifetime of the directory.
    """

    def __init__(self, domain: str) -> None:
        self._domain = self.normalize(domain)
        self._entries: dict[str, DirectoryEntry] = {}
        self._high_water: dict[str, int] = {}
        self._last_applied: dict[str, tuple[str, int, SessionState, str | None]] = {}
        self._closed_epoch: dict[str, int] = {}

    @property
    def domain(self) -> str:
        return self._domain

    @staticmethod
    def normalize(name: str) -> str:
        return name.strip().rstrip(".").lower()

    def apply(self, status: SessionStatus) -> bool:
        """
        Apply a status message. Returns True if the directory state
        (entry or epoch high-water mark) changed.
        """
        session_id = status.session_id.lower()
        high_water = self._high_water.get(session_id, 0)

        if status.epoch < high_water:
            return False

        if status.state == SessionState.ASSIGNING:
            if status.epoch <= high_water:
                return False

            self._high_water[session_id] = status.epoch
            self._entries.pop(session_id, None)
            self._last_applied[session_id] = status.key()
            return True

        if self._last_applied.get(session_id) == status.key():
            return False

        if status.state == SessionState.RUNNING:
            if status.address is None:
                return False

            if status.epoch <= self._closed_epoch.get(session_id, 0):
                return False

            self._entries[session_id] = DirectoryEntry(
                session_id=session_id,
                address=status.address,
                epoch=status.epoch,
                drone_id=status.drone_id or status.reporter,
            )

        else:
            self._entries.pop(session_id, None)
            self._closed_epoch[session_id] = status.epoch

        self._high_water[session_id] = status.epoch
        self._last_applied[session_id] = status.key()
        return True

    def in_zone(self, name: str) -> bool:
        name = self.normalize(name)
        return name == self._domain or name.endswith(f".{self._domain}")

    def session_id_for(self, name: str) -> str | None:
        """
        Accepts ``<session_id>.<domain>`` (with or without trailing dot)
        or a bare session id.
        """
        name = self.normalize(name)
        if not name:
            return None

        suffix = f".{self._domain}"
        if name.endswith(suffix):
            name = name[: -len(suffix)]

        elif name == self._domain:
            return None

        if not name or "." in name:
            return None

        return name

    def lookup(self, name: str) -> DirectoryEntry | None:
        session_id = self.session_id_for(name)
        if session_id is None:
            return None

        return self._entries.get(session_id)

    def resolve(self, name: str) -> str | None:
        entry = self.lookup(name)
        if entry is None:
            return None

        return entry.address

    def epoch_of(self, session_id: str) -> int:
        return self._high_water.get(session_id.lower(), 0)

    def known(self, name: str) -> bool:
        session_id = self.session_id_for(name)
        return session_id is not None and session_id in self._high_water

    def entries(self) -> list[DirectoryEntry]:
        return sorted(self._entries.values(), key=lambda entry: entry.session_id)

    def __len__(self) -> int:
        return len(self._entries)

"""
Temporary unblocks earned from the card gamble.

The ledger is a list of (domain, expires_at) records in the local storage
partition, one per normalized domain. Expired records are ignored by every
read and compacted by `cleanup_expired`, which the controller runs every
minute.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from config import TEMP_UNBLOCKS_KEY
from domains import host_matches, normalize_domain
from scheduler import now_ms
from storage import Storage, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemporaryUnblock:
    domain: str
    expires_at: int

    def is_active(self, now: int) -> bool:
        return self.expires_at > now

    @classmethod
    def from_dict(cls, data: dict) -> "TemporaryUnblock":
        expires_at = data["expires_at"]
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            raise ValueError(f"Invalid expiry {expires_at!r}")
        return cls(domain=normalize_domain(str(data["domain"])), expires_at=int(expires_at))

    def to_dict(self) -> dict:
        return {"domain": self.domain, "expires_at": self.expires_at}


def covers(entries: Iterable[TemporaryUnblock], domain: str, now: int) -> bool:
    """Check if an active entry exempts `domain` (exactly or as a parent domain)."""
    return any(e.is_active(now) and host_matches(domain, e.domain) for e in entries)


class UnblockLedger:
    def __init__(self, storage: Storage, clock: Callable[[], int] = now_ms):
        self.partition = storage.local
        self.clock = clock
        self._lock = threading.RLock()

    def _entries(self) -> List[TemporaryUnblock]:
        try:
            raw = self.partition.get(TEMP_UNBLOCKS_KEY)
        except StorageError as e:
            logger.warning("Temporary unblocks unavailable: %s", e)
            return []
        if not isinstance(raw, list):
            return []
        entries = []
        for item in raw:
            try:
                entries.append(TemporaryUnblock.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Dropping malformed unblock: %r", item)
        return entries

    def _save(self, entries: List[TemporaryUnblock]) -> None:
        self.partition.set(TEMP_UNBLOCKS_KEY, [e.to_dict() for e in entries])

    def get_active(self, now: Optional[int] = None) -> List[TemporaryUnblock]:
        now = self.clock() if now is None else now
        return [e for e in self._entries() if e.is_active(now)]

    def is_temporarily_unblocked(self, domain: str, now: Optional[int] = None) -> bool:
        now = self.clock() if now is None else now
        return covers(self._entries(), domain, now)

    def add(self, domain: str, expires_at: int) -> TemporaryUnblock:
        """Exempt `domain` until `expires_at`, replacing any entry it already has."""
        entry = TemporaryUnblock(normalize_domain(domain), int(expires_at))
        with self._lock:
            entries = [e for e in self.get_active() if e.domain != entry.domain]
            entries.append(entry)
            self._save(entries)
        logger.debug("Added temporary unblock: %s until %s", entry.domain, entry.expires_at)
        return entry

    def remove(self, domain: str) -> bool:
        normalized = normalize_domain(domain)
        with self._lock:
            entries = self.get_active()
            remaining = [e for e in entries if e.domain != normalized]
            self._save(remaining)
        logger.debug("Removed temporary unblock: %s", normalized)
        return len(remaining) != len(entries)

    def clear(self) -> None:
        with self._lock:
            self.partition.remove(TEMP_UNBLOCKS_KEY)
        logger.debug("Cleared all temporary unblocks")

    def cleanup_expired(self) -> int:
        """Persist only the still-active entries. Returns how many were dropped."""
        with self._lock:
            entries = self._entries()
            active = [e for e in entries if e.is_active(self.clock())]
            if len(active) != len(entries):
                self._save(active)
        dropped = len(entries) - len(active)
        logger.debug("Cleaned up expired unblocks. Active unblocks: %d", len(active))
        return dropped

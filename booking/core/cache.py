"""
In-process cache for derived availability views.

Entries are tagged with the store revision they were computed at. Every ledger or
rule write bumps the revision, so a stale entry is simply never read again; no
caller has to know which keys to clear. The TTL bounds staleness for writes made
by other processes.
"""
import logging
import time
from threading import Lock
from typing import Any, Callable, Hashable

from booking.core import config

logger = logging.getLogger(__name__)


class RevisionedCache:
    def __init__(self, ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds
        self._lock = Lock()
        self._revision = 0
        self._entries: dict[Hashable, tuple[int, float, Any]] = {}

    @property
    def revision(self) -> int:
        with self._lock:
            return self._revision

    def bump(self) -> int:
        """Invalidate everything computed so far."""
        with self._lock:
            self._revision += 1
            self._entries.clear()
            return self._revision

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        if self.ttl_seconds <= 0:
            return compute()

        now = time.monotonic()
        with self._lock:
            revision = self._revision
            entry = self._entries.get(key)
            if entry is not None and entry[0] == revision and entry[1] > now:
                logger.debug('Availability cache hit: %s', key)
                return entry[2]

        value = compute()

        with self._lock:
            # A write landed while computing; the value may already be stale.
            if self._revision == revision:
                self._prune(now)
                self._entries[key] = (revision, now + self.ttl_seconds, value)
        return value

    def _prune(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry[1] <= now]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


availability_cache = RevisionedCache(config.AVAILABILITY_CACHE_SECONDS)

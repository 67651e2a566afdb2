"""In-process mutual exclusion keyed by string.

Admission requests for the same slot or user/day key run one at a time within a
process; unrelated keys never wait on each other. Cross-process exclusion is the
database's job (see booking.services.ledger.lock_admission_keys).
"""
from contextlib import contextmanager
from threading import Lock
from typing import Iterator


class _Entry:
    __slots__ = ('lock', 'holders')

    def __init__(self) -> None:
        self.lock = Lock()
        self.holders = 0


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = Lock()
        self._entries: dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.holders += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Acquire every key in sorted order so overlapping key sets cannot deadlock."""
        held: list[tuple[str, _Entry]] = []
        try:
            for key in sorted(set(keys)):
                entry = self._checkout(key)
                entry.lock.acquire()
                held.append((key, entry))
            yield
        finally:
            for key, entry in reversed(held):
                entry.lock.release()
                self._checkin(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


admission_locks = KeyedLocks()

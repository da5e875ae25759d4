"""
Record Lock Module

Per-record write locks. Postings that touch several accounts acquire the locks
in ascending key order so concurrent opposite-direction transfers cannot
deadlock.

A key's lock lives only while some thread holds or waits on it, so ids that
are never seen again (rejected requests, deleted records) leave nothing behind.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        # Threads holding or waiting on the lock, counted once per hold()
        self.users = 0


class RowLockRegistry:
    """Registry of re-entrant locks keyed by record identifier"""

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry):
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold the locks for all keys for the duration of the block"""
        ordered = sorted({key for key in keys if key is not None})
        checked_out: List[tuple] = []
        acquired: List[_Entry] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                checked_out.append((key, entry))
                entry.lock.acquire()
                acquired.append(entry)
            yield
        finally:
            for entry in reversed(acquired):
                entry.lock.release()
            for key, entry in reversed(checked_out):
                self._checkin(key, entry)

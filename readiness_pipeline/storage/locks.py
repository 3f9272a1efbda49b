"""
Per-key locks for read-modify-write sequences.

The database lock serializes single statements; a scan reads answers,
scores, and writes, so concurrent work on the same issue key needs its
own lock around the whole sequence.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """Lazily created re-entrant lock per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._get(key)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)

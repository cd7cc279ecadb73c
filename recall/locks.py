"""
In-process locks keyed by file path.

Each distinct key gets its own lock, created on first use and kept for
the life of the process. The number of keys is bounded by the number of
log files (one per day), so the map never needs pruning.
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class KeyedLocks:
    """A lazily grown map from key to ``threading.Lock``."""

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.Lock:
        """Return the lock for ``key``, creating it if needed."""
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self.get(key)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

"""
Per-key locking.

Shared maps (lockout records, rate counters) need an atomic
read-modify-write per key, while different keys must never wait on each
other. The registry lock is held only long enough to find or create the
key's lock.
"""

import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Hashable, Iterator


class KeyedLocks:
    def __init__(self):
        self._registry = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._holders: dict[Hashable, int] = defaultdict(int)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._registry:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._holders[key] += 1
        try:
            with lock:
                yield
        finally:
            with self._registry:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    # Nobody waiting: drop the lock so the map stays bounded
                    del self._holders[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._registry:
            return len(self._locks)

"""
locks.py — Per-key mutual exclusion for in-process writers.

Route handlers run on a worker thread pool, so two ingestions for the same
tenant/agent can be in flight at once. KeyedLock serializes them per key
while unrelated keys proceed in parallel. Entries are reference-counted and
dropped when the last holder leaves, so the table does not grow with the
number of tenants ever seen.

This only covers a single process. Cross-process safety comes from the
Report version check and the ScanRecord unique constraint in reports/store.py.
"""

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

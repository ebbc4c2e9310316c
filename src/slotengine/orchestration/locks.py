"""Per-case exclusive locks.

One re-entrant lock per case id, created on demand and dropped when its last
holder releases it. Distinct cases never contend.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class CaseLockManager:
    """Hands out per-case re-entrant locks."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}
        self._holders: dict[str, int] = {}

    @contextmanager
    def hold(self, case_id: str) -> Iterator[None]:
        """Hold the case's lock for the duration of the block.

        The same thread may re-enter (record_answer holds the lock while it
        runs a recalculation that takes it again).
        """
        with self._guard:
            lock = self._locks.get(case_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[case_id] = lock
            self._holders[case_id] = self._holders.get(case_id, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._holders[case_id] -= 1
                if self._holders[case_id] == 0:
                    del self._holders[case_id]
                    del self._locks[case_id]

    def active_cases(self) -> set[str]:
        """Case ids currently held or awaited."""
        with self._guard:
            return set(self._locks)

"""
Per-case serialization for the orchestrator.

Read-modify-write of a case's tasks, deadlines and escalations must not
interleave. Within one process this registry hands out one re-entrant lock
per case; across processes the repository transaction locks the case row.

Entries are reference-counted and dropped when the last holder leaves, so
the registry only holds cases that are currently being worked on.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class CaseLockRegistry:
    def __init__(self):
        self._guard = threading.Lock()
        # case_id -> [lock, number of holders and waiters]
        self._locks: Dict[str, List] = {}

    def _acquire_entry(self, case_id: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(case_id)
            if entry is None:
                entry = self._locks[case_id] = [threading.RLock(), 0]
            entry[1] += 1
            return entry[0]

    def _release_entry(self, case_id: str) -> None:
        with self._guard:
            entry = self._locks[case_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[case_id]

    @contextmanager
    def hold(self, case_id: str) -> Iterator[None]:
        lock = self._acquire_entry(case_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(case_id)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every orchestrator in the process
case_locks = CaseLockRegistry()

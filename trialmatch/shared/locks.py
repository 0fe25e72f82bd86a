"""
Per-record critical sections

Sync FastAPI endpoints run on a thread pool, so two tutors answering the same
outreach can reach the database at the same moment. Each session id gets its
own lock; sessions never wait on each other. Inside the lock the session row
is also re-read FOR UPDATE, which covers multiple worker processes on
PostgreSQL.

Tutor score writes span sessions, so they take a tutor lock as well. Order is
always tutor lock first, then session lock.

A lock lives only while someone holds or waits on it.
"""

import logging
from contextlib import contextmanager
from threading import Lock

logger = logging.getLogger(__name__)


class KeyedLockRegistry:
    def __init__(self, name: str):
        self.name = name
        self._locks: dict[int, Lock] = {}
        self._holders: dict[int, int] = {}
        self._guard = Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _acquire_slot(self, key: int) -> Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = Lock()
                self._locks[key] = lock
            self._holders[key] = self._holders.get(key, 0) + 1
            return lock

    def _release_slot(self, key: int) -> None:
        with self._guard:
            remaining = self._holders[key] - 1
            if remaining:
                self._holders[key] = remaining
            else:
                del self._holders[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: int):
        lock = self._acquire_slot(key)
        try:
            with lock:
                logger.debug(f"🔒 {self.name} {key} lock acquired")
                yield
            logger.debug(f"🔓 {self.name} {key} lock released")
        finally:
            self._release_slot(key)


session_locks = KeyedLockRegistry("Session")
tutor_locks = KeyedLockRegistry("Tutor")

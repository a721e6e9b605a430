# mlm_system/utils/member_locks.py
"""
Per-member locks for in-process serialization of wallet/matrix writes.

Database row locks (SELECT ... FOR UPDATE) cover multi-process deployments;
this registry covers threads of one process, including SQLite which has no
row locks. Locks are always taken in ascending userID order, so two steps
touching overlapping member sets never deadlock.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List
import logging

logger = logging.getLogger(__name__)


class MemberLocks:
    """Registry of re-entrant locks keyed by userID."""

    def __init__(self):
        self._locks: Dict[int, threading.RLock] = {}
        self._registryLock = threading.Lock()

    def _getLock(self, userId: int) -> threading.RLock:
        with self._registryLock:
            lock = self._locks.get(userId)
            if lock is None:
                lock = threading.RLock()
                self._locks[userId] = lock
            return lock

    @contextmanager
    def hold(self, userIds: Iterable[int]) -> Iterator[List[int]]:
        """
        Acquire locks of all given members in ascending order.

        Usage:
            with memberLocks.hold([referrerId, userId]):
                ledger.credit(...)
                session.commit()

        Yields:
            Sorted list of locked userIDs
        """
        ordered = sorted({userId for userId in userIds if userId is not None})
        acquired = []
        try:
            for userId in ordered:
                lock = self._getLock(userId)
                lock.acquire()
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()

    def __len__(self) -> int:
        return len(self._locks)


# Global instance shared by all services of the process
memberLocks = MemberLocks()

"""
Per-officer lock registry.

Appends for the same officer run one at a time inside this process; appends
for different officers do not block each other. Cross-process safety comes
from the row lock and the (officer_id, sequence) unique constraint.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator

from ledger.errors import OfficerBusyError

logger = logging.getLogger(__name__)


class OfficerLockRegistry:
    """Hands out one re-entrant lock per officer id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.RLock] = {}

    def lock_for(self, officer_id: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(officer_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[officer_id] = lock
            return lock

    @contextmanager
    def hold(self, officer_id: Hashable, timeout: float = 10.0) -> Iterator[None]:
        """
        Hold the officer's lock for the duration of the block.

        Raises:
            OfficerBusyError: If the lock is not acquired within timeout
        """
        lock = self.lock_for(officer_id)
        if not lock.acquire(timeout=timeout):
            logger.warning(f"Lock wait for officer {officer_id} exceeded {timeout}s")
            raise OfficerBusyError(officer_id, timeout)
        try:
            yield
        finally:
            lock.release()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

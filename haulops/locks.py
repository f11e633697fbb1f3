"""
Per-order serialization.

One exclusive lock per order id, shared by every thread in the process.
Entries are reference counted and dropped once nobody holds or waits on
them. Cross-process exclusion comes from SELECT ... FOR UPDATE on the order
row, taken after this lock.
"""
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from . import errors
from .config import get_settings
from .metrics import LOCK_WAIT, LOCK_TIMEOUTS

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class OrderLocks:
    def __init__(self) -> None:
        self._entries: Dict[int, _Entry] = {}
        self._guard = threading.Lock()

    def _checkout(self, order_id: int) -> _Entry:
        with self._guard:
            entry = self._entries.get(order_id)
            if entry is None:
                entry = self._entries[order_id] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, order_id: int, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(order_id, None)

    @contextmanager
    def hold(self, order_id: int, timeout: Optional[float] = None) -> Iterator[None]:
        if timeout is None:
            timeout = get_settings().ORDER_LOCK_TIMEOUT
        entry = self._checkout(order_id)
        started = time.monotonic()
        try:
            acquired = entry.lock.acquire(timeout=timeout)
            LOCK_WAIT.observe(time.monotonic() - started)
            if not acquired:
                LOCK_TIMEOUTS.inc()
                logger.warning("order %s lock not acquired within %.1fs", order_id, timeout)
                raise errors.ConcurrencyConflict("order is busy, retry the request", order_id=order_id)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(order_id, entry)

    def held_count(self) -> int:
        with self._guard:
            return len(self._entries)


order_locks = OrderLocks()


def order_lock(order_id: int, timeout: Optional[float] = None):
    return order_locks.hold(order_id, timeout=timeout)

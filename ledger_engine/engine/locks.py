"""
Per-customer mutation serialization.

Mutations of one customer's ledger run one at a time; mutations of
different customers run concurrently. Reads never take a lock.

A lock lives only while some task holds or waits for it, so the
registry does not grow with the number of customers ever touched.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog


logger = structlog.get_logger(__name__)


class CustomerLockRegistry:
    """Hands out one asyncio.Lock per customer id."""

    def __init__(self):
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, customer_id: int) -> asyncio.Lock:
        lock = self._locks.get(customer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[customer_id] = lock
        return lock

    def is_locked(self, customer_id: int) -> bool:
        lock = self._locks.get(customer_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, customer_id: int) -> AsyncIterator[None]:
        """Hold the customer's lock for the duration of the block."""
        lock = self.lock_for(customer_id)
        self._users[customer_id] = self._users.get(customer_id, 0) + 1
        try:
            if lock.locked():
                logger.debug("customer_lock_wait", customer_id=customer_id)
            async with lock:
                yield
        finally:
            self._users[customer_id] -= 1
            if not self._users[customer_id]:
                del self._users[customer_id]
                self._locks.pop(customer_id, None)

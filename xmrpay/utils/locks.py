"""
Per-invoice locks.

Serializes the read-existing-then-create-or-update step for one invoice
across concurrent reconciliation passes. The local variant covers a single
process; the Redis variant also covers worker processes.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from loguru import logger

from xmrpay.config.constants import (
    INVOICE_LOCK_BLOCKING_TIMEOUT,
    INVOICE_LOCK_KEY_PREFIX,
    INVOICE_LOCK_TIMEOUT,
)


class LocalInvoiceLocks:
    """In-process lock per invoice id."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, invoice_id: str) -> AsyncIterator[None]:
        """Hold the lock of an invoice for the duration of the block."""
        lock = self._locks.setdefault(invoice_id, asyncio.Lock())
        self._users[invoice_id] = self._users.get(invoice_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[invoice_id] -= 1
            if self._users[invoice_id] == 0:
                del self._users[invoice_id]
                del self._locks[invoice_id]

    def __len__(self) -> int:
        return len(self._locks)


class RedisInvoiceLocks:
    """Distributed lock per invoice id backed by Redis."""

    def __init__(
        self,
        redis_client: redis.Redis,
        timeout: int = INVOICE_LOCK_TIMEOUT,
        blocking_timeout: float = INVOICE_LOCK_BLOCKING_TIMEOUT,
        prefix: str = INVOICE_LOCK_KEY_PREFIX,
    ) -> None:
        """
        Initialize Redis locks.

        Args:
            redis_client: Async Redis client
            timeout: Lock expiry in seconds, guards against crashed holders
            blocking_timeout: Maximum time to wait for acquisition
            prefix: Key prefix of lock names
        """
        self.redis_client = redis_client
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.prefix = prefix

    @asynccontextmanager
    async def hold(self, invoice_id: str) -> AsyncIterator[None]:
        """
        Hold the lock of an invoice for the duration of the block.

        Raises:
            redis.exceptions.LockError: If the lock cannot be acquired in time
        """
        name = f"{self.prefix}:{invoice_id}"
        lock = self.redis_client.lock(
            name,
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        async with lock:
            logger.debug(f"Acquired invoice lock {name}")
            yield

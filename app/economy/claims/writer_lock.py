from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

import structlog
from redis.asyncio import Redis
from redis.exceptions import LockError

from app.economy.claims.errors import DependencyError

logger = structlog.get_logger(__name__)
PAYOUT_WRITER_LOCK_PREFIX = "payout-writer"


class PayoutWriterLock(Protocol):
    def hold(self, funding_address: str) -> AbstractAsyncContextManager[None]: ...


def _lock_name(funding_address: str) -> str:
    return f"{PAYOUT_WRITER_LOCK_PREFIX}:{funding_address.lower()}"


class LocalPayoutWriterLock:
    """Serializes payouts per funding wallet inside a single process."""

    def __init__(self, *, acquire_timeout_seconds: float = 120.0) -> None:
        self._acquire_timeout_seconds = acquire_timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, funding_address: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(_lock_name(funding_address), asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._acquire_timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.warning("payout_writer_lock_timeout", funding_address=funding_address)
            raise DependencyError from exc
        try:
            yield
        finally:
            lock.release()


class RedisPayoutWriterLock:
    """Serializes payouts per funding wallet across every API process.

    The lock TTL outlives the acquire timeout plus receipt wait so a crashed
    holder never blocks the wallet forever.
    """

    def __init__(
        self,
        redis_client: Redis,
        *,
        acquire_timeout_seconds: float = 120.0,
        hold_ttl_seconds: float = 600.0,
    ) -> None:
        self._redis = redis_client
        self._acquire_timeout_seconds = acquire_timeout_seconds
        self._hold_ttl_seconds = hold_ttl_seconds

    @asynccontextmanager
    async def hold(self, funding_address: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            _lock_name(funding_address),
            timeout=self._hold_ttl_seconds,
            blocking_timeout=self._acquire_timeout_seconds,
        )
        try:
            acquired = await lock.acquire()
        except Exception as exc:
            logger.warning(
                "payout_writer_lock_unavailable",
                funding_address=funding_address,
                error_type=type(exc).__name__,
            )
            raise DependencyError from exc
        if not acquired:
            logger.warning("payout_writer_lock_timeout", funding_address=funding_address)
            raise DependencyError
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("payout_writer_lock_expired", funding_address=funding_address)

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from app.db.session import dispose_engine

T = TypeVar("T")
logger = structlog.get_logger(__name__)


async def _run_with_fresh_db_pool(job: Callable[[], Awaitable[T]]) -> T:
    # Each asyncio.run gets a new loop, pooled asyncpg connections cannot cross it.
    await dispose_engine()
    try:
        return await job()
    finally:
        await dispose_engine()


def run_async_job(job: Callable[[], Awaitable[T]], *, name: str) -> T:
    started_at = time.perf_counter()
    try:
        return asyncio.run(_run_with_fresh_db_pool(job))
    finally:
        logger.info(
            "worker_job_finished",
            job=name,
            duration_ms=int((time.perf_counter() - started_at) * 1000),
        )

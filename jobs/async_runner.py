"""
Async runner for dramatiq tasks.

Dramatiq actors are synchronous; the sync engine is not. Each worker
thread keeps one event loop, and every task builds its own engine on
that loop so asyncpg connections never cross loops.
"""

import asyncio
import threading
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from loguru import logger

from jobs.utils.database import create_task_engine
from nftsync.config.settings import Settings
from nftsync.services.nft_sync.engine import SyncEngine
from nftsync.services.nft_sync.factory import build_sync_engine

T = TypeVar("T")

_thread_local = threading.local()


def get_event_loop() -> asyncio.AbstractEventLoop:
    """Get or create the event loop bound to the current worker thread."""
    loop = getattr(_thread_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.loop = loop
        logger.debug(
            f"[Tasks] Event loop created for {threading.current_thread().name}"
        )
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run a task body on the thread's event loop.

    Args:
        coro: Task coroutine

    Returns:
        Whatever the coroutine returns

    Raises:
        Exception: Re-raised from the coroutine so dramatiq can retry
    """
    loop = get_event_loop()
    try:
        return loop.run_until_complete(coro)
    except Exception as e:
        logger.exception(f"[Tasks] Task failed: {e}")
        raise


@asynccontextmanager
async def task_engine(settings: Settings) -> AsyncIterator[SyncEngine]:
    """
    Sync engine scoped to one task run.

    Uses a NullPool database engine, and always releases the lease,
    the RPC thread pool and the connections on exit.

    Usage:
        async with task_engine(settings) as engine:
            await engine.initialize()
            await engine.run_cycle()

    Yields:
        SyncEngine (not initialized)
    """
    engine = build_sync_engine(settings, db_engine=create_task_engine(settings))
    try:
        yield engine
    finally:
        await engine.cleanup()

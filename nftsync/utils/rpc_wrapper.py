"""
RPC Wrapper with Timeout and Retry Logic.

Provides centralized timeout and retry functionality for chain reads
and store writes issued by the sync engine.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from loguru import logger

from nftsync.config.constants import BLOCKCHAIN_TIMEOUT
from nftsync.utils.exceptions import TRANSIENT_ERRORS, ChainUnavailable

T = TypeVar("T")


async def with_timeout(
    coro: Awaitable[T],
    timeout: float = BLOCKCHAIN_TIMEOUT,
    operation_name: str = "RPC call",
) -> T:
    """
    Execute async coroutine with timeout.

    Args:
        coro: Coroutine to execute
        timeout: Timeout in seconds (default: BLOCKCHAIN_TIMEOUT)
        operation_name: Operation name for logging

    Returns:
        Result of the coroutine

    Raises:
        ChainUnavailable: If operation times out
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except TimeoutError as e:
        error_msg = f"{operation_name} timed out after {timeout}s"
        logger.error(error_msg)
        raise ChainUnavailable(error_msg) from e


async def call_with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    operation_name: str = "RPC call",
    retry_on: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Execute call with retry logic and exponential backoff.

    The first attempt is not a retry: up to ``max_retries`` further
    attempts follow it, waiting ``base_delay * 2**attempt`` in between.

    Args:
        coro_factory: Factory function that returns a coroutine
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry in seconds
        operation_name: Operation name for logging
        retry_on: Exception types that are retried
        sleep: Sleep function (injectable for tests)

    Returns:
        Result of the call

    Raises:
        The last error once retries are exhausted, or any error
        not listed in ``retry_on`` immediately
    """
    attempts = max_retries + 1

    for attempt in range(attempts):
        try:
            result = await coro_factory()

            if attempt > 0:
                logger.success(
                    f"{operation_name} succeeded on attempt {attempt + 1}"
                )

            return result

        except retry_on as e:
            if attempt >= attempts - 1:
                logger.error(
                    f"{operation_name} failed after {attempts} attempts: {e}"
                )
                raise

            delay = base_delay * (2 ** attempt)  # 1s, 2s, 4s, 8s...
            logger.warning(
                f"{operation_name} failed on attempt {attempt + 1}/{attempts}: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover

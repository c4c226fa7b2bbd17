"""Bounded fixed-delay retry for async operations.

:func:`retry_async` knows nothing about what it retries: it awaits a
zero-argument coroutine factory until one call succeeds or the retry budget
is spent.  Cancellation (``asyncio.CancelledError``) is never retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from lighthouse_batch.auditor.config import DEFAULT_RETRIES, DEFAULT_RETRY_DELAY_MS
from lighthouse_batch.core.exceptions import RetriesExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    retries: int = DEFAULT_RETRIES,
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    *,
    label: str | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Await ``operation()`` up to ``retries + 1`` times.

    The first successful result is returned immediately.  After each failed
    attempt the error is logged and, if attempts remain, the executor waits
    ``retry_delay_ms`` before trying again.  There is no wait after the final
    attempt.

    Args:
        operation: Zero-argument callable returning a fresh awaitable on
            every call.
        retries: Retries after the initial attempt.  ``0`` means one attempt.
        retry_delay_ms: Fixed delay between attempts, in milliseconds.
        label: Name used in log lines and in the final error (usually a URL).
        sleep: Awaitable sleep function; injectable for tests.

    Returns:
        The result of the first successful attempt.

    Raises:
        RetriesExhausted: If every attempt failed.  The last attempt's error
            is chained as ``__cause__``.
        ValueError: If ``retries`` or ``retry_delay_ms`` is negative.
    """
    if retries < 0:
        raise ValueError(f"retries must be >= 0, got {retries}")
    if retry_delay_ms < 0:
        raise ValueError(f"retry_delay_ms must be >= 0, got {retry_delay_ms}")

    attempt_count = 0
    while True:
        try:
            return await operation()
        except Exception as exc:  # noqa: BLE001
            attempt_count += 1
            logger.warning(
                "retry: %s failed (retry %d of %d): %s",
                label or "operation",
                attempt_count,
                retries,
                exc,
            )
            if attempt_count > retries:
                raise RetriesExhausted(retries, label) from exc
        await sleep(retry_delay_ms / 1000)

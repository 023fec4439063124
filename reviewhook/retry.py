"""Bounded exponential backoff for outbound calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_backoff(
    call: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    is_retryable: Callable[[Exception], bool],
    label: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``call`` up to ``attempts`` times, doubling the delay after each failure.

    Non-retryable errors and the error of the final attempt propagate unchanged.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await call()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt == attempts:
                logger.error("%s failed after %d attempts: %s", label, attempts, exc)
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(
                "%s error (attempt %d/%d): %s. Retrying in %.1fs...",
                label,
                attempt,
                attempts,
                exc,
                delay,
            )
            await sleep(delay)
    raise AssertionError("unreachable")

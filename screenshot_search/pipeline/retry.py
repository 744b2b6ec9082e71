"""Bounded exponential-backoff retry for remote model calls.

Shared by the upload, analyze and search paths. The operation is an opaque
zero-argument coroutine factory; the executor knows nothing about what it does.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from screenshot_search.config import MAX_RETRIES, RETRY_BASE_SECONDS

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryExecutor:
    """Run an async operation up to ``max_retries + 1`` times.

    Attempt ``k`` (0-indexed) that fails with ``k < max_retries`` waits
    ``initial_delay * 2**k`` seconds before the next attempt. No jitter.
    The last error is re-raised unchanged once attempts are exhausted.
    Exceptions not matching ``retry_on`` are raised on the spot.
    """

    def __init__(
        self,
        *,
        max_retries: int = MAX_RETRIES,
        initial_delay: float = RETRY_BASE_SECONDS,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._max_retries = max(0, max_retries)
        self._initial_delay = initial_delay
        self._retry_on = retry_on
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def delay_for(self, attempt: int) -> float:
        return self._initial_delay * (2**attempt)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(self._max_retries + 1):
            try:
                return await operation()
            except self._retry_on as e:
                if attempt >= self._max_retries:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Retry attempt %d/%d after %.2fs delay: %s",
                    attempt + 1,
                    self._max_retries,
                    delay,
                    e,
                )
                await self._sleep(delay)

        raise RuntimeError("Unreachable retry path")

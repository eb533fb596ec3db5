"""Exponential backoff for rate-limited relay requests."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .errors import is_rate_limit_error

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float = 2.0, max_delay: float = 10.0) -> float:
    """Delay before retrying after zero-indexed ``attempt``: 2s, 4s, 8s, capped."""
    return min(base_delay * (2**attempt), max_delay)


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = 10.0

    async def run(
        self, request_fn: Callable[[], Awaitable[T]], *, sleep: SleepFn = asyncio.sleep
    ) -> T:
        return await with_rate_limit_backoff(
            request_fn,
            self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            sleep=sleep,
        )


async def with_rate_limit_backoff(
    request_fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    *,
    base_delay: float = 2.0,
    max_delay: float = 10.0,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Invoke ``request_fn``, retrying HTTP 429 failures with exponential backoff.

    Args:
        request_fn: Zero-argument coroutine function performing the request.
        max_retries: Total attempts, including the first one.
        base_delay: Delay in seconds after the first rate-limited attempt.
        max_delay: Upper bound for any single delay.
        sleep: Awaitable sleep, injectable for tests.

    Raises:
        Any non rate-limit error immediately, or the last rate-limit error once
        all attempts are exhausted.
    """

    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    for attempt in range(max_retries):
        try:
            return await request_fn()
        except Exception as exc:
            if not is_rate_limit_error(exc) or attempt >= max_retries - 1:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            LOGGER.info(
                "Rate limited (attempt %d/%d), retrying in %.1fs",
                attempt + 1,
                max_retries,
                delay,
            )
            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover

"""In-flight request coalescing for idempotent relay reads.

Concurrent callers asking for the same endpoint and parameters share a single
network call. The shared entry lives only while the request is pending: it is
removed as soon as the request settles, so the next caller always starts a
fresh request instead of reusing a stale result.

Key features:
- One pending task per key; all sharers see the same value or exception
- Caller cancellation is isolated from the shared request (``asyncio.shield``)
- Explicit owner and lifecycle (``clear()`` on teardown), no module globals
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def make_cache_key(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Build a canonical key from an endpoint name and its parameters."""

    serialized = json.dumps(
        dict(params or {}), sort_keys=True, separators=(",", ":"), default=str
    )
    return f"{endpoint}_{serialized}"


class InFlightRequestCache:
    """
    Tracks pending requests by key so identical concurrent reads coalesce.

    Usage:
        cache = InFlightRequestCache()

        key = make_cache_key("robot-info", {"serial": serial, "timeout": 10})
        info = await cache.dedupe(key, lambda: client.get_info(serial))

    Backoff belongs inside ``request_fn`` so that callers joining during a
    retry window wait on the one retrying attempt.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, asyncio.Task[Any]] = {}

    async def dedupe(self, key: str, request_fn: Callable[[], Awaitable[T]]) -> T:
        """
        Return the result of the pending request for ``key``, starting one if needed.

        Cancelling this coroutine only detaches the caller; the shared request
        keeps running for any other caller awaiting the same key.
        """
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._execute(key, request_fn))
            task.add_done_callback(_consume_exception)
            self._pending[key] = task
        else:
            LOGGER.debug("Joining in-flight request %s", key)

        return await asyncio.shield(task)

    async def _execute(self, key: str, request_fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await request_fn()
        finally:
            if self._pending.get(key) is asyncio.current_task():
                del self._pending[key]

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    @property
    def pending_count(self) -> int:
        """Get current number of in-flight requests."""
        return len(self._pending)

    def clear(self) -> None:
        """Cancel and forget every pending request. Used on teardown."""
        pending = list(self._pending.values())
        self._pending.clear()
        for task in pending:
            task.cancel()
        if pending:
            LOGGER.debug("Cancelled %d in-flight requests", len(pending))


def _consume_exception(task: asyncio.Task[Any]) -> None:
    # Every caller may have detached before settlement; retrieve the error so
    # asyncio does not report it as never retrieved.
    if not task.cancelled():
        task.exception()

"""Composition root wiring the relay client, poller and dispatcher together."""

from __future__ import annotations

import logging
from typing import Optional

import aiohttp

from .adapters import CLIENT_TIMEOUT_GRACE_SECONDS, RelayClient
from .commands import CommandDispatcher
from .config import RelayAppConfig
from .core import BackoffPolicy, InFlightRequestCache, NotifyCallback
from .telemetry import StatusPoller

LOGGER = logging.getLogger(__name__)


class RobotRelayApp:
    """Owns the shared resources of one relay session.

    A single ``InFlightRequestCache`` is created per app and shared by every
    component that reads through the relay client. ``close()`` stops all poll
    subscriptions, cancels pending shared requests and closes the HTTP session.
    """

    def __init__(
        self,
        config: RelayAppConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        notify: Optional[NotifyCallback] = None,
    ) -> None:
        self.config = config
        self.request_cache = InFlightRequestCache()

        backoff = BackoffPolicy(
            max_retries=config.backoff.max_retries,
            base_delay=config.backoff.base_delay_seconds,
            max_delay=config.backoff.max_delay_seconds,
        )
        self.client = RelayClient(
            config.relay,
            session=session,
            request_cache=self.request_cache,
            backoff=backoff,
        )
        self.poller = StatusPoller(
            self.client.fetch_robot_info,
            interval_seconds=config.polling.interval_seconds,
            request_timeout_seconds=config.polling.request_timeout_seconds,
            stale_after_intervals=config.polling.stale_after_intervals,
            client_grace_seconds=CLIENT_TIMEOUT_GRACE_SECONDS,
        )
        self.dispatcher = CommandDispatcher(
            self.client, lang=config.relay.lang, notify=notify
        )
        self._closed = False

    async def __aenter__(self) -> "RobotRelayApp":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        LOGGER.debug(
            "Closing relay app (subscriptions=%d, in-flight=%d)",
            self.poller.active_subscriptions,
            self.request_cache.pending_count,
        )
        await self.poller.stop()
        self.request_cache.clear()
        await self.client.aclose()

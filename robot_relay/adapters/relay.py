"""Robot relay adapter providing HTTP helpers for telemetry and commands."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional
from urllib.parse import quote

import aiohttp

from .. import constants
from ..config import RelayConfig
from ..core import (
    BackoffPolicy,
    InFlightRequestCache,
    MalformedResponseError,
    RateLimitedError,
    RelayHTTPError,
    make_cache_key,
)
from ..core.backoff import SleepFn

LOGGER = logging.getLogger(__name__)

# Extra client-side allowance on top of the timeout the backend is asked to honour.
CLIENT_TIMEOUT_GRACE_SECONDS = 2.0


class RelayClient:
    """Non-blocking client for the robot relay backend.

    Robot info reads are idempotent: they are coalesced through the shared
    ``InFlightRequestCache`` and retried on HTTP 429 by the backoff policy.
    Command posts are retried on 429 only; they are never coalesced.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        request_cache: Optional[InFlightRequestCache] = None,
        backoff: Optional[BackoffPolicy] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self.config = config
        self.request_cache = request_cache or InFlightRequestCache()
        self.backoff = backoff or BackoffPolicy()

        self._base_url = self.config.base_url.rstrip("/")
        self._headers = {"Accept": "application/json"}
        if self.config.api_token:
            self._headers["Authorization"] = f"Bearer {self.config.api_token}"

        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None
        self._sleep = sleep or asyncio.sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def fetch_robot_info(self, serial: str, timeout: float = 10.0) -> Any:
        """Fetch the raw telemetry payload for ``serial``.

        Args:
            serial: Robot serial number.
            timeout: Seconds the backend may wait for the robot (sent as the
                ``timeout`` query parameter). The client gives up after
                ``timeout + CLIENT_TIMEOUT_GRACE_SECONDS``.

        Raises:
            asyncio.TimeoutError: If the request exceeds the client-side bound.
            RelayHTTPError: For non-2xx responses (``RateLimitedError`` for 429
                once retries are exhausted).
            MalformedResponseError: If the body is not JSON.
        """

        if not serial or not serial.strip():
            raise ValueError("Serial cannot be empty")

        serial = serial.strip()
        key = make_cache_key(
            constants.ROBOT_INFO_ENDPOINT, {"serial": serial, "timeout": timeout}
        )

        async def request() -> Any:
            return await self.backoff.run(
                lambda: self._get_robot_info(serial, timeout), sleep=self._sleep
            )

        return await self.request_cache.dedupe(key, request)

    async def send_command(self, serial: str, body: Mapping[str, Any]) -> Any:
        """Post a command envelope to ``/websocket/command/{serial}``.

        Returns the decoded acknowledgment payload without interpreting it.
        """

        if not serial or not serial.strip():
            raise ValueError("Serial cannot be empty")

        serial = serial.strip()
        return await self.backoff.run(
            lambda: self._post_command(serial, body), sleep=self._sleep
        )

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=None)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    def _url(self, template: str, serial: str) -> str:
        return self._base_url + template.format(serial=quote(serial, safe=""))

    async def _get_robot_info(self, serial: str, timeout: float) -> Any:
        session = await self._ensure_session()
        url = self._url(constants.ROBOT_INFO_PATH, serial)
        params = {"timeout": _format_timeout(timeout)}

        try:
            async with asyncio.timeout(timeout + CLIENT_TIMEOUT_GRACE_SECONDS):
                async with session.get(
                    url, params=params, headers=self._headers
                ) as response:
                    await _raise_for_status(response, url)
                    return await _read_json(response, url)
        except asyncio.TimeoutError:
            LOGGER.warning(
                "Robot info request timed out after %.1fs (serial=%s)",
                timeout + CLIENT_TIMEOUT_GRACE_SECONDS,
                serial,
            )
            raise

    async def _post_command(self, serial: str, body: Mapping[str, Any]) -> Any:
        session = await self._ensure_session()
        url = self._url(constants.COMMAND_PATH, serial)

        headers = dict(self._headers)
        headers["Content-Type"] = "application/json"

        async with session.post(url, json=dict(body), headers=headers) as response:
            await _raise_for_status(response, url)
            payload = await _read_json(response, url)

        LOGGER.debug("Relay command response for %s: %s", serial, payload)
        return payload


def _format_timeout(timeout: float) -> str:
    return str(int(timeout)) if float(timeout).is_integer() else str(timeout)


async def _raise_for_status(response: aiohttp.ClientResponse, url: str) -> None:
    if 200 <= response.status < 300:
        return
    detail = (await response.text()).strip()
    if response.status == 429:
        raise RateLimitedError(detail, url=url)
    raise RelayHTTPError(response.status, detail, url=url)


async def _read_json(response: aiohttp.ClientResponse, url: str) -> Any:
    try:
        return await response.json(content_type=None)
    except ValueError as exc:
        raise MalformedResponseError(f"Relay returned invalid JSON from {url}") from exc

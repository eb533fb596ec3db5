"""Exception hierarchy for relay transport, parsing and command validation."""

from __future__ import annotations

import asyncio
from typing import Any, Optional


class RelayError(RuntimeError):
    """Base class for failures talking to the robot relay backend."""


class RelayHTTPError(RelayError):
    """Raised when the relay answers with a non-2xx status."""

    def __init__(self, status: int, detail: str = "", *, url: Optional[str] = None) -> None:
        message = f"Relay request failed with status {status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.status = status
        self.detail = detail
        self.url = url


class RateLimitedError(RelayHTTPError):
    """Raised for HTTP 429 responses."""

    def __init__(self, detail: str = "", *, url: Optional[str] = None) -> None:
        super().__init__(429, detail, url=url)


class MalformedResponseError(RelayError):
    """Raised when a payload does not match any known response shape."""

    def __init__(self, message: str, *, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class RobotUnavailableError(RelayError):
    """Raised when the relay reports an error status for a robot query."""


class CommandValidationError(ValueError):
    """Raised when a dispatch request is rejected before reaching the transport."""


def is_rate_limit_error(exc: BaseException) -> bool:
    """Return True for HTTP 429 class failures.

    Accepts our own ``RateLimitedError`` as well as any exception carrying a
    ``status`` attribute of 429 (e.g. ``aiohttp.ClientResponseError``).
    """

    if isinstance(exc, RateLimitedError):
        return True
    return getattr(exc, "status", None) == 429


def describe_error(exc: BaseException) -> str:
    """Short human-readable reason for a failure."""

    if isinstance(exc, TimeoutError):
        return "Request timed out"
    if isinstance(exc, asyncio.CancelledError):
        return "Request cancelled"
    return str(exc) or exc.__class__.__name__

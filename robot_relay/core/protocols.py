"""Protocol definitions for relay transports and notification callbacks."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Protocol

from .models import CommandOutcome


NotifyCallback = Callable[[CommandOutcome], Awaitable[None] | None]


class RobotRelayTransport(Protocol):
    """Minimal contract for components that reach the robot relay backend."""

    async def fetch_robot_info(self, serial: str, timeout: float = 10.0) -> Any:
        """Return the raw ``/robot/info/{serial}`` payload.

        Args:
            serial: Robot serial number.
            timeout: Seconds the backend may wait for the robot to answer.
        """
        ...

    async def send_command(self, serial: str, body: Mapping[str, Any]) -> Any:
        """Post a command envelope and return the raw acknowledgment payload."""
        ...

    async def aclose(self) -> None:
        """Close any underlying resources."""
        ...

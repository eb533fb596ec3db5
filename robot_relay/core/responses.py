"""Validation of relay payloads into typed responses.

Every payload crossing the transport boundary is checked here once. Shapes
that do not match a known variant raise ``MalformedResponseError`` instead of
being coerced into a success further down the line.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from .errors import MalformedResponseError, RobotUnavailableError
from .models import CommandAck, OutcomeStatus, RobotStatus

LOGGER = logging.getLogger(__name__)

_ERROR_STATUS = "error"


def parse_battery_level(value: Any) -> Optional[int]:
    """Coerce a wire battery value ("85", 85, 85.0) into 0..100 or None."""

    if value is None or isinstance(value, bool):
        return None
    try:
        level = int(float(str(value).strip().rstrip("%")))
    except (TypeError, ValueError, OverflowError):
        return None
    return max(0, min(100, level))


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_robot_info(
    payload: Any, *, requested_serial: str, observed_at: datetime
) -> RobotStatus:
    """Validate a ``/robot/info`` payload and build a ``RobotStatus``.

    The requested serial is authoritative; a differing ``serial_number`` in the
    body is logged and ignored so results are never attributed to another robot.
    """

    if not isinstance(payload, Mapping):
        raise MalformedResponseError(
            "Robot info response is not an object", payload=payload
        )

    if payload.get("status") == _ERROR_STATUS:
        message = _optional_str(payload.get("message")) or "Robot unavailable"
        raise RobotUnavailableError(message)

    data = payload.get("data")
    if not isinstance(data, Mapping):
        raise MalformedResponseError(
            "Robot info response has no data object", payload=payload
        )

    reported_serial = _optional_str(data.get("serial_number"))
    if reported_serial and reported_serial != requested_serial:
        LOGGER.warning(
            "Robot info for %s reported serial %s; keeping requested serial",
            requested_serial,
            reported_serial,
        )

    return RobotStatus(
        serial=requested_serial,
        observed_at=observed_at,
        battery_level=parse_battery_level(data.get("battery_level")),
        is_charging=data.get("is_charging") is True,
        firmware_version=_optional_str(data.get("firmware_version")),
        control_version=_optional_str(data.get("ctrl_version")),
    )


def parse_command_ack(payload: Any) -> CommandAck:
    """Validate a ``/websocket/command`` acknowledgment."""

    if not isinstance(payload, Mapping):
        raise MalformedResponseError(
            "Command acknowledgment is not an object", payload=payload
        )

    try:
        status = OutcomeStatus(payload.get("status"))
    except ValueError:
        raise MalformedResponseError(
            f"Unknown command status {payload.get('status')!r}", payload=payload
        ) from None

    command = payload.get("command")
    if command is None:
        command = {}
    if not isinstance(command, Mapping):
        raise MalformedResponseError(
            "Command echo is not an object", payload=payload
        )

    active_clients = payload.get("active_clients", 0)
    if isinstance(active_clients, bool) or not isinstance(active_clients, int):
        raise MalformedResponseError(
            "active_clients is not an integer", payload=payload
        )

    return CommandAck(
        status=status,
        to=_optional_str(payload.get("to")),
        command=dict(command),
        active_clients=active_clients,
    )

"""Command dispatch to one or many robots through the backend relay."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

from .core.errors import (
    CommandValidationError,
    MalformedResponseError,
    describe_error,
)
from .core.models import (
    LANG_COMMAND_TYPES,
    CommandOutcome,
    CommandRequest,
    CommandType,
    OutcomeStatus,
)
from .core.protocols import NotifyCallback, RobotRelayTransport
from .core.responses import parse_command_ack

LOGGER = logging.getLogger(__name__)

COMMAND_SENT_MESSAGE = "Gửi lệnh thành công!"
COMMAND_FAILED_MESSAGE = "Gửi lệnh thất bại!"
COMMAND_UNREACHABLE_MESSAGE = "Gửi lệnh thất bại! Không thể kết nối đến robot."
COMMAND_UNRECOGNIZED_MESSAGE = "Phản hồi không xác định từ robot."

WEBRTC_SENT_TEMPLATE = "{action} WebRTC thành công!"
WEBRTC_FAILED_TEMPLATE = "{action} WebRTC thất bại!"
WEBRTC_UNREACHABLE_TEMPLATE = "{action} WebRTC thất bại! Không thể kết nối đến robot."
WEBRTC_UNRECOGNIZED_MESSAGE = "Phản hồi WebRTC không xác định từ robot."

WEBRTC_ACTION_LABELS = {
    CommandType.WEBRTC_START: "bắt đầu",
    CommandType.WEBRTC_STOP: "dừng",
}

# Outcome kinds used to pick a message template.
SENT = "sent"
FAILED = "failed"
UNREACHABLE = "unreachable"
UNRECOGNIZED = "unrecognized"


def outcome_message(command_type: CommandType, kind: str) -> str:
    """Return the user-facing notification text for an outcome kind."""

    if command_type.is_webrtc:
        action = WEBRTC_ACTION_LABELS[command_type]
        if kind == SENT:
            return WEBRTC_SENT_TEMPLATE.format(action=action)
        if kind == FAILED:
            return WEBRTC_FAILED_TEMPLATE.format(action=action)
        if kind == UNREACHABLE:
            return WEBRTC_UNREACHABLE_TEMPLATE.format(action=action)
        return WEBRTC_UNRECOGNIZED_MESSAGE

    return {
        SENT: COMMAND_SENT_MESSAGE,
        FAILED: COMMAND_FAILED_MESSAGE,
        UNREACHABLE: COMMAND_UNREACHABLE_MESSAGE,
    }.get(kind, COMMAND_UNRECOGNIZED_MESSAGE)


def normalize_serials(serials: Union[str, Iterable[str]]) -> List[str]:
    """Normalise one serial or an iterable of serials into a non-empty list."""

    if isinstance(serials, str):
        candidates: Iterable[Any] = [serials]
    elif serials is None:
        candidates = []
    else:
        candidates = serials

    targets: List[str] = []
    for serial in candidates:
        if not isinstance(serial, str) or not serial.strip():
            raise CommandValidationError(f"Invalid robot serial: {serial!r}")
        normalized = serial.strip()
        if normalized not in targets:
            targets.append(normalized)

    if not targets:
        raise CommandValidationError("At least one robot serial is required")
    return targets


def coerce_command_type(command_type: Union[CommandType, str]) -> CommandType:
    if isinstance(command_type, CommandType):
        return command_type
    try:
        return CommandType(str(command_type).strip())
    except ValueError:
        raise CommandValidationError(
            f"Unsupported command type: {command_type!r}"
        ) from None


class CommandDispatcher:
    """Relays commands to robots and reports one outcome per target.

    Targets are dispatched concurrently and independently: a failure for one
    robot becomes a FAILED outcome for that robot and never affects the others.
    Notification is optional so the dispatcher works headlessly.
    """

    def __init__(
        self,
        transport: RobotRelayTransport,
        *,
        lang: Optional[str] = "vi",
        notify: Optional[NotifyCallback] = None,
    ) -> None:
        self._transport = transport
        self._lang = lang
        self._notify = notify

    async def dispatch(
        self,
        serials: Union[str, Iterable[str]],
        command_type: Union[CommandType, str],
        payload: Optional[Mapping[str, Any]] = None,
    ) -> List[CommandOutcome]:
        """Send ``command_type`` with ``payload`` to every serial.

        Raises:
            CommandValidationError: If no valid serial is given, the type is
                unknown or the payload is not a mapping. Nothing is sent then.
        """

        targets = normalize_serials(serials)
        resolved_type = coerce_command_type(command_type)
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise CommandValidationError("Command payload must be an object")

        lang = self._lang if resolved_type in LANG_COMMAND_TYPES else None
        requests = [
            CommandRequest(
                target_serial=serial,
                type=resolved_type,
                payload=dict(payload),
                lang=lang,
            )
            for serial in targets
        ]

        outcomes = await asyncio.gather(
            *(self._dispatch_one(request) for request in requests)
        )
        return list(outcomes)

    async def send_action(
        self,
        serials: Union[str, Iterable[str]],
        code: str,
        command_type: Union[CommandType, str] = CommandType.ACTION,
    ) -> List[CommandOutcome]:
        """Send an activity code (action, expression, skill helper, ...)."""
        if not code or not str(code).strip():
            raise CommandValidationError("Activity code cannot be empty")
        return await self.dispatch(serials, command_type, {"code": str(code).strip()})

    async def send_webrtc(
        self, serials: Union[str, Iterable[str]], *, start: bool = True
    ) -> List[CommandOutcome]:
        command_type = CommandType.WEBRTC_START if start else CommandType.WEBRTC_STOP
        return await self.dispatch(serials, command_type, {})

    async def _dispatch_one(self, request: CommandRequest) -> CommandOutcome:
        serial = request.target_serial
        raw: Any = None

        try:
            raw = await self._transport.send_command(serial, request.body())
            ack = parse_command_ack(raw)
        except asyncio.CancelledError:
            raise
        except MalformedResponseError as exc:
            LOGGER.warning(
                "Unrecognized %s response from %s: %s", request.type.value, serial, exc
            )
            outcome = self._outcome(request, OutcomeStatus.FAILED, UNRECOGNIZED, raw, str(exc))
        except Exception as exc:
            LOGGER.warning(
                "Failed to send %s to %s: %s", request.type.value, serial, describe_error(exc)
            )
            outcome = self._outcome(
                request, OutcomeStatus.FAILED, UNREACHABLE, None, describe_error(exc)
            )
        else:
            if ack.status is OutcomeStatus.SENT:
                LOGGER.info(
                    "Sent %s to %s (active_clients=%d)",
                    request.type.value,
                    serial,
                    ack.active_clients,
                )
                outcome = self._outcome(request, OutcomeStatus.SENT, SENT, raw)
            else:
                LOGGER.warning("Relay reported %s to %s failed", request.type.value, serial)
                outcome = self._outcome(
                    request, OutcomeStatus.FAILED, FAILED, raw, "Relay reported failure"
                )

        await self._emit(outcome)
        return outcome

    @staticmethod
    def _outcome(
        request: CommandRequest,
        status: OutcomeStatus,
        kind: str,
        raw: Any,
        error: Optional[str] = None,
    ) -> CommandOutcome:
        return CommandOutcome(
            target_serial=request.target_serial,
            command_type=request.type,
            status=status,
            message=outcome_message(request.type, kind),
            raw_response=raw,
            error=error,
        )

    async def _emit(self, outcome: CommandOutcome) -> None:
        if self._notify is None:
            return
        try:
            result = self._notify(outcome)
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception(
                "Command notification callback failed (serial=%s)", outcome.target_serial
            )

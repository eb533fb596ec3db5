"""Domain models for robot telemetry and command relay."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional


class RobotState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    CHARGING = "charging"


class BatteryTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    UNKNOWN = "unknown"


LOW_BATTERY_THRESHOLD = 20
MEDIUM_BATTERY_THRESHOLD = 50


class CommandType(str, Enum):
    """Command categories understood by the relay."""

    ACTION = "action"
    EXPRESSION = "expression"
    SKILL_HELPER = "skill_helper"
    EXTENDED_ACTION = "extended_action"
    PROCESS_TEXT = "process-text"
    WEBRTC_START = "webrtc_start"
    WEBRTC_STOP = "webrtc_stop"
    DANCE = "dance"
    SKILL = "skill"
    TTS = "tts"
    STOP_ALL_ACTIONS = "stop_all_actions"
    SUBMISSION_START = "submission_start"
    SUBMISSION_END = "submission_end"

    @property
    def is_webrtc(self) -> bool:
        return self in (CommandType.WEBRTC_START, CommandType.WEBRTC_STOP)


# Command types whose envelope carries a language tag.
LANG_COMMAND_TYPES = frozenset(
    {
        CommandType.PROCESS_TEXT,
        CommandType.TTS,
        CommandType.WEBRTC_START,
        CommandType.WEBRTC_STOP,
        CommandType.SUBMISSION_START,
        CommandType.SUBMISSION_END,
    }
)


class OutcomeStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RobotStatus:
    """Last observed telemetry snapshot for one robot."""

    serial: str
    observed_at: datetime
    battery_level: Optional[int] = None
    is_charging: bool = False
    firmware_version: Optional[str] = None
    control_version: Optional[str] = None

    def is_stale(self, now: Optional[datetime] = None, *, stale_after: timedelta) -> bool:
        current = now or datetime.now(timezone.utc)
        return current - self.observed_at > stale_after

    def state_at(
        self, now: Optional[datetime] = None, *, stale_after: timedelta
    ) -> RobotState:
        if self.is_stale(now, stale_after=stale_after):
            return RobotState.OFFLINE
        if self.is_charging:
            return RobotState.CHARGING
        return RobotState.ONLINE

    @property
    def battery_tier(self) -> BatteryTier:
        if self.battery_level is None:
            return BatteryTier.UNKNOWN
        if self.battery_level <= LOW_BATTERY_THRESHOLD:
            return BatteryTier.LOW
        if self.battery_level <= MEDIUM_BATTERY_THRESHOLD:
            return BatteryTier.MEDIUM
        return BatteryTier.HIGH


@dataclass(frozen=True, slots=True)
class CommandRequest:
    target_serial: str
    type: CommandType
    payload: Dict[str, Any] = field(default_factory=dict)
    lang: Optional[str] = None

    def body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"type": self.type.value, "data": dict(self.payload)}
        if self.lang:
            body["lang"] = self.lang
        return body


@dataclass(frozen=True, slots=True)
class CommandAck:
    """Acknowledgment returned by the command relay."""

    status: OutcomeStatus
    to: Optional[str]
    command: Dict[str, Any]
    active_clients: int


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    target_serial: str
    command_type: CommandType
    status: OutcomeStatus
    message: str
    raw_response: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SENT

"""Robot telemetry polling."""

from .poller import (
    UNKNOWN_BATTERY_DISPLAY,
    PollGroup,
    PolledInfo,
    PollSubscription,
    RobotStatusView,
    StatusPoller,
)

__all__ = [
    "UNKNOWN_BATTERY_DISPLAY",
    "PollGroup",
    "PolledInfo",
    "PollSubscription",
    "RobotStatusView",
    "StatusPoller",
]

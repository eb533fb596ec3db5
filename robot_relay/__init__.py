"""Robot telemetry polling and command relay client."""

from .app import RobotRelayApp
from .commands import CommandDispatcher
from .core import (
    CommandOutcome,
    CommandType,
    InFlightRequestCache,
    OutcomeStatus,
    RobotState,
    RobotStatus,
    with_rate_limit_backoff,
)
from .telemetry import PollGroup, PollSubscription, RobotStatusView, StatusPoller

__version__ = "0.1.0"

__all__ = [
    "CommandDispatcher",
    "CommandOutcome",
    "CommandType",
    "InFlightRequestCache",
    "OutcomeStatus",
    "PollGroup",
    "PollSubscription",
    "RobotRelayApp",
    "RobotState",
    "RobotStatus",
    "RobotStatusView",
    "StatusPoller",
    "with_rate_limit_backoff",
]

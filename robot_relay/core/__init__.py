"""Core primitives for robot-relay."""

from .backoff import BackoffPolicy, backoff_delay, with_rate_limit_backoff
from .errors import (
    CommandValidationError,
    MalformedResponseError,
    RateLimitedError,
    RelayError,
    RelayHTTPError,
    RobotUnavailableError,
    describe_error,
    is_rate_limit_error,
)
from .models import (
    BatteryTier,
    CommandAck,
    CommandOutcome,
    CommandRequest,
    CommandType,
    OutcomeStatus,
    RobotState,
    RobotStatus,
)
from .protocols import NotifyCallback, RobotRelayTransport
from .request_cache import InFlightRequestCache, make_cache_key

__all__ = [
    "BackoffPolicy",
    "BatteryTier",
    "CommandAck",
    "CommandOutcome",
    "CommandRequest",
    "CommandType",
    "CommandValidationError",
    "InFlightRequestCache",
    "MalformedResponseError",
    "NotifyCallback",
    "OutcomeStatus",
    "RateLimitedError",
    "RelayError",
    "RelayHTTPError",
    "RobotRelayTransport",
    "RobotState",
    "RobotStatus",
    "RobotUnavailableError",
    "backoff_delay",
    "describe_error",
    "is_rate_limit_error",
    "make_cache_key",
    "with_rate_limit_backoff",
]

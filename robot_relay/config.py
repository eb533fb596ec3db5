"""Configuration loader for robot-relay."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants

DEFAULT_POLL_INTERVAL_SECONDS: float = 5.0
DEFAULT_REQUEST_TIMEOUT_SECONDS: float = 10.0
DEFAULT_STALE_AFTER_INTERVALS: float = 3.0


@dataclass(slots=True)
class RelayConfig:
    base_url: str = constants.DEFAULT_RELAY_BASE_URL
    api_token: Optional[str] = None  # Sent as a bearer token when present
    lang: str = constants.DEFAULT_COMMAND_LANG


@dataclass(slots=True)
class PollingConfig:
    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    stale_after_intervals: float = DEFAULT_STALE_AFTER_INTERVALS


@dataclass(slots=True)
class BackoffConfig:
    max_retries: int = 3
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 10.0


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH
    log_network: bool = False


@dataclass(slots=True)
class RelayAppConfig:
    relay: RelayConfig
    polling: PollingConfig
    backoff: BackoffConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path


def _positive_float(parser: ConfigParser, section: str, key: str, default: float) -> float:
    try:
        value = parser.getfloat(section, key, fallback=default)
    except ValueError:
        return default
    return value if value > 0 else default


def load_config(path: Optional[Path] = None) -> RelayAppConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "relay": {
                "base_url": constants.DEFAULT_RELAY_BASE_URL,
                "lang": constants.DEFAULT_COMMAND_LANG,
            },
            "polling": {
                "interval_seconds": str(DEFAULT_POLL_INTERVAL_SECONDS),
                "request_timeout_seconds": str(DEFAULT_REQUEST_TIMEOUT_SECONDS),
                "stale_after_intervals": str(DEFAULT_STALE_AFTER_INTERVALS),
            },
            "backoff": {
                "max_retries": "3",
                "base_delay_seconds": "2.0",
                "max_delay_seconds": "10.0",
            },
            "logging": {
                "level": "INFO",
                "path": str(constants.DEFAULT_LOG_PATH),
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    api_token = parser.get("relay", "api_token", fallback=None)

    relay = RelayConfig(
        base_url=parser.get("relay", "base_url").rstrip("/"),
        api_token=api_token.strip() if api_token and api_token.strip() else None,
        lang=parser.get("relay", "lang", fallback=constants.DEFAULT_COMMAND_LANG),
    )

    polling = PollingConfig(
        interval_seconds=_positive_float(
            parser, "polling", "interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS
        ),
        request_timeout_seconds=_positive_float(
            parser,
            "polling",
            "request_timeout_seconds",
            DEFAULT_REQUEST_TIMEOUT_SECONDS,
        ),
        stale_after_intervals=max(
            1.0,
            _positive_float(
                parser,
                "polling",
                "stale_after_intervals",
                DEFAULT_STALE_AFTER_INTERVALS,
            ),
        ),
    )

    backoff_defaults = BackoffConfig()

    backoff = BackoffConfig(
        max_retries=max(
            1,
            parser.getint(
                "backoff", "max_retries", fallback=backoff_defaults.max_retries
            ),
        ),
        base_delay_seconds=max(
            0.0,
            parser.getfloat(
                "backoff",
                "base_delay_seconds",
                fallback=backoff_defaults.base_delay_seconds,
            ),
        ),
        max_delay_seconds=max(
            0.0,
            parser.getfloat(
                "backoff",
                "max_delay_seconds",
                fallback=backoff_defaults.max_delay_seconds,
            ),
        ),
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return RelayAppConfig(
        relay=relay,
        polling=polling,
        backoff=backoff,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )


def save_config(config: RelayAppConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)

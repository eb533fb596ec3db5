"""Logging setup for the robot-relay CLI and for applications embedding it."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# aiohttp loggers that flood the output with per-request records.
_NETWORK_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.internal")
_RELAY_ADAPTER_LOGGER = "robot_relay.adapters"

_MAX_LOG_BYTES = 2 * 1024 * 1024
_LOG_BACKUPS = 3


def resolve_level(level: Union[str, int]) -> int:
    """Map a level name such as ``"debug"`` to its numeric value, INFO if unknown."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(
    level: Union[str, int] = "INFO",
    *,
    log_path: Optional[Path] = None,
    log_network: bool = False,
) -> None:
    """Install console (and optionally rotating file) handlers on the root logger.

    With ``log_network`` the relay adapter logs every request at DEBUG and the
    aiohttp loggers are left untouched; otherwise aiohttp is capped at WARNING.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    logging.captureWarnings(True)
    logging.basicConfig(level=resolve_level(level), format=LOG_FORMAT)

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=_MAX_LOG_BYTES, backupCount=_LOG_BACKUPS, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    if log_network:
        logging.getLogger(_RELAY_ADAPTER_LOGGER).setLevel(logging.DEBUG)
        return

    logging.getLogger(_RELAY_ADAPTER_LOGGER).setLevel(logging.NOTSET)
    for name in _NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

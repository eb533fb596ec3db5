"""Constants used across the robot-relay package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "robot-relay"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_LOG_PATH = Path.home() / ".local" / "state" / APP_NAME / f"{APP_NAME}.log"

DEFAULT_RELAY_BASE_URL = "http://localhost:8000"
DEFAULT_COMMAND_LANG = "vi"

ROBOT_INFO_PATH = "/robot/info/{serial}"
COMMAND_PATH = "/websocket/command/{serial}"
ROBOT_INFO_ENDPOINT = "robot-info"

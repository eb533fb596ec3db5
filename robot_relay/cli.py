"""Command-line interface for robot-relay."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from . import constants
from .app import RobotRelayApp
from .config import RelayAppConfig, load_config
from .core import CommandOutcome, CommandType, RobotState
from .logging import configure_logging
from .telemetry import RobotStatusView

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="robot-relay", description="Robot telemetry and command relay client"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Fetch robot status once")
    status_parser.add_argument("serials", nargs="+", metavar="SERIAL")

    watch_parser = subparsers.add_parser("watch", help="Poll robot status")
    watch_parser.add_argument("serials", nargs="+", metavar="SERIAL")
    watch_parser.add_argument(
        "--interval", type=float, default=None, help="Seconds between polls"
    )
    watch_parser.add_argument(
        "--count",
        type=int,
        default=0,
        help="Stop after this many updates (default: run until interrupted)",
    )

    send_parser = subparsers.add_parser("send", help="Send an activity code")
    send_parser.add_argument("serials", nargs="+", metavar="SERIAL")
    send_parser.add_argument("--code", required=True, help="Activity code")
    send_parser.add_argument(
        "--type",
        dest="command_type",
        default=CommandType.ACTION.value,
        choices=[member.value for member in CommandType],
        help="Command type (default: action)",
    )

    webrtc_parser = subparsers.add_parser("webrtc", help="Start or stop WebRTC")
    webrtc_parser.add_argument("action", choices=["start", "stop"])
    webrtc_parser.add_argument("serials", nargs="+", metavar="SERIAL")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def format_view(view: RobotStatusView) -> str:
    state = view.state()
    parts = [view.serial, state.value, f"battery={view.battery_display}"]
    if view.status is not None:
        if view.status.is_charging and state is not RobotState.CHARGING:
            parts.append("charging")
        if view.status.firmware_version:
            parts.append(f"fw={view.status.firmware_version}")
        if view.status.control_version:
            parts.append(f"ctrl={view.status.control_version}")
    if view.error:
        parts.append(f"error={view.error}")
    return " ".join(parts)


def format_outcome(outcome: CommandOutcome) -> str:
    line = f"{outcome.target_serial} {outcome.status.value}: {outcome.message}"
    if outcome.error:
        line = f"{line} ({outcome.error})"
    return line


def _report_outcomes(outcomes: Iterable[CommandOutcome]) -> int:
    exit_code = 0
    for outcome in outcomes:
        print(format_outcome(outcome))
        if not outcome.ok:
            exit_code = 1
    return exit_code


async def _status(config: RelayAppConfig, serials: list[str]) -> int:
    async with RobotRelayApp(config) as app:
        views = await asyncio.gather(*(app.poller.fetch_once(s) for s in serials))
    for view in views:
        print(format_view(view))
    return 1 if any(view.has_error for view in views) else 0


async def _watch(
    config: RelayAppConfig, serials: list[str], interval: Optional[float], count: int
) -> int:
    done = asyncio.Event()
    seen = 0

    def on_update(view: RobotStatusView) -> None:
        nonlocal seen
        print(format_view(view), flush=True)
        seen += 1
        if count and seen >= count:
            done.set()

    async with RobotRelayApp(config) as app:
        group = app.poller.poll_many(serials, interval, on_update)
        try:
            await done.wait()
        finally:
            await group.stop()
    return 0


async def _send(
    config: RelayAppConfig, serials: list[str], code: str, command_type: str
) -> int:
    async with RobotRelayApp(config) as app:
        outcomes = await app.dispatcher.send_action(serials, code, command_type)
    return _report_outcomes(outcomes)


async def _webrtc(config: RelayAppConfig, serials: list[str], start: bool) -> int:
    async with RobotRelayApp(config) as app:
        outcomes = await app.dispatcher.send_webrtc(serials, start=start)
    return _report_outcomes(outcomes)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                if key == "api_token" and value:
                    value = "***"
                print(f"{key} = {value}")
            print()
        return 0

    configure_logging(
        config.logging.level,
        log_path=config.logging.path,
        log_network=config.logging.log_network,
    )

    try:
        if args.command == "status":
            return asyncio.run(_status(config, args.serials))
        if args.command == "watch":
            return asyncio.run(_watch(config, args.serials, args.interval, args.count))
        if args.command == "send":
            return asyncio.run(
                _send(config, args.serials, args.code, args.command_type)
            )
        if args.command == "webrtc":
            return asyncio.run(
                _webrtc(config, args.serials, start=args.action == "start")
            )
    except ValueError as exc:
        LOGGER.error("Invalid request: %s", exc)
        return 1
    except KeyboardInterrupt:
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())

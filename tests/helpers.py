"""Shared helpers for the robot-relay test-suite."""

import asyncio
from typing import Callable


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds or ``timeout`` elapses."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


def robot_info_payload(serial: str, battery="85", charging: bool = False) -> dict:
    return {
        "status": "success",
        "message": "ok",
        "data": {
            "serial_number": serial,
            "firmware_version": "1.4.2",
            "ctrl_version": "2.0.0",
            "battery_level": battery,
            "is_charging": charging,
        },
    }


def command_ack(serial: str, status: str = "sent", command=None) -> dict:
    return {
        "status": status,
        "to": serial,
        "command": command or {},
        "active_clients": 1,
    }

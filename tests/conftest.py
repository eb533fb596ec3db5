import asyncio
from datetime import datetime, timezone

import pytest


@pytest.fixture
def utc_start() -> datetime:
    return datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def recorded_sleeps():
    """Fake ``asyncio.sleep`` that records requested delays and only yields."""
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)
        await asyncio.sleep(0)

    fake_sleep.delays = delays
    return fake_sleep

"""Tests for robot status polling."""

import asyncio
from collections import defaultdict
from typing import Any, Dict, Optional

import pytest

from helpers import robot_info_payload, wait_until
from robot_relay.core import InFlightRequestCache, RobotState, make_cache_key
from robot_relay.telemetry import RobotStatusView, StatusPoller

FAST_INTERVAL = 0.01


class FakeTelemetry:
    """In-memory stand-in for the relay telemetry endpoint."""

    def __init__(self) -> None:
        self.calls: Dict[str, int] = defaultdict(int)
        self.timeouts: list[float] = []
        self.in_flight: Dict[str, int] = defaultdict(int)
        self.max_in_flight: Dict[str, int] = defaultdict(int)
        self.delays: Dict[str, float] = {}
        self.failures: Dict[str, Exception] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.payloads: Dict[str, Any] = {}

    async def fetch(self, serial: str, timeout: float) -> Any:
        self.calls[serial] += 1
        self.timeouts.append(timeout)
        self.in_flight[serial] += 1
        self.max_in_flight[serial] = max(self.max_in_flight[serial], self.in_flight[serial])
        try:
            gate = self.gates.get(serial)
            if gate is not None:
                await gate.wait()
            delay = self.delays.get(serial)
            if delay:
                await asyncio.sleep(delay)
            failure = self.failures.get(serial)
            if failure is not None:
                raise failure
            return self.payloads.get(serial, robot_info_payload(serial))
        finally:
            self.in_flight[serial] -= 1


class UpdateRecorder:
    def __init__(self) -> None:
        self.views: list[RobotStatusView] = []

    def __call__(self, view: RobotStatusView) -> None:
        self.views.append(view)

    def for_serial(self, serial: str) -> list[RobotStatusView]:
        return [view for view in self.views if view.serial == serial]

    def last(self, serial: str) -> Optional[RobotStatusView]:
        views = self.for_serial(serial)
        return views[-1] if views else None


@pytest.fixture
def telemetry() -> FakeTelemetry:
    return FakeTelemetry()


@pytest.fixture
def poller(telemetry: FakeTelemetry) -> StatusPoller:
    return StatusPoller(
        telemetry.fetch,
        interval_seconds=FAST_INTERVAL,
        request_timeout_seconds=10.0,
        client_grace_seconds=2.0,
    )


@pytest.mark.asyncio
async def test_poll_one_updates_status(poller: StatusPoller, telemetry: FakeTelemetry):
    updates = UpdateRecorder()

    subscription = poller.poll_one("ALPHA-01", on_update=updates)
    await wait_until(lambda: len(updates.views) >= 2)
    await subscription.stop()

    view = updates.last("ALPHA-01")
    assert view.status.battery_level == 85
    assert view.error is None
    assert view.in_flight is False
    assert view.state() is RobotState.ONLINE
    assert telemetry.timeouts[0] == 10.0


@pytest.mark.asyncio
async def test_poll_one_never_overlaps_requests(poller: StatusPoller, telemetry: FakeTelemetry):
    telemetry.delays["ALPHA-01"] = 0.03

    subscription = poller.poll_one("ALPHA-01")
    for _ in range(10):
        subscription.refresh()
        await asyncio.sleep(0.01)
    await wait_until(lambda: telemetry.calls["ALPHA-01"] >= 3)
    await subscription.stop()

    assert telemetry.max_in_flight["ALPHA-01"] == 1


@pytest.mark.asyncio
async def test_failure_preserves_last_known_status(poller: StatusPoller, telemetry: FakeTelemetry):
    updates = UpdateRecorder()

    subscription = poller.poll_one("ALPHA-01", on_update=updates)
    await wait_until(lambda: updates.last("ALPHA-01") is not None)

    telemetry.failures["ALPHA-01"] = RuntimeError("relay unreachable")
    await wait_until(lambda: updates.last("ALPHA-01").error is not None)
    await subscription.stop()

    view = subscription.view
    assert view.error == "relay unreachable"
    assert view.consecutive_failures >= 1
    assert view.status is not None
    assert view.status.battery_level == 85


@pytest.mark.asyncio
async def test_success_clears_previous_error(poller: StatusPoller, telemetry: FakeTelemetry):
    telemetry.failures["ALPHA-01"] = RuntimeError("relay unreachable")
    updates = UpdateRecorder()

    subscription = poller.poll_one("ALPHA-01", on_update=updates)
    await wait_until(lambda: updates.last("ALPHA-01") is not None)
    assert updates.last("ALPHA-01").error == "relay unreachable"
    assert updates.last("ALPHA-01").status is None

    del telemetry.failures["ALPHA-01"]
    await wait_until(lambda: updates.last("ALPHA-01").error is None)
    await subscription.stop()

    assert subscription.view.status is not None
    assert subscription.view.consecutive_failures == 0


@pytest.mark.asyncio
async def test_malformed_payload_is_reported_as_error(poller: StatusPoller, telemetry: FakeTelemetry):
    telemetry.payloads["ALPHA-01"] = {"status": "success", "data": "garbage"}
    updates = UpdateRecorder()

    subscription = poller.poll_one("ALPHA-01", on_update=updates)
    await wait_until(lambda: updates.last("ALPHA-01") is not None)
    await subscription.stop()

    assert updates.last("ALPHA-01").status is None
    assert "no data object" in updates.last("ALPHA-01").error


@pytest.mark.asyncio
async def test_dispose_discards_in_flight_response(poller: StatusPoller, telemetry: FakeTelemetry):
    telemetry.gates["ALPHA-01"] = asyncio.Event()
    updates = UpdateRecorder()

    subscription = poller.poll_one("ALPHA-01", on_update=updates)
    await wait_until(lambda: telemetry.calls["ALPHA-01"] == 1)

    subscription.dispose()
    telemetry.gates["ALPHA-01"].set()
    await subscription.stop()
    await asyncio.sleep(FAST_INTERVAL * 3)

    assert updates.views == []
    assert subscription.view.status is None
    assert subscription.active is False
    assert telemetry.calls["ALPHA-01"] == 1
    assert poller.active_subscriptions == 0


@pytest.mark.asyncio
async def test_poll_many_isolates_failing_and_slow_robots(poller: StatusPoller, telemetry: FakeTelemetry):
    telemetry.failures["BROKEN"] = RuntimeError("robot offline")
    telemetry.gates["STUCK"] = asyncio.Event()
    updates = UpdateRecorder()

    group = poller.poll_many(["ALPHA-01", "BROKEN", "STUCK", "BETA-02"], on_update=updates)
    await wait_until(
        lambda: len(updates.for_serial("ALPHA-01")) >= 3
        and len(updates.for_serial("BETA-02")) >= 3
        and updates.last("BROKEN") is not None
    )
    await group.stop()

    for serial in ("ALPHA-01", "BETA-02"):
        view = group[serial].view
        assert view.error is None
        assert view.status.serial == serial
    assert group["BROKEN"].view.error == "robot offline"
    assert updates.for_serial("STUCK") == []
    assert group["STUCK"].view.in_flight is True
    assert telemetry.calls["STUCK"] == 1


@pytest.mark.asyncio
async def test_poll_many_attributes_results_to_requested_serial(poller: StatusPoller, telemetry: FakeTelemetry):
    # Responses arrive out of request order and report the wrong serial.
    telemetry.delays["SLOW"] = 0.05
    telemetry.payloads["SLOW"] = robot_info_payload("FAST", battery="10")
    telemetry.payloads["FAST"] = robot_info_payload("SLOW", battery="90")
    updates = UpdateRecorder()

    group = poller.poll_many(["SLOW", "FAST"], on_update=updates)
    await wait_until(lambda: updates.last("SLOW") is not None and updates.last("FAST") is not None)
    await group.stop()

    views = group.views()
    assert views["SLOW"].status.serial == "SLOW"
    assert views["SLOW"].status.battery_level == 10
    assert views["FAST"].status.serial == "FAST"
    assert views["FAST"].status.battery_level == 90


@pytest.mark.asyncio
async def test_poll_many_collapses_duplicate_serials(poller: StatusPoller):
    group = poller.poll_many(["ALPHA-01", " ALPHA-01 ", "BETA-02"])
    try:
        assert group.serials == ["ALPHA-01", "BETA-02"]
        assert len(group) == 2
    finally:
        await group.stop()


@pytest.mark.asyncio
async def test_callback_errors_do_not_stop_polling(poller: StatusPoller, telemetry: FakeTelemetry):
    def broken_callback(view: RobotStatusView) -> None:
        raise RuntimeError("ui exploded")

    subscription = poller.poll_one("ALPHA-01", on_update=broken_callback)
    await wait_until(lambda: telemetry.calls["ALPHA-01"] >= 3)
    await subscription.stop()

    assert subscription.view.status is not None


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(poller: StatusPoller):
    received = asyncio.Event()

    async def on_update(view: RobotStatusView) -> None:
        await asyncio.sleep(0)
        received.set()

    subscription = poller.poll_one("ALPHA-01", on_update=on_update)
    await asyncio.wait_for(received.wait(), timeout=1.0)
    await subscription.stop()


@pytest.mark.asyncio
async def test_client_side_timeout_bounds_request(telemetry: FakeTelemetry):
    telemetry.gates["ALPHA-01"] = asyncio.Event()
    poller = StatusPoller(
        telemetry.fetch,
        interval_seconds=FAST_INTERVAL,
        request_timeout_seconds=0.02,
        client_grace_seconds=0.0,
    )
    updates = UpdateRecorder()

    subscription = poller.poll_one("ALPHA-01", on_update=updates)
    await wait_until(lambda: updates.last("ALPHA-01") is not None)
    await subscription.stop()

    assert updates.last("ALPHA-01").error == "Request timed out"
    assert telemetry.max_in_flight["ALPHA-01"] == 1


@pytest.mark.asyncio
async def test_polling_survives_shared_request_cancellation(telemetry: FakeTelemetry):
    cache = InFlightRequestCache()
    telemetry.gates["ALPHA-01"] = asyncio.Event()

    async def deduped_fetch(serial: str, timeout: float):
        key = make_cache_key("robot-info", {"serial": serial, "timeout": timeout})
        return await cache.dedupe(key, lambda: telemetry.fetch(serial, timeout))

    poller = StatusPoller(deduped_fetch, interval_seconds=FAST_INTERVAL)
    updates = UpdateRecorder()

    subscription = poller.poll_one("ALPHA-01", on_update=updates)
    await wait_until(lambda: cache.pending_count == 1)

    cache.clear()
    await wait_until(lambda: updates.last("ALPHA-01") is not None)
    assert updates.last("ALPHA-01").error == "Request cancelled"
    assert subscription.active

    telemetry.gates["ALPHA-01"].set()
    await wait_until(lambda: updates.last("ALPHA-01").error is None)
    await subscription.stop()

    assert telemetry.calls["ALPHA-01"] >= 2
    assert subscription.view.status is not None


@pytest.mark.asyncio
async def test_fetch_once_reports_shared_request_cancellation(telemetry: FakeTelemetry):
    cache = InFlightRequestCache()
    telemetry.gates["ALPHA-01"] = asyncio.Event()

    async def deduped_fetch(serial: str, timeout: float):
        return await cache.dedupe(serial, lambda: telemetry.fetch(serial, timeout))

    poller = StatusPoller(deduped_fetch, interval_seconds=FAST_INTERVAL)
    pending = asyncio.create_task(poller.fetch_once("ALPHA-01"))
    await wait_until(lambda: cache.pending_count == 1)

    cache.clear()
    view = await pending

    assert view.status is None
    assert view.error == "Request cancelled"


@pytest.mark.asyncio
async def test_poller_stop_disposes_every_subscription(poller: StatusPoller):
    first = poller.poll_one("ALPHA-01")
    group = poller.poll_many(["BETA-02", "GAMMA-03"])
    assert poller.active_subscriptions == 3

    await poller.stop()

    assert poller.active_subscriptions == 0
    assert not first.active
    assert all(not subscription.active for subscription in group)


@pytest.mark.asyncio
async def test_fetch_once_returns_view(poller: StatusPoller, telemetry: FakeTelemetry):
    telemetry.failures["BROKEN"] = RuntimeError("robot offline")

    ok = await poller.fetch_once("ALPHA-01")
    failed = await poller.fetch_once("BROKEN")

    assert ok.status.battery_level == 85
    assert ok.error is None
    assert failed.status is None
    assert failed.error == "robot offline"
    assert failed.state() is RobotState.OFFLINE


@pytest.mark.asyncio
async def test_invalid_arguments_are_rejected(poller: StatusPoller):
    with pytest.raises(ValueError):
        poller.poll_one("")
    with pytest.raises(ValueError):
        poller.poll_one("ALPHA-01", interval_seconds=0)
    with pytest.raises(ValueError):
        StatusPoller(poller._fetch_info, interval_seconds=-1)

    assert poller.active_subscriptions == 0

"""Polling of live robot status from the relay telemetry endpoint.

Each polled serial runs on its own asyncio task. The loop reschedules itself
only after the previous request settled, so a robot never has more than one
status request outstanding, and a slow or failing robot never delays another.

Design principles:
- Failures are reported through the view (``error``), never raised from the loop
- The last known-good status survives failures; staleness decides ONLINE/OFFLINE
- Disposal is final: no callback and no state change after ``dispose()``
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, Optional

from ..core.errors import describe_error
from ..core.models import RobotState, RobotStatus
from ..core.responses import parse_robot_info

LOGGER = logging.getLogger(__name__)

UNKNOWN_BATTERY_DISPLAY = "unknown"

FetchInfo = Callable[[str, float], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class PolledInfo:
    """Raw telemetry payload tagged with the serial it was requested for."""

    requested_serial: str
    payload: Any


@dataclass(slots=True)
class RobotStatusView:
    """Latest known status for one robot, as seen by consumers.

    Attributes:
        serial: Robot the view belongs to.
        stale_after: Age after which a successful observation no longer counts.
        status: Last known-good telemetry, kept across failed polls.
        error: Reason of the most recent failure, cleared on success.
        in_flight: True while a status request for this robot is outstanding.
        last_attempt_at: When the most recent request was issued.
        consecutive_failures: Failed polls since the last success.
    """

    serial: str
    stale_after: timedelta
    status: Optional[RobotStatus] = None
    error: Optional[str] = None
    in_flight: bool = False
    last_attempt_at: Optional[datetime] = None
    consecutive_failures: int = 0

    def state(self, now: Optional[datetime] = None) -> RobotState:
        if self.status is None:
            return RobotState.OFFLINE
        return self.status.state_at(now, stale_after=self.stale_after)

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def battery_display(self) -> str:
        """Battery percentage for display, or an explicit unknown placeholder."""
        if self.status is None or self.status.battery_level is None:
            return UNKNOWN_BATTERY_DISPLAY
        return f"{self.status.battery_level}%"

    def copy(self) -> "RobotStatusView":
        return dataclasses.replace(self)


UpdateCallback = Callable[[RobotStatusView], Awaitable[None] | None]


class PollSubscription:
    """Periodic status polling for a single robot serial."""

    def __init__(
        self,
        serial: str,
        *,
        fetch_info: FetchInfo,
        interval_seconds: float,
        request_timeout_seconds: float,
        client_timeout_seconds: float,
        stale_after: timedelta,
        now: Callable[[], datetime] = _utcnow,
        on_update: Optional[UpdateCallback] = None,
        on_stopped: Optional[Callable[["PollSubscription"], None]] = None,
    ) -> None:
        self.serial = serial
        self.interval_seconds = interval_seconds
        self._fetch_info = fetch_info
        self._request_timeout = request_timeout_seconds
        self._client_timeout = client_timeout_seconds
        self._now = now
        self._on_update = on_update
        self._on_stopped = on_stopped
        self._view = RobotStatusView(serial=serial, stale_after=stale_after)
        self._wake = asyncio.Event()
        self._disposed = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def view(self) -> RobotStatusView:
        """Snapshot of the current view."""
        return self._view.copy()

    @property
    def active(self) -> bool:
        return self._task is not None and not self._disposed

    def state(self, now: Optional[datetime] = None) -> RobotState:
        return self._view.state(now or self._now())

    def start(self) -> None:
        if self._disposed:
            raise RuntimeError(f"Poll subscription for {self.serial} was disposed")
        if self._task is not None:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"robot-status-poll:{self.serial}"
        )

    def refresh(self) -> None:
        """Request an immediate poll; folded into the next tick if one is in flight."""
        if not self._disposed:
            self._wake.set()

    def dispose(self) -> None:
        """Stop future ticks and discard any in-flight response."""
        if self._disposed:
            return
        self._disposed = True
        self._wake.set()
        if self._task is not None:
            self._task.cancel()
        if self._on_stopped is not None:
            self._on_stopped(self)

    async def stop(self) -> None:
        """Dispose and wait for the polling task to finish."""
        self.dispose()
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _run(self) -> None:
        while not self._disposed:
            await self._tick()
            if self._disposed:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    async def _tick(self) -> None:
        self._view.in_flight = True
        self._view.last_attempt_at = self._now()

        try:
            polled = await self._fetch()
            status = parse_robot_info(
                polled.payload,
                requested_serial=polled.requested_serial,
                observed_at=self._now(),
            )
        except asyncio.CancelledError as exc:
            # A shared request cancelled underneath us (cache teardown) is a
            # failed poll; only our own cancellation ends the loop.
            if self._disposed or _cancelling():
                raise
            self._record_failure(exc)
        except Exception as exc:
            if self._disposed:
                return
            self._record_failure(exc)
        else:
            if self._disposed:
                return
            self._record_success(status)

        await self._notify()

    async def _fetch(self) -> PolledInfo:
        async with asyncio.timeout(self._client_timeout):
            payload = await self._fetch_info(self.serial, self._request_timeout)
        return PolledInfo(requested_serial=self.serial, payload=payload)

    def _record_success(self, status: RobotStatus) -> None:
        view = self._view
        if view.error is not None:
            LOGGER.info(
                "Robot %s status recovered after %d failed polls",
                self.serial,
                view.consecutive_failures,
            )
        view.status = status
        view.error = None
        view.consecutive_failures = 0
        view.in_flight = False

    def _record_failure(self, exc: BaseException) -> None:
        view = self._view
        view.error = describe_error(exc)
        view.consecutive_failures += 1
        view.in_flight = False
        if view.consecutive_failures == 1:
            LOGGER.warning("Robot %s status poll failed: %s", self.serial, view.error)
        else:
            LOGGER.debug(
                "Robot %s status poll failed (%d in a row): %s",
                self.serial,
                view.consecutive_failures,
                view.error,
            )

    async def _notify(self) -> None:
        if self._on_update is None or self._disposed:
            return
        try:
            result = self._on_update(self._view.copy())
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Robot status callback failed (serial=%s)", self.serial)


class PollGroup:
    """Independent poll subscriptions for a set of robots."""

    def __init__(self, subscriptions: Iterable[PollSubscription]) -> None:
        self._subscriptions: Dict[str, PollSubscription] = {
            subscription.serial: subscription for subscription in subscriptions
        }

    def __iter__(self) -> Iterator[PollSubscription]:
        return iter(self._subscriptions.values())

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __getitem__(self, serial: str) -> PollSubscription:
        return self._subscriptions[serial]

    @property
    def serials(self) -> list[str]:
        return list(self._subscriptions)

    def views(self) -> Dict[str, RobotStatusView]:
        return {serial: sub.view for serial, sub in self._subscriptions.items()}

    def states(self, now: Optional[datetime] = None) -> Dict[str, RobotState]:
        return {serial: sub.state(now) for serial, sub in self._subscriptions.items()}

    def refresh(self) -> None:
        for subscription in self:
            subscription.refresh()

    def dispose(self) -> None:
        for subscription in self:
            subscription.dispose()

    async def stop(self) -> None:
        await asyncio.gather(*(subscription.stop() for subscription in self))


class StatusPoller:
    """Creates and tracks robot status poll subscriptions."""

    def __init__(
        self,
        fetch_info: FetchInfo,
        *,
        interval_seconds: float = 5.0,
        request_timeout_seconds: float = 10.0,
        stale_after_intervals: float = 3.0,
        client_grace_seconds: float = 2.0,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the poller.

        Args:
            fetch_info: Async function returning the raw telemetry payload for
                ``(serial, timeout_seconds)``
            interval_seconds: Default delay between the end of one poll and the
                start of the next
            request_timeout_seconds: Timeout forwarded to the backend
            stale_after_intervals: Multiple of the interval after which the last
                successful poll no longer counts as ONLINE
            client_grace_seconds: Client-side allowance on top of the request timeout
            now: Wall clock returning aware UTC datetimes
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._fetch_info = fetch_info
        self.interval_seconds = interval_seconds
        self.request_timeout_seconds = request_timeout_seconds
        self.stale_after_intervals = max(1.0, stale_after_intervals)
        self._client_grace = max(0.0, client_grace_seconds)
        self._now = now
        self._subscriptions: set[PollSubscription] = set()

    def stale_after(self, interval_seconds: Optional[float] = None) -> timedelta:
        """Age after which the last success no longer counts as ONLINE.

        Never shorter than one interval plus the client-side request bound, so
        a slow but healthy robot does not flap to OFFLINE between polls.
        """
        interval = interval_seconds or self.interval_seconds
        slowest_cycle = interval + self.request_timeout_seconds + self._client_grace
        return timedelta(seconds=max(interval * self.stale_after_intervals, slowest_cycle))

    def poll_one(
        self,
        serial: str,
        interval_seconds: Optional[float] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> PollSubscription:
        """Start polling one robot and return its subscription handle."""
        subscription = self._build(serial, interval_seconds, on_update)
        subscription.start()
        return subscription

    def poll_many(
        self,
        serials: Iterable[str],
        interval_seconds: Optional[float] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> PollGroup:
        """Start one independent poll stream per distinct serial."""
        unique: list[str] = []
        for serial in serials:
            normalized = _normalize_serial(serial)
            if normalized not in unique:
                unique.append(normalized)

        subscriptions = [
            self._build(serial, interval_seconds, on_update) for serial in unique
        ]
        for subscription in subscriptions:
            subscription.start()
        return PollGroup(subscriptions)

    async def fetch_once(self, serial: str) -> RobotStatusView:
        """Fetch status a single time without starting a poll loop."""
        serial = _normalize_serial(serial)
        view = RobotStatusView(serial=serial, stale_after=self.stale_after())
        view.last_attempt_at = self._now()
        try:
            async with asyncio.timeout(self.request_timeout_seconds + self._client_grace):
                payload = await self._fetch_info(serial, self.request_timeout_seconds)
            view.status = parse_robot_info(
                payload, requested_serial=serial, observed_at=self._now()
            )
        except asyncio.CancelledError as exc:
            if _cancelling():
                raise
            view.error = describe_error(exc)
            view.consecutive_failures = 1
            LOGGER.warning("Robot %s status fetch was cancelled", serial)
        except Exception as exc:
            view.error = describe_error(exc)
            view.consecutive_failures = 1
            LOGGER.warning("Robot %s status fetch failed: %s", serial, view.error)
        return view

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    async def stop(self) -> None:
        """Stop every subscription created by this poller."""
        subscriptions = list(self._subscriptions)
        await asyncio.gather(*(subscription.stop() for subscription in subscriptions))

    def _build(
        self,
        serial: str,
        interval_seconds: Optional[float],
        on_update: Optional[UpdateCallback],
    ) -> PollSubscription:
        serial = _normalize_serial(serial)
        interval = self.interval_seconds if interval_seconds is None else interval_seconds
        if interval <= 0:
            raise ValueError("interval_seconds must be positive")

        subscription = PollSubscription(
            serial,
            fetch_info=self._fetch_info,
            interval_seconds=interval,
            request_timeout_seconds=self.request_timeout_seconds,
            client_timeout_seconds=self.request_timeout_seconds + self._client_grace,
            stale_after=self.stale_after(interval),
            now=self._now,
            on_update=on_update,
            on_stopped=self._subscriptions.discard,
        )
        self._subscriptions.add(subscription)
        return subscription


def _cancelling() -> bool:
    """True when the running task itself has a pending cancellation request."""
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


def _normalize_serial(serial: str) -> str:
    if not isinstance(serial, str) or not serial.strip():
        raise ValueError("Serial cannot be empty")
    return serial.strip()

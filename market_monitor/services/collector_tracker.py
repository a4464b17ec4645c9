"""Client-side view of the backend's collector processes.

The backend owns the collectors. This tracker issues start/stop requests, keeps
a newest-first activity history of those attempts and mirrors the latest
successful status poll as the set of active collectors.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from market_monitor.config import TIMEFRAMES, settings
from market_monitor.errors import TransportError
from market_monitor.schemas.collectors import (
    ActivityEntry,
    ActivityOutcome,
    CollectorRecord,
    CollectorStatusResponse,
)
from market_monitor.services.api_client import MonitorApiClient
from market_monitor.services.polling import PollingScheduler, SingleFlight

logger = logging.getLogger(__name__)


class ActionState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class CollectorAction:
    """One start or stop attempt: idle -> in_flight -> succeeded | failed."""

    kind: str  # "start" | "stop"
    timeframe: str | None = None
    symbol: str | None = None
    pid: int | None = None
    state: ActionState = ActionState.IDLE
    message: str | None = None

    def begin(self) -> None:
        self._move(ActionState.IDLE, ActionState.IN_FLIGHT)

    def succeed(self, message: str, pid: int | None = None) -> None:
        self._move(ActionState.IN_FLIGHT, ActionState.SUCCEEDED)
        self.message = message
        if pid is not None:
            self.pid = pid

    def fail(self, message: str) -> None:
        self._move(ActionState.IN_FLIGHT, ActionState.FAILED)
        self.message = message

    @property
    def finished(self) -> bool:
        return self.state in (ActionState.SUCCEEDED, ActionState.FAILED)

    def _move(self, expected: ActionState, target: ActionState) -> None:
        if self.state is not expected:
            raise RuntimeError(f"cannot move {self.kind} action from {self.state.value} to {target.value}")
        self.state = target


class CollectorTracker:
    def __init__(self, client: MonitorApiClient, history_limit: int | None = None) -> None:
        if history_limit is None:
            history_limit = settings.activity_history_limit
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        self._client = client
        self._active: tuple[CollectorRecord, ...] = ()
        self._activity: deque[ActivityEntry] = deque(maxlen=history_limit)
        self._stopping: set[int] = set()
        self._starting = 0
        self._status_available = True
        self._status_error: str | None = None
        self._closed = False
        self.last_status_at: datetime | None = None
        self.status_flight: SingleFlight[CollectorStatusResponse] = SingleFlight(
            "collectors", client.collector_status, self._apply_status, self._status_failed
        )

    @property
    def active(self) -> tuple[CollectorRecord, ...]:
        return self._active

    @property
    def activity(self) -> tuple[ActivityEntry, ...]:
        return tuple(self._activity)

    @property
    def status_available(self) -> bool:
        return self._status_available

    @property
    def status_error(self) -> str | None:
        return self._status_error

    @property
    def starting(self) -> bool:
        return self._starting > 0

    @property
    def stopping(self) -> frozenset[int]:
        return frozenset(self._stopping)

    @property
    def refreshing(self) -> bool:
        return self.status_flight.busy

    def is_stopping(self, pid: int) -> bool:
        return pid in self._stopping

    def find(self, pid: int) -> CollectorRecord | None:
        for record in self._active:
            if record.pid == pid:
                return record
        return None

    def register(self, scheduler: PollingScheduler, interval: float | None = None) -> None:
        if interval is None:
            interval = settings.collector_poll_interval
        scheduler.add("collectors", interval, self.status_flight)

    async def refresh_status(self) -> None:
        await self.status_flight.request()

    async def start(self, timeframe: str, symbol: str | None = None) -> CollectorAction:
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Invalid timeframe {timeframe!r}. Allowed: {list(TIMEFRAMES)}")
        if symbol is not None:
            symbol = symbol.strip().upper()
            if not symbol:
                raise ValueError("symbol must not be empty")
        action = CollectorAction(kind="start", timeframe=timeframe, symbol=symbol)
        action.begin()
        self._starting += 1
        try:
            response = await self._client.start_collector(timeframe, symbol)
        except TransportError as e:
            action.fail(e.message or "Failed to start collector")
            if not self._closed:
                logger.warning("Starting collector %s %s failed: %s", symbol, timeframe, e)
                self._record(action, ActivityOutcome.ERROR)
            return action
        finally:
            self._starting -= 1

        action.succeed(response.message, response.pid)
        if self._closed:
            return action
        logger.info("Collector started for %s %s (pid=%s)", symbol, timeframe, response.pid)
        self._record(action, ActivityOutcome.STARTED)
        # Do not wait for the next scheduled poll to show the new collector.
        await self.refresh_status()
        return action

    async def stop(self, pid: int) -> CollectorAction | None:
        """Stop a collector. Returns None if a stop for this pid is already in flight."""
        if pid in self._stopping:
            logger.debug("Stop already in flight for pid %s, ignoring duplicate", pid)
            return None
        # Snapshot before the request: the refresh below drops the stopped pid.
        record = self.find(pid)
        action = CollectorAction(
            kind="stop",
            pid=pid,
            timeframe=record.timeframe if record else None,
            symbol=record.symbol if record else None,
        )
        action.begin()
        self._stopping.add(pid)
        try:
            response = await self._client.stop_collector(pid)
        except TransportError as e:
            action.fail(e.message or "Failed to stop collector")
            if not self._closed:
                logger.warning("Stopping collector pid %s failed: %s", pid, e)
                self._record(action, ActivityOutcome.ERROR)
            return action
        finally:
            self._stopping.discard(pid)

        action.succeed(response.message)
        if self._closed:
            return action
        logger.info("Collector pid %s stopped", pid)
        await self.refresh_status()
        if record is not None:
            action.message = f"Collector stopped (PID: {pid})"
            self._record(action, ActivityOutcome.STOPPED)
        return action

    def close(self) -> None:
        self._closed = True
        self.status_flight.close()

    def _record(self, action: CollectorAction, outcome: ActivityOutcome) -> None:
        self._activity.appendleft(
            ActivityEntry(
                timeframe=action.timeframe,
                symbol=action.symbol,
                outcome=outcome,
                message=action.message or "",
                pid=action.pid,
            )
        )

    def _apply_status(self, response: CollectorStatusResponse) -> None:
        # The latest successful poll is authoritative: anything missing is gone.
        self._active = tuple(response.collectors)
        self._status_available = response.available
        self._status_error = None
        self.last_status_at = datetime.now(timezone.utc)

    def _status_failed(self, error: Exception) -> None:
        self._status_error = str(error)

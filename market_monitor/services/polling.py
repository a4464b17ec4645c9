"""Periodic refresh of backend resources.

Each polled resource goes through a SingleFlight: while one fetch is
outstanding, timer ticks for that resource are dropped, never queued.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, TypeVar

from market_monitor.config import settings
from market_monitor.errors import TransportError
from market_monitor.schemas.market import HealthResponse, StatsResponse
from market_monitor.services.api_client import MonitorApiClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """At most one outstanding fetch for a resource.

    ``apply`` receives each successful result and ``on_error`` each failure;
    neither runs once the flight is closed, even if a fetch was still pending.
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        apply: Callable[[T], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self.name = name
        self._fetch = fetch
        self._apply = apply
        self._on_error = on_error
        self._task: asyncio.Task[None] | None = None
        self._rerun = False
        self._closed = False
        self.skipped = 0
        self.completed = 0

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def tick(self) -> asyncio.Task[None] | None:
        """Timer entry point: start a fetch unless one is already outstanding."""
        if self._closed:
            return None
        if self.busy:
            self.skipped += 1
            logger.debug("Skipping %s poll, previous request still in flight", self.name)
            return None
        return self._launch()

    async def request(self) -> None:
        """Refresh now and wait for fresh data.

        When a fetch is already outstanding it may predate the caller's change,
        so one follow-up fetch is chained after it instead of a parallel request.
        """
        if self._closed:
            return
        if self.busy:
            self._rerun = True
            task = self._task
        else:
            task = self._launch()
        await asyncio.shield(task)

    def close(self) -> None:
        self._closed = True

    def _launch(self) -> asyncio.Task[None]:
        self._task = asyncio.create_task(self._run(), name=f"poll:{self.name}")
        return self._task

    async def _run(self) -> None:
        while True:
            self._rerun = False
            try:
                result = await self._fetch()
            except TransportError as e:
                if not self._closed:
                    logger.warning("Polling %s failed: %s", self.name, e)
                    self._report(e)
            except Exception as e:
                if not self._closed:
                    logger.exception("Unexpected error while polling %s", self.name)
                    self._report(e)
            else:
                if not self._closed:
                    self._apply(result)
            self.completed += 1
            if self._closed or not self._rerun:
                return

    def _report(self, error: Exception) -> None:
        if self._on_error is not None:
            self._on_error(error)


@dataclass
class PolledResource:
    name: str
    interval: float
    flight: SingleFlight
    task: asyncio.Task[None] | None = None


class PollingScheduler:
    """Owns one timer task per resource. ``aclose`` cancels every timer."""

    def __init__(self) -> None:
        self._resources: dict[str, PolledResource] = {}
        self._running = False
        self._closed = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def resources(self) -> dict[str, PolledResource]:
        return dict(self._resources)

    def add(self, name: str, interval: float, flight: SingleFlight) -> PolledResource:
        if interval <= 0:
            raise ValueError("interval must be positive")
        if name in self._resources:
            raise ValueError(f"resource {name!r} is already scheduled")
        if self._closed:
            raise RuntimeError("scheduler is closed")
        resource = PolledResource(name=name, interval=interval, flight=flight)
        self._resources[name] = resource
        if self._running:
            resource.task = asyncio.create_task(self._run_timer(resource))
        return resource

    def start(self) -> None:
        if self._closed:
            raise RuntimeError("scheduler is closed")
        if self._running:
            return
        self._running = True
        for resource in self._resources.values():
            resource.task = asyncio.create_task(self._run_timer(resource))

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._running = False
        tasks = [resource.task for resource in self._resources.values() if resource.task is not None]
        for task in tasks:
            task.cancel()
        for resource in self._resources.values():
            resource.flight.close()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Polling stopped for %s", ", ".join(self._resources) or "no resources")

    async def __aenter__(self) -> "PollingScheduler":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _run_timer(self, resource: PolledResource) -> None:
        while True:
            try:
                resource.flight.tick()
                await asyncio.sleep(resource.interval)
            except asyncio.CancelledError:
                break


class DashboardFeed:
    """Backend health and snapshot statistics for the dashboard."""

    def __init__(self, client: MonitorApiClient) -> None:
        self._health: HealthResponse | None = None
        self._stats: StatsResponse | None = None
        self._health_error: str | None = None
        self._stats_error: str | None = None
        self._loaded = False
        self.last_updated: datetime | None = None
        self.health_flight: SingleFlight[HealthResponse] = SingleFlight(
            "health", client.health, self._apply_health, self._health_failed
        )
        self.stats_flight: SingleFlight[StatsResponse] = SingleFlight(
            "stats", client.stats, self._apply_stats, self._stats_failed
        )

    @property
    def health(self) -> HealthResponse | None:
        return self._health

    @property
    def stats(self) -> StatsResponse | None:
        return self._stats

    @property
    def health_error(self) -> str | None:
        return self._health_error

    @property
    def stats_error(self) -> str | None:
        return self._stats_error

    @property
    def loading(self) -> bool:
        return not self._loaded

    @property
    def error(self) -> str | None:
        if self._health_error or self._stats_error:
            return "Could not reach the API. Is the backend running?"
        return None

    def register(self, scheduler: PollingScheduler, interval: float | None = None) -> None:
        if interval is None:
            interval = settings.dashboard_poll_interval
        scheduler.add("health", interval, self.health_flight)
        scheduler.add("stats", interval, self.stats_flight)

    async def refresh(self) -> None:
        await asyncio.gather(self.health_flight.request(), self.stats_flight.request())

    def close(self) -> None:
        self.health_flight.close()
        self.stats_flight.close()

    def _apply_health(self, health: HealthResponse) -> None:
        self._health = health
        self._health_error = None
        self._mark_loaded()

    def _apply_stats(self, stats: StatsResponse) -> None:
        self._stats = stats
        self._stats_error = None
        self._mark_loaded()

    def _health_failed(self, error: Exception) -> None:
        self._health_error = str(error)
        self._loaded = True

    def _stats_failed(self, error: Exception) -> None:
        self._stats_error = str(error)
        self._loaded = True

    def _mark_loaded(self) -> None:
        self._loaded = True
        self.last_updated = datetime.now(timezone.utc)

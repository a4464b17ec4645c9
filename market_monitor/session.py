"""Wires the client, controllers and polling together for one dashboard session."""

import logging

from market_monitor.config import Settings, settings as default_settings
from market_monitor.services.api_client import MonitorApiClient
from market_monitor.services.chart_feed import ChartFeed
from market_monitor.services.collector_tracker import CollectorTracker
from market_monitor.services.pagination import PaginationController
from market_monitor.services.polling import DashboardFeed, PollingScheduler

logger = logging.getLogger(__name__)


class MonitorSession:
    def __init__(self, client: MonitorApiClient | None = None, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings
        self.client = client or MonitorApiClient(
            base_url=self.settings.api_url, timeout=self.settings.request_timeout
        )
        self.dashboard = DashboardFeed(self.client)
        self.collectors = CollectorTracker(self.client, history_limit=self.settings.activity_history_limit)
        self.snapshots = PaginationController(
            self.client,
            timeframe=self.settings.default_timeframe,
            symbol=self.settings.default_symbol,
            limit=self.settings.default_page_size,
        )
        self.chart = ChartFeed(self.client, limit=self.settings.chart_candle_limit)
        self.scheduler = PollingScheduler()
        self.dashboard.register(self.scheduler, self.settings.dashboard_poll_interval)
        self.collectors.register(self.scheduler, self.settings.collector_poll_interval)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        logger.info("Monitoring backend at %s", self.client.base_url)
        self.scheduler.start()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.scheduler.aclose()
        finally:
            self.dashboard.close()
            self.collectors.close()
            self.snapshots.close()
            self.chart.close()

    async def __aenter__(self) -> "MonitorSession":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

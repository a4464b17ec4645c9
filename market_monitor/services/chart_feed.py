"""Candles for the price chart: latest N snapshots of a pair, synthesized to OHLC."""

import logging

from market_monitor.config import TIMEFRAMES, settings
from market_monitor.errors import TransportError
from market_monitor.schemas.market import Candle, ChartPoint
from market_monitor.services.api_client import MonitorApiClient
from market_monitor.services.candles import SynthesisMode, synthesize_candles, to_chart_points
from market_monitor.services.pagination import LatestRequestGuard

logger = logging.getLogger(__name__)


class ChartFeed:
    def __init__(self, client: MonitorApiClient, limit: int | None = None) -> None:
        if limit is None:
            limit = settings.chart_candle_limit
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._client = client
        self.limit = limit
        self._guard = LatestRequestGuard()
        self._candles: tuple[Candle, ...] = ()
        self._loading = False
        self._error: str | None = None
        self._closed = False
        self.timeframe: str | None = None
        self.symbol: str | None = None

    @property
    def candles(self) -> tuple[Candle, ...]:
        return self._candles

    @property
    def points(self) -> list[ChartPoint]:
        return to_chart_points(self._candles)

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> str | None:
        return self._error

    async def load(self, timeframe: str, symbol: str, mode: SynthesisMode = "auto") -> bool:
        """Fetch and synthesize candles. Returns False if the result was superseded or failed."""
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Invalid timeframe {timeframe!r}. Allowed: {list(TIMEFRAMES)}")
        if self._closed:
            return False
        self.timeframe, self.symbol = timeframe, symbol.strip().upper()
        token = self._guard.issue()
        self._loading = True
        self._error = None
        try:
            response = await self._client.list_snapshots(
                timeframe=timeframe, symbol=self.symbol, limit=self.limit
            )
        except TransportError as e:
            if self._closed or not self._guard.is_current(token):
                return False
            logger.warning("Loading chart data for %s %s failed: %s", symbol, timeframe, e)
            self._error = f"Failed to load chart data: {e}"
            self._loading = False
            return False

        if self._closed or not self._guard.is_current(token):
            logger.debug("Discarding stale chart data for %s %s", symbol, timeframe)
            return False
        # The chart needs ascending time; the log endpoint does not promise an order.
        entries = sorted(response.logs, key=lambda entry: entry.timestamp)
        self._candles = tuple(synthesize_candles(entries, mode))
        self._loading = False
        return True

    def close(self) -> None:
        self._closed = True
        self._guard.invalidate()

"""Offset/limit paging over the backend's snapshot log."""

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from market_monitor.config import TIMEFRAMES, settings
from market_monitor.errors import TransportError
from market_monitor.schemas.market import SnapshotOrLogEntry
from market_monitor.services.api_client import MonitorApiClient

logger = logging.getLogger(__name__)


class LatestRequestGuard:
    """Tags requests with a generation; only the newest one may apply its result."""

    def __init__(self) -> None:
        self._generation = 0

    def issue(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, token: int) -> bool:
        return token == self._generation

    def invalidate(self) -> None:
        self._generation += 1


@dataclass(frozen=True)
class PageState:
    timeframe: str
    symbol: str
    limit: int
    offset: int = 0
    total: int = 0
    start_date: datetime | None = None
    end_date: datetime | None = None

    @property
    def total_pages(self) -> int:
        # An empty collection still has one (empty) page.
        return max(1, math.ceil(self.total / self.limit))

    @property
    def current_page(self) -> int:
        return min(self.offset // self.limit + 1, self.total_pages)

    @property
    def has_previous(self) -> bool:
        return self.current_page > 1

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def first_item(self) -> int:
        """1-based index of the first row on the page, 0 when the page is empty."""
        return self.offset + 1 if self.offset < self.total else 0

    @property
    def last_item(self) -> int:
        return min(self.offset + self.limit, self.total)

    @property
    def query(self) -> tuple:
        return (self.timeframe, self.symbol, self.limit, self.offset, self.start_date, self.end_date)


class PaginationController:
    def __init__(
        self,
        client: MonitorApiClient,
        timeframe: str | None = None,
        symbol: str | None = None,
        limit: int | None = None,
    ) -> None:
        if limit is None:
            limit = settings.default_page_size
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._client = client
        self._state = PageState(
            timeframe=timeframe or settings.default_timeframe,
            symbol=symbol or settings.default_symbol,
            limit=limit,
        )
        self._guard = LatestRequestGuard()
        self._snapshots: tuple[SnapshotOrLogEntry, ...] = ()
        self._selected_id: int | None = None
        self._loading = False
        self._error: str | None = None
        self._closed = False
        self.last_loaded_at: datetime | None = None

    @property
    def state(self) -> PageState:
        return self._state

    @property
    def snapshots(self) -> tuple[SnapshotOrLogEntry, ...]:
        return self._snapshots

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def selected(self) -> SnapshotOrLogEntry | None:
        if self._selected_id is None:
            return None
        for snapshot in self._snapshots:
            if getattr(snapshot, "id", None) == self._selected_id:
                return snapshot
        return None

    def select(self, snapshot_id: int | None) -> SnapshotOrLogEntry | None:
        self._selected_id = snapshot_id
        return self.selected

    async def set_filter(
        self,
        timeframe: str,
        symbol: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> bool:
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Invalid timeframe {timeframe!r}. Allowed: {list(TIMEFRAMES)}")
        symbol = symbol.strip().upper()
        if not symbol:
            raise ValueError("symbol must not be empty")
        return await self._update(
            replace(
                self._state,
                timeframe=timeframe,
                symbol=symbol,
                start_date=start_date,
                end_date=end_date,
                offset=0,
            )
        )

    async def set_limit(self, limit: int) -> bool:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        return await self._update(replace(self._state, limit=limit, offset=0))

    async def go_to_page(self, page: int) -> bool:
        """Jump to a 1-based page. Out-of-range pages are ignored and return False."""
        if not 1 <= page <= self._state.total_pages:
            logger.debug("Ignoring page %s, valid range is 1..%s", page, self._state.total_pages)
            return False
        return await self._update(replace(self._state, offset=(page - 1) * self._state.limit))

    async def next_page(self) -> bool:
        return await self.go_to_page(self._state.current_page + 1)

    async def previous_page(self) -> bool:
        return await self.go_to_page(self._state.current_page - 1)

    async def refresh(self) -> None:
        await self._fetch()

    def close(self) -> None:
        self._closed = True
        self._guard.invalidate()

    async def _update(self, new_state: PageState) -> bool:
        if new_state.query == self._state.query:
            return False
        self._state = new_state
        await self._fetch()
        return True

    async def _fetch(self) -> None:
        if self._closed:
            return
        token = self._guard.issue()
        state = self._state
        self._loading = True
        self._error = None
        try:
            response = await self._client.list_snapshots(
                timeframe=state.timeframe,
                symbol=state.symbol,
                limit=state.limit,
                offset=state.offset,
                start_date=state.start_date,
                end_date=state.end_date,
            )
        except TransportError as e:
            if not self._accepts(token):
                logger.debug("Discarding stale failure for %s %s", state.symbol, state.timeframe)
                return
            logger.warning("Loading snapshots for %s %s failed: %s", state.symbol, state.timeframe, e)
            # Keep the last page on screen; only flag the error.
            self._error = f"Failed to load market data: {e}"
            self._loading = False
            return

        if not self._accepts(token):
            logger.debug(
                "Discarding stale page for %s %s offset=%s", state.symbol, state.timeframe, state.offset
            )
            return
        self._snapshots = tuple(response.logs)
        self._state = replace(self._state, total=response.total)
        self._loading = False
        self.last_loaded_at = datetime.now(timezone.utc)

    def _accepts(self, token: int) -> bool:
        return not self._closed and self._guard.is_current(token)

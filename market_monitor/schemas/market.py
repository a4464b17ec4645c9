from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def format_uptime(seconds: float | None) -> str:
    """Human label for an uptime in seconds: "2h 5m", "12m" or "N/A"."""
    if not seconds:
        return "N/A"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def as_utc(value: datetime) -> datetime:
    """Naive backend timestamps are UTC; aware ones are converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class WireModel(BaseModel):
    """Backend payloads are camelCase; Python side uses snake_case names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RsiState(str, Enum):
    OVERBOUGHT = "overbought"
    OVERSOLD = "oversold"
    NEUTRAL = "neutral"


class CandleBlock(WireModel):
    """OHLCV block embedded by the backend when it has a true candle."""

    open: float
    high: float
    low: float
    close: float
    volume: float


class MarketSnapshot(WireModel):
    """One stored observation for a (symbol, timeframe) pair. Ordered by timestamp, not id."""

    model_config = ConfigDict(frozen=True)

    id: int
    timestamp: datetime
    symbol: str
    timeframe: str
    last_price: float = Field(alias="lastPrice")

    # Order book
    best_bid_price: float = Field(alias="bestBidPrice")
    best_bid_qty: float = Field(alias="bestBidQty")
    best_ask_price: float = Field(alias="bestAskPrice")
    best_ask_qty: float = Field(alias="bestAskQty")
    mid_price: float = Field(alias="midPrice")
    spread: float
    spread_bps: float = Field(alias="spreadBps")
    imbalance: float
    microprice: float

    # Micro flow
    taker_buy_quote: float = Field(alias="takerBuyQuote")
    taker_sell_quote: float = Field(alias="takerSellQuote")
    taker_buy_ratio: float = Field(alias="takerBuyRatio")

    # Indicators, each may be unavailable while the collector warms up
    rsi14: float | None = None
    sma20: float | None = None
    ema9: float | None = None
    ema21: float | None = None
    volatility: float | None = None

    # Heuristics
    ema9_above_21: bool | None = Field(default=None, alias="ema9Above21")
    rsi_state: RsiState = Field(default=RsiState.NEUTRAL, alias="rsiState")
    buy_pressure: bool = Field(alias="buyPressure")

    # Market stats
    funding_rate: float = Field(alias="fundingRate")
    index_price: float = Field(alias="indexPrice")
    volume_24h: float = Field(alias="volume24h")
    high_24h: float = Field(alias="high24h")
    low_24h: float = Field(alias="low24h")
    open_interest: float | None = Field(default=None, alias="openInterest")
    liquidation_volume: float = Field(alias="liquidationVolume")

    created_at: datetime | None = Field(default=None, alias="createdAt")

    # Only present when the backend stored a true candle alongside the snapshot.
    candle: CandleBlock | None = None
    interval: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("rsi_state", mode="before")
    @classmethod
    def _normalize_rsi_state(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class LogEntry(WireModel):
    """Raw log row: no snapshot fields, only an (optional) embedded candle."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    symbol: str | None = None
    interval: str | None = None
    candle: CandleBlock | None = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


SnapshotOrLogEntry = Annotated[
    Union[MarketSnapshot, LogEntry], Field(union_mode="left_to_right")
]


class LogsResponse(WireModel):
    logs: list[SnapshotOrLogEntry]
    total: int
    limit: int
    offset: int
    timeframe: str | None = None
    symbol: str | None = None


class HealthResponse(WireModel):
    status: str
    timestamp: datetime
    uptime: float

    @property
    def uptime_label(self) -> str:
        return format_uptime(self.uptime)


class SymbolCount(WireModel):
    symbol: str
    count: int


class TimeframeCount(WireModel):
    timeframe: str
    count: int


class StatsSummary(WireModel):
    total: int
    symbols: list[SymbolCount] = Field(default_factory=list)
    timeframes: list[TimeframeCount] = Field(default_factory=list)


class StatsResponse(WireModel):
    stats: StatsSummary


class Candle(BaseModel):
    """Derived OHLCV bar. low <= open, close <= high is not guaranteed for approximated bars."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    symbol: str | None = None
    interval: str | None = None


class ChartPoint(BaseModel):
    """Point for the chart primitive: time in unix seconds."""

    time: int
    open: float
    high: float
    low: float
    close: float

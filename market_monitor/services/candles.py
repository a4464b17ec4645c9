"""Build OHLCV candles from stored market snapshots.

The backend stores snapshots, not candles. Two sources are supported:

* direct: the entry carries an explicit OHLCV block, which is passed through
  unchanged and tagged with the entry's symbol and interval;
* approximated: a snapshot without a block. The bar is a visual placeholder
  built from 24h statistics: open is the last price marked down 5 bps, high and
  low are the 24h extremes, close is the last price and volume the 24h volume.
  Because high/low are 24h extremes they can sit far outside the bar for short
  timeframes, and nothing guarantees low <= open, close <= high. Consumers must
  not assume regular candle invariants for approximated bars.
"""

from collections.abc import Iterable, Iterator
from typing import Literal

from market_monitor.schemas.market import Candle, ChartPoint, LogEntry, MarketSnapshot

APPROXIMATION_OPEN_FACTOR = 0.9995

SynthesisMode = Literal["auto", "direct", "approximated"]
Entry = MarketSnapshot | LogEntry


def _direct_candle(entry: Entry) -> Candle | None:
    block = entry.candle
    if block is None:
        return None
    interval = entry.interval
    if interval is None and isinstance(entry, MarketSnapshot):
        interval = entry.timeframe
    return Candle(
        timestamp=entry.timestamp,
        open=block.open,
        high=block.high,
        low=block.low,
        close=block.close,
        volume=block.volume,
        symbol=entry.symbol,
        interval=interval,
    )


def _approximated_candle(snapshot: MarketSnapshot) -> Candle:
    return Candle(
        timestamp=snapshot.timestamp,
        open=snapshot.last_price * APPROXIMATION_OPEN_FACTOR,
        high=snapshot.high_24h,
        low=snapshot.low_24h,
        close=snapshot.last_price,
        volume=snapshot.volume_24h,
        symbol=snapshot.symbol,
        interval=snapshot.timeframe,
    )


def candle_from_entry(entry: Entry, mode: SynthesisMode = "auto") -> Candle | None:
    """Return the candle for one entry, or None when the mode cannot apply to it."""
    if mode == "approximated":
        return _approximated_candle(entry) if isinstance(entry, MarketSnapshot) else None
    candle = _direct_candle(entry)
    if candle is not None or mode == "direct":
        return candle
    if isinstance(entry, MarketSnapshot):
        return _approximated_candle(entry)
    return None


class CandleSeries:
    """Lazy candle sequence over a fixed list of entries.

    Every iteration starts over from the first entry. Input order is kept; the
    caller is responsible for passing entries in chronological order.
    """

    def __init__(self, entries: Iterable[Entry], mode: SynthesisMode = "auto") -> None:
        if mode not in ("auto", "direct", "approximated"):
            raise ValueError(f"Unknown synthesis mode {mode!r}")
        self._entries = tuple(entries)
        self.mode = mode

    def __iter__(self) -> Iterator[Candle]:
        for entry in self._entries:
            candle = candle_from_entry(entry, self.mode)
            if candle is not None:
                yield candle

    def __bool__(self) -> bool:
        return any(True for _ in self)

    def to_list(self) -> list[Candle]:
        return list(self)


def synthesize_candles(entries: Iterable[Entry], mode: SynthesisMode = "auto") -> CandleSeries:
    return CandleSeries(entries, mode)


def to_chart_points(candles: Iterable[Candle]) -> list[ChartPoint]:
    """Convert candles to the chart primitive's format (unix seconds)."""
    return [
        ChartPoint(
            time=int(candle.timestamp.timestamp()),
            open=candle.open,
            high=candle.high,
            low=candle.low,
            close=candle.close,
        )
        for candle in candles
    ]

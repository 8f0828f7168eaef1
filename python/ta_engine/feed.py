"""Bar feed boundary: ordering checks and tick aggregation."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .types import Bar, OutOfOrderBarError

logger = logging.getLogger(__name__)


def validate_bars(bars: Iterable[Bar]) -> List[Bar]:
    """Return bars as a list; raise if timestamps are not strictly increasing."""
    out = list(bars)
    for prev, curr in zip(out, out[1:]):
        if curr.time <= prev.time:
            raise OutOfOrderBarError(f"bar time {curr.time} is not after previous bar time {prev.time}")
    return out


class BarFeed:
    """Append-only guard for a live bar stream.

    Bars whose time is not strictly after the last accepted bar are logged
    and dropped.
    """

    def __init__(self, symbol: str = ""):
        self.symbol = symbol
        self.last_time: Optional[int] = None
        self.accepted = 0
        self.dropped = 0

    def accept(self, bar: Bar) -> bool:
        if self.last_time is not None and bar.time <= self.last_time:
            self.dropped += 1
            logger.warning("%s: dropping out-of-order bar %s (last %s)", self.symbol or "feed", bar.time, self.last_time)
            return False
        self.last_time = bar.time
        self.accepted += 1
        return True


class TickAggregator:
    """Build 1-minute bars from ticks.

    ``on_tick`` returns the previous minute's bar once a tick for a later
    minute arrives. Timestamps are epoch seconds.
    """

    def __init__(self, interval_s: int = 60):
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.interval_s = int(interval_s)
        self._start: Optional[int] = None
        self._ohlc: Optional[List[float]] = None
        self._volume = 0

    def _bucket(self, timestamp: float) -> int:
        return int(timestamp) // self.interval_s * self.interval_s

    def on_tick(self, price: float, volume: int, timestamp: float) -> Optional[Bar]:
        start = self._bucket(timestamp)
        price = float(price)
        if self._start is not None and start < self._start:
            logger.warning("dropping late tick at %s (current bar %s)", timestamp, self._start)
            return None

        completed: Optional[Bar] = None
        if self._start is not None and start > self._start:
            completed = self.flush()

        if self._ohlc is None:
            self._start = start
            self._ohlc = [price, price, price, price]
            self._volume = int(volume)
        else:
            o = self._ohlc
            o[1] = max(o[1], price)
            o[2] = min(o[2], price)
            o[3] = price
            self._volume += int(volume)
        return completed

    def flush(self) -> Optional[Bar]:
        """Emit the bar in progress (if any) and start empty."""
        if self._ohlc is None or self._start is None:
            return None
        o, h, l, c = self._ohlc
        bar = Bar(time=self._start, open=o, high=h, low=l, close=c, volume=self._volume)
        self._ohlc = None
        self._volume = 0
        return bar

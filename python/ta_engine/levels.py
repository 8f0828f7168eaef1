"""Multi-timeframe level tracking from a 1-minute bar stream.

At any bar only the *previous completed* period of each timeframe is used for
decisions; the in-progress period is tracked but never exposed to entry rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from .config import TIMEFRAMES
from .indicators import adx as adx_func
from .types import Bar, OutOfOrderBarError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Boundaries:
    new_hour: bool
    new_day: bool
    new_week: bool
    new_month: bool

    def is_new(self, timeframe: str) -> bool:
        return {
            "1H": self.new_hour,
            "Day": self.new_day,
            "Week": self.new_week,
            "Month": self.new_month,
        }[timeframe]


FIRST_BAR = Boundaries(True, True, True, True)


def _market_hour(dt: datetime, market_open_minute: int) -> int:
    # 09:15-10:14 is one bucket when the session opens at :15
    return dt.hour if dt.minute >= market_open_minute else dt.hour - 1


def detect_boundaries(prev: Optional[datetime], curr: datetime, market_open_minute: int = 15) -> Boundaries:
    """Which timeframes start a new period at ``curr`` (session-local datetimes)."""
    if prev is None:
        return FIRST_BAR
    new_day = curr.date() != prev.date()
    new_hour = new_day or _market_hour(curr, market_open_minute) != _market_hour(prev, market_open_minute)
    new_week = curr.isocalendar()[:2] != prev.isocalendar()[:2]
    new_month = (curr.year, curr.month) != (prev.year, prev.month)
    return Boundaries(new_hour=new_hour, new_day=new_day, new_week=new_week, new_month=new_month)


@dataclass
class TimeframeLevels:
    current_high: Optional[float] = None
    current_low: Optional[float] = None
    previous_high: Optional[float] = None
    previous_low: Optional[float] = None
    ready: bool = False

    def roll(self, high: float, low: float) -> None:
        """Freeze current -> previous and start a new period at this bar."""
        if self.current_high is not None:
            self.previous_high = self.current_high
            self.previous_low = self.current_low
            self.ready = True
        self.current_high = high
        self.current_low = low

    def extend(self, high: float, low: float) -> None:
        if self.current_high is None or high > self.current_high:
            self.current_high = high
        if self.current_low is None or low < self.current_low:
            self.current_low = low


class LevelTracker:
    """Rolling high/low per timeframe, updated once per bar in a single pass."""

    def __init__(
        self,
        timeframes: Sequence[str] = TIMEFRAMES,
        market_open_minute: int = 15,
        timezone: str = "Asia/Kolkata",
    ):
        self.timeframes = tuple(timeframes)
        self.market_open_minute = int(market_open_minute)
        self.tz = ZoneInfo(timezone)
        self.levels: Dict[str, TimeframeLevels] = {tf: TimeframeLevels() for tf in self.timeframes}
        self.last_time: Optional[int] = None
        self._last_dt: Optional[datetime] = None

    def reset(self) -> None:
        self.levels = {tf: TimeframeLevels() for tf in self.timeframes}
        self.last_time = None
        self._last_dt = None

    def local_time(self, t: int) -> datetime:
        return datetime.fromtimestamp(int(t), tz=self.tz)

    def update(self, bar: Bar) -> Boundaries:
        if self.last_time is not None and bar.time <= self.last_time:
            raise OutOfOrderBarError(f"bar time {bar.time} is not after previous bar time {self.last_time}")

        dt = self.local_time(bar.time)
        boundaries = detect_boundaries(self._last_dt, dt, self.market_open_minute)
        for tf, lv in self.levels.items():
            if boundaries.is_new(tf):
                lv.roll(bar.high, bar.low)
            else:
                lv.extend(bar.high, bar.low)

        self.last_time = bar.time
        self._last_dt = dt
        return boundaries

    @property
    def last_datetime(self) -> Optional[datetime]:
        return self._last_dt

    @property
    def all_ready(self) -> bool:
        return all(lv.ready for lv in self.levels.values())

    def previous_highs(self) -> Dict[str, float]:
        return {tf: lv.previous_high for tf, lv in self.levels.items() if lv.ready}

    def previous_lows(self) -> Dict[str, float]:
        return {tf: lv.previous_low for tf, lv in self.levels.items() if lv.ready}

    def snapshot(self) -> Dict[str, Optional[float]]:
        """Flat dict of levels, e.g. 'Prev 1H High', 'Curr Day Low'."""
        out: Dict[str, Optional[float]] = {}
        for tf, lv in self.levels.items():
            out[f"Prev {tf} High"] = lv.previous_high
            out[f"Prev {tf} Low"] = lv.previous_low
            out[f"Curr {tf} High"] = lv.current_high
            out[f"Curr {tf} Low"] = lv.current_low
        return out


class ClosedPeriodAdx:
    """ADX over completed ``timeframe`` candles built from the bar stream.

    The candle in progress is never part of the series; the value only
    changes when a period closes.
    """

    def __init__(self, timeframe: str = "Day", period: int = 14):
        if timeframe not in ("1H", "Day"):
            raise ValueError(f"ADX timeframe must be '1H' or 'Day', got {timeframe!r}")
        self.timeframe = timeframe
        self.period = int(period)
        self.value: Optional[float] = None
        self.closed_on_last_update = False
        self._highs: List[float] = []
        self._lows: List[float] = []
        self._closes: List[float] = []
        self._building: Optional[List[float]] = None  # [high, low, close]

    def reset(self) -> None:
        self.value = None
        self.closed_on_last_update = False
        self._highs, self._lows, self._closes = [], [], []
        self._building = None

    @property
    def completed_periods(self) -> int:
        return len(self._closes)

    def update(self, bar: Bar, boundaries: Boundaries) -> Optional[float]:
        self.closed_on_last_update = False
        if boundaries.is_new(self.timeframe) or self._building is None:
            if self._building is not None:
                h, l, c = self._building
                self._highs.append(h)
                self._lows.append(l)
                self._closes.append(c)
                self.value = adx_func(self._highs, self._lows, self._closes, self.period)
                self.closed_on_last_update = True
                logger.debug(
                    "%s candle #%d closed, ADX(%d)=%s",
                    self.timeframe,
                    len(self._closes),
                    self.period,
                    "n/a" if self.value is None else f"{self.value:.2f}",
                )
            self._building = [bar.high, bar.low, bar.close]
        else:
            b = self._building
            b[0] = max(b[0], bar.high)
            b[1] = min(b[1], bar.low)
            b[2] = bar.close
        return self.value

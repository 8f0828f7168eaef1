"""Indicator computation utilities.

Functions return ``None`` when there is not enough data; callers must treat
that as "unavailable", never as zero.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Optional, Sequence

import numpy as np


def sma(prices: Sequence[float], period: int) -> Optional[float]:
    """Average of the last ``period`` prices."""
    if period <= 0:
        raise ValueError("period must be positive")
    if len(prices) < period:
        return None
    return float(np.mean(np.asarray(prices[-period:], dtype=float)))


def ema(prices: Sequence[float], period: int, previous: Optional[float] = None) -> Optional[float]:
    """Exponential moving average with k = 2 / (period + 1).

    Without ``previous`` the EMA is seeded with the SMA of the first ``period``
    prices and rolled through the rest. With ``previous`` a single update is
    applied using the last price. Both paths perform the same float operations,
    so rolling forward one bar at a time matches a from-scratch computation.
    """
    if period <= 0:
        raise ValueError("period must be positive")
    if len(prices) == 0:
        return None

    k = 2.0 / (period + 1)
    if previous is not None:
        return _ema_step(float(prices[-1]), float(previous), k)

    if len(prices) < period:
        return None
    value = sum(float(p) for p in prices[:period]) / period
    for p in prices[period:]:
        value = _ema_step(float(p), value, k)
    return value


def _ema_step(price: float, previous: float, k: float) -> float:
    return price * k + previous * (1.0 - k)


def adx(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> Optional[float]:
    """Wilder's Average Directional Index from completed bars.

    Needs at least ``period + 1`` bars. Until ``period`` DX values exist the
    result is the plain mean of the DX values available so far; after that
    the DX series is Wilder-smoothed.
    """
    if period <= 0:
        raise ValueError("period must be positive")
    n = len(closes)
    if len(highs) != n or len(lows) != n:
        raise ValueError("highs, lows and closes must have the same length")
    if n < period + 1:
        return None

    h = np.asarray(highs, dtype=float)
    l = np.asarray(lows, dtype=float)
    c = np.asarray(closes, dtype=float)

    prev_close = c[:-1]
    tr = np.maximum.reduce([h[1:] - l[1:], np.abs(h[1:] - prev_close), np.abs(l[1:] - prev_close)])
    up = h[1:] - h[:-1]
    down = l[:-1] - l[1:]
    plus_dm = np.where((up > down) & (up > 0), up, 0.0)
    minus_dm = np.where((down > up) & (down > 0), down, 0.0)

    tr_s = _wilder_sums(tr, period)
    plus_s = _wilder_sums(plus_dm, period)
    minus_s = _wilder_sums(minus_dm, period)

    with np.errstate(divide="ignore", invalid="ignore"):
        plus_di = np.where(tr_s > 0, 100.0 * plus_s / tr_s, 0.0)
        minus_di = np.where(tr_s > 0, 100.0 * minus_s / tr_s, 0.0)
        di_sum = plus_di + minus_di
        dx = np.where(di_sum > 0, 100.0 * np.abs(plus_di - minus_di) / di_sum, 0.0)

    if len(dx) < period:
        return float(np.mean(dx))

    value = float(np.mean(dx[:period]))
    for x in dx[period:]:
        value = (value * (period - 1) + float(x)) / period
    return value


def _wilder_sums(x: np.ndarray, period: int) -> np.ndarray:
    """Wilder running sums: first value is the plain sum of ``period`` samples."""
    out = np.empty(len(x) - period + 1, dtype=float)
    s = float(np.sum(x[:period]))
    out[0] = s
    for i, v in enumerate(x[period:], start=1):
        s = s - s / period + float(v)
        out[i] = s
    return out


def detect_crossover(
    curr_fast: float,
    curr_slow: float,
    prev_fast: Optional[float] = None,
    prev_slow: Optional[float] = None,
) -> Optional[str]:
    """'bullish' when fast moves from <= slow to > slow, 'bearish' for the
    mirror case, None otherwise or when previous values are missing."""
    if prev_fast is None or prev_slow is None:
        return None
    if prev_fast <= prev_slow and curr_fast > curr_slow:
        return "bullish"
    if prev_fast >= prev_slow and curr_fast < curr_slow:
        return "bearish"
    return None


class MovingAverageState:
    """Incremental SMA/EMA fed one price at a time.

    EMA updates reuse :func:`ema` so the incremental value equals the
    from-scratch value over the same history.
    """

    def __init__(self, kind: str, period: int):
        if kind not in ("ema", "sma"):
            raise ValueError(f"kind must be 'ema' or 'sma', got {kind!r}")
        if period <= 0:
            raise ValueError("period must be positive")
        self.kind = kind
        self.period = int(period)
        self.value: Optional[float] = None
        self._window: Deque[float] = deque(maxlen=self.period)

    def reset(self) -> None:
        self.value = None
        self._window.clear()

    def update(self, price: float) -> Optional[float]:
        price = float(price)
        self._window.append(price)
        if self.kind == "sma":
            self.value = sma(list(self._window), self.period)
        elif self.value is not None:
            self.value = ema([price], self.period, previous=self.value)
        elif len(self._window) == self.period:
            self.value = ema(list(self._window), self.period)
        return self.value

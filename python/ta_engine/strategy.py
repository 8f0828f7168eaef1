"""Signal generation.

Two strategy kinds share one interface (``reset``, ``on_bar``, ``rollback``,
``generate``, ``stats``, ``indicator_names``):

- ``BreakoutStrategy``: close beyond *all* tracked previous-period levels,
  optional ADX gate, per-direction reset after *any* pullback.
- ``CrossoverStrategy``: long-only fast/slow moving-average crossover.

Every bar yields a ``CalculationRow``; signals are attached to the row that
produced them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

from .config import BreakoutConfig, CrossoverConfig
from .indicators import MovingAverageState, detect_crossover
from .levels import Boundaries, ClosedPeriodAdx, LevelTracker
from .types import Bar, CalculationRow, OutOfOrderBarError, Signal, SignalType

logger = logging.getLogger(__name__)

StrategyConfig = Union[BreakoutConfig, CrossoverConfig]


@dataclass
class StrategyRun:
    signals: List[Signal]
    calculations: List[CalculationRow]
    stats: Dict[str, Any] = field(default_factory=dict)


class Strategy(Protocol):
    kind: str
    name: str

    def reset(self) -> None: ...

    def on_bar(self, bar: Bar, evaluate: bool = True) -> CalculationRow: ...

    def rollback(self, signal: Signal) -> None: ...

    def generate(self, bars: Iterable[Bar]) -> StrategyRun: ...

    def stats(self) -> Dict[str, Any]: ...

    def indicator_names(self) -> List[str]: ...


def _r2(x: Optional[float]) -> Optional[float]:
    return None if x is None else round(float(x), 2)


class BreakoutStrategy:
    """Generic multi-timeframe breakout evaluator.

    Entry (long; short mirrors it) fires when, on one bar:
    - the bar is inside the trading window,
    - every tracked timeframe has a completed previous period,
    - close > every previous high,
    - the stop (previous level of the shortest timeframe) is below the close,
    - the ADX gate, if configured, is available and >= threshold,
    - the long side is reset (when ``require_reset``).

    Firing clears the long reset flag; a later close below *any* previous
    high sets it again.
    """

    kind = "breakout"

    def __init__(self, config: Optional[BreakoutConfig] = None, adx_tracker: Optional[ClosedPeriodAdx] = None):
        self.config = config or BreakoutConfig()
        if adx_tracker is not None and self.config.adx is None:
            raise ValueError("adx_tracker requires an ADX filter in the config")
        self.name = self.config.name
        self._adx_override = adx_tracker
        self.reset()

    # ---------- public API ----------

    def reset(self) -> None:
        cfg = self.config
        self.tracker = LevelTracker(cfg.levels, cfg.market_open_minute, cfg.timezone)
        if self._adx_override is not None:
            self.adx = self._adx_override
        elif cfg.adx is not None:
            self.adx = ClosedPeriodAdx(cfg.adx.timeframe, cfg.adx.period)
        else:
            self.adx = None
        if self.adx is not None:
            self.adx.reset()

        self.long_reset = True
        self.short_reset = True

        self._bars = 0
        self._signals = 0
        self._window_bars = 0
        self._conditions_met = 0
        self._blocked: Dict[str, int] = {}
        self._adx_on_entry: List[float] = []
        self._adx_above = 0
        self._adx_below = 0

        self._day_high: Optional[float] = None
        self._day_low: Optional[float] = None
        self._hod_count = 0
        self._lod_count = 0
        self._hod_counts: List[int] = []
        self._lod_counts: List[int] = []

    def indicator_names(self) -> List[str]:
        names = []
        for tf in self.config.levels:
            names += [f"Prev {tf} High", f"Prev {tf} Low"]
        names += ["SL Price", "TP Price", "Long Reset", "Short Reset", "All Levels Ready"]
        if self.config.adx is not None:
            names += ["ADX", "ADX Condition Met"]
        return names

    def generate(self, bars: Iterable[Bar]) -> StrategyRun:
        self.reset()
        signals: List[Signal] = []
        rows: List[CalculationRow] = []
        for bar in bars:
            row = self.on_bar(bar)
            rows.append(row)
            if row.emitted is not None:
                signals.append(row.emitted)
        stats = self.stats()
        logger.info(
            "[%s] %d bars -> %d signals (conditions met %d, blocked %s)",
            self.name,
            len(rows),
            len(signals),
            stats["conditions_met"],
            stats["blocked"],
        )
        return StrategyRun(signals=signals, calculations=rows, stats=stats)

    def on_bar(self, bar: Bar, evaluate: bool = True) -> CalculationRow:
        """Advance state by one bar. ``evaluate=False`` updates state (warm-up)
        without evaluating entries."""
        cfg = self.config
        boundaries = self.tracker.update(bar)
        dt = self.tracker.last_datetime
        self._bars += 1

        adx_value = self._update_adx(bar, boundaries)
        self._track_hod_lod(bar, boundaries)

        ready = self.tracker.all_ready
        highs = self.tracker.previous_highs()
        lows = self.tracker.previous_lows()
        close = bar.close

        above_all = ready and all(close > h for h in highs.values())
        below_all = ready and all(close < lo for lo in lows.values())
        if above_all or below_all:
            self._conditions_met += 1

        # any pullback through a tracked level re-arms that side
        if ready and cfg.require_reset:
            if not self.long_reset and any(close < h for h in highs.values()):
                self.long_reset = True
            if not self.short_reset and any(close > lo for lo in lows.values()):
                self.short_reset = True

        stop_tf = cfg.stop_timeframe
        long_sl = lows.get(stop_tf) if ready else None
        short_sl = highs.get(stop_tf) if ready else None
        long_tp = self._target(close, long_sl, +1)
        short_tp = self._target(close, short_sl, -1)

        within = cfg.trading_window.contains(dt)
        if within:
            self._window_bars += 1

        signal: Optional[Signal] = None
        blocked_reason: Optional[str] = None
        if evaluate and ready:
            if cfg.direction in ("long", "both") and above_all:
                signal, blocked_reason = self._try_entry(bar, SignalType.BUY, within, long_sl, long_tp, adx_value)
            elif cfg.direction in ("short", "both") and below_all:
                signal, blocked_reason = self._try_entry(bar, SignalType.SELL, within, short_sl, short_tp, adx_value)

        if blocked_reason is not None:
            # all ADX vetoes share one counter
            key = "ADX" if blocked_reason.startswith("ADX") else blocked_reason
            self._blocked[key] = self._blocked.get(key, 0) + 1

        values: Dict[str, Any] = dict(self.tracker.snapshot())
        values.update(
            {
                "New 1H": boundaries.new_hour,
                "New Day": boundaries.new_day,
                "New Week": boundaries.new_week,
                "New Month": boundaries.new_month,
                "All Levels Ready": ready,
                "Close Above All Highs": above_all,
                "Close Below All Lows": below_all,
                "Long Reset": self.long_reset,
                "Short Reset": self.short_reset,
                "Within Window": within,
                "SL Price": _r2(long_sl),
                "TP Price": _r2(long_tp),
            }
        )
        if self.adx is not None:
            values["ADX"] = _r2(adx_value)
            values["ADX Condition Met"] = self._adx_ok(adx_value)
            values["Completed ADX Periods"] = self.adx.completed_periods

        return CalculationRow(
            time=bar.time,
            open=bar.open,
            high=bar.high,
            low=bar.low,
            close=bar.close,
            signal=signal.type.value if signal is not None else "NONE",
            blocked=blocked_reason is not None,
            blocked_reason=blocked_reason,
            values=values,
            emitted=signal,
        )

    def rollback(self, signal: Signal) -> None:
        """Undo the reset arm consumed by ``signal`` (entry order not filled)."""
        if not signal.is_entry:
            return
        if signal.type == SignalType.BUY:
            self.long_reset = True
        else:
            self.short_reset = True

    def stats(self) -> Dict[str, Any]:
        hod = self._hod_counts + ([self._hod_count] if self._hod_count else [])
        lod = self._lod_counts + ([self._lod_count] if self._lod_count else [])
        days = len(hod)
        return {
            "bars": self._bars,
            "signals": self._signals,
            "bars_in_window": self._window_bars,
            "conditions_met": self._conditions_met,
            "blocked": dict(self._blocked),
            "adx": {
                "avg_on_entry": round(sum(self._adx_on_entry) / len(self._adx_on_entry), 2) if self._adx_on_entry else 0.0,
                "entries_blocked": self._blocked.get("ADX", 0),
                "periods_above_threshold": self._adx_above,
                "periods_below_threshold": self._adx_below,
            },
            "hod_lod": {
                "max_hod_count": max(hod) if hod else 0,
                "max_lod_count": max(lod) if lod else 0,
                "avg_hod_count": round(sum(hod) / days, 2) if days else 0.0,
                "avg_lod_count": round(sum(lod) / days, 2) if days else 0.0,
                "total_days": days,
            },
        }

    # ---------- internal helpers ----------

    def _update_adx(self, bar: Bar, boundaries: Boundaries) -> Optional[float]:
        if self.adx is None:
            return None
        value = self.adx.update(bar, boundaries)
        if self.adx.closed_on_last_update and value is not None:
            if value >= self.config.adx.threshold:
                self._adx_above += 1
            else:
                self._adx_below += 1
        return value

    def _adx_ok(self, value: Optional[float]) -> bool:
        if self.config.adx is None:
            return True
        return value is not None and value >= self.config.adx.threshold

    def _target(self, close: float, stop: Optional[float], sign: int) -> Optional[float]:
        if stop is None:
            return None
        risk = (close - stop) * sign
        if risk <= 0:
            return None
        return close + sign * risk * self.config.risk_reward_ratio

    def _try_entry(
        self,
        bar: Bar,
        side: SignalType,
        within: bool,
        stop: Optional[float],
        target: Optional[float],
        adx_value: Optional[float],
    ) -> tuple[Optional[Signal], Optional[str]]:
        cfg = self.config
        if not within:
            return None, "Outside trading window"
        if stop is None or target is None:
            return None, "Degenerate risk distance"
        if cfg.adx is not None:
            if adx_value is None:
                return None, "ADX unavailable"
            if adx_value < cfg.adx.threshold:
                return None, f"ADX {adx_value:.1f} < {cfg.adx.threshold:g}"
        is_long = side == SignalType.BUY
        if cfg.require_reset and not (self.long_reset if is_long else self.short_reset):
            return None, "Waiting for pullback"

        indicators: Dict[str, Any] = {}
        for tf, lv in self.tracker.levels.items():
            indicators[f"Prev {tf} High"] = lv.previous_high
            indicators[f"Prev {tf} Low"] = lv.previous_low
        indicators.update(
            {
                "Long Reset": self.long_reset,
                "Short Reset": self.short_reset,
                "All Levels Ready": True,
                "SL Price": _r2(stop),
                "TP Price": _r2(target),
                "Signal": side.value,
            }
        )
        if cfg.adx is not None:
            indicators["ADX"] = _r2(adx_value)
            indicators["ADX Condition Met"] = True
            self._adx_on_entry.append(float(adx_value))

        if cfg.require_reset:
            if is_long:
                self.long_reset = False
            else:
                self.short_reset = False

        self._signals += 1
        logger.debug("[%s] %s signal at %s close=%.2f sl=%.2f tp=%.2f", self.name, side.value, bar.time, bar.close, stop, target)
        return (
            Signal(
                time=bar.time,
                type=side,
                price=bar.close,
                indicators=indicators,
                stop_loss=float(stop),
                take_profit=float(target),
            ),
            None,
        )

    def _track_hod_lod(self, bar: Bar, boundaries: Boundaries) -> None:
        """Count new highs/lows of day (how often the day extends itself)."""
        if self._day_high is None or boundaries.new_day:
            if self._day_high is not None:
                self._hod_counts.append(self._hod_count)
                self._lod_counts.append(self._lod_count)
            self._day_high, self._day_low = bar.high, bar.low
            self._hod_count, self._lod_count = 1, 1
            return
        if bar.high > self._day_high:
            self._day_high = bar.high
            self._hod_count += 1
        if bar.low < self._day_low:
            self._day_low = bar.low
            self._lod_count += 1


class CrossoverStrategy:
    """Long-only fast/slow MA crossover.

    Bullish cross while flat -> BUY entry; bearish cross while long -> SELL
    exit-only signal. The strategy tracks its own notional position; the live
    runner keeps it in sync through :meth:`rollback`.
    """

    kind = "crossover"

    def __init__(self, config: Optional[CrossoverConfig] = None):
        self.config = config or CrossoverConfig()
        self.name = self.config.name
        self.reset()

    def reset(self) -> None:
        cfg = self.config
        self.fast = MovingAverageState(cfg.ma_type, cfg.fast_period)
        self.slow = MovingAverageState(cfg.ma_type, cfg.slow_period)
        self.in_position = False
        self.last_time: Optional[int] = None
        self._bars = 0
        self._signals = 0
        self._crossovers = 0
        self._blocked: Dict[str, int] = {}

    @property
    def _labels(self) -> tuple[str, str]:
        cfg = self.config
        label = cfg.ma_type.upper()
        return f"{label} {cfg.fast_period}", f"{label} {cfg.slow_period}"

    def indicator_names(self) -> List[str]:
        fast, slow = self._labels
        return [fast, slow, "Fast > Slow"]

    def generate(self, bars: Iterable[Bar]) -> StrategyRun:
        self.reset()
        signals: List[Signal] = []
        rows: List[CalculationRow] = []
        for bar in bars:
            row = self.on_bar(bar)
            rows.append(row)
            if row.emitted is not None:
                signals.append(row.emitted)
        logger.info("[%s] %d bars -> %d signals", self.name, len(rows), len(signals))
        return StrategyRun(signals=signals, calculations=rows, stats=self.stats())

    def on_bar(self, bar: Bar, evaluate: bool = True) -> CalculationRow:
        if self.last_time is not None and bar.time <= self.last_time:
            raise OutOfOrderBarError(f"bar time {bar.time} is not after previous bar time {self.last_time}")
        self.last_time = bar.time
        self._bars += 1

        prev_fast, prev_slow = self.fast.value, self.slow.value
        fast = self.fast.update(bar.close)
        slow = self.slow.update(bar.close)

        cross = None
        if fast is not None and slow is not None:
            cross = detect_crossover(fast, slow, prev_fast, prev_slow)
        if cross is not None:
            self._crossovers += 1

        signal: Optional[Signal] = None
        blocked_reason: Optional[str] = None
        fast_label, slow_label = self._labels
        indicators = {
            fast_label: None if fast is None else round(fast, 4),
            slow_label: None if slow is None else round(slow, 4),
            "Fast > Slow": fast is not None and slow is not None and fast > slow,
        }
        if evaluate and cross == "bullish":
            if self.in_position:
                blocked_reason = "Already in position"
            else:
                signal = Signal(time=bar.time, type=SignalType.BUY, price=bar.close, indicators=dict(indicators))
                self.in_position = True
        elif evaluate and cross == "bearish":
            if self.in_position:
                signal = Signal(
                    time=bar.time, type=SignalType.SELL, price=bar.close, indicators=dict(indicators), is_entry=False
                )
                self.in_position = False
            else:
                blocked_reason = "No position to exit"

        if signal is not None:
            self._signals += 1
        if blocked_reason is not None:
            self._blocked[blocked_reason] = self._blocked.get(blocked_reason, 0) + 1

        values = dict(indicators)
        values["Crossover"] = cross
        values["In Position"] = self.in_position
        return CalculationRow(
            time=bar.time,
            open=bar.open,
            high=bar.high,
            low=bar.low,
            close=bar.close,
            signal=signal.type.value if signal is not None else "NONE",
            blocked=blocked_reason is not None,
            blocked_reason=blocked_reason,
            values=values,
            emitted=signal,
        )

    def rollback(self, signal: Signal) -> None:
        """Order for ``signal`` not filled: restore the notional position."""
        self.in_position = not signal.is_entry

    def stats(self) -> Dict[str, Any]:
        return {
            "bars": self._bars,
            "signals": self._signals,
            "crossovers": self._crossovers,
            "blocked": dict(self._blocked),
        }


_BUILDERS: Dict[str, Callable[..., Strategy]] = {
    "breakout": BreakoutStrategy,
    "crossover": CrossoverStrategy,
}


def build_strategy(config: StrategyConfig, **kwargs: Any) -> Strategy:
    """Instantiate the strategy matching ``config.kind``."""
    try:
        builder = _BUILDERS[config.kind]
    except KeyError:
        raise ValueError(f"unknown strategy kind {config.kind!r}") from None
    return builder(config, **kwargs)

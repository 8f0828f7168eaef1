"""Configuration objects.

Style rules:
- keep signatures stable (no alias chaos)
- prefer explicit field names
- strategy configs carry a ``kind`` tag; ``strategy.build_strategy`` dispatches on it
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

TIMEFRAMES: Tuple[str, ...] = ("1H", "Day", "Week", "Month")
DIRECTIONS = ("long", "short", "both")


@dataclass(frozen=True)
class TradingWindow:
    """Session-local window [start, end) in which new entries are allowed."""

    start_hour: int = 9
    start_minute: int = 15
    end_hour: int = 14
    end_minute: int = 15

    def __post_init__(self) -> None:
        if self.start_minutes >= self.end_minutes:
            raise ValueError("trading window start must be before its end")

    @property
    def start_minutes(self) -> int:
        return self.start_hour * 60 + self.start_minute

    @property
    def end_minutes(self) -> int:
        return self.end_hour * 60 + self.end_minute

    def contains(self, dt: datetime) -> bool:
        minutes = dt.hour * 60 + dt.minute
        return self.start_minutes <= minutes < self.end_minutes

    def label(self) -> str:
        return f"{self.start_hour}:{self.start_minute:02d} - {self.end_hour}:{self.end_minute:02d}"


@dataclass(frozen=True)
class AdxFilter:
    """ADX gate computed on completed ``timeframe`` candles only."""

    timeframe: str = "Day"  # 'Day' or '1H'
    period: int = 14
    threshold: float = 25.0

    def __post_init__(self) -> None:
        if self.timeframe not in ("1H", "Day"):
            raise ValueError(f"ADX timeframe must be '1H' or 'Day', got {self.timeframe!r}")
        if self.period <= 0:
            raise ValueError("ADX period must be positive")


@dataclass(frozen=True)
class BreakoutConfig:
    """Multi-timeframe breakout rule.

    One declarative config replaces the family of near-identical breakout
    strategies: the tracked level set, optional ADX gate and reward ratio are
    the only things that differ between them.
    """

    name: str = "Multi-TF Breakout"
    version: str = "1.0.0"
    direction: str = "long"
    levels: Tuple[str, ...] = TIMEFRAMES
    trading_window: TradingWindow = field(default_factory=TradingWindow)
    risk_reward_ratio: float = 1.0
    require_reset: bool = True
    adx: Optional[AdxFilter] = None

    # hour buckets start at HH:15 to line up with the NSE session open
    market_open_minute: int = 15
    timezone: str = "Asia/Kolkata"

    kind: str = field(default="breakout", init=False)

    def __post_init__(self) -> None:
        if self.direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}")
        if not self.levels:
            raise ValueError("at least one timeframe level is required")
        unknown = [tf for tf in self.levels if tf not in TIMEFRAMES]
        if unknown:
            raise ValueError(f"unknown timeframe levels: {unknown}")
        # keep canonical shortest-to-longest order
        object.__setattr__(self, "levels", tuple(tf for tf in TIMEFRAMES if tf in self.levels))
        if self.risk_reward_ratio <= 0:
            raise ValueError("risk_reward_ratio must be positive")
        if not 0 <= self.market_open_minute < 60:
            raise ValueError("market_open_minute must be within 0..59")

    @property
    def stop_timeframe(self) -> str:
        """Timeframe whose previous level is used as the stop (shortest tracked)."""
        return self.levels[0]

    @classmethod
    def from_params_dict(cls, d: dict, base: Optional["BreakoutConfig"] = None) -> "BreakoutConfig":
        """Create a config from a UI-style parameter dict.

        Accepts both the flat form and the ``{"direction": ..., "params": {...}}``
        form. Keys are camelCase (e.g., riskRewardRatio). Unknown keys are ignored.
        """
        d = dict(d or {})
        params = dict(d.pop("params", None) or {})
        params.update(d)

        base = base or cls()
        kwargs: Dict[str, Any] = {}
        simple = {
            "name": "name",
            "version": "version",
            "direction": "direction",
            "riskRewardRatio": "risk_reward_ratio",
            "requireReset": "require_reset",
            "marketOpenMinute": "market_open_minute",
            "timezone": "timezone",
        }
        for k, v in params.items():
            if k in simple:
                kwargs[simple[k]] = v
        if isinstance(kwargs.get("direction"), str):
            kwargs["direction"] = kwargs["direction"].lower()
        if "levels" in params:
            kwargs["levels"] = tuple(params["levels"])

        window_keys = ("startHour", "startMinute", "endHour", "endMinute")
        if any(k in params for k in window_keys):
            w = base.trading_window
            kwargs["trading_window"] = TradingWindow(
                start_hour=int(params.get("startHour", w.start_hour)),
                start_minute=int(params.get("startMinute", w.start_minute)),
                end_hour=int(params.get("endHour", w.end_hour)),
                end_minute=int(params.get("endMinute", w.end_minute)),
            )

        if "adxThreshold" in params or "adxPeriod" in params or "adxTimeframe" in params:
            a = base.adx or AdxFilter()
            kwargs["adx"] = AdxFilter(
                timeframe=str(params.get("adxTimeframe", a.timeframe)),
                period=int(params.get("adxPeriod", a.period)),
                threshold=float(params.get("adxThreshold", a.threshold)),
            )

        return replace(base, **kwargs)

    def describe(self) -> Dict[str, Dict[str, Any]]:
        """Every option with its current value and effect."""
        out: Dict[str, Dict[str, Any]] = {
            "direction": {
                "value": self.direction,
                "effect": "Which breakouts may open positions: long (above all highs), short (below all lows) or both.",
            },
            "levels": {
                "value": list(self.levels),
                "effect": "Previous-period levels that must all be broken by the close to enter.",
            },
            "tradingWindow": {
                "value": self.trading_window.label(),
                "effect": "Entries are only evaluated inside this session-local window.",
            },
            "riskRewardRatio": {
                "value": self.risk_reward_ratio,
                "effect": f"Take-profit distance = risk distance x ratio; stop sits at the previous {self.stop_timeframe} level.",
            },
            "requireReset": {
                "value": self.require_reset,
                "effect": "After an entry, a close back through any tracked level is required before the next entry in that direction.",
            },
            "marketOpenMinute": {
                "value": self.market_open_minute,
                "effect": "Minute-of-hour at which 1H buckets roll over.",
            },
        }
        if self.adx is not None:
            out["adx"] = {
                "value": {"timeframe": self.adx.timeframe, "period": self.adx.period, "threshold": self.adx.threshold},
                "effect": f"Entries require {self.adx.timeframe} ADX({self.adx.period}) >= {self.adx.threshold} on completed candles.",
            }
        return out


@dataclass(frozen=True)
class CrossoverConfig:
    """Long-only moving-average crossover rule."""

    name: str = "EMA 3/15 Simple"
    version: str = "1.0.0"
    ma_type: str = "ema"  # 'ema' or 'sma'
    fast_period: int = 3
    slow_period: int = 15
    direction: str = "long"
    timezone: str = "Asia/Kolkata"

    kind: str = field(default="crossover", init=False)

    def __post_init__(self) -> None:
        if self.ma_type not in ("ema", "sma"):
            raise ValueError(f"ma_type must be 'ema' or 'sma', got {self.ma_type!r}")
        if self.fast_period <= 0 or self.slow_period <= 0:
            raise ValueError("moving-average periods must be positive")
        if self.fast_period >= self.slow_period:
            raise ValueError("fast_period must be shorter than slow_period")
        if self.direction != "long":
            raise ValueError("crossover strategies are long-only")

    @classmethod
    def from_params_dict(cls, d: dict, base: Optional["CrossoverConfig"] = None) -> "CrossoverConfig":
        """Create a config from a UI-style parameter dict (camelCase keys)."""
        d = dict(d or {})
        params = dict(d.pop("params", None) or {})
        params.update(d)

        kwargs: Dict[str, Any] = {}
        mapping = {
            "name": "name",
            "version": "version",
            "fastPeriod": "fast_period",
            "slowPeriod": "slow_period",
            "direction": "direction",
            "maType": "ma_type",
            "timezone": "timezone",
        }
        for k, v in params.items():
            if k in mapping:
                kwargs[mapping[k]] = v
        # backtest panel style: type='ema-crossover' / 'sma-crossover'
        if isinstance(params.get("type"), str) and params["type"].endswith("-crossover"):
            kwargs["ma_type"] = params["type"].split("-")[0]
        for key in ("ma_type", "direction"):
            if isinstance(kwargs.get(key), str):
                kwargs[key] = kwargs[key].lower()
        return replace(base or cls(), **kwargs)

    def describe(self) -> Dict[str, Dict[str, Any]]:
        label = self.ma_type.upper()
        return {
            "maType": {"value": self.ma_type, "effect": "Moving average used for both lines."},
            "fastPeriod": {"value": self.fast_period, "effect": f"Fast {label} length in bars."},
            "slowPeriod": {"value": self.slow_period, "effect": f"Slow {label} length in bars."},
            "direction": {
                "value": self.direction,
                "effect": "Long-only: bullish cross opens while flat, bearish cross closes while long.",
            },
        }


@dataclass(frozen=True)
class CostConfig:
    """NSE/BSE equity intraday fee schedule."""

    exchange: str = "NSE"

    # per order: min(flat, pct * turnover)
    brokerage_flat: float = 20.0
    brokerage_pct: float = 0.0003

    transaction_nse: float = 0.0000297
    transaction_bse: float = 0.0000375

    # STT applies to the SELL leg only for intraday
    stt_sell: float = 0.00025
    sebi: float = 0.000001
    # stamp duty applies to the BUY leg only
    stamp_duty_buy: float = 0.00003
    ipft: float = 0.000001
    gst: float = 0.18

    def __post_init__(self) -> None:
        if self.exchange.upper() not in ("NSE", "BSE"):
            raise ValueError(f"exchange must be NSE or BSE, got {self.exchange!r}")


@dataclass(frozen=True)
class BacktestConfig:
    """Backtest run configuration."""

    symbol: str = "IDEA"
    initial_capital: float = 100_000.0
    quantity: int = 1

    # execution-price penalty per leg, modeled separately from fees
    slippage_pct: float = 0.0001

    # annual, subtracted (de-annualized) from period returns in the Sharpe ratio
    risk_free_rate: float = 0.06

    timezone: str = "Asia/Kolkata"

    # Optional intraday square-off; positions are always closed on the
    # session's final bar regardless.
    square_off_hour: Optional[int] = None
    square_off_minute: int = 0

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be positive")
        if self.initial_capital <= 0:
            raise ValueError("initial_capital must be positive")
        if self.slippage_pct < 0:
            raise ValueError("slippage_pct must be non-negative")


@dataclass(frozen=True)
class LiveConfig:
    """Live runner configuration."""

    quantity: int = 1
    order_timeout_s: float = 10.0
    slippage_pct: float = 0.0
    timezone: str = "Asia/Kolkata"

    # forced intraday close (2:30 PM IST)
    square_off_hour: int = 14
    square_off_minute: int = 30

    # number of calculation rows kept for diagnostics
    history_rows: int = 100

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be positive")
        if self.order_timeout_s <= 0:
            raise ValueError("order_timeout_s must be positive")

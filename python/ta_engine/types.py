"""Shared types for the strategy engine.

The guiding principle is to keep the runtime objects small and explicit.
Everything a strategy emits (signals, trades, calculation rows) is frozen once
created.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class OutOfOrderBarError(ValueError):
    """Raised when a bar's timestamp is not strictly after the previous one."""


class SignalType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class Direction(str, Enum):
    LONG = "Long"
    SHORT = "Short"


class ExitReason(str, Enum):
    STOP_LOSS = "StopLoss"
    TAKE_PROFIT = "TakeProfit"
    MARKET_CLOSE = "MarketClose"
    SIGNAL = "Signal"


@dataclass(frozen=True)
class Bar:
    """OHLCV bar.

    ``time`` is epoch seconds, unique and strictly increasing per symbol.
    """

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: int = 0


@dataclass(frozen=True)
class Signal:
    """Strategy output consumed once by the simulator or the live runner.

    ``is_entry=False`` marks an exit-only signal (e.g. a bearish crossover
    closing a long); such signals never open a position.
    """

    time: int
    type: SignalType
    price: float
    indicators: Dict[str, Any] = field(default_factory=dict)
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    is_entry: bool = True

    @property
    def direction(self) -> Direction:
        return Direction.LONG if self.type == SignalType.BUY else Direction.SHORT


@dataclass
class Position:
    """Open trade state. At most one per strategy instance."""

    direction: Direction
    entry_time: int
    entry_price: float
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    correlation_id: Optional[str] = None
    order_id: Optional[str] = None
    indicators: Dict[str, Any] = field(default_factory=dict)

    @property
    def exit_side(self) -> SignalType:
        return SignalType.SELL if self.direction == Direction.LONG else SignalType.BUY


@dataclass(frozen=True)
class TradeCosts:
    brokerage: float
    stt: float
    transaction_charges: float
    gst: float
    sebi_charges: float
    stamp_duty: float
    ipft_charges: float
    total_cost: float


@dataclass(frozen=True)
class Trade:
    """Closed-position record, appended to the run's ordered trade log."""

    id: str
    entry_time: int
    exit_time: int
    entry_date: str
    exit_date: str
    direction: Direction
    entry_price: float
    exit_price: float
    quantity: int
    gross_pnl: float
    costs: TradeCosts
    slippage: float
    pnl: float  # net of costs and slippage
    pnl_percent: float
    duration: str
    exit_reason: ExitReason
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    indicators: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CalculationRow:
    """Per-bar audit record.

    ``values`` holds the strategy-specific snapshot (levels, boundary flags,
    reset states, ADX, SL/TP or moving averages).
    """

    time: int
    open: float
    high: float
    low: float
    close: float
    signal: str = "NONE"  # 'BUY'/'SELL'/'NONE'
    blocked: bool = False
    blocked_reason: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)
    emitted: Optional[Signal] = None

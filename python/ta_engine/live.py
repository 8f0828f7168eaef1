"""Asynchronous live strategy runner.

The runner feeds bars (or ticks aggregated into 1-minute bars) into a
strategy, places orders through an injected coroutine and reports closed
trades through a callback. Order failures are contained here: they are
logged and forwarded to the notifier, never raised out of ``on_bar``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import asdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple
from zoneinfo import ZoneInfo

from .backtest import build_trade, check_exit_levels, open_position
from .config import LiveConfig
from .cost_model import IntradayCostModel
from .feed import BarFeed, TickAggregator
from .strategy import Strategy
from .types import Bar, CalculationRow, ExitReason, Position, Signal, SignalType, Trade

logger = logging.getLogger(__name__)

# place_order(side, quantity) -> {"price": ..., "orderId": ..., "correlationId": ...} (all optional)
PlaceOrder = Callable[[SignalType, int], Awaitable[Optional[Mapping[str, Any]]]]
TradeCallback = Callable[[Trade], Any]


class Notifier(Protocol):
    def notify(self, level: str, message: str) -> None: ...


class LoggingNotifier:
    """Default notifier: user-facing messages go to the log."""

    _LEVELS = {"info": logging.INFO, "success": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}

    def notify(self, level: str, message: str) -> None:
        logger.log(self._LEVELS.get(level, logging.INFO), "%s", message)


class LiveStrategyRunner:
    def __init__(
        self,
        strategy: Strategy,
        place_order: PlaceOrder,
        on_trade: Optional[TradeCallback] = None,
        notifier: Optional[Notifier] = None,
        config: LiveConfig = LiveConfig(),
        cost_model: Optional[IntradayCostModel] = None,
        symbol: str = "IDEA",
    ):
        self.strategy = strategy
        self.place_order = place_order
        self.on_trade = on_trade
        self.notifier = notifier or LoggingNotifier()
        self.config = config
        self.cost_model = cost_model or IntradayCostModel()
        self.symbol = symbol
        self.tz = ZoneInfo(config.timezone)

        self.running = False
        self.position: Optional[Position] = None
        self.trades: List[Trade] = []
        self.failed_orders = 0
        self.last_error: Optional[str] = None

        self.feed = BarFeed(symbol)
        self.aggregator = TickAggregator()
        self.history: Deque[CalculationRow] = deque(maxlen=config.history_rows)

        # (reason, exit indicators) of an exit whose order did not fill
        self._pending_exit: Optional[Tuple[ExitReason, Optional[Dict[str, Any]]]] = None
        self._lock = asyncio.Lock()

    # ---------- lifecycle ----------

    async def start(self, history: Iterable[Bar] = ()) -> None:
        """Warm up levels/indicators on ``history`` without trading, then go live."""
        async with self._lock:
            self.strategy.reset()
            self.feed = BarFeed(self.symbol)
            self.aggregator = TickAggregator()
            self.history.clear()
            self._pending_exit = None
            if self.position is not None:
                # still open at the broker; only the square-off or a stop/target closes it now
                logger.warning(
                    "[%s] restarting with an open %s position", self.strategy.name, self.position.direction.value
                )
            n = 0
            for bar in history:
                if self.feed.accept(bar):
                    self.history.append(self.strategy.on_bar(bar, evaluate=False))
                    n += 1
            self.running = True
        if n:
            self.notifier.notify("success", f"{self.strategy.name}: loaded {n} candles")
        else:
            self.notifier.notify("warning", f"{self.strategy.name}: no history, waiting for bars")
        logger.info("[%s] started after %d warm-up bars", self.strategy.name, n)

    async def stop(self) -> Optional[CalculationRow]:
        """Process the partial minute still held by the tick aggregator, then stop."""
        row = None
        async with self._lock:
            bar = self.aggregator.flush()
            if bar is not None and self.running and self.feed.accept(bar):
                row = await self._process(bar)
            self.running = False
        if self.position is not None:
            logger.warning("[%s] stopped with an open %s position", self.strategy.name, self.position.direction.value)
        logger.info("[%s] stopped", self.strategy.name)
        return row

    # ---------- data entry points ----------

    async def on_tick(self, price: float, volume: int, timestamp: float) -> Optional[CalculationRow]:
        bar = self.aggregator.on_tick(price, volume, timestamp)
        if bar is None:
            return None
        return await self.on_bar(bar)

    async def on_bar(self, bar: Bar) -> Optional[CalculationRow]:
        async with self._lock:
            if not self.running:
                logger.debug("[%s] not running, ignoring bar %s", self.strategy.name, bar.time)
                return None
            if not self.feed.accept(bar):
                return None
            return await self._process(bar)

    # ---------- internals ----------

    async def _process(self, bar: Bar) -> CalculationRow:
        dt = datetime.fromtimestamp(bar.time, tz=self.tz)
        minutes = dt.hour * 60 + dt.minute
        past_square_off = minutes >= self.config.square_off_hour * 60 + self.config.square_off_minute

        if self.position is not None and self._pending_exit is not None:
            reason, exit_indicators = self._pending_exit
            await self._exit(bar.time, bar.close, reason, exit_indicators)

        if self.position is not None and bar.time > self.position.entry_time:
            hit = check_exit_levels(self.position, bar)
            if hit is not None:
                await self._exit(bar.time, hit[0], hit[1])

        row = self.strategy.on_bar(bar)
        self.history.append(row)

        signal = row.emitted
        if signal is not None:
            if self.position is not None:
                if signal.direction != self.position.direction:
                    await self._exit(bar.time, signal.price, ExitReason.SIGNAL, signal.indicators)
            elif signal.is_entry:
                if past_square_off:
                    logger.info("[%s] %s signal after square-off ignored", self.strategy.name, signal.type.value)
                    self.strategy.rollback(signal)
                else:
                    await self._enter(signal)

        if self.position is not None and past_square_off:
            await self._exit(bar.time, bar.close, ExitReason.MARKET_CLOSE)
        return row

    async def _place(self, side: SignalType) -> Optional[Dict[str, Any]]:
        try:
            result = await asyncio.wait_for(self.place_order(side, self.config.quantity), self.config.order_timeout_s)
        except asyncio.TimeoutError:
            self._order_failed(side, f"timed out after {self.config.order_timeout_s:g}s")
            return None
        except Exception as exc:  # broker errors of any kind
            logger.exception("[%s] %s order raised", self.strategy.name, side.value)
            self._order_failed(side, str(exc) or type(exc).__name__)
            return None
        return dict(result or {})

    def _order_failed(self, side: SignalType, why: str) -> None:
        self.failed_orders += 1
        self.last_error = f"{side.value} order failed: {why}"
        logger.error("[%s] %s", self.strategy.name, self.last_error)
        self.notifier.notify("error", f"{self.strategy.name}: {self.last_error}")

    async def _enter(self, signal: Signal) -> None:
        result = await self._place(signal.type)
        if result is None:
            # stay flat and let the strategy re-arm
            self.strategy.rollback(signal)
            return
        self.position = open_position(
            signal,
            order_id=result.get("orderId"),
            correlation_id=result.get("correlationId"),
        )
        if result.get("price") is not None:
            self.position.entry_price = float(result["price"])
        logger.info(
            "[%s] entered %s at %.2f (sl=%s tp=%s)",
            self.strategy.name,
            self.position.direction.value,
            self.position.entry_price,
            self.position.stop_loss,
            self.position.take_profit,
        )
        self.notifier.notify("info", f"{self.strategy.name}: {signal.type.value} @ {self.position.entry_price:.2f}")

    async def _exit(
        self,
        exit_time: int,
        price: float,
        reason: ExitReason,
        exit_indicators: Optional[Dict[str, Any]] = None,
    ) -> bool:
        position = self.position
        result = await self._place(position.exit_side)
        if result is None:
            # keep the position; retry on the next bar
            self._pending_exit = (reason, exit_indicators)
            return False

        fill = float(result["price"]) if result.get("price") is not None else float(price)
        trade = build_trade(
            f"{self.symbol}-{len(self.trades) + 1}",
            position,
            exit_time,
            fill,
            reason,
            self.config.quantity,
            self.cost_model,
            self.config.slippage_pct,
            self.tz,
            exit_indicators,
        )
        self.trades.append(trade)
        self.position = None
        self._pending_exit = None
        logger.info("[%s] closed %s (%s) pnl=%.2f", self.strategy.name, trade.id, reason.value, trade.pnl)
        self.notifier.notify(
            "success" if trade.pnl > 0 else "warning",
            f"{self.strategy.name}: {reason.value} exit @ {fill:.2f}, P&L {trade.pnl:.2f}",
        )
        await self._emit_trade(trade)
        return True

    async def _emit_trade(self, trade: Trade) -> None:
        if self.on_trade is None:
            return
        try:
            out = self.on_trade(trade)
            if inspect.isawaitable(out):
                await out
        except Exception:
            logger.exception("[%s] trade callback failed for %s", self.strategy.name, trade.id)

    # ---------- diagnostics ----------

    def get_diagnostics(self) -> Dict[str, Any]:
        last = self.history[-1] if self.history else None
        return {
            "strategy": self.strategy.name,
            "kind": self.strategy.kind,
            "symbol": self.symbol,
            "running": self.running,
            "bars_accepted": self.feed.accepted,
            "bars_dropped": self.feed.dropped,
            "last_bar_time": self.feed.last_time,
            "position": None if self.position is None else asdict(self.position),
            "pending_exit": None if self._pending_exit is None else self._pending_exit[0].value,
            "trades": len(self.trades),
            "net_pnl": round(sum(t.pnl for t in self.trades), 2),
            "failed_orders": self.failed_orders,
            "last_error": self.last_error,
            "indicators": {} if last is None else {k: last.values.get(k) for k in self.strategy.indicator_names()},
            "stats": self.strategy.stats(),
        }

    def calculation_history(self) -> List[CalculationRow]:
        return list(self.history)

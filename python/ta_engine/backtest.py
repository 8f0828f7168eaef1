"""Trade simulation and backtest runners."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .analytics import compute_analytics
from .config import BacktestConfig
from .cost_model import IntradayCostModel
from .data_provider import CsvProvider, OhlcvFrame, YfinanceProvider, frame_to_bars
from .export import build_export, calculations_frame, equity_frame, trades_frame, write_export
from .feed import validate_bars
from .metrics import MetricsBucket, compute_metrics, empty_metrics
from .strategy import Strategy, StrategyConfig, build_strategy
from .types import Bar, CalculationRow, Direction, ExitReason, Position, Signal, Trade

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M"


@dataclass
class SimulationResult:
    trades: List[Trade]
    bars_in_position: int
    total_market_bars: int
    equity: List[Tuple[int, float]]  # realized equity after each bar


@dataclass
class BacktestResult:
    trades: List[Trade]
    metrics: Dict[str, MetricsBucket]
    signals: List[Signal]
    calculations: List[CalculationRow]
    analytics: Dict[str, Any] = field(default_factory=dict)
    equity: List[Tuple[int, float]] = field(default_factory=list)
    start_time: Optional[int] = None
    end_time: Optional[int] = None


def format_duration(seconds: int) -> str:
    """'45min', '2h 5min' or 'N day(s)'."""
    minutes = max(int(seconds), 0) // 60
    if minutes < 60:
        return f"{minutes}min"
    hours, rem = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {rem}min"
    days = hours // 24
    return f"{days} day" if days == 1 else f"{days} days"


def format_time(t: int, tz: ZoneInfo) -> str:
    return datetime.fromtimestamp(int(t), tz=tz).strftime(DATE_FORMAT)


def build_trade(
    trade_id: str,
    position: Position,
    exit_time: int,
    exit_price: float,
    reason: ExitReason,
    quantity: int,
    cost_model: IntradayCostModel,
    slippage_pct: float,
    tz: ZoneInfo,
    exit_indicators: Optional[Dict[str, Any]] = None,
) -> Trade:
    """Close ``position`` into a fully costed trade record.

    Gross P&L uses the fill prices; slippage is charged separately on both
    legs. All money fields are rounded to cents and
    ``pnl == gross_pnl - costs.total_cost - slippage`` holds exactly.
    """
    entry = float(position.entry_price)
    exit_ = float(exit_price)
    is_long = position.direction == Direction.LONG
    sign = 1.0 if is_long else -1.0

    gross = round((exit_ - entry) * sign * quantity, 2)
    buy, sell = (entry, exit_) if is_long else (exit_, entry)
    costs = cost_model.round_trip(buy, sell, quantity)
    slippage = round((entry + exit_) * slippage_pct * quantity, 2)
    net = round(gross - costs.total_cost - slippage, 2)
    notional = entry * quantity

    indicators = dict(position.indicators)
    if exit_indicators:
        indicators["Exit"] = dict(exit_indicators)

    return Trade(
        id=trade_id,
        entry_time=position.entry_time,
        exit_time=int(exit_time),
        entry_date=format_time(position.entry_time, tz),
        exit_date=format_time(exit_time, tz),
        direction=position.direction,
        entry_price=round(entry, 2),
        exit_price=round(exit_, 2),
        quantity=int(quantity),
        gross_pnl=gross,
        costs=costs,
        slippage=slippage,
        pnl=net,
        pnl_percent=round(net / notional * 100.0, 2) if notional > 0 else 0.0,
        duration=format_duration(int(exit_time) - position.entry_time),
        exit_reason=reason,
        stop_loss=position.stop_loss,
        take_profit=position.take_profit,
        indicators=indicators,
    )


def check_exit_levels(position: Position, bar: Bar) -> Optional[Tuple[float, ExitReason]]:
    """Stop/target hit inside ``bar``; the stop wins when both are touched."""
    if position.direction == Direction.LONG:
        if position.stop_loss is not None and bar.low <= position.stop_loss:
            return position.stop_loss, ExitReason.STOP_LOSS
        if position.take_profit is not None and bar.high >= position.take_profit:
            return position.take_profit, ExitReason.TAKE_PROFIT
    else:
        if position.stop_loss is not None and bar.high >= position.stop_loss:
            return position.stop_loss, ExitReason.STOP_LOSS
        if position.take_profit is not None and bar.low <= position.take_profit:
            return position.take_profit, ExitReason.TAKE_PROFIT
    return None


def open_position(signal: Signal, **kwargs: Any) -> Position:
    return Position(
        direction=signal.direction,
        entry_time=signal.time,
        entry_price=signal.price,
        stop_loss=signal.stop_loss,
        take_profit=signal.take_profit,
        indicators=dict(signal.indicators),
        **kwargs,
    )


def simulate_trades(
    bars: Sequence[Bar],
    signals: Iterable[Signal],
    config: BacktestConfig = BacktestConfig(),
    cost_model: Optional[IntradayCostModel] = None,
) -> SimulationResult:
    """Walk the bars once, turning signals into closed trades.

    Per bar, in order: stop/target of a position opened on an earlier bar;
    the signal stamped on this bar (opposing signal closes, entry signal
    opens when flat); forced close on the session's final bar or at the
    square-off time. One position at a time.
    """
    bars = validate_bars(bars)
    cost_model = cost_model or IntradayCostModel()
    tz = ZoneInfo(config.timezone)
    qty = config.quantity

    by_time: Dict[int, Signal] = {}
    for s in signals:
        if s.time in by_time:
            logger.warning("more than one signal at %s; keeping the first", s.time)
            continue
        by_time[s.time] = s

    dates = [datetime.fromtimestamp(b.time, tz=tz) for b in bars]
    square_off = None
    if config.square_off_hour is not None:
        square_off = config.square_off_hour * 60 + config.square_off_minute

    trades: List[Trade] = []
    equity: List[Tuple[int, float]] = []
    realized = float(config.initial_capital)
    position: Optional[Position] = None
    in_position_bars = 0

    def close(bar_time: int, price: float, reason: ExitReason, exit_indicators=None) -> None:
        nonlocal position, realized
        trade = build_trade(
            f"T{len(trades) + 1}",
            position,
            bar_time,
            price,
            reason,
            qty,
            cost_model,
            config.slippage_pct,
            tz,
            exit_indicators,
        )
        trades.append(trade)
        realized += trade.pnl
        logger.debug("%s closed %s at %.2f (%s) pnl=%.2f", trade.id, trade.direction.value, price, reason.value, trade.pnl)
        position = None

    for i, bar in enumerate(bars):
        dt = dates[i]
        held = position is not None

        if position is not None and bar.time > position.entry_time:
            hit = check_exit_levels(position, bar)
            if hit is not None:
                close(bar.time, hit[0], hit[1])

        past_square_off = square_off is not None and dt.hour * 60 + dt.minute >= square_off
        signal = by_time.get(bar.time)
        if signal is not None:
            if position is not None:
                if signal.direction != position.direction:
                    close(bar.time, signal.price, ExitReason.SIGNAL, signal.indicators)
            elif signal.is_entry and not past_square_off:
                position = open_position(signal)
                held = True

        session_end = i == len(bars) - 1 or dates[i + 1].date() != dt.date()
        if position is not None and (session_end or past_square_off):
            close(bar.time, bar.close, ExitReason.MARKET_CLOSE)

        if held:
            in_position_bars += 1
        equity.append((bar.time, round(realized, 2)))

    logger.info("simulated %d bars -> %d trades", len(bars), len(trades))
    return SimulationResult(
        trades=trades,
        bars_in_position=in_position_bars,
        total_market_bars=len(bars),
        equity=equity,
    )


def run_backtest(
    strategy: Strategy,
    bars: Iterable[Bar],
    config: BacktestConfig = BacktestConfig(),
    cost_model: Optional[IntradayCostModel] = None,
) -> BacktestResult:
    """Generate signals, simulate trades and compute metrics.

    The strategy is reset first, so repeated runs on the same input give
    identical results.
    """
    bars = validate_bars(bars)
    if not bars:
        strategy.reset()
        return BacktestResult(trades=[], metrics=empty_metrics(), signals=[], calculations=[], analytics=compute_analytics([], strategy.stats()))

    run = strategy.generate(bars)
    sim = simulate_trades(bars, run.signals, config, cost_model)
    metrics = compute_metrics(
        sim.trades,
        config.initial_capital,
        start_time=bars[0].time,
        end_time=bars[-1].time,
        bars_in_position=sim.bars_in_position,
        total_market_bars=sim.total_market_bars,
        timezone=config.timezone,
        risk_free_rate=config.risk_free_rate,
        session_times=[b.time for b in bars],
    )
    overall = metrics["overall"]
    logger.info(
        "[%s] %s: %d trades, return %.2f%%, win rate %.2f%%",
        strategy.name,
        config.symbol,
        overall.total_trades,
        overall.return_pct,
        overall.win_rate,
    )
    return BacktestResult(
        trades=sim.trades,
        metrics=metrics,
        signals=run.signals,
        calculations=run.calculations,
        analytics=compute_analytics(sim.trades, run.stats),
        equity=sim.equity,
        start_time=bars[0].time,
        end_time=bars[-1].time,
    )


def run_from_yfinance(
    symbol: str,
    start: str,
    end: str,
    strategy_config: StrategyConfig,
    output_dir: str | Path = "outputs",
    bt_cfg: Optional[BacktestConfig] = None,
    interval: str = "1m",
) -> dict[str, Path]:
    """Convenience runner using yfinance (1-minute history is short)."""
    frame = YfinanceProvider().fetch(symbol=symbol, start=start, end=end, interval=interval)
    return _run_core(frame, output_dir, strategy_config, bt_cfg)


def run_from_csv(
    csv_path: str | Path,
    symbol: str,
    strategy_config: StrategyConfig,
    output_dir: str | Path = "outputs",
    bt_cfg: Optional[BacktestConfig] = None,
) -> dict[str, Path]:
    frame = CsvProvider().fetch(csv_path=csv_path, symbol=symbol)
    return _run_core(frame, output_dir, strategy_config, bt_cfg)


def _run_core(
    frame: OhlcvFrame,
    output_dir: str | Path,
    strategy_config: StrategyConfig,
    bt_cfg: Optional[BacktestConfig] = None,
    calculation_rows: int = 500,
) -> dict[str, Path]:
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    bt_cfg = bt_cfg or BacktestConfig(symbol=frame.symbol)
    strategy = build_strategy(strategy_config)
    result = run_backtest(strategy, frame_to_bars(frame), bt_cfg)

    stem = frame.symbol.replace(".", "_")
    tr_path = out_dir / f"trades_{stem}.csv"
    eq_path = out_dir / f"equity_{stem}.csv"
    calc_path = out_dir / f"calculations_{stem}.csv"
    json_path = out_dir / f"backtest_{stem}.json"

    trades_frame(result.trades).to_csv(tr_path, index=False, encoding="utf-8")
    equity_frame(result.equity, bt_cfg.timezone).to_csv(eq_path, encoding="utf-8")
    calculations_frame(result.calculations[-calculation_rows:], bt_cfg.timezone).to_csv(
        calc_path, index=False, encoding="utf-8"
    )
    write_export(build_export(result, strategy, bt_cfg), json_path)

    return {"trades": tr_path, "equity": eq_path, "calculations": calc_path, "export": json_path}

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List
from zoneinfo import ZoneInfo

import pytest

from ta_engine.backtest import build_trade, format_duration, run_backtest, simulate_trades
from ta_engine.config import AdxFilter, BacktestConfig, BreakoutConfig, CrossoverConfig
from ta_engine.cost_model import IntradayCostModel
from ta_engine.levels import ClosedPeriodAdx
from ta_engine.strategy import BreakoutStrategy, CrossoverStrategy
from ta_engine.types import Bar, Direction, ExitReason, OutOfOrderBarError, Position, Signal, SignalType

IST = ZoneInfo("Asia/Kolkata")
DAY = datetime(2024, 3, 5, 10, 0, tzinfo=IST)


def _t(minutes: int) -> int:
    return int((DAY + timedelta(minutes=minutes)).timestamp())


def _bar(minutes: int, close: float, high: float | None = None, low: float | None = None) -> Bar:
    return Bar(
        time=_t(minutes),
        open=close,
        high=close if high is None else high,
        low=close if low is None else low,
        close=close,
    )


def _buy(minutes: int, price: float, sl: float | None = 95.0, tp: float | None = 110.0) -> Signal:
    return Signal(time=_t(minutes), type=SignalType.BUY, price=price, stop_loss=sl, take_profit=tp)


NO_SLIPPAGE = BacktestConfig(slippage_pct=0.0)


def test_stop_hit_on_session_last_bar_exits_at_stop() -> None:
    bars = [_bar(0, 100.0), _bar(1, 100.5, 101.0, 99.0), _bar(2, 96.0, 97.0, 94.5)]
    sim = simulate_trades(bars, [_buy(0, 100.0)], NO_SLIPPAGE)

    assert len(sim.trades) == 1
    t = sim.trades[0]
    assert t.exit_reason == ExitReason.STOP_LOSS
    assert t.exit_price == 95.0
    assert t.gross_pnl == pytest.approx(-5.0)
    assert t.exit_time == bars[2].time


def test_target_hit_exits_at_target() -> None:
    bars = [_bar(0, 100.0), _bar(1, 108.0, 110.2, 105.0), _bar(2, 109.0)]
    sim = simulate_trades(bars, [_buy(0, 100.0)], NO_SLIPPAGE)
    t = sim.trades[0]
    assert t.exit_reason == ExitReason.TAKE_PROFIT
    assert t.exit_price == 110.0
    assert t.exit_time == bars[1].time


def test_stop_wins_when_both_levels_touched() -> None:
    bars = [_bar(0, 100.0), _bar(1, 100.0, 111.0, 94.0), _bar(2, 100.0)]
    sim = simulate_trades(bars, [_buy(0, 100.0)], NO_SLIPPAGE)
    assert sim.trades[0].exit_reason == ExitReason.STOP_LOSS


def test_entry_bar_range_does_not_trigger_exit() -> None:
    bars = [_bar(0, 100.0, 112.0, 90.0), _bar(1, 101.0)]
    sim = simulate_trades(bars, [_buy(0, 100.0)], NO_SLIPPAGE)
    t = sim.trades[0]
    assert t.exit_reason == ExitReason.MARKET_CLOSE
    assert t.exit_price == 101.0


def test_session_end_forces_market_close() -> None:
    next_day = DAY + timedelta(days=1)
    bars = [
        _bar(0, 100.0),
        _bar(1, 102.0),
        Bar(time=int(next_day.timestamp()), open=103.0, high=103.0, low=103.0, close=103.0),
    ]
    sim = simulate_trades(bars, [_buy(0, 100.0)], NO_SLIPPAGE)
    t = sim.trades[0]
    assert t.exit_reason == ExitReason.MARKET_CLOSE
    assert t.exit_time == bars[1].time
    assert t.exit_price == 102.0
    assert sim.bars_in_position == 2
    assert sim.total_market_bars == 3


def test_square_off_time_closes_and_blocks_late_entries() -> None:
    cfg = BacktestConfig(slippage_pct=0.0, square_off_hour=10, square_off_minute=2)
    bars = [_bar(0, 100.0), _bar(1, 101.0), _bar(2, 102.0), _bar(3, 103.0)]
    sim = simulate_trades(bars, [_buy(0, 100.0), _buy(3, 103.0)], cfg)
    assert len(sim.trades) == 1
    assert sim.trades[0].exit_time == bars[2].time
    assert sim.trades[0].exit_reason == ExitReason.MARKET_CLOSE


def test_opposing_signal_closes_position() -> None:
    bars = [_bar(0, 100.0), _bar(1, 101.0), _bar(2, 102.0), _bar(3, 102.5)]
    exit_sig = Signal(time=_t(2), type=SignalType.SELL, price=102.0, is_entry=False)
    sim = simulate_trades(bars, [_buy(0, 100.0, sl=None, tp=None), exit_sig], NO_SLIPPAGE)
    assert len(sim.trades) == 1
    t = sim.trades[0]
    assert t.exit_reason == ExitReason.SIGNAL
    assert t.exit_price == 102.0
    assert t.duration == "2min"


def test_exit_only_signal_never_opens() -> None:
    bars = [_bar(0, 100.0), _bar(1, 101.0)]
    exit_sig = Signal(time=_t(0), type=SignalType.SELL, price=100.0, is_entry=False)
    assert simulate_trades(bars, [exit_sig], NO_SLIPPAGE).trades == []


def test_net_pnl_identity_and_slippage() -> None:
    cfg = BacktestConfig(quantity=37, slippage_pct=0.0001)
    bars = [_bar(0, 100.13), _bar(1, 101.0, 101.0, 96.0), _bar(2, 97.31)]
    sim = simulate_trades(bars, [_buy(0, 100.13, sl=95.07, tp=111.19)], cfg)
    t = sim.trades[0]
    assert t.slippage == round((100.13 + 97.31) * 0.0001 * 37, 2)
    assert t.pnl == round(t.gross_pnl - t.costs.total_cost - t.slippage, 2)
    assert t.pnl_percent == round(t.pnl / (100.13 * 37) * 100, 2)


def test_short_trade_pnl_sign() -> None:
    pos = Position(direction=Direction.SHORT, entry_time=_t(0), entry_price=100.0, stop_loss=105.0, take_profit=90.0)
    trade = build_trade("T1", pos, _t(30), 90.0, ExitReason.TAKE_PROFIT, 10, IntradayCostModel(), 0.0, IST)
    assert trade.gross_pnl == pytest.approx(100.0)
    assert trade.pnl < trade.gross_pnl
    assert trade.entry_date == "2024-03-05 10:00"
    assert trade.exit_date == "2024-03-05 10:30"


def test_format_duration() -> None:
    assert format_duration(45 * 60) == "45min"
    assert format_duration(125 * 60) == "2h 5min"
    assert format_duration(86400) == "1 day"
    assert format_duration(3 * 86400 + 60) == "3 days"


def test_simulate_rejects_out_of_order_bars() -> None:
    with pytest.raises(OutOfOrderBarError):
        simulate_trades([_bar(1, 100.0), _bar(0, 100.0)], [])


class _FixedAdx(ClosedPeriodAdx):
    def __init__(self) -> None:
        super().__init__("Day", 14)

    def reset(self) -> None:
        super().reset()
        self.value = 30.0

    def update(self, bar, boundaries):
        return self.value


def _breakout_bars() -> List[Bar]:
    start = datetime(2024, 1, 1, 10, 0, tzinfo=IST)
    bars = [
        Bar(time=int((start + timedelta(days=i)).timestamp()), open=100.0, high=100.5, low=99.5, close=99.6 + i * 0.01)
        for i in range(50)
    ]
    day = start + timedelta(days=50)
    bars.append(Bar(time=int(day.timestamp()), open=100.1, high=110.5, low=99.5, close=110.0))
    for hour in (11, 12):
        t = int(day.replace(hour=hour).timestamp())
        bars.append(Bar(time=t, open=108.0, high=108.5, low=107.5, close=108.0))
    return bars


def _breakout_strategy() -> BreakoutStrategy:
    cfg = BreakoutConfig(adx=AdxFilter(timeframe="Day", threshold=25.0))
    return BreakoutStrategy(cfg, adx_tracker=_FixedAdx())


def test_breakout_backtest_end_to_end() -> None:
    bars = _breakout_bars()
    result = run_backtest(_breakout_strategy(), bars, BacktestConfig())

    assert len(result.signals) == 1
    assert len(result.trades) == 1
    t = result.trades[0]
    # the retrace re-arms the strategy but does not touch the open position
    assert t.exit_reason == ExitReason.MARKET_CLOSE
    assert t.exit_time == bars[52].time
    assert t.entry_price == 110.0
    assert t.stop_loss == pytest.approx(99.5)
    assert t.take_profit == pytest.approx(120.5)

    overall = result.metrics["overall"]
    assert overall.total_trades == 1
    assert overall.loss_rate == 100.0
    assert overall.time_in_market_pct == pytest.approx(round(3 / 53 * 100, 2))
    assert overall.risk_reward_ratio == pytest.approx(1.0)
    assert result.analytics["exit_reasons"]["MarketCloseLoss"] == 1


def test_backtest_is_idempotent() -> None:
    strategy = _breakout_strategy()
    bars = _breakout_bars()
    a = run_backtest(strategy, bars)
    b = run_backtest(strategy, bars)
    assert a.trades == b.trades
    assert a.metrics == b.metrics
    assert a.equity == b.equity


def test_flat_series_yields_empty_metrics() -> None:
    start = datetime(2024, 1, 1, 10, 0, tzinfo=IST)
    bars = [
        Bar(time=int((start + timedelta(days=i)).timestamp()), open=100.0, high=100.5, low=99.5, close=100.0)
        for i in range(100)
    ]
    result = run_backtest(_breakout_strategy(), bars)
    assert result.trades == []
    for bucket in result.metrics.values():
        assert bucket.total_trades == 0
        assert bucket.sharpe_ratio == 0.0
        assert bucket.profit_factor == 0.0


def test_empty_input() -> None:
    result = run_backtest(CrossoverStrategy(), [])
    assert result.trades == [] and result.signals == []
    assert result.metrics["overall"].return_pct == 0.0


def test_crossover_backtest_signal_exit() -> None:
    closes = [10, 10, 10, 10, 9, 8, 7, 12, 14, 15, 6, 4, 3]
    bars = [_bar(i, float(c)) for i, c in enumerate(closes)]
    strategy = CrossoverStrategy(CrossoverConfig(ma_type="sma", fast_period=2, slow_period=4))
    result = run_backtest(strategy, bars, NO_SLIPPAGE)
    assert len(result.trades) == 1
    t = result.trades[0]
    assert t.exit_reason == ExitReason.SIGNAL
    assert t.gross_pnl == pytest.approx(-6.0)
    assert t.stop_loss is None


def _sell(minutes: int, price: float, sl: float = 105.0, tp: float = 90.0) -> Signal:
    return Signal(time=_t(minutes), type=SignalType.SELL, price=price, stop_loss=sl, take_profit=tp)


def test_short_stop_and_target_levels() -> None:
    stop_bars = [_bar(0, 100.0), _bar(1, 104.0, 105.2, 103.0), _bar(2, 104.0)]
    t = simulate_trades(stop_bars, [_sell(0, 100.0)], NO_SLIPPAGE).trades[0]
    assert (t.direction, t.exit_reason, t.exit_price) == (Direction.SHORT, ExitReason.STOP_LOSS, 105.0)
    assert t.gross_pnl == pytest.approx(-5.0)

    target_bars = [_bar(0, 100.0), _bar(1, 91.0, 92.0, 89.8), _bar(2, 91.0)]
    t = simulate_trades(target_bars, [_sell(0, 100.0)], NO_SLIPPAGE).trades[0]
    assert (t.exit_reason, t.exit_price) == (ExitReason.TAKE_PROFIT, 90.0)
    assert t.gross_pnl == pytest.approx(10.0)

    both_bars = [_bar(0, 100.0), _bar(1, 100.0, 106.0, 89.0), _bar(2, 100.0)]
    t = simulate_trades(both_bars, [_sell(0, 100.0)], NO_SLIPPAGE).trades[0]
    assert t.exit_reason == ExitReason.STOP_LOSS


def test_short_breakdown_backtest_stops_out() -> None:
    start = datetime(2024, 1, 1, 10, 0, tzinfo=IST)
    bars = [
        Bar(time=int((start + timedelta(days=i)).timestamp()), open=100.0, high=100.5, low=99.5, close=100.4 - i * 0.01)
        for i in range(50)
    ]
    day = start + timedelta(days=50)
    bars.append(Bar(time=int(day.timestamp()), open=99.9, high=100.5, low=89.5, close=90.0))
    bars.append(Bar(time=int(day.replace(hour=11).timestamp()), open=95.0, high=101.0, low=95.0, close=96.0))

    cfg = BreakoutConfig(direction="short", adx=AdxFilter(timeframe="Day", threshold=25.0))
    result = run_backtest(BreakoutStrategy(cfg, adx_tracker=_FixedAdx()), bars, NO_SLIPPAGE)

    assert [s.type for s in result.signals] == [SignalType.SELL]
    assert len(result.trades) == 1
    t = result.trades[0]
    assert t.direction == Direction.SHORT
    assert t.entry_price == 90.0
    assert t.stop_loss == pytest.approx(100.5)
    assert t.take_profit == pytest.approx(79.5)
    assert t.exit_reason == ExitReason.STOP_LOSS
    assert t.exit_price == 100.5
    assert t.gross_pnl == pytest.approx(-10.5 * t.quantity)

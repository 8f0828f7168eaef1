from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pandas as pd
import pytest

from ta_engine.metrics import compute_metrics, empty_metrics, max_drawdown, sharpe_ratio
from ta_engine.types import Direction, ExitReason, Trade, TradeCosts

IST = ZoneInfo("Asia/Kolkata")
MONDAY = datetime(2024, 3, 4, 11, 0, tzinfo=IST)

ZERO_COSTS = TradeCosts(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


def _trade(i: int, pnl: float, day_offset: int) -> Trade:
    exit_dt = MONDAY + timedelta(days=day_offset)
    t = int(exit_dt.timestamp())
    return Trade(
        id=f"T{i}",
        entry_time=t - 600,
        exit_time=t,
        entry_date="",
        exit_date="",
        direction=Direction.LONG,
        entry_price=100.0,
        exit_price=100.0,
        quantity=1,
        gross_pnl=pnl,
        costs=ZERO_COSTS,
        slippage=0.0,
        pnl=pnl,
        pnl_percent=pnl,
        duration="10min",
        exit_reason=ExitReason.SIGNAL,
    )


def _four_trades() -> list[Trade]:
    # Mon..Thu of a single week
    return [_trade(1, 100.0, 0), _trade(2, -50.0, 1), _trade(3, 200.0, 2), _trade(4, -50.0, 3)]


def _metrics(trades, **kwargs):
    return compute_metrics(
        trades,
        initial_capital=10_000.0,
        start_time=trades[0].entry_time,
        end_time=trades[-1].exit_time,
        **kwargs,
    )


def test_overall_trade_statistics() -> None:
    m = _metrics(_four_trades())["overall"]
    assert m.total_trades == 4
    assert m.return_pct == pytest.approx(2.0)
    assert m.win_rate == 50.0
    assert m.loss_rate == 50.0
    assert m.profit_factor == pytest.approx(3.0)
    assert m.avg_win == pytest.approx(150.0)
    assert m.avg_loss == pytest.approx(50.0)
    assert m.payoff_ratio == pytest.approx(3.0)
    assert m.expectancy == pytest.approx(50.0)
    # peak 10100 -> 10050
    assert m.max_drawdown_pct == pytest.approx(0.5)
    assert m.recovery_factor == pytest.approx(4.0)
    assert m.max_consecutive_wins == 1
    assert m.max_consecutive_losses == 1


def test_period_buckets_aggregate_by_exit_period() -> None:
    metrics = _metrics(_four_trades())
    daily = metrics["daily"]
    assert daily.periods == 4
    assert daily.win_rate == 50.0
    assert daily.return_pct == pytest.approx(0.5)

    weekly = metrics["weekly"]
    assert weekly.periods == 1
    assert weekly.win_rate == 100.0
    assert weekly.total_trades == 4
    assert metrics["yearly"].periods == 1


def test_flat_periods_are_counted() -> None:
    trades = [_trade(1, 100.0, 0), _trade(2, 100.0, 14)]
    weekly = _metrics(trades)["weekly"]
    assert weekly.periods == 3
    # two active weeks, both winners
    assert weekly.win_rate == 100.0
    assert weekly.return_pct == pytest.approx(round(200.0 / 10_000 * 100 / 3, 2))


def test_time_in_market() -> None:
    m = _metrics(_four_trades(), bars_in_position=25, total_market_bars=100)
    assert m["overall"].time_in_market_pct == 25.0
    assert m["daily"].time_in_market_pct == 25.0


def test_no_losses_caps_ratios() -> None:
    m = _metrics([_trade(1, 10.0, 0), _trade(2, 20.0, 1)])["overall"]
    assert m.profit_factor == 99.99
    assert m.payoff_ratio == 99.99
    assert m.max_drawdown_pct == 0.0
    assert m.recovery_factor == 0.0


def test_empty_trade_log_gives_zero_metrics() -> None:
    m = compute_metrics([], 10_000.0, 0, 0)
    assert set(m) == {"daily", "weekly", "monthly", "quarterly", "yearly", "overall"}
    assert m == empty_metrics()
    assert all(v == 0 for v in m["overall"].to_dict().values())


def test_max_drawdown() -> None:
    pct, amount = max_drawdown(pd.Series([100.0, 120.0, 90.0, 130.0]))
    assert pct == pytest.approx(25.0)
    assert amount == pytest.approx(30.0)


def test_sharpe_ratio_degenerate_inputs() -> None:
    assert sharpe_ratio([0.01], 252) == 0.0
    assert sharpe_ratio([0.25, 0.25, 0.25], 252) == 0.0
    assert sharpe_ratio([0.01, -0.005, 0.02], 252) > 0


def test_daily_periods_skip_weekends() -> None:
    # Fri 2024-03-08 and Mon 2024-03-11
    trades = [_trade(1, 100.0, 4), _trade(2, 100.0, 7)]
    daily = _metrics(trades)["daily"]
    assert daily.periods == 2
    assert daily.return_pct == pytest.approx(1.0)
    assert daily.sharpe_ratio == 0.0


def test_daily_periods_follow_session_dates() -> None:
    # Tue 2024-03-05 has no bars (exchange holiday)
    trades = [_trade(1, 100.0, 0), _trade(2, -50.0, 2)]
    sessions = [trades[0].entry_time, trades[0].exit_time, trades[1].entry_time, trades[1].exit_time]
    m = _metrics(trades, session_times=sessions)
    assert m["daily"].periods == 2
    assert m["daily"].return_pct == pytest.approx(0.25)
    assert m["weekly"].periods == 1

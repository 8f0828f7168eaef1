"""Performance metrics.

Metrics are recomputed wholesale from the trade log for each run. Every
ratio has a defined neutral value (0) when its denominator is empty.

Buckets:
- daily: trade P&L is summed per trading session (by exit time,
  session-local). Only dates that have bars are periods, so weekends and
  holidays do not dilute the return or the Sharpe ratio.
- weekly/monthly/quarterly/yearly: the same sum per calendar period over
  every period spanned by the backtest, including periods without trades.
- Return is the average per period; win/loss statistics count active
  periods only.
- overall: per-trade statistics over the whole run.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .types import Trade

# (pandas period alias, periods per year)
BUCKETS: Dict[str, Tuple[str, int]] = {
    "daily": ("D", 252),
    "weekly": ("W", 52),
    "monthly": ("M", 12),
    "quarterly": ("Q", 4),
    "yearly": ("Y", 1),
}

# cap for unbounded ratios (no losses at all)
RATIO_CAP = 99.99


@dataclass(frozen=True)
class MetricsBucket:
    return_pct: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown_pct: float = 0.0
    win_rate: float = 0.0
    loss_rate: float = 0.0
    total_trades: int = 0
    profit_factor: float = 0.0
    expectancy: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    payoff_ratio: float = 0.0
    recovery_factor: float = 0.0
    risk_reward_ratio: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    time_in_market_pct: float = 0.0
    periods: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def empty_metrics() -> Dict[str, MetricsBucket]:
    return {name: MetricsBucket() for name in list(BUCKETS) + ["overall"]}


def max_drawdown(equity: pd.Series) -> Tuple[float, float]:
    """Maximum drawdown of an equity curve as (percent of peak, amount)."""
    x = equity.astype(float).to_numpy()
    if len(x) == 0:
        return 0.0, 0.0
    peak = np.maximum.accumulate(x)
    dd_amount = peak - x
    dd_pct = dd_amount / np.maximum(peak, np.finfo(float).tiny)
    return float(np.max(dd_pct) * 100.0), float(np.max(dd_amount))


def sharpe_ratio(returns: Sequence[float], periods_per_year: int, risk_free_rate: float = 0.0) -> float:
    """Annualized Sharpe of per-period returns (population std)."""
    r = np.asarray(returns, dtype=float)
    if len(r) < 2:
        return 0.0
    excess = r - risk_free_rate / periods_per_year
    std = float(np.std(excess))
    if std <= 0 or not np.isfinite(std):
        return 0.0
    return float(np.mean(excess) / std * np.sqrt(periods_per_year))


def _streaks(pnl: Sequence[float]) -> Tuple[int, int]:
    best_w = best_l = cur_w = cur_l = 0
    for x in pnl:
        if x > 0:
            cur_w, cur_l = cur_w + 1, 0
        else:
            cur_w, cur_l = 0, cur_l + 1
        best_w = max(best_w, cur_w)
        best_l = max(best_l, cur_l)
    return best_w, best_l


def _planned_risk_reward(trades: Sequence[Trade]) -> float:
    risk = reward = 0.0
    for t in trades:
        if t.stop_loss is None or t.take_profit is None:
            continue
        risk += abs(t.entry_price - t.stop_loss)
        reward += abs(t.take_profit - t.entry_price)
    return reward / risk if risk > 0 else 0.0


def _unit_stats(units: Sequence[float]) -> dict:
    """Win/loss statistics over a sequence of P&L units (trades or periods)."""
    u = np.asarray(units, dtype=float)
    n = len(u)
    if n == 0:
        return dict(
            win_rate=0.0, loss_rate=0.0, profit_factor=0.0, expectancy=0.0,
            avg_win=0.0, avg_loss=0.0, payoff_ratio=0.0,
            max_consecutive_wins=0, max_consecutive_losses=0,
        )
    wins = u[u > 0]
    losses = u[u <= 0]
    win_rate = len(wins) / n
    loss_rate = len(losses) / n
    gross_win = float(wins.sum())
    gross_loss = float(abs(losses.sum()))
    avg_win = gross_win / len(wins) if len(wins) else 0.0
    avg_loss = gross_loss / len(losses) if len(losses) else 0.0

    if gross_loss > 0:
        profit_factor = min(gross_win / gross_loss, RATIO_CAP)
    else:
        profit_factor = RATIO_CAP if gross_win > 0 else 0.0
    if avg_loss > 0:
        payoff = min(avg_win / avg_loss, RATIO_CAP)
    else:
        payoff = RATIO_CAP if avg_win > 0 else 0.0

    best_w, best_l = _streaks(u)
    return dict(
        win_rate=win_rate * 100.0,
        loss_rate=loss_rate * 100.0,
        profit_factor=profit_factor,
        expectancy=win_rate * avg_win - loss_rate * avg_loss,
        avg_win=avg_win,
        avg_loss=avg_loss,
        payoff_ratio=payoff,
        max_consecutive_wins=best_w,
        max_consecutive_losses=best_l,
    )


def _local_naive(times: Sequence[int], timezone: str) -> pd.DatetimeIndex:
    return pd.to_datetime(list(times), unit="s", utc=True).tz_convert(timezone).tz_localize(None)


def _daily_index(
    start_time: int, end_time: int, timezone: str, session_times: Optional[Sequence[int]]
) -> pd.PeriodIndex:
    if session_times:
        days = _local_naive(session_times, timezone).normalize().unique()
    else:
        span = _local_naive([start_time, end_time], timezone).normalize()
        days = pd.bdate_range(start=span[0], end=span[1])
    return pd.DatetimeIndex(days).to_period("D")


def period_pnl(
    trades: Sequence[Trade],
    freq: str,
    start_time: int,
    end_time: int,
    timezone: str,
    session_times: Optional[Sequence[int]] = None,
) -> pd.Series:
    """Net P&L per period (by exit time), zero-filled over the run.

    Daily periods are trading sessions: the dates in ``session_times`` when
    given, otherwise weekdays. Longer periods are calendar periods.
    """
    if freq == "D":
        index = _daily_index(start_time, end_time, timezone, session_times)
    else:
        span = _local_naive([start_time, end_time], timezone)
        index = pd.period_range(start=span[0], end=span[1], freq=freq)
    if not trades:
        return pd.Series(0.0, index=index)
    exits = _local_naive([t.exit_time for t in trades], timezone).to_period(freq)
    s = pd.Series([t.pnl for t in trades], index=exits, dtype=float).groupby(level=0).sum()
    return s.reindex(index.union(s.index), fill_value=0.0)


def compute_metrics(
    trades: Sequence[Trade],
    initial_capital: float,
    start_time: int,
    end_time: int,
    bars_in_position: int = 0,
    total_market_bars: int = 0,
    timezone: str = "Asia/Kolkata",
    risk_free_rate: float = 0.0,
    session_times: Optional[Sequence[int]] = None,
) -> Dict[str, MetricsBucket]:
    """Metrics per timeframe bucket plus 'overall'.

    ``session_times`` are the bar times of the run; their local dates define
    the daily periods.
    """
    trades = list(trades)
    if not trades:
        return empty_metrics()

    capital = float(initial_capital)
    time_in_market = bars_in_position / total_market_bars * 100.0 if total_market_bars > 0 else 0.0
    rr = _planned_risk_reward(trades)
    n_trades = len(trades)

    out: Dict[str, MetricsBucket] = {}
    daily_sharpe = 0.0
    for name, (freq, per_year) in BUCKETS.items():
        pnl = period_pnl(trades, freq, start_time, end_time, timezone, session_times)
        returns = pnl / capital
        active = pnl[_active_periods(trades, freq, timezone, pnl.index)]
        sharpe = sharpe_ratio(returns.to_numpy(), per_year, risk_free_rate)
        if name == "daily":
            daily_sharpe = sharpe
        out[name] = _bucket(
            pnl_units=active.to_numpy(),
            equity_steps=pnl.to_numpy(),
            capital=capital,
            return_pct=float(returns.mean() * 100.0) if len(returns) else 0.0,
            sharpe=sharpe,
            n_trades=n_trades,
            rr=rr,
            time_in_market=time_in_market,
            periods=len(pnl),
        )

    trade_pnl = np.asarray([t.pnl for t in trades], dtype=float)
    out["overall"] = _bucket(
        pnl_units=trade_pnl,
        equity_steps=trade_pnl,
        capital=capital,
        return_pct=float(trade_pnl.sum() / capital * 100.0),
        sharpe=daily_sharpe,
        n_trades=n_trades,
        rr=rr,
        time_in_market=time_in_market,
        periods=1,
    )
    return out


def _active_periods(trades: Sequence[Trade], freq: str, timezone: str, index: pd.PeriodIndex) -> List[bool]:
    exits = set(_local_naive([t.exit_time for t in trades], timezone).to_period(freq))
    return [p in exits for p in index]


def _bucket(
    pnl_units: np.ndarray,
    equity_steps: np.ndarray,
    capital: float,
    return_pct: float,
    sharpe: float,
    n_trades: int,
    rr: float,
    time_in_market: float,
    periods: int,
) -> MetricsBucket:
    equity = pd.Series(np.concatenate([[capital], capital + np.cumsum(equity_steps)]))
    dd_pct, dd_amount = max_drawdown(equity)
    net = float(np.sum(equity_steps))
    recovery = net / dd_amount if dd_amount > 0 else 0.0
    st = _unit_stats(pnl_units)

    def r(x: float) -> float:
        return round(float(x), 2)

    return MetricsBucket(
        return_pct=r(return_pct),
        sharpe_ratio=r(sharpe),
        max_drawdown_pct=r(dd_pct),
        win_rate=r(st["win_rate"]),
        loss_rate=r(st["loss_rate"]),
        total_trades=int(n_trades),
        profit_factor=r(st["profit_factor"]),
        expectancy=r(st["expectancy"]),
        avg_win=r(st["avg_win"]),
        avg_loss=r(st["avg_loss"]),
        payoff_ratio=r(st["payoff_ratio"]),
        recovery_factor=r(recovery),
        risk_reward_ratio=r(rr),
        max_consecutive_wins=int(st["max_consecutive_wins"]),
        max_consecutive_losses=int(st["max_consecutive_losses"]),
        time_in_market_pct=r(time_in_market),
        periods=int(periods),
    )

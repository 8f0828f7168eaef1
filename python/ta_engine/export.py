"""JSON export document and tabular (CSV) views of a backtest run."""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone as dt_timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

import pandas as pd

from .config import BacktestConfig
from .types import CalculationRow, Trade

# cents rounding leaves at most ~1e-9 of float noise
VERIFY_EPSILON = 0.01


def _plain(x: Any) -> Any:
    if isinstance(x, Enum):
        return x.value
    if isinstance(x, dict):
        return {str(k): _plain(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return [_plain(v) for v in x]
    return x


def trade_dict(t: Trade) -> Dict[str, Any]:
    return _plain(asdict(t))


def verify_trades(trades: Sequence[Trade], epsilon: float = VERIFY_EPSILON) -> Dict[str, Any]:
    """Check ``net == gross - total cost - slippage`` for every trade."""
    max_diff = 0.0
    failed = []
    for t in trades:
        diff = abs(t.pnl - (t.gross_pnl - t.costs.total_cost - t.slippage))
        max_diff = max(max_diff, diff)
        if diff >= epsilon:
            failed.append(t.id)
    return {
        "formula": "netPnl = grossPnl - totalCost - slippage",
        "epsilon": epsilon,
        "maxAbsDiff": round(max_diff, 10),
        "failedTradeIds": failed,
        "passed": not failed,
        "totals": {
            "grossPnl": round(sum(t.gross_pnl for t in trades), 2),
            "totalCost": round(sum(t.costs.total_cost for t in trades), 2),
            "slippage": round(sum(t.slippage for t in trades), 2),
            "netPnl": round(sum(t.pnl for t in trades), 2),
        },
    }


def build_export(result: Any, strategy: Any, bt_cfg: BacktestConfig, export_date: Optional[datetime] = None) -> Dict[str, Any]:
    """JSON-ready document for one backtest run.

    ``result`` is a ``backtest.BacktestResult``; ``strategy`` anything with
    ``name``, ``kind`` and ``config``.
    """
    tz = ZoneInfo(bt_cfg.timezone)
    period: Dict[str, Any] = {"start": None, "end": None}
    if result.start_time is not None:
        start = datetime.fromtimestamp(result.start_time, tz=tz)
        end = datetime.fromtimestamp(result.end_time, tz=tz)
        period = {"start": start.isoformat(), "end": end.isoformat(), "days": (end.date() - start.date()).days + 1}

    config = getattr(strategy, "config", None)
    return {
        "exportDate": (export_date or datetime.now(dt_timezone.utc)).isoformat(),
        "symbol": bt_cfg.symbol,
        "backtestPeriod": period,
        "strategy": {
            "name": strategy.name,
            "kind": strategy.kind,
            "version": getattr(config, "version", None),
            "options": config.describe() if config is not None else {},
        },
        "settings": {
            "initialCapital": bt_cfg.initial_capital,
            "quantity": bt_cfg.quantity,
            "slippagePct": bt_cfg.slippage_pct,
            "riskFreeRate": bt_cfg.risk_free_rate,
            "timezone": bt_cfg.timezone,
        },
        "metrics": {name: bucket.to_dict() for name, bucket in result.metrics.items()},
        "analytics": _plain(result.analytics),
        "trades": [trade_dict(t) for t in result.trades],
        "verification": verify_trades(result.trades),
    }


def write_export(doc: Dict[str, Any], path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2, ensure_ascii=False)
    return path


def trades_frame(trades: Sequence[Trade]) -> pd.DataFrame:
    """One row per trade with the cost breakdown flattened into columns."""
    rows = []
    for t in trades:
        d = trade_dict(t)
        costs = d.pop("costs")
        d.pop("indicators")
        d.update(costs)
        rows.append(d)
    return pd.DataFrame(rows)


def calculations_frame(rows: Sequence[CalculationRow], timezone: str = "Asia/Kolkata") -> pd.DataFrame:
    """Per-bar audit table: OHLC, signal, blocked reason and strategy values."""
    records = []
    for r in rows:
        rec: Dict[str, Any] = {
            "time": r.time,
            "open": r.open,
            "high": r.high,
            "low": r.low,
            "close": r.close,
            "signal": r.signal,
            "blocked": r.blocked,
            "blocked_reason": r.blocked_reason,
        }
        rec.update(r.values)
        records.append(rec)
    df = pd.DataFrame(records)
    if not df.empty:
        df.insert(1, "datetime", pd.to_datetime(df["time"], unit="s", utc=True).dt.tz_convert(timezone))
    return df


def equity_frame(equity: Sequence[Tuple[int, float]], timezone: str = "Asia/Kolkata") -> pd.DataFrame:
    df = pd.DataFrame(list(equity), columns=["time", "Equity"])
    df["Date"] = pd.to_datetime(df["time"], unit="s", utc=True).dt.tz_convert(timezone)
    return df.set_index("Date")[["Equity"]]

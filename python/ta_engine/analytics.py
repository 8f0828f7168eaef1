"""Strategy analytics derived from the trade log and strategy run stats."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from .types import ExitReason, Trade


def exit_reason_counts(trades: Sequence[Trade]) -> Dict[str, int]:
    out = {reason.value: 0 for reason in ExitReason}
    out["MarketCloseProfit"] = 0
    out["MarketCloseLoss"] = 0
    for t in trades:
        out[t.exit_reason.value] += 1
        if t.exit_reason == ExitReason.MARKET_CLOSE:
            out["MarketCloseProfit" if t.pnl > 0 else "MarketCloseLoss"] += 1
    return out


def planned_risk_reward(trades: Sequence[Trade]) -> Dict[str, float]:
    """Average planned risk/reward distance (per share) of trades with SL and TP."""
    planned = [t for t in trades if t.stop_loss is not None and t.take_profit is not None]
    if not planned:
        return {"avg_risk": 0.0, "avg_reward": 0.0, "ratio": 0.0, "trades": 0}
    avg_risk = sum(abs(t.entry_price - t.stop_loss) for t in planned) / len(planned)
    avg_reward = sum(abs(t.take_profit - t.entry_price) for t in planned) / len(planned)
    return {
        "avg_risk": round(avg_risk, 2),
        "avg_reward": round(avg_reward, 2),
        "ratio": round(avg_reward / avg_risk, 2) if avg_risk > 0 else 0.0,
        "trades": len(planned),
    }


def compute_analytics(trades: Sequence[Trade], stats: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    stats = dict(stats or {})
    out: Dict[str, Any] = {
        "exit_reasons": exit_reason_counts(trades),
        "risk_reward": planned_risk_reward(trades),
        "signals": stats.get("signals", 0),
        "bars": stats.get("bars", 0),
        "blocked": dict(stats.get("blocked", {})),
    }
    for key in ("adx", "hod_lod", "bars_in_window", "conditions_met", "crossovers"):
        if key in stats:
            out[key] = stats[key]
    return out

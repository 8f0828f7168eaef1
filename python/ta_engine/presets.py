"""Named strategy variants.

Each preset is a plain config value; variants differ only in the tracked
level set, ADX gate and reward ratio (breakout) or MA type and periods
(crossover).
"""

from __future__ import annotations

from typing import Callable, Dict, List

from .config import AdxFilter, BreakoutConfig, CrossoverConfig, TradingWindow
from .strategy import StrategyConfig

ALL_LEVELS = ("1H", "Day", "Week", "Month")
WDH_LEVELS = ("1H", "Day", "Week")

DAY_ADX = AdxFilter(timeframe="Day", period=14, threshold=25.0)
HOUR_ADX = AdxFilter(timeframe="1H", period=14, threshold=25.0)

# 9:15 AM - 2:15 PM IST
ENTRY_WINDOW = TradingWindow(9, 15, 14, 15)


def _breakout(name: str, levels, adx=None, rr: float = 1.0) -> Callable[[], BreakoutConfig]:
    return lambda: BreakoutConfig(
        name=name,
        levels=levels,
        adx=adx,
        risk_reward_ratio=rr,
        trading_window=ENTRY_WINDOW,
    )


PRESETS: Dict[str, Callable[[], StrategyConfig]] = {
    "multi_tf_breakout": _breakout("Multi-TF Breakout", ALL_LEVELS),
    "multi_tf_breakout_adx": _breakout("Multi-TF Breakout ADX", ALL_LEVELS, DAY_ADX),
    "multi_tf_breakout_adx_05": _breakout("Multi-TF Breakout ADX 1:0.5", ALL_LEVELS, DAY_ADX, 0.5),
    "multi_tf_breakout_adx_1h": _breakout("Multi-TF Breakout ADX 1H", ALL_LEVELS, HOUR_ADX),
    "multi_tf_breakout_wdh": _breakout("Multi-TF Breakout WDH", WDH_LEVELS),
    "multi_tf_breakout_wdh_adx": _breakout("Multi-TF Breakout WDH ADX", WDH_LEVELS, DAY_ADX),
    "multi_tf_breakout_wdh_adx_05": _breakout("Multi-TF Breakout WDH ADX 1:0.5", WDH_LEVELS, DAY_ADX, 0.5),
    "multi_tf_breakout_wdh_adx_1h": _breakout("Multi-TF Breakout WDH ADX 1H", WDH_LEVELS, HOUR_ADX),
    "ema_3_15_simple": lambda: CrossoverConfig(name="EMA 3/15 Simple", ma_type="ema", fast_period=3, slow_period=15),
    "ema_long": lambda: CrossoverConfig(name="EMA 3/15 Long", ma_type="ema", fast_period=3, slow_period=15),
    "sma_long": lambda: CrossoverConfig(name="SMA 3/15 Long", ma_type="sma", fast_period=3, slow_period=15),
}


def preset_names() -> List[str]:
    return sorted(PRESETS)


def get_preset(name: str) -> StrategyConfig:
    try:
        return PRESETS[name]()
    except KeyError:
        raise KeyError(f"unknown preset {name!r}; available: {', '.join(preset_names())}") from None

from __future__ import annotations

import pytest

from ta_engine.config import AdxFilter, BreakoutConfig, CrossoverConfig, TradingWindow
from ta_engine.presets import PRESETS, get_preset
from ta_engine.strategy import build_strategy


def test_breakout_from_params_dict_nested_form() -> None:
    cfg = BreakoutConfig.from_params_dict(
        {
            "direction": "BOTH",
            "params": {"startHour": 10, "riskRewardRatio": 2, "adxThreshold": 30, "someUiOnlyKey": 1},
        }
    )
    assert cfg.direction == "both"
    assert cfg.trading_window == TradingWindow(10, 15, 14, 15)
    assert cfg.risk_reward_ratio == 2
    assert cfg.adx == AdxFilter(timeframe="Day", period=14, threshold=30.0)


def test_breakout_from_params_dict_keeps_base_values() -> None:
    base = get_preset("multi_tf_breakout_adx_1h")
    cfg = BreakoutConfig.from_params_dict({"adxPeriod": 10}, base=base)
    assert cfg.adx.timeframe == "1H"
    assert cfg.adx.period == 10
    assert cfg.name == base.name


def test_levels_are_canonicalized() -> None:
    cfg = BreakoutConfig(levels=("Month", "Day"))
    assert cfg.levels == ("Day", "Month")
    assert cfg.stop_timeframe == "Day"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"levels": ("2H",)},
        {"levels": ()},
        {"direction": "sideways"},
        {"risk_reward_ratio": 0},
        {"market_open_minute": 75},
    ],
)
def test_invalid_breakout_config(kwargs) -> None:
    with pytest.raises(ValueError):
        BreakoutConfig(**kwargs)


def test_invalid_window_and_adx() -> None:
    with pytest.raises(ValueError):
        TradingWindow(14, 15, 9, 15)
    with pytest.raises(ValueError):
        AdxFilter(timeframe="Week")


def test_crossover_from_params_dict() -> None:
    cfg = CrossoverConfig.from_params_dict({"type": "sma-crossover", "fastPeriod": 5, "slowPeriod": 20})
    assert (cfg.ma_type, cfg.fast_period, cfg.slow_period) == ("sma", 5, 20)
    with pytest.raises(ValueError):
        CrossoverConfig(fast_period=15, slow_period=3)
    with pytest.raises(ValueError):
        CrossoverConfig(direction="short")


def test_describe_documents_every_option() -> None:
    desc = get_preset("multi_tf_breakout_adx").describe()
    assert {"direction", "levels", "tradingWindow", "riskRewardRatio", "requireReset", "adx"} <= set(desc)
    assert all("effect" in v and "value" in v for v in desc.values())


def test_every_preset_builds_a_strategy() -> None:
    for name in PRESETS:
        strategy = build_strategy(get_preset(name))
        assert strategy.name
        assert strategy.indicator_names()


def test_preset_variants() -> None:
    assert get_preset("multi_tf_breakout_wdh").levels == ("1H", "Day", "Week")
    assert get_preset("multi_tf_breakout_adx_05").risk_reward_ratio == 0.5
    assert get_preset("multi_tf_breakout").adx is None
    assert get_preset("sma_long").ma_type == "sma"


def test_unknown_preset() -> None:
    with pytest.raises(KeyError, match="available"):
        get_preset("nope")

from __future__ import annotations

import argparse
import json
import logging

from ta_engine.backtest import run_from_csv, run_from_yfinance
from ta_engine.config import BacktestConfig
from ta_engine.presets import get_preset, preset_names


def main():
    p = argparse.ArgumentParser(description="Backtest a strategy preset on 1-minute OHLCV data.")
    p.add_argument("--symbol", type=str, default="IDEA")
    p.add_argument("--csv", type=str, default=None, help="OHLCV CSV path (Date,Open,High,Low,Close,Volume).")
    p.add_argument("--yf_symbol", type=str, default=None, help="Fetch from yfinance instead (e.g. IDEA.NS).")
    p.add_argument("--start", type=str, default=None)
    p.add_argument("--end", type=str, default=None)
    p.add_argument("--preset", type=str, default="multi_tf_breakout", choices=preset_names())
    p.add_argument("--params", type=str, default=None, help='JSON overrides, e.g. \'{"riskRewardRatio": 2}\'.')
    p.add_argument("--capital", type=float, default=100_000.0)
    p.add_argument("--quantity", type=int, default=1)
    p.add_argument("--slippage_pct", type=float, default=0.0001)
    p.add_argument("--output_dir", type=str, default="outputs")
    p.add_argument("--log_level", type=str, default="INFO")
    args = p.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = get_preset(args.preset)
    if args.params:
        cfg = type(cfg).from_params_dict(json.loads(args.params), base=cfg)

    bt_cfg = BacktestConfig(
        symbol=args.symbol,
        initial_capital=args.capital,
        quantity=args.quantity,
        slippage_pct=args.slippage_pct,
    )

    if args.csv:
        paths = run_from_csv(args.csv, args.symbol, cfg, output_dir=args.output_dir, bt_cfg=bt_cfg)
    elif args.yf_symbol:
        if not (args.start and args.end):
            p.error("--start and --end are required with --yf_symbol")
        paths = run_from_yfinance(args.yf_symbol, args.start, args.end, cfg, output_dir=args.output_dir, bt_cfg=bt_cfg)
    else:
        p.error("either --csv or --yf_symbol is required")

    for k, v in paths.items():
        print(f"{k}: {v}")


if __name__ == "__main__":
    main()

from __future__ import annotations

import argparse
import json
import logging

from fund_pyramid.backtest import run_replay_from_csv, run_replay_from_yfinance
from fund_pyramid.config import EngineConfig, IndicatorConfig


def load_params_json(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def main():
    p = argparse.ArgumentParser(description="Replay the pyramid engine over a price history.")
    p.add_argument("--symbol", type=str, default="SPY")
    p.add_argument("--start", type=str, default="2020-01-01")
    p.add_argument("--end", type=str, default="2024-12-31")
    p.add_argument("--output_dir", type=str, default="outputs")
    p.add_argument("--csv", type=str, default=None, help="Price/NAV CSV path (Date,Close or Date,NAV).")
    p.add_argument("--params_json", type=str, default=None, help="Engine settings JSON (camelCase keys).")
    p.add_argument("--initial_capital", type=float, default=100_000.0, help="Cash backing a 100%% position.")
    p.add_argument("--ma_window", type=int, default=20)
    p.add_argument("--auto_adjust", action="store_true", help="Use yfinance auto_adjust (if using yfinance).")
    p.add_argument("--log_level", type=str, default="INFO")
    args = p.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    engine_cfg = EngineConfig()
    if args.params_json:
        engine_cfg = EngineConfig.from_params_dict(load_params_json(args.params_json))
    ind_cfg = IndicatorConfig(ma_window=args.ma_window)

    if args.csv:
        res = run_replay_from_csv(
            csv_path=args.csv,
            symbol=args.symbol,
            output_dir=args.output_dir,
            engine_cfg=engine_cfg,
            ind_cfg=ind_cfg,
            initial_capital=args.initial_capital,
        )
    else:
        res = run_replay_from_yfinance(
            symbol=args.symbol,
            start=args.start,
            end=args.end,
            output_dir=args.output_dir,
            engine_cfg=engine_cfg,
            ind_cfg=ind_cfg,
            initial_capital=args.initial_capital,
            auto_adjust=args.auto_adjust,
        )
    print(res["equity"])
    print(res["trades"])
    print(json.dumps(res["summary"], indent=2))


if __name__ == "__main__":
    main()

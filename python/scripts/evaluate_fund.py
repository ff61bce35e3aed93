from __future__ import annotations

import argparse
import json
import logging
from datetime import date

from fund_pyramid.portfolio import load_book, save_book


def main():
    p = argparse.ArgumentParser(description="Evaluate one fund against a saved state book.")
    p.add_argument("--state_file", type=str, default="trading_states.json")
    p.add_argument("--fund_code", type=str, required=True)
    p.add_argument("--price", type=float, required=True)
    p.add_argument("--ma20", type=float, required=True)
    p.add_argument("--date", type=str, default=date.today().isoformat())
    p.add_argument("--daily_change", type=float, default=None, help="Today's change as a fraction, e.g. -0.08.")
    p.add_argument("--execute", action="store_true", help="Apply the advised trade and save the book.")
    p.add_argument("--invalidate", action="store_true", help="Mark the investment thesis as invalidated.")
    p.add_argument("--revalidate", action="store_true", help="Mark the investment thesis as valid again.")
    p.add_argument("--log_level", type=str, default="WARNING")
    args = p.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    book = load_book(args.state_file)
    engine = book.engine_for(args.fund_code)
    if args.invalidate:
        engine.set_logic_status(False)
    elif args.revalidate:
        engine.set_logic_status(True)

    signal = engine.evaluate(args.price, args.ma20, args.date, args.daily_change)
    print(json.dumps({
        "fundCode": args.fund_code,
        "action": signal.action,
        "units": signal.units,
        "reason": signal.reason,
        "roi": signal.roi,
        "pyramidLevel": signal.pyramid_level,
    }, ensure_ascii=False, indent=2))

    if args.execute:
        op = engine.execute(signal, args.price, args.date)
        if op is not None:
            print(f"executed {op.action} x{op.shares} @ {op.price} -> position {op.position_after}%")
    # peak tracking and status flags change state even without a trade
    save_book(book, args.state_file)


if __name__ == "__main__":
    main()

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from insider_intel.compute.flow import get_institutional_activity
from insider_intel.config import load_config
from insider_intel.db import connect


def main() -> None:
    p = argparse.ArgumentParser(description="Print net institutional buying/selling for a ticker.")
    p.add_argument("ticker", type=str, help="Ticker symbol")
    p.add_argument("--report-date", type=str, default=None, help="Quarter end YYYY-MM-DD (default: latest stored)")
    args = p.parse_args()

    cfg = load_config()
    with connect(cfg.DB_DSN) as conn:
        activity = get_institutional_activity(conn, args.ticker, args.report_date)

    if activity is None:
        raise SystemExit(f"Ticker not found: {args.ticker.strip().upper()}")
    print(json.dumps(activity, indent=2))


if __name__ == "__main__":
    main()

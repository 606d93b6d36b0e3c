import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from insider_intel.compute.clusters import get_cluster_buys
from insider_intel.config import load_config
from insider_intel.db import connect


def main() -> None:
    p = argparse.ArgumentParser(description="Print recent cluster buys (several insiders buying the same stock).")
    p.add_argument("--days", type=int, default=30, help="Lookback window in days (1-90)")
    p.add_argument("--min-buyers", type=int, default=2, help="Minimum distinct buyers (2-10)")
    p.add_argument("--limit", type=int, default=20, help="Maximum clusters to print (capped at 50)")
    args = p.parse_args()

    cfg = load_config()
    with connect(cfg.DB_DSN) as conn:
        try:
            clusters = get_cluster_buys(conn, days=args.days, min_buyers=args.min_buyers, limit=args.limit)
        except ValueError as e:
            raise SystemExit(str(e))

    print(json.dumps([c.to_dict() for c in clusters], indent=2))


if __name__ == "__main__":
    main()

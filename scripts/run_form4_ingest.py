import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from insider_intel.config import load_config
from insider_intel.db import connect, init_db
from insider_intel.jobs.ingest_form4 import run_form4_ingestion
from insider_intel.sec.client import SecClient


def main() -> None:
    p = argparse.ArgumentParser(description="Run one budgeted Form 4 ingestion sweep and print its summary.")
    p.add_argument("--days-back", type=int, default=None, help="Lookback window in days (default from config)")
    p.add_argument("--max-filings", type=int, default=None, help="Cap on filings taken from the index")
    p.add_argument("--budget-seconds", type=float, default=None, help="Wall-clock budget for this run")
    p.add_argument("--daily-index", action="store_true", help="List filings from the EDGAR daily form index")
    args = p.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)
    client = SecClient.from_config(cfg)

    with connect(cfg.DB_DSN) as conn:
        summary = run_form4_ingestion(
            conn,
            cfg,
            client,
            days_back=args.days_back,
            max_filings=args.max_filings,
            budget_seconds=args.budget_seconds,
            use_daily_index=args.daily_index,
        )

    print(json.dumps(summary.to_dict(), indent=2))
    if summary.status == "failed":
        sys.exit(1)


if __name__ == "__main__":
    main()

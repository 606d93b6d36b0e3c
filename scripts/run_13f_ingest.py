import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from insider_intel.config import load_config
from insider_intel.db import connect, init_db
from insider_intel.jobs.ingest_13f import run_13f_ingestion
from insider_intel.openfigi.client import OpenFigiClient
from insider_intel.sec.client import SecClient


def main() -> None:
    p = argparse.ArgumentParser(description="Run one budgeted 13F-HR ingestion sweep and print its summary.")
    p.add_argument("--year", type=int, default=None, help="Report year (default: last completed quarter)")
    p.add_argument("--quarter", type=int, choices=(1, 2, 3, 4), default=None, help="Report quarter 1-4")
    p.add_argument("--max-filings", type=int, default=None, help="Cap on filings taken from the index")
    p.add_argument("--budget-seconds", type=float, default=None, help="Wall-clock budget for this run")
    args = p.parse_args()

    if (args.year is None) != (args.quarter is None):
        raise SystemExit("--year and --quarter must be given together")

    cfg = load_config()
    init_db(cfg.DB_DSN)
    client = SecClient.from_config(cfg)
    figi = OpenFigiClient.from_config(cfg)

    with connect(cfg.DB_DSN) as conn:
        summary = run_13f_ingestion(
            conn,
            cfg,
            client,
            figi,
            year=args.year,
            quarter=args.quarter,
            max_filings=args.max_filings,
            budget_seconds=args.budget_seconds,
        )

    print(json.dumps(summary.to_dict(), indent=2))
    if summary.status == "failed":
        sys.exit(1)


if __name__ == "__main__":
    main()

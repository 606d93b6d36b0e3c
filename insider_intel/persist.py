from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Optional

from insider_intel.db import insert_returning_id
from insider_intel.models import HoldingRecord, TransactionRecord, UpsertResult
from insider_intel.util.time import parse_iso_date, utcnow_iso


def _debug(msg: str) -> None:
    print(f"[persist] {msg}")


VALID_TRANSACTION_TYPES = ("P", "S", "A", "D", "G", "M")

# How far back a "prior quarter" report date may be.
PRIOR_QUARTER_MAX_DAYS = 100


def upsert_transaction(conn: Any, rec: TransactionRecord) -> UpsertResult:
    """Insert one Form 4 line item keyed by (accession_number, line_number).

    A second call with the same key is a no-op and returns created=False. Any other
    constraint failure (bad type code, missing FK, NOT NULL) raises.
    """
    new_id = insert_returning_id(
        conn,
        """
        INSERT INTO insider_transactions (
            company_id, insider_id, accession_number, line_number, filed_at, transaction_date,
            transaction_type, shares, price_per_share, total_value, shares_owned_after,
            direct_or_indirect, insider_title, is_officer, is_director, is_ten_percent_owner,
            is_10b5_1_plan, raw_filing_url, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(accession_number, line_number) DO NOTHING
        RETURNING id
        """,
        (
            rec.company_id,
            rec.insider_id,
            rec.accession_number,
            int(rec.line_number),
            rec.filed_at,
            rec.transaction_date,
            rec.transaction_type,
            rec.shares,
            rec.price_per_share,
            rec.total_value,
            rec.shares_owned_after,
            rec.direct_or_indirect,
            rec.insider_title,
            1 if rec.is_officer else 0,
            1 if rec.is_director else 0,
            1 if rec.is_ten_percent_owner else 0,
            1 if rec.is_10b5_1_plan else 0,
            rec.raw_filing_url,
            utcnow_iso(),
        ),
    )
    if new_id is None:
        return UpsertResult(created=False, id=None)
    return UpsertResult(created=True, id=new_id)


def upsert_holding(conn: Any, rec: HoldingRecord) -> UpsertResult:
    """Insert one institutional holding keyed by (institution, position, report_date)."""
    new_id = insert_returning_id(
        conn,
        """
        INSERT INTO institutional_holdings (
            institution_id, company_id, position_key, cusip, name_of_issuer, accession_number,
            report_date, shares, value, percent_of_portfolio, shares_change, shares_change_percent,
            is_new_position, is_closed_position, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(institution_id, position_key, report_date) DO NOTHING
        RETURNING id
        """,
        (
            rec.institution_id,
            rec.company_id,
            rec.position_key,
            rec.cusip,
            rec.name_of_issuer,
            rec.accession_number,
            rec.report_date,
            rec.shares,
            rec.value,
            rec.percent_of_portfolio,
            rec.shares_change,
            rec.shares_change_percent,
            1 if rec.is_new_position else 0,
            1 if rec.is_closed_position else 0,
            utcnow_iso(),
        ),
    )
    if new_id is None:
        return UpsertResult(created=False, id=None)
    return UpsertResult(created=True, id=new_id)


def count_accession_transactions(conn: Any, accession_number: str) -> int:
    """Rows already stored for an accession; 0 means the filing has not been ingested."""
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM insider_transactions WHERE accession_number=?",
        (accession_number,),
    ).fetchone()
    return int(row["n"] or 0)


def count_holdings(conn: Any, institution_id: int, report_date: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM institutional_holdings WHERE institution_id=? AND report_date=?",
        (institution_id, report_date),
    ).fetchone()
    return int(row["n"] or 0)


def prior_report_date(conn: Any, institution_id: int, report_date: str) -> Optional[str]:
    """Most recent earlier report date stored for this institution, within one quarter."""
    d = parse_iso_date(report_date)
    if d is None:
        return None
    floor = (d - timedelta(days=PRIOR_QUARTER_MAX_DAYS)).isoformat()
    row = conn.execute(
        """
        SELECT MAX(report_date) AS report_date
        FROM institutional_holdings
        WHERE institution_id=? AND report_date < ? AND report_date >= ?
        """,
        (institution_id, report_date, floor),
    ).fetchone()
    if row is None or row["report_date"] is None:
        return None
    return str(row["report_date"])


def load_prior_positions(conn: Any, institution_id: int, report_date: str) -> Optional[Dict[str, Dict[str, Any]]]:
    """Prior-quarter open positions keyed by position_key; None when no prior quarter is stored."""
    prior = prior_report_date(conn, institution_id, report_date)
    if prior is None:
        return None
    rows = conn.execute(
        """
        SELECT position_key, company_id, cusip, name_of_issuer, shares
        FROM institutional_holdings
        WHERE institution_id=? AND report_date=? AND is_closed_position=0
        """,
        (institution_id, prior),
    ).fetchall()
    _debug(f"institution_id={institution_id} prior_report_date={prior} positions={len(rows)}")
    return {
        str(r["position_key"]): {
            "company_id": r["company_id"],
            "cusip": r["cusip"],
            "name_of_issuer": r["name_of_issuer"],
            "shares": float(r["shares"] or 0),
        }
        for r in rows
    }

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from insider_intel.config import Config
from insider_intel.entities import is_notable_institution, resolve_company, resolve_institution
from insider_intel.jobs.batch import FilingOutcome, IngestionSummary, fetch_index, process_filings
from insider_intel.models import FilingMetadata, HoldingRecord
from insider_intel.openfigi.client import OpenFigiClient
from insider_intel.persist import count_holdings, load_prior_positions, upsert_holding
from insider_intel.sec.client import SecClient
from insider_intel.sec.index import list_13f_filings
from insider_intel.sec.thirteenf import HoldingLineItem, parse_13f
from insider_intel.util.normalization import normalize_cik
from insider_intel.util.time import previous_quarter, quarter_end_date


def _debug(msg: str) -> None:
    print(f"[13f] {msg}")


INDEX_OVERFETCH_FACTOR = 2

_CIK_SUFFIX = re.compile(r"\s*\(CIK\s*\d+\)\s*$", flags=re.IGNORECASE)


def filer_name(display_name: str | None) -> str | None:
    """'BERKSHIRE HATHAWAY INC  (CIK 0001067983)' -> 'BERKSHIRE HATHAWAY INC'"""
    if not display_name:
        return None
    return _CIK_SUFFIX.sub("", display_name).strip() or None


def prioritize_filings(filings: List[FilingMetadata]) -> List[FilingMetadata]:
    """Notable institutions first; otherwise keep the index order (oldest filed first)."""
    return sorted(filings, key=lambda f: 0 if is_notable_institution(f.display_name) else 1)


@dataclass
class Position:
    key: str
    company_id: int | None
    cusip: str | None
    name_of_issuer: str | None
    shares: float = 0.0
    value: float = 0.0


def aggregate_positions(
    conn: Any,
    items: List[HoldingLineItem],
    tickers: Dict[str, str | None],
    outcome: FilingOutcome,
) -> List[Position]:
    """Collapse information-table rows into one position per company (or per CUSIP).

    Option rows (putCall set) are not share holdings and are left out.
    """
    positions: Dict[str, Position] = {}
    company_ids: Dict[str, int] = {}
    for it in items:
        if it.put_call:
            continue
        company_id: Optional[int] = None
        ticker = tickers.get(it.cusip or "")
        if ticker:
            if ticker not in company_ids:
                res = resolve_company(conn, ticker, it.name_of_issuer)
                company_ids[ticker] = res.id
                outcome.companies_created += int(res.created)
            company_id = company_ids[ticker]
        key = str(company_id) if company_id is not None else f"cusip:{it.cusip or ''}"
        pos = positions.get(key)
        if pos is None:
            pos = Position(key=key, company_id=company_id, cusip=it.cusip, name_of_issuer=it.name_of_issuer)
            positions[key] = pos
        pos.shares += it.shares
        pos.value += it.value
    return list(positions.values())


def build_holding_records(
    *,
    institution_id: int,
    accession_number: str,
    report_date: str,
    positions: List[Position],
    prior: Optional[Dict[str, Dict[str, Any]]],
) -> List[HoldingRecord]:
    """Holdings for one filing plus closed-position rows for positions that disappeared.

    prior=None means no earlier quarter is stored for the institution; deltas are then
    unknown (None) and nothing is flagged new or closed.
    """
    total_value = sum(p.value for p in positions)
    records: List[HoldingRecord] = []
    for p in positions:
        change: float | None = None
        change_pct: float | None = None
        is_new = False
        if prior is not None:
            prev = prior.get(p.key)
            if prev is None:
                is_new = True
                change = p.shares
            else:
                prev_shares = float(prev["shares"])
                change = p.shares - prev_shares
                if prev_shares > 0:
                    change_pct = change / prev_shares * 100.0
        records.append(
            HoldingRecord(
                institution_id=institution_id,
                company_id=p.company_id,
                cusip=p.cusip,
                name_of_issuer=p.name_of_issuer,
                accession_number=accession_number,
                report_date=report_date,
                shares=p.shares,
                value=p.value,
                percent_of_portfolio=(p.value / total_value * 100.0) if total_value > 0 else None,
                shares_change=change,
                shares_change_percent=change_pct,
                is_new_position=is_new,
                is_closed_position=False,
            )
        )

    if prior:
        current = {p.key for p in positions}
        for key, prev in prior.items():
            if key in current:
                continue
            records.append(
                HoldingRecord(
                    institution_id=institution_id,
                    company_id=prev.get("company_id"),
                    cusip=prev.get("cusip"),
                    name_of_issuer=prev.get("name_of_issuer"),
                    accession_number=accession_number,
                    report_date=report_date,
                    shares=0.0,
                    value=0.0,
                    percent_of_portfolio=0.0,
                    shares_change=-float(prev["shares"]),
                    shares_change_percent=-100.0,
                    is_new_position=False,
                    is_closed_position=True,
                )
            )
    return records


def _institution_id_by_cik(conn: Any, cik10: str) -> Optional[int]:
    row = conn.execute("SELECT id FROM institutions WHERE cik=?", (cik10,)).fetchone()
    return int(row["id"]) if row is not None else None


def ingest_13f_filing(
    conn: Any,
    client: SecClient,
    figi: OpenFigiClient,
    filing: FilingMetadata,
    *,
    default_report_date: str,
    archives_url: str,
) -> FilingOutcome:
    acc = filing.accession_number
    cik10 = normalize_cik(filing.cik)
    if not cik10:
        return FilingOutcome(skipped_reason="missing_cik")
    report_date = (filing.period_ending or default_report_date)[:10]

    known_id = _institution_id_by_cik(conn, cik10)
    existing = count_holdings(conn, known_id, report_date) if known_id is not None else 0
    if existing:
        return FilingOutcome(skipped_reason="already_ingested", records_skipped=existing)

    items = parse_13f(client, filing.ciks, acc, period_of_report=report_date, archives_url=archives_url)
    if not items:
        return FilingOutcome(skipped_reason="no_holdings")

    out = FilingOutcome()
    total_value = sum(it.value for it in items)
    inst = resolve_institution(conn, cik10, filer_name(filing.display_name), aum_estimate=total_value)
    out.institutions_created += int(inst.created)

    tickers = figi.cusip_to_ticker(it.cusip for it in items if it.cusip)
    positions = aggregate_positions(conn, items, tickers, out)
    prior = load_prior_positions(conn, inst.id, report_date)
    records = build_holding_records(
        institution_id=inst.id,
        accession_number=acc,
        report_date=report_date,
        positions=positions,
        prior=prior,
    )
    for rec in records:
        if upsert_holding(conn, rec).created:
            out.records_created += 1
        else:
            out.records_skipped += 1

    unresolved = sum(1 for p in positions if p.company_id is None)
    _debug(
        f"accession={acc} institution_id={inst.id} report_date={report_date} positions={len(positions)} "
        f"unresolved={unresolved} created={out.records_created}"
    )
    return out


def run_13f_ingestion(
    conn: Any,
    cfg: Config,
    client: SecClient,
    figi: OpenFigiClient,
    *,
    year: int | None = None,
    quarter: int | None = None,
    max_filings: int | None = None,
    budget_seconds: float | None = None,
    today: date | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> IngestionSummary:
    """One 13F-HR sweep for a reporting quarter (default: the last completed quarter)."""
    if year is None or quarter is None:
        year, quarter = previous_quarter(today or date.today())
    max_filings = cfg.THIRTEENF_MAX_FILINGS if max_filings is None else int(max_filings)
    budget = cfg.INGEST_BUDGET_SECONDS if budget_seconds is None else float(budget_seconds)
    default_report_date = quarter_end_date(year, quarter).isoformat()

    summary = IngestionSummary(job="13f", max_errors=cfg.MAX_REPORTED_ERRORS)
    summary.start(clock)
    summary.params = {
        "year": year,
        "quarter": quarter,
        "report_date": default_report_date,
        "max_filings": max_filings,
    }
    _debug(f"13f: {year}Q{quarter} max_filings={max_filings} budget={budget:.0f}s")

    # Over-fetch so notable funds past the first max_filings still make the cut.
    filings = fetch_index(
        summary,
        lambda: prioritize_filings(
            list_13f_filings(
                client,
                year,
                quarter,
                max_filings * INDEX_OVERFETCH_FACTOR,
                search_url=cfg.SEC_SEARCH_URL,
            )
        )[:max_filings],
    )
    if filings is None:
        summary.finish(clock)
        return summary

    process_filings(
        conn,
        summary,
        filings,
        lambda f: ingest_13f_filing(
            conn,
            client,
            figi,
            f,
            default_report_date=default_report_date,
            archives_url=cfg.SEC_ARCHIVES_URL,
        ),
        budget_seconds=budget,
        delay_seconds=cfg.THIRTEENF_FILING_DELAY_SECONDS,
        clock=clock,
        sleep=sleep,
        progress_every=10,
    )

    summary.finish(clock)
    _debug(
        f"13f: status={summary.status} processed={summary.filings_processed}/{summary.filings_found} "
        f"holdings_created={summary.records_created} duplicates={summary.records_skipped} "
        f"errors={summary.error_count} duration_ms={summary.duration_ms}"
    )
    return summary

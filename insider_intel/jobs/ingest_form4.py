from __future__ import annotations

import time
from datetime import date, timedelta
from typing import Any, Callable, List

from insider_intel.config import Config
from insider_intel.db import get_app_config, upsert_app_config
from insider_intel.entities import resolve_company, resolve_insider
from insider_intel.jobs.batch import (
    FilingOutcome,
    IngestionSummary,
    fetch_index,
    next_watermark,
    process_filings,
)
from insider_intel.models import FilingMetadata, TransactionRecord, compute_total_value
from insider_intel.persist import VALID_TRANSACTION_TYPES, count_accession_transactions, upsert_transaction
from insider_intel.sec.client import SecClient
from insider_intel.sec.index import list_form4_filings, list_form4_filings_from_daily_index
from insider_intel.sec.parser import Form4Document, parse_form4
from insider_intel.util.time import parse_iso_date


WATERMARK_KEY = "form4_watermark_date"


def _debug(msg: str) -> None:
    print(f"[ingest] {msg}")


def transactions_from_document(
    doc: Form4Document,
    *,
    company_id: int,
    insider_id: int,
    accession_number: str,
    filed_at: str | None,
) -> tuple[List[TransactionRecord], int]:
    """Turn a usable Form4Document into persistable rows.

    Returns (records, filtered) where filtered counts line items dropped for an
    untracked transaction code or a missing share count.
    """
    owner = doc.owner
    records: List[TransactionRecord] = []
    filtered = 0
    for item in doc.transactions:
        if item.transaction_code not in VALID_TRANSACTION_TYPES or item.shares is None:
            filtered += 1
            continue
        records.append(
            TransactionRecord(
                company_id=company_id,
                insider_id=insider_id,
                accession_number=accession_number,
                line_number=item.line_number,
                filed_at=filed_at,
                transaction_date=item.transaction_date or doc.period_of_report,
                transaction_type=item.transaction_code,
                shares=item.shares,
                price_per_share=item.price_per_share,
                total_value=compute_total_value(item.shares, item.price_per_share),
                shares_owned_after=item.shares_owned_after,
                direct_or_indirect=item.direct_or_indirect,
                insider_title=owner.officer_title if owner else None,
                is_officer=bool(owner and owner.is_officer),
                is_director=bool(owner and owner.is_director),
                is_ten_percent_owner=bool(owner and owner.is_ten_percent_owner),
                is_10b5_1_plan=doc.is_10b5_1_plan,
                raw_filing_url=doc.source_url,
            )
        )
    return records, filtered


def ingest_form4_filing(conn: Any, client: SecClient, filing: FilingMetadata, *, archives_url: str) -> FilingOutcome:
    """Fetch, parse, resolve and persist one Form 4. Raises on fetch/parse/DB failure."""
    acc = filing.accession_number
    existing = count_accession_transactions(conn, acc)
    if existing:
        return FilingOutcome(skipped_reason="already_ingested", records_skipped=existing)

    doc = parse_form4(client, filing.ciks, acc, archives_url=archives_url)
    reason = doc.empty_reason()
    if reason:
        _debug(f"Skipping empty filing accession={acc} reason={reason}")
        return FilingOutcome(skipped_reason=reason)

    owner = doc.owner
    company = resolve_company(conn, doc.issuer.ticker or "", doc.issuer.name, doc.issuer.cik)
    insider = resolve_insider(conn, owner.cik if owner else None, owner.name if owner else None)

    records, filtered = transactions_from_document(
        doc,
        company_id=company.id,
        insider_id=insider.id,
        accession_number=acc,
        filed_at=filing.filed_at,
    )
    out = FilingOutcome(
        records_filtered=filtered,
        companies_created=int(company.created),
        insiders_created=int(insider.created),
    )
    for rec in records:
        if upsert_transaction(conn, rec).created:
            out.records_created += 1
        else:
            out.records_skipped += 1
    return out


def form4_window_start(conn: Any, cfg: Config, *, today: date, days_back: int) -> date:
    start = today - timedelta(days=max(0, days_back))
    if not cfg.USE_WATERMARK:
        return start
    wm = parse_iso_date(get_app_config(conn, WATERMARK_KEY))
    # Watermark only narrows the window; the lookback still bounds it.
    if wm is not None and start < wm <= today:
        return wm
    return start


def run_form4_ingestion(
    conn: Any,
    cfg: Config,
    client: SecClient,
    *,
    days_back: int | None = None,
    max_filings: int | None = None,
    budget_seconds: float | None = None,
    use_daily_index: bool = False,
    today: date | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> IngestionSummary:
    """One Form 4 sweep over [today - days_back, today], bounded by max_filings and the budget."""
    days_back = cfg.FORM4_DAYS_BACK if days_back is None else int(days_back)
    max_filings = cfg.FORM4_MAX_FILINGS if max_filings is None else int(max_filings)
    budget = cfg.INGEST_BUDGET_SECONDS if budget_seconds is None else float(budget_seconds)
    today = today or date.today()

    summary = IngestionSummary(job="form4", max_errors=cfg.MAX_REPORTED_ERRORS)
    summary.start(clock)

    start = form4_window_start(conn, cfg, today=today, days_back=days_back)
    summary.params = {
        "days_back": days_back,
        "max_filings": max_filings,
        "start_date": start.isoformat(),
        "end_date": today.isoformat(),
        "source": "daily_index" if use_daily_index else "search",
    }
    _debug(f"form4: window {start}..{today} max_filings={max_filings} budget={budget:.0f}s")

    def list_filings() -> List[FilingMetadata]:
        if use_daily_index:
            return list_form4_filings_from_daily_index(
                client,
                days_back=(today - start).days + 1,
                max_count=max_filings,
                today=today,
                archives_url=cfg.SEC_ARCHIVES_URL,
            )
        return list_form4_filings(client, start, today, max_filings, search_url=cfg.SEC_SEARCH_URL)

    filings = fetch_index(summary, list_filings)
    if filings is None:
        summary.finish(clock)
        return summary

    process_filings(
        conn,
        summary,
        filings,
        lambda f: ingest_form4_filing(conn, client, f, archives_url=cfg.SEC_ARCHIVES_URL),
        budget_seconds=budget,
        delay_seconds=cfg.FORM4_FILING_DELAY_SECONDS,
        clock=clock,
        sleep=sleep,
        progress_every=20,
    )

    if cfg.USE_WATERMARK:
        wm = next_watermark(summary, index_truncated=summary.index_truncated)
        if wm:
            upsert_app_config(conn, WATERMARK_KEY, wm)
            conn.commit()
            summary.watermark = wm

    summary.finish(clock)
    _debug(
        f"form4: status={summary.status} processed={summary.filings_processed}/{summary.filings_found} "
        f"created={summary.records_created} duplicates={summary.records_skipped} errors={summary.error_count} "
        f"duration_ms={summary.duration_ms}"
    )
    return summary

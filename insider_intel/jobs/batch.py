"""Budgeted, failure-isolated batch loop shared by the Form 4 and 13F sweeps.

State machine:

    IDLE -> FETCHING_INDEX -> PROCESSING(i) -> {PROCESSING(i+1) | AGGREGATING | TIMED_OUT} -> DONE

A failure while fetching the index is the only way to end in FAILED. Every filing runs
in its own DB transaction: commit on success, rollback on any exception, and the error
is recorded against the filing's accession number before the loop moves on.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from insider_intel.models import FilingMetadata
from insider_intel.sec.client import FetchError
from insider_intel.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[ingest] {msg}")


class SchedulerState(str, Enum):
    IDLE = "idle"
    FETCHING_INDEX = "fetching_index"
    PROCESSING = "processing"
    AGGREGATING = "aggregating"
    TIMED_OUT = "timed_out"
    DONE = "done"
    FAILED = "failed"


@dataclass
class FilingOutcome:
    """What one filing contributed. Only merged into the summary after its commit."""

    skipped_reason: str | None = None
    records_created: int = 0
    records_skipped: int = 0
    records_filtered: int = 0
    companies_created: int = 0
    insiders_created: int = 0
    institutions_created: int = 0


@dataclass
class IngestionSummary:
    job: str
    max_errors: int = 10
    state: SchedulerState = SchedulerState.IDLE
    timed_out: bool = False

    filings_found: int = 0
    filings_processed: int = 0
    filings_skipped: int = 0
    filings_failed: int = 0
    records_created: int = 0
    records_skipped: int = 0
    records_filtered: int = 0
    companies_created: int = 0
    insiders_created: int = 0
    institutions_created: int = 0

    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    fatal_error: str | None = None

    # First filing a later run still needs: transient failure or not yet attempted.
    first_pending: Optional[FilingMetadata] = None
    last_processed: Optional[FilingMetadata] = None
    index_truncated: bool = False
    watermark: str | None = None
    params: Dict[str, Any] = field(default_factory=dict)

    started_at: str | None = None
    finished_at: str | None = None
    duration_ms: int | None = None
    _started_mono: float | None = None

    @property
    def filings_remaining(self) -> int:
        return max(0, self.filings_found - self.filings_processed)

    @property
    def status(self) -> str:
        if self.state == SchedulerState.FAILED:
            return "failed"
        if self.timed_out:
            return "timed_out"
        return "done"

    def start(self, clock: Callable[[], float]) -> None:
        self.started_at = utcnow_iso()
        self._started_mono = clock()

    def finish(self, clock: Callable[[], float]) -> None:
        self.finished_at = utcnow_iso()
        if self._started_mono is not None:
            self.duration_ms = int(round((clock() - self._started_mono) * 1000))
        if self.state != SchedulerState.FAILED:
            self.state = SchedulerState.DONE

    def add_error(self, accession_number: str, err: BaseException | str) -> None:
        self.error_count += 1
        if len(self.errors) < self.max_errors:
            self.errors.append(f"{accession_number}: {err}")

    def merge(self, outcome: FilingOutcome) -> None:
        if outcome.skipped_reason:
            self.filings_skipped += 1
            self.skip_reasons[outcome.skipped_reason] = self.skip_reasons.get(outcome.skipped_reason, 0) + 1
        self.records_created += outcome.records_created
        self.records_skipped += outcome.records_skipped
        self.records_filtered += outcome.records_filtered
        self.companies_created += outcome.companies_created
        self.insiders_created += outcome.insiders_created
        self.institutions_created += outcome.institutions_created

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "status": self.status,
            "state": self.state.value,
            "params": dict(self.params),
            "filings_found": self.filings_found,
            "filings_processed": self.filings_processed,
            "filings_remaining": self.filings_remaining,
            "filings_skipped": self.filings_skipped,
            "filings_failed": self.filings_failed,
            "records_created": self.records_created,
            "records_skipped": self.records_skipped,
            "records_filtered": self.records_filtered,
            "companies_created": self.companies_created,
            "insiders_created": self.insiders_created,
            "institutions_created": self.institutions_created,
            "skip_reasons": dict(self.skip_reasons),
            "error_count": self.error_count,
            "errors": list(self.errors),
            "fatal_error": self.fatal_error,
            "index_truncated": self.index_truncated,
            "watermark": self.watermark,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.duration_ms,
        }


def fetch_index(
    summary: IngestionSummary,
    list_filings: Callable[[], Sequence[FilingMetadata]],
) -> Optional[List[FilingMetadata]]:
    """FETCHING_INDEX step. Returns None (state FAILED) when the index is unreachable."""
    summary.state = SchedulerState.FETCHING_INDEX
    try:
        raw = list_filings()
        filings = list(raw)
    except Exception as e:
        summary.state = SchedulerState.FAILED
        summary.fatal_error = f"index fetch failed: {e}"
        _debug(f"{summary.job}: {summary.fatal_error}")
        return None
    summary.filings_found = len(filings)
    summary.index_truncated = bool(getattr(raw, "truncated", False))
    _debug(f"{summary.job}: {len(filings)} filings to process truncated={summary.index_truncated}")
    return filings


def process_filings(
    conn: Any,
    summary: IngestionSummary,
    filings: Sequence[FilingMetadata],
    process_one: Callable[[FilingMetadata], FilingOutcome],
    *,
    budget_seconds: float,
    delay_seconds: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    progress_every: int = 20,
) -> None:
    """PROCESSING loop. The budget is checked before each filing; the loop never raises."""
    summary.state = SchedulerState.PROCESSING
    started = summary._started_mono if summary._started_mono is not None else clock()

    for i, filing in enumerate(filings):
        elapsed = clock() - started
        if elapsed >= budget_seconds:
            summary.timed_out = True
            summary.state = SchedulerState.TIMED_OUT
            if summary.first_pending is None:
                summary.first_pending = filing
            _debug(
                f"{summary.job}: budget {budget_seconds:.0f}s exhausted after {summary.filings_processed} filings; "
                f"{len(filings) - i} remaining"
            )
            break

        if i > 0 and delay_seconds > 0:
            sleep(delay_seconds)

        acc = filing.accession_number
        try:
            outcome = process_one(filing)
            conn.commit()
            summary.merge(outcome)
            summary.last_processed = filing
        except Exception as e:
            conn.rollback()
            summary.filings_failed += 1
            summary.add_error(acc, e)
            transient = isinstance(e, FetchError) and not e.permanent
            if transient and summary.first_pending is None:
                summary.first_pending = filing
            _debug(f"{summary.job}: error accession={acc} transient={transient}: {e}")
        finally:
            summary.filings_processed += 1

        if progress_every and summary.filings_processed % progress_every == 0:
            _debug(
                f"{summary.job}: progress {summary.filings_processed}/{len(filings)} "
                f"created={summary.records_created} skipped={summary.records_skipped} errors={summary.error_count}"
            )

    if not summary.timed_out:
        summary.state = SchedulerState.AGGREGATING


def next_watermark(summary: IngestionSummary, *, index_truncated: bool) -> Optional[str]:
    """Filed-at date the next run can safely start from (day granularity, inclusive).

    That is the first filing still pending when there is one, otherwise the latest
    processed filing. A truncated index may have hidden filings anywhere in the
    window, so it never advances the watermark.
    """
    if index_truncated:
        return None
    if summary.first_pending is not None:
        return (summary.first_pending.filed_at or "")[:10] or None
    if summary.last_processed is not None:
        return (summary.last_processed.filed_at or "")[:10] or None
    return None

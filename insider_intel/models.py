from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class FilingMetadata:
    """One index hit: enough to locate the filing's documents without downloading them."""

    accession_number: str
    ciks: Tuple[str, ...]
    filed_at: str | None
    form_type: str | None
    display_name: str | None = None
    period_ending: str | None = None

    @property
    def cik(self) -> str | None:
        return self.ciks[0] if self.ciks else None


@dataclass(frozen=True)
class Resolved:
    id: int
    created: bool


@dataclass(frozen=True)
class UpsertResult:
    created: bool
    id: int | None


@dataclass(frozen=True)
class TransactionRecord:
    company_id: int
    insider_id: int
    accession_number: str
    line_number: int
    filed_at: str | None
    transaction_date: str | None
    transaction_type: str
    shares: float
    price_per_share: float | None
    total_value: float | None
    shares_owned_after: float | None
    direct_or_indirect: str | None
    insider_title: str | None
    is_officer: bool
    is_director: bool
    is_ten_percent_owner: bool
    is_10b5_1_plan: bool
    raw_filing_url: str | None


@dataclass(frozen=True)
class HoldingRecord:
    institution_id: int
    company_id: int | None
    cusip: str | None
    name_of_issuer: str | None
    accession_number: str | None
    report_date: str
    shares: float
    value: float | None
    percent_of_portfolio: float | None
    shares_change: float | None
    shares_change_percent: float | None
    is_new_position: bool
    is_closed_position: bool

    @property
    def position_key(self) -> str:
        if self.company_id is not None:
            return str(self.company_id)
        return f"cusip:{self.cusip or ''}"


def compute_total_value(shares: float | None, price: float | None) -> float | None:
    """shares x price rounded to whole dollars; None when either side is unknown."""
    if shares is None or price is None:
        return None
    return float(round(shares * price))

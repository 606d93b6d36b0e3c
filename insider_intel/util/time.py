from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso_date(s: str | None) -> date | None:
    """Parse the leading YYYY-MM-DD of an EDGAR date/timestamp; None if unusable."""
    if s is None:
        return None
    t = str(s).strip()[:10]
    if len(t) != 10:
        return None
    try:
        return date.fromisoformat(t)
    except ValueError:
        return None


def quarter_of(d: date) -> int:
    return (d.month - 1) // 3 + 1


def quarter_start_date(year: int, quarter: int) -> date:
    return date(year, 3 * (quarter - 1) + 1, 1)


def quarter_end_date(year: int, quarter: int) -> date:
    if quarter == 4:
        return date(year, 12, 31)
    nxt = quarter_start_date(year, quarter + 1)
    return date.fromordinal(nxt.toordinal() - 1)


def previous_quarter(today: date) -> tuple[int, int]:
    """(year, quarter) of the last fully completed calendar quarter."""
    q = quarter_of(today)
    if q == 1:
        return today.year - 1, 4
    return today.year, q - 1


def add_months(d: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    idx = d.year * 12 + (d.month - 1) + months
    y, m = divmod(idx, 12)
    m += 1
    if m == 12:
        last = 31
    else:
        last = (date(y, m + 1, 1) - date(y, m, 1)).days
    return date(y, m, min(d.day, last))

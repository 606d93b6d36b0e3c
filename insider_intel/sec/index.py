from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

from insider_intel.models import FilingMetadata
from insider_intel.sec.client import FetchError, SecClient
from insider_intel.util.normalization import normalize_accession, normalize_cik
from insider_intel.util.time import add_months, quarter_end_date, quarter_start_date


SEARCH_URL = "https://efts.sec.gov/LATEST/search-index"
ARCHIVES_URL = "https://www.sec.gov/Archives/edgar"

FORM4_TYPES = ("4", "4/A")
THIRTEENF_TYPES = ("13F-HR", "13F-HR/A")

# form.YYYYMMDD.idx column layout
_IDX_HEADER_LINES = 11
_IDX_FORM = slice(0, 12)
_IDX_COMPANY = slice(12, 74)
_IDX_CIK = slice(74, 86)
_IDX_DATE = slice(86, 98)
_IDX_PATH_START = 98


def _debug(msg: str) -> None:
    print(f"[index] {msg}")


def _search(
    client: SecClient,
    *,
    q: str,
    forms: str,
    start: date | None,
    end: date | None,
    size: int,
    search_url: str = SEARCH_URL,
) -> tuple[List[Dict[str, Any]], bool]:
    """Returns (sources, saturated).

    Hits are per document, not per accession. saturated is True when the page is full
    or the reported total exceeds what came back.
    """
    size = max(1, int(size))
    params: Dict[str, Any] = {"q": q, "forms": forms}
    if start is not None and end is not None:
        params.update({"dateRange": "custom", "startdt": start.isoformat(), "enddt": end.isoformat()})
    params["size"] = str(size)
    data = client.fetch_json(f"{search_url}?{urlencode(params)}")
    outer = data.get("hits") or {}
    hits = [h for h in (outer.get("hits") or []) if isinstance(h, dict)]
    total = outer.get("total")
    if isinstance(total, dict):
        total = total.get("value")
    try:
        total_n = int(total) if total is not None else 0
    except (TypeError, ValueError):
        total_n = 0
    saturated = len(hits) >= size or total_n > len(hits)
    return [h.get("_source") or {} for h in hits], saturated


def _metadata_from_source(src: Dict[str, Any]) -> Optional[FilingMetadata]:
    acc = normalize_accession(src.get("adsh"))
    if not acc:
        return None
    ciks: List[str] = []
    for c in src.get("ciks") or []:
        n = normalize_cik(c)
        if n and n not in ciks:
            ciks.append(n)
    names = src.get("display_names") or []
    return FilingMetadata(
        accession_number=acc,
        ciks=tuple(ciks),
        filed_at=(str(src.get("file_date")).strip() if src.get("file_date") else None),
        form_type=(str(src.get("form")).strip() if src.get("form") else None),
        display_name=(str(names[0]).strip() if names else None),
        period_ending=(str(src.get("period_ending")).strip() if src.get("period_ending") else None),
    )


class FilingList(list):
    """Filings from one index read. truncated means the source held more than was returned."""

    truncated: bool = False


def _dedupe_sort_bound(
    filings: Iterable[FilingMetadata],
    max_count: int,
    *,
    saturated: bool = False,
) -> FilingList:
    """Collapse repeated accessions, order oldest filed first, keep the first max_count."""
    seen: set[str] = set()
    uniq: List[FilingMetadata] = []
    for f in filings:
        if f.accession_number in seen:
            continue
        seen.add(f.accession_number)
        uniq.append(f)
    # Stable sort: filings without a date go last; ties keep accession order.
    uniq.sort(key=lambda f: (f.filed_at is None, f.filed_at or "", f.accession_number))
    limit = max(0, int(max_count))
    out = FilingList(uniq[:limit])
    out.truncated = saturated or len(uniq) > limit
    return out


def list_form4_filings(
    client: SecClient,
    start_date: date,
    end_date: date,
    max_count: int,
    *,
    search_url: str = SEARCH_URL,
) -> FilingList:
    """Form 4 filings filed in [start_date, end_date], oldest first, at most max_count."""
    if end_date < start_date:
        raise ValueError(f"end_date {end_date} is before start_date {start_date}")
    sources, saturated = _search(
        client,
        q="*",
        forms="4",
        start=start_date,
        end=end_date,
        size=max_count,
        search_url=search_url,
    )
    out: List[FilingMetadata] = []
    for src in sources:
        m = _metadata_from_source(src)
        if m is None:
            continue
        if m.form_type and m.form_type.upper() not in FORM4_TYPES:
            continue
        out.append(m)
    result = _dedupe_sort_bound(out, max_count, saturated=saturated)
    _debug(f"Form 4 index {start_date}..{end_date}: hits={len(sources)} kept={len(result)} truncated={result.truncated}")
    return result


def daily_index_url(d: date, *, archives_url: str = ARCHIVES_URL) -> str:
    q = (d.month - 1) // 3 + 1
    return f"{archives_url.rstrip('/')}/daily-index/{d.year}/QTR{q}/form.{d.strftime('%Y%m%d')}.idx"


def parse_daily_index(text: str, form_types: Iterable[str] = ("4",)) -> List[FilingMetadata]:
    """Parse a fixed-width EDGAR form.YYYYMMDD.idx listing."""
    wanted = {f.upper() for f in form_types}
    out: List[FilingMetadata] = []
    for line in text.splitlines()[_IDX_HEADER_LINES:]:
        if len(line) <= _IDX_PATH_START:
            continue
        form = line[_IDX_FORM].strip().upper()
        if form not in wanted:
            continue
        path = line[_IDX_PATH_START:].strip()
        # edgar/data/<cik>/<accession>.txt
        parts = path.split("/")
        if len(parts) < 4:
            continue
        acc = parts[3]
        if acc.lower().endswith(".txt"):
            acc = acc[:-4]
        acc = normalize_accession(acc)
        if not acc:
            continue
        raw_date = line[_IDX_DATE].strip()
        filed_at = f"{raw_date[:4]}-{raw_date[4:6]}-{raw_date[6:8]}" if len(raw_date) == 8 else (raw_date or None)
        cik = normalize_cik(line[_IDX_CIK])
        out.append(
            FilingMetadata(
                accession_number=acc,
                ciks=(cik,) if cik else (),
                filed_at=filed_at,
                form_type=form,
                display_name=line[_IDX_COMPANY].strip() or None,
            )
        )
    return out


def list_form4_filings_from_daily_index(
    client: SecClient,
    days_back: int,
    max_count: int,
    *,
    today: date | None = None,
    archives_url: str = ARCHIVES_URL,
) -> FilingList:
    """Same contract as list_form4_filings, sourced from the daily form indices.

    Days with no index (weekends, holidays, not yet published) return 404 and are
    treated as empty. Any other failure propagates.
    """
    end = today or date.today()
    collected: List[FilingMetadata] = []
    for i in range(max(1, int(days_back))):
        d = end - timedelta(days=i)
        url = daily_index_url(d, archives_url=archives_url)
        try:
            text = client.fetch_text(url)
        except FetchError as e:
            if e.status_code == 404:
                _debug(f"No daily index for {d.isoformat()}")
                continue
            raise
        collected.extend(parse_daily_index(text, ("4",)))
    # Issuer and owner each appear as a line for the same accession; merge their CIKs.
    merged: Dict[str, FilingMetadata] = {}
    for f in collected:
        prev = merged.get(f.accession_number)
        if prev is None:
            merged[f.accession_number] = f
            continue
        ciks = prev.ciks + tuple(c for c in f.ciks if c not in prev.ciks)
        merged[f.accession_number] = FilingMetadata(
            accession_number=prev.accession_number,
            ciks=ciks,
            filed_at=prev.filed_at,
            form_type=prev.form_type,
            display_name=prev.display_name,
        )
    result = _dedupe_sort_bound(merged.values(), max_count)
    _debug(f"Form 4 daily index days_back={days_back}: accessions={len(merged)} kept={len(result)}")
    return result


def thirteenf_search_window(year: int, quarter: int) -> tuple[date, date]:
    """Filing-date window for a 13F reporting quarter: quarter start through two months past its end."""
    if quarter not in (1, 2, 3, 4):
        raise ValueError(f"quarter must be 1-4, got {quarter}")
    return quarter_start_date(year, quarter), add_months(quarter_end_date(year, quarter), 2)


def list_13f_filings(
    client: SecClient,
    year: int,
    quarter: int,
    max_count: int,
    *,
    search_url: str = SEARCH_URL,
) -> FilingList:
    start, end = thirteenf_search_window(year, quarter)
    sources, saturated = _search(
        client,
        q="*",
        forms="13F-HR",
        start=start,
        end=end,
        size=max_count,
        search_url=search_url,
    )
    out = [m for m in (_metadata_from_source(s) for s in sources) if m is not None]
    out = [m for m in out if not m.form_type or m.form_type.upper() in THIRTEENF_TYPES]
    result = _dedupe_sort_bound(out, max_count, saturated=saturated)
    _debug(f"13F index {year}Q{quarter} ({start}..{end}): hits={len(sources)} kept={len(result)} truncated={result.truncated}")
    return result


def list_13f_filings_for_cik(
    client: SecClient,
    cik: str,
    max_count: int,
    *,
    search_url: str = SEARCH_URL,
) -> FilingList:
    """Recent 13F-HR filings by one institution, oldest first."""
    cik10 = normalize_cik(cik)
    if not cik10:
        raise ValueError(f"Invalid CIK: {cik!r}")
    sources, saturated = _search(
        client,
        q=f"ciks:{int(cik10)}",
        forms="13F-HR",
        start=None,
        end=None,
        size=max_count,
        search_url=search_url,
    )
    out = [m for m in (_metadata_from_source(s) for s in sources) if m is not None]
    return _dedupe_sort_bound(out, max_count, saturated=saturated)

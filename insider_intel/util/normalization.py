from __future__ import annotations

import re
import unicodedata


def normalize_cik(cik: str | int | None) -> str | None:
    """Normalize a CIK: digits only, left-pad to 10.

    Returns None if input is blank or contains no digits.
    """
    if cik is None:
        return None
    s = str(cik).strip()
    if not s:
        return None
    digits = "".join(ch for ch in s if ch.isdigit())
    if not digits:
        return None
    return digits.zfill(10)


def cik_path_component(cik: str | int) -> str:
    # EDGAR path uses integer CIK without leading zeros
    return str(int(str(cik).strip()))


def normalize_accession(accession_number: str | None) -> str:
    return str(accession_number or "").strip()


def accession_nodash(accession_number: str | None) -> str:
    return str(accession_number or "").replace("-", "").strip()


def normalize_ticker(ticker: str | None) -> str | None:
    """Trim and uppercase a trading symbol; blank -> None."""
    if ticker is None:
        return None
    t = " ".join(str(ticker).split()).upper()
    return t or None


def normalize_cusip(cusip: str | None) -> str | None:
    if cusip is None:
        return None
    c = re.sub(r"\s+", "", str(cusip)).upper()
    return c or None


def clean_name(name: str | None) -> str | None:
    """Collapse whitespace in a filer/owner name without changing its spelling.

    Spelling and case are preserved: insider identity falls back to an exact name match.
    """
    if name is None:
        return None
    s = unicodedata.normalize("NFKC", str(name)).replace("\u00a0", " ")
    s = " ".join(s.split())
    return s or None

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence
from xml.etree import ElementTree as ET

from insider_intel.sec.client import SecClient
from insider_intel.sec.edgar import ARCHIVES_URL, fetch_13f_infotable
from insider_intel.sec.parser import ParseError, _find_child, _find_text, _parse_float, _strip_ns
from insider_intel.util.normalization import clean_name, normalize_cusip
from insider_intel.util.time import parse_iso_date


def _debug(msg: str) -> None:
    print(f"[13f] {msg}")


# Information tables report value in thousands until the 2023 form change,
# which switched to whole dollars for periods ending on or after 2022-12-31.
WHOLE_DOLLAR_CUTOVER = date(2022, 12, 31)


@dataclass(frozen=True)
class HoldingLineItem:
    name_of_issuer: str | None
    title_of_class: str | None
    cusip: str | None
    value: float
    shares: float
    share_type: str
    put_call: str | None
    investment_discretion: str | None
    voting_sole: float
    voting_shared: float
    voting_none: float


def value_multiplier(period_of_report: str | None) -> int:
    """1000 for periods reported in thousands, else 1. Unknown period is treated as current."""
    d = parse_iso_date(period_of_report)
    if d is not None and d < WHOLE_DOLLAR_CUTOVER:
        return 1000
    return 1


def _num(el: ET.Element | None, path: List[str]) -> float:
    return _parse_float(_find_text(el, path)) or 0.0


def parse_13f_xml(xml_text: str, *, period_of_report: str | None = None) -> List[HoldingLineItem]:
    """Decode an informationTable document into holding line items (file order)."""
    try:
        root = ET.fromstring(xml_text.strip().encode("utf-8"))
    except ET.ParseError as e:
        raise ParseError(f"Malformed 13F information table: {e}") from e

    rows = [el for el in root.iter() if _strip_ns(el.tag) == "infoTable"]
    if not rows and _strip_ns(root.tag) != "informationTable":
        raise ParseError(f"Unexpected 13F root element: {_strip_ns(root.tag)}")

    mult = value_multiplier(period_of_report)
    out: List[HoldingLineItem] = []
    for row in rows:
        amt = _find_child(row, "shrsOrPrnAmt")
        voting = _find_child(row, "votingAuthority")
        share_type = (_find_text(amt, ["sshPrnamtType"]) or "SH").upper()
        out.append(
            HoldingLineItem(
                name_of_issuer=clean_name(_find_text(row, ["nameOfIssuer"])),
                title_of_class=clean_name(_find_text(row, ["titleOfClass"])),
                cusip=normalize_cusip(_find_text(row, ["cusip"])),
                value=_num(row, ["value"]) * mult,
                shares=_num(amt, ["sshPrnamt"]),
                share_type="PRN" if share_type == "PRN" else "SH",
                put_call=_find_text(row, ["putCall"]),
                investment_discretion=_find_text(row, ["investmentDiscretion"]),
                voting_sole=_num(voting, ["Sole"]),
                voting_shared=_num(voting, ["Shared"]),
                voting_none=_num(voting, ["None"]),
            )
        )

    _debug(f"Parsed information table: rows={len(out)} value_multiplier={mult}")
    return out


def parse_13f(
    client: SecClient,
    cik: str | Sequence[str | None],
    accession_number: str,
    *,
    period_of_report: Optional[str] = None,
    archives_url: str = ARCHIVES_URL,
) -> List[HoldingLineItem]:
    """Download and decode one 13F-HR information table.

    Raises FetchError when no information table can be retrieved and ParseError when
    it cannot be decoded.
    """
    ciks = [cik] if isinstance(cik, str) else list(cik)
    xml_text, _ = fetch_13f_infotable(client, accession_number, ciks, archives_url=archives_url)
    return parse_13f_xml(xml_text, period_of_report=period_of_report)

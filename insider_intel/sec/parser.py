from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
from xml.etree import ElementTree as ET

from insider_intel.sec.client import SecClient
from insider_intel.sec.edgar import ARCHIVES_URL, fetch_form4_xml, filing_index_url
from insider_intel.util.normalization import clean_name, normalize_cik, normalize_ticker


def _debug(msg: str) -> None:
    print(f"[parser] {msg}")


class ParseError(RuntimeError):
    """Malformed or unexpected XML. Permanent: the same bytes will fail the same way."""


_10B5_1_MARKERS = ("10b5-1", "rule 10b5-1", "10b-5-1")


@dataclass(frozen=True)
class Issuer:
    cik: str | None
    name: str | None
    ticker: str | None


@dataclass(frozen=True)
class ReportingOwner:
    cik: str | None
    name: str | None
    is_director: bool
    is_officer: bool
    is_ten_percent_owner: bool
    officer_title: str | None


@dataclass(frozen=True)
class Form4LineItem:
    # 1-based position within the nonDerivativeTable
    line_number: int
    transaction_code: str | None
    transaction_date: str | None
    shares: float | None
    price_per_share: float | None
    shares_owned_after: float | None
    acquired_disposed: str | None
    direct_or_indirect: str
    footnote_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Form4Document:
    document_type: str | None
    period_of_report: str | None
    issuer: Issuer
    owners: List[ReportingOwner]
    transactions: List[Form4LineItem]
    is_10b5_1_plan: bool
    footnotes: Dict[str, str] = field(default_factory=dict)
    source_url: str | None = None

    @property
    def owner(self) -> ReportingOwner | None:
        """First reporting owner. Joint filings attribute line items to it."""
        return self.owners[0] if self.owners else None

    def empty_reason(self) -> str | None:
        """Why this filing yields nothing to persist, or None when it is usable.

        Empty filings are skipped by the scheduler, not counted as failures.
        """
        if not self.issuer.ticker and not self.issuer.name:
            return "missing_issuer"
        if not self.transactions:
            return "no_transactions"
        # Companies are keyed by ticker; a name alone cannot be stored.
        if not self.issuer.ticker:
            return "missing_ticker"
        if self.owner is None or not (self.owner.name or self.owner.cik):
            return "missing_owner"
        return None


def _strip_ns(tag: str) -> str:
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def _find_child(parent: ET.Element | None, name: str) -> Optional[ET.Element]:
    if parent is None:
        return None
    for child in parent:
        if _strip_ns(child.tag) == name:
            return child
    return None


def _find_text(parent: ET.Element | None, path: List[str]) -> Optional[str]:
    cur: Optional[ET.Element] = parent
    for p in path:
        if cur is None:
            return None
        cur = _find_child(cur, p)
    if cur is None:
        return None
    text = (cur.text or "").strip()
    return text if text else None


def _find_value_text(parent: ET.Element | None, path: List[str]) -> Optional[str]:
    """Common SEC pattern: <foo><value>TEXT</value></foo>, occasionally without the wrapper."""
    return _find_text(parent, path + ["value"]) or _find_text(parent, path)


def _parse_float(s: Optional[str]) -> Optional[float]:
    if s is None:
        return None
    t = str(s).strip()
    if not t:
        return None
    # Remove commas and currency symbols
    t = t.replace(",", "").replace("$", "")
    try:
        return float(t)
    except ValueError:
        return None


def _to_bool(v: Optional[str]) -> bool:
    if v is None:
        return False
    return v.strip().lower() in ("1", "true", "y", "yes")


def _parse_footnotes(root: ET.Element) -> Dict[str, str]:
    """Extract <footnotes><footnote id="F1">...</footnote>...</footnotes> map."""
    out: Dict[str, str] = {}
    fn_el = _find_child(root, "footnotes")
    if fn_el is None:
        return out
    for child in fn_el:
        if _strip_ns(child.tag).lower() != "footnote":
            continue
        fid = (child.attrib.get("id") or child.attrib.get("ID") or "").strip()
        # Footnote text can contain nested tags; itertext is safest.
        text = " ".join("".join(child.itertext()).split())
        if fid and text:
            out[fid] = text
    return out


def _mentions_10b5_1(text: str) -> bool:
    t = text.lower()
    return any(m in t for m in _10B5_1_MARKERS)


def _locate_ownership_root(xml_text: str) -> ET.Element:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ParseError(f"Malformed Form 4 XML: {e}") from e

    # Some filings wrap ownershipDocument; search for it
    if _strip_ns(root.tag).lower() == "ownershipdocument":
        return root
    for el in root.iter():
        if _strip_ns(el.tag).lower() == "ownershipdocument":
            return el
    raise ParseError("No ownershipDocument element found in XML")


def parse_form4_xml(xml_text: str, *, source_url: str | None = None) -> Form4Document:
    """Decode an ownershipDocument into a typed Form4Document.

    Only the non-derivative table is read. Missing optional fields come back as None;
    deciding whether the filing is usable is left to Form4Document.empty_reason().
    """
    root = _locate_ownership_root(xml_text)

    footnote_map = _parse_footnotes(root)

    issuer_el = _find_child(root, "issuer")
    issuer = Issuer(
        cik=normalize_cik(_find_text(issuer_el, ["issuerCik"])),
        name=clean_name(_find_text(issuer_el, ["issuerName"])),
        ticker=normalize_ticker(_find_text(issuer_el, ["issuerTradingSymbol"])),
    )

    owners: List[ReportingOwner] = []
    for ro_el in [c for c in root if _strip_ns(c.tag) == "reportingOwner"]:
        ro_id = _find_child(ro_el, "reportingOwnerId")
        rel = _find_child(ro_el, "reportingOwnerRelationship")
        owners.append(
            ReportingOwner(
                cik=normalize_cik(_find_text(ro_id, ["rptOwnerCik"])),
                name=clean_name(_find_text(ro_id, ["rptOwnerName"])),
                is_director=_to_bool(_find_text(rel, ["isDirector"])),
                is_officer=_to_bool(_find_text(rel, ["isOfficer"])),
                is_ten_percent_owner=_to_bool(_find_text(rel, ["isTenPercentOwner"])),
                officer_title=clean_name(_find_text(rel, ["officerTitle"])),
            )
        )

    # Post-2023 schema has an explicit checkbox; older filings only say it in footnotes.
    is_plan = _to_bool(_find_text(root, ["aff10b5One"])) or any(
        _mentions_10b5_1(t) for t in footnote_map.values()
    )

    transactions: List[Form4LineItem] = []
    nd_table = _find_child(root, "nonDerivativeTable")
    if nd_table is not None:
        line = 0
        for tx in nd_table:
            if _strip_ns(tx.tag) != "nonDerivativeTransaction":
                continue
            line += 1
            transactions.append(_parse_transaction(tx, line))

    doc = Form4Document(
        document_type=_find_text(root, ["documentType"]),
        period_of_report=_find_text(root, ["periodOfReport"]),
        issuer=issuer,
        owners=owners,
        transactions=transactions,
        is_10b5_1_plan=is_plan,
        footnotes=footnote_map,
        source_url=source_url,
    )

    _debug(
        f"Parsed Form4: doc_type={doc.document_type} issuer_cik={issuer.cik} symbol={issuer.ticker} "
        f"owners={len(owners)} txs={len(transactions)} footnotes={len(footnote_map)} 10b5-1={is_plan}"
    )
    return doc


def _parse_transaction(tx_el: ET.Element, line_number: int) -> Form4LineItem:
    code = _find_text(tx_el, ["transactionCoding", "transactionCode"])
    d_or_i = _find_value_text(tx_el, ["ownershipNature", "directOrIndirectOwnership"])

    footnote_ids: List[str] = []
    for el in tx_el.iter():
        if _strip_ns(el.tag).lower() == "footnoteid":
            fid = (el.attrib.get("id") or el.attrib.get("ID") or "").strip()
            if fid and fid not in footnote_ids:
                footnote_ids.append(fid)

    return Form4LineItem(
        line_number=line_number,
        transaction_code=(code.strip().upper() if code else None),
        transaction_date=_find_value_text(tx_el, ["transactionDate"]),
        shares=_parse_float(_find_value_text(tx_el, ["transactionAmounts", "transactionShares"])),
        price_per_share=_parse_float(_find_value_text(tx_el, ["transactionAmounts", "transactionPricePerShare"])),
        shares_owned_after=_parse_float(
            _find_value_text(tx_el, ["postTransactionAmounts", "sharesOwnedFollowingTransaction"])
        ),
        acquired_disposed=_find_value_text(tx_el, ["transactionAmounts", "transactionAcquiredDisposedCode"]),
        direct_or_indirect=(d_or_i.strip().upper() if d_or_i else "D"),
        footnote_ids=tuple(footnote_ids),
    )


def parse_form4(
    client: SecClient,
    cik: str | Sequence[str | None],
    accession_number: str,
    *,
    archives_url: str = ARCHIVES_URL,
) -> Form4Document:
    """Download and decode one Form 4.

    cik may be a single CIK or every CIK the index listed for the filing.
    Raises FetchError when the document cannot be retrieved and ParseError when it
    cannot be decoded.
    """
    ciks = [cik] if isinstance(cik, str) else list(cik)
    xml_text, cik10 = fetch_form4_xml(client, accession_number, ciks, archives_url=archives_url)
    return parse_form4_xml(xml_text, source_url=filing_index_url(cik10, accession_number, archives_url=archives_url))

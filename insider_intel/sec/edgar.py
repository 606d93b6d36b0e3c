from __future__ import annotations

import re
from typing import Callable, List, Optional, Sequence, Tuple

from insider_intel.sec.client import FetchError, SecClient
from insider_intel.util.normalization import accession_nodash, cik_path_component, normalize_accession, normalize_cik


ARCHIVES_URL = "https://www.sec.gov/Archives/edgar"

INFOTABLE_FILENAMES = ("infotable.xml", "InfoTable.xml", "INFOTABLE.XML")


def _debug(msg: str) -> None:
    print(f"[sec] {msg}")


def filing_dir_url(cik: str, accession_number: str, *, archives_url: str = ARCHIVES_URL) -> str:
    return f"{archives_url.rstrip('/')}/data/{cik_path_component(cik)}/{accession_nodash(accession_number)}/"


def filing_index_url(cik: str, accession_number: str, *, archives_url: str = ARCHIVES_URL) -> str:
    """Human-facing filing index page; stored as the transaction's source URL."""
    acc = normalize_accession(accession_number)
    return filing_dir_url(cik, acc, archives_url=archives_url) + f"{acc}-index.htm"


def list_filing_documents(client: SecClient, cik: str, accession_number: str, *, archives_url: str = ARCHIVES_URL) -> List[str]:
    idx = client.fetch_json(filing_dir_url(cik, accession_number, archives_url=archives_url) + "index.json")
    items = (idx.get("directory") or {}).get("item") or []
    return [str(it.get("name") or "").strip() for it in items if isinstance(it, dict) and it.get("name")]


def _candidate_ciks(accession_number: str, ciks: Sequence[str | None]) -> List[str]:
    out: List[str] = []
    for c in ciks:
        n = normalize_cik(c)
        if n and n not in out:
            out.append(n)
    # Accession prefix is the filer agent's CIK; often the filer itself.
    prefix = normalize_cik(normalize_accession(accession_number).split("-")[0])
    if prefix and int(prefix) > 0 and prefix not in out:
        out.append(prefix)
    return out


def extract_ownership_document(text: str) -> Optional[str]:
    """Return the <ownershipDocument>...</ownershipDocument> fragment, even when embedded in .txt."""
    if not isinstance(text, str):
        return None
    m_start = re.search(r"<ownershipdocument\b", text, flags=re.IGNORECASE)
    if not m_start:
        return None
    m_end = re.search(r"</ownershipdocument>", text, flags=re.IGNORECASE)
    if not m_end or m_end.end() <= m_start.start():
        return None
    return text[m_start.start() : m_end.end()]


def _form4_score(name: str) -> int:
    n = name.lower()
    s = 0
    if n.endswith(".xml"):
        s += 3
    if "form4" in n or "primary_doc" in n:
        s += 5
    if "ownership" in n:
        s += 4
    if n.endswith(".xsd") or "xsl" in n or "index" in n:
        s -= 10
    return -s


def form4_candidates(names: Sequence[str]) -> List[str]:
    exts = (".xml", ".txt")
    cands = [n for n in names if n and n.lower().endswith(exts)]
    cands = [n for n in cands if _form4_score(n) < 0 or n.lower().endswith(".txt")]
    return sorted(cands, key=_form4_score)


def _try_ciks(
    accession_number: str,
    ciks: Sequence[str | None],
    attempt: Callable[[str], Tuple[str, str]],
) -> Tuple[str, str]:
    """Run attempt(cik10) for each candidate CIK until one succeeds.

    When every CIK fails, the error is transient if any attempt failed transiently,
    so the next scheduled run tries the filing again.
    """
    acc = normalize_accession(accession_number)
    cands = _candidate_ciks(acc, ciks)
    if not cands:
        raise FetchError("", f"No CIK available to locate accession={acc}", permanent=True)

    errors: List[FetchError] = []
    for cik10 in cands:
        try:
            return attempt(cik10)
        except FetchError as e:
            errors.append(e)

    transient = [e for e in errors if not e.permanent]
    last = (transient or errors)[-1]
    raise FetchError(
        last.url,
        f"accession={acc}: {last}",
        status_code=last.status_code,
        permanent=not transient,
    )


def fetch_form4_xml(
    client: SecClient,
    accession_number: str,
    ciks: Sequence[str | None],
    *,
    archives_url: str = ARCHIVES_URL,
) -> Tuple[str, str]:
    """Fetch the ownershipDocument XML for a Form 4 accession.

    Returns (xml_text, cik10_used). Tries each CIK (issuer and owner paths both resolve
    on EDGAR), ranks the accession directory's files and falls back to primary_doc.xml.
    """
    acc = normalize_accession(accession_number)

    def attempt(cik10: str) -> Tuple[str, str]:
        base = filing_dir_url(cik10, acc, archives_url=archives_url)
        try:
            names = form4_candidates(list_filing_documents(client, cik10, acc, archives_url=archives_url))
        except FetchError as e:
            if not e.permanent:
                raise
            names = []
        if "primary_doc.xml" not in names:
            names.append("primary_doc.xml")

        last_err: Optional[FetchError] = None
        for fname in names:
            try:
                frag = extract_ownership_document(client.fetch_text(base + fname))
            except FetchError as e:
                if not e.permanent:
                    raise
                last_err = e
                continue
            if frag:
                _debug(f"Selected ownershipDocument file: {fname} (cik10={cik10})")
                return frag, cik10
        raise FetchError(
            base,
            f"Could not locate ownershipDocument in {base} last_err={last_err}",
            status_code=last_err.status_code if last_err else None,
            permanent=True,
        )

    return _try_ciks(acc, ciks, attempt)


def infotable_candidates(names: Sequence[str]) -> List[str]:
    xmls = [n for n in names if n.lower().endswith(".xml")]
    named = [n for n in xmls if "infotable" in n.lower() or "information_table" in n.lower()]
    others = [n for n in xmls if n not in named and n.lower() != "primary_doc.xml"]
    return named + others


def fetch_13f_infotable(
    client: SecClient,
    accession_number: str,
    ciks: Sequence[str | None],
    *,
    archives_url: str = ARCHIVES_URL,
) -> Tuple[str, str]:
    """Fetch the 13F information table XML. Returns (xml_text, cik10_used)."""
    acc = normalize_accession(accession_number)

    def attempt(cik10: str) -> Tuple[str, str]:
        base = filing_dir_url(cik10, acc, archives_url=archives_url)
        try:
            names = infotable_candidates(list_filing_documents(client, cik10, acc, archives_url=archives_url))
        except FetchError as e:
            if not e.permanent:
                raise
            names = []
        for fname in INFOTABLE_FILENAMES:
            if fname not in names:
                names.append(fname)

        last_err: Optional[FetchError] = None
        for fname in names:
            try:
                text = client.fetch_text(base + fname)
            except FetchError as e:
                if not e.permanent:
                    raise
                last_err = e
                continue
            if re.search(r"<(?:\w+:)?infoTable\b", text, flags=re.IGNORECASE):
                _debug(f"Selected information table: {fname} (cik10={cik10})")
                return text, cik10
        raise FetchError(
            base,
            f"Could not locate information table in {base} last_err={last_err}",
            status_code=last_err.status_code if last_err else None,
            permanent=True,
        )

    return _try_ciks(acc, ciks, attempt)

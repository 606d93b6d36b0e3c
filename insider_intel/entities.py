"""Map parsed issuer / owner / filer identifiers onto persistent rows.

Lookups here only save work. Correctness under concurrent runs comes from the unique
constraints: every create is an INSERT ... ON CONFLICT that falls back to re-reading
the row another run created first.
"""

from __future__ import annotations

from typing import Any, Optional

from insider_intel.db import insert_returning_id
from insider_intel.models import Resolved
from insider_intel.util.normalization import clean_name, normalize_cik, normalize_ticker
from insider_intel.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[entities] {msg}")


# Name fragments of well-known hedge funds (13F filer names are upper case).
NOTABLE_FUNDS = (
    "BERKSHIRE HATHAWAY",
    "BRIDGEWATER",
    "CITADEL",
    "RENAISSANCE",
    "TWO SIGMA",
    "D. E. SHAW",
    "DE SHAW",
    "POINT72",
    "MILLENNIUM",
    "AQR",
    "TIGER GLOBAL",
    "COATUE",
    "ELLIOTT",
    "PERSHING SQUARE",
    "THIRD POINT",
    "BAUPOST",
    "VIKING GLOBAL",
    "LONE PINE",
    "APPALOOSA",
    "SOROS",
)

_TYPE_KEYWORDS = (
    ("Pension Fund", ("PENSION", "RETIREMENT SYSTEM", "TEACHERS", "EMPLOYEES RETIREMENT")),
    ("Bank", ("BANK", "BANCORP", "TRUST CO", "N.A.")),
    ("Hedge Fund", ("PARTNERS", " LP", "L.P.", "FUND MANAGEMENT")),
    ("Asset Manager", ("ASSET MANAGEMENT", "INVESTMENTS", "BLACKROCK", "VANGUARD", "STATE STREET", "FIDELITY")),
    ("Investment Advisor", ("ADVISOR", "ADVISER", "WEALTH", "CAPITAL MANAGEMENT")),
)


def is_notable_institution(name: str | None) -> bool:
    n = (name or "").upper()
    return any(k in n for k in NOTABLE_FUNDS)


def classify_institution(name: str | None) -> str:
    """Coarse institution type from the filer name."""
    n = f" {(name or '').upper()} "
    if is_notable_institution(n):
        return "Hedge Fund"
    for label, keys in _TYPE_KEYWORDS:
        if any(k in n for k in keys):
            return label
    return "Other"


# -----------------
# Companies
# -----------------


def _company_by_ticker(conn: Any, ticker: str) -> Optional[Any]:
    return conn.execute("SELECT id, name, cik FROM companies WHERE ticker=?", (ticker,)).fetchone()


def resolve_company(conn: Any, ticker: str, name: str | None = None, cik: str | None = None) -> Resolved:
    """Find a company by ticker (case-insensitive) or create it.

    Existing rows only ever gain previously-null fields (name, CIK).
    """
    t = normalize_ticker(ticker)
    if not t:
        raise ValueError("Company ticker is blank")
    nm = clean_name(name)
    c = normalize_cik(cik)

    row = _company_by_ticker(conn, t)
    if row is None:
        new_id = insert_returning_id(
            conn,
            """
            INSERT INTO companies (ticker, name, cik, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(ticker) DO NOTHING
            RETURNING id
            """,
            (t, nm or t, c, utcnow_iso()),
        )
        if new_id is not None:
            _debug(f"Created company ticker={t} cik={c}")
            return Resolved(id=new_id, created=True)
        # Lost the race to a concurrent run.
        row = _company_by_ticker(conn, t)
        if row is None:
            raise RuntimeError(f"Company {t} vanished after conflict")

    if c and not row["cik"]:
        conn.execute("UPDATE companies SET cik=? WHERE id=? AND cik IS NULL", (c, row["id"]))
    if nm and not row["name"]:
        conn.execute("UPDATE companies SET name=? WHERE id=? AND name IS NULL", (nm, row["id"]))
    return Resolved(id=int(row["id"]), created=False)


# -----------------
# Insiders
# -----------------


def resolve_insider(conn: Any, cik: str | None, name: str | None) -> Resolved:
    """Resolve a reporting owner: (1) CIK match, (2) exact name match, (3) create.

    Two different people filing under the same name without a CIK collapse into one
    insider. A name match that has no CIK yet is given this filing's CIK.
    """
    c = normalize_cik(cik)
    nm = clean_name(name)
    if not c and not nm:
        raise ValueError("Reporting owner has neither CIK nor name")

    if c:
        row = conn.execute("SELECT id FROM insiders WHERE cik=?", (c,)).fetchone()
        if row is not None:
            return Resolved(id=int(row["id"]), created=False)

    if nm:
        row = conn.execute(
            "SELECT id, cik FROM insiders WHERE name=? ORDER BY (cik IS NULL) DESC, id LIMIT 1",
            (nm,),
        ).fetchone()
        if row is not None and (not c or not row["cik"]):
            if c:
                conn.execute("UPDATE insiders SET cik=? WHERE id=? AND cik IS NULL", (c, row["id"]))
            return Resolved(id=int(row["id"]), created=False)

    now = utcnow_iso()
    if c:
        new_id = insert_returning_id(
            conn,
            """
            INSERT INTO insiders (name, cik, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(cik) DO NOTHING
            RETURNING id
            """,
            (nm or c, c, now),
        )
        if new_id is None:
            row = conn.execute("SELECT id FROM insiders WHERE cik=?", (c,)).fetchone()
            if row is None:
                raise RuntimeError(f"Insider cik={c} vanished after conflict")
            return Resolved(id=int(row["id"]), created=False)
    else:
        new_id = insert_returning_id(
            conn,
            "INSERT INTO insiders (name, cik, created_at) VALUES (?, NULL, ?) RETURNING id",
            (nm, now),
        )
        if new_id is None:
            raise RuntimeError(f"Insert of insider {nm!r} returned no id")

    _debug(f"Created insider name={nm!r} cik={c}")
    return Resolved(id=new_id, created=True)


# -----------------
# Institutions
# -----------------


def resolve_institution(conn: Any, cik: str, name: str | None, aum_estimate: float | None = None) -> Resolved:
    """Upsert a 13F filer by CIK; name, AUM and type are refreshed on every filing."""
    c = normalize_cik(cik)
    if not c:
        raise ValueError(f"Invalid institution CIK: {cik!r}")
    nm = clean_name(name) or c
    now = utcnow_iso()

    existing = conn.execute("SELECT id FROM institutions WHERE cik=?", (c,)).fetchone()
    if existing is None:
        new_id = insert_returning_id(
            conn,
            """
            INSERT INTO institutions (cik, name, institution_type, aum_estimate, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(cik) DO NOTHING
            RETURNING id
            """,
            (c, nm, classify_institution(nm), aum_estimate, now, now),
        )
        if new_id is not None:
            _debug(f"Created institution cik={c} name={nm!r}")
            return Resolved(id=new_id, created=True)
        existing = conn.execute("SELECT id FROM institutions WHERE cik=?", (c,)).fetchone()

    conn.execute(
        """
        UPDATE institutions
        SET name=?, institution_type=?, aum_estimate=COALESCE(?, aum_estimate), updated_at=?
        WHERE id=?
        """,
        (nm, classify_institution(nm), aum_estimate, now, existing["id"]),
    )
    return Resolved(id=int(existing["id"]), created=False)

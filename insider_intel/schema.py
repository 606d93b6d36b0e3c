"""Database schema for the Insider Intel ingestion pipeline.

Five canonical tables (companies, insiders, institutions, insider_transactions,
institutional_holdings) plus a small key/value table for ingestion watermarks.

We keep timestamps as ISO-8601 TEXT (UTC, with 'Z') and dates as YYYY-MM-DD TEXT for
portability across engines. ISO strings sort lexicographically in time order, so
comparisons like `transaction_date >= ?` behave correctly.

Idempotence lives here: every natural key is a UNIQUE constraint, and the persister
writes with ON CONFLICT DO NOTHING against it.

NOTE: The Postgres schema is generated from the SQLite schema with a small set of
transformations (types + autoincrement).
"""

from __future__ import annotations

import re


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Issuers seen on Form 4 / resolved from 13F CUSIPs. Identity: uppercase ticker.
CREATE TABLE IF NOT EXISTS companies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ticker TEXT NOT NULL UNIQUE,
    name TEXT,
    cik TEXT,
    sector TEXT,
    industry TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_companies_cik ON companies(cik);

-- Form 4 reporting owners. Identity: CIK when known, else exact name.
CREATE TABLE IF NOT EXISTS insiders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    cik TEXT UNIQUE,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_insiders_name ON insiders(name);

-- 13F filers. Identity: CIK.
CREATE TABLE IF NOT EXISTS institutions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cik TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    institution_type TEXT,
    aum_estimate REAL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- One row per non-derivative line item of a Form 4. Insert-or-skip, never updated.
CREATE TABLE IF NOT EXISTS insider_transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    company_id INTEGER NOT NULL REFERENCES companies(id),
    insider_id INTEGER NOT NULL REFERENCES insiders(id),
    accession_number TEXT NOT NULL,
    line_number INTEGER NOT NULL,
    filed_at TEXT,
    transaction_date TEXT,
    transaction_type TEXT NOT NULL CHECK (transaction_type IN ('P','S','A','D','G','M')),
    shares REAL NOT NULL,
    price_per_share REAL,
    total_value REAL,
    shares_owned_after REAL,
    direct_or_indirect TEXT,
    insider_title TEXT,
    is_officer INTEGER NOT NULL DEFAULT 0,
    is_director INTEGER NOT NULL DEFAULT 0,
    is_ten_percent_owner INTEGER NOT NULL DEFAULT 0,
    is_10b5_1_plan INTEGER NOT NULL DEFAULT 0,
    raw_filing_url TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (accession_number, line_number)
);

CREATE INDEX IF NOT EXISTS idx_tx_company_date ON insider_transactions(company_id, transaction_date);
CREATE INDEX IF NOT EXISTS idx_tx_type_date ON insider_transactions(transaction_type, transaction_date);
CREATE INDEX IF NOT EXISTS idx_tx_accession ON insider_transactions(accession_number);

-- One row per (institution, position, quarter end).
-- position_key is the company id when the CUSIP resolved, else 'cusip:<CUSIP>'.
CREATE TABLE IF NOT EXISTS institutional_holdings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    institution_id INTEGER NOT NULL REFERENCES institutions(id),
    company_id INTEGER REFERENCES companies(id),
    position_key TEXT NOT NULL,
    cusip TEXT,
    name_of_issuer TEXT,
    accession_number TEXT,
    report_date TEXT NOT NULL,
    shares REAL NOT NULL,
    value REAL,
    percent_of_portfolio REAL,
    shares_change REAL,
    shares_change_percent REAL,
    is_new_position INTEGER NOT NULL DEFAULT 0,
    is_closed_position INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE (institution_id, position_key, report_date)
);

CREATE INDEX IF NOT EXISTS idx_holdings_company_date ON institutional_holdings(company_id, report_date);
CREATE INDEX IF NOT EXISTS idx_holdings_institution_date ON institutional_holdings(institution_id, report_date);
"""


def _sqlite_to_postgres(ddl: str) -> str:
    # Remove SQLite pragmas
    lines: list[str] = []
    for line in ddl.splitlines():
        if line.strip().upper().startswith("PRAGMA "):
            continue
        lines.append(line)
    out = "\n".join(lines)

    # Types
    out = re.sub(r"\bREAL\b", "DOUBLE PRECISION", out)

    # AUTOINCREMENT primary keys
    out = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "BIGSERIAL PRIMARY KEY",
        out,
        flags=re.IGNORECASE,
    )
    out = re.sub(r"\bAUTOINCREMENT\b", "", out, flags=re.IGNORECASE)

    # FK columns must match BIGSERIAL
    out = re.sub(r"INTEGER(\s+(?:NOT\s+NULL\s+)?REFERENCES)", r"BIGINT\1", out)

    return out


SCHEMA_POSTGRES = _sqlite_to_postgres(SCHEMA_SQLITE)


def get_schema_sql(dialect: str) -> str:
    d = (dialect or "").lower()
    if d.startswith("post"):
        return SCHEMA_POSTGRES
    return SCHEMA_SQLITE

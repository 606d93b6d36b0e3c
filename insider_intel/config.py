import os
from dataclasses import dataclass
from typing import Optional


def _load_dotenv() -> None:
    # Optional: load a local .env file if present.
    try:
        from dotenv import load_dotenv

        load_dotenv()
    except Exception:
        # If python-dotenv isn't installed or .env isn't present, that's fine.
        pass


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    Built once by `load_config()` and handed to the fetchers, the scheduler and the
    scripts. Nothing below the scripts reads the environment itself.

    IMPORTANT: Provide API keys via environment variables or a .env file.
    Do not hardcode secrets in source code.
    """

    # -----------------
    # Core
    # -----------------
    # Postgres when the DSN is a postgres:// URL, else a SQLite file path.
    DB_DSN: str = "./insider_intel.sqlite"

    # -----------------
    # SEC EDGAR
    # -----------------
    # EDGAR rejects anonymous clients; name the app and a contact address.
    SEC_USER_AGENT: str = "InsiderIntel/0.1 (contact: you@example.com)"
    # SEC's ceiling is 10 req/s; 0.12s keeps us under it.
    SEC_MIN_INTERVAL_SECONDS: float = 0.12
    SEC_TIMEOUT_SECONDS: float = 60.0
    SEC_SEARCH_URL: str = "https://efts.sec.gov/LATEST/search-index"
    SEC_ARCHIVES_URL: str = "https://www.sec.gov/Archives/edgar"

    # -----------------
    # OpenFIGI (CUSIP -> ticker)
    # -----------------
    OPENFIGI_API_KEY: str | None = None
    OPENFIGI_URL: str = "https://api.openfigi.com/v3/mapping"
    # None means: derive from whether an API key is configured.
    OPENFIGI_MIN_INTERVAL_SECONDS: float | None = None

    # -----------------
    # Batch ingestion
    # -----------------
    FORM4_DAYS_BACK: int = 2
    FORM4_MAX_FILINGS: int = 200
    FORM4_FILING_DELAY_SECONDS: float = 0.1

    THIRTEENF_MAX_FILINGS: int = 50
    THIRTEENF_FILING_DELAY_SECONDS: float = 0.15

    # Serverless-style wall clock budget per invocation.
    INGEST_BUDGET_SECONDS: float = 55.0
    MAX_REPORTED_ERRORS: int = 10

    # Persist the last processed filed-at date and start the next sweep there.
    USE_WATERMARK: bool = True


def load_config() -> Config:
    """Read the process environment (and .env) once into a Config."""
    _load_dotenv()
    d = Config()

    figi_interval_raw = (os.environ.get("OPENFIGI_MIN_INTERVAL_SECONDS") or "").strip()

    return Config(
        DB_DSN=(
            os.environ.get("INSIDER_DATABASE_URL")
            or os.environ.get("DATABASE_URL")
            or os.environ.get("INSIDER_DB_PATH", d.DB_DSN)
        ),
        SEC_USER_AGENT=os.environ.get("SEC_USER_AGENT", d.SEC_USER_AGENT),
        SEC_MIN_INTERVAL_SECONDS=_env_float("SEC_MIN_INTERVAL_SECONDS", d.SEC_MIN_INTERVAL_SECONDS),
        SEC_TIMEOUT_SECONDS=_env_float("SEC_TIMEOUT_SECONDS", d.SEC_TIMEOUT_SECONDS),
        SEC_SEARCH_URL=os.environ.get("SEC_SEARCH_URL", d.SEC_SEARCH_URL),
        SEC_ARCHIVES_URL=os.environ.get("SEC_ARCHIVES_URL", d.SEC_ARCHIVES_URL),
        OPENFIGI_API_KEY=(os.environ.get("OPENFIGI_API_KEY") or "").strip() or None,
        OPENFIGI_URL=os.environ.get("OPENFIGI_URL", d.OPENFIGI_URL),
        OPENFIGI_MIN_INTERVAL_SECONDS=float(figi_interval_raw) if figi_interval_raw else None,
        FORM4_DAYS_BACK=_env_int("FORM4_DAYS_BACK", d.FORM4_DAYS_BACK),
        FORM4_MAX_FILINGS=_env_int("FORM4_MAX_FILINGS", d.FORM4_MAX_FILINGS),
        FORM4_FILING_DELAY_SECONDS=_env_float("FORM4_FILING_DELAY_SECONDS", d.FORM4_FILING_DELAY_SECONDS),
        THIRTEENF_MAX_FILINGS=_env_int("THIRTEENF_MAX_FILINGS", d.THIRTEENF_MAX_FILINGS),
        THIRTEENF_FILING_DELAY_SECONDS=_env_float(
            "THIRTEENF_FILING_DELAY_SECONDS", d.THIRTEENF_FILING_DELAY_SECONDS
        ),
        INGEST_BUDGET_SECONDS=_env_float("INGEST_BUDGET_SECONDS", d.INGEST_BUDGET_SECONDS),
        MAX_REPORTED_ERRORS=_env_int("MAX_REPORTED_ERRORS", d.MAX_REPORTED_ERRORS),
        USE_WATERMARK=_env_bool("USE_WATERMARK", d.USE_WATERMARK) is True,
    )

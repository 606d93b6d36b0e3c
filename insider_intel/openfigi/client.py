from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from insider_intel.config import Config
from insider_intel.util.normalization import normalize_cusip, normalize_ticker


def _debug(msg: str) -> None:
    print(f"[openfigi] {msg}")


OPENFIGI_URL = "https://api.openfigi.com/v3/mapping"

US_EXCH_CODES = ("US", "UN", "UW", "UQ", "UA", "UR")

CACHE_TTL_SECONDS = 7 * 24 * 3600
CACHE_MAX_ENTRIES = 50_000

# Well-known large caps, answered without a network call.
KNOWN_CUSIPS: Dict[str, str] = {
    "037833100": "AAPL",
    "594918104": "MSFT",
    "02079K305": "GOOGL",
    "02079K107": "GOOG",
    "023135106": "AMZN",
    "30303M102": "META",
    "67066G104": "NVDA",
    "88160R101": "TSLA",
    "79466L302": "CRM",
    "00724F101": "ADBE",
    "22160K105": "COST",
    "46625H100": "JPM",
    "084670108": "BRK.A",
    "084670702": "BRK.B",
    "92826C839": "V",
    "57636Q104": "MA",
    "91324P102": "UNH",
    "478160104": "JNJ",
    "742718109": "PG",
    "375558103": "GILD",
    "931142103": "WMT",
    "254687106": "DIS",
    "17275R102": "CSCO",
    "00206R102": "T",
    "92343V104": "VZ",
    "060505104": "BAC",
    "172967424": "C",
    "38141G104": "GS",
    "949746101": "WFC",
    "58933Y105": "MRK",
    "717081103": "PFE",
    "00287Y109": "ABBV",
    "110122108": "BMY",
    "30231G102": "XOM",
    "166764100": "CVX",
    "20825C104": "COP",
    "345370860": "F",
    "37045V100": "GM",
    "78462F103": "SPY",
    "464287200": "IVV",
    "458140100": "INTC",
    "038222105": "AMAT",
    "437076102": "HD",
    "539830109": "LMT",
    "654106103": "NKE",
    "808513105": "SCHW",
    "882508104": "TXN",
    "025816109": "AXP",
}


@dataclass(frozen=True)
class CusipMatch:
    cusip: str
    ticker: str | None
    name: str | None
    security_type: str | None


def pick_best_match(data: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Prefer a US listing, then Common Stock; otherwise the first result."""
    if not data:
        return None
    best = data[0]
    for m in data:
        if m.get("exchCode") in US_EXCH_CODES and best.get("exchCode") not in US_EXCH_CODES:
            best = m
        if m.get("securityType") == "Common Stock" and best.get("securityType") != "Common Stock":
            best = m
    return best


class OpenFigiClient:
    """Batch CUSIP -> ticker lookups against the OpenFIGI mapping API.

    Never raises into callers: any HTTP or decoding failure leaves the affected
    CUSIPs unresolved (None), and that outcome is cached like a real miss.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        url: str = OPENFIGI_URL,
        min_interval_seconds: float | None = None,
        session: Optional[requests.Session] = None,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        known: Optional[Dict[str, str]] = None,
    ):
        self.api_key = (api_key or "").strip() or None
        self.url = url
        # Unauthenticated: 25 req/min. With a key: 25 req/6s.
        if min_interval_seconds is None:
            min_interval_seconds = 0.25 if self.api_key else 2.5
        self.min_interval_seconds = min_interval_seconds
        self.max_jobs_per_request = 100 if self.api_key else 5
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep
        self._known = dict(KNOWN_CUSIPS if known is None else known)
        self._cache: Dict[str, tuple[float, CusipMatch]] = {}
        self._lock = threading.Lock()
        self._last_request_mono: float | None = None

    @classmethod
    def from_config(cls, cfg: Config, **kwargs: Any) -> "OpenFigiClient":
        return cls(
            cfg.OPENFIGI_API_KEY,
            url=cfg.OPENFIGI_URL,
            min_interval_seconds=cfg.OPENFIGI_MIN_INTERVAL_SECONDS,
            **kwargs,
        )

    # -----------------
    # Cache
    # -----------------
    def _cache_get(self, cusip: str) -> Optional[CusipMatch]:
        hit = self._cache.get(cusip)
        if hit is None:
            return None
        stored_at, match = hit
        if self._clock() - stored_at > CACHE_TTL_SECONDS:
            del self._cache[cusip]
            return None
        return match

    def _cache_put(self, match: CusipMatch) -> None:
        if len(self._cache) >= CACHE_MAX_ENTRIES:
            # Drop the oldest insertion.
            self._cache.pop(next(iter(self._cache)))
        self._cache[match.cusip] = (self._clock(), match)

    def cache_size(self) -> int:
        return len(self._cache)

    # -----------------
    # HTTP
    # -----------------
    def _throttle(self) -> None:
        interval = self.min_interval_seconds
        if not interval or interval <= 0:
            return
        with self._lock:
            if self._last_request_mono is not None:
                dt = self._clock() - self._last_request_mono
                if dt < interval:
                    self._sleep(interval - dt)
            self._last_request_mono = self._clock()

    def _post_jobs(self, cusips: List[str]) -> List[CusipMatch]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-OPENFIGI-APIKEY"] = self.api_key
        jobs = [{"idType": "ID_CUSIP", "idValue": c} for c in cusips]

        self._throttle()
        _debug(f"POST {self.url} jobs={len(jobs)}")
        r = self._session.post(self.url, json=jobs, headers=headers, timeout=self.timeout_seconds)
        if r.status_code != 200:
            raise RuntimeError(f"OpenFIGI error {r.status_code}: {(r.text or '')[:200]}")
        results = r.json()
        if not isinstance(results, list):
            raise RuntimeError("OpenFIGI response is not a list")

        out: List[CusipMatch] = []
        for i, cusip in enumerate(cusips):
            res = results[i] if i < len(results) and isinstance(results[i], dict) else {}
            best = pick_best_match(res.get("data") or []) if not res.get("error") else None
            if best is None:
                out.append(CusipMatch(cusip=cusip, ticker=None, name=None, security_type=None))
                continue
            out.append(
                CusipMatch(
                    cusip=cusip,
                    ticker=normalize_ticker(best.get("ticker")),
                    name=best.get("name"),
                    security_type=best.get("securityType"),
                )
            )
        return out

    # -----------------
    # Public
    # -----------------
    def lookup(self, cusips: Iterable[str | None]) -> Dict[str, CusipMatch]:
        """Resolve CUSIPs in batches. Every input CUSIP appears in the result."""
        results: Dict[str, CusipMatch] = {}
        pending: List[str] = []
        for raw in cusips:
            c = normalize_cusip(raw)
            if not c or c in results or c in pending:
                continue
            known = self._known.get(c)
            if known:
                results[c] = CusipMatch(cusip=c, ticker=known, name=None, security_type=None)
                continue
            cached = self._cache_get(c)
            if cached is not None:
                results[c] = cached
                continue
            pending.append(c)

        for i in range(0, len(pending), self.max_jobs_per_request):
            batch = pending[i : i + self.max_jobs_per_request]
            try:
                matches = self._post_jobs(batch)
            except (requests.RequestException, RuntimeError, ValueError) as e:
                _debug(f"Batch lookup failed ({len(batch)} cusips): {e}")
                matches = [CusipMatch(cusip=c, ticker=None, name=None, security_type=None) for c in batch]
            for m in matches:
                self._cache_put(m)
                results[m.cusip] = m

        resolved = sum(1 for m in results.values() if m.ticker)
        _debug(f"Resolved {resolved}/{len(results)} cusips (api_calls_needed={len(pending)})")
        return results

    def cusip_to_ticker(self, cusips: Iterable[str | None]) -> Dict[str, str | None]:
        return {c: m.ticker for c, m in self.lookup(cusips).items()}

from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Dict, Optional

import requests

from insider_intel.config import Config


def _debug(msg: str) -> None:
    print(f"[sec] {msg}")


class FetchError(RuntimeError):
    """An SEC request that did not produce a usable 200 response.

    permanent=True for client errors (bad accession, missing document); those are not
    worth retrying on the next run. Network errors, 429 and 5xx are transient.
    """

    def __init__(self, url: str, message: str, *, status_code: int | None = None, permanent: bool = False):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.permanent = permanent


def _is_permanent_status(status_code: int) -> bool:
    return 400 <= status_code < 500 and status_code != 429


class SecClient:
    """Polite EDGAR client: identifying User-Agent + minimum spacing between requests.

    The throttle is per client instance. One ingestion run owns one client, so every
    request in that run (index, index.json, documents) shares the same spacing.
    """

    def __init__(
        self,
        user_agent: str,
        min_interval_seconds: float | None = 0.12,
        *,
        timeout_seconds: float = 60.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        ua = (user_agent or "").strip()
        if not ua:
            raise ValueError("SEC requires a descriptive User-Agent")
        self.user_agent = ua
        self.min_interval_seconds = min_interval_seconds
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request_mono: float | None = None

    @classmethod
    def from_config(cls, cfg: Config, **kwargs: Any) -> "SecClient":
        return cls(
            cfg.SEC_USER_AGENT,
            cfg.SEC_MIN_INTERVAL_SECONDS,
            timeout_seconds=cfg.SEC_TIMEOUT_SECONDS,
            **kwargs,
        )

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

    def fetch(self, url: str) -> bytes:
        """GET url and return the raw body. Raises FetchError on anything but 200."""
        _debug(f"GET {url}")
        self._throttle()
        try:
            r = self._session.get(url, headers={"User-Agent": self.user_agent}, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise FetchError(url, f"SEC request error: {e}") from e

        if r.status_code != 200:
            snippet = (r.text or "")[:200]
            raise FetchError(
                url,
                f"SEC request failed {r.status_code}: {snippet}",
                status_code=r.status_code,
                permanent=_is_permanent_status(r.status_code),
            )
        return r.content

    def fetch_text(self, url: str) -> str:
        return self.fetch(url).decode("utf-8", errors="replace")

    def fetch_json(self, url: str) -> Dict[str, Any]:
        body = self.fetch(url)
        try:
            data = json.loads(body)
        except ValueError as e:
            raise FetchError(url, f"SEC response is not JSON: {e}", permanent=True) from e
        if not isinstance(data, dict):
            raise FetchError(url, "SEC response JSON is not an object", permanent=True)
        return data

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from insider_intel.util.normalization import normalize_ticker


def _debug(msg: str) -> None:
    print(f"[flow] {msg}")


BULLISH_THRESHOLD = 0.2
BEARISH_THRESHOLD = -0.2


@dataclass(frozen=True)
class HoldingDelta:
    shares_change: float | None
    is_new_position: bool = False
    is_closed_position: bool = False


@dataclass(frozen=True)
class FlowSummary:
    buyers: int
    sellers: int
    new_positions: int
    closed_positions: int
    shares_bought: float
    shares_sold: float
    score: float
    label: str

    @property
    def net_share_change(self) -> float:
        return self.shares_bought - self.shares_sold

    def to_dict(self) -> Dict[str, Any]:
        return {
            "buyers": self.buyers,
            "sellers": self.sellers,
            "new_positions": self.new_positions,
            "closed_positions": self.closed_positions,
            "shares_bought": self.shares_bought,
            "shares_sold": self.shares_sold,
            "net_share_change": self.net_share_change,
            "score": round(self.score, 2),
            "label": self.label,
        }


def sentiment_score(buyers: int, sellers: int) -> float:
    active = buyers + sellers
    if active == 0:
        return 0.0
    return (buyers - sellers) / active


def sentiment_label(score: float) -> str:
    """bullish above 0.2, bearish below -0.2; the band [-0.2, 0.2] is neutral."""
    if score > BULLISH_THRESHOLD:
        return "bullish"
    if score < BEARISH_THRESHOLD:
        return "bearish"
    return "neutral"


def summarize_flow(holdings: Iterable[HoldingDelta]) -> FlowSummary:
    """Net institutional flow for one company at one report date.

    A positive delta (or a new position) is a buyer, a negative delta (or a closed
    position) is a seller; unchanged or unknown deltas are neither.
    """
    buyers = sellers = new_positions = closed_positions = 0
    bought = sold = 0.0
    for h in holdings:
        change = h.shares_change or 0.0
        if h.is_new_position:
            new_positions += 1
        if h.is_closed_position:
            closed_positions += 1
        if change > 0 or h.is_new_position:
            buyers += 1
            bought += abs(change)
        elif change < 0 or h.is_closed_position:
            sellers += 1
            sold += abs(change)

    score = sentiment_score(buyers, sellers)
    return FlowSummary(
        buyers=buyers,
        sellers=sellers,
        new_positions=new_positions,
        closed_positions=closed_positions,
        shares_bought=bought,
        shares_sold=sold,
        score=score,
        label=sentiment_label(score),
    )


def latest_report_date(conn: Any, company_id: int) -> Optional[str]:
    row = conn.execute(
        "SELECT MAX(report_date) AS report_date FROM institutional_holdings WHERE company_id=?",
        (company_id,),
    ).fetchone()
    if row is None or row["report_date"] is None:
        return None
    return str(row["report_date"])


def load_holding_deltas(conn: Any, company_id: int, report_date: str) -> List[HoldingDelta]:
    rows = conn.execute(
        """
        SELECT shares_change, is_new_position, is_closed_position
        FROM institutional_holdings
        WHERE company_id=? AND report_date=?
        """,
        (company_id, report_date),
    ).fetchall()
    return [
        HoldingDelta(
            shares_change=float(r["shares_change"]) if r["shares_change"] is not None else None,
            is_new_position=bool(r["is_new_position"]),
            is_closed_position=bool(r["is_closed_position"]),
        )
        for r in rows
    ]


def get_institutional_activity(conn: Any, ticker: str, report_date: str | None = None) -> Optional[Dict[str, Any]]:
    """Flow summary for a ticker at report_date (default: its latest). None if the ticker is unknown."""
    t = normalize_ticker(ticker)
    if not t:
        raise ValueError("ticker is required")
    row = conn.execute("SELECT id, name FROM companies WHERE ticker=?", (t,)).fetchone()
    if row is None:
        return None
    company_id = int(row["id"])

    rd = report_date or latest_report_date(conn, company_id)
    if rd is None:
        summary = summarize_flow([])
    else:
        summary = summarize_flow(load_holding_deltas(conn, company_id, rd))
    _debug(f"ticker={t} report_date={rd} buyers={summary.buyers} sellers={summary.sellers} label={summary.label}")

    out: Dict[str, Any] = {"ticker": t, "company_name": row["name"], "report_date": rd}
    out.update(summary.to_dict())
    return out

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional


def _debug(msg: str) -> None:
    print(f"[clusters] {msg}")


MIN_DAYS, MAX_DAYS = 1, 90
MIN_BUYERS_FLOOR, MIN_BUYERS_CEIL = 2, 10
MAX_LIMIT = 50
PURCHASE_FETCH_LIMIT = 500


@dataclass(frozen=True)
class PurchaseRow:
    company_id: int
    ticker: str
    company_name: str | None
    insider_id: int | None
    insider_name: str
    insider_title: str | None
    total_value: float | None
    transaction_date: str | None
    filed_at: str | None = None


@dataclass
class ClusterInsider:
    name: str
    title: str | None
    total_value: float
    latest_date: str | None
    purchases: int = 1


@dataclass
class ClusterResult:
    company_id: int
    ticker: str
    company_name: str | None
    total_value: float = 0.0
    latest_date: str | None = None
    latest_filed_at: str | None = None
    insiders: List[ClusterInsider] = field(default_factory=list)

    @property
    def buyer_count(self) -> int:
        return len(self.insiders)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "company_name": self.company_name,
            "buyer_count": self.buyer_count,
            "total_value": self.total_value,
            "latest_date": self.latest_date,
            "latest_filed_at": self.latest_filed_at,
            "insiders": [
                {
                    "name": i.name,
                    "title": i.title,
                    "total_value": i.total_value,
                    "latest_date": i.latest_date,
                    "purchases": i.purchases,
                }
                for i in self.insiders
            ],
        }


def _later(a: str | None, b: str | None) -> str | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def detect_clusters(transactions: Iterable[PurchaseRow], min_buyers: int, limit: int) -> List[ClusterResult]:
    """Group purchases by company and keep companies bought by >= min_buyers distinct insiders.

    Repeat purchases by one insider add to that insider's value instead of counting as
    another buyer. Clusters sort by buyer count desc, then aggregate value desc; the
    insiders inside a cluster sort by their value desc. Missing values count as 0.
    """
    by_company: Dict[int, ClusterResult] = {}
    members: Dict[int, Dict[Any, ClusterInsider]] = {}

    for tx in transactions:
        value = float(tx.total_value or 0)
        cluster = by_company.get(tx.company_id)
        if cluster is None:
            cluster = ClusterResult(company_id=tx.company_id, ticker=tx.ticker, company_name=tx.company_name)
            by_company[tx.company_id] = cluster
            members[tx.company_id] = {}
        cluster.total_value += value
        cluster.latest_date = _later(cluster.latest_date, tx.transaction_date)
        cluster.latest_filed_at = _later(cluster.latest_filed_at, tx.filed_at)

        key = tx.insider_id if tx.insider_id is not None else f"name:{tx.insider_name}"
        ins = members[tx.company_id].get(key)
        if ins is None:
            members[tx.company_id][key] = ClusterInsider(
                name=tx.insider_name,
                title=tx.insider_title,
                total_value=value,
                latest_date=tx.transaction_date,
            )
        else:
            ins.total_value += value
            ins.purchases += 1
            ins.latest_date = _later(ins.latest_date, tx.transaction_date)
            if not ins.title and tx.insider_title:
                ins.title = tx.insider_title

    out: List[ClusterResult] = []
    for company_id, cluster in by_company.items():
        insiders = list(members[company_id].values())
        if len(insiders) < min_buyers:
            continue
        # sorted() is stable: equal values keep first-seen order.
        cluster.insiders = sorted(insiders, key=lambda i: -i.total_value)
        out.append(cluster)

    out.sort(key=lambda c: (-c.buyer_count, -c.total_value))
    return out[: max(0, int(limit))]


def load_recent_purchases(
    conn: Any,
    days: int,
    *,
    limit: int = PURCHASE_FETCH_LIMIT,
    today: Optional[date] = None,
) -> List[PurchaseRow]:
    """Open-market purchases (code P) filed in the last `days` days, most recently filed first.

    The window is on filed_at, so a late-filed old trade counts as recent activity.
    """
    since = ((today or date.today()) - timedelta(days=days)).isoformat()
    rows = conn.execute(
        """
        SELECT t.company_id, c.ticker, c.name AS company_name, t.insider_id, i.name AS insider_name,
               t.insider_title, t.total_value, t.transaction_date, t.filed_at
        FROM insider_transactions t
        JOIN companies c ON c.id = t.company_id
        JOIN insiders i ON i.id = t.insider_id
        WHERE t.transaction_type = 'P' AND t.filed_at >= ?
        ORDER BY t.filed_at DESC, t.id DESC
        LIMIT ?
        """,
        (since, int(limit)),
    ).fetchall()
    return [
        PurchaseRow(
            company_id=int(r["company_id"]),
            ticker=str(r["ticker"]),
            company_name=r["company_name"],
            insider_id=int(r["insider_id"]) if r["insider_id"] is not None else None,
            insider_name=str(r["insider_name"]),
            insider_title=r["insider_title"],
            total_value=float(r["total_value"]) if r["total_value"] is not None else None,
            transaction_date=r["transaction_date"],
            filed_at=r["filed_at"],
        )
        for r in rows
    ]


def get_cluster_buys(
    conn: Any,
    *,
    days: int = 30,
    min_buyers: int = 2,
    limit: int = 20,
    today: Optional[date] = None,
) -> List[ClusterResult]:
    """Validated read path: days 1-90, min_buyers 2-10, limit 1-50 (larger limits are capped)."""
    if not (MIN_DAYS <= int(days) <= MAX_DAYS):
        raise ValueError(f"days must be between {MIN_DAYS} and {MAX_DAYS}")
    if not (MIN_BUYERS_FLOOR <= int(min_buyers) <= MIN_BUYERS_CEIL):
        raise ValueError(f"min_buyers must be between {MIN_BUYERS_FLOOR} and {MIN_BUYERS_CEIL}")
    if int(limit) < 1:
        raise ValueError("limit must be at least 1")
    limit = min(int(limit), MAX_LIMIT)

    purchases = load_recent_purchases(conn, int(days), today=today)
    clusters = detect_clusters(purchases, int(min_buyers), limit)
    _debug(f"days={days} min_buyers={min_buyers} purchases={len(purchases)} clusters={len(clusters)}")
    return clusters

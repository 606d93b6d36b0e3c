from dataclasses import replace
from datetime import date

import pytest

from insider_intel.compute.clusters import PurchaseRow, detect_clusters, get_cluster_buys, load_recent_purchases
from insider_intel.entities import resolve_company, resolve_insider
from insider_intel.models import TransactionRecord
from insider_intel.persist import upsert_transaction


def _buy(company_id, ticker, insider_id, name, value, tx_date="2024-03-01", title=None):
    return PurchaseRow(
        company_id=company_id,
        ticker=ticker,
        company_name=f"{ticker} Inc.",
        insider_id=insider_id,
        insider_name=name,
        insider_title=title,
        total_value=value,
        transaction_date=tx_date,
    )


def test_clusters_order_by_buyers_then_value():
    rows = [
        # X: three buyers, $300k total
        _buy(1, "XXX", 11, "A", 100_000),
        _buy(1, "XXX", 12, "B", 100_000),
        _buy(1, "XXX", 13, "C", 100_000),
        # Y: two buyers, $900k total
        _buy(2, "YYY", 21, "D", 400_000),
        _buy(2, "YYY", 22, "E", 500_000),
        # Z: a single buyer is not a cluster
        _buy(3, "ZZZ", 31, "F", 5_000_000),
    ]
    clusters = detect_clusters(rows, min_buyers=2, limit=10)
    assert [c.ticker for c in clusters] == ["XXX", "YYY"]
    assert [c.buyer_count for c in clusters] == [3, 2]
    assert clusters[1].total_value == 900_000
    assert [i.name for i in clusters[1].insiders] == ["E", "D"]


def test_equal_buyer_counts_sort_by_value():
    rows = [
        _buy(1, "LOW", 11, "A", 10),
        _buy(1, "LOW", 12, "B", 10),
        _buy(2, "HIGH", 21, "C", 1000),
        _buy(2, "HIGH", 22, "D", 1000),
    ]
    assert [c.ticker for c in detect_clusters(rows, 2, 10)] == ["HIGH", "LOW"]


def test_repeat_purchases_count_one_buyer():
    rows = [
        _buy(1, "XXX", 11, "A", 100, tx_date="2024-03-01"),
        _buy(1, "XXX", 11, "A", 250, tx_date="2024-03-04", title="CEO"),
    ]
    assert detect_clusters(rows, 2, 10) == []

    rows.append(_buy(1, "XXX", 12, "B", 50))
    (cluster,) = detect_clusters(rows, 2, 10)
    assert cluster.buyer_count == 2
    assert cluster.total_value == 400
    top = cluster.insiders[0]
    assert top.name == "A"
    assert top.total_value == 350
    assert top.purchases == 2
    assert top.latest_date == "2024-03-04"
    assert top.title == "CEO"
    assert cluster.latest_date == "2024-03-04"


def test_missing_value_counts_as_zero():
    rows = [_buy(1, "XXX", 11, "A", None), _buy(1, "XXX", 12, "B", 10)]
    (cluster,) = detect_clusters(rows, 2, 10)
    assert cluster.total_value == 10


def test_limit_applies_after_sorting():
    rows = []
    for c in range(5):
        rows += [_buy(c, f"T{c}", c * 10 + 1, "A", c), _buy(c, f"T{c}", c * 10 + 2, "B", c)]
    clusters = detect_clusters(rows, 2, 2)
    assert [c.ticker for c in clusters] == ["T4", "T3"]


@pytest.mark.parametrize(
    "kwargs",
    [{"days": 0}, {"days": 91}, {"min_buyers": 1}, {"min_buyers": 11}, {"limit": 0}],
)
def test_get_cluster_buys_validates(conn, kwargs):
    with pytest.raises(ValueError):
        get_cluster_buys(conn, **kwargs)


def _seed(conn):
    company = resolve_company(conn, "AAPL", "Apple Inc.").id
    other = resolve_company(conn, "MSFT", "Microsoft Corp").id
    a = resolve_insider(conn, "1000001", "ALPHA ANN").id
    b = resolve_insider(conn, "1000002", "BETA BOB").id
    base = TransactionRecord(
        company_id=company,
        insider_id=a,
        accession_number="acc-1",
        line_number=1,
        filed_at="2024-03-04",
        transaction_date="2024-03-01",
        transaction_type="P",
        shares=100.0,
        price_per_share=10.0,
        total_value=1000.0,
        shares_owned_after=None,
        direct_or_indirect="D",
        insider_title="Director",
        is_officer=False,
        is_director=True,
        is_ten_percent_owner=False,
        is_10b5_1_plan=False,
        raw_filing_url=None,
    )
    upsert_transaction(conn, base)
    upsert_transaction(conn, replace(base, accession_number="acc-2", insider_id=b, total_value=5000.0))
    # A sale and an old purchase never count.
    upsert_transaction(conn, replace(base, accession_number="acc-3", insider_id=b, transaction_type="S"))
    upsert_transaction(conn, replace(base, accession_number="acc-4", filed_at="2023-01-03", transaction_date="2023-01-01"))
    # One buyer only at MSFT.
    upsert_transaction(conn, replace(base, accession_number="acc-5", company_id=other))
    return company


def test_load_recent_purchases_reads_open_market_buys(conn):
    _seed(conn)
    rows = load_recent_purchases(conn, 30, today=date(2024, 3, 10))
    assert len(rows) == 3
    assert {r.ticker for r in rows} == {"AAPL", "MSFT"}
    assert all(r.filed_at >= "2024-02-09" for r in rows)


def test_window_uses_filing_date_not_trade_date(conn):
    _seed(conn)
    row = conn.execute("SELECT * FROM insider_transactions WHERE accession_number='acc-5'").fetchone()
    late = TransactionRecord(
        company_id=row["company_id"],
        insider_id=resolve_insider(conn, "1000002", "BETA BOB").id,
        accession_number="acc-6",
        line_number=1,
        filed_at="2024-03-05",
        transaction_date="2023-06-01",
        transaction_type="P",
        shares=10.0,
        price_per_share=20.0,
        total_value=200.0,
        shares_owned_after=None,
        direct_or_indirect="D",
        insider_title=None,
        is_officer=False,
        is_director=False,
        is_ten_percent_owner=False,
        is_10b5_1_plan=False,
        raw_filing_url=None,
    )
    upsert_transaction(conn, late)

    rows = load_recent_purchases(conn, 30, today=date(2024, 3, 10))
    assert rows[0].transaction_date == "2023-06-01"
    assert len(rows) == 4
    clusters = get_cluster_buys(conn, days=30, min_buyers=2, today=date(2024, 3, 10))
    assert {c.ticker for c in clusters} == {"AAPL", "MSFT"}


def test_get_cluster_buys_end_to_end(conn):
    _seed(conn)
    clusters = get_cluster_buys(conn, days=30, min_buyers=2, limit=100, today=date(2024, 3, 10))
    assert len(clusters) == 1
    c = clusters[0]
    assert c.ticker == "AAPL"
    assert c.buyer_count == 2
    assert c.total_value == 6000.0
    assert [i.name for i in c.insiders] == ["BETA BOB", "ALPHA ANN"]
    d = c.to_dict()
    assert d["buyer_count"] == 2
    assert d["insiders"][0]["total_value"] == 5000.0

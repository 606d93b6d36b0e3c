from datetime import date

from helpers import FakeClock, FakeResponse, FakeSession, directory_listing, form4_xml, make_client, nd_transaction, search_hits
from insider_intel.db import get_app_config
from insider_intel.jobs.ingest_form4 import WATERMARK_KEY, run_form4_ingestion, transactions_from_document
from insider_intel.sec.index import daily_index_url
from insider_intel.sec.parser import parse_form4_xml

SEARCH = "https://efts.sec.gov/LATEST/search-index?"
ARCHIVES = "https://www.sec.gov/Archives/edgar/data/320193/"
TODAY = date(2024, 3, 5)

ACC_A = "0000320193-24-000010"
ACC_B = "0000320193-24-000011"
ACC_C = "0000320193-24-000012"

DOC_A = form4_xml(
    [
        nd_transaction("P", "1,000", "150.25", date="2024-03-01"),
        nd_transaction("S", "500", None, footnote="F1"),
        nd_transaction("J", "10", "1.00"),
    ],
    officer_title="Chief Financial Officer",
    footnotes={"F1": "Sold pursuant to a Rule 10b5-1 trading plan."},
)
DOC_EMPTY = form4_xml([])


def _hit(acc, filed):
    return {"adsh": acc, "file_date": filed, "form": "4", "ciks": ["0000320193", "0001214128"], "display_names": ["Apple Inc."]}


def _dir(acc):
    return ARCHIVES + acc.replace("-", "") + "/"


def _routes(docs, hits=None):
    routes = {}
    for acc, (_, body) in docs.items():
        routes[_dir(acc) + "index.json"] = FakeResponse(200, directory_listing(f"{acc}-index.htm", "form4.xml"))
        routes[_dir(acc) + "form4.xml"] = body if isinstance(body, (FakeResponse, BaseException)) else FakeResponse(200, body)
    routes[SEARCH] = hits or FakeResponse(200, search_hits(*(_hit(acc, filed) for acc, (filed, _) in docs.items())))
    return routes


def _run(conn, cfg, session, clock=None, **kwargs):
    clock = clock or FakeClock()
    kwargs.setdefault("days_back", 2)
    kwargs.setdefault("max_filings", 10)
    return run_form4_ingestion(conn, cfg, make_client(session), today=TODAY, clock=clock, sleep=clock.sleep, **kwargs)


def test_ingests_transactions_and_skips_empty_filings(conn, cfg):
    session = FakeSession(_routes({ACC_A: ("2024-03-04", DOC_A), ACC_B: ("2024-03-05", DOC_EMPTY)}))
    summary = _run(conn, cfg, session)

    assert summary.status == "done"
    assert summary.filings_found == 2
    assert summary.filings_processed == 2
    assert summary.filings_failed == 0
    assert summary.records_created == 2
    assert summary.records_filtered == 1
    assert summary.skip_reasons == {"no_transactions": 1}
    assert summary.companies_created == 1
    assert summary.insiders_created == 1
    assert summary.watermark == "2024-03-05"
    assert get_app_config(conn, WATERMARK_KEY) == "2024-03-05"

    rows = conn.execute(
        """
        SELECT t.*, c.ticker, i.name AS insider_name
        FROM insider_transactions t
        JOIN companies c ON c.id = t.company_id
        JOIN insiders i ON i.id = t.insider_id
        ORDER BY t.line_number
        """
    ).fetchall()
    assert [r["line_number"] for r in rows] == [1, 2]
    buy, sell = rows
    assert buy["ticker"] == "AAPL"
    assert buy["insider_name"] == "LEVINSON ARTHUR D"
    assert buy["transaction_type"] == "P"
    assert buy["transaction_date"] == "2024-03-01"
    assert buy["filed_at"] == "2024-03-04"
    assert buy["shares"] == 1000.0
    assert buy["total_value"] == 150250.0
    assert buy["insider_title"] == "Chief Financial Officer"
    assert buy["is_officer"] == 1
    assert buy["is_10b5_1_plan"] == 1
    assert buy["raw_filing_url"] == _dir(ACC_A) + f"{ACC_A}-index.htm"
    assert sell["transaction_type"] == "S"
    assert sell["price_per_share"] is None
    assert sell["total_value"] is None


def test_rerun_creates_no_duplicates(conn, cfg):
    docs = {ACC_A: ("2024-03-04", DOC_A), ACC_B: ("2024-03-05", DOC_EMPTY)}
    _run(conn, cfg, FakeSession(_routes(docs)))
    summary = _run(conn, cfg, FakeSession(_routes(docs)))

    assert summary.records_created == 0
    assert summary.records_skipped == 2
    assert summary.skip_reasons == {"already_ingested": 1, "no_transactions": 1}
    assert summary.params["start_date"] == "2024-03-05"
    assert conn.execute("SELECT COUNT(*) AS n FROM insider_transactions").fetchone()["n"] == 2
    assert conn.execute("SELECT COUNT(*) AS n FROM companies").fetchone()["n"] == 1


def test_bad_filing_is_isolated(conn, cfg):
    docs = {
        ACC_A: ("2024-03-04", DOC_A),
        ACC_C: ("2024-03-04", "<ownershipDocument><issuer></ownershipDocument>"),
    }
    summary = _run(conn, cfg, FakeSession(_routes(docs)))
    assert summary.status == "done"
    assert summary.filings_processed == 2
    assert summary.filings_failed == 1
    assert summary.records_created == 2
    assert summary.errors[0].startswith(f"{ACC_C}: ")


def test_transient_failure_holds_the_watermark(conn, cfg):
    docs = {
        ACC_A: ("2024-03-04", DOC_A),
        ACC_C: ("2024-03-04", FakeResponse(503, "busy")),
        ACC_B: ("2024-03-05", DOC_EMPTY),
    }
    summary = _run(conn, cfg, FakeSession(_routes(docs)))
    assert summary.filings_failed == 1
    assert summary.first_pending.accession_number == ACC_C
    assert summary.watermark == "2024-03-04"


def test_truncated_index_does_not_move_the_watermark(conn, cfg):
    docs = {ACC_A: ("2024-03-04", DOC_A), ACC_B: ("2024-03-05", DOC_EMPTY)}
    summary = _run(conn, cfg, FakeSession(_routes(docs)), max_filings=1)
    assert summary.filings_found == 1
    assert summary.watermark is None
    assert get_app_config(conn, WATERMARK_KEY) is None


def test_full_search_page_with_repeated_accessions_holds_the_watermark(conn, cfg):
    docs = {ACC_A: ("2024-03-05", DOC_A), ACC_B: ("2024-03-05", DOC_EMPTY)}
    hits = FakeResponse(200, search_hits(_hit(ACC_A, "2024-03-05"), _hit(ACC_B, "2024-03-05"), _hit(ACC_B, "2024-03-05")))
    summary = _run(conn, cfg, FakeSession(_routes(docs, hits=hits)), max_filings=3)
    assert summary.filings_found == 2
    assert summary.filings_processed == 2
    assert summary.index_truncated is True
    assert summary.watermark is None
    assert get_app_config(conn, WATERMARK_KEY) is None


def test_budget_exhausted_before_first_filing(conn, cfg):
    docs = {ACC_A: ("2024-03-04", DOC_A)}
    summary = _run(conn, cfg, FakeSession(_routes(docs)), budget_seconds=0)
    assert summary.status == "timed_out"
    assert summary.filings_processed == 0
    assert summary.filings_remaining == 1
    assert conn.execute("SELECT COUNT(*) AS n FROM insider_transactions").fetchone()["n"] == 0


def test_index_failure_fails_the_run(conn, cfg):
    session = FakeSession(_routes({}, hits=FakeResponse(503, "busy")))
    summary = _run(conn, cfg, session)
    assert summary.status == "failed"
    assert summary.filings_processed == 0
    assert "503" in summary.fatal_error
    assert get_app_config(conn, WATERMARK_KEY) is None


def test_daily_index_source(conn, cfg):
    line = f"{'4':<12}{'Apple Inc.':<62}{'320193':<12}{'20240305':<12}edgar/data/320193/{ACC_A}.txt"
    index_text = "\n" * 11 + line + "\n"
    routes = _routes({ACC_A: ("2024-03-05", DOC_A)})
    routes[daily_index_url(TODAY)] = FakeResponse(200, index_text)
    summary = _run(conn, cfg, FakeSession(routes), use_daily_index=True)
    assert summary.params["source"] == "daily_index"
    assert summary.filings_found == 1
    assert summary.records_created == 2


def test_transaction_date_falls_back_to_period_of_report():
    doc = parse_form4_xml(form4_xml([nd_transaction("P", "10", "2", date="")]))
    records, filtered = transactions_from_document(doc, company_id=1, insider_id=1, accession_number="x", filed_at=None)
    assert filtered == 0
    assert records[0].transaction_date == "2024-03-01"
    assert records[0].total_value == 20.0

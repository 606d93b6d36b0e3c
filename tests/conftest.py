import pytest

from helpers import FakeClock
from insider_intel.config import Config
from insider_intel.db import connect, init_db


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "insider_intel.sqlite")
    init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    with connect(db_path) as c:
        yield c


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cfg(db_path):
    return Config(
        DB_DSN=db_path,
        SEC_MIN_INTERVAL_SECONDS=0,
        FORM4_FILING_DELAY_SECONDS=0,
        THIRTEENF_FILING_DELAY_SECONDS=0,
        INGEST_BUDGET_SECONDS=100,
    )

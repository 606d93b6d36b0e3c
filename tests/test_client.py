import pytest
import requests

from helpers import FakeClock, FakeResponse, FakeSession
from insider_intel.config import Config
from insider_intel.sec.client import FetchError, SecClient

URL = "https://www.sec.gov/Archives/edgar/data/320193/000032019324000001/index.json"


def _client(session, clock, interval=0.12):
    return SecClient("InsiderIntel tests (test@example.com)", interval, session=session, clock=clock, sleep=clock.sleep)


def test_user_agent_is_required():
    with pytest.raises(ValueError):
        SecClient("   ")


def test_user_agent_header_is_sent():
    session = FakeSession({URL: FakeResponse(200, b"ok")})
    client = _client(session, FakeClock())
    assert client.fetch(URL) == b"ok"
    assert session.headers[0]["User-Agent"] == "InsiderIntel tests (test@example.com)"


def test_first_request_does_not_wait():
    clock = FakeClock()
    client = _client(FakeSession({URL: FakeResponse(200, b"ok")}), clock)
    client.fetch(URL)
    assert clock.sleeps == []


def test_back_to_back_requests_are_spaced():
    clock = FakeClock()
    client = _client(FakeSession({URL: FakeResponse(200, b"ok")}), clock)
    client.fetch(URL)
    client.fetch(URL)
    client.fetch(URL)
    assert clock.sleeps == [pytest.approx(0.12), pytest.approx(0.12)]


def test_only_the_remaining_gap_is_slept():
    clock = FakeClock()
    client = _client(FakeSession({URL: FakeResponse(200, b"ok")}), clock)
    client.fetch(URL)
    clock.advance(0.05)
    client.fetch(URL)
    assert clock.sleeps == [pytest.approx(0.07)]


def test_no_wait_after_interval_elapsed():
    clock = FakeClock()
    client = _client(FakeSession({URL: FakeResponse(200, b"ok")}), clock)
    client.fetch(URL)
    clock.advance(1.0)
    client.fetch(URL)
    assert clock.sleeps == []


def test_failed_requests_still_count_toward_spacing():
    clock = FakeClock()
    client = _client(FakeSession({URL: FakeResponse(503, "busy")}), clock)
    for _ in range(2):
        with pytest.raises(FetchError):
            client.fetch(URL)
    assert clock.sleeps == [pytest.approx(0.12)]


@pytest.mark.parametrize(
    "status,permanent",
    [(404, True), (403, True), (400, True), (429, False), (500, False), (503, False)],
)
def test_non_200_classification(status, permanent):
    client = _client(FakeSession({URL: FakeResponse(status, "nope")}), FakeClock())
    with pytest.raises(FetchError) as ei:
        client.fetch(URL)
    assert ei.value.status_code == status
    assert ei.value.permanent is permanent
    assert ei.value.url == URL
    assert str(status) in str(ei.value)


def test_network_error_is_transient():
    client = _client(FakeSession({URL: requests.ConnectionError("reset")}), FakeClock())
    with pytest.raises(FetchError) as ei:
        client.fetch(URL)
    assert ei.value.permanent is False
    assert ei.value.status_code is None


def test_fetch_json_decodes_object():
    client = _client(FakeSession({URL: FakeResponse(200, {"directory": {"item": []}})}), FakeClock())
    assert client.fetch_json(URL) == {"directory": {"item": []}}


def test_fetch_json_rejects_non_json_body():
    client = _client(FakeSession({URL: FakeResponse(200, "<html>maintenance</html>")}), FakeClock())
    with pytest.raises(FetchError) as ei:
        client.fetch_json(URL)
    assert ei.value.permanent is True


def test_fetch_json_rejects_non_object():
    client = _client(FakeSession({URL: FakeResponse(200, [1, 2, 3])}), FakeClock())
    with pytest.raises(FetchError):
        client.fetch_json(URL)


def test_from_config_uses_configured_agent_and_interval():
    cfg = Config(SEC_USER_AGENT="Acme Research ops@acme.test", SEC_MIN_INTERVAL_SECONDS=0.5)
    client = SecClient.from_config(cfg, session=FakeSession())
    assert client.user_agent == "Acme Research ops@acme.test"
    assert client.min_interval_seconds == 0.5

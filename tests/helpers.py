from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from insider_intel.sec.client import SecClient


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = b""):
        self.status_code = status_code
        if isinstance(body, bytes):
            self.content = body
        elif isinstance(body, str):
            self.content = body.encode("utf-8")
        else:
            self.content = json.dumps(body).encode("utf-8")

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)


class FakeSession:
    """requests.Session stand-in. Routes match exactly, then by longest URL prefix; unknown URLs 404."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[str] = []
        self.headers: List[Dict[str, str]] = []
        self.posts: List[Any] = []

    def _match(self, url: str) -> Any:
        if url in self.routes:
            return self.routes[url]
        prefixes = [k for k in self.routes if url.startswith(k)]
        if prefixes:
            return self.routes[max(prefixes, key=len)]
        return FakeResponse(404, "Not Found")

    def _respond(self, route: Any) -> FakeResponse:
        if isinstance(route, list):
            # A list answers successive calls in order; the last entry repeats.
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, BaseException):
            raise route
        return route

    def get(self, url: str, headers: Optional[Dict[str, str]] = None, timeout: Any = None) -> FakeResponse:
        self.calls.append(url)
        self.headers.append(dict(headers or {}))
        return self._respond(self._match(url))

    def post(self, url: str, json: Any = None, headers: Optional[Dict[str, str]] = None, timeout: Any = None) -> FakeResponse:
        self.calls.append(url)
        self.headers.append(dict(headers or {}))
        self.posts.append(json)
        return self._respond(self._match(url))


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_client(session: FakeSession, min_interval: float = 0) -> SecClient:
    return SecClient("InsiderIntel tests (test@example.com)", min_interval, session=session)


def nd_transaction(
    code: str,
    shares: str | None,
    price: str | None,
    *,
    date: str = "2024-03-01",
    owned_after: str = "10000",
    footnote: str | None = None,
) -> str:
    shares_el = f"<transactionShares><value>{shares}</value></transactionShares>" if shares is not None else ""
    if price is not None:
        price_el = f"<transactionPricePerShare><value>{price}</value></transactionPricePerShare>"
    elif footnote:
        price_el = f'<transactionPricePerShare><footnoteId id="{footnote}"/></transactionPricePerShare>'
    else:
        price_el = ""
    acquired = "D" if code == "S" else "A"
    return f"""
    <nonDerivativeTransaction>
      <securityTitle><value>Common Stock</value></securityTitle>
      <transactionDate><value>{date}</value></transactionDate>
      <transactionCoding>
        <transactionFormType>4</transactionFormType>
        <transactionCode>{code}</transactionCode>
        <equitySwapInvolved>0</equitySwapInvolved>
      </transactionCoding>
      <transactionAmounts>
        {shares_el}
        {price_el}
        <transactionAcquiredDisposedCode><value>{acquired}</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
      <postTransactionAmounts>
        <sharesOwnedFollowingTransaction><value>{owned_after}</value></sharesOwnedFollowingTransaction>
      </postTransactionAmounts>
      <ownershipNature>
        <directOrIndirectOwnership><value>D</value></directOrIndirectOwnership>
      </ownershipNature>
    </nonDerivativeTransaction>"""


def form4_xml(
    transactions: List[str],
    *,
    ticker: str | None = "AAPL",
    issuer_name: str | None = "Apple Inc.",
    issuer_cik: str = "0000320193",
    owner_cik: str | None = "0001214128",
    owner_name: str | None = "LEVINSON ARTHUR D",
    officer_title: str | None = None,
    footnotes: Dict[str, str] | None = None,
    extra: str = "",
) -> str:
    ticker_el = f"<issuerTradingSymbol>{ticker}</issuerTradingSymbol>" if ticker is not None else ""
    name_el = f"<issuerName>{issuer_name}</issuerName>" if issuer_name is not None else ""
    owner_cik_el = f"<rptOwnerCik>{owner_cik}</rptOwnerCik>" if owner_cik is not None else ""
    owner_name_el = f"<rptOwnerName>{owner_name}</rptOwnerName>" if owner_name is not None else ""
    title_el = f"<officerTitle>{officer_title}</officerTitle>" if officer_title else ""
    is_officer = "1" if officer_title else "0"
    table = f"<nonDerivativeTable>{''.join(transactions)}</nonDerivativeTable>" if transactions else ""
    fns = ""
    if footnotes:
        fns = "<footnotes>" + "".join(f'<footnote id="{k}">{v}</footnote>' for k, v in footnotes.items()) + "</footnotes>"
    return f"""<?xml version="1.0"?>
<ownershipDocument>
  <schemaVersion>X0508</schemaVersion>
  <documentType>4</documentType>
  <periodOfReport>2024-03-01</periodOfReport>
  {extra}
  <issuer>
    <issuerCik>{issuer_cik}</issuerCik>
    {name_el}
    {ticker_el}
  </issuer>
  <reportingOwner>
    <reportingOwnerId>
      {owner_cik_el}
      {owner_name_el}
    </reportingOwnerId>
    <reportingOwnerRelationship>
      <isDirector>1</isDirector>
      <isOfficer>{is_officer}</isOfficer>
      <isTenPercentOwner>0</isTenPercentOwner>
      {title_el}
    </reportingOwnerRelationship>
  </reportingOwner>
  {table}
  {fns}
</ownershipDocument>
"""


def info_table_row(
    name: str,
    cusip: str,
    value: str,
    shares: str,
    *,
    put_call: str | None = None,
    share_type: str = "SH",
) -> str:
    put_call_el = f"<putCall>{put_call}</putCall>" if put_call else ""
    return f"""
  <infoTable>
    <nameOfIssuer>{name}</nameOfIssuer>
    <titleOfClass>COM</titleOfClass>
    <cusip>{cusip}</cusip>
    <value>{value}</value>
    <shrsOrPrnAmt><sshPrnamt>{shares}</sshPrnamt><sshPrnamtType>{share_type}</sshPrnamtType></shrsOrPrnAmt>
    {put_call_el}
    <investmentDiscretion>SOLE</investmentDiscretion>
    <votingAuthority><Sole>{shares}</Sole><Shared>0</Shared><None>0</None></votingAuthority>
  </infoTable>"""


def info_table_xml(rows: List[str]) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<informationTable xmlns="http://www.sec.gov/edgar/document/thirteenf/informationtable">'
        + "".join(rows)
        + "</informationTable>\n"
    )


def search_hits(*sources: Dict[str, Any]) -> Dict[str, Any]:
    """Full-text search response body wrapping the given _source dicts."""
    return {"hits": {"total": {"value": len(sources)}, "hits": [{"_id": str(i), "_source": s} for i, s in enumerate(sources)]}}


def directory_listing(*names: str) -> Dict[str, Any]:
    """Body of an accession folder's index.json."""
    return {"directory": {"name": "", "item": [{"name": n, "type": "file"} for n in names]}}

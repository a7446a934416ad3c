import base64
import hashlib
import hmac
import json

import pytest
import requests

from lnscheduler.domain.models import User
from lnscheduler.venue.errors import (
    VenueAuthError,
    VenueNetworkError,
    VenueRateLimitError,
    VenueRejectedError,
    VenueTimeoutError,
    VenueUnavailableError,
)
from lnscheduler.venue.lnmarkets import (
    LNMarketsClient,
    VenueSettings,
    futures_fee,
    load_venue_settings,
    make_venue_factory,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.content = json.dumps(payload).encode() if payload is not None else text.encode()

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.headers = {}
        self.response = response or FakeResponse(payload={})
        self.exc = exc
        self.requests = []

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.requests.append({"method": method, "url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


def _client(session):
    return LNMarketsClient("key", "secret", "pass", settings=VenueSettings(base_url="https://lnm.test"), session=session)


def test_requests_are_signed():
    session = FakeSession(FakeResponse(payload={"lastPrice": 60000, "index": 60010}))
    _client(session).fetch_ticker()

    req = session.requests[0]
    h = req["headers"]
    expected = base64.b64encode(
        hmac.new(b"secret", f"{h['LNM-ACCESS-TIMESTAMP']}GET/v2/futures/ticker".encode(), hashlib.sha256).digest()
    ).decode()
    assert h["LNM-ACCESS-SIGNATURE"] == expected
    assert h["LNM-ACCESS-KEY"] == "key"
    assert h["LNM-ACCESS-PASSPHRASE"] == "pass"
    assert req["url"] == "https://lnm.test/v2/futures/ticker"


def test_post_signs_the_exact_body():
    session = FakeSession(FakeResponse(payload={"id": "t1", "side": "b", "type": "m", "running": True}))
    trade = _client(session).place_futures_order(side="buy", order_type="market", leverage=10, margin=1000)

    req = session.requests[0]
    assert json.loads(req["data"]) == {"side": "b", "type": "m", "leverage": 10, "margin": 1000}
    ts = req["headers"]["LNM-ACCESS-TIMESTAMP"]
    expected = base64.b64encode(
        hmac.new(b"secret", f"{ts}POST/v2/futures{req['data']}".encode(), hashlib.sha256).digest()
    ).decode()
    assert req["headers"]["LNM-ACCESS-SIGNATURE"] == expected
    assert (trade.venue_id, trade.side, trade.order_type, trade.running) == ("t1", "buy", "market", True)


def test_get_positions_puts_query_in_url_and_signature():
    session = FakeSession(FakeResponse(payload=[]))
    _client(session).fetch_futures_positions("running")
    url = session.requests[0]["url"]
    assert url == "https://lnm.test/v2/futures?type=running&from=1751299710000"


@pytest.mark.parametrize(
    "status,error",
    [
        (400, VenueRejectedError),
        (401, VenueAuthError),
        (403, VenueAuthError),
        (404, VenueRejectedError),
        (429, VenueRateLimitError),
        (500, VenueUnavailableError),
        (503, VenueUnavailableError),
    ],
)
def test_http_errors_are_classified(status, error):
    session = FakeSession(FakeResponse(status_code=status, payload={"message": "nope"}))
    with pytest.raises(error) as exc_info:
        _client(session).fetch_balance()
    assert exc_info.value.status_code == status
    assert "nope" in str(exc_info.value)


def test_transport_errors_are_transient():
    with pytest.raises(VenueTimeoutError):
        _client(FakeSession(exc=requests.Timeout())).fetch_balance()
    with pytest.raises(VenueNetworkError):
        _client(FakeSession(exc=requests.ConnectionError("refused"))).fetch_balance()


def test_futures_trade_normalisation():
    raw = {
        "id": "abc",
        "side": "s",
        "type": "l",
        "open": True,
        "price": 65000,
        "takeprofit": 0,
        "stoploss": 70000,
        "opening_fee": 10,
        "closing_fee": 5,
        "sum_carry_fees": 3,
        "liquidation": 90000,
    }
    [trade] = _client(FakeSession(FakeResponse(payload=[raw]))).fetch_futures_positions("open")
    assert (trade.side, trade.order_type) == ("sell", "limit")
    assert trade.entry_price == 65000.0
    assert trade.take_profit is None
    assert trade.stop_loss == 70000.0
    assert trade.fee == 18
    assert trade.liquidation_price == 90000.0


def test_futures_fee_falls_back_to_fee_field():
    assert futures_fee({"fee": 42}) == 42
    assert futures_fee({}) == 0


def test_options_position_without_closed_flag_is_open():
    raw = {"id": "o1", "quantity": 2, "instrument": "BTC.2026-10-30.70000.C", "settlement": "cash"}
    [trade] = _client(FakeSession(FakeResponse(payload=[raw]))).fetch_options_positions()
    assert trade.open is True and trade.closed is False
    assert trade.instrument_name == "BTC.2026-10-30.70000.C"


def test_update_targets_sends_one_call_per_target():
    session = FakeSession(FakeResponse(payload={"id": "t1"}))
    _client(session).update_targets("t1", take_profit=70000, stop_loss=50000)
    bodies = [json.loads(r["data"]) for r in session.requests]
    assert bodies == [
        {"id": "t1", "type": "takeprofit", "value": 70000},
        {"id": "t1", "type": "stoploss", "value": 50000},
    ]


def test_swap_reads_either_out_amount_spelling():
    session = FakeSession(FakeResponse(payload={"id": 7, "outAmount": 42.5}))
    result = _client(session).execute_swap("BTC", "USD", 70000)
    assert result.out_amount == 42.5
    assert result.in_amount == 70000.0
    assert result.venue_id == "7"


def test_ticker_without_last_price_is_unavailable():
    with pytest.raises(VenueUnavailableError):
        _client(FakeSession(FakeResponse(payload={"index": 1}))).fetch_ticker()


def test_factory_refuses_users_without_credentials():
    factory = make_venue_factory(load_venue_settings({"venue": {"base_url": "https://lnm.test/"}}))
    with pytest.raises(VenueAuthError):
        factory(User(id=1, username="bob"))
    client = factory(User(id=2, username="alice", api_key="k", api_secret="s", api_passphrase="p"))
    assert client.settings.base_url == "https://lnm.test"

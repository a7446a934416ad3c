"""
LN Markets REST client (v2 API).

Every private call is signed with the user's key/secret/passphrase:

    signature = base64(HMAC_SHA256(secret, timestamp_ms + METHOD + path + data))

where `data` is the urlencoded query for GET/DELETE and the exact JSON body for POST/PUT.
Responses are normalised into the venue-neutral records in `lnscheduler.domain.models`.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlencode

import requests

from lnscheduler.domain.models import Balance, RemoteTrade, SwapResult, Ticker, User
from lnscheduler.ports.venue import VenuePort
from lnscheduler.venue.errors import (
    VenueAuthError,
    VenueError,
    VenueNetworkError,
    VenueRateLimitError,
    VenueRejectedError,
    VenueTimeoutError,
    VenueUnavailableError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.lnmarkets.com"
# Lower bound for futures history queries (seconds since epoch).
DEFAULT_FUTURES_HISTORY_FROM = 1751299710

_SIDES = {"b": "buy", "s": "sell"}
_ORDER_TYPES = {"m": "market", "l": "limit"}


@dataclass(frozen=True)
class VenueSettings:
    base_url: str = DEFAULT_BASE_URL
    request_timeout_seconds: float = 10.0
    futures_history_from: int = DEFAULT_FUTURES_HISTORY_FROM


def load_venue_settings(config: dict) -> VenueSettings:
    v = (config.get("venue") or {}) if isinstance(config, dict) else {}
    return VenueSettings(
        base_url=str(v.get("base_url", DEFAULT_BASE_URL)).rstrip("/"),
        request_timeout_seconds=float(v.get("request_timeout_seconds", 10)),
        futures_history_from=int(v.get("futures_history_from", DEFAULT_FUTURES_HISTORY_FROM)),
    )


def _num(v: Any) -> float | None:
    if v is None or v == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _int(v: Any) -> int | None:
    f = _num(v)
    return int(f) if f is not None else None


def _ms_to_dt(v: Any) -> datetime | None:
    f = _num(v)
    if f is None:
        return None
    return datetime.fromtimestamp(f / 1000.0, tz=timezone.utc)


def futures_fee(raw: dict[str, Any]) -> int:
    """Total fee in sats: opening + closing + accumulated carry fees."""
    parts = ("opening_fee", "closing_fee", "sum_carry_fees")
    if not any(raw.get(k) is not None for k in parts):
        return _int(raw.get("fee")) or 0
    return int(
        (_num(raw.get("opening_fee")) or 0)
        + (_num(raw.get("closing_fee")) or 0)
        + (_num(raw.get("sum_carry_fees")) or 0)
    )


def _futures_trade(raw: dict[str, Any]) -> RemoteTrade:
    return RemoteTrade(
        venue_id=str(raw.get("id")),
        type="futures",
        side=_SIDES.get(str(raw.get("side")), str(raw.get("side"))),
        order_type=_ORDER_TYPES.get(str(raw.get("type")), str(raw.get("type"))),
        closed=bool(raw.get("closed")),
        running=bool(raw.get("running")),
        open=bool(raw.get("open")),
        canceled=bool(raw.get("canceled")),
        entry_price=_num(raw.get("entry_price")) or _num(raw.get("price")),
        exit_price=_num(raw.get("exit_price")),
        margin=_int(raw.get("margin")),
        leverage=_num(raw.get("leverage")),
        quantity=_num(raw.get("quantity")),
        # 0 means "not set" on the venue.
        take_profit=_num(raw.get("takeprofit")) or None,
        stop_loss=_num(raw.get("stoploss")) or None,
        pnl=_num(raw.get("pl")),
        fee=futures_fee(raw),
        liquidation_price=_num(raw.get("liquidation")),
        instrument_name="BTC/USD",
    )


def _options_trade(raw: dict[str, Any]) -> RemoteTrade:
    closed = bool(raw.get("closed"))
    return RemoteTrade(
        venue_id=str(raw.get("id")),
        type="options",
        side="buy",
        order_type="market",
        closed=closed,
        # Options only distinguish closed vs still live.
        open=not closed,
        entry_price=_num(raw.get("price")),
        exit_price=_num(raw.get("exit_price")),
        margin=_int(raw.get("margin")),
        quantity=_num(raw.get("quantity")),
        pnl=_num(raw.get("pl")),
        pnl_usd=_num(raw.get("pl_usd")),
        instrument_name=raw.get("instrument") or raw.get("instrument_name"),
        settlement=raw.get("settlement"),
    )


class LNMarketsClient:
    """
    Thin signed client over `requests.Session`.

    Transport and HTTP failures are mapped onto the `VenueError` taxonomy so callers can
    tell a rejection (stop retrying) from a transient failure (retry next tick).
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        api_passphrase: str,
        settings: VenueSettings | None = None,
        session: requests.Session | None = None,
    ):
        self.settings = settings or VenueSettings()
        self._key = api_key
        self._secret = api_secret.encode("utf-8")
        self._passphrase = api_passphrase
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "User-Agent": "lnscheduler/1.0"})

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _sign(self, timestamp: str, method: str, path: str, data: str) -> str:
        payload = f"{timestamp}{method}{path}{data}".encode("utf-8")
        digest = hmac.new(self._secret, payload, hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        method = method.upper()
        path = f"/v2{path}"
        query = urlencode({k: v for k, v in (params or {}).items() if v is not None})
        data = json.dumps(body, separators=(",", ":")) if body is not None else ""
        signed_data = query if method in ("GET", "DELETE") else data

        timestamp = str(int(time.time() * 1000))
        headers = {
            "LNM-ACCESS-KEY": self._key,
            "LNM-ACCESS-PASSPHRASE": self._passphrase,
            "LNM-ACCESS-TIMESTAMP": timestamp,
            "LNM-ACCESS-SIGNATURE": self._sign(timestamp, method, path, signed_data),
        }
        if body is not None:
            headers["Content-Type"] = "application/json"

        url = f"{self.settings.base_url}{path}"
        if query:
            url = f"{url}?{query}"

        try:
            resp = self.session.request(
                method,
                url,
                data=data if body is not None else None,
                headers=headers,
                timeout=self.settings.request_timeout_seconds,
            )
        except requests.Timeout as e:
            raise VenueTimeoutError(f"{method} {path} timed out after {self.settings.request_timeout_seconds}s") from e
        except requests.ConnectionError as e:
            raise VenueNetworkError(f"{method} {path} failed: {e}") from e
        except requests.RequestException as e:
            raise VenueNetworkError(f"{method} {path} failed: {e}") from e

        if resp.status_code >= 400:
            raise self._error_for(method, path, resp)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise VenueUnavailableError(f"{method} {path} returned a non-JSON body", status_code=resp.status_code) from e

    @staticmethod
    def _error_for(method: str, path: str, resp: requests.Response) -> VenueError:
        detail = ""
        try:
            body = resp.json()
            if isinstance(body, dict):
                detail = str(body.get("message") or body.get("error") or "")
        except ValueError:
            detail = (resp.text or "")[:200]
        msg = f"{method} {path} -> HTTP {resp.status_code}" + (f": {detail}" if detail else "")
        code = resp.status_code
        if code in (401, 403):
            return VenueAuthError(msg, status_code=code)
        if code == 429:
            return VenueRateLimitError(msg, status_code=code)
        if code >= 500:
            return VenueUnavailableError(msg, status_code=code)
        return VenueRejectedError(msg, status_code=code)

    # ------------------------------------------------------------------
    # VenuePort
    # ------------------------------------------------------------------

    def place_futures_order(
        self,
        *,
        side: str,
        order_type: str,
        leverage: float,
        margin: int | None = None,
        quantity: float | None = None,
        price: float | None = None,
        take_profit: float | None = None,
        stop_loss: float | None = None,
    ) -> RemoteTrade:
        body: dict[str, Any] = {
            "side": "b" if side == "buy" else "s",
            "type": "l" if order_type == "limit" else "m",
            "leverage": leverage,
        }
        if margin is not None:
            body["margin"] = int(margin)
        elif quantity is not None:
            body["quantity"] = quantity
        if order_type == "limit":
            if price is None:
                raise VenueRejectedError("Limit orders require a price")
            body["price"] = price
        if take_profit is not None:
            body["takeprofit"] = take_profit
        if stop_loss is not None:
            body["stoploss"] = stop_loss
        raw = self._request("POST", "/futures", body=body)
        return _futures_trade(raw or {})

    def place_options_order(self, *, quantity: float, settlement: str, instrument_name: str) -> RemoteTrade:
        raw = self._request(
            "POST",
            "/options",
            body={"side": "b", "quantity": quantity, "settlement": settlement, "instrument_name": instrument_name},
        )
        return _options_trade(raw or {})

    def close_position(self, venue_id: str, trade_type: str = "futures") -> RemoteTrade | None:
        if trade_type == "options":
            raw = self._request("DELETE", "/options", params={"id": venue_id})
            return _options_trade(raw) if isinstance(raw, dict) and raw.get("id") else None
        raw = self._request("DELETE", "/futures", params={"id": venue_id})
        return _futures_trade(raw) if isinstance(raw, dict) and raw.get("id") else None

    def cancel_order(self, venue_id: str) -> RemoteTrade | None:
        raw = self._request("POST", "/futures/cancel", body={"id": venue_id})
        return _futures_trade(raw) if isinstance(raw, dict) and raw.get("id") else None

    def update_targets(
        self, venue_id: str, *, take_profit: float | None = None, stop_loss: float | None = None
    ) -> RemoteTrade | None:
        raw = None
        # The venue updates one target per call.
        for kind, value in (("takeprofit", take_profit), ("stoploss", stop_loss)):
            if value is None:
                continue
            raw = self._request("PUT", "/futures", body={"id": venue_id, "type": kind, "value": value})
        return _futures_trade(raw) if isinstance(raw, dict) and raw.get("id") else None

    def fetch_futures_positions(self, scope: str = "open") -> list[RemoteTrade]:
        raw = self._request(
            "GET",
            "/futures",
            params={"type": scope, "from": self.settings.futures_history_from * 1000},
        )
        return [_futures_trade(r) for r in (raw or []) if isinstance(r, dict)]

    def fetch_options_positions(self) -> list[RemoteTrade]:
        raw = self._request("GET", "/options")
        return [_options_trade(r) for r in (raw or []) if isinstance(r, dict)]

    def fetch_ticker(self) -> Ticker:
        raw = self._request("GET", "/futures/ticker") or {}
        last = _num(raw.get("lastPrice"))
        if last is None:
            raise VenueUnavailableError("Ticker response has no lastPrice")
        return Ticker(
            last_price=last,
            index_price=_num(raw.get("index")),
            ask_price=_num(raw.get("askPrice")),
            bid_price=_num(raw.get("bidPrice")),
            carry_fee_rate=_num(raw.get("carryFeeRate")),
            carry_fee_timestamp=_ms_to_dt(raw.get("carryFeeTimestamp")),
        )

    def fetch_balance(self) -> Balance:
        raw = self._request("GET", "/user") or {}
        return Balance(
            balance=_int(raw.get("balance")) or 0,
            synthetic_usd_balance=_num(raw.get("synthetic_usd_balance")),
        )

    def execute_swap(self, from_asset: str, to_asset: str, amount: float) -> SwapResult:
        raw = self._request(
            "POST",
            "/swap",
            body={"in_asset": from_asset, "out_asset": to_asset, "in_amount": amount},
        ) or {}
        out_amount = _num(raw.get("out_amount"))
        if out_amount is None:
            out_amount = _num(raw.get("outAmount")) or 0.0
        return SwapResult(
            in_asset=str(raw.get("in_asset") or from_asset),
            out_asset=str(raw.get("out_asset") or to_asset),
            in_amount=_num(raw.get("in_amount")) or float(amount),
            out_amount=out_amount,
            venue_id=str(raw["id"]) if raw.get("id") is not None else None,
        )


VenueFactory = Callable[[User], VenuePort]


def make_venue_factory(settings: VenueSettings) -> VenueFactory:
    """Per-user client factory; refuses users without a full credential set."""

    def factory(user: User) -> LNMarketsClient:
        if not user.has_credentials:
            raise VenueAuthError("User API credentials not configured")
        return LNMarketsClient(user.api_key, user.api_secret, user.api_passphrase, settings=settings)

    return factory

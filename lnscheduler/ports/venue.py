from __future__ import annotations

from typing import Protocol

from lnscheduler.domain.models import Balance, RemoteTrade, SwapResult, Ticker


class VenuePort(Protocol):
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
    ) -> RemoteTrade: ...

    def place_options_order(self, *, quantity: float, settlement: str, instrument_name: str) -> RemoteTrade: ...

    def close_position(self, venue_id: str, trade_type: str = "futures") -> RemoteTrade | None: ...

    def cancel_order(self, venue_id: str) -> RemoteTrade | None: ...

    def update_targets(
        self, venue_id: str, *, take_profit: float | None = None, stop_loss: float | None = None
    ) -> RemoteTrade | None: ...

    def fetch_futures_positions(self, scope: str = "open") -> list[RemoteTrade]: ...

    def fetch_options_positions(self) -> list[RemoteTrade]: ...

    def fetch_ticker(self) -> Ticker: ...

    def fetch_balance(self) -> Balance: ...

    def execute_swap(self, from_asset: str, to_asset: str, amount: float) -> SwapResult: ...

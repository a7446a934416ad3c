from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from lnscheduler.domain.triggers import TriggerConfig


class TradeStatus(str, Enum):
    PENDING = "pending"
    OPEN = "open"
    RUNNING = "running"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class ScheduledTradeStatus(str, Enum):
    PENDING = "pending"
    TRIGGERED = "triggered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ScheduledSwapStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SwapExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


TRIGGER_TYPES = ("date", "price_range", "price_percentage")
SCHEDULE_TYPES = ("calendar", "recurring", "market_condition")
ONE_SHOT_SCHEDULE_TYPES = frozenset({"calendar", "market_condition"})
SWAP_DIRECTIONS = {"btc_to_usd": ("BTC", "USD"), "usd_to_btc": ("USD", "BTC")}


def _iso(v: datetime | None) -> str | None:
    return v.isoformat() if v is not None else None


def _plain(d: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in d.items():
        if isinstance(v, Enum):
            v = v.value
        elif isinstance(v, datetime):
            v = _iso(v)
        out[k] = v
    return out


@dataclass(frozen=True)
class User:
    id: int
    username: str
    api_key: str | None = None
    api_secret: str | None = None
    api_passphrase: str | None = None
    balance: int | None = None
    balance_usd: str | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_passphrase)

    def to_dict(self) -> dict[str, Any]:
        # Never expose credentials.
        return {
            "id": self.id,
            "username": self.username,
            "has_credentials": self.has_credentials,
            "balance": self.balance,
            "balance_usd": self.balance_usd,
        }


@dataclass(frozen=True)
class Trade:
    id: int
    user_id: int
    type: str
    side: str
    order_type: str
    status: TradeStatus
    venue_id: str | None = None
    entry_price: float | None = None
    exit_price: float | None = None
    limit_price: float | None = None
    margin: int | None = None
    leverage: float | None = None
    quantity: float | None = None
    take_profit: float | None = None
    stop_loss: float | None = None
    pnl: float | None = None
    pnl_usd: float | None = None
    fee: int | None = None
    liquidation_price: float | None = None
    instrument_name: str | None = None
    settlement: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class ScheduledTrade:
    id: int
    user_id: int
    trigger_type: str
    type: str
    side: str
    order_type: str
    status: ScheduledTradeStatus = ScheduledTradeStatus.PENDING
    scheduled_time: datetime | None = None
    target_price_low: float | None = None
    target_price_high: float | None = None
    base_price_snapshot: float | None = None
    price_percentage: float | None = None
    margin: int | None = None
    leverage: float | None = None
    quantity: float | None = None
    take_profit: float | None = None
    stop_loss: float | None = None
    limit_price: float | None = None
    instrument_name: str | None = None
    settlement: str | None = None
    executed_trade_id: int | None = None
    error_message: str | None = None
    name: str | None = None
    description: str | None = None
    last_checked_at: datetime | None = None
    executed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class ScheduledSwap:
    """
    A BTC <-> synthetic USD conversion to run on a schedule.

    `trigger_config` is the stored JSON document; `trigger` is its decoded variant
    (None when the stored document could not be decoded).
    """

    id: int
    user_id: int
    schedule_type: str
    swap_direction: str
    amount: float
    trigger_config: str
    trigger: TriggerConfig | None = field(default=None, compare=False)
    status: ScheduledSwapStatus = ScheduledSwapStatus.ACTIVE
    name: str | None = None
    description: str | None = None
    last_checked_at: datetime | None = None
    last_fired_slot: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_one_shot(self) -> bool:
        return self.schedule_type in ONE_SHOT_SCHEDULE_TYPES

    @property
    def assets(self) -> tuple[str, str]:
        return SWAP_DIRECTIONS[self.swap_direction]

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d.pop("trigger", None)
        return _plain(d)


@dataclass(frozen=True)
class Swap:
    id: int
    user_id: int
    from_asset: str
    to_asset: str
    from_amount: float
    to_amount: float
    status: str
    venue_id: str | None = None
    exchange_rate: float | None = None
    fee: float = 0.0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class SwapExecution:
    id: int
    scheduled_swap_id: int
    execution_time: datetime
    status: SwapExecutionStatus
    swap_id: int | None = None
    failure_reason: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


@dataclass(frozen=True)
class MarketData:
    symbol: str
    last_price: float | None
    mark_price: float | None = None
    index_price: float | None = None
    funding_rate: float | None = None
    next_funding_time: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return _plain(asdict(self))


# ---------------------------------------------------------------------------
# Venue-side records (what the venue client returns)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RemoteTrade:
    """A futures or options trade as reported by the venue."""

    venue_id: str
    type: str
    side: str
    order_type: str
    closed: bool = False
    running: bool = False
    open: bool = False
    canceled: bool = False
    entry_price: float | None = None
    exit_price: float | None = None
    margin: int | None = None
    leverage: float | None = None
    quantity: float | None = None
    take_profit: float | None = None
    stop_loss: float | None = None
    pnl: float | None = None
    pnl_usd: float | None = None
    fee: int | None = None
    liquidation_price: float | None = None
    instrument_name: str | None = None
    settlement: str | None = None


@dataclass(frozen=True)
class Ticker:
    last_price: float
    index_price: float | None = None
    ask_price: float | None = None
    bid_price: float | None = None
    carry_fee_rate: float | None = None
    carry_fee_timestamp: datetime | None = None


@dataclass(frozen=True)
class Balance:
    balance: int
    synthetic_usd_balance: float | None = None


@dataclass(frozen=True)
class SwapResult:
    in_asset: str
    out_asset: str
    in_amount: float
    out_amount: float
    venue_id: str | None = None

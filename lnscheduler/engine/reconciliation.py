"""
Reconciliation of local trades and balances against the venue.

The venue is the source of truth for positions. Remote trades are matched to local rows by
venue id; unknown ones are created, known ones are updated. A remote status the local
transition rule refuses (e.g. a locally closed trade reported as running) leaves the
local status alone but still refreshes prices and P&L.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from lnscheduler.domain.errors import ConcurrentUpdateError, InvalidStatusTransition, NotFoundError
from lnscheduler.domain.models import RemoteTrade, User
from lnscheduler.domain.status import map_remote_status, validate_trade_status_transition
from lnscheduler.ports.repository import RepositoryPort
from lnscheduler.ports.venue import VenuePort
from lnscheduler.scheduler.settings import RECONCILIATION_SCOPES, SchedulerSettings
from lnscheduler.venue.errors import VenueError
from lnscheduler.venue.lnmarkets import VenueFactory

logger = logging.getLogger(__name__)

_SCOPE_QUERIES: dict[str, tuple[str, ...]] = {
    "open": ("open",),
    "running": ("running",),
    "closed": ("closed",),
    "all": ("open", "running"),
}

_REFRESHED_FIELDS = (
    "entry_price",
    "exit_price",
    "margin",
    "leverage",
    "quantity",
    "take_profit",
    "stop_loss",
    "pnl",
    "pnl_usd",
    "fee",
    "liquidation_price",
)

# Written even when None: a target removed on the venue is cleared locally.
_TARGET_FIELDS = ("take_profit", "stop_loss")


@dataclass(frozen=True)
class SyncResult:
    created: int = 0
    updated: int = 0

    def __add__(self, other: "SyncResult") -> "SyncResult":
        return SyncResult(self.created + other.created, self.updated + other.updated)

    def to_dict(self) -> dict[str, int]:
        return {"created": self.created, "updated": self.updated}


def format_usd(balance_sats: int, price: float | None) -> str:
    if not price:
        return "0.00"
    return f"{balance_sats * 1e-8 * float(price):.2f}"


class ReconciliationSync:
    def __init__(self, repo: RepositoryPort, venue_factory: VenueFactory, settings: SchedulerSettings):
        self.repo = repo
        self.venue_factory = venue_factory
        self.settings = settings

    def _user_and_venue(self, user_id: int) -> tuple[User, VenuePort]:
        user = self.repo.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user, self.venue_factory(user)

    def sync_user(self, user_id: int, scope: str = "all") -> SyncResult:
        if scope not in RECONCILIATION_SCOPES:
            raise ValueError(f"Unknown sync scope {scope!r}; expected one of {RECONCILIATION_SCOPES}")
        user, venue = self._user_and_venue(user_id)

        result = SyncResult()
        for venue_scope in _SCOPE_QUERIES[scope]:
            for remote in venue.fetch_futures_positions(venue_scope):
                result += self._merge(user.id, remote)

        # An options outage must not block the futures sync.
        try:
            for remote in venue.fetch_options_positions():
                result += self._merge(user.id, remote)
        except VenueError as e:
            logger.warning(f"Options sync failed for user {user.id}: {e}")

        logger.info(f"Synced user {user.id} ({scope}): {result.created} created, {result.updated} updated")
        return result

    def _merge(self, user_id: int, remote: RemoteTrade) -> SyncResult:
        status = map_remote_status(remote)
        refreshed = {k: getattr(remote, k) for k in _REFRESHED_FIELDS if getattr(remote, k) is not None}

        existing = self.repo.get_trade_by_venue_id(user_id, remote.venue_id)
        if existing is None:
            fields: dict[str, Any] = {
                "user_id": user_id,
                "venue_id": remote.venue_id,
                "type": remote.type,
                "side": remote.side,
                "order_type": remote.order_type,
                "status": status,
                "instrument_name": remote.instrument_name,
                "settlement": remote.settlement,
                **refreshed,
            }
            self.repo.create_trade(**fields)
            return SyncResult(created=1)

        changes = dict(refreshed)
        changes.update({k: getattr(remote, k) for k in _TARGET_FIELDS})
        if validate_trade_status_transition(existing.status, status):
            changes["status"] = status
        else:
            logger.info(
                f"Trade {existing.id}: keeping local status '{existing.status.value}' "
                f"(venue reports '{status.value}')"
            )
        try:
            self.repo.update_trade(existing.id, **changes)
        except (ConcurrentUpdateError, InvalidStatusTransition) as e:
            logger.warning(f"Trade {existing.id} not updated this sync: {e}")
            return SyncResult()
        return SyncResult(updated=1)

    def sync_balance(self, user_id: int) -> User | None:
        _, venue = self._user_and_venue(user_id)
        balance = venue.fetch_balance()
        md = self.repo.get_market_data(self.settings.symbol)
        price = md.last_price if md is not None else None
        return self.repo.update_user_balance(user_id, balance.balance, format_usd(balance.balance, price))

"""
Status rules shared by every write path.

Remote trades carry four boolean flags (closed / running / open / canceled). They are
reduced to one `RemoteTradeState` by an ordered match, and that state maps 1:1 onto
the local `TradeStatus`. Both the scheduled-trade creation path and the reconciliation
sync go through `map_remote_status`, so they cannot diverge.
"""

from __future__ import annotations

from enum import Enum

from lnscheduler.domain.errors import InvalidStatusTransition
from lnscheduler.domain.models import (
    RemoteTrade,
    ScheduledSwapStatus,
    ScheduledTradeStatus,
    TradeStatus,
)


class RemoteTradeState(Enum):
    CLOSED = "closed"
    RUNNING = "running"
    OPEN = "open"
    CANCELED = "canceled"
    UNKNOWN = "unknown"


# Priority order: closed always wins over stale running/open flags.
_REMOTE_PRIORITY: tuple[tuple[str, RemoteTradeState], ...] = (
    ("closed", RemoteTradeState.CLOSED),
    ("running", RemoteTradeState.RUNNING),
    ("open", RemoteTradeState.OPEN),
    ("canceled", RemoteTradeState.CANCELED),
)

_REMOTE_TO_LOCAL: dict[RemoteTradeState, TradeStatus] = {
    RemoteTradeState.CLOSED: TradeStatus.CLOSED,
    RemoteTradeState.RUNNING: TradeStatus.RUNNING,
    RemoteTradeState.OPEN: TradeStatus.OPEN,
    RemoteTradeState.CANCELED: TradeStatus.CANCELLED,
    # Accepted by the venue but no flag set yet.
    RemoteTradeState.UNKNOWN: TradeStatus.OPEN,
}


def remote_state(remote: RemoteTrade) -> RemoteTradeState:
    for flag, state in _REMOTE_PRIORITY:
        if getattr(remote, flag, False):
            return state
    return RemoteTradeState.UNKNOWN


def map_remote_status(remote: RemoteTrade) -> TradeStatus:
    return _REMOTE_TO_LOCAL[remote_state(remote)]


# ---------------------------------------------------------------------------
# Local transition guards
# ---------------------------------------------------------------------------

_TRADE_TERMINAL = frozenset({TradeStatus.CLOSED, TradeStatus.CANCELLED})
_CANCELLABLE_FROM = frozenset({TradeStatus.PENDING, TradeStatus.OPEN})


def validate_trade_status_transition(current: TradeStatus | str | None, new: TradeStatus | str) -> bool:
    """
    True if a trade may move from `current` to `new`.

    A running position that is wound down is `closed`, never `cancelled`, and it never
    drops back to `open`.
    """
    new_s = TradeStatus(new)
    if current is None:
        return True
    cur_s = TradeStatus(current)
    if cur_s == new_s:
        return True
    if cur_s in _TRADE_TERMINAL:
        return False
    if new_s == TradeStatus.CANCELLED:
        return cur_s in _CANCELLABLE_FROM
    if new_s == TradeStatus.PENDING:
        return False
    if cur_s == TradeStatus.RUNNING and new_s == TradeStatus.OPEN:
        return False
    return True


def ensure_trade_transition(current: TradeStatus | str | None, new: TradeStatus | str) -> None:
    if not validate_trade_status_transition(current, new):
        raise InvalidStatusTransition(
            "Trade",
            TradeStatus(current).value if current is not None else None,
            TradeStatus(new).value,
        )


def ensure_scheduled_trade_transition(current: ScheduledTradeStatus | str, new: ScheduledTradeStatus | str) -> None:
    cur_s, new_s = ScheduledTradeStatus(current), ScheduledTradeStatus(new)
    if cur_s == new_s:
        return
    if cur_s != ScheduledTradeStatus.PENDING:
        raise InvalidStatusTransition("ScheduledTrade", cur_s.value, new_s.value)


_SWAP_TRANSITIONS: dict[ScheduledSwapStatus, frozenset[ScheduledSwapStatus]] = {
    ScheduledSwapStatus.ACTIVE: frozenset(
        {ScheduledSwapStatus.PAUSED, ScheduledSwapStatus.COMPLETED, ScheduledSwapStatus.CANCELLED}
    ),
    ScheduledSwapStatus.PAUSED: frozenset(
        {ScheduledSwapStatus.ACTIVE, ScheduledSwapStatus.CANCELLED}
    ),
    ScheduledSwapStatus.COMPLETED: frozenset(),
    ScheduledSwapStatus.CANCELLED: frozenset(),
}


def ensure_scheduled_swap_transition(current: ScheduledSwapStatus | str, new: ScheduledSwapStatus | str) -> None:
    cur_s, new_s = ScheduledSwapStatus(current), ScheduledSwapStatus(new)
    if cur_s == new_s:
        return
    if new_s not in _SWAP_TRANSITIONS[cur_s]:
        raise InvalidStatusTransition("ScheduledSwap", cur_s.value, new_s.value)

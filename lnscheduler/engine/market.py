from __future__ import annotations

import logging

from lnscheduler.domain.models import MarketData
from lnscheduler.ports.repository import RepositoryPort
from lnscheduler.utils.clock import utcnow
from lnscheduler.venue.errors import VenueError
from lnscheduler.venue.lnmarkets import VenueFactory

logger = logging.getLogger(__name__)


def current_price(repo: RepositoryPort, symbol: str = "BTC/USD") -> float | None:
    md = repo.get_market_data(symbol)
    if md is None or md.last_price is None:
        return None
    return float(md.last_price)


def refresh_market_data(repo: RepositoryPort, venue_factory: VenueFactory, symbol: str = "BTC/USD") -> MarketData | None:
    """
    Pull the futures ticker and upsert the MarketData snapshot.

    The ticker is public data, but the venue client is per-user, so any credentialed user
    will do. Returns None when no user could fetch it; the previous snapshot stays.
    """
    users = repo.list_users_with_credentials()
    if not users:
        logger.info("Market refresh skipped: no users with API credentials")
        return None

    last_error: Exception | None = None
    for user in users:
        try:
            ticker = venue_factory(user).fetch_ticker()
        except VenueError as e:
            last_error = e
            logger.warning(f"Ticker fetch failed via user {user.id}: {e}")
            continue
        data = MarketData(
            symbol=symbol,
            last_price=ticker.last_price,
            mark_price=ticker.last_price,
            index_price=ticker.index_price,
            funding_rate=ticker.carry_fee_rate,
            next_funding_time=ticker.carry_fee_timestamp,
            updated_at=utcnow(),
        )
        return repo.upsert_market_data(data)

    logger.warning(f"Market refresh failed for every user: {last_error}")
    return None

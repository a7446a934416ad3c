from __future__ import annotations

from typing import Any

from lnscheduler.db.rows import Dialect, execute, read_one, to_dt, to_float
from lnscheduler.domain.models import MarketData
from lnscheduler.utils.clock import utcnow


def _to_market_data(row: dict[str, Any]) -> MarketData:
    return MarketData(
        symbol=str(row["symbol"]),
        last_price=to_float(row.get("last_price")),
        mark_price=to_float(row.get("mark_price")),
        index_price=to_float(row.get("index_price")),
        funding_rate=to_float(row.get("funding_rate")),
        next_funding_time=to_dt(row.get("next_funding_time")),
        updated_at=to_dt(row.get("updated_at")),
    )


def get_market_data(db: Dialect, symbol: str) -> MarketData | None:
    row = read_one(db, "SELECT * FROM market_data WHERE symbol = %s", (symbol,))
    return _to_market_data(row) if row else None


def upsert_market_data(db: Dialect, data: MarketData) -> MarketData:
    execute(
        db,
        """
        INSERT INTO market_data (symbol, last_price, mark_price, index_price, funding_rate, next_funding_time, updated_at)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (symbol) DO UPDATE SET
            last_price = excluded.last_price,
            mark_price = excluded.mark_price,
            index_price = excluded.index_price,
            funding_rate = excluded.funding_rate,
            next_funding_time = excluded.next_funding_time,
            updated_at = excluded.updated_at
        """,
        (
            data.symbol,
            data.last_price,
            data.mark_price,
            data.index_price,
            data.funding_rate,
            data.next_funding_time,
            data.updated_at or utcnow(),
        ),
    )
    stored = get_market_data(db, data.symbol)
    return stored if stored is not None else data

from __future__ import annotations

import logging

from lnscheduler.db.postgres.pool import require_database_url

logger = logging.getLogger(__name__)


def init_db() -> None:
    """Initialise/upgrade the PostgreSQL schema (idempotent)."""
    import psycopg2  # type: ignore

    dsn = require_database_url()
    conn = psycopg2.connect(dsn)
    try:
        conn.autocommit = True
        cur = conn.cursor()

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id BIGSERIAL PRIMARY KEY,
                username TEXT NOT NULL UNIQUE,
                api_key TEXT,
                api_secret TEXT,
                api_passphrase TEXT,
                balance BIGINT,
                balance_usd TEXT,
                created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS trades (
                id BIGSERIAL PRIMARY KEY,
                user_id BIGINT NOT NULL REFERENCES users(id),
                venue_id TEXT,
                type TEXT NOT NULL,
                side TEXT NOT NULL,
                order_type TEXT NOT NULL,
                status TEXT NOT NULL,
                entry_price DOUBLE PRECISION,
                exit_price DOUBLE PRECISION,
                limit_price DOUBLE PRECISION,
                margin BIGINT,
                leverage DOUBLE PRECISION,
                quantity DOUBLE PRECISION,
                take_profit DOUBLE PRECISION,
                stop_loss DOUBLE PRECISION,
                pnl DOUBLE PRECISION,
                pnl_usd DOUBLE PRECISION,
                fee BIGINT,
                liquidation_price DOUBLE PRECISION,
                instrument_name TEXT,
                settlement TEXT,
                created_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_trades_user_status ON trades(user_id, status)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_trades_user_venue ON trades(user_id, venue_id)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS scheduled_trades (
                id BIGSERIAL PRIMARY KEY,
                user_id BIGINT NOT NULL REFERENCES users(id),
                trigger_type TEXT NOT NULL,
                type TEXT NOT NULL,
                side TEXT NOT NULL,
                order_type TEXT NOT NULL,
                status TEXT NOT NULL,
                scheduled_time TIMESTAMPTZ,
                target_price_low DOUBLE PRECISION,
                target_price_high DOUBLE PRECISION,
                base_price_snapshot DOUBLE PRECISION,
                price_percentage DOUBLE PRECISION,
                margin BIGINT,
                leverage DOUBLE PRECISION,
                quantity DOUBLE PRECISION,
                take_profit DOUBLE PRECISION,
                stop_loss DOUBLE PRECISION,
                limit_price DOUBLE PRECISION,
                instrument_name TEXT,
                settlement TEXT,
                executed_trade_id BIGINT REFERENCES trades(id),
                error_message TEXT,
                name TEXT,
                description TEXT,
                last_checked_at TIMESTAMPTZ,
                executed_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_scheduled_trades_status ON scheduled_trades(status)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS scheduled_swaps (
                id BIGSERIAL PRIMARY KEY,
                user_id BIGINT NOT NULL REFERENCES users(id),
                schedule_type TEXT NOT NULL,
                swap_direction TEXT NOT NULL,
                amount DOUBLE PRECISION NOT NULL,
                trigger_config TEXT NOT NULL,
                status TEXT NOT NULL,
                name TEXT,
                description TEXT,
                last_checked_at TIMESTAMPTZ,
                last_fired_slot TIMESTAMPTZ,
                created_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ
            )
            """
        )
        # Best-effort upgrade for databases created before slot marks existed.
        cur.execute("ALTER TABLE scheduled_swaps ADD COLUMN IF NOT EXISTS last_fired_slot TIMESTAMPTZ")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_scheduled_swaps_status ON scheduled_swaps(status)")

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS swaps (
                id BIGSERIAL PRIMARY KEY,
                user_id BIGINT NOT NULL REFERENCES users(id),
                venue_id TEXT,
                from_asset TEXT NOT NULL,
                to_asset TEXT NOT NULL,
                from_amount DOUBLE PRECISION NOT NULL,
                to_amount DOUBLE PRECISION NOT NULL,
                exchange_rate DOUBLE PRECISION,
                fee DOUBLE PRECISION DEFAULT 0,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ,
                updated_at TIMESTAMPTZ
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS swap_executions (
                id BIGSERIAL PRIMARY KEY,
                scheduled_swap_id BIGINT NOT NULL REFERENCES scheduled_swaps(id),
                execution_time TIMESTAMPTZ NOT NULL,
                status TEXT NOT NULL,
                swap_id BIGINT REFERENCES swaps(id),
                failure_reason TEXT,
                created_at TIMESTAMPTZ
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_swap_executions_parent ON swap_executions(scheduled_swap_id, status)"
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS market_data (
                symbol TEXT PRIMARY KEY,
                last_price DOUBLE PRECISION,
                mark_price DOUBLE PRECISION,
                index_price DOUBLE PRECISION,
                funding_rate DOUBLE PRECISION,
                next_funding_time TIMESTAMPTZ,
                updated_at TIMESTAMPTZ
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS event_stream (
                id BIGSERIAL PRIMARY KEY,
                timestamp TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                level TEXT,
                subject TEXT,
                step TEXT,
                message TEXT
            )
            """
        )
        logger.info("PostgreSQL schema ready")
    finally:
        conn.close()

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)


def init_db(path: str) -> None:
    """Initialise/upgrade the SQLite database schema (idempotent)."""
    conn = sqlite3.connect(path, timeout=30)
    try:
        cursor = conn.cursor()

        # Better concurrency between the scheduler threads (writes) and the API (reads).
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                api_key TEXT,
                api_secret TEXT,
                api_passphrase TEXT,
                balance INTEGER,
                balance_usd TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS trades (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                venue_id TEXT,
                type TEXT NOT NULL,
                side TEXT NOT NULL,
                order_type TEXT NOT NULL,
                status TEXT NOT NULL,
                entry_price REAL,
                exit_price REAL,
                limit_price REAL,
                margin INTEGER,
                leverage REAL,
                quantity REAL,
                take_profit REAL,
                stop_loss REAL,
                pnl REAL,
                pnl_usd REAL,
                fee INTEGER,
                liquidation_price REAL,
                instrument_name TEXT,
                settlement TEXT,
                created_at TEXT,
                updated_at TEXT
            )
            """
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_trades_user_status ON trades(user_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_trades_user_venue ON trades(user_id, venue_id)")

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS scheduled_trades (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                trigger_type TEXT NOT NULL,
                type TEXT NOT NULL,
                side TEXT NOT NULL,
                order_type TEXT NOT NULL,
                status TEXT NOT NULL,
                scheduled_time TEXT,
                target_price_low REAL,
                target_price_high REAL,
                base_price_snapshot REAL,
                price_percentage REAL,
                margin INTEGER,
                leverage REAL,
                quantity REAL,
                take_profit REAL,
                stop_loss REAL,
                limit_price REAL,
                instrument_name TEXT,
                settlement TEXT,
                executed_trade_id INTEGER REFERENCES trades(id),
                error_message TEXT,
                name TEXT,
                description TEXT,
                last_checked_at TEXT,
                executed_at TEXT,
                created_at TEXT,
                updated_at TEXT
            )
            """
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_scheduled_trades_status ON scheduled_trades(status)")

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS scheduled_swaps (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                schedule_type TEXT NOT NULL,
                swap_direction TEXT NOT NULL,
                amount REAL NOT NULL,
                trigger_config TEXT NOT NULL,
                status TEXT NOT NULL,
                name TEXT,
                description TEXT,
                last_checked_at TEXT,
                last_fired_slot TEXT,
                created_at TEXT,
                updated_at TEXT
            )
            """
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_scheduled_swaps_status ON scheduled_swaps(status)")

        # Best-effort upgrade for databases created before slot marks existed.
        cols = {row[1] for row in cursor.execute("PRAGMA table_info(scheduled_swaps)").fetchall()}
        if "last_fired_slot" not in cols:
            cursor.execute("ALTER TABLE scheduled_swaps ADD COLUMN last_fired_slot TEXT")

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS swaps (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                venue_id TEXT,
                from_asset TEXT NOT NULL,
                to_asset TEXT NOT NULL,
                from_amount REAL NOT NULL,
                to_amount REAL NOT NULL,
                exchange_rate REAL,
                fee REAL DEFAULT 0,
                status TEXT NOT NULL,
                created_at TEXT,
                updated_at TEXT
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS swap_executions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                scheduled_swap_id INTEGER NOT NULL REFERENCES scheduled_swaps(id),
                execution_time TEXT NOT NULL,
                status TEXT NOT NULL,
                swap_id INTEGER REFERENCES swaps(id),
                failure_reason TEXT,
                created_at TEXT
            )
            """
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_swap_executions_parent ON swap_executions(scheduled_swap_id, status)"
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS market_data (
                symbol TEXT PRIMARY KEY,
                last_price REAL,
                mark_price REAL,
                index_price REAL,
                funding_rate REAL,
                next_funding_time TEXT,
                updated_at TEXT
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS event_stream (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                level TEXT,
                subject TEXT,
                step TEXT,
                message TEXT
            )
            """
        )

        conn.commit()
        logger.info("SQLite schema ready at %s", path)
    finally:
        conn.close()

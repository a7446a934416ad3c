from __future__ import annotations

from typing import Any

from lnscheduler.db.rows import Dialect, execute, insert_row, read_one, read_records, to_int, to_str
from lnscheduler.domain.errors import NotFoundError
from lnscheduler.domain.models import User


def _to_user(row: dict[str, Any]) -> User:
    return User(
        id=int(row["id"]),
        username=str(row["username"]),
        api_key=to_str(row.get("api_key")),
        api_secret=to_str(row.get("api_secret")),
        api_passphrase=to_str(row.get("api_passphrase")),
        balance=to_int(row.get("balance")),
        balance_usd=to_str(row.get("balance_usd")),
    )


def create_user(
    db: Dialect,
    username: str,
    *,
    api_key: str | None = None,
    api_secret: str | None = None,
    api_passphrase: str | None = None,
) -> User:
    new_id = insert_row(
        db,
        "users",
        {
            "username": username,
            "api_key": api_key,
            "api_secret": api_secret,
            "api_passphrase": api_passphrase,
        },
    )
    user = get_user(db, new_id)
    if user is None:
        raise NotFoundError(f"User {new_id} not found after insert")
    return user


def get_user(db: Dialect, user_id: int) -> User | None:
    row = read_one(db, "SELECT * FROM users WHERE id = %s", (int(user_id),))
    return _to_user(row) if row else None


def list_users_with_credentials(db: Dialect) -> list[User]:
    rows = read_records(
        db,
        """
        SELECT * FROM users
        WHERE api_key IS NOT NULL AND api_secret IS NOT NULL AND api_passphrase IS NOT NULL
        ORDER BY id
        """,
    )
    # Empty strings count as "not configured".
    return [u for u in (_to_user(r) for r in rows) if u.has_credentials]


def update_user_balance(db: Dialect, user_id: int, balance: int, balance_usd: str) -> User | None:
    execute(
        db,
        "UPDATE users SET balance = %s, balance_usd = %s WHERE id = %s",
        (int(balance), balance_usd, int(user_id)),
    )
    return get_user(db, user_id)

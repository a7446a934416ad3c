from __future__ import annotations

from typing import Any

from lnscheduler.db.rows import Dialect, execute, read_records, safe_db_read, to_dt


def log_event(db: Dialect, level: str, message: str, subject: str | None = None, step: str | None = None) -> None:
    execute(
        db,
        "INSERT INTO event_stream (level, subject, step, message) VALUES (%s, %s, %s, %s)",
        (level, subject, step, message),
    )


@safe_db_read(default_factory=list)
def list_events(db: Dialect, limit: int = 200) -> list[dict[str, Any]]:
    rows = read_records(
        db,
        "SELECT * FROM event_stream ORDER BY timestamp DESC, id DESC LIMIT %s",
        (int(limit),),
    )
    for r in rows:
        ts = to_dt(r.get("timestamp"))
        r["timestamp"] = ts.isoformat() if ts else None
    return rows

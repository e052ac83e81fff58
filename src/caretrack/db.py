"""Database connection and schema management."""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from . import config
from .models import AttendanceEvent, EventKind

logger = logging.getLogger(__name__)

SCHEMA = """
-- Caregiver check-ins and check-outs (append-only)
CREATE TABLE IF NOT EXISTS attendance_events (
    id TEXT PRIMARY KEY,
    beneficiary_id TEXT NOT NULL,
    caregiver_name TEXT NOT NULL,
    action TEXT NOT NULL CHECK (action IN ('check-in', 'check-out')),
    timestamp TEXT NOT NULL,
    is_training INTEGER NOT NULL DEFAULT 0
);

-- Beneficiary billing settings
CREATE TABLE IF NOT EXISTS beneficiaries (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    timezone TEXT NOT NULL DEFAULT 'Europe/Paris',
    country TEXT NOT NULL DEFAULT 'FR',
    currency TEXT NOT NULL DEFAULT 'EUR',
    copay_percentage REAL NOT NULL DEFAULT 0,
    vat_rate REAL,
    regular_rate REAL,
    conventioned_rate REAL,
    monthly_allowance_hours REAL
);

-- Rate changes over time
CREATE TABLE IF NOT EXISTS rate_history (
    id INTEGER PRIMARY KEY,
    beneficiary_id TEXT NOT NULL,
    effective_from TEXT NOT NULL,
    billing_rate REAL NOT NULL,
    conventioned_rate REAL,
    monthly_allowance_hours REAL,
    UNIQUE(beneficiary_id, effective_from),
    FOREIGN KEY (beneficiary_id) REFERENCES beneficiaries(id)
);

CREATE INDEX IF NOT EXISTS idx_events_beneficiary ON attendance_events(beneficiary_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_rates_beneficiary ON rate_history(beneficiary_id, effective_from);
"""


def get_db_path() -> Path:
    """Get the database path, creating parent directories if needed."""
    db_path = config.get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path


@contextmanager
def get_connection(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """Get a database connection with row factory enabled."""
    path = db_path or get_db_path()
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Path | None = None) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        conn.executescript(SCHEMA)
        conn.commit()


def _utc_iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


def save_events(events: list[AttendanceEvent], db_path: Path | None = None) -> dict:
    """Save attendance events to the database.

    Returns dict with 'imported' and 'skipped' counts.
    """
    imported = 0
    skipped = 0

    with get_connection(db_path) as conn:
        for event in events:
            try:
                conn.execute(
                    """INSERT INTO attendance_events
                       (id, beneficiary_id, caregiver_name, action, timestamp, is_training)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        event.id,
                        event.beneficiary_id,
                        event.caregiver_name,
                        event.kind.value,
                        _utc_iso(event.timestamp),
                        int(event.is_training),
                    ),
                )
                imported += 1
            except sqlite3.IntegrityError:
                # Events are immutable, an existing id is a re-import
                skipped += 1

        conn.commit()

    logger.info("Saved %d events (%d already present)", imported, skipped)
    return {"imported": imported, "skipped": skipped}


def row_to_event(row: sqlite3.Row) -> AttendanceEvent:
    return AttendanceEvent(
        id=row["id"],
        beneficiary_id=row["beneficiary_id"],
        caregiver_name=row["caregiver_name"],
        kind=EventKind(row["action"]),
        timestamp=datetime.fromisoformat(row["timestamp"]),
        is_training=bool(row["is_training"]),
    )


def get_events(
    beneficiary_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    db_path: Path | None = None,
) -> list[AttendanceEvent]:
    """Get a beneficiary's events, optionally within [start, end)."""
    query = "SELECT * FROM attendance_events WHERE beneficiary_id = ?"
    params: list = [beneficiary_id]
    if start:
        query += " AND timestamp >= ?"
        params.append(_utc_iso(start))
    if end:
        query += " AND timestamp < ?"
        params.append(_utc_iso(end))
    query += " ORDER BY timestamp"

    with get_connection(db_path) as conn:
        rows = conn.execute(query, params).fetchall()
        return [row_to_event(row) for row in rows]


def get_stats(db_path: Path | None = None) -> dict:
    """Get database statistics."""
    with get_connection(db_path) as conn:
        stats = {}

        row = conn.execute(
            "SELECT COUNT(*) as count, MIN(timestamp) as earliest, MAX(timestamp) as latest FROM attendance_events"
        ).fetchone()
        stats["attendance_events"] = {
            "count": row["count"],
            "earliest": row["earliest"],
            "latest": row["latest"],
        }

        rows = conn.execute(
            "SELECT beneficiary_id, COUNT(*) as count FROM attendance_events GROUP BY beneficiary_id"
        ).fetchall()
        stats["events_by_beneficiary"] = {row["beneficiary_id"]: row["count"] for row in rows}

        row = conn.execute("SELECT COUNT(*) as count FROM beneficiaries").fetchone()
        stats["beneficiaries"] = {"count": row["count"]}

        row = conn.execute("SELECT COUNT(*) as count FROM rate_history").fetchone()
        stats["rate_history"] = {"count": row["count"]}

        return stats

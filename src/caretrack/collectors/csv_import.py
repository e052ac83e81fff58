"""Check-in CSV importer.

Imports the detailed check-in export of the attendance app.
CSV format: id, beneficiary_id, caregiver_name, action, timestamp, is_training
"""

import csv
import logging
from datetime import datetime
from pathlib import Path

from ..db import save_events
from ..models import AttendanceEvent, EventKind

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "t", "yes", "y"}


def parse_row(row: dict) -> AttendanceEvent:
    """Build an event from a CSV row. Raises ValueError on malformed rows."""
    try:
        event_id = row["id"].strip()
        beneficiary_id = row["beneficiary_id"].strip()
        caregiver_name = row["caregiver_name"].strip()
        action = row["action"].strip()
        timestamp = row["timestamp"].strip()
    except (KeyError, AttributeError):
        raise ValueError(f"Missing column in row {row}")

    if not event_id or not beneficiary_id or not caregiver_name:
        raise ValueError(f"Empty identifier in row {row}")

    return AttendanceEvent(
        id=event_id,
        beneficiary_id=beneficiary_id,
        caregiver_name=caregiver_name,
        kind=EventKind(action),
        # Postgres exports may use a trailing Z for UTC
        timestamp=datetime.fromisoformat(timestamp.replace("Z", "+00:00")),
        is_training=(row.get("is_training") or "").strip().lower() in TRUE_VALUES,
    )


def parse_csv(csv_path: Path) -> tuple[list[AttendanceEvent], int]:
    """Parse a check-in CSV export. Returns events and the count of invalid rows."""
    events = []
    invalid = 0
    with open(csv_path, newline="") as f:
        reader = csv.DictReader(f)
        for line_number, row in enumerate(reader, start=2):
            try:
                events.append(parse_row(row))
            except ValueError as e:
                logger.warning("Skipping line %d of %s: %s", line_number, csv_path, e)
                invalid += 1
    return events, invalid


def import_from_csv(csv_path: Path, db_path: Path | None = None) -> dict:
    """Import events from a check-in CSV file.

    Returns dict with 'imported', 'skipped' and 'invalid' counts.
    """
    events, invalid = parse_csv(csv_path)
    result = save_events(events, db_path)
    result["invalid"] = invalid
    return result

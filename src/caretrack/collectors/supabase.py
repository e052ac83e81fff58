"""Hosted store collector.

Fetches check-in/check-out rows from the attendance app's Supabase
project through its PostgREST API.
"""

import logging
import os
from datetime import datetime
from pathlib import Path

import httpx

from ..db import save_events
from ..models import AttendanceEvent
from .csv_import import parse_row

logger = logging.getLogger(__name__)

TABLE = "check_in_outs"
PAGE_SIZE = 1000


class SupabaseError(Exception):
    """Base exception for hosted store collector errors."""
    pass


def get_credentials() -> tuple[str, str]:
    """Get the project URL and API key from environment variables."""
    base_url = os.environ.get("SUPABASE_URL")
    api_key = os.environ.get("SUPABASE_KEY")
    if not base_url or not api_key:
        raise SupabaseError("SUPABASE_URL and SUPABASE_KEY environment variables must be set")
    return base_url, api_key


def fetch_check_ins(
    beneficiary_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    base_url: str | None = None,
    api_key: str | None = None,
) -> list[AttendanceEvent]:
    """Fetch a beneficiary's check-ins and check-outs.

    Args:
        beneficiary_id: The beneficiary whose rows to fetch
        start: Earliest timestamp (inclusive)
        end: Latest timestamp (exclusive)
        base_url: Project URL (defaults to SUPABASE_URL env var)
        api_key: Service or anon key (defaults to SUPABASE_KEY env var)

    Returns:
        List of AttendanceEvent objects; malformed rows are skipped
    """
    if base_url is None or api_key is None:
        env_url, env_key = get_credentials()
        base_url = base_url or env_url
        api_key = api_key or env_key

    url = f"{base_url.rstrip('/')}/rest/v1/{TABLE}"
    headers = {
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
    }

    filters = [("beneficiary_id", f"eq.{beneficiary_id}")]
    if start:
        filters.append(("timestamp", f"gte.{start.isoformat()}"))
    if end:
        filters.append(("timestamp", f"lt.{end.isoformat()}"))

    rows = []
    offset = 0
    with httpx.Client(timeout=30.0) as client:
        while True:
            params = filters + [
                ("select", "id,beneficiary_id,caregiver_name,action,timestamp,is_training"),
                ("order", "timestamp.asc"),
                ("limit", str(PAGE_SIZE)),
                ("offset", str(offset)),
            ]
            try:
                response = client.get(url, params=params, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise SupabaseError(f"HTTP error from Supabase: {e.response.status_code} - {e.response.text}")
            except httpx.HTTPError as e:
                raise SupabaseError(f"Network error connecting to Supabase: {e}")

            page = response.json()
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

    events = []
    for row in rows:
        row = {key: "" if value is None else str(value) for key, value in row.items()}
        try:
            events.append(parse_row(row))
        except ValueError as e:
            logger.warning("Skipping row from %s: %s", TABLE, e)

    logger.info("Fetched %d events for beneficiary %s", len(events), beneficiary_id)
    return events


def import_check_ins(
    beneficiary_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    db_path: Path | None = None,
) -> dict:
    """Fetch rows from Supabase and import them into the local database.

    Returns dict with 'imported' and 'skipped' counts.
    """
    events = fetch_check_ins(beneficiary_id, start, end)
    return save_events(events, db_path)

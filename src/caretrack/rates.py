"""Rate schedule lookup and beneficiary rate configuration."""

import logging
from datetime import date
from pathlib import Path

import yaml

from . import config
from .db import get_connection
from .holidays import timezone_for_country
from .models import BillingConfig, RateEntry, RateSchedule

logger = logging.getLogger(__name__)


def rate_for_date(schedule: RateSchedule, day: date) -> RateEntry:
    """Get the rate entry in effect on a local date.

    The latest entry whose effective_from is on or before the date wins.
    Dates before every entry use the schedule's fallback, or the earliest
    entry when there is none.
    """
    applicable = [e for e in schedule.entries if e.effective_from <= day]
    if applicable:
        return max(applicable, key=lambda e: e.effective_from)
    if schedule.fallback is not None:
        return schedule.fallback
    if not schedule.entries:
        raise ValueError("Rate schedule has no entries")
    return min(schedule.entries, key=lambda e: e.effective_from)


def _optional_float(value) -> float | None:
    return None if value is None else float(value)


def build_schedule(
    rates: list[dict],
    regular_rate: float | None = None,
    conventioned_rate: float | None = None,
    monthly_allowance_hours: float | None = None,
) -> RateSchedule:
    """Build a schedule from rate history rows and the flat beneficiary rate."""
    if not rates:
        if regular_rate is None:
            raise ValueError("A regular_rate or a rates list is required")
        return RateSchedule.flat(regular_rate, conventioned_rate, monthly_allowance_hours)

    entries = tuple(
        sorted(
            (
                RateEntry(
                    effective_from=_parse_date(r["effective_from"]),
                    billing_rate=float(r["billing_rate"]),
                    conventioned_rate=_optional_float(r.get("conventioned_rate")),
                    monthly_allowance_hours=_optional_float(r.get("monthly_allowance_hours")),
                )
                for r in rates
            ),
            key=lambda e: e.effective_from,
        )
    )
    fallback = None
    if regular_rate is not None:
        fallback = RateEntry(
            effective_from=date.min,
            billing_rate=regular_rate,
            conventioned_rate=conventioned_rate,
            monthly_allowance_hours=monthly_allowance_hours,
        )
    return RateSchedule(entries=entries, fallback=fallback)


def _parse_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def load_beneficiaries_from_yaml(config_path: Path | None = None) -> list[BillingConfig]:
    """Load beneficiary billing settings from YAML config file."""
    path = config_path or config.get_config_path()
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    default_vat = data.get("vat_rate", config.get_vat_rate())

    configs = []
    for b in data.get("beneficiaries", []):
        country = b.get("country", "FR")
        configs.append(
            BillingConfig(
                beneficiary_id=str(b["id"]),
                name=b.get("name", ""),
                timezone=b.get("timezone") or timezone_for_country(country),
                country=country,
                currency=b.get("currency", "EUR"),
                copay_percentage=float(b.get("copay_percentage", 0)),
                vat_rate=float(b.get("vat_rate", default_vat)),
                schedule=build_schedule(
                    b.get("rates", []),
                    regular_rate=_optional_float(b.get("regular_rate")),
                    conventioned_rate=_optional_float(b.get("conventioned_rate")),
                    monthly_allowance_hours=_optional_float(b.get("monthly_allowance_hours")),
                ),
            )
        )
    return configs


def save_beneficiaries_to_db(configs: list[BillingConfig], db_path: Path | None = None) -> int:
    """Save beneficiaries and their rate history. Returns number saved."""
    count = 0
    with get_connection(db_path) as conn:
        for cfg in configs:
            flat = cfg.schedule.fallback
            history = list(cfg.schedule.entries)
            if flat is None and len(history) == 1 and history[0].effective_from == date.min:
                flat, history = history[0], []

            conn.execute(
                """INSERT OR REPLACE INTO beneficiaries
                   (id, name, timezone, country, currency, copay_percentage, vat_rate,
                    regular_rate, conventioned_rate, monthly_allowance_hours)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    cfg.beneficiary_id,
                    cfg.name,
                    cfg.timezone,
                    cfg.country,
                    cfg.currency,
                    cfg.copay_percentage,
                    cfg.vat_rate,
                    flat.billing_rate if flat else None,
                    flat.conventioned_rate if flat else None,
                    flat.monthly_allowance_hours if flat else None,
                ),
            )

            # Replace the rate history for this beneficiary
            conn.execute("DELETE FROM rate_history WHERE beneficiary_id = ?", (cfg.beneficiary_id,))
            for entry in history:
                conn.execute(
                    """INSERT INTO rate_history
                       (beneficiary_id, effective_from, billing_rate, conventioned_rate,
                        monthly_allowance_hours)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        cfg.beneficiary_id,
                        entry.effective_from.isoformat(),
                        entry.billing_rate,
                        entry.conventioned_rate,
                        entry.monthly_allowance_hours,
                    ),
                )
            count += 1
        conn.commit()
    logger.info("Saved %d beneficiaries", count)
    return count


def load_billing_config(beneficiary_id: str, db_path: Path | None = None) -> BillingConfig:
    """Rebuild a beneficiary's billing settings from the database."""
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM beneficiaries WHERE id = ?", (beneficiary_id,)).fetchone()
        if not row:
            raise ValueError(f"Unknown beneficiary '{beneficiary_id}'")

        rates = conn.execute(
            """SELECT effective_from, billing_rate, conventioned_rate, monthly_allowance_hours
               FROM rate_history WHERE beneficiary_id = ? ORDER BY effective_from""",
            (beneficiary_id,),
        ).fetchall()

    return BillingConfig(
        beneficiary_id=row["id"],
        name=row["name"],
        timezone=row["timezone"],
        country=row["country"],
        currency=row["currency"],
        copay_percentage=row["copay_percentage"],
        vat_rate=row["vat_rate"] if row["vat_rate"] is not None else config.get_vat_rate(),
        schedule=build_schedule(
            [dict(r) for r in rates],
            regular_rate=row["regular_rate"],
            conventioned_rate=row["conventioned_rate"],
            monthly_allowance_hours=row["monthly_allowance_hours"],
        ),
    )

"""CSV exports of billing breakdowns and raw check-ins."""

import csv
import io
from zoneinfo import ZoneInfo

from ..models import AttendanceEvent, BillingConfig, Breakdown, MajorationClass, as_utc
from .summary import CLASS_LABELS

CLASSES = list(MajorationClass)


def _money(value: float) -> str:
    return f"{value:.2f}"


def financial_summary_csv(breakdown: Breakdown, config: BillingConfig) -> str:
    """Per-caregiver hours and amounts, followed by the period totals."""
    output = io.StringIO()
    writer = csv.writer(output)
    period = str(breakdown.period) if breakdown.period else ""
    name = config.name or config.beneficiary_id

    writer.writerow(
        ["Beneficiary", "Period", "Caregiver"]
        + [f"{CLASS_LABELS[m]} Hours" for m in CLASSES]
        + ["Total Hours"]
        + [f"{CLASS_LABELS[m]} Amount" for m in CLASSES]
        + ["Total"]
    )

    for c in breakdown.per_caregiver:
        writer.writerow(
            [name, period, c.name]
            + [f"{c.hours(m):.2f}" for m in CLASSES]
            + [f"{c.total_hours:.2f}"]
            + [_money(c.amounts[m]) for m in CLASSES]
            + [_money(c.total_amount)]
        )

    totals = breakdown.totals
    writer.writerow(
        ["", "", "TOTAL"]
        + [f"{totals.hours[m]:.2f}" for m in CLASSES]
        + [f"{totals.total_hours:.2f}"]
        + [_money(totals.amounts[m]) for m in CLASSES]
        + [_money(totals.pre_vat_total)]
    )

    writer.writerow([])
    writer.writerow(["", "Excl. VAT", "VAT", "Incl. VAT", "Currency"])
    writer.writerow(
        ["Total", _money(totals.pre_vat_total), _money(totals.vat_amount), _money(totals.total_with_vat), config.currency]
    )
    writer.writerow(
        ["Insurance", _money(totals.payer_amount), _money(totals.payer_vat), _money(totals.payer_with_vat), config.currency]
    )
    writer.writerow(
        [
            "Beneficiary",
            _money(totals.beneficiary_amount),
            _money(totals.beneficiary_vat),
            _money(totals.beneficiary_with_vat),
            config.currency,
        ]
    )

    return output.getvalue()


def detailed_check_ins_csv(events: list[AttendanceEvent], timezone: str) -> str:
    """One row per event, in the beneficiary's local time."""
    tz = ZoneInfo(timezone)
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["Date", "Time", "Caregiver", "Action", "Training", "Event ID"])

    for event in sorted(events, key=lambda e: as_utc(e.timestamp)):
        local = as_utc(event.timestamp).astimezone(tz)
        writer.writerow(
            [
                local.strftime("%Y-%m-%d"),
                local.strftime("%H:%M:%S"),
                event.caregiver_name,
                event.kind.value,
                "yes" if event.is_training else "no",
                event.id,
            ]
        )

    return output.getvalue()

"""Build display-ready summaries from a billing breakdown."""

from collections import defaultdict
from datetime import timedelta
from zoneinfo import ZoneInfo

from ..holidays import get_calendar
from ..models import BillingConfig, Breakdown, MajorationClass, as_utc
from ..rates import rate_for_date
from .formatting import decimal_to_hhmm

CLASS_LABELS = {
    MajorationClass.NORMAL: "Normal",
    MajorationClass.PREMIUM_25: "+25%",
    MajorationClass.PREMIUM_100: "+100%",
}


def build_report(breakdown: Breakdown, config: BillingConfig) -> dict:
    """Generate a report dict for one beneficiary and period.

    Values are rounded to cents here, after all summation is done.
    """
    totals = breakdown.totals
    copay = config.copay_percentage / 100

    per_hour = {}
    if breakdown.period is not None:
        rate = rate_for_date(config.schedule, breakdown.period.start)
        payer_per_hour = rate.reference_rate * (1 - copay)
        beneficiary_normal = rate.reference_rate * copay + max(0.0, rate.billing_rate - rate.reference_rate)
        per_hour = {
            "billing_rate": round(rate.billing_rate, 2),
            "conventioned_rate": round(rate.reference_rate, 2),
            "payer": round(payer_per_hour, 2),
            "beneficiary": {
                m.value: round(beneficiary_normal + rate.billing_rate * m.premium, 2) for m in MajorationClass
            },
        }

    report = {
        "beneficiary": {
            "id": config.beneficiary_id,
            "name": config.name,
            "currency": config.currency,
            "copay_percentage": config.copay_percentage,
        },
        "period": str(breakdown.period) if breakdown.period else None,
        "rates": per_hour,
        "caregivers": [
            {
                "name": c.name,
                "sessions": c.session_count,
                "hours": {m.value: round(c.hours(m), 2) for m in MajorationClass},
                "amounts": {m.value: round(c.amounts[m], 2) for m in MajorationClass},
                "total_hours": round(c.total_hours, 2),
                "total_amount": round(c.total_amount, 2),
            }
            for c in breakdown.per_caregiver
        ],
        "totals": {
            "hours": {m.value: round(totals.hours[m], 2) for m in MajorationClass},
            "amounts": {m.value: round(totals.amounts[m], 2) for m in MajorationClass},
            "total_hours": round(totals.total_hours, 2),
            "pre_vat": round(totals.pre_vat_total, 2),
            "vat_rate": totals.vat_rate,
            "vat": round(totals.vat_amount, 2),
            "total_with_vat": round(totals.total_with_vat, 2),
            "payer": {
                "pre_vat": round(totals.payer_amount, 2),
                "vat": round(totals.payer_vat, 2),
                "with_vat": round(totals.payer_with_vat, 2),
            },
            "beneficiary": {
                "pre_vat": round(totals.beneficiary_amount, 2),
                "vat": round(totals.beneficiary_vat, 2),
                "with_vat": round(totals.beneficiary_with_vat, 2),
                "copay": round(totals.copay_amount, 2),
                "rate_excess": round(totals.excess_amount, 2),
                "majoration": round(totals.premium_amount, 2),
            },
        },
        "training_hours": {name: round(hours, 2) for name, hours in breakdown.training_per_caregiver.items()},
        "discrepancies": [
            {
                "kind": d.kind.value,
                "caregiver": d.event.caregiver_name,
                "timestamp": as_utc(d.event.timestamp).isoformat(),
                "event_id": d.event.id,
                "message": d.message,
            }
            for d in breakdown.discrepancies
        ],
        "allowance": None,
    }

    if breakdown.allowance is not None:
        a = breakdown.allowance
        report["allowance"] = {
            "hours": a.allowance_hours,
            "hours_used": round(a.hours_used, 2),
            "hours_remaining": round(a.hours_remaining, 2),
            "value": round(a.allowance_value, 2),
            "value_consumed": round(a.value_consumed, 2),
            "value_remaining": round(a.value_remaining, 2),
            "usage_percent": round(a.usage_percent, 1),
        }

    return report


def daily_hours(breakdown: Breakdown, config: BillingConfig) -> dict[str, dict]:
    """Billable and training hours per local date, for a calendar view."""
    tz = ZoneInfo(config.timezone)
    calendar = get_calendar(config.country)
    days: dict = defaultdict(lambda: {"hours": timedelta(), "training": timedelta()})

    for priced in breakdown.sessions:
        days[priced.local_date]["hours"] += priced.split.total
    for session in breakdown.training_sessions:
        day = as_utc(session.start).astimezone(tz).date()
        days[day]["training"] += session.duration

    hour = timedelta(hours=1)
    return {
        day.isoformat(): {
            "hours": round(values["hours"] / hour, 2),
            "training_hours": round(values["training"] / hour, 2),
            "holiday": calendar.holiday_name(day),
        }
        for day, values in sorted(days.items())
    }


def format_report_text(report: dict) -> str:
    """Format a report as human-readable text."""
    currency = report["beneficiary"]["currency"]
    totals = report["totals"]
    name = report["beneficiary"]["name"] or report["beneficiary"]["id"]

    lines = [
        f"Billing Summary: {name} - {report['period'] or 'all events'}",
        "",
        "Caregivers:",
    ]

    if not report["caregivers"]:
        lines.append("  - No billable sessions")
    for c in report["caregivers"]:
        parts = [
            f"{CLASS_LABELS[m]} {c['hours'][m.value]}h" for m in MajorationClass if c["hours"][m.value]
        ]
        lines.append(
            f"  - {c['name']}: {c['total_hours']}h ({decimal_to_hhmm(c['total_hours'])}) "
            f"[{', '.join(parts)}] = {c['total_amount']:.2f} {currency}"
        )

    lines.extend([
        "",
        "Totals:",
        f"  - Hours: {totals['total_hours']}h ({decimal_to_hhmm(totals['total_hours'])})",
        f"  - Total excl. VAT: {totals['pre_vat']:.2f} {currency}",
        f"  - VAT ({totals['vat_rate'] * 100:g}%): {totals['vat']:.2f} {currency}",
        f"  - Total incl. VAT: {totals['total_with_vat']:.2f} {currency}",
        f"  - Insurance share: {totals['payer']['with_vat']:.2f} {currency} incl. VAT",
        f"  - Beneficiary share: {totals['beneficiary']['with_vat']:.2f} {currency} incl. VAT",
    ])

    if report["allowance"]:
        a = report["allowance"]
        lines.extend([
            "",
            "Allowance:",
            f"  - {a['hours_used']}h used of {a['hours']}h ({a['usage_percent']}%)",
            f"  - Remaining: {a['hours_remaining']}h / {a['value_remaining']:.2f} {currency}",
        ])

    if report["training_hours"]:
        lines.extend(["", "Training (not billed):"])
        for caregiver, hours in report["training_hours"].items():
            lines.append(f"  - {caregiver}: {hours}h")

    if report["discrepancies"]:
        lines.extend(["", f"Discrepancies ({len(report['discrepancies'])}):"])
        for d in report["discrepancies"]:
            lines.append(f"  - {d['timestamp']} {d['message']}")

    return "\n".join(lines)

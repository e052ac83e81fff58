"""Rate allocation: from attendance events to a priced monthly breakdown.

The same breakdown feeds every rendering surface (terminal report, JSON,
CSV exports), so amounts are summed unrounded here and only rounded for
display.
"""

import logging
import math
from datetime import date, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..holidays import HolidayCalendar, get_calendar
from ..models import (
    AllowanceUsage,
    AttendanceEvent,
    BillingConfig,
    BillingPeriod,
    Breakdown,
    CaregiverBreakdown,
    ConfigurationError,
    MajorationClass,
    PeriodTotals,
    PricedSession,
    as_utc,
)
from ..rates import rate_for_date
from .sessions import pair_events, split_session

logger = logging.getLogger(__name__)

HOUR = timedelta(hours=1)


def validate_config(config: BillingConfig | None) -> tuple[ZoneInfo, HolidayCalendar]:
    """Check a billing configuration and resolve its timezone and calendar.

    Raises ConfigurationError with a description of the first problem found.
    """
    if config is None:
        raise ConfigurationError("Billing configuration is required")

    entries = config.schedule.all_entries()
    if not entries:
        raise ConfigurationError(f"No rate configured for beneficiary '{config.beneficiary_id}'")
    for entry in entries:
        if entry.billing_rate is None or not math.isfinite(entry.billing_rate) or entry.billing_rate < 0:
            raise ConfigurationError(f"Invalid billing rate {entry.billing_rate} from {entry.effective_from}")
        if entry.conventioned_rate is not None and not (
            math.isfinite(entry.conventioned_rate) and entry.conventioned_rate >= 0
        ):
            raise ConfigurationError(
                f"Invalid conventioned rate {entry.conventioned_rate} from {entry.effective_from}"
            )
        if entry.monthly_allowance_hours is not None and not (
            math.isfinite(entry.monthly_allowance_hours) and entry.monthly_allowance_hours >= 0
        ):
            raise ConfigurationError(f"Invalid monthly allowance {entry.monthly_allowance_hours}")

    if not 0 <= config.copay_percentage <= 100:
        raise ConfigurationError(f"Co-payment percentage must be within 0-100, got {config.copay_percentage}")
    if not math.isfinite(config.vat_rate) or config.vat_rate < 0:
        raise ConfigurationError(f"VAT rate must not be negative, got {config.vat_rate}")

    try:
        tz = ZoneInfo(config.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"Unknown timezone '{config.timezone}'")

    try:
        calendar = get_calendar(config.country)
    except KeyError as e:
        raise ConfigurationError(str(e.args[0]))

    return tz, calendar


def price_session_payer(priced: PricedSession, copay_percentage: float) -> float:
    """Insurance share of a session: a constant amount per hour worked."""
    return priced.hours * priced.rate.reference_rate * (1 - copay_percentage / 100)


def compute_breakdown(
    events: list[AttendanceEvent],
    config: BillingConfig,
    period: BillingPeriod | None = None,
) -> Breakdown:
    """Compute hours, amounts and the payer split for a beneficiary.

    Algorithm:
    1. Pair events into sessions (unpaired events become discrepancies).
    2. Keep sessions starting, in local time, within the period.
    3. Training sessions only count towards training hours.
    4. Each billable session gets the rate in effect on its local start
       date and the majoration class of that date; ordinary days are
       split at 08:00 and 20:00.
    5. Sum per caregiver, then per period, then derive VAT and the
       payer/beneficiary split.
    """
    tz, calendar = validate_config(config)
    pairing = pair_events(events)

    def local_date(ts) -> date:
        return as_utc(ts).astimezone(tz).date()

    sessions: list[PricedSession] = []
    caregivers: dict[str, CaregiverBreakdown] = {}
    training: dict[str, float] = {}
    training_sessions = []

    for session in pairing.sessions:
        day = local_date(session.start)
        if period is not None and not period.contains(day):
            continue

        if session.is_training:
            training[session.caregiver_name] = training.get(session.caregiver_name, 0.0) + session.duration / HOUR
            training_sessions.append(session)
            continue

        day_class = calendar.day_class(day)
        priced = PricedSession(
            session=session,
            local_date=day,
            rate=rate_for_date(config.schedule, day),
            day_class=day_class,
            split=split_session(session, tz, day_class),
        )
        sessions.append(priced)

        caregiver = caregivers.setdefault(session.caregiver_name, CaregiverBreakdown(name=session.caregiver_name))
        for majoration, duration in priced.split.durations.items():
            caregiver.durations[majoration] += duration
            caregiver.amounts[majoration] += priced.amount(majoration)
        caregiver.session_count += 1

    discrepancies = [
        d for d in pairing.discrepancies if period is None or period.contains(local_date(d.event.timestamp))
    ]

    per_caregiver = sorted(caregivers.values(), key=lambda c: c.name)
    totals = _period_totals(per_caregiver, sessions, config)
    allowance = _allowance_usage(sessions, config, period, totals.total_hours)

    logger.debug(
        "Beneficiary %s: %d billable sessions, %d discrepancies, %.2f pre-VAT",
        config.beneficiary_id,
        len(sessions),
        len(discrepancies),
        totals.pre_vat_total,
    )

    return Breakdown(
        per_caregiver=per_caregiver,
        totals=totals,
        training_per_caregiver=dict(sorted(training.items())),
        discrepancies=discrepancies,
        sessions=sessions,
        training_sessions=training_sessions,
        allowance=allowance,
        period=period,
    )


def _period_totals(
    per_caregiver: list[CaregiverBreakdown],
    sessions: list[PricedSession],
    config: BillingConfig,
) -> PeriodTotals:
    durations = {m: sum((c.durations[m] for c in per_caregiver), timedelta()) for m in MajorationClass}
    amounts = {m: sum(c.amounts[m] for c in per_caregiver) for m in MajorationClass}

    copay = config.copay_percentage / 100
    payer = 0.0
    copay_amount = 0.0
    excess = 0.0
    premium = 0.0
    for priced in sessions:
        billing = priced.rate.billing_rate
        reference = priced.rate.reference_rate
        payer += price_session_payer(priced, config.copay_percentage)
        copay_amount += priced.hours * reference * copay
        excess += priced.hours * max(0.0, billing - reference)
        premium += sum(priced.split.hours(m) * billing * m.premium for m in MajorationClass)

    return PeriodTotals(
        hours={m: d / HOUR for m, d in durations.items()},
        amounts=amounts,
        pre_vat_total=sum(amounts.values()),
        vat_rate=config.vat_rate,
        payer_amount=payer,
        copay_amount=copay_amount,
        excess_amount=excess,
        premium_amount=premium,
    )


def _allowance_usage(
    sessions: list[PricedSession],
    config: BillingConfig,
    period: BillingPeriod | None,
    hours_used: float,
) -> AllowanceUsage | None:
    if period is not None:
        reference_day = period.start
    elif sessions:
        reference_day = min(p.local_date for p in sessions)
    else:
        return None

    entry = rate_for_date(config.schedule, reference_day)
    if entry.monthly_allowance_hours is None:
        return None

    return AllowanceUsage(
        allowance_hours=entry.monthly_allowance_hours,
        hours_used=hours_used,
        conventioned_rate=entry.reference_rate,
        value_consumed=sum(p.hours * p.rate.reference_rate for p in sessions),
    )

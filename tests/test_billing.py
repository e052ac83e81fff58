"""Tests for the rate allocation engine."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest
from caretrack.analysis.billing import compute_breakdown, validate_config
from caretrack.models import (
    AttendanceEvent,
    BillingConfig,
    BillingPeriod,
    ConfigurationError,
    DiscrepancyKind,
    EventKind,
    MajorationClass,
    RateEntry,
    RateSchedule,
)

PARIS = ZoneInfo("Europe/Paris")
MAY_2024 = BillingPeriod(2024, 5)


def visit(name, start, end, prefix=None, training=False):
    """Check-in/check-out pair for one visit."""
    prefix = prefix or f"{name}-{start.isoformat()}"
    return [
        AttendanceEvent(f"{prefix}-in", "b1", name, EventKind.CHECK_IN, start, training),
        AttendanceEvent(f"{prefix}-out", "b1", name, EventKind.CHECK_OUT, end, training),
    ]


def local(*args):
    return datetime(*args, tzinfo=PARIS)


def make_config(rate=10.0, conventioned=None, copay=0.0, allowance=None, **kwargs):
    return BillingConfig(
        beneficiary_id="b1",
        schedule=RateSchedule.flat(rate, conventioned, allowance),
        copay_percentage=copay,
        **kwargs,
    )


def test_may_first_double_rate():
    """A day shift on May 1st with co-payment."""
    events = visit("Alice", local(2024, 5, 1, 9), local(2024, 5, 1, 17))
    breakdown = compute_breakdown(events, make_config(15.0, 12.0, 20.0), MAY_2024)

    totals = breakdown.totals
    assert totals.hours[MajorationClass.PREMIUM_100] == pytest.approx(8.0)
    assert totals.hours[MajorationClass.NORMAL] == 0
    assert totals.pre_vat_total == pytest.approx(240.0)
    assert totals.payer_amount == pytest.approx(76.8)
    assert totals.beneficiary_amount == pytest.approx(163.2)


def test_ordinary_weekday_time_split():
    """06:00-22:00 on a Tuesday: 4h at +25%, 12h normal."""
    events = visit("Alice", local(2024, 5, 14, 6), local(2024, 5, 14, 22))
    breakdown = compute_breakdown(events, make_config(10.0), MAY_2024)

    totals = breakdown.totals
    assert totals.hours[MajorationClass.PREMIUM_25] == pytest.approx(4.0)
    assert totals.hours[MajorationClass.NORMAL] == pytest.approx(12.0)
    assert totals.pre_vat_total == pytest.approx(170.0)


def test_sunday_whole_session_premium():
    events = visit("Alice", local(2024, 5, 12, 6), local(2024, 5, 12, 22))
    breakdown = compute_breakdown(events, make_config(10.0), MAY_2024)
    assert breakdown.totals.hours[MajorationClass.PREMIUM_25] == pytest.approx(16.0)
    assert breakdown.totals.pre_vat_total == pytest.approx(200.0)


def test_vat():
    events = visit("Alice", local(2024, 5, 1, 9), local(2024, 5, 1, 17))
    totals = compute_breakdown(events, make_config(15.0, 12.0, 20.0), MAY_2024).totals
    assert totals.vat_rate == 0.055
    assert totals.vat_amount == pytest.approx(13.2)
    assert totals.total_with_vat == pytest.approx(253.2)
    assert totals.payer_with_vat + totals.beneficiary_with_vat == pytest.approx(totals.total_with_vat)


def test_vat_override():
    events = visit("Alice", local(2024, 5, 14, 9), local(2024, 5, 14, 11))
    totals = compute_breakdown(events, make_config(10.0, vat_rate=0.2), MAY_2024).totals
    assert totals.vat_amount == pytest.approx(4.0)


def test_beneficiary_components():
    """Co-payment, rate excess and majoration add up to the beneficiary share."""
    events = visit("Alice", local(2024, 5, 1, 9), local(2024, 5, 1, 17))
    totals = compute_breakdown(events, make_config(15.0, 12.0, 20.0), MAY_2024).totals
    assert totals.copay_amount == pytest.approx(19.2)
    assert totals.excess_amount == pytest.approx(24.0)
    assert totals.premium_amount == pytest.approx(120.0)
    components = totals.copay_amount + totals.excess_amount + totals.premium_amount
    assert components == pytest.approx(totals.beneficiary_amount)


def test_conventioned_above_billing():
    """The beneficiary share stays total minus payer share."""
    events = visit("Alice", local(2024, 5, 14, 9), local(2024, 5, 14, 11))
    totals = compute_breakdown(events, make_config(10.0, 12.0, 0.0), MAY_2024).totals
    assert totals.excess_amount == 0
    assert totals.payer_amount == pytest.approx(24.0)
    assert totals.beneficiary_amount == pytest.approx(-4.0)


def test_conventioned_defaults_to_billing_rate():
    events = visit("Alice", local(2024, 5, 14, 9), local(2024, 5, 14, 11))
    totals = compute_breakdown(events, make_config(10.0, None, 0.0), MAY_2024).totals
    assert totals.payer_amount == pytest.approx(20.0)
    assert totals.beneficiary_amount == pytest.approx(0.0)


def test_totals_match_caregivers():
    events = (
        visit("Alice", local(2024, 5, 1, 9), local(2024, 5, 1, 17))
        + visit("Bob", local(2024, 5, 14, 6), local(2024, 5, 14, 22))
        + visit("Alice", local(2024, 5, 20, 19), local(2024, 5, 21, 1))
    )
    breakdown = compute_breakdown(events, make_config(14.5, 13.0, 30.0), MAY_2024)

    assert [c.name for c in breakdown.per_caregiver] == ["Alice", "Bob"]
    assert breakdown.per_caregiver[0].session_count == 2
    caregiver_sum = sum(c.total_amount for c in breakdown.per_caregiver)
    assert caregiver_sum == pytest.approx(breakdown.totals.pre_vat_total, abs=1e-6)
    totals = breakdown.totals
    assert totals.payer_amount + totals.beneficiary_amount == pytest.approx(totals.pre_vat_total, abs=1e-6)


def test_training_not_billed():
    events = visit("Alice", local(2024, 5, 14, 9), local(2024, 5, 14, 12), training=True)
    events += visit("Bob", local(2024, 5, 14, 9), local(2024, 5, 14, 10))
    breakdown = compute_breakdown(events, make_config(10.0), MAY_2024)

    assert [c.name for c in breakdown.per_caregiver] == ["Bob"]
    assert breakdown.totals.pre_vat_total == pytest.approx(10.0)
    assert breakdown.training_per_caregiver == {"Alice": 3.0}
    assert len(breakdown.training_sessions) == 1


def test_unpaired_events_not_billed():
    events = [
        AttendanceEvent("1", "b1", "Alice", EventKind.CHECK_IN, local(2024, 5, 14, 9)),
        AttendanceEvent("2", "b1", "Bob", EventKind.CHECK_OUT, local(2024, 5, 14, 12)),
    ]
    breakdown = compute_breakdown(events, make_config(10.0), MAY_2024)

    assert breakdown.per_caregiver == []
    assert breakdown.totals.total_hours == 0
    assert breakdown.totals.pre_vat_total == 0
    kinds = {d.kind for d in breakdown.discrepancies}
    assert kinds == {DiscrepancyKind.OPEN_SESSION, DiscrepancyKind.ORPHAN_CHECKOUT}


def test_empty_events():
    breakdown = compute_breakdown([], make_config(10.0), MAY_2024)
    assert breakdown.totals.pre_vat_total == 0
    assert breakdown.discrepancies == []


def test_rate_change_mid_month():
    """Each session is priced at the rate in effect on its own date."""
    schedule = RateSchedule(
        entries=(
            RateEntry(date(2024, 5, 1), 10.0),
            RateEntry(date(2024, 5, 15), 20.0),
        )
    )
    config = BillingConfig(beneficiary_id="b1", schedule=schedule)
    events = visit("Alice", local(2024, 5, 14, 9), local(2024, 5, 14, 12))
    events += visit("Alice", local(2024, 5, 16, 9), local(2024, 5, 16, 12))
    breakdown = compute_breakdown(events, config, MAY_2024)

    assert [p.rate.billing_rate for p in breakdown.sessions] == [10.0, 20.0]
    assert breakdown.totals.pre_vat_total == pytest.approx(90.0)


def test_unsorted_matches_sorted():
    events = (
        visit("Alice", local(2024, 5, 1, 9), local(2024, 5, 1, 17))
        + visit("Bob", local(2024, 5, 14, 6), local(2024, 5, 14, 22))
    )
    config = make_config(15.0, 12.0, 20.0)
    ordered = compute_breakdown(events, config, MAY_2024)
    shuffled = compute_breakdown(list(reversed(events)), config, MAY_2024)
    assert shuffled.totals == ordered.totals


def test_repeated_runs_identical():
    events = visit("Alice", local(2024, 5, 1, 9), local(2024, 5, 1, 17))
    config = make_config(15.0, 12.0, 20.0)
    assert compute_breakdown(events, config, MAY_2024) == compute_breakdown(events, config, MAY_2024)


def test_period_filter_by_local_start_date():
    """A session starting on the last evening of April belongs to April."""
    events = visit("Alice", local(2024, 4, 30, 22), local(2024, 5, 1, 6))
    events += visit("Alice", local(2024, 5, 14, 9), local(2024, 5, 14, 10))
    breakdown = compute_breakdown(events, make_config(10.0), MAY_2024)

    assert len(breakdown.sessions) == 1
    assert breakdown.totals.total_hours == pytest.approx(1.0)

    april = compute_breakdown(events, make_config(10.0), BillingPeriod(2024, 4))
    assert april.totals.hours[MajorationClass.PREMIUM_25] == pytest.approx(8.0)


def test_local_date_uses_beneficiary_timezone():
    """23:30 UTC on April 30 is already May 1 in Paris."""
    start = datetime(2024, 4, 30, 23, 30, tzinfo=ZoneInfo("UTC"))
    end = datetime(2024, 5, 1, 1, 30, tzinfo=ZoneInfo("UTC"))
    breakdown = compute_breakdown(visit("Alice", start, end), make_config(10.0), MAY_2024)
    assert breakdown.totals.hours[MajorationClass.PREMIUM_100] == pytest.approx(2.0)


def test_allowance_usage():
    events = visit("Alice", local(2024, 5, 14, 9), local(2024, 5, 14, 12))
    config = make_config(10.0, 8.0, allowance=40)
    allowance = compute_breakdown(events, config, MAY_2024).allowance

    assert allowance.hours_used == pytest.approx(3.0)
    assert allowance.hours_remaining == pytest.approx(37.0)
    assert allowance.allowance_value == pytest.approx(320.0)
    assert allowance.value_consumed == pytest.approx(24.0)
    assert allowance.value_remaining == pytest.approx(296.0)
    assert allowance.usage_percent == pytest.approx(7.5)


def test_no_allowance_configured():
    events = visit("Alice", local(2024, 5, 14, 9), local(2024, 5, 14, 12))
    assert compute_breakdown(events, make_config(10.0), MAY_2024).allowance is None


@pytest.mark.parametrize(
    "config",
    [
        None,
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule()),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(-1.0)),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0, -2.0)),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(float("nan"))),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0, float("nan"))),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(float("inf"))),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0, None, float("nan"))),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0), vat_rate=float("nan")),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0), copay_percentage=120),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0), copay_percentage=-5),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0), vat_rate=-0.1),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0), timezone="Mars/Olympus"),
        BillingConfig(beneficiary_id="b1", schedule=RateSchedule.flat(10.0), country="XX"),
    ],
)
def test_invalid_config(config):
    with pytest.raises(ConfigurationError):
        validate_config(config)
    with pytest.raises(ConfigurationError):
        compute_breakdown([], config)


def test_configuration_error_is_value_error():
    assert issubclass(ConfigurationError, ValueError)

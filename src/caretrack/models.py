"""Data models for attendance events, rates and billing breakdowns."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum

DEFAULT_VAT_RATE = 0.055


def as_utc(ts: datetime) -> datetime:
    """Normalize a timestamp to aware UTC (naive values are taken as UTC)."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class ConfigurationError(ValueError):
    """Raised when a beneficiary's billing configuration is unusable."""
    pass


class EventKind(str, Enum):
    """Caregiver action, stored as in the check_in_outs table."""

    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"


class MajorationClass(str, Enum):
    """Rate category applied to worked minutes."""

    NORMAL = "normal"
    PREMIUM_25 = "premium25"
    PREMIUM_100 = "premium100"

    @property
    def multiplier(self) -> float:
        return _MULTIPLIERS[self]

    @property
    def premium(self) -> float:
        """Share of the billing rate added on top of a normal hour."""
        return _MULTIPLIERS[self] - 1.0


_MULTIPLIERS = {
    MajorationClass.NORMAL: 1.0,
    MajorationClass.PREMIUM_25: 1.25,
    MajorationClass.PREMIUM_100: 2.0,
}


class DiscrepancyKind(str, Enum):
    OPEN_SESSION = "open_session"
    ORPHAN_CHECKOUT = "orphan_checkout"
    DUPLICATE_ACTION = "duplicate_action"


@dataclass(frozen=True)
class AttendanceEvent:
    """A single check-in or check-out."""

    id: str
    beneficiary_id: str
    caregiver_name: str
    kind: EventKind
    timestamp: datetime  # timezone-aware, naive values are read as UTC
    is_training: bool = False


@dataclass(frozen=True)
class Session:
    """A check-in closed by a later check-out of the same caregiver."""

    caregiver_name: str
    check_in: AttendanceEvent
    check_out: AttendanceEvent

    @property
    def is_training(self) -> bool:
        return self.check_in.is_training

    @property
    def start(self) -> datetime:
        return self.check_in.timestamp

    @property
    def end(self) -> datetime:
        return self.check_out.timestamp

    @property
    def duration(self) -> timedelta:
        return as_utc(self.check_out.timestamp) - as_utc(self.check_in.timestamp)


@dataclass(frozen=True)
class Discrepancy:
    """An event left out of billing because it could not be paired."""

    kind: DiscrepancyKind
    event: AttendanceEvent
    message: str


@dataclass(frozen=True)
class RateEntry:
    """Rates in effect from a given date."""

    effective_from: date
    billing_rate: float
    conventioned_rate: float | None = None  # defaults to billing_rate
    monthly_allowance_hours: float | None = None

    @property
    def reference_rate(self) -> float:
        if self.conventioned_rate is None:
            return self.billing_rate
        return self.conventioned_rate


@dataclass(frozen=True)
class RateSchedule:
    """Step function of rate entries over time."""

    entries: tuple[RateEntry, ...] = ()
    fallback: RateEntry | None = None

    @classmethod
    def flat(
        cls,
        regular_rate: float,
        conventioned_rate: float | None = None,
        monthly_allowance_hours: float | None = None,
    ) -> "RateSchedule":
        """Single-rate schedule used when no rate history exists."""
        entry = RateEntry(
            effective_from=date.min,
            billing_rate=regular_rate,
            conventioned_rate=conventioned_rate,
            monthly_allowance_hours=monthly_allowance_hours,
        )
        return cls(entries=(entry,))

    def all_entries(self) -> list[RateEntry]:
        entries = list(self.entries)
        if self.fallback is not None:
            entries.append(self.fallback)
        return entries


@dataclass(frozen=True)
class BillingConfig:
    """Billing settings of one beneficiary."""

    beneficiary_id: str
    schedule: RateSchedule
    timezone: str = "Europe/Paris"
    copay_percentage: float = 0.0
    country: str = "FR"
    vat_rate: float = DEFAULT_VAT_RATE
    currency: str = "EUR"
    name: str = ""


@dataclass(frozen=True)
class BillingPeriod:
    """A calendar month, in the beneficiary's local dates."""

    year: int
    month: int

    @classmethod
    def parse(cls, value: str) -> "BillingPeriod":
        """Parse a YYYY-MM string."""
        try:
            year_str, month_str = value.split("-")
            period = cls(int(year_str), int(month_str))
        except ValueError:
            raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
        if not 1 <= period.month <= 12:
            raise ValueError(f"Invalid month '{value}', expected YYYY-MM")
        return period

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        """First day of the following month (exclusive)."""
        if self.month == 12:
            return date(self.year + 1, 1, 1)
        return date(self.year, self.month + 1, 1)

    def contains(self, day: date) -> bool:
        return self.start <= day < self.end

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class SessionSplit:
    """Durations of one session per majoration class."""

    durations: dict[MajorationClass, timedelta]

    @property
    def total(self) -> timedelta:
        return sum(self.durations.values(), timedelta())

    def hours(self, majoration: MajorationClass) -> float:
        return self.durations.get(majoration, timedelta()) / timedelta(hours=1)


@dataclass(frozen=True)
class PricedSession:
    """A billable session with the rate and classes applied to it."""

    session: Session
    local_date: date
    rate: RateEntry
    day_class: MajorationClass
    split: SessionSplit

    @property
    def hours(self) -> float:
        return self.split.total / timedelta(hours=1)

    def amount(self, majoration: MajorationClass) -> float:
        return self.split.hours(majoration) * self.rate.billing_rate * majoration.multiplier

    @property
    def total_amount(self) -> float:
        return sum(self.amount(m) for m in MajorationClass)


@dataclass
class CaregiverBreakdown:
    """Hours and billed amounts of one caregiver."""

    name: str
    durations: dict[MajorationClass, timedelta] = field(
        default_factory=lambda: {m: timedelta() for m in MajorationClass}
    )
    amounts: dict[MajorationClass, float] = field(
        default_factory=lambda: {m: 0.0 for m in MajorationClass}
    )
    session_count: int = 0

    def hours(self, majoration: MajorationClass) -> float:
        return self.durations[majoration] / timedelta(hours=1)

    @property
    def total_hours(self) -> float:
        return sum(self.durations.values(), timedelta()) / timedelta(hours=1)

    @property
    def total_amount(self) -> float:
        return sum(self.amounts.values())


@dataclass
class PeriodTotals:
    """Grand totals of a reporting period, before and after VAT."""

    hours: dict[MajorationClass, float]
    amounts: dict[MajorationClass, float]
    pre_vat_total: float
    vat_rate: float
    payer_amount: float
    copay_amount: float
    excess_amount: float
    premium_amount: float

    @property
    def total_hours(self) -> float:
        return sum(self.hours.values())

    @property
    def vat_amount(self) -> float:
        return self.pre_vat_total * self.vat_rate

    @property
    def total_with_vat(self) -> float:
        return self.pre_vat_total + self.vat_amount

    @property
    def beneficiary_amount(self) -> float:
        return self.pre_vat_total - self.payer_amount

    @property
    def payer_vat(self) -> float:
        return self.payer_amount * self.vat_rate

    @property
    def beneficiary_vat(self) -> float:
        return self.beneficiary_amount * self.vat_rate

    @property
    def payer_with_vat(self) -> float:
        return self.payer_amount + self.payer_vat

    @property
    def beneficiary_with_vat(self) -> float:
        return self.beneficiary_amount + self.beneficiary_vat


@dataclass(frozen=True)
class AllowanceUsage:
    """Consumption of a monthly hour allowance (APA plan)."""

    allowance_hours: float
    hours_used: float
    conventioned_rate: float
    value_consumed: float

    @property
    def hours_remaining(self) -> float:
        return self.allowance_hours - self.hours_used

    @property
    def allowance_value(self) -> float:
        return self.allowance_hours * self.conventioned_rate

    @property
    def value_remaining(self) -> float:
        return self.allowance_value - self.value_consumed

    @property
    def usage_percent(self) -> float:
        if self.allowance_hours <= 0:
            return 0.0
        return self.hours_used / self.allowance_hours * 100


@dataclass
class Breakdown:
    """Result of a billing computation for one beneficiary."""

    per_caregiver: list[CaregiverBreakdown]
    totals: PeriodTotals
    training_per_caregiver: dict[str, float]
    discrepancies: list[Discrepancy]
    sessions: list[PricedSession]
    training_sessions: list[Session] = field(default_factory=list)
    allowance: AllowanceUsage | None = None
    period: BillingPeriod | None = None

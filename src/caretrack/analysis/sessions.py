"""Caregiver session pairing from check-in/check-out events."""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from ..holidays import DAY_END, DAY_START
from ..models import (
    AttendanceEvent,
    Discrepancy,
    DiscrepancyKind,
    EventKind,
    MajorationClass,
    Session,
    SessionSplit,
    as_utc,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairingResult:
    """Sessions and unpaired events found in an event stream."""

    sessions: tuple[Session, ...]
    discrepancies: tuple[Discrepancy, ...]


def sort_events(events: list[AttendanceEvent]) -> list[AttendanceEvent]:
    """Events in ascending timestamp order (stable for equal timestamps)."""
    return sorted(events, key=lambda e: as_utc(e.timestamp))


def pair_events(events: list[AttendanceEvent]) -> PairingResult:
    """Pair check-ins with check-outs per caregiver in a single pass.

    Algorithm:
    1. Walk events in timestamp order.
    2. A check-in joins its caregiver's queue of open check-ins.
    3. A check-out closes the oldest open check-in of the same caregiver
       that is strictly earlier; with none it is an orphan.
    4. Check-ins still open at the end are open sessions.

    Two consecutive events of the same kind for one caregiver are also
    reported as a duplicate action. Nothing here raises for bad data.
    """
    open_check_ins: dict[str, deque[AttendanceEvent]] = {}
    last_kind: dict[str, EventKind] = {}
    sessions = []
    discrepancies = []

    for event in sort_events(events):
        name = event.caregiver_name

        if last_kind.get(name) == event.kind:
            discrepancies.append(
                Discrepancy(
                    kind=DiscrepancyKind.DUPLICATE_ACTION,
                    event=event,
                    message=f"{name}: two consecutive {event.kind.value} events",
                )
            )
        last_kind[name] = event.kind

        queue = open_check_ins.setdefault(name, deque())
        if event.kind is EventKind.CHECK_IN:
            queue.append(event)
            continue

        if queue and as_utc(queue[0].timestamp) < as_utc(event.timestamp):
            check_in = queue.popleft()
            sessions.append(Session(caregiver_name=name, check_in=check_in, check_out=event))
        else:
            discrepancies.append(
                Discrepancy(
                    kind=DiscrepancyKind.ORPHAN_CHECKOUT,
                    event=event,
                    message=f"{name}: check-out without a preceding check-in",
                )
            )

    for queue in open_check_ins.values():
        for check_in in queue:
            discrepancies.append(
                Discrepancy(
                    kind=DiscrepancyKind.OPEN_SESSION,
                    event=check_in,
                    message=f"{check_in.caregiver_name}: check-in without a check-out",
                )
            )

    discrepancies.sort(key=lambda d: as_utc(d.event.timestamp))
    if discrepancies:
        logger.debug("Pairing left %d discrepancies", len(discrepancies))

    return PairingResult(sessions=tuple(sessions), discrepancies=tuple(discrepancies))


def _overlap(start: datetime, end: datetime, lower: datetime | None, upper: datetime | None) -> timedelta:
    lo = start if lower is None else max(start, lower)
    hi = end if upper is None else min(end, upper)
    return max(hi - lo, timedelta())


def split_session(session: Session, tz: ZoneInfo, day_class: MajorationClass) -> SessionSplit:
    """Split a session's duration into majoration classes.

    Holiday and Sunday sessions are billed whole at the day's class.
    Ordinary-day sessions are cut at 08:00 and 20:00 local time on the
    start date: before and after are +25%, between is normal. Everything
    past 20:00 stays +25% even after midnight.
    """
    if day_class is not MajorationClass.NORMAL:
        return SessionSplit(durations={day_class: as_utc(session.end) - as_utc(session.start)})

    early, regular, late = time_of_day_split(session, tz)
    return SessionSplit(
        durations={
            MajorationClass.PREMIUM_25: early + late,
            MajorationClass.NORMAL: regular,
        }
    )


def time_of_day_split(session: Session, tz: ZoneInfo) -> tuple[timedelta, timedelta, timedelta]:
    """Before-08:00, 08:00-20:00 and after-20:00 parts of a session.

    Boundaries are taken on the local start date and compared in UTC, so
    the three parts always add up to the session duration.
    """
    start = as_utc(session.start)
    end = as_utc(session.end)
    local_day = start.astimezone(tz).date()
    morning = datetime.combine(local_day, DAY_START, tzinfo=tz).astimezone(timezone.utc)
    evening = datetime.combine(local_day, DAY_END, tzinfo=tz).astimezone(timezone.utc)
    return (
        _overlap(start, end, None, morning),
        _overlap(start, end, morning, evening),
        _overlap(start, end, evening, None),
    )

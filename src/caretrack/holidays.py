"""Holiday calendars and day-level majoration lookup."""

from datetime import date, datetime, time, timedelta
from typing import Protocol

from .models import MajorationClass

# Local time-of-day boundaries for ordinary weekdays
DAY_START = time(8, 0)
DAY_END = time(20, 0)

COUNTRY_TIMEZONES = {
    "FR": "Europe/Paris",
    "US": "America/New_York",
    "CA": "America/Toronto",
    "UK": "Europe/London",
    "DE": "Europe/Berlin",
    "ES": "Europe/Madrid",
    "IT": "Europe/Rome",
}
DEFAULT_TIMEZONE = "Europe/Paris"


class HolidayCalendar(Protocol):
    """Maps calendar dates to majoration classes for one country."""

    def day_class(self, day: date) -> MajorationClass: ...

    def holiday_name(self, day: date) -> str | None: ...


def easter_sunday(year: int) -> date:
    """Gregorian Easter date (anonymous Gregorian algorithm)."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


class FrenchHolidayCalendar:
    """French jours fériés as applied to home-care billing.

    May 1st and Christmas are paid double, the other fixed holidays and
    Sundays carry a 25% premium. Movable holidays (Easter Monday,
    Ascension, Whit Monday) are named for display but billed as ordinary
    days.
    """

    DOUBLE_RATE_DAYS = {
        (5, 1): "Fête du Travail",
        (12, 25): "Noël",
    }
    PREMIUM_DAYS = {
        (1, 1): "Jour de l'an",
        (5, 8): "Victoire 1945",
        (7, 14): "Fête Nationale",
        (8, 15): "Assomption",
        (11, 1): "Toussaint",
        (11, 11): "Armistice 1918",
    }

    def day_class(self, day: date) -> MajorationClass:
        key = (day.month, day.day)
        if key in self.DOUBLE_RATE_DAYS:
            return MajorationClass.PREMIUM_100
        if key in self.PREMIUM_DAYS:
            return MajorationClass.PREMIUM_25
        if day.weekday() == 6:
            return MajorationClass.PREMIUM_25
        return MajorationClass.NORMAL

    def movable_holidays(self, year: int) -> dict[date, str]:
        easter = easter_sunday(year)
        return {
            easter + timedelta(days=1): "Lundi de Pâques",
            easter + timedelta(days=39): "Jeudi de l'Ascension",
            easter + timedelta(days=50): "Lundi de Pentecôte",
        }

    def holiday_name(self, day: date) -> str | None:
        key = (day.month, day.day)
        name = self.DOUBLE_RATE_DAYS.get(key) or self.PREMIUM_DAYS.get(key)
        if name:
            return name
        name = self.movable_holidays(day.year).get(day)
        if name:
            return name
        if day.weekday() == 6:
            return "Dimanche"
        return None


_CALENDARS: dict[str, HolidayCalendar] = {"FR": FrenchHolidayCalendar()}


def register_calendar(country: str, calendar: HolidayCalendar) -> None:
    """Make a holiday calendar available for a country code."""
    _CALENDARS[country.upper()] = calendar


def get_calendar(country: str = "FR") -> HolidayCalendar:
    """Return the holiday calendar for a country code.

    Raises KeyError for countries without a registered calendar.
    """
    try:
        return _CALENDARS[country.upper()]
    except KeyError:
        raise KeyError(f"No holiday calendar registered for country '{country}'")


def _to_date(value: date | datetime | str) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def majoration_for(value: date | datetime | str, country: str = "FR") -> MajorationClass:
    """Day-level majoration class for a date.

    Accepts a date, a datetime (its own date is used, so convert to local
    time first) or a YYYY-MM-DD string. Malformed strings are treated as
    ordinary days.
    """
    day = _to_date(value)
    if day is None:
        return MajorationClass.NORMAL
    return get_calendar(country).day_class(day)


def is_public_holiday(value: date | datetime | str, country: str = "FR") -> bool:
    return majoration_for(value, country) is not MajorationClass.NORMAL


def timezone_for_country(country: str | None) -> str:
    """IANA timezone used by default for a beneficiary's country."""
    return COUNTRY_TIMEZONES.get((country or "FR").upper(), DEFAULT_TIMEZONE)

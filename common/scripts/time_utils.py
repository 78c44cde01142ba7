# common/scripts/time_utils.py
from datetime import date, datetime, time, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def parse_hhmm(value: str) -> time:
    """
    Parse a 24h "HH:MM" wall-clock string.

    Raises:
        ValueError: If the string is not a valid time of day
    """
    hours, sep, minutes = value.partition(":")
    if not sep or len(hours) != 2 or len(minutes) != 2:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    return time(int(hours), int(minutes))


def combine_utc(day: date, hhmm: str) -> datetime:
    """Start instant of `day` at `hhmm`, in UTC."""
    return datetime.combine(day, parse_hhmm(hhmm), tzinfo=timezone.utc)


def age_on(date_of_birth: date, on: date) -> int:
    """Whole years between `date_of_birth` and `on`."""
    had_birthday = (on.month, on.day) >= (date_of_birth.month, date_of_birth.day)
    return on.year - date_of_birth.year - (0 if had_birthday else 1)


__all__ = ["Clock", "utc_now", "parse_hhmm", "combine_utc", "age_on"]

# common/scripts/get_date_range.py
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def get_week_date_range(target_date: date) -> tuple[date, date]:
    """
    Monday and Sunday of the ISO week containing `target_date`.

    Example:
        >>> get_week_date_range(date(2026, 1, 7))  # Wednesday
        (date(2026, 1, 5), date(2026, 1, 11))
    """
    week_start = target_date - timedelta(days=target_date.weekday())
    return week_start, week_start + timedelta(days=6)


def utc_instant_range(
    date_from: Optional[date], date_to: Optional[date]
) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Half-open UTC bounds `[from 00:00, day after to 00:00)` for an inclusive
    calendar-day filter. Either side may be open.
    """
    lower = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
    upper = (
        datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        if date_to
        else None
    )
    return lower, upper


__all__ = ["get_week_date_range", "utc_instant_range"]

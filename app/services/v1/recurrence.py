# app/services/v1/recurrence.py
"""
Recurrence rule expansion.

Pure functions: no session, no clock. Expansion walks forward one day at a
time from the start date, so the output is strictly increasing and always
finite (bounded by both a last day and a count).
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from app.db.models import DayOfWeek, RecurrencePattern, RecurringSeries
from common.api_error import ValidationError


def nth_weekday_of_month(year: int, month: int, weekday: int, n: int) -> Optional[date]:
    """
    The n-th `weekday` (Monday == 0) of a month; n == -1 means the last one.
    Returns None when the month has no such day (e.g. a 5th Monday).
    """
    days_in_month = calendar.monthrange(year, month)[1]
    matching = [
        day
        for day in range(1, days_in_month + 1)
        if date(year, month, day).weekday() == weekday
    ]
    if n == -1:
        return date(year, month, matching[-1])
    if 1 <= n <= len(matching):
        return date(year, month, matching[n - 1])
    return None


@dataclass(frozen=True)
class RecurrenceRule:
    pattern: RecurrencePattern
    start_date: date
    interval: int = 1
    days_of_week: tuple[DayOfWeek, ...] = ()
    preferred_day_of_week: Optional[DayOfWeek] = None
    day_of_month: Optional[int] = None
    week_of_month: Optional[int] = None
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = None

    @classmethod
    def from_series(cls, series: RecurringSeries) -> "RecurrenceRule":
        return cls(
            pattern=series.pattern,
            start_date=series.start_date,
            interval=series.interval or 1,
            days_of_week=tuple(series.weekdays),
            preferred_day_of_week=series.preferred_day_of_week,
            day_of_month=series.day_of_month,
            week_of_month=series.week_of_month,
            end_date=series.end_date,
            max_occurrences=series.max_occurrences,
        )

    def validate(self, max_occurrences_cap: int) -> None:
        """
        Raises:
            ValidationError: If the rule is incomplete or unbounded
        """
        if self.end_date is None and self.max_occurrences is None:
            raise ValidationError("Either end_date or max_occurrences is required")
        if self.end_date is not None and self.end_date <= self.start_date:
            raise ValidationError("end_date must be after start_date")
        if self.max_occurrences is not None and not (
            1 <= self.max_occurrences <= max_occurrences_cap
        ):
            raise ValidationError(
                f"max_occurrences must be between 1 and {max_occurrences_cap}"
            )
        if not 1 <= self.interval <= 12:
            raise ValidationError("interval must be between 1 and 12")

        if self.pattern in (RecurrencePattern.WEEKLY, RecurrencePattern.CUSTOM):
            if not self.days_of_week:
                raise ValidationError(
                    f"days_of_week is required for {self.pattern.value} series"
                )
        elif self.pattern == RecurrencePattern.BIWEEKLY:
            if self.preferred_day_of_week is None:
                raise ValidationError(
                    "preferred_day_of_week is required for BIWEEKLY series"
                )
        elif self.pattern == RecurrencePattern.MONTHLY:
            by_day = self.day_of_month is not None
            by_week = (
                self.week_of_month is not None
                and self.preferred_day_of_week is not None
            )
            if not (by_day or by_week):
                raise ValidationError(
                    "MONTHLY series need day_of_month, or week_of_month "
                    "with preferred_day_of_week"
                )
            if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
                raise ValidationError("day_of_month must be between 1 and 31")
            if self.week_of_month is not None and self.week_of_month not in (-1, 1, 2, 3, 4):
                raise ValidationError("week_of_month must be 1-4, or -1 for the last week")

    def matches(self, day: date) -> bool:
        offset_days = (day - self.start_date).days
        weeks_since_start = offset_days // 7

        if self.pattern == RecurrencePattern.DAILY:
            return offset_days % self.interval == 0

        if self.pattern == RecurrencePattern.WEEKLY:
            return DayOfWeek.from_date(day) in self.days_of_week

        if self.pattern == RecurrencePattern.BIWEEKLY:
            return (
                DayOfWeek.from_date(day) == self.preferred_day_of_week
                and weeks_since_start % 2 == 0
            )

        if self.pattern == RecurrencePattern.CUSTOM:
            return (
                DayOfWeek.from_date(day) in self.days_of_week
                and weeks_since_start % self.interval == 0
            )

        if self.pattern == RecurrencePattern.MONTHLY:
            months_since_start = (day.year - self.start_date.year) * 12 + (
                day.month - self.start_date.month
            )
            if months_since_start % self.interval != 0:
                return False
            if self.day_of_month is not None:
                return day.day == self.day_of_month
            if self.preferred_day_of_week is None or self.week_of_month is None:
                return False
            target = nth_weekday_of_month(
                day.year,
                day.month,
                self.preferred_day_of_week.weekday,
                self.week_of_month,
            )
            return target == day

        return False


def generate_occurrence_dates(
    rule: RecurrenceRule,
    *,
    max_occurrences_cap: int,
    max_span_days: int,
) -> list[date]:
    """
    Expand `rule` into its occurrence dates.

    Bounded by the rule's end date (never beyond `max_span_days` from the
    start) and by min(rule.max_occurrences, max_occurrences_cap).
    """
    limit = min(rule.max_occurrences or max_occurrences_cap, max_occurrences_cap)
    span_end = rule.start_date + timedelta(days=max_span_days)
    last_day = min(rule.end_date, span_end) if rule.end_date else span_end

    dates: list[date] = []
    current = rule.start_date
    while current <= last_day and len(dates) < limit:
        if rule.matches(current):
            dates.append(current)
        current += timedelta(days=1)
    return dates


__all__ = [
    "RecurrenceRule",
    "generate_occurrence_dates",
    "nth_weekday_of_month",
]

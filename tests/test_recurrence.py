from datetime import date

import pytest

from app.db.models import DayOfWeek, RecurrencePattern
from app.services.v1 import RecurrenceRule, generate_occurrence_dates, nth_weekday_of_month
from common.api_error import ValidationError

CAP = 52
SPAN = 730


def expand(rule: RecurrenceRule) -> list[date]:
    return generate_occurrence_dates(rule, max_occurrences_cap=CAP, max_span_days=SPAN)


def test_weekly_mondays_yields_requested_count():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.WEEKLY,
        start_date=date(2026, 1, 5),
        days_of_week=(DayOfWeek.MONDAY,),
        max_occurrences=10,
    )

    dates = expand(rule)

    assert len(dates) == 10
    assert dates[0] == date(2026, 1, 5)
    assert dates[-1] == date(2026, 3, 9)
    assert all(d.weekday() == 0 for d in dates)


def test_weekly_multiple_days_within_week():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.WEEKLY,
        start_date=date(2026, 1, 5),
        days_of_week=(DayOfWeek.MONDAY, DayOfWeek.THURSDAY),
        max_occurrences=4,
    )

    assert expand(rule) == [
        date(2026, 1, 5),
        date(2026, 1, 8),
        date(2026, 1, 12),
        date(2026, 1, 15),
    ]


def test_daily_with_interval_respects_end_date():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.DAILY,
        start_date=date(2026, 1, 1),
        interval=3,
        end_date=date(2026, 1, 10),
    )

    assert expand(rule) == [
        date(2026, 1, 1),
        date(2026, 1, 4),
        date(2026, 1, 7),
        date(2026, 1, 10),
    ]


def test_biweekly_skips_alternate_weeks():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.BIWEEKLY,
        start_date=date(2026, 1, 5),
        preferred_day_of_week=DayOfWeek.WEDNESDAY,
        max_occurrences=3,
    )

    assert expand(rule) == [date(2026, 1, 7), date(2026, 1, 21), date(2026, 2, 4)]


def test_monthly_day_31_skips_short_months():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.MONTHLY,
        start_date=date(2026, 1, 1),
        day_of_month=31,
        max_occurrences=4,
    )

    assert expand(rule) == [
        date(2026, 1, 31),
        date(2026, 3, 31),
        date(2026, 5, 31),
        date(2026, 7, 31),
    ]


def test_monthly_last_friday():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.MONTHLY,
        start_date=date(2026, 1, 1),
        week_of_month=-1,
        preferred_day_of_week=DayOfWeek.FRIDAY,
        max_occurrences=3,
    )

    assert expand(rule) == [date(2026, 1, 30), date(2026, 2, 27), date(2026, 3, 27)]


def test_custom_every_second_week_on_tuesdays():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.CUSTOM,
        start_date=date(2026, 1, 5),
        interval=2,
        days_of_week=(DayOfWeek.TUESDAY,),
        max_occurrences=3,
    )

    assert expand(rule) == [date(2026, 1, 6), date(2026, 1, 20), date(2026, 2, 3)]


def test_count_never_exceeds_cap():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.DAILY,
        start_date=date(2026, 1, 1),
        end_date=date(2027, 12, 31),
    )

    dates = expand(rule)

    assert len(dates) == CAP
    assert dates == sorted(set(dates))


def test_span_bounds_open_ended_counts():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.MONTHLY,
        start_date=date(2026, 1, 1),
        day_of_month=15,
        max_occurrences=CAP,
    )

    dates = generate_occurrence_dates(rule, max_occurrences_cap=CAP, max_span_days=90)

    assert dates == [date(2026, 1, 15), date(2026, 2, 15), date(2026, 3, 15)]


@pytest.mark.parametrize(
    "year, month, weekday, n, expected",
    [
        (2026, 3, 0, 1, date(2026, 3, 2)),
        (2026, 3, 0, 5, date(2026, 3, 30)),
        (2026, 2, 0, 5, None),
        (2026, 2, 4, -1, date(2026, 2, 27)),
    ],
)
def test_nth_weekday_of_month(year, month, weekday, n, expected):
    assert nth_weekday_of_month(year, month, weekday, n) == expected


@pytest.mark.parametrize(
    "kwargs",
    [
        # unbounded
        {"pattern": RecurrencePattern.DAILY},
        {"pattern": RecurrencePattern.DAILY, "end_date": date(2025, 12, 1)},
        {"pattern": RecurrencePattern.DAILY, "max_occurrences": CAP + 1},
        {"pattern": RecurrencePattern.DAILY, "max_occurrences": 5, "interval": 0},
        {"pattern": RecurrencePattern.WEEKLY, "max_occurrences": 5},
        {"pattern": RecurrencePattern.BIWEEKLY, "max_occurrences": 5},
        {"pattern": RecurrencePattern.MONTHLY, "max_occurrences": 5},
        {"pattern": RecurrencePattern.MONTHLY, "max_occurrences": 5, "day_of_month": 32},
        {
            "pattern": RecurrencePattern.MONTHLY,
            "max_occurrences": 5,
            "week_of_month": 5,
            "preferred_day_of_week": DayOfWeek.MONDAY,
        },
    ],
)
def test_validate_rejects_incomplete_rules(kwargs):
    rule = RecurrenceRule(start_date=date(2026, 1, 1), **kwargs)

    with pytest.raises(ValidationError):
        rule.validate(CAP)


def test_validate_accepts_complete_rule():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.WEEKLY,
        start_date=date(2026, 1, 5),
        days_of_week=(DayOfWeek.MONDAY,),
        end_date=date(2026, 6, 1),
    )

    rule.validate(CAP)


def test_daily_defaults_to_every_day():
    rule = RecurrenceRule(
        pattern=RecurrencePattern.DAILY,
        start_date=date(2026, 1, 30),
        max_occurrences=4,
    )

    assert expand(rule) == [
        date(2026, 1, 30),
        date(2026, 1, 31),
        date(2026, 2, 1),
        date(2026, 2, 2),
    ]

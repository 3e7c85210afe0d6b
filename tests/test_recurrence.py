from datetime import date, datetime, timedelta

import pytest

from carecircle.exceptions import ValidationError
from carecircle.recurrence import (
    RepeatKind,
    RepeatRule,
    Weekday,
    from_epoch_ms,
    js_weekday,
    next_occurrence,
    parse_time_hhmm,
    to_epoch_ms,
)

TUESDAY_MORNING = datetime(2026, 10, 20, 9, 0)


def test_weekday_numbering_starts_on_sunday() -> None:
    assert js_weekday(date(2026, 10, 18)) == Weekday.SUNDAY
    assert js_weekday(TUESDAY_MORNING.date()) == Weekday.TUESDAY
    assert js_weekday(date(2026, 10, 24)) == Weekday.SATURDAY
    assert Weekday.WEDNESDAY.short_label == "Wed"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("07:30", (7, 30)),
        ("7:05", (7, 5)),
        ("29:75", (23, 59)),
        ("", (16, 0)),
        (None, (16, 0)),
        ("noon", (16, 0)),
        ("7:5", (16, 0)),
    ],
)
def test_parse_time_clamps_and_falls_back(raw, expected) -> None:
    assert parse_time_hhmm(raw) == expected


def test_daily_later_today_and_tomorrow() -> None:
    later = next_occurrence(RepeatKind.DAILY, "17:00", now=TUESDAY_MORNING)
    assert later == datetime(2026, 10, 20, 17, 0)

    earlier = next_occurrence("daily", "08:00", now=TUESDAY_MORNING)
    assert earlier == datetime(2026, 10, 21, 8, 0)

    exactly_now = next_occurrence("daily", "09:00", now=TUESDAY_MORNING)
    assert exactly_now == datetime(2026, 10, 21, 9, 0)


@pytest.mark.parametrize("hhmm", ["00:00", "08:59", "09:00", "09:01", "23:59", None])
def test_daily_is_within_a_day(hhmm) -> None:
    result = next_occurrence("daily", hhmm, now=TUESDAY_MORNING)
    assert result > TUESDAY_MORNING
    assert result - TUESDAY_MORNING <= timedelta(hours=24)


def test_weekly_picks_next_listed_day() -> None:
    days = [Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY]
    result = next_occurrence("weekly", "17:00", days, now=TUESDAY_MORNING)
    assert result == datetime(2026, 10, 21, 17, 0)
    assert js_weekday(result.date()) == Weekday.WEDNESDAY


def test_weekly_same_day_only_when_still_ahead() -> None:
    ahead = next_occurrence("weekly", "10:00", [Weekday.TUESDAY], now=TUESDAY_MORNING)
    assert ahead == datetime(2026, 10, 20, 10, 0)

    passed = next_occurrence("weekly", "08:00", [Weekday.TUESDAY], now=TUESDAY_MORNING)
    assert passed == datetime(2026, 10, 27, 8, 0)


@pytest.mark.parametrize("day", list(Weekday))
def test_weekly_lands_on_listed_day_after_now(day) -> None:
    result = next_occurrence("weekly", "12:15", [day], now=TUESDAY_MORNING)
    assert result > TUESDAY_MORNING
    assert js_weekday(result.date()) == day


def test_weekly_without_days_is_rejected() -> None:
    with pytest.raises(ValidationError):
        next_occurrence("weekly", "17:00", [], now=TUESDAY_MORNING)
    with pytest.raises(ValidationError):
        RepeatRule(kind="weekly").validate()


def test_one_time_and_unknown_kinds_are_rejected() -> None:
    with pytest.raises(ValidationError):
        next_occurrence("none", "17:00", now=TUESDAY_MORNING)
    with pytest.raises(ValidationError):
        RepeatRule(kind="monthly")


def test_rule_validation() -> None:
    with pytest.raises(ValidationError):
        RepeatRule(kind="weekly", days_of_week=(7,)).validate()
    with pytest.raises(ValidationError):
        RepeatRule(kind="daily", alert_offsets_min=(5,)).validate()
    rule = RepeatRule(kind="weekly", days_of_week=(5, 1, 3, 1), time_hhmm="17:00").validate()
    assert rule.days_of_week == (1, 3, 5)
    assert rule.alert_offsets_min == (-15, -5)


def test_rule_description_and_dict() -> None:
    weekly = RepeatRule(kind="weekly", days_of_week=(1, 3, 5), time_hhmm="17:00")
    assert weekly.describe() == "Weekly • Mon/Wed/Fri 17:00"
    assert weekly.as_dict() == {
        "kind": "weekly",
        "alertOffsetsMin": [-15, -5],
        "daysOfWeek": [1, 3, 5],
        "timeHHMM": "17:00",
    }
    assert RepeatRule(kind="daily", time_hhmm="7:30").describe() == "Daily • 07:30"
    assert RepeatRule().describe() == "One-time"
    assert "daysOfWeek" not in RepeatRule(kind="daily").as_dict()


def test_epoch_milliseconds_round_trip() -> None:
    moment = datetime(2026, 10, 21, 17, 0)
    assert from_epoch_ms(to_epoch_ms(moment)) == moment

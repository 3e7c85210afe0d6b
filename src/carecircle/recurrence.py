"""Recurrence rules and next-due arithmetic for CareCircle tasks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum, IntEnum
from typing import Iterable, Optional, Tuple

from .exceptions import ValidationError

FALLBACK_HOUR = 16
FALLBACK_MINUTE = 0
WEEKLY_SCAN_DAYS = 14
DEFAULT_ALERT_OFFSETS: Tuple[int, ...] = (-15, -5)
MAX_ALERT_LEAD_MINUTES = 7 * 24 * 60
MAX_HOLD_MINUTES = 365 * 24 * 60
# Epoch-ms range that converts to a datetime in any local timezone.
MIN_EPOCH_MS = -62_135_510_400_000
MAX_EPOCH_MS = 253_402_214_400_000

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


class RepeatKind(str, Enum):
    """Recurrence policies supported for a task."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"


class Weekday(IntEnum):
    """Days of the week numbered the way task payloads carry them (Sunday first)."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        return cls(day.isoweekday() % 7)

    @property
    def short_label(self) -> str:
        return self.name[:3].title()


def js_weekday(day: date) -> int:
    """Return ``day``'s weekday as 0=Sunday .. 6=Saturday."""

    return int(Weekday.from_date(day))


def parse_time_hhmm(value: Optional[str]) -> Tuple[int, int]:
    """Parse ``HH:MM`` into an ``(hour, minute)`` pair.

    Out-of-range components are clamped; anything that is not ``H:MM`` or
    ``HH:MM`` falls back to 16:00.
    """

    match = _TIME_PATTERN.match((value or "").strip())
    if not match:
        return FALLBACK_HOUR, FALLBACK_MINUTE
    hour = min(23, max(0, int(match.group(1))))
    minute = min(59, max(0, int(match.group(2))))
    return hour, minute


def _coerce_kind(kind: RepeatKind | str) -> RepeatKind:
    try:
        return RepeatKind(kind)
    except ValueError as exc:
        raise ValidationError(f"Unknown recurrence kind '{kind}'.") from exc


def next_occurrence(
    kind: RepeatKind | str,
    time_hhmm: Optional[str],
    days_of_week: Optional[Iterable[int]] = None,
    *,
    now: datetime,
) -> datetime:
    """Return the next occurrence strictly after ``now``."""

    repeat = _coerce_kind(kind)
    if repeat is RepeatKind.NONE:
        raise ValidationError("One-time tasks carry an explicit due time.")
    hour, minute = parse_time_hhmm(time_hhmm)
    at = time(hour, minute)

    if repeat is RepeatKind.DAILY:
        candidate = datetime.combine(now.date(), at)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    days = frozenset(int(day) for day in (days_of_week or ()))
    if not days:
        raise ValidationError("Weekly recurrence needs at least one day of the week.")
    for offset in range(WEEKLY_SCAN_DAYS):
        day = now.date() + timedelta(days=offset)
        if js_weekday(day) not in days:
            continue
        candidate = datetime.combine(day, at)
        if candidate > now:
            return candidate
    return datetime.combine(now.date() + timedelta(days=7), at)


def to_epoch_ms(moment: datetime) -> int:
    return round(moment.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000)


@dataclass(slots=True)
class RepeatRule:
    """Recurrence policy attached to a task."""

    kind: RepeatKind = RepeatKind.NONE
    days_of_week: Tuple[int, ...] = ()
    time_hhmm: Optional[str] = None
    alert_offsets_min: Tuple[int, ...] = field(default=DEFAULT_ALERT_OFFSETS)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", _coerce_kind(self.kind))
        object.__setattr__(self, "days_of_week", tuple(sorted(set(self.days_of_week))))
        object.__setattr__(self, "alert_offsets_min", tuple(self.alert_offsets_min))

    def validate(self) -> "RepeatRule":
        """Reject rules that cannot produce a due time."""

        for day in self.days_of_week:
            if not 0 <= day <= 6:
                raise ValidationError(f"Day of week {day} is out of range (0=Sun..6=Sat).")
        if self.kind is RepeatKind.WEEKLY and not self.days_of_week:
            raise ValidationError("Weekly recurrence needs at least one day of the week.")
        for offset in self.alert_offsets_min:
            if offset > 0:
                raise ValidationError("Alert offsets are minutes before due and cannot be positive.")
            if offset < -MAX_ALERT_LEAD_MINUTES:
                raise ValidationError("Alert offsets cannot reach more than a week before due.")
        return self

    @property
    def repeats(self) -> bool:
        return self.kind is not RepeatKind.NONE

    def next_due(self, *, now: datetime) -> datetime:
        self.validate()
        return next_occurrence(self.kind, self.time_hhmm, self.days_of_week, now=now)

    def describe(self) -> str:
        if self.kind is RepeatKind.DAILY:
            return f"Daily • {_format_time(self.time_hhmm)}"
        if self.kind is RepeatKind.WEEKLY:
            days = "/".join(Weekday(day).short_label for day in self.days_of_week)
            suffix = f" {_format_time(self.time_hhmm)}" if self.time_hhmm else ""
            return f"Weekly • {days}{suffix}"
        return "One-time"

    def as_dict(self) -> dict:
        payload: dict = {"kind": self.kind.value, "alertOffsetsMin": list(self.alert_offsets_min)}
        if self.kind is RepeatKind.WEEKLY:
            payload["daysOfWeek"] = list(self.days_of_week)
        if self.time_hhmm is not None:
            payload["timeHHMM"] = self.time_hhmm
        return payload


def _format_time(value: Optional[str]) -> str:
    hour, minute = parse_time_hhmm(value)
    return f"{hour:02d}:{minute:02d}"


__all__ = [
    "DEFAULT_ALERT_OFFSETS",
    "MAX_ALERT_LEAD_MINUTES",
    "MAX_EPOCH_MS",
    "MAX_HOLD_MINUTES",
    "MIN_EPOCH_MS",
    "RepeatKind",
    "RepeatRule",
    "Weekday",
    "from_epoch_ms",
    "js_weekday",
    "next_occurrence",
    "parse_time_hhmm",
    "to_epoch_ms",
]

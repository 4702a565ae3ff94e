from __future__ import annotations

from calendar import monthrange
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from dtr.models import ConfirmationStatus, ExcusedStatus
from dtr.services.entry_calc import DEFAULT_DAILY_CAP_MINUTES, is_sunday, official_minutes
from dtr.services.time_normalizer import format_duration

DEFAULT_WEEKLY_LIMIT_HOURS = 30


class EntryTotals(Protocol):
    day: int
    total_minutes: int
    confirmation_status: str
    excused_status: str


@dataclass
class WeekBucket:
    week_num: int
    minutes: int
    days: list[int]
    exceeds: bool

    @property
    def hours(self) -> float:
        return round(self.minutes / 60, 2)


@dataclass
class PeriodSummary:
    year: int
    month: int
    weeks: list[WeekBucket]
    has_violations: bool
    raw_minutes: int
    official_minutes: int
    confirmed_official_minutes: int
    days_worked: int
    confirmed_days: int
    unconfirmed_days: int
    excused_days: int
    has_exceeded_daily_cap: bool
    flags: list[str] = field(default_factory=list)

    @property
    def raw_duration(self) -> str:
        return format_duration(self.raw_minutes)

    @property
    def official_duration(self) -> str:
        return format_duration(self.official_minutes)


def _counted_entries(entries: Sequence[EntryTotals], year: int, month: int) -> list[EntryTotals]:
    days_in_month = monthrange(year, month)[1]
    rows = [
        entry
        for entry in entries
        if 1 <= entry.day <= days_in_month and not is_sunday(year, month, entry.day)
    ]
    return sorted(rows, key=lambda entry: entry.day)


def _close_bucket(
    weeks: list[WeekBucket],
    days: list[int],
    minutes: int,
    limit_hours: int,
) -> None:
    weeks.append(
        WeekBucket(
            week_num=len(weeks) + 1,
            minutes=minutes,
            days=list(days),
            exceeds=minutes / 60 > limit_hours,
        )
    )


def build_week_buckets(
    entries: Sequence[EntryTotals],
    *,
    year: int,
    month: int,
    cap_minutes: int = DEFAULT_DAILY_CAP_MINUTES,
    weekly_limit_hours: int = DEFAULT_WEEKLY_LIMIT_HOURS,
) -> list[WeekBucket]:
    """Split the month at Sundays and total confirmed, capped minutes per run.

    Sundays close the open bucket and belong to none. Unconfirmed entries are
    listed in their bucket's days but add nothing to its minutes.
    """
    by_day = {entry.day: entry for entry in _counted_entries(entries, year, month)}
    weeks: list[WeekBucket] = []
    current_days: list[int] = []
    current_minutes = 0

    for day in range(1, monthrange(year, month)[1] + 1):
        if is_sunday(year, month, day):
            if current_days:
                _close_bucket(weeks, current_days, current_minutes, weekly_limit_hours)
                current_days = []
                current_minutes = 0
            continue

        current_days.append(day)
        entry = by_day.get(day)
        if entry is not None and entry.confirmation_status == ConfirmationStatus.CONFIRMED:
            current_minutes += official_minutes(entry.total_minutes, cap_minutes)

    if current_days:
        _close_bucket(weeks, current_days, current_minutes, weekly_limit_hours)
    return weeks


def monthly_official_minutes(
    entries: Sequence[EntryTotals],
    *,
    year: int,
    month: int,
    cap_minutes: int = DEFAULT_DAILY_CAP_MINUTES,
) -> int:
    # Counts every day regardless of confirmation, unlike the weekly buckets.
    return sum(
        official_minutes(entry.total_minutes, cap_minutes)
        for entry in _counted_entries(entries, year, month)
    )


def summarize_period(
    entries: Sequence[EntryTotals],
    *,
    year: int,
    month: int,
    cap_minutes: int = DEFAULT_DAILY_CAP_MINUTES,
    weekly_limit_hours: int = DEFAULT_WEEKLY_LIMIT_HOURS,
) -> PeriodSummary:
    counted = _counted_entries(entries, year, month)
    weeks = build_week_buckets(
        counted,
        year=year,
        month=month,
        cap_minutes=cap_minutes,
        weekly_limit_hours=weekly_limit_hours,
    )

    raw_minutes = 0
    official_total = 0
    confirmed_official = 0
    days_worked = 0
    confirmed_days = 0
    excused_days = 0
    exceeded_cap = False
    for entry in counted:
        total = max(0, entry.total_minutes)
        capped = official_minutes(total, cap_minutes)
        raw_minutes += total
        official_total += capped
        if total > 0:
            days_worked += 1
        if total > capped:
            exceeded_cap = True
        if entry.confirmation_status == ConfirmationStatus.CONFIRMED:
            confirmed_days += 1
            confirmed_official += capped
        if entry.excused_status == ExcusedStatus.EXCUSED:
            excused_days += 1

    has_violations = any(week.exceeds for week in weeks)
    flags: list[str] = []
    if has_violations:
        flags.append("WEEKLY_LIMIT_EXCEEDED")
    if exceeded_cap:
        flags.append("DAILY_CAP_EXCEEDED")

    return PeriodSummary(
        year=year,
        month=month,
        weeks=weeks,
        has_violations=has_violations,
        raw_minutes=raw_minutes,
        official_minutes=official_total,
        confirmed_official_minutes=confirmed_official,
        days_worked=days_worked,
        confirmed_days=confirmed_days,
        unconfirmed_days=len(counted) - confirmed_days,
        excused_days=excused_days,
        has_exceeded_daily_cap=exceeded_cap,
        flags=flags,
    )

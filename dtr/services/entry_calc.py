from __future__ import annotations

from calendar import SUNDAY, weekday
from collections.abc import Sequence
from dataclasses import dataclass

from dtr.models import EntryStatus
from dtr.services.shifts import Shift, has_any_time
from dtr.services.time_normalizer import normalize_time, time_to_minutes
from dtr.settings import get_settings

DEFAULT_DAILY_CAP_MINUTES = 300


@dataclass(frozen=True)
class DutyExpectation:
    start_minutes: int | None = None
    daily_minutes: int | None = None


@dataclass(frozen=True)
class DayComputation:
    total_minutes: int
    official_minutes: int
    late_minutes: int
    undertime_minutes: int
    status: str
    exceeds_daily_cap: bool


def is_sunday(year: int, month: int, day: int) -> bool:
    return weekday(year, month, day) == SUNDAY


def calculate_total_minutes(shifts: Sequence[Shift]) -> int:
    total = 0
    for shift in shifts:
        in_minutes = shift.in_minutes
        out_minutes = shift.out_minutes
        if in_minutes is None or out_minutes is None:
            continue
        if out_minutes > in_minutes:
            total += out_minutes - in_minutes
    return total


def official_minutes(total_minutes: int, cap_minutes: int = DEFAULT_DAILY_CAP_MINUTES) -> int:
    return min(max(0, total_minutes), max(0, cap_minutes))


def derive_status(
    shifts: Sequence[Shift],
    *,
    status_override: str | None = None,
    excused: bool = False,
    sunday: bool = False,
) -> str:
    if sunday:
        return EntryStatus.UNSET.value
    if excused:
        return EntryStatus.EXCUSED.value
    if status_override:
        return status_override
    if has_any_time(shifts):
        return EntryStatus.UNCONFIRMED.value
    return EntryStatus.UNSET.value


def calculate_late_minutes(shifts: Sequence[Shift], expectation: DutyExpectation | None) -> int:
    if expectation is None or expectation.start_minutes is None:
        return 0
    first_in = min(
        (shift.in_minutes for shift in shifts if shift.in_minutes is not None),
        default=None,
    )
    if first_in is None:
        return 0
    return max(0, first_in - expectation.start_minutes)


def calculate_undertime_minutes(
    worked_minutes: int,
    expectation: DutyExpectation | None,
    *,
    has_time: bool,
) -> int:
    if expectation is None or expectation.daily_minutes is None or not has_time:
        return 0
    return max(0, expectation.daily_minutes - max(0, worked_minutes))


def calculate_day(
    shifts: Sequence[Shift],
    *,
    sunday: bool = False,
    excused: bool = False,
    status_override: str | None = None,
    excused_credit_minutes: int = DEFAULT_DAILY_CAP_MINUTES,
    cap_minutes: int = DEFAULT_DAILY_CAP_MINUTES,
    expectation: DutyExpectation | None = None,
) -> DayComputation:
    if sunday:
        return DayComputation(
            total_minutes=0,
            official_minutes=0,
            late_minutes=0,
            undertime_minutes=0,
            status=EntryStatus.UNSET.value,
            exceeds_daily_cap=False,
        )

    if excused:
        total = max(0, excused_credit_minutes)
        late = 0
        undertime = 0
    else:
        total = calculate_total_minutes(shifts)
        late = calculate_late_minutes(shifts, expectation)
        undertime = calculate_undertime_minutes(total, expectation, has_time=has_any_time(shifts))

    official = official_minutes(total, cap_minutes)
    return DayComputation(
        total_minutes=total,
        official_minutes=official,
        late_minutes=late,
        undertime_minutes=undertime,
        status=derive_status(shifts, status_override=status_override, excused=excused),
        exceeds_daily_cap=total > official,
    )


def duty_expectation_from_settings() -> DutyExpectation | None:
    settings = get_settings()
    start_minutes = None
    if settings.duty_start_time:
        start_minutes = time_to_minutes(normalize_time(settings.duty_start_time))
    daily_minutes = settings.duty_daily_minutes
    if start_minutes is None and daily_minutes is None:
        return None
    return DutyExpectation(start_minutes=start_minutes, daily_minutes=daily_minutes)

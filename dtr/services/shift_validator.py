from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from dtr.services.shifts import Shift
from dtr.services.time_normalizer import normalize_time, time_to_minutes
from dtr.settings import get_slot_window_rows

ShiftField = Literal["in", "out"]


@dataclass(frozen=True, slots=True)
class TimeWindow:
    start: int | None = None
    end: int | None = None

    def contains(self, minutes: int) -> bool:
        if self.start is not None and minutes < self.start:
            return False
        if self.end is not None and minutes > self.end:
            return False
        return True

    def describe(self) -> str:
        start = _clock(self.start) if self.start is not None else "00:00"
        end = _clock(self.end) if self.end is not None else "23:59"
        return f"{start} and {end}"


@dataclass(frozen=True, slots=True)
class SlotWindow:
    in_window: TimeWindow = field(default_factory=TimeWindow)
    out_window: TimeWindow = field(default_factory=TimeWindow)


@dataclass(frozen=True, slots=True)
class SlotWindowTable:
    """Allowed time-of-day ranges per legacy slot, slot 1 first."""

    slots: tuple[SlotWindow, ...] = ()

    def for_index(self, index: int) -> SlotWindow | None:
        if 0 <= index < len(self.slots):
            return self.slots[index]
        return None

    @classmethod
    def from_rows(cls, rows: Sequence[Mapping[str, Any]]) -> SlotWindowTable:
        slots: list[SlotWindow] = []
        for row in rows:
            slots.append(
                SlotWindow(
                    in_window=TimeWindow(
                        start=_bound(row.get("in_start")),
                        end=_bound(row.get("in_end")),
                    ),
                    out_window=TimeWindow(
                        start=_bound(row.get("out_start")),
                        end=_bound(row.get("out_end")),
                    ),
                )
            )
        return cls(slots=tuple(slots))


@dataclass(frozen=True, slots=True)
class ShiftEditResult:
    accepted: bool
    shifts: list[Shift]
    reason: str | None = None


def _clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def _bound(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    minutes = time_to_minutes(normalize_time(str(raw)))
    if minutes is None:
        raise ValueError(f"Invalid slot window bound: {raw!r}")
    return minutes


def _window_violation(index: int, shift: Shift, windows: SlotWindowTable | None) -> str | None:
    if windows is None:
        return None
    slot = windows.for_index(index)
    if slot is None:
        return None
    in_minutes = shift.in_minutes
    if in_minutes is not None and not slot.in_window.contains(in_minutes):
        return f"Shift {index + 1} IN must be between {slot.in_window.describe()}"
    out_minutes = shift.out_minutes
    if out_minutes is not None and not slot.out_window.contains(out_minutes):
        return f"Shift {index + 1} OUT must be between {slot.out_window.describe()}"
    return None


def _conflict_with_others(index: int, shifts: Sequence[Shift]) -> str | None:
    current = shifts[index]
    current_in = current.in_minutes
    current_out = current.out_minutes
    if current_in is None or current_out is None:
        return None

    if current_out <= current_in:
        return f"Shift {index + 1}: OUT time must be after IN time"

    for other_index, other in enumerate(shifts):
        if other_index == index:
            continue
        other_in = other.in_minutes
        other_out = other.out_minutes
        if other_in is None or other_out is None:
            continue
        if current_in == other_in or current_out == other_out:
            return f"Shift {index + 1} has same time as Shift {other_index + 1}. Times must be unique."
        if current_in < other_out and current_out > other_in:
            return f"Shift {index + 1} overlaps with Shift {other_index + 1}. Shifts cannot overlap."
    return None


def validate_shift_edit(
    shifts: Sequence[Shift],
    index: int,
    field: ShiftField,
    value: str,
    *,
    windows: SlotWindowTable | None = None,
) -> ShiftEditResult:
    """Check one ``(index, field, value)`` edit against the day's shifts.

    ``index == len(shifts)`` appends a new shift. On rejection the returned
    ``shifts`` is the untouched input.
    """
    original = list(shifts)
    if field not in ("in", "out"):
        return ShiftEditResult(accepted=False, shifts=original, reason=f"Unknown shift field: {field}")
    if index < 0 or index > len(original):
        return ShiftEditResult(accepted=False, shifts=original, reason=f"Shift {index + 1} does not exist")

    normalized = normalize_time(value)
    if normalized and time_to_minutes(normalized) is None:
        return ShiftEditResult(accepted=False, shifts=original, reason="Invalid time format")

    scratch = list(original)
    if index == len(scratch):
        scratch.append(Shift())
    scratch[index] = scratch[index].replace(field, normalized)

    reason = _conflict_with_others(index, scratch) or _window_violation(index, scratch[index], windows)
    if reason is not None:
        return ShiftEditResult(accepted=False, shifts=original, reason=reason)
    return ShiftEditResult(accepted=True, shifts=scratch)


def validate_shifts(shifts: Sequence[Shift], *, windows: SlotWindowTable | None = None) -> str | None:
    """Return the first problem in a complete shift list, or ``None``."""
    for index, shift in enumerate(shifts):
        for value in (shift.in_time, shift.out_time):
            if value and time_to_minutes(value) is None:
                return f"Shift {index + 1}: invalid time format"
        reason = _conflict_with_others(index, shifts) or _window_violation(index, shift, windows)
        if reason is not None:
            return reason
    return None


def add_shift(shifts: Sequence[Shift]) -> list[Shift]:
    return [*shifts, Shift()]


def remove_shift(shifts: Sequence[Shift], index: int) -> list[Shift]:
    # A day always keeps at least one (possibly blank) row to type into.
    if len(shifts) <= 1 or not 0 <= index < len(shifts):
        return list(shifts)
    return [shift for position, shift in enumerate(shifts) if position != index]


def configured_slot_windows() -> SlotWindowTable | None:
    rows = get_slot_window_rows()
    if not rows:
        return None
    return SlotWindowTable.from_rows(rows)

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from dtr.services.time_normalizer import time_to_minutes

LEGACY_SLOT_COUNT = 4


@dataclass(frozen=True, slots=True)
class Shift:
    in_time: str = ""
    out_time: str = ""

    @property
    def in_minutes(self) -> int | None:
        return time_to_minutes(self.in_time)

    @property
    def out_minutes(self) -> int | None:
        return time_to_minutes(self.out_time)

    @property
    def is_blank(self) -> bool:
        return not self.in_time and not self.out_time

    @property
    def is_complete(self) -> bool:
        return self.in_minutes is not None and self.out_minutes is not None

    def replace(self, field: str, value: str) -> Shift:
        if field == "in":
            return Shift(in_time=value, out_time=self.out_time)
        if field == "out":
            return Shift(in_time=self.in_time, out_time=value)
        raise ValueError(f"Unknown shift field: {field}")

    def to_dict(self) -> dict[str, str]:
        return {"in": self.in_time, "out": self.out_time}


def shift_from_mapping(raw: Mapping[str, Any]) -> Shift:
    in_value = raw.get("in", raw.get("in_time"))
    out_value = raw.get("out", raw.get("out_time"))
    return Shift(in_time=str(in_value or "").strip(), out_time=str(out_value or "").strip())


def shifts_from_rows(rows: Iterable[Mapping[str, Any]] | None) -> list[Shift]:
    if not rows:
        return []
    return [shift_from_mapping(row) for row in rows if isinstance(row, Mapping)]


def shifts_to_rows(shifts: Iterable[Shift]) -> list[dict[str, str]]:
    return [shift.to_dict() for shift in shifts]


def shifts_from_legacy(values: Mapping[str, Any]) -> list[Shift]:
    """Build the dynamic shift list from ``in1/out1 .. in4/out4`` fields.

    Slots are kept positionally up to the last non-empty one so slot numbers
    stay aligned with shift indexes.
    """
    slots = [
        Shift(
            in_time=str(values.get(f"in{slot}") or "").strip(),
            out_time=str(values.get(f"out{slot}") or "").strip(),
        )
        for slot in range(1, LEGACY_SLOT_COUNT + 1)
    ]
    while slots and slots[-1].is_blank:
        slots.pop()
    return slots


def legacy_projection(shifts: list[Shift]) -> dict[str, str]:
    projection: dict[str, str] = {}
    for slot in range(1, LEGACY_SLOT_COUNT + 1):
        shift = shifts[slot - 1] if slot - 1 < len(shifts) else Shift()
        projection[f"in{slot}"] = shift.in_time
        projection[f"out{slot}"] = shift.out_time
    return projection


def has_any_time(shifts: Iterable[Shift]) -> bool:
    return any(not shift.is_blank for shift in shifts)

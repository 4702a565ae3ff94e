from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from dtr.models import ConfirmationStatus, ExcusedStatus, RecordStatus
from dtr.services.shifts import LEGACY_SLOT_COUNT, Shift, shifts_from_legacy

_LEGACY_FIELDS = tuple(
    f"{kind}{slot}" for slot in range(1, LEGACY_SLOT_COUNT + 1) for kind in ("in", "out")
)


class ShiftPayload(BaseModel):
    in_time: str = Field(
        default="",
        max_length=16,
        validation_alias=AliasChoices("in", "in_time"),
        serialization_alias="in",
    )
    out_time: str = Field(
        default="",
        max_length=16,
        validation_alias=AliasChoices("out", "out_time"),
        serialization_alias="out",
    )

    model_config = ConfigDict(populate_by_name=True)

    def to_shift(self) -> Shift:
        return Shift(in_time=self.in_time.strip(), out_time=self.out_time.strip())


class EntryPayload(BaseModel):
    """Full-entry payload for one day.

    ``shifts`` is the current representation; ``in1/out1 .. in4/out4`` are
    accepted from older clients when ``shifts`` is absent. ``total_hours``
    (minutes) is advisory, the server always recomputes it.
    """

    shifts: list[ShiftPayload] | None = None
    in1: str | None = None
    out1: str | None = None
    in2: str | None = None
    out2: str | None = None
    in3: str | None = None
    out3: str | None = None
    in4: str | None = None
    out4: str | None = None
    status: str | None = None
    total_hours: int | None = Field(default=None, ge=0)
    revision: int | None = Field(default=None, ge=0)

    def resolved_shifts(self) -> list[Shift]:
        if self.shifts is not None:
            return [item.to_shift() for item in self.shifts]
        return shifts_from_legacy({name: getattr(self, name) for name in _LEGACY_FIELDS})

    def touches_times(self) -> bool:
        if self.shifts is not None:
            return True
        return any(getattr(self, name) is not None for name in _LEGACY_FIELDS)


class OfficeEntryPayload(EntryPayload):
    status_override: Literal["", "Present", "Absent", "Late", "On Leave", "Excused"] | None = None


class EditChangeRead(BaseModel):
    field: str
    old_value: str
    new_value: str


class EditHistoryRead(BaseModel):
    edited_by: str
    edited_by_name: str
    edited_at: datetime
    changes: list[EditChangeRead] = Field(default_factory=list)


class DtrEntryRead(BaseModel):
    day: int
    weekday: str
    is_sunday: bool
    shifts: list[ShiftPayload] = Field(default_factory=list)
    in1: str = ""
    out1: str = ""
    in2: str = ""
    out2: str = ""
    in3: str = ""
    out3: str = ""
    in4: str = ""
    out4: str = ""
    total_minutes: int
    total_hours: int
    official_minutes: int
    total_display: str
    late_minutes: int
    undertime_minutes: int
    status: str
    derived_status: str
    status_override: str | None = None
    confirmation_status: ConfirmationStatus
    confirmed_by: str | None = None
    confirmed_by_profile: str | None = None
    confirmed_at: datetime | None = None
    excused_status: ExcusedStatus
    excused_reason: str = ""
    edit_history: list[EditHistoryRead] = Field(default_factory=list)
    revision: int


class DtrRecordSummaryRead(BaseModel):
    id: int
    user_id: str
    month: int
    year: int
    department: str | None = None
    duty_hours: str | None = None
    status: RecordStatus
    submitted_at: datetime | None = None
    checked_by: str | None = None
    checked_at: datetime | None = None
    remarks: str | None = None
    total_monthly_minutes: int
    total_monthly_duration: str
    created_at: datetime
    updated_at: datetime


class DtrRecordRead(DtrRecordSummaryRead):
    entries: list[DtrEntryRead] = Field(default_factory=list)


class WeekBucketRead(BaseModel):
    week_num: int
    minutes: int
    hours: float
    days: list[int]
    exceeds: bool


class PeriodSummaryRead(BaseModel):
    record_id: int
    year: int
    month: int
    weeks: list[WeekBucketRead]
    has_violations: bool
    raw_minutes: int
    official_minutes: int
    confirmed_official_minutes: int
    raw_duration: str
    official_duration: str
    total_monthly_minutes: int
    total_monthly_duration: str
    days_worked: int
    confirmed_days: int
    unconfirmed_days: int
    excused_days: int
    has_exceeded_daily_cap: bool
    flags: list[str] = Field(default_factory=list)


class DtrStatsRead(BaseModel):
    total_dtrs: int
    total_minutes: int
    total_duration: str
    draft: int
    submitted: int
    approved: int
    rejected: int


class DtrGetOrCreateRequest(BaseModel):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2020, le=2100)


class DtrUpdateRequest(BaseModel):
    record_id: int = Field(ge=1)
    department: str | None = Field(default=None, max_length=255)
    duty_hours: str | None = Field(default=None, max_length=255)


class DtrUpdateEntryRequest(BaseModel):
    record_id: int = Field(ge=1)
    day: int = Field(ge=1, le=31)
    entry: EntryPayload


class DtrRecordActionRequest(BaseModel):
    record_id: int = Field(ge=1)


class DtrApproveRequest(BaseModel):
    record_id: int = Field(ge=1)
    remarks: str | None = Field(default=None, max_length=2000)


class DtrRejectRequest(BaseModel):
    record_id: int = Field(ge=1)
    remarks: str = Field(min_length=1, max_length=2000)


class DtrEntryActionRequest(BaseModel):
    record_id: int = Field(ge=1)
    day: int = Field(ge=1, le=31)


class OfficeGetUserDtrRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2020, le=2100)


class OfficeUpdateEntryRequest(BaseModel):
    record_id: int = Field(ge=1)
    day: int = Field(ge=1, le=31)
    entry: OfficeEntryPayload


class MarkDayExcusedRequest(BaseModel):
    record_id: int = Field(ge=1)
    day: int = Field(ge=1, le=31)
    excused_status: ExcusedStatus
    excused_reason: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _normalize_reason(self) -> "MarkDayExcusedRequest":
        self.excused_reason = (self.excused_reason or "").strip()
        return self


class ConfirmAllResponse(BaseModel):
    confirmed_days: list[int]
    dtr: DtrRecordRead


class DeleteResponse(BaseModel):
    ok: bool


class HealthResponse(BaseModel):
    status: str
    schema_guard: dict[str, Any]


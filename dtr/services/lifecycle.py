from __future__ import annotations

from datetime import date, datetime, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from dtr.errors import ApiError
from dtr.models import ConfirmationStatus, DtrEntry, DtrRecord, RecordStatus
from dtr.services.entry_calc import is_sunday
from dtr.services.shifts import has_any_time, shifts_from_rows
from dtr.settings import get_settings

RECORD_APPROVED = "RECORD_APPROVED"
SUNDAY = "SUNDAY"
ENTRY_CONFIRMED = "ENTRY_CONFIRMED"
DATE_RESTRICTED = "DATE_RESTRICTED"
INVALID_TRANSITION = "INVALID_TRANSITION"

_BLOCK_MESSAGES = {
    RECORD_APPROVED: "Cannot update an approved DTR",
    SUNDAY: "Sunday is a no-duty day",
    ENTRY_CONFIRMED: "Entry is confirmed and locked",
    DATE_RESTRICTED: "Confirmed entries can only be edited on their own date",
}

_TRANSITIONS: dict[RecordStatus, set[RecordStatus]] = {
    RecordStatus.DRAFT: {RecordStatus.SUBMITTED},
    RecordStatus.REJECTED: {RecordStatus.SUBMITTED},
    RecordStatus.SUBMITTED: {RecordStatus.APPROVED, RecordStatus.REJECTED},
    RecordStatus.APPROVED: set(),
}


@lru_cache
def _attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "Asia/Manila"
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo("Asia/Manila")


def local_today(now_utc: datetime | None = None) -> date:
    current = now_utc or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(_attendance_timezone()).date()


def is_date_restricted(*, confirmed: bool, entry_date: date, today: date) -> bool:
    return confirmed and entry_date != today


def owner_edit_block_reason(
    *,
    record_status: RecordStatus | str,
    year: int,
    month: int,
    day: int,
    confirmed: bool,
    today: date,
    allow_same_day_confirmed_edits: bool = False,
) -> str | None:
    """Why the record owner may not edit this day, or ``None`` when allowed."""
    if record_status == RecordStatus.APPROVED:
        return RECORD_APPROVED
    if is_sunday(year, month, day):
        return SUNDAY
    if is_date_restricted(confirmed=confirmed, entry_date=date(year, month, day), today=today):
        return DATE_RESTRICTED
    if confirmed and not allow_same_day_confirmed_edits:
        return ENTRY_CONFIRMED
    return None


def block_message(reason: str) -> str:
    return _BLOCK_MESSAGES.get(reason, "Entry is locked")


def ensure_owner_can_edit(record: DtrRecord, entry: DtrEntry, *, today: date | None = None) -> None:
    reason = owner_edit_block_reason(
        record_status=record.status,
        year=record.year,
        month=record.month,
        day=entry.day,
        confirmed=entry.is_confirmed,
        today=today or local_today(),
        allow_same_day_confirmed_edits=get_settings().allow_same_day_confirmed_edits,
    )
    if reason is not None:
        raise ApiError(status_code=409, code=reason, message=block_message(reason))


def ensure_office_can_edit(record: DtrRecord) -> None:
    if record.status == RecordStatus.APPROVED:
        raise ApiError(status_code=409, code=RECORD_APPROVED, message=block_message(RECORD_APPROVED))


def _transition(record: DtrRecord, target: RecordStatus) -> None:
    current = RecordStatus(record.status)
    if target not in _TRANSITIONS[current]:
        raise ApiError(
            status_code=409,
            code=INVALID_TRANSITION,
            message=f"Cannot move DTR from {current.value} to {target.value}",
        )
    record.status = target


def submit_record(record: DtrRecord, *, now: datetime | None = None) -> DtrRecord:
    _transition(record, RecordStatus.SUBMITTED)
    record.submitted_at = now or datetime.now(timezone.utc)
    return record


def approve_record(
    record: DtrRecord,
    *,
    checked_by: str,
    remarks: str | None = None,
    now: datetime | None = None,
) -> DtrRecord:
    _transition(record, RecordStatus.APPROVED)
    record.checked_by = checked_by
    record.checked_at = now or datetime.now(timezone.utc)
    record.remarks = remarks
    return record


def reject_record(
    record: DtrRecord,
    *,
    checked_by: str,
    remarks: str,
    now: datetime | None = None,
) -> DtrRecord:
    if not remarks.strip():
        raise ApiError(status_code=422, code="REMARKS_REQUIRED", message="Rejecting a DTR requires remarks")
    _transition(record, RecordStatus.REJECTED)
    record.checked_by = checked_by
    record.checked_at = now or datetime.now(timezone.utc)
    record.remarks = remarks
    return record


def confirm_entry(
    entry: DtrEntry,
    *,
    confirmed_by: str,
    profile_name: str | None,
    now: datetime | None = None,
) -> DtrEntry:
    entry.confirmation_status = ConfirmationStatus.CONFIRMED
    entry.confirmed_by = confirmed_by
    entry.confirmed_by_profile = profile_name
    entry.confirmed_at = now or datetime.now(timezone.utc)
    return entry


def unconfirm_entry(entry: DtrEntry) -> DtrEntry:
    entry.confirmation_status = ConfirmationStatus.UNCONFIRMED
    entry.confirmed_by = None
    entry.confirmed_by_profile = None
    entry.confirmed_at = None
    return entry


def confirm_all_entries(
    record: DtrRecord,
    *,
    confirmed_by: str,
    profile_name: str | None,
    now: datetime | None = None,
) -> list[int]:
    """Confirm every day that has any time on it; returns the confirmed days."""
    stamp = now or datetime.now(timezone.utc)
    confirmed_days: list[int] = []
    for entry in record.entries:
        if not has_any_time(shifts_from_rows(entry.shifts)):
            continue
        confirm_entry(entry, confirmed_by=confirmed_by, profile_name=profile_name, now=stamp)
        confirmed_days.append(entry.day)
    return confirmed_days

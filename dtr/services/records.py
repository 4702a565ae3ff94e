from __future__ import annotations

import logging
from calendar import day_name, monthrange, weekday
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from dtr.audit import audit_record_action
from dtr.errors import ApiError, conflict, not_found
from dtr.models import (
    AuditActorType,
    DtrEntry,
    DtrRecord,
    ExcusedStatus,
    RecordStatus,
)
from dtr.schemas import (
    DtrEntryRead,
    DtrRecordRead,
    DtrRecordSummaryRead,
    DtrStatsRead,
    EntryPayload,
    OfficeEntryPayload,
    PeriodSummaryRead,
    ShiftPayload,
    WeekBucketRead,
)
from dtr.security import Actor
from dtr.services import lifecycle
from dtr.services.entry_calc import (
    calculate_day,
    duty_expectation_from_settings,
    is_sunday,
    official_minutes,
)
from dtr.services.period_calc import monthly_official_minutes, summarize_period
from dtr.services.shift_validator import configured_slot_windows, validate_shifts
from dtr.services.shifts import (
    LEGACY_SLOT_COUNT,
    Shift,
    legacy_projection,
    shifts_from_rows,
    shifts_to_rows,
)
from dtr.services.time_normalizer import format_duration, normalize_time
from dtr.settings import get_settings

logger = logging.getLogger("dtr.records")

STALE_REVISION = "STALE_REVISION"
INVALID_SHIFTS = "INVALID_SHIFTS"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_record(db: Session, record_id: int) -> DtrRecord:
    record = db.get(DtrRecord, record_id)
    if record is None:
        raise not_found("DTR not found")
    return record


def _ensure_owner(record: DtrRecord, actor: Actor) -> None:
    if record.user_id != actor.user_id:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Not authorized to access this DTR")


def _lock_entry(db: Session, record: DtrRecord, day: int) -> DtrEntry:
    # Serializes concurrent writes to one day; dialects without row locks ignore it.
    entry = db.scalar(
        select(DtrEntry)
        .where(DtrEntry.record_id == record.id, DtrEntry.day == day)
        .with_for_update()
    )
    if entry is None:
        raise not_found(f"Day {day} not found in this DTR")
    return entry


def _normalized(shifts: list[Shift]) -> list[Shift]:
    return [
        Shift(in_time=normalize_time(shift.in_time), out_time=normalize_time(shift.out_time))
        for shift in shifts
    ]


def _checked_shifts(payload: EntryPayload) -> list[Shift]:
    shifts = _normalized(payload.resolved_shifts())
    reason = validate_shifts(shifts, windows=configured_slot_windows())
    if reason is not None:
        raise ApiError(status_code=422, code=INVALID_SHIFTS, message=reason)
    return shifts


def _check_revision(entry: DtrEntry, revision: int | None) -> None:
    if revision is not None and revision < entry.revision:
        raise conflict(
            STALE_REVISION,
            f"Day {entry.day} was already saved at revision {entry.revision}",
        )


def _recalculate_entry(record: DtrRecord, entry: DtrEntry, shifts: list[Shift]) -> None:
    settings = get_settings()
    computed = calculate_day(
        shifts,
        sunday=is_sunday(record.year, record.month, entry.day),
        excused=entry.is_excused,
        status_override=entry.status_override,
        excused_credit_minutes=settings.excused_credit_minutes,
        cap_minutes=settings.daily_cap_minutes,
        expectation=duty_expectation_from_settings(),
    )
    entry.shifts = shifts_to_rows(shifts)
    entry.total_minutes = computed.total_minutes
    entry.late_minutes = computed.late_minutes
    entry.undertime_minutes = computed.undertime_minutes
    entry.status = computed.status


def _refresh_monthly_total(record: DtrRecord) -> None:
    record.total_monthly_minutes = monthly_official_minutes(
        record.entries,
        year=record.year,
        month=record.month,
        cap_minutes=get_settings().daily_cap_minutes,
    )


def _save(db: Session, record: DtrRecord) -> DtrRecord:
    _refresh_monthly_total(record)
    db.commit()
    db.refresh(record)
    return record


def get_or_create_record(db: Session, *, user_id: str, month: int, year: int) -> DtrRecord:
    """Return the owner's record for the period, creating it on first access.

    A new record starts as a draft with one blank entry per calendar day.
    """
    statement = (
        select(DtrRecord)
        .options(selectinload(DtrRecord.entries))
        .where(DtrRecord.user_id == user_id, DtrRecord.month == month, DtrRecord.year == year)
    )
    record = db.scalar(statement)
    if record is not None:
        return record

    record = DtrRecord(
        user_id=user_id,
        month=month,
        year=year,
        status=RecordStatus.DRAFT,
        total_monthly_minutes=0,
    )
    record.entries = [
        DtrEntry(day=day, shifts=[], status="", edit_history=[], revision=0)
        for day in range(1, monthrange(year, month)[1] + 1)
    ]
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the same period first.
        db.rollback()
        existing = db.scalar(statement)
        if existing is None:
            raise
        return existing

    db.refresh(record)
    logger.info(
        "dtr_record_created",
        extra={"record_id": record.id, "user_id": user_id, "month": month, "year": year},
    )
    return record


def get_record_for_actor(db: Session, *, record_id: int, actor: Actor) -> DtrRecord:
    record = _get_record(db, record_id)
    if not actor.is_office:
        _ensure_owner(record, actor)
    return record


def get_user_record(db: Session, *, user_id: str, month: int, year: int) -> DtrRecord:
    record = db.scalar(
        select(DtrRecord).where(
            DtrRecord.user_id == user_id,
            DtrRecord.month == month,
            DtrRecord.year == year,
        )
    )
    if record is None:
        raise not_found("DTR not found for this user and period")
    return record


def update_record_header(
    db: Session,
    *,
    record_id: int,
    actor: Actor,
    department: str | None,
    duty_hours: str | None,
) -> DtrRecord:
    record = _get_record(db, record_id)
    _ensure_owner(record, actor)
    if record.status == RecordStatus.APPROVED:
        raise conflict(lifecycle.RECORD_APPROVED, lifecycle.block_message(lifecycle.RECORD_APPROVED))
    if department is not None:
        record.department = department.strip() or None
    if duty_hours is not None:
        record.duty_hours = duty_hours.strip() or None
    db.commit()
    db.refresh(record)
    return record


def update_entry(
    db: Session,
    *,
    record_id: int,
    day: int,
    payload: EntryPayload,
    actor: Actor,
) -> DtrRecord:
    """Replace one day's entry on behalf of the record owner.

    The payload is the complete entry: its shift list replaces the stored one
    and every derived field is recomputed here. Replaying the same payload
    leaves the record unchanged. A payload carrying a revision older than the
    stored one is refused with ``STALE_REVISION``.
    """
    record = _get_record(db, record_id)
    _ensure_owner(record, actor)
    entry = _lock_entry(db, record, day)
    lifecycle.ensure_owner_can_edit(record, entry)

    shifts = _checked_shifts(payload)
    _check_revision(entry, payload.revision)

    _recalculate_entry(record, entry, shifts)
    # Owner edits always go back to the office for confirmation.
    lifecycle.unconfirm_entry(entry)
    if payload.revision is not None:
        entry.revision = payload.revision

    if payload.total_hours is not None and payload.total_hours != entry.total_minutes:
        logger.info(
            "dtr_entry_total_recomputed",
            extra={
                "record_id": record.id,
                "day": day,
                "client_total": payload.total_hours,
                "server_total": entry.total_minutes,
            },
        )

    return _save(db, record)


def _shift_fields(shifts: list[Shift], width: int) -> dict[str, str]:
    padded = list(shifts) + [Shift()] * max(0, width - len(shifts))
    fields = legacy_projection(padded)
    for slot in range(LEGACY_SLOT_COUNT + 1, len(padded) + 1):
        fields[f"in{slot}"] = padded[slot - 1].in_time
        fields[f"out{slot}"] = padded[slot - 1].out_time
    return fields


def _diff_changes(
    before: list[Shift],
    after: list[Shift],
    *,
    old_status: str,
    new_status: str,
) -> list[dict[str, str]]:
    width = max(LEGACY_SLOT_COUNT, len(before), len(after))
    old_fields = _shift_fields(before, width)
    new_fields = _shift_fields(after, width)
    changes = [
        {"field": name, "old_value": old_fields[name], "new_value": new_fields[name]}
        for name in old_fields
        if old_fields[name] != new_fields[name]
    ]
    if old_status != new_status:
        changes.append({"field": "status", "old_value": old_status, "new_value": new_status})
    return changes


def update_entry_by_office(
    db: Session,
    *,
    record_id: int,
    day: int,
    payload: OfficeEntryPayload,
    actor: Actor,
    request_id: str | None = None,
) -> DtrRecord:
    record = _get_record(db, record_id)
    lifecycle.ensure_office_can_edit(record)
    entry = _lock_entry(db, record, day)
    if is_sunday(record.year, record.month, day):
        raise conflict(lifecycle.SUNDAY, lifecycle.block_message(lifecycle.SUNDAY))

    before = shifts_from_rows(entry.shifts)
    after = _checked_shifts(payload) if payload.touches_times() else before
    _check_revision(entry, payload.revision)

    old_status = entry.status_override or ""
    new_status = old_status if payload.status_override is None else payload.status_override
    changes = _diff_changes(before, after, old_status=old_status, new_status=new_status)

    entry.status_override = new_status or None
    _recalculate_entry(record, entry, after)
    if payload.revision is not None:
        entry.revision = payload.revision
    if changes:
        history = list(entry.edit_history or [])
        history.append(
            {
                "edited_by": actor.user_id,
                "edited_by_name": actor.display_name,
                "edited_at": _utcnow().isoformat(),
                "changes": changes,
            }
        )
        entry.edit_history = history

    _save(db, record)
    audit_record_action(
        db,
        actor_type=AuditActorType.OFFICE,
        actor_id=actor.user_id,
        action="DTR_ENTRY_OFFICE_EDIT",
        record_id=record.id,
        details={"day": day, "changes": changes},
        request_id=request_id,
    )
    db.refresh(record)
    return record


def mark_day_excused(
    db: Session,
    *,
    record_id: int,
    day: int,
    excused_status: ExcusedStatus,
    reason: str,
    actor: Actor,
    request_id: str | None = None,
) -> DtrRecord:
    """Set or clear the excused flag on one day.

    Excusing credits the configured minutes and confirms the day for the
    office actor. Clearing it recomputes the day from its shifts and leaves
    the confirmation as it was.
    """
    record = _get_record(db, record_id)
    lifecycle.ensure_office_can_edit(record)
    entry = _lock_entry(db, record, day)
    if is_sunday(record.year, record.month, day):
        raise conflict(lifecycle.SUNDAY, lifecycle.block_message(lifecycle.SUNDAY))

    entry.excused_status = excused_status
    if excused_status == ExcusedStatus.EXCUSED:
        entry.excused_reason = reason
        lifecycle.confirm_entry(entry, confirmed_by=actor.user_id, profile_name=actor.profile_name)
    else:
        entry.excused_reason = ""
    _recalculate_entry(record, entry, shifts_from_rows(entry.shifts))

    _save(db, record)
    audit_record_action(
        db,
        actor_type=AuditActorType.OFFICE,
        actor_id=actor.user_id,
        action="DTR_DAY_EXCUSED" if excused_status == ExcusedStatus.EXCUSED else "DTR_DAY_UNEXCUSED",
        record_id=record.id,
        details={"day": day, "reason": reason},
        request_id=request_id,
    )
    db.refresh(record)
    return record


def _entry_action(
    db: Session,
    *,
    record_id: int,
    day: int,
    actor: Actor,
    confirm: bool,
    request_id: str | None,
) -> DtrRecord:
    record = _get_record(db, record_id)
    lifecycle.ensure_office_can_edit(record)
    entry = _lock_entry(db, record, day)
    if confirm:
        lifecycle.confirm_entry(entry, confirmed_by=actor.user_id, profile_name=actor.profile_name)
    else:
        lifecycle.unconfirm_entry(entry)
    _save(db, record)
    audit_record_action(
        db,
        actor_type=AuditActorType.OFFICE,
        actor_id=actor.user_id,
        action="DTR_ENTRY_CONFIRMED" if confirm else "DTR_ENTRY_UNCONFIRMED",
        record_id=record.id,
        details={"day": day},
        request_id=request_id,
    )
    db.refresh(record)
    return record


def confirm_entry(
    db: Session, *, record_id: int, day: int, actor: Actor, request_id: str | None = None
) -> DtrRecord:
    return _entry_action(db, record_id=record_id, day=day, actor=actor, confirm=True, request_id=request_id)


def unconfirm_entry(
    db: Session, *, record_id: int, day: int, actor: Actor, request_id: str | None = None
) -> DtrRecord:
    return _entry_action(db, record_id=record_id, day=day, actor=actor, confirm=False, request_id=request_id)


def confirm_all_entries(
    db: Session,
    *,
    record_id: int,
    actor: Actor,
    request_id: str | None = None,
) -> tuple[DtrRecord, list[int]]:
    record = _get_record(db, record_id)
    lifecycle.ensure_office_can_edit(record)
    confirmed_days = lifecycle.confirm_all_entries(
        record,
        confirmed_by=actor.user_id,
        profile_name=actor.profile_name,
    )
    _save(db, record)
    audit_record_action(
        db,
        actor_type=AuditActorType.OFFICE,
        actor_id=actor.user_id,
        action="DTR_ENTRIES_CONFIRMED_ALL",
        record_id=record.id,
        details={"days": confirmed_days},
        request_id=request_id,
    )
    db.refresh(record)
    return record, confirmed_days


def submit_record(
    db: Session,
    *,
    record_id: int,
    actor: Actor,
    request_id: str | None = None,
) -> DtrRecord:
    record = _get_record(db, record_id)
    _ensure_owner(record, actor)
    lifecycle.submit_record(record)
    _save(db, record)
    audit_record_action(
        db,
        actor_type=AuditActorType.OWNER,
        actor_id=actor.user_id,
        action="DTR_SUBMITTED",
        record_id=record.id,
        details={"month": record.month, "year": record.year},
        request_id=request_id,
    )
    db.refresh(record)
    return record


def approve_record(
    db: Session,
    *,
    record_id: int,
    actor: Actor,
    remarks: str | None = None,
    request_id: str | None = None,
) -> DtrRecord:
    record = _get_record(db, record_id)
    lifecycle.approve_record(record, checked_by=actor.display_name, remarks=remarks)
    _save(db, record)
    audit_record_action(
        db,
        actor_type=AuditActorType.OFFICE,
        actor_id=actor.user_id,
        action="DTR_APPROVED",
        record_id=record.id,
        details={"remarks": remarks},
        request_id=request_id,
    )
    db.refresh(record)
    return record


def reject_record(
    db: Session,
    *,
    record_id: int,
    actor: Actor,
    remarks: str,
    request_id: str | None = None,
) -> DtrRecord:
    record = _get_record(db, record_id)
    lifecycle.reject_record(record, checked_by=actor.display_name, remarks=remarks)
    _save(db, record)
    audit_record_action(
        db,
        actor_type=AuditActorType.OFFICE,
        actor_id=actor.user_id,
        action="DTR_REJECTED",
        record_id=record.id,
        details={"remarks": remarks},
        request_id=request_id,
    )
    db.refresh(record)
    return record


def delete_record(
    db: Session,
    *,
    record_id: int,
    actor: Actor,
    request_id: str | None = None,
) -> None:
    record = _get_record(db, record_id)
    _ensure_owner(record, actor)
    if record.status == RecordStatus.APPROVED:
        raise conflict(lifecycle.RECORD_APPROVED, "Cannot delete an approved DTR")
    details = {"month": record.month, "year": record.year}
    db.delete(record)
    db.commit()
    audit_record_action(
        db,
        actor_type=AuditActorType.OWNER,
        actor_id=actor.user_id,
        action="DTR_DELETED",
        record_id=record_id,
        details=details,
        request_id=request_id,
    )


def list_user_records(db: Session, *, user_id: str) -> list[DtrRecord]:
    return list(
        db.scalars(
            select(DtrRecord)
            .where(DtrRecord.user_id == user_id)
            .order_by(DtrRecord.year.desc(), DtrRecord.month.desc())
        ).all()
    )


def list_reviewable_records(
    db: Session,
    *,
    status: RecordStatus | None = RecordStatus.SUBMITTED,
    month: int | None = None,
    year: int | None = None,
) -> list[DtrRecord]:
    statement = select(DtrRecord)
    if status is not None:
        statement = statement.where(DtrRecord.status == status)
    if month is not None:
        statement = statement.where(DtrRecord.month == month)
    if year is not None:
        statement = statement.where(DtrRecord.year == year)
    statement = statement.order_by(DtrRecord.submitted_at.desc(), DtrRecord.id.desc())
    return list(db.scalars(statement).all())


def get_user_stats(db: Session, *, user_id: str) -> DtrStatsRead:
    rows = db.execute(
        select(
            DtrRecord.status,
            func.count(DtrRecord.id),
            func.coalesce(func.sum(DtrRecord.total_monthly_minutes), 0),
        )
        .where(DtrRecord.user_id == user_id)
        .group_by(DtrRecord.status)
    ).all()

    counts = {status: 0 for status in RecordStatus}
    total_minutes = 0
    for status, count, minutes in rows:
        counts[RecordStatus(status)] = int(count)
        total_minutes += int(minutes or 0)

    return DtrStatsRead(
        total_dtrs=sum(counts.values()),
        total_minutes=total_minutes,
        total_duration=format_duration(total_minutes),
        draft=counts[RecordStatus.DRAFT],
        submitted=counts[RecordStatus.SUBMITTED],
        approved=counts[RecordStatus.APPROVED],
        rejected=counts[RecordStatus.REJECTED],
    )


def entry_to_read(record: DtrRecord, entry: DtrEntry) -> DtrEntryRead:
    shifts = shifts_from_rows(entry.shifts)
    sunday = is_sunday(record.year, record.month, entry.day)
    cap_minutes = get_settings().daily_cap_minutes
    history: list[dict[str, Any]] = list(entry.edit_history or [])
    return DtrEntryRead(
        day=entry.day,
        weekday=day_name[weekday(record.year, record.month, entry.day)],
        is_sunday=sunday,
        shifts=[ShiftPayload(in_time=shift.in_time, out_time=shift.out_time) for shift in shifts],
        **legacy_projection(shifts),
        total_minutes=entry.total_minutes,
        total_hours=entry.total_minutes,
        official_minutes=official_minutes(entry.total_minutes, cap_minutes),
        total_display=format_duration(entry.total_minutes),
        late_minutes=entry.late_minutes,
        undertime_minutes=entry.undertime_minutes,
        status=entry.status_override or entry.status,
        derived_status=entry.status,
        status_override=entry.status_override,
        confirmation_status=entry.confirmation_status,
        confirmed_by=entry.confirmed_by,
        confirmed_by_profile=entry.confirmed_by_profile,
        confirmed_at=entry.confirmed_at,
        excused_status=entry.excused_status,
        excused_reason=entry.excused_reason or "",
        edit_history=history,
        revision=entry.revision,
    )


def _summary_fields(record: DtrRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "month": record.month,
        "year": record.year,
        "department": record.department,
        "duty_hours": record.duty_hours,
        "status": record.status,
        "submitted_at": record.submitted_at,
        "checked_by": record.checked_by,
        "checked_at": record.checked_at,
        "remarks": record.remarks,
        "total_monthly_minutes": record.total_monthly_minutes,
        "total_monthly_duration": format_duration(record.total_monthly_minutes),
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def record_to_summary(record: DtrRecord) -> DtrRecordSummaryRead:
    return DtrRecordSummaryRead(**_summary_fields(record))


def record_to_read(record: DtrRecord) -> DtrRecordRead:
    return DtrRecordRead(
        **_summary_fields(record),
        entries=[entry_to_read(record, entry) for entry in record.entries],
    )


def period_summary_to_read(record: DtrRecord) -> PeriodSummaryRead:
    settings = get_settings()
    summary = summarize_period(
        record.entries,
        year=record.year,
        month=record.month,
        cap_minutes=settings.daily_cap_minutes,
        weekly_limit_hours=settings.weekly_limit_hours,
    )
    return PeriodSummaryRead(
        record_id=record.id,
        year=summary.year,
        month=summary.month,
        weeks=[
            WeekBucketRead(
                week_num=week.week_num,
                minutes=week.minutes,
                hours=week.hours,
                days=week.days,
                exceeds=week.exceeds,
            )
            for week in summary.weeks
        ],
        has_violations=summary.has_violations,
        raw_minutes=summary.raw_minutes,
        official_minutes=summary.official_minutes,
        confirmed_official_minutes=summary.confirmed_official_minutes,
        raw_duration=summary.raw_duration,
        official_duration=summary.official_duration,
        total_monthly_minutes=record.total_monthly_minutes,
        total_monthly_duration=format_duration(record.total_monthly_minutes),
        days_worked=summary.days_worked,
        confirmed_days=summary.confirmed_days,
        unconfirmed_days=summary.unconfirmed_days,
        excused_days=summary.excused_days,
        has_exceeded_daily_cap=summary.has_exceeded_daily_cap,
        flags=summary.flags,
    )

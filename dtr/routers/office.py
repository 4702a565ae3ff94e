from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from dtr.db import get_db
from dtr.models import RecordStatus
from dtr.schemas import (
    ConfirmAllResponse,
    DtrApproveRequest,
    DtrEntryActionRequest,
    DtrRecordActionRequest,
    DtrRecordRead,
    DtrRecordSummaryRead,
    DtrRejectRequest,
    MarkDayExcusedRequest,
    OfficeGetUserDtrRequest,
    OfficeUpdateEntryRequest,
)
from dtr.security import Actor, require_office
from dtr.services import records

router = APIRouter(tags=["dtr-office"])


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.get("/api/dtr/office/submitted", response_model=list[DtrRecordSummaryRead])
def list_submitted_dtrs(
    status: RecordStatus | None = Query(default=RecordStatus.SUBMITTED),
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None, ge=2020, le=2100),
    _actor: Actor = Depends(require_office),
    db: Session = Depends(get_db),
) -> list[DtrRecordSummaryRead]:
    rows = records.list_reviewable_records(db, status=status, month=month, year=year)
    return [records.record_to_summary(record) for record in rows]


@router.post("/api/dtr/office/approve", response_model=DtrRecordRead)
def approve_dtr(
    payload: DtrApproveRequest,
    request: Request,
    actor: Actor = Depends(require_office),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.approve_record(
        db,
        record_id=payload.record_id,
        actor=actor,
        remarks=payload.remarks,
        request_id=_request_id(request),
    )
    return records.record_to_read(record)


@router.post("/api/dtr/office/reject", response_model=DtrRecordRead)
def reject_dtr(
    payload: DtrRejectRequest,
    request: Request,
    actor: Actor = Depends(require_office),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.reject_record(
        db,
        record_id=payload.record_id,
        actor=actor,
        remarks=payload.remarks,
        request_id=_request_id(request),
    )
    return records.record_to_read(record)


@router.post("/api/dtr/office/confirm-entry", response_model=DtrRecordRead)
def confirm_dtr_entry(
    payload: DtrEntryActionRequest,
    request: Request,
    actor: Actor = Depends(require_office),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.confirm_entry(
        db,
        record_id=payload.record_id,
        day=payload.day,
        actor=actor,
        request_id=_request_id(request),
    )
    return records.record_to_read(record)


@router.post("/api/dtr/office/unconfirm-entry", response_model=DtrRecordRead)
def unconfirm_dtr_entry(
    payload: DtrEntryActionRequest,
    request: Request,
    actor: Actor = Depends(require_office),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.unconfirm_entry(
        db,
        record_id=payload.record_id,
        day=payload.day,
        actor=actor,
        request_id=_request_id(request),
    )
    return records.record_to_read(record)


@router.post("/api/dtr/office/confirm-all-entries", response_model=ConfirmAllResponse)
def confirm_all_dtr_entries(
    payload: DtrRecordActionRequest,
    request: Request,
    actor: Actor = Depends(require_office),
    db: Session = Depends(get_db),
) -> ConfirmAllResponse:
    record, confirmed_days = records.confirm_all_entries(
        db,
        record_id=payload.record_id,
        actor=actor,
        request_id=_request_id(request),
    )
    return ConfirmAllResponse(confirmed_days=confirmed_days, dtr=records.record_to_read(record))


@router.post("/api/dtr/office/get-user-dtr", response_model=DtrRecordRead)
def get_user_dtr(
    payload: OfficeGetUserDtrRequest,
    _actor: Actor = Depends(require_office),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.get_user_record(db, user_id=payload.user_id, month=payload.month, year=payload.year)
    return records.record_to_read(record)


@router.put("/api/dtr/office/update-user-entry", response_model=DtrRecordRead)
def update_user_entry(
    payload: OfficeUpdateEntryRequest,
    request: Request,
    actor: Actor = Depends(require_office),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.update_entry_by_office(
        db,
        record_id=payload.record_id,
        day=payload.day,
        payload=payload.entry,
        actor=actor,
        request_id=_request_id(request),
    )
    return records.record_to_read(record)


@router.post("/api/dtr/office/mark-day-excused", response_model=DtrRecordRead)
def mark_day_excused(
    payload: MarkDayExcusedRequest,
    request: Request,
    actor: Actor = Depends(require_office),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.mark_day_excused(
        db,
        record_id=payload.record_id,
        day=payload.day,
        excused_status=payload.excused_status,
        reason=payload.excused_reason or "",
        actor=actor,
        request_id=_request_id(request),
    )
    return records.record_to_read(record)

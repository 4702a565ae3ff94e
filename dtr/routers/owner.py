from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from dtr.db import get_db
from dtr.schemas import (
    DeleteResponse,
    DtrGetOrCreateRequest,
    DtrRecordActionRequest,
    DtrRecordRead,
    DtrRecordSummaryRead,
    DtrStatsRead,
    DtrUpdateEntryRequest,
    DtrUpdateRequest,
    PeriodSummaryRead,
)
from dtr.security import Actor, require_actor
from dtr.services import records
from dtr.services.exports import build_dtr_xlsx_bytes

router = APIRouter(tags=["dtr"])
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.post("/api/dtr/get-or-create", response_model=DtrRecordRead)
def get_or_create_dtr(
    payload: DtrGetOrCreateRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.get_or_create_record(db, user_id=actor.user_id, month=payload.month, year=payload.year)
    return records.record_to_read(record)


@router.get("/api/dtr/my-dtrs", response_model=list[DtrRecordSummaryRead])
def list_my_dtrs(
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[DtrRecordSummaryRead]:
    return [records.record_to_summary(record) for record in records.list_user_records(db, user_id=actor.user_id)]


@router.get("/api/dtr/stats", response_model=DtrStatsRead)
def get_my_stats(
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> DtrStatsRead:
    return records.get_user_stats(db, user_id=actor.user_id)


@router.put("/api/dtr/update", response_model=DtrRecordRead)
def update_dtr(
    payload: DtrUpdateRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.update_record_header(
        db,
        record_id=payload.record_id,
        actor=actor,
        department=payload.department,
        duty_hours=payload.duty_hours,
    )
    return records.record_to_read(record)


@router.put("/api/dtr/update-entry", response_model=DtrRecordRead)
def update_dtr_entry(
    payload: DtrUpdateEntryRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.update_entry(
        db,
        record_id=payload.record_id,
        day=payload.day,
        payload=payload.entry,
        actor=actor,
    )
    return records.record_to_read(record)


@router.post("/api/dtr/submit", response_model=DtrRecordRead)
def submit_dtr(
    payload: DtrRecordActionRequest,
    request: Request,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    record = records.submit_record(
        db,
        record_id=payload.record_id,
        actor=actor,
        request_id=_request_id(request),
    )
    return records.record_to_read(record)


@router.get("/api/dtr/{record_id}", response_model=DtrRecordRead)
def get_dtr(
    record_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> DtrRecordRead:
    return records.record_to_read(records.get_record_for_actor(db, record_id=record_id, actor=actor))


@router.get("/api/dtr/{record_id}/summary", response_model=PeriodSummaryRead)
def get_dtr_summary(
    record_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> PeriodSummaryRead:
    record = records.get_record_for_actor(db, record_id=record_id, actor=actor)
    return records.period_summary_to_read(record)


@router.get("/api/dtr/{record_id}/export.xlsx")
def export_dtr(
    record_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> Response:
    record = records.get_record_for_actor(db, record_id=record_id, actor=actor)
    return Response(
        content=build_dtr_xlsx_bytes(record),
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="dtr-{record.user_id}-{record.year}-{record.month:02d}.xlsx"',
        },
    )


@router.delete("/api/dtr/{record_id}", response_model=DeleteResponse)
def delete_dtr(
    record_id: int,
    request: Request,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    records.delete_record(db, record_id=record_id, actor=actor, request_id=_request_id(request))
    return DeleteResponse(ok=True)

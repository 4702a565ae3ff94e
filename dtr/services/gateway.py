from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

import httpx
from sqlalchemy.orm import Session

from dtr.errors import ApiError
from dtr.schemas import DtrEntryRead, DtrRecordRead, EntryPayload
from dtr.security import Actor
from dtr.services import records
from dtr.services.autosave import SaveFailed, StaleRevisionError

logger = logging.getLogger("dtr.autosave")


class RecordGateway(Protocol):
    async def get_or_create(self, month: int, year: int) -> DtrRecordRead: ...

    async def update_entry(self, record_id: int, day: int, payload: EntryPayload) -> DtrEntryRead: ...


def _entry_from_record(record: DtrRecordRead, day: int) -> DtrEntryRead:
    for entry in record.entries:
        if entry.day == day:
            return entry
    raise SaveFailed("NOT_FOUND", f"Day {day} missing from saved DTR")


def _save_error(code: str, message: str) -> SaveFailed:
    if code == records.STALE_REVISION:
        return StaleRevisionError(message)
    return SaveFailed(code, message)


class LocalRecordGateway:
    """Runs the persistence functions in-process, one session per call."""

    def __init__(self, actor: Actor, session_factory: Callable[[], Session] | None = None):
        if session_factory is None:
            from dtr.db import SessionLocal

            session_factory = SessionLocal
        self._actor = actor
        self._session_factory = session_factory

    def _get_or_create_sync(self, month: int, year: int) -> DtrRecordRead:
        with self._session_factory() as db:
            record = records.get_or_create_record(db, user_id=self._actor.user_id, month=month, year=year)
            return records.record_to_read(record)

    def _update_entry_sync(self, record_id: int, day: int, payload: EntryPayload) -> DtrEntryRead:
        with self._session_factory() as db:
            try:
                record = records.update_entry(
                    db,
                    record_id=record_id,
                    day=day,
                    payload=payload,
                    actor=self._actor,
                )
            except ApiError as exc:
                db.rollback()
                raise _save_error(exc.code, exc.message) from exc
            entry = record.entry_for_day(day)
            if entry is None:
                raise SaveFailed("NOT_FOUND", f"Day {day} missing from saved DTR")
            return records.entry_to_read(record, entry)

    async def get_or_create(self, month: int, year: int) -> DtrRecordRead:
        return await asyncio.to_thread(self._get_or_create_sync, month, year)

    async def update_entry(self, record_id: int, day: int, payload: EntryPayload) -> DtrEntryRead:
        return await asyncio.to_thread(self._update_entry_sync, record_id, day, payload)


class HttpRecordGateway:
    """Talks to ``/api/dtr`` over HTTP with the owner's bearer token."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=body, headers=self._headers)
        except httpx.HTTPError as exc:
            logger.warning("gateway_request_failed", extra={"path": path, "error": str(exc)})
            raise SaveFailed("NETWORK_ERROR", "Failed to save changes") from exc

        if response.is_error:
            code = "HTTP_ERROR"
            message = f"Save failed with status {response.status_code}"
            try:
                body = response.json()
            except ValueError:
                body = None
            error = body.get("error") if isinstance(body, dict) else None
            if isinstance(error, dict):
                code = str(error.get("code") or code)
                message = str(error.get("message") or message)
            raise _save_error(code, message)
        return response.json()

    async def get_or_create(self, month: int, year: int) -> DtrRecordRead:
        data = await self._request("POST", "/api/dtr/get-or-create", {"month": month, "year": year})
        return DtrRecordRead.model_validate(data)

    async def update_entry(self, record_id: int, day: int, payload: EntryPayload) -> DtrEntryRead:
        body = {
            "record_id": record_id,
            "day": day,
            "entry": payload.model_dump(mode="json", by_alias=True, exclude_none=True),
        }
        data = await self._request("PUT", "/api/dtr/update-entry", body)
        return _entry_from_record(DtrRecordRead.model_validate(data), day)

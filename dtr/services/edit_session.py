from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from dtr.models import RecordStatus
from dtr.schemas import DtrEntryRead, DtrRecordRead
from dtr.services.autosave import AutoSaveScheduler, ChangeQueue, LocalEntry, RetryPolicy
from dtr.services.entry_calc import calculate_day, is_sunday
from dtr.services.gateway import RecordGateway
from dtr.services.lifecycle import local_today, owner_edit_block_reason
from dtr.services.period_calc import PeriodSummary, summarize_period
from dtr.services.shift_validator import (
    ShiftEditResult,
    ShiftField,
    SlotWindowTable,
    add_shift,
    configured_slot_windows,
    remove_shift,
    validate_shift_edit,
)
from dtr.services.shifts import Shift
from dtr.services.time_normalizer import normalize_time
from dtr.settings import get_settings

logger = logging.getLogger("dtr.autosave")


@dataclass(frozen=True)
class ConflictMessage:
    day: int
    message: str
    expires_at: float


class EditSession:
    """Owner-side editing state for one monthly record.

    Edits are applied to the local copy first and written back in the
    background by the auto-save scheduler. Edits the lifecycle does not allow
    are ignored without a message; edits the validator rejects leave the
    local copy untouched and raise a short-lived conflict message.
    """

    def __init__(
        self,
        record: DtrRecordRead,
        gateway: RecordGateway,
        *,
        debounce_seconds: float | None = None,
        conflict_message_seconds: float | None = None,
        retry_policy: RetryPolicy | None = None,
        windows: SlotWindowTable | None = None,
        today: Callable[[], date] = local_today,
        clock: Callable[[], float] = time.monotonic,
        on_warning: Callable[[int, str], None] | None = None,
    ) -> None:
        settings = get_settings()
        self.record_id = record.id
        self.year = record.year
        self.month = record.month
        self.status = record.status
        self.entries: dict[int, LocalEntry] = {entry.day: LocalEntry.from_read(entry) for entry in record.entries}
        self.queue = ChangeQueue()
        self.warnings: dict[int, str] = {}

        self._windows = windows if windows is not None else configured_slot_windows()
        self._today = today
        self._clock = clock
        self._conflict_seconds = (
            conflict_message_seconds if conflict_message_seconds is not None else settings.conflict_message_seconds
        )
        self._conflict: ConflictMessage | None = None
        self._external_warning = on_warning
        self._allow_same_day_confirmed_edits = settings.allow_same_day_confirmed_edits
        self._excused_credit_minutes = settings.excused_credit_minutes
        self._cap_minutes = settings.daily_cap_minutes

        self.scheduler = AutoSaveScheduler(
            self.queue,
            gateway,
            record_id=record.id,
            year=record.year,
            month=record.month,
            entry_lookup=self.entries.get,
            is_locked=lambda: self.is_locked,
            on_saved=self._on_saved,
            on_warning=self._on_warning,
            debounce_seconds=(
                debounce_seconds if debounce_seconds is not None else settings.autosave_debounce_seconds
            ),
            retry_policy=retry_policy,
            excused_credit_minutes=self._excused_credit_minutes,
            cap_minutes=self._cap_minutes,
        )

    @classmethod
    async def open(cls, gateway: RecordGateway, *, month: int, year: int, **kwargs) -> EditSession:
        record = await gateway.get_or_create(month, year)
        return cls(record, gateway, **kwargs)

    @property
    def is_locked(self) -> bool:
        return self.status == RecordStatus.APPROVED

    @property
    def conflict_message(self) -> ConflictMessage | None:
        if self._conflict is not None and self._clock() >= self._conflict.expires_at:
            self._conflict = None
        return self._conflict

    def _block_reason(self, entry: LocalEntry) -> str | None:
        return owner_edit_block_reason(
            record_status=self.status,
            year=self.year,
            month=self.month,
            day=entry.day,
            confirmed=entry.is_confirmed,
            today=self._today(),
            allow_same_day_confirmed_edits=self._allow_same_day_confirmed_edits,
        )

    def _editable_entry(self, day: int) -> LocalEntry | None:
        entry = self.entries.get(day)
        if entry is None:
            return None
        reason = self._block_reason(entry)
        if reason is not None:
            logger.debug(
                "edit_ignored",
                extra={"record_id": self.record_id, "day": day, "reason": reason},
            )
            return None
        return entry

    def _apply_local(self, entry: LocalEntry, shifts: list[Shift]) -> None:
        computed = calculate_day(
            shifts,
            sunday=is_sunday(self.year, self.month, entry.day),
            excused=entry.is_excused,
            status_override=entry.status_override,
            excused_credit_minutes=self._excused_credit_minutes,
            cap_minutes=self._cap_minutes,
        )
        entry.shifts = list(shifts)
        entry.total_minutes = computed.total_minutes
        entry.status = computed.status
        # The server unconfirms any owner save; mirror it locally.
        entry.confirmation_status = "unconfirmed"

    def _enqueue(self, entry: LocalEntry) -> None:
        self.queue.merge(entry.day, {"shifts": list(entry.shifts)})
        self.scheduler.schedule()

    def _show_conflict(self, day: int, message: str) -> None:
        self._conflict = ConflictMessage(day=day, message=message, expires_at=self._clock() + self._conflict_seconds)

    def handle_shift_edit(self, day: int, index: int, field: ShiftField, raw_value: str) -> ShiftEditResult | None:
        """Apply one typed value; ``None`` means the day cannot be edited."""
        entry = self._editable_entry(day)
        if entry is None:
            return None

        result = validate_shift_edit(entry.shifts, index, field, normalize_time(raw_value), windows=self._windows)
        if not result.accepted:
            self._show_conflict(day, result.reason or "Invalid shift")
            return result

        self._apply_local(entry, result.shifts)
        self._enqueue(entry)
        return result

    def add_shift(self, day: int) -> bool:
        entry = self._editable_entry(day)
        if entry is None:
            return False
        entry.shifts = add_shift(entry.shifts)
        return True

    def remove_shift(self, day: int, index: int) -> bool:
        entry = self._editable_entry(day)
        if entry is None:
            return False
        remaining = remove_shift(entry.shifts, index)
        if len(remaining) == len(entry.shifts):
            return False
        self._apply_local(entry, remaining)
        self._enqueue(entry)
        return True

    def _on_saved(self, day: int, saved: DtrEntryRead) -> None:
        self.warnings.pop(day, None)
        current = self.entries.get(day)
        if current is not None and day in self.queue:
            # A newer local edit is waiting; keep its shifts.
            current.revision = max(current.revision, saved.revision)
            return
        self.entries[day] = LocalEntry.from_read(saved)

    def _on_warning(self, day: int, message: str) -> None:
        self.warnings[day] = message
        if self._external_warning is not None:
            self._external_warning(day, message)

    def apply_record(self, record: DtrRecordRead) -> None:
        """Take record-level changes (status, office confirmations) from the server."""
        self.status = record.status
        for entry in record.entries:
            if entry.day in self.queue:
                continue
            self.entries[entry.day] = LocalEntry.from_read(entry)

    def summary(self) -> PeriodSummary:
        settings = get_settings()
        return summarize_period(
            list(self.entries.values()),
            year=self.year,
            month=self.month,
            cap_minutes=settings.daily_cap_minutes,
            weekly_limit_hours=settings.weekly_limit_hours,
        )

    async def flush(self) -> None:
        await self.scheduler.flush_now()
        await self.scheduler.wait_idle()

    async def aclose(self) -> None:
        """Write whatever is still waiting on the debounce timer, then close."""
        await self.flush()
        self.close()

    def close(self) -> None:
        self.scheduler.close()
        self.queue.discard_all()

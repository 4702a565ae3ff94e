from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from dtr.schemas import DtrEntryRead, EntryPayload, ShiftPayload
from dtr.services.entry_calc import calculate_day, is_sunday
from dtr.services.shifts import Shift

if TYPE_CHECKING:
    from dtr.services.gateway import RecordGateway

logger = logging.getLogger("dtr.autosave")

DEFAULT_DEBOUNCE_SECONDS = 1.0


class SaveFailed(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class StaleRevisionError(SaveFailed):
    def __init__(self, message: str = "A newer save for this day already exists"):
        super().__init__("STALE_REVISION", message)


class RetryPolicy(Protocol):
    def next_delay(self, attempt: int, error: Exception) -> float | None:
        """Seconds to wait before retry number ``attempt + 1``, or ``None`` to give up."""


class NoRetry:
    def next_delay(self, attempt: int, error: Exception) -> float | None:
        return None


@dataclass(frozen=True)
class ExponentialBackoffRetry:
    max_attempts: int = 3
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 8.0

    def next_delay(self, attempt: int, error: Exception) -> float | None:
        if attempt + 1 >= self.max_attempts:
            return None
        return min(self.max_delay, self.base_delay * (self.factor**attempt))


@dataclass
class LocalEntry:
    """Client-side state of one day as the edit session shows it."""

    day: int
    shifts: list[Shift]
    status: str = ""
    status_override: str | None = None
    total_minutes: int = 0
    confirmation_status: str = "unconfirmed"
    excused_status: str = "none"
    revision: int = 0

    @property
    def is_confirmed(self) -> bool:
        return self.confirmation_status == "confirmed"

    @property
    def is_excused(self) -> bool:
        return self.excused_status == "excused"

    @classmethod
    def from_read(cls, entry: DtrEntryRead) -> LocalEntry:
        return cls(
            day=entry.day,
            shifts=[item.to_shift() for item in entry.shifts],
            status=entry.status,
            status_override=entry.status_override,
            total_minutes=entry.total_minutes,
            confirmation_status=entry.confirmation_status.value,
            excused_status=entry.excused_status.value,
            revision=entry.revision,
        )


class ChangeQueue:
    """Pending, not yet written changes keyed by day.

    A second change to a day that is still pending merges into the first, so
    a burst of edits to one day produces one write.
    """

    def __init__(self) -> None:
        self._pending: dict[int, dict[str, Any]] = {}

    def merge(self, day: int, patch: Mapping[str, Any]) -> None:
        self._pending.setdefault(day, {}).update(patch)

    def pop(self, day: int) -> dict[str, Any] | None:
        return self._pending.pop(day, None)

    def days(self) -> list[int]:
        return sorted(self._pending)

    def snapshot(self) -> dict[int, dict[str, Any]]:
        return {day: dict(patch) for day, patch in self._pending.items()}

    def discard_all(self) -> None:
        self._pending.clear()

    def __contains__(self, day: object) -> bool:
        return day in self._pending

    def __len__(self) -> int:
        return len(self._pending)


def build_entry_payload(
    entry: LocalEntry,
    patch: Mapping[str, Any],
    *,
    year: int,
    month: int,
    revision: int,
    excused_credit_minutes: int,
    cap_minutes: int,
) -> EntryPayload:
    shifts: list[Shift] = list(patch.get("shifts", entry.shifts))
    computed = calculate_day(
        shifts,
        sunday=is_sunday(year, month, entry.day),
        excused=entry.is_excused,
        status_override=entry.status_override,
        excused_credit_minutes=excused_credit_minutes,
        cap_minutes=cap_minutes,
    )
    return EntryPayload(
        shifts=[ShiftPayload(in_time=shift.in_time, out_time=shift.out_time) for shift in shifts],
        status=computed.status,
        total_hours=computed.total_minutes,
        revision=revision,
    )


SavedCallback = Callable[[int, DtrEntryRead], None]
WarningCallback = Callable[[int, str], None]


class AutoSaveScheduler:
    def __init__(
        self,
        queue: ChangeQueue,
        gateway: RecordGateway,
        *,
        record_id: int,
        year: int,
        month: int,
        entry_lookup: Callable[[int], LocalEntry | None],
        is_locked: Callable[[], bool],
        on_saved: SavedCallback,
        on_warning: WarningCallback,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        retry_policy: RetryPolicy | None = None,
        excused_credit_minutes: int = 300,
        cap_minutes: int = 300,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._queue = queue
        self._gateway = gateway
        self._record_id = record_id
        self._year = year
        self._month = month
        self._entry_lookup = entry_lookup
        self._is_locked = is_locked
        self._on_saved = on_saved
        self._on_warning = on_warning
        self._debounce_seconds = debounce_seconds
        self._retry_policy = retry_policy or NoRetry()
        self._excused_credit_minutes = excused_credit_minutes
        self._cap_minutes = cap_minutes
        self._sleep = sleep

        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._sent_revisions: dict[int, int] = {}
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def schedule(self) -> None:
        """(Re)start the debounce timer; the latest call wins."""
        if self._closed:
            return
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._debounce_seconds, self._fire)

    def _fire(self) -> None:
        self._timer = None
        self._track(asyncio.ensure_future(self._flush()))

    def _track(self, task: asyncio.Task[None]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush_now(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        await self._flush()

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        # In-flight writes are left to finish.
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _next_revision(self, entry: LocalEntry) -> int:
        revision = max(entry.revision, self._sent_revisions.get(entry.day, 0)) + 1
        self._sent_revisions[entry.day] = revision
        return revision

    async def _flush(self) -> None:
        if self._is_locked() or not len(self._queue):
            return

        writes = []
        for day in self._queue.days():
            entry = self._entry_lookup(day)
            patch = self._queue.pop(day)
            if entry is None or patch is None:
                continue
            revision = self._next_revision(entry)
            payload = build_entry_payload(
                entry,
                patch,
                year=self._year,
                month=self._month,
                revision=revision,
                excused_credit_minutes=self._excused_credit_minutes,
                cap_minutes=self._cap_minutes,
            )
            writes.append(self._write(day, payload, revision))

        logger.info(
            "autosave_flush",
            extra={"record_id": self._record_id, "days": len(writes)},
        )
        await asyncio.gather(*writes)

    async def _write(self, day: int, payload: EntryPayload, revision: int) -> None:
        attempt = 0
        while True:
            try:
                saved = await self._gateway.update_entry(self._record_id, day, payload)
            except StaleRevisionError:
                logger.info(
                    "autosave_stale_write_rejected",
                    extra={"record_id": self._record_id, "day": day, "revision": revision},
                )
                return
            except Exception as exc:
                if revision < self._sent_revisions.get(day, 0):
                    logger.info(
                        "autosave_stale_failure_ignored",
                        extra={
                            "record_id": self._record_id,
                            "day": day,
                            "revision": revision,
                            "latest_revision": self._sent_revisions.get(day),
                        },
                    )
                    return
                delay = self._retry_policy.next_delay(attempt, exc)
                if delay is None:
                    message = exc.message if isinstance(exc, SaveFailed) else "Failed to save changes"
                    logger.warning(
                        "autosave_write_failed",
                        exc_info=not isinstance(exc, SaveFailed),
                        extra={
                            "record_id": self._record_id,
                            "day": day,
                            "revision": revision,
                            "attempts": attempt + 1,
                            "error": str(exc),
                        },
                    )
                    self._on_warning(day, message)
                    return
                attempt += 1
                await self._sleep(delay)
                continue
            break

        if revision < self._sent_revisions.get(day, 0):
            logger.info(
                "autosave_stale_response_ignored",
                extra={
                    "record_id": self._record_id,
                    "day": day,
                    "revision": revision,
                    "latest_revision": self._sent_revisions.get(day),
                },
            )
            return
        self._on_saved(day, saved)

import unittest

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dtr.db import Base
from dtr.errors import ApiError
from dtr.models import ActorRole, AuditLog, ConfirmationStatus, ExcusedStatus, RecordStatus
from dtr.schemas import EntryPayload, OfficeEntryPayload, ShiftPayload
from dtr.security import Actor
from dtr.services import records
from dtr.services.autosave import StaleRevisionError
from dtr.services.gateway import LocalRecordGateway

OWNER = Actor(user_id="scholar-1", role=ActorRole.SCHOLAR, name="Ana Cruz")
OTHER = Actor(user_id="scholar-2", role=ActorRole.SCHOLAR)
OFFICE = Actor(user_id="office-1", role=ActorRole.OFFICE, name="Office A", profile_name="Library")


def _make_session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def _payload(*pairs: tuple[str, str], revision: int | None = None) -> EntryPayload:
    return EntryPayload(
        shifts=[ShiftPayload(in_time=in_time, out_time=out_time) for in_time, out_time in pairs],
        revision=revision,
    )


class _RecordsTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = _make_session_factory()
        self.db = self.session_factory()
        self.record = records.get_or_create_record(self.db, user_id=OWNER.user_id, month=3, year=2026)

    def tearDown(self) -> None:
        self.db.close()

    def _entry(self, day: int):
        return self.record.entry_for_day(day)

    def _update(self, day: int, *pairs: tuple[str, str], revision: int | None = None):
        return records.update_entry(
            self.db,
            record_id=self.record.id,
            day=day,
            payload=_payload(*pairs, revision=revision),
            actor=OWNER,
        )


class GetOrCreateTests(_RecordsTestCase):
    def test_new_record_has_one_entry_per_day(self) -> None:
        self.assertEqual(self.record.status, RecordStatus.DRAFT)
        self.assertEqual([entry.day for entry in self.record.entries], list(range(1, 32)))
        self.assertEqual(self.record.total_monthly_minutes, 0)

    def test_second_call_returns_same_record(self) -> None:
        again = records.get_or_create_record(self.db, user_id=OWNER.user_id, month=3, year=2026)
        self.assertEqual(again.id, self.record.id)

    def test_february_has_its_own_length(self) -> None:
        february = records.get_or_create_record(self.db, user_id=OWNER.user_id, month=2, year=2026)
        self.assertEqual(len(february.entries), 28)

    def test_user_record_lookup(self) -> None:
        found = records.get_user_record(self.db, user_id=OWNER.user_id, month=3, year=2026)
        self.assertEqual(found.id, self.record.id)

        with self.assertRaises(ApiError) as ctx:
            records.get_user_record(self.db, user_id=OWNER.user_id, month=4, year=2026)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_other_owner_is_forbidden(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            records.get_record_for_actor(self.db, record_id=self.record.id, actor=OTHER)
        self.assertEqual(ctx.exception.status_code, 403)

        office_view = records.get_record_for_actor(self.db, record_id=self.record.id, actor=OFFICE)
        self.assertEqual(office_view.id, self.record.id)


class UpdateEntryTests(_RecordsTestCase):
    def test_totals_are_recomputed_and_capped(self) -> None:
        record = self._update(10, ("07:00", "12:00"), ("13:00", "18:00"))

        entry = record.entry_for_day(10)
        self.assertEqual(entry.total_minutes, 600)
        self.assertEqual(entry.status, "Unconfirmed")
        self.assertEqual(record.total_monthly_minutes, 300)

        read = records.entry_to_read(record, entry)
        self.assertEqual(read.official_minutes, 300)
        self.assertEqual(read.in2, "13:00")
        self.assertEqual(read.weekday, "Tuesday")

    def test_client_total_is_ignored(self) -> None:
        payload = _payload(("07:00", "09:00"))
        payload.total_hours = 999

        record = records.update_entry(self.db, record_id=self.record.id, day=10, payload=payload, actor=OWNER)

        self.assertEqual(record.entry_for_day(10).total_minutes, 120)

    def test_replaying_a_payload_is_idempotent(self) -> None:
        first = self._update(10, ("07:00", "11:00"), ("13:00", ""), revision=1)
        snapshot = (list(first.entry_for_day(10).shifts), first.total_monthly_minutes)

        second = self._update(10, ("07:00", "11:00"), ("13:00", ""), revision=1)

        entry = second.entry_for_day(10)
        self.assertEqual((list(entry.shifts), second.total_monthly_minutes), snapshot)
        self.assertEqual(entry.revision, 1)
        self.assertEqual(entry.shifts, [{"in": "07:00", "out": "11:00"}, {"in": "13:00", "out": ""}])

    def test_older_revision_is_refused(self) -> None:
        self._update(10, ("07:00", "11:00"), revision=2)

        with self.assertRaises(ApiError) as ctx:
            self._update(10, ("07:00", ""), revision=1)

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, records.STALE_REVISION)
        self.db.rollback()
        self.assertEqual(self._entry(10).shifts, [{"in": "07:00", "out": "11:00"}])

    def test_missing_revision_keeps_stored_revision(self) -> None:
        self._update(10, ("07:00", "11:00"), revision=3)
        record = self._update(10, ("07:00", "10:00"))
        self.assertEqual(record.entry_for_day(10).revision, 3)

    def test_overlapping_shifts_are_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._update(5, ("07:00", "11:00"), ("08:00", "10:00"))

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(ctx.exception.code, records.INVALID_SHIFTS)
        self.assertIn("overlaps", ctx.exception.message)

    def test_loose_times_are_normalized(self) -> None:
        record = self._update(10, ("7", "11:5"))
        self.assertEqual(record.entry_for_day(10).shifts, [{"in": "07:00", "out": "11:05"}])

    def test_legacy_fields_are_accepted(self) -> None:
        payload = EntryPayload(in1="07:00", out1="11:00", in2="13:00", out2="15:00")

        record = records.update_entry(self.db, record_id=self.record.id, day=10, payload=payload, actor=OWNER)

        self.assertEqual(record.entry_for_day(10).total_minutes, 360)

    def test_sunday_is_refused(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._update(8, ("07:00", "11:00"))
        self.assertEqual(ctx.exception.code, "SUNDAY")

    def test_confirmed_entry_is_locked_for_owner(self) -> None:
        self._update(12, ("07:00", "11:00"))
        records.confirm_entry(self.db, record_id=self.record.id, day=12, actor=OFFICE)

        with self.assertRaises(ApiError) as ctx:
            self._update(12, ("07:00", "12:00"))

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertIn(ctx.exception.code, ("DATE_RESTRICTED", "ENTRY_CONFIRMED"))

    def test_other_owner_cannot_update(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            records.update_entry(
                self.db,
                record_id=self.record.id,
                day=10,
                payload=_payload(("07:00", "11:00")),
                actor=OTHER,
            )
        self.assertEqual(ctx.exception.status_code, 403)

    def test_missing_record(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            records.update_entry(self.db, record_id=999, day=10, payload=_payload(), actor=OWNER)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_header_update(self) -> None:
        record = records.update_record_header(
            self.db,
            record_id=self.record.id,
            actor=OWNER,
            department=" Library ",
            duty_hours="",
        )
        self.assertEqual(record.department, "Library")
        self.assertIsNone(record.duty_hours)


class OfficeActionTests(_RecordsTestCase):
    def _audit_actions(self) -> list[str]:
        return list(self.db.scalars(select(AuditLog.action).order_by(AuditLog.id)).all())

    def test_office_edit_records_history_and_keeps_confirmation(self) -> None:
        records.confirm_entry(self.db, record_id=self.record.id, day=10, actor=OFFICE)

        record = records.update_entry_by_office(
            self.db,
            record_id=self.record.id,
            day=10,
            payload=OfficeEntryPayload(shifts=[ShiftPayload(in_time="08:00", out_time="12:00")]),
            actor=OFFICE,
            request_id="req-1",
        )

        entry = record.entry_for_day(10)
        self.assertEqual(entry.total_minutes, 240)
        self.assertEqual(entry.confirmation_status, ConfirmationStatus.CONFIRMED)
        self.assertEqual(len(entry.edit_history), 1)
        history = entry.edit_history[0]
        self.assertEqual(history["edited_by"], "office-1")
        self.assertEqual(history["edited_by_name"], "Office A")
        self.assertEqual(
            history["changes"],
            [
                {"field": "in1", "old_value": "", "new_value": "08:00"},
                {"field": "out1", "old_value": "", "new_value": "12:00"},
            ],
        )
        self.assertEqual(self._audit_actions(), ["DTR_ENTRY_CONFIRMED", "DTR_ENTRY_OFFICE_EDIT"])

        read = records.entry_to_read(record, entry)
        self.assertEqual(read.edit_history[0].changes[0].field, "in1")

    def test_status_override_without_times(self) -> None:
        self._update(10, ("07:00", "11:00"))

        record = records.update_entry_by_office(
            self.db,
            record_id=self.record.id,
            day=10,
            payload=OfficeEntryPayload(status_override="Late"),
            actor=OFFICE,
        )

        entry = record.entry_for_day(10)
        self.assertEqual(entry.shifts, [{"in": "07:00", "out": "11:00"}])
        self.assertEqual(entry.status_override, "Late")
        self.assertEqual(records.entry_to_read(record, entry).status, "Late")
        self.assertEqual(
            entry.edit_history[-1]["changes"],
            [{"field": "status", "old_value": "", "new_value": "Late"}],
        )

    def test_unchanged_office_save_adds_no_history(self) -> None:
        self._update(10, ("07:00", "11:00"))

        record = records.update_entry_by_office(
            self.db,
            record_id=self.record.id,
            day=10,
            payload=OfficeEntryPayload(shifts=[ShiftPayload(in_time="07:00", out_time="11:00")]),
            actor=OFFICE,
        )

        self.assertEqual(record.entry_for_day(10).edit_history, [])

    def test_office_cannot_edit_sunday(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            records.update_entry_by_office(
                self.db,
                record_id=self.record.id,
                day=15,
                payload=OfficeEntryPayload(status_override="Present"),
                actor=OFFICE,
            )
        self.assertEqual(ctx.exception.code, "SUNDAY")

    def test_excused_day_is_credited_and_confirmed(self) -> None:
        self._update(10, ("07:00", "08:00"))

        record = records.mark_day_excused(
            self.db,
            record_id=self.record.id,
            day=10,
            excused_status=ExcusedStatus.EXCUSED,
            reason="University event",
            actor=OFFICE,
        )

        entry = record.entry_for_day(10)
        self.assertEqual(entry.total_minutes, 300)
        self.assertEqual(entry.status, "Excused")
        self.assertTrue(entry.is_confirmed)
        self.assertEqual(entry.excused_reason, "University event")
        self.assertEqual(record.total_monthly_minutes, 300)

        record = records.mark_day_excused(
            self.db,
            record_id=self.record.id,
            day=10,
            excused_status=ExcusedStatus.NONE,
            reason="",
            actor=OFFICE,
        )

        entry = record.entry_for_day(10)
        self.assertEqual(entry.total_minutes, 60)
        self.assertEqual(entry.excused_reason, "")
        self.assertTrue(entry.is_confirmed)
        self.assertEqual(record.total_monthly_minutes, 60)

    def test_confirm_all_entries(self) -> None:
        self._update(2, ("07:00", "11:00"))
        self._update(3, ("07:00", ""))

        record, days = records.confirm_all_entries(self.db, record_id=self.record.id, actor=OFFICE)

        self.assertEqual(days, [2, 3])
        self.assertTrue(record.entry_for_day(2).is_confirmed)
        self.assertEqual(record.entry_for_day(2).confirmed_by_profile, "Library")
        self.assertFalse(record.entry_for_day(4).is_confirmed)

    def test_unconfirm_entry(self) -> None:
        records.confirm_entry(self.db, record_id=self.record.id, day=10, actor=OFFICE)
        record = records.unconfirm_entry(self.db, record_id=self.record.id, day=10, actor=OFFICE)
        self.assertFalse(record.entry_for_day(10).is_confirmed)

    def test_monthly_total_counts_unconfirmed_but_weeks_do_not(self) -> None:
        self._update(2, ("07:00", "12:00"))
        self._update(3, ("07:00", "12:00"))
        self._update(4, ("07:00", "12:00"), ("13:00", "18:00"))
        records.confirm_entry(self.db, record_id=self.record.id, day=2, actor=OFFICE)
        records.confirm_entry(self.db, record_id=self.record.id, day=3, actor=OFFICE)

        summary = records.period_summary_to_read(self.record)

        self.assertEqual(summary.total_monthly_minutes, 900)
        self.assertEqual(summary.weeks[0].minutes, 600)
        self.assertFalse(summary.weeks[0].exceeds)
        self.assertEqual(summary.confirmed_days, 2)
        self.assertIn("DAILY_CAP_EXCEEDED", summary.flags)


class LifecycleServiceTests(_RecordsTestCase):
    def test_submit_approve_locks_record(self) -> None:
        self._update(10, ("07:00", "11:00"))
        records.submit_record(self.db, record_id=self.record.id, actor=OWNER)

        listed = records.list_reviewable_records(self.db)
        self.assertEqual([record.id for record in listed], [self.record.id])

        record = records.approve_record(self.db, record_id=self.record.id, actor=OFFICE, remarks="Complete")
        self.assertEqual(record.status, RecordStatus.APPROVED)
        self.assertEqual(record.checked_by, "Office A")

        with self.assertRaises(ApiError) as owner_ctx:
            self._update(10, ("07:00", "12:00"))
        self.assertEqual(owner_ctx.exception.code, "RECORD_APPROVED")

        with self.assertRaises(ApiError):
            records.confirm_entry(self.db, record_id=self.record.id, day=10, actor=OFFICE)

        with self.assertRaises(ApiError) as delete_ctx:
            records.delete_record(self.db, record_id=self.record.id, actor=OWNER)
        self.assertEqual(delete_ctx.exception.status_code, 409)

    def test_rejected_record_returns_to_owner(self) -> None:
        records.submit_record(self.db, record_id=self.record.id, actor=OWNER)

        record = records.reject_record(self.db, record_id=self.record.id, actor=OFFICE, remarks="Day 5 missing")
        self.assertEqual(record.status, RecordStatus.REJECTED)
        self.assertEqual(record.remarks, "Day 5 missing")

        self._update(5, ("07:00", "11:00"))
        record = records.submit_record(self.db, record_id=self.record.id, actor=OWNER)
        self.assertEqual(record.status, RecordStatus.SUBMITTED)

    def test_approving_a_draft_is_refused(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            records.approve_record(self.db, record_id=self.record.id, actor=OFFICE)
        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")

    def test_delete_record(self) -> None:
        records.delete_record(self.db, record_id=self.record.id, actor=OWNER)

        self.assertEqual(records.list_user_records(self.db, user_id=OWNER.user_id), [])
        actions = list(self.db.scalars(select(AuditLog.action)).all())
        self.assertEqual(actions, ["DTR_DELETED"])

    def test_stats_and_listing(self) -> None:
        self._update(10, ("07:00", "11:00"))
        records.get_or_create_record(self.db, user_id=OWNER.user_id, month=4, year=2026)
        records.submit_record(self.db, record_id=self.record.id, actor=OWNER)

        stats = records.get_user_stats(self.db, user_id=OWNER.user_id)

        self.assertEqual(stats.total_dtrs, 2)
        self.assertEqual(stats.submitted, 1)
        self.assertEqual(stats.draft, 1)
        self.assertEqual(stats.total_minutes, 240)
        self.assertEqual(stats.total_duration, "4h 00m")

        listed = records.list_user_records(self.db, user_id=OWNER.user_id)
        self.assertEqual([(record.year, record.month) for record in listed], [(2026, 4), (2026, 3)])

    def test_record_to_read(self) -> None:
        read = records.record_to_read(self.record)

        self.assertEqual(len(read.entries), 31)
        self.assertTrue(read.entries[0].is_sunday)
        self.assertEqual(read.total_monthly_duration, "0h 00m")


class LocalGatewayTests(unittest.IsolatedAsyncioTestCase):
    async def test_saves_through_the_service(self) -> None:
        gateway = LocalRecordGateway(OWNER, session_factory=_make_session_factory())

        record = await gateway.get_or_create(3, 2026)
        saved = await gateway.update_entry(record.id, 10, _payload(("07:00", "11:00"), revision=2))

        self.assertEqual(saved.day, 10)
        self.assertEqual(saved.total_minutes, 240)
        self.assertEqual(saved.revision, 2)

        with self.assertRaises(StaleRevisionError):
            await gateway.update_entry(record.id, 10, _payload(("07:00", ""), revision=1))


if __name__ == "__main__":
    unittest.main()

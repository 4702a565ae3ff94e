import unittest
from datetime import date, datetime, timezone

from dtr.errors import ApiError
from dtr.models import ConfirmationStatus, DtrEntry, DtrRecord, RecordStatus
from dtr.services import lifecycle


def _record(status: RecordStatus = RecordStatus.DRAFT) -> DtrRecord:
    return DtrRecord(id=1, user_id="u-1", month=3, year=2026, status=status)


def _entry(day: int, *, confirmed: bool = False, shifts=None) -> DtrEntry:
    return DtrEntry(
        day=day,
        shifts=shifts or [],
        confirmation_status=ConfirmationStatus.CONFIRMED if confirmed else ConfirmationStatus.UNCONFIRMED,
    )


class OwnerEditGateTests(unittest.TestCase):
    def _reason(self, **overrides):
        params = {
            "record_status": RecordStatus.DRAFT,
            "year": 2026,
            "month": 3,
            "day": 10,
            "confirmed": False,
            "today": date(2026, 3, 20),
        }
        params.update(overrides)
        return lifecycle.owner_edit_block_reason(**params)

    def test_open_day_is_editable(self) -> None:
        self.assertIsNone(self._reason())

    def test_approved_record_blocks_everything(self) -> None:
        self.assertEqual(self._reason(record_status=RecordStatus.APPROVED), lifecycle.RECORD_APPROVED)

    def test_sunday_is_blocked(self) -> None:
        self.assertEqual(self._reason(day=8), lifecycle.SUNDAY)

    def test_confirmed_day_on_another_date_is_date_restricted(self) -> None:
        self.assertEqual(self._reason(day=12, confirmed=True), lifecycle.DATE_RESTRICTED)

    def test_confirmed_day_on_its_own_date(self) -> None:
        today = date(2026, 3, 12)
        self.assertEqual(self._reason(day=12, confirmed=True, today=today), lifecycle.ENTRY_CONFIRMED)
        self.assertIsNone(
            self._reason(day=12, confirmed=True, today=today, allow_same_day_confirmed_edits=True)
        )

    def test_ensure_owner_can_edit_raises_conflict(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            lifecycle.ensure_owner_can_edit(_record(), _entry(12, confirmed=True), today=date(2026, 3, 20))

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, lifecycle.DATE_RESTRICTED)

    def test_office_is_blocked_only_by_approval(self) -> None:
        lifecycle.ensure_office_can_edit(_record(RecordStatus.SUBMITTED))
        with self.assertRaises(ApiError):
            lifecycle.ensure_office_can_edit(_record(RecordStatus.APPROVED))

    def test_local_today_uses_attendance_timezone(self) -> None:
        # 17:00 UTC is already the next day in Manila.
        now = datetime(2026, 3, 11, 17, 0, tzinfo=timezone.utc)
        self.assertEqual(lifecycle.local_today(now), date(2026, 3, 12))


class TransitionTests(unittest.TestCase):
    def test_submit_then_approve(self) -> None:
        record = _record()
        stamp = datetime(2026, 3, 31, 9, 0, tzinfo=timezone.utc)

        lifecycle.submit_record(record, now=stamp)
        self.assertEqual(record.status, RecordStatus.SUBMITTED)
        self.assertEqual(record.submitted_at, stamp)

        lifecycle.approve_record(record, checked_by="Office A", remarks="ok", now=stamp)
        self.assertEqual(record.status, RecordStatus.APPROVED)
        self.assertEqual(record.checked_by, "Office A")
        self.assertEqual(record.remarks, "ok")

    def test_rejected_record_can_be_resubmitted(self) -> None:
        record = _record(RecordStatus.SUBMITTED)

        lifecycle.reject_record(record, checked_by="Office A", remarks="Missing day 5")
        lifecycle.submit_record(record)

        self.assertEqual(record.status, RecordStatus.SUBMITTED)

    def test_reject_requires_remarks(self) -> None:
        record = _record(RecordStatus.SUBMITTED)

        with self.assertRaises(ApiError) as ctx:
            lifecycle.reject_record(record, checked_by="Office A", remarks="  ")

        self.assertEqual(ctx.exception.code, "REMARKS_REQUIRED")
        self.assertEqual(record.status, RecordStatus.SUBMITTED)

    def test_invalid_transitions(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            lifecycle.approve_record(_record(RecordStatus.DRAFT), checked_by="Office A")
        self.assertEqual(ctx.exception.code, lifecycle.INVALID_TRANSITION)

        with self.assertRaises(ApiError):
            lifecycle.submit_record(_record(RecordStatus.APPROVED))


class ConfirmationTests(unittest.TestCase):
    def test_confirm_and_unconfirm(self) -> None:
        entry = _entry(10)

        lifecycle.confirm_entry(entry, confirmed_by="office-1", profile_name="Office A")
        self.assertTrue(entry.is_confirmed)
        self.assertEqual(entry.confirmed_by_profile, "Office A")
        self.assertIsNotNone(entry.confirmed_at)

        lifecycle.unconfirm_entry(entry)
        self.assertFalse(entry.is_confirmed)
        self.assertIsNone(entry.confirmed_by)
        self.assertIsNone(entry.confirmed_at)

    def test_confirm_all_skips_blank_days(self) -> None:
        record = _record(RecordStatus.SUBMITTED)
        record.entries = [
            _entry(2, shifts=[{"in": "07:00", "out": "11:00"}]),
            _entry(3),
            _entry(4, shifts=[{"in": "08:00", "out": ""}]),
        ]

        days = lifecycle.confirm_all_entries(record, confirmed_by="office-1", profile_name=None)

        self.assertEqual(days, [2, 4])
        self.assertFalse(record.entries[1].is_confirmed)


if __name__ == "__main__":
    unittest.main()

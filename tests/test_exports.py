import unittest
from io import BytesIO

from openpyxl import load_workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dtr.db import Base
from dtr.models import ActorRole, ExcusedStatus
from dtr.schemas import EntryPayload, ShiftPayload
from dtr.security import Actor
from dtr.services import records
from dtr.services.exports import DAILY_HEADERS, WEEKLY_HEADERS, build_dtr_xlsx_bytes

OWNER = Actor(user_id="scholar-1", role=ActorRole.SCHOLAR)
OFFICE = Actor(user_id="office-1", role=ActorRole.OFFICE, name="Office A")

HEADER_ROW = 9


class DtrExportTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.db = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
        self.addCleanup(self.db.close)

        record = records.get_or_create_record(self.db, user_id=OWNER.user_id, month=3, year=2026)
        for day, shifts in (
            (2, [("07:00", "12:00")]),
            (3, [("07:00", "12:00"), ("13:00", "18:00")]),
            (10, [("07:00", "11:00")]),
        ):
            records.update_entry(
                self.db,
                record_id=record.id,
                day=day,
                payload=EntryPayload(shifts=[ShiftPayload(in_time=a, out_time=b) for a, b in shifts]),
                actor=OWNER,
            )
        records.confirm_entry(self.db, record_id=record.id, day=2, actor=OFFICE)
        records.mark_day_excused(
            self.db,
            record_id=record.id,
            day=4,
            excused_status=ExcusedStatus.EXCUSED,
            reason="Seminar",
            actor=OFFICE,
        )
        self.record = record

    def _workbook(self):
        return load_workbook(BytesIO(build_dtr_xlsx_bytes(self.record)))

    def test_workbook_has_daily_and_weekly_sheets(self) -> None:
        wb = self._workbook()

        self.assertEqual(wb.sheetnames, ["DTR 2026-03", "Weekly"])
        ws = wb["DTR 2026-03"]
        self.assertEqual(ws["A1"].value, "DAILY TIME RECORD")
        self.assertEqual(ws["B2"].value, "scholar-1")
        self.assertEqual(ws["B6"].value, "draft")

    def test_daily_rows(self) -> None:
        ws = self._workbook()["DTR 2026-03"]

        header = [cell.value for cell in ws[HEADER_ROW]][: len(DAILY_HEADERS)]
        self.assertEqual(header, DAILY_HEADERS)
        self.assertEqual(ws.freeze_panes, f"A{HEADER_ROW + 1}")

        sunday = [cell.value for cell in ws[HEADER_ROW + 1]]
        self.assertEqual(sunday[1], "Sunday")
        self.assertEqual(sunday[2], "Sunday")

        day_2 = [cell.value for cell in ws[HEADER_ROW + 2]]
        self.assertEqual(day_2[2], "07:00-12:00")
        self.assertEqual(day_2[3], "05:00")
        self.assertEqual(day_2[8], "confirmed")

        day_3 = [cell.value for cell in ws[HEADER_ROW + 3]]
        self.assertEqual(day_3[3], "10:00")
        self.assertEqual(day_3[4], "05:00")
        self.assertEqual(day_3[9], "DAILY_CAP")

        day_4 = [cell.value for cell in ws[HEADER_ROW + 4]]
        self.assertEqual(day_4[7], "Excused")
        self.assertEqual(day_4[9], "EXCUSED")

    def test_summary_area(self) -> None:
        ws = self._workbook()["DTR 2026-03"]

        summary = {}
        for row in ws.iter_rows(min_row=HEADER_ROW + 32, values_only=True):
            if row[0] is not None:
                summary[row[0]] = row[1]

        self.assertEqual(summary["Summary"], "Value")
        self.assertEqual(summary["Total Monthly Hours"], "19:00")
        self.assertEqual(summary["Confirmed Hours"], "10:00")
        self.assertEqual(summary["Excused Days"], 1)
        self.assertEqual(summary["Flags"], "DAILY_CAP_EXCEEDED")

    def test_weekly_sheet(self) -> None:
        ws = self._workbook()["Weekly"]

        self.assertEqual([cell.value for cell in ws[1]], WEEKLY_HEADERS)
        rows = list(ws.iter_rows(min_row=2, values_only=True))
        self.assertEqual(len(rows), 5)
        self.assertEqual(rows[0], (1, "2-7", 10.0, "NO"))
        self.assertEqual(rows[1], (2, "9-14", 0.0, "NO"))


if __name__ == "__main__":
    unittest.main()

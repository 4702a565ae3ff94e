from __future__ import annotations

from datetime import date, datetime, timezone
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from dtr.models import ConfirmationStatus, DtrRecord, ExcusedStatus
from dtr.schemas import DtrEntryRead, PeriodSummaryRead
from dtr.services.records import entry_to_read, period_summary_to_read

DAILY_HEADERS = [
    "Date",
    "Day",
    "Shifts",
    "Worked",
    "Official",
    "Late",
    "Undertime",
    "Status",
    "Confirmation",
    "Flags",
]

WEEKLY_HEADERS = ["Week", "Days", "Confirmed Hours", "Limit Exceeded"]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
META_LABEL_FILL = PatternFill(fill_type="solid", fgColor="EAF4F9")
META_VALUE_FILL = PatternFill(fill_type="solid", fgColor="F8FCFF")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
WARNING_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
ALERT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
SUCCESS_FILL = PatternFill(fill_type="solid", fgColor="E6F4EA")
SUMMARY_FILL = PatternFill(fill_type="solid", fgColor="E9F1F7")
SUNDAY_FILL = PatternFill(fill_type="solid", fgColor="EEEEEE")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)
MUTED_FONT = Font(color="334155")

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def _minutes_to_hhmm(minutes: int) -> str:
    value = max(0, int(minutes))
    hours = value // 60
    mins = value % 60
    return f"{hours:02d}:{mins:02d}"


def _style_header(ws: Worksheet, row: int = 1) -> None:
    for cell in ws[row]:
        if cell.value is None:
            continue
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            if cell.coordinate in ws.merged_cells:
                continue
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _merge_title(ws: Worksheet, row: int, text: str) -> None:
    ws.merge_cells(start_row=row, start_column=1, end_row=row, end_column=len(DAILY_HEADERS))
    cell = ws.cell(row=row, column=1, value=text)
    cell.font = TITLE_FONT
    cell.alignment = Alignment(horizontal="left", vertical="center")


def _style_metadata_rows(ws: Worksheet, *, start_row: int, end_row: int) -> None:
    for row_idx in range(start_row, end_row + 1):
        label_cell = ws.cell(row=row_idx, column=1)
        value_cell = ws.cell(row=row_idx, column=2)
        label_cell.font = BOLD_FONT
        label_cell.fill = META_LABEL_FILL
        label_cell.border = THIN_BORDER
        value_cell.font = MUTED_FONT
        value_cell.fill = META_VALUE_FILL
        value_cell.border = THIN_BORDER


def _shift_label(entry: DtrEntryRead) -> str:
    parts = [
        f"{shift.in_time or '--:--'}-{shift.out_time or '--:--'}"
        for shift in entry.shifts
        if shift.in_time or shift.out_time
    ]
    return ", ".join(parts) or "-"


def _entry_flags(entry: DtrEntryRead) -> str:
    flags: list[str] = []
    if entry.total_minutes > entry.official_minutes:
        flags.append("DAILY_CAP")
    if entry.excused_status == ExcusedStatus.EXCUSED:
        flags.append("EXCUSED")
    if entry.edit_history:
        flags.append("OFFICE_EDITED")
    return ", ".join(flags) or "-"


def _row_fill(entry: DtrEntryRead, row_idx: int) -> PatternFill | None:
    if entry.is_sunday:
        return SUNDAY_FILL
    if entry.status in {"Absent", "Late"}:
        return WARNING_FILL
    if row_idx % 2 == 0:
        return ZEBRA_FILL
    return None


def _append_daily_rows(ws: Worksheet, record: DtrRecord, entries: list[DtrEntryRead]) -> tuple[int, int]:
    ws.append(DAILY_HEADERS)
    header_row = ws.max_row
    _style_header(ws, header_row)

    for entry in entries:
        ws.append(
            [
                date(record.year, record.month, entry.day),
                entry.weekday,
                "Sunday" if entry.is_sunday else _shift_label(entry),
                _minutes_to_hhmm(entry.total_minutes),
                _minutes_to_hhmm(entry.official_minutes),
                _minutes_to_hhmm(entry.late_minutes),
                _minutes_to_hhmm(entry.undertime_minutes),
                entry.status or "-",
                entry.confirmation_status.value,
                _entry_flags(entry),
            ]
        )
        row_idx = ws.max_row
        fill = _row_fill(entry, row_idx)
        for col_idx in range(1, len(DAILY_HEADERS) + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            cell.alignment = Alignment(horizontal="center" if col_idx > 3 else "left", vertical="center")
            if fill is not None:
                cell.fill = fill
        ws.cell(row=row_idx, column=1).number_format = "yyyy-mm-dd"
        if entry.confirmation_status == ConfirmationStatus.CONFIRMED:
            ws.cell(row=row_idx, column=9).fill = SUCCESS_FILL
        flags_cell = ws.cell(row=row_idx, column=len(DAILY_HEADERS))
        if flags_cell.value not in {None, "", "-"}:
            flags_cell.fill = ALERT_FILL
            flags_cell.font = Font(bold=True, color="9F1239")

    data_end_row = ws.max_row
    ws.auto_filter.ref = f"A{header_row}:{get_column_letter(len(DAILY_HEADERS))}{data_end_row}"
    ws.freeze_panes = f"A{header_row + 1}"
    return header_row, data_end_row


def _append_summary_area(ws: Worksheet, summary: PeriodSummaryRead) -> None:
    ws.append([])
    ws.append(["Summary", "Value"])
    summary_start = ws.max_row
    ws.append(["Total Monthly Hours", _minutes_to_hhmm(summary.total_monthly_minutes)])
    ws.append(["Confirmed Hours", _minutes_to_hhmm(summary.confirmed_official_minutes)])
    ws.append(["Raw Hours", _minutes_to_hhmm(summary.raw_minutes)])
    ws.append(["Days Worked", summary.days_worked])
    ws.append(["Confirmed Days", summary.confirmed_days])
    ws.append(["Excused Days", summary.excused_days])
    ws.append(["Flags", ", ".join(summary.flags) or "-"])
    _style_header(ws, summary_start)

    for row_idx in range(summary_start + 1, ws.max_row + 1):
        label_cell = ws.cell(row=row_idx, column=1)
        value_cell = ws.cell(row=row_idx, column=2)
        label_cell.fill = SUMMARY_FILL
        label_cell.border = THIN_BORDER
        label_cell.font = BOLD_FONT
        value_cell.border = THIN_BORDER
        value_cell.alignment = Alignment(horizontal="center", vertical="center")


def _build_weekly_sheet(ws: Worksheet, summary: PeriodSummaryRead) -> None:
    ws.append(WEEKLY_HEADERS)
    _style_header(ws, 1)
    for week in summary.weeks:
        ws.append(
            [
                week.week_num,
                f"{week.days[0]}-{week.days[-1]}" if week.days else "-",
                week.hours,
                "YES" if week.exceeds else "NO",
            ]
        )
        row_idx = ws.max_row
        for col_idx in range(1, len(WEEKLY_HEADERS) + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            cell.alignment = Alignment(horizontal="center", vertical="center")
            if week.exceeds:
                cell.fill = ALERT_FILL
    _auto_width(ws)


def build_dtr_xlsx_bytes(record: DtrRecord) -> bytes:
    """Render one monthly record as a two-sheet workbook: days and weeks."""
    entries = [entry_to_read(record, entry) for entry in record.entries]
    summary = period_summary_to_read(record)

    wb = Workbook()
    ws = wb.active
    ws.title = f"DTR {record.year}-{record.month:02d}"
    _merge_title(ws, 1, "DAILY TIME RECORD")
    ws.append(["User", record.user_id])
    ws.append(["Period", f"{record.year}-{record.month:02d}"])
    ws.append(["Department", record.department or "-"])
    ws.append(["Duty Hours", record.duty_hours or "-"])
    ws.append(["Status", record.status.value])
    ws.append(["Generated (UTC)", datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")])
    _style_metadata_rows(ws, start_row=2, end_row=ws.max_row)
    ws.append([])

    _append_daily_rows(ws, record, entries)
    _append_summary_area(ws, summary)
    _auto_width(ws)

    _build_weekly_sheet(wb.create_sheet("Weekly"), summary)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()

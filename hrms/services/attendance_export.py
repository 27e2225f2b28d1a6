from __future__ import annotations

from collections import defaultdict
from datetime import date
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session

from hrms.errors import ApiError
from hrms.models import AttendanceRecord, AttendanceStatus, Department, Employee
from hrms.services.coverage import coverage_labels

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
MAX_EXPORT_DAYS = 92

HEADERS = [
    "Serial Number",
    "Name of Employee",
    "Department",
    "Date",
    "Time In",
    "Time Out",
    "Status",
    "OT",
]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
ABSENT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")
HALF_DAY_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
OVERTIME_FILL = PatternFill(fill_type="solid", fgColor="E6F4EA")

HEADER_FONT = Font(bold=True, color="FFFFFF")

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


def minutes_to_hmm(minutes: int) -> str:
    value = max(0, int(minutes))
    return f"{value // 60}:{value % 60:02d}"


def _status_label(record: AttendanceRecord) -> str:
    if record.half_day is not None:
        return f"{record.status.value} ({record.half_day.value})"
    return record.status.value


def _date_label(record: AttendanceRecord, coverage: dict[date, str]) -> str:
    annotation = coverage.get(record.log_date) or ("(A)" if record.status == AttendanceStatus.ABSENT else "")
    return f"{record.log_date.strftime('%d/%m/%Y')} {annotation}".rstrip()


def _style_header(ws: Worksheet) -> None:
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _style_rows(ws: Worksheet) -> None:
    status_col = HEADERS.index("Status") + 1
    ot_col = HEADERS.index("OT") + 1
    for row_idx in range(2, ws.max_row + 1):
        status_value = str(ws.cell(row=row_idx, column=status_col).value or "")
        if status_value.startswith(AttendanceStatus.ABSENT.value):
            row_fill = ABSENT_FILL
        elif status_value.startswith(AttendanceStatus.HALF_DAY.value):
            row_fill = HALF_DAY_FILL
        elif row_idx % 2 == 0:
            row_fill = ZEBRA_FILL
        else:
            row_fill = None

        for col_idx in range(1, len(HEADERS) + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            if row_fill is not None:
                cell.fill = row_fill
        ot_cell = ws.cell(row=row_idx, column=ot_col)
        if ot_cell.value not in {None, "", "0:00"}:
            ot_cell.fill = OVERTIME_FILL
            ot_cell.font = Font(bold=True, color="166534")

    ws.freeze_panes = "A2"
    if ws.max_row > 1:
        ws.auto_filter.ref = f"A1:{get_column_letter(len(HEADERS))}{ws.max_row}"


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        col_letter = get_column_letter(column_cells[0].column)
        max_len = max(len("" if cell.value is None else str(cell.value)) for cell in column_cells)
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def fetch_export_rows(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    status: AttendanceStatus | None = None,
    department_id: int | None = None,
) -> list[tuple[AttendanceRecord, Employee, str | None]]:
    stmt = (
        select(AttendanceRecord, Employee, Department.name)
        .join(Employee, Employee.id == AttendanceRecord.employee_id)
        .outerjoin(Department, Department.id == Employee.department_id)
        .where(AttendanceRecord.log_date >= start_date, AttendanceRecord.log_date <= end_date)
    )
    if status is not None:
        stmt = stmt.where(AttendanceRecord.status == status)
    if department_id is not None:
        stmt = stmt.where(Employee.department_id == department_id)
    stmt = stmt.order_by(AttendanceRecord.log_date, Employee.full_name, Employee.id)
    return [(record, employee, department_name) for record, employee, department_name in db.execute(stmt).all()]


def build_attendance_xlsx_bytes(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    status: AttendanceStatus | None = None,
    department_id: int | None = None,
) -> bytes:
    if end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not be before start_date.")
    if (end_date - start_date).days + 1 > MAX_EXPORT_DAYS:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message=f"Export range is limited to {MAX_EXPORT_DAYS} days.",
        )

    rows = fetch_export_rows(
        db,
        start_date=start_date,
        end_date=end_date,
        status=status,
        department_id=department_id,
    )
    coverage_by_employee: dict[int, dict[date, str]] = defaultdict(dict)
    for employee_id in {employee.id for _, employee, _ in rows}:
        coverage_by_employee[employee_id] = coverage_labels(db, employee_id, start_date, end_date)

    wb = Workbook()
    ws = wb.active
    ws.title = "Attendance"
    ws.append(HEADERS)
    for index, (record, employee, department_name) in enumerate(rows, start=1):
        ws.append(
            [
                index,
                employee.full_name,
                department_name or "Unknown",
                _date_label(record, coverage_by_employee[employee.id]),
                record.time_in or "-",
                record.time_out or "-",
                _status_label(record),
                minutes_to_hmm(record.overtime_minutes),
            ]
        )
    _style_header(ws)
    _style_rows(ws)
    _auto_width(ws)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrms.models import AttendanceRecord, Employee, RawPunch
from hrms.services.attendance_calc import DayDerivation, apply_late_penalty, derive_day
from hrms.services.coverage import half_day_leave_session
from hrms.settings import get_attendance_timezone

logger = logging.getLogger("hrms.attendance")


@dataclass
class DerivationSummary:
    derived: int = 0
    deferred: int = 0
    unknown_employee: int = 0
    failed: int = 0


def local_today(now_utc: datetime, tz: ZoneInfo | None = None) -> date:
    zone = tz or get_attendance_timezone()
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=timezone.utc)
    return now_utc.astimezone(zone).date()


def get_attendance_record(db: Session, employee_id: int, day: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.log_date == day,
        )
    )


def upsert_attendance(
    db: Session,
    *,
    employee_id: int,
    day: date,
    derivation: DayDerivation,
    record: AttendanceRecord | None = None,
) -> AttendanceRecord:
    if record is None:
        record = get_attendance_record(db, employee_id, day)
    if record is None:
        record = AttendanceRecord(employee_id=employee_id, log_date=day, late_penalty=False)
        db.add(record)
    record.status = derivation.status
    record.half_day = derivation.half_day
    record.time_in = derivation.time_in
    record.time_out = derivation.time_out
    record.overtime_minutes = derivation.overtime_minutes
    return record


def _pending_employee_days(db: Session, yesterday: date) -> set[tuple[str, date]]:
    pending = {
        (row[0], row[1])
        for row in db.execute(
            select(RawPunch.external_user_id, RawPunch.log_date)
            .where(RawPunch.processed.is_(False))
            .distinct()
        ).all()
    }
    # yesterday's records still waiting for a closing punch
    open_rows = db.execute(
        select(Employee.external_user_id)
        .join(AttendanceRecord, AttendanceRecord.employee_id == Employee.id)
        .where(
            AttendanceRecord.log_date == yesterday,
            AttendanceRecord.time_in.is_not(None),
            AttendanceRecord.time_out.is_(None),
            Employee.external_user_id.is_not(None),
        )
    ).all()
    pending.update((row[0], yesterday) for row in open_rows)
    return pending


def derive_employee_day(
    db: Session,
    employee: Employee,
    day: date,
    *,
    today: date,
) -> AttendanceRecord | None:
    """Re-derive one employee-day from every stored punch of that day."""
    punches = db.scalars(
        select(RawPunch).where(
            RawPunch.external_user_id == employee.external_user_id,
            RawPunch.log_date == day,
        )
    ).all()
    if not punches:
        return None

    clock_times = [punch.log_time for punch in punches]
    elapsed = day < today
    derivation = derive_day(
        clock_times,
        day=day,
        elapsed=elapsed,
        half_day_leave=half_day_leave_session(db, employee.id, day),
    )
    if derivation is None:
        return None

    record = get_attendance_record(db, employee.id, day)
    if record is not None and record.late_penalty:
        derivation = apply_late_penalty(derivation, clock_times, elapsed=elapsed)
    record = upsert_attendance(db, employee_id=employee.id, day=day, derivation=derivation, record=record)

    if elapsed:
        for punch in punches:
            punch.processed = True
    return record


def derive_pending_attendance(
    db: Session,
    *,
    now_utc: datetime,
    tz: ZoneInfo | None = None,
) -> DerivationSummary:
    today = local_today(now_utc, tz)
    summary = DerivationSummary()
    pending = _pending_employee_days(db, today - timedelta(days=1))
    if not pending:
        return summary

    external_ids = {external_id for external_id, _ in pending}
    employees = {
        employee.external_user_id: employee
        for employee in db.scalars(select(Employee).where(Employee.external_user_id.in_(external_ids))).all()
    }
    missing = sorted(external_ids - set(employees))
    for external_id in missing:
        logger.warning("punch_employee_not_found", extra={"external_user_id": external_id})

    for external_id, day in sorted(pending, key=lambda item: (item[1], item[0])):
        employee = employees.get(external_id)
        if employee is None:
            summary.unknown_employee += 1
            continue
        employee_id = employee.id
        try:
            record = derive_employee_day(db, employee, day, today=today)
            if record is None:
                summary.deferred += 1
                db.rollback()
                continue
            db.commit()
            summary.derived += 1
        except Exception:
            db.rollback()
            summary.failed += 1
            logger.exception(
                "attendance_derivation_failed",
                extra={"employee_id": employee_id, "log_date": day.isoformat()},
            )

    logger.info(
        "attendance_derivation_complete",
        extra={
            "derived": summary.derived,
            "deferred": summary.deferred,
            "unknown_employee": summary.unknown_employee,
            "failed": summary.failed,
        },
    )
    return summary

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hrms.models import (
    AlertType,
    AttendanceRecord,
    AttendanceStatus,
    Employee,
    EmployeeStatus,
    Notification,
    RawPunch,
    Role,
)
from hrms.services.attendance_calc import (
    LATE_ARRIVAL_THRESHOLD,
    LATE_WINDOW_END,
    LATE_WINDOW_START,
    DayDerivation,
    absent,
    apply_late_penalty,
    in_late_window,
    is_weekly_off,
)
from hrms.services.attendance_deriver import get_attendance_record, local_today, upsert_attendance
from hrms.services.coverage import approved_dates
from hrms.services.notifications import NotificationSink, notify_safely, role_holders

logger = logging.getLogger("hrms.jobs")

WARNING_RUN_LENGTH = 3
TERMINATION_RUN_LENGTH = 5
RUN_LOOKBACK_DAYS = 14
ALERT_DEDUP_DAYS = 5


@dataclass
class AbsenceMonitorSummary:
    backfilled: int = 0
    late_downgraded: int = 0
    warnings: int = 0
    termination_alerts: int = 0
    failed: int = 0


def _working_employees(db: Session, day: date) -> list[Employee]:
    return list(
        db.scalars(
            select(Employee)
            .where(Employee.status == EmployeeStatus.WORKING, Employee.date_of_joining <= day)
            .order_by(Employee.id)
        ).all()
    )


def _day_punch_times(db: Session, employee: Employee, day: date) -> list[str]:
    if not employee.external_user_id:
        return []
    return sorted(
        db.scalars(
            select(RawPunch.log_time).where(
                RawPunch.external_user_id == employee.external_user_id,
                RawPunch.log_date == day,
            )
        ).all()
    )


def backfill_absences(db: Session, day: date, summary: AbsenceMonitorSummary) -> None:
    if is_weekly_off(day):
        return
    for employee in _working_employees(db, day):
        employee_id = employee.id
        try:
            if _day_punch_times(db, employee, day) or get_attendance_record(db, employee_id, day) is not None:
                continue
            upsert_attendance(db, employee_id=employee_id, day=day, derivation=absent())
            db.commit()
            summary.backfilled += 1
        except IntegrityError:
            db.rollback()
            logger.info("absence_backfill_already_present", extra={"employee_id": employee_id, "log_date": day.isoformat()})
        except Exception:
            db.rollback()
            summary.failed += 1
            logger.exception("absence_backfill_failed", extra={"employee_id": employee_id, "log_date": day.isoformat()})


def _late_days_this_month(db: Session, employee_id: int, day: date) -> int:
    return int(
        db.scalar(
            select(func.count(AttendanceRecord.id)).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.log_date >= day.replace(day=1),
                AttendanceRecord.log_date < day,
                AttendanceRecord.time_in >= LATE_WINDOW_START,
                AttendanceRecord.time_in <= LATE_WINDOW_END,
            )
        )
        or 0
    )


def apply_late_arrivals(db: Session, day: date, *, today: date, summary: AbsenceMonitorSummary) -> None:
    """Downgrade ``day`` for employees whose late arrivals this month reach the threshold."""
    for employee in _working_employees(db, day):
        employee_id = employee.id
        try:
            clock_times = _day_punch_times(db, employee, day)
            record = get_attendance_record(db, employee_id, day)
            first_punch = clock_times[0] if clock_times else (record.time_in if record else None)
            if record is not None and record.late_penalty:
                continue
            if not in_late_window(first_punch):
                continue
            if _late_days_this_month(db, employee_id, day) + 1 < LATE_ARRIVAL_THRESHOLD:
                continue

            current = (
                DayDerivation(
                    status=record.status,
                    half_day=record.half_day,
                    time_in=record.time_in,
                    time_out=record.time_out,
                    overtime_minutes=record.overtime_minutes,
                )
                if record is not None
                else DayDerivation(status=AttendanceStatus.PRESENT, time_in=first_punch)
            )
            penalized = apply_late_penalty(current, clock_times or [first_punch], elapsed=day < today)
            record = upsert_attendance(db, employee_id=employee_id, day=day, derivation=penalized, record=record)
            record.late_penalty = True
            db.commit()
            summary.late_downgraded += 1
            logger.info(
                "late_arrival_downgraded",
                extra={"employee_id": employee_id, "log_date": day.isoformat(), "status": penalized.status.value},
            )
        except Exception:
            db.rollback()
            summary.failed += 1
            logger.exception("late_arrival_check_failed", extra={"employee_id": employee_id, "log_date": day.isoformat()})


def trailing_unapproved_run(day: date, absent_days: set[date], approved_days: set[date], *, lookback_days: int) -> int:
    """Consecutive unapproved absences ending on ``day``.

    An approved day or a non-absent working day ends the run. A weekly off
    without an absence record is skipped over.
    """
    run = 0
    cursor = day
    earliest = day - timedelta(days=lookback_days)
    while cursor >= earliest:
        if cursor in approved_days:
            break
        if cursor in absent_days:
            run += 1
        elif not is_weekly_off(cursor):
            break
        cursor -= timedelta(days=1)
    return run


def unapproved_absence_run(db: Session, employee_id: int, day: date) -> int:
    start = day - timedelta(days=RUN_LOOKBACK_DAYS)
    absent_days = set(
        db.scalars(
            select(AttendanceRecord.log_date).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.status == AttendanceStatus.ABSENT,
                AttendanceRecord.log_date >= start,
                AttendanceRecord.log_date <= day,
            )
        ).all()
    )
    if not absent_days:
        return 0
    return trailing_unapproved_run(
        day,
        absent_days,
        approved_dates(db, employee_id, start, day),
        lookback_days=RUN_LOOKBACK_DAYS,
    )


def _alert_already_sent(db: Session, employee_id: int, alert_type: AlertType, now_utc: datetime) -> bool:
    since = now_utc - timedelta(days=ALERT_DEDUP_DAYS)
    existing = db.scalar(
        select(Notification.id)
        .where(
            Notification.subject_employee_id == employee_id,
            Notification.alert_type == alert_type,
            Notification.created_at >= since,
        )
        .limit(1)
    )
    return existing is not None


def escalate_absences(
    db: Session,
    day: date,
    *,
    sink: NotificationSink,
    now_utc: datetime,
    summary: AbsenceMonitorSummary,
) -> None:
    for employee in _working_employees(db, day):
        employee_id = employee.id
        try:
            run = unapproved_absence_run(db, employee_id, day)
            if run == WARNING_RUN_LENGTH:
                alert_type = AlertType.WARNING
                recipients = role_holders(db, Role.ADMIN)
                message = (
                    f"{employee.full_name} ({employee.employee_code}) has been absent without approved "
                    f"leave for {run} consecutive days."
                )
            elif run == TERMINATION_RUN_LENGTH:
                alert_type = AlertType.TERMINATION
                recipients = [employee_id, *role_holders(db, Role.CEO)]
                if employee.department_id is not None:
                    recipients.extend(role_holders(db, Role.HOD, department_id=employee.department_id))
                message = (
                    f"{employee.full_name} ({employee.employee_code}) has been absent without approved "
                    f"leave for {run} consecutive days and is at risk of termination."
                )
            else:
                continue

            if _alert_already_sent(db, employee_id, alert_type, now_utc):
                continue
            notify_safely(sink, recipients, message, alert_type=alert_type, subject_employee_id=employee_id)
            if alert_type == AlertType.WARNING:
                summary.warnings += 1
            else:
                summary.termination_alerts += 1
            logger.warning(
                "absence_escalated",
                extra={"employee_id": employee_id, "run_length": run, "alert_type": alert_type.value},
            )
        except Exception:
            db.rollback()
            summary.failed += 1
            logger.exception("absence_escalation_failed", extra={"employee_id": employee_id, "log_date": day.isoformat()})


def run_absence_monitor(
    db: Session,
    *,
    sink: NotificationSink,
    now_utc: datetime,
    day: date | None = None,
    tz: ZoneInfo | None = None,
) -> AbsenceMonitorSummary:
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=timezone.utc)
    today = local_today(now_utc, tz)
    target = day or today - timedelta(days=1)
    summary = AbsenceMonitorSummary()

    backfill_absences(db, target, summary)
    apply_late_arrivals(db, target, today=today, summary=summary)
    escalate_absences(db, target, sink=sink, now_utc=now_utc, summary=summary)

    logger.info(
        "absence_monitor_complete",
        extra={
            "log_date": target.isoformat(),
            "backfilled": summary.backfilled,
            "late_downgraded": summary.late_downgraded,
            "warnings": summary.warnings,
            "termination_alerts": summary.termination_alerts,
            "failed": summary.failed,
        },
    )
    return summary

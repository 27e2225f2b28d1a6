from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrms.models import AttendanceRecord, Employee, OvertimeClaim
from hrms.services.attendance_calc import is_weekly_off
from hrms.services.attendance_deriver import local_today
from hrms.services.leave_balance import grant_compensatory_leave
from hrms.settings import (
    get_attendance_timezone,
    get_overtime_eligible_departments,
    get_overtime_eligible_designations,
)

logger = logging.getLogger("hrms.jobs")

MIN_SETTLEMENT_MINUTES = 60
FULL_DAY_GRANT_MINUTES = 8 * 60
HALF_DAY_GRANT_MINUTES = 5 * 60


@dataclass(frozen=True)
class OvertimePolicy:
    departments: frozenset[str]
    designations: frozenset[str]

    @classmethod
    def from_settings(cls) -> OvertimePolicy:
        return cls(
            departments=get_overtime_eligible_departments(),
            designations=get_overtime_eligible_designations(),
        )

    def is_eligible(self, employee: Employee) -> bool:
        department_name = employee.department.name if employee.department is not None else None
        return department_name in self.departments and employee.designation in self.designations


@dataclass
class SettlementSummary:
    settle_day: date
    forfeited: int = 0
    converted: int = 0
    payable: int = 0
    failed: int = 0
    grants: list[tuple[int, int]] = field(default_factory=list)


def claim_deadline(overtime_day: date, tz: ZoneInfo) -> datetime:
    """End of the day after the overtime day, in the attendance time zone."""
    return datetime.combine(overtime_day + timedelta(days=1), time.max, tzinfo=tz)


def compensatory_hours_for(overtime_minutes: int) -> int:
    if overtime_minutes >= FULL_DAY_GRANT_MINUTES:
        return 8
    if overtime_minutes >= HALF_DAY_GRANT_MINUTES:
        return 4
    return 0


def _has_claim(db: Session, employee_id: int, day: date) -> bool:
    return (
        db.scalar(
            select(OvertimeClaim.id).where(
                OvertimeClaim.employee_id == employee_id,
                OvertimeClaim.claim_date == day,
            )
        )
        is not None
    )


def settle_record(
    record: AttendanceRecord,
    employee: Employee,
    *,
    policy: OvertimePolicy,
    now_utc: datetime,
    tz: ZoneInfo,
) -> str:
    """Settle one record's overtime; returns the outcome name."""
    if policy.is_eligible(employee):
        if now_utc > claim_deadline(record.log_date, tz):
            record.overtime_minutes = 0
            return "forfeited"
        return "payable"

    if is_weekly_off(record.log_date):
        hours = compensatory_hours_for(record.overtime_minutes)
        record.overtime_minutes = 0
        if hours:
            grant_compensatory_leave(employee, record.log_date, hours)
            return "converted"
        return "forfeited"

    record.overtime_minutes = 0
    return "forfeited"


def settle_overtime(
    db: Session,
    *,
    now_utc: datetime,
    settle_day: date | None = None,
    policy: OvertimePolicy | None = None,
    tz: ZoneInfo | None = None,
) -> SettlementSummary:
    zone = tz or get_attendance_timezone()
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=timezone.utc)
    day = settle_day or local_today(now_utc, zone) - timedelta(days=1)
    active_policy = policy or OvertimePolicy.from_settings()
    summary = SettlementSummary(settle_day=day)

    records = db.scalars(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.log_date == day,
            AttendanceRecord.overtime_minutes >= MIN_SETTLEMENT_MINUTES,
        )
        .order_by(AttendanceRecord.employee_id)
    ).all()

    for record in records:
        employee_id = record.employee_id
        try:
            if _has_claim(db, employee_id, day):
                continue
            employee = db.get(Employee, employee_id)
            if employee is None:
                continue
            overtime_minutes = record.overtime_minutes
            outcome = settle_record(record, employee, policy=active_policy, now_utc=now_utc, tz=zone)
            db.commit()
            if outcome == "converted":
                summary.converted += 1
                summary.grants.append((employee_id, compensatory_hours_for(overtime_minutes)))
            elif outcome == "forfeited":
                summary.forfeited += 1
            else:
                summary.payable += 1
        except Exception:
            db.rollback()
            summary.failed += 1
            logger.exception(
                "overtime_settlement_failed",
                extra={"employee_id": employee_id, "log_date": day.isoformat()},
            )

    logger.info(
        "overtime_settlement_complete",
        extra={
            "settle_day": day.isoformat(),
            "forfeited": summary.forfeited,
            "converted": summary.converted,
            "payable": summary.payable,
            "failed": summary.failed,
        },
    )
    return summary

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrms.audit import log_audit
from hrms.db import SessionLocal
from hrms.errors import ApiError
from hrms.models import (
    ApprovalStatus,
    AuditActorType,
    Employee,
    EmployeeStatus,
    Leave,
    LeaveType,
)
from hrms.schemas import EmployeeCreate
from hrms.services.attendance_deriver import local_today
from hrms.services.leave_balance import LifecycleResult, leave_days, reconcile_employee_lifecycle

logger = logging.getLogger("hrms.jobs")

LIFECYCLE_ACTOR_ID = "lifecycle"


@dataclass
class LifecycleSweepSummary:
    reconciled: int = 0
    changed: int = 0
    failed: int = 0


def get_employee_or_404(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    return employee


def apply_lifecycle(
    db: Session,
    employee: Employee,
    as_of: date,
    *,
    is_new: bool = False,
    resigned_now: bool = False,
    casual_days_taken: float = 0.0,
) -> LifecycleResult:
    """Run the lifecycle rules and stage one audit row per transition in the caller's transaction."""
    result = reconcile_employee_lifecycle(
        employee,
        as_of,
        is_new=is_new,
        resigned_now=resigned_now,
        casual_days_taken=casual_days_taken,
    )
    for event in result.events:
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=LIFECYCLE_ACTOR_ID,
            action=event,
            entity_type="employee",
            entity_id=str(employee.id),
            details={
                "as_of": as_of.isoformat(),
                "employee_type": employee.employee_type.value,
                "paid_leave_balance": employee.paid_leave_balance,
            },
            commit=False,
        )
    return result


def casual_days_taken_in_year(db: Session, employee_id: int, year: int) -> float:
    leaves = db.scalars(
        select(Leave).where(
            Leave.employee_id == employee_id,
            Leave.leave_type == LeaveType.CASUAL,
            Leave.stage_c == ApprovalStatus.ACKNOWLEDGED,
            Leave.start_date >= date(year, 1, 1),
            Leave.start_date <= date(year, 12, 31),
        )
    ).all()
    return sum(
        leave_days(
            leave.start_date,
            leave.end_date,
            start_duration=leave.start_duration,
            end_duration=leave.end_duration,
        )
        for leave in leaves
    )


def create_employee(db: Session, payload: EmployeeCreate, *, as_of: date) -> Employee:
    if payload.external_user_id:
        clash = db.scalar(select(Employee.id).where(Employee.external_user_id == payload.external_user_id))
        if clash is not None:
            raise ApiError(status_code=409, code="EXTERNAL_ID_TAKEN", message="Time-clock id is already mapped.")

    employee = Employee(
        employee_code=payload.employee_code,
        full_name=payload.full_name,
        external_user_id=payload.external_user_id,
        department_id=payload.department_id,
        designation=payload.designation,
        role=payload.role,
        employee_type=payload.employee_type,
        status=EmployeeStatus.WORKING,
        date_of_joining=payload.date_of_joining,
        confirmation_date=payload.confirmation_date,
        emergency_leave_granted=False,
    )
    db.add(employee)
    db.flush()
    apply_lifecycle(db, employee, as_of, is_new=True)
    db.commit()
    db.refresh(employee)
    return employee


def reconcile_employee(db: Session, employee_id: int, *, as_of: date) -> LifecycleResult:
    employee = get_employee_or_404(db, employee_id)
    result = apply_lifecycle(db, employee, as_of)
    db.commit()
    return result


def resign_employee(db: Session, employee_id: int, *, resignation_date: date, as_of: date) -> LifecycleResult:
    employee = get_employee_or_404(db, employee_id)
    if employee.status == EmployeeStatus.RESIGNED:
        raise ApiError(status_code=409, code="ALREADY_RESIGNED", message="Employee has already resigned.")
    if resignation_date < employee.date_of_joining:
        raise ApiError(
            status_code=422,
            code="INVALID_RESIGNATION_DATE",
            message="Resignation date is before the joining date.",
        )

    employee.status = EmployeeStatus.RESIGNED
    employee.date_of_resigning = resignation_date
    result = apply_lifecycle(
        db,
        employee,
        as_of,
        resigned_now=True,
        casual_days_taken=casual_days_taken_in_year(db, employee_id, resignation_date.year),
    )
    db.commit()
    return result


def grant_emergency_leave(db: Session, employee_id: int, *, as_of: date, granted_by: int) -> Employee:
    employee = get_employee_or_404(db, employee_id)
    employee.emergency_leave_granted = True
    employee.emergency_leave_granted_on = as_of
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(granted_by),
        action="grant_emergency_leave",
        entity_type="employee",
        entity_id=str(employee_id),
        details={"granted_on": as_of.isoformat()},
        commit=False,
    )
    db.commit()
    db.refresh(employee)
    return employee


def reconcile_working_employees(now_utc: datetime, db: Session | None = None) -> LifecycleSweepSummary:
    owns_session = db is None
    session = db or SessionLocal()
    summary = LifecycleSweepSummary()
    as_of = local_today(now_utc)
    try:
        employee_ids = session.scalars(
            select(Employee.id).where(Employee.status == EmployeeStatus.WORKING).order_by(Employee.id)
        ).all()
        for employee_id in employee_ids:
            try:
                employee = session.get(Employee, employee_id)
                if employee is None:
                    continue
                result = apply_lifecycle(session, employee, as_of)
                session.commit()
                summary.reconciled += 1
                if result.events:
                    summary.changed += 1
            except Exception:
                session.rollback()
                summary.failed += 1
                logger.exception("lifecycle_reconcile_failed", extra={"employee_id": employee_id})
    finally:
        if owns_session:
            session.close()

    logger.info(
        "lifecycle_sweep_complete",
        extra={"reconciled": summary.reconciled, "changed": summary.changed, "failed": summary.failed},
    )
    return summary

from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from hrms.db import Base

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


def _enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda members: [member.value for member in members])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, enum.Enum):
    EMPLOYEE = "Employee"
    HOD = "HOD"
    CEO = "CEO"
    ADMIN = "Admin"


class EmployeeType(str, enum.Enum):
    PROBATION = "Probation"
    CONFIRMED = "Confirmed"
    CONTRACTUAL = "Contractual"
    INTERN = "Intern"


class EmployeeStatus(str, enum.Enum):
    WORKING = "Working"
    RESIGNED = "Resigned"


class PunchDirection(str, enum.Enum):
    IN = "in"
    OUT = "out"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "Present"
    ABSENT = "Absent"
    HALF_DAY = "HalfDay"


class HalfDayPortion(str, enum.Enum):
    FIRST_HALF = "FirstHalf"
    SECOND_HALF = "SecondHalf"


class CompensatoryStatus(str, enum.Enum):
    AVAILABLE = "Available"
    CLAIMED = "Claimed"
    EXPIRED = "Expired"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACKNOWLEDGED = "ACKNOWLEDGED"


class LeaveType(str, enum.Enum):
    CASUAL = "Casual"
    MEDICAL = "Medical"
    MATERNITY = "Maternity"
    PATERNITY = "Paternity"
    RESTRICTED_HOLIDAY = "RestrictedHoliday"
    COMPENSATORY = "Compensatory"
    EMERGENCY = "Emergency"
    LEAVE_WITHOUT_PAY = "LeaveWithoutPay"


class LeaveDuration(str, enum.Enum):
    FULL = "full"
    HALF = "half"


class LeaveSession(str, enum.Enum):
    FORENOON = "forenoon"
    AFTERNOON = "afternoon"


class OvertimeClaimType(str, enum.Enum):
    OVERTIME = "overtime"
    COMPENSATORY = "compensatory"


class AlertType(str, enum.Enum):
    WARNING = "warning"
    TERMINATION = "termination"


class AuditActorType(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    SYSTEM = "SYSTEM"


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    employees: Mapped[list[Employee]] = relationship(back_populates="department")


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    external_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    designation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(
        _enum(Role, "employee_role"),
        nullable=False,
        default=Role.EMPLOYEE,
    )
    employee_type: Mapped[EmployeeType] = mapped_column(
        _enum(EmployeeType, "employee_type"),
        nullable=False,
        default=EmployeeType.PROBATION,
    )
    status: Mapped[EmployeeStatus] = mapped_column(
        _enum(EmployeeStatus, "employee_status"),
        nullable=False,
        default=EmployeeStatus.WORKING,
    )
    date_of_joining: Mapped[date] = mapped_column(Date, nullable=False)
    confirmation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_of_resigning: Mapped[date | None] = mapped_column(Date, nullable=True)

    paid_leave_balance: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    medical_leave_balance: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    restricted_holiday_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unpaid_leave_taken: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    maternity_claims_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paternity_claims_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    emergency_leave_granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    emergency_leave_granted_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    leave_reset_marker: Mapped[date | None] = mapped_column(Date, nullable=True)
    medical_reset_marker: Mapped[date | None] = mapped_column(Date, nullable=True)
    restricted_reset_marker: Mapped[date | None] = mapped_column(Date, nullable=True)
    compensatory_reset_marker: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    department: Mapped[Department | None] = relationship(back_populates="employees")
    compensatory_grants: Mapped[list[CompensatoryGrant]] = relationship(
        back_populates="employee",
        order_by="CompensatoryGrant.grant_date",
    )


class CompensatoryGrant(Base):
    __tablename__ = "compensatory_grants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    grant_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[CompensatoryStatus] = mapped_column(
        _enum(CompensatoryStatus, "compensatory_status"),
        nullable=False,
        default=CompensatoryStatus.AVAILABLE,
    )

    employee: Mapped[Employee] = relationship(back_populates="compensatory_grants")


class RawPunch(Base):
    __tablename__ = "raw_punches"
    __table_args__ = (
        UniqueConstraint("external_user_id", "log_date", "log_time", name="uq_raw_punches_user_date_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    external_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    log_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    log_time: Mapped[str] = mapped_column(String(8), nullable=False)
    direction: Mapped[PunchDirection] = mapped_column(
        _enum(PunchDirection, "punch_direction"),
        nullable=False,
    )
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "log_date", name="uq_attendance_records_employee_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    log_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    time_in: Mapped[str | None] = mapped_column(String(8), nullable=True)
    time_out: Mapped[str | None] = mapped_column(String(8), nullable=True)
    status: Mapped[AttendanceStatus] = mapped_column(
        _enum(AttendanceStatus, "attendance_status"),
        nullable=False,
    )
    half_day: Mapped[HalfDayPortion | None] = mapped_column(
        _enum(HalfDayPortion, "half_day_portion"),
        nullable=True,
    )
    overtime_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    late_penalty: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class SyncMetadata(Base):
    __tablename__ = "sync_metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ApprovalStagesMixin:
    """Columns shared by every request type that goes through HOD, CEO and Admin."""

    @declared_attr
    def employee_id(cls) -> Mapped[int]:
        return mapped_column(
            ForeignKey("employees.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    stage_a: Mapped[ApprovalStatus] = mapped_column(
        _enum(ApprovalStatus, "approval_status"),
        nullable=False,
        default=ApprovalStatus.PENDING,
    )
    stage_b: Mapped[ApprovalStatus] = mapped_column(
        _enum(ApprovalStatus, "approval_status"),
        nullable=False,
        default=ApprovalStatus.PENDING,
    )
    stage_c: Mapped[ApprovalStatus] = mapped_column(
        _enum(ApprovalStatus, "approval_status"),
        nullable=False,
        default=ApprovalStatus.PENDING,
    )
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    @declared_attr
    def charge_given_to_id(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("employees.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class Leave(ApprovalStagesMixin, Base):
    __tablename__ = "leaves"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    leave_type: Mapped[LeaveType] = mapped_column(_enum(LeaveType, "leave_type"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    start_duration: Mapped[LeaveDuration] = mapped_column(
        _enum(LeaveDuration, "leave_duration"),
        nullable=False,
        default=LeaveDuration.FULL,
    )
    start_session: Mapped[LeaveSession | None] = mapped_column(
        _enum(LeaveSession, "leave_session"),
        nullable=True,
    )
    end_duration: Mapped[LeaveDuration] = mapped_column(
        _enum(LeaveDuration, "leave_duration"),
        nullable=False,
        default=LeaveDuration.FULL,
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    compensatory_grant_id: Mapped[int | None] = mapped_column(
        ForeignKey("compensatory_grants.id", ondelete="SET NULL"),
        nullable=True,
    )


class BusinessTrip(ApprovalStagesMixin, Base):
    __tablename__ = "business_trips"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date_out: Mapped[date] = mapped_column(Date, nullable=False)
    time_out: Mapped[str | None] = mapped_column(String(8), nullable=True)
    date_in: Mapped[date] = mapped_column(Date, nullable=False)
    time_in: Mapped[str | None] = mapped_column(String(8), nullable=True)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    place_unit_visit: Mapped[str | None] = mapped_column(String(255), nullable=True)


class OvertimeClaim(ApprovalStagesMixin, Base):
    __tablename__ = "overtime_claims"
    __table_args__ = (
        UniqueConstraint("employee_id", "claim_date", name="uq_overtime_claims_employee_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    overtime_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    claim_type: Mapped[OvertimeClaimType] = mapped_column(
        _enum(OvertimeClaimType, "overtime_claim_type"),
        nullable=False,
    )
    compensatory_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    project_details: Mapped[str | None] = mapped_column(Text, nullable=True)


class MissedPunchCorrection(ApprovalStagesMixin, Base):
    __tablename__ = "missed_punch_corrections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    punch_date: Mapped[date] = mapped_column(Date, nullable=False)
    punch_type: Mapped[PunchDirection] = mapped_column(
        _enum(PunchDirection, "punch_direction"),
        nullable=False,
    )
    requested_time: Mapped[str] = mapped_column(String(8), nullable=False)
    corrected_time: Mapped[str | None] = mapped_column(String(8), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recipient_employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    subject_employee_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    alert_type: Mapped[AlertType | None] = mapped_column(
        _enum(AlertType, "alert_type"),
        nullable=True,
    )
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        _enum(AuditActorType, "audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONVariant, nullable=False, default=dict)

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hrms.models import (
    AlertType,
    ApprovalStatus,
    AttendanceStatus,
    CompensatoryStatus,
    EmployeeStatus,
    EmployeeType,
    HalfDayPortion,
    LeaveDuration,
    LeaveSession,
    LeaveType,
    PunchDirection,
    Role,
)

CLOCK_PATTERN = r"^\d{2}:\d{2}:\d{2}$"


class EmployeeCreate(BaseModel):
    employee_code: str = Field(min_length=1, max_length=64)
    full_name: str = Field(min_length=2, max_length=255)
    external_user_id: str | None = Field(default=None, max_length=64)
    department_id: int | None = Field(default=None, ge=1)
    designation: str | None = Field(default=None, max_length=255)
    role: Role = Role.EMPLOYEE
    employee_type: EmployeeType = EmployeeType.PROBATION
    date_of_joining: date
    confirmation_date: date | None = None

    @model_validator(mode="after")
    def _validate_dates(self) -> "EmployeeCreate":
        if self.external_user_id is not None:
            self.external_user_id = self.external_user_id.strip() or None
        if self.confirmation_date is not None and self.confirmation_date < self.date_of_joining:
            raise ValueError("confirmation_date must not be before date_of_joining.")
        return self


class EmployeeResignRequest(BaseModel):
    date_of_resigning: date


class CompensatoryGrantRead(BaseModel):
    id: int
    grant_date: date
    amount_hours: int
    status: CompensatoryStatus

    model_config = ConfigDict(from_attributes=True)


class EmployeeBalancesRead(BaseModel):
    id: int
    employee_code: str
    full_name: str
    employee_type: EmployeeType
    status: EmployeeStatus
    paid_leave_balance: float
    medical_leave_balance: float
    restricted_holiday_balance: int
    unpaid_leave_taken: float
    maternity_claims_used: int
    paternity_claims_used: int
    emergency_leave_granted: bool
    compensatory_grants: list[CompensatoryGrantRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class LifecycleResultRead(BaseModel):
    employee: EmployeeBalancesRead
    events: list[str]


class LeaveCreate(BaseModel):
    leave_type: LeaveType
    start_date: date
    end_date: date | None = None
    start_duration: LeaveDuration = LeaveDuration.FULL
    start_session: LeaveSession | None = None
    end_duration: LeaveDuration = LeaveDuration.FULL
    reason: str | None = Field(default=None, max_length=2000)
    compensatory_grant_id: int | None = Field(default=None, ge=1)
    charge_given_to_id: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _validate_range(self) -> "LeaveCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date.")
        if self.start_duration == LeaveDuration.HALF and (self.end_date is None or self.end_date == self.start_date):
            if self.start_session is None:
                raise ValueError("start_session is required for a half-day leave.")
        if self.leave_type == LeaveType.COMPENSATORY and self.compensatory_grant_id is None:
            raise ValueError("compensatory_grant_id is required for compensatory leave.")
        return self


class BusinessTripCreate(BaseModel):
    date_out: date
    time_out: str | None = Field(default=None, pattern=CLOCK_PATTERN)
    date_in: date
    time_in: str | None = Field(default=None, pattern=CLOCK_PATTERN)
    purpose: str = Field(min_length=2, max_length=2000)
    place_unit_visit: str | None = Field(default=None, max_length=255)
    charge_given_to_id: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _validate_range(self) -> "BusinessTripCreate":
        if self.date_in < self.date_out:
            raise ValueError("date_in must not be before date_out.")
        return self


class OvertimeClaimCreate(BaseModel):
    claim_date: date
    project_details: str | None = Field(default=None, max_length=2000)


class MissedPunchCreate(BaseModel):
    punch_date: date
    punch_type: PunchDirection
    requested_time: str = Field(pattern=CLOCK_PATTERN)
    reason: str | None = Field(default=None, max_length=2000)


class DecisionRequest(BaseModel):
    decision: ApprovalStatus
    remarks: str | None = Field(default=None, max_length=2000)
    corrected_time: str | None = Field(default=None, pattern=CLOCK_PATTERN)


class RequestRead(BaseModel):
    id: int
    kind: str
    employee_id: int
    stage_a: ApprovalStatus
    stage_b: ApprovalStatus
    stage_c: ApprovalStatus
    remarks: str | None = None
    created_at: datetime | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    log_date: date
    time_in: str | None = None
    time_out: str | None = None
    status: AttendanceStatus
    half_day: HalfDayPortion | None = None
    overtime_minutes: int
    late_penalty: bool

    model_config = ConfigDict(from_attributes=True)


class NotificationRead(BaseModel):
    id: int
    message: str
    alert_type: AlertType | None = None
    subject_employee_id: int | None = None
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class JobRunRequest(BaseModel):
    day: date | None = None


class IngestRunResponse(BaseModel):
    from_date: date
    fetched: int
    dropped: int
    duplicates: int
    inserted: int
    derived: int
    deferred: int
    unknown_employee: int
    failed: int


class JobRunResponse(BaseModel):
    job: str
    day: date | None = None
    counts: dict[str, int]


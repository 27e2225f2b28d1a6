from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Union

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from hrms.audit import log_audit
from hrms.errors import ApiError, ApprovalError, BalanceError
from hrms.models import (
    ApprovalStatus,
    AttendanceRecord,
    AttendanceStatus,
    AuditActorType,
    BusinessTrip,
    CompensatoryGrant,
    CompensatoryStatus,
    Employee,
    EmployeeType,
    Leave,
    LeaveDuration,
    LeaveType,
    MissedPunchCorrection,
    OvertimeClaim,
    OvertimeClaimType,
    PunchDirection,
    Role,
)
from hrms.schemas import BusinessTripCreate, LeaveCreate, MissedPunchCreate, OvertimeClaimCreate
from hrms.security import Actor
from hrms.services import leave_balance
from hrms.services.attendance_calc import DayDerivation, apply_late_penalty, derive_day, is_weekly_off
from hrms.services.attendance_deriver import get_attendance_record, local_today, upsert_attendance
from hrms.services.coverage import half_day_leave_session, has_open_request
from hrms.services.employee_lifecycle import apply_lifecycle
from hrms.services.notifications import NotificationSink, notify_safely, role_holders
from hrms.services.overtime_settlement import (
    MIN_SETTLEMENT_MINUTES,
    OvertimePolicy,
    claim_deadline,
    compensatory_hours_for,
)
from hrms.settings import get_attendance_timezone

logger = logging.getLogger("hrms.approvals")

ApprovableRequest = Union[Leave, BusinessTrip, OvertimeClaim, MissedPunchCorrection]
CONSECUTIVE_CAPPED_LEAVE_TYPES = frozenset({LeaveType.CASUAL, LeaveType.RESTRICTED_HOLIDAY, LeaveType.EMERGENCY})


class RequestKind(str, enum.Enum):
    LEAVE = "leave"
    BUSINESS_TRIP = "business-trip"
    OVERTIME_CLAIM = "overtime-claim"
    MISSED_PUNCH = "missed-punch"


REQUEST_MODELS: dict[RequestKind, type] = {
    RequestKind.LEAVE: Leave,
    RequestKind.BUSINESS_TRIP: BusinessTrip,
    RequestKind.OVERTIME_CLAIM: OvertimeClaim,
    RequestKind.MISSED_PUNCH: MissedPunchCorrection,
}

STAGE_BY_ROLE: dict[Role, str] = {
    Role.HOD: "stage_a",
    Role.CEO: "stage_b",
    Role.ADMIN: "stage_c",
}
STAGE_LABELS = {"stage_a": "HOD", "stage_b": "CEO", "stage_c": "Admin"}
_STAGE_DECISIONS = {
    "stage_a": {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED},
    "stage_b": {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED},
    "stage_c": {ApprovalStatus.ACKNOWLEDGED},
}
_STAGE_A_CLEARED = (ApprovalStatus.APPROVED, ApprovalStatus.SUBMITTED)


@dataclass(frozen=True)
class StageSnapshot:
    stage_a: ApprovalStatus
    stage_b: ApprovalStatus
    stage_c: ApprovalStatus

    @classmethod
    def of(cls, request: ApprovableRequest) -> StageSnapshot:
        return cls(stage_a=request.stage_a, stage_b=request.stage_b, stage_c=request.stage_c)

    @property
    def rejected(self) -> bool:
        return ApprovalStatus.REJECTED in (self.stage_a, self.stage_b)

    @property
    def terminal(self) -> bool:
        return self.rejected or self.stage_c == ApprovalStatus.ACKNOWLEDGED


def plan_decision(
    snapshot: StageSnapshot,
    *,
    role: Role,
    decision: ApprovalStatus,
    remarks: str | None = None,
) -> dict[str, ApprovalStatus]:
    """Validate a decision and return the stage columns it changes.

    Raises ``ApprovalError`` for wrong roles, out-of-order stages, decisions on
    a stage that is no longer pending and rejections without remarks.
    """
    stage = STAGE_BY_ROLE.get(role)
    if stage is None:
        raise ApprovalError(ApprovalError.ROLE_NOT_ALLOWED, f"Role {role.value} cannot decide requests.")
    if snapshot.terminal:
        raise ApprovalError(ApprovalError.REQUEST_TERMINAL, "Request is already closed.")
    if decision not in _STAGE_DECISIONS[stage]:
        raise ApprovalError(
            ApprovalError.INVALID_DECISION,
            f"{STAGE_LABELS[stage]} cannot set {decision.value}.",
        )
    if decision == ApprovalStatus.REJECTED and not (remarks or "").strip():
        raise ApprovalError(ApprovalError.REMARKS_REQUIRED, "Remarks are required when rejecting.")
    if stage == "stage_b" and snapshot.stage_a not in _STAGE_A_CLEARED:
        raise ApprovalError(ApprovalError.STAGE_OUT_OF_ORDER, "HOD decision is still pending.")
    if stage == "stage_c" and snapshot.stage_b != ApprovalStatus.APPROVED:
        raise ApprovalError(ApprovalError.STAGE_OUT_OF_ORDER, "CEO approval is still pending.")
    if getattr(snapshot, stage) != ApprovalStatus.PENDING:
        raise ApprovalError(ApprovalError.STAGE_NOT_PENDING, f"{STAGE_LABELS[stage]} stage is already decided.")

    changes = {stage: decision}
    if stage == "stage_a" and decision == ApprovalStatus.APPROVED:
        changes["stage_b"] = ApprovalStatus.PENDING
    if stage == "stage_b" and decision == ApprovalStatus.APPROVED:
        changes["stage_c"] = ApprovalStatus.PENDING
    return changes


def initial_stages(role: Role, kind: RequestKind) -> StageSnapshot:
    pending = ApprovalStatus.PENDING
    if role == Role.HOD:
        stage_a = ApprovalStatus.APPROVED if kind == RequestKind.BUSINESS_TRIP else ApprovalStatus.SUBMITTED
        return StageSnapshot(stage_a=stage_a, stage_b=pending, stage_c=pending)
    if role == Role.CEO:
        return StageSnapshot(stage_a=ApprovalStatus.APPROVED, stage_b=ApprovalStatus.APPROVED, stage_c=pending)
    if role == Role.ADMIN:
        return StageSnapshot(stage_a=ApprovalStatus.APPROVED, stage_b=pending, stage_c=pending)
    return StageSnapshot(stage_a=pending, stage_b=pending, stage_c=pending)


def _next_approvers(db: Session, snapshot: StageSnapshot, requester: Employee) -> list[int]:
    if snapshot.terminal:
        return []
    if snapshot.stage_a == ApprovalStatus.PENDING:
        return role_holders(db, Role.HOD, department_id=requester.department_id)
    if snapshot.stage_b == ApprovalStatus.PENDING:
        return role_holders(db, Role.CEO)
    if snapshot.stage_c == ApprovalStatus.PENDING:
        return role_holders(db, Role.ADMIN)
    return []


def _request_label(kind: RequestKind, request: ApprovableRequest) -> str:
    return f"{kind.value.replace('-', ' ')} request #{request.id}"


# Submission


def _require_confirmed(employee: Employee, leave_type: LeaveType) -> None:
    if employee.employee_type != EmployeeType.CONFIRMED:
        raise BalanceError(
            f"{leave_type.name}_LEAVE_NOT_ALLOWED",
            f"{leave_type.value} leave is available to confirmed employees only.",
        )


def _reject_overlap(db: Session, employee: Employee, start: date, end: date) -> None:
    if has_open_request(db, employee.id, start, end):
        raise ApiError(
            status_code=409,
            code="OVERLAPPING_REQUEST",
            message="A leave or business trip already covers these dates.",
        )


def _build_leave(db: Session, employee: Employee, payload: LeaveCreate, *, now_utc: datetime) -> Leave:
    _reject_overlap(db, employee, payload.start_date, payload.end_date or payload.start_date)
    days = leave_balance.leave_days(
        payload.start_date,
        payload.end_date,
        start_duration=payload.start_duration,
        end_duration=payload.end_duration,
    )
    if payload.leave_type in (LeaveType.MEDICAL, LeaveType.MATERNITY, LeaveType.PATERNITY):
        _require_confirmed(employee, payload.leave_type)
    if payload.leave_type == LeaveType.MATERNITY:
        leave_balance.check_parental_claims(employee.maternity_claims_used, "maternity")
    if payload.leave_type == LeaveType.PATERNITY:
        leave_balance.check_parental_claims(employee.paternity_claims_used, "paternity")
    if payload.leave_type in CONSECUTIVE_CAPPED_LEAVE_TYPES:
        leave_balance.check_consecutive_paid_leave(days)
    if payload.leave_type == LeaveType.EMERGENCY and not employee.emergency_leave_granted:
        raise BalanceError("EMERGENCY_LEAVE_NOT_GRANTED", "Emergency leave has not been granted.")
    if payload.leave_type == LeaveType.RESTRICTED_HOLIDAY and (employee.restricted_holiday_balance or 0) < 1:
        raise BalanceError("RESTRICTED_HOLIDAY_EXHAUSTED", "No restricted holiday left this year.")
    if payload.leave_type == LeaveType.COMPENSATORY:
        grant = db.get(CompensatoryGrant, payload.compensatory_grant_id)
        if grant is None or grant.employee_id != employee.id or grant.status != CompensatoryStatus.AVAILABLE:
            raise BalanceError("COMPENSATORY_GRANT_UNAVAILABLE", "Compensatory grant is not available.")
        if days * 8 != grant.amount_hours:
            raise BalanceError(
                "COMPENSATORY_DURATION_MISMATCH",
                "A 4 hour grant covers a half day and an 8 hour grant covers a full day.",
            )

    return Leave(
        leave_type=payload.leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        start_duration=payload.start_duration,
        start_session=payload.start_session,
        end_duration=payload.end_duration,
        reason=payload.reason,
        compensatory_grant_id=payload.compensatory_grant_id,
        charge_given_to_id=payload.charge_given_to_id,
    )


def _build_business_trip(
    db: Session,
    employee: Employee,
    payload: BusinessTripCreate,
    *,
    now_utc: datetime,
) -> BusinessTrip:
    _reject_overlap(db, employee, payload.date_out, payload.date_in)
    return BusinessTrip(
        date_out=payload.date_out,
        time_out=payload.time_out,
        date_in=payload.date_in,
        time_in=payload.time_in,
        purpose=payload.purpose,
        place_unit_visit=payload.place_unit_visit,
        charge_given_to_id=payload.charge_given_to_id,
    )


def _build_overtime_claim(
    db: Session,
    employee: Employee,
    payload: OvertimeClaimCreate,
    *,
    now_utc: datetime,
) -> OvertimeClaim:
    record = get_attendance_record(db, employee.id, payload.claim_date)
    if record is None or record.overtime_minutes < MIN_SETTLEMENT_MINUTES:
        raise ApiError(status_code=422, code="NO_OVERTIME", message="No claimable overtime on that day.")
    if now_utc > claim_deadline(payload.claim_date, get_attendance_timezone()):
        raise ApiError(status_code=422, code="CLAIM_DEADLINE_PASSED", message="The claim deadline has passed.")
    existing = db.scalar(
        select(OvertimeClaim.id).where(
            OvertimeClaim.employee_id == employee.id,
            OvertimeClaim.claim_date == payload.claim_date,
        )
    )
    if existing is not None:
        raise ApiError(status_code=409, code="CLAIM_EXISTS", message="Overtime is already claimed for that day.")
    _reject_overlap(db, employee, payload.claim_date, payload.claim_date)

    if OvertimePolicy.from_settings().is_eligible(employee):
        claim_type = OvertimeClaimType.OVERTIME
        hours = 0
    elif is_weekly_off(payload.claim_date):
        claim_type = OvertimeClaimType.COMPENSATORY
        hours = compensatory_hours_for(record.overtime_minutes)
        if not hours:
            raise ApiError(
                status_code=422,
                code="OVERTIME_NOT_CLAIMABLE",
                message="At least 5 hours on a weekly off are needed for compensatory leave.",
            )
    else:
        raise ApiError(
            status_code=422,
            code="OVERTIME_NOT_CLAIMABLE",
            message="Overtime on working days is not claimable for this employee.",
        )

    return OvertimeClaim(
        claim_date=payload.claim_date,
        overtime_minutes=record.overtime_minutes,
        claim_type=claim_type,
        compensatory_hours=hours,
        project_details=payload.project_details,
    )


def _build_missed_punch(
    db: Session,
    employee: Employee,
    payload: MissedPunchCreate,
    *,
    now_utc: datetime,
) -> MissedPunchCorrection:
    if payload.punch_date > local_today(now_utc):
        raise ApiError(status_code=422, code="FUTURE_DATE", message="Punch date cannot be in the future.")
    return MissedPunchCorrection(
        punch_date=payload.punch_date,
        punch_type=payload.punch_type,
        requested_time=payload.requested_time,
        reason=payload.reason,
    )


_BUILDERS: dict[RequestKind, Callable[..., Any]] = {
    RequestKind.LEAVE: _build_leave,
    RequestKind.BUSINESS_TRIP: _build_business_trip,
    RequestKind.OVERTIME_CLAIM: _build_overtime_claim,
    RequestKind.MISSED_PUNCH: _build_missed_punch,
}


def submit_request(
    db: Session,
    *,
    kind: RequestKind,
    actor: Actor,
    payload: BaseModel,
    sink: NotificationSink,
    now_utc: datetime | None = None,
) -> ApprovableRequest:
    now = now_utc or datetime.now(timezone.utc)
    requester = db.get(Employee, actor.employee_id)
    if requester is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")

    request = _BUILDERS[kind](db, requester, payload, now_utc=now)
    stages = initial_stages(actor.role, kind)
    request.employee_id = requester.id
    request.stage_a = stages.stage_a
    request.stage_b = stages.stage_b
    request.stage_c = stages.stage_c
    db.add(request)
    db.commit()
    db.refresh(request)

    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(actor.employee_id),
        action=f"{kind.value}_submitted",
        entity_type=kind.value,
        entity_id=str(request.id),
        details={"stage_a": stages.stage_a.value, "stage_b": stages.stage_b.value},
    )
    notify_safely(
        sink,
        _next_approvers(db, stages, requester),
        f"{requester.full_name} submitted {_request_label(kind, request)} for your approval.",
    )
    return request


# Terminal side effects


def _leave_casual(db: Session, request: Leave, employee: Employee, days: float) -> None:
    leave_balance.deduct_paid_leave(employee, days)


def _leave_medical(db: Session, request: Leave, employee: Employee, days: float) -> None:
    leave_balance.deduct_medical_leave(employee, days)


def _leave_maternity(db: Session, request: Leave, employee: Employee, days: float) -> None:
    leave_balance.record_maternity_claim(employee)


def _leave_paternity(db: Session, request: Leave, employee: Employee, days: float) -> None:
    leave_balance.record_paternity_claim(employee)


def _leave_restricted(db: Session, request: Leave, employee: Employee, days: float) -> None:
    leave_balance.deduct_restricted_holiday(employee)


def _leave_compensatory(db: Session, request: Leave, employee: Employee, days: float) -> None:
    grant = db.get(CompensatoryGrant, request.compensatory_grant_id) if request.compensatory_grant_id else None
    leave_balance.claim_compensatory_leave(employee, grant)


def _leave_emergency(db: Session, request: Leave, employee: Employee, days: float) -> None:
    if (employee.paid_leave_balance or 0) >= days:
        leave_balance.deduct_paid_leave(employee, days)
    else:
        leave_balance.increment_unpaid_leave(employee, days)


def _leave_without_pay(db: Session, request: Leave, employee: Employee, days: float) -> None:
    leave_balance.increment_unpaid_leave(employee, days)


LEAVE_EFFECTS: dict[LeaveType, Callable[[Session, Leave, Employee, float], None]] = {
    LeaveType.CASUAL: _leave_casual,
    LeaveType.MEDICAL: _leave_medical,
    LeaveType.MATERNITY: _leave_maternity,
    LeaveType.PATERNITY: _leave_paternity,
    LeaveType.RESTRICTED_HOLIDAY: _leave_restricted,
    LeaveType.COMPENSATORY: _leave_compensatory,
    LeaveType.EMERGENCY: _leave_emergency,
    LeaveType.LEAVE_WITHOUT_PAY: _leave_without_pay,
}


def _apply_leave(db: Session, request: Leave, employee: Employee, *, corrected_time: str | None) -> None:
    days = leave_balance.leave_days(
        request.start_date,
        request.end_date,
        start_duration=request.start_duration or LeaveDuration.FULL,
        end_duration=request.end_duration or LeaveDuration.FULL,
    )
    LEAVE_EFFECTS[request.leave_type](db, request, employee, days)


def _apply_business_trip(db: Session, request: BusinessTrip, employee: Employee, *, corrected_time: str | None) -> None:
    return None


def _apply_overtime_claim(db: Session, request: OvertimeClaim, employee: Employee, *, corrected_time: str | None) -> None:
    if request.claim_type != OvertimeClaimType.COMPENSATORY or not request.compensatory_hours:
        return
    leave_balance.grant_compensatory_leave(employee, request.claim_date, request.compensatory_hours)
    record = get_attendance_record(db, employee.id, request.claim_date)
    if record is not None:
        record.overtime_minutes = 0


def _corrected_punches(record: AttendanceRecord | None, direction: PunchDirection, clock: str) -> list[str]:
    if record is None:
        return [clock]
    # a single raw punch is stored as both ends of the day
    if record.time_in is not None and record.time_in == record.time_out:
        return sorted({record.time_in, clock})
    time_in, time_out = record.time_in, record.time_out
    if direction == PunchDirection.IN:
        time_in = time_in or clock
    else:
        time_out = time_out or clock
    return sorted({value for value in (time_in, time_out) if value is not None})


def _apply_missed_punch(
    db: Session,
    request: MissedPunchCorrection,
    employee: Employee,
    *,
    corrected_time: str | None,
) -> None:
    clock = corrected_time or request.requested_time
    record = get_attendance_record(db, employee.id, request.punch_date)
    punches = _corrected_punches(record, request.punch_type, clock)
    if len(punches) < 2:
        derivation = DayDerivation(
            status=AttendanceStatus.PRESENT,
            time_in=punches[0] if request.punch_type == PunchDirection.IN else None,
            time_out=punches[0] if request.punch_type == PunchDirection.OUT else None,
        )
    else:
        derivation = derive_day(
            punches,
            day=request.punch_date,
            elapsed=True,
            half_day_leave=half_day_leave_session(db, employee.id, request.punch_date),
        )
        if record is not None and record.late_penalty:
            derivation = apply_late_penalty(derivation, punches, elapsed=True)
    upsert_attendance(
        db,
        employee_id=employee.id,
        day=request.punch_date,
        derivation=derivation,
        record=record,
    )


TERMINAL_EFFECTS: dict[RequestKind, Callable[..., None]] = {
    RequestKind.LEAVE: _apply_leave,
    RequestKind.BUSINESS_TRIP: _apply_business_trip,
    RequestKind.OVERTIME_CLAIM: _apply_overtime_claim,
    RequestKind.MISSED_PUNCH: _apply_missed_punch,
}


# Decisions


def get_request_or_404(db: Session, kind: RequestKind, request_id: int) -> ApprovableRequest:
    request = db.get(REQUEST_MODELS[kind], request_id)
    if request is None:
        raise ApiError(status_code=404, code="REQUEST_NOT_FOUND", message="Request not found.")
    return request


def _guarded_update(model: type, request_id: int, stage: str, values: dict[str, Any]) -> Any:
    conditions = [
        model.id == request_id,
        getattr(model, stage) == ApprovalStatus.PENDING,
        model.stage_a != ApprovalStatus.REJECTED,
        model.stage_b != ApprovalStatus.REJECTED,
    ]
    if stage == "stage_b":
        conditions.append(model.stage_a.in_(_STAGE_A_CLEARED))
    if stage == "stage_c":
        conditions.append(model.stage_b == ApprovalStatus.APPROVED)
    return update(model).where(*conditions).values(**values).execution_options(synchronize_session=False)


def decide_request(
    db: Session,
    *,
    kind: RequestKind,
    request_id: int,
    actor: Actor,
    decision: ApprovalStatus,
    sink: NotificationSink,
    remarks: str | None = None,
    corrected_time: str | None = None,
    now_utc: datetime | None = None,
) -> ApprovableRequest:
    """Advance one stage of a request.

    The stage column is moved with a conditional UPDATE that only matches
    while the stage is still pending, so concurrent deciders cannot both win.
    At the Admin stage the balance side effect runs in the same transaction;
    if it fails the acknowledgment is rolled back and the stage stays pending.
    """
    now = now_utc or datetime.now(timezone.utc)
    model = REQUEST_MODELS[kind]
    request = get_request_or_404(db, kind, request_id)
    requester = db.get(Employee, request.employee_id)
    if requester is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Requester not found.")

    changes = plan_decision(StageSnapshot.of(request), role=actor.role, decision=decision, remarks=remarks)
    stage = STAGE_BY_ROLE[actor.role]
    if actor.role == Role.HOD:
        approver = db.get(Employee, actor.employee_id)
        if approver is None or approver.department_id != requester.department_id:
            raise ApprovalError(
                ApprovalError.ROLE_NOT_ALLOWED,
                "HOD can only decide requests from their own department.",
            )

    values: dict[str, Any] = dict(changes)
    if remarks and remarks.strip():
        values["remarks"] = remarks.strip()
    if kind == RequestKind.MISSED_PUNCH and stage == "stage_c" and corrected_time:
        values["corrected_time"] = corrected_time

    result = db.execute(_guarded_update(model, request_id, stage, values))
    if result.rowcount != 1:
        db.rollback()
        raise ApprovalError(ApprovalError.STAGE_NOT_PENDING, f"{STAGE_LABELS[stage]} stage is already decided.")

    if stage == "stage_c":
        try:
            as_of = local_today(now)
            apply_lifecycle(db, requester, as_of)
            TERMINAL_EFFECTS[kind](db, request, requester, corrected_time=corrected_time)
            db.flush()
        except Exception:
            db.rollback()
            logger.warning(
                "terminal_effect_failed",
                extra={"kind": kind.value, "request_id": request_id, "employee_id": requester.id},
                exc_info=True,
            )
            raise
    db.commit()
    db.refresh(request)

    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(actor.employee_id),
        action=f"{kind.value}_{decision.value.lower()}",
        entity_type=kind.value,
        entity_id=str(request_id),
        details={"stage": STAGE_LABELS[stage], "decision": decision.value, "remarks": remarks},
    )
    logger.info(
        "request_decided",
        extra={
            "kind": kind.value,
            "request_id": request_id,
            "stage": STAGE_LABELS[stage],
            "decision": decision.value,
            "actor_id": actor.employee_id,
        },
    )
    _notify_decision(db, sink, kind=kind, request=request, requester=requester, stage=stage, decision=decision)
    return request


def _notify_decision(
    db: Session,
    sink: NotificationSink,
    *,
    kind: RequestKind,
    request: ApprovableRequest,
    requester: Employee,
    stage: str,
    decision: ApprovalStatus,
) -> None:
    label = _request_label(kind, request)
    stage_label = STAGE_LABELS[stage]
    if decision == ApprovalStatus.REJECTED:
        recipients = {requester.id}
        if request.charge_given_to_id:
            recipients.add(request.charge_given_to_id)
        notify_safely(sink, recipients, f"Your {label} was rejected by {stage_label}: {request.remarks}")
        return

    notify_safely(sink, [requester.id], f"Your {label} was {decision.value.lower()} by {stage_label}.")
    next_approvers = _next_approvers(db, StageSnapshot.of(request), requester)
    if next_approvers:
        notify_safely(sink, next_approvers, f"{requester.full_name}'s {label} awaits your decision.")


def request_details(kind: RequestKind, request: ApprovableRequest) -> dict[str, Any]:
    skip = {"id", "employee_id", "stage_a", "stage_b", "stage_c", "remarks", "created_at"}
    details: dict[str, Any] = {}
    for column in REQUEST_MODELS[kind].__table__.columns:
        if column.key in skip:
            continue
        value = getattr(request, column.key)
        if isinstance(value, enum.Enum):
            value = value.value
        elif isinstance(value, date):
            value = value.isoformat()
        details[column.key] = value
    return details

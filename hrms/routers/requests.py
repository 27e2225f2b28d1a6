from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from hrms.db import get_db
from hrms.errors import ApiError
from hrms.models import Role
from hrms.schemas import (
    BusinessTripCreate,
    DecisionRequest,
    LeaveCreate,
    MissedPunchCreate,
    OvertimeClaimCreate,
    RequestRead,
)
from hrms.security import Actor, require_actor
from hrms.services.approvals import (
    ApprovableRequest,
    RequestKind,
    decide_request,
    get_request_or_404,
    request_details,
    submit_request,
)
from hrms.services.notifications import NotificationSink, get_notification_sink

router = APIRouter(tags=["requests"])


def _to_read(kind: RequestKind, request: ApprovableRequest) -> RequestRead:
    return RequestRead(
        id=request.id,
        kind=kind.value,
        employee_id=request.employee_id,
        stage_a=request.stage_a,
        stage_b=request.stage_b,
        stage_c=request.stage_c,
        remarks=request.remarks,
        created_at=request.created_at,
        details=request_details(kind, request),
    )


def _submit(
    kind: RequestKind,
    payload: BaseModel,
    actor: Actor,
    db: Session,
    sink: NotificationSink,
) -> RequestRead:
    request = submit_request(db, kind=kind, actor=actor, payload=payload, sink=sink)
    return _to_read(kind, request)


@router.post("/api/requests/leaves", response_model=RequestRead, status_code=status.HTTP_201_CREATED)
def create_leave(
    payload: LeaveCreate,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> RequestRead:
    return _submit(RequestKind.LEAVE, payload, actor, db, sink)


@router.post("/api/requests/business-trips", response_model=RequestRead, status_code=status.HTTP_201_CREATED)
def create_business_trip(
    payload: BusinessTripCreate,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> RequestRead:
    return _submit(RequestKind.BUSINESS_TRIP, payload, actor, db, sink)


@router.post("/api/requests/overtime-claims", response_model=RequestRead, status_code=status.HTTP_201_CREATED)
def create_overtime_claim(
    payload: OvertimeClaimCreate,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> RequestRead:
    return _submit(RequestKind.OVERTIME_CLAIM, payload, actor, db, sink)


@router.post("/api/requests/missed-punches", response_model=RequestRead, status_code=status.HTTP_201_CREATED)
def create_missed_punch(
    payload: MissedPunchCreate,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> RequestRead:
    return _submit(RequestKind.MISSED_PUNCH, payload, actor, db, sink)


@router.get("/api/requests/{kind}/{request_id}", response_model=RequestRead)
def get_request(
    kind: RequestKind,
    request_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> RequestRead:
    request = get_request_or_404(db, kind, request_id)
    if actor.role == Role.EMPLOYEE and request.employee_id != actor.employee_id:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return _to_read(kind, request)


@router.put("/api/requests/{kind}/{request_id}/decision", response_model=RequestRead)
def decide(
    kind: RequestKind,
    request_id: int,
    payload: DecisionRequest,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> RequestRead:
    request = decide_request(
        db,
        kind=kind,
        request_id=request_id,
        actor=actor,
        decision=payload.decision,
        sink=sink,
        remarks=payload.remarks,
        corrected_time=payload.corrected_time,
    )
    return _to_read(kind, request)

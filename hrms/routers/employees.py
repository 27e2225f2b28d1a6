from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from hrms.audit import log_audit
from hrms.db import get_db
from hrms.errors import ApiError
from hrms.models import AuditActorType, Role
from hrms.schemas import (
    EmployeeBalancesRead,
    EmployeeCreate,
    EmployeeResignRequest,
    LifecycleResultRead,
)
from hrms.security import Actor, require_actor, require_role
from hrms.services.attendance_deriver import local_today
from hrms.services.employee_lifecycle import (
    create_employee,
    get_employee_or_404,
    grant_emergency_leave,
    reconcile_employee,
    resign_employee,
)
from hrms.services.leave_balance import LifecycleResult

router = APIRouter(tags=["employees"])


def _today() -> date:
    return local_today(datetime.now(timezone.utc))


def _lifecycle_read(result: LifecycleResult) -> LifecycleResultRead:
    return LifecycleResultRead(
        employee=EmployeeBalancesRead.model_validate(result.employee),
        events=list(result.events),
    )


@router.post(
    "/api/admin/employees",
    response_model=EmployeeBalancesRead,
    status_code=status.HTTP_201_CREATED,
)
def create_employee_endpoint(
    payload: EmployeeCreate,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
) -> EmployeeBalancesRead:
    employee = create_employee(db, payload, as_of=_today())
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(actor.employee_id),
        action="employee_created",
        entity_type="employee",
        entity_id=str(employee.id),
        details={"employee_code": employee.employee_code, "employee_type": employee.employee_type.value},
    )
    return EmployeeBalancesRead.model_validate(employee)


@router.get("/api/employees/{employee_id}/balances", response_model=EmployeeBalancesRead)
def get_balances(
    employee_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> EmployeeBalancesRead:
    if actor.role == Role.EMPLOYEE and actor.employee_id != employee_id:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return EmployeeBalancesRead.model_validate(get_employee_or_404(db, employee_id))


@router.post("/api/admin/employees/{employee_id}/reconcile", response_model=LifecycleResultRead)
def reconcile_employee_endpoint(
    employee_id: int,
    _actor: Actor = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
) -> LifecycleResultRead:
    return _lifecycle_read(reconcile_employee(db, employee_id, as_of=_today()))


@router.post("/api/admin/employees/{employee_id}/resign", response_model=LifecycleResultRead)
def resign_employee_endpoint(
    employee_id: int,
    payload: EmployeeResignRequest,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
) -> LifecycleResultRead:
    result = resign_employee(
        db,
        employee_id,
        resignation_date=payload.date_of_resigning,
        as_of=_today(),
    )
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(actor.employee_id),
        action="employee_resigned",
        entity_type="employee",
        entity_id=str(employee_id),
        details={"date_of_resigning": payload.date_of_resigning.isoformat()},
    )
    return _lifecycle_read(result)


@router.post("/api/admin/employees/{employee_id}/emergency-leave", response_model=EmployeeBalancesRead)
def grant_emergency_leave_endpoint(
    employee_id: int,
    actor: Actor = Depends(require_role(Role.ADMIN, Role.CEO)),
    db: Session = Depends(get_db),
) -> EmployeeBalancesRead:
    employee = grant_emergency_leave(db, employee_id, as_of=_today(), granted_by=actor.employee_id)
    return EmployeeBalancesRead.model_validate(employee)

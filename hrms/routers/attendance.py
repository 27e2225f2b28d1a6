from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from hrms.audit import log_audit
from hrms.db import get_db
from hrms.errors import ApiError, TimeClockUnavailableError
from hrms.models import AttendanceRecord, AttendanceStatus, AuditActorType, Employee, Notification, Role
from hrms.schemas import (
    AttendanceRecordRead,
    IngestRunResponse,
    JobRunRequest,
    JobRunResponse,
    NotificationRead,
)
from hrms.security import Actor, require_actor, require_role
from hrms.services.absence_monitor import run_absence_monitor
from hrms.services.attendance_deriver import derive_pending_attendance
from hrms.services.attendance_export import XLSX_MEDIA_TYPE, build_attendance_xlsx_bytes
from hrms.services.notifications import NotificationSink, get_notification_sink
from hrms.services.overtime_settlement import settle_overtime
from hrms.services.punch_ingest import sync_punches
from hrms.services.timeclock import TimeClockGateway, get_timeclock_gateway

router = APIRouter(tags=["attendance"])


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


def _audit_job(db: Session, actor: Actor, job: str, details: dict) -> None:
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(actor.employee_id),
        action=f"job_{job}_triggered",
        entity_type="job",
        entity_id=job,
        details=details,
    )


@router.get("/api/attendance", response_model=list[AttendanceRecordRead])
def list_attendance(
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    employee_id: int | None = Query(default=None, ge=1),
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[AttendanceRecord]:
    target_id = employee_id or actor.employee_id
    if actor.role == Role.EMPLOYEE and target_id != actor.employee_id:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    if actor.role == Role.HOD and target_id != actor.employee_id:
        hod = db.get(Employee, actor.employee_id)
        target = db.get(Employee, target_id)
        if hod is None or target is None or hod.department_id is None or target.department_id != hod.department_id:
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    start, end = _month_bounds(year, month)
    return list(
        db.scalars(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.employee_id == target_id,
                AttendanceRecord.log_date >= start,
                AttendanceRecord.log_date < end,
            )
            .order_by(AttendanceRecord.log_date)
        ).all()
    )


@router.get("/api/notifications", response_model=list[NotificationRead])
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=500),
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> list[Notification]:
    stmt = select(Notification).where(Notification.recipient_employee_id == actor.employee_id)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    return list(db.scalars(stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)).all())


@router.patch("/api/notifications/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: int,
    actor: Actor = Depends(require_actor),
    db: Session = Depends(get_db),
) -> Notification:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.recipient_employee_id != actor.employee_id:
        raise ApiError(status_code=404, code="NOTIFICATION_NOT_FOUND", message="Notification not found.")
    notification.read = True
    db.commit()
    db.refresh(notification)
    return notification


@router.post("/api/admin/jobs/punch-sync", response_model=IngestRunResponse)
def run_punch_sync(
    actor: Actor = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
    gateway: TimeClockGateway | None = Depends(get_timeclock_gateway),
) -> IngestRunResponse:
    if gateway is None:
        raise TimeClockUnavailableError("Time-clock store is not configured.")
    now_utc = datetime.now(timezone.utc)
    ingest = sync_punches(db, gateway, now_utc=now_utc)
    derivation = derive_pending_attendance(db, now_utc=now_utc)
    _audit_job(db, actor, "punch_sync", {"inserted": ingest.inserted, "derived": derivation.derived})
    return IngestRunResponse(
        from_date=ingest.from_date,
        fetched=ingest.fetched,
        dropped=ingest.dropped,
        duplicates=ingest.duplicates,
        inserted=ingest.inserted,
        derived=derivation.derived,
        deferred=derivation.deferred,
        unknown_employee=derivation.unknown_employee,
        failed=derivation.failed,
    )


@router.post("/api/admin/jobs/derive", response_model=JobRunResponse)
def run_derivation(
    actor: Actor = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
) -> JobRunResponse:
    summary = derive_pending_attendance(db, now_utc=datetime.now(timezone.utc))
    counts = {
        "derived": summary.derived,
        "deferred": summary.deferred,
        "unknown_employee": summary.unknown_employee,
        "failed": summary.failed,
    }
    _audit_job(db, actor, "derive", counts)
    return JobRunResponse(job="derive", counts=counts)


@router.post("/api/admin/jobs/absence-monitor", response_model=JobRunResponse)
def run_absence_job(
    payload: JobRunRequest,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(get_notification_sink),
) -> JobRunResponse:
    summary = run_absence_monitor(db, sink=sink, now_utc=datetime.now(timezone.utc), day=payload.day)
    counts = {
        "backfilled": summary.backfilled,
        "late_downgraded": summary.late_downgraded,
        "warnings": summary.warnings,
        "termination_alerts": summary.termination_alerts,
        "failed": summary.failed,
    }
    _audit_job(db, actor, "absence_monitor", {"day": payload.day.isoformat() if payload.day else None, **counts})
    return JobRunResponse(job="absence-monitor", day=payload.day, counts=counts)


@router.post("/api/admin/jobs/overtime-settlement", response_model=JobRunResponse)
def run_overtime_job(
    payload: JobRunRequest,
    actor: Actor = Depends(require_role(Role.ADMIN)),
    db: Session = Depends(get_db),
) -> JobRunResponse:
    summary = settle_overtime(db, now_utc=datetime.now(timezone.utc), settle_day=payload.day)
    counts = {
        "forfeited": summary.forfeited,
        "converted": summary.converted,
        "payable": summary.payable,
        "failed": summary.failed,
    }
    _audit_job(db, actor, "overtime_settlement", {"day": summary.settle_day.isoformat(), **counts})
    return JobRunResponse(job="overtime-settlement", day=summary.settle_day, counts=counts)


@router.get("/api/admin/exports/attendance.xlsx")
def export_attendance_xlsx(
    from_date: date = Query(...),
    to_date: date = Query(...),
    status_filter: AttendanceStatus | None = Query(default=None, alias="status"),
    department_id: int | None = Query(default=None, ge=1),
    actor: Actor = Depends(require_role(Role.ADMIN, Role.CEO, Role.HOD)),
    db: Session = Depends(get_db),
) -> Response:
    if actor.role == Role.HOD:
        hod = db.get(Employee, actor.employee_id)
        department_id = hod.department_id if hod is not None else None
        if department_id is None:
            raise ApiError(status_code=403, code="FORBIDDEN", message="HOD has no department.")
    payload = build_attendance_xlsx_bytes(
        db,
        start_date=from_date,
        end_date=to_date,
        status=status_filter,
        department_id=department_id,
    )
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(actor.employee_id),
        action="attendance_export_xlsx",
        entity_type="export",
        entity_id="attendance",
        details={
            "from_date": from_date.isoformat(),
            "to_date": to_date.isoformat(),
            "status": status_filter.value if status_filter else None,
            "department_id": department_id,
        },
    )
    status_suffix = status_filter.value if status_filter else "all"
    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="attendance_{status_suffix}_{from_date.isoformat()}.xlsx"',
        },
    )

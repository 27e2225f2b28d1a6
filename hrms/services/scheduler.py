from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from hrms.db import SessionLocal
from hrms.services.absence_monitor import run_absence_monitor
from hrms.services.attendance_deriver import derive_pending_attendance, local_today
from hrms.services.employee_lifecycle import reconcile_working_employees
from hrms.services.notifications import NotificationSink, get_notification_sink
from hrms.services.overtime_settlement import settle_overtime
from hrms.services.punch_ingest import purge_processed_punches, sync_punches, window_start
from hrms.services.timeclock import TimeClockGateway, get_timeclock_gateway
from hrms.settings import get_attendance_timezone

logger = logging.getLogger("hrms.jobs")


@dataclass
class CycleReport:
    started_at: datetime
    steps: dict[str, Any] = field(default_factory=dict)
    failed_steps: list[str] = field(default_factory=list)


def run_punch_cycle(
    now_utc: datetime,
    *,
    gateway: TimeClockGateway | None = None,
    db: Session | None = None,
) -> dict[str, Any]:
    """Ingest new punches, derive attendance and purge punches that can no longer be re-fetched."""
    owns_session = db is None
    session = db or SessionLocal()
    try:
        result: dict[str, Any] = {}
        active_gateway = gateway or get_timeclock_gateway()
        if active_gateway is None:
            logger.info("punch_sync_skipped", extra={"reason": "timeclock_not_configured"})
        else:
            ingest = sync_punches(session, active_gateway, now_utc=now_utc)
            result["inserted"] = ingest.inserted
            result["dropped"] = ingest.dropped
        derivation = derive_pending_attendance(session, now_utc=now_utc)
        result["derived"] = derivation.derived
        result["purged"] = purge_processed_punches(
            session,
            before_day=window_start(session, get_attendance_timezone()),
        )
        return result
    finally:
        if owns_session:
            session.close()


def _with_session(job: Callable[[Session], Any]) -> Any:
    db = SessionLocal()
    try:
        return job(db)
    finally:
        db.close()


def run_reconciliation_cycle(
    now_utc: datetime,
    *,
    sink: NotificationSink | None = None,
    gateway: TimeClockGateway | None = None,
    include_punches: bool = True,
) -> CycleReport:
    """One scheduler tick; each step gets its own session and a failure does not stop later steps."""
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=timezone.utc)
    active_sink = sink or get_notification_sink()
    yesterday = local_today(now_utc) - timedelta(days=1)
    report = CycleReport(started_at=now_utc)

    steps: list[tuple[str, Callable[[], Any]]] = []
    if include_punches:
        steps.append(("punches", lambda: run_punch_cycle(now_utc, gateway=gateway)))
    steps += [
        (
            "absence_monitor",
            lambda: _with_session(
                lambda db: run_absence_monitor(db, sink=active_sink, now_utc=now_utc, day=yesterday)
            ),
        ),
        (
            "overtime_settlement",
            lambda: _with_session(lambda db: settle_overtime(db, now_utc=now_utc, settle_day=yesterday)),
        ),
        # deadlines that expired since the previous day's run
        (
            "overtime_deadline_sweep",
            lambda: _with_session(
                lambda db: settle_overtime(db, now_utc=now_utc, settle_day=yesterday - timedelta(days=1))
            ),
        ),
        ("lifecycle", lambda: reconcile_working_employees(now_utc)),
    ]
    for name, step in steps:
        try:
            report.steps[name] = step()
        except Exception:
            report.failed_steps.append(name)
            logger.exception("reconciliation_step_failed", extra={"step": name})

    logger.info(
        "reconciliation_cycle_complete",
        extra={"started_at": now_utc.isoformat(), "failed_steps": report.failed_steps},
    )
    return report

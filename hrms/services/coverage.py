from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from hrms.models import ApprovalStatus, BusinessTrip, Leave, LeaveDuration, LeaveSession


def _date_range(start: date, end: date) -> set[date]:
    return {start + timedelta(days=offset) for offset in range((end - start).days + 1)}


def _approved_leaves(db: Session, employee_id: int, start: date, end: date) -> list[Leave]:
    return list(
        db.scalars(
            select(Leave).where(
                Leave.employee_id == employee_id,
                Leave.stage_c == ApprovalStatus.ACKNOWLEDGED,
                Leave.start_date <= end,
                or_(Leave.end_date >= start, and_(Leave.end_date.is_(None), Leave.start_date >= start)),
            )
        ).all()
    )


def approved_dates(db: Session, employee_id: int, start: date, end: date) -> set[date]:
    """Days in ``[start, end]`` covered by an acknowledged leave or business trip."""
    covered: set[date] = set()
    for leave in _approved_leaves(db, employee_id, start, end):
        covered |= _date_range(leave.start_date, leave.end_date or leave.start_date)

    trips = db.scalars(
        select(BusinessTrip).where(
            BusinessTrip.employee_id == employee_id,
            BusinessTrip.stage_c == ApprovalStatus.ACKNOWLEDGED,
            BusinessTrip.date_out <= end,
            BusinessTrip.date_in >= start,
        )
    ).all()
    for trip in trips:
        covered |= _date_range(trip.date_out, trip.date_in)

    return {day for day in covered if start <= day <= end}


def half_day_leave_session(db: Session, employee_id: int, day: date) -> LeaveSession | None:
    """Session taken as leave when an acknowledged half-day leave touches ``day``."""
    for leave in _approved_leaves(db, employee_id, day, day):
        single_day = leave.end_date is None or leave.end_date == leave.start_date
        if leave.start_date == day and leave.start_duration == LeaveDuration.HALF:
            default = LeaveSession.FORENOON if single_day else LeaveSession.AFTERNOON
            return leave.start_session or default
        if not single_day and leave.end_date == day and leave.end_duration == LeaveDuration.HALF:
            return LeaveSession.FORENOON
    return None


def coverage_labels(db: Session, employee_id: int, start: date, end: date) -> dict[date, str]:
    """Report annotations for covered days: ``(L)``, ``(L) First Half``, ``(L) Second Half`` or ``(OD)``."""
    labels: dict[date, str] = {}
    trips = db.scalars(
        select(BusinessTrip).where(
            BusinessTrip.employee_id == employee_id,
            BusinessTrip.stage_c == ApprovalStatus.ACKNOWLEDGED,
            BusinessTrip.date_out <= end,
            BusinessTrip.date_in >= start,
        )
    ).all()
    for trip in trips:
        for day in _date_range(trip.date_out, trip.date_in):
            labels[day] = "(OD)"

    for leave in _approved_leaves(db, employee_id, start, end):
        for day in _date_range(leave.start_date, leave.end_date or leave.start_date):
            labels[day] = "(L)"
    for day in list(labels):
        if labels[day] != "(L)":
            continue
        session = half_day_leave_session(db, employee_id, day)
        if session == LeaveSession.FORENOON:
            labels[day] = "(L) First Half"
        elif session == LeaveSession.AFTERNOON:
            labels[day] = "(L) Second Half"

    return {day: label for day, label in labels.items() if start <= day <= end}


def _open_stages(model: type) -> list:
    return [
        model.stage_a != ApprovalStatus.REJECTED,
        model.stage_b != ApprovalStatus.REJECTED,
        model.stage_c != ApprovalStatus.REJECTED,
    ]


def has_open_request(db: Session, employee_id: int, start: date, end: date) -> bool:
    """True when a leave or business trip that is not rejected touches ``[start, end]``."""
    leave_id = db.scalar(
        select(Leave.id)
        .where(
            Leave.employee_id == employee_id,
            *_open_stages(Leave),
            Leave.start_date <= end,
            or_(Leave.end_date >= start, and_(Leave.end_date.is_(None), Leave.start_date >= start)),
        )
        .limit(1)
    )
    if leave_id is not None:
        return True
    trip_id = db.scalar(
        select(BusinessTrip.id)
        .where(
            BusinessTrip.employee_id == employee_id,
            *_open_stages(BusinessTrip),
            BusinessTrip.date_out <= end,
            BusinessTrip.date_in >= start,
        )
        .limit(1)
    )
    return trip_id is not None

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrms.db import SessionLocal
from hrms.models import AlertType, Employee, EmployeeStatus, Notification, Role

logger = logging.getLogger("hrms.notifications")


class NotificationSink(Protocol):
    def notify(
        self,
        recipient_id: int,
        message: str,
        *,
        alert_type: AlertType | None = None,
        subject_employee_id: int | None = None,
    ) -> None: ...


class DatabaseNotificationSink:
    """Writes notifications to the in-app inbox using its own session.

    Delivery is best effort: failures are logged and never reach the caller.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def notify(
        self,
        recipient_id: int,
        message: str,
        *,
        alert_type: AlertType | None = None,
        subject_employee_id: int | None = None,
    ) -> None:
        db = self.session_factory()
        try:
            db.add(
                Notification(
                    recipient_employee_id=recipient_id,
                    subject_employee_id=subject_employee_id,
                    message=message,
                    alert_type=alert_type,
                    read=False,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "notification_write_failed",
                extra={"recipient_id": recipient_id, "alert_type": alert_type.value if alert_type else None},
            )
        finally:
            db.close()


def notify_safely(
    sink: NotificationSink,
    recipient_ids: list[int] | set[int],
    message: str,
    *,
    alert_type: AlertType | None = None,
    subject_employee_id: int | None = None,
) -> int:
    delivered = 0
    for recipient_id in sorted(set(recipient_ids)):
        try:
            sink.notify(
                recipient_id,
                message,
                alert_type=alert_type,
                subject_employee_id=subject_employee_id,
            )
        except Exception:
            logger.exception("notification_delivery_failed", extra={"recipient_id": recipient_id})
            continue
        delivered += 1
    return delivered


def role_holders(db: Session, role: Role, *, department_id: int | None = None) -> list[int]:
    statement = select(Employee.id).where(Employee.role == role, Employee.status == EmployeeStatus.WORKING)
    if department_id is not None:
        statement = statement.where(Employee.department_id == department_id)
    return list(db.scalars(statement).all())


def get_notification_sink() -> NotificationSink:
    return DatabaseNotificationSink(SessionLocal)

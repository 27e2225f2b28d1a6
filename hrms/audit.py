from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from hrms.models import AuditActorType, AuditLog

logger = logging.getLogger("hrms.audit")


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool = True,
    entity_type: str | None = None,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    commit: bool = True,
) -> None:
    """Persist an audit entry; with commit=False it joins the caller's transaction."""
    db.add(
        AuditLog(
            ts_utc=datetime.now(timezone.utc),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            success=success,
            details=details or {},
        )
    )
    if commit:
        try:
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "audit_log_write_failed",
                extra={
                    "action": action,
                    "actor_type": actor_type.value,
                    "actor_id": actor_id,
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                },
            )
            return

    logger.info(
        "audit_event",
        extra={
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": details or {},
        },
    )

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from clockin.models import AuditLog

logger = logging.getLogger("clockin.audit")


def record_audit_log(
    db: Session,
    *,
    action: str,
    resource: str,
    performed_by: str,
    resource_id: str | None = None,
    status: str = "success",
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> None:
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        action=action,
        resource=resource,
        resource_id=resource_id,
        status=status,
        performed_by=performed_by,
        old_values=old_values,
        new_values=new_values,
        details=metadata or {},
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "action": action,
                "resource": resource,
                "resource_id": resource_id,
                "performed_by": performed_by,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "action": action,
            "resource": resource,
            "resource_id": resource_id,
            "status": status,
            "performed_by": performed_by,
            "details": metadata or {},
        },
    )

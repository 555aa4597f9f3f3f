from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from clockin.models import (
    AttendanceRecord,
    CheckSlot,
    CheckStatus,
    DailyStatus,
    Notification,
    User,
    UserRole,
)

logger = logging.getLogger("clockin.notifications")

REMINDER_SKIP_STATUSES = {DailyStatus.ON_LEAVE, DailyStatus.PRESENT}


@dataclass(slots=True)
class NotificationPayload:
    user_id: str
    title: str
    message: str
    category: str | None = None
    type: str = "info"
    related_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def queue_notification(db: Session, payload: NotificationPayload, *, commit: bool = True) -> Notification:
    notification = Notification(
        id=uuid4().hex,
        user_id=payload.user_id,
        title=payload.title,
        message=payload.message,
        category=payload.category,
        type=payload.type,
        related_id=payload.related_id,
        payload=dict(payload.metadata),
        is_read=False,
    )
    db.add(notification)
    if commit:
        db.commit()
    logger.info(
        "notification_queued",
        extra={
            "user_id": payload.user_id,
            "title": payload.title,
            "category": payload.category,
            "related_id": payload.related_id,
        },
    )
    return notification


def queue_bulk_notifications(
    db: Session,
    *,
    user_ids: list[str],
    title: str,
    message: str,
    category: str | None = None,
    type: str = "info",
    metadata: dict[str, Any] | None = None,
) -> int:
    created = 0
    for user_id in dict.fromkeys(user_ids):
        queue_notification(
            db,
            NotificationPayload(
                user_id=user_id,
                title=title,
                message=message,
                category=category,
                type=type,
                metadata=metadata or {},
            ),
            commit=False,
        )
        created += 1
    if created:
        db.commit()
    return created


def list_active_employee_ids(db: Session) -> list[str]:
    return list(
        db.scalars(
            select(User.id)
            .where(User.is_active.is_(True), User.role == UserRole.EMPLOYEE)
            .order_by(User.id.asc())
        ).all()
    )


def get_employees_needing_clock_in_reminder(db: Session, *, local_day: date, slot: CheckSlot) -> list[str]:
    pending = dict.fromkeys(list_active_employee_ids(db))
    records = db.scalars(select(AttendanceRecord).where(AttendanceRecord.attendance_date == local_day)).all()
    for record in records:
        if record.user_id not in pending:
            continue
        if record.status in REMINDER_SKIP_STATUSES:
            pending.pop(record.user_id, None)
            continue
        slot_status = record.slot_statuses().get(slot)
        if slot_status is not None and slot_status != CheckStatus.MISSED:
            pending.pop(record.user_id, None)
    return list(pending)

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from clockin.audit import record_audit_log
from clockin.db import run_in_transaction
from clockin.errors import (
    AttachmentRequired,
    InsufficientLeaveBalance,
    InvalidArgument,
    NotFound,
    OverlappingLeaveRequest,
    PermissionDenied,
    PreconditionFailed,
)
from clockin.models import AttendanceRecord, DailyStatus, LeaveRequest, LeaveStatus, LeaveType, User
from clockin.schemas import CompanyConfig, LeaveSubmitRequest
from clockin.services.attachments import (
    assert_attachment_owned_by_user,
    assert_attachment_ready,
    attach_attachment_to_leave,
    get_attachment_by_id,
)
from clockin.services.attendance import ATTENDANCE_RESOURCE, attendance_record_id, attendance_snapshot
from clockin.services.company_settings import company_zone, get_company_config
from clockin.services.notifications import NotificationPayload, queue_notification

LEAVE_RESOURCE = "leave_requests"
REASON_MIN_LENGTH = 5
REASON_MAX_LENGTH = 500
DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100

# The legacy half-day type has no balance of its own.
BALANCE_FIELDS = {
    LeaveType.FULL: "full_leave_balance",
    LeaveType.MEDICAL: "medical_leave_balance",
    LeaveType.MATERNITY: "maternity_leave_balance",
}
ACTIVE_LEAVE_STATUSES = (LeaveStatus.PENDING, LeaveStatus.APPROVED)

logger = logging.getLogger("clockin.leaves")


def _iter_days(start: date, end: date):
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def inclusive_days(start: date, end: date) -> int:
    return (end - start).days + 1


def _sanitize_reason(reason: str | None) -> str:
    cleaned = " ".join((reason or "").split())
    if not REASON_MIN_LENGTH <= len(cleaned) <= REASON_MAX_LENGTH:
        raise InvalidArgument(
            f"reason must be between {REASON_MIN_LENGTH} and {REASON_MAX_LENGTH} characters."
        )
    return cleaned


def has_overlapping_leave(db: Session, *, user_id: str, start: date, end: date) -> bool:
    overlap = db.scalar(
        select(LeaveRequest.id)
        .where(
            LeaveRequest.user_id == user_id,
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        .limit(1)
    )
    return overlap is not None


def submit_leave_request(
    db: Session,
    *,
    user_id: str,
    payload: LeaveSubmitRequest,
    now_utc: datetime | None = None,
    config: CompanyConfig | None = None,
) -> LeaveRequest:
    config = config or get_company_config(db)
    start, end = payload.start_date, payload.end_date
    if start > end:
        raise InvalidArgument("start_date must be before or equal to end_date.")
    today = (now_utc or datetime.now(timezone.utc)).astimezone(company_zone(config)).date()
    if start < today:
        raise PreconditionFailed("start_date cannot be in the past.")

    reason = _sanitize_reason(payload.reason)
    total_days = inclusive_days(start, end)
    balance_field = BALANCE_FIELDS.get(payload.leave_type)

    def _work() -> LeaveRequest:
        # The user row lock serializes concurrent submissions by the same user.
        user = db.scalar(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if user is None:
            raise NotFound("User not found.")
        if has_overlapping_leave(db, user_id=user_id, start=start, end=end):
            raise OverlappingLeaveRequest()
        if balance_field is not None:
            current_balance = getattr(user, balance_field) or 0
            if total_days > current_balance:
                raise InsufficientLeaveBalance(
                    f"Insufficient leave balance. Requested: {total_days} days, Available: {current_balance} days."
                )

        attachment = None
        if payload.attachment_id:
            attachment = assert_attachment_owned_by_user(get_attachment_by_id(db, payload.attachment_id), user_id)
            assert_attachment_ready(attachment)
        if payload.leave_type.value in config.leave_attachment_required_types and attachment is None:
            raise AttachmentRequired()

        leave = LeaveRequest(
            id=uuid4().hex,
            user_id=user_id,
            leave_type=payload.leave_type,
            start_date=start,
            end_date=end,
            total_days=total_days,
            reason=reason,
            status=LeaveStatus.PENDING,
            attachment_id=attachment.id if attachment is not None else None,
        )
        db.add(leave)
        if attachment is not None:
            attach_attachment_to_leave(attachment, leave.id)
        db.flush()
        return leave

    leave = run_in_transaction(db, _work, label="leave_submit")
    db.refresh(leave)

    logger.info(
        "leave_submitted",
        extra={
            "leave_request_id": leave.id,
            "user_id": user_id,
            "leave_type": payload.leave_type.value,
            "total_days": total_days,
        },
    )
    queue_notification(
        db,
        NotificationPayload(
            user_id=user_id,
            title="Leave Request Submitted",
            message=(
                f"Your {payload.leave_type.value} leave from {start.isoformat()} to "
                f"{end.isoformat()} was submitted for review."
            ),
            category="leave",
            related_id=leave.id,
        ),
    )
    return leave


def _read_leave_for_update(db: Session, request_id: str) -> LeaveRequest:
    leave = db.scalar(
        select(LeaveRequest)
        .where(LeaveRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if leave is None:
        raise NotFound("Leave request not found.")
    return leave


def handle_leave_approval(
    db: Session,
    *,
    request_id: str,
    action: str,
    reviewer_id: str,
    notes: str | None = None,
) -> LeaveRequest:
    """Approve or reject a pending leave request in one transaction.

    Approval debits the user's balance and marks every day of the range
    ``on_leave``. All rows are read before anything is written. Leave types
    without a balance field (legacy ``half``) can be rejected or cancelled
    but not approved.
    """
    if action not in ("approve", "reject"):
        raise InvalidArgument("action must be 'approve' or 'reject'.")
    approve = action == "approve"
    previous_by_day: dict[str, dict[str, Any] | None] = {}

    def _work() -> LeaveRequest:
        previous_by_day.clear()
        leave = _read_leave_for_update(db, request_id)
        if leave.status != LeaveStatus.PENDING:
            raise PreconditionFailed("Leave request already processed.")

        user = None
        existing: dict[date, AttendanceRecord] = {}
        balance_field = BALANCE_FIELDS.get(leave.leave_type)
        if approve:
            if balance_field is None:
                raise PreconditionFailed(
                    f"Unsupported leave type: {leave.leave_type.value}.",
                    code="UNSUPPORTED_LEAVE_TYPE",
                )
            user = db.scalar(
                select(User).where(User.id == leave.user_id).execution_options(populate_existing=True)
            )
            if user is None:
                raise NotFound("User not found.")
            existing = {
                record.attendance_date: record
                for record in db.scalars(
                    select(AttendanceRecord)
                    .where(
                        AttendanceRecord.user_id == leave.user_id,
                        AttendanceRecord.attendance_date >= leave.start_date,
                        AttendanceRecord.attendance_date <= leave.end_date,
                    )
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).all()
            }

        now = datetime.now(timezone.utc)
        leave.reviewed_by = reviewer_id
        leave.reviewed_at = now
        leave.reviewer_notes = notes

        if approve:
            leave.status = LeaveStatus.APPROVED
            current = getattr(user, balance_field) or 0
            setattr(user, balance_field, max(0, current - leave.total_days))

            for day in _iter_days(leave.start_date, leave.end_date):
                record = existing.get(day)
                record_id = attendance_record_id(leave.user_id, day)
                previous_by_day[record_id] = attendance_snapshot(record)
                if record is None:
                    record = AttendanceRecord(
                        id=record_id,
                        user_id=leave.user_id,
                        attendance_date=day,
                        status=DailyStatus.ON_LEAVE,
                    )
                    db.add(record)
                record.status = DailyStatus.ON_LEAVE
                record.leave_request_id = leave.id
                record.leave_backfill = True

            title = "Leave Approved"
            message = (
                f"Your {leave.leave_type.value} leave from {leave.start_date.isoformat()} "
                f"to {leave.end_date.isoformat()} was approved."
            )
        else:
            leave.status = LeaveStatus.REJECTED
            title = "Leave Rejected"
            message = (
                f"Your {leave.leave_type.value} leave from {leave.start_date.isoformat()} "
                f"to {leave.end_date.isoformat()} was rejected."
            )
            if notes:
                message = f"{message} Notes: {notes}"

        queue_notification(
            db,
            NotificationPayload(
                user_id=leave.user_id,
                title=title,
                message=message,
                category="leave",
                type="success" if approve else "warning",
                related_id=leave.id,
            ),
            commit=False,
        )
        db.flush()
        return leave

    leave = run_in_transaction(db, _work, label="leave_approval")
    logger.info(
        "leave_reviewed",
        extra={"leave_request_id": request_id, "action": action, "reviewer_id": reviewer_id},
    )

    record_audit_log(
        db,
        action=f"leave_{action}",
        resource=LEAVE_RESOURCE,
        resource_id=request_id,
        performed_by=reviewer_id,
        new_values={"status": LeaveStatus.APPROVED.value if approve else LeaveStatus.REJECTED.value},
        metadata={"notes": notes},
    )
    for record_id, previous in previous_by_day.items():
        if previous is not None and previous.get("status") == DailyStatus.ON_LEAVE.value:
            continue
        record_audit_log(
            db,
            action="leave_backfill",
            resource=ATTENDANCE_RESOURCE,
            resource_id=record_id,
            performed_by=reviewer_id,
            old_values=previous,
            new_values={"status": DailyStatus.ON_LEAVE.value, "leave_request_id": request_id},
        )

    db.refresh(leave)
    return leave


def cancel_leave_request(db: Session, *, user_id: str, request_id: str) -> LeaveRequest:
    removed_days: list[str] = []
    was_approved = False

    def _work() -> LeaveRequest:
        nonlocal was_approved
        removed_days.clear()
        leave = _read_leave_for_update(db, request_id)
        if leave.user_id != user_id:
            raise PermissionDenied("Cannot cancel another user's leave request.")
        if leave.status not in ACTIVE_LEAVE_STATUSES:
            raise PreconditionFailed(f"Cannot cancel a leave request with status {leave.status.value}.")

        was_approved = leave.status == LeaveStatus.APPROVED
        if was_approved:
            user = db.scalar(select(User).where(User.id == user_id).execution_options(populate_existing=True))
            if user is None:
                raise NotFound("User not found.")
            backfilled = db.scalars(
                select(AttendanceRecord).where(
                    AttendanceRecord.user_id == user_id,
                    AttendanceRecord.leave_request_id == leave.id,
                    AttendanceRecord.leave_backfill.is_(True),
                )
            ).all()

            balance_field = BALANCE_FIELDS.get(leave.leave_type)
            if balance_field is not None:
                setattr(user, balance_field, (getattr(user, balance_field) or 0) + leave.total_days)
            for record in backfilled:
                removed_days.append(record.id)
                db.delete(record)

        leave.status = LeaveStatus.CANCELLED
        leave.cancelled_at = datetime.now(timezone.utc)
        db.flush()
        return leave

    leave = run_in_transaction(db, _work, label="leave_cancel")
    logger.info(
        "leave_cancelled",
        extra={
            "leave_request_id": request_id,
            "user_id": user_id,
            "was_approved": was_approved,
            "attendance_removed": len(removed_days),
        },
    )
    record_audit_log(
        db,
        action="leave_cancel",
        resource=LEAVE_RESOURCE,
        resource_id=request_id,
        performed_by=user_id,
        old_values={"status": LeaveStatus.APPROVED.value if was_approved else LeaveStatus.PENDING.value},
        new_values={"status": LeaveStatus.CANCELLED.value},
        metadata={"removed_attendance": removed_days},
    )
    queue_notification(
        db,
        NotificationPayload(
            user_id=user_id,
            title="Leave Request Cancelled",
            message=(
                f"Your leave from {leave.start_date.isoformat()} to "
                f"{leave.end_date.isoformat()} was cancelled."
            ),
            category="leave",
            related_id=request_id,
        ),
    )
    db.refresh(leave)
    return leave


def list_employee_leaves(
    db: Session,
    *,
    user_id: str,
    status: LeaveStatus | None = None,
    limit: int = DEFAULT_PAGE_LIMIT,
    cursor: str | None = None,
) -> tuple[list[LeaveRequest], str | None]:
    if limit <= 0 or limit > MAX_PAGE_LIMIT:
        raise InvalidArgument(f"limit must be between 1 and {MAX_PAGE_LIMIT}.")

    query = select(LeaveRequest).where(LeaveRequest.user_id == user_id)
    if status is not None:
        query = query.where(LeaveRequest.status == status)
    if cursor:
        anchor = db.get(LeaveRequest, cursor)
        if anchor is None:
            raise NotFound("Cursor leave request not found.")
        if anchor.user_id != user_id:
            raise PermissionDenied("Cursor does not belong to this user.")
        query = query.where(
            or_(
                LeaveRequest.submitted_at < anchor.submitted_at,
                and_(LeaveRequest.submitted_at == anchor.submitted_at, LeaveRequest.id < anchor.id),
            )
        )

    items = list(
        db.scalars(
            query.order_by(LeaveRequest.submitted_at.desc(), LeaveRequest.id.desc()).limit(limit)
        ).all()
    )
    next_cursor = items[-1].id if len(items) == limit else None
    return items, next_cursor


def get_leave_balance(
    db: Session,
    *,
    user_id: str,
    year: int | None = None,
    now_utc: datetime | None = None,
) -> dict[str, Any]:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")
    if year is None:
        zone = company_zone(get_company_config(db))
        year = (now_utc or datetime.now(timezone.utc)).astimezone(zone).year

    leaves = db.scalars(
        select(LeaveRequest).where(
            LeaveRequest.user_id == user_id,
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
            LeaveRequest.start_date >= date(year, 1, 1),
            LeaveRequest.start_date <= date(year, 12, 31),
        )
    ).all()

    breakdown: dict[str, dict[str, int]] = {}
    for leave_type, field in BALANCE_FIELDS.items():
        breakdown[leave_type.value] = {"remaining": getattr(user, field) or 0, "used": 0, "pending": 0}
    for leave in leaves:
        entry = breakdown.setdefault(leave.leave_type.value, {"remaining": 0, "used": 0, "pending": 0})
        if leave.status == LeaveStatus.APPROVED:
            entry["used"] += leave.total_days
        else:
            entry["pending"] += leave.total_days

    return {
        "user_id": user_id,
        "year": year,
        "remaining": sum(entry["remaining"] for entry in breakdown.values()),
        "used": sum(entry["used"] for entry in breakdown.values()),
        "pending": sum(entry["pending"] for entry in breakdown.values()),
        "breakdown": breakdown,
    }

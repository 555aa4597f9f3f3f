from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clockin.audit import record_audit_log
from clockin.db import run_in_transaction
from clockin.errors import InvalidArgument, NotFound, PermissionDenied, PreconditionFailed
from clockin.models import (
    AttendanceRecord,
    CheckStatus,
    DailyStatus,
    Penalty,
    PenaltyStatus,
    ViolationSummary,
    ViolationType,
)
from clockin.schemas import CompanyConfig
from clockin.services.company_settings import get_company_config, is_holiday, parse_month_key
from clockin.services.notifications import NotificationPayload, queue_notification

PENALTY_RESOURCE = "penalties"
DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100

logger = logging.getLogger("clockin.penalties")


@dataclass(frozen=True, slots=True)
class ViolationEvent:
    violation_type: ViolationType
    field: str


def penalty_id(user_id: str, date_key: str, event: ViolationEvent) -> str:
    return f"{user_id}_{date_key}_{event.violation_type.value}_{event.field}"


def month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def detect_violations(record: AttendanceRecord) -> list[ViolationEvent]:
    events: list[ViolationEvent] = []
    if record.status == DailyStatus.ABSENT:
        events.append(ViolationEvent(ViolationType.ABSENT, "status"))
    elif record.status == DailyStatus.HALF_DAY_ABSENT:
        events.append(ViolationEvent(ViolationType.HALF_DAY_ABSENT, "status"))

    if record.check1_status == CheckStatus.LATE:
        events.append(ViolationEvent(ViolationType.LATE, "check1_status"))
    if record.check2_status == CheckStatus.LATE:
        events.append(ViolationEvent(ViolationType.LATE, "check2_status"))
    if record.check3_status == CheckStatus.EARLY_LEAVE:
        events.append(ViolationEvent(ViolationType.EARLY_LEAVE, "check3_status"))
    return events


def _count_month_violations(db: Session, *, user_id: str, violation_type: ViolationType, day: date) -> int:
    start, end = month_bounds(day.year, day.month)
    return db.scalar(
        select(func.count(Penalty.id)).where(
            Penalty.user_id == user_id,
            Penalty.violation_type == violation_type,
            Penalty.date_incurred >= start,
            Penalty.date_incurred <= end,
        )
    ) or 0


def _notify_penalty(db: Session, penalty: Penalty) -> None:
    label = penalty.violation_type.value.replace("_", " ")
    if penalty.is_warning:
        title = "Attendance Violation Warning"
        message = (
            f"A {label} violation was recorded for {penalty.date_key} "
            f"(#{penalty.violation_count} this month). No fine applies yet."
        )
    else:
        title = "Penalty Issued"
        message = f"A {label} penalty of {penalty.amount:g} was issued for {penalty.date_key}."
    queue_notification(
        db,
        NotificationPayload(
            user_id=penalty.user_id,
            title=title,
            message=message,
            category="penalty",
            type="warning" if penalty.is_warning else "alert",
            related_id=penalty.id,
            metadata={
                "violation_type": penalty.violation_type.value,
                "violation_field": penalty.violation_field,
                "amount": penalty.amount,
            },
        ),
    )


def calculate_daily_violations(
    db: Session,
    day: date,
    *,
    user_id: str | None = None,
    config: CompanyConfig | None = None,
) -> dict[str, Any]:
    """Create at most one penalty per user, date, type and field for ``day``.

    Each penalty is committed on its own so a run that stops midway can be
    repeated for the same date without duplicates.
    """
    config = config or get_company_config(db)
    date_key = day.isoformat()
    if is_holiday(config, day):
        logger.info("violations_skipped_holiday", extra={"date": date_key})
        return {
            "date": date_key,
            "skipped_holiday": True,
            "records_scanned": 0,
            "penalties_created": 0,
            "penalties_skipped": 0,
        }

    query = select(AttendanceRecord).where(AttendanceRecord.attendance_date == day)
    if user_id is not None:
        query = query.where(AttendanceRecord.user_id == user_id)
    records = db.scalars(query.order_by(AttendanceRecord.user_id.asc())).all()
    pending = [(record.user_id, record.id, event) for record in records for event in detect_violations(record)]

    thresholds = config.penalty_rules.violation_thresholds
    amounts = config.penalty_rules.amounts
    created = 0
    skipped = 0
    for record_user_id, record_id, event in pending:
        key = penalty_id(record_user_id, date_key, event)
        if db.get(Penalty, key) is not None:
            skipped += 1
            continue

        existing_count = _count_month_violations(
            db, user_id=record_user_id, violation_type=event.violation_type, day=day
        )
        threshold = int(thresholds.get(event.violation_type.value, 0) or 0)
        threshold_passed = existing_count >= threshold
        penalty = Penalty(
            id=key,
            user_id=record_user_id,
            violation_type=event.violation_type,
            violation_field=event.field,
            date_key=date_key,
            date_incurred=day,
            amount=float(amounts.get(event.violation_type.value, 0) or 0) if threshold_passed else 0.0,
            is_warning=not threshold_passed,
            violation_count=existing_count + 1,
            threshold=threshold,
            status=PenaltyStatus.ACTIVE,
            attendance_record_id=record_id,
        )
        db.add(penalty)
        try:
            db.commit()
        except IntegrityError:
            # Another run inserted the same id first.
            db.rollback()
            skipped += 1
            continue

        created += 1
        logger.info(
            "penalty_created",
            extra={
                "penalty_id": key,
                "user_id": record_user_id,
                "violation_type": event.violation_type.value,
                "violation_count": penalty.violation_count,
                "amount": penalty.amount,
                "is_warning": penalty.is_warning,
            },
        )
        _notify_penalty(db, penalty)

    return {
        "date": date_key,
        "skipped_holiday": False,
        "records_scanned": len(records),
        "penalties_created": created,
        "penalties_skipped": skipped,
    }


def calculate_monthly_violations(db: Session, month: str, *, user_id: str | None = None) -> dict[str, Any]:
    year, month_number = parse_month_key(month)
    start, end = month_bounds(year, month_number)
    month_key = f"{year:04d}-{month_number:02d}"

    record_query = select(AttendanceRecord).where(
        AttendanceRecord.attendance_date >= start,
        AttendanceRecord.attendance_date <= end,
    )
    penalty_query = select(Penalty).where(Penalty.date_incurred >= start, Penalty.date_incurred <= end)
    if user_id is not None:
        record_query = record_query.where(AttendanceRecord.user_id == user_id)
        penalty_query = penalty_query.where(Penalty.user_id == user_id)

    summaries: dict[str, dict[str, Any]] = {}

    def _summary(for_user: str) -> dict[str, Any]:
        return summaries.setdefault(
            for_user,
            {"counts": {}, "details": [], "fined_count": 0, "warning_count": 0, "fined_amount": 0.0},
        )

    for record in db.scalars(record_query.order_by(AttendanceRecord.attendance_date.asc())).all():
        for event in detect_violations(record):
            summary = _summary(record.user_id)
            kind = event.violation_type.value
            summary["counts"][kind] = summary["counts"].get(kind, 0) + 1
            summary["details"].append(
                {"date": record.attendance_date.isoformat(), "field": event.field, "violation_type": kind}
            )

    for penalty in db.scalars(penalty_query).all():
        if penalty.status == PenaltyStatus.WAIVED:
            continue
        summary = _summary(penalty.user_id)
        if penalty.is_warning:
            summary["warning_count"] += 1
        else:
            summary["fined_count"] += 1
            summary["fined_amount"] += penalty.amount

    for summary_user_id, summary in summaries.items():
        row_id = f"{summary_user_id}_{month_key}"
        row = db.get(ViolationSummary, row_id)
        if row is None:
            row = ViolationSummary(id=row_id, user_id=summary_user_id, month=month_key)
            db.add(row)
        row.counts = summary["counts"]
        row.details = summary["details"]
        row.monthly_count = len(summary["details"])
        row.fined_count = summary["fined_count"]
        row.warning_count = summary["warning_count"]
        row.fined_amount = summary["fined_amount"]
    db.commit()

    logger.info("monthly_violations_calculated", extra={"month": month_key, "users": len(summaries)})
    return {
        "month": month_key,
        "users": {
            summary_user_id: {
                "monthly_count": len(summary["details"]),
                "counts": summary["counts"],
                "fined_count": summary["fined_count"],
                "warning_count": summary["warning_count"],
                "fined_amount": summary["fined_amount"],
            }
            for summary_user_id, summary in summaries.items()
        },
    }


def waive_penalty(db: Session, penalty_id: str, *, reason: str, performed_by: str) -> Penalty:
    reason = (reason or "").strip()
    if not reason:
        raise InvalidArgument("A waiver reason is required.")

    previous_status: PenaltyStatus | None = None

    def _work() -> Penalty:
        nonlocal previous_status
        penalty = db.scalar(
            select(Penalty).where(Penalty.id == penalty_id).with_for_update().execution_options(populate_existing=True)
        )
        if penalty is None:
            raise NotFound("Penalty not found.")
        if penalty.status == PenaltyStatus.WAIVED:
            raise PreconditionFailed("Penalty is already waived.")
        previous_status = penalty.status
        penalty.status = PenaltyStatus.WAIVED
        penalty.waived_reason = reason
        penalty.waived_by = performed_by
        penalty.waived_at = datetime.now(timezone.utc)
        db.flush()
        return penalty

    penalty = run_in_transaction(db, _work, label="waive_penalty")
    record_audit_log(
        db,
        action="waive_penalty",
        resource=PENALTY_RESOURCE,
        resource_id=penalty_id,
        performed_by=performed_by,
        old_values={"status": previous_status.value if previous_status else None},
        new_values={"status": PenaltyStatus.WAIVED.value, "waived_reason": reason},
    )
    queue_notification(
        db,
        NotificationPayload(
            user_id=penalty.user_id,
            title="Penalty Waived",
            message=f"Your penalty for {penalty.date_key} was waived.",
            category="penalty",
            related_id=penalty.id,
        ),
    )
    db.refresh(penalty)
    return penalty


def list_employee_penalties(
    db: Session,
    *,
    user_id: str,
    status: PenaltyStatus | None = None,
    limit: int = DEFAULT_PAGE_LIMIT,
    cursor: str | None = None,
) -> tuple[list[Penalty], str | None]:
    if limit <= 0 or limit > MAX_PAGE_LIMIT:
        raise InvalidArgument(f"limit must be between 1 and {MAX_PAGE_LIMIT}.")

    query = select(Penalty).where(Penalty.user_id == user_id)
    if status is not None:
        query = query.where(Penalty.status == status)
    if cursor:
        anchor = db.get(Penalty, cursor)
        if anchor is None:
            raise NotFound("Cursor penalty not found.")
        if anchor.user_id != user_id:
            raise PermissionDenied("Cursor does not belong to this user.")
        query = query.where(
            or_(
                Penalty.date_incurred < anchor.date_incurred,
                and_(Penalty.date_incurred == anchor.date_incurred, Penalty.id < anchor.id),
            )
        )

    items = list(db.scalars(query.order_by(Penalty.date_incurred.desc(), Penalty.id.desc()).limit(limit)).all())
    next_cursor = items[-1].id if len(items) == limit else None
    return items, next_cursor


def acknowledge_penalty(db: Session, *, user_id: str, penalty_id: str, note: str | None = None) -> Penalty:
    penalty = db.get(Penalty, penalty_id)
    if penalty is None:
        raise NotFound("Penalty not found.")
    if penalty.user_id != user_id:
        raise PermissionDenied("Cannot acknowledge another user's penalty.")

    penalty.acknowledged = True
    penalty.acknowledged_at = datetime.now(timezone.utc)
    penalty.acknowledgement_note = note
    db.commit()
    db.refresh(penalty)
    logger.info("penalty_acknowledged", extra={"penalty_id": penalty_id, "user_id": user_id})
    return penalty


def get_penalty_summary(db: Session, *, user_id: str) -> dict[str, Any]:
    by_status = {status.value: {"count": 0, "amount": 0.0} for status in PenaltyStatus}
    rows = db.execute(
        select(Penalty.status, func.count(Penalty.id), func.coalesce(func.sum(Penalty.amount), 0))
        .where(Penalty.user_id == user_id)
        .group_by(Penalty.status)
    ).all()
    for status, count, amount in rows:
        by_status[status.value] = {"count": int(count), "amount": float(amount)}

    active = by_status[PenaltyStatus.ACTIVE.value]
    return {
        "active_count": active["count"],
        "total_amount": active["amount"],
        "by_status": by_status,
    }

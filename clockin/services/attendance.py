from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from clockin.audit import record_audit_log
from clockin.db import run_in_transaction
from clockin.errors import (
    DuplicateClockIn,
    GeofenceNotConfigured,
    InvalidArgument,
    MockLocationRejected,
    NoActiveWindow,
    NonWorkingDay,
    NotFound,
    PreconditionFailed,
    StaleOrFutureTimestamp,
)
from clockin.models import (
    AttendanceRecord,
    CheckSlot,
    CheckStatus,
    DailyStatus,
    User,
)
from clockin.schemas import ClockInRequest, CompanyConfig, GeoPoint, ManualAttendanceRequest
from clockin.services.company_settings import (
    get_company_config,
    is_holiday,
    is_weekend,
    local_date,
    parse_date_key,
)
from clockin.services.daily_status import compute_daily_status
from clockin.services.location import assert_within_geofence
from clockin.services.notifications import NotificationPayload, queue_notification
from clockin.services.time_windows import SlotOutcome, resolve_slot_for_timestamp
from clockin.settings import get_settings

ATTENDANCE_RESOURCE = "attendance_records"

logger = logging.getLogger("clockin.attendance")


@dataclass(frozen=True, slots=True)
class ClockInResult:
    success: bool
    message: str
    slot: CheckSlot
    check_status: CheckStatus
    daily_status: DailyStatus
    late_by_minutes: int | None
    date_key: str


def _normalize_ts(ts: datetime | None) -> datetime:
    if ts is None:
        return datetime.now(timezone.utc)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def attendance_record_id(user_id: str, day: date) -> str:
    return f"{user_id}_{day.isoformat()}"


def read_for_update(db: Session, record_id: str) -> AttendanceRecord | None:
    # The row's version_id guards the later write; FOR UPDATE narrows the race on PostgreSQL.
    return db.scalar(
        select(AttendanceRecord)
        .where(AttendanceRecord.id == record_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def write_slot(
    record: AttendanceRecord,
    slot: CheckSlot,
    *,
    status: CheckStatus | None,
    ts: datetime | None,
    location: GeoPoint | None,
) -> None:
    lat = location.latitude if location is not None else None
    lng = location.longitude if location is not None else None
    if slot == CheckSlot.CHECK1:
        record.check1_status = status
        record.check1_timestamp = ts
        record.check1_lat, record.check1_lng = lat, lng
    elif slot == CheckSlot.CHECK2:
        record.check2_status = status
        record.check2_timestamp = ts
        record.check2_lat, record.check2_lng = lat, lng
    elif slot == CheckSlot.CHECK3:
        record.check3_status = status
        record.check3_timestamp = ts
        record.check3_lat, record.check3_lng = lat, lng
    else:  # pragma: no cover
        raise ValueError(f"Unknown slot: {slot}")


def recompute_status(record: AttendanceRecord) -> DailyStatus:
    statuses = record.slot_statuses()
    return compute_daily_status(statuses.check1, statuses.check2, statuses.check3)


def attendance_snapshot(record: AttendanceRecord | None) -> dict[str, Any] | None:
    if record is None:
        return None
    statuses = record.slot_statuses()
    return {
        "status": record.status.value if record.status else None,
        "check1_status": statuses.check1.value if statuses.check1 else None,
        "check2_status": statuses.check2.value if statuses.check2 else None,
        "check3_status": statuses.check3.value if statuses.check3 else None,
        "is_manual_entry": record.is_manual_entry,
        "leave_request_id": record.leave_request_id,
        "leave_backfill": record.leave_backfill,
        "notes": record.notes,
    }


def _clock_in_message(outcome: SlotOutcome) -> str:
    if outcome.status == CheckStatus.LATE:
        return f"Clock-in recorded ({outcome.slot.value}). Late by {outcome.late_by_minutes} minutes."
    if outcome.status == CheckStatus.EARLY_LEAVE:
        return f"Clock-in recorded ({outcome.slot.value}). Left early by {outcome.late_by_minutes} minutes."
    return f"Clock-in recorded ({outcome.slot.value})."


def handle_clock_in(
    db: Session,
    *,
    user_id: str,
    payload: ClockInRequest,
    now_utc: datetime | None = None,
    config: CompanyConfig | None = None,
) -> ClockInResult:
    if payload.is_mocked:
        raise MockLocationRejected()

    reference_now = _normalize_ts(now_utc)
    ts = _normalize_ts(payload.timestamp)
    max_skew = timedelta(minutes=get_settings().clock_in_max_skew_minutes)
    if abs(reference_now - ts) > max_skew:
        raise StaleOrFutureTimestamp()

    config = config or get_company_config(db)
    local_day = local_date(config, ts)
    if is_weekend(config, local_day):
        raise NonWorkingDay("Clock-ins are not allowed on weekends.")
    if is_holiday(config, local_day):
        raise NonWorkingDay("Clock-ins are not allowed on company holidays.")

    if config.workplace_center is None or config.workplace_radius is None:
        raise GeofenceNotConfigured()
    if config.geo_fencing_enabled:
        assert_within_geofence(payload.location, config.workplace_center, config.workplace_radius)

    record_id = attendance_record_id(user_id, local_day)

    def _work() -> tuple[SlotOutcome, DailyStatus]:
        outcome = resolve_slot_for_timestamp(ts, config)
        if outcome is None:
            raise NoActiveWindow()

        record = read_for_update(db, record_id)
        if record is None:
            record = AttendanceRecord(
                id=record_id,
                user_id=user_id,
                attendance_date=local_day,
                status=DailyStatus.ABSENT,
            )
            db.add(record)

        existing = record.slot_statuses().get(outcome.slot)
        if existing is not None and existing != CheckStatus.MISSED:
            raise DuplicateClockIn(f"Clock-in already recorded for {outcome.slot.value}.")

        write_slot(record, outcome.slot, status=outcome.status, ts=ts, location=payload.location)
        record.status = recompute_status(record)
        db.flush()
        return outcome, record.status

    outcome, day_status = run_in_transaction(db, _work, label="clock_in")
    message = _clock_in_message(outcome)

    logger.info(
        "clock_in_recorded",
        extra={
            "user_id": user_id,
            "record_id": record_id,
            "slot": outcome.slot.value,
            "check_status": outcome.status.value,
            "daily_status": day_status.value,
            "late_by_minutes": outcome.late_by_minutes,
        },
    )
    record_audit_log(
        db,
        action="clock_in",
        resource=ATTENDANCE_RESOURCE,
        resource_id=record_id,
        performed_by=user_id,
        metadata={
            "slot": outcome.slot.value,
            "status": outcome.status.value,
            "late_by_minutes": outcome.late_by_minutes,
        },
    )
    queue_notification(
        db,
        NotificationPayload(
            user_id=user_id,
            title="Clock-In Recorded",
            message=message,
            category="attendance",
            related_id=record_id,
        ),
    )

    return ClockInResult(
        success=True,
        message=message,
        slot=outcome.slot,
        check_status=outcome.status,
        daily_status=day_status,
        late_by_minutes=outcome.late_by_minutes,
        date_key=local_day.isoformat(),
    )


def set_manual_attendance(
    db: Session,
    payload: ManualAttendanceRequest,
    *,
    performed_by: str,
) -> AttendanceRecord:
    day = parse_date_key(payload.attendance_date, "attendance_date")
    if db.get(User, payload.user_id) is None:
        raise NotFound("User not found.")
    slots_seen: set[CheckSlot] = set()
    for entry in payload.checks:
        if entry.check in slots_seen:
            raise InvalidArgument(f"Duplicate entry for {entry.check.value}.")
        slots_seen.add(entry.check)

    record_id = attendance_record_id(payload.user_id, day)
    previous: dict[str, Any] | None = None

    def _work() -> AttendanceRecord:
        nonlocal previous
        record = read_for_update(db, record_id)
        previous = attendance_snapshot(record)
        if record is None:
            record = AttendanceRecord(
                id=record_id,
                user_id=payload.user_id,
                attendance_date=day,
                status=payload.status,
            )
            db.add(record)

        for entry in payload.checks:
            write_slot(
                record,
                entry.check,
                status=entry.status,
                ts=_normalize_ts(entry.timestamp) if entry.timestamp else None,
                location=entry.location,
            )
        if payload.status == DailyStatus.HALF_DAY_ABSENT:
            completed = [s for s in record.slot_statuses() if s is not None and s != CheckStatus.MISSED]
            if len(completed) != 2:
                raise PreconditionFailed(
                    f"Cannot set half-day absent: user has {len(completed)} completed checks (requires exactly 2)."
                )
        record.status = payload.status
        record.is_manual_entry = True
        record.manual_reason = payload.reason
        record.manual_updated_by = performed_by
        if payload.notes:
            record.notes = payload.notes
        db.flush()
        return record

    record = run_in_transaction(db, _work, label="manual_attendance")
    record_audit_log(
        db,
        action="manual_set_attendance",
        resource=ATTENDANCE_RESOURCE,
        resource_id=record_id,
        performed_by=performed_by,
        old_values=previous,
        new_values=attendance_snapshot(record),
        metadata={"reason": payload.reason},
    )
    db.refresh(record)
    return record


def list_employee_attendance(
    db: Session,
    *,
    user_id: str,
    start: date,
    end: date,
) -> list[AttendanceRecord]:
    if end < start:
        raise InvalidArgument("start must be before or equal to end.")
    if (end - start).days > 92:
        raise InvalidArgument("Date range cannot exceed 93 days.")
    return list(
        db.scalars(
            select(AttendanceRecord)
            .where(
                AttendanceRecord.user_id == user_id,
                AttendanceRecord.attendance_date >= start,
                AttendanceRecord.attendance_date <= end,
            )
            .order_by(AttendanceRecord.attendance_date.asc())
        ).all()
    )


def get_attendance_day(db: Session, *, user_id: str, date_key: str) -> AttendanceRecord:
    day = parse_date_key(date_key)
    record = db.get(AttendanceRecord, attendance_record_id(user_id, day))
    if record is None:
        raise NotFound("Attendance record not found.")
    return record

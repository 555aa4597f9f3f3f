from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from clockin.models import AttendanceRecord, CheckSlot, CheckStatus, DailyStatus, User, UserRole
from clockin.services.attendance import attendance_record_id, recompute_status

logger = logging.getLogger("clockin.finalizer")

SLOT_STATUS_FIELDS = {
    CheckSlot.CHECK1: "check1_status",
    CheckSlot.CHECK2: "check2_status",
    CheckSlot.CHECK3: "check3_status",
}


@dataclass(slots=True)
class FinalizationResult:
    processed: int = 0
    absent_records_created: int = 0
    records_updated: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _fill_missing_slots(record: AttendanceRecord) -> bool:
    changed = False
    for field in SLOT_STATUS_FIELDS.values():
        if getattr(record, field) is None:
            setattr(record, field, CheckStatus.MISSED)
            changed = True
    return changed


def finalize_attendance(db: Session, day: date) -> FinalizationResult:
    """Close out ``day`` for every active employee.

    Unset slots become ``missed``; users with no record get an absent one.
    Records carrying a manual or leave override keep their status.
    """
    result = FinalizationResult()
    employees = db.scalars(
        select(User.id).where(User.is_active.is_(True), User.role == UserRole.EMPLOYEE).order_by(User.id.asc())
    ).all()
    records = {
        record.user_id: record
        for record in db.scalars(select(AttendanceRecord).where(AttendanceRecord.attendance_date == day)).all()
    }

    for user_id in employees:
        result.processed += 1
        record = records.get(user_id)
        if record is None:
            db.add(
                AttendanceRecord(
                    id=attendance_record_id(user_id, day),
                    user_id=user_id,
                    attendance_date=day,
                    check1_status=CheckStatus.MISSED,
                    check2_status=CheckStatus.MISSED,
                    check3_status=CheckStatus.MISSED,
                    status=DailyStatus.ABSENT,
                    is_auto_generated=True,
                )
            )
            result.absent_records_created += 1
            continue

        if not _fill_missing_slots(record):
            continue
        if not record.is_manual_entry and not record.leave_backfill:
            record.status = recompute_status(record)
        result.records_updated += 1

    db.commit()
    logger.info("attendance_finalized", extra={"date": day.isoformat(), **result.as_dict()})
    return result

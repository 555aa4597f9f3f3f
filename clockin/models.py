from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any, NamedTuple

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from clockin.db import Base, JsonColumn


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class CheckSlot(str, enum.Enum):
    CHECK1 = "check1"
    CHECK2 = "check2"
    CHECK3 = "check3"


CLOCK_ORDER: tuple[CheckSlot, ...] = (CheckSlot.CHECK1, CheckSlot.CHECK2, CheckSlot.CHECK3)


class CheckStatus(str, enum.Enum):
    ON_TIME = "on_time"
    LATE = "late"
    EARLY_LEAVE = "early_leave"
    MISSED = "missed"


_check_status_type = Enum(CheckStatus, name="check_status", values_callable=_enum_values)


class DailyStatus(str, enum.Enum):
    PRESENT = "present"
    HALF_DAY_ABSENT = "half_day_absent"
    IN_PROGRESS = "in_progress"
    ABSENT = "absent"
    ON_LEAVE = "on_leave"


class ViolationType(str, enum.Enum):
    LATE = "late"
    EARLY_LEAVE = "early_leave"
    ABSENT = "absent"
    HALF_DAY_ABSENT = "half_day_absent"


class PenaltyStatus(str, enum.Enum):
    ACTIVE = "active"
    WAIVED = "waived"
    PAID = "paid"


class LeaveType(str, enum.Enum):
    FULL = "full"
    MEDICAL = "medical"
    MATERNITY = "maternity"
    HALF = "half"


class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class UserRole(str, enum.Enum):
    EMPLOYEE = "employee"
    ADMIN = "admin"


class AttachmentStatus(str, enum.Enum):
    PENDING = "pending"
    READY = "ready"
    REJECTED = "rejected"


class FlagStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SlotStatuses(NamedTuple):
    check1: CheckStatus | None
    check2: CheckStatus | None
    check3: CheckStatus | None

    def get(self, slot: CheckSlot) -> CheckStatus | None:
        if slot == CheckSlot.CHECK1:
            return self.check1
        if slot == CheckSlot.CHECK2:
            return self.check2
        return self.check3


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=_enum_values),
        nullable=False,
        default=UserRole.EMPLOYEE,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    full_leave_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    medical_leave_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    maternity_leave_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __mapper_args__ = {"version_id_col": version_id}


class CompanySettings(Base):
    __tablename__ = "company_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    workplace_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    workplace_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    workplace_radius: Mapped[float | None] = mapped_column(Float, nullable=True)
    geo_fencing_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    time_windows: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
    grace_periods: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
    penalty_rules: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
    working_days: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
    holidays: Mapped[list[str]] = mapped_column(JsonColumn, nullable=False, default=list)
    leave_policy: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
    leave_attachment_required_types: Mapped[list[str] | None] = mapped_column(JsonColumn, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    # "{user_id}_{YYYY-MM-DD}" with the date taken in company timezone.
    id: Mapped[str] = mapped_column(String(160), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    check1_status: Mapped[CheckStatus | None] = mapped_column(
        _check_status_type,
        nullable=True,
    )
    check1_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check1_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check1_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    check2_status: Mapped[CheckStatus | None] = mapped_column(
        _check_status_type,
        nullable=True,
    )
    check2_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check2_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check2_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    check3_status: Mapped[CheckStatus | None] = mapped_column(
        _check_status_type,
        nullable=True,
    )
    check3_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check3_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check3_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[DailyStatus] = mapped_column(
        Enum(DailyStatus, name="daily_status", values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    is_manual_entry: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    manual_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    manual_updated_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    leave_request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    leave_backfill: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def slot_statuses(self) -> SlotStatuses:
        return SlotStatuses(self.check1_status, self.check2_status, self.check3_status)


class Penalty(Base):
    __tablename__ = "penalties"

    # "{user_id}_{date_key}_{violation_type}_{violation_field}", one row per violation.
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    violation_type: Mapped[ViolationType] = mapped_column(
        Enum(ViolationType, name="violation_type", values_callable=_enum_values),
        nullable=False,
    )
    violation_field: Mapped[str] = mapped_column(String(32), nullable=False)
    date_key: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    date_incurred: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    is_warning: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    violation_count: Mapped[int] = mapped_column(Integer, nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[PenaltyStatus] = mapped_column(
        Enum(PenaltyStatus, name="penalty_status", values_callable=_enum_values),
        nullable=False,
        default=PenaltyStatus.ACTIVE,
    )
    attendance_record_id: Mapped[str | None] = mapped_column(String(160), nullable=True)
    waived_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    waived_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    waived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    acknowledgement_note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class ViolationSummary(Base):
    __tablename__ = "violation_summaries"

    # "{user_id}_{YYYY-MM}"
    id: Mapped[str] = mapped_column(String(160), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    month: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    monthly_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    counts: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
    details: Mapped[list[dict[str, Any]]] = mapped_column(JsonColumn, nullable=False, default=list)
    fined_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warning_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fined_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class LeaveAttachment(Base):
    __tablename__ = "leave_attachments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[AttachmentStatus] = mapped_column(
        Enum(AttachmentStatus, name="attachment_status", values_callable=_enum_values),
        nullable=False,
        default=AttachmentStatus.PENDING,
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False, default="attachment")
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False, default="application/octet-stream")
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attached_to_leave: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    leave_type: Mapped[LeaveType] = mapped_column(
        Enum(LeaveType, name="leave_type", values_callable=_enum_values),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_days: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[LeaveStatus] = mapped_column(
        Enum(LeaveStatus, name="leave_status", values_callable=_enum_values),
        nullable=False,
        default=LeaveStatus.PENDING,
        index=True,
    )
    attachment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewer_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __mapper_args__ = {"version_id_col": version_id}


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="info")
    related_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    resource: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="success")
    performed_by: Mapped[str] = mapped_column(String(128), nullable=False)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JsonColumn, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JsonColumn, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)


class SystemFlag(Base):
    __tablename__ = "system_flags"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[FlagStatus] = mapped_column(
        Enum(FlagStatus, name="flag_status", values_callable=_enum_values),
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    heartbeat_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    result: Mapped[dict[str, Any] | None] = mapped_column(JsonColumn, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

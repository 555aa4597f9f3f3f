from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from clockin.models import (
    CheckSlot,
    CheckStatus,
    DailyStatus,
    LeaveStatus,
    LeaveType,
    PenaltyStatus,
    ViolationType,
)

DATE_KEY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
MONTH_KEY_PATTERN = r"^\d{4}-\d{2}$"
HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class GeoPoint(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class TimeWindow(BaseModel):
    start: str = Field(pattern=HHMM_PATTERN)
    end: str = Field(pattern=HHMM_PATTERN)
    label: str | None = None


class PenaltyRules(BaseModel):
    violation_thresholds: dict[str, int] = Field(default_factory=dict)
    amounts: dict[str, float] = Field(default_factory=dict)


class CompanyConfig(BaseModel):
    timezone: str
    workplace_center: GeoPoint | None = None
    workplace_radius: float | None = None
    geo_fencing_enabled: bool = True
    time_windows: dict[CheckSlot, TimeWindow] = Field(default_factory=dict)
    grace_periods: dict[CheckSlot, int] = Field(default_factory=dict)
    penalty_rules: PenaltyRules = Field(default_factory=PenaltyRules)
    working_days: dict[str, bool] = Field(default_factory=dict)
    holidays: list[str] = Field(default_factory=list)
    leave_policy: dict[str, int] = Field(default_factory=dict)
    leave_attachment_required_types: list[str] = Field(default_factory=lambda: ["medical", "maternity"])


class ClockInRequest(BaseModel):
    timestamp: datetime
    location: GeoPoint
    is_mocked: bool = False


class ClockInResponse(BaseModel):
    success: bool
    message: str
    slot: CheckSlot
    check_status: CheckStatus
    daily_status: DailyStatus
    late_by_minutes: int | None = None
    date_key: str


class SlotEntry(BaseModel):
    check: CheckSlot
    status: CheckStatus
    timestamp: datetime | None = None
    location: GeoPoint | None = None


class ManualAttendanceRequest(BaseModel):
    user_id: str = Field(min_length=1)
    attendance_date: str = Field(pattern=DATE_KEY_PATTERN)
    status: DailyStatus
    checks: list[SlotEntry] = Field(default_factory=list)
    notes: str | None = Field(default=None, max_length=1000)
    reason: str = Field(min_length=3, max_length=1000)


class AttendanceRecordRead(BaseModel):
    id: str
    user_id: str
    attendance_date: date
    check1_status: CheckStatus | None = None
    check1_timestamp: datetime | None = None
    check2_status: CheckStatus | None = None
    check2_timestamp: datetime | None = None
    check3_status: CheckStatus | None = None
    check3_timestamp: datetime | None = None
    status: DailyStatus
    is_manual_entry: bool
    manual_reason: str | None = None
    notes: str | None = None
    leave_request_id: str | None = None
    leave_backfill: bool

    model_config = ConfigDict(from_attributes=True)


class DateKeyRequest(BaseModel):
    date: str = Field(pattern=DATE_KEY_PATTERN)
    user_id: str | None = None


class MonthKeyRequest(BaseModel):
    month: str = Field(pattern=MONTH_KEY_PATTERN)
    user_id: str | None = None


class PenaltyRead(BaseModel):
    id: str
    user_id: str
    violation_type: ViolationType
    violation_field: str
    date_key: str
    date_incurred: date
    amount: float
    is_warning: bool
    violation_count: int
    threshold: int
    status: PenaltyStatus
    waived_reason: str | None = None
    waived_by: str | None = None
    acknowledged: bool

    model_config = ConfigDict(from_attributes=True)


class PenaltyListResponse(BaseModel):
    items: list[PenaltyRead]
    next_cursor: str | None = None


class WaivePenaltyRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=1000)


class AcknowledgePenaltyRequest(BaseModel):
    note: str | None = Field(default=None, max_length=1000)


class LeaveSubmitRequest(BaseModel):
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str
    attachment_id: str | None = None


class LeaveReviewRequest(BaseModel):
    action: Literal["approve", "reject"]
    notes: str | None = Field(default=None, max_length=1000)


class LeaveRequestRead(BaseModel):
    id: str
    user_id: str
    leave_type: LeaveType
    start_date: date
    end_date: date
    total_days: int
    reason: str | None = None
    status: LeaveStatus
    attachment_id: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    reviewer_notes: str | None = None
    submitted_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LeaveListResponse(BaseModel):
    items: list[LeaveRequestRead]
    next_cursor: str | None = None


class LeaveSubmitResponse(BaseModel):
    request_id: str


class OperationResult(BaseModel):
    success: bool = True
    result: dict[str, Any] = Field(default_factory=dict)

from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from clockin.db import get_db
from clockin.models import LeaveStatus, PenaltyStatus
from clockin.schemas import (
    AcknowledgePenaltyRequest,
    AttendanceRecordRead,
    ClockInRequest,
    ClockInResponse,
    LeaveListResponse,
    LeaveRequestRead,
    LeaveSubmitRequest,
    LeaveSubmitResponse,
    OperationResult,
    PenaltyListResponse,
    PenaltyRead,
)
from clockin.security import require_user
from clockin.services.attendance import get_attendance_day, handle_clock_in, list_employee_attendance
from clockin.services.leaves import (
    cancel_leave_request,
    get_leave_balance,
    list_employee_leaves,
    submit_leave_request,
)
from clockin.services.penalties import acknowledge_penalty, get_penalty_summary, list_employee_penalties

router = APIRouter(tags=["attendance"])


@router.post("/api/attendance/clock-in", response_model=ClockInResponse)
def clock_in(
    payload: ClockInRequest,
    request: Request,
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> ClockInResponse:
    result = handle_clock_in(db, user_id=user_id, payload=payload)
    request.state.record_id = f"{user_id}_{result.date_key}"
    return ClockInResponse(
        success=result.success,
        message=result.message,
        slot=result.slot,
        check_status=result.check_status,
        daily_status=result.daily_status,
        late_by_minutes=result.late_by_minutes,
        date_key=result.date_key,
    )


@router.get("/api/attendance/me", response_model=list[AttendanceRecordRead])
def my_attendance(
    start: date = Query(...),
    end: date = Query(...),
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[AttendanceRecordRead]:
    records = list_employee_attendance(db, user_id=user_id, start=start, end=end)
    return [AttendanceRecordRead.model_validate(record) for record in records]


@router.get("/api/attendance/me/{date_key}", response_model=AttendanceRecordRead)
def my_attendance_day(
    date_key: str,
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    return AttendanceRecordRead.model_validate(get_attendance_day(db, user_id=user_id, date_key=date_key))


@router.get("/api/penalties/me", response_model=PenaltyListResponse)
def my_penalties(
    status_filter: PenaltyStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=20),
    cursor: str | None = Query(default=None),
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> PenaltyListResponse:
    items, next_cursor = list_employee_penalties(
        db, user_id=user_id, status=status_filter, limit=limit, cursor=cursor
    )
    return PenaltyListResponse(
        items=[PenaltyRead.model_validate(item) for item in items],
        next_cursor=next_cursor,
    )


@router.get("/api/penalties/me/summary", response_model=OperationResult)
def my_penalty_summary(
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> OperationResult:
    return OperationResult(result=get_penalty_summary(db, user_id=user_id))


@router.post("/api/penalties/{penalty_id}/acknowledge", response_model=PenaltyRead)
def acknowledge(
    penalty_id: str,
    payload: AcknowledgePenaltyRequest,
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> PenaltyRead:
    penalty = acknowledge_penalty(db, user_id=user_id, penalty_id=penalty_id, note=payload.note)
    return PenaltyRead.model_validate(penalty)


@router.post("/api/leaves", response_model=LeaveSubmitResponse, status_code=status.HTTP_201_CREATED)
def submit_leave(
    payload: LeaveSubmitRequest,
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> LeaveSubmitResponse:
    leave = submit_leave_request(db, user_id=user_id, payload=payload)
    return LeaveSubmitResponse(request_id=leave.id)


@router.post("/api/leaves/{request_id}/cancel", response_model=LeaveRequestRead)
def cancel_leave(
    request_id: str,
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    return LeaveRequestRead.model_validate(cancel_leave_request(db, user_id=user_id, request_id=request_id))


@router.get("/api/leaves/me", response_model=LeaveListResponse)
def my_leaves(
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=20),
    cursor: str | None = Query(default=None),
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> LeaveListResponse:
    items, next_cursor = list_employee_leaves(db, user_id=user_id, status=status_filter, limit=limit, cursor=cursor)
    return LeaveListResponse(
        items=[LeaveRequestRead.model_validate(item) for item in items],
        next_cursor=next_cursor,
    )


@router.get("/api/leaves/me/balance", response_model=OperationResult)
def my_leave_balance(
    year: int | None = Query(default=None, ge=2000, le=2100),
    user_id: str = Depends(require_user),
    db: Session = Depends(get_db),
) -> OperationResult:
    return OperationResult(result=get_leave_balance(db, user_id=user_id, year=year))

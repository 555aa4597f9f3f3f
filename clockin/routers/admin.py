from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from clockin.db import get_db
from clockin.schemas import (
    AttendanceRecordRead,
    DateKeyRequest,
    LeaveRequestRead,
    LeaveReviewRequest,
    ManualAttendanceRequest,
    MonthKeyRequest,
    OperationResult,
    PenaltyRead,
    WaivePenaltyRequest,
)
from clockin.security import require_admin
from clockin.services.attendance import set_manual_attendance
from clockin.services.company_settings import parse_date_key
from clockin.services.finalizer import finalize_attendance
from clockin.services.leaves import get_leave_balance, handle_leave_approval
from clockin.services.penalties import (
    calculate_daily_violations,
    calculate_monthly_violations,
    get_penalty_summary,
    waive_penalty,
)
from clockin.services.scheduler import run_daily_finalization

router = APIRouter(tags=["admin"], prefix="/api/admin")


@router.put("/attendance", response_model=AttendanceRecordRead)
def put_manual_attendance(
    payload: ManualAttendanceRequest,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = set_manual_attendance(db, payload, performed_by=admin_id)
    return AttendanceRecordRead.model_validate(record)


@router.post("/attendance/finalize", response_model=OperationResult, dependencies=[Depends(require_admin)])
def finalize(payload: DateKeyRequest, db: Session = Depends(get_db)) -> OperationResult:
    day = parse_date_key(payload.date)
    return OperationResult(result=finalize_attendance(db, day).as_dict())


@router.post("/jobs/daily-finalization", response_model=OperationResult, dependencies=[Depends(require_admin)])
def trigger_daily_finalization(db: Session = Depends(get_db)) -> OperationResult:
    return OperationResult(result=run_daily_finalization(db=db, force=True))


@router.post("/penalties/daily", response_model=OperationResult, dependencies=[Depends(require_admin)])
def daily_violations(payload: DateKeyRequest, db: Session = Depends(get_db)) -> OperationResult:
    day = parse_date_key(payload.date)
    return OperationResult(result=calculate_daily_violations(db, day, user_id=payload.user_id))


@router.post("/penalties/monthly", response_model=OperationResult, dependencies=[Depends(require_admin)])
def monthly_violations(payload: MonthKeyRequest, db: Session = Depends(get_db)) -> OperationResult:
    return OperationResult(result=calculate_monthly_violations(db, payload.month, user_id=payload.user_id))


@router.post("/penalties/{penalty_id}/waive", response_model=PenaltyRead)
def waive(
    penalty_id: str,
    payload: WaivePenaltyRequest,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> PenaltyRead:
    return PenaltyRead.model_validate(
        waive_penalty(db, penalty_id, reason=payload.reason, performed_by=admin_id)
    )


@router.get("/users/{user_id}/penalties/summary", response_model=OperationResult, dependencies=[Depends(require_admin)])
def user_penalty_summary(user_id: str, db: Session = Depends(get_db)) -> OperationResult:
    return OperationResult(result=get_penalty_summary(db, user_id=user_id))


@router.post("/leaves/{request_id}/review", response_model=LeaveRequestRead)
def review_leave(
    request_id: str,
    payload: LeaveReviewRequest,
    admin_id: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave = handle_leave_approval(
        db,
        request_id=request_id,
        action=payload.action,
        reviewer_id=admin_id,
        notes=payload.notes,
    )
    return LeaveRequestRead.model_validate(leave)


@router.get("/users/{user_id}/leave-balance", response_model=OperationResult, dependencies=[Depends(require_admin)])
def user_leave_balance(
    user_id: str,
    year: int | None = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
) -> OperationResult:
    return OperationResult(result=get_leave_balance(db, user_id=user_id, year=year))

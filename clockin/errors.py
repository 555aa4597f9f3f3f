from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class _CategorizedError(ApiError):
    status = 400
    default_code = "BAD_REQUEST"
    default_message = "Request failed."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        super().__init__(self.status, code or self.default_code, message or self.default_message)


class InvalidArgument(_CategorizedError):
    status = 422
    default_code = "INVALID_ARGUMENT"
    default_message = "Invalid argument."


class NotFound(_CategorizedError):
    status = 404
    default_code = "NOT_FOUND"
    default_message = "Resource not found."


class PermissionDenied(_CategorizedError):
    status = 403
    default_code = "PERMISSION_DENIED"
    default_message = "Not allowed to act on this resource."


class PreconditionFailed(_CategorizedError):
    status = 409
    default_code = "FAILED_PRECONDITION"
    default_message = "Precondition failed."


class TransactionAborted(_CategorizedError):
    status = 409
    default_code = "TRANSACTION_ABORTED"
    default_message = "Concurrent update conflict, please retry."


class MockLocationRejected(PreconditionFailed):
    default_code = "MOCK_LOCATION_REJECTED"
    default_message = "Clock-in rejected. Mock location detected."


class StaleOrFutureTimestamp(PreconditionFailed):
    default_code = "STALE_OR_FUTURE_TIMESTAMP"
    default_message = "Clock-in timestamp is too far from the current time."


class NonWorkingDay(PreconditionFailed):
    default_code = "NON_WORKING_DAY"
    default_message = "Clock-ins are not allowed on weekends or company holidays."


class GeofenceNotConfigured(PreconditionFailed):
    default_code = "GEOFENCE_NOT_CONFIGURED"
    default_message = "Workplace geofence not configured."


class OutsideGeofence(PreconditionFailed):
    default_code = "OUTSIDE_GEOFENCE"
    default_message = "Outside allowed geofence."


class NoActiveWindow(PreconditionFailed):
    default_code = "NO_ACTIVE_WINDOW"
    default_message = "No active clock-in window."


class DuplicateClockIn(PreconditionFailed):
    default_code = "DUPLICATE_CLOCK_IN"
    default_message = "Clock-in already recorded for this slot."


class InsufficientLeaveBalance(PreconditionFailed):
    default_code = "INSUFFICIENT_LEAVE_BALANCE"
    default_message = "Insufficient leave balance."


class OverlappingLeaveRequest(PreconditionFailed):
    default_code = "OVERLAPPING_LEAVE_REQUEST"
    default_message = "You already have a pending or approved leave request for overlapping dates."


class AttachmentRequired(PreconditionFailed):
    default_code = "ATTACHMENT_REQUIRED"
    default_message = "Attachment is required for this leave type."


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)

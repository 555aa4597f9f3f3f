from __future__ import annotations

from sqlalchemy.orm import Session

from clockin.errors import NotFound, PermissionDenied, PreconditionFailed
from clockin.models import AttachmentStatus, LeaveAttachment


def get_attachment_by_id(db: Session, attachment_id: str) -> LeaveAttachment:
    attachment = db.get(LeaveAttachment, attachment_id)
    if attachment is None:
        raise NotFound("Attachment not found.")
    return attachment


def assert_attachment_owned_by_user(attachment: LeaveAttachment | None, user_id: str) -> LeaveAttachment:
    if attachment is None:
        raise NotFound("Attachment not found.")
    if attachment.user_id != user_id:
        raise PermissionDenied("Attachment does not belong to this user.")
    return attachment


def assert_attachment_ready(attachment: LeaveAttachment) -> None:
    if attachment.status != AttachmentStatus.READY:
        raise PreconditionFailed("Attachment is not finalized.", code="ATTACHMENT_NOT_READY")
    if attachment.attached_to_leave:
        raise PreconditionFailed(
            "Attachment is already linked to another leave request.",
            code="ATTACHMENT_ALREADY_LINKED",
        )


def attach_attachment_to_leave(attachment: LeaveAttachment, leave_request_id: str) -> None:
    """Link ``attachment`` to a leave request; the caller commits."""
    if attachment.attached_to_leave and attachment.attached_to_leave != leave_request_id:
        raise PreconditionFailed(
            "Attachment is already linked to another leave request.",
            code="ATTACHMENT_ALREADY_LINKED",
        )
    attachment.attached_to_leave = leave_request_id

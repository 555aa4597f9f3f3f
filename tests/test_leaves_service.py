from __future__ import annotations

import unittest
from datetime import date, datetime, timezone

from sqlalchemy import event, select
from sqlalchemy.dialects import postgresql

from clockin.errors import (
    AttachmentRequired,
    InsufficientLeaveBalance,
    InvalidArgument,
    NotFound,
    OverlappingLeaveRequest,
    PermissionDenied,
    PreconditionFailed,
)
from clockin.models import (
    AttachmentStatus,
    AttendanceRecord,
    AuditLog,
    CheckStatus,
    DailyStatus,
    LeaveAttachment,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
    Notification,
    User,
)
from clockin.schemas import LeaveSubmitRequest
from clockin.services.leaves import (
    cancel_leave_request,
    get_leave_balance,
    handle_leave_approval,
    list_employee_leaves,
    submit_leave_request,
)

from _support import make_session, seed_company, seed_user

NOW = datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)


def _leave(leave_type=LeaveType.FULL, start=date(2026, 3, 2), end=date(2026, 3, 4), **kwargs) -> LeaveSubmitRequest:
    return LeaveSubmitRequest(
        leave_type=leave_type,
        start_date=start,
        end_date=end,
        reason=kwargs.pop("reason", "Family function out of town"),
        **kwargs,
    )


class LeaveLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        seed_company(self.db)
        seed_user(self.db, "emp-1", full_leave_balance=10, medical_leave_balance=5)
        seed_user(self.db, "emp-2", full_leave_balance=10)

    def tearDown(self) -> None:
        self.db.close()

    def _submit(self, payload: LeaveSubmitRequest, user_id: str = "emp-1"):
        return submit_leave_request(self.db, user_id=user_id, payload=payload, now_utc=NOW)

    def _balance(self, user_id: str = "emp-1") -> int:
        self.db.expire_all()
        return self.db.get(User, user_id).full_leave_balance

    def test_submit_creates_pending_request(self) -> None:
        leave = self._submit(_leave())

        self.assertEqual(leave.status, LeaveStatus.PENDING)
        self.assertEqual(leave.total_days, 3)
        titles = self.db.scalars(select(Notification.title)).all()
        self.assertEqual(titles, ["Leave Request Submitted"])

    def test_balance_round_trip_through_approve_and_cancel(self) -> None:
        self.db.add(
            AttendanceRecord(
                id="emp-1_2026-03-05",
                user_id="emp-1",
                attendance_date=date(2026, 3, 5),
                check1_status=CheckStatus.ON_TIME,
                status=DailyStatus.ABSENT,
            )
        )
        self.db.commit()
        leave = self._submit(_leave())

        approved = handle_leave_approval(self.db, request_id=leave.id, action="approve", reviewer_id="admin-1")

        self.assertEqual(approved.status, LeaveStatus.APPROVED)
        self.assertEqual(approved.reviewed_by, "admin-1")
        self.assertEqual(self._balance(), 7)
        backfilled = self.db.scalars(
            select(AttendanceRecord).where(AttendanceRecord.leave_request_id == leave.id)
        ).all()
        self.assertEqual(len(backfilled), 3)
        self.assertTrue(all(r.status == DailyStatus.ON_LEAVE and r.leave_backfill for r in backfilled))
        backfill_audits = self.db.scalars(select(AuditLog).where(AuditLog.action == "leave_backfill")).all()
        self.assertEqual(len(backfill_audits), 3)
        self.assertIn("Leave Approved", self.db.scalars(select(Notification.title)).all())

        cancelled = cancel_leave_request(self.db, user_id="emp-1", request_id=leave.id)

        self.assertEqual(cancelled.status, LeaveStatus.CANCELLED)
        self.assertIsNotNone(cancelled.cancelled_at)
        self.assertEqual(self._balance(), 10)
        remaining = self.db.scalars(select(AttendanceRecord.id)).all()
        self.assertEqual(remaining, ["emp-1_2026-03-05"])

    def test_approve_overwrites_existing_day(self) -> None:
        self.db.add(
            AttendanceRecord(
                id="emp-1_2026-03-02",
                user_id="emp-1",
                attendance_date=date(2026, 3, 2),
                check1_status=CheckStatus.LATE,
                status=DailyStatus.ABSENT,
            )
        )
        self.db.commit()
        leave = self._submit(_leave())

        handle_leave_approval(self.db, request_id=leave.id, action="approve", reviewer_id="admin-1")

        record = self.db.get(AttendanceRecord, "emp-1_2026-03-02")
        self.assertEqual(record.status, DailyStatus.ON_LEAVE)
        self.assertEqual(record.leave_request_id, leave.id)
        audit = self.db.scalar(
            select(AuditLog).where(
                AuditLog.action == "leave_backfill",
                AuditLog.resource_id == "emp-1_2026-03-02",
            )
        )
        self.assertEqual(audit.old_values["status"], "absent")

    def test_reject_keeps_balance(self) -> None:
        leave = self._submit(_leave())

        rejected = handle_leave_approval(
            self.db,
            request_id=leave.id,
            action="reject",
            reviewer_id="admin-1",
            notes="Quarter close",
        )

        self.assertEqual(rejected.status, LeaveStatus.REJECTED)
        self.assertEqual(rejected.reviewer_notes, "Quarter close")
        self.assertEqual(self._balance(), 10)
        self.assertEqual(self.db.scalars(select(AttendanceRecord)).all(), [])
        with self.assertRaises(PreconditionFailed):
            handle_leave_approval(self.db, request_id=leave.id, action="approve", reviewer_id="admin-1")
        with self.assertRaises(PreconditionFailed):
            cancel_leave_request(self.db, user_id="emp-1", request_id=leave.id)

    def test_overlapping_request_rejected(self) -> None:
        self._submit(_leave())

        with self.assertRaises(OverlappingLeaveRequest):
            self._submit(_leave(start=date(2026, 3, 4), end=date(2026, 3, 6)))

        # Adjacent ranges and other users do not overlap.
        self._submit(_leave(start=date(2026, 3, 5), end=date(2026, 3, 5)))
        self._submit(_leave(), user_id="emp-2")

    def test_insufficient_balance(self) -> None:
        with self.assertRaises(InsufficientLeaveBalance):
            self._submit(_leave(start=date(2026, 3, 2), end=date(2026, 3, 20)))

    def test_half_day_leave_cannot_be_approved(self) -> None:
        leave = self._submit(_leave(leave_type=LeaveType.HALF, end=date(2026, 3, 20)), user_id="emp-2")

        with self.assertRaises(PreconditionFailed) as ctx:
            handle_leave_approval(self.db, request_id=leave.id, action="approve", reviewer_id="admin-1")

        self.assertEqual(ctx.exception.code, "UNSUPPORTED_LEAVE_TYPE")
        self.db.expire_all()
        self.assertEqual(self.db.get(LeaveRequest, leave.id).status, LeaveStatus.PENDING)
        self.assertEqual(self._balance("emp-2"), 10)
        self.assertEqual(self.db.scalars(select(AttendanceRecord)).all(), [])

        rejected = handle_leave_approval(self.db, request_id=leave.id, action="reject", reviewer_id="admin-1")
        self.assertEqual(rejected.status, LeaveStatus.REJECTED)

    def test_submit_locks_user_row_before_overlap_check(self) -> None:
        statements: list[str] = []

        @event.listens_for(self.db, "do_orm_execute")
        def _capture(state) -> None:  # type: ignore[no-untyped-def]
            if state.is_select:
                statements.append(str(state.statement.compile(dialect=postgresql.dialect())))

        self._submit(_leave())
        event.remove(self.db, "do_orm_execute", _capture)

        user_lock = next(i for i, sql in enumerate(statements) if "FROM users" in sql and "FOR UPDATE" in sql)
        overlap = next(i for i, sql in enumerate(statements) if "FROM leave_requests" in sql)
        self.assertLess(user_lock, overlap)

    def test_balance_year_defaults_to_company_local_year(self) -> None:
        new_year_ist = datetime(2026, 12, 31, 19, 0, tzinfo=timezone.utc)

        balance = get_leave_balance(self.db, user_id="emp-1", now_utc=new_year_ist)

        self.assertEqual(balance["year"], 2027)

    def test_medical_leave_requires_ready_owned_attachment(self) -> None:
        payload = _leave(leave_type=LeaveType.MEDICAL, end=date(2026, 3, 2))
        with self.assertRaises(AttachmentRequired):
            self._submit(payload)

        self.db.add_all(
            [
                LeaveAttachment(id="att-pending", user_id="emp-1", status=AttachmentStatus.PENDING),
                LeaveAttachment(id="att-other", user_id="emp-2", status=AttachmentStatus.READY),
                LeaveAttachment(id="att-ready", user_id="emp-1", status=AttachmentStatus.READY),
            ]
        )
        self.db.commit()

        with self.assertRaises(PreconditionFailed):
            self._submit(_leave(leave_type=LeaveType.MEDICAL, end=date(2026, 3, 2), attachment_id="att-pending"))
        with self.assertRaises(PermissionDenied):
            self._submit(_leave(leave_type=LeaveType.MEDICAL, end=date(2026, 3, 2), attachment_id="att-other"))
        with self.assertRaises(NotFound):
            self._submit(_leave(leave_type=LeaveType.MEDICAL, end=date(2026, 3, 2), attachment_id="att-missing"))

        leave = self._submit(_leave(leave_type=LeaveType.MEDICAL, end=date(2026, 3, 2), attachment_id="att-ready"))
        self.assertEqual(leave.attachment_id, "att-ready")
        self.assertEqual(self.db.get(LeaveAttachment, "att-ready").attached_to_leave, leave.id)

    def test_invalid_ranges_and_reasons(self) -> None:
        with self.assertRaises(InvalidArgument):
            self._submit(_leave(start=date(2026, 3, 4), end=date(2026, 3, 2)))
        with self.assertRaises(PreconditionFailed):
            self._submit(_leave(start=date(2026, 2, 27), end=date(2026, 3, 2)))
        with self.assertRaises(InvalidArgument):
            self._submit(_leave(reason="ill"))

    def test_cancel_requires_owner(self) -> None:
        leave = self._submit(_leave())
        with self.assertRaises(PermissionDenied):
            cancel_leave_request(self.db, user_id="emp-2", request_id=leave.id)
        with self.assertRaises(NotFound):
            cancel_leave_request(self.db, user_id="emp-1", request_id="missing")

    def test_list_and_balance(self) -> None:
        first = self._submit(_leave())
        self._submit(_leave(start=date(2026, 3, 9), end=date(2026, 3, 9)))
        handle_leave_approval(self.db, request_id=first.id, action="approve", reviewer_id="admin-1")

        items, cursor = list_employee_leaves(self.db, user_id="emp-1", limit=10)
        self.assertEqual(len(items), 2)
        self.assertIsNone(cursor)
        approved, _ = list_employee_leaves(self.db, user_id="emp-1", status=LeaveStatus.APPROVED)
        self.assertEqual([item.id for item in approved], [first.id])

        balance = get_leave_balance(self.db, user_id="emp-1", year=2026)
        self.assertEqual(balance["breakdown"]["full"], {"remaining": 7, "used": 3, "pending": 1})
        self.assertEqual(balance["breakdown"]["medical"]["remaining"], 5)
        self.assertEqual(balance["used"], 3)
        with self.assertRaises(NotFound):
            get_leave_balance(self.db, user_id="ghost", year=2026)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import unittest
from collections.abc import Generator
from unittest.mock import patch

from fastapi.testclient import TestClient

from clockin.db import get_db
from clockin.main import app
from clockin.models import CheckSlot, CheckStatus, DailyStatus
from clockin.services.attendance import ClockInResult

from _support import WORKPLACE, make_session, seed_company, seed_user

CLOCK_IN_BODY = {
    "timestamp": "2026-03-02T03:15:00Z",
    "location": {"latitude": WORKPLACE[0], "longitude": WORKPLACE[1]},
    "is_mocked": False,
}


def _override_get_db(db):
    def _override() -> Generator[object, None, None]:
        yield db

    return _override


class ApiErrorEnvelopeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        seed_company(self.db)
        seed_user(self.db, "emp-1", full_leave_balance=5)
        app.dependency_overrides[get_db] = _override_get_db(self.db)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def test_missing_identity_header_is_unauthenticated(self) -> None:
        response = self.client.post("/api/attendance/clock-in", json=CLOCK_IN_BODY)

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "UNAUTHENTICATED")

    def test_mock_location_returns_precondition_error(self) -> None:
        response = self.client.post(
            "/api/attendance/clock-in",
            json={**CLOCK_IN_BODY, "is_mocked": True},
            headers={"X-User-Id": "emp-1", "X-Request-Id": "req-123"},
        )

        self.assertEqual(response.status_code, 409)
        body = response.json()["error"]
        self.assertEqual(body["code"], "MOCK_LOCATION_REJECTED")
        self.assertEqual(body["request_id"], "req-123")
        self.assertEqual(response.headers["X-Request-Id"], "req-123")

    def test_stale_timestamp_returns_precondition_error(self) -> None:
        response = self.client.post(
            "/api/attendance/clock-in",
            json=CLOCK_IN_BODY,
            headers={"X-User-Id": "emp-1"},
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "STALE_OR_FUTURE_TIMESTAMP")

    def test_clock_in_success_payload(self) -> None:
        result = ClockInResult(
            success=True,
            message="Clock-in recorded (check1). Late by 15 minutes.",
            slot=CheckSlot.CHECK1,
            check_status=CheckStatus.LATE,
            daily_status=DailyStatus.ABSENT,
            late_by_minutes=15,
            date_key="2026-03-02",
        )
        with patch("clockin.routers.attendance.handle_clock_in", return_value=result) as handler:
            response = self.client.post(
                "/api/attendance/clock-in",
                json=CLOCK_IN_BODY,
                headers={"X-User-Id": "emp-1"},
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["check_status"], "late")
        self.assertEqual(response.json()["late_by_minutes"], 15)
        self.assertEqual(handler.call_args.kwargs["user_id"], "emp-1")

    def test_validation_error_envelope(self) -> None:
        response = self.client.post(
            "/api/attendance/clock-in",
            json={"timestamp": "not-a-date"},
            headers={"X-User-Id": "emp-1"},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_admin_routes_require_admin_role(self) -> None:
        response = self.client.post(
            "/api/admin/attendance/finalize",
            json={"date": "2026-03-02"},
            headers={"X-User-Id": "emp-1", "X-User-Role": "employee"},
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "PERMISSION_DENIED")

    def test_admin_finalize(self) -> None:
        response = self.client.post(
            "/api/admin/attendance/finalize",
            json={"date": "2026-03-02"},
            headers={"X-User-Id": "boss", "X-User-Role": "admin"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["result"]["absent_records_created"], 1)

    def test_not_found_penalty(self) -> None:
        response = self.client.post(
            "/api/admin/penalties/missing/waive",
            json={"reason": "Clerical error"},
            headers={"X-User-Id": "boss", "X-User-Role": "admin"},
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "NOT_FOUND")

    def test_leave_submit_and_balance(self) -> None:
        response = self.client.post(
            "/api/leaves",
            json={
                "leave_type": "full",
                "start_date": "2099-03-02",
                "end_date": "2099-03-03",
                "reason": "Visiting family",
            },
            headers={"X-User-Id": "emp-1"},
        )
        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()["request_id"])

        balance = self.client.get("/api/leaves/me/balance?year=2099", headers={"X-User-Id": "emp-1"})
        self.assertEqual(balance.status_code, 200)
        self.assertEqual(balance.json()["result"]["pending"], 2)

    def test_leave_review_requires_existing_request(self) -> None:
        response = self.client.post(
            "/api/admin/leaves/missing/review",
            json={"action": "approve"},
            headers={"X-User-Id": "boss", "X-User-Role": "admin"},
        )

        self.assertEqual(response.status_code, 404)

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")


if __name__ == "__main__":
    unittest.main()

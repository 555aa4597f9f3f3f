from __future__ import annotations

import asyncio
import unittest
from datetime import date, datetime, time, timedelta, timezone
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

from sqlalchemy import select

from clockin.main import _scheduler_loop
from clockin.models import (
    AttendanceRecord,
    CheckStatus,
    CompanySettings,
    DailyStatus,
    FlagStatus,
    Notification,
    Penalty,
    SystemFlag,
    ViolationSummary,
)
from clockin.schemas import CompanyConfig
from clockin.services.scheduler import (
    JOB_FINALIZATION,
    JOB_MONTHLY,
    JOB_REMINDERS,
    JOB_RUNNERS,
    ScheduledJob,
    claim_finalization_guard,
    finalization_time,
    next_fire_time,
    plan_jobs,
    plan_next_jobs,
    run_clock_in_reminders,
    run_daily_finalization,
    run_due_jobs,
    run_monthly_penalty_trigger,
)

from _support import DEFAULT_TIME_WINDOWS, MONDAY, SATURDAY, TUESDAY, local_ts, make_session, seed_company, seed_user

IST = ZoneInfo("Asia/Kolkata")
FRIDAY = date(2026, 3, 6)


def _weekday(day: date) -> bool:
    return day.weekday() < 5


class NextFireTimeTests(unittest.TestCase):
    def test_same_day_when_time_still_ahead(self) -> None:
        fire_at = next_fire_time(local_ts(MONDAY, 17, 30), IST, [time(18, 30)], _weekday)
        self.assertEqual(fire_at, datetime(2026, 3, 2, 13, 0, tzinfo=timezone.utc))

    def test_exact_fire_time_moves_to_next_occurrence(self) -> None:
        fire_at = next_fire_time(local_ts(MONDAY, 18, 30), IST, [time(18, 30)], _weekday)
        self.assertEqual(fire_at, local_ts(date(2026, 3, 3), 18, 30))

    def test_skips_filtered_days(self) -> None:
        fire_at = next_fire_time(local_ts(FRIDAY, 19, 0), IST, [time(18, 30)], _weekday)
        self.assertEqual(fire_at.astimezone(IST).date(), date(2026, 3, 9))

    def test_picks_earliest_of_several_times(self) -> None:
        fire_at = next_fire_time(local_ts(MONDAY, 9, 0), IST, [time(17, 30), time(8, 30), time(13, 30)])
        self.assertEqual(fire_at, local_ts(MONDAY, 13, 30))

    def test_monthly_trigger_lands_on_first_of_next_month(self) -> None:
        fire_at = next_fire_time(local_ts(MONDAY, 12, 0), IST, [time(2, 0)], lambda day: day.day == 1)
        self.assertEqual(fire_at, datetime(2026, 3, 31, 20, 30, tzinfo=timezone.utc))

    def test_handles_dst_zone(self) -> None:
        berlin = ZoneInfo("Europe/Berlin")
        # Clocks move forward on 2026-03-29; 18:30 local is then UTC+2.
        now = datetime(2026, 3, 29, 10, 0, tzinfo=timezone.utc)
        fire_at = next_fire_time(now, berlin, [time(18, 30)])
        self.assertEqual(fire_at, datetime(2026, 3, 29, 16, 30, tzinfo=timezone.utc))

    def test_empty_times_rejected(self) -> None:
        with self.assertRaises(ValueError):
            next_fire_time(local_ts(MONDAY, 9, 0), IST, [])


class PlanJobsTests(unittest.TestCase):
    def _config(self, **overrides) -> CompanyConfig:
        payload = {"timezone": "Asia/Kolkata", "time_windows": DEFAULT_TIME_WINDOWS}
        payload.update(overrides)
        return CompanyConfig.model_validate(payload)

    def test_finalization_runs_the_hour_after_check3_closes(self) -> None:
        self.assertEqual(finalization_time(self._config()), time(18, 30))
        late = self._config(time_windows={"check3": {"start": "19:00", "end": "20:15"}})
        self.assertEqual(finalization_time(late), time(21, 30))
        self.assertEqual(finalization_time(self._config(time_windows={})), time(18, 30))

    def test_jobs_sorted_by_fire_time(self) -> None:
        jobs = plan_jobs(self._config(), local_ts(MONDAY, 14, 0))

        self.assertEqual([job.name for job in jobs], [JOB_REMINDERS, JOB_FINALIZATION, JOB_MONTHLY])
        self.assertEqual(jobs[0].fire_at, local_ts(MONDAY, 17, 30))
        self.assertEqual(jobs[1].fire_at, local_ts(MONDAY, 18, 30))

    def test_holidays_are_not_planned(self) -> None:
        config = self._config(holidays=["2026-03-02 Holiday"])
        jobs = {job.name: job for job in plan_jobs(config, local_ts(MONDAY, 14, 0))}
        self.assertEqual(jobs[JOB_FINALIZATION].fire_at, local_ts(date(2026, 3, 3), 18, 30))


class FinalizationGuardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.now = local_ts(MONDAY, 18, 30)

    def tearDown(self) -> None:
        self.db.close()

    def test_claim_is_exclusive(self) -> None:
        flag = claim_finalization_guard(self.db, "2026-03-02", self.now)

        self.assertIsNotNone(flag)
        self.assertEqual(flag.status, FlagStatus.PROCESSING)
        self.assertIsNone(claim_finalization_guard(self.db, "2026-03-02", self.now + timedelta(minutes=5)))

    def test_stale_processing_flag_is_reclaimed(self) -> None:
        claim_finalization_guard(self.db, "2026-03-02", self.now)

        flag = claim_finalization_guard(self.db, "2026-03-02", self.now + timedelta(minutes=31))

        self.assertIsNotNone(flag)
        self.assertEqual(flag.attempts, 2)

    def test_error_flag_is_reclaimed_and_completed_is_terminal(self) -> None:
        flag = claim_finalization_guard(self.db, "2026-03-02", self.now)
        flag.status = FlagStatus.ERROR
        flag.error = "boom"
        self.db.commit()

        reclaimed = claim_finalization_guard(self.db, "2026-03-02", self.now + timedelta(minutes=1))
        self.assertIsNotNone(reclaimed)
        self.assertIsNone(reclaimed.error)

        reclaimed.status = FlagStatus.COMPLETED
        self.db.commit()
        self.assertIsNone(claim_finalization_guard(self.db, "2026-03-02", self.now + timedelta(days=1)))


class ScheduledJobTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        seed_company(self.db)
        seed_user(self.db, "emp-1")
        seed_user(self.db, "emp-2")

    def tearDown(self) -> None:
        self.db.close()

    def test_daily_finalization_runs_once_per_day(self) -> None:
        result = run_daily_finalization(local_ts(MONDAY, 18, 30), db=self.db)

        self.assertTrue(result["ran"])
        self.assertEqual(result["result"]["finalization"]["absent_records_created"], 2)
        self.assertEqual(result["result"]["violations"]["penalties_created"], 2)
        flag = self.db.get(SystemFlag, "finalization_2026-03-02")
        self.assertEqual(flag.status, FlagStatus.COMPLETED)

        again = run_daily_finalization(local_ts(MONDAY, 18, 45), db=self.db)
        self.assertFalse(again["ran"])
        self.assertEqual(again["reason"], "already_processed")
        self.assertEqual(len(self.db.scalars(select(Penalty)).all()), 2)

    def test_daily_finalization_gated_on_local_hour_and_working_day(self) -> None:
        self.assertEqual(
            run_daily_finalization(local_ts(MONDAY, 17, 30), db=self.db)["reason"],
            "outside_finalization_hour",
        )
        self.assertEqual(
            run_daily_finalization(local_ts(SATURDAY, 18, 30), db=self.db)["reason"],
            "non_working_day",
        )
        self.assertIsNone(self.db.get(SystemFlag, "finalization_2026-03-02"))

    def test_failed_finalization_marks_guard_error(self) -> None:
        with patch("clockin.services.scheduler.finalize_attendance", side_effect=RuntimeError("db down")):
            with self.assertRaises(RuntimeError):
                run_daily_finalization(local_ts(MONDAY, 18, 30), db=self.db)

        flag = self.db.get(SystemFlag, "finalization_2026-03-02")
        self.assertEqual(flag.status, FlagStatus.ERROR)
        self.assertEqual(flag.error, "db down")

        retried = run_daily_finalization(local_ts(MONDAY, 18, 45), db=self.db)
        self.assertTrue(retried["ran"])

    def test_monthly_trigger_only_on_first(self) -> None:
        self.db.add(
            AttendanceRecord(
                id="emp-1_2026-03-02",
                user_id="emp-1",
                attendance_date=MONDAY,
                check1_status=CheckStatus.LATE,
                check2_status=CheckStatus.ON_TIME,
                check3_status=CheckStatus.ON_TIME,
                status=DailyStatus.PRESENT,
            )
        )
        self.db.commit()

        skipped = run_monthly_penalty_trigger(local_ts(date(2026, 4, 2), 2, 0), db=self.db)
        self.assertFalse(skipped["ran"])

        result = run_monthly_penalty_trigger(local_ts(date(2026, 4, 1), 2, 0), db=self.db)
        self.assertTrue(result["ran"])
        self.assertEqual(result["month"], "2026-03")
        self.assertIsNotNone(self.db.get(ViolationSummary, "emp-1_2026-03"))

    def test_reminders_target_employees_without_the_slot(self) -> None:
        self.db.add(
            AttendanceRecord(
                id="emp-1_2026-03-02",
                user_id="emp-1",
                attendance_date=MONDAY,
                check1_status=CheckStatus.ON_TIME,
                status=DailyStatus.ABSENT,
            )
        )
        self.db.commit()

        result = run_clock_in_reminders(local_ts(MONDAY, 8, 40), db=self.db)

        self.assertEqual(result, {"ran": True, "slot": "check1", "sent": 1})
        reminder = self.db.scalar(select(Notification).where(Notification.title == "Clock-In Reminder"))
        self.assertEqual(reminder.user_id, "emp-2")
        self.assertIn("Morning", reminder.message)

    def test_reminders_skip_outside_window_and_holidays(self) -> None:
        self.assertEqual(run_clock_in_reminders(local_ts(MONDAY, 10, 0), db=self.db)["sent"], 0)

        row = self.db.get(CompanySettings, 1)
        row.holidays = ["2026-03-02 Holiday"]
        self.db.commit()
        result = run_clock_in_reminders(local_ts(MONDAY, 8, 40), db=self.db)
        self.assertEqual(result["reason"], "non_working_day")


class SharedFireTimeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        early_evening = {**DEFAULT_TIME_WINDOWS, "check3": {"start": "16:00", "end": "16:30", "label": "Evening"}}
        seed_company(self.db, time_windows=early_evening)
        seed_user(self.db, "emp-1")

    def tearDown(self) -> None:
        self.db.close()

    def _runners(self) -> dict:
        return {
            JOB_FINALIZATION: lambda fire_at: run_daily_finalization(fire_at, db=self.db),
            JOB_MONTHLY: lambda fire_at: run_monthly_penalty_trigger(fire_at, db=self.db),
            JOB_REMINDERS: lambda fire_at: run_clock_in_reminders(fire_at, db=self.db),
        }

    def test_jobs_sharing_a_fire_time_all_run_before_replanning(self) -> None:
        pending = plan_next_jobs(local_ts(MONDAY, 17, 0), db=self.db)

        self.assertEqual([job.name for job in pending], [JOB_REMINDERS, JOB_FINALIZATION])
        self.assertTrue(all(job.fire_at == local_ts(MONDAY, 17, 30) for job in pending))

        with patch.dict(JOB_RUNNERS, self._runners()):
            outcomes = run_due_jobs(pending)

        results = {job.name: result for job, result in outcomes}
        self.assertEqual(results[JOB_REMINDERS]["slot"], "check3")
        self.assertTrue(results[JOB_FINALIZATION]["ran"])
        self.assertEqual(self.db.get(SystemFlag, "finalization_2026-03-02").status, FlagStatus.COMPLETED)

        following = plan_next_jobs(pending[0].fire_at + timedelta(seconds=1), db=self.db)
        self.assertEqual([job.name for job in following], [JOB_REMINDERS])
        self.assertEqual(following[0].fire_at, local_ts(TUESDAY, 8, 30))

    def test_failing_job_does_not_block_the_rest(self) -> None:
        pending = plan_next_jobs(local_ts(MONDAY, 17, 0), db=self.db)
        runners = self._runners()
        runners[JOB_REMINDERS] = MagicMock(side_effect=RuntimeError("queue down"))

        with patch.dict(JOB_RUNNERS, runners), self.assertLogs("clockin.scheduler", level="ERROR"):
            outcomes = run_due_jobs(pending)

        self.assertIsNone(outcomes[0][1])
        self.assertTrue(outcomes[1][1]["ran"])


class SchedulerLoopTests(unittest.IsolatedAsyncioTestCase):
    async def test_loop_runs_every_job_due_at_the_same_time(self) -> None:
        fire_at = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
        due = [ScheduledJob(JOB_REMINDERS, fire_at), ScheduledJob(JOB_FINALIZATION, fire_at)]
        plans = [due]

        def fake_plan(now_utc: datetime) -> list[ScheduledJob]:
            return plans.pop(0) if plans else []

        runner = MagicMock(return_value=[])
        stop_event = asyncio.Event()
        with patch("clockin.main.plan_next_jobs", side_effect=fake_plan), patch("clockin.main.run_due_jobs", runner):
            task = asyncio.create_task(_scheduler_loop(stop_event))
            for _ in range(200):
                if runner.called:
                    break
                await asyncio.sleep(0.01)
            stop_event.set()
            await asyncio.wait_for(task, timeout=5)

        runner.assert_called_once_with(due)


if __name__ == "__main__":
    unittest.main()

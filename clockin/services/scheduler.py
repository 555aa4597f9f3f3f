"""Company-local scheduling for the end-of-day, monthly and reminder jobs.

Fire times are computed in the company timezone and converted to UTC, so the
worker sleeps until the exact moment instead of polling a UTC cron grid. Each
job still checks its own local-time gate, which keeps it safe to trigger from
an external fixed-interval cron as well.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from clockin.db import SessionLocal
from clockin.models import CheckSlot, FlagStatus, SystemFlag
from clockin.schemas import CompanyConfig
from clockin.services.company_settings import (
    company_zone,
    get_company_config,
    is_working_day,
)
from clockin.services.finalizer import finalize_attendance
from clockin.services.notifications import (
    get_employees_needing_clock_in_reminder,
    queue_bulk_notifications,
)
from clockin.services.penalties import calculate_daily_violations, calculate_monthly_violations
from clockin.services.time_windows import parse_hhmm_minutes
from clockin.settings import get_settings

logger = logging.getLogger("clockin.scheduler")

JOB_FINALIZATION = "daily_finalization"
JOB_MONTHLY = "monthly_penalties"
JOB_REMINDERS = "clock_in_reminders"

DEFAULT_CHECK3_END_HOUR = 17
MONTHLY_TRIGGER_TIME = time(2, 0)
REMINDER_SLOTS = {
    time(8, 30): CheckSlot.CHECK1,
    time(13, 30): CheckSlot.CHECK2,
    time(17, 30): CheckSlot.CHECK3,
}
REMINDER_WINDOW = timedelta(minutes=30)
MAX_LOOKAHEAD_DAYS = 400


@dataclass(frozen=True, slots=True)
class ScheduledJob:
    name: str
    fire_at: datetime


def _aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_fire_time(
    now_utc: datetime,
    tz: ZoneInfo,
    local_times: Iterable[time],
    day_filter: Callable[[date], bool] | None = None,
) -> datetime:
    """Return the first UTC instant after ``now_utc`` matching one of ``local_times``."""
    reference = _aware_utc(now_utc)
    ordered = sorted(local_times)
    if not ordered:
        raise ValueError("local_times must not be empty")
    first_day = reference.astimezone(tz).date()
    for offset in range(MAX_LOOKAHEAD_DAYS):
        day = first_day + timedelta(days=offset)
        if day_filter is not None and not day_filter(day):
            continue
        for local_time in ordered:
            candidate = datetime.combine(day, local_time, tzinfo=tz).astimezone(timezone.utc)
            if candidate > reference:
                return candidate
    raise ValueError("No fire time found within lookahead window")


def finalization_time(config: CompanyConfig) -> time:
    window = config.time_windows.get(CheckSlot.CHECK3)
    end_hour = parse_hhmm_minutes(window.end) // 60 if window is not None else DEFAULT_CHECK3_END_HOUR
    return time(min(end_hour + 1, 23), 30)


def plan_jobs(config: CompanyConfig, now_utc: datetime) -> list[ScheduledJob]:
    tz = company_zone(config)

    def working(day: date) -> bool:
        return is_working_day(config, day)

    jobs = [
        ScheduledJob(JOB_FINALIZATION, next_fire_time(now_utc, tz, [finalization_time(config)], working)),
        ScheduledJob(JOB_MONTHLY, next_fire_time(now_utc, tz, [MONTHLY_TRIGGER_TIME], lambda day: day.day == 1)),
        ScheduledJob(JOB_REMINDERS, next_fire_time(now_utc, tz, REMINDER_SLOTS.keys(), working)),
    ]
    return sorted(jobs, key=lambda job: (job.fire_at, job.name))


def plan_next_jobs(now_utc: datetime, db: Session | None = None) -> list[ScheduledJob]:
    """Return every job sharing the earliest fire time after ``now_utc``."""
    if db is None:
        with SessionLocal() as managed_db:
            return plan_next_jobs(now_utc, db=managed_db)
    jobs = plan_jobs(get_company_config(db), now_utc)
    return [job for job in jobs if job.fire_at == jobs[0].fire_at]


def _previous_month_key(local_day: date) -> str:
    last_of_previous = local_day.replace(day=1) - timedelta(days=1)
    return f"{last_of_previous.year:04d}-{last_of_previous.month:02d}"


def run_monthly_penalty_trigger(now_utc: datetime | None = None, db: Session | None = None) -> dict[str, Any]:
    if db is None:
        with SessionLocal() as managed_db:
            return run_monthly_penalty_trigger(now_utc, db=managed_db)

    reference = _aware_utc(now_utc or datetime.now(timezone.utc))
    config = get_company_config(db)
    local_day = reference.astimezone(company_zone(config)).date()
    if local_day.day != 1:
        return {"ran": False, "reason": "not_first_of_month", "local_date": local_day.isoformat()}

    month_key = _previous_month_key(local_day)
    result = calculate_monthly_violations(db, month_key)
    logger.info("monthly_penalty_trigger_completed", extra={"month": month_key, "users": len(result["users"])})
    return {"ran": True, "month": month_key, "result": result}


def claim_finalization_guard(db: Session, date_key: str, now_utc: datetime) -> SystemFlag | None:
    """Claim the ``finalization_{date_key}`` flag, or return None if another run holds it."""
    flag_id = f"finalization_{date_key}"
    stale_after = timedelta(minutes=get_settings().finalization_guard_stale_minutes)
    flag = db.get(SystemFlag, flag_id)

    if flag is None:
        flag = SystemFlag(
            id=flag_id,
            status=FlagStatus.PROCESSING,
            started_at=now_utc,
            heartbeat_at=now_utc,
            attempts=1,
        )
        db.add(flag)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("finalization_guard_taken", extra={"flag_id": flag_id})
            return None
        return flag

    if flag.status == FlagStatus.COMPLETED:
        return None
    if flag.status == FlagStatus.PROCESSING and now_utc - _aware_utc(flag.heartbeat_at) < stale_after:
        return None

    previous_status = flag.status
    flag.status = FlagStatus.PROCESSING
    flag.started_at = now_utc
    flag.heartbeat_at = now_utc
    flag.attempts = (flag.attempts or 0) + 1
    flag.error = None
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.info("finalization_guard_taken", extra={"flag_id": flag_id})
        return None
    logger.warning(
        "finalization_guard_reclaimed",
        extra={"flag_id": flag_id, "previous_status": previous_status.value, "attempts": flag.attempts},
    )
    return flag


def _touch_heartbeat(db: Session, flag: SystemFlag) -> None:
    flag.heartbeat_at = datetime.now(timezone.utc)
    db.commit()


def run_daily_finalization(
    now_utc: datetime | None = None,
    db: Session | None = None,
    *,
    force: bool = False,
) -> dict[str, Any]:
    if db is None:
        with SessionLocal() as managed_db:
            return run_daily_finalization(now_utc, db=managed_db, force=force)

    reference = _aware_utc(now_utc or datetime.now(timezone.utc))
    config = get_company_config(db)
    local_now = reference.astimezone(company_zone(config))
    local_day = local_now.date()
    if not force and local_now.hour != finalization_time(config).hour:
        return {"ran": False, "reason": "outside_finalization_hour", "local_date": local_day.isoformat()}
    if not is_working_day(config, local_day):
        return {"ran": False, "reason": "non_working_day", "local_date": local_day.isoformat()}

    date_key = local_day.isoformat()
    flag = claim_finalization_guard(db, date_key, reference)
    if flag is None:
        logger.info("daily_finalization_skipped", extra={"date": date_key})
        return {"ran": False, "reason": "already_processed", "local_date": date_key}

    try:
        finalized = finalize_attendance(db, local_day)
        _touch_heartbeat(db, flag)
        violations = calculate_daily_violations(db, local_day, config=config)
        result = {"finalization": finalized.as_dict(), "violations": violations}
        flag.status = FlagStatus.COMPLETED
        flag.completed_at = datetime.now(timezone.utc)
        flag.heartbeat_at = flag.completed_at
        flag.result = result
        db.commit()
    except Exception as exc:
        db.rollback()
        flag = db.get(SystemFlag, f"finalization_{date_key}")
        if flag is not None:
            flag.status = FlagStatus.ERROR
            flag.error = str(exc)
            flag.heartbeat_at = datetime.now(timezone.utc)
            db.commit()
        logger.exception("daily_finalization_failed", extra={"date": date_key})
        raise

    logger.info("daily_finalization_completed", extra={"date": date_key, **finalized.as_dict()})
    return {"ran": True, "local_date": date_key, "result": result}


def active_reminder_slot(local_now: datetime) -> CheckSlot | None:
    for slot_time, slot in REMINDER_SLOTS.items():
        opens = datetime.combine(local_now.date(), slot_time, tzinfo=local_now.tzinfo)
        if opens <= local_now < opens + REMINDER_WINDOW:
            return slot
    return None


def run_clock_in_reminders(now_utc: datetime | None = None, db: Session | None = None) -> dict[str, Any]:
    if db is None:
        with SessionLocal() as managed_db:
            return run_clock_in_reminders(now_utc, db=managed_db)

    reference = _aware_utc(now_utc or datetime.now(timezone.utc))
    config = get_company_config(db)
    local_now = reference.astimezone(company_zone(config))
    local_day = local_now.date()
    if not is_working_day(config, local_day):
        return {"ran": False, "reason": "non_working_day", "sent": 0}
    slot = active_reminder_slot(local_now)
    if slot is None:
        return {"ran": False, "reason": "outside_reminder_window", "sent": 0}

    user_ids = get_employees_needing_clock_in_reminder(db, local_day=local_day, slot=slot)
    window = config.time_windows.get(slot)
    label = window.label if window is not None and window.label else slot.value
    sent = queue_bulk_notifications(
        db,
        user_ids=user_ids,
        title="Clock-In Reminder",
        message=f"Reminder: please complete your {label} clock-in.",
        category="reminder",
        metadata={"slot": slot.value, "date": local_day.isoformat()},
    )
    logger.info("clock_in_reminders_sent", extra={"slot": slot.value, "sent": sent})
    return {"ran": True, "slot": slot.value, "sent": sent}


JOB_RUNNERS: dict[str, Callable[..., dict[str, Any]]] = {
    JOB_FINALIZATION: run_daily_finalization,
    JOB_MONTHLY: run_monthly_penalty_trigger,
    JOB_REMINDERS: run_clock_in_reminders,
}


def run_job(name: str, fire_at: datetime) -> dict[str, Any]:
    return JOB_RUNNERS[name](fire_at)


def run_due_jobs(jobs: Iterable[ScheduledJob]) -> list[tuple[ScheduledJob, dict[str, Any] | None]]:
    """Run each job in order; a failing job is logged and does not stop the rest."""
    outcomes: list[tuple[ScheduledJob, dict[str, Any] | None]] = []
    for job in jobs:
        try:
            result = run_job(job.name, job.fire_at)
        except Exception:
            logger.exception("scheduler_job_failed", extra={"job": job.name, "fire_at": job.fire_at.isoformat()})
            result = None
        else:
            logger.info(
                "scheduler_job_finished",
                extra={"job": job.name, "fire_at": job.fire_at.isoformat(), "result": result},
            )
        outcomes.append((job, result))
    return outcomes

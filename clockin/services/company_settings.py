from __future__ import annotations

import logging
import re
from datetime import date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from clockin.errors import InvalidArgument, PreconditionFailed
from clockin.models import CompanySettings
from clockin.schemas import CompanyConfig, GeoPoint
from clockin.settings import get_settings

logger = logging.getLogger("clockin.settings")

HOLIDAY_DATE_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})")
WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def get_company_config(db: Session) -> CompanyConfig:
    row = db.scalar(select(CompanySettings).order_by(CompanySettings.id.asc()))
    if row is None:
        raise PreconditionFailed("Company settings not configured.", code="SETTINGS_NOT_CONFIGURED")

    center = None
    if row.workplace_lat is not None and row.workplace_lng is not None:
        center = GeoPoint(latitude=row.workplace_lat, longitude=row.workplace_lng)

    payload = {
        "timezone": (row.timezone or "").strip() or get_settings().default_timezone,
        "workplace_center": center,
        "workplace_radius": row.workplace_radius,
        "geo_fencing_enabled": row.geo_fencing_enabled is not False,
        "time_windows": row.time_windows or {},
        "grace_periods": row.grace_periods or {},
        "penalty_rules": row.penalty_rules or {},
        "working_days": row.working_days or {},
        "holidays": list(row.holidays or []),
        "leave_policy": row.leave_policy or {},
    }
    if row.leave_attachment_required_types is not None:
        payload["leave_attachment_required_types"] = [
            str(item).lower() for item in row.leave_attachment_required_types
        ]
    return CompanyConfig.model_validate(payload)


def company_zone(config: CompanyConfig) -> ZoneInfo:
    try:
        return ZoneInfo(config.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        fallback = get_settings().default_timezone
        logger.warning("company_timezone_invalid", extra={"timezone": config.timezone, "fallback": fallback})
        return ZoneInfo(fallback)


def holiday_dates(config: CompanyConfig) -> set[str]:
    dates: set[str] = set()
    for entry in config.holidays:
        match = HOLIDAY_DATE_PATTERN.match((entry or "").strip())
        if match:
            dates.add(match.group(1))
    return dates


def is_holiday(config: CompanyConfig, local_day: date) -> bool:
    return local_day.isoformat() in holiday_dates(config)


def is_weekend(config: CompanyConfig, local_day: date) -> bool:
    weekday_name = WEEKDAY_NAMES[local_day.weekday()]
    if config.working_days:
        return not config.working_days.get(weekday_name, False)
    return local_day.weekday() >= 5


def is_working_day(config: CompanyConfig, local_day: date) -> bool:
    return not is_weekend(config, local_day) and not is_holiday(config, local_day)


def local_date(config: CompanyConfig, ts: datetime) -> date:
    return ts.astimezone(company_zone(config)).date()


def parse_date_key(value: str, label: str = "date") -> date:
    try:
        if len(value) != 10:
            raise ValueError(value)
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"{label} must be in YYYY-MM-DD format.") from exc


def parse_month_key(value: str) -> tuple[int, int]:
    try:
        year_raw, month_raw = value.split("-")
        year, month = int(year_raw), int(month_raw)
    except (AttributeError, ValueError) as exc:
        raise InvalidArgument("month must be in YYYY-MM format.") from exc
    if len(year_raw) != 4 or not 1 <= month <= 12:
        raise InvalidArgument("month must be in YYYY-MM format.")
    return year, month

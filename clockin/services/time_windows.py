from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from clockin.models import CLOCK_ORDER, CheckSlot, CheckStatus
from clockin.schemas import CompanyConfig, TimeWindow
from clockin.services.company_settings import company_zone


@dataclass(frozen=True, slots=True)
class SlotOutcome:
    slot: CheckSlot
    status: CheckStatus
    late_by_minutes: int | None = None


def parse_hhmm_minutes(value: str) -> int:
    hour_raw, minute_raw = value.split(":")
    return int(hour_raw) * 60 + int(minute_raw)


def minutes_in_timezone(ts: datetime, tz: ZoneInfo | None) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    local = ts.astimezone(tz) if tz is not None else ts.astimezone(timezone.utc)
    return local.hour * 60 + local.minute


def resolve_outcome(
    ts: datetime,
    slot: CheckSlot,
    window: TimeWindow,
    grace_minutes: int,
    tz: ZoneInfo | None,
) -> SlotOutcome | None:
    actual = minutes_in_timezone(ts, tz)
    start = parse_hhmm_minutes(window.start)
    end = parse_hhmm_minutes(window.end)
    close = end + grace_minutes

    if slot == CheckSlot.CHECK3:
        # Departure slot: the grace period also opens the window early, as early_leave.
        if actual < start - grace_minutes:
            return None
        if actual < start:
            return SlotOutcome(slot, CheckStatus.EARLY_LEAVE, start - actual)
        if actual <= end:
            return SlotOutcome(slot, CheckStatus.ON_TIME)
        if actual <= close:
            return SlotOutcome(slot, CheckStatus.LATE, actual - end)
        return None

    if actual < start:
        return None
    if actual <= end:
        return SlotOutcome(slot, CheckStatus.ON_TIME)
    if actual <= close:
        return SlotOutcome(slot, CheckStatus.LATE, actual - end)
    return None


def resolve_slot_for_timestamp(ts: datetime, config: CompanyConfig) -> SlotOutcome | None:
    tz = company_zone(config)
    for slot in CLOCK_ORDER:
        window = config.time_windows.get(slot)
        if window is None:
            continue
        grace = config.grace_periods.get(slot, 0)
        outcome = resolve_outcome(ts, slot, window, grace, tz)
        if outcome is not None:
            return outcome
    return None

from clockin.models import CheckStatus, DailyStatus


def compute_daily_status(
    check1: CheckStatus | None,
    check2: CheckStatus | None,
    check3: CheckStatus | None,
) -> DailyStatus:
    statuses = (check1, check2, check3)
    completed = [status for status in statuses if status is not None and status != CheckStatus.MISSED]
    has_missed = any(status == CheckStatus.MISSED for status in statuses)

    if not completed:
        return DailyStatus.ABSENT
    if len(completed) == 3:
        return DailyStatus.PRESENT
    if len(completed) == 2:
        return DailyStatus.HALF_DAY_ABSENT
    # One completed check: "in_progress" only once a window has been marked missed,
    # otherwise the day is reported as absent.
    return DailyStatus.IN_PROGRESS if has_missed else DailyStatus.ABSENT

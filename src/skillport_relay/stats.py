"""Local bookkeeping over relayed submissions: counters and rapid-solve flags."""

from datetime import date, datetime, timedelta

from .models import RapidSolveFlag, SubmissionRecord, UserStats


RAPID_SOLVE_REASON = "Rapid different medium/hard submissions within {minutes} minutes"
FLAGGED_DIFFICULTIES = ("medium", "hard")


def local_date(timestamp_ms: int) -> date:
    """Local calendar date of a millisecond timestamp."""
    return datetime.fromtimestamp(timestamp_ms / 1000).date()


def update_stats(stats: UserStats, record: SubmissionRecord) -> None:
    """Fold one relayed submission into the running counters.

    Today counters reset on the first submission of a new local day. The
    streak counts consecutive days with at least one accepted submission.

    Args:
        stats: Counters to update in place
        record: The submission just relayed
    """
    day = local_date(record.submitted_at)
    today = day.isoformat()

    if stats.last_active_date != today:
        stats.today_submissions = 0
        stats.today_accepted = 0
        stats.last_active_date = today

    stats.today_submissions += 1
    stats.platform_stats[record.platform] = stats.platform_stats.get(record.platform, 0) + 1

    if record.status != "accepted":
        return

    stats.today_accepted += 1
    stats.total_problems += 1

    if stats.last_accepted_date == today:
        return
    yesterday = (day - timedelta(days=1)).isoformat()
    if stats.last_accepted_date == yesterday:
        stats.current_streak += 1
    else:
        stats.current_streak = 1
    stats.last_accepted_date = today


def evaluate_flag(
    previous: SubmissionRecord | None,
    current: SubmissionRecord,
    window_ms: int,
    now_ms: int,
) -> RapidSolveFlag | None:
    """Check whether two consecutive submissions look like a rapid solve.

    Both must be medium/hard, for different problems, and at most
    ``window_ms`` apart.

    Returns:
        A flag, or None when the pair is unremarkable
    """
    if previous is None:
        return None

    gap = abs(current.submitted_at - previous.submitted_at)
    if gap > window_ms:
        return None
    if previous.question_key == current.question_key:
        return None
    if current.difficulty not in FLAGGED_DIFFICULTIES or previous.difficulty not in FLAGGED_DIFFICULTIES:
        return None

    return RapidSolveFlag(
        flagged_at=now_ms,
        reason=RAPID_SOLVE_REASON.format(minutes=round(window_ms / 60_000)),
        gap_ms=gap,
        previous=previous,
        current=current,
    )

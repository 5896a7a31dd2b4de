"""
Streak Engine for Daily Scans.

Counts consecutive calendar days with at least one completed scan. One scan
credits one calendar day, so repeated scans on the same date count once.
"""

from collections.abc import Iterable
from datetime import date, timedelta

from bodyscan_api.models.scan import StreakMilestones, StreakSummary
from bodyscan_api.utils.dates import format_day, parse_day

# Milestone thresholds in days
MILESTONES = {
    "five_day": 5,
    "ten_day": 10,
    "thirty_day": 30,
    "hundred_day": 100,
}


def compute_streak(
    completed_dates: Iterable[str | date],
    today: str | date,
) -> StreakSummary:
    """
    Compute the current and best streak from completed scan dates.

    The current streak ends at `today`, or at `today - 1` when there is no
    scan for today yet. Dates after `today` do not count towards the current
    streak but still take part in the best streak.

    Args:
        completed_dates: Dates of completed scans (any order, duplicates allowed)
        today: Evaluation date

    Returns:
        StreakSummary with current/best streak and bookkeeping fields
    """
    today = parse_day(today)
    days = sorted({parse_day(d) for d in completed_dates})

    if not days:
        return StreakSummary(evaluated_on=format_day(today))

    # Longest run anywhere in the history
    best = 1
    run = 1
    for i in range(1, len(days)):
        if days[i] - days[i - 1] == timedelta(days=1):
            run += 1
            best = max(best, run)
        else:
            run = 1

    # Walk back from the anchor day
    past_days = set(d for d in days if d <= today)
    anchor = today if today in past_days else today - timedelta(days=1)
    current = 0
    cursor = anchor
    while cursor in past_days:
        current += 1
        cursor -= timedelta(days=1)

    last_scan = max(past_days) if past_days else None
    streak_start = cursor + timedelta(days=1) if current else None

    return StreakSummary(
        current_streak=current,
        best_streak=best,
        evaluated_on=format_day(today),
        last_scan_date=format_day(last_scan) if last_scan else None,
        streak_start_date=format_day(streak_start) if streak_start else None,
        total_scans=len(days),
        milestones=StreakMilestones(
            **{name: best >= threshold for name, threshold in MILESTONES.items()}
        ),
    )

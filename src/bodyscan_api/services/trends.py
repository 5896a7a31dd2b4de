"""
Trend query service - read-side views over completed scans.

Everything here is derived from scan records of status `completed`, using one
scan of record per calendar day. Pending and failed scans never show up.
"""

import logging
import math
from collections.abc import Sequence
from datetime import date

from bodyscan_api.core.config import Settings
from bodyscan_api.core.exceptions import ValidationError
from bodyscan_api.db.store import ScanRecordStore
from bodyscan_api.models.scan import Scan, ScanStatus, StreakSummary
from bodyscan_api.models.trend import GoalEstimate, ScanHistorySummary, TrendSeries
from bodyscan_api.utils.dates import day_range, format_day, local_today, parse_day

from .history import scans_of_record
from .streaks import compute_streak

logger = logging.getLogger(__name__)

# Longest series a single trend request may ask for
MAX_TREND_DAYS = 366

# Fewer scans than this give no goal estimate
MIN_SCANS_FOR_GOAL = 3


def _weeks_between(first: Scan, last: Scan) -> float:
    return (parse_day(last.date) - parse_day(first.date)).days / 7


def average_bf_loss_per_week(scans: Sequence[Scan]) -> float:
    """
    Average BF fraction lost per week between the oldest and newest scan.

    Scans must be sorted oldest first. Positive means progress; fewer than
    two scans or scans all on one day give 0.0.
    """
    if len(scans) < 2:
        return 0.0
    first, last = scans[0], scans[-1]
    weeks = _weeks_between(first, last)
    if weeks <= 0:
        return 0.0
    loss = (first.bf_percent or 0.0) - (last.bf_percent or 0.0)
    return round(loss / weeks, 4)


def scan_frequency_per_week(scans: Sequence[Scan]) -> float:
    """Completed scans per week between the oldest and newest scan (sorted oldest first)."""
    if len(scans) < 2:
        return 0.0
    weeks = _weeks_between(scans[0], scans[-1])
    if weeks <= 0:
        return 0.0
    return round(len(scans) / weeks, 1)


class TrendQueryService:
    """
    Service for charting and summary queries.

    Provides:
    - Fixed-length daily BF/LBM/weight series with explicit gaps
    - Current and best streak
    - Lifetime history summary with progress rates
    - Weeks-to-goal estimate
    - Latest scan and has-scanned-today checks
    """

    def __init__(self, store: ScanRecordStore, settings: Settings):
        """
        Initialize trend service.

        Args:
            store: Scan record store
            settings: Application settings (user timezone)
        """
        self.store = store
        self.settings = settings

    def today(self) -> date:
        """User-local calendar day."""
        return local_today(self.settings.user_timezone)

    async def _completed(self, user_id: str, start: str | None = None, end: str | None = None) -> list[Scan]:
        scans = await self.store.query_by_user(
            user_id, start=start, end=end, statuses=[ScanStatus.COMPLETED]
        )
        return scans_of_record(scans)

    async def get_trend(
        self,
        user_id: str,
        period_days: int,
        end_date: str | date | None = None,
    ) -> TrendSeries:
        """
        Get a daily series of exactly `period_days` entries, most recent last.

        Days without a completed scan hold None in every series; values are
        never interpolated.

        Args:
            user_id: User identifier
            period_days: Number of days in the series
            end_date: Last day of the series (defaults to user-local today)

        Returns:
            TrendSeries with equal-length arrays
        """
        if period_days < 1 or period_days > MAX_TREND_DAYS:
            raise ValidationError(
                f"period_days must be between 1 and {MAX_TREND_DAYS}",
                details={"period_days": period_days},
            )

        try:
            end = parse_day(end_date) if end_date is not None else self.today()
        except ValueError as e:
            raise ValidationError(f"Invalid end date: {end_date}") from e

        days = [format_day(d) for d in day_range(end, period_days)]
        by_date = {s.date: s for s in await self._completed(user_id, start=days[0], end=days[-1])}

        series = TrendSeries(dates=days)
        for day in days:
            scan = by_date.get(day)
            series.bf_percents.append(scan.bf_percent if scan else None)
            series.lbms.append(scan.lbm_lb if scan else None)
            series.weights.append(scan.weight_lb if scan else None)

        logger.debug(f"Trend for {user_id}: {len(by_date)}/{period_days} days with data")
        return series

    async def get_streak(self, user_id: str, today: str | date | None = None) -> StreakSummary:
        """
        Get the streak as of `today` (defaults to user-local today).

        Uses the cached summary when it was evaluated for the same day,
        otherwise rebuilds it from completed scans and refreshes the cache.
        """
        today = parse_day(today) if today is not None else self.today()
        evaluated_on = format_day(today)

        cached = await self.store.get_streak(user_id)
        if cached is not None and cached.evaluated_on == evaluated_on:
            return cached

        dates = await self.store.completed_dates(user_id)
        streak = compute_streak(dates, today)
        await self.store.save_streak(user_id, streak)
        return streak

    async def get_history_summary(self, user_id: str) -> ScanHistorySummary:
        """Lifetime statistics over a user's completed scans."""
        scans = await self._completed(user_id)
        if not scans:
            return ScanHistorySummary()

        streak = compute_streak([s.date for s in scans], self.today())

        bf_values = [s.bf_percent for s in scans if s.bf_percent is not None]
        lbm_values = [s.lbm_lb for s in scans if s.lbm_lb is not None]

        first, last = scans[0], scans[-1]
        total_bf_lost = None
        if first.bf_percent is not None and last.bf_percent is not None:
            total_bf_lost = first.bf_percent - last.bf_percent

        return ScanHistorySummary(
            total_scans=len(scans),
            first_scan_date=first.date,
            last_scan_date=last.date,
            current_streak=streak.current_streak,
            best_streak=streak.best_streak,
            average_bf=sum(bf_values) / len(bf_values) if bf_values else None,
            average_lbm=sum(lbm_values) / len(lbm_values) if lbm_values else None,
            total_weight_lost=first.weight_lb - last.weight_lb,
            total_bf_lost=total_bf_lost,
            average_bf_loss_per_week=average_bf_loss_per_week(scans),
            scan_frequency_per_week=scan_frequency_per_week(scans),
        )

    async def get_latest_scan(self, user_id: str) -> Scan | None:
        """Most recent scan of record, or None if the user has none."""
        scans = await self.store.query_by_user(
            user_id, statuses=[ScanStatus.COMPLETED], limit=1, newest_first=True
        )
        return scans[0] if scans else None

    async def estimate_weeks_to_goal(self, user_id: str, goal_bf: float) -> GoalEstimate:
        """
        Estimate how many weeks remain until `goal_bf` at the average loss rate.

        Weeks is None with fewer than three scans of record or when BF is not
        going down, and 0 once the latest scan is at or below the goal.

        Args:
            user_id: User identifier
            goal_bf: Target BF fraction, strictly between 0 and 1

        Returns:
            GoalEstimate with the inputs used and the rounded-up week count
        """
        if not 0 < goal_bf < 1:
            raise ValidationError(
                "Goal body fat must be a fraction between 0 and 1",
                details={"goal_bf": goal_bf},
            )

        scans = await self._completed(user_id)
        rate = average_bf_loss_per_week(scans)
        estimate = GoalEstimate(
            user_id=user_id,
            goal_bf=goal_bf,
            current_bf=scans[-1].bf_percent if scans else None,
            average_bf_loss_per_week=rate,
        )
        if len(scans) < MIN_SCANS_FOR_GOAL or rate <= 0:
            return estimate

        to_lose = (estimate.current_bf or 0.0) - goal_bf
        estimate.weeks_to_goal = 0 if to_lose <= 0 else math.ceil(to_lose / rate)
        return estimate

    async def has_scanned_today(self, user_id: str, today: str | date | None = None) -> bool:
        """Whether a completed scan exists for the given day."""
        day = format_day(parse_day(today) if today is not None else self.today())
        return bool(await self._completed(user_id, start=day, end=day))

    async def list_scans(
        self,
        user_id: str,
        start: str | None = None,
        end: str | None = None,
        statuses: list[ScanStatus] | None = None,
    ) -> list[Scan]:
        """All scan attempts in a date range, every status included unless filtered."""
        return await self.store.query_by_user(user_id, start=start, end=end, statuses=statuses)

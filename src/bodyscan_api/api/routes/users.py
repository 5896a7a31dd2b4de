"""Per-user read routes: history, trend, streak, summary and goal."""

from datetime import date as Date

from fastapi import APIRouter, Query

from bodyscan_api.api.dependencies import TrendServiceDep
from bodyscan_api.models.scan import Scan, ScannedTodayResponse, ScanStatus, StreakSummary
from bodyscan_api.models.trend import GoalEstimate, ScanHistorySummary, TrendSeries
from bodyscan_api.utils.dates import format_day

router = APIRouter()


@router.get("/{user_id}/scans", response_model=list[Scan])
async def list_scans(
    user_id: str,
    service: TrendServiceDep,
    start: Date | None = Query(None, description="First day (inclusive)"),
    end: Date | None = Query(None, description="Last day (inclusive)"),
    status: list[ScanStatus] | None = Query(None, description="Filter by status"),
):
    """List a user's scan attempts, oldest first."""
    return await service.list_scans(
        user_id,
        start=format_day(start) if start else None,
        end=format_day(end) if end else None,
        statuses=status,
    )


@router.get("/{user_id}/trend", response_model=TrendSeries)
async def get_trend(
    user_id: str,
    service: TrendServiceDep,
    days: int = Query(14, ge=1, le=366, description="Number of days in the series"),
    end: Date | None = Query(None, description="Last day of the series"),
):
    """
    Get daily BF%, LBM and weight series for charting.

    Arrays always have exactly `days` entries, most recent last, with null
    for days without a completed scan.
    """
    return await service.get_trend(user_id, days, end_date=end)


@router.get("/{user_id}/streak", response_model=StreakSummary)
async def get_streak(
    user_id: str,
    service: TrendServiceDep,
    today: Date | None = Query(None, description="Evaluation day (defaults to today)"),
):
    """Get the current and best streak."""
    return await service.get_streak(user_id, today=today)


@router.get("/{user_id}/summary", response_model=ScanHistorySummary)
async def get_summary(user_id: str, service: TrendServiceDep):
    """Get lifetime statistics over completed scans."""
    return await service.get_history_summary(user_id)


@router.get("/{user_id}/goal", response_model=GoalEstimate)
async def estimate_goal(
    user_id: str,
    service: TrendServiceDep,
    goal_bf: float = Query(..., gt=0, lt=1, description="Goal BF fraction"),
):
    """Estimate weeks until the goal body fat at the average weekly loss."""
    return await service.estimate_weeks_to_goal(user_id, goal_bf)


@router.get("/{user_id}/latest", response_model=Scan | None)
async def get_latest_scan(user_id: str, service: TrendServiceDep):
    """Get the most recent completed scan, or null."""
    return await service.get_latest_scan(user_id)


@router.get("/{user_id}/scanned-today", response_model=ScannedTodayResponse)
async def scanned_today(
    user_id: str,
    service: TrendServiceDep,
    today: Date | None = Query(None, description="Day to check (defaults to today)"),
):
    """Check whether the user already completed a scan today."""
    day = today or service.today()
    return ScannedTodayResponse(
        user_id=user_id,
        date=format_day(day),
        scanned=await service.has_scanned_today(user_id, today=day),
    )

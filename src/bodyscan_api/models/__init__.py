"""Pydantic models for scan records and read-side views."""

from .scan import (
    SCAN_ANGLE_ORDER,
    Insight,
    InsightFlag,
    QualityCheckResult,
    Scan,
    ScanAngle,
    ScanDelta,
    ScannedTodayResponse,
    ScanStatus,
    ScanSubmitResponse,
    StreakMilestones,
    StreakSummary,
    Trend,
    UserContext,
)
from .trend import ScanHistorySummary, TrendSeries

__all__ = [
    "SCAN_ANGLE_ORDER",
    "Insight",
    "InsightFlag",
    "QualityCheckResult",
    "Scan",
    "ScanAngle",
    "ScanDelta",
    "ScanHistorySummary",
    "ScannedTodayResponse",
    "ScanStatus",
    "ScanSubmitResponse",
    "StreakMilestones",
    "StreakSummary",
    "Trend",
    "TrendSeries",
    "UserContext",
]

"""Pydantic models for Daily Scan records.

A scan is one attempt at a daily body-composition capture: four angle photos,
a weight reading, and everything the pipeline derives from them.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

# =============================================================================
# Enums
# =============================================================================


class ScanAngle(str, Enum):
    """Fixed photo perspectives required for every scan."""

    FRONT = "front"
    BACK = "back"
    LEFT = "left"
    RIGHT = "right"


# Capture order used by clients and for deterministic iteration
SCAN_ANGLE_ORDER: list[ScanAngle] = [
    ScanAngle.FRONT,
    ScanAngle.BACK,
    ScanAngle.LEFT,
    ScanAngle.RIGHT,
]


class ScanStatus(str, Enum):
    """Lifecycle state of a scan. Transitions are forward-only."""

    PENDING_UPLOAD = "pending_upload"
    UPLOADED = "uploaded"
    QC_DONE = "qc_done"
    ESTIMATED = "estimated"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)


class Trend(str, Enum):
    """Direction of body composition change against the previous scan."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class InsightFlag(str, Enum):
    """Severity of a single insight finding."""

    OK = "ok"
    WARNING = "warning"
    DANGER = "danger"


FLAG_SEVERITY = {InsightFlag.OK: 0, InsightFlag.WARNING: 1, InsightFlag.DANGER: 2}


# =============================================================================
# Embedded Models
# =============================================================================


class UserContext(BaseModel):
    """Profile context passed to the estimator. Owned by the caller."""

    age: int | None = Field(None, gt=0, lt=130, description="Age in years")
    gender: Literal["male", "female", "other"] | None = None
    height_cm: float | None = Field(None, gt=0, description="Height in centimeters")
    fitness_goal: str | None = None


class QualityCheckResult(BaseModel):
    """Advisory photo quality assessment. Never blocks estimation."""

    is_valid: bool = Field(..., description="Whether photos are suitable for analysis")
    issues: list[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    pose_ok: bool | None = None
    lighting_score: float | None = Field(None, ge=0.0, le=1.0)
    same_dress_score: float | None = Field(
        None, ge=0.0, le=1.0, description="Clothing consistency vs earlier scans"
    )
    notes: str | None = None


class ScanDelta(BaseModel):
    """Differences against prior completed scans."""

    bf_d1: float | None = Field(None, description="BF fraction change vs previous scan")
    bf_d2: float | None = Field(None, description="BF fraction change vs the scan before that")
    lbm_d1: float | None = Field(None, description="Lean mass change (lb) vs previous scan")
    weight_d1: float | None = Field(None, description="Weight change (lb) vs previous scan")
    slope_7day: float | None = Field(
        None, description="Least-squares BF fraction slope per day over the last 7 scans"
    )
    days_since_last_scan: int | None = None
    trend: Trend = Trend.STABLE


class Insight(BaseModel):
    """Rule-generated summary of a completed scan."""

    summary: str
    flags: list[InsightFlag] = Field(default_factory=list)
    version: int = 1
    generated_at: datetime | None = None

    @property
    def level(self) -> InsightFlag:
        """Highest severity across all flags."""
        if not self.flags:
            return InsightFlag.OK
        return max(self.flags, key=lambda f: FLAG_SEVERITY[f])


class StreakMilestones(BaseModel):
    """Streak lengths the user has reached at least once."""

    five_day: bool = False
    ten_day: bool = False
    thirty_day: bool = False
    hundred_day: bool = False


class StreakSummary(BaseModel):
    """Derived streak state. Rebuildable from completed scans at any time."""

    current_streak: int = 0
    best_streak: int = 0
    evaluated_on: str | None = None
    last_scan_date: str | None = None
    streak_start_date: str | None = None
    total_scans: int = 0
    milestones: StreakMilestones = Field(default_factory=StreakMilestones)


# =============================================================================
# Scan Record
# =============================================================================


class Scan(BaseModel):
    """Complete daily scan record."""

    id: str
    user_id: str
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$", description="User-local YYYY-MM-DD")
    status: ScanStatus = ScanStatus.PENDING_UPLOAD

    # User input
    weight_lb: float = Field(..., gt=0)
    notes: str | None = None
    user_context: UserContext | None = None

    # Photos, keyed by angle value
    angle_urls: dict[str, str] = Field(default_factory=dict)

    # Estimation results (immutable once set)
    bf_percent: float | None = Field(None, gt=0.0, lt=1.0, description="Body fat fraction")
    lbm_lb: float | None = None
    bf_confidence: float | None = Field(None, ge=0.0, le=1.0)
    muscle_percent: float | None = None
    estimator_model: str | None = None

    # Derived
    qc: QualityCheckResult | None = None
    deltas: ScanDelta | None = None
    prev_scan_id: str | None = None
    prev2_scan_id: str | None = None
    insight: Insight | None = None
    streak: StreakSummary | None = None

    # Failure reporting
    error_message: str | None = None
    failed_stage: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


# =============================================================================
# Response Models
# =============================================================================


class ScanSubmitResponse(BaseModel):
    """Returned as soon as the scan record exists."""

    scan_id: str
    status: ScanStatus


class ScannedTodayResponse(BaseModel):
    """Whether the user already has a completed scan for the day."""

    user_id: str
    date: str
    scanned: bool

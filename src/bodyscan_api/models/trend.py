"""Pydantic models for read-side trend and history views."""

from pydantic import BaseModel, Field


class TrendSeries(BaseModel):
    """
    Fixed-length daily series for charting, most recent last.

    Missing days are explicit nulls; consumers decide how to draw gaps.
    """

    dates: list[str] = Field(default_factory=list)
    bf_percents: list[float | None] = Field(default_factory=list)
    lbms: list[float | None] = Field(default_factory=list)
    weights: list[float | None] = Field(default_factory=list)


class ScanHistorySummary(BaseModel):
    """Lifetime summary of a user's completed scans."""

    total_scans: int = 0
    first_scan_date: str | None = None
    last_scan_date: str | None = None
    current_streak: int = 0
    best_streak: int = 0
    average_bf: float | None = Field(None, description="Mean BF fraction")
    average_lbm: float | None = None
    total_weight_lost: float | None = Field(None, description="First weight minus last weight (lb)")
    total_bf_lost: float | None = Field(None, description="First BF fraction minus last")
    average_bf_loss_per_week: float = Field(
        0.0, description="BF fraction lost per week between first and last scan"
    )
    scan_frequency_per_week: float = Field(0.0, description="Completed scans per week")


class GoalEstimate(BaseModel):
    """Weeks until a goal BF fraction at the user's average rate of loss."""

    user_id: str
    goal_bf: float
    current_bf: float | None = None
    average_bf_loss_per_week: float = 0.0
    weeks_to_goal: int | None = Field(
        None, description="None when there is too little data or no progress"
    )

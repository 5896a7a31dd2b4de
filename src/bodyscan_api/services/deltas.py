"""
Delta Engine for Daily Scans.

Pure functions comparing a scan against earlier completed scans:
day-over-day differences, a rolling BF slope, and a trend class.
"""

from collections.abc import Sequence

import numpy as np

from bodyscan_api.models.scan import Scan, ScanDelta, Trend
from bodyscan_api.utils.dates import days_between

# Number of data points used for the rolling slope (current scan included)
SLOPE_WINDOW = 7

# Dead-bands below which a change counts as noise
BF_DEADBAND = 0.001  # 0.1 percentage point, BF stored as a fraction
LBM_DEADBAND = 0.1  # pounds


def _diff(current: float | None, previous: float | None) -> float | None:
    if current is None or previous is None:
        return None
    return current - previous


def _direction(value: float | None, deadband: float) -> int:
    """Return +1, -1 or 0 depending on which side of the dead-band `value` is."""
    if value is None or abs(value) <= deadband:
        return 0
    return 1 if value > 0 else -1


def classify_trend(bf_d1: float | None, lbm_d1: float | None) -> Trend:
    """
    Classify a day-over-day change.

    Falling body fat and rising lean mass each count as one vote for
    improving; the opposite moves count against. The sign of the total
    decides, so negating both deltas always flips the result.
    """
    score = -_direction(bf_d1, BF_DEADBAND) + _direction(lbm_d1, LBM_DEADBAND)
    if score > 0:
        return Trend.IMPROVING
    if score < 0:
        return Trend.DECLINING
    return Trend.STABLE


def least_squares_slope(points: Sequence[tuple[float, float]]) -> float | None:
    """
    Slope of the least-squares line through (x, y) points.

    Returns None with fewer than 2 points or when all x values coincide.
    """
    if len(points) < 2:
        return None
    xs = np.array([p[0] for p in points], dtype=float)
    ys = np.array([p[1] for p in points], dtype=float)
    if np.all(xs == xs[0]):
        return None
    slope, _intercept = np.polyfit(xs, ys, 1)
    return float(slope)


def bf_slope(scans: Sequence[Scan]) -> float | None:
    """
    BF slope per day over the most recent `SLOPE_WINDOW` scans with a BF value.

    Args:
        scans: Completed scans, one per date, in any order

    Returns:
        Slope in BF fraction per day, or None if fewer than 2 points
    """
    with_bf = sorted((s for s in scans if s.bf_percent is not None), key=lambda s: s.date)
    window = with_bf[-SLOPE_WINDOW:]
    if len(window) < 2:
        return None
    first = window[0].date
    points = [(float(days_between(first, s.date)), s.bf_percent) for s in window]
    return least_squares_slope(points)


def compute_deltas(
    current: Scan,
    prev: Scan | None = None,
    prev2: Scan | None = None,
    history: Sequence[Scan] = (),
) -> ScanDelta:
    """
    Compute deltas for `current` against its prior completed scans.

    Args:
        current: The scan being completed
        prev: Most recent completed scan before `current.date`
        prev2: The completed scan before `prev`
        history: Earlier completed scans for the rolling slope; `prev` and
            `prev2` are included automatically

    Returns:
        ScanDelta; fields are None where the comparison has no data
    """
    by_date = {s.date: s for s in history if s.date < current.date}
    for earlier in (prev2, prev):
        if earlier is not None:
            by_date[earlier.date] = earlier
    by_date[current.date] = current

    if prev is None:
        return ScanDelta(slope_7day=bf_slope(list(by_date.values())))

    bf_d1 = _diff(current.bf_percent, prev.bf_percent)
    lbm_d1 = _diff(current.lbm_lb, prev.lbm_lb)

    return ScanDelta(
        bf_d1=bf_d1,
        bf_d2=_diff(current.bf_percent, prev2.bf_percent) if prev2 else None,
        lbm_d1=lbm_d1,
        weight_d1=_diff(current.weight_lb, prev.weight_lb),
        slope_7day=bf_slope(list(by_date.values())),
        days_since_last_scan=days_between(prev.date, current.date),
        trend=classify_trend(bf_d1, lbm_d1),
    )

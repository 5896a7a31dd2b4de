"""
Insight writer for completed scans.

Turns deltas and the QC verdict into a short markdown summary plus severity
flags. Rule based so the result is reproducible from the stored record.
"""

import logging

from bodyscan_api.models.scan import Insight, InsightFlag, Scan, ScanDelta
from bodyscan_api.utils.dates import utc_now

logger = logging.getLogger(__name__)

INSIGHT_VERSION = 1

# Thresholds in percentage points of body fat
BF_DROP_GOOD_PP = -0.2
BF_RISE_WARNING_PP = 0.3

# Thresholds in pounds
LBM_LOSS_WARNING_LB = -0.5
LBM_GAIN_NOTABLE_LB = 0.2
WEIGHT_SWING_WARNING_LB = 2.0
WEIGHT_SWING_DANGER_LB = 5.0


def _signed(value: float, digits: int = 1) -> str:
    return f"{value:+.{digits}f}"


def _delta_lines(deltas: ScanDelta) -> list[tuple[str, InsightFlag | None]]:
    lines: list[tuple[str, InsightFlag | None]] = []

    if deltas.bf_d1 is not None:
        bf_change = deltas.bf_d1 * 100
        if bf_change < BF_DROP_GOOD_PP:
            lines.append((f"**BF% {_signed(bf_change)}%** vs last scan. Excellent progress!", InsightFlag.OK))
        elif bf_change > BF_RISE_WARNING_PP:
            lines.append(
                (f"**BF% {_signed(bf_change)}%** vs last scan. Check sodium and carbs.", InsightFlag.WARNING)
            )
        else:
            lines.append((f"**BF% {_signed(bf_change)}%** vs last scan.", InsightFlag.OK))

    if deltas.lbm_d1 is not None:
        if deltas.lbm_d1 < LBM_LOSS_WARNING_LB:
            lines.append(
                (
                    f"**Muscle loss detected** ({deltas.lbm_d1:.1f} lb). "
                    "Increase protein and reduce the deficit.",
                    InsightFlag.WARNING,
                )
            )
        elif deltas.lbm_d1 > LBM_GAIN_NOTABLE_LB:
            lines.append((f"**LBM {_signed(deltas.lbm_d1)} lb**. Muscle retention is excellent.", None))

    if deltas.weight_d1 is not None:
        swing = abs(deltas.weight_d1)
        if swing > WEIGHT_SWING_DANGER_LB:
            lines.append(
                (
                    f"**Weight changed {_signed(deltas.weight_d1)} lb** in one step. "
                    "Please verify the scale reading.",
                    InsightFlag.DANGER,
                )
            )
        elif swing > WEIGHT_SWING_WARNING_LB:
            lines.append(
                (
                    f"**Rapid weight change** ({_signed(deltas.weight_d1)} lb). May be water retention.",
                    InsightFlag.WARNING,
                )
            )

    if deltas.slope_7day is not None:
        weekly_pp = deltas.slope_7day * 7 * 100
        lines.append((f"7-scan trend: {_signed(weekly_pp, 2)}% BF per week.", None))

    return lines


def write_insight(scan: Scan, deltas: ScanDelta | None) -> Insight:
    """
    Build the insight for a scan about to be completed.

    Args:
        scan: The scan, with estimation and QC results set
        deltas: Deltas for the scan (None or empty on the first scan)

    Returns:
        Insight with summary text and deduplicated flags, most severe first
    """
    parts: list[str] = []
    flags: list[InsightFlag] = []

    if deltas is None or deltas.bf_d1 is None:
        parts.append("**First scan day!** Your baseline is set.")
        flags.append(InsightFlag.OK)
    else:
        for text, flag in _delta_lines(deltas):
            parts.append(text)
            if flag is not None:
                flags.append(flag)

    qc = scan.qc
    if qc is not None and not qc.is_valid:
        issues = ", ".join(qc.issues) if qc.issues else "unspecified issues"
        parts.append(f"**Photo quality check flagged:** {issues}. Treat today's estimate with caution.")
        flags.append(InsightFlag.WARNING)

    if scan.notes:
        parts.append(f"_Your note:_ {scan.notes}")

    ordered = sorted(set(flags), key=lambda f: [InsightFlag.DANGER, InsightFlag.WARNING, InsightFlag.OK].index(f))
    logger.debug(f"Insight for scan {scan.id}: flags={[f.value for f in ordered]}")

    return Insight(
        summary="\n\n".join(parts),
        flags=ordered or [InsightFlag.OK],
        version=INSIGHT_VERSION,
        generated_at=utc_now(),
    )

"""Helpers for picking each day's scan of record from a user's scans."""

from collections.abc import Iterable
from datetime import datetime

from bodyscan_api.models.scan import Scan, ScanStatus


def _completion_key(scan: Scan) -> tuple[datetime, str]:
    completed = scan.completed_at or scan.updated_at or scan.created_at or datetime.min
    # Compare naive and aware timestamps on equal footing
    return completed.replace(tzinfo=None), scan.id


def scans_of_record(scans: Iterable[Scan]) -> list[Scan]:
    """
    Reduce scans to one completed scan per date, sorted by date ascending.

    Pending and failed scans are ignored. When a date has several completed
    scans the most recently completed one wins.
    """
    latest: dict[str, Scan] = {}
    for scan in scans:
        if scan.status != ScanStatus.COMPLETED:
            continue
        current = latest.get(scan.date)
        if current is None or _completion_key(scan) > _completion_key(current):
            latest[scan.date] = scan
    return [latest[d] for d in sorted(latest)]

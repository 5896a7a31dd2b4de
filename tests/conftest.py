"""Pytest configuration and fixtures."""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

from bodyscan_api.core.config import Settings
from bodyscan_api.db.store import ScanRecordStore
from bodyscan_api.models.scan import (
    QualityCheckResult,
    Scan,
    ScanAngle,
    ScanStatus,
    StreakSummary,
    UserContext,
)
from bodyscan_api.services.estimator import (
    BodyCompositionEstimate,
    BodyCompositionEstimator,
)
from bodyscan_api.services.photo_store import PhotoStore, PhotoStoreError, photo_path
from bodyscan_api.services.pipeline import ScanPipeline
from bodyscan_api.services.trends import TrendQueryService
from bodyscan_api.utils.dates import utc_now


# =============================================================================
# In-memory collaborators
# =============================================================================


class InMemoryScanRecordStore(ScanRecordStore):
    """Dict-backed record store with the same guarded-update semantics as Mongo."""

    def __init__(self):
        self.scans: dict[str, Scan] = {}
        self.streaks: dict[str, StreakSummary] = {}
        self.query_calls: list[dict[str, Any]] = []

    async def create(self, scan: Scan) -> str:
        now = utc_now()
        stored = scan.model_copy(deep=True)
        stored.created_at = stored.created_at or now
        stored.updated_at = stored.updated_at or now
        self.scans[scan.id] = stored
        return scan.id

    async def get(self, scan_id: str) -> Scan | None:
        scan = self.scans.get(scan_id)
        return scan.model_copy(deep=True) if scan else None

    async def query_by_user(
        self, user_id, start=None, end=None, statuses=None, limit=None, newest_first=False
    ) -> list[Scan]:
        result = [
            s.model_copy(deep=True)
            for s in self.scans.values()
            if s.user_id == user_id
            and (start is None or s.date >= start)
            and (end is None or s.date <= end)
            and (not statuses or s.status in statuses)
        ]
        if newest_first:
            result.sort(key=lambda s: (s.date, s.completed_at or s.created_at, s.id), reverse=True)
        else:
            result.sort(key=lambda s: (s.date, s.id))
        self.query_calls.append({"limit": limit, "newest_first": newest_first, "end": end})
        return result[:limit] if limit else result

    async def completed_dates(self, user_id: str) -> list[str]:
        return sorted(
            {s.date for s in self.scans.values() if s.user_id == user_id and s.status == ScanStatus.COMPLETED}
        )

    async def update(self, scan_id, fields, expected_status=None) -> bool:
        scan = self.scans.get(scan_id)
        if scan is None:
            return False
        if expected_status is not None and scan.status != expected_status:
            return False
        data = scan.model_dump()
        data.update(fields)
        data["updated_at"] = utc_now()
        self.scans[scan_id] = Scan.model_validate(data)
        return True

    async def delete(self, scan_id: str) -> bool:
        return self.scans.pop(scan_id, None) is not None

    async def find_by_status(self, statuses, updated_before=None) -> list[Scan]:
        return [
            s.model_copy(deep=True)
            for s in self.scans.values()
            if s.status in statuses
            and (updated_before is None or (s.updated_at and s.updated_at < updated_before))
        ]

    async def get_streak(self, user_id: str) -> StreakSummary | None:
        return self.streaks.get(user_id)

    async def save_streak(self, user_id: str, streak: StreakSummary) -> None:
        self.streaks[user_id] = streak


class InMemoryPhotoStore(PhotoStore):
    """Photo store that can be told to fail an angle a number of times."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.failures: dict[str, int] = {}
        self.put_calls: list[str] = []

    def fail_angle(self, angle: ScanAngle, times: int) -> None:
        self.failures[angle.value] = times

    async def put(self, user_id, scan_id, angle, data) -> str:
        self.put_calls.append(angle.value)
        if self.failures.get(angle.value, 0) > 0:
            self.failures[angle.value] -= 1
            raise PhotoStoreError(f"Simulated outage uploading {angle.value}")
        path = photo_path(user_id, scan_id, angle)
        self.objects[path] = data
        return f"memory://{path}"

    async def read(self, url: str) -> bytes:
        path = url.removeprefix("memory://")
        if path not in self.objects:
            raise PhotoStoreError(f"Unknown photo: {url}")
        return self.objects[path]

    async def delete(self, user_id, scan_id) -> int:
        prefix = f"scans/{user_id}/{scan_id}/"
        doomed = [p for p in self.objects if p.startswith(prefix)]
        for path in doomed:
            del self.objects[path]
        return len(doomed)


class FakeEstimator(BodyCompositionEstimator):
    """Estimator returning queued results; defaults to a plausible estimate."""

    def __init__(self):
        self.qc_result = QualityCheckResult(is_valid=True, issues=[], confidence=0.9)
        self.qc_error: Exception | None = None
        self.estimate_error: Exception | None = None
        self.next_bf: list[float] = []
        self.confidence = 0.9
        self.qc_calls = 0
        self.estimate_calls: list[dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    async def quality_check(self, angle_urls):
        self.qc_calls += 1
        if self.qc_error is not None:
            raise self.qc_error
        return self.qc_result

    async def estimate(self, angle_urls, weight_lb, context=None):
        self.estimate_calls.append({"urls": dict(angle_urls), "weight_lb": weight_lb, "context": context})
        if self.estimate_error is not None:
            raise self.estimate_error
        bf = self.next_bf.pop(0) if self.next_bf else 0.2
        return BodyCompositionEstimate(
            bf_percent=bf,
            muscle_percent=40.0,
            confidence=self.confidence,
            model_version="fake-vision-1",
        )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        user_timezone="UTC",
        resume_schedule_enabled=False,
        retry_backoff_seconds=1.0,
        retry_backoff_max_seconds=30.0,
        min_estimation_confidence=0.5,
    )


@pytest.fixture
def store() -> InMemoryScanRecordStore:
    return InMemoryScanRecordStore()


@pytest.fixture
def photo_store() -> InMemoryPhotoStore:
    return InMemoryPhotoStore()


@pytest.fixture
def estimator() -> FakeEstimator:
    return FakeEstimator()


@pytest.fixture
def sleep() -> AsyncMock:
    """Replaces asyncio.sleep between retries."""
    return AsyncMock()


@pytest.fixture
def pipeline(store, photo_store, estimator, settings, sleep) -> ScanPipeline:
    return ScanPipeline(store, photo_store, estimator, settings, sleep=sleep)


@pytest.fixture
def trend_service(store, settings) -> TrendQueryService:
    return TrendQueryService(store, settings)


@pytest.fixture
def photos() -> dict[ScanAngle, bytes]:
    """One small fake JPEG per angle."""
    return {angle: b"\xff\xd8\xff\xe0" + angle.value.encode() for angle in ScanAngle}


@pytest.fixture
def user_context() -> UserContext:
    return UserContext(age=34, gender="male", height_cm=180, fitness_goal="lose fat")


@pytest.fixture
def scan_factory() -> Callable[..., Scan]:
    """
    Build Scan records directly, bypassing the pipeline.

    Usage:
        scan = scan_factory("2024-05-01", weight_lb=180, bf_percent=0.2)
    """
    counter = {"n": 0}

    def _make(
        day: str,
        weight_lb: float = 180.0,
        bf_percent: float | None = 0.2,
        status: ScanStatus = ScanStatus.COMPLETED,
        user_id: str = "user_1",
        completed_at: datetime | None = None,
        **extra: Any,
    ) -> Scan:
        counter["n"] += 1
        base = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc) + timedelta(minutes=counter["n"])
        lbm = weight_lb * (1 - bf_percent) if bf_percent is not None else None
        fields: dict[str, Any] = dict(
            id=f"scn_{user_id}_{day}_{counter['n']:013d}",
            user_id=user_id,
            date=day,
            status=status,
            weight_lb=weight_lb,
            bf_percent=bf_percent,
            lbm_lb=lbm,
            bf_confidence=0.9 if bf_percent is not None else None,
            angle_urls={a.value: f"memory://scans/{user_id}/{day}/{a.value}.jpg" for a in ScanAngle},
            created_at=base,
            updated_at=base,
            completed_at=completed_at or (base if status == ScanStatus.COMPLETED else None),
        )
        fields.update(extra)
        return Scan(**fields)

    return _make


"""
Daily Scan pipeline.

Orchestrates a scan through its persisted state machine:

    pending_upload -> uploaded -> qc_done -> estimated -> completed

with `failed` reachable from any non-terminal state. Each stage loads the
scan, checks it is still in the state the stage expects, does its work and
moves the status forward with a guarded update. Re-entering a stage for a
scan that already moved on is a no-op, so `process_scan` can be called again
after a crash or restart.
"""

import asyncio
import logging
import math
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import Any, TypeVar

from bodyscan_api.core.config import Settings
from bodyscan_api.core.exceptions import (
    ConsistencyError,
    EstimationError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from bodyscan_api.db.store import ScanRecordStore
from bodyscan_api.models.scan import (
    SCAN_ANGLE_ORDER,
    QualityCheckResult,
    Scan,
    ScanAngle,
    ScanStatus,
    StreakSummary,
    UserContext,
)
from bodyscan_api.utils.dates import format_day, local_today, parse_day, utc_now

from .deltas import SLOPE_WINDOW, compute_deltas
from .estimator import BodyCompositionEstimate, BodyCompositionEstimator, EstimatorError
from .history import scans_of_record
from .insights import write_insight
from .photo_store import PhotoStore, PhotoStoreError
from .streaks import compute_streak

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Statuses the resume job picks up
NON_TERMINAL_STATUSES = [
    ScanStatus.PENDING_UPLOAD,
    ScanStatus.UPLOADED,
    ScanStatus.QC_DONE,
    ScanStatus.ESTIMATED,
]

# Completed scans read for the delta stage; leaves room for same-day rescans
HISTORY_FETCH_LIMIT = SLOPE_WINDOW * 4


def make_scan_id(user_id: str, day: str, created_at_ms: int) -> str:
    """Build a scan id: `scn_<user>_<YYYY-MM-DD>_<13-digit epoch ms>`."""
    return f"scn_{user_id}_{day}_{created_at_ms:013d}"


def _is_transient(error: Exception) -> bool:
    if isinstance(error, (PhotoStoreError, TransientIOError)):
        return True
    return isinstance(error, EstimatorError) and error.transient


def _error_message(error: BaseException) -> str:
    return getattr(error, "message", None) or str(error) or type(error).__name__


class ScanPipeline:
    """
    Runs daily scans from submission to completion.

    Collaborators are injected so the same pipeline works against MongoDB
    and GridFS in the app and against in-memory doubles in tests.

    Usage:
        pipeline = ScanPipeline(store, photo_store, estimator, settings)
        scan_id = await pipeline.submit_scan("user_1", "2024-05-01", 180.0, photos)
        await pipeline.drain()
        scan = await pipeline.get_scan(scan_id)
    """

    def __init__(
        self,
        store: ScanRecordStore,
        photo_store: PhotoStore,
        estimator: BodyCompositionEstimator | None,
        settings: Settings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the pipeline.

        Args:
            store: Scan record store
            photo_store: Object store for angle photos
            estimator: Body composition estimator (None when not configured)
            settings: Application settings (retry, validation and timezone)
            sleep: Awaitable used between retries
        """
        self.store = store
        self.photo_store = photo_store
        self.estimator = estimator
        self.settings = settings
        self._sleep = sleep

        # Photo bytes held between submit and the upload stage
        self._staged_photos: dict[str, dict[ScanAngle, bytes]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        # Coroutines holding or waiting on each lock
        self._lock_users: dict[str, int] = {}

        self._stages: dict[ScanStatus, Callable[[str], Awaitable[None]]] = {
            ScanStatus.PENDING_UPLOAD: self.upload_photos,
            ScanStatus.UPLOADED: self.run_quality_check,
            ScanStatus.QC_DONE: self.run_estimation,
            ScanStatus.ESTIMATED: self.compute_deltas_and_streak,
        }

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit_scan(
        self,
        user_id: str,
        date: str | date,
        weight_lb: float,
        photos_by_angle: Mapping[str | ScanAngle, bytes],
        notes: str | None = None,
        context: UserContext | None = None,
    ) -> str:
        """
        Validate input, create the scan record and start processing.

        The record is durably created in `pending_upload` before any photo
        or estimator call. Remaining stages run as a background task.

        Returns:
            The new scan id

        Raises:
            ValidationError: On malformed input; no record is created
        """
        day = self._validate_submission(user_id, date, weight_lb)
        photos = self._validate_photos(photos_by_angle)

        already_completed = await self.store.query_by_user(
            user_id, start=day, end=day, statuses=[ScanStatus.COMPLETED], limit=1
        )
        if already_completed:
            logger.warning(
                f"User {user_id} already has a completed scan for {day}; "
                "the new scan will replace it once completed"
            )

        created_at = utc_now()
        scan = Scan(
            id=make_scan_id(user_id, day, int(created_at.timestamp() * 1000)),
            user_id=user_id,
            date=day,
            status=ScanStatus.PENDING_UPLOAD,
            weight_lb=weight_lb,
            notes=notes or None,
            user_context=context,
            created_at=created_at,
            updated_at=created_at,
        )

        scan_id = await self.store.create(scan)
        logger.info(f"Created scan {scan_id} for user {user_id} on {day}")

        self._staged_photos[scan_id] = photos
        self._schedule(scan_id)
        return scan_id

    def _validate_submission(self, user_id: str, day: str | date, weight_lb: float) -> str:
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required")

        try:
            parsed = format_day(parse_day(day))
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Invalid scan date: {day}. Expected YYYY-MM-DD",
                details={"date": str(day)},
            ) from e

        is_number = isinstance(weight_lb, (int, float)) and not isinstance(weight_lb, bool)
        if not is_number or not math.isfinite(weight_lb) or not weight_lb > 0:
            raise ValidationError(
                "Weight must be a finite number greater than 0",
                details={"weight_lb": str(weight_lb)},
            )

        return parsed

    def _validate_photos(self, photos_by_angle: Mapping[str | ScanAngle, bytes]) -> dict[ScanAngle, bytes]:
        photos: dict[ScanAngle, bytes] = {}
        for key, data in photos_by_angle.items():
            try:
                angle = ScanAngle(key)
            except ValueError as e:
                raise ValidationError(
                    f"Unknown photo angle: {key}",
                    details={"allowed": [a.value for a in SCAN_ANGLE_ORDER]},
                ) from e
            photos[angle] = data

        missing = [a.value for a in SCAN_ANGLE_ORDER if a not in photos]
        if missing:
            raise ValidationError(
                f"Exactly 4 photos are required (front, back, left, right); missing: {', '.join(missing)}",
                details={"missing": missing},
            )

        empty = [a.value for a in SCAN_ANGLE_ORDER if not photos[a]]
        if empty:
            raise ValidationError(
                f"Empty photo for: {', '.join(empty)}",
                details={"empty": empty},
            )

        max_bytes = self.settings.max_photo_bytes
        too_large = [a.value for a in SCAN_ANGLE_ORDER if len(photos[a]) > max_bytes]
        if too_large:
            raise ValidationError(
                f"Photo too large for: {', '.join(too_large)}. Maximum size is {max_bytes // (1024 * 1024)}MB",
                details={"too_large": too_large, "max_bytes": max_bytes},
            )

        return photos

    # =========================================================================
    # Orchestration
    # =========================================================================

    def _schedule(self, scan_id: str) -> None:
        task = asyncio.create_task(self._run_in_background(scan_id), name=f"scan:{scan_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_in_background(self, scan_id: str) -> None:
        try:
            await self.process_scan(scan_id)
        except Exception:
            # The scan keeps its last persisted status; the resume job picks it up
            logger.exception(f"Background processing of scan {scan_id} stopped")

    async def process_scan(self, scan_id: str) -> Scan:
        """
        Run whichever stages remain for a scan, based on its persisted status.

        Returns:
            The scan after processing stopped

        Raises:
            NotFoundError: If the scan does not exist
        """
        async with self._scan_lock(scan_id):
            scan = await self.get_scan(scan_id)
            while not scan.status.is_terminal:
                before = scan.status
                await self._stages[before](scan_id)
                scan = await self.get_scan(scan_id)
                if scan.status == before:
                    # Stage chose to leave the scan where it was
                    break
            return scan

    @asynccontextmanager
    async def _scan_lock(self, scan_id: str) -> AsyncIterator[None]:
        """Serialize work on one scan within this process."""
        lock = self._locks.get(scan_id)
        if lock is None:
            lock = self._locks[scan_id] = asyncio.Lock()
        self._lock_users[scan_id] = self._lock_users.get(scan_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            # Drop the lock only once no one holds or waits on it
            self._lock_users[scan_id] -= 1
            if self._lock_users[scan_id] == 0:
                del self._lock_users[scan_id]
                self._locks.pop(scan_id, None)

    async def resume_stalled(self, older_than: timedelta | None = None) -> list[str]:
        """
        Resume scans stuck in a non-terminal state.

        Args:
            older_than: Only resume scans not updated for at least this long

        Returns:
            Ids of the scans that were resumed
        """
        cutoff = utc_now() - older_than if older_than is not None else None
        stalled = await self.store.find_by_status(NON_TERMINAL_STATUSES, updated_before=cutoff)

        resumed: list[str] = []
        for scan in stalled:
            lock = self._locks.get(scan.id)
            if lock is not None and lock.locked():
                continue

            logger.info(f"Resuming scan {scan.id} from {scan.status.value}")
            try:
                await self.process_scan(scan.id)
            except NotFoundError:
                continue
            except Exception:
                logger.exception(f"Resuming scan {scan.id} failed")
                continue
            resumed.append(scan.id)

        if resumed:
            logger.info(f"Resumed {len(resumed)} stalled scan(s)")
        return resumed

    async def drain(self) -> None:
        """Wait for all background scan tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def get_scan(self, scan_id: str) -> Scan:
        """
        Get a scan by id.

        Raises:
            NotFoundError: If the scan does not exist
        """
        scan = await self.store.get(scan_id)
        if scan is None:
            raise NotFoundError("Scan", scan_id)
        return scan

    async def delete_scan(self, scan_id: str, user_id: str) -> None:
        """
        Delete a scan at the user's request, photos included.

        Raises:
            NotFoundError: If the scan does not exist or belongs to another user
            TransientIOError: If the photos could not be deleted
        """
        async with self._scan_lock(scan_id):
            scan = await self.store.get(scan_id)
            if scan is None or scan.user_id != user_id:
                raise NotFoundError("Scan", scan_id)

            try:
                deleted = await self.photo_store.delete(user_id, scan_id)
            except PhotoStoreError as e:
                raise TransientIOError(
                    f"Failed to delete photos for scan {scan_id}: {e.message}",
                    details=e.details,
                ) from e

            await self.store.delete(scan_id)
            self._staged_photos.pop(scan_id, None)
            logger.info(f"Deleted scan {scan_id} and {deleted} photo(s)")

        await self.refresh_streak(user_id)

    async def refresh_streak(self, user_id: str) -> StreakSummary:
        """Rebuild and cache the user's streak from completed scans."""
        dates = await self.store.completed_dates(user_id)
        streak = compute_streak(dates, local_today(self.settings.user_timezone))
        await self.store.save_streak(user_id, streak)
        return streak

    # =========================================================================
    # Stages
    # =========================================================================

    async def upload_photos(self, scan_id: str) -> None:
        """
        Upload the four photos concurrently and record their URLs.

        Each angle is retried independently. If any angle exhausts its
        retries the scan fails with a reason naming the angle(s).
        """
        scan = await self._load_in_status(scan_id, ScanStatus.PENDING_UPLOAD)
        if scan is None:
            return

        photos = self._staged_photos.get(scan_id)
        if photos is None:
            await self._fail(
                scan,
                "upload",
                "Photos for this scan are no longer available; please resubmit the scan",
            )
            return

        results = await asyncio.gather(
            *(self._upload_angle(scan, angle, photos[angle]) for angle in SCAN_ANGLE_ORDER),
            return_exceptions=True,
        )

        urls: dict[str, str] = {}
        failures: list[tuple[ScanAngle, BaseException]] = []
        for angle, result in zip(SCAN_ANGLE_ORDER, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures.append((angle, result))
            else:
                urls[angle.value] = result

        if failures:
            names = ", ".join(angle.value for angle, _ in failures)
            reason = f"Photo upload failed for {names}: {_error_message(failures[0][1])}"
            await self._fail(scan, "upload", reason, extra={"angle_urls": urls})
            return

        await self._advance(scan, ScanStatus.UPLOADED, {"angle_urls": urls})
        self._staged_photos.pop(scan_id, None)

    async def _upload_angle(self, scan: Scan, angle: ScanAngle, data: bytes) -> str:
        return await self._with_retries(
            lambda: self.photo_store.put(scan.user_id, scan.id, angle, data),
            max_retries=self.settings.upload_max_retries,
            label=f"Upload of {angle.value} photo for scan {scan.id}",
        )

    async def run_quality_check(self, scan_id: str) -> None:
        """
        Run the advisory photo quality check.

        The result is always stored. An invalid verdict does not stop the
        scan; it surfaces later as an insight warning.
        """
        scan = await self._load_in_status(scan_id, ScanStatus.UPLOADED)
        if scan is None:
            return

        if self.estimator is None:
            qc = QualityCheckResult(
                is_valid=False,
                issues=["Quality check skipped: no estimator configured"],
                confidence=0.0,
            )
        else:
            try:
                qc = await self._with_retries(
                    lambda: self.estimator.quality_check(scan.angle_urls),
                    max_retries=self.settings.qc_max_retries,
                    label=f"Quality check for scan {scan_id}",
                )
            except TransientIOError as e:
                await self._fail(scan, "quality_check", e.message)
                return
            except EstimatorError as e:
                qc = QualityCheckResult(
                    is_valid=False,
                    issues=[f"Quality check failed: {e.message}"],
                    confidence=0.0,
                )

        if not qc.is_valid:
            logger.warning(f"QC checks failed but continuing for scan {scan_id}: {qc.issues}")

        await self._advance(scan, ScanStatus.QC_DONE, {"qc": qc})

    async def run_estimation(self, scan_id: str) -> None:
        """
        Estimate body composition and store the metrics.

        Never retried automatically. Any estimator error, an out-of-range
        body fat value or a low-confidence result fails the scan.
        """
        scan = await self._load_in_status(scan_id, ScanStatus.QC_DONE)
        if scan is None:
            return

        try:
            estimate = await self._estimate(scan)
        except EstimationError as e:
            await self._fail(scan, "estimation", e.message)
            return

        bf = estimate.bf_percent
        await self._advance(
            scan,
            ScanStatus.ESTIMATED,
            {
                "bf_percent": bf,
                "lbm_lb": scan.weight_lb * (1 - bf),
                "bf_confidence": estimate.confidence,
                "muscle_percent": estimate.muscle_percent,
                "estimator_model": estimate.model_version,
            },
        )

    async def _estimate(self, scan: Scan) -> BodyCompositionEstimate:
        if self.estimator is None:
            raise EstimationError("No body composition estimator is configured")

        try:
            estimate = await self.estimator.estimate(scan.angle_urls, scan.weight_lb, scan.user_context)
        except EstimatorError as e:
            raise EstimationError(
                e.message,
                details={"error_code": e.error_code, "provider": e.provider},
            ) from e
        except Exception as e:
            logger.exception(f"Unexpected estimator error for scan {scan.id}")
            raise EstimationError(_error_message(e)) from e

        bf = estimate.bf_percent
        if not 0 < bf < 1:
            raise EstimationError(
                f"Estimated body fat {bf} is outside the valid range (0, 1)",
                details={"bf_percent": bf},
            )

        minimum = self.settings.min_estimation_confidence
        if estimate.confidence < minimum:
            raise EstimationError(
                f"Estimate confidence {estimate.confidence:.2f} is below the minimum of {minimum:.2f}",
                details={"confidence": estimate.confidence},
            )

        return estimate

    async def compute_deltas_and_streak(self, scan_id: str) -> None:
        """
        Compare against earlier completed scans, update the streak and
        write the insight, then complete the scan.

        If a referenced earlier scan disappears meanwhile the stage is
        retried once; after that the scan stays `estimated` so the stage can
        be run again later.
        """
        scan = await self._load_in_status(scan_id, ScanStatus.ESTIMATED)
        if scan is None:
            return

        last_error: ConsistencyError | None = None
        for attempt in (1, 2):
            try:
                await self._complete(scan)
                return
            except ConsistencyError as e:
                last_error = e
                logger.warning(
                    f"Consistency check failed for scan {scan_id} (attempt {attempt}/2): {e.message}"
                )
                scan = await self._load_in_status(scan_id, ScanStatus.ESTIMATED)
                if scan is None:
                    return

        await self.store.update(
            scan_id,
            {"error_message": last_error.message},
            expected_status=ScanStatus.ESTIMATED,
        )

    async def _complete(self, scan: Scan) -> None:
        day_before = format_day(parse_day(scan.date) - timedelta(days=1))
        recent = await self.store.query_by_user(
            scan.user_id,
            end=day_before,
            statuses=[ScanStatus.COMPLETED],
            limit=HISTORY_FETCH_LIMIT,
            newest_first=True,
        )
        earlier = scans_of_record(recent)[-SLOPE_WINDOW:]
        prev = earlier[-1] if earlier else None
        prev2 = earlier[-2] if len(earlier) >= 2 else None

        for referenced in (prev, prev2):
            if referenced is not None:
                await self._verify_completed(referenced.id)

        deltas = compute_deltas(scan, prev, prev2, history=earlier[-(SLOPE_WINDOW - 1):])

        dates = await self.store.completed_dates(scan.user_id) + [scan.date]
        snapshot = compute_streak(dates, scan.date)

        insight = write_insight(scan, deltas)

        completed = await self._advance(
            scan,
            ScanStatus.COMPLETED,
            {
                "deltas": deltas,
                "prev_scan_id": prev.id if prev else None,
                "prev2_scan_id": prev2.id if prev2 else None,
                "streak": snapshot,
                "insight": insight,
                "completed_at": utc_now(),
                "error_message": None,
            },
        )
        if not completed:
            return

        # Cache is evaluated as of the processing day, not the scan day
        today = max(parse_day(scan.date), local_today(self.settings.user_timezone))
        await self.store.save_streak(scan.user_id, compute_streak(dates, today))

    async def _verify_completed(self, scan_id: str) -> None:
        referenced = await self.store.get(scan_id)
        if referenced is None or referenced.status != ScanStatus.COMPLETED:
            raise ConsistencyError(
                f"Referenced scan {scan_id} is missing or no longer completed",
                missing_scan_id=scan_id,
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_in_status(self, scan_id: str, expected: ScanStatus) -> Scan | None:
        scan = await self.get_scan(scan_id)
        if scan.status != expected:
            logger.info(
                f"Skipping stage for scan {scan_id}: status is {scan.status.value}, "
                f"expected {expected.value}"
            )
            return None
        return scan

    async def _advance(self, scan: Scan, status: ScanStatus, fields: dict[str, Any]) -> bool:
        """Write stage results and move the status forward, if no one else has."""
        updated = await self.store.update(
            scan.id,
            {**fields, "status": status},
            expected_status=scan.status,
        )
        if updated:
            logger.info(f"Scan {scan.id}: {scan.status.value} -> {status.value}")
        else:
            logger.info(f"Scan {scan.id} moved on concurrently; {status.value} not written")
        return updated

    async def _fail(
        self,
        scan: Scan,
        stage: str,
        reason: str,
        extra: dict[str, Any] | None = None,
    ) -> None:
        reason = reason or f"Scan failed during {stage}"
        logger.error(f"Scan {scan.id} failed at {stage}: {reason}")
        await self.store.update(
            scan.id,
            {
                **(extra or {}),
                "status": ScanStatus.FAILED,
                "error_message": reason,
                "failed_stage": stage,
            },
            expected_status=scan.status,
        )
        self._staged_photos.pop(scan.id, None)

    def _backoff(self, attempt: int) -> float:
        delay = self.settings.retry_backoff_seconds * (2 ** (attempt - 1))
        return min(delay, self.settings.retry_backoff_max_seconds)

    async def _with_retries(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_retries: int,
        label: str,
    ) -> T:
        """
        Run `operation`, retrying transient failures with exponential backoff.

        Raises:
            TransientIOError: When all `1 + max_retries` attempts failed
            Exception: Non-transient errors are raised on first occurrence
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                if not _is_transient(e):
                    raise
                if attempt > max_retries:
                    raise TransientIOError(
                        f"{label} failed after {attempt} attempts: {_error_message(e)}",
                        details={"attempts": attempt},
                    ) from e

                delay = self._backoff(attempt)
                logger.warning(
                    f"{label} failed (attempt {attempt}/{max_retries + 1}): "
                    f"{_error_message(e)}; retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

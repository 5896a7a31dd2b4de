"""Scan record store contract and its MongoDB implementation."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from bodyscan_api.core.exceptions import DatabaseError
from bodyscan_api.models.scan import Scan, ScanStatus, StreakSummary

from .repositories.scans import ScanRepository
from .repositories.streaks import StreakRepository

logger = logging.getLogger(__name__)


class ScanRecordStore(ABC):
    """
    Persistence for scan records and the derived streak cache.

    The pipeline and the read-side services depend only on this interface,
    so tests and alternative backends can swap the implementation.
    """

    @abstractmethod
    async def create(self, scan: Scan) -> str:
        """Persist a new scan and return its id."""
        ...

    @abstractmethod
    async def get(self, scan_id: str) -> Scan | None:
        """Point read by id."""
        ...

    @abstractmethod
    async def query_by_user(
        self,
        user_id: str,
        start: str | None = None,
        end: str | None = None,
        statuses: list[ScanStatus] | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[Scan]:
        """
        Scans for a user with `start <= date <= end`, sorted by date.

        No limit means every match is returned. With `newest_first` the
        order is reversed and, within a day, the latest completion comes
        first, so a limited read always holds each day's scan of record.
        """
        ...

    @abstractmethod
    async def completed_dates(self, user_id: str) -> list[str]:
        """Distinct dates with at least one completed scan, ascending."""
        ...

    @abstractmethod
    async def update(
        self,
        scan_id: str,
        fields: dict[str, Any],
        expected_status: ScanStatus | None = None,
    ) -> bool:
        """
        Partial-field update.

        When `expected_status` is given the update only applies while the
        scan is still in that state; returns False otherwise.
        """
        ...

    @abstractmethod
    async def delete(self, scan_id: str) -> bool:
        """Hard delete. Only used for user-initiated purges."""
        ...

    @abstractmethod
    async def find_by_status(
        self,
        statuses: list[ScanStatus],
        updated_before: datetime | None = None,
    ) -> list[Scan]:
        """Scans in the given states, optionally not updated since `updated_before`."""
        ...

    @abstractmethod
    async def get_streak(self, user_id: str) -> StreakSummary | None:
        """Cached streak summary for a user."""
        ...

    @abstractmethod
    async def save_streak(self, user_id: str, streak: StreakSummary) -> None:
        """Replace the cached streak summary for a user."""
        ...


class MongoScanRecordStore(ScanRecordStore):
    """
    ScanRecordStore backed by MongoDB.

    Groups the scan and streak repositories behind the store contract and
    translates driver errors into DatabaseError.

    Usage:
        store = MongoScanRecordStore(db)
        scan_id = await store.create(scan)
        scan = await store.get(scan_id)
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        scans_collection: str = "scans",
        streaks_collection: str = "scan_streaks",
    ):
        """
        Initialize the store with a database instance.

        Args:
            db: Motor database instance
            scans_collection: Collection holding scan records
            streaks_collection: Collection holding cached streaks
        """
        self._db = db
        self._scans_collection = scans_collection
        self._streaks_collection = streaks_collection
        self._scans: ScanRepository | None = None
        self._streaks: StreakRepository | None = None

    @property
    def scans(self) -> ScanRepository:
        """Get Scan repository (lazy loaded)."""
        if self._scans is None:
            self._scans = ScanRepository(self._db[self._scans_collection])
        return self._scans

    @property
    def streaks(self) -> StreakRepository:
        """Get Streak repository (lazy loaded)."""
        if self._streaks is None:
            self._streaks = StreakRepository(self._db[self._streaks_collection])
        return self._streaks

    async def create(self, scan: Scan) -> str:
        try:
            return await self.scans.create_scan(scan)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to create scan: {e}", {"scan_id": scan.id}) from e

    async def get(self, scan_id: str) -> Scan | None:
        try:
            return await self.scans.get_by_scan_id(scan_id)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to read scan: {e}", {"scan_id": scan_id}) from e

    async def query_by_user(
        self,
        user_id: str,
        start: str | None = None,
        end: str | None = None,
        statuses: list[ScanStatus] | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[Scan]:
        try:
            return await self.scans.get_user_scans(
                user_id,
                start=start,
                end=end,
                statuses=statuses,
                limit=limit,
                newest_first=newest_first,
            )
        except PyMongoError as e:
            raise DatabaseError(f"Failed to query scans: {e}", {"user_id": user_id}) from e

    async def completed_dates(self, user_id: str) -> list[str]:
        try:
            return await self.scans.get_completed_dates(user_id)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to read scan dates: {e}", {"user_id": user_id}) from e

    async def update(
        self,
        scan_id: str,
        fields: dict[str, Any],
        expected_status: ScanStatus | None = None,
    ) -> bool:
        try:
            return await self.scans.update_fields(scan_id, fields, expected_status=expected_status)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to update scan: {e}", {"scan_id": scan_id}) from e

    async def delete(self, scan_id: str) -> bool:
        try:
            return await self.scans.delete_one(scan_id)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to delete scan: {e}", {"scan_id": scan_id}) from e

    async def find_by_status(
        self,
        statuses: list[ScanStatus],
        updated_before: datetime | None = None,
    ) -> list[Scan]:
        try:
            return await self.scans.find_by_status(statuses, updated_before=updated_before)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to query scans by status: {e}") from e

    async def get_streak(self, user_id: str) -> StreakSummary | None:
        try:
            return await self.streaks.get_streak(user_id)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to read streak: {e}", {"user_id": user_id}) from e

    async def save_streak(self, user_id: str, streak: StreakSummary) -> None:
        try:
            await self.streaks.save_streak(user_id, streak)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to save streak: {e}", {"user_id": user_id}) from e

    async def ensure_indexes(self) -> None:
        """Create indexes. Called during application startup."""
        try:
            await self.scans.ensure_indexes()
            logger.info(f"Scan indexes ensured on {self._scans_collection}")
        except PyMongoError as e:
            logger.error(f"Failed to create scan indexes: {e}")

"""Repository for the scans collection (one document per scan attempt)."""

from datetime import datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection

from bodyscan_api.models.scan import Scan, ScanStatus

from .base import BaseRepository, to_document


class ScanRepository(BaseRepository[Scan]):
    """
    Repository for daily scan records.

    Documents are keyed by the scan id, which already encodes user, date and
    creation time, so `_id` ordering matches creation order within a day.
    """

    model_class = Scan

    def __init__(self, collection: AsyncIOMotorCollection):
        super().__init__(collection)

    async def create_scan(self, scan: Scan) -> str:
        """
        Insert a new scan record.

        Args:
            scan: Scan to insert; its `id` becomes the document `_id`

        Returns:
            Inserted scan id
        """
        document = to_document(scan.model_dump(exclude={"id"}))
        document["_id"] = scan.id
        if scan.created_at is not None:
            document["created_at"] = scan.created_at
        return await self.insert_one(document)

    async def get_by_scan_id(self, scan_id: str) -> Scan | None:
        """Get scan record by scan ID."""
        return await self.find_by_id(scan_id)

    async def get_user_scans(
        self,
        user_id: str,
        start: str | None = None,
        end: str | None = None,
        statuses: list[ScanStatus] | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[Scan]:
        """
        Get scan records for a user within a date range.

        Args:
            user_id: User identifier
            start: First date (YYYY-MM-DD, inclusive)
            end: Last date (YYYY-MM-DD, inclusive)
            statuses: Only return scans in these states
            limit: Maximum results to return (None for all)
            newest_first: Latest date first, latest completion first within a day

        Returns:
            Scans sorted by date, then creation order (or the reverse)
        """
        filter_query: dict[str, Any] = {"user_id": user_id}

        if start or end:
            filter_query["date"] = {}
            if start:
                filter_query["date"]["$gte"] = start
            if end:
                filter_query["date"]["$lte"] = end

        if statuses:
            filter_query["status"] = {"$in": [s.value for s in statuses]}

        if newest_first:
            sort = [("date", -1), ("completed_at", -1), ("_id", -1)]
        else:
            sort = [("date", 1), ("_id", 1)]

        return await self.find_many(filter=filter_query, sort=sort, limit=limit)

    async def get_completed_dates(self, user_id: str) -> list[str]:
        """Distinct dates on which the user completed a scan, ascending."""
        dates = await self.collection.distinct(
            "date",
            {"user_id": user_id, "status": ScanStatus.COMPLETED.value},
        )
        return sorted(dates)

    async def update_fields(
        self,
        scan_id: str,
        fields: dict[str, Any],
        expected_status: ScanStatus | None = None,
    ) -> bool:
        """
        Set a subset of fields on a scan.

        Args:
            scan_id: Scan identifier
            fields: Field values to set
            expected_status: If given, only update while the scan is in this state

        Returns:
            True if the scan matched and was updated
        """
        extra = {"status": expected_status.value} if expected_status else None
        return await self.update_one(scan_id, dict(fields), extra_filter=extra)

    async def find_by_status(
        self,
        statuses: list[ScanStatus],
        updated_before: datetime | None = None,
        limit: int = 100,
    ) -> list[Scan]:
        """
        Find scans in the given states, oldest update first.

        Used by the resume job to pick up scans that stopped mid-pipeline.
        """
        filter_query: dict[str, Any] = {"status": {"$in": [s.value for s in statuses]}}
        if updated_before is not None:
            filter_query["updated_at"] = {"$lt": updated_before}

        return await self.find_many(
            filter=filter_query,
            sort=[("updated_at", 1)],
            limit=limit,
        )

    async def ensure_indexes(self) -> None:
        """Create the indexes the query patterns rely on."""
        await self.collection.create_index(
            [("user_id", 1), ("date", 1)],
            name="user_date_idx",
        )
        await self.collection.create_index(
            [("status", 1), ("updated_at", 1)],
            name="status_updated_idx",
        )

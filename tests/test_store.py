"""Unit tests for the MongoDB scan record store (Motor collections mocked)."""

from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock
from pymongo.errors import PyMongoError

from bodyscan_api.core.exceptions import DatabaseError
from bodyscan_api.db.repositories.base import to_document
from bodyscan_api.db.store import MongoScanRecordStore
from bodyscan_api.models.scan import InsightFlag, ScanStatus, StreakSummary


def make_collection():
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock()
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1, upserted_id=None))
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    collection.create_index = AsyncMock()
    collection.distinct = AsyncMock(return_value=[])

    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[])
    collection.find.return_value = cursor
    return collection


class TestMongoScanRecordStore:
    """Tests for MongoScanRecordStore."""

    @pytest.fixture
    def collections(self):
        return {"scans": make_collection(), "scan_streaks": make_collection()}

    @pytest.fixture
    def mongo_store(self, collections):
        db = MagicMock()
        db.__getitem__.side_effect = lambda name: collections[name]
        return MongoScanRecordStore(db)

    @pytest.mark.asyncio
    async def test_create_uses_scan_id_as_key(self, mongo_store, collections, scan_factory):
        scan = scan_factory("2024-05-01")
        collections["scans"].insert_one.return_value = MagicMock(inserted_id=scan.id)

        scan_id = await mongo_store.create(scan)

        assert scan_id == scan.id
        document = collections["scans"].insert_one.await_args.args[0]
        assert document["_id"] == scan.id
        assert "id" not in document
        assert document["status"] == "completed"

    @pytest.mark.asyncio
    async def test_get_converts_document(self, mongo_store, collections, scan_factory):
        scan = scan_factory("2024-05-01")
        document = to_document(scan.model_dump(exclude={"id"}))
        document["_id"] = scan.id
        collections["scans"].find_one.return_value = document

        result = await mongo_store.get(scan.id)

        assert result.id == scan.id
        assert result.status == ScanStatus.COMPLETED
        assert result.bf_percent == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_get_missing(self, mongo_store):
        assert await mongo_store.get("scn_none") is None

    @pytest.mark.asyncio
    async def test_query_by_user_filter(self, mongo_store, collections):
        await mongo_store.query_by_user(
            "user_1", start="2024-05-01", end="2024-05-14", statuses=[ScanStatus.COMPLETED]
        )

        collections["scans"].find.assert_called_once_with(
            {
                "user_id": "user_1",
                "date": {"$gte": "2024-05-01", "$lte": "2024-05-14"},
                "status": {"$in": ["completed"]},
            }
        )
        collections["scans"].find.return_value.sort.assert_called_once_with(
            [("date", 1), ("_id", 1)]
        )
        collections["scans"].find.return_value.limit.assert_not_called()
        collections["scans"].find.return_value.to_list.assert_awaited_once_with(length=None)

    @pytest.mark.asyncio
    async def test_query_by_user_newest_first_with_limit(self, mongo_store, collections):
        await mongo_store.query_by_user(
            "user_1", end="2024-05-13", statuses=[ScanStatus.COMPLETED], limit=28, newest_first=True
        )

        cursor = collections["scans"].find.return_value
        cursor.sort.assert_called_once_with([("date", -1), ("completed_at", -1), ("_id", -1)])
        cursor.limit.assert_called_once_with(28)
        cursor.to_list.assert_awaited_once_with(length=28)

    @pytest.mark.asyncio
    async def test_completed_dates_uses_distinct(self, mongo_store, collections):
        collections["scans"].distinct.return_value = ["2024-05-03", "2024-05-01"]

        dates = await mongo_store.completed_dates("user_1")

        assert dates == ["2024-05-01", "2024-05-03"]
        collections["scans"].distinct.assert_awaited_once_with(
            "date", {"user_id": "user_1", "status": "completed"}
        )
        collections["scans"].find.assert_not_called()

    @pytest.mark.asyncio
    async def test_completed_dates_driver_error(self, mongo_store, collections):
        collections["scans"].distinct.side_effect = PyMongoError("timeout")

        with pytest.raises(DatabaseError) as exc_info:
            await mongo_store.completed_dates("user_1")

        assert exc_info.value.details == {"user_id": "user_1"}

    @pytest.mark.asyncio
    async def test_guarded_update(self, mongo_store, collections):
        """An expected status narrows the filter so stale writers miss."""
        collections["scans"].update_one.return_value = MagicMock(matched_count=0, upserted_id=None)

        updated = await mongo_store.update(
            "scn_1",
            {"status": ScanStatus.UPLOADED, "angle_urls": {"front": "gridfs://b/f.jpg"}},
            expected_status=ScanStatus.PENDING_UPLOAD,
        )

        assert updated is False
        query, update = collections["scans"].update_one.await_args.args
        assert query == {"_id": "scn_1", "status": "pending_upload"}
        assert update["$set"]["status"] == "uploaded"
        assert "updated_at" in update["$set"]

    @pytest.mark.asyncio
    async def test_find_by_status_cutoff(self, mongo_store, collections):
        cutoff = datetime(2024, 5, 1, tzinfo=timezone.utc)

        await mongo_store.find_by_status([ScanStatus.UPLOADED, ScanStatus.QC_DONE], updated_before=cutoff)

        collections["scans"].find.assert_called_once_with(
            {"status": {"$in": ["uploaded", "qc_done"]}, "updated_at": {"$lt": cutoff}}
        )

    @pytest.mark.asyncio
    async def test_save_streak_upserts(self, mongo_store, collections):
        streak = StreakSummary(current_streak=3, best_streak=5, evaluated_on="2024-05-05")

        await mongo_store.save_streak("user_1", streak)

        query, update = collections["scan_streaks"].update_one.await_args.args
        assert query == {"_id": "user_1"}
        assert update["$set"]["best_streak"] == 5
        assert collections["scan_streaks"].update_one.await_args.kwargs["upsert"] is True

    @pytest.mark.asyncio
    async def test_get_streak(self, mongo_store, collections):
        collections["scan_streaks"].find_one.return_value = {
            "_id": "user_1",
            "current_streak": 2,
            "best_streak": 4,
            "evaluated_on": "2024-05-05",
        }

        streak = await mongo_store.get_streak("user_1")

        assert streak.current_streak == 2
        assert streak.best_streak == 4

    @pytest.mark.asyncio
    async def test_driver_errors_become_database_errors(self, mongo_store, collections):
        collections["scans"].find_one.side_effect = PyMongoError("connection reset")

        with pytest.raises(DatabaseError) as exc_info:
            await mongo_store.get("scn_1")

        assert exc_info.value.status_code == 500
        assert exc_info.value.details == {"scan_id": "scn_1"}


class TestToDocument:
    """Tests for to_document."""

    def test_enums_and_models_flattened(self):
        streak = StreakSummary(current_streak=1, best_streak=1)

        result = to_document({"flags": [InsightFlag.OK], "streak": streak, "pair": (1, 2)})

        assert result["flags"] == ["ok"]
        assert result["streak"]["best_streak"] == 1
        assert result["pair"] == [1, 2]

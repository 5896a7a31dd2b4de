"""Unit tests for the GridFS photo store."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from bodyscan_api.models.scan import ScanAngle
from bodyscan_api.services.photo_store import GridFSPhotoStore, PhotoStoreError, photo_path


class AsyncCursor:
    """Minimal async iterator standing in for a Motor cursor."""

    def __init__(self, docs):
        self._docs = list(docs)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._docs:
            raise StopAsyncIteration
        return self._docs.pop(0)


class TestGridFSPhotoStore:
    """Tests for GridFSPhotoStore."""

    @pytest.fixture
    def files(self):
        files = MagicMock()
        files.find = MagicMock(return_value=AsyncCursor([]))
        files.create_index = AsyncMock()
        return files

    @pytest.fixture
    def store(self, files):
        db = MagicMock()
        db.__getitem__.return_value = files
        store = GridFSPhotoStore(db, bucket_name="photos_fs")
        store._bucket = MagicMock()
        store._bucket.upload_from_stream = AsyncMock(return_value="file_2")
        store._bucket.delete = AsyncMock()
        store._bucket.open_download_stream_by_name = AsyncMock()
        return store

    def test_photo_path(self):
        assert photo_path("u1", "scn_1", ScanAngle.LEFT) == "scans/u1/scn_1/left.jpg"

    @pytest.mark.asyncio
    async def test_put_returns_deterministic_uri(self, store):
        """Writing the same key twice yields the same URL."""
        first = await store.put("u1", "scn_1", ScanAngle.FRONT, b"one")
        second = await store.put("u1", "scn_1", ScanAngle.FRONT, b"two")

        assert first == second == "gridfs://photos_fs/scans/u1/scn_1/front.jpg"

        args, kwargs = store._bucket.upload_from_stream.call_args
        assert args == ("scans/u1/scn_1/front.jpg", b"two")
        assert kwargs["metadata"]["angle"] == "front"
        assert kwargs["metadata"]["scan_id"] == "scn_1"

    @pytest.mark.asyncio
    async def test_put_removes_older_revisions(self, store, files):
        """Earlier uploads of the same path are deleted after the new one lands."""
        files.find.return_value = AsyncCursor([{"_id": "file_1"}, {"_id": "file_0"}])

        await store.put("u1", "scn_1", ScanAngle.BACK, b"data")

        files.find.assert_called_once_with(
            {"filename": "scans/u1/scn_1/back.jpg", "_id": {"$ne": "file_2"}}
        )
        deleted = [c.args[0] for c in store._bucket.delete.await_args_list]
        assert deleted == ["file_1", "file_0"]

    @pytest.mark.asyncio
    async def test_put_wraps_errors(self, store):
        store._bucket.upload_from_stream.side_effect = ConnectionError("socket closed")

        with pytest.raises(PhotoStoreError) as exc_info:
            await store.put("u1", "scn_1", ScanAngle.RIGHT, b"data")

        assert "right" in exc_info.value.message
        assert exc_info.value.details["scan_id"] == "scn_1"

    def test_parse_storage_uri(self):
        assert GridFSPhotoStore.parse_storage_uri("gridfs://b/scans/u/s/front.jpg") == (
            "b",
            "scans/u/s/front.jpg",
        )
        assert GridFSPhotoStore.parse_storage_uri("s3://b/key") is None
        assert GridFSPhotoStore.parse_storage_uri("gridfs://bucket-only") is None

    @pytest.mark.asyncio
    async def test_read_latest_revision(self, store):
        grid_out = MagicMock()
        grid_out.read = AsyncMock(return_value=b"jpeg")
        store._bucket.open_download_stream_by_name.return_value = grid_out

        data = await store.read("gridfs://photos_fs/scans/u1/scn_1/front.jpg")

        assert data == b"jpeg"
        store._bucket.open_download_stream_by_name.assert_awaited_once_with(
            "scans/u1/scn_1/front.jpg"
        )

    @pytest.mark.asyncio
    async def test_read_invalid_uri(self, store):
        with pytest.raises(PhotoStoreError, match="Invalid storage URI"):
            await store.read("https://example.com/front.jpg")

    @pytest.mark.asyncio
    async def test_read_bucket_mismatch(self, store):
        with pytest.raises(PhotoStoreError, match="Bucket mismatch"):
            await store.read("gridfs://other_fs/scans/u1/scn_1/front.jpg")

    @pytest.mark.asyncio
    async def test_read_missing_file(self, store):
        store._bucket.open_download_stream_by_name.side_effect = FileNotFoundError("gone")

        with pytest.raises(PhotoStoreError, match="Failed to download"):
            await store.read("gridfs://photos_fs/scans/u1/scn_1/front.jpg")

    @pytest.mark.asyncio
    async def test_delete_counts_files(self, store, files):
        files.find.return_value = AsyncCursor([{"_id": i} for i in range(4)])

        deleted = await store.delete("u1", "scn_1")

        assert deleted == 4
        files.find.assert_called_once_with({"metadata.user_id": "u1", "metadata.scan_id": "scn_1"})
        assert store._bucket.delete.await_count == 4

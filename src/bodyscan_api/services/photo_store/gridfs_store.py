"""GridFS storage for scan photos.

Each angle photo is stored under its deterministic path as the GridFS
filename. Re-uploading a path adds a new revision and removes the older ones,
so the URL stays the same and always resolves to the latest bytes.
"""

import logging
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorGridFSBucket

from bodyscan_api.models.scan import ScanAngle
from bodyscan_api.utils.dates import utc_now

from .base import PhotoStore, PhotoStoreError, photo_path

logger = logging.getLogger(__name__)

# Default bucket name for scan photos
GRIDFS_BUCKET_NAME = "scan_photos_fs"

URI_SCHEME = "gridfs://"


class GridFSPhotoStore(PhotoStore):
    """
    PhotoStore backed by MongoDB GridFS.

    Usage:
        store = GridFSPhotoStore(db)
        url = await store.put("user_1", "scn_...", ScanAngle.FRONT, data)
        data = await store.read(url)
        await store.delete("user_1", "scn_...")
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        bucket_name: str = GRIDFS_BUCKET_NAME,
    ):
        """
        Initialize GridFS photo store.

        Args:
            db: Motor database instance
            bucket_name: Name of the GridFS bucket
        """
        self._db = db
        self._bucket_name = bucket_name
        self._bucket: AsyncIOMotorGridFSBucket | None = None

    @property
    def bucket(self) -> AsyncIOMotorGridFSBucket:
        """Get or create the GridFS bucket (lazy initialization)."""
        if self._bucket is None:
            self._bucket = AsyncIOMotorGridFSBucket(
                self._db,
                bucket_name=self._bucket_name,
            )
        return self._bucket

    @property
    def files_collection(self):
        return self._db[f"{self._bucket_name}.files"]

    def generate_storage_uri(self, path: str) -> str:
        """
        Generate a storage URI for a photo path.

        Returns:
            URI in format: gridfs://bucket_name/{path}
        """
        return f"{URI_SCHEME}{self._bucket_name}/{path}"

    @staticmethod
    def parse_storage_uri(uri: str) -> tuple[str, str] | None:
        """
        Parse a GridFS storage URI.

        Returns:
            Tuple of (bucket_name, path) or None if invalid
        """
        if not uri.startswith(URI_SCHEME):
            return None

        parts = uri[len(URI_SCHEME):].split("/", 1)
        if len(parts) != 2 or not parts[1]:
            return None

        return parts[0], parts[1]

    async def put(self, user_id: str, scan_id: str, angle: ScanAngle, data: bytes) -> str:
        """
        Upload an angle photo, replacing any earlier upload of the same key.

        Raises:
            PhotoStoreError: If upload fails
        """
        path = photo_path(user_id, scan_id, angle)
        try:
            metadata: dict[str, Any] = {
                "user_id": user_id,
                "scan_id": scan_id,
                "angle": angle.value,
                "content_type": "image/jpeg",
                "uploaded_at": utc_now(),
            }

            file_id = await self.bucket.upload_from_stream(
                path,
                data,
                metadata=metadata,
            )

            # Drop older revisions so the key maps to exactly one object
            cursor = self.files_collection.find({"filename": path, "_id": {"$ne": file_id}})
            async for doc in cursor:
                await self.bucket.delete(doc["_id"])

            storage_uri = self.generate_storage_uri(path)

            logger.info(
                f"Uploaded {angle.value} for scan {scan_id}: "
                f"{len(data)} bytes -> {storage_uri}"
            )

            return storage_uri

        except Exception as e:
            logger.error(f"GridFS upload failed for {path}: {e}")
            raise PhotoStoreError(
                message=f"Failed to upload {angle.value} photo: {e}",
                details={
                    "scan_id": scan_id,
                    "angle": angle.value,
                    "size": len(data),
                },
            ) from e

    async def read(self, url: str) -> bytes:
        """
        Download the latest revision of a photo by its storage URI.

        Raises:
            PhotoStoreError: If URI is invalid or download fails
        """
        parsed = self.parse_storage_uri(url)
        if not parsed:
            raise PhotoStoreError(
                message=f"Invalid storage URI: {url}",
                details={"uri": url},
            )

        bucket_name, path = parsed

        if bucket_name != self._bucket_name:
            raise PhotoStoreError(
                message=f"Bucket mismatch: expected {self._bucket_name}, got {bucket_name}",
                details={"uri": url, "expected_bucket": self._bucket_name},
            )

        try:
            grid_out = await self.bucket.open_download_stream_by_name(path)
            data = await grid_out.read()
            logger.debug(f"Downloaded {path}: {len(data)} bytes")
            return data
        except Exception as e:
            logger.error(f"GridFS download failed for {url}: {e}")
            raise PhotoStoreError(
                message=f"Failed to download photo: {e}",
                details={"uri": url},
            ) from e

    async def delete(self, user_id: str, scan_id: str) -> int:
        """
        Delete all photos associated with a scan.

        Raises:
            PhotoStoreError: If the files cannot be listed or deleted
        """
        try:
            cursor = self.files_collection.find(
                {"metadata.user_id": user_id, "metadata.scan_id": scan_id}
            )

            deleted_count = 0
            async for doc in cursor:
                await self.bucket.delete(doc["_id"])
                deleted_count += 1

            logger.info(f"Deleted {deleted_count} GridFS files for scan {scan_id}")
            return deleted_count

        except Exception as e:
            logger.error(f"Failed to delete photos for {scan_id}: {e}")
            raise PhotoStoreError(
                message=f"Failed to delete scan photos: {e}",
                details={"scan_id": scan_id},
            ) from e

    async def ensure_indexes(self) -> None:
        """
        Ensure required indexes exist on GridFS collections.

        Should be called during application startup.
        """
        try:
            await self.files_collection.create_index(
                [("metadata.user_id", 1), ("metadata.scan_id", 1)],
                name="user_scan_idx",
            )
            logger.info(f"GridFS indexes ensured for bucket {self._bucket_name}")
        except Exception as e:
            logger.error(f"Failed to create GridFS indexes: {e}")

"""
Base classes for scan photo storage.

Photos are addressed by `(user_id, scan_id, angle)`, so writing the same key
twice replaces the object instead of creating a second one.
"""

from abc import ABC, abstractmethod
from typing import Any

from bodyscan_api.models.scan import ScanAngle


class PhotoStoreError(Exception):
    """Exception raised for photo storage operations."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


def photo_path(user_id: str, scan_id: str, angle: ScanAngle) -> str:
    """Storage path for a single scan photo."""
    return f"scans/{user_id}/{scan_id}/{angle.value}.jpg"


class PhotoStore(ABC):
    """Abstract object store for scan photos."""

    @abstractmethod
    async def put(self, user_id: str, scan_id: str, angle: ScanAngle, data: bytes) -> str:
        """
        Store one angle photo.

        Returns:
            Durable URL for the photo; identical for repeated writes of the same key

        Raises:
            PhotoStoreError: If the write fails
        """
        ...

    @abstractmethod
    async def read(self, url: str) -> bytes:
        """
        Read a photo back by the URL `put` returned.

        Raises:
            PhotoStoreError: If the URL is unknown or the read fails
        """
        ...

    @abstractmethod
    async def delete(self, user_id: str, scan_id: str) -> int:
        """
        Delete all angle photos of a scan.

        Returns:
            Number of deleted objects
        """
        ...

"""Scan photo storage: abstract contract plus the GridFS implementation."""

from .base import PhotoStore, PhotoStoreError, photo_path
from .gridfs_store import GridFSPhotoStore

__all__ = ["GridFSPhotoStore", "PhotoStore", "PhotoStoreError", "photo_path"]

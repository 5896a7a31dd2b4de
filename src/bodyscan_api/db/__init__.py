"""Database module - MongoDB connection, repositories, and the scan record store."""

from .mongo import MongoDB
from .store import MongoScanRecordStore, ScanRecordStore

__all__ = ["MongoDB", "MongoScanRecordStore", "ScanRecordStore"]

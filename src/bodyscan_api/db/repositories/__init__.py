"""Repository classes for database access."""

from .scans import ScanRepository
from .streaks import StreakRepository

__all__ = ["ScanRepository", "StreakRepository"]

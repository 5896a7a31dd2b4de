"""API routes."""

from . import scans, users

__all__ = ["scans", "users"]

"""Business logic services."""

from .pipeline import ScanPipeline
from .trends import TrendQueryService

__all__ = ["ScanPipeline", "TrendQueryService"]

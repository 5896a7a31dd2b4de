"""FastAPI dependency injection factories."""

from typing import Annotated

from fastapi import Depends, Request

from bodyscan_api.services.pipeline import ScanPipeline
from bodyscan_api.services.trends import TrendQueryService


def get_pipeline(request: Request) -> ScanPipeline:
    """
    Get the scan pipeline built at startup.

    Returns:
        ScanPipeline instance stored on app.state
    """
    return request.app.state.pipeline


def get_trend_service(request: Request) -> TrendQueryService:
    """
    Get the trend query service built at startup.

    Returns:
        TrendQueryService instance stored on app.state
    """
    return request.app.state.trend_service


# Type aliases for service dependencies
PipelineDep = Annotated[ScanPipeline, Depends(get_pipeline)]
TrendServiceDep = Annotated[TrendQueryService, Depends(get_trend_service)]

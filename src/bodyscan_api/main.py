"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bodyscan_api.api.routes import scans, users
from bodyscan_api.core.config import Settings, get_settings
from bodyscan_api.core.exceptions import APIError
from bodyscan_api.core.scheduler import start_scheduler, stop_scheduler
from bodyscan_api.db.mongo import MongoDB
from bodyscan_api.db.store import MongoScanRecordStore
from bodyscan_api.services.estimator import EstimatorError, get_estimator
from bodyscan_api.services.estimator.llm import get_estimator_info
from bodyscan_api.services.photo_store import GridFSPhotoStore
from bodyscan_api.services.pipeline import ScanPipeline
from bodyscan_api.services.trends import TrendQueryService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the database handle, stores, estimator and pipeline on startup
    and keeps them on app.state; tears them down on shutdown.
    """
    settings: Settings = app.state.settings
    logger.info(f"Starting {settings.app_name} v{settings.api_version}")
    logger.info(f"Connecting to MongoDB at {settings.mongo_uri[:20]}...")

    mongo = MongoDB(settings.mongo_uri, settings.db_name)
    db = mongo.get_database()

    store = MongoScanRecordStore(db, settings.scans_collection, settings.streaks_collection)
    photo_store = GridFSPhotoStore(db, bucket_name=settings.photo_bucket_name)
    await store.ensure_indexes()
    await photo_store.ensure_indexes()

    estimator = None
    try:
        estimator = get_estimator(settings, photo_loader=photo_store.read)
    except EstimatorError as e:
        logger.warning(f"Estimator unavailable ({e.error_code}): {e.message}. Scans will fail at estimation")

    pipeline = ScanPipeline(store, photo_store, estimator, settings)

    app.state.mongo = mongo
    app.state.pipeline = pipeline
    app.state.trend_service = TrendQueryService(store, settings)
    app.state.scheduler = start_scheduler(pipeline, settings)

    yield

    logger.info("Shutting down...")
    stop_scheduler(app.state.scheduler)
    await pipeline.drain()
    if estimator is not None:
        await estimator.close()
    mongo.close()
    logger.info("MongoDB connection closed")


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    settings = settings or get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        description="Daily body scan pipeline: photo upload, AI body composition estimates, trends and streaks",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        """Handle custom API errors."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.message,
                "details": exc.details,
            },
        )

    # Health check endpoint
    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        mongo: MongoDB | None = getattr(request.app.state, "mongo", None)
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.api_version,
            "mongodb": mongo.is_connected() if mongo else False,
            "estimator": get_estimator_info(settings),
        }

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": settings.app_name,
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    # Include routers
    app.include_router(scans.router, prefix="/scans", tags=["Scans"])
    app.include_router(users.router, prefix="/users", tags=["Users"])

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "bodyscan_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
    )

"""
Training Sync API

FastAPI application mirroring Strava activities for the training dashboard.
"""

from contextlib import asynccontextmanager
import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.db.session import init_db, AsyncSessionLocal
from app.api.v1.router import api_router
from app.features.strava.sync import BackgroundSweepScheduler, BackgroundSyncRunner


# === Logging Setup ===
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)
logger = logging.getLogger(__name__)


def _background_sync_wanted() -> bool:
    return settings.background_sync_enabled and settings.strava_configured


# === Lifespan ===
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    logger.info("Starting Training Sync API...")
    await init_db()
    logger.info("Database initialized")

    runner = None
    if _background_sync_wanted():
        runner = BackgroundSyncRunner(
            BackgroundSweepScheduler(AsyncSessionLocal),
            interval_seconds=settings.background_sync_interval_seconds,
        )
        await runner.start()
    app.state.background_sync = runner

    yield

    # Shutdown
    if runner:
        await runner.stop()
    logger.info("Shutting down...")


# === App Creation ===
app = FastAPI(
    title="Training Sync API",
    description="Strava activity sync for the training dashboard",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# === Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# === Routes ===
app.include_router(api_router, prefix="/api/v1")


# === Health Check ===
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}

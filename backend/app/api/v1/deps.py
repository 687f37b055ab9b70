"""
Shared route dependencies.
"""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.db.session import AsyncSessionLocal, get_async_db
from app.features.strava.sync import StravaSyncService, BackgroundSweepScheduler


def get_session_factory() -> async_sessionmaker:
    """Session factory for work that outlives the request (background tasks, sweeps)."""
    return AsyncSessionLocal


def get_sync_service(db: AsyncSession = Depends(get_async_db)) -> StravaSyncService:
    return StravaSyncService(db)


def get_sweep_scheduler(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> BackgroundSweepScheduler:
    return BackgroundSweepScheduler(session_factory)


def require_strava_configured() -> None:
    if not settings.strava_configured:
        raise HTTPException(status_code=503, detail="Strava integration not configured")


async def verify_api_key(authorization: str = Header(default="")) -> str:
    """Verify the bearer key protecting sync administration endpoints."""
    if not settings.background_sync_api_key:
        raise HTTPException(status_code=503, detail="Background sync API not configured")

    scheme, _, key = authorization.partition(" ")
    if scheme.lower() != "bearer" or key != settings.background_sync_api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return key

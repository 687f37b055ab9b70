"""
Background sync routes.

POST is called by an external scheduler (cron) with the background
sync API key as a bearer token.
"""

import logging
from dataclasses import asdict
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from app.api.v1.deps import get_sweep_scheduler, verify_api_key
from app.features.strava.config import SyncConfig
from app.features.strava.sync import BackgroundSweepScheduler, SweepOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync")


class SweepRequest(BaseModel):
    max_users: int = Field(default=SyncConfig.SWEEP_MAX_USERS, ge=1, le=1000)
    delay_between_users_ms: int = Field(default=SyncConfig.SWEEP_DELAY_BETWEEN_USERS_MS, ge=0)
    skip_recently_synced: bool = True
    min_minutes_since_last_sync: int = Field(
        default=int(SyncConfig.SWEEP_MIN_TIME_SINCE_LAST_SYNC.total_seconds() // 60),
        ge=0,
    )

    def to_options(self) -> SweepOptions:
        return SweepOptions(
            max_users=self.max_users,
            delay_between_users_ms=self.delay_between_users_ms,
            skip_recently_synced=self.skip_recently_synced,
            min_time_since_last_sync=timedelta(minutes=self.min_minutes_since_last_sync),
        )


@router.post("/background", dependencies=[Depends(verify_api_key)])
async def run_background_sync(
    request: Optional[SweepRequest] = Body(default=None),
    scheduler: BackgroundSweepScheduler = Depends(get_sweep_scheduler),
):
    """Run one sweep over connected users and return its statistics."""
    request = request or SweepRequest()
    stats = await scheduler.run_sweep(request.to_options())
    return {"status": "completed", "stats": asdict(stats)}


@router.get("/background")
async def background_sync_stats(
    scheduler: BackgroundSweepScheduler = Depends(get_sweep_scheduler),
):
    """Connected users, recently synced vs stale, expired tokens."""
    return await scheduler.get_sync_statistics()

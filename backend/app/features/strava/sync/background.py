"""
Background sync.

BackgroundSweepScheduler runs a quick sync for every connected user,
one at a time with a delay in between. BackgroundSyncRunner repeats
the sweep on a fixed interval while the app is running.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.shared.clock import Clock, utc_now, to_unix
from ..config import SyncConfig
from ..repository import StravaTokenRepository
from .service import StravaSyncService, SyncStrategy

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
ServiceFactory = Callable[[AsyncSession], StravaSyncService]


@dataclass
class SweepOptions:
    max_users: int = SyncConfig.SWEEP_MAX_USERS
    delay_between_users_ms: int = SyncConfig.SWEEP_DELAY_BETWEEN_USERS_MS
    skip_recently_synced: bool = True
    min_time_since_last_sync: timedelta = SyncConfig.SWEEP_MIN_TIME_SINCE_LAST_SYNC


@dataclass
class SweepStats:
    """Summary of one sweep."""

    users_processed: int = 0
    users_synced: int = 0
    users_skipped: int = 0
    activities_synced: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0


# =============================================================================
# Sweep
# =============================================================================

class BackgroundSweepScheduler:
    """
    Sequential quick sync over connected users.

    Usage:
        scheduler = BackgroundSweepScheduler(AsyncSessionLocal)
        stats = await scheduler.run_sweep(SweepOptions(max_users=50))

    Each user gets its own session. The sweep respects the sync gate and
    a failure for one user never aborts the sweep.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        service_factory: Optional[ServiceFactory] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utc_now,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self._sleep = sleep
        self._service_factory = service_factory or (
            lambda db: StravaSyncService(db, clock=clock)
        )

    async def run_sweep(self, options: Optional[SweepOptions] = None) -> SweepStats:
        options = options or SweepOptions()
        started = time.monotonic()
        stats = SweepStats()

        async with self.session_factory() as db:
            candidates = await StravaTokenRepository(db).get_sweep_candidates(options.max_users)

        cutoff = self.clock() - options.min_time_since_last_sync
        user_ids = []
        for user_id, last_sync in candidates:
            if options.skip_recently_synced and last_sync is not None and last_sync > cutoff:
                stats.users_skipped += 1
                continue
            user_ids.append(user_id)

        logger.info(
            f"Background sweep: {len(user_ids)} users to sync, "
            f"{stats.users_skipped} recently synced"
        )

        for index, user_id in enumerate(user_ids):
            if index > 0 and options.delay_between_users_ms > 0:
                await self._sleep(options.delay_between_users_ms / 1000)

            stats.users_processed += 1
            try:
                async with self.session_factory() as db:
                    outcome = await self._service_factory(db).run_sync(
                        user_id, SyncStrategy.quick()
                    )
            except Exception as e:
                logger.exception(f"Background sync crashed for user {user_id}")
                stats.errors.append(f"user {user_id}: {e}")
                continue

            if outcome.success:
                stats.users_synced += 1
                stats.activities_synced += outcome.new_activities
            elif outcome.gate_denied:
                stats.users_skipped += 1
            else:
                stats.errors.extend(f"user {user_id}: {message}" for message in outcome.errors)

        stats.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Background sweep done in {stats.duration_ms}ms: "
            f"{stats.users_synced}/{stats.users_processed} synced, "
            f"{stats.users_skipped} skipped, {stats.activities_synced} new activities, "
            f"{len(stats.errors)} errors"
        )
        return stats

    async def get_sync_statistics(
        self,
        min_time_since_last_sync: timedelta = SyncConfig.SWEEP_MIN_TIME_SINCE_LAST_SYNC,
    ) -> dict:
        """
        Connection overview for monitoring.

        Returns:
            {
                "connected_users": int,
                "recently_synced": int,  # within min_time_since_last_sync
                "stale": int,            # never synced or older than that
                "expired_tokens": int,   # access token past expiry (refreshable)
            }
        """
        async with self.session_factory() as db:
            rows = await StravaTokenRepository(db).get_connection_overview()

        now = self.clock()
        cutoff = now - min_time_since_last_sync
        now_ts = to_unix(now)

        recently_synced = sum(1 for _, _, last in rows if last is not None and last > cutoff)
        return {
            "connected_users": len(rows),
            "recently_synced": recently_synced,
            "stale": len(rows) - recently_synced,
            "expired_tokens": sum(1 for _, expires_at, _ in rows if expires_at <= now_ts),
        }


# =============================================================================
# Background Sync Runner
# =============================================================================

class BackgroundSyncRunner:
    """
    Periodic sweep loop.

    Call `start()` to begin background syncing.
    Call `stop()` to gracefully stop.

    Usage:
        runner = BackgroundSyncRunner(scheduler, interval_seconds=7200)
        await runner.start()
        # ... later ...
        await runner.stop()
    """

    def __init__(
        self,
        scheduler: BackgroundSweepScheduler,
        interval_seconds: float,
        options: Optional[SweepOptions] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self.options = options
        self.last_stats: Optional[SweepStats] = None
        self._sleep = sleep
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start background sync loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Background sync started (every {self.interval_seconds}s)")

    async def stop(self):
        """Stop background sync loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Background sync stopped")

    async def _run_loop(self):
        """Main sync loop."""
        while self._running:
            try:
                self.last_stats = await self.scheduler.run_sweep(self.options)
            except Exception as e:
                logger.error(f"Background sweep error: {e}")

            # Wait before next sweep
            await self._sleep(self.interval_seconds)

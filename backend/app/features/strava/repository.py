"""
Strava repositories.

Data access layer for Strava-related models.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, desc, delete, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.repository import BaseRepository
from .models import StravaToken, StravaActivity, SyncState


class StravaTokenRepository(BaseRepository[StravaToken]):
    """Repository for Strava OAuth credentials."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, StravaToken)

    async def get_by_user_id(self, user_id: str) -> StravaToken | None:
        return await self.get_by(user_id=user_id)

    async def get_by_athlete_id(self, athlete_id: int) -> StravaToken | None:
        """
        Get credential by Strava athlete ID.

        Args:
            athlete_id: Strava athlete ID (webhook owner_id)

        Returns:
            StravaToken if found, None otherwise
        """
        return await self.get_by(strava_athlete_id=athlete_id)

    async def delete_by_user_id(self, user_id: str) -> int:
        result = await self.db.execute(
            delete(StravaToken).where(StravaToken.user_id == user_id)
        )
        await self.db.flush()
        return result.rowcount

    async def release_athlete(self, athlete_id: int, keep_user_id: str) -> int:
        """
        Drop credentials for the athlete held by any other user.

        One Strava athlete maps to one local user; reconnecting the same
        athlete from another account moves the link.
        """
        result = await self.db.execute(
            delete(StravaToken)
            .where(StravaToken.strava_athlete_id == athlete_id)
            .where(StravaToken.user_id != keep_user_id)
        )
        await self.db.flush()
        return result.rowcount

    async def get_sweep_candidates(self, limit: int) -> list[tuple[str, datetime | None]]:
        """
        Users with a stored credential, least recently synced first.

        Returns:
            List of (user_id, last_activity_sync) tuples; users that never
            synced come first
        """
        result = await self.db.execute(
            select(StravaToken.user_id, SyncState.last_activity_sync)
            .outerjoin(SyncState, SyncState.user_id == StravaToken.user_id)
            .order_by(SyncState.last_activity_sync.asc().nulls_first(), StravaToken.id)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def get_connection_overview(self) -> list[tuple[str, int, datetime | None]]:
        """(user_id, expires_at, last_activity_sync) for every credential."""
        result = await self.db.execute(
            select(StravaToken.user_id, StravaToken.expires_at, SyncState.last_activity_sync)
            .outerjoin(SyncState, SyncState.user_id == StravaToken.user_id)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]


class StravaActivityRepository(BaseRepository[StravaActivity]):
    """Repository for mirrored Strava activities."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, StravaActivity)

    async def get_by_strava_id(self, user_id: str, strava_id: int) -> StravaActivity | None:
        """Get activity by its idempotency key (user_id, strava_id)."""
        return await self.get_by(user_id=user_id, strava_id=strava_id)

    async def delete_by_strava_id(self, user_id: str, strava_id: int) -> int:
        """
        Delete the activity if it exists.

        Returns:
            Number of rows deleted (0 when already gone)
        """
        result = await self.db.execute(
            delete(StravaActivity)
            .where(StravaActivity.user_id == user_id)
            .where(StravaActivity.strava_id == strava_id)
        )
        await self.db.flush()
        return result.rowcount

    async def count_user_activities(self, user_id: str) -> int:
        return await self.count(user_id=user_id)

    async def get_user_activities(
        self,
        user_id: str,
        sport_type: str | None = None,
        limit: int = 50,
        offset: int = 0
    ) -> list[StravaActivity]:
        """
        Get user activities, newest first.

        Args:
            user_id: User's ID
            sport_type: Filter by sport type (Run, Ride, ...)
            limit: Maximum activities to return
            offset: Pagination offset
        """
        query = (
            select(StravaActivity)
            .where(StravaActivity.user_id == user_id)
            .order_by(desc(StravaActivity.start_date))
            .offset(offset)
            .limit(limit)
        )
        if sport_type:
            query = query.where(StravaActivity.sport_type == sport_type)

        result = await self.db.execute(query)
        return list(result.scalars().all())


@dataclass
class SyncAttempt:
    """What one sync attempt did, as recorded into SyncState."""

    at: datetime
    success: bool
    mark_synced: bool
    new_activities: int = 0
    error_code: str | None = None
    error_message: str | None = None


class SyncStateRepository(BaseRepository[SyncState]):
    """Repository for per-user sync state."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, SyncState)

    async def get_by_user_id(self, user_id: str) -> SyncState | None:
        """
        Get a fresh copy of the user's sync state.

        Always re-reads the row so a state loaded earlier in the session
        is never trusted after another trigger wrote to it.
        """
        result = await self.db.execute(
            select(SyncState)
            .where(SyncState.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_enabled(self, user_id: str, enabled: bool) -> None:
        stmt = self.insert().values(user_id=user_id, sync_enabled=enabled)
        stmt = stmt.on_conflict_do_update(
            index_elements=[SyncState.user_id],
            set_={"sync_enabled": enabled},
        )
        await self.db.execute(stmt)
        await self.db.flush()

    async def record_attempt(self, user_id: str, attempt: SyncAttempt) -> SyncState:
        """
        Record a sync attempt with a single upsert.

        Counter arithmetic runs in the database against the stored row,
        so two triggers finishing at the same time never lose an increment.
        The daily counter restarts at 1 when last_sync_date is not today.

        Args:
            user_id: User's ID
            attempt: Outcome of the attempt

        Returns:
            Sync state as stored after the write
        """
        today = attempt.at.date()
        message = attempt.error_message[:500] if attempt.error_message else None

        values = {
            "user_id": user_id,
            "sync_enabled": True,
            "sync_requests_today": 1,
            "last_sync_date": today,
            "last_activity_sync": attempt.at if attempt.mark_synced else None,
            "total_activities_synced": attempt.new_activities,
            "consecutive_errors": 0 if attempt.success else 1,
            "last_error_code": None if attempt.success else attempt.error_code,
            "last_error_message": None if attempt.success else message,
            "last_error_at": None if attempt.success else attempt.at,
            "created_at": attempt.at,
            "updated_at": attempt.at,
        }

        updates = {
            "sync_requests_today": case(
                (SyncState.last_sync_date == today, SyncState.sync_requests_today + 1),
                else_=1,
            ),
            "last_sync_date": today,
            "total_activities_synced": SyncState.total_activities_synced + attempt.new_activities,
            "updated_at": attempt.at,
        }
        if attempt.mark_synced:
            updates["last_activity_sync"] = attempt.at
        if attempt.success:
            updates.update(
                consecutive_errors=0,
                last_error_code=None,
                last_error_message=None,
                last_error_at=None,
            )
        else:
            updates.update(
                consecutive_errors=SyncState.consecutive_errors + 1,
                last_error_code=attempt.error_code,
                last_error_message=message,
                last_error_at=attempt.at,
            )

        stmt = self.insert().values(**values).on_conflict_do_update(
            index_elements=[SyncState.user_id],
            set_=updates,
        )
        await self.db.execute(stmt)
        await self.db.flush()
        return await self.get_by_user_id(user_id)


"""
Activity merger.

Upserts remote activities into strava_activities keyed by
(user_id, strava_id). Re-merging the same activity is a no-op apart
from touching last_synced_at. The merger never deletes rows.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterable, Iterable, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.clock import Clock, utc_now, parse_iso
from ..errors import PersistenceError, RemoteFetchError
from ..models import StravaActivity
from ..repository import StravaActivityRepository

logger = logging.getLogger(__name__)

RemoteActivities = Union[AsyncIterable[dict], Iterable[dict]]

# "07:04 /km"
PACE_PATTERN = re.compile(r"(\d{1,2}):(\d{2})")

DEFAULT_BATCH_SIZE = 50


@dataclass
class MergeResult:
    """Counts of activities merged and committed."""

    processed: int = 0
    created: int = 0
    updated: int = 0

    def add(self, other: "MergeResult") -> None:
        self.processed += other.processed
        self.created += other.created
        self.updated += other.updated


# =============================================================================
# Field mapping
# =============================================================================

def safe_number(value: Any) -> Optional[float]:
    """
    Lenient numeric coercion for provider fields.

    Numbers pass through, numeric strings are parsed, pace strings
    ("07:04 /km") become seconds per km. Anything else is None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if value != value else float(value)  # NaN
    if isinstance(value, str):
        text = value.strip()
        if "/km" in text:
            match = PACE_PATTERN.search(text)
            if not match:
                return None
            return float(int(match.group(1)) * 60 + int(match.group(2)))
        try:
            return float(text)
        except ValueError:
            return None
    return None


def _required_number(value: Any) -> float:
    result = safe_number(value)
    return result if result is not None else 0.0


def _required_int(value: Any) -> int:
    return int(round(_required_number(value)))


def computed_fields(
    distance_m: float,
    moving_time_s: int,
    elevation_gain_m: Optional[float],
    start: Optional[datetime],
) -> dict:
    """Pace, climb rate and calendar buckets derived from provider fields."""
    distance_km = distance_m / 1000 if distance_m else 0

    pace = moving_time_s / distance_km if distance_km > 0 and moving_time_s else None
    elevation_per_km = (
        elevation_gain_m / distance_km
        if distance_km > 0 and elevation_gain_m is not None
        else None
    )

    fields = {
        "average_pace_s_per_km": round(pace, 2) if pace is not None else None,
        "elevation_per_km": round(elevation_per_km, 2) if elevation_per_km is not None else None,
        "week_number": None,
        "month_number": None,
        "year_number": None,
        "day_of_week": None,
    }
    if start:
        fields.update(
            week_number=start.isocalendar()[1],
            month_number=start.month,
            year_number=start.year,
            day_of_week=start.weekday(),
        )
    return fields


def activity_fields_from_remote(data: dict) -> dict:
    """
    Map a Strava activity summary to StravaActivity columns.

    Training-load columns are never part of the mapping.
    """
    start_date = parse_iso(data.get("start_date"))
    start_date_local = parse_iso(data.get("start_date_local"))

    distance_m = _required_number(data.get("distance"))
    moving_time_s = _required_int(data.get("moving_time"))
    elevation_gain_m = safe_number(data.get("total_elevation_gain"))
    avg_watts = safe_number(data.get("average_watts"))
    max_watts = safe_number(data.get("max_watts"))

    fields = {
        "name": data.get("name"),
        "sport_type": data.get("sport_type") or data.get("type") or "Unknown",
        "start_date": start_date,
        "start_date_local": start_date_local,
        "timezone": data.get("timezone"),
        "distance_m": distance_m,
        "moving_time_s": moving_time_s,
        "elapsed_time_s": _required_int(data.get("elapsed_time")),
        "elevation_gain_m": elevation_gain_m,
        "avg_speed_mps": safe_number(data.get("average_speed")),
        "max_speed_mps": safe_number(data.get("max_speed")),
        "avg_heartrate": safe_number(data.get("average_heartrate")),
        "max_heartrate": safe_number(data.get("max_heartrate")),
        "has_heartrate": bool(data.get("has_heartrate")),
        "avg_watts": avg_watts,
        "max_watts": max_watts,
        "weighted_avg_watts": safe_number(data.get("weighted_average_watts")),
        "kilojoules": safe_number(data.get("kilojoules")),
        "has_power": bool(data.get("device_watts") or avg_watts or max_watts),
        "avg_cadence": safe_number(data.get("average_cadence")),
        "trainer": bool(data.get("trainer")),
        "commute": bool(data.get("commute")),
        "manual": bool(data.get("manual")),
    }
    fields.update(
        computed_fields(distance_m, moving_time_s, elevation_gain_m, start_date_local or start_date)
    )
    return fields


def _parse_remote(data: Any) -> tuple[int, dict]:
    """
    Activity id and column values, or RemoteFetchError for a payload that
    cannot be stored (no id, no parseable start date).
    """
    try:
        strava_id = int(data["id"])
        fields = activity_fields_from_remote(data)
    except (KeyError, TypeError, ValueError, AttributeError, OverflowError) as e:
        raise RemoteFetchError(
            f"Malformed activity payload: {e!r}", body=repr(data)[:500]
        ) from e

    if fields["start_date"] is None:
        raise RemoteFetchError(
            f"Activity {strava_id} has no start_date", body=repr(data)[:500]
        )
    return strava_id, fields


async def _iterate(activities: RemoteActivities):
    if hasattr(activities, "__aiter__"):
        async for activity in activities:
            yield activity
    else:
        for activity in activities:
            yield activity


# =============================================================================
# Merger
# =============================================================================

class ActivityMerger:
    """
    Idempotent activity upsert.

    Usage:
        merger = ActivityMerger(db)
        result = await merger.merge(user_id, client.fetch_all(credential))

    Activities are committed in batches. When the source sequence raises
    (a later page failed), everything merged so far is committed before
    the error propagates, and `result` holds the committed counts.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utc_now,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.db = db
        self.clock = clock
        self.batch_size = batch_size
        self.activities = StravaActivityRepository(db)

    async def merge(
        self,
        user_id: str,
        activities: RemoteActivities,
        result: Optional[MergeResult] = None,
        force_update: bool = False,
    ) -> MergeResult:
        """
        Upsert every activity of the sequence.

        Args:
            user_id: Owner of the activities
            activities: Remote activities (sync or async iterable)
            result: Accumulator updated as batches commit; pass one in to
                read partial counts after a failure
            force_update: Rewrite mutable fields even when unchanged

        Returns:
            Committed counts

        Raises:
            PersistenceError: Database failure; earlier batches stay committed
            StravaError: Whatever the source sequence raised
        """
        result = result if result is not None else MergeResult()
        pending = MergeResult()

        try:
            async for data in _iterate(activities):
                status = await self._merge_one(user_id, data, force_update)
                pending.processed += 1
                if status == "created":
                    pending.created += 1
                elif status == "updated":
                    pending.updated += 1

                if pending.processed >= self.batch_size:
                    await self._commit(result, pending)
                    pending = MergeResult()

            await self._commit(result, pending)

        except PersistenceError:
            raise

        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Activity merge failed for user {user_id}: {e}")
            raise PersistenceError(f"Failed to store activities: {e}") from e

        except Exception:
            # Source failed mid-way: keep what was merged
            await self._commit(result, pending)
            raise

        logger.debug(
            f"Merged {result.processed} activities for user {user_id}: "
            f"{result.created} new, {result.updated} updated"
        )
        return result

    async def _commit(self, result: MergeResult, pending: MergeResult) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to commit activities: {e}") from e
        result.add(pending)

    async def _merge_one(self, user_id: str, data: dict, force_update: bool) -> str:
        """Upsert one activity. Returns "created", "updated" or "unchanged"."""
        strava_id, fields = _parse_remote(data)
        now = self.clock()

        existing = await self.activities.get_by_strava_id(user_id, strava_id)

        if existing is None:
            try:
                async with self.db.begin_nested():
                    self.db.add(StravaActivity(
                        user_id=user_id,
                        strava_id=strava_id,
                        created_at=now,
                        last_synced_at=now,
                        **fields,
                    ))
                    await self.db.flush()
                return "created"
            except IntegrityError:
                # Inserted concurrently by another trigger
                existing = await self.activities.get_by_strava_id(user_id, strava_id)
                if existing is None:
                    raise

        changed = force_update or any(
            getattr(existing, key) != value for key, value in fields.items()
        )
        if changed:
            for key, value in fields.items():
                setattr(existing, key, value)
        existing.last_synced_at = now
        await self.db.flush()

        return "updated" if changed else "unchanged"

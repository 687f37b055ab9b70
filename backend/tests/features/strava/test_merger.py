"""
Tests for ActivityMerger and the activity field mapping.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, func

from app.features.users.models import User
from app.features.strava.errors import RemoteFetchError
from app.features.strava.models import StravaActivity
from app.features.strava.sync.merger import (
    ActivityMerger,
    MergeResult,
    activity_fields_from_remote,
    safe_number,
)


@pytest.fixture
async def user_id(db) -> str:
    db.add(User(id="user-1"))
    await db.commit()
    return "user-1"


@pytest.fixture
def merger(db, clock) -> ActivityMerger:
    return ActivityMerger(db, clock=clock, batch_size=2)


async def count_activities(db) -> int:
    return (await db.execute(select(func.count()).select_from(StravaActivity))).scalar()


async def load(db, strava_id) -> StravaActivity:
    result = await db.execute(
        select(StravaActivity)
        .where(StravaActivity.strava_id == strava_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# =============================================================================
# Field mapping
# =============================================================================

class TestSafeNumber:

    @pytest.mark.parametrize("value,expected", [
        (12, 12.0),
        (3.5, 3.5),
        ("42.5", 42.5),
        (" 7 ", 7.0),
        ("07:04 /km", 424.0),
        ("5:30/km", 330.0),
        ("fast", None),
        ("", None),
        (None, None),
        (True, None),
        ({"a": 1}, None),
        (float("nan"), None),
    ])
    def test_coercion(self, value, expected):
        assert safe_number(value) == expected


class TestActivityFields:

    def test_maps_summary(self, make_activity):
        fields = activity_fields_from_remote(make_activity(1))

        assert fields["sport_type"] == "Run"
        assert fields["start_date"] == datetime(2024, 5, 10, 6, 30)
        assert fields["start_date_local"] == datetime(2024, 5, 10, 8, 30)
        assert fields["distance_m"] == 10000.0
        assert fields["moving_time_s"] == 3000
        assert fields["has_heartrate"] is True
        assert fields["has_power"] is False

    def test_computed_fields(self, make_activity):
        fields = activity_fields_from_remote(make_activity(1))

        assert fields["average_pace_s_per_km"] == 300.0
        assert fields["elevation_per_km"] == 12.0
        # 2024-05-10 is a Friday in ISO week 19
        assert fields["week_number"] == 19
        assert fields["month_number"] == 5
        assert fields["year_number"] == 2024
        assert fields["day_of_week"] == 4

    def test_sport_type_falls_back_to_type(self, make_activity):
        data = make_activity(1, type="Ride")
        del data["sport_type"]

        assert activity_fields_from_remote(data)["sport_type"] == "Ride"

    def test_missing_numbers(self, make_activity):
        data = make_activity(1, distance=None, moving_time="n/a", total_elevation_gain=None)

        fields = activity_fields_from_remote(data)

        assert fields["distance_m"] == 0
        assert fields["moving_time_s"] == 0
        assert fields["average_pace_s_per_km"] is None
        assert fields["elevation_per_km"] is None

    def test_power(self, make_activity):
        fields = activity_fields_from_remote(make_activity(1, average_watts=210, max_watts=450))

        assert fields["has_power"] is True
        assert fields["avg_watts"] == 210.0

    def test_never_maps_training_load(self, make_activity):
        fields = activity_fields_from_remote(make_activity(1, training_stress_score=80))

        assert "training_stress_score" not in fields
        assert "intensity_factor" not in fields


# =============================================================================
# Merge
# =============================================================================

class TestMerge:
    """Upsert keyed by (user_id, strava_id)."""

    async def test_inserts_new(self, db, merger, user_id, make_activity):
        result = await merger.merge(user_id, [make_activity(i) for i in range(1, 4)])

        assert result == MergeResult(processed=3, created=3, updated=0)
        assert await count_activities(db) == 3

    async def test_idempotent(self, db, merger, user_id, make_activity, clock):
        activities = [make_activity(i) for i in range(1, 6)]
        await merger.merge(user_id, activities)
        clock.advance(timedelta(hours=1))

        result = await merger.merge(user_id, activities)

        assert result == MergeResult(processed=5, created=0, updated=0)
        assert await count_activities(db) == 5
        # Timestamp touch only
        assert (await load(db, 1)).last_synced_at == clock()

    async def test_duplicates_within_one_batch(self, db, merger, user_id, make_activity):
        result = await merger.merge(user_id, [make_activity(7), make_activity(7)])

        assert result.created == 1
        assert await count_activities(db) == 1

    async def test_updates_changed_fields(self, db, merger, user_id, make_activity):
        await merger.merge(user_id, [make_activity(1), make_activity(2)])

        result = await merger.merge(user_id, [make_activity(1, name="Renamed", distance=12000.0), make_activity(2)])

        assert result == MergeResult(processed=2, created=0, updated=1)
        activity = await load(db, 1)
        assert activity.name == "Renamed"
        assert activity.distance_m == 12000.0
        assert activity.average_pace_s_per_km == 250.0

    async def test_leaves_training_load_untouched(self, db, merger, user_id, make_activity, clock):
        await merger.merge(user_id, [make_activity(1)])
        activity = await load(db, 1)
        activity.training_stress_score = 85.0
        activity.intensity_factor = 0.9
        await db.commit()

        await merger.merge(user_id, [make_activity(1, name="Changed")], force_update=True)

        activity = await load(db, 1)
        assert activity.name == "Changed"
        assert activity.training_stress_score == 85.0
        assert activity.intensity_factor == 0.9

    async def test_force_update_counts_as_updated(self, merger, user_id, make_activity):
        await merger.merge(user_id, [make_activity(1)])

        result = await merger.merge(user_id, [make_activity(1)], force_update=True)

        assert result.updated == 1

    async def test_same_strava_id_for_two_users(self, db, merger, user_id, make_activity):
        db.add(User(id="user-2"))
        await db.commit()

        await merger.merge(user_id, [make_activity(1)])
        result = await merger.merge("user-2", [make_activity(1)])

        assert result.created == 1
        assert await count_activities(db) == 2

    async def test_accepts_async_source(self, merger, user_id, make_activity):
        async def source():
            for i in range(1, 4):
                yield make_activity(i)

        result = await merger.merge(user_id, source())

        assert result.created == 3


class TestPartialFailure:
    """A failing source keeps everything merged before the failure."""

    async def test_commits_before_reraising(self, db, merger, user_id, make_activity):
        async def source():
            for i in range(1, 4):
                yield make_activity(i)
            raise RemoteFetchError("Strava API error: 500", status_code=500)

        result = MergeResult()
        with pytest.raises(RemoteFetchError):
            await merger.merge(user_id, source(), result=result)

        assert result == MergeResult(processed=3, created=3, updated=0)
        await db.rollback()
        assert await count_activities(db) == 3

    async def test_activity_without_id(self, db, merger, user_id, make_activity):
        broken = make_activity(3)
        del broken["id"]

        result = MergeResult()
        with pytest.raises(RemoteFetchError, match="Malformed activity payload"):
            await merger.merge(user_id, [make_activity(1), make_activity(2), broken], result=result)

        assert result.created == 2
        await db.rollback()
        assert await count_activities(db) == 2

    @pytest.mark.parametrize("start_date", ["not-a-date", None, 12345])
    async def test_unusable_start_date(self, db, merger, user_id, make_activity, start_date):
        broken = make_activity(2, start_date=start_date)

        with pytest.raises(RemoteFetchError) as exc_info:
            await merger.merge(user_id, [make_activity(1), broken])

        assert "'id': 2" in exc_info.value.body
        await db.rollback()
        assert await count_activities(db) == 1

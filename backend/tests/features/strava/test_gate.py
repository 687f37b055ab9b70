"""
Tests for the sync gate.

The gate is a pure function of (SyncState, now); no database needed.
"""

from datetime import datetime, timedelta

import pytest

from app.features.strava.models import SyncState
from app.features.strava.sync.gate import (
    GateDenialReason,
    effective_requests_today,
    evaluate,
)


NOW = datetime(2024, 5, 15, 12, 0, 0)


def make_state(**kwargs) -> SyncState:
    values = {
        "user_id": "user-1",
        "sync_enabled": True,
        "sync_requests_today": 0,
        "last_sync_date": NOW.date(),
        "last_activity_sync": None,
        "consecutive_errors": 0,
        "total_activities_synced": 0,
    }
    values.update(kwargs)
    return SyncState(**values)


# =============================================================================
# Rules
# =============================================================================

class TestEvaluate:
    """Rule order: disabled, daily limit, cooldown."""

    def test_missing_state_is_allowed(self):
        decision = evaluate(None, NOW)

        assert decision.allowed
        assert decision.reason is None

    def test_fresh_state_is_allowed(self):
        assert evaluate(make_state(), NOW).allowed

    def test_disabled(self):
        decision = evaluate(make_state(sync_enabled=False), NOW)

        assert not decision.allowed
        assert decision.reason == GateDenialReason.DISABLED
        assert decision.reason.value == "disabled"

    def test_disabled_wins_over_other_rules(self):
        state = make_state(
            sync_enabled=False,
            sync_requests_today=5,
            last_activity_sync=NOW - timedelta(minutes=1),
        )

        assert evaluate(state, NOW).reason == GateDenialReason.DISABLED

    def test_unset_enabled_flag_counts_as_enabled(self):
        assert evaluate(make_state(sync_enabled=None), NOW).allowed

    def test_daily_limit_reached(self):
        decision = evaluate(make_state(sync_requests_today=5), NOW)

        assert not decision.allowed
        assert decision.reason == GateDenialReason.DAILY_LIMIT
        assert decision.reason.value == "daily limit reached"

    def test_below_daily_limit(self):
        assert evaluate(make_state(sync_requests_today=4), NOW).allowed

    def test_daily_limit_checked_before_cooldown(self):
        state = make_state(sync_requests_today=5, last_activity_sync=NOW - timedelta(minutes=5))

        assert evaluate(state, NOW).reason == GateDenialReason.DAILY_LIMIT

    def test_cooldown(self):
        last = NOW - timedelta(minutes=30)
        decision = evaluate(make_state(sync_requests_today=1, last_activity_sync=last), NOW)

        assert not decision.allowed
        assert decision.reason == GateDenialReason.COOLDOWN
        assert decision.retry_at == last + timedelta(hours=1)

    def test_custom_limits(self):
        state = make_state(sync_requests_today=2, last_activity_sync=NOW - timedelta(minutes=10))

        assert evaluate(state, NOW, daily_limit=2).reason == GateDenialReason.DAILY_LIMIT
        assert evaluate(state, NOW, cooldown=timedelta(minutes=5)).allowed


class TestCooldownBoundary:
    """Varying only `now` flips the decision exactly at last sync + 1h."""

    LAST = datetime(2024, 5, 15, 10, 0, 0)

    @pytest.mark.parametrize("offset,allowed", [
        (timedelta(minutes=59, seconds=59), False),
        (timedelta(hours=1), True),
        (timedelta(hours=1, seconds=1), True),
    ])
    def test_boundary(self, offset, allowed):
        state = make_state(sync_requests_today=1, last_activity_sync=self.LAST)

        assert evaluate(state, self.LAST + offset).allowed is allowed

    def test_deterministic(self):
        state = make_state(sync_requests_today=3, last_activity_sync=self.LAST)
        now = self.LAST + timedelta(minutes=20)

        assert evaluate(state, now) == evaluate(state, now)


# =============================================================================
# Lazy daily reset
# =============================================================================

class TestDailyRollover:
    """A counter from a previous day reads as zero."""

    def test_yesterdays_counter_is_ignored(self):
        state = make_state(
            sync_requests_today=5,
            last_sync_date=(NOW - timedelta(days=1)).date(),
            last_activity_sync=NOW - timedelta(days=1),
        )

        assert effective_requests_today(state, NOW) == 0
        assert evaluate(state, NOW).allowed
        # Stored value untouched
        assert state.sync_requests_today == 5

    def test_todays_counter_is_used(self):
        assert effective_requests_today(make_state(sync_requests_today=3), NOW) == 3

    def test_missing_state(self):
        assert effective_requests_today(None, NOW) == 0

    def test_rollover_at_midnight_utc(self):
        state = make_state(sync_requests_today=5, last_sync_date=datetime(2024, 5, 14).date())

        assert not evaluate(state, datetime(2024, 5, 14, 23, 59)).allowed
        assert evaluate(state, datetime(2024, 5, 15, 0, 0)).allowed

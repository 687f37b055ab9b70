"""
Strava sync configuration constants.

Contains all configuration values for sync behavior.
"""

from datetime import timedelta


class SyncConfig:
    """Configuration for sync behavior."""

    # ==========================================================================
    # Gate
    # ==========================================================================
    # Sync attempts allowed per user per calendar day (UTC)
    DAILY_LIMIT = 5

    # Minimum time between two syncs for the same user
    COOLDOWN = timedelta(hours=1)

    # ==========================================================================
    # Strategies
    # ==========================================================================
    # Quick: newest page only
    QUICK_PER_PAGE = 50

    # Full: whole history, page by page (Strava max per_page is 200)
    FULL_PER_PAGE = 100
    FULL_MAX_ACTIVITIES = 5000

    # Hard ceiling on pages fetched in one sync
    MAX_PAGES = 100

    # ==========================================================================
    # Remote API pacing
    # ==========================================================================
    # Strava limits: 100 requests / 15 min, 1000 / day per application
    PAGE_DELAY_SECONDS = 1.0

    # 429 backoff: 2s, 4s, 8s then give up
    BACKOFF_INITIAL_SECONDS = 2.0
    BACKOFF_MAX_SECONDS = 8.0
    MAX_RATE_LIMIT_RETRIES = 3

    # ==========================================================================
    # Credentials
    # ==========================================================================
    # Refresh the access token if it expires within this margin
    TOKEN_REFRESH_MARGIN = timedelta(minutes=5)

    # ==========================================================================
    # Background sweep
    # ==========================================================================
    SWEEP_MAX_USERS = 100
    SWEEP_DELAY_BETWEEN_USERS_MS = 500
    SWEEP_MIN_TIME_SINCE_LAST_SYNC = timedelta(hours=2)

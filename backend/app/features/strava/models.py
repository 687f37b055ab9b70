"""
Strava-related database models.

Models:
- StravaToken: OAuth credential per user
- StravaActivity: Mirrored activity data
- SyncState: Per-user sync quota, cooldown and error tracking
"""

from datetime import datetime

from sqlalchemy import (
    Column, String, DateTime, Date, Integer, Float, Boolean,
    ForeignKey, BigInteger, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.models.base import Base


class StravaToken(Base):
    """
    Strava OAuth credential.

    Stores access and refresh tokens plus cached athlete display fields.
    Written only by CredentialStore; removed on de-authorization.
    Tokens should be encrypted in production.
    """

    __tablename__ = "strava_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)

    # Strava athlete info
    strava_athlete_id = Column(BigInteger, unique=True, nullable=False, index=True)
    athlete_firstname = Column(String(100), nullable=True)
    athlete_lastname = Column(String(100), nullable=True)
    athlete_profile = Column(String(500), nullable=True)  # Avatar URL

    # OAuth tokens (should be encrypted in production)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_type = Column(String(20), nullable=False, default="Bearer")
    expires_at = Column(Integer, nullable=False)  # Unix timestamp

    # Token scope
    scope = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")

    def expires_within(self, now_ts: int, margin_seconds: int) -> bool:
        """True if the access token expires within margin of now_ts."""
        return self.expires_at <= now_ts + margin_seconds

    def __repr__(self):
        return f"<StravaToken user_id={self.user_id} athlete_id={self.strava_athlete_id}>"


class StravaActivity(Base):
    """
    Activity mirrored from Strava.

    Keyed by (user_id, strava_id). Provider fields are refreshed on every
    sync that reports a change; training-load fields are computed locally
    by the analytics layer and never overwritten by sync.
    """

    __tablename__ = "strava_activities"
    __table_args__ = (
        UniqueConstraint("user_id", "strava_id", name="uq_strava_activities_user_strava"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    # Strava identifiers
    strava_id = Column(BigInteger, nullable=False, index=True)

    # Activity info
    name = Column(String(255), nullable=True)
    sport_type = Column(String(50), nullable=False)  # Run, TrailRun, Ride, ...
    start_date = Column(DateTime, nullable=False, index=True)  # UTC
    start_date_local = Column(DateTime, nullable=True)
    timezone = Column(String(100), nullable=True)

    # Core metrics
    distance_m = Column(Float, nullable=False, default=0)
    moving_time_s = Column(Integer, nullable=False, default=0)
    elapsed_time_s = Column(Integer, nullable=False, default=0)
    elevation_gain_m = Column(Float, nullable=True)

    # Speed
    avg_speed_mps = Column(Float, nullable=True)
    max_speed_mps = Column(Float, nullable=True)

    # Heart rate
    avg_heartrate = Column(Float, nullable=True)
    max_heartrate = Column(Float, nullable=True)
    has_heartrate = Column(Boolean, default=False)

    # Power
    avg_watts = Column(Float, nullable=True)
    max_watts = Column(Float, nullable=True)
    weighted_avg_watts = Column(Float, nullable=True)
    kilojoules = Column(Float, nullable=True)
    has_power = Column(Boolean, default=False)

    # Cadence
    avg_cadence = Column(Float, nullable=True)

    # Flags
    trainer = Column(Boolean, default=False)
    commute = Column(Boolean, default=False)
    manual = Column(Boolean, default=False)

    # Computed from provider fields on every merge
    average_pace_s_per_km = Column(Float, nullable=True)
    elevation_per_km = Column(Float, nullable=True)
    week_number = Column(Integer, nullable=True)
    month_number = Column(Integer, nullable=True)
    year_number = Column(Integer, nullable=True)
    day_of_week = Column(Integer, nullable=True)  # 0 = Monday

    # Training load (owned by analytics, untouched by sync)
    training_stress_score = Column(Float, nullable=True)
    intensity_factor = Column(Float, nullable=True)
    training_load_computed_at = Column(DateTime, nullable=True)

    # Sync metadata
    created_at = Column(DateTime, default=datetime.utcnow)
    last_synced_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User")

    def __repr__(self):
        return f"<StravaActivity {self.strava_id} {self.sport_type} {self.distance_m}m>"

    @property
    def distance_km(self) -> float:
        """Distance in kilometers."""
        return round(self.distance_m / 1000, 2) if self.distance_m else 0


class SyncState(Base):
    """
    Per-user sync bookkeeping.

    Holds the daily request counter (reset lazily when last_sync_date is
    not today), the cooldown timestamp and the error streak. Created on
    the first sync attempt and written once per attempt, never deleted.
    """

    __tablename__ = "sync_state"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)

    sync_enabled = Column(Boolean, nullable=False, default=True)

    # Quota
    sync_requests_today = Column(Integer, nullable=False, default=0)
    last_sync_date = Column(Date, nullable=True)

    # Cooldown
    last_activity_sync = Column(DateTime, nullable=True)

    # Errors
    consecutive_errors = Column(Integer, nullable=False, default=0)
    last_error_code = Column(String(50), nullable=True)
    last_error_message = Column(String(500), nullable=True)
    last_error_at = Column(DateTime, nullable=True)

    total_activities_synced = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return (
            f"<SyncState user_id={self.user_id} "
            f"requests_today={self.sync_requests_today} errors={self.consecutive_errors}>"
        )

"""
Strava Routes

Endpoints for Strava integration:
- /auth/strava - Initiate OAuth flow
- /auth/strava/callback - Handle OAuth callback
- /strava/status - Check connection status
- /strava/disconnect - Disconnect Strava
- /strava/sync - Trigger a sync / read sync status
- /strava/activities - List mirrored activities
"""

import html
import secrets
import logging
from datetime import date, datetime, timedelta
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import RedirectResponse, HTMLResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.v1.deps import get_session_factory, get_sync_service, require_strava_configured
from app.config import settings
from app.db.session import get_async_db
from app.shared.clock import utc_now
from app.features.users import UserRepository
from app.features.strava import (
    CredentialStore,
    CredentialInvalid,
    StravaOAuth,
    StravaActivityRepository,
    SyncStateRepository,
)
from app.features.strava.sync import StravaSyncService, SyncStrategy, SyncOutcome

logger = logging.getLogger(__name__)

router = APIRouter()

# CSRF state -> {user_id, created_at}; single process only
_oauth_states: dict[str, dict] = {}
OAUTH_STATE_TTL = timedelta(minutes=10)


# =============================================================================
# Schemas
# =============================================================================

class StravaStatus(BaseModel):
    connected: bool
    athlete_id: Optional[int] = None
    athlete_name: Optional[str] = None
    athlete_profile: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[int] = None
    connected_at: Optional[datetime] = None


class SyncRequest(BaseModel):
    """Manual sync options."""
    strategy: Literal["quick", "full", "custom"] = "quick"
    max_activities: Optional[int] = Field(default=None, ge=1)
    since_days: Optional[int] = Field(default=None, ge=1)
    since: Optional[datetime] = None
    per_page: Optional[int] = Field(default=None, ge=1, le=200)
    force_refresh: bool = False

    def to_strategy(self) -> SyncStrategy:
        if self.strategy == "full":
            return SyncStrategy.full()
        if self.strategy == "custom":
            return SyncStrategy.custom(
                max_activities=self.max_activities,
                since_days=self.since_days,
                since=self.since,
                per_page=self.per_page,
                force_refresh=self.force_refresh,
            )
        return SyncStrategy.quick()


class SyncOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    activities_processed: int
    new_activities: int
    updated_activities: int
    duration_ms: int
    errors: list[str]
    gate_denied_reason: Optional[str] = None
    retry_at: Optional[datetime] = None


class SyncStateSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sync_enabled: bool
    sync_requests_today: int
    last_sync_date: Optional[date] = None
    last_activity_sync: Optional[datetime] = None
    consecutive_errors: int
    last_error_code: Optional[str] = None
    last_error_message: Optional[str] = None
    last_error_at: Optional[datetime] = None
    total_activities_synced: int


class SyncStatusResponse(BaseModel):
    sync_state: Optional[SyncStateSchema] = None
    activity_count: int
    can_sync: bool
    sync_disabled_reason: Optional[str] = None
    retry_at: Optional[datetime] = None


class SyncEnabledRequest(BaseModel):
    enabled: bool


class ActivitySummary(BaseModel):
    """Activity summary for API response."""
    model_config = ConfigDict(from_attributes=True)

    strava_id: int
    name: Optional[str]
    sport_type: str
    start_date: datetime
    distance_km: float
    moving_time_s: int
    elevation_gain_m: Optional[float]
    average_pace_s_per_km: Optional[float]
    avg_heartrate: Optional[float]


class ActivitiesResponse(BaseModel):
    """Response with list of activities."""
    activities: list[ActivitySummary]
    total_count: int


# =============================================================================
# OAuth Flow
# =============================================================================

@router.get("/auth/strava", dependencies=[Depends(require_strava_configured)])
async def strava_auth(user_id: str = Query(..., description="Dashboard user ID")):
    """
    Initiate Strava OAuth flow.

    Redirects the browser to the Strava consent screen.
    """
    now = utc_now()
    _prune_oauth_states(now)

    # Generate state for CSRF protection
    state = secrets.token_urlsafe(32)
    _oauth_states[state] = {
        "user_id": user_id,
        "created_at": now,
    }

    auth_url = StravaOAuth().get_authorization_url(
        redirect_uri=_get_callback_url(),
        state=state,
    )

    logger.info(f"Strava OAuth initiated for user {user_id}")

    return RedirectResponse(url=auth_url)


@router.get("/auth/strava/callback", dependencies=[Depends(require_strava_configured)])
async def strava_callback(
    background_tasks: BackgroundTasks,
    code: str = Query(None),
    scope: str = Query(None),
    state: str = Query(None),
    error: str = Query(None),
    db: AsyncSession = Depends(get_async_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """
    Handle Strava OAuth callback.

    Exchanges the code for tokens, stores them and queues a first sync.
    """
    # Handle errors
    if error:
        logger.warning(f"Strava OAuth error: {error}")
        return _result_page("Strava authorization declined", error, status_code=400)

    # Validate state
    if not state or state not in _oauth_states:
        logger.warning("Invalid OAuth state")
        return _result_page("Session expired", "Please try connecting again.", status_code=400)

    pending = _oauth_states.pop(state)
    if utc_now() - pending["created_at"] > OAUTH_STATE_TTL:
        logger.warning("Expired OAuth state")
        return _result_page("Session expired", "Please try connecting again.", status_code=400)

    user_id = pending["user_id"]
    await UserRepository(db).get_or_create(user_id)

    try:
        token = await CredentialStore(db).exchange_code(user_id, code, scope=scope)
    except CredentialInvalid as e:
        logger.error(f"Token exchange failed: {e}")
        return _result_page("Connection failed", "Strava did not accept the authorization.", status_code=400)

    background_tasks.add_task(_initial_sync, user_id, session_factory)

    return _result_page(
        f"Hi, {token.athlete_firstname or 'athlete'}!",
        "Strava is connected. Your activities are being imported.",
    )


# =============================================================================
# Status & Disconnect
# =============================================================================

@router.get("/strava/status/{user_id}", response_model=StravaStatus)
async def get_strava_status(user_id: str, db: AsyncSession = Depends(get_async_db)):
    """Check Strava connection status for a user. Tokens are never returned."""
    token = await CredentialStore(db).get(user_id)

    if not token:
        return StravaStatus(connected=False)

    name = " ".join(filter(None, [token.athlete_firstname, token.athlete_lastname]))
    return StravaStatus(
        connected=True,
        athlete_id=token.strava_athlete_id,
        athlete_name=name or None,
        athlete_profile=token.athlete_profile,
        scope=token.scope,
        expires_at=token.expires_at,
        connected_at=token.created_at,
    )


@router.post("/strava/disconnect/{user_id}")
async def disconnect_strava(user_id: str, db: AsyncSession = Depends(get_async_db)):
    """
    Disconnect Strava account.

    - Revokes access at Strava (best effort)
    - Deletes stored tokens
    """
    store = CredentialStore(db)
    token = await store.get(user_id)

    if not token:
        raise HTTPException(status_code=404, detail="Strava not connected")

    try:
        await store.oauth.deauthorize(token.access_token)
    except Exception as e:
        logger.warning(f"Strava deauthorize failed: {e}")

    await store.revoke(user_id)

    logger.info(f"Strava disconnected for user {user_id}")

    return {"status": "disconnected"}


# =============================================================================
# Sync
# =============================================================================

@router.post("/strava/sync/{user_id}", response_model=SyncOutcomeResponse)
async def trigger_sync(
    user_id: str,
    request: Optional[SyncRequest] = Body(default=None),
    db: AsyncSession = Depends(get_async_db),
    service: StravaSyncService = Depends(get_sync_service),
):
    """
    Manually trigger a sync for a user.

    Returns 200 with the outcome on success, 429 when the sync gate denies
    the request and 422 when the sync ran but failed.
    """
    if not await CredentialStore(db).get(user_id):
        raise HTTPException(status_code=404, detail="Strava not connected")

    request = request or SyncRequest()
    outcome = await service.run_sync(user_id, request.to_strategy())

    if outcome.success:
        return _outcome_response(outcome)
    if outcome.gate_denied:
        return JSONResponse(status_code=429, content=jsonable_encoder(_outcome_response(outcome)))
    return JSONResponse(status_code=422, content=jsonable_encoder(_outcome_response(outcome)))


@router.get("/strava/sync/{user_id}", response_model=SyncStatusResponse)
async def get_user_sync_status(
    user_id: str,
    service: StravaSyncService = Depends(get_sync_service),
):
    """Get sync status for a user."""
    status = await service.get_sync_status(user_id)
    return SyncStatusResponse(
        sync_state=(
            SyncStateSchema.model_validate(status["sync_state"])
            if status["sync_state"] else None
        ),
        activity_count=status["activity_count"],
        can_sync=status["can_sync"],
        sync_disabled_reason=status["sync_disabled_reason"],
        retry_at=status["retry_at"],
    )


@router.put("/strava/sync/{user_id}/enabled")
async def set_sync_enabled(
    user_id: str,
    request: SyncEnabledRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """Enable or disable syncing for a user."""
    await SyncStateRepository(db).set_enabled(user_id, request.enabled)
    await db.commit()
    return {"user_id": user_id, "sync_enabled": request.enabled}


# =============================================================================
# Activities
# =============================================================================

@router.get("/strava/activities/{user_id}", response_model=ActivitiesResponse)
async def get_strava_activities(
    user_id: str,
    sport_type: Optional[str] = Query(None, description="Filter by sport type: Run, Ride, ..."),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_async_db)
):
    """
    Get synced activities for a user.

    Returns activities from local database (not live from Strava).
    """
    repo = StravaActivityRepository(db)
    activities = await repo.get_user_activities(user_id, sport_type, limit, offset)
    total = await repo.count(user_id=user_id, **({"sport_type": sport_type} if sport_type else {}))

    return ActivitiesResponse(
        activities=[ActivitySummary.model_validate(a) for a in activities],
        total_count=total,
    )


# =============================================================================
# Helper Functions
# =============================================================================

def _get_callback_url() -> str:
    """Get OAuth callback URL."""
    return f"{settings.base_url.rstrip('/')}/api/v1/auth/strava/callback"


def _outcome_response(outcome: SyncOutcome) -> SyncOutcomeResponse:
    return SyncOutcomeResponse.model_validate(outcome)


async def _initial_sync(user_id: str, session_factory: async_sessionmaker):
    """First sync after connecting, in its own session."""
    try:
        async with session_factory() as db:
            await StravaSyncService(db).run_sync(user_id, SyncStrategy.quick())
    except Exception:
        logger.exception(f"Initial sync failed for user {user_id}")


def _prune_oauth_states(now: datetime) -> None:
    """Drop pending states older than OAUTH_STATE_TTL."""
    expired = [
        key for key, pending in _oauth_states.items()
        if now - pending["created_at"] > OAUTH_STATE_TTL
    ]
    for key in expired:
        del _oauth_states[key]


def _result_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    """Minimal page shown in the browser after the OAuth round trip."""
    title = html.escape(title)
    message = html.escape(message)
    page = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="utf-8">
        <meta name="viewport" content="width=device-width, initial-scale=1">
        <title>{title}</title>
    </head>
    <body style="font-family: sans-serif; text-align: center; padding: 40px;">
        <h1>{title}</h1>
        <p>{message}</p>
    </body>
    </html>
    """
    return HTMLResponse(content=page, status_code=status_code)

"""
Strava webhook routes.

- GET  /webhooks/strava - subscription handshake
- POST /webhooks/strava - event intake, processed after the response
- /webhooks/strava/subscription - manage the push subscription
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.v1.deps import get_session_factory, require_strava_configured, verify_api_key
from app.config import settings
from app.features.strava import StravaWebhookSubscriptions, RemoteFetchError
from app.features.strava.webhooks import StravaWebhookEvent, WebhookProcessor, verify_subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/strava")


@router.get("")
async def strava_webhook_handshake(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Echo the challenge back when Strava validates the callback."""
    echoed = verify_subscription(mode, token, challenge, settings.strava_webhook_verify_token)
    if echoed is None:
        logger.warning("Rejected Strava webhook handshake")
        raise HTTPException(status_code=403, detail="Verification failed")
    return {"hub.challenge": echoed}


@router.post("")
async def strava_webhook_event(
    event: StravaWebhookEvent,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """
    Receive a Strava event.

    Strava expects a 200 within two seconds, so processing happens after
    the response.
    """
    background_tasks.add_task(process_event, event, session_factory)
    return {"status": "received"}


async def process_event(event: StravaWebhookEvent, session_factory: async_sessionmaker):
    try:
        async with session_factory() as db:
            await WebhookProcessor(db).process_webhook_event(event)
    except Exception:
        logger.exception(
            f"Failed to process Strava webhook {event.object_type}.{event.aspect_type} "
            f"for owner {event.owner_id}"
        )


# =============================================================================
# Subscription management
# =============================================================================

def _callback_url() -> str:
    return f"{settings.base_url.rstrip('/')}/api/v1/webhooks/strava"


@router.post(
    "/subscription",
    dependencies=[Depends(verify_api_key), Depends(require_strava_configured)],
)
async def create_subscription():
    """Create the push subscription unless one already exists."""
    try:
        return await StravaWebhookSubscriptions().ensure_subscription(_callback_url())
    except RemoteFetchError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get(
    "/subscription",
    dependencies=[Depends(verify_api_key), Depends(require_strava_configured)],
)
async def list_subscriptions():
    try:
        return await StravaWebhookSubscriptions().list_subscriptions()
    except RemoteFetchError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.delete(
    "/subscription/{subscription_id}",
    dependencies=[Depends(verify_api_key), Depends(require_strava_configured)],
)
async def delete_subscription(subscription_id: int):
    try:
        await StravaWebhookSubscriptions().delete_subscription(subscription_id)
    except RemoteFetchError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "deleted", "subscription_id": subscription_id}

"""
Strava push-subscription events.

Events arrive as
    {"object_type": "activity", "object_id": 555, "aspect_type": "create",
     "owner_id": 999, "subscription_id": 1, "event_time": 1716000000,
     "updates": {}}

and are dispatched by (object_type, aspect_type):
- activity.create / activity.update -> quick sync, bypassing the gate
- activity.delete                   -> delete the local activity
- athlete.update, authorized=false  -> revoke the credential

Deliveries may be duplicated; every path is idempotent.
"""

import logging
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .credentials import CredentialStore
from .repository import StravaActivityRepository
from .sync.service import StravaSyncService, SyncStrategy

logger = logging.getLogger(__name__)


class StravaWebhookEvent(BaseModel):
    """Event body posted by Strava."""

    object_type: str
    object_id: int
    aspect_type: str
    owner_id: int
    subscription_id: Optional[int] = None
    event_time: Optional[int] = None
    updates: dict[str, Any] = Field(default_factory=dict)

    @property
    def deauthorized(self) -> bool:
        return str(self.updates.get("authorized", "")).lower() == "false"


class WebhookAction(str, Enum):
    SYNCED = "synced"
    SYNC_FAILED = "sync_failed"
    DELETED = "deleted"
    REVOKED = "revoked"
    UNKNOWN_ATHLETE = "unknown_athlete"
    IGNORED = "ignored"


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    expected_token: Optional[str],
) -> Optional[str]:
    """
    Subscription handshake.

    Returns:
        The challenge to echo back, or None if the request is not a valid
        subscribe handshake for our verify token
    """
    if mode != "subscribe" or not challenge or not expected_token:
        return None
    if token != expected_token:
        return None
    return challenge


class WebhookProcessor:
    """
    Applies Strava webhook events.

    Usage:
        processor = WebhookProcessor(db)
        action = await processor.process_webhook_event(event)
    """

    def __init__(
        self,
        db: AsyncSession,
        sync_service: StravaSyncService | None = None,
        credentials: CredentialStore | None = None,
    ):
        self.db = db
        self.sync_service = sync_service or StravaSyncService(db)
        self.credentials = credentials or self.sync_service.credentials
        self.activities = StravaActivityRepository(db)

    async def process_webhook_event(self, event: StravaWebhookEvent) -> WebhookAction:
        logger.info(
            f"Strava webhook: {event.object_type}.{event.aspect_type} "
            f"object={event.object_id} owner={event.owner_id}"
        )

        token = await self.credentials.get_by_athlete_id(event.owner_id)
        if token is None:
            logger.warning(f"Dropping webhook for unknown athlete {event.owner_id}")
            return WebhookAction.UNKNOWN_ATHLETE
        user_id = token.user_id

        if event.object_type == "activity":
            if event.aspect_type in ("create", "update"):
                return await self._sync(user_id)
            if event.aspect_type == "delete":
                return await self._delete(user_id, event.object_id)

        elif event.object_type == "athlete":
            if event.aspect_type == "update" and event.deauthorized:
                await self.credentials.revoke(user_id)
                logger.info(f"Athlete {event.owner_id} deauthorized, user {user_id} disconnected")
                return WebhookAction.REVOKED

        logger.debug(f"Ignoring webhook {event.object_type}.{event.aspect_type}")
        return WebhookAction.IGNORED

    async def _sync(self, user_id: str) -> WebhookAction:
        try:
            outcome = await self.sync_service.run_sync(
                user_id, SyncStrategy.quick(), bypass_gate=True
            )
        except Exception:
            logger.exception(f"Webhook sync crashed for user {user_id}")
            return WebhookAction.SYNC_FAILED

        if not outcome.success:
            logger.warning(f"Webhook sync failed for user {user_id}: {outcome.errors}")
            return WebhookAction.SYNC_FAILED
        return WebhookAction.SYNCED

    async def _delete(self, user_id: str, strava_id: int) -> WebhookAction:
        deleted = await self.activities.delete_by_strava_id(user_id, strava_id)
        await self.db.commit()
        logger.info(f"Deleted activity {strava_id} for user {user_id} ({deleted} rows)")
        return WebhookAction.DELETED

"""
Strava credential lifecycle.

CredentialStore is the only writer of StravaToken rows: it stores the
pair obtained from the OAuth code exchange, refreshes it when it is
about to expire and deletes it on de-authorization.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.clock import Clock, utc_now, to_unix
from .config import SyncConfig
from .errors import CredentialInvalid, PersistenceError, StravaOAuthError
from .models import StravaToken
from .oauth import StravaOAuth
from .repository import StravaTokenRepository

logger = logging.getLogger(__name__)


def _token_fields(token_data: dict) -> dict:
    """
    Token columns from a Strava token endpoint response.

    refresh_token and token_type are only included when Strava sent them.

    Raises:
        CredentialInvalid: access_token or expires_at missing or unusable
    """
    try:
        access_token = token_data["access_token"]
        expires_at = int(token_data["expires_at"])
    except (KeyError, TypeError, ValueError) as e:
        raise CredentialInvalid(f"Incomplete token response from Strava: {e!r}") from e
    if not isinstance(access_token, str) or not access_token:
        raise CredentialInvalid("Incomplete token response from Strava: empty access_token")

    fields = {"access_token": access_token, "expires_at": expires_at}
    if token_data.get("refresh_token"):
        fields["refresh_token"] = token_data["refresh_token"]
    if token_data.get("token_type"):
        fields["token_type"] = token_data["token_type"]
    return fields


class CredentialStore:
    """
    Persists and refreshes Strava tokens per user.

    Usage:
        store = CredentialStore(db)
        credential = await store.exchange_code(user_id, code)
        credential = await store.ensure_fresh(user_id)
        await store.revoke(user_id)

    Credentials are re-read from the database on every call, never cached.
    """

    def __init__(
        self,
        db: AsyncSession,
        oauth: StravaOAuth | None = None,
        clock: Clock = utc_now,
        refresh_margin: timedelta = SyncConfig.TOKEN_REFRESH_MARGIN,
    ):
        self.db = db
        self.oauth = oauth or StravaOAuth()
        self.clock = clock
        self.refresh_margin = refresh_margin
        self.tokens = StravaTokenRepository(db)

    async def get(self, user_id: str) -> StravaToken | None:
        """Stored credential for the user, or None if not connected."""
        return await self.tokens.get_by_user_id(user_id)

    async def get_by_athlete_id(self, athlete_id: int) -> StravaToken | None:
        return await self.tokens.get_by_athlete_id(athlete_id)

    async def exchange_code(self, user_id: str, code: str, scope: str | None = None) -> StravaToken:
        """
        Exchange an OAuth authorization code and store the credential.

        Args:
            user_id: Dashboard user ID
            code: Authorization code from the Strava callback
            scope: Scope string Strava reported on the callback

        Returns:
            Stored credential

        Raises:
            CredentialInvalid: If Strava rejects the code or answers
                without a usable token pair
            PersistenceError: If the credential cannot be written
        """
        try:
            token_data = await self.oauth.exchange_code(code)
        except StravaOAuthError as e:
            raise CredentialInvalid(f"Authorization code rejected: {e}") from e

        athlete = token_data.get("athlete") or {}
        try:
            athlete_id = int(athlete["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise CredentialInvalid(f"Token response has no athlete id: {e!r}") from e

        token_fields = _token_fields(token_data)
        if "refresh_token" not in token_fields:
            raise CredentialInvalid("Incomplete token response from Strava: no refresh_token")

        fields = {
            "strava_athlete_id": athlete_id,
            "athlete_firstname": athlete.get("firstname"),
            "athlete_lastname": athlete.get("lastname"),
            "athlete_profile": athlete.get("profile"),
            "token_type": "Bearer",
            **token_fields,
            "scope": scope,
            "updated_at": self.clock(),
        }

        try:
            await self.tokens.release_athlete(athlete_id, keep_user_id=user_id)
            existing = await self.tokens.get_by_user_id(user_id)
            if existing:
                token = await self.tokens.update(existing, **fields)
            else:
                token = await self.tokens.create(user_id=user_id, **fields)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to store Strava credential: {e}") from e

        logger.info(f"Stored Strava credential for user {user_id} (athlete {athlete_id})")
        return token

    async def ensure_fresh(self, user_id: str) -> StravaToken:
        """
        Credential valid for at least the refresh margin.

        Refreshes through the Strava token endpoint and persists the new
        pair when the stored token is expired or about to expire.

        Raises:
            CredentialInvalid: No credential stored, or the refresh failed
                or returned an incomplete pair
            PersistenceError: Credential could not be read or written
        """
        try:
            token = await self.tokens.get_by_user_id(user_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read Strava credential: {e}") from e
        if not token:
            raise CredentialInvalid(f"User {user_id} has no Strava connection")

        now = self.clock()
        if not token.expires_within(to_unix(now), int(self.refresh_margin.total_seconds())):
            return token

        logger.info(f"Refreshing Strava token for user {user_id}")
        try:
            new_tokens = await self.oauth.refresh_token(token.refresh_token)
        except StravaOAuthError as e:
            raise CredentialInvalid(f"Token refresh failed: {e}") from e
        fields = _token_fields(new_tokens)

        try:
            token = await self.tokens.update(token, updated_at=now, **fields)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to store refreshed Strava token: {e}") from e
        return token

    async def revoke(self, user_id: str) -> bool:
        """
        Delete the user's credential.

        Returns:
            True if a credential was deleted
        """
        deleted = await self.tokens.delete_by_user_id(user_id)
        await self.db.commit()
        if deleted:
            logger.info(f"Revoked Strava credential for user {user_id}")
        return bool(deleted)

    def is_connected(self, token: StravaToken | None, now: datetime | None = None) -> bool:
        """True if the stored access token is usable without a refresh."""
        if token is None:
            return False
        now = now or self.clock()
        return not token.expires_within(to_unix(now), int(self.refresh_margin.total_seconds()))

"""
Strava OAuth flow.

Handles:
- Authorization URL generation
- Code exchange for tokens
- Token refresh
- Token revocation (deauthorization)
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional
from urllib.parse import urlencode

import httpx

from app.config import settings
from .errors import StravaOAuthError

logger = logging.getLogger(__name__)


class StravaOAuth:
    """
    Strava OAuth handler.

    Usage:
        oauth = StravaOAuth()
        auth_url = oauth.get_authorization_url(
            redirect_uri="https://example.com/callback",
            state="csrf-token"
        )
        tokens = await oauth.exchange_code(code)
        tokens = await oauth.refresh_token(refresh_token)

    Pass `http_client` to share a connection pool (or a mock transport
    in tests); otherwise a short-lived client is created per call.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.client_id = client_id or settings.strava_client_id
        self.client_secret = client_secret or settings.strava_client_secret
        self.base_url = (base_url or settings.strava_oauth_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self._http_client = http_client

    @property
    def authorize_url(self) -> str:
        return f"{self.base_url}/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/token"

    @property
    def deauthorize_url(self) -> str:
        return f"{self.base_url}/deauthorize"

    @asynccontextmanager
    async def _client(self):
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    def get_authorization_url(
        self,
        redirect_uri: str,
        state: Optional[str] = None,
        scope: str = "read,activity:read_all"
    ) -> str:
        """
        Generate Strava OAuth authorization URL.

        Args:
            redirect_uri: URL to redirect after authorization
            state: Optional state parameter for CSRF protection
            scope: OAuth scope (default covers private activities too)

        Returns:
            Authorization URL string
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": scope,
            "approval_prompt": "auto"  # "force" to always show consent
        }
        if state:
            params["state"] = state

        return f"{self.authorize_url}?{urlencode(params)}"

    async def _token_request(self, data: dict, action: str) -> dict:
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            **data,
        }
        try:
            async with self._client() as client:
                response = await client.post(self.token_url, data=payload)
        except httpx.HTTPError as e:
            logger.error(f"Strava {action} request failed: {e}")
            raise StravaOAuthError(f"{action} failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Strava {action} failed: {response.status_code} {response.text}")
            raise StravaOAuthError(
                f"{action} failed: {response.status_code}",
                status_code=response.status_code,
            )

        return response.json()

    async def exchange_code(self, code: str) -> dict:
        """
        Exchange authorization code for tokens.

        Returns:
            {
                "token_type": "Bearer",
                "access_token": "...",
                "refresh_token": "...",
                "expires_at": 1234567890,
                "athlete": {"id": 123, "firstname": "...", ...}
            }

        Raises:
            StravaOAuthError: If token exchange fails
        """
        return await self._token_request(
            {"code": code, "grant_type": "authorization_code"},
            "Token exchange",
        )

    async def refresh_token(self, refresh_token: str) -> dict:
        """
        Refresh an access token.

        Strava may rotate the refresh token; always persist the one returned.

        Raises:
            StravaOAuthError: If token refresh fails (revoked grant, network)
        """
        return await self._token_request(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"},
            "Token refresh",
        )

    async def deauthorize(self, access_token: str) -> bool:
        """
        Revoke Strava access (user disconnect).

        Returns:
            True if deauthorization was successful
        """
        async with self._client() as client:
            response = await client.post(
                self.deauthorize_url,
                headers={"Authorization": f"Bearer {access_token}"}
            )
            return response.status_code == 200

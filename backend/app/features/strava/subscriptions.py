"""
Strava push subscription management.

An application has at most one push subscription. Strava validates the
callback during creation by calling the GET handshake endpoint, so the
app must already be reachable at callback_url.
"""

import logging
from contextlib import asynccontextmanager

import httpx

from app.config import settings
from .errors import RemoteFetchError

logger = logging.getLogger(__name__)


class StravaWebhookSubscriptions:
    """
    Client for /push_subscriptions.

    Usage:
        subscriptions = StravaWebhookSubscriptions()
        subscription = await subscriptions.ensure_subscription(callback_url)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        verify_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.client_id = client_id or settings.strava_client_id
        self.client_secret = client_secret or settings.strava_client_secret
        self.verify_token = verify_token or settings.strava_webhook_verify_token
        self.base_url = (base_url or settings.strava_api_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self._http_client = http_client

    @property
    def url(self) -> str:
        return f"{self.base_url}/push_subscriptions"

    @property
    def _credentials(self) -> dict:
        return {"client_id": self.client_id, "client_secret": self.client_secret}

    @asynccontextmanager
    async def _client(self):
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteFetchError(f"Push subscription request failed: {e}") from e

        if not response.is_success:
            raise RemoteFetchError(
                f"Push subscription {method} failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    async def list_subscriptions(self) -> list[dict]:
        response = await self._request("GET", self.url, params=self._credentials)
        return response.json()

    async def create_subscription(self, callback_url: str) -> dict:
        """
        Create the push subscription.

        Returns:
            {"id": 123}
        """
        response = await self._request(
            "POST",
            self.url,
            data={
                **self._credentials,
                "callback_url": callback_url,
                "verify_token": self.verify_token,
            },
        )
        logger.info(f"Created Strava push subscription for {callback_url}")
        return response.json()

    async def delete_subscription(self, subscription_id: int) -> None:
        await self._request(
            "DELETE", f"{self.url}/{subscription_id}", params=self._credentials
        )
        logger.info(f"Deleted Strava push subscription {subscription_id}")

    async def ensure_subscription(self, callback_url: str) -> dict:
        """Existing subscription, or a new one if none exists."""
        existing = await self.list_subscriptions()
        if existing:
            return existing[0]
        return await self.create_subscription(callback_url)

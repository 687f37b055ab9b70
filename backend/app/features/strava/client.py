"""
Strava API client.

Fetches the athlete's activity list page by page.

Strava API Limits (per application):
- 100 requests per 15 minutes
- 1,000 requests per day

Handling:
- 429: exponential backoff (2s, 4s, 8s), then RateLimited
- 401: CredentialInvalid, never retried (the whole sync must restart
  with a refreshed token, not just the page)
- other non-2xx or transport failures: RemoteFetchError
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx

from app.config import settings
from app.shared.clock import to_unix
from .errors import CredentialInvalid, RateLimited, RemoteFetchError
from .models import StravaToken
from .config import SyncConfig

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Strava rejects larger pages
MAX_PER_PAGE = 200


@dataclass
class ActivityPage:
    """One page of the athlete activity list."""

    page: int
    per_page: int
    activities: list[dict] = field(default_factory=list)

    @property
    def is_last(self) -> bool:
        """A short page means there is no more data."""
        return len(self.activities) < self.per_page


class StravaClient:
    """
    Async client for the Strava activity list.

    Usage:
        client = StravaClient()
        page = await client.fetch_page(credential, page=1, per_page=50)
        async for activity in client.fetch_all(credential, max_activities=500):
            ...

    `http_client` and `sleep` are injectable so tests can drive the
    client through httpx.MockTransport without real waits.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        sleep: Sleep = asyncio.sleep,
        page_delay: float = SyncConfig.PAGE_DELAY_SECONDS,
        max_pages: int = SyncConfig.MAX_PAGES,
    ):
        self.base_url = (base_url or settings.strava_api_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.page_delay = page_delay
        self.max_pages = max_pages
        self._http_client = http_client
        self._sleep = sleep

    @asynccontextmanager
    async def _client(self):
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def _get(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        access_token: str,
        params: dict
    ) -> httpx.Response:
        try:
            return await client.get(
                f"{self.base_url}{endpoint}",
                headers={"Authorization": f"Bearer {access_token}"},
                params=params,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise RemoteFetchError(f"Strava request timed out: {endpoint}") from e
        except httpx.HTTPError as e:
            raise RemoteFetchError(f"Strava request failed: {e}") from e

    async def fetch_page(
        self,
        credential: StravaToken,
        page: int,
        per_page: int,
        after: Optional[datetime] = None
    ) -> ActivityPage:
        """
        Fetch one page of athlete activities.

        Args:
            credential: Fresh Strava credential
            page: Page number, starting at 1
            per_page: Page size (capped at 200)
            after: Only activities that started after this moment

        Raises:
            CredentialInvalid: Strava answered 401
            RateLimited: Strava kept answering 429 after all retries
            RemoteFetchError: Any other failure
        """
        per_page = min(per_page, MAX_PER_PAGE)
        params = {"page": page, "per_page": per_page}
        if after:
            params["after"] = to_unix(after)

        delay = SyncConfig.BACKOFF_INITIAL_SECONDS
        retries = 0

        async with self._client() as client:
            while True:
                response = await self._get(
                    client, "/athlete/activities", credential.access_token, params
                )

                if response.status_code == 429:
                    if retries >= SyncConfig.MAX_RATE_LIMIT_RETRIES:
                        raise RateLimited(
                            f"Strava rate limit exceeded on page {page} "
                            f"after {retries} retries"
                        )
                    retries += 1
                    logger.warning(
                        f"Strava 429 on page {page}, retry {retries}/"
                        f"{SyncConfig.MAX_RATE_LIMIT_RETRIES} in {delay:.0f}s "
                        f"(usage {response.headers.get('X-RateLimit-Usage')})"
                    )
                    await self._sleep(delay)
                    delay = min(delay * 2, SyncConfig.BACKOFF_MAX_SECONDS)
                    continue

                if response.status_code == 401:
                    raise CredentialInvalid("Strava rejected the access token")

                if not response.is_success:
                    raise RemoteFetchError(
                        f"Strava API error: {response.status_code}",
                        status_code=response.status_code,
                        body=response.text,
                    )

                activities = response.json()
                if not isinstance(activities, list):
                    raise RemoteFetchError(
                        "Unexpected activity list payload",
                        status_code=response.status_code,
                        body=response.text,
                    )

                return ActivityPage(page=page, per_page=per_page, activities=activities)

    async def fetch_all(
        self,
        credential: StravaToken,
        after: Optional[datetime] = None,
        max_activities: Optional[int] = None,
        per_page: int = SyncConfig.FULL_PER_PAGE
    ) -> AsyncIterator[dict]:
        """
        Lazily iterate over all activities, page by page.

        Stops on a short page, after max_activities, or at the page
        ceiling. Pages are fetched sequentially with a fixed delay in
        between. The iterator cannot be restarted; errors propagate to
        the consumer at the point the failing page is requested.
        """
        if max_activities is not None and max_activities <= 0:
            return

        yielded = 0
        page = 1
        while page <= self.max_pages:
            if page > 1:
                await self._sleep(self.page_delay)

            result = await self.fetch_page(credential, page, per_page, after)
            logger.debug(f"Fetched page {page}: {len(result.activities)} activities")

            for activity in result.activities:
                yield activity
                yielded += 1
                if max_activities is not None and yielded >= max_activities:
                    return

            if result.is_last:
                return
            page += 1

        logger.warning(f"Stopped pagination at the {self.max_pages}-page ceiling")

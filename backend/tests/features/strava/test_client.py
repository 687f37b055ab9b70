"""
Tests for StravaClient.

Pagination, 429 backoff and error mapping against a mocked Strava.
"""

from datetime import datetime

import httpx
import pytest

from app.features.strava.client import StravaClient
from app.features.strava.errors import CredentialInvalid, RateLimited, RemoteFetchError
from app.features.strava.models import StravaToken


@pytest.fixture
def credential() -> StravaToken:
    return StravaToken(user_id="user-1", strava_athlete_id=999, access_token="secret-token",
                       refresh_token="refresh", expires_at=0)


async def collect(iterator) -> list[dict]:
    return [item async for item in iterator]


# =============================================================================
# fetch_page
# =============================================================================

class TestFetchPage:
    """Single page requests."""

    async def test_returns_activities(self, strava_client, strava_api, credential, make_activity):
        strava_api.pages = [[make_activity(1), make_activity(2)]]

        page = await strava_client.fetch_page(credential, page=1, per_page=50)

        assert [a["id"] for a in page.activities] == [1, 2]
        assert page.is_last

    async def test_request_shape(self, strava_client, strava_api, credential):
        after = datetime(2024, 5, 1, 0, 0, 0)

        await strava_client.fetch_page(credential, page=3, per_page=50, after=after)

        request = strava_api.activity_requests[0]
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert request.url.params["page"] == "3"
        assert request.url.params["per_page"] == "50"
        assert request.url.params["after"] == "1714521600"

    async def test_per_page_capped(self, strava_client, strava_api, credential):
        await strava_client.fetch_page(credential, page=1, per_page=500)

        assert strava_api.activity_requests[0].url.params["per_page"] == "200"

    async def test_retries_after_429(self, strava_client, strava_api, credential, sleeps, make_activity):
        strava_api.queued = [(429, {"message": "Rate Limit Exceeded"})] * 2
        strava_api.pages = [[make_activity(1)]]

        page = await strava_client.fetch_page(credential, page=1, per_page=50)

        assert len(page.activities) == 1
        assert len(strava_api.activity_requests) == 3
        assert sleeps.calls == [2.0, 4.0]

    async def test_gives_up_after_three_retries(self, strava_client, strava_api, credential, sleeps):
        strava_api.queued = [(429, {})] * 10

        with pytest.raises(RateLimited):
            await strava_client.fetch_page(credential, page=1, per_page=50)

        assert len(strava_api.activity_requests) == 4
        assert sleeps.calls == [2.0, 4.0, 8.0]

    async def test_401_is_not_retried(self, strava_client, strava_api, credential, sleeps):
        strava_api.queued = [(401, {"message": "Authorization Error"})]

        with pytest.raises(CredentialInvalid):
            await strava_client.fetch_page(credential, page=1, per_page=50)

        assert len(strava_api.activity_requests) == 1
        assert sleeps.calls == []

    async def test_server_error_carries_status_and_body(self, strava_client, strava_api, credential):
        strava_api.page_status = {1: 503}

        with pytest.raises(RemoteFetchError) as exc_info:
            await strava_client.fetch_page(credential, page=1, per_page=50)

        assert exc_info.value.status_code == 503
        assert exc_info.value.body == "upstream failure"

    async def test_transport_error(self, credential, sleeps):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = StravaClient(http_client=http, base_url="https://strava.test/api/v3", sleep=sleeps)
            with pytest.raises(RemoteFetchError) as exc_info:
                await client.fetch_page(credential, page=1, per_page=50)

        assert exc_info.value.status_code is None

    async def test_unexpected_payload(self, strava_client, strava_api, credential):
        strava_api.queued = [(200, {"not": "a list"})]

        with pytest.raises(RemoteFetchError):
            await strava_client.fetch_page(credential, page=1, per_page=50)


# =============================================================================
# fetch_all
# =============================================================================

class TestFetchAll:
    """Lazy pagination."""

    async def test_stops_on_short_page(self, strava_client, strava_api, credential, sleeps, make_activity):
        strava_api.pages = [
            [make_activity(1), make_activity(2)],
            [make_activity(3), make_activity(4)],
            [make_activity(5)],
        ]

        activities = await collect(strava_client.fetch_all(credential, per_page=2))

        assert [a["id"] for a in activities] == [1, 2, 3, 4, 5]
        assert len(strava_api.activity_requests) == 3
        # Delay between pages, none before the first
        assert sleeps.calls == [1.0, 1.0]

    async def test_empty_page_after_full_page(self, strava_client, strava_api, credential, make_activity):
        strava_api.pages = [[make_activity(1), make_activity(2)]]

        activities = await collect(strava_client.fetch_all(credential, per_page=2))

        assert len(activities) == 2
        assert len(strava_api.activity_requests) == 2

    async def test_stops_at_max_activities(self, strava_client, strava_api, credential, make_activity):
        strava_api.pages = [
            [make_activity(1), make_activity(2)],
            [make_activity(3), make_activity(4)],
            [make_activity(5), make_activity(6)],
        ]

        activities = await collect(
            strava_client.fetch_all(credential, per_page=2, max_activities=3)
        )

        assert [a["id"] for a in activities] == [1, 2, 3]
        assert len(strava_api.activity_requests) == 2

    async def test_zero_max_activities(self, strava_client, strava_api, credential):
        assert await collect(strava_client.fetch_all(credential, max_activities=0)) == []
        assert strava_api.activity_requests == []

    async def test_page_ceiling(self, http_client, strava_api, credential, sleeps, make_activity):
        strava_api.pages = [[make_activity(i)] for i in range(1, 10)]
        client = StravaClient(
            http_client=http_client, base_url="https://strava.test/api/v3",
            sleep=sleeps, max_pages=3,
        )

        activities = await collect(client.fetch_all(credential, per_page=1))

        assert len(activities) == 3

    async def test_error_surfaces_at_failing_page(self, strava_client, strava_api, credential, make_activity):
        strava_api.pages = [[make_activity(1), make_activity(2)], [make_activity(3), make_activity(4)]]
        strava_api.page_status = {2: 500}
        received = []

        with pytest.raises(RemoteFetchError):
            async for activity in strava_client.fetch_all(credential, per_page=2):
                received.append(activity["id"])

        assert received == [1, 2]

    async def test_after_is_forwarded(self, strava_client, strava_api, credential):
        await collect(strava_client.fetch_all(credential, after=datetime(2024, 5, 1)))

        assert strava_api.activity_requests[0].url.params["after"] == "1714521600"

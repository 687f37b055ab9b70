"""
Strava test fixtures.

The Strava API is simulated with httpx.MockTransport; sleeps and the
clock are injected so backoff and cooldown run instantly.
"""

from datetime import timedelta

import httpx
import pytest

from app.features.users.models import User
from app.features.strava.client import StravaClient
from app.features.strava.credentials import CredentialStore
from app.features.strava.models import StravaToken
from app.features.strava.oauth import StravaOAuth
from app.features.strava.sync.service import StravaSyncService
from app.shared.clock import to_unix

API_URL = "https://strava.test/api/v3"
OAUTH_URL = "https://strava.test/oauth"

USER_ID = "user-1"
ATHLETE_ID = 999


def remote_activity(strava_id: int, **overrides) -> dict:
    """Activity summary as returned by GET /athlete/activities."""
    data = {
        "id": strava_id,
        "name": f"Morning Run {strava_id}",
        "type": "Run",
        "sport_type": "Run",
        "start_date": "2024-05-10T06:30:00Z",
        "start_date_local": "2024-05-10T08:30:00Z",
        "timezone": "(GMT+01:00) Europe/Berlin",
        "distance": 10000.0,
        "moving_time": 3000,
        "elapsed_time": 3100,
        "total_elevation_gain": 120.0,
        "average_speed": 3.33,
        "max_speed": 5.1,
        "average_heartrate": 150.0,
        "max_heartrate": 175.0,
        "has_heartrate": True,
        "average_cadence": 85.0,
        "trainer": False,
        "commute": False,
        "manual": False,
    }
    data.update(overrides)
    return data


class FakeStravaApi:
    """
    In-memory Strava.

    - pages: activity list pages, page 1 first; pages past the end are empty
    - page_status: {page: status} to fail a page
    - queued: (status, body) answered before anything else on the
      activity list, oldest first
    - token_status / token_body: answer of POST /oauth/token
    """

    def __init__(self):
        self.pages: list[list[dict]] = []
        self.page_status: dict[int, int] = {}
        self.queued: list[tuple[int, object]] = []
        self.token_status = 200
        self.token_body: dict = {}
        self.requests: list[httpx.Request] = []

    @property
    def activity_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/athlete/activities")]

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/oauth/token")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path.endswith("/oauth/token"):
            return httpx.Response(self.token_status, json=self.token_body)

        if request.url.path.endswith("/athlete/activities"):
            if self.queued:
                status, body = self.queued.pop(0)
                return httpx.Response(status, json=body)
            page = int(request.url.params["page"])
            if page in self.page_status:
                return httpx.Response(self.page_status[page], text="upstream failure")
            data = self.pages[page - 1] if page <= len(self.pages) else []
            return httpx.Response(200, json=data)

        return httpx.Response(404)


@pytest.fixture
def make_activity():
    return remote_activity


@pytest.fixture
def strava_api() -> FakeStravaApi:
    return FakeStravaApi()


@pytest.fixture
async def http_client(strava_api):
    client = httpx.AsyncClient(transport=httpx.MockTransport(strava_api.handler))
    yield client
    await client.aclose()


@pytest.fixture
def strava_client(http_client, sleeps) -> StravaClient:
    return StravaClient(http_client=http_client, base_url=API_URL, timeout=5, sleep=sleeps)


@pytest.fixture
def oauth(http_client) -> StravaOAuth:
    return StravaOAuth(
        http_client=http_client,
        client_id="client-id",
        client_secret="client-secret",
        base_url=OAUTH_URL,
        timeout=5,
    )


@pytest.fixture
def credentials(db, oauth, clock) -> CredentialStore:
    return CredentialStore(db, oauth=oauth, clock=clock)


@pytest.fixture
def sync_service(db, strava_client, credentials, clock) -> StravaSyncService:
    return StravaSyncService(db, client=strava_client, credentials=credentials, clock=clock)


@pytest.fixture
def make_service(strava_client, oauth, clock):
    """Service factory bound to the fake API, for code that opens its own sessions."""
    def factory(db) -> StravaSyncService:
        return StravaSyncService(
            db,
            client=strava_client,
            credentials=CredentialStore(db, oauth=oauth, clock=clock),
            clock=clock,
        )
    return factory


async def add_connected_user(
    db,
    clock,
    user_id: str = USER_ID,
    athlete_id: int = ATHLETE_ID,
    expires_in: timedelta = timedelta(hours=6),
) -> str:
    db.add(User(id=user_id, name="Test Athlete"))
    db.add(StravaToken(
        user_id=user_id,
        strava_athlete_id=athlete_id,
        athlete_firstname="Test",
        athlete_lastname="Athlete",
        access_token=f"access-{user_id}",
        refresh_token=f"refresh-{user_id}",
        expires_at=to_unix(clock() + expires_in),
        scope="read,activity:read_all",
    ))
    await db.commit()
    return user_id


@pytest.fixture
def connect_user(db, clock):
    """Async factory: await connect_user("user-2", athlete_id=2)."""
    async def factory(user_id: str = USER_ID, athlete_id: int = ATHLETE_ID, **kwargs) -> str:
        return await add_connected_user(db, clock, user_id, athlete_id, **kwargs)
    return factory


@pytest.fixture
async def connected_user(connect_user) -> str:
    return await connect_user()

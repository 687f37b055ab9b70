"""
Strava integration module.

Usage:
    from app.features.strava import CredentialStore, StravaClient
    from app.features.strava.sync import StravaSyncService, SyncStrategy
    from app.features.strava.webhooks import WebhookProcessor

Components:
- StravaOAuth: OAuth flow (auth URL, token exchange, refresh)
- CredentialStore: Token storage and refresh
- StravaClient: Activity list pagination with 429 backoff
- StravaWebhookSubscriptions: Push subscription management

Models:
- StravaToken: OAuth credential
- StravaActivity: Mirrored activity data
- SyncState: Per-user quota, cooldown and error tracking
"""

from .models import (
    StravaToken,
    StravaActivity,
    SyncState,
)
from .errors import (
    StravaError,
    StravaOAuthError,
    CredentialInvalid,
    RateLimited,
    RemoteFetchError,
    PersistenceError,
)
from .oauth import StravaOAuth
from .client import StravaClient, ActivityPage
from .credentials import CredentialStore
from .subscriptions import StravaWebhookSubscriptions
from .repository import (
    StravaTokenRepository,
    StravaActivityRepository,
    SyncStateRepository,
    SyncAttempt,
)

__all__ = [
    # Models
    "StravaToken",
    "StravaActivity",
    "SyncState",
    # Errors
    "StravaError",
    "StravaOAuthError",
    "CredentialInvalid",
    "RateLimited",
    "RemoteFetchError",
    "PersistenceError",
    # OAuth & credentials
    "StravaOAuth",
    "CredentialStore",
    # Client
    "StravaClient",
    "ActivityPage",
    "StravaWebhookSubscriptions",
    # Repositories
    "StravaTokenRepository",
    "StravaActivityRepository",
    "SyncStateRepository",
    "SyncAttempt",
]

"""
Strava sync errors.

Every error carries a stable `code` that is persisted to
SyncState.last_error_code so failures stay distinguishable on the
dashboard. A gate denial is not an error (see sync.gate).
"""


class StravaError(Exception):
    """Base Strava error."""

    code = "strava_error"


class StravaOAuthError(StravaError):
    """Token endpoint rejected the request."""

    code = "oauth_error"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CredentialInvalid(StravaError):
    """
    Credential missing, expired or revoked.

    Fatal for the current sync: the user must re-authorize.
    """

    code = "credential_invalid"


class RateLimited(StravaError):
    """Strava kept answering 429 after all backoff retries."""

    code = "rate_limited"


class RemoteFetchError(StravaError):
    """Non-2xx (other than 401/429) or transport failure from Strava."""

    code = "remote_fetch_error"

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PersistenceError(StravaError):
    """Local database failure while merging or recording state."""

    code = "persistence_error"

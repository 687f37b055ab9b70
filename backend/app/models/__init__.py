"""
Database Models

Import all models here to ensure they are registered with SQLAlchemy.

Note: Feature models are imported lazily to avoid circular imports.
Use direct imports from features/ modules when possible.
"""

from app.models.base import Base


def _get_user_models():
    """Lazy import of User models."""
    from app.features.users.models import User
    return User


def _get_strava_models():
    """Lazy import of Strava models."""
    from app.features.strava.models import (
        StravaToken,
        StravaActivity,
        SyncState,
    )
    return StravaToken, StravaActivity, SyncState


# Expose as module-level attributes
def __getattr__(name):
    if name == "User":
        return _get_user_models()

    if name in ("StravaToken", "StravaActivity", "SyncState"):
        models = _get_strava_models()
        model_map = {
            "StravaToken": models[0],
            "StravaActivity": models[1],
            "SyncState": models[2],
        }
        return model_map[name]

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "Base",
    "User",
    "StravaToken",
    "StravaActivity",
    "SyncState",
]

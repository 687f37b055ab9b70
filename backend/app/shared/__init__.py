"""
Shared utilities (NOT business logic).

Usage:
    from app.shared import BaseRepository, utc_now
    from app.shared.clock import to_unix
"""
from .clock import (
    Clock,
    utc_now,
    to_unix,
    parse_iso,
)
from .repository import BaseRepository

__all__ = [
    # clock
    "Clock",
    "utc_now",
    "to_unix",
    "parse_iso",
    # repository
    "BaseRepository",
]

"""
Wall-clock helpers.

All timestamps in the database are naive UTC. Components that make
time-based decisions take a `Clock` so tests can pin "now".
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_unix(moment: datetime) -> int:
    """Naive-UTC (or aware) datetime to a unix timestamp."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def parse_iso(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 string from the Strava API into naive UTC.

    Strava returns "2024-05-01T06:30:00Z"; offsets other than Z are
    normalised to UTC.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

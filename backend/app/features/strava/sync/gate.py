"""
Sync permission gate.

Pure decision over a SyncState snapshot and an explicit "now": no clock
reads, no I/O. Rules, in order:

1. sync disabled                         -> denied ("disabled")
2. counter from a previous day           -> treated as 0
3. requests today >= DAILY_LIMIT         -> denied ("daily limit reached")
4. last sync within COOLDOWN of now      -> denied ("cooldown")
5. otherwise                             -> allowed

A missing state (user never synced) is always allowed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ..models import SyncState
from ..config import SyncConfig


class GateDenialReason(str, Enum):
    DISABLED = "disabled"
    DAILY_LIMIT = "daily limit reached"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a gate check."""

    allowed: bool
    reason: Optional[GateDenialReason] = None
    retry_at: Optional[datetime] = None  # Set for cooldown denials

    @classmethod
    def allow(cls) -> "GateDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: GateDenialReason, retry_at: Optional[datetime] = None) -> "GateDecision":
        return cls(allowed=False, reason=reason, retry_at=retry_at)


def effective_requests_today(state: Optional[SyncState], now: datetime) -> int:
    """
    Requests counted against today's quota.

    The stored counter belongs to last_sync_date; on any other day it
    reads as 0. The physical reset happens on the next recorded attempt.
    """
    if state is None or state.last_sync_date != now.date():
        return 0
    return state.sync_requests_today or 0


def evaluate(
    state: Optional[SyncState],
    now: datetime,
    daily_limit: int = SyncConfig.DAILY_LIMIT,
    cooldown: timedelta = SyncConfig.COOLDOWN,
) -> GateDecision:
    """Decide whether a new sync may start at `now`."""
    if state is None:
        return GateDecision.allow()

    # None means the column default (enabled) has not been applied yet
    if state.sync_enabled is False:
        return GateDecision.deny(GateDenialReason.DISABLED)

    if effective_requests_today(state, now) >= daily_limit:
        return GateDecision.deny(GateDenialReason.DAILY_LIMIT)

    if state.last_activity_sync is not None:
        retry_at = state.last_activity_sync + cooldown
        if now < retry_at:
            return GateDecision.deny(GateDenialReason.COOLDOWN, retry_at=retry_at)

    return GateDecision.allow()

"""
Strava sync services.

Provides:
- gate: Pure quota/cooldown decision
- ActivityMerger: Idempotent activity upsert
- StravaSyncService: Main sync orchestrator
- BackgroundSweepScheduler: Sequential sweep over connected users
- BackgroundSyncRunner: Periodic sweep loop
"""

from .gate import GateDecision, GateDenialReason, evaluate, effective_requests_today
from .merger import ActivityMerger, MergeResult
from .service import StravaSyncService, SyncStrategy, SyncStrategyKind, SyncOutcome
from .background import (
    BackgroundSweepScheduler,
    BackgroundSyncRunner,
    SweepOptions,
    SweepStats,
)

__all__ = [
    # Gate
    "GateDecision",
    "GateDenialReason",
    "evaluate",
    "effective_requests_today",
    # Services
    "ActivityMerger",
    "MergeResult",
    "StravaSyncService",
    "SyncStrategy",
    "SyncStrategyKind",
    "SyncOutcome",
    # Background
    "BackgroundSweepScheduler",
    "BackgroundSyncRunner",
    "SweepOptions",
    "SweepStats",
]

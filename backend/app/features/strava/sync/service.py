"""
Strava sync orchestration.

Main entry point for syncing a user's activities. Manual API calls,
webhook deliveries and the background sweep all go through
StravaSyncService.run_sync.

Sync Flow:
1. Gate check (skipped for webhooks). A denial returns at once, with no
   remote calls and no state change.
2. Make sure the credential is fresh (refresh through OAuth if needed).
3. Fetch activities according to the strategy:
   - quick: newest page only
   - full: whole history, page by page
   - custom: caller-chosen bounds
4. Merge into strava_activities.
5. Record the attempt in sync_state, successful or not. Failed attempts
   consume quota; only attempts that merged something start the cooldown.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.clock import Clock, utc_now
from ..client import StravaClient
from ..config import SyncConfig
from ..credentials import CredentialStore
from ..errors import PersistenceError, StravaError
from ..models import StravaToken, SyncState
from ..repository import StravaActivityRepository, SyncStateRepository, SyncAttempt
from .gate import GateDecision, evaluate
from .merger import ActivityMerger, MergeResult

logger = logging.getLogger(__name__)


# =============================================================================
# Strategy & outcome
# =============================================================================

class SyncStrategyKind(str, Enum):
    QUICK = "quick"
    FULL = "full"
    CUSTOM = "custom"


@dataclass(frozen=True)
class SyncStrategy:
    """How much of the activity history to fetch."""

    kind: SyncStrategyKind
    per_page: int
    max_activities: Optional[int] = None
    since: Optional[datetime] = None
    since_days: Optional[int] = None
    force_refresh: bool = False

    @classmethod
    def quick(cls) -> "SyncStrategy":
        """Newest page only."""
        return cls(kind=SyncStrategyKind.QUICK, per_page=SyncConfig.QUICK_PER_PAGE)

    @classmethod
    def full(cls) -> "SyncStrategy":
        """Historical backfill, no time filter."""
        return cls(
            kind=SyncStrategyKind.FULL,
            per_page=SyncConfig.FULL_PER_PAGE,
            max_activities=SyncConfig.FULL_MAX_ACTIVITIES,
        )

    @classmethod
    def custom(
        cls,
        max_activities: Optional[int] = None,
        since_days: Optional[int] = None,
        since: Optional[datetime] = None,
        per_page: Optional[int] = None,
        force_refresh: bool = False,
    ) -> "SyncStrategy":
        return cls(
            kind=SyncStrategyKind.CUSTOM,
            per_page=per_page or SyncConfig.FULL_PER_PAGE,
            max_activities=(
                max_activities if max_activities is not None
                else SyncConfig.FULL_MAX_ACTIVITIES
            ),
            since=since,
            since_days=since_days,
            force_refresh=force_refresh,
        )

    def after(self, now: datetime) -> Optional[datetime]:
        """Lower bound on activity start time, if any."""
        if self.since is not None:
            return self.since
        if self.since_days is not None:
            return now - timedelta(days=self.since_days)
        return None


@dataclass
class SyncOutcome:
    """Result of one run_sync call."""

    success: bool
    activities_processed: int = 0
    new_activities: int = 0
    updated_activities: int = 0
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)
    gate_denied_reason: Optional[str] = None
    retry_at: Optional[datetime] = None

    @property
    def gate_denied(self) -> bool:
        return self.gate_denied_reason is not None

    @classmethod
    def denied(cls, decision: GateDecision, duration_ms: int) -> "SyncOutcome":
        reason = decision.reason.value
        return cls(
            success=False,
            duration_ms=duration_ms,
            errors=[f"Sync not allowed: {reason}"],
            gate_denied_reason=reason,
            retry_at=decision.retry_at,
        )


# =============================================================================
# Service
# =============================================================================

class StravaSyncService:
    """
    Main sync orchestrator.

    Usage:
        service = StravaSyncService(db)
        outcome = await service.run_sync(user_id, SyncStrategy.quick())

    Never raises: every error is recorded in sync_state and reported in
    the outcome. Unexpected exceptions are logged with a traceback and
    recorded with the base error code.
    """

    def __init__(
        self,
        db: AsyncSession,
        client: StravaClient | None = None,
        credentials: CredentialStore | None = None,
        merger: ActivityMerger | None = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.clock = clock
        self.client = client or StravaClient()
        self.credentials = credentials or CredentialStore(db, clock=clock)
        self.merger = merger or ActivityMerger(db, clock=clock)
        self.states = SyncStateRepository(db)
        self.activities = StravaActivityRepository(db)

    async def run_sync(
        self,
        user_id: str,
        strategy: Optional[SyncStrategy] = None,
        bypass_gate: bool = False,
    ) -> SyncOutcome:
        """
        Sync activities for a single user.

        Args:
            user_id: User to sync
            strategy: Quick (default), full or custom
            bypass_gate: Skip quota and cooldown checks (webhooks)

        Returns:
            SyncOutcome
        """
        strategy = strategy or SyncStrategy.quick()
        started = time.monotonic()

        result = MergeResult()
        error: Optional[StravaError] = None
        session_broken = False

        try:
            if not bypass_gate:
                decision = await self._check_gate(user_id)
                if not decision.allowed:
                    logger.warning(
                        f"Sync denied for user {user_id}: {decision.reason.value}"
                    )
                    return SyncOutcome.denied(decision, self._elapsed_ms(started))

            logger.info(f"Starting {strategy.kind.value} sync for user {user_id}")

            credential = await self.credentials.ensure_fresh(user_id)
            activities = self._activities_for(credential, strategy)
            await self.merger.merge(
                user_id,
                activities,
                result=result,
                force_update=strategy.force_refresh,
            )
        except StravaError as e:
            error = e
            session_broken = isinstance(e, PersistenceError)
            logger.error(
                f"Sync failed for user {user_id} ({e.code}) after "
                f"{result.processed} activities: {e}"
            )
        except Exception as e:
            error = StravaError(f"Unexpected sync failure: {e}")
            session_broken = True
            logger.exception(
                f"Sync crashed for user {user_id} after {result.processed} activities"
            )

        return await self._record(
            user_id, started, result, error, rollback_first=session_broken
        )

    async def _check_gate(self, user_id: str) -> GateDecision:
        try:
            state = await self.states.get_by_user_id(user_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read sync state: {e}") from e
        return evaluate(state, self.clock())

    async def _record(
        self,
        user_id: str,
        started: float,
        result: MergeResult,
        error: Optional[StravaError],
        rollback_first: bool = False,
    ) -> SyncOutcome:
        """
        Write the attempt to sync_state and build the outcome.

        rollback_first discards a transaction left unusable by a database
        or unexpected failure; merged batches are already committed.
        """
        outcome = SyncOutcome(
            success=error is None,
            activities_processed=result.processed,
            new_activities=result.created,
            updated_activities=result.updated,
            errors=[str(error)] if error else [],
        )

        attempt = SyncAttempt(
            at=self.clock(),
            success=outcome.success,
            mark_synced=outcome.success or result.processed > 0,
            new_activities=result.created,
            error_code=error.code if error else None,
            error_message=str(error) if error else None,
        )
        try:
            if rollback_first:
                await self.db.rollback()
            await self.states.record_attempt(user_id, attempt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to record sync state for user {user_id}: {e}")
            outcome.errors.append(f"Failed to record sync state: {e}")

        outcome.duration_ms = self._elapsed_ms(started)
        if outcome.success:
            logger.info(
                f"Synced user {user_id}: {result.processed} processed, "
                f"{result.created} new, {result.updated} updated "
                f"in {outcome.duration_ms}ms"
            )
        return outcome

    def _activities_for(
        self,
        credential: StravaToken,
        strategy: SyncStrategy,
    ) -> AsyncIterator[dict]:
        if strategy.kind == SyncStrategyKind.QUICK:
            return self._newest_page(credential, strategy.per_page)
        return self.client.fetch_all(
            credential,
            after=strategy.after(self.clock()),
            max_activities=strategy.max_activities,
            per_page=strategy.per_page,
        )

    async def _newest_page(self, credential: StravaToken, per_page: int) -> AsyncIterator[dict]:
        page = await self.client.fetch_page(credential, page=1, per_page=per_page)
        for activity in page.activities:
            yield activity

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    # =========================================================================
    # Status
    # =========================================================================

    async def get_sync_status(self, user_id: str) -> dict:
        """
        Read-only sync status for the dashboard.

        Returns:
            {
                "sync_state": SyncState | None,
                "activity_count": int,
                "can_sync": bool,
                "sync_disabled_reason": str | None,
                "retry_at": datetime | None,
            }
        """
        state: Optional[SyncState] = await self.states.get_by_user_id(user_id)
        decision = evaluate(state, self.clock())
        return {
            "sync_state": state,
            "activity_count": await self.activities.count_user_activities(user_id),
            "can_sync": decision.allowed,
            "sync_disabled_reason": decision.reason.value if decision.reason else None,
            "retry_at": decision.retry_at,
        }

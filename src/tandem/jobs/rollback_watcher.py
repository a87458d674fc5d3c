"""
Rollback watcher.

Runs hourly for communities in PARALLEL or PRIMARY mode and rolls them one
mode back when one of two metrics breaches its threshold:

- access loss: share of members who lost namespaced access within
  ``access_loss_window_minutes``,
- error rate: share of failed grant operations within
  ``error_rate_window_minutes``.

The breach, with its measured value, becomes the rollback reason. A
rollback that cannot be persisted is escalated to a critical operator
alert; the watcher never assumes success. Once a community has been rolled
back ``max_auto_rollbacks`` times, the watcher stops acting and asks for
manual intervention instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from tandem.config import CoexistenceConfig
from tandem.engine import MigrationEngine
from tandem.exceptions import (
    IrreversibleStateError,
    RollbackPersistenceError,
    TransientInfrastructureError,
)
from tandem.jobs.runner import CommunityJob, JobRunner, JobSchedule
from tandem.models import (
    AuditEntry,
    AuditEventType,
    CoexistenceMode,
    RollbackResult,
    RollbackTrigger,
)
from tandem.observability import ATTR_COMMUNITY_ID, ATTR_DRY_RUN, Tracer, create_tracer
from tandem.protocols import (
    AccessCounts,
    AccessMetricsSource,
    AlertSink,
    ErrorCounts,
    OperatorAlert,
)
from tandem.repositories import (
    AuditLogRepository,
    CommunityStateRepository,
    NamespacedGrantRepository,
)

logger = logging.getLogger(__name__)

WATCHER_OPERATOR = "rollback_watcher"

WATCHED_MODES = frozenset({CoexistenceMode.PARALLEL, CoexistenceMode.PRIMARY})


class WatcherAction(Enum):
    SKIPPED = "skipped"
    HEALTHY = "healthy"
    ROLLED_BACK = "rolled_back"
    ESCALATED = "escalated"
    DRY_RUN = "dry_run"
    MANUAL_REQUIRED = "manual_required"


@dataclass(frozen=True)
class WatcherDecision:
    """What the watcher measured for a community and what it did about it."""

    community_id: str
    action: WatcherAction
    mode: CoexistenceMode | None
    access_loss_percent: float = 0.0
    error_rate_percent: float = 0.0
    reason: str | None = None
    trigger: RollbackTrigger | None = None
    rollback: RollbackResult | None = None


class SnapshotAccessMetrics:
    """
    Access metrics derived from the snapshots the parallel grant manager
    records after every sync.

    Access counts compare the earliest snapshot inside the window with the
    latest one. Members the latest sync could not read are not counted as
    lost. Error counts sum every snapshot inside the window.
    """

    def __init__(self, registry: NamespacedGrantRepository) -> None:
        self._registry = registry

    async def get_access_counts(
        self,
        community_id: str,
        window: timedelta,
        now: datetime | None = None,
    ) -> AccessCounts:
        now = now or datetime.now(UTC)
        snapshots = await self._registry.list_snapshots(community_id, since=now - window)
        if not snapshots:
            return AccessCounts(baseline=0, current=0)
        return AccessCounts(
            baseline=snapshots[0].members_with_access,
            current=snapshots[-1].members_with_access + snapshots[-1].members_unevaluated,
        )

    async def get_error_counts(
        self,
        community_id: str,
        window: timedelta,
        now: datetime | None = None,
    ) -> ErrorCounts:
        now = now or datetime.now(UTC)
        snapshots = await self._registry.list_snapshots(community_id, since=now - window)
        return ErrorCounts(
            operations=sum(s.operations for s in snapshots),
            failures=sum(s.failed_operations for s in snapshots),
        )


class RollbackWatcher:
    """
    Evaluates rollback thresholds and triggers automatic rollbacks.

    Example:
        >>> watcher = RollbackWatcher(engine, states, SnapshotAccessMetrics(registry),
        ...                           alerts, audit_log)
        >>> decision = await watcher.evaluate("123")
        >>> decision.action
        <WatcherAction.HEALTHY: 'healthy'>
    """

    def __init__(
        self,
        engine: MigrationEngine,
        states: CommunityStateRepository,
        metrics_source: AccessMetricsSource,
        alerts: AlertSink,
        audit_log: AuditLogRepository,
        *,
        config: CoexistenceConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._engine = engine
        self._states = states
        self._metrics_source = metrics_source
        self._alerts = alerts
        self._audit_log = audit_log
        self._config = config or CoexistenceConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def evaluate(
        self,
        community_id: str,
        *,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> WatcherDecision:
        """
        Measure both metrics for a community and roll back on a breach.

        Args:
            community_id: The community.
            dry_run: Report what would happen without rolling back or alerting.
            now: Evaluation time; defaults to the current time.
        """
        with self._tracer.span(
            "tandem.watcher.evaluate",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DRY_RUN: dry_run},
        ):
            now = now or datetime.now(UTC)
            state = await self._states.get(community_id)
            if state is None or state.mode not in WATCHED_MODES:
                return WatcherDecision(
                    community_id, WatcherAction.SKIPPED, state.mode if state else None
                )

            watcher = self._config.watcher
            access = await self._metrics_source.get_access_counts(
                community_id, timedelta(minutes=watcher.access_loss_window_minutes), now
            )
            errors = await self._metrics_source.get_error_counts(
                community_id, timedelta(minutes=watcher.error_rate_window_minutes), now
            )
            loss = access.loss_percent
            error_rate = errors.error_rate_percent

            if loss > watcher.access_loss_threshold_percent:
                trigger = RollbackTrigger.AUTO_ACCESS_LOSS
                reason = (
                    f"Access loss of {loss:.1f}% exceeds threshold of "
                    f"{watcher.access_loss_threshold_percent:.1f}%"
                )
            elif error_rate > watcher.error_rate_threshold_percent:
                trigger = RollbackTrigger.AUTO_ERROR_RATE
                reason = (
                    f"Error rate of {error_rate:.1f}% exceeds threshold of "
                    f"{watcher.error_rate_threshold_percent:.1f}%"
                )
            else:
                return WatcherDecision(
                    community_id, WatcherAction.HEALTHY, state.mode, loss, error_rate
                )

            decision = WatcherDecision(
                community_id, WatcherAction.DRY_RUN, state.mode, loss, error_rate, reason, trigger
            )
            logger.warning(
                "Rollback threshold breached for community %s in %s mode: %s",
                community_id,
                state.mode.value,
                reason,
                extra={ATTR_COMMUNITY_ID: community_id},
            )

            if dry_run:
                return decision

            if state.rollback_count >= watcher.max_auto_rollbacks:
                await self._alert(
                    community_id,
                    "critical",
                    "Manual intervention required",
                    f"{reason}. Automatic rollback disabled after "
                    f"{state.rollback_count} rollbacks.",
                    {"rollback_count": state.rollback_count, "trigger": trigger.value},
                )
                return _with_action(decision, WatcherAction.MANUAL_REQUIRED)

            try:
                result = await self._engine.rollback(
                    community_id, reason, operator=WATCHER_OPERATOR, trigger=trigger
                )
            except IrreversibleStateError:
                logger.info("Community %s became exclusive; nothing to roll back", community_id)
                return _with_action(decision, WatcherAction.SKIPPED)
            except (RollbackPersistenceError, TransientInfrastructureError) as e:
                return await self._escalate(decision, state.mode, e, now)

            await self._alert(
                community_id,
                "warning",
                "Automatic rollback performed",
                f"{reason}. Rolled back from {result.previous_mode.value} "
                f"to {result.current_mode.value} mode.",
                {"trigger": trigger.value, "rollback_count": result.rollback_count},
            )
            return WatcherDecision(
                community_id,
                WatcherAction.ROLLED_BACK,
                result.current_mode,
                loss,
                error_rate,
                reason,
                trigger,
                rollback=result,
            )

    async def run_all(self, *, dry_run: bool = False) -> list[WatcherDecision]:
        """Evaluate every watched community, up to ``max_communities_per_run``."""
        states = await self._states.list_by_modes(
            WATCHED_MODES, limit=self._config.watcher.max_communities_per_run
        )
        decisions = []
        for state in states:
            decisions.append(await self.evaluate(state.community_id, dry_run=dry_run))
        rolled_back = sum(1 for d in decisions if d.action == WatcherAction.ROLLED_BACK)
        if rolled_back:
            logger.warning("Rollback watcher rolled back %d communities", rolled_back)
        return decisions

    async def _escalate(
        self,
        decision: WatcherDecision,
        mode: CoexistenceMode,
        error: Exception,
        now: datetime,
    ) -> WatcherDecision:
        community_id = decision.community_id
        logger.critical(
            "Automatic rollback of community %s could not be completed: %s",
            community_id,
            error,
            extra={ATTR_COMMUNITY_ID: community_id},
        )
        details = {
            "reason": decision.reason,
            "trigger": decision.trigger.value if decision.trigger else None,
            "error": str(error),
        }
        await self._alert(
            community_id,
            "critical",
            "Automatic rollback failed",
            f"{decision.reason}. The rollback could not be completed: {error}",
            details,
        )
        await self._audit_log.record(
            AuditEntry.event(
                community_id,
                AuditEventType.ROLLBACK_ESCALATED,
                now,
                operator=WATCHER_OPERATOR,
                details=details,
                mode=mode,
            )
        )
        return _with_action(decision, WatcherAction.ESCALATED)

    async def _alert(
        self,
        community_id: str,
        severity: str,
        title: str,
        message: str,
        details: dict[str, Any],
    ) -> None:
        try:
            await self._alerts.send(
                OperatorAlert(
                    community_id=community_id,
                    severity=severity,
                    title=title,
                    message=message,
                    details=details,
                )
            )
        except Exception:
            logger.exception("Failed to send watcher alert for community %s", community_id)


def _with_action(decision: WatcherDecision, action: WatcherAction) -> WatcherDecision:
    return WatcherDecision(
        decision.community_id,
        action,
        decision.mode,
        decision.access_loss_percent,
        decision.error_rate_percent,
        decision.reason,
        decision.trigger,
        decision.rollback,
    )


class RollbackWatcherJob(CommunityJob):
    name = "rollback_watcher"
    modes = WATCHED_MODES

    def __init__(
        self,
        watcher: RollbackWatcher,
        states: CommunityStateRepository,
        runner: JobRunner,
        *,
        dry_run: bool = False,
    ) -> None:
        super().__init__(states, runner)
        self._watcher = watcher
        self._dry_run = dry_run

    @property
    def schedule(self) -> JobSchedule:
        return JobSchedule(
            name=self.name,
            interval=timedelta(hours=self._runner.config.watcher_interval_hours),
            modes=self.modes,
        )

    async def execute(self, community_id: str) -> WatcherDecision:
        return await self._watcher.evaluate(community_id, dry_run=self._dry_run)


__all__ = [
    "RollbackWatcher",
    "RollbackWatcherJob",
    "SnapshotAccessMetrics",
    "WatcherAction",
    "WatcherDecision",
    "WATCHER_OPERATOR",
]

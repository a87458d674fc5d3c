"""
Migration engine.

The engine owns the coexistence state machine. It is the only component
that changes ``CommunityMigrationState.mode``:

    SHADOW -> PARALLEL -> PRIMARY -> EXCLUSIVE
       |                               ^
       +------ direct takeover --------+

Escalations are gated by readiness checks and executed from a
:class:`~tandem.plans.TransitionPlan`. Rollback moves one step back and is
impossible from EXCLUSIVE. Every transition, rollback and emergency backup
runs under the community lock and is written to the audit log; readiness
checks are read-only and take no lock.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError

from tandem.config import CoexistenceConfig
from tandem.exceptions import (
    CoexistenceError,
    IrreversibleStateError,
    RollbackPersistenceError,
    TransientInfrastructureError,
)
from tandem.locks import LockManager, community_lock_key
from tandem.metrics import CoexistenceMetrics
from tandem.models import (
    AuditEntry,
    AuditEventType,
    CoexistenceMode,
    CommunityMigrationState,
    MigrationStrategy,
    ModeChangeResult,
    ModeChangeStatus,
    ReadinessCheck,
    ReadinessReport,
    RollbackResult,
    RollbackTrigger,
)
from tandem.observability import (
    ATTR_COMMUNITY_ID,
    ATTR_MODE,
    ATTR_OPERATOR,
    ATTR_STRATEGY,
    ATTR_TARGET_MODE,
    Tracer,
    create_tracer,
)
from tandem.parallel_grants import ParallelGrantManager
from tandem.plans import PlanStep, TransitionPlan, available_strategies, build_plan
from tandem.repositories import (
    AuditLogRepository,
    CommunityStateRepository,
    IncumbentProfileRepository,
    ShadowRepository,
)

logger = logging.getLogger(__name__)

_NEXT_MODE = {
    CoexistenceMode.SHADOW: CoexistenceMode.PARALLEL,
    CoexistenceMode.PARALLEL: CoexistenceMode.PRIMARY,
}


def confirmation_matches(confirmation: str | None, expected: str) -> bool:
    """Case-insensitive comparison of an operator's typed confirmation."""
    if confirmation is None:
        return False
    return confirmation.strip().casefold() == expected.strip().casefold()


class MigrationEngine:
    """
    Executes mode transitions for communities.

    Example:
        >>> engine = MigrationEngine(states, profiles, shadow, audit_log, locks, grant_manager)
        >>> report = await engine.check_readiness("123")
        >>> if report.ready:
        ...     result = await engine.request_mode_change(
        ...         "123", CoexistenceMode.PARALLEL, MigrationStrategy.INSTANT,
        ...         operator="ops@example.com",
        ...     )
    """

    def __init__(
        self,
        states: CommunityStateRepository,
        profiles: IncumbentProfileRepository,
        shadow: ShadowRepository,
        audit_log: AuditLogRepository,
        locks: LockManager,
        grant_manager: ParallelGrantManager | None = None,
        *,
        config: CoexistenceConfig | None = None,
        metrics: CoexistenceMetrics | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._states = states
        self._profiles = profiles
        self._shadow = shadow
        self._audit_log = audit_log
        self._locks = locks
        self._grant_manager = grant_manager
        self._config = config or CoexistenceConfig()
        self._metrics = metrics or CoexistenceMetrics(enable_metrics=False)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    # =========================================================================
    # Readiness
    # =========================================================================

    async def check_readiness(
        self,
        community_id: str,
        target: CoexistenceMode = CoexistenceMode.PARALLEL,
    ) -> ReadinessReport:
        """
        Evaluate the readiness gate for escalating to target.

        Lock-free and read-only. All checks are always evaluated so the
        report shows everything that is missing.

        Raises:
            CommunityNotFoundError: If the community has no state.
        """
        with self._tracer.span(
            "tandem.engine.check_readiness",
            {ATTR_COMMUNITY_ID: community_id, ATTR_TARGET_MODE: target.value},
        ):
            state = await self._states.get_required(community_id)
            thresholds = self._config.readiness_for(target)
            now = datetime.now(UTC)

            days = state.shadow_duration(now).total_seconds() / 86400.0
            unresolved = await self._shadow.count_unresolved_since(
                community_id, now - thresholds.divergence_window
            )
            checks = (
                ReadinessCheck(
                    name="shadow_duration",
                    passed=days >= thresholds.min_shadow_days,
                    current=round(days, 2),
                    required=float(thresholds.min_shadow_days),
                    message=(
                        f"{days:.1f} days in shadow mode "
                        f"(minimum {thresholds.min_shadow_days})"
                    ),
                ),
                ReadinessCheck(
                    name="accuracy",
                    passed=state.accuracy_percent >= thresholds.min_accuracy_percent,
                    current=state.accuracy_percent,
                    required=thresholds.min_accuracy_percent,
                    message=(
                        f"Shadow accuracy {state.accuracy_percent:.1f}% "
                        f"(minimum {thresholds.min_accuracy_percent:.1f}%)"
                    ),
                ),
                ReadinessCheck(
                    name="divergences",
                    passed=unresolved == 0,
                    current=float(unresolved),
                    required=0.0,
                    message=(
                        f"{unresolved} unresolved divergence(s) in the last "
                        f"{thresholds.divergence_window_hours} hours"
                    ),
                ),
            )
            return ReadinessReport(
                community_id=community_id,
                target_mode=target,
                ready=all(check.passed for check in checks),
                checks=checks,
                evaluated_at=now,
                prediction_accuracy=await self._shadow.prediction_accuracy(community_id),
            )

    # =========================================================================
    # Transitions
    # =========================================================================

    async def plan_migration(
        self,
        community_id: str,
        target_mode: CoexistenceMode,
        strategy: MigrationStrategy | None = None,
        *,
        direct_takeover: bool = False,
    ) -> TransitionPlan:
        """Show what a mode change request would do, without changing anything."""
        state = await self._states.get_required(community_id)
        profile = await self._profiles.get_profile(community_id)
        return build_plan(
            state,
            target_mode,
            strategy,
            direct_takeover=direct_takeover,
            grants=self._config.grants,
            incumbent_detected=profile is not None,
        )

    async def get_available_strategies(self, community_id: str) -> list[MigrationStrategy]:
        state = await self._states.get_required(community_id)
        next_mode = _NEXT_MODE.get(state.mode)
        if next_mode is None:
            return []
        readiness = await self.check_readiness(community_id, next_mode)
        return available_strategies(state, ready=readiness.ready)

    async def request_mode_change(
        self,
        community_id: str,
        target_mode: CoexistenceMode,
        strategy: MigrationStrategy | None = None,
        *,
        confirmation: str | None = None,
        operator: str | None = None,
        direct_takeover: bool = False,
        batch_size: int | None = None,
        duration_days: int | None = None,
    ) -> ModeChangeResult:
        """
        Move a community towards target_mode.

        Business-rule rejections (not ready, invalid transition, missing
        confirmation, irreversible state) are returned as the result status.

        Args:
            community_id: The community.
            target_mode: The mode to reach.
            strategy: Migration strategy; see :mod:`tandem.plans`.
            confirmation: Community name typed by the operator (takeover only).
            operator: Who requested the change, for the audit log.
            direct_takeover: Allow SHADOW -> EXCLUSIVE.
            batch_size: GRADUAL batch size override.
            duration_days: GRADUAL rollout window override.

        Raises:
            CommunityNotFoundError: If the community has no state.
            LockAcquisitionError: If the community lock is busy.
        """
        with self._tracer.span(
            "tandem.engine.request_mode_change",
            {
                ATTR_COMMUNITY_ID: community_id,
                ATTR_TARGET_MODE: target_mode.value,
                ATTR_STRATEGY: strategy.value if strategy else "",
                ATTR_OPERATOR: operator or "",
            },
        ):
            async with self._locks.acquire(
                community_lock_key(community_id),
                timeout=self._config.jobs.lock_timeout_seconds,
            ):
                state = await self._states.get_required(community_id)
                profile = await self._profiles.get_profile(community_id)
                plan = build_plan(
                    state,
                    target_mode,
                    strategy,
                    direct_takeover=direct_takeover,
                    grants=self._config.grants,
                    batch_size=batch_size,
                    duration_days=duration_days,
                    incumbent_detected=profile is not None,
                )
                return await self._execute_plan(state, plan, confirmation, operator)

    async def _execute_plan(
        self,
        state: CommunityMigrationState,
        plan: TransitionPlan,
        confirmation: str | None,
        operator: str | None,
    ) -> ModeChangeResult:
        previous = state.mode
        if not plan.is_executable:
            return await self._reject(
                state, plan, plan.rejection or ModeChangeStatus.REJECTED_INVALID_TRANSITION,
                plan.reason, operator,
            )

        if any(step.requires_confirmation for step in plan.steps):
            expected = state.community_name or state.community_id
            if not confirmation_matches(confirmation, expected):
                return await self._reject(
                    state,
                    plan,
                    ModeChangeStatus.REJECTED_CONFIRMATION,
                    "Confirmation must match the community name",
                    operator,
                )
            await self._audit_log.record(
                AuditEntry.event(
                    state.community_id,
                    AuditEventType.TAKEOVER_CONFIRMATION,
                    datetime.now(UTC),
                    operator=operator,
                    details={"direct_takeover": plan.direct_takeover},
                    mode=state.mode,
                )
            )

        completed: list[CoexistenceMode] = []
        readiness: ReadinessReport | None = None
        for step in plan.steps:
            if step.check_readiness:
                readiness = await self.check_readiness(state.community_id, step.mode)
                if state.readiness_check_passed != readiness.ready:
                    state.readiness_check_passed = readiness.ready
                    await self._states.save(state)
                if not readiness.ready:
                    failed = ", ".join(readiness.failed_check_names)
                    return await self._reject(
                        state,
                        plan,
                        ModeChangeStatus.REJECTED_NOT_READY,
                        f"Not ready for {step.mode.value} mode: {failed}",
                        operator,
                        readiness=readiness,
                        previous_mode=previous,
                        steps=tuple(completed),
                    )
            await self._apply_step(state, step, plan, operator)
            completed.append(step.mode)

        return ModeChangeResult(
            community_id=state.community_id,
            status=ModeChangeStatus.SUCCESS,
            previous_mode=previous,
            current_mode=state.mode,
            strategy=state.strategy,
            readiness=readiness,
            message=f"Moved from {previous.value} to {state.mode.value} mode",
            steps=tuple(completed),
        )

    async def _apply_step(
        self,
        state: CommunityMigrationState,
        step: PlanStep,
        plan: TransitionPlan,
        operator: str | None,
        *,
        audit: bool = True,
    ) -> None:
        old_mode = state.mode
        now = datetime.now(UTC)

        state.mode = step.mode
        state.record_mode_entry(step.mode, now)
        if plan.strategy is not None:
            state.strategy = plan.strategy
        if step.enables_parallel_grants:
            state.parallel_grants_active = True
            state.gradual_batch_size = plan.gradual_batch_size
            state.gradual_duration_days = plan.gradual_duration_days
            state.gradual_started_at = now
        if step.mode == CoexistenceMode.EXCLUSIVE:
            state.parallel_grants_active = False
        await self._states.save(state)

        if audit:
            await self._audit_log.record(
                AuditEntry.mode_change(
                    state.community_id,
                    old_mode,
                    step.mode,
                    now,
                    operator=operator,
                    details={
                        "strategy": state.strategy.value if state.strategy else None,
                        "direct_takeover": plan.direct_takeover,
                    },
                )
            )
        self._metrics.record_transition(state.community_id, old_mode.value, step.mode.value)
        logger.info(
            "Community %s moved from %s to %s mode",
            state.community_id,
            old_mode.value,
            step.mode.value,
            extra={
                ATTR_COMMUNITY_ID: state.community_id,
                ATTR_MODE: step.mode.value,
                ATTR_OPERATOR: operator,
            },
        )

        if step.enables_parallel_grants:
            await self._activate_parallel_grants(state.community_id)

    async def _activate_parallel_grants(self, community_id: str) -> None:
        if self._grant_manager is None:
            logger.warning(
                "No grant manager configured; namespaced grants for community %s "
                "will not be created",
                community_id,
            )
            return
        try:
            await self._grant_manager.setup_namespaced_grants_locked(community_id)
            await self._grant_manager.sync_namespaced_grants_locked(community_id)
        except TransientInfrastructureError as e:
            # The mode change stands; the parallel grant sync job retries.
            logger.warning(
                "Initial namespaced grant sync failed for community %s: %s",
                community_id,
                e.message,
            )

    async def _revoke_parallel_grants(self, community_id: str) -> int:
        if self._grant_manager is None:
            logger.warning(
                "No grant manager configured; namespaced grants in community %s "
                "stay on members after rollback",
                community_id,
            )
            return 0
        try:
            return await self._grant_manager.revoke_namespaced_grants_locked(community_id)
        except TransientInfrastructureError as e:
            # Shadow mode must still be reached; the grants are reported.
            logger.error(
                "Could not revoke namespaced grants in community %s during rollback: %s",
                community_id,
                e.message,
            )
            return 0

    async def _reject(
        self,
        state: CommunityMigrationState,
        plan: TransitionPlan,
        status: ModeChangeStatus,
        message: str,
        operator: str | None,
        *,
        readiness: ReadinessReport | None = None,
        previous_mode: CoexistenceMode | None = None,
        steps: tuple[CoexistenceMode, ...] = (),
    ) -> ModeChangeResult:
        details: dict[str, object] = {
            "target_mode": plan.target_mode.value,
            "strategy": plan.strategy.value if plan.strategy else None,
            "status": status.value,
            "reason": message,
        }
        if readiness is not None:
            details["failed_checks"] = readiness.failed_check_names
        await self._audit_log.record(
            AuditEntry.event(
                state.community_id,
                AuditEventType.MODE_CHANGE_REJECTED,
                datetime.now(UTC),
                operator=operator,
                details=details,
                mode=state.mode,
            )
        )
        logger.info(
            "Mode change for community %s rejected (%s): %s",
            state.community_id,
            status.value,
            message,
        )
        return ModeChangeResult(
            community_id=state.community_id,
            status=status,
            previous_mode=previous_mode or state.mode,
            current_mode=state.mode,
            strategy=plan.strategy,
            readiness=readiness,
            message=message,
            steps=steps,
        )

    # =========================================================================
    # Rollback and emergency backup
    # =========================================================================

    async def rollback(
        self,
        community_id: str,
        reason: str,
        *,
        operator: str | None = None,
        trigger: RollbackTrigger = RollbackTrigger.MANUAL,
    ) -> RollbackResult:
        """
        Move a community one mode back.

        PRIMARY returns to PARALLEL, PARALLEL to SHADOW. Leaving PARALLEL
        takes tandem's namespaced grants away from members first. Divergence
        history is kept.

        Raises:
            IrreversibleStateError: If the community is in EXCLUSIVE mode.
            RollbackPersistenceError: If the new state could not be saved.
            LockAcquisitionError: If the community lock is busy.
        """
        with self._tracer.span(
            "tandem.engine.rollback",
            {ATTR_COMMUNITY_ID: community_id, "tandem.rollback.trigger": trigger.value},
        ):
            async with self._locks.acquire(
                community_lock_key(community_id),
                timeout=self._config.jobs.lock_timeout_seconds,
            ):
                state = await self._states.get_required(community_id)
                previous = state.mode
                if previous.is_terminal:
                    logger.warning(
                        "Rollback of community %s refused: exclusive mode is irreversible",
                        community_id,
                    )
                    raise IrreversibleStateError(community_id)

                target = previous.rollback_target
                if target is None:
                    return RollbackResult(
                        community_id=community_id,
                        success=False,
                        previous_mode=previous,
                        current_mode=previous,
                        reason=reason,
                        trigger=trigger,
                        rollback_count=state.rollback_count,
                        message="Already in shadow mode; nothing to roll back",
                    )

                members_affected = 0
                if target == CoexistenceMode.SHADOW and state.parallel_grants_active:
                    members_affected = await self._revoke_parallel_grants(community_id)

                now = datetime.now(UTC)
                state.mode = target
                state.rollback_count += 1
                state.last_rollback_at = now
                state.last_rollback_reason = reason
                state.readiness_check_passed = False
                if target == CoexistenceMode.SHADOW:
                    state.parallel_grants_active = False
                try:
                    await self._states.save(state)
                except (CoexistenceError, SQLAlchemyError) as e:
                    raise RollbackPersistenceError(community_id, reason, cause=e) from e

                await self._audit_log.record(
                    AuditEntry.rollback(
                        community_id,
                        previous,
                        target,
                        now,
                        reason,
                        trigger,
                        operator=operator,
                        members_affected=members_affected,
                    )
                )
                self._metrics.record_rollback(community_id, trigger.value)
                logger.warning(
                    "Community %s rolled back from %s to %s (%s): %s",
                    community_id,
                    previous.value,
                    target.value,
                    trigger.value,
                    reason,
                    extra={ATTR_COMMUNITY_ID: community_id, ATTR_MODE: target.value},
                )
                return RollbackResult(
                    community_id=community_id,
                    success=True,
                    previous_mode=previous,
                    current_mode=target,
                    reason=reason,
                    trigger=trigger,
                    rollback_count=state.rollback_count,
                    members_affected=members_affected,
                    message=f"Rolled back from {previous.value} to {target.value} mode",
                )

    async def trigger_emergency_backup(
        self,
        community_id: str,
        operator: str | None,
        *,
        confirmed: bool,
    ) -> ModeChangeResult:
        """
        Activate namespaced grants immediately because the incumbent failed.

        Moves SHADOW to PARALLEL without the readiness gate. Always audited,
        also when rejected.
        """
        with self._tracer.span(
            "tandem.engine.emergency_backup",
            {ATTR_COMMUNITY_ID: community_id, ATTR_OPERATOR: operator or ""},
        ):
            async with self._locks.acquire(
                community_lock_key(community_id),
                timeout=self._config.jobs.lock_timeout_seconds,
            ):
                state = await self._states.get_required(community_id)
                previous = state.mode
                now = datetime.now(UTC)

                if not confirmed:
                    status = ModeChangeStatus.REJECTED_CONFIRMATION
                    message = "Emergency backup requires explicit confirmation"
                elif previous != CoexistenceMode.SHADOW:
                    status = ModeChangeStatus.REJECTED_INVALID_TRANSITION
                    message = (
                        f"Emergency backup is only available in shadow mode "
                        f"(current: {previous.value})"
                    )
                else:
                    status = ModeChangeStatus.SUCCESS
                    message = "Emergency backup activated; namespaced grants are live"

                accepted = status == ModeChangeStatus.SUCCESS
                await self._audit_log.record(
                    AuditEntry.emergency_backup(
                        community_id,
                        previous,
                        CoexistenceMode.PARALLEL if accepted else previous,
                        now,
                        operator,
                        confirmed=confirmed,
                        accepted=accepted,
                    )
                )
                if not accepted:
                    logger.warning(
                        "Emergency backup for community %s rejected: %s", community_id, message
                    )
                    return ModeChangeResult(
                        community_id=community_id,
                        status=status,
                        previous_mode=previous,
                        current_mode=previous,
                        message=message,
                    )

                plan = build_plan(
                    state,
                    CoexistenceMode.PARALLEL,
                    state.strategy or MigrationStrategy.INSTANT,
                    grants=self._config.grants,
                )
                await self._apply_step(
                    state,
                    PlanStep(CoexistenceMode.PARALLEL, check_readiness=False),
                    plan,
                    operator,
                    audit=False,
                )
                logger.warning(
                    "Emergency backup activated for community %s by %s", community_id, operator
                )
                return ModeChangeResult(
                    community_id=community_id,
                    status=status,
                    previous_mode=previous,
                    current_mode=state.mode,
                    strategy=state.strategy,
                    message=message,
                    steps=(CoexistenceMode.PARALLEL,),
                )


__all__ = ["MigrationEngine", "confirmation_matches"]

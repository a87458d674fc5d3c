"""
Transition plans.

A mode change request is turned into a :class:`TransitionPlan` once, up
front: the strategy decides which steps run, and the engine then executes
the steps in order. A plan that cannot be executed carries the rejection
status and reason instead of steps, so ``plan_migration`` can show an
operator exactly what a request would do without touching state.

Strategy table (from SHADOW unless noted):

    INSTANT             -> PARALLEL
    GRADUAL             -> PARALLEL, with a rollout window and batch size
    PARALLEL_FOREVER    -> PARALLEL; later PRIMARY requests are rejected
    NEW_SYSTEM_PRIMARY  -> PARALLEL -> PRIMARY (or PARALLEL -> PRIMARY)
    target EXCLUSIVE    -> takeover, from PRIMARY or with direct takeover
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tandem.config import GrantConfig
from tandem.models import (
    CoexistenceMode,
    CommunityMigrationState,
    MigrationStrategy,
    ModeChangeStatus,
)


@dataclass(frozen=True)
class PlanStep:
    """
    One escalation executed by the engine.

    Attributes:
        mode: Mode entered by this step.
        check_readiness: Whether the readiness gate for ``mode`` must pass.
        requires_confirmation: Whether the community name must be echoed.
    """

    mode: CoexistenceMode
    check_readiness: bool = True
    requires_confirmation: bool = False

    @property
    def enables_parallel_grants(self) -> bool:
        return self.mode == CoexistenceMode.PARALLEL


@dataclass(frozen=True)
class TransitionPlan:
    """
    What a mode change request will do.

    ``rejection`` is set (and ``steps`` empty) when the request is invalid
    for the current state.
    """

    community_id: str
    from_mode: CoexistenceMode
    target_mode: CoexistenceMode
    strategy: MigrationStrategy | None
    steps: tuple[PlanStep, ...] = ()
    rejection: ModeChangeStatus | None = None
    reason: str = ""
    direct_takeover: bool = False
    gradual_batch_size: int | None = None
    gradual_duration_days: int | None = None

    @property
    def is_executable(self) -> bool:
        return self.rejection is None and bool(self.steps)

    @property
    def modes(self) -> tuple[CoexistenceMode, ...]:
        return tuple(step.mode for step in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "community_id": self.community_id,
            "from_mode": self.from_mode.value,
            "target_mode": self.target_mode.value,
            "strategy": self.strategy.value if self.strategy else None,
            "steps": [step.mode.value for step in self.steps],
            "rejection": self.rejection.value if self.rejection else None,
            "reason": self.reason,
            "direct_takeover": self.direct_takeover,
            "gradual_batch_size": self.gradual_batch_size,
            "gradual_duration_days": self.gradual_duration_days,
        }


def build_plan(
    state: CommunityMigrationState,
    target: CoexistenceMode,
    strategy: MigrationStrategy | None = None,
    *,
    direct_takeover: bool = False,
    grants: GrantConfig | None = None,
    batch_size: int | None = None,
    duration_days: int | None = None,
    incumbent_detected: bool = True,
) -> TransitionPlan:
    """
    Dispatch a strategy into the steps that reach target.

    Args:
        state: Current community state.
        target: Requested mode.
        strategy: Requested strategy; defaults to the stored one, then INSTANT.
        direct_takeover: Operator override allowing SHADOW -> EXCLUSIVE.
        grants: Grant settings used for GRADUAL defaults.
        batch_size: GRADUAL batch size override.
        duration_days: GRADUAL rollout window override.
        incumbent_detected: False skips readiness for a direct takeover.
    """
    current = state.mode

    def reject(status: ModeChangeStatus, reason: str) -> TransitionPlan:
        return TransitionPlan(
            community_id=state.community_id,
            from_mode=current,
            target_mode=target,
            strategy=strategy,
            rejection=status,
            reason=reason,
            direct_takeover=direct_takeover,
        )

    def plan(*steps: PlanStep, chosen: MigrationStrategy | None) -> TransitionPlan:
        gradual = chosen == MigrationStrategy.GRADUAL and current == CoexistenceMode.SHADOW
        grant_config = grants or GrantConfig()
        return TransitionPlan(
            community_id=state.community_id,
            from_mode=current,
            target_mode=target,
            strategy=chosen,
            steps=steps,
            direct_takeover=direct_takeover,
            gradual_batch_size=(batch_size or grant_config.default_batch_size) if gradual else None,
            gradual_duration_days=(
                (duration_days or grant_config.default_gradual_days) if gradual else None
            ),
        )

    if current.is_terminal:
        return reject(
            ModeChangeStatus.REJECTED_IRREVERSIBLE,
            "Community is in exclusive mode; no further transitions are possible",
        )
    if target == current:
        return reject(
            ModeChangeStatus.REJECTED_INVALID_TRANSITION,
            f"Community is already in {current.value} mode",
        )

    if target == CoexistenceMode.EXCLUSIVE:
        if current == CoexistenceMode.PRIMARY:
            takeover = PlanStep(CoexistenceMode.EXCLUSIVE, requires_confirmation=True)
        elif current == CoexistenceMode.SHADOW and direct_takeover:
            takeover = PlanStep(
                CoexistenceMode.EXCLUSIVE,
                check_readiness=incumbent_detected,
                requires_confirmation=True,
            )
        else:
            return reject(
                ModeChangeStatus.REJECTED_INVALID_TRANSITION,
                f"Takeover is only possible from primary mode (current: {current.value}); "
                "use direct takeover from shadow mode",
            )
        return plan(takeover, chosen=strategy or state.strategy)

    if target == CoexistenceMode.PARALLEL:
        if current != CoexistenceMode.SHADOW:
            return reject(
                ModeChangeStatus.REJECTED_INVALID_TRANSITION,
                f"Cannot move from {current.value} to parallel; use rollback",
            )
        return plan(
            PlanStep(CoexistenceMode.PARALLEL),
            chosen=strategy or MigrationStrategy.INSTANT,
        )

    if target == CoexistenceMode.PRIMARY:
        if current == CoexistenceMode.PARALLEL:
            chosen = strategy or state.strategy
            if MigrationStrategy.PARALLEL_FOREVER in (strategy, state.strategy):
                return reject(
                    ModeChangeStatus.REJECTED_INVALID_TRANSITION,
                    "Community runs the parallel_forever strategy; primary mode is disabled",
                )
            return plan(PlanStep(CoexistenceMode.PRIMARY), chosen=chosen)
        if current == CoexistenceMode.SHADOW and strategy == MigrationStrategy.NEW_SYSTEM_PRIMARY:
            return plan(
                PlanStep(CoexistenceMode.PARALLEL),
                PlanStep(CoexistenceMode.PRIMARY),
                chosen=strategy,
            )
        return reject(
            ModeChangeStatus.REJECTED_INVALID_TRANSITION,
            f"Cannot move from {current.value} to primary with strategy "
            f"{strategy.value if strategy else 'none'}",
        )

    return reject(
        ModeChangeStatus.REJECTED_INVALID_TRANSITION,
        f"Cannot move from {current.value} to {target.value}; use rollback",
    )


def available_strategies(state: CommunityMigrationState, *, ready: bool) -> list[MigrationStrategy]:
    """Strategies an operator may pick from the current state."""
    if not ready:
        return []
    if state.mode == CoexistenceMode.SHADOW:
        return list(MigrationStrategy)
    if state.mode == CoexistenceMode.PARALLEL:
        if state.strategy == MigrationStrategy.PARALLEL_FOREVER:
            return []
        return [MigrationStrategy.NEW_SYSTEM_PRIMARY]
    return []


__all__ = ["PlanStep", "TransitionPlan", "build_plan", "available_strategies"]

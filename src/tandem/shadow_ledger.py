"""
Shadow ledger.

While a community is in SHADOW mode the ledger compares, member by member,
what the incumbent grants with what the new system would grant. It keeps
one ``ShadowMemberRecord`` per member, an append-only divergence history,
and predictions used to self-validate accuracy.

The ledger never mutates the community. It only ever holds a
:class:`~tandem.protocols.ReadOnlyPlatform`, whatever platform object it is
constructed with.

Classification for a member with a linked identity:

    ===================  ============  ===================
    incumbent grant      eligible      status
    ===================  ============  ===================
    no                   yes           NEW_SYSTEM_HIGHER
    yes                  no            NEW_SYSTEM_LOWER
    otherwise                          MATCH
    ===================  ============  ===================

Members without a linked identity are UNKNOWN and excluded from accuracy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from tandem.config import CoexistenceConfig
from tandem.exceptions import (
    ErrorHandler,
    ShadowModeViolationError,
    ShadowSyncIncompleteError,
    TransientInfrastructureError,
)
from tandem.locks import LockManager, community_lock_key
from tandem.metrics import CoexistenceMetrics
from tandem.models import (
    CoexistenceMode,
    Divergence,
    DivergenceResolution,
    DivergenceStatus,
    DivergenceSummary,
    Prediction,
    PredictionOutcome,
    PredictionType,
    PredictionValidation,
    ShadowMemberRecord,
    ShadowSyncResult,
)
from tandem.observability import (
    ATTR_COMMUNITY_ID,
    ATTR_MEMBER_COUNT,
    ATTR_MEMBER_ID,
    Tracer,
    create_tracer,
)
from tandem.protocols import (
    EligibilityProvider,
    EligibilityResult,
    IdentityResolver,
    PlatformMember,
    PlatformReader,
    ReadOnlyPlatform,
)
from tandem.repositories import (
    CommunityStateRepository,
    IncumbentProfileRepository,
    ShadowRepository,
)
from tandem.tiers import tier_for

logger = logging.getLogger(__name__)

_PREDICTION_FOR = {
    DivergenceStatus.NEW_SYSTEM_HIGHER: PredictionType.INCUMBENT_WILL_GRANT,
    DivergenceStatus.NEW_SYSTEM_LOWER: PredictionType.INCUMBENT_WILL_REVOKE,
}


@dataclass(frozen=True)
class MemberObservation:
    """Collaborator answers for one member, gathered before anything is written."""

    member_id: str
    incumbent_grants: frozenset[str]
    linked_identity: str | None
    eligibility: EligibilityResult | None


@dataclass(frozen=True)
class MemberOutcome:
    status: DivergenceStatus
    new_divergences: int = 0
    resolved_divergences: int = 0


def classify(has_incumbent_access: bool, eligible: bool) -> DivergenceStatus:
    """Compare the incumbent's and the new system's verdicts for a linked member."""
    if eligible and not has_incumbent_access:
        return DivergenceStatus.NEW_SYSTEM_HIGHER
    if has_incumbent_access and not eligible:
        return DivergenceStatus.NEW_SYSTEM_LOWER
    return DivergenceStatus.MATCH


def compute_accuracy(matches: int, divergences: int) -> float:
    known = matches + divergences
    return (matches / known) * 100.0 if known else 0.0


class ShadowLedger:
    """
    Runs shadow passes for communities in SHADOW mode.

    Example:
        >>> ledger = ShadowLedger(
        ...     platform, eligibility, identities,
        ...     states, profiles, shadow_repo, locks,
        ... )
        >>> result = await ledger.sync_community("123456789")
        >>> result.accuracy
        97.5
    """

    def __init__(
        self,
        platform: PlatformReader,
        eligibility: EligibilityProvider,
        identities: IdentityResolver,
        states: CommunityStateRepository,
        profiles: IncumbentProfileRepository,
        shadow: ShadowRepository,
        locks: LockManager,
        *,
        config: CoexistenceConfig | None = None,
        metrics: CoexistenceMetrics | None = None,
        error_handler: ErrorHandler | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._platform = ReadOnlyPlatform(platform)
        self._eligibility = eligibility
        self._identities = identities
        self._states = states
        self._profiles = profiles
        self._shadow = shadow
        self._locks = locks
        self._config = config or CoexistenceConfig()
        self._metrics = metrics or CoexistenceMetrics(enable_metrics=False)
        self._error_handler = error_handler or ErrorHandler()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def platform(self) -> ReadOnlyPlatform:
        return self._platform

    async def sync_community(self, community_id: str) -> ShadowSyncResult:
        """
        Run one complete shadow pass.

        Returns:
            Counts for the pass and the accuracy that was written.

        Raises:
            CommunityNotFoundError: If the community has no state.
            ShadowModeViolationError: If the community is not in SHADOW mode.
            LockAcquisitionError: If the community lock is busy.
            ShadowSyncIncompleteError: If some member still failed after retries.
        """
        with self._tracer.span("tandem.shadow_ledger.sync", {ATTR_COMMUNITY_ID: community_id}):
            await self._require_shadow(community_id)

            async with self._locks.acquire(
                community_lock_key(community_id),
                timeout=self._config.jobs.lock_timeout_seconds,
            ):
                # The mode may have changed while waiting for the lock.
                await self._require_shadow(community_id)
                return await self._sync_locked(community_id)

    async def _require_shadow(self, community_id: str) -> None:
        state = await self._states.get_required(community_id)
        if state.mode != CoexistenceMode.SHADOW:
            raise ShadowModeViolationError(community_id, state.mode)

    async def _sync_locked(self, community_id: str) -> ShadowSyncResult:
        started = time.perf_counter()
        profile = await self._profiles.get_profile(community_id)
        access_grants = (
            profile.access_grant_ids(self._config.grants.access_grant_threshold)
            if profile is not None
            else frozenset()
        )
        members = [
            m for m in await self._platform.list_members(community_id) if not m.is_automation
        ]
        logger.debug(
            "Shadow pass for community %s over %d members",
            community_id,
            len(members),
            extra={ATTR_COMMUNITY_ID: community_id, ATTR_MEMBER_COUNT: len(members)},
        )

        semaphore = asyncio.Semaphore(self._config.shadow.concurrency)
        failed: list[str] = []

        async def process(member: PlatformMember) -> MemberOutcome | None:
            async with semaphore:
                try:
                    return await self._process_member(community_id, member, access_grants)
                except TransientInfrastructureError as e:
                    logger.warning(
                        "Shadow evaluation failed for member %s in community %s: %s",
                        member.member_id,
                        community_id,
                        e.message,
                    )
                    failed.append(member.member_id)
                    return None

        outcomes = await asyncio.gather(*(process(m) for m in members))

        if failed:
            raise ShadowSyncIncompleteError(community_id, sorted(failed))

        completed = [o for o in outcomes if o is not None]
        matches = sum(1 for o in completed if o.status == DivergenceStatus.MATCH)
        divergent = sum(1 for o in completed if o.status.is_divergent)
        unknown = sum(1 for o in completed if o.status == DivergenceStatus.UNKNOWN)
        new_divergences = sum(o.new_divergences for o in completed)
        resolved = sum(o.resolved_divergences for o in completed)
        accuracy = compute_accuracy(matches, divergent)

        completed_at = datetime.now(UTC)
        validation = await self.validate_predictions(community_id, now=completed_at)
        await self._states.update_accuracy(community_id, accuracy, completed_at)

        duration_ms = (time.perf_counter() - started) * 1000.0
        self._metrics.record_shadow_sync(
            community_id,
            duration_ms=duration_ms,
            accuracy=accuracy,
            new_divergences=new_divergences,
        )
        logger.info(
            "Shadow pass complete for community %s: %d members, accuracy %.1f%%, "
            "%d new divergences, %d resolved",
            community_id,
            len(completed),
            accuracy,
            new_divergences,
            resolved,
        )
        return ShadowSyncResult(
            community_id=community_id,
            processed=len(completed),
            matches=matches,
            divergences=divergent,
            unknown=unknown,
            new_divergences=new_divergences,
            resolved_divergences=resolved,
            accuracy=accuracy,
            predictions_validated=validation.validated,
            duration_ms=duration_ms,
            completed_at=completed_at,
        )

    # =========================================================================
    # Per-member work
    # =========================================================================

    async def _process_member(
        self,
        community_id: str,
        member: PlatformMember,
        access_grants: frozenset[str],
    ) -> MemberOutcome:
        observation = await self._error_handler.execute_with_retry(
            lambda: self._observe_with_timeout(community_id, member.member_id, access_grants),
            operation_name="shadow_observe_member",
            community_id=community_id,
            retry_config=self._config.shadow.member_retry,
        )
        return await self._record(community_id, observation, datetime.now(UTC))

    async def _observe_with_timeout(
        self,
        community_id: str,
        member_id: str,
        access_grants: frozenset[str],
    ) -> MemberObservation:
        timeout = self._config.shadow.member_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._observe(community_id, member_id, access_grants),
                timeout=timeout,
            )
        except TimeoutError as e:
            raise TransientInfrastructureError(
                f"Evaluation of member {member_id} timed out after {timeout}s",
                community_id=community_id,
            ) from e

    async def _observe(
        self,
        community_id: str,
        member_id: str,
        access_grants: frozenset[str],
    ) -> MemberObservation:
        held = await self._platform.get_member_grants(community_id, member_id)
        identity = await self._identities.get_linked_identity(member_id)
        eligibility = (
            await self._eligibility.evaluate_eligibility(identity) if identity is not None else None
        )
        return MemberObservation(
            member_id=member_id,
            incumbent_grants=frozenset(held) & access_grants,
            linked_identity=identity,
            eligibility=eligibility,
        )

    async def _record(
        self,
        community_id: str,
        observation: MemberObservation,
        now: datetime,
    ) -> MemberOutcome:
        with self._tracer.span(
            "tandem.shadow_ledger.record_member",
            {ATTR_COMMUNITY_ID: community_id, ATTR_MEMBER_ID: observation.member_id},
        ):
            prior = await self._shadow.get_member(community_id, observation.member_id)
            record = self._build_record(community_id, observation, now)
            await self._shadow.save_member(record)

            if prior is not None and prior.divergence_status == record.divergence_status:
                return MemberOutcome(record.divergence_status)
            return await self._reconcile_divergences(record, now)

    def _build_record(
        self,
        community_id: str,
        observation: MemberObservation,
        now: datetime,
    ) -> ShadowMemberRecord:
        incumbent = observation.incumbent_grants
        linked = observation.linked_identity is not None
        verification_tier = tier_for(CoexistenceMode.SHADOW, linked)

        if observation.eligibility is None:
            return ShadowMemberRecord(
                community_id=community_id,
                member_id=observation.member_id,
                incumbent_grants=incumbent,
                linked_identity=observation.linked_identity,
                computed_eligible=False,
                computed_tier=None,
                computed_score=None,
                would_grant=frozenset(),
                would_revoke=frozenset(),
                divergence_status=DivergenceStatus.UNKNOWN,
                verification_tier=verification_tier,
                updated_at=now,
            )

        result = observation.eligibility
        grant_tier = self._config.grants.tier_for(result.tier)
        would_grant = (
            frozenset({self._config.grants.grant_name(grant_tier)})
            if result.eligible and grant_tier is not None
            else frozenset()
        )
        return ShadowMemberRecord(
            community_id=community_id,
            member_id=observation.member_id,
            incumbent_grants=incumbent,
            linked_identity=observation.linked_identity,
            computed_eligible=result.eligible,
            computed_tier=result.tier,
            computed_score=result.score,
            would_grant=would_grant,
            would_revoke=incumbent if not result.eligible else frozenset(),
            divergence_status=classify(bool(incumbent), result.eligible),
            verification_tier=verification_tier,
            updated_at=now,
        )

    async def _reconcile_divergences(
        self,
        record: ShadowMemberRecord,
        now: datetime,
    ) -> MemberOutcome:
        status = record.divergence_status
        if status == DivergenceStatus.UNKNOWN:
            # An open divergence stays open until the member is known again.
            return MemberOutcome(status)

        open_divergence = await self._shadow.get_open_divergence(
            record.community_id, record.member_id
        )
        resolved = 0

        if status == DivergenceStatus.MATCH:
            if open_divergence is not None and open_divergence.id is not None:
                observed = frozenset(open_divergence.incumbent_state.get("grants", ()))
                resolution = (
                    DivergenceResolution.INCUMBENT_MATCHED
                    if observed != record.incumbent_grants
                    else DivergenceResolution.NEW_SYSTEM_WRONG
                )
                await self._shadow.resolve_divergence(open_divergence.id, resolution, now)
                resolved = 1
            return MemberOutcome(status, resolved_divergences=resolved)

        if open_divergence is not None:
            if open_divergence.divergence_type == status:
                return MemberOutcome(status)
            if open_divergence.id is not None:
                await self._shadow.resolve_divergence(
                    open_divergence.id, DivergenceResolution.STILL_DIVERGENT, now
                )
                resolved = 1

        divergence_id = await self._shadow.add_divergence(
            Divergence(
                id=None,
                community_id=record.community_id,
                member_id=record.member_id,
                divergence_type=status,
                incumbent_state={
                    "grants": sorted(record.incumbent_grants),
                    "has_access": record.has_incumbent_access,
                },
                new_system_state={
                    "eligible": record.computed_eligible,
                    "tier": record.computed_tier,
                    "score": record.computed_score,
                    "would_grant": sorted(record.would_grant),
                    "would_revoke": sorted(record.would_revoke),
                },
                detected_at=now,
            )
        )
        await self._shadow.add_prediction(
            Prediction(
                id=None,
                community_id=record.community_id,
                member_id=record.member_id,
                prediction_type=_PREDICTION_FOR[status],
                predicted_at=now,
                details={"divergence_id": divergence_id, "tier": record.computed_tier},
            )
        )
        logger.info(
            "Divergence %s for member %s in community %s",
            status.value,
            record.member_id,
            record.community_id,
        )
        return MemberOutcome(status, new_divergences=1, resolved_divergences=resolved)

    # =========================================================================
    # Reporting
    # =========================================================================

    async def validate_predictions(
        self,
        community_id: str,
        *,
        now: datetime | None = None,
    ) -> PredictionValidation:
        """
        Resolve pending predictions against the latest member records.

        A prediction is CORRECT once the incumbent's access agrees with the
        new system, and INCORRECT when it still disagrees after the
        prediction horizon.
        """
        now = now or datetime.now(UTC)
        horizon = timedelta(hours=self._config.shadow.prediction_horizon_hours)
        correct = incorrect = pending = 0

        for prediction in await self._shadow.list_pending_predictions(community_id):
            if prediction.id is None:
                continue
            record = await self._shadow.get_member(community_id, prediction.member_id)
            agrees = record is not None and (
                record.has_incumbent_access
                if prediction.prediction_type == PredictionType.INCUMBENT_WILL_GRANT
                else not record.has_incumbent_access
            )
            if agrees:
                await self._shadow.resolve_prediction(
                    prediction.id, PredictionOutcome.CORRECT, now
                )
                correct += 1
            elif now - prediction.predicted_at >= horizon:
                await self._shadow.resolve_prediction(
                    prediction.id, PredictionOutcome.INCORRECT, now
                )
                incorrect += 1
            else:
                pending += 1

        return PredictionValidation(
            community_id=community_id,
            validated=correct + incorrect,
            correct=correct,
            incorrect=incorrect,
            still_pending=pending,
        )

    async def get_divergence_summary(self, community_id: str) -> DivergenceSummary:
        records = await self._shadow.list_members(community_id)
        statuses = [r.divergence_status for r in records]
        return DivergenceSummary(
            community_id=community_id,
            total=len(records),
            matches=statuses.count(DivergenceStatus.MATCH),
            higher=statuses.count(DivergenceStatus.NEW_SYSTEM_HIGHER),
            lower=statuses.count(DivergenceStatus.NEW_SYSTEM_LOWER),
            unknown=statuses.count(DivergenceStatus.UNKNOWN),
        )

    async def list_divergences(
        self,
        community_id: str,
        since: datetime | None = None,
        *,
        unresolved_only: bool = False,
    ) -> list[Divergence]:
        return await self._shadow.list_divergences(
            community_id, since, unresolved_only=unresolved_only
        )


__all__ = [
    "ShadowLedger",
    "MemberObservation",
    "MemberOutcome",
    "classify",
    "compute_accuracy",
]

"""
Parallel grant manager.

In PARALLEL and PRIMARY mode tandem mirrors its own eligibility verdicts as
namespaced grants (``tandem-holder``, ``tandem-believer``...) next to the
incumbent's grants. Ownership comes from the registry
(:class:`~tandem.repositories.NamespacedGrantRepository`): only grants
tandem created and registered are ever mutated, and every mutation passes
:meth:`ParallelGrantManager.guard`, which also insists on the namespace
prefix. Incumbent grants are never touched.
When a community rolls back to shadow mode the grants are taken away from
members again, so shadow mode never leaves tandem access behind.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from tandem.config import CoexistenceConfig
from tandem.exceptions import (
    InvalidModeError,
    NamespaceViolationError,
    TransientInfrastructureError,
)
from tandem.locks import LockManager, community_lock_key
from tandem.metrics import CoexistenceMetrics
from tandem.models import (
    AccessSnapshot,
    CoexistenceMode,
    CommunityMigrationState,
    GrantSetupResult,
    GrantSyncResult,
    MigrationStrategy,
    NamespacedGrant,
)
from tandem.observability import (
    ATTR_COMMUNITY_ID,
    ATTR_GRANT_ID,
    ATTR_MEMBER_COUNT,
    ATTR_MEMBER_ID,
    ATTR_MODE,
    Tracer,
    create_tracer,
)
from tandem.protocols import (
    EligibilityProvider,
    GrantSpec,
    IdentityResolver,
    PlatformClient,
    PlatformGrant,
    PlatformMember,
)
from tandem.repositories import (
    CommunityStateRepository,
    IncumbentProfileRepository,
    NamespacedGrantRepository,
)

logger = logging.getLogger(__name__)

_ACTIVE_MODES = [CoexistenceMode.PARALLEL, CoexistenceMode.PRIMARY]


def cohort_bucket(community_id: str, member_id: str) -> float:
    """Stable position of a member in the rollout order, in [0, 1)."""
    digest = hashlib.sha256(f"{community_id}:{member_id}".encode()).digest()
    return int.from_bytes(digest[:8], "big") / 2**64


def rollout_cohort(
    community_id: str,
    member_ids: Iterable[str],
    elapsed_fraction: float,
    batch_size: int,
) -> frozenset[str]:
    """
    Members admitted to a gradual rollout so far.

    Members are ordered by their stable bucket; the cohort is the first
    ``elapsed_fraction`` of them, never fewer than one batch.
    """
    ordered = sorted(member_ids, key=lambda m: cohort_bucket(community_id, m))
    fraction = min(max(elapsed_fraction, 0.0), 1.0)
    size = max(batch_size, math.ceil(fraction * len(ordered)))
    return frozenset(ordered[:size])


@dataclass
class _SyncCounters:
    processed: int = 0
    added: int = 0
    removed: int = 0
    failed: int = 0
    skipped: int = 0
    with_access: int = 0
    unevaluated: int = 0


class ParallelGrantManager:
    """
    Creates and synchronizes tandem's namespaced grants.

    ``setup_namespaced_grants`` and ``sync_namespaced_grants`` take the
    community lock; the migration engine, which already holds it, calls
    the ``*_locked`` variants.
    """

    def __init__(
        self,
        platform: PlatformClient,
        eligibility: EligibilityProvider,
        identities: IdentityResolver,
        states: CommunityStateRepository,
        profiles: IncumbentProfileRepository,
        registry: NamespacedGrantRepository,
        locks: LockManager,
        *,
        config: CoexistenceConfig | None = None,
        metrics: CoexistenceMetrics | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._platform = platform
        self._eligibility = eligibility
        self._identities = identities
        self._states = states
        self._profiles = profiles
        self._registry = registry
        self._locks = locks
        self._config = config or CoexistenceConfig()
        self._metrics = metrics or CoexistenceMetrics(enable_metrics=False)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    # =========================================================================
    # Setup
    # =========================================================================

    async def setup_namespaced_grants(self, community_id: str) -> GrantSetupResult:
        async with self._locks.acquire(
            community_lock_key(community_id),
            timeout=self._config.jobs.lock_timeout_seconds,
        ):
            return await self.setup_namespaced_grants_locked(community_id)

    async def setup_namespaced_grants_locked(self, community_id: str) -> GrantSetupResult:
        """
        Create one namespaced grant per configured tier.

        Grants are placed below the incumbent's most senior access grant.
        A platform grant that already carries a namespaced name but is not
        in the registry is reported as a conflict and left alone.

        Raises:
            InvalidModeError: If grant mutation is not active for the community.
        """
        with self._tracer.span(
            "tandem.parallel_grants.setup", {ATTR_COMMUNITY_ID: community_id}
        ):
            await self._require_active(community_id, "setup_namespaced_grants")

            platform_grants = await self._platform.list_grants(community_id)
            on_platform = {g.grant_id for g in platform_grants}
            registered = {g.tier: g for g in await self._registry.list_grants(community_id)}
            highest = await self._highest_access_position(community_id, platform_grants)

            created: list[str] = []
            existing: list[str] = []
            conflicts: list[str] = []
            grant_config = self._config.grants

            for index, tier in enumerate(grant_config.tiers):
                name = grant_config.grant_name(tier)
                owned = registered.get(tier.tier)
                if owned is not None:
                    if owned.grant_id in on_platform:
                        existing.append(name)
                    else:
                        logger.warning(
                            "Registered grant %s (%s) no longer exists in community %s",
                            owned.grant_id,
                            name,
                            community_id,
                        )
                        conflicts.append(name)
                    continue

                if any(g.name == name for g in platform_grants):
                    logger.warning(
                        "Grant named %s exists in community %s but is not registered; "
                        "refusing to adopt it",
                        name,
                        community_id,
                    )
                    conflicts.append(name)
                    continue

                grant = await self._platform.create_grant(
                    community_id,
                    GrantSpec(
                        name=name,
                        position=max(1, highest - 1 - index),
                        permissions=frozenset(),
                        reason="tandem parallel mode",
                    ),
                )
                await self._registry.register(
                    NamespacedGrant(
                        community_id=community_id,
                        grant_id=grant.grant_id,
                        tier=tier.tier,
                        name=name,
                        created_at=datetime.now(UTC),
                    )
                )
                created.append(name)

            logger.info(
                "Namespaced grant setup for community %s: %d created, %d existing, %d conflicts",
                community_id,
                len(created),
                len(existing),
                len(conflicts),
            )
            return GrantSetupResult(
                community_id=community_id,
                created=tuple(created),
                existing=tuple(existing),
                conflicts=tuple(conflicts),
            )

    async def _highest_access_position(
        self,
        community_id: str,
        platform_grants: list[PlatformGrant],
    ) -> int:
        profile = await self._profiles.get_profile(community_id)
        if profile is None:
            return 1
        access_ids = profile.access_grant_ids(self._config.grants.access_grant_threshold)
        return max(
            (g.position for g in platform_grants if g.grant_id in access_ids),
            default=1,
        )

    # =========================================================================
    # Sync
    # =========================================================================

    async def sync_namespaced_grants(self, community_id: str) -> GrantSyncResult:
        async with self._locks.acquire(
            community_lock_key(community_id),
            timeout=self._config.jobs.lock_timeout_seconds,
        ):
            return await self.sync_namespaced_grants_locked(community_id)

    async def sync_namespaced_grants_locked(self, community_id: str) -> GrantSyncResult:
        """
        Bring every member's namespaced grants in line with eligibility.

        Adds the grant of the member's computed tier and removes any other
        tandem grant the member holds. Under the GRADUAL strategy only the
        current rollout cohort receives additions. Failed platform calls
        are counted, not raised. An access snapshot is recorded at the end.

        Raises:
            InvalidModeError: If grant mutation is not active for the community.
            NamespaceViolationError: If a mutation targets a grant tandem
                does not own.
        """
        with self._tracer.span(
            "tandem.parallel_grants.sync", {ATTR_COMMUNITY_ID: community_id}
        ) as span:
            state = await self._require_active(community_id, "sync_namespaced_grants")

            owned = {g.grant_id: g for g in await self._registry.list_grants(community_id)}
            by_tier = {g.tier: g.grant_id for g in owned.values()}
            names = {g.grant_id: g.name for g in await self._platform.list_grants(community_id)}
            members = [
                m for m in await self._platform.list_members(community_id) if not m.is_automation
            ]
            if span is not None:
                span.set_attribute(ATTR_MEMBER_COUNT, len(members))
                span.set_attribute(ATTR_MODE, state.mode.value)

            cohort = self._cohort(state, [m.member_id for m in members])
            counters = _SyncCounters()
            semaphore = asyncio.Semaphore(self._config.shadow.concurrency)

            async def process(member: PlatformMember) -> None:
                async with semaphore:
                    await self._sync_member(
                        community_id, member, owned, by_tier, names, cohort, counters
                    )

            await asyncio.gather(*(process(m) for m in members))

            operations = counters.added + counters.removed + counters.failed
            await self._registry.record_snapshot(
                AccessSnapshot(
                    community_id=community_id,
                    taken_at=datetime.now(UTC),
                    members_with_access=counters.with_access,
                    operations=operations,
                    failed_operations=counters.failed,
                    members_unevaluated=counters.unevaluated,
                )
            )
            logger.info(
                "Namespaced grant sync for community %s: %d processed, +%d -%d, "
                "%d failed, %d skipped",
                community_id,
                counters.processed,
                counters.added,
                counters.removed,
                counters.failed,
                counters.skipped,
            )
            return GrantSyncResult(
                community_id=community_id,
                processed=counters.processed,
                added=counters.added,
                removed=counters.removed,
                failed=counters.failed,
                skipped=counters.skipped,
                members_with_access=counters.with_access,
            )

    async def _sync_member(
        self,
        community_id: str,
        member: PlatformMember,
        owned: dict[str, NamespacedGrant],
        by_tier: dict[str, str],
        names: dict[str, str],
        cohort: frozenset[str] | None,
        counters: _SyncCounters,
    ) -> None:
        try:
            held = await self._platform.get_member_grants(community_id, member.member_id)
        except TransientInfrastructureError as e:
            self._evaluation_failed(community_id, member, e)
            counters.failed += 1
            counters.unevaluated += 1
            return

        holding = {gid for gid in held if gid in owned}
        try:
            identity = await self._identities.get_linked_identity(member.member_id)
            result = (
                await self._eligibility.evaluate_eligibility(identity)
                if identity is not None
                else None
            )
        except TransientInfrastructureError as e:
            # Nothing was mutated, so the member keeps what it holds.
            self._evaluation_failed(community_id, member, e)
            counters.failed += 1
            if holding:
                counters.with_access += 1
            return

        counters.processed += 1
        target = by_tier.get(result.tier) if result is not None and result.tier else None

        for grant_id in sorted(holding - {target}):
            if await self._mutate(community_id, member.member_id, grant_id, "remove", owned, names):
                counters.removed += 1
                holding.discard(grant_id)
            else:
                counters.failed += 1

        if target is not None and target not in holding:
            if cohort is not None and member.member_id not in cohort:
                counters.skipped += 1
            elif await self._mutate(community_id, member.member_id, target, "add", owned, names):
                counters.added += 1
                holding.add(target)
            else:
                counters.failed += 1

        if holding:
            counters.with_access += 1

    async def _mutate(
        self,
        community_id: str,
        member_id: str,
        grant_id: str,
        operation: str,
        owned: dict[str, NamespacedGrant],
        names: dict[str, str],
    ) -> bool:
        self.guard(community_id, grant_id, operation, owned, names)
        with self._tracer.span(
            f"tandem.parallel_grants.{operation}",
            {ATTR_COMMUNITY_ID: community_id, ATTR_MEMBER_ID: member_id, ATTR_GRANT_ID: grant_id},
        ):
            try:
                if operation == "add":
                    await self._platform.add_grant(community_id, member_id, grant_id)
                else:
                    await self._platform.remove_grant(community_id, member_id, grant_id)
            except TransientInfrastructureError as e:
                logger.warning(
                    "Failed to %s grant %s for member %s in community %s: %s",
                    operation,
                    grant_id,
                    member_id,
                    community_id,
                    e.message,
                )
                self._metrics.record_grant_mutation(community_id, operation, success=False)
                return False
        self._metrics.record_grant_mutation(community_id, operation, success=True)
        return True

    def guard(
        self,
        community_id: str,
        grant_id: str,
        operation: str,
        owned: dict[str, NamespacedGrant],
        names: dict[str, str],
    ) -> None:
        """
        Refuse any mutation of a grant tandem does not own.

        Raises:
            NamespaceViolationError: If the grant is not registered or its
                current name lacks the namespace prefix.
        """
        registered = owned.get(grant_id)
        name = names.get(grant_id, registered.name if registered else None)
        if registered is None or not (name or "").startswith(self._config.grants.namespace_prefix):
            logger.critical(
                "Refusing to %s grant %s (%s) in community %s: not a tandem grant",
                operation,
                grant_id,
                name,
                community_id,
            )
            raise NamespaceViolationError(community_id, grant_id, operation, grant_name=name)

    # =========================================================================
    # Revoke
    # =========================================================================

    async def revoke_namespaced_grants_locked(self, community_id: str) -> int:
        """
        Take every registered namespaced grant away from every member.

        Called by the migration engine, under the community lock, before a
        rollback to shadow mode switches grant mutation off. Registered
        grants whose platform name lost the namespace prefix are left
        alone. Failed removals are logged and counted, not raised.

        Returns:
            Number of members who lost at least one namespaced grant.

        Raises:
            InvalidModeError: If grant mutation is not active for the community.
        """
        with self._tracer.span(
            "tandem.parallel_grants.revoke", {ATTR_COMMUNITY_ID: community_id}
        ) as span:
            await self._require_active(community_id, "revoke_namespaced_grants")

            owned = {g.grant_id: g for g in await self._registry.list_grants(community_id)}
            names = {g.grant_id: g.name for g in await self._platform.list_grants(community_id)}
            prefix = self._config.grants.namespace_prefix
            revocable = frozenset(
                gid for gid, g in owned.items() if names.get(gid, g.name).startswith(prefix)
            )
            for grant_id in sorted(set(owned) - revocable):
                logger.warning(
                    "Registered grant %s in community %s was renamed to %s; not revoking it",
                    grant_id,
                    community_id,
                    names.get(grant_id),
                )

            members = [
                m for m in await self._platform.list_members(community_id) if not m.is_automation
            ]
            if span is not None:
                span.set_attribute(ATTR_MEMBER_COUNT, len(members))

            counters = _SyncCounters()
            semaphore = asyncio.Semaphore(self._config.shadow.concurrency)

            async def process(member: PlatformMember) -> bool:
                async with semaphore:
                    try:
                        held = await self._platform.get_member_grants(
                            community_id, member.member_id
                        )
                    except TransientInfrastructureError as e:
                        self._evaluation_failed(community_id, member, e)
                        counters.failed += 1
                        return False
                    removed = False
                    for grant_id in sorted(held & revocable):
                        if await self._mutate(
                            community_id, member.member_id, grant_id, "remove", owned, names
                        ):
                            counters.removed += 1
                            removed = True
                        else:
                            counters.failed += 1
                    return removed

            affected = sum(await asyncio.gather(*(process(m) for m in members)))
            logger.info(
                "Revoked namespaced grants in community %s: %d members affected, "
                "%d removed, %d failed",
                community_id,
                affected,
                counters.removed,
                counters.failed,
            )
            return affected

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _evaluation_failed(
        community_id: str, member: PlatformMember, error: TransientInfrastructureError
    ) -> None:
        logger.warning(
            "Could not evaluate member %s in community %s: %s",
            member.member_id,
            community_id,
            error.message,
        )

    async def _require_active(self, community_id: str, operation: str) -> CommunityMigrationState:
        state = await self._states.get_required(community_id)
        if not (state.mode.allows_namespaced_grants and state.parallel_grants_active):
            raise InvalidModeError(community_id, state.mode, _ACTIVE_MODES, operation)
        return state

    def _cohort(
        self,
        state: CommunityMigrationState,
        member_ids: list[str],
    ) -> frozenset[str] | None:
        """None means every member is eligible for additions."""
        if state.strategy != MigrationStrategy.GRADUAL or state.mode != CoexistenceMode.PARALLEL:
            return None
        days = state.gradual_duration_days or self._config.grants.default_gradual_days
        batch = state.gradual_batch_size or self._config.grants.default_batch_size
        fraction = 0.0
        if state.gradual_started_at is not None:
            elapsed = datetime.now(UTC) - state.gradual_started_at
            fraction = elapsed / timedelta(days=days)
        return rollout_cohort(state.community_id, member_ids, fraction, batch)


__all__ = ["ParallelGrantManager", "cohort_bucket", "rollout_cohort"]

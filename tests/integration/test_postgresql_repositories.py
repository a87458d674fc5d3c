"""
Integration tests for the PostgreSQL repositories.

These tests require a real PostgreSQL database and verify the same
behaviour the in-memory repositories provide to the unit tests:
- Community state creation, transition validation and listing
- Incumbent profiles and health checks
- Shadow members, append-only divergences and predictions
- Namespaced grant registry and access snapshots
- Audit log ordering and filtering
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tandem.exceptions import CommunityNotFoundError, InvalidModeTransitionError
from tandem.models import (
    AccessSnapshot,
    AuditEntry,
    AuditEventType,
    CoexistenceMode,
    CommunityMigrationState,
    DetectionMethod,
    Divergence,
    DivergenceResolution,
    DivergenceStatus,
    HealthCheckRecord,
    HealthStatus,
    IncumbentProfile,
    MigrationStrategy,
    NamespacedGrant,
    Prediction,
    PredictionOutcome,
    PredictionType,
    ShadowMemberRecord,
    SuspectGrant,
    VerificationTier,
)
from tandem.repositories import (
    PostgreSQLAuditLogRepository,
    PostgreSQLCommunityStateRepository,
    PostgreSQLIncumbentProfileRepository,
    PostgreSQLNamespacedGrantRepository,
    PostgreSQLShadowRepository,
)

pytestmark = [pytest.mark.integration, pytest.mark.postgres]


def new_state(community_id: str = "c1") -> CommunityMigrationState:
    return CommunityMigrationState(
        community_id=community_id,
        community_name="Bored Apes",
        mode=CoexistenceMode.SHADOW,
        shadow_started_at=datetime.now(UTC),
    )


# =============================================================================
# Community state
# =============================================================================


class TestCommunityStateRepository:
    @pytest.fixture
    def repo(self, postgres_engine):
        return PostgreSQLCommunityStateRepository(postgres_engine, enable_tracing=False)

    async def test_create_if_missing_is_idempotent(self, repo):
        first = await repo.create_if_missing(new_state())
        first.accuracy_percent = 50.0
        await repo.save(first)

        second = await repo.create_if_missing(new_state())

        assert second.mode == CoexistenceMode.SHADOW
        assert second.accuracy_percent == 50.0

    async def test_get_required_unknown(self, repo):
        with pytest.raises(CommunityNotFoundError):
            await repo.get_required("nobody")

    async def test_save_round_trips_every_field(self, repo):
        state = await repo.create_if_missing(new_state())
        now = datetime.now(UTC)
        state.mode = CoexistenceMode.PARALLEL
        state.strategy = MigrationStrategy.GRADUAL
        state.record_mode_entry(CoexistenceMode.PARALLEL, now)
        state.gradual_batch_size = 25
        state.gradual_duration_days = 7
        state.gradual_started_at = now
        state.parallel_grants_active = True
        state.readiness_check_passed = True

        await repo.save(state)

        stored = await repo.get_required("c1")
        assert stored.mode == CoexistenceMode.PARALLEL
        assert stored.strategy == MigrationStrategy.GRADUAL
        assert stored.parallel_enabled_at is not None
        assert stored.gradual_batch_size == 25
        assert stored.gradual_started_at == now
        assert stored.parallel_grants_active
        assert stored.readiness_check_passed

    async def test_exclusive_cannot_be_left(self, repo):
        state = await repo.create_if_missing(new_state())
        state.mode = CoexistenceMode.EXCLUSIVE
        await repo.save(state)

        state.mode = CoexistenceMode.PRIMARY
        with pytest.raises(InvalidModeTransitionError):
            await repo.save(state)

        assert (await repo.get_required("c1")).mode == CoexistenceMode.EXCLUSIVE

    async def test_update_accuracy(self, repo):
        await repo.create_if_missing(new_state())
        synced_at = datetime.now(UTC)

        await repo.update_accuracy("c1", 96.5, synced_at)

        stored = await repo.get_required("c1")
        assert stored.accuracy_percent == 96.5
        assert stored.last_shadow_sync_at is not None

    async def test_update_accuracy_unknown(self, repo):
        with pytest.raises(CommunityNotFoundError):
            await repo.update_accuracy("nobody", 1.0, datetime.now(UTC))

    async def test_list_by_modes(self, repo):
        for community_id in ("a", "b", "c"):
            await repo.create_if_missing(new_state(community_id))
        state = await repo.get_required("b")
        state.mode = CoexistenceMode.PARALLEL
        await repo.save(state)

        shadow = await repo.list_by_modes([CoexistenceMode.SHADOW])
        limited = await repo.list_by_modes([CoexistenceMode.SHADOW], limit=1)

        assert [s.community_id for s in shadow] == ["a", "c"]
        assert [s.community_id for s in limited] == ["a"]


# =============================================================================
# Incumbent profiles
# =============================================================================


class TestIncumbentProfileRepository:
    @pytest.fixture
    def repo(self, postgres_engine):
        return PostgreSQLIncumbentProfileRepository(postgres_engine, enable_tracing=False)

    async def test_profile_upsert(self, repo):
        profile = IncumbentProfile(
            community_id="c1",
            provider="collabland",
            confidence=0.95,
            detection_method=DetectionMethod.AUTOMATION_ID,
            automation_identity="bot-1",
            monitored_channels=("ch-join",),
            suspect_grants={"g1": SuspectGrant("g1", "Holder", 0.8)},
            catalog_version="2024.1",
        )
        await repo.save_profile(profile)
        profile.health_status = HealthStatus.WARNING
        await repo.save_profile(profile)

        stored = await repo.get_profile("c1")

        assert stored.provider == "collabland"
        assert stored.monitored_channels == ("ch-join",)
        assert stored.suspect_grants["g1"].confidence == 0.8
        assert stored.health_status == HealthStatus.WARNING
        assert stored.detected_at is not None

    async def test_missing_profile(self, repo):
        assert await repo.get_profile("nobody") is None

    async def test_health_checks_newest_first(self, repo):
        now = datetime.now(UTC)
        for hours, status in ((2, HealthStatus.HEALTHY), (1, HealthStatus.CRITICAL)):
            await repo.record_health_check(
                HealthCheckRecord("c1", status, (), now - timedelta(hours=hours))
            )

        records = await repo.list_health_checks("c1", limit=1)

        assert [r.status for r in records] == [HealthStatus.CRITICAL]


# =============================================================================
# Shadow ledger storage
# =============================================================================


class TestShadowRepository:
    @pytest.fixture
    def repo(self, postgres_engine):
        return PostgreSQLShadowRepository(postgres_engine, enable_tracing=False)

    def divergence(self, member_id="m1", detected_at=None):
        return Divergence(
            id=None,
            community_id="c1",
            member_id=member_id,
            divergence_type=DivergenceStatus.NEW_SYSTEM_HIGHER,
            incumbent_state={"grants": [], "has_access": False},
            new_system_state={"eligible": True, "tier": "holder"},
            detected_at=detected_at or datetime.now(UTC),
        )

    async def test_member_upsert(self, repo):
        record = ShadowMemberRecord(
            community_id="c1",
            member_id="m1",
            incumbent_grants=frozenset({"g1"}),
            linked_identity="0xabc",
            computed_eligible=True,
            computed_tier="holder",
            computed_score=1.0,
            would_grant=frozenset(),
            would_revoke=frozenset(),
            divergence_status=DivergenceStatus.MATCH,
            verification_tier=VerificationTier.FULL,
            updated_at=datetime.now(UTC),
        )
        await repo.save_member(record)
        await repo.save_member(record)

        members = await repo.list_members("c1")

        assert len(members) == 1
        assert members[0].incumbent_grants == frozenset({"g1"})
        assert members[0].divergence_status == DivergenceStatus.MATCH

    async def test_divergences_are_kept_after_resolution(self, repo):
        divergence_id = await repo.add_divergence(self.divergence())

        await repo.resolve_divergence(
            divergence_id, DivergenceResolution.INCUMBENT_MATCHED, datetime.now(UTC)
        )

        (stored,) = await repo.list_divergences("c1")
        assert stored.id == divergence_id
        assert stored.resolution == DivergenceResolution.INCUMBENT_MATCHED
        assert await repo.list_divergences("c1", unresolved_only=True) == []
        assert await repo.get_open_divergence("c1", "m1") is None

    async def test_count_unresolved_since(self, repo):
        now = datetime.now(UTC)
        await repo.add_divergence(self.divergence("old", now - timedelta(days=30)))
        await repo.add_divergence(self.divergence("new", now))

        assert await repo.count_unresolved_since("c1", now - timedelta(days=14)) == 1

    async def test_prediction_accuracy(self, repo):
        now = datetime.now(UTC)
        ids = [
            await repo.add_prediction(
                Prediction(
                    id=None,
                    community_id="c1",
                    member_id=f"m{i}",
                    prediction_type=PredictionType.INCUMBENT_WILL_GRANT,
                    predicted_at=now,
                )
            )
            for i in range(4)
        ]
        assert await repo.prediction_accuracy("c1") is None

        for prediction_id in ids[:3]:
            await repo.resolve_prediction(prediction_id, PredictionOutcome.CORRECT, now)
        await repo.resolve_prediction(ids[3], PredictionOutcome.INCORRECT, now)

        assert await repo.prediction_accuracy("c1") == pytest.approx(75.0)
        assert await repo.list_pending_predictions("c1") == []


# =============================================================================
# Namespaced grants
# =============================================================================


class TestNamespacedGrantRepository:
    @pytest.fixture
    def repo(self, postgres_engine):
        return PostgreSQLNamespacedGrantRepository(postgres_engine, enable_tracing=False)

    async def test_register_is_idempotent(self, repo):
        grant = NamespacedGrant("c1", "g1", "holder", "tandem-holder", datetime.now(UTC))

        await repo.register(grant)
        await repo.register(grant)

        assert len(await repo.list_grants("c1")) == 1
        assert await repo.is_registered("c1", "g1")
        assert not await repo.is_registered("c1", "g2")

    async def test_snapshots_in_window(self, repo):
        now = datetime.now(UTC)
        for minutes, members, unevaluated in ((90, 200, 0), (30, 100, 0), (5, 88, 3)):
            await repo.record_snapshot(
                AccessSnapshot(
                    "c1", now - timedelta(minutes=minutes), members, 10, 0, unevaluated
                )
            )

        snapshots = await repo.list_snapshots("c1", since=now - timedelta(hours=1))

        assert [s.members_with_access for s in snapshots] == [100, 88]
        assert [s.members_unevaluated for s in snapshots] == [0, 3]


# =============================================================================
# Audit log
# =============================================================================


class TestAuditLogRepository:
    @pytest.fixture
    def repo(self, postgres_engine):
        return PostgreSQLAuditLogRepository(postgres_engine, enable_tracing=False)

    async def test_record_and_filter(self, repo):
        now = datetime.now(UTC)
        await repo.record(
            AuditEntry.mode_change(
                "c1", CoexistenceMode.SHADOW, CoexistenceMode.PARALLEL, now, operator="ops"
            )
        )
        entry_id = await repo.record(
            AuditEntry.emergency_backup(
                "c1",
                CoexistenceMode.SHADOW,
                CoexistenceMode.SHADOW,
                now + timedelta(seconds=1),
                "ops",
                confirmed=False,
                accepted=False,
            )
        )

        latest = await repo.get_latest("c1")
        mode_changes = await repo.list_entries("c1", [AuditEventType.MODE_CHANGED])

        assert latest.id == entry_id
        assert latest.details == {"confirmed": False, "accepted": False}
        assert [e.new_mode for e in mode_changes] == [CoexistenceMode.PARALLEL]

    async def test_newest_first(self, repo):
        now = datetime.now(UTC)
        for minutes in (3, 2, 1):
            await repo.record(
                AuditEntry.event(
                    "c1",
                    AuditEventType.HEALTH_ALERT,
                    now - timedelta(minutes=minutes),
                    details={"minutes": minutes},
                )
            )

        entries = await repo.list_entries("c1", limit=2, newest_first=True)

        assert [e.details["minutes"] for e in entries] == [1, 2]

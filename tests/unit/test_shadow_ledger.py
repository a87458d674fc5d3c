"""
Unit tests for ShadowLedger.

Tests cover:
- Read-only guarantee (no platform mutations in shadow mode)
- Member classification and accuracy
- Divergence history: creation, idempotent resync, resolution
- Prediction validation
- Incomplete passes (transient failures, timeouts)
- Mode and lock guards
"""

from datetime import UTC, datetime, timedelta

import pytest

from tandem.config import ShadowSyncConfig
from tandem.exceptions import (
    CommunityNotFoundError,
    LockAcquisitionError,
    ShadowModeViolationError,
    ShadowSyncIncompleteError,
)
from tandem.locks import community_lock_key
from tandem.models import (
    CoexistenceMode,
    DivergenceResolution,
    DivergenceStatus,
    PredictionOutcome,
    PredictionType,
    VerificationTier,
)
from tandem.protocols import ReadOnlyPlatform
from tandem.shadow_ledger import classify, compute_accuracy
from tandem.testing import NO_DELAY_RETRY, fast_config
from tests.fixtures import BOT_ID, COMMUNITY_ID, HOLDER_GRANT, MODERATOR_GRANT, add_members

HOLDER = frozenset({HOLDER_GRANT})


# =============================================================================
# Pure helpers
# =============================================================================


class TestClassify:
    """Tests for the classification table."""

    @pytest.mark.parametrize(
        ("has_access", "eligible", "expected"),
        [
            (False, True, DivergenceStatus.NEW_SYSTEM_HIGHER),
            (True, False, DivergenceStatus.NEW_SYSTEM_LOWER),
            (True, True, DivergenceStatus.MATCH),
            (False, False, DivergenceStatus.MATCH),
        ],
    )
    def test_classify(self, has_access, eligible, expected):
        assert classify(has_access, eligible) == expected

    def test_accuracy_excludes_nothing_known(self):
        assert compute_accuracy(0, 0) == 0.0

    def test_accuracy(self):
        assert compute_accuracy(3, 1) == 75.0


# =============================================================================
# Shadow invariant
# =============================================================================


class TestReadOnly:
    """The ledger must never change grants."""

    def test_wraps_platform_read_only(self, harness):
        assert isinstance(harness.ledger.platform, ReadOnlyPlatform)
        assert not hasattr(harness.ledger.platform, "add_grant")
        assert not hasattr(harness.ledger.platform, "remove_grant")
        assert not hasattr(harness.ledger.platform, "create_grant")

    @pytest.mark.asyncio
    async def test_full_pass_makes_no_mutations(self, harness, community):
        """Test a pass with every kind of divergence writes nothing to the platform."""
        higher, lower, match, unknown = add_members(harness.platform, 4)
        harness.platform.set_member_grants(community, lower, set(HOLDER))
        harness.platform.set_member_grants(community, match, set(HOLDER))
        harness.link_eligible(higher, "holder")
        harness.link_ineligible(lower)
        harness.link_eligible(match, "holder")

        await harness.ledger.sync_community(community)

        assert harness.platform.mutations == []
        assert harness.platform.holdings(community, lower) == HOLDER
        assert harness.platform.holdings(community, higher) == frozenset()


# =============================================================================
# Classification and accuracy
# =============================================================================


class TestSyncCommunity:
    """Tests for one complete shadow pass."""

    @pytest.mark.asyncio
    async def test_classifies_members(self, harness, community):
        higher, lower, match, unknown = add_members(harness.platform, 4)
        harness.platform.set_member_grants(community, lower, set(HOLDER))
        harness.platform.set_member_grants(community, match, set(HOLDER))
        harness.platform.set_member_grants(community, unknown, set(HOLDER))
        harness.link_eligible(higher, "holder")
        harness.link_ineligible(lower)
        harness.link_eligible(match, "holder")

        result = await harness.ledger.sync_community(community)

        statuses = {
            member: (await harness.shadow.get_member(community, member)).divergence_status
            for member in (higher, lower, match, unknown)
        }
        assert statuses == {
            higher: DivergenceStatus.NEW_SYSTEM_HIGHER,
            lower: DivergenceStatus.NEW_SYSTEM_LOWER,
            match: DivergenceStatus.MATCH,
            unknown: DivergenceStatus.UNKNOWN,
        }
        assert result.processed == 4
        assert result.matches == 1
        assert result.divergences == 2
        assert result.unknown == 1
        assert result.new_divergences == 2

    @pytest.mark.asyncio
    async def test_writes_accuracy(self, harness, community):
        """Test accuracy is matches over known members and is persisted."""
        members = add_members(harness.platform, 4)
        for member in members[:3]:
            harness.platform.set_member_grants(community, member, set(HOLDER))
            harness.link_eligible(member, "holder")
        harness.link_eligible(members[3], "diamond")

        result = await harness.ledger.sync_community(community)

        assert result.accuracy == 75.0
        state = await harness.states.get(community)
        assert state.accuracy_percent == 75.0
        assert state.last_shadow_sync_at == result.completed_at

    @pytest.mark.asyncio
    async def test_non_access_grants_are_ignored(self, harness, community):
        """Test a grant below the access threshold does not count as incumbent access."""
        (member,) = add_members(harness.platform, 1, grants=frozenset({MODERATOR_GRANT}))
        harness.link_ineligible(member)

        await harness.ledger.sync_community(community)

        record = await harness.shadow.get_member(community, member)
        assert record.incumbent_grants == frozenset()
        assert record.divergence_status == DivergenceStatus.MATCH

    @pytest.mark.asyncio
    async def test_records_would_grant_and_revoke(self, harness, community):
        eligible, ineligible = add_members(harness.platform, 2, grants=HOLDER)
        harness.link_eligible(eligible, "diamond", score=0.97)
        harness.link_ineligible(ineligible)

        await harness.ledger.sync_community(community)

        granted = await harness.shadow.get_member(community, eligible)
        assert granted.computed_tier == "diamond"
        assert granted.computed_score == 0.97
        assert granted.would_grant == frozenset({"tandem-diamond"})
        assert granted.would_revoke == frozenset()
        revoked = await harness.shadow.get_member(community, ineligible)
        assert revoked.would_grant == frozenset()
        assert revoked.would_revoke == HOLDER

    @pytest.mark.asyncio
    async def test_verification_tier_follows_link(self, harness, community):
        linked, unlinked = add_members(harness.platform, 2)
        harness.link_ineligible(linked)

        await harness.ledger.sync_community(community)

        assert (
            await harness.shadow.get_member(community, linked)
        ).verification_tier == VerificationTier.LINKED_BASIC
        assert (
            await harness.shadow.get_member(community, unlinked)
        ).verification_tier == VerificationTier.INCUMBENT_ONLY

    @pytest.mark.asyncio
    async def test_skips_automation_members(self, harness, community):
        add_members(harness.platform, 1)

        result = await harness.ledger.sync_community(community)

        assert result.processed == 1
        assert await harness.shadow.get_member(community, BOT_ID) is None

    @pytest.mark.asyncio
    async def test_records_span(self, harness, community):
        await harness.ledger.sync_community(community)

        assert "tandem.shadow_ledger.sync" in harness.tracer.span_names


class TestNoLinkedIdentities:
    """A community where nobody has linked an identity."""

    @pytest.mark.asyncio
    async def test_everyone_unknown(self, harness, community):
        members = add_members(harness.platform, 5, grants=HOLDER)

        result = await harness.ledger.sync_community(community)

        for member in members:
            record = await harness.shadow.get_member(community, member)
            assert record.divergence_status == DivergenceStatus.UNKNOWN
            assert record.linked_identity is None
        assert result.unknown == 5
        assert result.accuracy == 0.0
        assert await harness.ledger.list_divergences(community) == []
        assert harness.eligibility.evaluated == []


# =============================================================================
# Divergence history
# =============================================================================


class TestDivergenceHistory:
    """Tests for append-only divergence records."""

    @pytest.mark.asyncio
    async def test_identical_resync_adds_nothing(self, harness, community):
        """Test repeated passes over unchanged members are idempotent."""
        higher, lower = add_members(harness.platform, 2)
        harness.platform.set_member_grants(community, lower, set(HOLDER))
        harness.link_eligible(higher, "holder")
        harness.link_ineligible(lower)
        await harness.ledger.sync_community(community)
        divergences = await harness.ledger.list_divergences(community)
        predictions = harness.shadow.all_predictions()

        result = await harness.ledger.sync_community(community)

        assert result.new_divergences == 0
        assert result.resolved_divergences == 0
        assert await harness.ledger.list_divergences(community) == divergences
        assert harness.shadow.all_predictions() == predictions

    @pytest.mark.asyncio
    async def test_lower_then_eligible_resolves(self, harness, community):
        """
        Test a holder the new system rejects diverges, and the divergence is
        resolved once the member becomes eligible.
        """
        (member,) = add_members(harness.platform, 1, grants=HOLDER)
        identity = harness.link_ineligible(member)

        first = await harness.ledger.sync_community(community)

        (divergence,) = await harness.ledger.list_divergences(community)
        assert first.new_divergences == 1
        assert divergence.divergence_type == DivergenceStatus.NEW_SYSTEM_LOWER
        assert divergence.incumbent_state == {"grants": [HOLDER_GRANT], "has_access": True}
        assert divergence.new_system_state["eligible"] is False
        assert divergence.resolved_at is None

        harness.eligibility.set_eligible(identity, "holder", score=0.9)
        second = await harness.ledger.sync_community(community)

        (resolved,) = await harness.ledger.list_divergences(community)
        assert second.resolved_divergences == 1
        assert resolved.resolved_at is not None
        assert resolved.resolution == DivergenceResolution.NEW_SYSTEM_WRONG
        record = await harness.shadow.get_member(community, member)
        assert record.divergence_status == DivergenceStatus.MATCH
        assert await harness.ledger.list_divergences(community, unresolved_only=True) == []

    @pytest.mark.asyncio
    async def test_incumbent_catching_up_resolves(self, harness, community):
        """Test the resolution records that the incumbent changed, not the new system."""
        (member,) = add_members(harness.platform, 1)
        harness.link_eligible(member, "holder")
        await harness.ledger.sync_community(community)

        harness.platform.set_member_grants(community, member, set(HOLDER))
        await harness.ledger.sync_community(community)

        (divergence,) = await harness.ledger.list_divergences(community)
        assert divergence.resolution == DivergenceResolution.INCUMBENT_MATCHED

    @pytest.mark.asyncio
    async def test_flip_direction_appends(self, harness, community):
        """Test HIGHER turning into LOWER closes the old record and opens a new one."""
        (member,) = add_members(harness.platform, 1)
        identity = harness.link_eligible(member, "holder")
        await harness.ledger.sync_community(community)

        harness.platform.set_member_grants(community, member, set(HOLDER))
        harness.eligibility.set_ineligible(identity)
        result = await harness.ledger.sync_community(community)

        first, second = await harness.ledger.list_divergences(community)
        assert result.new_divergences == 1
        assert result.resolved_divergences == 1
        assert first.divergence_type == DivergenceStatus.NEW_SYSTEM_HIGHER
        assert first.resolution == DivergenceResolution.STILL_DIVERGENT
        assert second.divergence_type == DivergenceStatus.NEW_SYSTEM_LOWER
        assert second.resolved_at is None

    @pytest.mark.asyncio
    async def test_unlinking_keeps_divergence_open(self, harness, community):
        (member,) = add_members(harness.platform, 1, grants=HOLDER)
        harness.link_ineligible(member)
        await harness.ledger.sync_community(community)

        harness.identities.unlink(member)
        await harness.ledger.sync_community(community)

        (divergence,) = await harness.ledger.list_divergences(community)
        assert divergence.resolved_at is None
        record = await harness.shadow.get_member(community, member)
        assert record.divergence_status == DivergenceStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_divergence_summary(self, harness, community):
        higher, lower, match, unknown = add_members(harness.platform, 4)
        harness.platform.set_member_grants(community, lower, set(HOLDER))
        harness.link_eligible(higher, "holder")
        harness.link_ineligible(lower)
        harness.link_ineligible(match)
        await harness.ledger.sync_community(community)

        summary = await harness.ledger.get_divergence_summary(community)

        assert (summary.total, summary.matches, summary.higher, summary.lower) == (4, 1, 1, 1)
        assert summary.unknown == 1
        assert summary.accuracy == pytest.approx(100.0 / 3)


# =============================================================================
# Predictions
# =============================================================================


class TestPredictions:
    """Tests for prediction-based self-validation."""

    @pytest.mark.asyncio
    async def test_divergence_creates_prediction(self, harness, community):
        higher, lower = add_members(harness.platform, 2)
        harness.platform.set_member_grants(community, lower, set(HOLDER))
        harness.link_eligible(higher, "holder")
        harness.link_ineligible(lower)

        await harness.ledger.sync_community(community)

        by_member = {p.member_id: p for p in harness.shadow.all_predictions()}
        assert by_member[higher].prediction_type == PredictionType.INCUMBENT_WILL_GRANT
        assert by_member[lower].prediction_type == PredictionType.INCUMBENT_WILL_REVOKE
        assert all(p.outcome == PredictionOutcome.PENDING for p in by_member.values())

    @pytest.mark.asyncio
    async def test_prediction_confirmed(self, harness, community):
        """Test the incumbent granting access confirms a WILL_GRANT prediction."""
        (member,) = add_members(harness.platform, 1)
        harness.link_eligible(member, "holder")
        await harness.ledger.sync_community(community)

        harness.platform.set_member_grants(community, member, set(HOLDER))
        result = await harness.ledger.sync_community(community)

        (prediction,) = harness.shadow.all_predictions()
        assert result.predictions_validated == 1
        assert prediction.outcome == PredictionOutcome.CORRECT
        assert await harness.shadow.prediction_accuracy(community) == 100.0

    @pytest.mark.asyncio
    async def test_prediction_expires_incorrect(self, harness, community):
        (member,) = add_members(harness.platform, 1)
        harness.link_eligible(member, "holder")
        await harness.ledger.sync_community(community)

        later = datetime.now(UTC) + timedelta(hours=73)
        validation = await harness.ledger.validate_predictions(community, now=later)

        assert validation.incorrect == 1
        assert validation.accuracy == 0.0
        (prediction,) = harness.shadow.all_predictions()
        assert prediction.outcome == PredictionOutcome.INCORRECT

    @pytest.mark.asyncio
    async def test_prediction_within_horizon_stays_pending(self, harness, community):
        (member,) = add_members(harness.platform, 1)
        harness.link_eligible(member, "holder")
        await harness.ledger.sync_community(community)

        validation = await harness.ledger.validate_predictions(community)

        assert validation.still_pending == 1
        assert validation.accuracy is None


# =============================================================================
# Failure handling
# =============================================================================


class TestIncompletePass:
    """A pass that cannot evaluate every member must not write accuracy."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, harness, community):
        (member,) = add_members(harness.platform, 1, grants=HOLDER)
        harness.link_eligible(member, "holder")
        harness.platform.fail_next("get_member_grants", times=2)

        result = await harness.ledger.sync_community(community)

        assert result.processed == 1
        assert result.accuracy == 100.0

    @pytest.mark.asyncio
    async def test_exhausted_retries_abort_pass(self, harness, community):
        (member,) = add_members(harness.platform, 1, grants=HOLDER)
        harness.link_eligible(member, "holder")
        harness.platform.fail_next("get_member_grants", times=NO_DELAY_RETRY.max_attempts)

        with pytest.raises(ShadowSyncIncompleteError) as exc_info:
            await harness.ledger.sync_community(community)

        assert exc_info.value.failed_members == [member]
        state = await harness.states.get(community)
        assert state.last_shadow_sync_at is None
        assert state.accuracy_percent == 0.0

    @pytest.mark.asyncio
    async def test_eligibility_outage_aborts_pass(self, harness, community):
        (member,) = add_members(harness.platform, 1)
        harness.link_eligible(member, "holder")
        harness.eligibility.fail_next(times=NO_DELAY_RETRY.max_attempts)

        with pytest.raises(ShadowSyncIncompleteError):
            await harness.ledger.sync_community(community)

        assert (await harness.states.get(community)).last_shadow_sync_at is None


class TestMemberTimeout:
    """A member whose evaluation hangs is treated as a transient failure."""

    @pytest.fixture
    def config(self):
        return fast_config(
            shadow=ShadowSyncConfig(member_timeout_seconds=0.05, member_retry=NO_DELAY_RETRY)
        )

    @pytest.mark.asyncio
    async def test_slow_member_aborts_pass(self, harness, community):
        fast, slow = add_members(harness.platform, 2)
        harness.platform.delay_member(community, slow, 0.5)

        with pytest.raises(ShadowSyncIncompleteError) as exc_info:
            await harness.ledger.sync_community(community)

        assert exc_info.value.failed_members == [slow]
        assert (await harness.states.get(community)).last_shadow_sync_at is None


# =============================================================================
# Guards
# =============================================================================


class TestGuards:
    """Tests for mode and lock guards."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "mode",
        [CoexistenceMode.PARALLEL, CoexistenceMode.PRIMARY, CoexistenceMode.EXCLUSIVE],
    )
    async def test_refuses_outside_shadow(self, harness, mode):
        harness.seed_state(COMMUNITY_ID, mode=mode)

        with pytest.raises(ShadowModeViolationError) as exc_info:
            await harness.ledger.sync_community(COMMUNITY_ID)

        assert exc_info.value.current_mode == mode
        assert harness.platform.calls == []

    @pytest.mark.asyncio
    async def test_unknown_community(self, harness):
        with pytest.raises(CommunityNotFoundError):
            await harness.ledger.sync_community("missing")

    @pytest.mark.asyncio
    async def test_busy_lock(self, harness, community):
        async with harness.locks.acquire(community_lock_key(community)):
            with pytest.raises(LockAcquisitionError):
                await harness.ledger.sync_community(community)

        assert harness.platform.calls == []

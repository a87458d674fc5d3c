"""
Unit tests for tandem data models.

Tests cover:
- The coexistence mode state machine
- Invariants enforced on construction
- Derived properties and serialization of entities and results
"""

from datetime import UTC, datetime, timedelta

import pytest

from tandem.models import (
    AuditEntry,
    AuditEventType,
    CoexistenceMode,
    CommunityMigrationState,
    DetectionMethod,
    Divergence,
    DivergenceResolution,
    DivergenceStatus,
    DivergenceSummary,
    IncumbentProfile,
    ModeChangeResult,
    ModeChangeStatus,
    PredictionValidation,
    ReadinessCheck,
    ReadinessReport,
    RollbackTrigger,
    ShadowMemberRecord,
    SuspectGrant,
    VerificationTier,
    is_valid_mode_change,
)

SHADOW = CoexistenceMode.SHADOW
PARALLEL = CoexistenceMode.PARALLEL
PRIMARY = CoexistenceMode.PRIMARY
EXCLUSIVE = CoexistenceMode.EXCLUSIVE

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def member_record(linked_identity="0xabc", status=DivergenceStatus.MATCH):
    return ShadowMemberRecord(
        community_id="c1",
        member_id="m1",
        incumbent_grants=frozenset({"g1"}),
        linked_identity=linked_identity,
        computed_eligible=True,
        computed_tier="holder",
        computed_score=1.0,
        would_grant=frozenset(),
        would_revoke=frozenset(),
        divergence_status=status,
        verification_tier=VerificationTier.LINKED_BASIC,
        updated_at=NOW,
    )


# =============================================================================
# Mode state machine
# =============================================================================


class TestCoexistenceMode:
    """Tests for the mode state machine."""

    def test_forward_transitions(self):
        assert SHADOW.can_escalate_to(PARALLEL)
        assert PARALLEL.can_escalate_to(PRIMARY)
        assert PRIMARY.can_escalate_to(EXCLUSIVE)
        assert not SHADOW.can_escalate_to(PRIMARY)
        assert not SHADOW.can_escalate_to(EXCLUSIVE)

    def test_direct_takeover_only_from_shadow(self):
        assert SHADOW.can_escalate_to(EXCLUSIVE, direct_takeover=True)
        assert not SHADOW.can_escalate_to(PARALLEL, direct_takeover=True)
        assert not PARALLEL.can_escalate_to(EXCLUSIVE, direct_takeover=True)

    def test_rollback_targets(self):
        assert PRIMARY.rollback_target == PARALLEL
        assert PARALLEL.rollback_target == SHADOW
        assert SHADOW.rollback_target is None
        assert EXCLUSIVE.rollback_target is None

    def test_exclusive_is_terminal(self):
        assert EXCLUSIVE.is_terminal
        assert not any(EXCLUSIVE.can_escalate_to(mode) for mode in CoexistenceMode)

    def test_namespaced_grant_modes(self):
        assert [m for m in CoexistenceMode if m.allows_namespaced_grants] == [PARALLEL, PRIMARY]

    @pytest.mark.parametrize(
        ("old", "new", "valid"),
        [
            (SHADOW, SHADOW, True),
            (SHADOW, PARALLEL, True),
            (SHADOW, EXCLUSIVE, True),
            (SHADOW, PRIMARY, False),
            (PARALLEL, SHADOW, True),
            (PRIMARY, PARALLEL, True),
            (PRIMARY, SHADOW, False),
            (EXCLUSIVE, PRIMARY, False),
            (EXCLUSIVE, SHADOW, False),
        ],
    )
    def test_is_valid_mode_change(self, old, new, valid):
        assert is_valid_mode_change(old, new) is valid


# =============================================================================
# Entities
# =============================================================================


class TestCommunityMigrationState:
    def test_record_mode_entry_keeps_first_timestamp(self):
        state = CommunityMigrationState(community_id="c1")
        later = NOW + timedelta(days=3)

        state.record_mode_entry(PARALLEL, NOW)
        state.record_mode_entry(PARALLEL, later)

        assert state.mode_entered_at(PARALLEL) == NOW
        assert state.mode_entered_at(PRIMARY) is None

    def test_shadow_duration(self):
        state = CommunityMigrationState(community_id="c1", shadow_started_at=NOW)

        assert state.shadow_duration(NOW + timedelta(days=14)) == timedelta(days=14)
        assert CommunityMigrationState(community_id="c2").shadow_duration(NOW) == timedelta(0)


class TestIncumbentProfile:
    def test_rejects_invalid_confidence(self):
        with pytest.raises(ValueError):
            IncumbentProfile("c1", "collabland", 1.2, DetectionMethod.AUTOMATION_ID)

    def test_access_grant_ids(self):
        profile = IncumbentProfile(
            "c1",
            "collabland",
            0.95,
            DetectionMethod.AUTOMATION_ID,
            suspect_grants={
                "g1": SuspectGrant("g1", "Holder", 0.8),
                "g2": SuspectGrant("g2", "Member", 0.5),
                "g3": SuspectGrant("g3", "Chat", 0.3),
            },
        )

        assert profile.access_grant_ids(0.5) == frozenset({"g1", "g2"})

    def test_suspect_grant_from_dict(self):
        grant = SuspectGrant.from_dict({"grant_id": 42, "name": "Holder", "confidence": "0.8"})

        assert grant == SuspectGrant("42", "Holder", 0.8)


class TestShadowMemberRecord:
    """Tests for the UNKNOWN-iff-unlinked invariant."""

    def test_linked_with_known_status(self):
        record = member_record()

        assert record.has_incumbent_access
        assert record.divergence_status.is_known

    def test_unlinked_must_be_unknown(self):
        with pytest.raises(ValueError, match="UNKNOWN exactly when"):
            member_record(linked_identity=None, status=DivergenceStatus.MATCH)

    def test_linked_cannot_be_unknown(self):
        with pytest.raises(ValueError):
            member_record(status=DivergenceStatus.UNKNOWN)

    def test_comparison_key_ignores_timestamp(self):
        first = member_record()
        second = ShadowMemberRecord(**{**first.__dict__, "updated_at": NOW + timedelta(hours=6)})

        assert first.comparison_key() == second.comparison_key()


class TestDivergence:
    def test_to_dict(self):
        divergence = Divergence(
            id=7,
            community_id="c1",
            member_id="m1",
            divergence_type=DivergenceStatus.NEW_SYSTEM_LOWER,
            incumbent_state={"has_access": True},
            new_system_state={"eligible": False},
            detected_at=NOW,
            resolved_at=NOW,
            resolution=DivergenceResolution.NEW_SYSTEM_WRONG,
        )

        data = divergence.to_dict()

        assert divergence.is_resolved
        assert data["divergence_type"] == "new_system_lower"
        assert data["resolution"] == "new_system_wrong"
        assert data["detected_at"] == NOW.isoformat()

    def test_divergent_statuses(self):
        assert [s for s in DivergenceStatus if s.is_divergent] == [
            DivergenceStatus.NEW_SYSTEM_HIGHER,
            DivergenceStatus.NEW_SYSTEM_LOWER,
        ]


class TestAuditEntry:
    def test_manual_rollback(self):
        entry = AuditEntry.rollback("c1", PARALLEL, SHADOW, NOW, "errors", RollbackTrigger.MANUAL)

        assert entry.event_type == AuditEventType.ROLLBACK
        assert entry.details == {"reason": "errors", "trigger": "manual", "members_affected": 0}

    def test_automatic_rollback(self):
        entry = AuditEntry.rollback(
            "c1", PRIMARY, PARALLEL, NOW, "loss", RollbackTrigger.AUTO_ACCESS_LOSS
        )

        assert entry.event_type == AuditEventType.AUTO_ROLLBACK

    def test_event_keeps_mode(self):
        entry = AuditEntry.event("c1", AuditEventType.HEALTH_ALERT, NOW, mode=SHADOW)

        data = entry.to_dict()

        assert (data["old_mode"], data["new_mode"]) == ("shadow", "shadow")
        assert data["event_type"] == "health_alert"


# =============================================================================
# Results
# =============================================================================


class TestResults:
    def test_readiness_report(self):
        report = ReadinessReport(
            community_id="c1",
            target_mode=PARALLEL,
            ready=False,
            checks=(
                ReadinessCheck("shadow_duration", False, 5.0, 14.0, "5 of 14 days"),
                ReadinessCheck("accuracy", True, 97.0, 95.0, "97.0% of 95.0%"),
            ),
            evaluated_at=NOW,
        )

        assert report.failed_check_names == ["shadow_duration"]
        assert report.to_dict()["checks"][1]["passed"] is True

    def test_divergence_summary_accuracy(self):
        summary = DivergenceSummary("c1", total=10, matches=6, higher=1, lower=1, unknown=2)

        assert summary.accuracy == pytest.approx(75.0)
        assert DivergenceSummary("c1", 3, 0, 0, 0, 3).accuracy == 0.0

    def test_prediction_validation_accuracy(self):
        assert PredictionValidation("c1", 4, 3, 1, 0).accuracy == pytest.approx(75.0)
        assert PredictionValidation("c1", 0, 0, 0, 2).accuracy is None

    def test_mode_change_success(self):
        result = ModeChangeResult("c1", ModeChangeStatus.SUCCESS, SHADOW, PARALLEL)
        rejected = ModeChangeResult("c1", ModeChangeStatus.REJECTED_NOT_READY, SHADOW, SHADOW)

        assert result.success
        assert not rejected.success

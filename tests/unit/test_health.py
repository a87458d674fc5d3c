"""
Unit tests for IncumbentHealthMonitor.

Tests cover:
- Automation presence (missing bot, offline bot)
- Grant freshness thresholds
- Alert throttling and suggested actions
- Dry runs
"""

from datetime import UTC, datetime, timedelta

import pytest

from tandem.health import (
    ACTION_ACTIVATE_BACKUP,
    ACTION_INVESTIGATE,
    grant_fingerprint,
    overall_status,
)
from tandem.models import AuditEventType, CoexistenceMode, HealthIssue, HealthStatus
from tandem.protocols import PlatformMember
from tests.fixtures import BOT_ID, HOLDER_GRANT

HOLDER = frozenset({HOLDER_GRANT})


async def update_profile(harness, community_id, **changes):
    profile = await harness.profiles.get_profile(community_id)
    for name, value in changes.items():
        setattr(profile, name, value)
    await harness.profiles.save_profile(profile)
    return profile


def hours_ago(hours):
    return datetime.now(UTC) - timedelta(hours=hours)


def add_members_with_holder(harness, community_id):
    harness.platform.add_member(community_id, PlatformMember("u1", "u1"), grants=set(HOLDER))


class TestHelpers:
    def test_fingerprint_ignores_order_and_empty_holdings(self):
        first = grant_fingerprint({"a": frozenset({"g1", "g2"}), "b": frozenset()})
        second = grant_fingerprint({"a": frozenset({"g2", "g1"})})

        assert first == second

    def test_fingerprint_changes_with_holdings(self):
        assert grant_fingerprint({"a": frozenset({"g1"})}) != grant_fingerprint(
            {"b": frozenset({"g1"})}
        )

    @pytest.mark.parametrize(
        ("severities", "expected"),
        [
            ([], HealthStatus.HEALTHY),
            ([HealthStatus.WARNING], HealthStatus.WARNING),
            ([HealthStatus.WARNING, HealthStatus.CRITICAL], HealthStatus.CRITICAL),
        ],
    )
    def test_overall_status(self, severities, expected):
        issues = [HealthIssue("check", severity, "msg") for severity in severities]

        assert overall_status(issues) == expected


# =============================================================================
# Checks
# =============================================================================


class TestCheckHealth:
    """Tests for the individual health signals."""

    @pytest.mark.asyncio
    async def test_unknown_without_profile(self, harness):
        report = await harness.health.check_health("nobody")

        assert report.status == HealthStatus.UNKNOWN
        assert report.issues == ()
        assert await harness.profiles.list_health_checks("nobody") == []

    @pytest.mark.asyncio
    async def test_healthy(self, harness, community):
        report = await harness.health.check_health(community)

        assert report.status == HealthStatus.HEALTHY
        assert not report.alert_sent
        assert harness.alerts.alerts == []
        profile = await harness.profiles.get_profile(community)
        assert profile.health_status == HealthStatus.HEALTHY
        assert profile.grant_fingerprint is not None
        assert profile.last_health_check_at is not None
        (record,) = await harness.profiles.list_health_checks(community)
        assert record.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_missing_bot_is_critical(self, harness, community):
        harness.platform.remove_member(community, BOT_ID)

        report = await harness.health.check_health(community)

        assert report.status == HealthStatus.CRITICAL
        (issue,) = report.issues
        assert issue.check == "automation_presence"
        assert issue.details == {"automation_identity": BOT_ID}

    @pytest.mark.asyncio
    async def test_offline_bot_is_a_warning(self, harness, community):
        harness.platform.add_member(
            community, PlatformMember(BOT_ID, "Collab.Land", is_automation=True, online=False)
        )

        report = await harness.health.check_health(community)

        assert report.status == HealthStatus.WARNING
        assert "offline" in report.issues[0].message

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("hours", "expected"),
        [(10, HealthStatus.HEALTHY), (50, HealthStatus.WARNING), (80, HealthStatus.CRITICAL)],
    )
    async def test_staleness_thresholds(self, harness, community, hours, expected):
        await update_profile(harness, community, last_grant_change_at=hours_ago(hours))

        report = await harness.health.check_health(community)

        assert report.status == expected

    @pytest.mark.asyncio
    async def test_stale_issue_details(self, harness, community):
        await update_profile(harness, community, last_grant_change_at=hours_ago(50))

        report = await harness.health.check_health(community)

        (issue,) = report.issues
        assert issue.check == "grant_freshness"
        assert issue.details["threshold_hours"] == 48
        assert issue.details["hours_since_change"] == pytest.approx(50.0, abs=0.1)

    @pytest.mark.asyncio
    async def test_grant_change_resets_staleness(self, harness, community):
        """Test a member gaining an incumbent grant proves the incumbent is working."""
        await harness.health.check_health(community)
        await update_profile(harness, community, last_grant_change_at=hours_ago(80))
        add_members_with_holder(harness, community)

        report = await harness.health.check_health(community)

        assert report.status == HealthStatus.HEALTHY
        profile = await harness.profiles.get_profile(community)
        assert datetime.now(UTC) - profile.last_grant_change_at < timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_unrelated_grants_do_not_count_as_change(self, harness, community):
        await harness.health.check_health(community)
        await update_profile(harness, community, last_grant_change_at=hours_ago(80))
        harness.platform.add_member(community, PlatformMember("u1", "u1"), grants={"g-mod"})

        report = await harness.health.check_health(community)

        assert report.status == HealthStatus.CRITICAL

    @pytest.mark.asyncio
    async def test_never_mutates_the_platform(self, harness, community):
        harness.platform.remove_member(community, BOT_ID)

        await harness.health.check_health(community)

        assert harness.platform.mutations == []
        assert (await harness.states.get(community)).mode == CoexistenceMode.SHADOW


# =============================================================================
# Alerts
# =============================================================================


class TestAlerts:
    """Tests for operator alerting."""

    @pytest.mark.asyncio
    async def test_shadow_alert_offers_backup(self, harness, community):
        harness.platform.remove_member(community, BOT_ID)

        report = await harness.health.check_health(community)

        assert report.alert_sent
        (alert,) = harness.alerts.for_community(community)
        assert alert.severity == "critical"
        assert alert.actions == (ACTION_ACTIVATE_BACKUP, ACTION_INVESTIGATE)
        entry = await harness.audit_log.get_latest(community)
        assert entry.event_type == AuditEventType.HEALTH_ALERT

    @pytest.mark.asyncio
    async def test_parallel_alert_only_investigates(self, harness, community):
        harness.seed_state(community, mode=CoexistenceMode.PARALLEL)
        harness.platform.remove_member(community, BOT_ID)

        await harness.health.check_health(community)

        (alert,) = harness.alerts.for_community(community)
        assert alert.actions == (ACTION_INVESTIGATE,)

    @pytest.mark.asyncio
    async def test_throttled(self, harness, community):
        harness.platform.remove_member(community, BOT_ID)
        await harness.health.check_health(community)

        report = await harness.health.check_health(community)

        assert not report.alert_sent
        assert len(harness.alerts.alerts) == 1

    @pytest.mark.asyncio
    async def test_alerts_again_after_throttle_window(self, harness, community):
        harness.platform.remove_member(community, BOT_ID)
        await harness.health.check_health(community)
        await update_profile(harness, community, last_alert_at=hours_ago(5))

        report = await harness.health.check_health(community)

        assert report.alert_sent
        assert len(harness.alerts.alerts) == 2

    @pytest.mark.asyncio
    async def test_failed_delivery_is_retried_next_check(self, harness, community):
        harness.platform.remove_member(community, BOT_ID)
        harness.alerts.fail = True

        report = await harness.health.check_health(community)

        assert not report.alert_sent
        profile = await harness.profiles.get_profile(community)
        assert profile.last_alert_at is None
        assert profile.health_status == HealthStatus.CRITICAL
        assert AuditEventType.HEALTH_ALERT not in [e.event_type for e in harness.audit_log.entries]

        harness.alerts.fail = False
        assert (await harness.health.check_health(community)).alert_sent


class TestDryRun:
    @pytest.mark.asyncio
    async def test_persists_nothing(self, harness, community):
        harness.platform.remove_member(community, BOT_ID)

        report = await harness.health.check_health(community, dry_run=True)

        assert report.status == HealthStatus.CRITICAL
        assert report.dry_run
        assert not report.alert_sent
        assert harness.alerts.alerts == []
        assert await harness.profiles.list_health_checks(community) == []
        profile = await harness.profiles.get_profile(community)
        assert profile.health_status == HealthStatus.UNKNOWN
        assert profile.grant_fingerprint is None

    @pytest.mark.asyncio
    async def test_records_span(self, harness, community):
        await harness.health.check_health(community, dry_run=True)

        assert "tandem.health.check" in harness.tracer.span_names

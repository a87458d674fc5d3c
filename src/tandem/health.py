"""
Incumbent health monitor.

Watches the incumbent for two failure signals:

- Automation presence: the incumbent's bot left the community (CRITICAL)
  or is reported offline (WARNING).
- Grant freshness: a fingerprint of which members hold the incumbent's
  access grants. When it has not changed for ``stale_warning_hours`` the
  incumbent is probably no longer processing verifications (WARNING);
  after ``stale_critical_hours`` it is CRITICAL.

Operators are alerted through an :class:`~tandem.protocols.AlertSink`, at
most once per throttle window. In SHADOW mode the alert offers the
``activate_backup`` action. The monitor never changes the mode itself.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from datetime import UTC, datetime, timedelta

from tandem.config import CoexistenceConfig
from tandem.models import (
    AuditEntry,
    AuditEventType,
    CoexistenceMode,
    HealthCheckRecord,
    HealthIssue,
    HealthReport,
    HealthStatus,
    IncumbentProfile,
)
from tandem.observability import ATTR_COMMUNITY_ID, ATTR_DRY_RUN, Tracer, create_tracer
from tandem.protocols import (
    AlertSink,
    OperatorAlert,
    PlatformMember,
    PlatformReader,
    ReadOnlyPlatform,
)
from tandem.repositories import (
    AuditLogRepository,
    CommunityStateRepository,
    IncumbentProfileRepository,
)

logger = logging.getLogger(__name__)

ACTION_ACTIVATE_BACKUP = "activate_backup"
ACTION_INVESTIGATE = "investigate"


def grant_fingerprint(holdings: dict[str, frozenset[str]]) -> str:
    """Stable digest of member -> access grant ids."""
    lines = sorted(
        f"{member_id}:{','.join(sorted(grants))}"
        for member_id, grants in holdings.items()
        if grants
    )
    return hashlib.sha256("\n".join(lines).encode()).hexdigest()


def overall_status(issues: list[HealthIssue]) -> HealthStatus:
    severities = {issue.severity for issue in issues}
    if HealthStatus.CRITICAL in severities:
        return HealthStatus.CRITICAL
    if HealthStatus.WARNING in severities:
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


class IncumbentHealthMonitor:
    """
    Checks the health of a community's incumbent.

    Example:
        >>> monitor = IncumbentHealthMonitor(platform, states, profiles, audit_log, alerts)
        >>> report = await monitor.check_health("123")
        >>> report.status
        <HealthStatus.HEALTHY: 'healthy'>
    """

    def __init__(
        self,
        platform: PlatformReader,
        states: CommunityStateRepository,
        profiles: IncumbentProfileRepository,
        audit_log: AuditLogRepository,
        alerts: AlertSink,
        *,
        config: CoexistenceConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._platform = ReadOnlyPlatform(platform)
        self._states = states
        self._profiles = profiles
        self._audit_log = audit_log
        self._alerts = alerts
        self._config = config or CoexistenceConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def check_health(self, community_id: str, *, dry_run: bool = False) -> HealthReport:
        """
        Run every health check for a community.

        Args:
            community_id: The community.
            dry_run: Evaluate only; persist nothing and send no alert.

        Returns:
            The report. Communities without an incumbent profile are UNKNOWN.
        """
        with self._tracer.span(
            "tandem.health.check",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DRY_RUN: dry_run},
        ):
            now = datetime.now(UTC)
            profile = await self._profiles.get_profile(community_id)
            if profile is None:
                return HealthReport(
                    community_id=community_id,
                    status=HealthStatus.UNKNOWN,
                    issues=(),
                    checked_at=now,
                    dry_run=dry_run,
                )

            members = await self._platform.list_members(community_id)
            issues = self._check_automation(profile, members)

            fingerprint = await self._fingerprint(community_id, profile, members)
            changed = (
                profile.grant_fingerprint is not None and fingerprint != profile.grant_fingerprint
            )
            last_change = (
                now if changed else (profile.last_grant_change_at or profile.detected_at or now)
            )
            issues.extend(self._check_freshness(now, last_change))
            status = overall_status(issues)

            if dry_run:
                return HealthReport(
                    community_id=community_id,
                    status=status,
                    issues=tuple(issues),
                    checked_at=now,
                    dry_run=True,
                )

            alert_sent = False
            if status in (HealthStatus.WARNING, HealthStatus.CRITICAL) and self._alert_due(
                profile, now
            ):
                alert_sent = await self._send_alert(community_id, status, issues, now)
                if alert_sent:
                    profile.last_alert_at = now

            profile.health_status = status
            profile.last_health_check_at = now
            profile.grant_fingerprint = fingerprint
            if changed:
                profile.last_grant_change_at = now
            await self._profiles.save_profile(profile)
            await self._profiles.record_health_check(
                HealthCheckRecord(
                    community_id=community_id,
                    status=status,
                    issues=tuple(issues),
                    checked_at=now,
                    alert_sent=alert_sent,
                )
            )
            logger.info(
                "Incumbent health for community %s: %s (%d issues, alert_sent=%s)",
                community_id,
                status.value,
                len(issues),
                alert_sent,
            )
            return HealthReport(
                community_id=community_id,
                status=status,
                issues=tuple(issues),
                checked_at=now,
                alert_sent=alert_sent,
            )

    # =========================================================================
    # Checks
    # =========================================================================

    def _check_automation(
        self,
        profile: IncumbentProfile,
        members: list[PlatformMember],
    ) -> list[HealthIssue]:
        if profile.automation_identity is None:
            return []
        bot = next((m for m in members if m.member_id == profile.automation_identity), None)
        if bot is None:
            return [
                HealthIssue(
                    check="automation_presence",
                    severity=HealthStatus.CRITICAL,
                    message=f"Incumbent bot {profile.automation_identity} is no longer a member",
                    details={"automation_identity": profile.automation_identity},
                )
            ]
        if bot.online is False:
            return [
                HealthIssue(
                    check="automation_presence",
                    severity=HealthStatus.WARNING,
                    message=f"Incumbent bot {bot.display_name} is offline",
                    details={"automation_identity": bot.member_id},
                )
            ]
        return []

    def _check_freshness(self, now: datetime, last_change: datetime) -> list[HealthIssue]:
        health = self._config.health
        hours = (now - last_change) / timedelta(hours=1)
        if hours >= health.stale_critical_hours:
            severity, threshold = HealthStatus.CRITICAL, health.stale_critical_hours
        elif hours >= health.stale_warning_hours:
            severity, threshold = HealthStatus.WARNING, health.stale_warning_hours
        else:
            return []
        return [
            HealthIssue(
                check="grant_freshness",
                severity=severity,
                message=f"No incumbent grant changes for {hours:.1f} hours",
                details={
                    "hours_since_change": round(hours, 1),
                    "threshold_hours": threshold,
                    "last_change_at": last_change.isoformat(),
                },
            )
        ]

    async def _fingerprint(
        self,
        community_id: str,
        profile: IncumbentProfile,
        members: list[PlatformMember],
    ) -> str:
        access_ids = profile.access_grant_ids(self._config.grants.access_grant_threshold)
        semaphore = asyncio.Semaphore(self._config.shadow.concurrency)

        async def holdings(member: PlatformMember) -> tuple[str, frozenset[str]]:
            async with semaphore:
                held = await self._platform.get_member_grants(community_id, member.member_id)
            return member.member_id, frozenset(held) & access_ids

        pairs = await asyncio.gather(
            *(holdings(m) for m in members if not m.is_automation)
        )
        return grant_fingerprint(dict(pairs))

    # =========================================================================
    # Alerts
    # =========================================================================

    def _alert_due(self, profile: IncumbentProfile, now: datetime) -> bool:
        if profile.last_alert_at is None:
            return True
        throttle = timedelta(hours=self._config.health.alert_throttle_hours)
        return now - profile.last_alert_at >= throttle

    async def _send_alert(
        self,
        community_id: str,
        status: HealthStatus,
        issues: list[HealthIssue],
        now: datetime,
    ) -> bool:
        state = await self._states.get(community_id)
        mode = state.mode if state is not None else CoexistenceMode.SHADOW
        actions = (
            (ACTION_ACTIVATE_BACKUP, ACTION_INVESTIGATE)
            if mode == CoexistenceMode.SHADOW
            else (ACTION_INVESTIGATE,)
        )
        alert = OperatorAlert(
            community_id=community_id,
            severity=status.value,
            title=f"Incumbent health {status.value}",
            message="; ".join(issue.message for issue in issues),
            actions=actions,
            details={"issues": [issue.to_dict() for issue in issues], "mode": mode.value},
        )
        try:
            await self._alerts.send(alert)
        except Exception:
            logger.exception("Failed to send health alert for community %s", community_id)
            return False

        await self._audit_log.record(
            AuditEntry.event(
                community_id,
                AuditEventType.HEALTH_ALERT,
                now,
                details={"status": status.value, "actions": list(actions)},
                mode=mode,
            )
        )
        return True


__all__ = [
    "IncumbentHealthMonitor",
    "grant_fingerprint",
    "overall_status",
    "ACTION_ACTIVATE_BACKUP",
    "ACTION_INVESTIGATE",
]

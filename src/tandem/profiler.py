"""
Incumbent detection.

The profiler inspects a community once (or again on ``force``) and records
which incumbent appears to control access, how confident it is, and which
grants look access-controlling. Heuristics come from an
:class:`~tandem.catalog.IncumbentCatalog`, checked tier by tier:

    (a) automation member id, or automation display name
    (b) verification channel names
    (c) access grant names
    (d) generic gating keywords in an automation member's name

The first tier with a match wins; inside a tier the most confident
provider wins. Running the profiler also creates the community's
``CommunityMigrationState`` in SHADOW mode if it does not exist yet, even
when no incumbent is found.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from tandem.catalog import DEFAULT_CATALOG, IncumbentCatalog, ProviderSignature
from tandem.config import CoexistenceConfig
from tandem.models import (
    AuditEntry,
    AuditEventType,
    CoexistenceMode,
    CommunityMigrationState,
    DetectionMethod,
    IncumbentProfile,
    SuspectGrant,
)
from tandem.observability import ATTR_COMMUNITY_ID, ATTR_PROVIDER, Tracer, create_tracer
from tandem.protocols import PlatformChannel, PlatformGrant, PlatformMember, PlatformReader
from tandem.repositories import (
    AuditLogRepository,
    CommunityStateRepository,
    IncumbentProfileRepository,
)

logger = logging.getLogger(__name__)

UNKNOWN_PROVIDER = "unknown"


@dataclass(frozen=True)
class Detection:
    """The winning match of one detection run."""

    provider: str
    confidence: float
    method: DetectionMethod
    automation_identity: str | None = None


class IncumbentProfiler:
    """
    Detects the incumbent system of a community.

    Example:
        >>> profiler = IncumbentProfiler(platform, states, profiles, audit_log)
        >>> profile = await profiler.detect_incumbent("123456789")
        >>> profile.provider if profile else "none"
        'collabland'
    """

    def __init__(
        self,
        platform: PlatformReader,
        states: CommunityStateRepository,
        profiles: IncumbentProfileRepository,
        audit_log: AuditLogRepository,
        *,
        catalog: IncumbentCatalog = DEFAULT_CATALOG,
        config: CoexistenceConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._platform = platform
        self._states = states
        self._profiles = profiles
        self._audit_log = audit_log
        self._catalog = catalog
        self._config = config or CoexistenceConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def catalog(self) -> IncumbentCatalog:
        return self._catalog

    async def detect_incumbent(
        self,
        community_id: str,
        *,
        force: bool = False,
    ) -> IncumbentProfile | None:
        """
        Detect (or return the stored) incumbent of a community.

        Args:
            community_id: The community to inspect.
            force: Re-run detection even when a profile exists.

        Returns:
            The stored or newly detected profile, or None when nothing in
            the catalog matches (the community may then be taken over
            directly).

        Raises:
            PlatformUnavailableError: If the platform cannot be read.
        """
        with self._tracer.span(
            "tandem.profiler.detect_incumbent",
            {ATTR_COMMUNITY_ID: community_id, "tandem.force": force},
        ):
            existing = await self._profiles.get_profile(community_id)
            if existing is not None and not force:
                return existing

            community = await self._platform.get_community(community_id)
            members = await self._platform.list_members(community_id)
            channels = await self._platform.list_channels(community_id)
            grants = await self._platform.list_grants(community_id)
            now = datetime.now(UTC)

            await self._states.create_if_missing(
                CommunityMigrationState(
                    community_id=community_id,
                    community_name=community.name,
                    mode=CoexistenceMode.SHADOW,
                    shadow_started_at=now,
                )
            )

            detection = self.detect(members, channels, grants)
            if detection is None:
                logger.info(
                    "No incumbent detected for community %s (catalog %s)",
                    community_id,
                    self._catalog.version,
                )
                return None

            signature = self._catalog.provider(detection.provider)
            profile = IncumbentProfile(
                community_id=community_id,
                provider=detection.provider,
                confidence=detection.confidence,
                detection_method=detection.method,
                automation_identity=detection.automation_identity,
                monitored_channels=self._monitored_channels(signature, channels),
                suspect_grants=self.score_grants(grants),
                catalog_version=self._catalog.version,
                detected_at=now,
            )
            await self._profiles.save_profile(profile)
            await self._audit_log.record(
                AuditEntry.event(
                    community_id,
                    AuditEventType.INCUMBENT_DETECTED,
                    now,
                    details={
                        "provider": profile.provider,
                        "confidence": profile.confidence,
                        "detection_method": profile.detection_method.value,
                        "catalog_version": profile.catalog_version,
                        "suspect_grants": len(profile.suspect_grants),
                        "redetected": existing is not None,
                    },
                )
            )

            logger.info(
                "Detected incumbent %s for community %s (confidence=%.2f, method=%s)",
                profile.provider,
                community_id,
                profile.confidence,
                profile.detection_method.value,
                extra={ATTR_COMMUNITY_ID: community_id, ATTR_PROVIDER: profile.provider},
            )
            return profile

    # =========================================================================
    # Heuristics
    # =========================================================================

    def detect(
        self,
        members: Sequence[PlatformMember],
        channels: Sequence[PlatformChannel],
        grants: Sequence[PlatformGrant],
    ) -> Detection | None:
        """Run the tiers in order and return the first match."""
        for tier in (
            self._by_automation(members),
            self._by_channels(channels),
            self._by_grants(grants),
            self._by_generic_keywords(members),
        ):
            if tier:
                return max(tier, key=lambda d: d.confidence)
        return None

    def score_grants(self, grants: Sequence[PlatformGrant]) -> dict[str, SuspectGrant]:
        """Score every assignable grant by how likely it controls access."""
        scored: dict[str, SuspectGrant] = {}
        prefix = self._config.grants.namespace_prefix
        for grant in grants:
            if grant.managed or grant.is_default or grant.name.startswith(prefix):
                continue
            confidence = (
                self._catalog.likely_access_confidence
                if self._catalog.is_access_grant_name(grant.name)
                else self._catalog.maybe_access_confidence
            )
            scored[grant.grant_id] = SuspectGrant(grant.grant_id, grant.name, confidence)
        return scored

    def _by_automation(self, members: Sequence[PlatformMember]) -> list[Detection]:
        found = []
        for member in members:
            for signature in self._catalog.providers:
                if member.member_id in signature.automation_ids:
                    found.append(
                        Detection(
                            signature.provider,
                            signature.automation_id_confidence,
                            DetectionMethod.AUTOMATION_ID,
                            member.member_id,
                        )
                    )
                elif member.is_automation and signature.matches_name(member.display_name):
                    found.append(
                        Detection(
                            signature.provider,
                            signature.name_confidence,
                            DetectionMethod.AUTOMATION_NAME,
                            member.member_id,
                        )
                    )
        return found

    def _by_channels(self, channels: Sequence[PlatformChannel]) -> list[Detection]:
        found = []
        for signature in self._catalog.providers:
            rules = [r for c in channels if (r := signature.best_channel_match(c.name))]
            if rules:
                best = max(rule.confidence for rule in rules)
                found.append(Detection(signature.provider, best, DetectionMethod.CHANNEL_PATTERN))
        return found

    def _by_grants(self, grants: Sequence[PlatformGrant]) -> list[Detection]:
        found = []
        assignable = [g for g in grants if not g.managed and not g.is_default]
        for signature in self._catalog.providers:
            rules = [r for g in assignable if (r := signature.best_grant_match(g.name))]
            if rules:
                best = max(rule.confidence for rule in rules)
                found.append(Detection(signature.provider, best, DetectionMethod.GRANT_PATTERN))
        return found

    def _by_generic_keywords(self, members: Sequence[PlatformMember]) -> list[Detection]:
        found = []
        for member in members:
            name = member.display_name.lower()
            if member.is_automation and any(k in name for k in self._catalog.generic_keywords):
                found.append(
                    Detection(
                        UNKNOWN_PROVIDER,
                        self._catalog.generic_confidence,
                        DetectionMethod.GENERIC_AUTOMATION,
                        member.member_id,
                    )
                )
        return found

    @staticmethod
    def _monitored_channels(
        signature: ProviderSignature | None,
        channels: Sequence[PlatformChannel],
    ) -> tuple[str, ...]:
        if signature is None:
            return ()
        return tuple(c.channel_id for c in channels if signature.best_channel_match(c.name))


__all__ = ["IncumbentProfiler", "Detection", "UNKNOWN_PROVIDER"]

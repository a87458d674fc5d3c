"""
Collaborator protocols consumed by tandem.

The platform client, the eligibility provider, the identity resolver and
the operator alert channel live outside this package. Tandem only depends
on the protocols below; host applications supply implementations.

The platform surface is split in two. ``PlatformReader`` carries every
read operation and is the only thing the shadow ledger and the health
monitor ever see. ``PlatformClient`` adds the mutating operations used by
the parallel grant manager.

Implementations should raise
:class:`tandem.exceptions.PlatformUnavailableError` (or
:class:`~tandem.exceptions.EligibilityUnavailableError`) for rate limits
and outages so jobs can retry them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

# =============================================================================
# Value types
# =============================================================================


@dataclass(frozen=True)
class CommunityInfo:
    community_id: str
    name: str


@dataclass(frozen=True)
class PlatformMember:
    """
    A community member as listed by the platform.

    Attributes:
        member_id: Platform member id.
        display_name: Username or display name.
        is_automation: True for bots and integrations.
        online: Presence, when the platform reports it (None if unknown).
    """

    member_id: str
    display_name: str
    is_automation: bool = False
    online: bool | None = None


@dataclass(frozen=True)
class PlatformGrant:
    """
    A grant (role) defined in the community.

    Attributes:
        grant_id: Platform grant id.
        name: Grant name.
        position: Ordering; a higher position is more senior.
        managed: True for grants owned by an integration and not assignable.
        is_default: True for the implicit everyone grant.
        permissions: Capability names attached to the grant.
    """

    grant_id: str
    name: str
    position: int = 0
    managed: bool = False
    is_default: bool = False
    permissions: frozenset[str] = frozenset()


@dataclass(frozen=True)
class PlatformChannel:
    channel_id: str
    name: str


@dataclass(frozen=True)
class GrantSpec:
    """Specification for a grant to create."""

    name: str
    position: int
    permissions: frozenset[str] = frozenset()
    reason: str | None = None


@dataclass(frozen=True)
class EligibilityResult:
    """
    The eligibility provider's verdict for one identity.

    A ``tier`` of None means the identity is not eligible for any tier.
    """

    tier: str | None
    score: float

    @property
    def eligible(self) -> bool:
        return self.tier is not None


@dataclass(frozen=True)
class OperatorAlert:
    """
    A message for community operators.

    Attributes:
        community_id: The affected community.
        severity: "warning" or "critical".
        title: Short summary.
        message: Details for the operator.
        actions: Action identifiers the operator may trigger
            (e.g. "activate_backup").
        details: Structured context.
    """

    community_id: str
    severity: str
    title: str
    message: str
    actions: tuple[str, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AccessCounts:
    """Members holding access at the start and end of a window."""

    baseline: int
    current: int

    @property
    def loss_percent(self) -> float:
        if self.baseline <= 0:
            return 0.0
        return max(0.0, (self.baseline - self.current) / self.baseline * 100.0)


@dataclass(frozen=True)
class ErrorCounts:
    """Grant operations and failures within a window."""

    operations: int
    failures: int

    @property
    def error_rate_percent(self) -> float:
        if self.operations <= 0:
            return 0.0
        return self.failures / self.operations * 100.0


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class PlatformReader(Protocol):
    """Read-only view of the community platform."""

    async def get_community(self, community_id: str) -> CommunityInfo: ...

    async def list_members(self, community_id: str) -> list[PlatformMember]: ...

    async def get_member_grants(self, community_id: str, member_id: str) -> frozenset[str]:
        """Ids of the grants the member currently holds."""
        ...

    async def list_grants(self, community_id: str) -> list[PlatformGrant]: ...

    async def list_channels(self, community_id: str) -> list[PlatformChannel]: ...


@runtime_checkable
class PlatformClient(PlatformReader, Protocol):
    """Platform client including the mutating operations."""

    async def add_grant(self, community_id: str, member_id: str, grant_id: str) -> None: ...

    async def remove_grant(self, community_id: str, member_id: str, grant_id: str) -> None: ...

    async def create_grant(self, community_id: str, spec: GrantSpec) -> PlatformGrant: ...


@runtime_checkable
class EligibilityProvider(Protocol):
    """Computes the new system's eligibility for an external identity."""

    async def evaluate_eligibility(self, identity: str) -> EligibilityResult: ...


@runtime_checkable
class IdentityResolver(Protocol):
    """Resolves a platform member to a linked external identity (e.g. a wallet)."""

    async def get_linked_identity(self, member_id: str) -> str | None: ...


@runtime_checkable
class AlertSink(Protocol):
    """Delivers operator alerts (DM, webhook, pager...)."""

    async def send(self, alert: OperatorAlert) -> None: ...


@runtime_checkable
class AccessMetricsSource(Protocol):
    """Supplies the measurements the rollback watcher evaluates."""

    async def get_access_counts(
        self,
        community_id: str,
        window: timedelta,
        now: datetime | None = None,
    ) -> AccessCounts: ...

    async def get_error_counts(
        self,
        community_id: str,
        window: timedelta,
        now: datetime | None = None,
    ) -> ErrorCounts: ...


class ReadOnlyPlatform:
    """
    Wraps any platform object and exposes only the read operations.

    Handing a ``ReadOnlyPlatform`` to a component makes it impossible for
    that component to mutate the community, whatever it was given.
    """

    __slots__ = ("_reader",)

    def __init__(self, reader: PlatformReader) -> None:
        self._reader = reader

    async def get_community(self, community_id: str) -> CommunityInfo:
        return await self._reader.get_community(community_id)

    async def list_members(self, community_id: str) -> list[PlatformMember]:
        return await self._reader.list_members(community_id)

    async def get_member_grants(self, community_id: str, member_id: str) -> frozenset[str]:
        return await self._reader.get_member_grants(community_id, member_id)

    async def list_grants(self, community_id: str) -> list[PlatformGrant]:
        return await self._reader.list_grants(community_id)

    async def list_channels(self, community_id: str) -> list[PlatformChannel]:
        return await self._reader.list_channels(community_id)


__all__ = [
    "CommunityInfo",
    "PlatformMember",
    "PlatformGrant",
    "PlatformChannel",
    "GrantSpec",
    "EligibilityResult",
    "OperatorAlert",
    "AccessCounts",
    "ErrorCounts",
    "PlatformReader",
    "PlatformClient",
    "EligibilityProvider",
    "IdentityResolver",
    "AlertSink",
    "AccessMetricsSource",
    "ReadOnlyPlatform",
]

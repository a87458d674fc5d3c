"""
Verification tiers and the features each one unlocks.

A member's tier depends on two things only: the community's mode and
whether the member has linked an external identity.

    mode PRIMARY / EXCLUSIVE          -> FULL
    linked identity, any other mode   -> LINKED_BASIC
    otherwise                         -> INCUMBENT_ONLY

The feature table is static; each tier includes everything of the tiers
below it.
"""

from __future__ import annotations

from enum import Enum

from tandem.models import CoexistenceMode, VerificationTier
from tandem.repositories import CommunityStateRepository, ShadowRepository


class Feature(Enum):
    """Member-facing features gated by verification tier."""

    SHADOW_TRACKING = "shadow_tracking"
    PUBLIC_LEADERBOARD = "public_leaderboard"
    LEADERBOARD_POSITION = "leaderboard_position"
    PROFILE_VIEW = "profile_view"
    CONVICTION_PREVIEW = "conviction_preview"
    TIER_PREVIEW = "tier_preview"
    BADGE_PREVIEW = "badge_preview"
    FULL_PROFILE = "full_profile"
    BADGE_SHOWCASE = "badge_showcase"
    TIER_PROGRESSION = "tier_progression"
    SOCIAL_FEATURES = "social_features"
    DIRECTORY_LISTING = "directory_listing"
    ACTIVITY_TRACKING = "activity_tracking"
    CONVICTION_HISTORY = "conviction_history"
    LEADERBOARD_WALLET_VISIBLE = "leaderboard_wallet_visible"


_INCUMBENT_ONLY_FEATURES = frozenset(
    {
        Feature.SHADOW_TRACKING,
        Feature.PUBLIC_LEADERBOARD,
        Feature.LEADERBOARD_POSITION,
    }
)

_LINKED_BASIC_FEATURES = _INCUMBENT_ONLY_FEATURES | {
    Feature.PROFILE_VIEW,
    Feature.CONVICTION_PREVIEW,
    Feature.TIER_PREVIEW,
    Feature.BADGE_PREVIEW,
}

_FULL_FEATURES = _LINKED_BASIC_FEATURES | {
    Feature.FULL_PROFILE,
    Feature.BADGE_SHOWCASE,
    Feature.TIER_PROGRESSION,
    Feature.SOCIAL_FEATURES,
    Feature.DIRECTORY_LISTING,
    Feature.ACTIVITY_TRACKING,
    Feature.CONVICTION_HISTORY,
    Feature.LEADERBOARD_WALLET_VISIBLE,
}

TIER_FEATURES: dict[VerificationTier, frozenset[Feature]] = {
    VerificationTier.INCUMBENT_ONLY: _INCUMBENT_ONLY_FEATURES,
    VerificationTier.LINKED_BASIC: frozenset(_LINKED_BASIC_FEATURES),
    VerificationTier.FULL: frozenset(_FULL_FEATURES),
}

_UPGRADES: dict[VerificationTier, VerificationTier] = {
    VerificationTier.INCUMBENT_ONLY: VerificationTier.LINKED_BASIC,
    VerificationTier.LINKED_BASIC: VerificationTier.FULL,
}


def tier_for(mode: CoexistenceMode, has_linked_identity: bool) -> VerificationTier:
    if mode in (CoexistenceMode.PRIMARY, CoexistenceMode.EXCLUSIVE):
        return VerificationTier.FULL
    if has_linked_identity:
        return VerificationTier.LINKED_BASIC
    return VerificationTier.INCUMBENT_ONLY


def features_for(tier: VerificationTier) -> frozenset[Feature]:
    return TIER_FEATURES[tier]


def has_feature(tier: VerificationTier, feature: Feature) -> bool:
    return feature in TIER_FEATURES[tier]


def upgrade_path(tier: VerificationTier) -> VerificationTier | None:
    """The next tier up, or None for FULL."""
    return _UPGRADES.get(tier)


class VerificationTierResolver:
    """
    Resolves a member's tier from stored state.

    Uses the community's mode and the member's last shadow record; a
    community without state resolves as SHADOW, a member without a record
    as unlinked.
    """

    def __init__(self, states: CommunityStateRepository, shadow: ShadowRepository) -> None:
        self._states = states
        self._shadow = shadow

    async def resolve_tier(self, community_id: str, member_id: str) -> VerificationTier:
        state = await self._states.get(community_id)
        mode = state.mode if state is not None else CoexistenceMode.SHADOW
        if mode in (CoexistenceMode.PRIMARY, CoexistenceMode.EXCLUSIVE):
            return VerificationTier.FULL
        record = await self._shadow.get_member(community_id, member_id)
        return tier_for(mode, record is not None and record.linked_identity is not None)

    async def resolve_features(self, community_id: str, member_id: str) -> frozenset[Feature]:
        return features_for(await self.resolve_tier(community_id, member_id))


__all__ = [
    "Feature",
    "TIER_FEATURES",
    "VerificationTierResolver",
    "tier_for",
    "features_for",
    "has_feature",
    "upgrade_path",
]

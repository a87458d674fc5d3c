"""
Community layouts shared by the tests.

The default community looks like a typical NFT Discord: a Collab.Land bot,
a "collabland-join" channel, two incumbent access grants ("Holder" and
"Whale"), a moderator grant, the implicit everyone grant and the bot's
managed grant.
"""

from __future__ import annotations

from tandem.protocols import PlatformChannel, PlatformGrant, PlatformMember
from tandem.testing import RecordingPlatform

COMMUNITY_ID = "guild-1"
COMMUNITY_NAME = "Bored Apes"

BOT_ID = "704521096837464076"

HOLDER_GRANT = "g-holder"
WHALE_GRANT = "g-whale"
MODERATOR_GRANT = "g-mod"
EVERYONE_GRANT = "g-everyone"
BOT_MANAGED_GRANT = "g-collab"

ACCESS_GRANTS = {HOLDER_GRANT: "Holder", WHALE_GRANT: "Whale"}


def seed_platform(
    platform: RecordingPlatform,
    community_id: str = COMMUNITY_ID,
    name: str = COMMUNITY_NAME,
    *,
    with_bot: bool = True,
) -> None:
    """Create the default community layout on platform."""
    platform.add_community(community_id, name)
    for grant in (
        PlatformGrant(EVERYONE_GRANT, "@everyone", position=0, is_default=True),
        PlatformGrant(HOLDER_GRANT, "Holder", position=5),
        PlatformGrant(WHALE_GRANT, "Whale", position=6),
        PlatformGrant(MODERATOR_GRANT, "Moderator", position=8),
        PlatformGrant(BOT_MANAGED_GRANT, "Collab.Land", position=10, managed=True),
    ):
        platform.add_grant_definition(community_id, grant)
    platform.add_channel(community_id, PlatformChannel("ch-join", "collabland-join"))
    platform.add_channel(community_id, PlatformChannel("ch-general", "general"))
    if with_bot:
        platform.add_member(
            community_id,
            PlatformMember(BOT_ID, "Collab.Land", is_automation=True, online=True),
        )


def add_members(
    platform: RecordingPlatform,
    count: int,
    *,
    community_id: str = COMMUNITY_ID,
    grants: frozenset[str] = frozenset(),
    prefix: str = "member",
) -> list[str]:
    """Add count human members holding grants; return their ids."""
    member_ids = [f"{prefix}-{i}" for i in range(count)]
    for member_id in member_ids:
        platform.add_member(community_id, PlatformMember(member_id, member_id), grants=grants)
    return member_ids

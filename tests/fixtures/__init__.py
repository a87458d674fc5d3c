"""
Shared test fixtures for tandem.

Usage:
    from tests.fixtures import COMMUNITY_ID, seed_platform, add_members
"""

from tests.fixtures.communities import (
    ACCESS_GRANTS,
    BOT_ID,
    BOT_MANAGED_GRANT,
    COMMUNITY_ID,
    COMMUNITY_NAME,
    EVERYONE_GRANT,
    HOLDER_GRANT,
    MODERATOR_GRANT,
    WHALE_GRANT,
    add_members,
    seed_platform,
)

__all__ = [
    "ACCESS_GRANTS",
    "BOT_ID",
    "BOT_MANAGED_GRANT",
    "COMMUNITY_ID",
    "COMMUNITY_NAME",
    "EVERYONE_GRANT",
    "HOLDER_GRANT",
    "MODERATOR_GRANT",
    "WHALE_GRANT",
    "add_members",
    "seed_platform",
]

"""
Standard span and metric attributes for tandem.

Attribute constants shared by every component so spans and metric labels
stay consistent. Database attributes follow OpenTelemetry semantic
conventions.
"""

# =============================================================================
# Community and Member Attributes
# =============================================================================

ATTR_COMMUNITY_ID = "tandem.community.id"
"""Platform identifier of the managed community (string)."""

ATTR_MEMBER_ID = "tandem.member.id"
"""Platform identifier of a community member (string)."""

ATTR_MEMBER_COUNT = "tandem.member.count"
"""Number of members processed by an operation (integer)."""

ATTR_OPERATOR = "tandem.operator"
"""Operator or job that initiated an action (string)."""

# =============================================================================
# Coexistence Attributes
# =============================================================================

ATTR_MODE = "tandem.mode"
"""Current coexistence mode (shadow, parallel, primary, exclusive)."""

ATTR_TARGET_MODE = "tandem.mode.target"
"""Requested coexistence mode for a transition (string)."""

ATTR_STRATEGY = "tandem.strategy"
"""Migration strategy chosen for a transition (string)."""

ATTR_PROVIDER = "tandem.incumbent.provider"
"""Detected incumbent provider identifier (string)."""

ATTR_GRANT_ID = "tandem.grant.id"
"""Platform grant (role) identifier (string)."""

ATTR_JOB_NAME = "tandem.job.name"
"""Name of a scheduled job (string)."""

ATTR_DRY_RUN = "tandem.dry_run"
"""Whether the operation ran without side effects (boolean)."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'postgresql')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'SELECT', 'UPSERT')."""


__all__ = [
    "ATTR_COMMUNITY_ID",
    "ATTR_MEMBER_ID",
    "ATTR_MEMBER_COUNT",
    "ATTR_OPERATOR",
    "ATTR_MODE",
    "ATTR_TARGET_MODE",
    "ATTR_STRATEGY",
    "ATTR_PROVIDER",
    "ATTR_GRANT_ID",
    "ATTR_JOB_NAME",
    "ATTR_DRY_RUN",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
]

"""
Observability utilities for tandem.

Tracing goes through the ``Tracer`` protocol so every component can be
constructed with ``enable_tracing=False`` (or a ``MockTracer``) in tests.
Attribute names live in :mod:`tandem.observability.attributes`.
"""

from tandem.observability.attributes import (
    ATTR_COMMUNITY_ID,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DRY_RUN,
    ATTR_GRANT_ID,
    ATTR_JOB_NAME,
    ATTR_MEMBER_COUNT,
    ATTR_MEMBER_ID,
    ATTR_MODE,
    ATTR_OPERATOR,
    ATTR_PROVIDER,
    ATTR_STRATEGY,
    ATTR_TARGET_MODE,
)
from tandem.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_COMMUNITY_ID",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_DRY_RUN",
    "ATTR_GRANT_ID",
    "ATTR_JOB_NAME",
    "ATTR_MEMBER_COUNT",
    "ATTR_MEMBER_ID",
    "ATTR_MODE",
    "ATTR_OPERATOR",
    "ATTR_PROVIDER",
    "ATTR_STRATEGY",
    "ATTR_TARGET_MODE",
]

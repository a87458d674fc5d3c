"""
Persistence for tandem.

Each store provides:
- A Protocol (interface) defining the contract
- A PostgreSQL implementation for production use
- An in-memory implementation for tests and single-process use

Naming Convention:
    - get_{entity}()      - Fetch a single entity
    - list_{entities}()   - Fetch multiple entities with filtering
    - add_{entity}()      - Append to a history
    - save_{entity}()     - Upsert (create or update)
    - record / register   - Append-only writes
"""

from tandem.repositories.audit_log import (
    AuditLogRepository,
    InMemoryAuditLogRepository,
    PostgreSQLAuditLogRepository,
)
from tandem.repositories.community_state import (
    CommunityStateRepository,
    InMemoryCommunityStateRepository,
    PostgreSQLCommunityStateRepository,
)
from tandem.repositories.grants import (
    InMemoryNamespacedGrantRepository,
    NamespacedGrantRepository,
    PostgreSQLNamespacedGrantRepository,
)
from tandem.repositories.incumbent import (
    IncumbentProfileRepository,
    InMemoryIncumbentProfileRepository,
    PostgreSQLIncumbentProfileRepository,
)
from tandem.repositories.shadow import (
    InMemoryShadowRepository,
    PostgreSQLShadowRepository,
    ShadowRepository,
)

__all__ = [
    "AuditLogRepository",
    "InMemoryAuditLogRepository",
    "PostgreSQLAuditLogRepository",
    "CommunityStateRepository",
    "InMemoryCommunityStateRepository",
    "PostgreSQLCommunityStateRepository",
    "NamespacedGrantRepository",
    "InMemoryNamespacedGrantRepository",
    "PostgreSQLNamespacedGrantRepository",
    "IncumbentProfileRepository",
    "InMemoryIncumbentProfileRepository",
    "PostgreSQLIncumbentProfileRepository",
    "ShadowRepository",
    "InMemoryShadowRepository",
    "PostgreSQLShadowRepository",
]

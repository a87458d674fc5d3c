"""
NamespacedGrantRepository - Registry of grants tandem owns, plus access snapshots.

The registry is the source of truth for ownership: the parallel grant
manager only ever mutates grants whose id is registered here. A platform
grant that merely carries the namespaced name is never adopted.

Access snapshots are written after every parallel sync and feed the
rollback watcher's default metrics source.

Database Tables:
    ``coexistence_namespaced_grants``, ``coexistence_access_snapshots``
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tandem.models import AccessSnapshot, NamespacedGrant
from tandem.observability import Tracer, create_tracer
from tandem.observability.attributes import ATTR_COMMUNITY_ID, ATTR_DB_SYSTEM, ATTR_GRANT_ID
from tandem.repositories._connection import execute_with_connection


@runtime_checkable
class NamespacedGrantRepository(Protocol):
    """Protocol for the namespaced grant registry and access snapshots."""

    async def register(self, grant: NamespacedGrant) -> None:
        """Record ownership of a grant tandem created."""
        ...

    async def list_grants(self, community_id: str) -> list[NamespacedGrant]: ...

    async def is_registered(self, community_id: str, grant_id: str) -> bool: ...

    async def record_snapshot(self, snapshot: AccessSnapshot) -> None: ...

    async def list_snapshots(
        self,
        community_id: str,
        since: datetime | None = None,
    ) -> list[AccessSnapshot]:
        """Snapshots ordered by taken_at ascending."""
        ...


class PostgreSQLNamespacedGrantRepository:
    """PostgreSQL implementation of NamespacedGrantRepository."""

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    async def register(self, grant: NamespacedGrant) -> None:
        with self._tracer.span(
            "tandem.grant_repo.register",
            {
                ATTR_COMMUNITY_ID: grant.community_id,
                ATTR_GRANT_ID: grant.grant_id,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text("""
                INSERT INTO coexistence_namespaced_grants (
                    community_id, grant_id, tier, name, created_at
                ) VALUES (
                    :community_id, :grant_id, :tier, :name, :created_at
                )
                ON CONFLICT (community_id, grant_id) DO NOTHING
            """)
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(
                    query,
                    {
                        "community_id": grant.community_id,
                        "grant_id": grant.grant_id,
                        "tier": grant.tier,
                        "name": grant.name,
                        "created_at": grant.created_at,
                    },
                )

    async def list_grants(self, community_id: str) -> list[NamespacedGrant]:
        query = text("""
            SELECT community_id, grant_id, tier, name, created_at
            FROM coexistence_namespaced_grants
            WHERE community_id = :community_id
            ORDER BY created_at, grant_id
        """)
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"community_id": community_id})
            rows = result.fetchall()
        return [
            NamespacedGrant(
                community_id=row[0],
                grant_id=row[1],
                tier=row[2],
                name=row[3],
                created_at=row[4],
            )
            for row in rows
        ]

    async def is_registered(self, community_id: str, grant_id: str) -> bool:
        query = text("""
            SELECT 1 FROM coexistence_namespaced_grants
            WHERE community_id = :community_id AND grant_id = :grant_id
        """)
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                query, {"community_id": community_id, "grant_id": grant_id}
            )
            return result.fetchone() is not None

    async def record_snapshot(self, snapshot: AccessSnapshot) -> None:
        query = text("""
            INSERT INTO coexistence_access_snapshots (
                community_id, taken_at, members_with_access, operations, failed_operations,
                members_unevaluated
            ) VALUES (
                :community_id, :taken_at, :members_with_access, :operations, :failed_operations,
                :members_unevaluated
            )
        """)
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(
                query,
                {
                    "community_id": snapshot.community_id,
                    "taken_at": snapshot.taken_at,
                    "members_with_access": snapshot.members_with_access,
                    "operations": snapshot.operations,
                    "failed_operations": snapshot.failed_operations,
                    "members_unevaluated": snapshot.members_unevaluated,
                },
            )

    async def list_snapshots(
        self,
        community_id: str,
        since: datetime | None = None,
    ) -> list[AccessSnapshot]:
        with self._tracer.span(
            "tandem.grant_repo.list_snapshots",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            since_clause = "AND taken_at >= :since" if since is not None else ""
            query = text(f"""
                SELECT community_id, taken_at, members_with_access, operations, failed_operations,
                       members_unevaluated
                FROM coexistence_access_snapshots
                WHERE community_id = :community_id {since_clause}
                ORDER BY taken_at ASC, id ASC
            """)  # nosec B608 - no user input in SQL construction
            async with execute_with_connection(self._conn, transactional=False) as conn:
                params: dict[str, Any] = {"community_id": community_id}
                if since is not None:
                    params["since"] = since
                result = await conn.execute(query, params)
                rows = result.fetchall()
            return [
                AccessSnapshot(
                    community_id=row[0],
                    taken_at=row[1],
                    members_with_access=row[2],
                    operations=row[3],
                    failed_operations=row[4],
                    members_unevaluated=row[5],
                )
                for row in rows
            ]


class InMemoryNamespacedGrantRepository:
    """In-memory implementation of NamespacedGrantRepository for testing."""

    def __init__(self) -> None:
        self._grants: dict[tuple[str, str], NamespacedGrant] = {}
        self._snapshots: list[AccessSnapshot] = []
        self._lock = asyncio.Lock()

    async def register(self, grant: NamespacedGrant) -> None:
        async with self._lock:
            self._grants.setdefault((grant.community_id, grant.grant_id), grant)

    async def list_grants(self, community_id: str) -> list[NamespacedGrant]:
        async with self._lock:
            return [g for (cid, _), g in self._grants.items() if cid == community_id]

    async def is_registered(self, community_id: str, grant_id: str) -> bool:
        async with self._lock:
            return (community_id, grant_id) in self._grants

    async def record_snapshot(self, snapshot: AccessSnapshot) -> None:
        async with self._lock:
            self._snapshots.append(snapshot)

    async def list_snapshots(
        self,
        community_id: str,
        since: datetime | None = None,
    ) -> list[AccessSnapshot]:
        async with self._lock:
            rows = [
                s
                for s in self._snapshots
                if s.community_id == community_id and (since is None or s.taken_at >= since)
            ]
        return sorted(rows, key=lambda s: s.taken_at)


__all__ = [
    "NamespacedGrantRepository",
    "PostgreSQLNamespacedGrantRepository",
    "InMemoryNamespacedGrantRepository",
]

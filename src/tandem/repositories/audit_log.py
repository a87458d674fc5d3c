"""
AuditLogRepository - Append-only operator-visible history per community.

Records detections, mode changes, rejected requests, rollbacks, emergency
backups, takeover confirmations and health alerts.

Database Table:
    ``coexistence_audit_log``

Usage:
    >>> repo = PostgreSQLAuditLogRepository(engine)
    >>> entry = AuditEntry.mode_change(
    ...     community_id="123",
    ...     old_mode=CoexistenceMode.SHADOW,
    ...     new_mode=CoexistenceMode.PARALLEL,
    ...     occurred_at=datetime.now(UTC),
    ...     operator="ops@example.com",
    ... )
    >>> entry_id = await repo.record(entry)
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Sequence
from dataclasses import replace
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tandem.models import AuditEntry, AuditEventType, CoexistenceMode
from tandem.observability import Tracer, create_tracer
from tandem.observability.attributes import ATTR_COMMUNITY_ID, ATTR_DB_SYSTEM
from tandem.repositories._connection import dump_json, execute_with_connection, load_json


@runtime_checkable
class AuditLogRepository(Protocol):
    """
    Protocol for audit log persistence.

    Implementations must ensure entries are immutable once written.
    """

    async def record(self, entry: AuditEntry) -> int:
        """Record an entry (its id is ignored) and return the generated id."""
        ...

    async def list_entries(
        self,
        community_id: str,
        event_types: list[AuditEventType] | None = None,
        limit: int | None = None,
        *,
        newest_first: bool = False,
    ) -> list[AuditEntry]: ...

    async def get_latest(
        self,
        community_id: str,
        event_type: AuditEventType | None = None,
    ) -> AuditEntry | None: ...


class PostgreSQLAuditLogRepository:
    """PostgreSQL implementation of AuditLogRepository."""

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    async def record(self, entry: AuditEntry) -> int:
        with self._tracer.span(
            "tandem.audit_log_repo.record",
            {
                ATTR_COMMUNITY_ID: entry.community_id,
                "audit.event_type": entry.event_type.value,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text("""
                INSERT INTO coexistence_audit_log (
                    community_id, event_type, old_mode, new_mode,
                    details, operator, occurred_at
                ) VALUES (
                    :community_id, :event_type, :old_mode, :new_mode,
                    :details, :operator, :occurred_at
                )
                RETURNING id
            """)
            params = {
                "community_id": entry.community_id,
                "event_type": entry.event_type.value,
                "old_mode": entry.old_mode.value if entry.old_mode else None,
                "new_mode": entry.new_mode.value if entry.new_mode else None,
                "details": dump_json(entry.details) if entry.details else None,
                "operator": entry.operator,
                "occurred_at": entry.occurred_at,
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(query, params)
                row = result.fetchone()

            if row is None:
                raise RuntimeError("Failed to record audit entry - no row returned")
            return int(row[0])

    async def list_entries(
        self,
        community_id: str,
        event_types: list[AuditEventType] | None = None,
        limit: int | None = None,
        *,
        newest_first: bool = False,
    ) -> list[AuditEntry]:
        with self._tracer.span(
            "tandem.audit_log_repo.list_entries",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            conditions = ["community_id = :community_id"]
            params: dict[str, Any] = {"community_id": community_id}
            if event_types:
                conditions.append("event_type = ANY(:event_types)")
                params["event_types"] = [et.value for et in event_types]

            where_clause = " AND ".join(conditions)
            order = "DESC" if newest_first else "ASC"
            limit_clause = f"LIMIT {int(limit)}" if limit else ""

            query = text(f"""
                SELECT
                    id, community_id, event_type, old_mode, new_mode,
                    details, operator, occurred_at
                FROM coexistence_audit_log
                WHERE {where_clause}
                ORDER BY occurred_at {order}, id {order}
                {limit_clause}
            """)  # nosec B608 - no user input in SQL construction
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, params)
                rows = result.fetchall()
            return [self._row_to_entry(row) for row in rows]

    async def get_latest(
        self,
        community_id: str,
        event_type: AuditEventType | None = None,
    ) -> AuditEntry | None:
        entries = await self.list_entries(
            community_id,
            [event_type] if event_type else None,
            limit=1,
            newest_first=True,
        )
        return entries[0] if entries else None

    @staticmethod
    def _row_to_entry(row: Sequence[Any]) -> AuditEntry:
        return AuditEntry(
            id=row[0],
            community_id=row[1],
            event_type=AuditEventType(row[2]),
            old_mode=CoexistenceMode(row[3]) if row[3] else None,
            new_mode=CoexistenceMode(row[4]) if row[4] else None,
            details=load_json(row[5]),
            operator=row[6],
            occurred_at=row[7],
        )


class InMemoryAuditLogRepository:
    """In-memory implementation of AuditLogRepository for testing."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def record(self, entry: AuditEntry) -> int:
        async with self._lock:
            entry_id = next(self._ids)
            self._entries.append(replace(entry, id=entry_id))
            return entry_id

    async def list_entries(
        self,
        community_id: str,
        event_types: list[AuditEventType] | None = None,
        limit: int | None = None,
        *,
        newest_first: bool = False,
    ) -> list[AuditEntry]:
        async with self._lock:
            rows = [
                e
                for e in self._entries
                if e.community_id == community_id
                and (not event_types or e.event_type in event_types)
            ]
        rows.sort(key=lambda e: (e.occurred_at, e.id or 0), reverse=newest_first)
        return rows[:limit] if limit else rows

    async def get_latest(
        self,
        community_id: str,
        event_type: AuditEventType | None = None,
    ) -> AuditEntry | None:
        entries = await self.list_entries(
            community_id,
            [event_type] if event_type else None,
            limit=1,
            newest_first=True,
        )
        return entries[0] if entries else None

    @property
    def entries(self) -> list[AuditEntry]:
        return list(self._entries)


__all__ = [
    "AuditLogRepository",
    "PostgreSQLAuditLogRepository",
    "InMemoryAuditLogRepository",
]

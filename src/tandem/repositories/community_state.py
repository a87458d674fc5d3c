"""
CommunityStateRepository - Data access for ``CommunityMigrationState``.

Exactly one state row exists per managed community. Only the migration
engine changes ``mode``; the repository rejects any persisted change that
the state machine forbids with ``InvalidModeTransitionError``. The shadow
ledger's accuracy write goes through the dedicated ``update_accuracy`` so
it can never race a mode change into an overwrite.

Database Table:
    ``coexistence_community_state`` (see ``tandem/schemas/coexistence.sql``)
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tandem.exceptions import CommunityNotFoundError, InvalidModeTransitionError
from tandem.models import (
    CoexistenceMode,
    CommunityMigrationState,
    MigrationStrategy,
    is_valid_mode_change,
)
from tandem.observability import Tracer, create_tracer
from tandem.observability.attributes import ATTR_COMMUNITY_ID, ATTR_DB_SYSTEM, ATTR_MODE
from tandem.repositories._connection import execute_with_connection

_COLUMNS = """
    community_id, community_name, mode, strategy,
    shadow_started_at, parallel_enabled_at, primary_enabled_at, exclusive_enabled_at,
    rollback_count, last_rollback_at, last_rollback_reason,
    accuracy_percent, last_shadow_sync_at, readiness_check_passed,
    gradual_batch_size, gradual_duration_days, parallel_grants_active,
    gradual_started_at,
    created_at, updated_at
"""


@runtime_checkable
class CommunityStateRepository(Protocol):
    """
    Protocol for community migration state persistence.

    Implementations must ensure:
    - At most one state per community
    - Persisted mode changes follow the state machine
    - ``update_accuracy`` touches only the accuracy fields
    """

    async def get(self, community_id: str) -> CommunityMigrationState | None: ...

    async def get_required(self, community_id: str) -> CommunityMigrationState:
        """
        Get the state, raising if the community is not managed.

        Raises:
            CommunityNotFoundError: If no state exists.
        """
        ...

    async def create_if_missing(self, state: CommunityMigrationState) -> CommunityMigrationState:
        """Insert state unless one exists; return the stored state either way."""
        ...

    async def save(self, state: CommunityMigrationState) -> None:
        """
        Persist every field of an existing state.

        Raises:
            CommunityNotFoundError: If no state exists.
            InvalidModeTransitionError: If the stored mode cannot move to state.mode.
        """
        ...

    async def update_accuracy(
        self,
        community_id: str,
        accuracy_percent: float,
        synced_at: datetime,
    ) -> None:
        """Write accuracy and last sync time in a single update."""
        ...

    async def list_by_modes(
        self,
        modes: Iterable[CoexistenceMode],
        limit: int | None = None,
    ) -> list[CommunityMigrationState]: ...


class PostgreSQLCommunityStateRepository:
    """
    PostgreSQL implementation of CommunityStateRepository.

    Example:
        >>> repo = PostgreSQLCommunityStateRepository(engine)
        >>> state = await repo.get_required("123456789")
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    async def get(self, community_id: str) -> CommunityMigrationState | None:
        with self._tracer.span(
            "tandem.state_repo.get",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"""
                SELECT {_COLUMNS}
                FROM coexistence_community_state
                WHERE community_id = :community_id
            """)  # nosec B608 - column list is a constant

            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"community_id": community_id})
                row = result.fetchone()

            return self._row_to_state(row) if row else None

    async def get_required(self, community_id: str) -> CommunityMigrationState:
        state = await self.get(community_id)
        if state is None:
            raise CommunityNotFoundError(community_id)
        return state

    async def create_if_missing(self, state: CommunityMigrationState) -> CommunityMigrationState:
        with self._tracer.span(
            "tandem.state_repo.create_if_missing",
            {ATTR_COMMUNITY_ID: state.community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            now = datetime.now(UTC)
            query = text("""
                INSERT INTO coexistence_community_state (
                    community_id, community_name, mode, shadow_started_at,
                    created_at, updated_at
                ) VALUES (
                    :community_id, :community_name, :mode, :shadow_started_at,
                    :now, :now
                )
                ON CONFLICT (community_id) DO NOTHING
            """)
            params = {
                "community_id": state.community_id,
                "community_name": state.community_name,
                "mode": state.mode.value,
                "shadow_started_at": state.shadow_started_at,
                "now": now,
            }

            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

        return await self.get_required(state.community_id)

    async def save(self, state: CommunityMigrationState) -> None:
        with self._tracer.span(
            "tandem.state_repo.save",
            {
                ATTR_COMMUNITY_ID: state.community_id,
                ATTR_MODE: state.mode.value,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(
                    text("""
                        SELECT mode FROM coexistence_community_state
                        WHERE community_id = :community_id
                        FOR UPDATE
                    """),
                    {"community_id": state.community_id},
                )
                row = result.fetchone()
                if row is None:
                    raise CommunityNotFoundError(state.community_id)

                stored_mode = CoexistenceMode(row[0])
                if not is_valid_mode_change(stored_mode, state.mode):
                    raise InvalidModeTransitionError(state.community_id, stored_mode, state.mode)

                state.updated_at = datetime.now(UTC)
                await conn.execute(
                    text("""
                        UPDATE coexistence_community_state SET
                            community_name = :community_name,
                            mode = :mode,
                            strategy = :strategy,
                            shadow_started_at = :shadow_started_at,
                            parallel_enabled_at = :parallel_enabled_at,
                            primary_enabled_at = :primary_enabled_at,
                            exclusive_enabled_at = :exclusive_enabled_at,
                            rollback_count = :rollback_count,
                            last_rollback_at = :last_rollback_at,
                            last_rollback_reason = :last_rollback_reason,
                            accuracy_percent = :accuracy_percent,
                            last_shadow_sync_at = :last_shadow_sync_at,
                            readiness_check_passed = :readiness_check_passed,
                            gradual_batch_size = :gradual_batch_size,
                            gradual_duration_days = :gradual_duration_days,
                            parallel_grants_active = :parallel_grants_active,
                            gradual_started_at = :gradual_started_at,
                            updated_at = :updated_at
                        WHERE community_id = :community_id
                    """),
                    self._state_params(state),
                )

    async def update_accuracy(
        self,
        community_id: str,
        accuracy_percent: float,
        synced_at: datetime,
    ) -> None:
        with self._tracer.span(
            "tandem.state_repo.update_accuracy",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                UPDATE coexistence_community_state SET
                    accuracy_percent = :accuracy_percent,
                    last_shadow_sync_at = :synced_at,
                    updated_at = :synced_at
                WHERE community_id = :community_id
            """)
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(
                    query,
                    {
                        "community_id": community_id,
                        "accuracy_percent": accuracy_percent,
                        "synced_at": synced_at,
                    },
                )
            if result.rowcount == 0:
                raise CommunityNotFoundError(community_id)

    async def list_by_modes(
        self,
        modes: Iterable[CoexistenceMode],
        limit: int | None = None,
    ) -> list[CommunityMigrationState]:
        mode_values = [m.value for m in modes]
        with self._tracer.span(
            "tandem.state_repo.list_by_modes",
            {"tandem.modes": ",".join(mode_values), ATTR_DB_SYSTEM: "postgresql"},
        ):
            limit_clause = f"LIMIT {int(limit)}" if limit else ""
            query = text(f"""
                SELECT {_COLUMNS}
                FROM coexistence_community_state
                WHERE mode = ANY(:modes)
                ORDER BY community_id
                {limit_clause}
            """)  # nosec B608 - no user input in SQL construction

            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"modes": mode_values})
                rows = result.fetchall()

            return [self._row_to_state(row) for row in rows]

    # =========================================================================
    # Helper methods
    # =========================================================================

    @staticmethod
    def _state_params(state: CommunityMigrationState) -> dict[str, Any]:
        return {
            "community_id": state.community_id,
            "community_name": state.community_name,
            "mode": state.mode.value,
            "strategy": state.strategy.value if state.strategy else None,
            "shadow_started_at": state.shadow_started_at,
            "parallel_enabled_at": state.parallel_enabled_at,
            "primary_enabled_at": state.primary_enabled_at,
            "exclusive_enabled_at": state.exclusive_enabled_at,
            "rollback_count": state.rollback_count,
            "last_rollback_at": state.last_rollback_at,
            "last_rollback_reason": state.last_rollback_reason,
            "accuracy_percent": state.accuracy_percent,
            "last_shadow_sync_at": state.last_shadow_sync_at,
            "readiness_check_passed": state.readiness_check_passed,
            "gradual_batch_size": state.gradual_batch_size,
            "gradual_duration_days": state.gradual_duration_days,
            "parallel_grants_active": state.parallel_grants_active,
            "gradual_started_at": state.gradual_started_at,
            "updated_at": state.updated_at,
        }

    @staticmethod
    def _row_to_state(row: Sequence[Any]) -> CommunityMigrationState:
        return CommunityMigrationState(
            community_id=row[0],
            community_name=row[1],
            mode=CoexistenceMode(row[2]),
            strategy=MigrationStrategy(row[3]) if row[3] else None,
            shadow_started_at=row[4],
            parallel_enabled_at=row[5],
            primary_enabled_at=row[6],
            exclusive_enabled_at=row[7],
            rollback_count=row[8],
            last_rollback_at=row[9],
            last_rollback_reason=row[10],
            accuracy_percent=float(row[11]),
            last_shadow_sync_at=row[12],
            readiness_check_passed=row[13],
            gradual_batch_size=row[14],
            gradual_duration_days=row[15],
            parallel_grants_active=row[16],
            gradual_started_at=row[17],
            created_at=row[18],
            updated_at=row[19],
        )


class InMemoryCommunityStateRepository:
    """
    In-memory implementation of CommunityStateRepository for testing.

    Returns copies so callers can never mutate stored state without ``save``.
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._states: dict[str, CommunityMigrationState] = {}
        self._lock = asyncio.Lock()
        self.save_count = 0

    async def get(self, community_id: str) -> CommunityMigrationState | None:
        async with self._lock:
            state = self._states.get(community_id)
            return copy.deepcopy(state) if state else None

    async def get_required(self, community_id: str) -> CommunityMigrationState:
        state = await self.get(community_id)
        if state is None:
            raise CommunityNotFoundError(community_id)
        return state

    async def create_if_missing(self, state: CommunityMigrationState) -> CommunityMigrationState:
        with self._tracer.span(
            "tandem.state_repo.create_if_missing",
            {ATTR_COMMUNITY_ID: state.community_id},
        ):
            async with self._lock:
                if state.community_id not in self._states:
                    now = datetime.now(UTC)
                    self._states[state.community_id] = replace(
                        state, created_at=now, updated_at=now
                    )
                return copy.deepcopy(self._states[state.community_id])

    async def save(self, state: CommunityMigrationState) -> None:
        with self._tracer.span(
            "tandem.state_repo.save",
            {ATTR_COMMUNITY_ID: state.community_id, ATTR_MODE: state.mode.value},
        ):
            async with self._lock:
                stored = self._states.get(state.community_id)
                if stored is None:
                    raise CommunityNotFoundError(state.community_id)
                if not is_valid_mode_change(stored.mode, state.mode):
                    raise InvalidModeTransitionError(state.community_id, stored.mode, state.mode)
                state.updated_at = datetime.now(UTC)
                self._states[state.community_id] = copy.deepcopy(state)
                self.save_count += 1

    async def update_accuracy(
        self,
        community_id: str,
        accuracy_percent: float,
        synced_at: datetime,
    ) -> None:
        async with self._lock:
            stored = self._states.get(community_id)
            if stored is None:
                raise CommunityNotFoundError(community_id)
            stored.accuracy_percent = accuracy_percent
            stored.last_shadow_sync_at = synced_at
            stored.updated_at = synced_at

    async def list_by_modes(
        self,
        modes: Iterable[CoexistenceMode],
        limit: int | None = None,
    ) -> list[CommunityMigrationState]:
        wanted = set(modes)
        async with self._lock:
            states = [
                copy.deepcopy(s)
                for _, s in sorted(self._states.items())
                if s.mode in wanted
            ]
        return states[:limit] if limit else states

    def put(self, state: CommunityMigrationState) -> None:
        """Seed a state directly, bypassing transition checks (test setup)."""
        self._states[state.community_id] = copy.deepcopy(state)


__all__ = [
    "CommunityStateRepository",
    "PostgreSQLCommunityStateRepository",
    "InMemoryCommunityStateRepository",
]

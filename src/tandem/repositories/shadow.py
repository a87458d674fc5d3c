"""
ShadowRepository - Data access for shadow ledger output.

Stores three kinds of data:

- Member records: one per (community, member), upserted every pass,
  last write wins.
- Divergences: append-only history. A divergence is resolved once by
  filling ``resolved_at`` and ``resolution``; rows are never deleted.
- Predictions: one per appended divergence, resolved to CORRECT or
  INCORRECT by prediction validation.

Database Tables:
    ``coexistence_shadow_members``, ``coexistence_divergences``,
    ``coexistence_predictions``
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tandem.models import (
    Divergence,
    DivergenceResolution,
    DivergenceStatus,
    Prediction,
    PredictionOutcome,
    PredictionType,
    ShadowMemberRecord,
    VerificationTier,
)
from tandem.observability import Tracer, create_tracer
from tandem.observability.attributes import ATTR_COMMUNITY_ID, ATTR_DB_SYSTEM, ATTR_MEMBER_ID
from tandem.repositories._connection import dump_json, execute_with_connection, load_json


@runtime_checkable
class ShadowRepository(Protocol):
    """Protocol for shadow member records, divergences and predictions."""

    # Member records

    async def get_member(self, community_id: str, member_id: str) -> ShadowMemberRecord | None: ...

    async def list_members(self, community_id: str) -> list[ShadowMemberRecord]: ...

    async def save_member(self, record: ShadowMemberRecord) -> None:
        """Upsert keyed by (community_id, member_id)."""
        ...

    # Divergences

    async def add_divergence(self, divergence: Divergence) -> int:
        """Append a divergence and return its generated id."""
        ...

    async def get_open_divergence(self, community_id: str, member_id: str) -> Divergence | None:
        """The member's latest unresolved divergence, if any."""
        ...

    async def resolve_divergence(
        self,
        divergence_id: int,
        resolution: DivergenceResolution,
        resolved_at: datetime,
    ) -> None: ...

    async def list_divergences(
        self,
        community_id: str,
        since: datetime | None = None,
        *,
        unresolved_only: bool = False,
    ) -> list[Divergence]:
        """Divergences ordered by detected_at ascending."""
        ...

    async def count_unresolved_since(self, community_id: str, since: datetime) -> int: ...

    # Predictions

    async def add_prediction(self, prediction: Prediction) -> int: ...

    async def list_pending_predictions(self, community_id: str) -> list[Prediction]: ...

    async def resolve_prediction(
        self,
        prediction_id: int,
        outcome: PredictionOutcome,
        outcome_at: datetime,
    ) -> None: ...

    async def prediction_accuracy(self, community_id: str) -> float | None:
        """Correct / (correct + incorrect) * 100 over all resolved predictions."""
        ...


def _accuracy(correct: int, incorrect: int) -> float | None:
    total = correct + incorrect
    return correct / total * 100.0 if total else None


_DIVERGENCE_COLUMNS = """
    id, community_id, member_id, divergence_type, incumbent_state,
    new_system_state, detected_at, resolved_at, resolution
"""

_PREDICTION_COLUMNS = """
    id, community_id, member_id, prediction_type, predicted_at,
    details, outcome, outcome_at
"""


class PostgreSQLShadowRepository:
    """PostgreSQL implementation of ShadowRepository."""

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    # =========================================================================
    # Member records
    # =========================================================================

    async def get_member(self, community_id: str, member_id: str) -> ShadowMemberRecord | None:
        query = text("""
            SELECT
                community_id, member_id, incumbent_grants, linked_identity,
                computed_eligible, computed_tier, computed_score, would_grant,
                would_revoke, divergence_status, verification_tier, updated_at
            FROM coexistence_shadow_members
            WHERE community_id = :community_id AND member_id = :member_id
        """)
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                query, {"community_id": community_id, "member_id": member_id}
            )
            row = result.fetchone()
        return self._row_to_member(row) if row else None

    async def list_members(self, community_id: str) -> list[ShadowMemberRecord]:
        with self._tracer.span(
            "tandem.shadow_repo.list_members",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                SELECT
                    community_id, member_id, incumbent_grants, linked_identity,
                    computed_eligible, computed_tier, computed_score, would_grant,
                    would_revoke, divergence_status, verification_tier, updated_at
                FROM coexistence_shadow_members
                WHERE community_id = :community_id
                ORDER BY member_id
            """)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"community_id": community_id})
                rows = result.fetchall()
            return [self._row_to_member(row) for row in rows]

    async def save_member(self, record: ShadowMemberRecord) -> None:
        with self._tracer.span(
            "tandem.shadow_repo.save_member",
            {
                ATTR_COMMUNITY_ID: record.community_id,
                ATTR_MEMBER_ID: record.member_id,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text("""
                INSERT INTO coexistence_shadow_members (
                    community_id, member_id, incumbent_grants, linked_identity,
                    computed_eligible, computed_tier, computed_score, would_grant,
                    would_revoke, divergence_status, verification_tier, updated_at
                ) VALUES (
                    :community_id, :member_id, :incumbent_grants, :linked_identity,
                    :computed_eligible, :computed_tier, :computed_score, :would_grant,
                    :would_revoke, :divergence_status, :verification_tier, :updated_at
                )
                ON CONFLICT (community_id, member_id) DO UPDATE SET
                    incumbent_grants = EXCLUDED.incumbent_grants,
                    linked_identity = EXCLUDED.linked_identity,
                    computed_eligible = EXCLUDED.computed_eligible,
                    computed_tier = EXCLUDED.computed_tier,
                    computed_score = EXCLUDED.computed_score,
                    would_grant = EXCLUDED.would_grant,
                    would_revoke = EXCLUDED.would_revoke,
                    divergence_status = EXCLUDED.divergence_status,
                    verification_tier = EXCLUDED.verification_tier,
                    updated_at = EXCLUDED.updated_at
            """)
            params = {
                "community_id": record.community_id,
                "member_id": record.member_id,
                "incumbent_grants": dump_json(sorted(record.incumbent_grants)),
                "linked_identity": record.linked_identity,
                "computed_eligible": record.computed_eligible,
                "computed_tier": record.computed_tier,
                "computed_score": record.computed_score,
                "would_grant": dump_json(sorted(record.would_grant)),
                "would_revoke": dump_json(sorted(record.would_revoke)),
                "divergence_status": record.divergence_status.value,
                "verification_tier": record.verification_tier.value,
                "updated_at": record.updated_at,
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

    # =========================================================================
    # Divergences
    # =========================================================================

    async def add_divergence(self, divergence: Divergence) -> int:
        with self._tracer.span(
            "tandem.shadow_repo.add_divergence",
            {
                ATTR_COMMUNITY_ID: divergence.community_id,
                ATTR_MEMBER_ID: divergence.member_id,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text("""
                INSERT INTO coexistence_divergences (
                    community_id, member_id, divergence_type, incumbent_state,
                    new_system_state, detected_at, resolved_at, resolution
                ) VALUES (
                    :community_id, :member_id, :divergence_type, :incumbent_state,
                    :new_system_state, :detected_at, :resolved_at, :resolution
                )
                RETURNING id
            """)
            params = {
                "community_id": divergence.community_id,
                "member_id": divergence.member_id,
                "divergence_type": divergence.divergence_type.value,
                "incumbent_state": dump_json(divergence.incumbent_state),
                "new_system_state": dump_json(divergence.new_system_state),
                "detected_at": divergence.detected_at,
                "resolved_at": divergence.resolved_at,
                "resolution": divergence.resolution.value if divergence.resolution else None,
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(query, params)
                row = result.fetchone()

            if row is None:
                raise RuntimeError("Failed to record divergence - no row returned")
            return int(row[0])

    async def get_open_divergence(self, community_id: str, member_id: str) -> Divergence | None:
        query = text(f"""
            SELECT {_DIVERGENCE_COLUMNS}
            FROM coexistence_divergences
            WHERE community_id = :community_id
              AND member_id = :member_id
              AND resolved_at IS NULL
            ORDER BY detected_at DESC, id DESC
            LIMIT 1
        """)  # nosec B608 - column list is a constant
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(
                query, {"community_id": community_id, "member_id": member_id}
            )
            row = result.fetchone()
        return self._row_to_divergence(row) if row else None

    async def resolve_divergence(
        self,
        divergence_id: int,
        resolution: DivergenceResolution,
        resolved_at: datetime,
    ) -> None:
        query = text("""
            UPDATE coexistence_divergences
            SET resolved_at = :resolved_at, resolution = :resolution
            WHERE id = :id AND resolved_at IS NULL
        """)
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(
                query,
                {"id": divergence_id, "resolution": resolution.value, "resolved_at": resolved_at},
            )

    async def list_divergences(
        self,
        community_id: str,
        since: datetime | None = None,
        *,
        unresolved_only: bool = False,
    ) -> list[Divergence]:
        with self._tracer.span(
            "tandem.shadow_repo.list_divergences",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            conditions = ["community_id = :community_id"]
            params: dict[str, Any] = {"community_id": community_id}
            if since is not None:
                conditions.append("detected_at >= :since")
                params["since"] = since
            if unresolved_only:
                conditions.append("resolved_at IS NULL")

            where_clause = " AND ".join(conditions)
            query = text(f"""
                SELECT {_DIVERGENCE_COLUMNS}
                FROM coexistence_divergences
                WHERE {where_clause}
                ORDER BY detected_at ASC, id ASC
            """)  # nosec B608 - no user input in SQL construction
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, params)
                rows = result.fetchall()
            return [self._row_to_divergence(row) for row in rows]

    async def count_unresolved_since(self, community_id: str, since: datetime) -> int:
        query = text("""
            SELECT COUNT(*)
            FROM coexistence_divergences
            WHERE community_id = :community_id
              AND resolved_at IS NULL
              AND detected_at >= :since
        """)
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"community_id": community_id, "since": since})
            row = result.fetchone()
        return int(row[0]) if row else 0

    # =========================================================================
    # Predictions
    # =========================================================================

    async def add_prediction(self, prediction: Prediction) -> int:
        query = text("""
            INSERT INTO coexistence_predictions (
                community_id, member_id, prediction_type, predicted_at,
                details, outcome, outcome_at
            ) VALUES (
                :community_id, :member_id, :prediction_type, :predicted_at,
                :details, :outcome, :outcome_at
            )
            RETURNING id
        """)
        params = {
            "community_id": prediction.community_id,
            "member_id": prediction.member_id,
            "prediction_type": prediction.prediction_type.value,
            "predicted_at": prediction.predicted_at,
            "details": dump_json(prediction.details),
            "outcome": prediction.outcome.value,
            "outcome_at": prediction.outcome_at,
        }
        async with execute_with_connection(self._conn, transactional=True) as conn:
            result = await conn.execute(query, params)
            row = result.fetchone()

        if row is None:
            raise RuntimeError("Failed to record prediction - no row returned")
        return int(row[0])

    async def list_pending_predictions(self, community_id: str) -> list[Prediction]:
        query = text(f"""
            SELECT {_PREDICTION_COLUMNS}
            FROM coexistence_predictions
            WHERE community_id = :community_id AND outcome = 'pending'
            ORDER BY predicted_at ASC, id ASC
        """)  # nosec B608 - column list is a constant
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"community_id": community_id})
            rows = result.fetchall()
        return [self._row_to_prediction(row) for row in rows]

    async def resolve_prediction(
        self,
        prediction_id: int,
        outcome: PredictionOutcome,
        outcome_at: datetime,
    ) -> None:
        query = text("""
            UPDATE coexistence_predictions
            SET outcome = :outcome, outcome_at = :outcome_at
            WHERE id = :id AND outcome = 'pending'
        """)
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(
                query, {"id": prediction_id, "outcome": outcome.value, "outcome_at": outcome_at}
            )

    async def prediction_accuracy(self, community_id: str) -> float | None:
        query = text("""
            SELECT
                COUNT(*) FILTER (WHERE outcome = 'correct'),
                COUNT(*) FILTER (WHERE outcome = 'incorrect')
            FROM coexistence_predictions
            WHERE community_id = :community_id
        """)
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"community_id": community_id})
            row = result.fetchone()
        if row is None:
            return None
        return _accuracy(int(row[0]), int(row[1]))

    # =========================================================================
    # Helper methods
    # =========================================================================

    @staticmethod
    def _row_to_member(row: Sequence[Any]) -> ShadowMemberRecord:
        return ShadowMemberRecord(
            community_id=row[0],
            member_id=row[1],
            incumbent_grants=frozenset(load_json(row[2]) or []),
            linked_identity=row[3],
            computed_eligible=row[4],
            computed_tier=row[5],
            computed_score=row[6],
            would_grant=frozenset(load_json(row[7]) or []),
            would_revoke=frozenset(load_json(row[8]) or []),
            divergence_status=DivergenceStatus(row[9]),
            verification_tier=VerificationTier(row[10]),
            updated_at=row[11],
        )

    @staticmethod
    def _row_to_divergence(row: Sequence[Any]) -> Divergence:
        return Divergence(
            id=row[0],
            community_id=row[1],
            member_id=row[2],
            divergence_type=DivergenceStatus(row[3]),
            incumbent_state=load_json(row[4]) or {},
            new_system_state=load_json(row[5]) or {},
            detected_at=row[6],
            resolved_at=row[7],
            resolution=DivergenceResolution(row[8]) if row[8] else None,
        )

    @staticmethod
    def _row_to_prediction(row: Sequence[Any]) -> Prediction:
        return Prediction(
            id=row[0],
            community_id=row[1],
            member_id=row[2],
            prediction_type=PredictionType(row[3]),
            predicted_at=row[4],
            details=load_json(row[5]) or {},
            outcome=PredictionOutcome(row[6]),
            outcome_at=row[7],
        )


class InMemoryShadowRepository:
    """In-memory implementation of ShadowRepository for testing."""

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._members: dict[tuple[str, str], ShadowMemberRecord] = {}
        self._divergences: dict[int, Divergence] = {}
        self._predictions: dict[int, Prediction] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def get_member(self, community_id: str, member_id: str) -> ShadowMemberRecord | None:
        async with self._lock:
            return self._members.get((community_id, member_id))

    async def list_members(self, community_id: str) -> list[ShadowMemberRecord]:
        async with self._lock:
            return [
                record
                for (cid, _), record in sorted(self._members.items())
                if cid == community_id
            ]

    async def save_member(self, record: ShadowMemberRecord) -> None:
        async with self._lock:
            self._members[(record.community_id, record.member_id)] = record

    async def add_divergence(self, divergence: Divergence) -> int:
        async with self._lock:
            divergence_id = next(self._ids)
            self._divergences[divergence_id] = replace(divergence, id=divergence_id)
            return divergence_id

    async def get_open_divergence(self, community_id: str, member_id: str) -> Divergence | None:
        async with self._lock:
            open_ = [
                d
                for d in self._divergences.values()
                if d.community_id == community_id
                and d.member_id == member_id
                and d.resolved_at is None
            ]
        if not open_:
            return None
        return max(open_, key=lambda d: (d.detected_at, d.id or 0))

    async def resolve_divergence(
        self,
        divergence_id: int,
        resolution: DivergenceResolution,
        resolved_at: datetime,
    ) -> None:
        async with self._lock:
            divergence = self._divergences.get(divergence_id)
            if divergence is not None and divergence.resolved_at is None:
                self._divergences[divergence_id] = replace(
                    divergence, resolved_at=resolved_at, resolution=resolution
                )

    async def list_divergences(
        self,
        community_id: str,
        since: datetime | None = None,
        *,
        unresolved_only: bool = False,
    ) -> list[Divergence]:
        async with self._lock:
            rows = [
                d
                for d in self._divergences.values()
                if d.community_id == community_id
                and (since is None or d.detected_at >= since)
                and not (unresolved_only and d.resolved_at is not None)
            ]
        return sorted(rows, key=lambda d: (d.detected_at, d.id or 0))

    async def count_unresolved_since(self, community_id: str, since: datetime) -> int:
        return len(await self.list_divergences(community_id, since, unresolved_only=True))

    async def add_prediction(self, prediction: Prediction) -> int:
        async with self._lock:
            prediction_id = next(self._ids)
            self._predictions[prediction_id] = replace(prediction, id=prediction_id)
            return prediction_id

    async def list_pending_predictions(self, community_id: str) -> list[Prediction]:
        async with self._lock:
            rows = [
                p
                for p in self._predictions.values()
                if p.community_id == community_id and p.outcome == PredictionOutcome.PENDING
            ]
        return sorted(rows, key=lambda p: (p.predicted_at, p.id or 0))

    async def resolve_prediction(
        self,
        prediction_id: int,
        outcome: PredictionOutcome,
        outcome_at: datetime,
    ) -> None:
        async with self._lock:
            prediction = self._predictions.get(prediction_id)
            if prediction is not None and prediction.outcome == PredictionOutcome.PENDING:
                self._predictions[prediction_id] = replace(
                    prediction, outcome=outcome, outcome_at=outcome_at
                )

    async def prediction_accuracy(self, community_id: str) -> float | None:
        async with self._lock:
            outcomes = [
                p.outcome for p in self._predictions.values() if p.community_id == community_id
            ]
        return _accuracy(
            outcomes.count(PredictionOutcome.CORRECT),
            outcomes.count(PredictionOutcome.INCORRECT),
        )

    def all_predictions(self) -> list[Prediction]:
        return sorted(self._predictions.values(), key=lambda p: p.id or 0)


__all__ = [
    "ShadowRepository",
    "PostgreSQLShadowRepository",
    "InMemoryShadowRepository",
]

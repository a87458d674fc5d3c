"""
IncumbentProfileRepository - Data access for incumbent profiles and health checks.

Profiles are written by the profiler and updated by the health monitor;
they are never deleted while a community is managed. Health-check records
are append-only.

Database Tables:
    ``coexistence_incumbent_profiles``, ``coexistence_health_checks``
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tandem.models import (
    DetectionMethod,
    HealthCheckRecord,
    HealthIssue,
    HealthStatus,
    IncumbentProfile,
    SuspectGrant,
)
from tandem.observability import Tracer, create_tracer
from tandem.observability.attributes import ATTR_COMMUNITY_ID, ATTR_DB_SYSTEM, ATTR_PROVIDER
from tandem.repositories._connection import dump_json, execute_with_connection, load_json


@runtime_checkable
class IncumbentProfileRepository(Protocol):
    """Protocol for incumbent profile and health-check persistence."""

    async def get_profile(self, community_id: str) -> IncumbentProfile | None: ...

    async def save_profile(self, profile: IncumbentProfile) -> None:
        """Insert or replace the community's profile."""
        ...

    async def record_health_check(self, record: HealthCheckRecord) -> None: ...

    async def list_health_checks(
        self,
        community_id: str,
        limit: int = 10,
    ) -> list[HealthCheckRecord]:
        """Most recent health checks first."""
        ...


def _issue_from_dict(data: dict[str, Any]) -> HealthIssue:
    return HealthIssue(
        check=data["check"],
        severity=HealthStatus(data["severity"]),
        message=data["message"],
        details=data.get("details") or {},
    )


class PostgreSQLIncumbentProfileRepository:
    """PostgreSQL implementation of IncumbentProfileRepository."""

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    async def get_profile(self, community_id: str) -> IncumbentProfile | None:
        with self._tracer.span(
            "tandem.incumbent_repo.get_profile",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                SELECT
                    community_id, provider, confidence, detection_method,
                    automation_identity, monitored_channels, suspect_grants,
                    catalog_version, health_status, last_health_check_at,
                    last_alert_at, grant_fingerprint, last_grant_change_at,
                    detected_at, updated_at
                FROM coexistence_incumbent_profiles
                WHERE community_id = :community_id
            """)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"community_id": community_id})
                row = result.fetchone()

            return self._row_to_profile(row) if row else None

    async def save_profile(self, profile: IncumbentProfile) -> None:
        with self._tracer.span(
            "tandem.incumbent_repo.save_profile",
            {
                ATTR_COMMUNITY_ID: profile.community_id,
                ATTR_PROVIDER: profile.provider,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            now = datetime.now(UTC)
            profile.updated_at = now
            if profile.detected_at is None:
                profile.detected_at = now

            query = text("""
                INSERT INTO coexistence_incumbent_profiles (
                    community_id, provider, confidence, detection_method,
                    automation_identity, monitored_channels, suspect_grants,
                    catalog_version, health_status, last_health_check_at,
                    last_alert_at, grant_fingerprint, last_grant_change_at,
                    detected_at, updated_at
                ) VALUES (
                    :community_id, :provider, :confidence, :detection_method,
                    :automation_identity, :monitored_channels, :suspect_grants,
                    :catalog_version, :health_status, :last_health_check_at,
                    :last_alert_at, :grant_fingerprint, :last_grant_change_at,
                    :detected_at, :updated_at
                )
                ON CONFLICT (community_id) DO UPDATE SET
                    provider = EXCLUDED.provider,
                    confidence = EXCLUDED.confidence,
                    detection_method = EXCLUDED.detection_method,
                    automation_identity = EXCLUDED.automation_identity,
                    monitored_channels = EXCLUDED.monitored_channels,
                    suspect_grants = EXCLUDED.suspect_grants,
                    catalog_version = EXCLUDED.catalog_version,
                    health_status = EXCLUDED.health_status,
                    last_health_check_at = EXCLUDED.last_health_check_at,
                    last_alert_at = EXCLUDED.last_alert_at,
                    grant_fingerprint = EXCLUDED.grant_fingerprint,
                    last_grant_change_at = EXCLUDED.last_grant_change_at,
                    detected_at = EXCLUDED.detected_at,
                    updated_at = EXCLUDED.updated_at
            """)
            params = {
                "community_id": profile.community_id,
                "provider": profile.provider,
                "confidence": profile.confidence,
                "detection_method": profile.detection_method.value,
                "automation_identity": profile.automation_identity,
                "monitored_channels": dump_json(list(profile.monitored_channels)),
                "suspect_grants": dump_json(
                    [g.to_dict() for g in profile.suspect_grants.values()]
                ),
                "catalog_version": profile.catalog_version,
                "health_status": profile.health_status.value,
                "last_health_check_at": profile.last_health_check_at,
                "last_alert_at": profile.last_alert_at,
                "grant_fingerprint": profile.grant_fingerprint,
                "last_grant_change_at": profile.last_grant_change_at,
                "detected_at": profile.detected_at,
                "updated_at": profile.updated_at,
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def record_health_check(self, record: HealthCheckRecord) -> None:
        with self._tracer.span(
            "tandem.incumbent_repo.record_health_check",
            {ATTR_COMMUNITY_ID: record.community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                INSERT INTO coexistence_health_checks (
                    community_id, status, issues, checked_at, alert_sent
                ) VALUES (
                    :community_id, :status, :issues, :checked_at, :alert_sent
                )
            """)
            params = {
                "community_id": record.community_id,
                "status": record.status.value,
                "issues": dump_json([issue.to_dict() for issue in record.issues]),
                "checked_at": record.checked_at,
                "alert_sent": record.alert_sent,
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def list_health_checks(
        self,
        community_id: str,
        limit: int = 10,
    ) -> list[HealthCheckRecord]:
        with self._tracer.span(
            "tandem.incumbent_repo.list_health_checks",
            {ATTR_COMMUNITY_ID: community_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                SELECT community_id, status, issues, checked_at, alert_sent
                FROM coexistence_health_checks
                WHERE community_id = :community_id
                ORDER BY checked_at DESC, id DESC
                LIMIT :limit
            """)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"community_id": community_id, "limit": limit})
                rows = result.fetchall()

            return [
                HealthCheckRecord(
                    community_id=row[0],
                    status=HealthStatus(row[1]),
                    issues=tuple(_issue_from_dict(i) for i in load_json(row[2]) or []),
                    checked_at=row[3],
                    alert_sent=row[4],
                )
                for row in rows
            ]

    @staticmethod
    def _row_to_profile(row: Sequence[Any]) -> IncumbentProfile:
        suspects = [SuspectGrant.from_dict(g) for g in load_json(row[6]) or []]
        return IncumbentProfile(
            community_id=row[0],
            provider=row[1],
            confidence=float(row[2]),
            detection_method=DetectionMethod(row[3]),
            automation_identity=row[4],
            monitored_channels=tuple(load_json(row[5]) or []),
            suspect_grants={g.grant_id: g for g in suspects},
            catalog_version=row[7],
            health_status=HealthStatus(row[8]),
            last_health_check_at=row[9],
            last_alert_at=row[10],
            grant_fingerprint=row[11],
            last_grant_change_at=row[12],
            detected_at=row[13],
            updated_at=row[14],
        )


class InMemoryIncumbentProfileRepository:
    """In-memory implementation of IncumbentProfileRepository for testing."""

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._profiles: dict[str, IncumbentProfile] = {}
        self._health_checks: dict[str, list[HealthCheckRecord]] = {}
        self._lock = asyncio.Lock()

    async def get_profile(self, community_id: str) -> IncumbentProfile | None:
        async with self._lock:
            profile = self._profiles.get(community_id)
            return copy.deepcopy(profile) if profile else None

    async def save_profile(self, profile: IncumbentProfile) -> None:
        with self._tracer.span(
            "tandem.incumbent_repo.save_profile",
            {ATTR_COMMUNITY_ID: profile.community_id, ATTR_PROVIDER: profile.provider},
        ):
            now = datetime.now(UTC)
            profile.updated_at = now
            if profile.detected_at is None:
                profile.detected_at = now
            async with self._lock:
                self._profiles[profile.community_id] = copy.deepcopy(profile)

    async def record_health_check(self, record: HealthCheckRecord) -> None:
        async with self._lock:
            self._health_checks.setdefault(record.community_id, []).append(record)

    async def list_health_checks(
        self,
        community_id: str,
        limit: int = 10,
    ) -> list[HealthCheckRecord]:
        async with self._lock:
            records = list(self._health_checks.get(community_id, []))
        records.sort(key=lambda r: r.checked_at, reverse=True)
        return records[:limit]


__all__ = [
    "IncumbentProfileRepository",
    "PostgreSQLIncumbentProfileRepository",
    "InMemoryIncumbentProfileRepository",
]

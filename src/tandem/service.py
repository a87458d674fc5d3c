"""
Transport-agnostic control service.

``CoexistenceService`` is the operator-facing surface of tandem. It wraps
the migration engine and the shadow ledger and returns pydantic models, so
an HTTP handler, a bot command or a CLI can serialise results with
``model_dump(mode="json")`` without knowing the internal dataclasses.

Business-rule rejections come back as typed responses; the service never
lets ``IrreversibleStateError`` escape a rollback request.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from tandem.engine import MigrationEngine
from tandem.exceptions import IrreversibleStateError
from tandem.models import (
    AuditEntry,
    AuditEventType,
    CoexistenceMode,
    Divergence,
    DivergenceResolution,
    DivergenceStatus,
    HealthStatus,
    MigrationStrategy,
    ModeChangeResult,
    ModeChangeStatus,
    ReadinessReport,
)
from tandem.observability import ATTR_COMMUNITY_ID, ATTR_OPERATOR, Tracer, create_tracer
from tandem.repositories import (
    AuditLogRepository,
    CommunityStateRepository,
    IncumbentProfileRepository,
)
from tandem.shadow_ledger import ShadowLedger

logger = logging.getLogger(__name__)

_STATUS_TARGET = {
    CoexistenceMode.SHADOW: CoexistenceMode.PARALLEL,
    CoexistenceMode.PARALLEL: CoexistenceMode.PRIMARY,
    CoexistenceMode.PRIMARY: CoexistenceMode.EXCLUSIVE,
}

RollbackStatus = Literal["success", "rejected_from_exclusive", "rejected_invalid_mode"]


# =============================================================================
# Request and response models
# =============================================================================


class ReadinessCheckView(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    current: float
    required: float
    message: str


class ReadinessView(BaseModel):
    """Readiness gate for the next mode, with every check."""

    model_config = ConfigDict(frozen=True)

    target_mode: CoexistenceMode
    ready: bool
    checks: list[ReadinessCheckView] = Field(default_factory=list)
    prediction_accuracy: float | None = None

    @classmethod
    def from_report(cls, report: ReadinessReport) -> ReadinessView:
        return cls(
            target_mode=report.target_mode,
            ready=report.ready,
            checks=[ReadinessCheckView(**check.to_dict()) for check in report.checks],
            prediction_accuracy=report.prediction_accuracy,
        )


class StatusResponse(BaseModel):
    """
    Coexistence status of a community.

    Attributes:
        community_id: The community.
        mode: Current authority mode.
        strategy: Strategy chosen when leaving shadow mode, if any.
        incumbent_provider: Detected incumbent, if any.
        incumbent_health: Last health monitor verdict.
        shadow_accuracy: Accuracy of the last complete shadow pass.
        divergence_count: Unresolved divergences.
        readiness: Readiness for the next mode (None in EXCLUSIVE).
        rollback_count: Rollbacks performed so far.
        last_rollback_reason: Reason of the most recent rollback.
    """

    model_config = ConfigDict(frozen=True)

    community_id: str
    mode: CoexistenceMode
    strategy: MigrationStrategy | None = None
    incumbent_provider: str | None = None
    incumbent_health: HealthStatus = HealthStatus.UNKNOWN
    shadow_accuracy: float = 0.0
    divergence_count: int = 0
    readiness: ReadinessView | None = None
    rollback_count: int = 0
    last_rollback_reason: str | None = None
    available_strategies: list[MigrationStrategy] = Field(default_factory=list)


class ModeChangeRequest(BaseModel):
    """
    An operator's request to change a community's mode.

    ``confirmation`` must echo the community name for a takeover.
    """

    model_config = ConfigDict(frozen=True)

    community_id: str = Field(min_length=1)
    target_mode: CoexistenceMode
    strategy: MigrationStrategy | None = None
    operator_id: str | None = None
    confirmation: str | None = None
    direct_takeover: bool = False
    batch_size: int | None = Field(default=None, ge=1)
    duration_days: int | None = Field(default=None, ge=1)


class ModeChangeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    community_id: str
    status: ModeChangeStatus
    success: bool
    previous_mode: CoexistenceMode
    current_mode: CoexistenceMode
    strategy: MigrationStrategy | None = None
    message: str = ""
    steps: list[CoexistenceMode] = Field(default_factory=list)
    failed_checks: list[str] = Field(default_factory=list)
    readiness: ReadinessView | None = None

    @classmethod
    def from_result(cls, result: ModeChangeResult) -> ModeChangeResponse:
        readiness = result.readiness
        return cls(
            community_id=result.community_id,
            status=result.status,
            success=result.success,
            previous_mode=result.previous_mode,
            current_mode=result.current_mode,
            strategy=result.strategy,
            message=result.message,
            steps=list(result.steps),
            failed_checks=readiness.failed_check_names if readiness else [],
            readiness=ReadinessView.from_report(readiness) if readiness else None,
        )


class RollbackResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    community_id: str
    status: RollbackStatus
    previous_mode: CoexistenceMode
    current_mode: CoexistenceMode
    rollback_count: int
    members_affected: int = 0
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status == "success"


class DivergenceView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None
    member_id: str
    divergence_type: DivergenceStatus
    incumbent_state: dict[str, Any]
    new_system_state: dict[str, Any]
    detected_at: datetime
    resolved_at: datetime | None = None
    resolution: DivergenceResolution | None = None

    @classmethod
    def from_divergence(cls, divergence: Divergence) -> DivergenceView:
        return cls(
            id=divergence.id,
            member_id=divergence.member_id,
            divergence_type=divergence.divergence_type,
            incumbent_state=divergence.incumbent_state,
            new_system_state=divergence.new_system_state,
            detected_at=divergence.detected_at,
            resolved_at=divergence.resolved_at,
            resolution=divergence.resolution,
        )


class AuditEntryView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | None
    event_type: AuditEventType
    old_mode: CoexistenceMode | None = None
    new_mode: CoexistenceMode | None = None
    details: dict[str, Any] | None = None
    operator: str | None = None
    occurred_at: datetime

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> AuditEntryView:
        return cls(
            id=entry.id,
            event_type=entry.event_type,
            old_mode=entry.old_mode,
            new_mode=entry.new_mode,
            details=entry.details,
            operator=entry.operator,
            occurred_at=entry.occurred_at,
        )


# =============================================================================
# Service
# =============================================================================


class CoexistenceService:
    """
    Operator-facing control surface.

    Example:
        >>> service = CoexistenceService(engine, ledger, states, profiles, audit_log)
        >>> status = await service.get_status("123")
        >>> status.model_dump(mode="json")["mode"]
        'shadow'
    """

    def __init__(
        self,
        engine: MigrationEngine,
        ledger: ShadowLedger,
        states: CommunityStateRepository,
        profiles: IncumbentProfileRepository,
        audit_log: AuditLogRepository,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._engine = engine
        self._ledger = ledger
        self._states = states
        self._profiles = profiles
        self._audit_log = audit_log
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def get_status(self, community_id: str) -> StatusResponse:
        """
        Raises:
            CommunityNotFoundError: If the community has no state.
        """
        with self._tracer.span("tandem.service.get_status", {ATTR_COMMUNITY_ID: community_id}):
            state = await self._states.get_required(community_id)
            profile = await self._profiles.get_profile(community_id)
            unresolved = await self._ledger.list_divergences(community_id, unresolved_only=True)

            readiness = None
            target = _STATUS_TARGET.get(state.mode)
            if target is not None:
                report = await self._engine.check_readiness(community_id, target)
                readiness = ReadinessView.from_report(report)

            return StatusResponse(
                community_id=community_id,
                mode=state.mode,
                strategy=state.strategy,
                incumbent_provider=profile.provider if profile else None,
                incumbent_health=profile.health_status if profile else HealthStatus.UNKNOWN,
                shadow_accuracy=state.accuracy_percent,
                divergence_count=len(unresolved),
                readiness=readiness,
                rollback_count=state.rollback_count,
                last_rollback_reason=state.last_rollback_reason,
                available_strategies=await self._engine.get_available_strategies(community_id),
            )

    async def request_mode_change(self, request: ModeChangeRequest) -> ModeChangeResponse:
        with self._tracer.span(
            "tandem.service.request_mode_change",
            {
                ATTR_COMMUNITY_ID: request.community_id,
                ATTR_OPERATOR: request.operator_id or "",
            },
        ):
            result = await self._engine.request_mode_change(
                request.community_id,
                request.target_mode,
                request.strategy,
                confirmation=request.confirmation,
                operator=request.operator_id,
                direct_takeover=request.direct_takeover,
                batch_size=request.batch_size,
                duration_days=request.duration_days,
            )
            return ModeChangeResponse.from_result(result)

    async def rollback(
        self,
        community_id: str,
        reason: str,
        operator_id: str | None = None,
    ) -> RollbackResponse:
        """
        Roll a community back one mode.

        EXCLUSIVE communities get ``rejected_from_exclusive`` and SHADOW
        communities ``rejected_invalid_mode``; neither changes any state.
        """
        with self._tracer.span(
            "tandem.service.rollback",
            {ATTR_COMMUNITY_ID: community_id, ATTR_OPERATOR: operator_id or ""},
        ):
            try:
                result = await self._engine.rollback(community_id, reason, operator=operator_id)
            except IrreversibleStateError as e:
                state = await self._states.get_required(community_id)
                return RollbackResponse(
                    community_id=community_id,
                    status="rejected_from_exclusive",
                    previous_mode=state.mode,
                    current_mode=state.mode,
                    rollback_count=state.rollback_count,
                    message=e.message,
                )

            return RollbackResponse(
                community_id=community_id,
                status="success" if result.success else "rejected_invalid_mode",
                previous_mode=result.previous_mode,
                current_mode=result.current_mode,
                rollback_count=result.rollback_count,
                members_affected=result.members_affected,
                message=result.message,
            )

    async def list_divergences(
        self,
        community_id: str,
        since: datetime | None = None,
        *,
        unresolved_only: bool = False,
    ) -> list[DivergenceView]:
        divergences = await self._ledger.list_divergences(
            community_id, since, unresolved_only=unresolved_only
        )
        return [DivergenceView.from_divergence(d) for d in divergences]

    async def trigger_emergency_backup(
        self,
        community_id: str,
        operator_id: str | None,
        confirmed: bool,
    ) -> ModeChangeResponse:
        result = await self._engine.trigger_emergency_backup(
            community_id, operator_id, confirmed=confirmed
        )
        return ModeChangeResponse.from_result(result)

    async def get_audit_log(
        self,
        community_id: str,
        limit: int = 50,
        event_types: list[AuditEventType] | None = None,
    ) -> list[AuditEntryView]:
        """Most recent audit entries first."""
        entries = await self._audit_log.list_entries(
            community_id, event_types, limit, newest_first=True
        )
        return [AuditEntryView.from_entry(entry) for entry in entries]


__all__ = [
    "CoexistenceService",
    "StatusResponse",
    "ReadinessView",
    "ReadinessCheckView",
    "ModeChangeRequest",
    "ModeChangeResponse",
    "RollbackResponse",
    "DivergenceView",
    "AuditEntryView",
]

"""
Data models for the tandem coexistence engine.

Models in this module:

Enums:
    - CoexistenceMode: Authority modes of the new system (state machine)
    - MigrationStrategy: How a community moves out of shadow mode
    - HealthStatus, DivergenceStatus, DivergenceResolution, VerificationTier
    - PredictionType, PredictionOutcome, DetectionMethod
    - AuditEventType, RollbackTrigger, ModeChangeStatus

Persisted entities:
    - CommunityMigrationState: The per-community aggregate (one per community)
    - IncumbentProfile: What the profiler knows about the incumbent
    - ShadowMemberRecord: Per-member shadow comparison
    - Divergence: Append-only disagreement history
    - Prediction: Accuracy self-validation
    - NamespacedGrant: Registry entry for a grant tandem owns
    - AccessSnapshot: Namespaced access counts after each parallel sync
    - HealthCheckRecord: Result of one incumbent health check
    - AuditEntry: Append-only operator-visible history

Results:
    - ReadinessCheck / ReadinessReport
    - ShadowSyncResult, DivergenceSummary, PredictionValidation
    - GrantSetupResult, GrantSyncResult
    - ModeChangeResult, RollbackResult, HealthReport
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class CoexistenceMode(Enum):
    """
    Authority modes for a managed community.

    State machine:
        SHADOW -> PARALLEL -> PRIMARY -> EXCLUSIVE
           |                               ^
           +--------- direct takeover -----+

    Rollback moves one step back (PRIMARY -> PARALLEL, PARALLEL -> SHADOW)
    and is impossible once EXCLUSIVE is reached.

    Attributes:
        SHADOW: Observe only; the new system computes but never acts.
        PARALLEL: Namespaced grants mirror the new system next to the incumbent.
        PRIMARY: The new system is authoritative; incumbent kept as live backup.
        EXCLUSIVE: The incumbent is retired. Terminal.
    """

    SHADOW = "shadow"
    PARALLEL = "parallel"
    PRIMARY = "primary"
    EXCLUSIVE = "exclusive"

    @property
    def is_terminal(self) -> bool:
        """EXCLUSIVE has no outgoing transitions, rollback included."""
        return self == CoexistenceMode.EXCLUSIVE

    @property
    def allows_namespaced_grants(self) -> bool:
        """True in modes where the parallel grant manager may mutate."""
        return self in (CoexistenceMode.PARALLEL, CoexistenceMode.PRIMARY)

    @property
    def rollback_target(self) -> CoexistenceMode | None:
        """The mode a rollback returns to, or None when rollback is impossible."""
        return ROLLBACK_TARGETS.get(self)

    def can_escalate_to(
        self,
        target: CoexistenceMode,
        *,
        direct_takeover: bool = False,
    ) -> bool:
        """
        Check if a forward transition to target is valid.

        Args:
            target: The mode to escalate to.
            direct_takeover: Operator override allowing SHADOW -> EXCLUSIVE.

        Returns:
            True if the transition is allowed.
        """
        if direct_takeover and self == CoexistenceMode.SHADOW:
            return target == CoexistenceMode.EXCLUSIVE
        return target in VALID_TRANSITIONS.get(self, set())


VALID_TRANSITIONS: dict[CoexistenceMode, set[CoexistenceMode]] = {
    CoexistenceMode.SHADOW: {CoexistenceMode.PARALLEL},
    CoexistenceMode.PARALLEL: {CoexistenceMode.PRIMARY},
    CoexistenceMode.PRIMARY: {CoexistenceMode.EXCLUSIVE},
    CoexistenceMode.EXCLUSIVE: set(),  # Terminal
}

ROLLBACK_TARGETS: dict[CoexistenceMode, CoexistenceMode] = {
    CoexistenceMode.PARALLEL: CoexistenceMode.SHADOW,
    CoexistenceMode.PRIMARY: CoexistenceMode.PARALLEL,
}


def is_valid_mode_change(old: CoexistenceMode, new: CoexistenceMode) -> bool:
    """True if persisting old -> new is allowed (forward, takeover or rollback)."""
    if old == new:
        return True
    if old.can_escalate_to(new) or old.can_escalate_to(new, direct_takeover=True):
        return True
    return ROLLBACK_TARGETS.get(old) == new


class MigrationStrategy(Enum):
    """
    Strategy chosen when a community leaves shadow mode.

    Attributes:
        INSTANT: Enable parallel grants for every member at once.
        GRADUAL: Enable parallel grants in batches over a rollout window.
        PARALLEL_FOREVER: Stay in parallel mode indefinitely.
        NEW_SYSTEM_PRIMARY: Go through parallel straight to primary.
    """

    INSTANT = "instant"
    GRADUAL = "gradual"
    PARALLEL_FOREVER = "parallel_forever"
    NEW_SYSTEM_PRIMARY = "new_system_primary"


class HealthStatus(Enum):
    """Incumbent health as reported by the health monitor."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class DivergenceStatus(Enum):
    """
    Outcome of comparing the incumbent with the new system for one member.

    UNKNOWN is used exactly when the member has no linked identity.
    """

    MATCH = "match"
    NEW_SYSTEM_HIGHER = "new_system_higher"
    NEW_SYSTEM_LOWER = "new_system_lower"
    UNKNOWN = "unknown"

    @property
    def is_divergent(self) -> bool:
        return self in (DivergenceStatus.NEW_SYSTEM_HIGHER, DivergenceStatus.NEW_SYSTEM_LOWER)

    @property
    def is_known(self) -> bool:
        return self != DivergenceStatus.UNKNOWN


class DivergenceResolution(Enum):
    """How a recorded divergence was closed. Advisory only."""

    INCUMBENT_MATCHED = "incumbent_matched"
    NEW_SYSTEM_WRONG = "new_system_wrong"
    STILL_DIVERGENT = "still_divergent"


class VerificationTier(Enum):
    """Feature-access tier of a member, from least to most verified."""

    INCUMBENT_ONLY = "incumbent_only"
    LINKED_BASIC = "linked_basic"
    FULL = "full"


class PredictionType(Enum):
    """What the new system predicts the incumbent will do for a divergent member."""

    INCUMBENT_WILL_GRANT = "incumbent_will_grant"
    INCUMBENT_WILL_REVOKE = "incumbent_will_revoke"


class PredictionOutcome(Enum):
    PENDING = "pending"
    CORRECT = "correct"
    INCORRECT = "incorrect"


class DetectionMethod(Enum):
    """Which heuristic tier identified the incumbent."""

    AUTOMATION_ID = "automation_id"
    AUTOMATION_NAME = "automation_name"
    CHANNEL_PATTERN = "channel_pattern"
    GRANT_PATTERN = "grant_pattern"
    GENERIC_AUTOMATION = "generic_automation"


class AuditEventType(Enum):
    """
    Types of audit events recorded for a community.

    These values correspond to the CHECK constraint on the
    ``coexistence_audit_log`` table.
    """

    INCUMBENT_DETECTED = "incumbent_detected"
    MODE_CHANGED = "mode_changed"
    MODE_CHANGE_REJECTED = "mode_change_rejected"
    ROLLBACK = "rollback"
    AUTO_ROLLBACK = "auto_rollback"
    ROLLBACK_ESCALATED = "rollback_escalated"
    EMERGENCY_BACKUP = "emergency_backup"
    TAKEOVER_CONFIRMATION = "takeover_confirmation"
    HEALTH_ALERT = "health_alert"


class RollbackTrigger(Enum):
    """Why a rollback was performed."""

    MANUAL = "manual"
    AUTO_ACCESS_LOSS = "auto_access_loss"
    AUTO_ERROR_RATE = "auto_error_rate"

    @property
    def is_automatic(self) -> bool:
        return self != RollbackTrigger.MANUAL


class ModeChangeStatus(Enum):
    """Typed outcome of a mode change request."""

    SUCCESS = "success"
    REJECTED_NOT_READY = "rejected_not_ready"
    REJECTED_IRREVERSIBLE = "rejected_irreversible"
    REJECTED_INVALID_TRANSITION = "rejected_invalid_transition"
    REJECTED_CONFIRMATION = "rejected_confirmation"


# =============================================================================
# Persisted entities
# =============================================================================


@dataclass
class CommunityMigrationState:
    """
    The per-community coexistence aggregate.

    Mutable because the migration engine updates it in place while holding
    the community lock. Nothing but the engine (and the shadow ledger's
    accuracy write) changes it.

    Attributes:
        community_id: Platform community id.
        community_name: Display name, echoed back to confirm a takeover.
        mode: Current authority mode.
        strategy: Strategy chosen when leaving shadow mode.
        shadow_started_at: When shadow mode was first entered.
        parallel_enabled_at: When parallel mode was first entered.
        primary_enabled_at: When primary mode was first entered.
        exclusive_enabled_at: When exclusive mode was entered.
        rollback_count: Number of rollbacks performed.
        last_rollback_at: When the last rollback happened.
        last_rollback_reason: Why the last rollback happened.
        accuracy_percent: Accuracy of the last complete shadow pass.
        last_shadow_sync_at: When the last complete shadow pass finished.
        readiness_check_passed: Cached result of the last readiness gate.
        gradual_batch_size: Members per rollout batch (GRADUAL only).
        gradual_duration_days: Rollout window in days (GRADUAL only).
        parallel_grants_active: Whether namespaced grant mutation is enabled.
        gradual_started_at: When the current GRADUAL rollout began; reset every
            time parallel grants are switched on again.
    """

    community_id: str
    community_name: str = ""
    mode: CoexistenceMode = CoexistenceMode.SHADOW
    strategy: MigrationStrategy | None = None
    shadow_started_at: datetime | None = None
    parallel_enabled_at: datetime | None = None
    primary_enabled_at: datetime | None = None
    exclusive_enabled_at: datetime | None = None
    rollback_count: int = 0
    last_rollback_at: datetime | None = None
    last_rollback_reason: str | None = None
    accuracy_percent: float = 0.0
    last_shadow_sync_at: datetime | None = None
    readiness_check_passed: bool = False
    gradual_batch_size: int | None = None
    gradual_duration_days: int | None = None
    parallel_grants_active: bool = False
    gradual_started_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def mode_entered_at(self, mode: CoexistenceMode) -> datetime | None:
        """When the given mode was first entered, if ever."""
        return {
            CoexistenceMode.SHADOW: self.shadow_started_at,
            CoexistenceMode.PARALLEL: self.parallel_enabled_at,
            CoexistenceMode.PRIMARY: self.primary_enabled_at,
            CoexistenceMode.EXCLUSIVE: self.exclusive_enabled_at,
        }[mode]

    def record_mode_entry(self, mode: CoexistenceMode, at: datetime) -> None:
        """Stamp the first-entry timestamp for mode; later entries keep the original."""
        if mode == CoexistenceMode.SHADOW and self.shadow_started_at is None:
            self.shadow_started_at = at
        elif mode == CoexistenceMode.PARALLEL and self.parallel_enabled_at is None:
            self.parallel_enabled_at = at
        elif mode == CoexistenceMode.PRIMARY and self.primary_enabled_at is None:
            self.primary_enabled_at = at
        elif mode == CoexistenceMode.EXCLUSIVE and self.exclusive_enabled_at is None:
            self.exclusive_enabled_at = at

    def shadow_duration(self, now: datetime) -> timedelta:
        if self.shadow_started_at is None:
            return timedelta(0)
        return now - self.shadow_started_at


@dataclass(frozen=True)
class SuspectGrant:
    """A grant the profiler believes may be controlled by the incumbent."""

    grant_id: str
    name: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {"grant_id": self.grant_id, "name": self.name, "confidence": self.confidence}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SuspectGrant:
        return cls(
            grant_id=str(data["grant_id"]),
            name=data["name"],
            confidence=float(data["confidence"]),
        )


@dataclass
class IncumbentProfile:
    """
    Detected incumbent for a community.

    Attributes:
        community_id: Platform community id.
        provider: Catalog provider id, or "unknown" for generic detection.
        confidence: Detection confidence, 0 to 1.
        detection_method: Heuristic tier that matched.
        automation_identity: Member id of the incumbent bot, if found.
        monitored_channels: Channel ids that look like verification flows.
        suspect_grants: Grant id to SuspectGrant.
        catalog_version: Version of the heuristic catalog used.
        health_status: Last health monitor verdict.
        last_health_check_at: When the health monitor last ran.
        last_alert_at: When the last operator alert was sent (throttle).
        grant_fingerprint: Digest of observed access-grant holdings.
        last_grant_change_at: When the fingerprint last changed.
    """

    community_id: str
    provider: str
    confidence: float
    detection_method: DetectionMethod
    automation_identity: str | None = None
    monitored_channels: tuple[str, ...] = ()
    suspect_grants: dict[str, SuspectGrant] = field(default_factory=dict)
    catalog_version: str = ""
    health_status: HealthStatus = HealthStatus.UNKNOWN
    last_health_check_at: datetime | None = None
    last_alert_at: datetime | None = None
    grant_fingerprint: str | None = None
    last_grant_change_at: datetime | None = None
    detected_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be between 0 and 1, got {self.confidence}")

    def access_grant_ids(self, threshold: float) -> frozenset[str]:
        """Ids of suspect grants at or above the access-controlling threshold."""
        return frozenset(
            grant_id
            for grant_id, grant in self.suspect_grants.items()
            if grant.confidence >= threshold
        )


@dataclass(frozen=True)
class ShadowMemberRecord:
    """
    The shadow comparison for one member.

    Raises:
        ValueError: If divergence_status is UNKNOWN while a linked identity
            exists, or known while it does not.
    """

    community_id: str
    member_id: str
    incumbent_grants: frozenset[str]
    linked_identity: str | None
    computed_eligible: bool
    computed_tier: str | None
    computed_score: float | None
    would_grant: frozenset[str]
    would_revoke: frozenset[str]
    divergence_status: DivergenceStatus
    verification_tier: VerificationTier
    updated_at: datetime

    def __post_init__(self) -> None:
        unknown = self.divergence_status == DivergenceStatus.UNKNOWN
        if unknown != (self.linked_identity is None):
            raise ValueError(
                "divergence_status must be UNKNOWN exactly when linked_identity is absent "
                f"(member={self.member_id}, status={self.divergence_status.value})"
            )

    @property
    def has_incumbent_access(self) -> bool:
        return bool(self.incumbent_grants)

    def comparison_key(self) -> tuple[Any, ...]:
        """Everything that matters when deciding whether the record changed."""
        return (
            self.incumbent_grants,
            self.linked_identity,
            self.computed_eligible,
            self.computed_tier,
            self.divergence_status,
        )


@dataclass(frozen=True)
class Divergence:
    """
    One recorded disagreement between the incumbent and the new system.

    Append-only: resolution fields are filled in once and the row is kept
    forever as history.
    """

    id: int | None
    community_id: str
    member_id: str
    divergence_type: DivergenceStatus
    incumbent_state: dict[str, Any]
    new_system_state: dict[str, Any]
    detected_at: datetime
    resolved_at: datetime | None = None
    resolution: DivergenceResolution | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "community_id": self.community_id,
            "member_id": self.member_id,
            "divergence_type": self.divergence_type.value,
            "incumbent_state": self.incumbent_state,
            "new_system_state": self.new_system_state,
            "detected_at": self.detected_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution": self.resolution.value if self.resolution else None,
        }


@dataclass(frozen=True)
class Prediction:
    """A prediction that the incumbent will converge on the new system's answer."""

    id: int | None
    community_id: str
    member_id: str
    prediction_type: PredictionType
    predicted_at: datetime
    details: dict[str, Any] = field(default_factory=dict)
    outcome: PredictionOutcome = PredictionOutcome.PENDING
    outcome_at: datetime | None = None


@dataclass(frozen=True)
class NamespacedGrant:
    """Registry entry for a grant tandem created and therefore owns."""

    community_id: str
    grant_id: str
    tier: str
    name: str
    created_at: datetime


@dataclass(frozen=True)
class AccessSnapshot:
    """
    Namespaced access counts recorded after a parallel grant sync.

    ``members_unevaluated`` counts members whose current grants could not
    be read; they are absent from ``members_with_access``.
    """

    community_id: str
    taken_at: datetime
    members_with_access: int
    operations: int
    failed_operations: int
    members_unevaluated: int = 0


@dataclass(frozen=True)
class HealthIssue:
    """A single finding of the health monitor."""

    check: str
    severity: HealthStatus
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "check": self.check,
            "severity": self.severity.value,
            "message": self.message,
            "details": self.details,
        }


@dataclass(frozen=True)
class HealthCheckRecord:
    """Persisted result of one health check."""

    community_id: str
    status: HealthStatus
    issues: tuple[HealthIssue, ...]
    checked_at: datetime
    alert_sent: bool = False


@dataclass(frozen=True)
class AuditEntry:
    """
    Audit log entry for a community.

    Attributes:
        id: Entry identifier (None until persisted).
        community_id: Community the entry belongs to.
        event_type: Type of audit event.
        old_mode: Mode before the event (for mode changes).
        new_mode: Mode after the event (for mode changes).
        details: Additional event details.
        operator: Who or what triggered the event.
        occurred_at: When the event occurred.
    """

    id: int | None
    community_id: str
    event_type: AuditEventType
    old_mode: CoexistenceMode | None
    new_mode: CoexistenceMode | None
    details: dict[str, Any] | None
    operator: str | None
    occurred_at: datetime

    @classmethod
    def mode_change(
        cls,
        community_id: str,
        old_mode: CoexistenceMode,
        new_mode: CoexistenceMode,
        occurred_at: datetime,
        operator: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return cls(
            id=None,
            community_id=community_id,
            event_type=AuditEventType.MODE_CHANGED,
            old_mode=old_mode,
            new_mode=new_mode,
            details=details,
            operator=operator,
            occurred_at=occurred_at,
        )

    @classmethod
    def rollback(
        cls,
        community_id: str,
        old_mode: CoexistenceMode,
        new_mode: CoexistenceMode,
        occurred_at: datetime,
        reason: str,
        trigger: RollbackTrigger,
        operator: str | None = None,
        members_affected: int = 0,
    ) -> AuditEntry:
        return cls(
            id=None,
            community_id=community_id,
            event_type=(
                AuditEventType.AUTO_ROLLBACK if trigger.is_automatic else AuditEventType.ROLLBACK
            ),
            old_mode=old_mode,
            new_mode=new_mode,
            details={
                "reason": reason,
                "trigger": trigger.value,
                "members_affected": members_affected,
            },
            operator=operator,
            occurred_at=occurred_at,
        )

    @classmethod
    def emergency_backup(
        cls,
        community_id: str,
        old_mode: CoexistenceMode,
        new_mode: CoexistenceMode,
        occurred_at: datetime,
        operator: str | None,
        confirmed: bool,
        accepted: bool,
    ) -> AuditEntry:
        return cls(
            id=None,
            community_id=community_id,
            event_type=AuditEventType.EMERGENCY_BACKUP,
            old_mode=old_mode,
            new_mode=new_mode,
            details={"confirmed": confirmed, "accepted": accepted},
            operator=operator,
            occurred_at=occurred_at,
        )

    @classmethod
    def event(
        cls,
        community_id: str,
        event_type: AuditEventType,
        occurred_at: datetime,
        operator: str | None = None,
        details: dict[str, Any] | None = None,
        mode: CoexistenceMode | None = None,
    ) -> AuditEntry:
        """Entry for events that do not change the mode."""
        return cls(
            id=None,
            community_id=community_id,
            event_type=event_type,
            old_mode=mode,
            new_mode=mode,
            details=details,
            operator=operator,
            occurred_at=occurred_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "community_id": self.community_id,
            "event_type": self.event_type.value,
            "old_mode": self.old_mode.value if self.old_mode else None,
            "new_mode": self.new_mode.value if self.new_mode else None,
            "details": self.details,
            "operator": self.operator,
            "occurred_at": self.occurred_at.isoformat(),
        }


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class ReadinessCheck:
    """One criterion of the readiness gate with its current and required values."""

    name: str
    passed: bool
    current: float
    required: float
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "current": self.current,
            "required": self.required,
            "message": self.message,
        }


@dataclass(frozen=True)
class ReadinessReport:
    """
    Result of evaluating the readiness gate for a target mode.

    ``ready`` is the AND of all checks; ``checks`` always carries every
    criterion so operators can see what is missing.
    """

    community_id: str
    target_mode: CoexistenceMode
    ready: bool
    checks: tuple[ReadinessCheck, ...]
    evaluated_at: datetime
    prediction_accuracy: float | None = None

    @property
    def failed_checks(self) -> list[ReadinessCheck]:
        return [check for check in self.checks if not check.passed]

    @property
    def failed_check_names(self) -> list[str]:
        return [check.name for check in self.failed_checks]

    def to_dict(self) -> dict[str, Any]:
        return {
            "community_id": self.community_id,
            "target_mode": self.target_mode.value,
            "ready": self.ready,
            "checks": [check.to_dict() for check in self.checks],
            "evaluated_at": self.evaluated_at.isoformat(),
            "prediction_accuracy": self.prediction_accuracy,
        }


@dataclass(frozen=True)
class ShadowSyncResult:
    """Outcome of one complete shadow pass."""

    community_id: str
    processed: int
    matches: int
    divergences: int
    unknown: int
    new_divergences: int
    resolved_divergences: int
    accuracy: float
    predictions_validated: int
    duration_ms: float
    completed_at: datetime


@dataclass(frozen=True)
class DivergenceSummary:
    """Counts of current member records per divergence status."""

    community_id: str
    total: int
    matches: int
    higher: int
    lower: int
    unknown: int

    @property
    def accuracy(self) -> float:
        known = self.matches + self.higher + self.lower
        return (self.matches / known) * 100.0 if known else 0.0


@dataclass(frozen=True)
class PredictionValidation:
    """Outcome of resolving pending predictions."""

    community_id: str
    validated: int
    correct: int
    incorrect: int
    still_pending: int

    @property
    def accuracy(self) -> float | None:
        total = self.correct + self.incorrect
        return (self.correct / total) * 100.0 if total else None


@dataclass(frozen=True)
class GrantSetupResult:
    """Outcome of creating the namespaced grants for a community."""

    community_id: str
    created: tuple[str, ...]
    existing: tuple[str, ...]
    conflicts: tuple[str, ...]


@dataclass(frozen=True)
class GrantSyncResult:
    """Outcome of one namespaced grant sync."""

    community_id: str
    processed: int
    added: int
    removed: int
    failed: int
    skipped: int
    members_with_access: int


@dataclass(frozen=True)
class ModeChangeResult:
    """
    Typed outcome of a mode change request.

    Business-rule rejections are reported here, never raised.
    """

    community_id: str
    status: ModeChangeStatus
    previous_mode: CoexistenceMode
    current_mode: CoexistenceMode
    strategy: MigrationStrategy | None = None
    readiness: ReadinessReport | None = None
    message: str = ""
    steps: tuple[CoexistenceMode, ...] = ()

    @property
    def success(self) -> bool:
        return self.status == ModeChangeStatus.SUCCESS


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of a rollback attempt."""

    community_id: str
    success: bool
    previous_mode: CoexistenceMode
    current_mode: CoexistenceMode
    reason: str
    trigger: RollbackTrigger
    rollback_count: int
    members_affected: int = 0
    message: str = ""


@dataclass(frozen=True)
class HealthReport:
    """Outcome of one health check."""

    community_id: str
    status: HealthStatus
    issues: tuple[HealthIssue, ...]
    checked_at: datetime
    alert_sent: bool = False
    dry_run: bool = False

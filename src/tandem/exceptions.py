"""
Exceptions for the tandem coexistence engine.

Every error raised by tandem derives from ``CoexistenceError`` and carries
an ``ErrorClassification`` so that jobs, the control service and operators
can decide uniformly whether to retry, reject or escalate.

Exception Hierarchy:
    CoexistenceError (base)
    +-- CommunityNotFoundError
    +-- InvariantViolationError
    |   +-- ShadowModeViolationError
    |   +-- NamespaceViolationError
    |   +-- InvalidModeError
    |   +-- InvalidModeTransitionError
    +-- IrreversibleStateError
    +-- RollbackPersistenceError
    +-- TransientInfrastructureError
    |   +-- PlatformUnavailableError
    |   +-- EligibilityUnavailableError
    |   +-- StorageUnavailableError
    |   +-- LockAcquisitionError
    |   +-- ShadowSyncIncompleteError
    |   +-- JobTimeoutError
    +-- JobFailedError

Readiness rejections are not exceptions: they are returned to the caller
as typed results (see ``tandem.models.ModeChangeResult``).

Error Classification:
    - ErrorSeverity: CRITICAL, ERROR, WARNING, INFO levels
    - ErrorRecoverability: RECOVERABLE, TRANSIENT, FATAL categories
    - ErrorClassification: metadata attached to each error type
    - ErrorHandler: automatic retry for transient errors
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from tandem.models import CoexistenceMode

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorSeverity(Enum):
    """
    Severity level of coexistence errors.

    Used for alerting, logging, and operator notification decisions.
    """

    CRITICAL = "critical"
    """Safety invariant broken or operator action required immediately."""

    ERROR = "error"
    """Significant failure that may require operator intervention."""

    WARNING = "warning"
    """Issue that should be monitored but may self-resolve."""

    INFO = "info"
    """Informational condition, not a failure."""

    @property
    def should_alert(self) -> bool:
        """True for CRITICAL and ERROR levels."""
        return self in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR)

    @property
    def log_level(self) -> int:
        """The corresponding Python logging level."""
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for coexistence errors.

    Attributes:
        RECOVERABLE: Needs operator action, then the operation can be retried.
        TRANSIENT: Temporary failure; retried automatically with backoff.
        FATAL: Contract or irreversibility violation; never retried.
    """

    RECOVERABLE = "recoverable"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def should_retry(self) -> bool:
        """True only for TRANSIENT errors."""
        return self == ErrorRecoverability.TRANSIENT


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for automatic error retry.

    Implements exponential backoff with jitter for transient errors.

    Attributes:
        max_attempts: Maximum number of attempts (including the first).
        base_delay_ms: Base delay between retries in milliseconds.
        max_delay_ms: Maximum delay between retries in milliseconds.
        exponential_base: Base for exponential backoff.
        jitter_factor: Random jitter factor (0.0 to 1.0).

    Example:
        >>> config = RetryConfig(max_attempts=5, base_delay_ms=100)
        >>> config.get_delay_ms(attempt=3)
        800.0  # (100 * 2^3, plus up to 10% jitter)
    """

    max_attempts: int = 3
    base_delay_ms: float = 100.0
    max_delay_ms: float = 30000.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be between 0.0 and 1.0, got {self.jitter_factor}")

    def get_delay_ms(self, attempt: int) -> float:
        """
        Calculate the delay before the next attempt.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in milliseconds, capped at max_delay_ms.
        """
        delay = self.base_delay_ms * (self.exponential_base**attempt)
        if self.jitter_factor > 0:
            delay += delay * self.jitter_factor * random.random()  # nosec B311 - retry jitter
        return min(delay, self.max_delay_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "exponential_base": self.exponential_base,
            "jitter_factor": self.jitter_factor,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryConfig:
        return cls(
            max_attempts=data.get("max_attempts", 3),
            base_delay_ms=data.get("base_delay_ms", 100.0),
            max_delay_ms=data.get("max_delay_ms", 30000.0),
            exponential_base=data.get("exponential_base", 2.0),
            jitter_factor=data.get("jitter_factor", 0.1),
        )


# Default retry configurations for different error categories
TRANSIENT_RETRY_CONFIG = RetryConfig(
    max_attempts=5,
    base_delay_ms=100.0,
    max_delay_ms=30000.0,
)

PLATFORM_RETRY_CONFIG = RetryConfig(
    max_attempts=4,
    base_delay_ms=500.0,
    max_delay_ms=60000.0,
    jitter_factor=0.2,
)

LOCK_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay_ms=1000.0,
    max_delay_ms=10000.0,
)


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata describing how an error should be handled.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
        retry_config: Configuration for automatic retry (if applicable).
        metrics_labels: Labels for metrics instrumentation.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str
    retry_config: RetryConfig | None = None
    metrics_labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }
        if self.retry_config:
            result["retry_config"] = self.retry_config.to_dict()
        if self.metrics_labels:
            result["metrics_labels"] = self.metrics_labels
        return result


class CoexistenceError(Exception):
    """
    Base exception for all tandem errors.

    Subclasses override ``_default_classification``; callers read it via
    ``classification``, ``severity``, ``recoverability`` and ``error_code``.

    Attributes:
        message: Human-readable error description.
        community_id: The community involved, if applicable.
        suggested_action: Optional override of the classification guidance.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="COEXISTENCE_ERROR",
        category="general",
        suggested_action="Review logs for the community and contact support if issue persists",
    )

    def __init__(
        self,
        message: str,
        *,
        community_id: str | None = None,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.community_id = community_id
        self.suggested_action = suggested_action or self._default_classification.suggested_action
        super().__init__(message)

    def __str__(self) -> str:
        if self.community_id:
            return f"{self.message} community_id={self.community_id}"
        return self.message

    @property
    def classification(self) -> ErrorClassification:
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def recoverability(self) -> ErrorRecoverability:
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    @property
    def retry_config(self) -> RetryConfig | None:
        return self.classification.retry_config

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for API responses and structured logs."""
        return {
            "message": self.message,
            "community_id": self.community_id,
            "error_code": self.error_code,
            "suggested_action": self.suggested_action,
            "classification": self.classification.to_dict(),
        }


class CommunityNotFoundError(CoexistenceError):
    """Raised when a community has no migration state (profiler never ran)."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="COMMUNITY_NOT_FOUND",
        category="lookup",
        suggested_action="Run incumbent detection for the community first",
    )

    def __init__(self, community_id: str) -> None:
        super().__init__(f"Community is not managed: {community_id}", community_id=community_id)


# =============================================================================
# Invariant violations
# =============================================================================


class InvariantViolationError(CoexistenceError):
    """
    Base class for programming-contract violations.

    These are never retried and must never be swallowed: they signal that
    a component was invoked in a way that could cause unauthorized grant
    changes.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVARIANT_VIOLATION",
        category="invariant",
        suggested_action="Fix the calling code; this indicates a bug",
    )


class ShadowModeViolationError(InvariantViolationError):
    """
    Raised when the shadow ledger is invoked outside SHADOW mode.

    Attributes:
        current_mode: The mode the community is actually in.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="SHADOW_MODE_VIOLATION",
        category="invariant",
        suggested_action="Only schedule shadow syncs for communities in shadow mode",
    )

    def __init__(self, community_id: str, current_mode: CoexistenceMode) -> None:
        self.current_mode = current_mode
        super().__init__(
            f"Shadow sync refused: community is in {current_mode.value} mode",
            community_id=community_id,
        )


class NamespaceViolationError(InvariantViolationError):
    """
    Raised when the parallel grant manager would touch a grant it does not own.

    Attributes:
        grant_id: The offending grant id.
        grant_name: The offending grant name, if known.
        operation: The mutation that was refused ("add", "remove").
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="NAMESPACE_VIOLATION",
        category="invariant",
        suggested_action="Investigate grant registry; never mutate incumbent-owned grants",
    )

    def __init__(
        self,
        community_id: str,
        grant_id: str,
        operation: str,
        grant_name: str | None = None,
    ) -> None:
        self.grant_id = grant_id
        self.grant_name = grant_name
        self.operation = operation
        super().__init__(
            f"Refusing to {operation} grant outside the reserved namespace: "
            f"{grant_name or grant_id}",
            community_id=community_id,
        )


class InvalidModeError(InvariantViolationError):
    """
    Raised when an operation is called in a mode that does not allow it.

    Attributes:
        current_mode: The community's mode.
        allowed_modes: Modes in which the operation is permitted.
        operation: The attempted operation.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_MODE",
        category="state",
        suggested_action="Check the community mode before invoking this operation",
    )

    def __init__(
        self,
        community_id: str,
        current_mode: CoexistenceMode,
        allowed_modes: list[CoexistenceMode],
        operation: str,
    ) -> None:
        self.current_mode = current_mode
        self.allowed_modes = allowed_modes
        self.operation = operation
        allowed = ", ".join(m.value for m in allowed_modes)
        super().__init__(
            f"{operation} not allowed in {current_mode.value} mode (allowed: {allowed})",
            community_id=community_id,
        )


class InvalidModeTransitionError(InvariantViolationError):
    """Raised when a repository is asked to persist a transition the state machine forbids."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_MODE_TRANSITION",
        category="state",
        suggested_action="Mode changes must go through the migration engine",
    )

    def __init__(
        self,
        community_id: str,
        current_mode: CoexistenceMode,
        target_mode: CoexistenceMode,
    ) -> None:
        self.current_mode = current_mode
        self.target_mode = target_mode
        super().__init__(
            f"Invalid mode transition: {current_mode.value} -> {target_mode.value}",
            community_id=community_id,
        )


# =============================================================================
# Irreversibility and rollback
# =============================================================================


class IrreversibleStateError(CoexistenceError):
    """
    Raised on any regressive call against a community in EXCLUSIVE mode.

    Exclusive mode has no rollback target; the error is hard and never
    retried.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="IRREVERSIBLE_STATE",
        category="state",
        suggested_action="Exclusive mode cannot be rolled back; restore the incumbent manually",
    )

    def __init__(self, community_id: str, operation: str = "rollback") -> None:
        self.operation = operation
        super().__init__(
            f"Cannot {operation}: community is in exclusive mode",
            community_id=community_id,
        )


class RollbackPersistenceError(CoexistenceError):
    """
    Raised when an automatic rollback could not be persisted.

    The rollback watcher escalates this to a critical operator alert
    instead of assuming the rollback took effect.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="ROLLBACK_NOT_PERSISTED",
        category="rollback",
        suggested_action="Verify storage health and perform the rollback manually",
    )

    def __init__(self, community_id: str, reason: str, cause: Exception | None = None) -> None:
        self.reason = reason
        self.cause = cause
        super().__init__(
            f"Automatic rollback could not be persisted ({reason})",
            community_id=community_id,
        )


# =============================================================================
# Transient infrastructure errors
# =============================================================================


class TransientInfrastructureError(CoexistenceError):
    """
    Base class for platform, storage and network failures.

    Retried with backoff at the job level; never affects the mode.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="TRANSIENT_INFRASTRUCTURE",
        category="connectivity",
        suggested_action="Automatic retry in progress; check connectivity if it persists",
        retry_config=TRANSIENT_RETRY_CONFIG,
    )


class PlatformUnavailableError(TransientInfrastructureError):
    """Raised by platform clients on rate limits, timeouts or 5xx responses."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="PLATFORM_UNAVAILABLE",
        category="platform",
        suggested_action="Platform API unavailable or rate limited; retrying with backoff",
        retry_config=PLATFORM_RETRY_CONFIG,
    )


class EligibilityUnavailableError(TransientInfrastructureError):
    """Raised when the eligibility provider or identity resolver cannot answer."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="ELIGIBILITY_UNAVAILABLE",
        category="eligibility",
        suggested_action="Eligibility provider unavailable; retrying with backoff",
        retry_config=TRANSIENT_RETRY_CONFIG,
    )


class StorageUnavailableError(TransientInfrastructureError):
    """Raised when persisted state cannot be read or written."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="STORAGE_UNAVAILABLE",
        category="storage",
        suggested_action="Check database connectivity",
        retry_config=TRANSIENT_RETRY_CONFIG,
    )


class LockAcquisitionError(TransientInfrastructureError):
    """
    Raised when the per-community lock cannot be acquired.

    Attributes:
        key: The lock key that could not be acquired.
        reason: Why acquisition failed.
        timeout: The timeout value if timeout was the cause.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="LOCK_NOT_ACQUIRED",
        category="concurrency",
        suggested_action="Another operation holds the community lock; retry later",
        retry_config=LOCK_RETRY_CONFIG,
    )

    def __init__(self, key: str, reason: str, timeout: float | None = None) -> None:
        self.key = key
        self.reason = reason
        self.timeout = timeout
        super().__init__(f"Failed to acquire lock '{key}': {reason}")


class ShadowSyncIncompleteError(TransientInfrastructureError):
    """
    Raised when a shadow pass could not evaluate every member.

    Accuracy is not written for an incomplete pass.

    Attributes:
        failed_members: Ids of members whose evaluation failed.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="SHADOW_SYNC_INCOMPLETE",
        category="shadow",
        suggested_action="The next shadow sync will retry the failed members",
        retry_config=TRANSIENT_RETRY_CONFIG,
    )

    def __init__(self, community_id: str, failed_members: list[str]) -> None:
        self.failed_members = failed_members
        super().__init__(
            f"Shadow sync incomplete: {len(failed_members)} member(s) failed",
            community_id=community_id,
        )


class JobTimeoutError(TransientInfrastructureError):
    """
    Raised when a scheduled job exceeds its wall-clock timeout.

    Not retried within the same run; the next schedule tick retries.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="JOB_TIMEOUT",
        category="jobs",
        suggested_action="Job aborted without committing state; it will run again next tick",
    )

    def __init__(self, community_id: str, job_name: str, timeout_seconds: float) -> None:
        self.job_name = job_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Job '{job_name}' exceeded timeout of {timeout_seconds}s",
            community_id=community_id,
        )


class JobFailedError(CoexistenceError):
    """
    Raised to the scheduler when a job exhausted its retries or hit a fatal error.

    Attributes:
        job_name: Name of the failed job.
        attempts: Number of attempts made.
        cause: The last underlying exception.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="JOB_FAILED",
        category="jobs",
        suggested_action="Inspect the underlying error; the job will run again next tick",
    )

    def __init__(
        self,
        community_id: str,
        job_name: str,
        attempts: int,
        cause: BaseException,
    ) -> None:
        self.job_name = job_name
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Job '{job_name}' failed after {attempts} attempt(s): {cause}",
            community_id=community_id,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["job_name"] = self.job_name
        data["attempts"] = self.attempts
        data["cause"] = repr(self.cause)
        return data


# =============================================================================
# Error handler
# =============================================================================


class ErrorHandler:
    """
    Executes operations with automatic retry for transient errors.

    Only ``CoexistenceError`` instances classified TRANSIENT are retried.
    Everything else propagates immediately, after being logged at the
    error's severity.

    Usage:
        >>> handler = ErrorHandler(alert_callback=notify_ops)
        >>> result = await handler.execute_with_retry(
        ...     lambda: ledger.sync_community(community_id),
        ...     operation_name="shadow_sync",
        ...     community_id=community_id,
        ... )
    """

    def __init__(
        self,
        alert_callback: Callable[[CoexistenceError], None] | None = None,
        metrics_callback: Callable[[CoexistenceError, bool], None] | None = None,
    ) -> None:
        """
        Initialize the error handler.

        Args:
            alert_callback: Invoked for errors whose severity warrants an alert.
            metrics_callback: Invoked with (error, retryable) for every error.
        """
        self.alert_callback = alert_callback
        self.metrics_callback = metrics_callback

    async def execute_with_retry(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        operation_name: str,
        *,
        community_id: str | None = None,
        retry_config: RetryConfig | None = None,
        on_retry: Callable[[int, Exception, float], None] | None = None,
    ) -> T:
        """
        Execute an operation, retrying transient errors with backoff.

        Args:
            operation: Async callable to execute.
            operation_name: Name for logging and metrics.
            community_id: Community for log context.
            retry_config: Override retry configuration.
            on_retry: Callback invoked on each retry (attempt, exception, delay_ms).

        Returns:
            The result of the operation.

        Raises:
            CoexistenceError: If retries are exhausted or the error is not transient.
        """
        attempt = 0
        while True:
            try:
                result = await operation()
            except CoexistenceError as e:
                self._handle_error(e, operation_name, community_id)

                if not e.recoverability.should_retry:
                    raise

                config = retry_config or e.retry_config or TRANSIENT_RETRY_CONFIG
                if attempt + 1 >= config.max_attempts:
                    logger.error(
                        "Exhausted %d attempts for '%s' (community=%s): %s",
                        config.max_attempts,
                        operation_name,
                        community_id,
                        e.message,
                    )
                    raise

                delay_ms = config.get_delay_ms(attempt)
                logger.warning(
                    "Retryable error in '%s' (attempt %d/%d, community=%s): %s. "
                    "Retrying in %.1fs",
                    operation_name,
                    attempt + 1,
                    config.max_attempts,
                    community_id,
                    e.message,
                    delay_ms / 1000.0,
                )
                if on_retry:
                    on_retry(attempt, e, delay_ms)

                await asyncio.sleep(delay_ms / 1000.0)
                attempt += 1
            else:
                if attempt > 0:
                    logger.info(
                        "Operation '%s' succeeded after %d retries",
                        operation_name,
                        attempt,
                    )
                return result

    def _handle_error(
        self,
        error: CoexistenceError,
        operation_name: str,
        community_id: str | None,
    ) -> None:
        classification = error.classification
        logger.log(
            classification.severity.log_level,
            "Error in '%s': %s [code=%s, severity=%s, recoverability=%s, community=%s]",
            operation_name,
            error.message,
            classification.error_code,
            classification.severity.value,
            classification.recoverability.value,
            community_id or error.community_id,
        )

        if classification.severity.should_alert and self.alert_callback:
            try:
                self.alert_callback(error)
            except Exception:
                logger.exception("Alert callback failed")

        if self.metrics_callback:
            try:
                self.metrics_callback(error, classification.recoverability.should_retry)
            except Exception:
                logger.exception("Metrics callback failed")


def classify_exception(exc: BaseException) -> ErrorClassification:
    """
    Classify any exception.

    Tandem errors return their own classification; anything else is
    treated as an unexpected fatal error.
    """
    if isinstance(exc, CoexistenceError):
        return exc.classification

    return ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNKNOWN_ERROR",
        category="unknown",
        suggested_action="An unexpected error occurred. Review logs and contact support.",
    )


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "RetryConfig",
    "TRANSIENT_RETRY_CONFIG",
    "PLATFORM_RETRY_CONFIG",
    "LOCK_RETRY_CONFIG",
    "CoexistenceError",
    "CommunityNotFoundError",
    "InvariantViolationError",
    "ShadowModeViolationError",
    "NamespaceViolationError",
    "InvalidModeError",
    "InvalidModeTransitionError",
    "IrreversibleStateError",
    "RollbackPersistenceError",
    "TransientInfrastructureError",
    "PlatformUnavailableError",
    "EligibilityUnavailableError",
    "StorageUnavailableError",
    "LockAcquisitionError",
    "ShadowSyncIncompleteError",
    "JobTimeoutError",
    "JobFailedError",
    "ErrorHandler",
    "classify_exception",
]

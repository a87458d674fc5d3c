"""
Configuration for the tandem coexistence engine.

All configuration objects are frozen dataclasses validated on creation.
``CoexistenceConfig`` bundles the per-component sections and round-trips
through ``to_dict``/``from_dict`` so it can be stored or loaded from any
settings source the host application uses.

Example:
    >>> config = CoexistenceConfig(
    ...     shadow=ShadowSyncConfig(concurrency=20),
    ...     grants=GrantConfig(namespace_prefix="tandem-"),
    ... )
    >>> config.readiness_for(CoexistenceMode.PARALLEL).min_shadow_days
    14
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from tandem.exceptions import RetryConfig
from tandem.models import CoexistenceMode


@dataclass(frozen=True)
class ReadinessThresholds:
    """
    Readiness gate for escalating to one target mode.

    Attributes:
        min_shadow_days: Minimum days since shadow mode started.
        min_accuracy_percent: Minimum shadow accuracy (0 to 100).
        divergence_window_hours: Trailing window in which no unresolved
            divergence may have been detected.
    """

    min_shadow_days: int = 14
    min_accuracy_percent: float = 95.0
    divergence_window_hours: int = 168

    def __post_init__(self) -> None:
        if self.min_shadow_days < 0:
            raise ValueError(f"min_shadow_days must be >= 0, got {self.min_shadow_days}")
        if not 0.0 <= self.min_accuracy_percent <= 100.0:
            raise ValueError(
                f"min_accuracy_percent must be between 0 and 100, got {self.min_accuracy_percent}"
            )
        if self.divergence_window_hours < 1:
            raise ValueError(
                f"divergence_window_hours must be >= 1, got {self.divergence_window_hours}"
            )

    @property
    def divergence_window(self) -> timedelta:
        return timedelta(hours=self.divergence_window_hours)

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_shadow_days": self.min_shadow_days,
            "min_accuracy_percent": self.min_accuracy_percent,
            "divergence_window_hours": self.divergence_window_hours,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReadinessThresholds:
        return cls(**data)


def _default_readiness() -> dict[CoexistenceMode, ReadinessThresholds]:
    return {
        CoexistenceMode.PARALLEL: ReadinessThresholds(),
        CoexistenceMode.PRIMARY: ReadinessThresholds(),
        CoexistenceMode.EXCLUSIVE: ReadinessThresholds(
            min_shadow_days=30,
            min_accuracy_percent=98.0,
            divergence_window_hours=336,
        ),
    }


@dataclass(frozen=True)
class ShadowSyncConfig:
    """
    Shadow ledger behavior.

    Attributes:
        concurrency: Members evaluated at once within one pass.
        member_timeout_seconds: Timeout for one member's collaborator calls.
        member_retry: Retry policy for one member's transient failures.
        prediction_horizon_hours: Pending predictions older than this are
            judged INCORRECT if the incumbent still disagrees.
    """

    concurrency: int = 10
    member_timeout_seconds: float = 10.0
    member_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(max_attempts=3, base_delay_ms=200.0)
    )
    prediction_horizon_hours: int = 72

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.member_timeout_seconds <= 0:
            raise ValueError(
                f"member_timeout_seconds must be > 0, got {self.member_timeout_seconds}"
            )
        if self.prediction_horizon_hours < 1:
            raise ValueError(
                f"prediction_horizon_hours must be >= 1, got {self.prediction_horizon_hours}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "concurrency": self.concurrency,
            "member_timeout_seconds": self.member_timeout_seconds,
            "member_retry": self.member_retry.to_dict(),
            "prediction_horizon_hours": self.prediction_horizon_hours,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShadowSyncConfig:
        data = dict(data)
        if "member_retry" in data:
            data["member_retry"] = RetryConfig.from_dict(data["member_retry"])
        return cls(**data)


@dataclass(frozen=True)
class GrantTier:
    """Maps an eligibility tier to the base name of its namespaced grant."""

    tier: str
    base_name: str

    def to_dict(self) -> dict[str, str]:
        return {"tier": self.tier, "base_name": self.base_name}


DEFAULT_GRANT_TIERS: tuple[GrantTier, ...] = (
    GrantTier(tier="diamond", base_name="diamond"),
    GrantTier(tier="believer", base_name="believer"),
    GrantTier(tier="holder", base_name="holder"),
)


@dataclass(frozen=True)
class GrantConfig:
    """
    Parallel grant manager behavior.

    Attributes:
        namespace_prefix: Reserved prefix of every grant tandem creates.
        tiers: Tier mappings, most senior first.
        access_grant_threshold: Suspect-grant confidence at which an
            incumbent grant is treated as access-controlling.
        default_batch_size: GRADUAL batch size when none is requested.
        default_gradual_days: GRADUAL rollout window when none is requested.
    """

    namespace_prefix: str = "tandem-"
    tiers: tuple[GrantTier, ...] = DEFAULT_GRANT_TIERS
    access_grant_threshold: float = 0.5
    default_batch_size: int = 100
    default_gradual_days: int = 7

    def __post_init__(self) -> None:
        if not self.namespace_prefix:
            raise ValueError("namespace_prefix must not be empty")
        if not self.tiers:
            raise ValueError("at least one grant tier is required")
        if len({t.tier for t in self.tiers}) != len(self.tiers):
            raise ValueError("grant tiers must be unique")
        if not 0.0 <= self.access_grant_threshold <= 1.0:
            raise ValueError(
                f"access_grant_threshold must be between 0 and 1, "
                f"got {self.access_grant_threshold}"
            )
        if self.default_batch_size < 1:
            raise ValueError(f"default_batch_size must be >= 1, got {self.default_batch_size}")
        if self.default_gradual_days < 1:
            raise ValueError(
                f"default_gradual_days must be >= 1, got {self.default_gradual_days}"
            )

    def grant_name(self, tier: GrantTier) -> str:
        return f"{self.namespace_prefix}{tier.base_name}"

    def tier_for(self, tier_name: str | None) -> GrantTier | None:
        if tier_name is None:
            return None
        for tier in self.tiers:
            if tier.tier == tier_name:
                return tier
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "namespace_prefix": self.namespace_prefix,
            "tiers": [t.to_dict() for t in self.tiers],
            "access_grant_threshold": self.access_grant_threshold,
            "default_batch_size": self.default_batch_size,
            "default_gradual_days": self.default_gradual_days,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GrantConfig:
        data = dict(data)
        if "tiers" in data:
            data["tiers"] = tuple(GrantTier(**t) for t in data["tiers"])
        return cls(**data)


@dataclass(frozen=True)
class HealthConfig:
    """
    Incumbent health monitor thresholds.

    Attributes:
        stale_warning_hours: Hours without an observed grant change before WARNING.
        stale_critical_hours: Hours without an observed grant change before CRITICAL.
        alert_throttle_hours: Minimum hours between alerts for one community.
    """

    stale_warning_hours: int = 48
    stale_critical_hours: int = 72
    alert_throttle_hours: int = 4

    def __post_init__(self) -> None:
        if self.stale_warning_hours < 1:
            raise ValueError(f"stale_warning_hours must be >= 1, got {self.stale_warning_hours}")
        if self.stale_critical_hours <= self.stale_warning_hours:
            raise ValueError(
                f"stale_critical_hours ({self.stale_critical_hours}) must be > "
                f"stale_warning_hours ({self.stale_warning_hours})"
            )
        if self.alert_throttle_hours < 0:
            raise ValueError(
                f"alert_throttle_hours must be >= 0, got {self.alert_throttle_hours}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stale_warning_hours": self.stale_warning_hours,
            "stale_critical_hours": self.stale_critical_hours,
            "alert_throttle_hours": self.alert_throttle_hours,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HealthConfig:
        return cls(**data)


@dataclass(frozen=True)
class WatcherConfig:
    """
    Rollback watcher thresholds.

    Attributes:
        access_loss_threshold_percent: Access loss that triggers rollback.
        access_loss_window_minutes: Window for measuring access loss.
        error_rate_threshold_percent: Grant error rate that triggers rollback.
        error_rate_window_minutes: Window for measuring the error rate.
        max_auto_rollbacks: Rollback count after which the watcher stops
            rolling back and asks for manual intervention.
        max_communities_per_run: Upper bound for one ``run_all`` sweep.
    """

    access_loss_threshold_percent: float = 5.0
    access_loss_window_minutes: int = 60
    error_rate_threshold_percent: float = 10.0
    error_rate_window_minutes: int = 15
    max_auto_rollbacks: int = 3
    max_communities_per_run: int = 100

    def __post_init__(self) -> None:
        for name in ("access_loss_threshold_percent", "error_rate_threshold_percent"):
            value = getattr(self, name)
            if not 0.0 < value <= 100.0:
                raise ValueError(f"{name} must be in (0, 100], got {value}")
        for name in ("access_loss_window_minutes", "error_rate_window_minutes"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.max_auto_rollbacks < 1:
            raise ValueError(f"max_auto_rollbacks must be >= 1, got {self.max_auto_rollbacks}")
        if self.max_communities_per_run < 1:
            raise ValueError(
                f"max_communities_per_run must be >= 1, got {self.max_communities_per_run}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_loss_threshold_percent": self.access_loss_threshold_percent,
            "access_loss_window_minutes": self.access_loss_window_minutes,
            "error_rate_threshold_percent": self.error_rate_threshold_percent,
            "error_rate_window_minutes": self.error_rate_window_minutes,
            "max_auto_rollbacks": self.max_auto_rollbacks,
            "max_communities_per_run": self.max_communities_per_run,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WatcherConfig:
        return cls(**data)


@dataclass(frozen=True)
class JobConfig:
    """
    Scheduling and resilience of background jobs.

    Attributes:
        shadow_sync_interval_hours: Cadence of the shadow sync job.
        health_check_interval_hours: Cadence of the health check job.
        watcher_interval_hours: Cadence of the rollback watcher job.
        parallel_sync_interval_hours: Cadence of the namespaced grant sync job.
        timeout_seconds: Hard wall-clock limit for one job run.
        retry: Backoff policy for transient failures within one run.
        lock_timeout_seconds: How long to wait for the community lock.
    """

    shadow_sync_interval_hours: int = 6
    health_check_interval_hours: int = 1
    watcher_interval_hours: int = 1
    parallel_sync_interval_hours: int = 1
    timeout_seconds: float = 600.0
    retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(max_attempts=3, base_delay_ms=1000.0)
    )
    lock_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        for name in (
            "shadow_sync_interval_hours",
            "health_check_interval_hours",
            "watcher_interval_hours",
            "parallel_sync_interval_hours",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")
        if self.lock_timeout_seconds <= 0:
            raise ValueError(
                f"lock_timeout_seconds must be > 0, got {self.lock_timeout_seconds}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "shadow_sync_interval_hours": self.shadow_sync_interval_hours,
            "health_check_interval_hours": self.health_check_interval_hours,
            "watcher_interval_hours": self.watcher_interval_hours,
            "parallel_sync_interval_hours": self.parallel_sync_interval_hours,
            "timeout_seconds": self.timeout_seconds,
            "retry": self.retry.to_dict(),
            "lock_timeout_seconds": self.lock_timeout_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobConfig:
        data = dict(data)
        if "retry" in data:
            data["retry"] = RetryConfig.from_dict(data["retry"])
        return cls(**data)


@dataclass(frozen=True)
class CoexistenceConfig:
    """
    Top-level configuration shared by every tandem component.

    Attributes:
        readiness: Readiness thresholds per target mode.
        shadow: Shadow ledger settings.
        grants: Parallel grant manager settings.
        health: Health monitor settings.
        watcher: Rollback watcher settings.
        jobs: Job scheduling settings.
    """

    readiness: dict[CoexistenceMode, ReadinessThresholds] = field(
        default_factory=_default_readiness
    )
    shadow: ShadowSyncConfig = field(default_factory=ShadowSyncConfig)
    grants: GrantConfig = field(default_factory=GrantConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    jobs: JobConfig = field(default_factory=JobConfig)

    def __post_init__(self) -> None:
        missing = {
            CoexistenceMode.PARALLEL,
            CoexistenceMode.PRIMARY,
            CoexistenceMode.EXCLUSIVE,
        } - set(self.readiness)
        if missing:
            names = ", ".join(sorted(m.value for m in missing))
            raise ValueError(f"readiness thresholds missing for: {names}")

    def readiness_for(self, target: CoexistenceMode) -> ReadinessThresholds:
        """Thresholds for escalating to target."""
        try:
            return self.readiness[target]
        except KeyError:
            raise ValueError(f"no readiness gate for {target.value}") from None

    def to_dict(self) -> dict[str, Any]:
        return {
            "readiness": {mode.value: t.to_dict() for mode, t in self.readiness.items()},
            "shadow": self.shadow.to_dict(),
            "grants": self.grants.to_dict(),
            "health": self.health.to_dict(),
            "watcher": self.watcher.to_dict(),
            "jobs": self.jobs.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoexistenceConfig:
        readiness = _default_readiness()
        for mode_value, thresholds in data.get("readiness", {}).items():
            readiness[CoexistenceMode(mode_value)] = ReadinessThresholds.from_dict(thresholds)
        return cls(
            readiness=readiness,
            shadow=ShadowSyncConfig.from_dict(data.get("shadow", {})),
            grants=GrantConfig.from_dict(data.get("grants", {})),
            health=HealthConfig.from_dict(data.get("health", {})),
            watcher=WatcherConfig.from_dict(data.get("watcher", {})),
            jobs=JobConfig.from_dict(data.get("jobs", {})),
        )


__all__ = [
    "CoexistenceConfig",
    "ReadinessThresholds",
    "ShadowSyncConfig",
    "GrantConfig",
    "GrantTier",
    "DEFAULT_GRANT_TIERS",
    "HealthConfig",
    "WatcherConfig",
    "JobConfig",
]

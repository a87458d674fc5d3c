"""
tandem - Coexistence migration engine for community access control.

A new eligibility/role service runs alongside an incumbent verification
bot and takes over authority gradually:

- Incumbent Profiler: detects the incumbent and its access grants
- Shadow Ledger: observe-only comparison of incumbent and new system
- Parallel Grant Manager: namespaced grants next to the incumbent's
- Migration Engine: SHADOW -> PARALLEL -> PRIMARY -> EXCLUSIVE with
  readiness gates, takeover confirmation and rollback
- Health Monitor and Rollback Watcher: incumbent liveness and automatic
  rollback on access loss or error spikes
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tandem-coexistence")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from tandem.catalog import DEFAULT_CATALOG, IncumbentCatalog, load_catalog
from tandem.config import (
    CoexistenceConfig,
    GrantConfig,
    GrantTier,
    HealthConfig,
    JobConfig,
    ReadinessThresholds,
    ShadowSyncConfig,
    WatcherConfig,
)
from tandem.engine import MigrationEngine
from tandem.exceptions import (
    CoexistenceError,
    CommunityNotFoundError,
    ErrorHandler,
    InvalidModeError,
    InvalidModeTransitionError,
    IrreversibleStateError,
    JobFailedError,
    JobTimeoutError,
    LockAcquisitionError,
    NamespaceViolationError,
    RetryConfig,
    RollbackPersistenceError,
    ShadowModeViolationError,
    ShadowSyncIncompleteError,
    TransientInfrastructureError,
)
from tandem.health import IncumbentHealthMonitor
from tandem.jobs import (
    HealthCheckJob,
    JobRunner,
    ParallelGrantSyncJob,
    RollbackWatcher,
    RollbackWatcherJob,
    ShadowSyncJob,
    SnapshotAccessMetrics,
)
from tandem.metrics import CoexistenceMetrics
from tandem.models import (
    CoexistenceMode,
    CommunityMigrationState,
    Divergence,
    DivergenceStatus,
    HealthStatus,
    IncumbentProfile,
    MigrationStrategy,
    ModeChangeResult,
    ModeChangeStatus,
    ReadinessReport,
    RollbackResult,
    RollbackTrigger,
    ShadowMemberRecord,
    VerificationTier,
)
from tandem.parallel_grants import ParallelGrantManager
from tandem.profiler import IncumbentProfiler
from tandem.service import CoexistenceService
from tandem.shadow_ledger import ShadowLedger
from tandem.tiers import Feature, VerificationTierResolver

__all__ = [
    "__version__",
    # Components
    "IncumbentProfiler",
    "ShadowLedger",
    "VerificationTierResolver",
    "ParallelGrantManager",
    "MigrationEngine",
    "IncumbentHealthMonitor",
    "RollbackWatcher",
    "SnapshotAccessMetrics",
    "CoexistenceService",
    "CoexistenceMetrics",
    # Jobs
    "JobRunner",
    "ShadowSyncJob",
    "HealthCheckJob",
    "RollbackWatcherJob",
    "ParallelGrantSyncJob",
    # Configuration
    "CoexistenceConfig",
    "ReadinessThresholds",
    "ShadowSyncConfig",
    "GrantConfig",
    "GrantTier",
    "HealthConfig",
    "WatcherConfig",
    "JobConfig",
    "IncumbentCatalog",
    "DEFAULT_CATALOG",
    "load_catalog",
    # Models
    "CoexistenceMode",
    "MigrationStrategy",
    "CommunityMigrationState",
    "IncumbentProfile",
    "ShadowMemberRecord",
    "Divergence",
    "DivergenceStatus",
    "VerificationTier",
    "Feature",
    "HealthStatus",
    "ReadinessReport",
    "ModeChangeResult",
    "ModeChangeStatus",
    "RollbackResult",
    "RollbackTrigger",
    # Exceptions
    "CoexistenceError",
    "CommunityNotFoundError",
    "TransientInfrastructureError",
    "LockAcquisitionError",
    "ShadowSyncIncompleteError",
    "ShadowModeViolationError",
    "NamespaceViolationError",
    "InvalidModeError",
    "InvalidModeTransitionError",
    "IrreversibleStateError",
    "RollbackPersistenceError",
    "JobTimeoutError",
    "JobFailedError",
    "ErrorHandler",
    "RetryConfig",
]

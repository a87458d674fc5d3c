"""
Scheduled per-community jobs.

Each job exposes a :class:`JobSchedule` for the external scheduler and runs
through a shared :class:`JobRunner` (timeout, retry with backoff):

- ``ShadowSyncJob``: shadow ledger pass, every 6 hours in SHADOW.
- ``HealthCheckJob``: incumbent health check, hourly until EXCLUSIVE.
- ``RollbackWatcherJob``: threshold evaluation, hourly in PARALLEL/PRIMARY.
- ``ParallelGrantSyncJob``: namespaced grant sync while grants are active.

Example:
    >>> runner = JobRunner(config.jobs)
    >>> job = ShadowSyncJob(ledger, states, runner)
    >>> results = await job.run_all()
"""

from tandem.jobs.health_check import HealthCheckJob
from tandem.jobs.parallel_sync import ParallelGrantSyncJob
from tandem.jobs.rollback_watcher import (
    RollbackWatcher,
    RollbackWatcherJob,
    SnapshotAccessMetrics,
    WatcherAction,
    WatcherDecision,
)
from tandem.jobs.runner import CommunityJob, JobResult, JobRunner, JobSchedule, JobStatus
from tandem.jobs.shadow_sync import ShadowSyncJob

__all__ = [
    "CommunityJob",
    "JobResult",
    "JobRunner",
    "JobSchedule",
    "JobStatus",
    "ShadowSyncJob",
    "HealthCheckJob",
    "ParallelGrantSyncJob",
    "RollbackWatcher",
    "RollbackWatcherJob",
    "SnapshotAccessMetrics",
    "WatcherAction",
    "WatcherDecision",
]

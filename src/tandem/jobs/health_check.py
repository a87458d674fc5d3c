"""
Health check job: checks the incumbent of every community that still has one.
"""

from __future__ import annotations

from datetime import timedelta

from tandem.health import IncumbentHealthMonitor
from tandem.jobs.runner import CommunityJob, JobRunner, JobSchedule
from tandem.models import CoexistenceMode, HealthReport
from tandem.repositories import CommunityStateRepository


class HealthCheckJob(CommunityJob):
    """Runs hourly in every mode but EXCLUSIVE, where the incumbent is retired."""

    name = "health_check"
    modes = frozenset(
        {CoexistenceMode.SHADOW, CoexistenceMode.PARALLEL, CoexistenceMode.PRIMARY}
    )

    def __init__(
        self,
        monitor: IncumbentHealthMonitor,
        states: CommunityStateRepository,
        runner: JobRunner,
        *,
        dry_run: bool = False,
    ) -> None:
        super().__init__(states, runner)
        self._monitor = monitor
        self._dry_run = dry_run

    @property
    def schedule(self) -> JobSchedule:
        return JobSchedule(
            name=self.name,
            interval=timedelta(hours=self._runner.config.health_check_interval_hours),
            modes=self.modes,
        )

    async def execute(self, community_id: str) -> HealthReport:
        return await self._monitor.check_health(community_id, dry_run=self._dry_run)


__all__ = ["HealthCheckJob"]

"""
Parallel grant sync job: keeps namespaced grants current in PARALLEL and PRIMARY.
"""

from __future__ import annotations

from datetime import timedelta

from tandem.jobs.runner import CommunityJob, JobRunner, JobSchedule
from tandem.models import CoexistenceMode, GrantSyncResult
from tandem.parallel_grants import ParallelGrantManager
from tandem.repositories import CommunityStateRepository


class ParallelGrantSyncJob(CommunityJob):
    name = "parallel_grant_sync"
    modes = frozenset({CoexistenceMode.PARALLEL, CoexistenceMode.PRIMARY})

    def __init__(
        self,
        grant_manager: ParallelGrantManager,
        states: CommunityStateRepository,
        runner: JobRunner,
    ) -> None:
        super().__init__(states, runner)
        self._grant_manager = grant_manager

    @property
    def schedule(self) -> JobSchedule:
        return JobSchedule(
            name=self.name,
            interval=timedelta(hours=self._runner.config.parallel_sync_interval_hours),
            modes=self.modes,
        )

    async def should_run(self, community_id: str) -> bool:
        state = await self._states.get(community_id)
        return state is not None and state.mode in self.modes and state.parallel_grants_active

    async def execute(self, community_id: str) -> GrantSyncResult:
        return await self._grant_manager.sync_namespaced_grants(community_id)


__all__ = ["ParallelGrantSyncJob"]

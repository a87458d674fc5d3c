"""
Shadow sync job: one shadow ledger pass per SHADOW community, every 6 hours.
"""

from __future__ import annotations

from datetime import timedelta

from tandem.jobs.runner import CommunityJob, JobRunner, JobSchedule
from tandem.models import CoexistenceMode, ShadowSyncResult
from tandem.repositories import CommunityStateRepository
from tandem.shadow_ledger import ShadowLedger


class ShadowSyncJob(CommunityJob):
    name = "shadow_sync"
    modes = frozenset({CoexistenceMode.SHADOW})

    def __init__(
        self,
        ledger: ShadowLedger,
        states: CommunityStateRepository,
        runner: JobRunner,
    ) -> None:
        super().__init__(states, runner)
        self._ledger = ledger

    @property
    def schedule(self) -> JobSchedule:
        return JobSchedule(
            name=self.name,
            interval=timedelta(hours=self._runner.config.shadow_sync_interval_hours),
            modes=self.modes,
        )

    async def execute(self, community_id: str) -> ShadowSyncResult:
        return await self._ledger.sync_community(community_id)


__all__ = ["ShadowSyncJob"]

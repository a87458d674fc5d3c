"""
Unit tests for JobRunner and the scheduled community jobs.

Tests cover:
- Timeout, retry with attempt counts, non-retryable failures
- Mode filtering through should_run
- Per-community failure reporting in run_many
- Contract violations surfacing unwrapped
- Job schedules
"""

import asyncio
import logging
from datetime import timedelta

import pytest

from tandem.config import JobConfig
from tandem.exceptions import (
    InvalidModeError,
    JobFailedError,
    JobTimeoutError,
    NamespaceViolationError,
    PlatformUnavailableError,
    ShadowModeViolationError,
)
from tandem.jobs import CommunityJob, JobRunner, JobSchedule, JobStatus, WatcherAction
from tandem.jobs.runner import is_contract_violation
from tandem.models import CoexistenceMode, HealthReport, ShadowSyncResult
from tandem.testing.harness import NO_DELAY_RETRY

SHADOW = CoexistenceMode.SHADOW
PARALLEL = CoexistenceMode.PARALLEL


class Flaky:
    """Async operation failing a fixed number of times before succeeding."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or PlatformUnavailableError("rate limited", community_id="c1")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


class RecordingJob(CommunityJob):
    """Minimal job failing for the community ids in ``broken`` and ``violating``."""

    name = "recording"
    modes = frozenset({SHADOW})

    def __init__(self, states, runner, broken=(), violating=()):
        super().__init__(states, runner)
        self.broken = set(broken)
        self.violating = set(violating)
        self.executed = []

    @property
    def schedule(self):
        return JobSchedule(self.name, timedelta(hours=1), self.modes)

    async def execute(self, community_id):
        self.executed.append(community_id)
        if community_id in self.broken:
            raise ValueError(f"cannot process {community_id}")
        if community_id in self.violating:
            raise NamespaceViolationError(community_id, "g-holder", "remove", grant_name="Holder")
        return community_id


@pytest.fixture
def runner(mock_tracer):
    return JobRunner(JobConfig(timeout_seconds=1.0, retry=NO_DELAY_RETRY), tracer=mock_tracer)


# =============================================================================
# JobRunner
# =============================================================================


class TestJobRunner:
    """Tests for timeout and retry around one job run."""

    @pytest.mark.asyncio
    async def test_returns_result(self, runner):
        operation = Flaky(0)

        assert await runner.run("job", "c1", operation) == "done"
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self, runner):
        operation = Flaky(2)

        assert await runner.run("job", "c1", operation) == "done"
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, runner):
        operation = Flaky(5)

        with pytest.raises(JobFailedError) as exc_info:
            await runner.run("job", "c1", operation)

        assert exc_info.value.attempts == 3
        assert exc_info.value.job_name == "job"
        assert isinstance(exc_info.value.cause, PlatformUnavailableError)
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_does_not_retry_invariant_violations(self, runner):
        error = InvalidModeError("c1", SHADOW, [PARALLEL], "sync_namespaced_grants")
        operation = Flaky(5, error)

        with pytest.raises(JobFailedError) as exc_info:
            await runner.run("job", "c1", operation)

        assert exc_info.value.attempts == 1
        assert operation.calls == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            NamespaceViolationError("c1", "g-holder", "remove", grant_name="Holder"),
            ShadowModeViolationError("c1", PARALLEL),
        ],
        ids=["namespace", "shadow_mode"],
    )
    async def test_contract_violation_is_not_wrapped(self, runner, error, caplog):
        operation = Flaky(5, error)

        with (
            caplog.at_level(logging.CRITICAL, logger="tandem.jobs.runner"),
            pytest.raises(type(error)) as exc_info,
        ):
            await runner.run("job", "c1", operation)

        assert exc_info.value is error
        assert operation.calls == 1
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    def test_contract_violation_classification(self):
        assert is_contract_violation(ShadowModeViolationError("c1", PARALLEL))
        assert not is_contract_violation(InvalidModeError("c1", SHADOW, [PARALLEL], "sync"))
        assert not is_contract_violation(ValueError("bug"))

    @pytest.mark.asyncio
    async def test_unexpected_errors_fail_once(self, runner):
        operation = Flaky(5, ValueError("bug"))

        with pytest.raises(JobFailedError) as exc_info:
            await runner.run("job", "c1", operation)

        assert exc_info.value.attempts == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        runner = JobRunner(JobConfig(timeout_seconds=0.05, retry=NO_DELAY_RETRY))

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(JobTimeoutError) as exc_info:
            await runner.run("slow_job", "c1", slow)

        assert exc_info.value.timeout_seconds == 0.05
        assert exc_info.value.job_name == "slow_job"

    @pytest.mark.asyncio
    async def test_records_span(self, runner, mock_tracer):
        await runner.run("job", "c1", Flaky(0))

        assert "tandem.job.run" in mock_tracer.span_names


# =============================================================================
# CommunityJob
# =============================================================================


class TestCommunityJob:
    """Tests for the shared per-community job behaviour."""

    @pytest.mark.asyncio
    async def test_skips_communities_in_other_modes(self, harness, runner):
        harness.seed_state("c1", mode=PARALLEL)
        job = RecordingJob(harness.states, runner)

        result = await job.run("c1")

        assert result.status == JobStatus.SKIPPED
        assert job.executed == []

    @pytest.mark.asyncio
    async def test_skips_unknown_community(self, harness, runner):
        job = RecordingJob(harness.states, runner)

        assert not await job.should_run("nobody")

    @pytest.mark.asyncio
    async def test_completed(self, harness, runner):
        harness.seed_state("c1")
        job = RecordingJob(harness.states, runner)

        result = await job.run("c1")

        assert result.status == JobStatus.COMPLETED
        assert result.result == "c1"
        assert result.duration_ms >= 0.0

    @pytest.mark.asyncio
    async def test_run_failure_raises(self, harness, runner):
        harness.seed_state("c1")
        job = RecordingJob(harness.states, runner, broken={"c1"})

        with pytest.raises(JobFailedError):
            await job.run("c1")

    @pytest.mark.asyncio
    async def test_run_all_reports_failures_per_community(self, harness, runner):
        for community_id in ("a", "b", "c"):
            harness.seed_state(community_id)
        harness.seed_state("d", mode=PARALLEL)
        job = RecordingJob(harness.states, runner, broken={"b"})

        results = await job.run_all()

        statuses = {r.community_id: r.status for r in results}
        assert statuses == {
            "a": JobStatus.COMPLETED,
            "b": JobStatus.FAILED,
            "c": JobStatus.COMPLETED,
        }
        failed = next(r for r in results if r.status == JobStatus.FAILED)
        assert "cannot process b" in failed.error

    @pytest.mark.asyncio
    async def test_run_all_reports_violations_separately(self, harness, runner):
        for community_id in ("a", "b", "c"):
            harness.seed_state(community_id)
        job = RecordingJob(harness.states, runner, broken={"a"}, violating={"b"})

        results = await job.run_all()

        statuses = {r.community_id: r.status for r in results}
        assert statuses == {
            "a": JobStatus.FAILED,
            "b": JobStatus.VIOLATION,
            "c": JobStatus.COMPLETED,
        }


# =============================================================================
# Scheduled jobs
# =============================================================================


class TestScheduledJobs:
    """Tests for the concrete jobs wired by the harness."""

    def test_schedules(self, harness):
        schedules = {
            job.schedule.name: job.schedule
            for job in (
                harness.shadow_sync_job,
                harness.health_check_job,
                harness.watcher_job,
                harness.parallel_sync_job,
            )
        }

        assert schedules["shadow_sync"].interval == timedelta(hours=6)
        assert schedules["health_check"].interval == timedelta(hours=1)
        assert schedules["rollback_watcher"].interval == timedelta(hours=1)
        assert schedules["parallel_grant_sync"].interval == timedelta(hours=1)
        assert not schedules["health_check"].applies_to(CoexistenceMode.EXCLUSIVE)
        assert schedules["rollback_watcher"].modes == frozenset(
            {PARALLEL, CoexistenceMode.PRIMARY}
        )

    @pytest.mark.asyncio
    async def test_shadow_sync_job(self, harness, community):
        result = await harness.shadow_sync_job.run(community)

        assert result.status == JobStatus.COMPLETED
        assert isinstance(result.result, ShadowSyncResult)

    @pytest.mark.asyncio
    async def test_health_check_job(self, harness, community):
        result = await harness.health_check_job.run(community)

        assert isinstance(result.result, HealthReport)

    @pytest.mark.asyncio
    async def test_watcher_job_skips_shadow(self, harness, community):
        result = await harness.watcher_job.run(community)

        assert result.status == JobStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_watcher_job_evaluates_parallel(self, harness, community):
        harness.seed_state(community, mode=PARALLEL)

        result = await harness.watcher_job.run(community)

        assert result.result.action == WatcherAction.HEALTHY

    @pytest.mark.asyncio
    async def test_parallel_sync_needs_active_grants(self, harness, community):
        harness.seed_state(community, mode=PARALLEL, parallel_grants_active=False)

        result = await harness.parallel_sync_job.run(community)

        assert result.status == JobStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_parallel_sync_job(self, harness, community):
        harness.seed_state(community, mode=PARALLEL)
        await harness.grant_manager.setup_namespaced_grants(community)

        result = await harness.parallel_sync_job.run(community)

        assert result.status == JobStatus.COMPLETED
        assert result.result.community_id == community

"""
Job execution.

Jobs are driven by an external scheduler: it reads each job's
:class:`JobSchedule` and calls ``run(community_id)`` or ``run_all()``.
There is no long-lived loop in-process.

Every run goes through :class:`JobRunner`, which:

- bounds the whole run by a hard wall-clock timeout (``JobTimeoutError``;
  the next tick is the retry),
- retries transient errors with exponential backoff and jitter through
  :class:`~tandem.exceptions.ErrorHandler`,
- raises ``JobFailedError`` with the attempt count once a run gives up,
- lets critical contract violations (a shadow mode write, a mutation of a
  grant tandem does not own) through unwrapped, logged at critical.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, TypeVar

from tandem.config import JobConfig
from tandem.exceptions import (
    ErrorHandler,
    ErrorRecoverability,
    ErrorSeverity,
    InvariantViolationError,
    JobFailedError,
    JobTimeoutError,
    classify_exception,
)
from tandem.models import CoexistenceMode
from tandem.observability import ATTR_COMMUNITY_ID, ATTR_JOB_NAME, Tracer, create_tracer
from tandem.repositories import CommunityStateRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobStatus(Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    VIOLATION = "violation"


@dataclass(frozen=True)
class JobSchedule:
    """
    When and where a job runs.

    Attributes:
        name: Job name.
        interval: Time between runs.
        modes: Modes in which the job does work; other communities are skipped.
    """

    name: str
    interval: timedelta
    modes: frozenset[CoexistenceMode]

    def applies_to(self, mode: CoexistenceMode) -> bool:
        return mode in self.modes


@dataclass(frozen=True)
class JobResult:
    """Outcome of one job run for one community."""

    job_name: str
    community_id: str
    status: JobStatus
    result: Any = None
    error: str | None = None
    duration_ms: float = 0.0


def is_contract_violation(error: BaseException) -> bool:
    """Critical and never retryable: a safety invariant was about to be broken."""
    classification = classify_exception(error)
    return (
        classification.severity == ErrorSeverity.CRITICAL
        and classification.recoverability == ErrorRecoverability.FATAL
    )


class JobRunner:
    """
    Runs one job invocation with timeout and retry.

    Example:
        >>> runner = JobRunner(JobConfig(timeout_seconds=300))
        >>> result = await runner.run(
        ...     "shadow_sync", "123", lambda: ledger.sync_community("123")
        ... )
    """

    def __init__(
        self,
        config: JobConfig | None = None,
        error_handler: ErrorHandler | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._config = config or JobConfig()
        self._error_handler = error_handler or ErrorHandler()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def config(self) -> JobConfig:
        return self._config

    async def run(
        self,
        job_name: str,
        community_id: str,
        operation: Callable[[], Coroutine[Any, Any, T]],
    ) -> T:
        """
        Execute operation under the job's timeout and retry policy.

        Raises:
            JobTimeoutError: If the run exceeded the wall-clock timeout.
            JobFailedError: If the run failed after its retries, or with a
                non-retryable error.
            InvariantViolationError: If the run hit a critical contract violation.
        """
        attempts = 1

        def count_retry(attempt: int, error: Exception, delay_ms: float) -> None:
            nonlocal attempts
            attempts = attempt + 2

        with self._tracer.span(
            "tandem.job.run",
            {ATTR_JOB_NAME: job_name, ATTR_COMMUNITY_ID: community_id},
        ):
            try:
                return await asyncio.wait_for(
                    self._error_handler.execute_with_retry(
                        operation,
                        operation_name=job_name,
                        community_id=community_id,
                        retry_config=self._config.retry,
                        on_retry=count_retry,
                    ),
                    timeout=self._config.timeout_seconds,
                )
            except TimeoutError as e:
                logger.warning(
                    "Job %s for community %s timed out after %.1fs",
                    job_name,
                    community_id,
                    self._config.timeout_seconds,
                )
                raise JobTimeoutError(community_id, job_name, self._config.timeout_seconds) from e
            except Exception as e:
                if is_contract_violation(e):
                    logger.critical(
                        "Job %s for community %s stopped by a contract violation: %s",
                        job_name,
                        community_id,
                        e,
                        extra={ATTR_JOB_NAME: job_name, ATTR_COMMUNITY_ID: community_id},
                    )
                    raise
                logger.error(
                    "Job %s for community %s failed after %d attempt(s): %s",
                    job_name,
                    community_id,
                    attempts,
                    e,
                )
                raise JobFailedError(community_id, job_name, attempts, e) from e


class CommunityJob(ABC):
    """
    Base class for per-community scheduled jobs.

    Subclasses set ``name`` and ``modes`` and implement :meth:`execute`.
    ``run`` skips communities outside ``modes``; ``run_all`` visits every
    community in those modes and reports failures per community instead of
    aborting the sweep.
    """

    name: str
    modes: frozenset[CoexistenceMode]

    def __init__(self, states: CommunityStateRepository, runner: JobRunner) -> None:
        self._states = states
        self._runner = runner

    @property
    @abstractmethod
    def schedule(self) -> JobSchedule: ...

    @abstractmethod
    async def execute(self, community_id: str) -> Any:
        """Do the job's work for one community."""
        ...

    async def should_run(self, community_id: str) -> bool:
        state = await self._states.get(community_id)
        return state is not None and state.mode in self.modes

    async def run(self, community_id: str) -> JobResult:
        """
        Run the job for one community.

        Raises:
            JobTimeoutError: If the run timed out.
            JobFailedError: If the run failed.
            InvariantViolationError: If the run hit a critical contract violation.
        """
        if not await self.should_run(community_id):
            logger.debug("Skipping job %s for community %s", self.name, community_id)
            return JobResult(self.name, community_id, JobStatus.SKIPPED)

        started = time.perf_counter()
        result = await self._runner.run(self.name, community_id, lambda: self.execute(community_id))
        return JobResult(
            self.name,
            community_id,
            JobStatus.COMPLETED,
            result=result,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    async def run_all(self) -> list[JobResult]:
        states = await self._states.list_by_modes(self.modes)
        return await self.run_many(state.community_id for state in states)

    async def run_many(self, community_ids: Iterable[str]) -> list[JobResult]:
        results = []
        for community_id in community_ids:
            try:
                results.append(await self.run(community_id))
            except (JobTimeoutError, JobFailedError) as e:
                results.append(
                    JobResult(self.name, community_id, JobStatus.FAILED, error=e.message)
                )
            except InvariantViolationError as e:
                results.append(
                    JobResult(self.name, community_id, JobStatus.VIOLATION, error=e.message)
                )
        return results


__all__ = [
    "JobRunner",
    "JobSchedule",
    "JobResult",
    "JobStatus",
    "CommunityJob",
    "is_contract_violation",
]

"""
In-process lock manager for tests and single-process deployments.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from tandem.exceptions import LockAcquisitionError
from tandem.locks.protocol import LockInfo
from tandem.observability import Tracer, create_tracer

logger = logging.getLogger(__name__)


class InMemoryLockManager:
    """
    One ``asyncio.Lock`` per key.

    Example:
        >>> locks = InMemoryLockManager()
        >>> async with locks.acquire("coexistence:123", timeout=1.0):
        ...     ...
    """

    def __init__(
        self,
        *,
        holder_id: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._holder_id = holder_id
        self._locks: dict[str, asyncio.Lock] = {}
        self.acquisitions: list[str] = []

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        *,
        timeout: float | None = None,
    ) -> AsyncIterator[LockInfo]:
        """
        Hold the lock for key.

        Raises:
            LockAcquisitionError: If the lock is not free within timeout.
        """
        lock = self._lock_for(key)
        with self._tracer.span("tandem.lock.acquire", {"lock.key": key}):
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except TimeoutError:
                raise LockAcquisitionError(
                    key=key,
                    reason=f"Timeout after {timeout}s",
                    timeout=timeout,
                ) from None

        self.acquisitions.append(key)
        logger.debug("Acquired in-memory lock: key=%s", key)
        try:
            yield LockInfo(
                key=key,
                lock_id=0,
                acquired_at=datetime.now(UTC),
                holder_id=self._holder_id,
            )
        finally:
            lock.release()

    async def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


__all__ = ["InMemoryLockManager"]

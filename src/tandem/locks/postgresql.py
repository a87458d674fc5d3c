"""
Community locks backed by PostgreSQL advisory locks.

Every tandem worker that points at the same database sees the same locks,
so a shadow sync on one host and an operator rollback on another cannot
interleave their writes to a community's state. The lock lives as long as
the session that took it; each held key pins one pooled connection.

Example:
    >>> locks = PostgreSQLLockManager(session_factory, holder_id="worker-1")
    >>> async with locks.acquire(community_lock_key("123"), timeout=30):
    ...     await grant_manager.sync_namespaced_grants_locked("123")
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tandem.exceptions import LockAcquisitionError
from tandem.locks.protocol import LockInfo
from tandem.observability import Tracer, create_tracer

logger = logging.getLogger(__name__)

_LOCK = text("SELECT pg_advisory_lock(:lock_id)")
_TRY_LOCK = text("SELECT pg_try_advisory_lock(:lock_id)")
_UNLOCK = text("SELECT pg_advisory_unlock(:lock_id)")

# pg advisory lock ids are signed bigints.
_BIGINT_MASK = 0x7FFFFFFFFFFFFFFF


class PostgreSQLLockManager:
    """
    LockManager over ``pg_advisory_lock``.

    A bounded wait polls ``pg_try_advisory_lock`` every ``retry_interval``
    seconds; an unbounded one blocks in ``pg_advisory_lock``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        holder_id: str | None = None,
        retry_interval: float = 0.1,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._session_factory = session_factory
        self._holder_id = holder_id
        self._retry_interval = retry_interval
        self._sessions: dict[str, AsyncSession] = {}
        self._guard = asyncio.Lock()

    @staticmethod
    def key_to_lock_id(key: str) -> int:
        """Stable positive lock id for key, from the first 8 bytes of its SHA-256."""
        digest = hashlib.sha256(key.encode()).digest()
        return int.from_bytes(digest[:8], "big") & _BIGINT_MASK

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        *,
        timeout: float | None = None,
    ) -> AsyncIterator[LockInfo]:
        """
        Hold the advisory lock for key until the block exits.

        Raises:
            LockAcquisitionError: If the lock stays taken past timeout, or the
                database fails while it is being taken.
        """
        lock_id = self.key_to_lock_id(key)
        with self._tracer.span(
            "tandem.lock.acquire",
            {
                "lock.key": key,
                "lock.id": lock_id,
                "lock.timeout": timeout if timeout is not None else -1,
            },
        ):
            session = self._session_factory()
            try:
                await self._take(session, key, lock_id, timeout)
            except SQLAlchemyError as e:
                await session.close()
                raise LockAcquisitionError(key=key, reason=f"Database error: {e}") from e
            except LockAcquisitionError:
                await session.close()
                raise

        async with self._guard:
            self._sessions[key] = session
        logger.debug("Took advisory lock %d for %s", lock_id, key)
        try:
            yield LockInfo(
                key=key,
                lock_id=lock_id,
                acquired_at=datetime.now(UTC),
                holder_id=self._holder_id,
            )
        finally:
            await self._release(key, session, lock_id)

    async def _take(
        self,
        session: AsyncSession,
        key: str,
        lock_id: int,
        timeout: float | None,
    ) -> None:
        params = {"lock_id": lock_id}
        if timeout is None:
            await session.execute(_LOCK, params)
            return

        deadline = asyncio.get_running_loop().time() + timeout
        while not (await session.execute(_TRY_LOCK, params)).scalar():
            if asyncio.get_running_loop().time() >= deadline:
                raise LockAcquisitionError(
                    key=key,
                    reason=f"Timeout after {timeout}s",
                    timeout=timeout,
                )
            await asyncio.sleep(self._retry_interval)

    async def _release(self, key: str, session: AsyncSession, lock_id: int) -> None:
        with self._tracer.span("tandem.lock.release", {"lock.key": key, "lock.id": lock_id}):
            try:
                await session.execute(_UNLOCK, {"lock_id": lock_id})
            except SQLAlchemyError as e:
                # Closing the session drops the lock server-side.
                logger.warning("Could not unlock %s explicitly: %s", key, e)
            finally:
                async with self._guard:
                    self._sessions.pop(key, None)
                await session.close()
        logger.debug("Released advisory lock %d for %s", lock_id, key)

    async def is_held(self, key: str) -> bool:
        async with self._guard:
            return key in self._sessions

    @property
    def held_lock_count(self) -> int:
        return len(self._sessions)


__all__ = ["PostgreSQLLockManager"]

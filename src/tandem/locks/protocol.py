"""
Lock manager protocol and shared lock types.

Every operation that writes ``CommunityMigrationState`` (mode changes,
rollbacks, shadow passes, grant setup and sync) holds the per-community
lock named by :func:`community_lock_key`.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class LockInfo:
    """
    Information about an acquired lock.

    Attributes:
        key: The string key used to identify the lock
        lock_id: Numeric lock id (advisory lock id, or 0 in memory)
        acquired_at: When the lock was acquired
        holder_id: Optional identifier for the lock holder (for debugging)
    """

    key: str
    lock_id: int
    acquired_at: datetime
    holder_id: str | None = None


@runtime_checkable
class LockManager(Protocol):
    """Exclusive, keyed, async lock."""

    def acquire(
        self,
        key: str,
        *,
        timeout: float | None = None,
    ) -> AbstractAsyncContextManager[LockInfo]:
        """
        Hold the lock for the duration of the context.

        Raises:
            LockAcquisitionError: If the lock is not acquired within timeout.
        """
        ...

    async def is_held(self, key: str) -> bool: ...


def community_lock_key(community_id: str, operation: str = "coexistence") -> str:
    """
    Create the lock key for a community.

    All state-writing components use the default operation so that they
    exclude each other.

    Example:
        >>> community_lock_key("123456789")
        'coexistence:123456789'
    """
    return f"{operation}:{community_id}"


__all__ = ["LockInfo", "LockManager", "community_lock_key"]

"""
Per-community locks.

Two implementations of the ``LockManager`` protocol are provided:

- ``PostgreSQLLockManager``: advisory locks shared by every process using
  the same database.
- ``InMemoryLockManager``: ``asyncio.Lock`` per key, for tests and
  single-process use.

Example:
    >>> from tandem.locks import PostgreSQLLockManager, community_lock_key
    >>>
    >>> lock_manager = PostgreSQLLockManager(session_factory)
    >>> try:
    ...     async with lock_manager.acquire(community_lock_key(cid), timeout=5.0):
    ...         await perform_transition()
    ... except LockAcquisitionError:
    ...     print("Another worker is operating on this community")
"""

from tandem.exceptions import LockAcquisitionError
from tandem.locks.memory import InMemoryLockManager
from tandem.locks.postgresql import PostgreSQLLockManager
from tandem.locks.protocol import LockInfo, LockManager, community_lock_key

__all__ = [
    "LockAcquisitionError",
    "LockInfo",
    "LockManager",
    "InMemoryLockManager",
    "PostgreSQLLockManager",
    "community_lock_key",
]

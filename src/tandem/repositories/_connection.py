"""
Connection handling helpers shared by the PostgreSQL repositories.

``execute_with_connection`` accepts either an ``AsyncEngine`` or an
``AsyncConnection`` so a repository can run standalone (engine) or inside
a caller's transaction (connection).
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tandem.exceptions import StorageUnavailableError


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Context manager for executing database operations.

    Args:
        conn: Database connection or engine
        transactional: If True, wrap in a transaction (begin); if False use
            a bare connection (connect). Only applies to an AsyncEngine.

    Yields:
        AsyncConnection ready for execute() calls

    Raises:
        StorageUnavailableError: If the database cannot be reached.

    Note:
        When an AsyncConnection is passed the caller owns the transaction.
    """
    try:
        if isinstance(conn, AsyncEngine):
            if transactional:
                async with conn.begin() as connection:
                    yield connection
            else:
                async with conn.connect() as connection:
                    yield connection
        else:
            yield conn
    except OperationalError as e:
        raise StorageUnavailableError(f"Database unavailable: {e}") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise StorageUnavailableError(f"Database connection lost: {e}") from e
        raise


def dump_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True)


def load_json(value: Any) -> Any:
    """JSONB columns come back as str from asyncpg and as objects elsewhere."""
    if isinstance(value, str):
        return json.loads(value)
    return value

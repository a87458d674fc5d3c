"""
SQL schema for the PostgreSQL backend.

Tables:
    - coexistence_community_state: One row per managed community
    - coexistence_incumbent_profiles / coexistence_health_checks
    - coexistence_shadow_members / coexistence_divergences / coexistence_predictions
    - coexistence_namespaced_grants / coexistence_access_snapshots
    - coexistence_audit_log

Usage:
    from tandem.schemas import get_schema_statements

    async with engine.begin() as conn:
        for statement in get_schema_statements():
            await conn.execute(text(statement))

asyncpg runs one statement per execute, hence ``get_schema_statements``.
"""

from pathlib import Path
from typing import Literal

SchemaName = Literal["coexistence"]

_SCHEMAS_DIR = Path(__file__).parent


def get_schema(name: SchemaName = "coexistence") -> str:
    """
    Load a SQL schema file by name.

    Raises:
        FileNotFoundError: If the schema file doesn't exist
    """
    path = _SCHEMAS_DIR / f"{name}.sql"
    if not path.exists():
        raise FileNotFoundError(f"Schema file not found: {path}")
    return path.read_text()


def get_schema_statements(name: SchemaName = "coexistence") -> list[str]:
    """The schema split into individual statements, comments removed."""
    lines = [
        line for line in get_schema(name).splitlines() if not line.lstrip().startswith("--")
    ]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


def list_tables() -> list[str]:
    """Names of the tables created by the schema, in creation order."""
    tables = []
    for statement in get_schema_statements():
        if statement.upper().startswith("CREATE TABLE"):
            tables.append(statement.split()[5].rstrip("("))
    return tables


__all__ = ["get_schema", "get_schema_statements", "list_tables"]

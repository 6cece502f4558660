"""
Database migration runner for asyncpg.

Applies forward-only SQL migrations shipped in the migrations/ directory.
Several operator processes may start against the same database, so the
whole run holds a PostgreSQL advisory lock; each migration still runs in
its own transaction.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Set, Tuple

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

MIGRATION_TABLE = "rolekeeper_schema_migrations"

# Arbitrary but fixed key for pg_advisory_lock
MIGRATION_LOCK_KEY = 7_013_001


async def ensure_migration_table(conn: asyncpg.Connection) -> None:
    """Create the migration tracking table if it doesn't exist."""
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {MIGRATION_TABLE} (
            version VARCHAR(16) PRIMARY KEY,
            filename VARCHAR(255) NOT NULL,
            applied_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
        """)


def discover_migrations(
    directory: Optional[Path] = None,
) -> List[Tuple[str, str, Path]]:
    """
    Find migration files.

    Args:
        directory: Directory to scan; defaults to MIGRATIONS_DIR.

    Returns:
        List of (version, filename, path) tuples ordered by version.

    Raises:
        FileNotFoundError: If the directory doesn't exist.
        ValueError: If two files share a version number.
    """
    directory = directory or MIGRATIONS_DIR
    if not directory.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {directory}")

    found = {}
    for entry in directory.iterdir():
        match = MIGRATION_PATTERN.match(entry.name)
        if not match or not entry.is_file():
            continue
        version = match.group(1)
        if version in found:
            raise ValueError(
                f"Duplicate migration version {version}: "
                f"{found[version][1]} and {entry.name}"
            )
        found[version] = (version, entry.name, entry)

    return [found[v] for v in sorted(found)]


async def get_applied_versions(conn: asyncpg.Connection) -> Set[str]:
    """Get the set of already-applied migration versions."""
    rows = await conn.fetch(f"SELECT version FROM {MIGRATION_TABLE}")
    return {row["version"] for row in rows}


async def apply_migration(
    conn: asyncpg.Connection, version: str, filename: str, path: Path
) -> None:
    """Apply a single migration and record it, atomically."""
    sql = path.read_text(encoding="utf-8")

    async with conn.transaction():
        await conn.execute(sql)
        await conn.execute(
            f"INSERT INTO {MIGRATION_TABLE} (version, filename) VALUES ($1, $2)",
            version,
            filename,
        )

    logger.info(f"Applied migration {filename}")


async def run_migrations(pool: asyncpg.Pool, directory: Optional[Path] = None) -> int:
    """
    Apply all pending migrations in version order.

    Args:
        pool: A connected asyncpg pool.
        directory: Optional override of the migrations directory.

    Returns:
        Number of migrations applied.

    Raises:
        FileNotFoundError: If the migrations directory is missing.
        asyncpg.PostgresError: If a migration fails. It is rolled back;
            previously applied migrations remain.
    """
    all_migrations = discover_migrations(directory)

    async with pool.acquire() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_KEY)
        try:
            await ensure_migration_table(conn)
            applied = await get_applied_versions(conn)
            pending = [m for m in all_migrations if m[0] not in applied]

            if not pending:
                logger.info("Database schema is up to date")
                return 0

            logger.info(f"Applying {len(pending)} pending migration(s)")
            for version, filename, path in pending:
                await apply_migration(conn, version, filename, path)
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_KEY)

    logger.info(f"Successfully applied {len(pending)} migration(s)")
    return len(pending)

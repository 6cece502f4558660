"""
Database Manager - PostgreSQL schema and operations.

Stores managed objects keyed by (kind, namespace, name) with a per-row
resource version used for optimistic concurrency.
"""

import asyncpg
import json
import logging
from typing import Any, Dict, List, Optional

from migrate import run_migrations

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages PostgreSQL database operations for the object store."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> int:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        applied = await run_migrations(self.pool)
        logger.info("Database schema initialized")
        return applied

    # ==================== Managed Object Methods ====================

    async def get_object(
        self, kind: str, namespace: str, name: str
    ) -> Optional[Dict[str, Any]]:
        """Get a managed object row by kind and namespace/name."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM managed_objects
                WHERE kind = $1 AND namespace = $2 AND name = $3
                """,
                kind,
                namespace,
                name,
            )
            if not row:
                return None
            return self._parse_object_row(row)

    async def insert_object(
        self,
        kind: str,
        namespace: str,
        name: str,
        labels: Dict[str, str],
        body: Dict[str, Any],
    ) -> int:
        """
        Insert a new managed object.

        Args:
            kind: Object kind (e.g., 'RoleBinding')
            namespace: Namespace, '' for cluster-scoped kinds
            name: Object name
            labels: Object labels
            body: Full manifest body

        Returns:
            The resource version assigned to the new row.

        Raises:
            asyncpg.UniqueViolationError: If the object already exists.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            version = await conn.fetchval(
                """
                INSERT INTO managed_objects (kind, namespace, name, labels, body)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING resource_version
                """,
                kind,
                namespace,
                name,
                json.dumps(labels),
                json.dumps(body),
            )
            logger.info(f"Inserted {kind} {namespace}/{name} at version {version}")
            return version

    async def update_object(
        self,
        kind: str,
        namespace: str,
        name: str,
        labels: Dict[str, str],
        body: Dict[str, Any],
        expected_version: int,
    ) -> Optional[int]:
        """
        Replace a managed object if its resource version still matches.

        Args:
            kind: Object kind
            namespace: Namespace, '' for cluster-scoped kinds
            name: Object name
            labels: New labels
            body: New manifest body
            expected_version: Resource version the caller last read

        Returns:
            The new resource version, or None if the row is missing or was
            modified since expected_version.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            version = await conn.fetchval(
                """
                UPDATE managed_objects
                SET labels = $4,
                    body = $5,
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE kind = $1 AND namespace = $2 AND name = $3
                  AND resource_version = $6
                RETURNING resource_version
                """,
                kind,
                namespace,
                name,
                json.dumps(labels),
                json.dumps(body),
                expected_version,
            )
            if version is None:
                logger.warning(
                    f"Stale update of {kind} {namespace}/{name} "
                    f"(expected version {expected_version})"
                )
            else:
                logger.info(f"Updated {kind} {namespace}/{name} to version {version}")
            return version

    async def list_objects(
        self,
        kind: str,
        namespace: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """List managed objects of a kind with optional filters."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM managed_objects WHERE kind = $1"
            params: List[Any] = [kind]
            param_count = 1

            if namespace is not None:
                param_count += 1
                query += f" AND namespace = ${param_count}"
                params.append(namespace)

            if labels:
                param_count += 1
                query += f" AND labels @> ${param_count}::jsonb"
                params.append(json.dumps(labels))

            param_count += 1
            query += f" ORDER BY namespace, name LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
            return [self._parse_object_row(row) for row in rows]

    def _parse_object_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """Parse a managed_objects row from the database."""
        result = dict(row)
        result["labels"] = json.loads(result["labels"]) if result.get("labels") else {}
        result["body"] = json.loads(result["body"]) if result.get("body") else {}
        return result

"""
Query execution boundary.

The engine never opens connections on its own terms: it consumes a
QueryExecutor supplied by the host. AsyncpgExecutor is the production
implementation, wrapping either a pool (preferred) or a single connection
the host already owns.

Safety requirements:
- Time-bounded: every statement carries the executor's timeout
- Autocommit for maintenance: ANALYZE/VACUUM/REINDEX are refused when the
  connection is inside an explicit transaction block

Usage:
    executor = await AsyncpgExecutor.create("postgresql://app@localhost/app")
    rows = await executor.fetch("SELECT relname FROM pg_class WHERE relkind = $1", "r")
    await executor.execute("ANALYZE", require_autocommit=True)
    await executor.close()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Protocol, Sequence

import asyncpg

from dbsense.exceptions import DatabaseConnectionError, TransactionContextError

logger = logging.getLogger(__name__)


class QueryExecutor(Protocol):
    """
    Protocol for the host-provided execution capability.

    Implementations are scoped to a single database and must be safe to use
    from several concurrent engine invocations.
    """

    async def fetch(self, query: str, *args: Any) -> Sequence[Mapping[str, Any]]:
        """Run a parameterized read query and return all rows."""
        ...

    async def execute(self, statement: str, *, require_autocommit: bool = False) -> None:
        """
        Run a DDL or maintenance statement.

        With require_autocommit=True, raise TransactionContextError if the
        connection is inside an explicit transaction block.
        """
        ...


class AsyncpgExecutor:
    """QueryExecutor backed by asyncpg."""

    def __init__(
        self,
        target: "asyncpg.Pool | asyncpg.Connection",
        timeout_seconds: float = 30.0,
        owns_target: bool = False,
    ) -> None:
        self._target = target
        self._timeout = timeout_seconds
        self._owns_target = owns_target

    @classmethod
    async def create(
        cls,
        dsn: str,
        timeout_seconds: float = 30.0,
        min_connections: int = 1,
        max_connections: int = 5,
    ) -> "AsyncpgExecutor":
        """
        Create an executor with its own connection pool.

        Raises:
            DatabaseConnectionError: the pool could not be opened
        """
        try:
            pool = await asyncpg.create_pool(
                dsn,
                min_size=min_connections,
                max_size=max_connections,
                command_timeout=timeout_seconds,
            )
        except Exception as e:
            logger.error("Could not create connection pool: %s", e)
            raise DatabaseConnectionError(e) from e
        logger.debug("Created pool (min=%d, max=%d)", min_connections, max_connections)
        return cls(pool, timeout_seconds, owns_target=True)

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator["asyncpg.Connection"]:
        if isinstance(self._target, asyncpg.Pool):
            async with self._target.acquire() as conn:
                yield conn
        else:
            yield self._target

    async def fetch(self, query: str, *args: Any) -> Sequence[Mapping[str, Any]]:
        async with self._acquire() as conn:
            return await conn.fetch(query, *args, timeout=self._timeout)

    async def execute(self, statement: str, *, require_autocommit: bool = False) -> None:
        async with self._acquire() as conn:
            if require_autocommit and conn.is_in_transaction():
                raise TransactionContextError(statement)
            logger.debug("Executing: %s", statement)
            await conn.execute(statement, timeout=self._timeout)

    def pool_stats(self) -> dict[str, int] | None:
        """Connection pool counters, or None for a single-connection executor."""
        if not isinstance(self._target, asyncpg.Pool):
            return None
        size = self._target.get_size()
        idle = self._target.get_idle_size()
        return {
            "min_size": self._target.get_min_size(),
            "max_size": self._target.get_max_size(),
            "size": size,
            "idle": idle,
            "in_use": size - idle,
        }

    async def close(self) -> None:
        """Close the pool or connection if this executor created it."""
        if self._owns_target:
            await self._target.close()


def quote_ident(name: str) -> str:
    """Quote an SQL identifier, doubling embedded quotes."""
    return '"' + name.replace('"', '""') + '"'


def qualified_name(schema: str, name: str) -> str:
    """Schema-qualified, quoted relation name."""
    return f"{quote_ident(schema)}.{quote_ident(name)}"

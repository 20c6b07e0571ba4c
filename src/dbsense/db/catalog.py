"""
Catalog Reader - read-only access to PostgreSQL catalogs and statistics.

Provides:
- list_indexes(): indexes on user tables with ordered key columns
- index_usage(): scan counters keyed by (table, index)
- table_statistics(): write counters, live/dead tuples, vacuum/analyze times
- foreign_key_columns(): one row per foreign-key column
- index_exists_on_column(table, column): structural leading-column check
  over valid, non-partial indexes
- table_sizes(): total relation size per table
- query_statistics(): aggregated statement statistics (pg_stat_statements)

No heuristics live here: every method is pure retrieval with typed results.
Every failure surfaces as CatalogReadError chained to the driver error.

Usage:
    reader = CatalogReader(executor, schema="public")
    indexes = await reader.list_indexes()
    usage = await reader.index_usage()
    unused = [i for i in indexes if usage.get(i.key, 0) == 0]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from dbsense.db.executor import QueryExecutor
from dbsense.exceptions import CatalogReadError

logger = logging.getLogger(__name__)

IndexKey = tuple[str, str]
"""(table, index) composite key; bare index names can collide across tables."""


SERVER_VERSION_SQL = "SELECT current_setting('server_version_num')::int AS version"

LIST_INDEXES_SQL = r"""
    SELECT
        t.relname AS table_name,
        i.relname AS index_name,
        i.oid::bigint AS index_oid,
        array_agg(
            COALESCE(a.attname, pg_get_indexdef(ix.indexrelid, k.ord::int, true))
            ORDER BY k.ord
        ) AS columns,
        am.amname AS index_type,
        ix.indisunique AS is_unique,
        ix.indisprimary AS is_primary,
        ix.indisvalid AS is_valid,
        ix.indpred IS NOT NULL AS is_partial,
        pg_relation_size(i.oid) AS size_bytes
    FROM pg_index ix
    JOIN pg_class t ON t.oid = ix.indrelid
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_am am ON am.oid = i.relam
    CROSS JOIN LATERAL unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
    LEFT JOIN pg_attribute a
        ON a.attrelid = t.oid AND a.attnum = k.attnum AND k.attnum > 0
    WHERE t.relkind IN ('r', 'p')
      AND n.nspname = $1
      AND t.relname NOT LIKE 'pg\_%'
      AND t.relname NOT LIKE 'sql\_%'
      AND k.ord <= ix.indnkeyatts
    GROUP BY t.relname, i.relname, i.oid, am.amname, ix.indisunique, ix.indisprimary,
             ix.indisvalid, (ix.indpred IS NOT NULL)
    ORDER BY t.relname, i.relname
"""

# pg_stat_user_indexes.last_idx_scan exists from PostgreSQL 16
INDEX_LAST_USED_SQL = """
    SELECT relname AS table_name, indexrelname AS index_name, last_idx_scan AS last_used
    FROM pg_stat_user_indexes
    WHERE schemaname = $1
"""
LAST_USED_MIN_VERSION = 160000

INDEX_USAGE_SQL = """
    SELECT relname AS table_name, indexrelname AS index_name, idx_scan AS scans
    FROM pg_stat_user_indexes
    WHERE schemaname = $1
"""

TABLE_STATISTICS_SQL = """
    SELECT
        relname AS table_name,
        n_tup_ins AS inserts,
        n_tup_upd AS updates,
        n_tup_del AS deletes,
        n_live_tup AS live_tuples,
        n_dead_tup AS dead_tuples,
        last_vacuum,
        last_autovacuum,
        last_analyze,
        last_autoanalyze
    FROM pg_stat_user_tables
    WHERE schemaname = $1
    ORDER BY relname
"""

FOREIGN_KEYS_SQL = """
    SELECT
        c.conname AS constraint_name,
        t.relname AS table_name,
        a.attname AS column_name,
        rt.relname AS referenced_table,
        ra.attname AS referenced_column
    FROM pg_constraint c
    JOIN pg_class t ON t.oid = c.conrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_class rt ON rt.oid = c.confrelid
    CROSS JOIN LATERAL unnest(c.conkey, c.confkey) WITH ORDINALITY AS k(attnum, refattnum, ord)
    JOIN pg_attribute a ON a.attrelid = c.conrelid AND a.attnum = k.attnum
    JOIN pg_attribute ra ON ra.attrelid = c.confrelid AND ra.attnum = k.refattnum
    WHERE c.contype = 'f'
      AND n.nspname = $1
    ORDER BY t.relname, c.conname, k.ord
"""

# indkey is an int2vector (zero-based): indkey[0] is the leading key column.
# Invalid (failed CONCURRENTLY builds) and partial indexes do not count.
INDEX_ON_COLUMN_SQL = """
    SELECT 1
    FROM pg_index ix
    JOIN pg_class t ON t.oid = ix.indrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ix.indkey[0]
    WHERE n.nspname = $1
      AND t.relname = $2
      AND a.attname = $3
      AND ix.indisvalid
      AND ix.indpred IS NULL
    LIMIT 1
"""

TABLE_SIZES_SQL = """
    SELECT c.relname AS table_name, pg_total_relation_size(c.oid) AS size_bytes
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE c.relkind IN ('r', 'p')
      AND n.nspname = $1
    ORDER BY size_bytes DESC, c.relname
"""

QUERY_STATISTICS_SQL = """
    SELECT
        s.query,
        s.mean_exec_time AS mean_time_ms,
        s.total_exec_time AS total_time_ms,
        s.calls,
        s.rows
    FROM pg_stat_statements s
    JOIN pg_database d ON d.oid = s.dbid
    WHERE d.datname = current_database()
      AND s.mean_exec_time > $1
    ORDER BY s.mean_exec_time DESC
    LIMIT $2
"""


@dataclass(frozen=True)
class IndexInfo:
    """Information about a database index."""

    table: str
    name: str
    columns: tuple[str, ...]
    index_type: str = "btree"
    is_unique: bool = False
    is_primary: bool = False
    size_bytes: int = 0
    last_used: datetime | None = None
    oid: int = 0
    is_valid: bool = True
    is_partial: bool = False

    @property
    def key(self) -> IndexKey:
        return (self.table, self.name)

    @property
    def column(self) -> str | None:
        """Leading key column."""
        return self.columns[0] if self.columns else None

    def covers_columns(self, columns: Sequence[str]) -> bool:
        """
        Check if the first len(columns) key columns are exactly these columns.

        Order within the prefix does not matter.
        """
        if not columns or len(columns) > len(self.columns):
            return False
        prefix = {c.lower() for c in self.columns[:len(columns)]}
        return prefix == {c.lower() for c in columns}


@dataclass(frozen=True)
class ForeignKey:
    """One column of a foreign-key constraint."""

    table: str
    column: str
    referenced_table: str
    referenced_column: str
    constraint: str = ""


@dataclass(frozen=True)
class TableStats:
    """Write and vacuum statistics for one table."""

    table: str
    inserts: int = 0
    updates: int = 0
    deletes: int = 0
    live_tuples: int = 0
    dead_tuples: int = 0
    last_vacuum: datetime | None = None
    last_autovacuum: datetime | None = None
    last_analyze: datetime | None = None
    last_autoanalyze: datetime | None = None

    @property
    def dead_ratio(self) -> float | None:
        """Dead/live tuple ratio, or None when there are no live tuples."""
        if self.live_tuples == 0:
            return None
        return self.dead_tuples / self.live_tuples

    @property
    def last_vacuumed(self) -> datetime | None:
        """Most recent vacuum (manual or auto)."""
        times = [t for t in (self.last_vacuum, self.last_autovacuum) if t]
        return max(times) if times else None

    @property
    def last_analyzed(self) -> datetime | None:
        """Most recent analyze (manual or auto)."""
        times = [t for t in (self.last_analyze, self.last_autoanalyze) if t]
        return max(times) if times else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        def iso(value: datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "table": self.table,
            "inserts": self.inserts,
            "updates": self.updates,
            "deletes": self.deletes,
            "live_tuples": self.live_tuples,
            "dead_tuples": self.dead_tuples,
            "dead_ratio": round(self.dead_ratio, 4) if self.dead_ratio is not None else None,
            "last_vacuum": iso(self.last_vacuum),
            "last_autovacuum": iso(self.last_autovacuum),
            "last_analyze": iso(self.last_analyze),
            "last_autoanalyze": iso(self.last_autoanalyze),
        }


@dataclass(frozen=True)
class QueryStats:
    """Aggregated execution statistics for one normalized statement."""

    query: str
    mean_time_ms: float
    calls: int = 0
    rows: int = 0
    total_time_ms: float = 0.0
    last_executed: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "query": self.query,
            "mean_time_ms": round(self.mean_time_ms, 2),
            "calls": self.calls,
            "rows": self.rows,
            "total_time_ms": round(self.total_time_ms, 2),
            "last_executed": self.last_executed.isoformat() if self.last_executed else None,
        }


class CatalogReader:
    """
    Read-only catalog access scoped to one schema.

    Holds no mutable state: concurrent callers may share an instance.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        schema: str = "public",
        logger: logging.Logger | None = None,
    ) -> None:
        self._executor = executor
        self._schema = schema
        self._logger = logger or logging.getLogger(__name__)

    @property
    def schema(self) -> str:
        return self._schema

    async def _read(self, operation: str, query: str, *args: Any) -> Sequence[Mapping[str, Any]]:
        try:
            rows = await self._executor.fetch(query, *args)
        except Exception as e:
            raise CatalogReadError(operation, e) from e
        self._logger.debug("%s returned %d rows", operation, len(rows))
        return rows

    async def server_version(self) -> int:
        """Server version as an integer (e.g. 160002), 0 if unknown."""
        rows = await self._read("server_version", SERVER_VERSION_SQL)
        return int(rows[0]["version"]) if rows else 0

    async def list_indexes(self) -> list[IndexInfo]:
        """List indexes on user tables of the schema."""
        rows = await self._read("list_indexes", LIST_INDEXES_SQL, self._schema)

        last_used: dict[IndexKey, datetime | None] = {}
        if rows and await self.server_version() >= LAST_USED_MIN_VERSION:
            for row in await self._read("index_last_used", INDEX_LAST_USED_SQL, self._schema):
                last_used[(row["table_name"], row["index_name"])] = row["last_used"]

        return [
            IndexInfo(
                table=row["table_name"],
                name=row["index_name"],
                columns=tuple(row["columns"] or ()),
                index_type=row["index_type"],
                is_unique=row["is_unique"],
                is_primary=row["is_primary"],
                is_valid=row["is_valid"],
                is_partial=row["is_partial"],
                size_bytes=row["size_bytes"] or 0,
                last_used=last_used.get((row["table_name"], row["index_name"])),
                oid=row["index_oid"] or 0,
            )
            for row in rows
        ]

    async def index_usage(self) -> dict[IndexKey, int]:
        """Scan counters since the last statistics reset."""
        rows = await self._read("index_usage", INDEX_USAGE_SQL, self._schema)
        return {
            (row["table_name"], row["index_name"]): row["scans"] or 0
            for row in rows
        }

    async def table_statistics(self) -> dict[str, TableStats]:
        """Per-table write counters, tuple counts and maintenance timestamps."""
        rows = await self._read("table_statistics", TABLE_STATISTICS_SQL, self._schema)
        return {
            row["table_name"]: TableStats(
                table=row["table_name"],
                inserts=row["inserts"] or 0,
                updates=row["updates"] or 0,
                deletes=row["deletes"] or 0,
                live_tuples=row["live_tuples"] or 0,
                dead_tuples=row["dead_tuples"] or 0,
                last_vacuum=row["last_vacuum"],
                last_autovacuum=row["last_autovacuum"],
                last_analyze=row["last_analyze"],
                last_autoanalyze=row["last_autoanalyze"],
            )
            for row in rows
        }

    async def foreign_key_columns(self) -> list[ForeignKey]:
        """Foreign-key columns derived from constraint metadata."""
        rows = await self._read("foreign_key_columns", FOREIGN_KEYS_SQL, self._schema)
        return [
            ForeignKey(
                table=row["table_name"],
                column=row["column_name"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
                constraint=row["constraint_name"],
            )
            for row in rows
        ]

    async def index_exists_on_column(self, table: str, column: str) -> bool:
        """Whether some index on the table has the column as its leading key."""
        rows = await self._read("index_exists_on_column", INDEX_ON_COLUMN_SQL, self._schema, table, column)
        return len(rows) > 0

    async def table_sizes(self) -> dict[str, int]:
        """Total relation size (heap, TOAST and indexes) per table."""
        rows = await self._read("table_sizes", TABLE_SIZES_SQL, self._schema)
        return {row["table_name"]: row["size_bytes"] or 0 for row in rows}

    async def query_statistics(self, min_mean_time_ms: float, limit: int) -> list[QueryStats]:
        """Statements whose mean execution time exceeds min_mean_time_ms."""
        rows = await self._read("query_statistics", QUERY_STATISTICS_SQL, min_mean_time_ms, limit)
        return [
            QueryStats(
                query=row["query"] or "",
                mean_time_ms=row["mean_time_ms"] or 0.0,
                total_time_ms=row["total_time_ms"] or 0.0,
                calls=row["calls"] or 0,
                rows=row["rows"] or 0,
            )
            for row in rows
        ]

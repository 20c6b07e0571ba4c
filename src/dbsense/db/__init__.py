"""
Database access for dbsense.

Provides the query-execution boundary and read-only catalog access:
- Enumerate indexes, usage counters and foreign-key columns
- Read per-table write and dead-tuple statistics
- Read aggregated statement statistics from pg_stat_statements
"""

from dbsense.db.catalog import (
    CatalogReader,
    ForeignKey,
    IndexInfo,
    IndexKey,
    QueryStats,
    TableStats,
)
from dbsense.db.executor import (
    AsyncpgExecutor,
    QueryExecutor,
    qualified_name,
    quote_ident,
)

__all__ = [
    "AsyncpgExecutor",
    "CatalogReader",
    "ForeignKey",
    "IndexInfo",
    "IndexKey",
    "QueryExecutor",
    "QueryStats",
    "TableStats",
    "qualified_name",
    "quote_ident",
]

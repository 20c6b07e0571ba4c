"""
Index recommendation engine.

Runs three independent passes over a point-in-time catalog snapshot:

1. Unused indexes: zero scans since the last statistics reset, never the
   primary key.
2. Missing foreign-key indexes: constraints whose columns are not the
   leading key columns of any valid, non-partial index on their table.
   A k-column constraint needs an index whose first k key columns are
   exactly its columns.
3. Duplicate indexes: two indexes on the same table with an identical
   ordered key column list, reported once per unordered pair.

Failure semantics:
- The base snapshot (index list + usage counters) is required: a
  CatalogReadError there aborts the whole call.
- The missing-FK and duplicate passes are advisory: a failure is logged as
  a warning and that pass contributes nothing.
"""

from __future__ import annotations

import hashlib
import logging
from collections import defaultdict
from functools import partial
from itertools import combinations
from typing import Awaitable, Callable, Iterable, Mapping, Sequence

from dbsense.analyzer.models import IndexRecommendation, RecommendationType, Severity
from dbsense.db.catalog import CatalogReader, ForeignKey, IndexInfo, IndexKey
from dbsense.db.executor import qualified_name, quote_ident
from dbsense.exceptions import RecommendationPassError

logger = logging.getLogger(__name__)

# PostgreSQL truncates identifiers to NAMEDATALEN - 1 bytes
MAX_IDENTIFIER_BYTES = 63
_HASH_LENGTH = 8


def fk_index_name(table: str, columns: str | Sequence[str]) -> str:
    """
    Deterministic name for a foreign-key supporting index.

    Names longer than the identifier limit are cut on a character boundary
    and suffixed with a short hash of the full name, so two long names that
    share a prefix stay distinct.
    """
    if isinstance(columns, str):
        columns = [columns]
    name = f"idx_{table}_{'_'.join(columns)}"
    encoded = name.encode("utf-8")
    if len(encoded) <= MAX_IDENTIFIER_BYTES:
        return name

    digest = hashlib.sha256(encoded).hexdigest()[:_HASH_LENGTH]
    head = encoded[:MAX_IDENTIFIER_BYTES - _HASH_LENGTH - 1].decode("utf-8", "ignore")
    return f"{head}_{digest}"


def find_unused_indexes(
    indexes: Iterable[IndexInfo],
    usage: Mapping[IndexKey, int],
    schema: str = "public",
) -> list[IndexRecommendation]:
    """
    Flag indexes with exactly zero recorded scans.

    Primary keys are never flagged. Indexes without a usage entry are
    skipped: no counter means no evidence either way.
    """
    recommendations: list[IndexRecommendation] = []

    for index in indexes:
        if index.is_primary:
            continue
        scans = usage.get(index.key)
        if scans is None or scans != 0:
            continue

        action = f"Consider dropping index {index.name}"
        sql: str | None = f"DROP INDEX CONCURRENTLY IF EXISTS {qualified_name(schema, index.name)}"
        if index.is_unique:
            # Dropping would also drop the uniqueness guarantee
            action += " if its uniqueness guarantee is enforced elsewhere"
            sql = None

        recommendations.append(IndexRecommendation(
            type=RecommendationType.UNUSED_INDEX,
            severity=Severity.MEDIUM,
            table=index.table,
            index=index.name,
            column=index.column,
            description=f"Index {index.name} on table {index.table} is not being used",
            action=action,
            sql=sql,
        ))

    return recommendations


def _column_ref(table: str, columns: Sequence[str]) -> str:
    if len(columns) == 1:
        return f"{table}.{columns[0]}"
    return f"{table}({', '.join(columns)})"


def missing_fk_recommendation(
    constraint: Sequence[ForeignKey],
    schema: str = "public",
) -> IndexRecommendation:
    """Build the recommendation for one unindexed foreign-key constraint."""
    first = constraint[0]
    columns = [fk.column for fk in constraint]
    referenced = [fk.referenced_column for fk in constraint]
    name = fk_index_name(first.table, columns)
    return IndexRecommendation(
        type=RecommendationType.MISSING_FK_INDEX,
        severity=Severity.HIGH,
        table=first.table,
        column=", ".join(columns),
        description=(
            f"Foreign key {_column_ref(first.table, columns)} references "
            f"{_column_ref(first.referenced_table, referenced)} but has no index"
        ),
        action=f"Create index on {_column_ref(first.table, columns)}",
        sql=(
            f"CREATE INDEX CONCURRENTLY {quote_ident(name)} "
            f"ON {qualified_name(schema, first.table)} "
            f"({', '.join(quote_ident(c) for c in columns)})"
        ),
    )


def group_foreign_keys(foreign_keys: Iterable[ForeignKey]) -> list[list[ForeignKey]]:
    """Group per-column rows into constraints, keeping column order."""
    constraints: dict[tuple[str, str], list[ForeignKey]] = {}
    for fk in foreign_keys:
        constraints.setdefault((fk.table, fk.constraint or fk.column), []).append(fk)
    return list(constraints.values())


def find_missing_fk_indexes(
    foreign_keys: Iterable[ForeignKey],
    indexes: Iterable[IndexInfo],
    schema: str = "public",
) -> list[IndexRecommendation]:
    """
    Report each foreign-key constraint that no index can serve.

    Invalid and partial indexes never count as support. Constraints with
    the same column set on one table are reported once.
    """
    usable: dict[str, list[IndexInfo]] = defaultdict(list)
    for index in indexes:
        if index.is_valid and not index.is_partial:
            usable[index.table].append(index)

    recommendations: list[IndexRecommendation] = []
    seen: set[tuple[str, frozenset[str]]] = set()
    for constraint in group_foreign_keys(foreign_keys):
        table = constraint[0].table
        columns = [fk.column for fk in constraint]
        key = (table, frozenset(columns))
        if key in seen:
            continue
        seen.add(key)

        if not any(index.covers_columns(columns) for index in usable[table]):
            recommendations.append(missing_fk_recommendation(constraint, schema))

    return recommendations


def find_duplicate_indexes(indexes: Iterable[IndexInfo]) -> list[IndexRecommendation]:
    """
    Report each unordered pair of same-table indexes with identical key columns.

    Within a pair the older index (lower OID) comes first. Which one to keep
    is the caller's decision.
    """
    groups: dict[tuple[str, tuple[str, ...]], list[IndexInfo]] = defaultdict(list)
    for index in indexes:
        if index.columns:
            groups[(index.table, index.columns)].append(index)

    recommendations: list[IndexRecommendation] = []
    for (table, columns), members in sorted(groups.items()):
        if len(members) < 2:
            continue
        members.sort(key=lambda i: (i.oid, i.name))
        for first, second in combinations(members, 2):
            recommendations.append(IndexRecommendation(
                type=RecommendationType.DUPLICATE_INDEX,
                severity=Severity.MEDIUM,
                table=table,
                index=first.name,
                related_index=second.name,
                column=first.column,
                description=(
                    f"Indexes {first.name} and {second.name} on table {table} "
                    f"have identical columns ({', '.join(columns)})"
                ),
                action=(
                    f"Consider dropping one of the duplicate indexes: "
                    f"{first.name} or {second.name}"
                ),
            ))

    return recommendations


class IndexAnalyzer:
    """
    Produces index recommendations from a fresh catalog snapshot.

    Stateless between calls: two calls with no intervening catalog change
    return equal recommendation lists.
    """

    def __init__(
        self,
        reader: CatalogReader,
        logger: logging.Logger | None = None,
    ) -> None:
        self._reader = reader
        self._logger = logger or logging.getLogger(__name__)

    async def analyze_indexes(self) -> list[IndexRecommendation]:
        """
        Run all passes and concatenate their results.

        Raises:
            CatalogReadError: the index list or usage counters could not be read.
        """
        indexes = await self._reader.list_indexes()
        usage = await self._reader.index_usage()

        recommendations = find_unused_indexes(indexes, usage, self._reader.schema)

        missing = await self._run_pass(
            RecommendationType.MISSING_FK_INDEX.value,
            partial(self._missing_fk_pass, indexes),
        )
        recommendations.extend(missing)

        duplicates = await self._run_pass(
            RecommendationType.DUPLICATE_INDEX.value,
            partial(self._duplicate_pass, indexes),
        )
        recommendations.extend(duplicates)

        self._logger.info(
            "Index analysis produced %d recommendations (%d unused, %d missing FK, %d duplicate)",
            len(recommendations),
            len(recommendations) - len(missing) - len(duplicates),
            len(missing),
            len(duplicates),
        )
        return recommendations

    async def _run_pass(
        self,
        pass_name: str,
        run: Callable[[], Awaitable[list[IndexRecommendation]]],
    ) -> list[IndexRecommendation]:
        try:
            return await run()
        except Exception as e:
            error = RecommendationPassError(pass_name, e)
            self._logger.warning("%s; omitting its recommendations", error.message)
            return []

    async def _missing_fk_pass(self, indexes: list[IndexInfo]) -> list[IndexRecommendation]:
        foreign_keys = await self._reader.foreign_key_columns()
        return find_missing_fk_indexes(foreign_keys, indexes, self._reader.schema)

    async def _duplicate_pass(self, indexes: list[IndexInfo]) -> list[IndexRecommendation]:
        return find_duplicate_indexes(indexes)

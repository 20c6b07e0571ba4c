"""
Maintenance orchestrator - phased statistics refresh, vacuum and reindex.

Phases run strictly in order; each has a failure class:

    1. REFRESH_STATISTICS  ANALYZE                      fatal
    2. RECLAIM_SPACE       VACUUM                       fatal
    3. COMPUTE_BLOAT       read pg_stat_user_tables     fatal
    4. REBUILD_INDEXES     REINDEX TABLE per candidate  per table, non-fatal

Phase 4 rebuilds tables whose dead/live tuple ratio is strictly above the
threshold. Tables with no live tuples are skipped, never divided by.
Each table's REINDEX is applied independently, so stopping mid-loop leaves
nothing to roll back.

Usage:
    orchestrator = MaintenanceOrchestrator(executor, CatalogReader(executor))
    report = await orchestrator.optimize_database(timeout=600)
    print(report.rebuilt_tables, report.failed_tables)
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import IntEnum
from typing import Awaitable, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from dbsense.config import BLOAT_RATIO_THRESHOLD
from dbsense.db.catalog import CatalogReader, TableStats
from dbsense.db.executor import QueryExecutor, qualified_name
from dbsense.exceptions import (
    MaintenanceError,
    OperationCancelledError,
    TableMaintenanceError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MaintenancePhase(IntEnum):
    """Maintenance phases in execution order."""

    REFRESH_STATISTICS = 1
    RECLAIM_SPACE = 2
    COMPUTE_BLOAT = 3
    REBUILD_INDEXES = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @property
    def fatal(self) -> bool:
        """Whether a failure in this phase aborts the run."""
        return self is not MaintenancePhase.REBUILD_INDEXES


def select_rebuild_candidates(
    stats: Mapping[str, TableStats],
    ratio_threshold: float = BLOAT_RATIO_THRESHOLD,
) -> tuple[list[str], list[str]]:
    """
    Split tables into rebuild candidates and skipped tables.

    A candidate has dead tuples and dead/live strictly above ratio_threshold.
    A table with dead tuples but no live tuples is skipped.

    Returns:
        (candidates, skipped), both sorted by table name
    """
    candidates: list[str] = []
    skipped: list[str] = []

    for table, stat in stats.items():
        if stat.dead_tuples <= 0:
            continue
        ratio = stat.dead_ratio
        if ratio is None:
            skipped.append(table)
        elif ratio > ratio_threshold:
            candidates.append(table)

    return sorted(candidates), sorted(skipped)


class MaintenanceReport(BaseModel):
    """Outcome of a maintenance run that reached the end of phase 4."""

    model_config = ConfigDict(frozen=True)

    phases_completed: tuple[MaintenancePhase, ...] = ()
    rebuilt_tables: tuple[str, ...] = ()
    skipped_tables: tuple[str, ...] = ()
    failed_tables: dict[str, str] = Field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def has_table_failures(self) -> bool:
        return bool(self.failed_tables)


class _RunState:
    """Tracks the phase in progress so cancellation can name it."""

    def __init__(self) -> None:
        self.phase: MaintenancePhase | None = None


class MaintenanceOrchestrator:
    """Runs the four maintenance phases against one database."""

    def __init__(
        self,
        executor: QueryExecutor,
        reader: CatalogReader,
        bloat_ratio_threshold: float = BLOAT_RATIO_THRESHOLD,
        reindex_concurrently: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self._executor = executor
        self._reader = reader
        self._ratio_threshold = bloat_ratio_threshold
        self._reindex_concurrently = reindex_concurrently
        self._logger = logger or logging.getLogger(__name__)

    async def optimize_database(self, timeout: float | None = None) -> MaintenanceReport:
        """
        Run all phases.

        Args:
            timeout: Overall time budget in seconds (None = unbounded)

        Raises:
            MaintenanceError: phase 1, 2 or 3 failed
            OperationCancelledError: the timeout expired; no further
                statements are issued
        """
        state = _RunState()
        try:
            return await asyncio.wait_for(self._run(state), timeout)
        except asyncio.TimeoutError:
            self._logger.warning(
                "Database optimization cancelled after %ss (phase: %s)",
                timeout,
                state.phase.label if state.phase else "none",
            )
            raise OperationCancelledError("optimize_database", timeout, state.phase) from None

    def reindex_statement(self, table: str) -> str:
        concurrently = "CONCURRENTLY " if self._reindex_concurrently else ""
        return f"REINDEX TABLE {concurrently}{qualified_name(self._reader.schema, table)}"

    async def _run(self, state: _RunState) -> MaintenanceReport:
        start_time = time.perf_counter()
        completed: list[MaintenancePhase] = []
        self._logger.info("Starting database optimization")

        state.phase = MaintenancePhase.REFRESH_STATISTICS
        self._logger.info("Analyzing tables...")
        await self._fatal(state.phase, self._executor.execute("ANALYZE", require_autocommit=True))
        completed.append(state.phase)

        state.phase = MaintenancePhase.RECLAIM_SPACE
        self._logger.info("Vacuuming tables...")
        await self._fatal(state.phase, self._executor.execute("VACUUM", require_autocommit=True))
        completed.append(state.phase)

        state.phase = MaintenancePhase.COMPUTE_BLOAT
        self._logger.info("Checking for reindex needs...")
        stats = await self._fatal(state.phase, self._reader.table_statistics())
        completed.append(state.phase)

        state.phase = MaintenancePhase.REBUILD_INDEXES
        candidates, skipped = select_rebuild_candidates(stats, self._ratio_threshold)
        for table in skipped:
            self._logger.info(
                "Skipping table %s: %d dead tuples but no live tuples",
                table, stats[table].dead_tuples,
            )

        rebuilt: list[str] = []
        failed: dict[str, str] = {}
        for table in candidates:
            stat = stats[table]
            self._logger.info(
                "Reindexing table %s (dead tuples: %d, live tuples: %d)",
                table, stat.dead_tuples, stat.live_tuples,
            )
            try:
                await self._executor.execute(self.reindex_statement(table), require_autocommit=True)
            except Exception as e:
                error = TableMaintenanceError(state.phase, table, e)
                self._logger.warning("%s", error.message)
                failed[table] = str(e)
            else:
                rebuilt.append(table)
        completed.append(state.phase)

        duration_ms = (time.perf_counter() - start_time) * 1000
        self._logger.info(
            "Database optimization completed in %.0f ms (%d rebuilt, %d failed, %d skipped)",
            duration_ms, len(rebuilt), len(failed), len(skipped),
        )
        return MaintenanceReport(
            phases_completed=tuple(completed),
            rebuilt_tables=tuple(rebuilt),
            skipped_tables=tuple(skipped),
            failed_tables=failed,
            duration_ms=duration_ms,
        )

    async def _fatal(self, phase: MaintenancePhase, step: Awaitable[T]) -> T:
        try:
            return await step
        except Exception as e:
            error = MaintenanceError(phase, e)
            self._logger.error("%s", error.message)
            raise error from e

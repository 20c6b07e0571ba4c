"""
OptimizationService - the single entry point for hosts.

HTTP handlers, the CLI and schedulers should all use this service rather
than wiring readers, analyzers and the orchestrator themselves.

Design principle: Ports & Adapters
- This is the application layer that coordinates the engine components
- It depends only on the QueryExecutor boundary and the Config model
- Delivery mechanisms (CLI, API, cron) are thin adapters around it

Usage:
    from dbsense.engine import OptimizationService

    async with await OptimizationService.connect("postgresql://app@db/app") as service:
        recommendations = await service.analyze_indexes()
        slow = await service.analyze_slow_queries(timeout=10)
        report = await service.optimize_database()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, TypeVar

from dbsense.analyzer.indexes import IndexAnalyzer
from dbsense.analyzer.models import IndexRecommendation
from dbsense.analyzer.slow_queries import SlowQueryAnalyzer
from dbsense.config import Config, get_config
from dbsense.db.catalog import CatalogReader, QueryStats, TableStats
from dbsense.db.executor import AsyncpgExecutor, QueryExecutor
from dbsense.exceptions import ConfigurationError, DBSenseError, OperationCancelledError
from dbsense.maintenance import MaintenanceOrchestrator, MaintenanceReport

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DatabaseStats:
    """Storage and usage overview of the schema."""

    table_sizes: dict[str, int] = field(default_factory=dict)
    index_usage: dict[str, dict[str, dict[str, int]]] = field(default_factory=dict)
    pool: dict[str, int] | None = None

    @property
    def total_size_bytes(self) -> int:
        return sum(self.table_sizes.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "table_sizes": dict(self.table_sizes),
            "total_size_bytes": self.total_size_bytes,
            "index_usage": self.index_usage,
            "pool": self.pool,
        }


@dataclass(frozen=True)
class HealthReport:
    """
    Recommendations, slow queries and table statistics in one pass.

    A section that could not be produced is recorded in errors instead of
    failing the whole report.
    """

    recommendations: tuple[IndexRecommendation, ...] = ()
    slow_queries: tuple[QueryStats, ...] = ()
    table_stats: dict[str, TableStats] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendations": [r.model_dump(mode="json") for r in self.recommendations],
            "slow_queries": [q.to_dict() for q in self.slow_queries],
            "table_stats": {name: s.to_dict() for name, s in self.table_stats.items()},
            "errors": dict(self.errors),
        }


class OptimizationService:
    """
    Facade over the catalog reader, analyzers and maintenance orchestrator.

    Holds no state between calls other than its collaborators; every
    operation re-reads the catalog.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        config: Config | None = None,
        logger: logging.Logger | None = None,
        owns_executor: bool = False,
    ) -> None:
        self._executor = executor
        self._config = config or get_config()
        self._logger = logger or logging.getLogger(__name__)
        self._owns_executor = owns_executor

        self._reader = CatalogReader(executor, self._config.schema_name, logger=self._logger)
        self._index_analyzer = IndexAnalyzer(self._reader, logger=self._logger)
        self._slow_query_analyzer = SlowQueryAnalyzer(
            self._reader,
            threshold_ms=self._config.slow_query_threshold_ms,
            limit=self._config.slow_query_limit,
            logger=self._logger,
        )
        self._orchestrator = MaintenanceOrchestrator(
            executor,
            self._reader,
            bloat_ratio_threshold=self._config.bloat_ratio_threshold,
            reindex_concurrently=self._config.reindex_concurrently,
            logger=self._logger,
        )

    @classmethod
    async def connect(
        cls,
        dsn: str | None = None,
        config: Config | None = None,
        logger: logging.Logger | None = None,
    ) -> "OptimizationService":
        """Create a service with its own asyncpg pool."""
        config = config or get_config()
        dsn = dsn or config.dsn
        if not dsn:
            raise ConfigurationError("No database DSN configured", config_key="dsn")

        executor = await AsyncpgExecutor.create(
            dsn,
            timeout_seconds=config.statement_timeout_seconds,
            min_connections=config.min_pool_size,
            max_connections=config.max_pool_size,
        )
        return cls(executor, config, logger, owns_executor=True)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def reader(self) -> CatalogReader:
        return self._reader

    async def close(self) -> None:
        close = getattr(self._executor, "close", None)
        if self._owns_executor and close is not None:
            await close()

    async def __aenter__(self) -> "OptimizationService":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── Public operations ────────────────────────────────────────────────

    async def analyze_indexes(self, timeout: float | None = None) -> list[IndexRecommendation]:
        """Unused, missing-FK and duplicate index recommendations."""
        return await self._bounded(
            "analyze_indexes", self._index_analyzer.analyze_indexes(), timeout
        )

    async def analyze_slow_queries(self, timeout: float | None = None) -> list[QueryStats]:
        """Slowest statements above the configured threshold."""
        return await self._bounded(
            "analyze_slow_queries", self._slow_query_analyzer.analyze_slow_queries(), timeout
        )

    async def get_table_stats(self, timeout: float | None = None) -> dict[str, TableStats]:
        """Per-table write counters, tuple counts and vacuum/analyze times."""
        return await self._bounded(
            "get_table_stats", self._reader.table_statistics(), timeout
        )

    async def optimize_database(self, timeout: float | None = None) -> MaintenanceReport:
        """Run the maintenance phases; timeout defaults to the configured one."""
        if timeout is None:
            timeout = self._config.maintenance_timeout_seconds
        return await self._orchestrator.optimize_database(timeout=timeout)

    async def get_database_stats(self, timeout: float | None = None) -> DatabaseStats:
        """Table sizes, per-index scans and sizes, and pool counters."""
        return await self._bounded("get_database_stats", self._database_stats(), timeout)

    async def health_report(self, timeout: float | None = None) -> HealthReport:
        """Run every read-only analysis, recording failed sections."""
        return await self._bounded("health_report", self._health_report(), timeout)

    # ── Internals ────────────────────────────────────────────────────────

    async def _bounded(self, operation: str, step: Awaitable[T], timeout: float | None) -> T:
        try:
            return await asyncio.wait_for(step, timeout)
        except asyncio.TimeoutError:
            self._logger.warning("Operation %s cancelled after %ss", operation, timeout)
            raise OperationCancelledError(operation, timeout) from None

    async def _database_stats(self) -> DatabaseStats:
        sizes = await self._reader.table_sizes()
        indexes = await self._reader.list_indexes()
        usage = await self._reader.index_usage()

        index_usage: dict[str, dict[str, dict[str, int]]] = {}
        for index in indexes:
            index_usage.setdefault(index.table, {})[index.name] = {
                "scans": usage.get(index.key, 0),
                "size_bytes": index.size_bytes,
            }

        pool_stats = getattr(self._executor, "pool_stats", None)
        return DatabaseStats(
            table_sizes=sizes,
            index_usage=index_usage,
            pool=pool_stats() if pool_stats is not None else None,
        )

    async def _health_report(self) -> HealthReport:
        errors: dict[str, str] = {}

        recommendations: list[IndexRecommendation] = []
        try:
            recommendations = await self._index_analyzer.analyze_indexes()
        except DBSenseError as e:
            self._logger.warning("Health report: index analysis failed: %s", e.message)
            errors["recommendations"] = e.message

        slow_queries: list[QueryStats] = []
        try:
            slow_queries = await self._slow_query_analyzer.analyze_slow_queries()
        except DBSenseError as e:
            self._logger.warning("Health report: slow query analysis failed: %s", e.message)
            errors["slow_queries"] = e.message

        table_stats: dict[str, TableStats] = {}
        try:
            table_stats = await self._reader.table_statistics()
        except DBSenseError as e:
            self._logger.warning("Health report: table statistics failed: %s", e.message)
            errors["table_stats"] = e.message

        return HealthReport(
            recommendations=tuple(recommendations),
            slow_queries=tuple(slow_queries),
            table_stats=table_stats,
            errors=errors,
        )

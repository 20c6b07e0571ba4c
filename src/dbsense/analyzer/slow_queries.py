"""
Slow query triage over pg_stat_statements.

A pure filter / sort / limit pipeline: queries whose mean execution time
strictly exceeds the threshold, slowest first, capped. Nothing is written
back; statistics are never reset from here.
"""

from __future__ import annotations

import logging
from typing import Iterable

from dbsense.config import SLOW_QUERY_LIMIT, SLOW_QUERY_THRESHOLD_MS
from dbsense.db.catalog import CatalogReader, QueryStats

logger = logging.getLogger(__name__)


def rank_slow_queries(
    stats: Iterable[QueryStats],
    threshold_ms: float = SLOW_QUERY_THRESHOLD_MS,
    limit: int = SLOW_QUERY_LIMIT,
) -> list[QueryStats]:
    """Keep queries slower than threshold_ms, slowest first, at most limit."""
    slow = [s for s in stats if s.mean_time_ms > threshold_ms]
    slow.sort(key=lambda s: s.mean_time_ms, reverse=True)
    return slow[:max(limit, 0)]


class SlowQueryAnalyzer:
    """Reads statement statistics and ranks the slow ones."""

    def __init__(
        self,
        reader: CatalogReader,
        threshold_ms: float = SLOW_QUERY_THRESHOLD_MS,
        limit: int = SLOW_QUERY_LIMIT,
        logger: logging.Logger | None = None,
    ) -> None:
        self._reader = reader
        self._threshold_ms = threshold_ms
        self._limit = limit
        self._logger = logger or logging.getLogger(__name__)

    async def analyze_slow_queries(self) -> list[QueryStats]:
        """
        Slow queries ordered by mean duration, descending.

        Raises:
            CatalogReadError: statistics unavailable (e.g. the
                pg_stat_statements extension is not installed).
        """
        snapshot = await self._reader.query_statistics(self._threshold_ms, self._limit)
        slow = rank_slow_queries(snapshot, self._threshold_ms, self._limit)
        self._logger.info(
            "Found %d queries slower than %.0f ms", len(slow), self._threshold_ms
        )
        return slow

"""Index recommendations and slow-query triage."""

from dbsense.analyzer.indexes import (
    IndexAnalyzer,
    find_duplicate_indexes,
    find_missing_fk_indexes,
    find_unused_indexes,
    fk_index_name,
    group_foreign_keys,
    missing_fk_recommendation,
)
from dbsense.analyzer.models import IndexRecommendation, RecommendationType, Severity
from dbsense.analyzer.slow_queries import SlowQueryAnalyzer, rank_slow_queries

__all__ = [
    "IndexAnalyzer",
    "IndexRecommendation",
    "RecommendationType",
    "Severity",
    "SlowQueryAnalyzer",
    "find_duplicate_indexes",
    "find_missing_fk_indexes",
    "find_unused_indexes",
    "fk_index_name",
    "group_foreign_keys",
    "missing_fk_recommendation",
    "rank_slow_queries",
]

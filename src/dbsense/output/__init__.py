"""Output formatting for dbsense results."""

from dbsense.output.renderers import (
    OutputFormat,
    render_database_stats,
    render_health_report,
    render_maintenance_report,
    render_recommendations,
    render_slow_queries,
    render_table_stats,
    table_stats_row,
)

__all__ = [
    "OutputFormat",
    "render_database_stats",
    "render_health_report",
    "render_maintenance_report",
    "render_recommendations",
    "render_slow_queries",
    "render_table_stats",
    "table_stats_row",
]

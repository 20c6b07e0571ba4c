"""
Output renderers for different formats.

Separates presentation logic from analysis logic. JSON output goes through
model_dump(mode="json") / to_dict() so there is one source of truth for
field names.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:
    from datetime import datetime

    from dbsense.analyzer.models import IndexRecommendation, Severity
    from dbsense.db.catalog import QueryStats, TableStats
    from dbsense.engine import DatabaseStats, HealthReport
    from dbsense.maintenance import MaintenanceReport


class OutputFormat(str, Enum):
    """Supported output formats."""

    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"


def _dumps(data: Any, indent: int = 2) -> str:
    return json.dumps(data, indent=indent, sort_keys=False, default=str)


def _severity_icon(severity: "Severity") -> str:
    """Get icon for severity level."""
    return {
        "critical": "🔴",
        "high": "🟠",
        "medium": "🟡",
        "low": "🔵",
    }.get(severity.value, "•")


def _truncate(text: str, width: int = 80) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 1] + "…"


# =============================================================================
# Recommendations
# =============================================================================


def render_recommendations(
    recommendations: Sequence["IndexRecommendation"],
    format: OutputFormat = OutputFormat.TEXT,
) -> str:
    """Render index recommendations, most severe first."""
    ordered = sorted(recommendations)

    if format == OutputFormat.JSON:
        return _dumps([r.model_dump(mode="json") for r in ordered])

    if format == OutputFormat.MARKDOWN:
        lines = ["## Index Recommendations", ""]
        if not ordered:
            lines.append("✅ No index recommendations.")
            return "\n".join(lines)
        lines.append("| Severity | Type | Table | Index / Column | Action |")
        lines.append("|---|---|---|---|---|")
        for rec in ordered:
            target = rec.index or rec.column or ""
            if rec.related_index:
                target += f", {rec.related_index}"
            lines.append(
                f"| {_severity_icon(rec.severity)} {rec.severity.value} | `{rec.type.value}` "
                f"| `{rec.table}` | `{target}` | {rec.action} |"
            )
        statements = [rec.sql for rec in ordered if rec.sql]
        if statements:
            lines.extend(["", "```sql", *[f"{s};" for s in statements], "```"])
        return "\n".join(lines)

    lines = ["=" * 60, "Index Recommendations", "=" * 60, ""]
    if not ordered:
        lines.append("✓ No index recommendations")
    for i, rec in enumerate(ordered, 1):
        lines.append(f"[{i}] {_severity_icon(rec.severity)} {rec.type.value} ({rec.severity.value})")
        lines.append(f"    {rec.description}")
        lines.append(f"    Action: {rec.action}")
        if rec.sql:
            lines.append(f"    SQL: {rec.sql};")
        lines.append("")
    return "\n".join(lines)


# =============================================================================
# Slow queries
# =============================================================================


def render_slow_queries(
    queries: Sequence["QueryStats"],
    format: OutputFormat = OutputFormat.TEXT,
) -> str:
    """Render slow queries in the order given."""
    if format == OutputFormat.JSON:
        return _dumps([q.to_dict() for q in queries])

    if format == OutputFormat.MARKDOWN:
        lines = ["## Slow Queries", ""]
        if not queries:
            lines.append("✅ No slow queries.")
            return "\n".join(lines)
        lines.append("| Mean (ms) | Calls | Query |")
        lines.append("|---:|---:|---|")
        for q in queries:
            lines.append(f"| {q.mean_time_ms:,.1f} | {q.calls:,} | `{_truncate(q.query)}` |")
        return "\n".join(lines)

    lines = ["Slow Queries", "-" * 60]
    if not queries:
        lines.append("✓ No slow queries")
    for q in queries:
        lines.append(f"{q.mean_time_ms:>10,.1f} ms  {q.calls:>8,} calls  {_truncate(q.query, 60)}")
    return "\n".join(lines)


# =============================================================================
# Table statistics
# =============================================================================

TABLE_STATS_HEADER = ("Table", "Live", "Dead", "Dead %", "Last vacuum", "Last analyze")


def _timestamp(value: "datetime | None") -> str:
    return value.isoformat(timespec="seconds") if value else "never"


def table_stats_row(stats: "TableStats") -> tuple[str, ...]:
    """One display row per table, shared by every table-stats view."""
    ratio = stats.dead_ratio
    return (
        stats.table,
        f"{stats.live_tuples:,}",
        f"{stats.dead_tuples:,}",
        f"{ratio * 100:.1f}" if ratio is not None else "-",
        _timestamp(stats.last_vacuumed),
        _timestamp(stats.last_analyzed),
    )


def render_table_stats(
    stats: Mapping[str, "TableStats"],
    format: OutputFormat = OutputFormat.TEXT,
) -> str:
    """Render table statistics sorted by table name."""
    if format == OutputFormat.JSON:
        return _dumps({name: stats[name].to_dict() for name in sorted(stats)})

    header = TABLE_STATS_HEADER
    rows = [table_stats_row(stats[name]) for name in sorted(stats)]

    if format == OutputFormat.MARKDOWN:
        lines = ["## Table Statistics", "", "| " + " | ".join(header) + " |", "|---" * len(header) + "|"]
        lines.extend("| " + " | ".join(row) + " |" for row in rows)
        return "\n".join(lines)

    widths = [max(len(str(col)) for col in column) for column in zip(header, *rows)]
    lines = ["  ".join(h.ljust(w) for h, w in zip(header, widths))]
    lines.append("  ".join("-" * w for w in widths))
    lines.extend("  ".join(c.ljust(w) for c, w in zip(row, widths)) for row in rows)
    return "\n".join(lines)


# =============================================================================
# Maintenance / overview
# =============================================================================


def render_maintenance_report(
    report: "MaintenanceReport",
    format: OutputFormat = OutputFormat.TEXT,
) -> str:
    """Render the outcome of a maintenance run."""
    if format == OutputFormat.JSON:
        data = report.model_dump(mode="json")
        data["phases_completed"] = [p.label for p in report.phases_completed]
        return _dumps(data)

    lines = [
        "Database optimization completed",
        f"  Phases: {', '.join(p.label for p in report.phases_completed)}",
        f"  Duration: {report.duration_ms:,.0f} ms",
        f"  Rebuilt: {', '.join(report.rebuilt_tables) or 'none'}",
    ]
    if report.skipped_tables:
        lines.append(f"  Skipped (no live tuples): {', '.join(report.skipped_tables)}")
    for table, error in sorted(report.failed_tables.items()):
        lines.append(f"  ⚠ Failed {table}: {error}")
    return "\n".join(lines)


def render_database_stats(stats: "DatabaseStats", format: OutputFormat = OutputFormat.TEXT) -> str:
    """Render table sizes and index usage."""
    if format == OutputFormat.JSON:
        return _dumps(stats.to_dict())

    lines = [f"Total size: {stats.total_size_bytes:,} bytes", ""]
    for table, size in stats.table_sizes.items():
        lines.append(f"{table}: {size:,} bytes")
        for index, usage in sorted(stats.index_usage.get(table, {}).items()):
            lines.append(f"    {index}: {usage['scans']:,} scans, {usage['size_bytes']:,} bytes")
    if stats.pool:
        lines.append("")
        lines.append(
            "Pool: {size} open, {in_use} in use, {idle} idle (max {max_size})".format(**stats.pool)
        )
    return "\n".join(lines)


def render_health_report(report: "HealthReport", format: OutputFormat = OutputFormat.TEXT) -> str:
    """Render every section of a health report."""
    if format == OutputFormat.JSON:
        return _dumps(report.to_dict())

    sections = [
        render_recommendations(report.recommendations, format),
        render_slow_queries(report.slow_queries, format),
        render_table_stats(report.table_stats, format),
    ]
    for section, error in sorted(report.errors.items()):
        sections.append(f"⚠ {section} unavailable: {error}")
    return "\n\n".join(sections)

"""
dbsense CLI - index health and maintenance for PostgreSQL.

Usage:
    dbsense indexes --dsn postgresql://app@localhost/app
    dbsense fix | psql
    dbsense slow-queries --format json
    dbsense optimize --timeout 600
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from dbsense import __version__
from dbsense.analyzer.models import IndexRecommendation, Severity
from dbsense.config import Config, get_config
from dbsense.db.catalog import QueryStats, TableStats
from dbsense.engine import OptimizationService
from dbsense.exceptions import DBSenseError
from dbsense.output.renderers import (
    TABLE_STATS_HEADER,
    OutputFormat,
    render_database_stats,
    render_health_report,
    render_maintenance_report,
    render_recommendations,
    render_slow_queries,
    render_table_stats,
    table_stats_row,
)

T = TypeVar("T")

app = typer.Typer(
    name="dbsense",
    help="PostgreSQL index health and maintenance",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

DsnOption = Annotated[
    Optional[str],
    typer.Option("--dsn", envvar="DBSENSE_DSN", help="PostgreSQL connection string"),
]
SchemaOption = Annotated[
    Optional[str],
    typer.Option("--schema", "-s", help="Schema to inspect (default: configured schema)"),
]
FormatOption = Annotated[
    OutputFormat,
    typer.Option("--format", "-f", help="Output format"),
]
TimeoutOption = Annotated[
    Optional[float],
    typer.Option("--timeout", "-t", help="Give up after this many seconds"),
]

SEVERITY_STYLES = {
    Severity.CRITICAL: "red bold",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"dbsense version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)"),
    ] = "WARNING",
) -> None:
    """dbsense - PostgreSQL index health and maintenance."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _resolve_config(dsn: str | None, schema: str | None) -> Config:
    config = get_config()
    updates: dict[str, object] = {}
    if dsn:
        updates["dsn"] = dsn
    if schema:
        updates["schema_name"] = schema
    return config.model_copy(update=updates) if updates else config


async def _connect(config: Config) -> OptimizationService:
    return await OptimizationService.connect(config=config)


def _run(
    dsn: str | None,
    schema: str | None,
    action: Callable[[OptimizationService], Awaitable[T]],
) -> T:
    """Open a service, run one operation, close the service."""
    config = _resolve_config(dsn, schema)

    async def runner() -> T:
        service = await _connect(config)
        try:
            return await action(service)
        finally:
            await service.close()

    try:
        return asyncio.run(runner())
    except DBSenseError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1)


def _print_recommendations(recommendations: list[IndexRecommendation]) -> None:
    if not recommendations:
        console.print(Panel(
            "[green]No index recommendations![/green]",
            title="dbsense",
            border_style="green",
        ))
        return

    table = Table(title=f"{len(recommendations)} index recommendation(s)")
    table.add_column("Severity")
    table.add_column("Type")
    table.add_column("Table")
    table.add_column("Index / Column")
    table.add_column("Action")
    for rec in sorted(recommendations):
        style = SEVERITY_STYLES[rec.severity]
        target = rec.index or rec.column or ""
        if rec.related_index:
            target += f", {rec.related_index}"
        table.add_row(
            f"[{style}]{rec.severity.value.upper()}[/{style}]",
            rec.type.value,
            rec.table,
            target,
            rec.action,
        )
    console.print(table)


def _print_slow_queries(queries: list[QueryStats]) -> None:
    if not queries:
        console.print("[green]No slow queries.[/green]")
        return

    table = Table(title=f"{len(queries)} slow quer{'y' if len(queries) == 1 else 'ies'}")
    table.add_column("Mean (ms)", justify="right")
    table.add_column("Calls", justify="right")
    table.add_column("Query", overflow="fold")
    for q in queries:
        table.add_row(f"{q.mean_time_ms:,.1f}", f"{q.calls:,}", q.query)
    console.print(table)


def _print_table_stats(stats: dict[str, TableStats]) -> None:
    table = Table(title="Table statistics")
    for column in TABLE_STATS_HEADER:
        table.add_column(column, justify="left" if column == "Table" else "right")
    for name in sorted(stats):
        table.add_row(*table_stats_row(stats[name]))
    console.print(table)


@app.command()
def indexes(
    dsn: DsnOption = None,
    schema: SchemaOption = None,
    output_format: FormatOption = OutputFormat.TEXT,
    timeout: TimeoutOption = None,
) -> None:
    """
    Report unused, duplicate and missing foreign-key indexes.

    Examples:

        $ dbsense indexes --dsn postgresql://app@localhost/app
        $ dbsense indexes --format markdown > INDEXES.md
    """
    recommendations = _run(dsn, schema, lambda s: s.analyze_indexes(timeout=timeout))

    if output_format == OutputFormat.TEXT:
        _print_recommendations(recommendations)
    else:
        typer.echo(render_recommendations(recommendations, output_format))


@app.command()
def fix(
    dsn: DsnOption = None,
    schema: SchemaOption = None,
    timeout: TimeoutOption = None,
) -> None:
    """
    Output only the SQL statements for actionable recommendations.

    Examples:

        $ dbsense fix > fixes.sql
        $ psql < fixes.sql
    """
    recommendations = _run(dsn, schema, lambda s: s.analyze_indexes(timeout=timeout))

    for rec in sorted(recommendations):
        if rec.sql:
            typer.echo(f"-- {rec.description}")
            typer.echo(f"{rec.sql};")


@app.command("slow-queries")
def slow_queries(
    dsn: DsnOption = None,
    schema: SchemaOption = None,
    output_format: FormatOption = OutputFormat.TEXT,
    timeout: TimeoutOption = None,
) -> None:
    """List the slowest statements from pg_stat_statements."""
    queries = _run(dsn, schema, lambda s: s.analyze_slow_queries(timeout=timeout))

    if output_format == OutputFormat.TEXT:
        _print_slow_queries(queries)
    else:
        typer.echo(render_slow_queries(queries, output_format))


@app.command()
def tables(
    dsn: DsnOption = None,
    schema: SchemaOption = None,
    output_format: FormatOption = OutputFormat.TEXT,
    timeout: TimeoutOption = None,
) -> None:
    """Show live/dead tuples and vacuum/analyze times per table."""
    stats = _run(dsn, schema, lambda s: s.get_table_stats(timeout=timeout))

    if output_format == OutputFormat.TEXT:
        _print_table_stats(stats)
    else:
        typer.echo(render_table_stats(stats, output_format))


@app.command()
def stats(
    dsn: DsnOption = None,
    schema: SchemaOption = None,
    output_format: FormatOption = OutputFormat.TEXT,
    timeout: TimeoutOption = None,
) -> None:
    """Show table sizes and per-index usage."""
    database_stats = _run(dsn, schema, lambda s: s.get_database_stats(timeout=timeout))
    typer.echo(render_database_stats(database_stats, output_format))


@app.command()
def health(
    dsn: DsnOption = None,
    schema: SchemaOption = None,
    output_format: FormatOption = OutputFormat.TEXT,
    timeout: TimeoutOption = None,
) -> None:
    """Run every read-only analysis in one report."""
    report = _run(dsn, schema, lambda s: s.health_report(timeout=timeout))
    typer.echo(render_health_report(report, output_format))

    if not report.is_complete:
        raise typer.Exit(code=2)


@app.command()
def optimize(
    dsn: DsnOption = None,
    schema: SchemaOption = None,
    output_format: FormatOption = OutputFormat.TEXT,
    timeout: TimeoutOption = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
) -> None:
    """
    Run ANALYZE, VACUUM and reindex bloated tables.

    Examples:

        $ dbsense optimize --yes --timeout 900
    """
    if not yes:
        typer.confirm("Run ANALYZE, VACUUM and REINDEX against the database?", abort=True)

    report = _run(dsn, schema, lambda s: s.optimize_database(timeout=timeout))

    if output_format == OutputFormat.TEXT:
        console.print(render_maintenance_report(report), markup=False, highlight=False)
    else:
        typer.echo(render_maintenance_report(report, output_format))


if __name__ == "__main__":
    app()

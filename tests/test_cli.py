"""Tests for the dbsense CLI."""

import json

import pytest
from typer.testing import CliRunner

from dbsense import __version__
from dbsense.cli import main as cli_main
from dbsense.cli.main import app
from dbsense.db import catalog
from dbsense.db import executor as executor_module
from dbsense.engine import OptimizationService

from fakes import catalog_executor, fk_row, index_row, query_row, table_row, usage_row

runner = CliRunner()


@pytest.fixture
def executor():
    return catalog_executor(
        indexes=[index_row("orders", "idx_orders_status", ["status"])],
        usage=[usage_row("orders", "idx_orders_status", 0)],
        foreign_keys=[fk_row("orders", "customer_id", "customers")],
        tables=[table_row("events", live=1000, dead=250)],
        queries=[query_row("SELECT * FROM orders", 1500.0)],
        sizes={"orders": 65536},
    )


@pytest.fixture
def connected(monkeypatch, executor):
    """Route every CLI command to a service over the fake executor."""
    configs = []

    async def fake_connect(config):
        configs.append(config)
        return OptimizationService(executor, config)

    monkeypatch.setattr(cli_main, "_connect", fake_connect)
    return configs


class TestCli:
    """Tests for CLI commands."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_indexes_json(self, connected):
        result = runner.invoke(app, ["indexes", "--format", "json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert {d["type"] for d in data} == {"unused_index", "missing_fk_index"}

    def test_indexes_text(self, connected):
        result = runner.invoke(app, ["indexes"])

        assert result.exit_code == 0
        assert "2 index recommendation(s)" in result.output

    def test_fix_prints_only_sql(self, connected):
        result = runner.invoke(app, ["fix"])

        assert result.exit_code == 0
        statements = [line for line in result.output.splitlines() if not line.startswith("--")]
        assert statements == [
            'CREATE INDEX CONCURRENTLY "idx_orders_customer_id" ON "public"."orders" ("customer_id");',
            'DROP INDEX CONCURRENTLY IF EXISTS "public"."idx_orders_status";',
        ]

    def test_slow_queries_json(self, connected):
        result = runner.invoke(app, ["slow-queries", "-f", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output)[0]["query"] == "SELECT * FROM orders"

    def test_tables_json(self, connected):
        result = runner.invoke(app, ["tables", "--format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["events"]["dead_ratio"] == 0.25

    def test_stats_json(self, connected):
        result = runner.invoke(app, ["stats", "--format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["total_size_bytes"] == 65536

    def test_schema_and_dsn_options(self, connected):
        result = runner.invoke(
            app, ["tables", "--dsn", "postgresql://x@y/z", "--schema", "billing", "-f", "json"]
        )

        assert result.exit_code == 0
        assert connected[0].dsn == "postgresql://x@y/z"
        assert connected[0].schema_name == "billing"

    def test_optimize_with_yes(self, connected, executor):
        result = runner.invoke(app, ["optimize", "--yes", "--format", "json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["rebuilt_tables"] == ["events"]
        assert executor.statements[:2] == ["ANALYZE", "VACUUM"]

    def test_optimize_declined(self, connected, executor):
        result = runner.invoke(app, ["optimize"], input="n\n")

        assert result.exit_code != 0
        assert executor.statements == []

    def test_health_exit_code_when_incomplete(self, connected, executor):
        executor.fetch_failures[catalog.QUERY_STATISTICS_SQL] = RuntimeError("extension missing")

        result = runner.invoke(app, ["health", "--format", "json"])

        assert result.exit_code == 2
        assert "slow_queries" in json.loads(result.output)["errors"]

    def test_engine_error_exits_with_one(self, connected, executor):
        executor.fetch_failures[catalog.LIST_INDEXES_SQL] = OSError("connection refused")

        result = runner.invoke(app, ["indexes"])

        assert result.exit_code == 1

    def test_unreachable_database_exits_with_one(self, monkeypatch):
        """A refused connection is reported as an error, not a traceback."""

        async def refuse(*args, **kwargs):
            raise OSError("Connect call failed ('127.0.0.1', 5432)")

        monkeypatch.setattr(executor_module.asyncpg, "create_pool", refuse)

        result = runner.invoke(app, ["indexes", "--dsn", "postgresql://app@localhost/app"])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Could not connect to the database" in result.output

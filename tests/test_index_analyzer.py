"""Tests for the index recommendation passes."""

import logging

import pytest

from dbsense.analyzer import indexes as indexes_module
from dbsense.analyzer.indexes import (
    IndexAnalyzer,
    find_duplicate_indexes,
    find_missing_fk_indexes,
    find_unused_indexes,
    fk_index_name,
    group_foreign_keys,
)
from dbsense.analyzer.models import IndexRecommendation, RecommendationType, Severity
from dbsense.db import catalog
from dbsense.db.catalog import CatalogReader, ForeignKey, IndexInfo
from dbsense.exceptions import CatalogReadError

from fakes import catalog_executor, fk_row, index_row, usage_row


def make_analyzer(**catalog_kwargs) -> tuple[IndexAnalyzer, object]:
    executor = catalog_executor(**catalog_kwargs)
    return IndexAnalyzer(CatalogReader(executor)), executor


def of_type(recommendations, rec_type):
    return [r for r in recommendations if r.type == rec_type]


class TestUnusedIndexes:
    """Tests for the unused-index pass."""

    def test_primary_key_never_flagged(self):
        """A primary key with zero scans produces nothing."""
        indexes = [IndexInfo(table="users", name="pk_users", columns=("id",), is_unique=True, is_primary=True)]

        assert find_unused_indexes(indexes, {("users", "pk_users"): 0}) == []

    def test_flags_index_with_zero_scans(self):
        indexes = [IndexInfo(table="orders", name="idx_orders_status", columns=("status",))]

        [rec] = find_unused_indexes(indexes, {("orders", "idx_orders_status"): 0})

        assert rec.type == RecommendationType.UNUSED_INDEX
        assert rec.severity == Severity.MEDIUM
        assert rec.table == "orders"
        assert rec.index == "idx_orders_status"
        assert rec.sql == 'DROP INDEX CONCURRENTLY IF EXISTS "public"."idx_orders_status"'

    def test_ignores_used_indexes(self):
        indexes = [IndexInfo(table="orders", name="idx_orders_status", columns=("status",))]

        assert find_unused_indexes(indexes, {("orders", "idx_orders_status"): 1}) == []

    def test_ignores_indexes_without_usage_entry(self):
        """No counter is not the same as zero scans."""
        indexes = [IndexInfo(table="orders", name="idx_orders_status", columns=("status",))]

        assert find_unused_indexes(indexes, {}) == []

    def test_unique_index_gets_no_drop_statement(self):
        """Dropping a unique index would drop a constraint too."""
        indexes = [IndexInfo(table="users", name="users_email_key", columns=("email",), is_unique=True)]

        [rec] = find_unused_indexes(indexes, {("users", "users_email_key"): 0})

        assert rec.sql is None
        assert "uniqueness" in rec.action

    def test_same_index_name_on_two_tables(self):
        """Usage is looked up per table, not by bare index name."""
        indexes = [
            IndexInfo(table="orders", name="idx_created", columns=("created_at",)),
            IndexInfo(table="invoices", name="idx_created", columns=("created_at",)),
        ]
        usage = {("orders", "idx_created"): 0, ("invoices", "idx_created"): 99}

        recs = find_unused_indexes(indexes, usage)

        assert [(r.table, r.index) for r in recs] == [("orders", "idx_created")]


class TestDuplicateIndexes:
    """Tests for the duplicate-index pass."""

    def test_pair_with_identical_columns(self):
        """One recommendation naming both indexes, older one first."""
        indexes = [
            IndexInfo(table="orders", name="idx_b", columns=("customer_id",), oid=200),
            IndexInfo(table="orders", name="idx_a", columns=("customer_id",), oid=100),
        ]

        [rec] = find_duplicate_indexes(indexes)

        assert rec.type == RecommendationType.DUPLICATE_INDEX
        assert rec.severity == Severity.MEDIUM
        assert (rec.index, rec.related_index) == ("idx_a", "idx_b")
        assert "idx_a" in rec.action and "idx_b" in rec.action
        assert rec.sql is None

    def test_column_order_matters(self):
        indexes = [
            IndexInfo(table="orders", name="idx_ab", columns=("a", "b")),
            IndexInfo(table="orders", name="idx_ba", columns=("b", "a")),
        ]

        assert find_duplicate_indexes(indexes) == []

    def test_prefix_is_not_a_duplicate(self):
        indexes = [
            IndexInfo(table="orders", name="idx_a", columns=("a",)),
            IndexInfo(table="orders", name="idx_ab", columns=("a", "b")),
        ]

        assert find_duplicate_indexes(indexes) == []

    def test_different_tables_are_not_duplicates(self):
        indexes = [
            IndexInfo(table="orders", name="idx_orders_a", columns=("a",)),
            IndexInfo(table="invoices", name="idx_invoices_a", columns=("a",)),
        ]

        assert find_duplicate_indexes(indexes) == []

    def test_three_way_group_reports_every_pair_once(self):
        indexes = [
            IndexInfo(table="t", name=name, columns=("a",), oid=oid)
            for name, oid in (("i1", 1), ("i2", 2), ("i3", 3))
        ]

        recs = find_duplicate_indexes(indexes)

        assert [(r.index, r.related_index) for r in recs] == [("i1", "i2"), ("i1", "i3"), ("i2", "i3")]


class TestFkIndexName:
    """Tests for generated FK index names."""

    def test_deterministic(self):
        assert fk_index_name("orders", "customer_id") == "idx_orders_customer_id"

    def test_composite_columns(self):
        assert fk_index_name("order_lines", ["order_id", "line_no"]) == "idx_order_lines_order_id_line_no"

    def test_truncated_to_identifier_limit(self):
        name = fk_index_name("t" * 50, "c" * 50)

        assert len(name.encode("utf-8")) == 63

    def test_long_names_sharing_a_prefix_stay_distinct(self):
        """Cut names get a hash of the full name."""
        table = "customer_subscription_billing_events"
        first = fk_index_name(table, "referencing_payment_method_identifier_primary")
        second = fk_index_name(table, "referencing_payment_method_identifier_backup")

        assert first != second
        assert first[:40] == second[:40]

    def test_limit_counts_bytes_not_characters(self):
        name = fk_index_name("kunden_" + "ü" * 30, "konto_id")

        assert len(name.encode("utf-8")) <= 63
        assert "�" not in name


class TestMissingFkIndexes:
    """Tests for per-constraint foreign-key coverage."""

    def fk(self, column, constraint="fk_ol", referenced_column="id"):
        return ForeignKey("order_lines", column, "orders", referenced_column, constraint)

    def test_composite_fk_covered_by_matching_index(self):
        """A two-column FK is served by an index on the same two columns."""
        fks = [self.fk("order_id"), self.fk("line_no", referenced_column="line_no")]
        indexes = [IndexInfo(table="order_lines", name="idx_ol_order", columns=("order_id", "line_no"))]

        assert find_missing_fk_indexes(fks, indexes) == []

    def test_composite_fk_covered_in_any_prefix_order(self):
        fks = [self.fk("order_id"), self.fk("line_no")]
        indexes = [
            IndexInfo(table="order_lines", name="idx_ol", columns=("line_no", "order_id", "sku")),
        ]

        assert find_missing_fk_indexes(fks, indexes) == []

    def test_composite_fk_with_partial_prefix_is_one_recommendation(self):
        """An index on the first FK column only does not serve the constraint."""
        fks = [self.fk("order_id"), self.fk("line_no", referenced_column="line_no")]
        indexes = [IndexInfo(table="order_lines", name="idx_ol_order", columns=("order_id",))]

        [rec] = find_missing_fk_indexes(fks, indexes)

        assert rec.column == "order_id, line_no"
        assert rec.description == (
            "Foreign key order_lines(order_id, line_no) references "
            "orders(id, line_no) but has no index"
        )
        assert rec.sql == (
            'CREATE INDEX CONCURRENTLY "idx_order_lines_order_id_line_no" '
            'ON "public"."order_lines" ("order_id", "line_no")'
        )

    def test_invalid_index_does_not_count(self):
        """A failed CREATE INDEX CONCURRENTLY leaves an invalid index behind."""
        fks = [self.fk("order_id")]
        indexes = [
            IndexInfo(table="order_lines", name="idx_ol_order", columns=("order_id",), is_valid=False),
        ]

        assert len(find_missing_fk_indexes(fks, indexes)) == 1

    def test_partial_index_does_not_count(self):
        fks = [self.fk("order_id")]
        indexes = [
            IndexInfo(table="order_lines", name="idx_ol_open", columns=("order_id",), is_partial=True),
        ]

        assert len(find_missing_fk_indexes(fks, indexes)) == 1

    def test_same_columns_in_two_constraints_reported_once(self):
        fks = [self.fk("order_id", constraint="fk_a"), self.fk("order_id", constraint="fk_b")]

        assert len(find_missing_fk_indexes(fks, [])) == 1

    def test_constraints_grouped_in_column_order(self):
        fks = [self.fk("order_id"), self.fk("line_no"), self.fk("sku", constraint="fk_sku")]

        groups = group_foreign_keys(fks)

        assert [[fk.column for fk in group] for group in groups] == [["order_id", "line_no"], ["sku"]]


class TestIndexAnalyzer:
    """Tests for the full analysis over a fake catalog."""

    @pytest.mark.asyncio
    async def test_example_catalog(self):
        """Primary key, unused index, unindexed FK and a duplicate pair."""
        analyzer, _ = make_analyzer(
            indexes=[
                index_row("users", "pk_users", ["id"], oid=1, is_primary=True),
                index_row("orders", "idx_orders_status", ["status"], oid=2),
                index_row("invoices", "idx_invoices_customer", ["customer_id"], oid=3),
                index_row("invoices", "idx_invoices_customer_2", ["customer_id"], oid=4),
            ],
            usage=[
                usage_row("users", "pk_users", 0),
                usage_row("orders", "idx_orders_status", 0),
                usage_row("invoices", "idx_invoices_customer", 12),
                usage_row("invoices", "idx_invoices_customer_2", 3),
            ],
            foreign_keys=[
                fk_row("orders", "customer_id", "customers"),
                fk_row("invoices", "customer_id", "customers"),
            ],
        )

        recs = await analyzer.analyze_indexes()

        [unused] = of_type(recs, RecommendationType.UNUSED_INDEX)
        assert (unused.table, unused.index) == ("orders", "idx_orders_status")

        [missing] = of_type(recs, RecommendationType.MISSING_FK_INDEX)
        assert missing.severity == Severity.HIGH
        assert (missing.table, missing.column) == ("orders", "customer_id")
        assert missing.sql == (
            'CREATE INDEX CONCURRENTLY "idx_orders_customer_id" '
            'ON "public"."orders" ("customer_id")'
        )

        [duplicate] = of_type(recs, RecommendationType.DUPLICATE_INDEX)
        assert (duplicate.index, duplicate.related_index) == (
            "idx_invoices_customer", "idx_invoices_customer_2"
        )

    @pytest.mark.asyncio
    async def test_fk_covered_only_as_second_column_is_missing(self):
        """An index on (created_at, customer_id) does not serve the FK."""
        analyzer, _ = make_analyzer(
            indexes=[index_row("orders", "idx_orders_created_customer", ["created_at", "customer_id"])],
            usage=[usage_row("orders", "idx_orders_created_customer", 5)],
            foreign_keys=[fk_row("orders", "customer_id", "customers")],
        )

        recs = await analyzer.analyze_indexes()

        assert [(r.type, r.column) for r in recs] == [
            (RecommendationType.MISSING_FK_INDEX, "customer_id")
        ]

    @pytest.mark.asyncio
    async def test_fk_with_leading_index_is_fine(self):
        analyzer, _ = make_analyzer(
            indexes=[index_row("orders", "idx_orders_customer_created", ["customer_id", "created_at"])],
            usage=[usage_row("orders", "idx_orders_customer_created", 5)],
            foreign_keys=[fk_row("orders", "customer_id", "customers")],
        )

        assert await analyzer.analyze_indexes() == []

    @pytest.mark.asyncio
    async def test_repeated_calls_are_equal(self):
        """Unchanged catalog, identical recommendations."""
        analyzer, _ = make_analyzer(
            indexes=[
                index_row("orders", "idx_orders_status", ["status"], oid=2),
                index_row("orders", "idx_orders_status_dup", ["status"], oid=3),
            ],
            usage=[
                usage_row("orders", "idx_orders_status", 0),
                usage_row("orders", "idx_orders_status_dup", 0),
            ],
            foreign_keys=[fk_row("orders", "customer_id", "customers")],
        )

        first = await analyzer.analyze_indexes()
        second = await analyzer.analyze_indexes()

        assert first == second
        assert len(first) == 4

    @pytest.mark.asyncio
    async def test_base_snapshot_failure_is_fatal(self):
        analyzer, _ = make_analyzer(
            fetch_failures={catalog.LIST_INDEXES_SQL: OSError("boom")},
        )

        with pytest.raises(CatalogReadError) as exc_info:
            await analyzer.analyze_indexes()

        assert exc_info.value.operation == "list_indexes"

    @pytest.mark.asyncio
    async def test_usage_failure_is_fatal(self):
        analyzer, _ = make_analyzer(
            indexes=[index_row("orders", "idx_orders_status", ["status"])],
            fetch_failures={catalog.INDEX_USAGE_SQL: OSError("boom")},
        )

        with pytest.raises(CatalogReadError):
            await analyzer.analyze_indexes()

    @pytest.mark.asyncio
    async def test_fk_pass_failure_is_logged_and_omitted(self, caplog):
        """The other passes still report when the FK metadata read fails."""
        analyzer, _ = make_analyzer(
            indexes=[index_row("orders", "idx_orders_status", ["status"])],
            usage=[usage_row("orders", "idx_orders_status", 0)],
            fetch_failures={catalog.FOREIGN_KEYS_SQL: OSError("permission denied")},
        )

        with caplog.at_level(logging.WARNING):
            recs = await analyzer.analyze_indexes()

        assert [r.type for r in recs] == [RecommendationType.UNUSED_INDEX]
        assert "missing_fk_index" in caplog.text
        assert "permission denied" in caplog.text

    @pytest.mark.asyncio
    async def test_composite_fk_with_exact_index(self):
        """Every column of a covered composite FK is left alone."""
        analyzer, _ = make_analyzer(
            indexes=[index_row("order_lines", "idx_ol_order", ["order_id", "line_no"])],
            usage=[usage_row("order_lines", "idx_ol_order", 8)],
            foreign_keys=[
                fk_row("order_lines", "order_id", "orders", "id", constraint="fk_ol"),
                fk_row("order_lines", "line_no", "orders", "line_no", constraint="fk_ol"),
            ],
        )

        assert await analyzer.analyze_indexes() == []

    @pytest.mark.asyncio
    async def test_invalid_index_leaves_fk_unsupported(self):
        analyzer, _ = make_analyzer(
            indexes=[index_row("orders", "idx_orders_customer", ["customer_id"], is_valid=False)],
            usage=[usage_row("orders", "idx_orders_customer", 1)],
            foreign_keys=[fk_row("orders", "customer_id", "customers")],
        )

        recs = await analyzer.analyze_indexes()

        assert [r.type for r in recs] == [RecommendationType.MISSING_FK_INDEX]

    @pytest.mark.asyncio
    async def test_duplicate_pass_failure_is_logged_and_omitted(self, caplog, monkeypatch):
        """Unused and missing-FK results survive a failing duplicate pass."""
        def broken(indexes):
            raise RuntimeError("unexpected column list")

        monkeypatch.setattr(indexes_module, "find_duplicate_indexes", broken)
        analyzer, _ = make_analyzer(
            indexes=[
                index_row("orders", "idx_orders_status", ["status"], oid=1),
                index_row("orders", "idx_orders_status_2", ["status"], oid=2),
            ],
            usage=[
                usage_row("orders", "idx_orders_status", 0),
                usage_row("orders", "idx_orders_status_2", 4),
            ],
            foreign_keys=[fk_row("orders", "customer_id", "customers")],
        )

        with caplog.at_level(logging.WARNING):
            recs = await analyzer.analyze_indexes()

        assert sorted(r.type.value for r in recs) == ["missing_fk_index", "unused_index"]
        assert "duplicate_index" in caplog.text
        assert "unexpected column list" in caplog.text


class TestRecommendationModel:
    """Tests for the recommendation model."""

    def test_sorted_by_severity_first(self):
        medium = IndexRecommendation(
            type=RecommendationType.UNUSED_INDEX, severity=Severity.MEDIUM,
            table="a", index="i", description="d", action="a",
        )
        high = IndexRecommendation(
            type=RecommendationType.MISSING_FK_INDEX, severity=Severity.HIGH,
            table="z", column="c", description="d", action="a",
        )

        assert sorted([medium, high]) == [high, medium]

    def test_frozen(self):
        rec = IndexRecommendation(
            type=RecommendationType.UNUSED_INDEX, severity=Severity.MEDIUM,
            table="a", index="i", description="d", action="a",
        )

        with pytest.raises(Exception):
            rec.table = "b"

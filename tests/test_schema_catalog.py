"""
Tests for the Schema Catalog.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import create_engine, text

from semantic_core.catalog import (
    ColumnInfo,
    RelationshipType,
    SchemaCatalog,
    SchemaDefinition,
    TableDefinition,
    TableRelationship,
)


class TestIntrospection:
    """Test table, column and foreign key discovery."""

    def test_tables_sorted_by_name(self, catalog):
        assert catalog.get_table_names() == ["audit_log", "customers", "order_notes", "orders", "products"]

    def test_columns_and_keys(self, catalog):
        orders = catalog.get_table("orders")

        assert orders.primary_key == ["id"]
        assert orders.column_names == ["id", "customer_id", "product_id", "total", "created_at"]
        customer_id = orders.get_column("customer_id")
        assert customer_id.foreign_key.table == "customers"
        assert customer_id.foreign_key.column == "id"
        assert orders.get_column("id").is_primary_key
        assert not orders.get_column("total").is_primary_key

    def test_unknown_table_returns_none(self, catalog):
        assert catalog.get_table("missing") is None

    def test_one_relationship_per_foreign_key(self, catalog):
        relationships = catalog.get_schema().relationships

        assert {(r.from_table, r.from_column, r.to_table) for r in relationships} == {
            ("order_notes", "order_id", "orders"),
            ("orders", "customer_id", "customers"),
            ("orders", "product_id", "products"),
        }
        assert all(r.relationship_type == RelationshipType.ONE_TO_MANY for r in relationships)

    def test_adjacency_holds_both_directions(self, catalog):
        adjacency = catalog.get_schema().adjacency

        assert [r.to_table for r in adjacency["customers"]] == ["orders"]
        assert sorted(r.to_table for r in adjacency["orders"]) == ["customers", "order_notes", "products"]
        assert adjacency["audit_log"] == []

    def test_relationships_for_table(self, catalog):
        relationships = catalog.get_relationships_for("orders")

        assert all(r.from_table == "orders" for r in relationships)
        assert sorted(r.to_table for r in relationships) == ["customers", "order_notes", "products"]
        assert catalog.get_relationships_for("missing") == []

    def test_junction_table_is_many_to_many(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'tags.db'}", future=True)
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE products (id INTEGER PRIMARY KEY)"))
            conn.execute(text("CREATE TABLE tags (id INTEGER PRIMARY KEY)"))
            conn.execute(text(
                "CREATE TABLE product_tags ("
                " product_id INTEGER REFERENCES products(id),"
                " tag_id INTEGER REFERENCES tags(id),"
                " PRIMARY KEY (product_id, tag_id))"
            ))
            conn.execute(text(
                "CREATE TABLE profiles (customer_id INTEGER PRIMARY KEY REFERENCES products(id))"
            ))

        schema = SchemaCatalog({}, engine).get_schema()
        types = {(r.from_table, r.from_column): r.relationship_type for r in schema.relationships}

        assert types[("product_tags", "product_id")] == RelationshipType.MANY_TO_MANY
        assert types[("product_tags", "tag_id")] == RelationshipType.MANY_TO_MANY
        assert types[("profiles", "customer_id")] == RelationshipType.ONE_TO_ONE

    def test_find_tables_with_column(self, catalog):
        assert catalog.find_tables_with_column("customer_id") == ["orders"]
        assert catalog.find_tables_with_column("NAME") == ["customers", "products"]
        assert catalog.find_tables_with_column("nothing") == []


class TestJoinPaths:
    """Test BFS join path discovery."""

    def test_same_table_is_zero_hops(self, catalog):
        assert catalog.get_join_path("orders", "orders") == []

    def test_direct_foreign_key(self, catalog):
        path = catalog.get_join_path("orders", "customers")

        assert len(path) == 1
        assert (path[0].from_table, path[0].from_column, path[0].to_table, path[0].to_column) == (
            "orders", "customer_id", "customers", "id"
        )

    def test_reverse_direction_is_oriented(self, catalog):
        path = catalog.get_join_path("customers", "orders")

        assert len(path) == 1
        assert (path[0].from_table, path[0].from_column, path[0].to_table, path[0].to_column) == (
            "customers", "id", "orders", "customer_id"
        )

    def test_multi_hop_path_is_shortest(self, catalog):
        path = catalog.get_join_path("customers", "products")

        assert [hop.to_table for hop in path] == ["orders", "products"]
        assert path[0].from_table == "customers"
        assert path[-1].to_table == "products"

    def test_path_chains_hops(self, catalog):
        path = catalog.get_join_path("order_notes", "customers")

        assert len(path) == 2
        for previous, current in zip(path, path[1:]):
            assert previous.to_table == current.from_table

    def test_disconnected_tables_have_no_path(self, catalog):
        assert catalog.get_join_path("customers", "audit_log") is None

    def test_unknown_table_has_no_path(self, catalog):
        assert catalog.get_join_path("customers", "missing") is None
        assert catalog.get_join_path("missing", "missing") is None

    def test_shortcut_beats_longer_route(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'shortcut.db'}", future=True)
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE customers (id INTEGER PRIMARY KEY)"))
            conn.execute(text("CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER REFERENCES customers(id))"))
            conn.execute(text(
                "CREATE TABLE invoices ("
                " id INTEGER PRIMARY KEY,"
                " order_id INTEGER REFERENCES orders(id),"
                " customer_id INTEGER REFERENCES customers(id))"
            ))
        catalog = SchemaCatalog({}, engine)

        forward = catalog.get_join_path("invoices", "customers")
        backward = catalog.get_join_path("customers", "invoices")

        assert [(hop.from_table, hop.from_column, hop.to_table) for hop in forward] == [
            ("invoices", "customer_id", "customers")
        ]
        assert [(hop.from_table, hop.to_table, hop.to_column) for hop in backward] == [
            ("customers", "invoices", "customer_id")
        ]

    def test_diamond_tie_follows_discovery_order(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'diamond.db'}", future=True)
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE customers (id INTEGER PRIMARY KEY)"))
            conn.execute(text("CREATE TABLE regions (id INTEGER PRIMARY KEY)"))
            for name in ("shipping_addresses", "billing_addresses"):
                conn.execute(text(
                    f"CREATE TABLE {name} ("
                    " id INTEGER PRIMARY KEY,"
                    " customer_id INTEGER REFERENCES customers(id),"
                    " region_id INTEGER REFERENCES regions(id))"
                ))
        catalog = SchemaCatalog({}, engine)

        # Tables are introspected by name, so billing_addresses is discovered first
        assert [hop.to_table for hop in catalog.get_join_path("customers", "regions")] == [
            "billing_addresses", "regions"
        ]
        assert [hop.to_table for hop in catalog.get_join_path("regions", "customers")] == [
            "billing_addresses", "customers"
        ]

    def test_diamond_tie_uses_relationship_order(self, engine):
        tables = [
            TableDefinition(name=name, columns=[ColumnInfo(name="id", data_type="INTEGER")], primary_key=["id"])
            for name in ("a_side", "customers", "regions", "z_side")
        ]
        relationships = [
            TableRelationship("z_side", "customer_id", "customers", "id"),
            TableRelationship("z_side", "region_id", "regions", "id"),
            TableRelationship("a_side", "customer_id", "customers", "id"),
            TableRelationship("a_side", "region_id", "regions", "id"),
        ]
        catalog = SchemaCatalog({}, engine)

        with patch.object(catalog, "_introspect", return_value=SchemaDefinition.build(tables, relationships)):
            path = catalog.get_join_path("customers", "regions")

        assert [(hop.from_table, hop.to_table) for hop in path] == [("customers", "z_side"), ("z_side", "regions")]

    def test_generate_join_query(self, catalog):
        sql = catalog.generate_join_query(["customers", "products"])

        assert sql == (
            "SELECT customers.*, orders.*, products.* FROM customers "
            "LEFT JOIN orders ON customers.id = orders.customer_id "
            "LEFT JOIN products ON orders.product_id = products.id"
        )

    def test_generate_join_query_runs(self, catalog, engine):
        sql = catalog.generate_join_query(["orders", "customers"], columns=["orders.id", "customers.name"])

        with engine.connect() as conn:
            rows = conn.execute(text(sql)).all()
        assert len(rows) == 4

    def test_generate_join_query_unreachable(self, catalog):
        assert catalog.generate_join_query(["customers", "audit_log"]) is None
        assert catalog.generate_join_query([]) is None


class TestRowCounts:
    """Test row counting."""

    def test_counts_rows(self, catalog):
        assert catalog.get_row_count("orders") == 4
        assert catalog.get_row_count("customers") == 3

    def test_unknown_table_counts_zero(self, catalog):
        assert catalog.get_row_count("missing") == 0

    def test_failed_count_returns_zero(self, catalog, engine):
        catalog.get_schema()
        with engine.begin() as conn:
            conn.execute(text("DROP TABLE audit_log"))

        assert catalog.get_row_count("audit_log") == 0

    def test_counts_cached_until_cleared(self, catalog, engine):
        assert catalog.get_row_count("audit_log") == 1
        with engine.begin() as conn:
            conn.execute(text("INSERT INTO audit_log (id, message) VALUES (2, 'again')"))

        assert catalog.get_row_count("audit_log") == 1
        catalog.clear_cache()
        assert catalog.get_row_count("audit_log") == 2

    def test_catalog_overview(self, catalog):
        entries = {entry.table_name: entry for entry in catalog.get_catalog()}

        assert entries["orders"].row_count == 4
        assert entries["orders"].column_count == 5
        assert {r.to_table for r in entries["orders"].foreign_keys} == {"customers", "products"}
        assert {r.from_table for r in entries["customers"].referenced_by} == {"orders"}


class TestCaching:
    """Test TTL caching and stale fallback."""

    def test_same_schema_within_ttl(self, catalog, clock):
        first = catalog.get_schema()
        clock.advance(599)

        assert catalog.get_schema() is first

    def test_refresh_after_ttl(self, catalog, clock, engine):
        first = catalog.get_schema()
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE shipments (id INTEGER PRIMARY KEY)"))
        clock.advance(600)

        second = catalog.get_schema()
        assert second is not first
        assert "shipments" in second.tables

    def test_clear_cache_forces_rebuild(self, catalog, engine):
        first = catalog.get_schema()
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE shipments (id INTEGER PRIMARY KEY)"))

        assert "shipments" not in catalog.get_schema().tables
        catalog.clear_cache()
        assert catalog.get_schema() is not first
        assert catalog.get_table("shipments") is not None

    def test_failed_refresh_keeps_stale_schema(self, catalog, clock):
        first = catalog.get_schema()
        clock.advance(601)

        with patch("semantic_core.catalog.schema_catalog.inspect", side_effect=RuntimeError("connection lost")):
            assert catalog.get_schema() is first

    def test_failed_first_load_returns_empty_schema(self, engine):
        catalog = SchemaCatalog({}, engine)

        with patch("semantic_core.catalog.schema_catalog.inspect", side_effect=RuntimeError("connection lost")):
            schema = catalog.get_schema()
            path = catalog.get_join_path("orders", "orders")

        assert isinstance(schema, SchemaDefinition)
        assert schema.tables == {}
        assert path is None
        # Nothing was cached, so the next call introspects again
        assert catalog.get_join_path("orders", "orders") == []

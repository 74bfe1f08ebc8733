"""
Tests for the Entity Resolver and entity sources.
"""

from unittest.mock import patch

import pytest

from semantic_core.cache import TTLCache
from semantic_core.errors import InvalidRequestError
from semantic_core.semantic import (
    EntityAlias,
    EntitySource,
    EntityResolver,
    MatchType,
    SemanticEntity,
    SQLEntitySource,
    StaticEntitySource,
)
from tests.conftest import ENTITIES


class TestAliasResolution:
    """Test alias lookup."""

    def test_resolves_configured_alias(self, resolver):
        assert resolver.resolve_alias("client").name == "customer"

    def test_alias_lookup_is_case_insensitive(self, resolver):
        assert resolver.resolve_alias("CLIENT") is resolver.resolve_alias("client")
        assert resolver.resolve_alias("  Customer ").name == "customer"

    def test_builtin_aliases(self, resolver):
        assert resolver.resolve_alias("order").name == "order"
        assert resolver.resolve_alias("Product").name == "product"

    def test_unknown_alias(self, resolver):
        assert resolver.resolve_alias("invoice") is None
        assert resolver.resolve_alias("") is None

    def test_last_registration_wins(self, catalog):
        source = StaticEntitySource([
            {"name": "customer", "display_name": "Customer", "source_table": "customers", "aliases": ["account"]},
            {"name": "order", "display_name": "Order", "source_table": "orders", "aliases": ["account"]},
        ])
        resolver = EntityResolver({}, source, catalog)

        assert resolver.resolve_alias("account").name == "order"

    def test_entity_on_unknown_table_is_skipped(self, catalog):
        source = StaticEntitySource(ENTITIES + [
            {"name": "ghost", "display_name": "Ghost", "source_table": "missing_table"},
        ])
        resolver = EntityResolver({}, source, catalog)

        assert resolver.get_entity("ghost") is None
        assert resolver.resolve_alias("ghost") is None
        assert len(resolver.get_all_entities()) == 3


class TestExtraction:
    """Test entity extraction from free text."""

    def test_alias_scenario(self, resolver):
        results = resolver.extract_entities("show our top clients")

        assert len(results) == 1
        assert results[0].entity.name == "customer"
        assert results[0].matched_alias == "client"
        assert results[0].confidence == 0.95
        assert results[0].match_type == MatchType.ALIAS

    def test_exact_match(self, resolver):
        results = resolver.extract_entities("list every customer")

        assert [(r.entity.name, r.confidence, r.match_type) for r in results] == [
            ("customer", 1.0, MatchType.EXACT)
        ]

    def test_one_result_per_entity_keeping_best(self, resolver):
        results = resolver.extract_entities("customer and client orders")

        names = [r.entity.name for r in results]
        assert sorted(names) == ["customer", "order"]
        assert len(names) == len(set(names))
        customer = next(r for r in results if r.entity.name == "customer")
        assert customer.confidence == 1.0
        assert customer.match_type == MatchType.EXACT

    def test_confidences_non_increasing(self, resolver):
        results = resolver.extract_entities("which buyer made a purchase of a product")

        confidences = [r.confidence for r in results]
        assert confidences == sorted(confidences, reverse=True)
        assert results[0].entity.name == "product"

    def test_ties_keep_discovery_order(self, resolver):
        results = resolver.extract_entities("sale for a client")

        assert [r.entity.name for r in results] == ["customer", "order"]
        assert all(r.confidence == 0.95 for r in results)

    def test_fuzzy_fallback(self, resolver):
        results = resolver.extract_entities("custom reports")

        assert len(results) == 1
        assert results[0].entity.name == "customer"
        assert results[0].match_type == MatchType.FUZZY
        assert results[0].confidence == 0.7
        assert results[0].matched_alias == "custom"

    def test_fuzzy_skips_short_tokens(self, resolver):
        assert resolver.extract_entities("pr or cu") == []

    def test_fuzzy_not_used_when_alias_matches(self, resolver):
        results = resolver.extract_entities("client custom")

        assert [r.match_type for r in results] == [MatchType.ALIAS]

    def test_no_matches_is_empty(self, resolver):
        assert resolver.extract_entities("weather today") == []
        assert resolver.extract_entities("") == []
        assert resolver.extract_entities("   ") == []


class TestEntityQueries:
    """Test entity lookups."""

    def test_get_entity(self, resolver):
        entity = resolver.get_entity("customer")

        assert entity.display_name == "Customer"
        assert entity.fields[0].column == "email"
        assert resolver.get_entity("nobody") is None

    def test_get_related(self, resolver):
        assert [e.name for e in resolver.get_related("customer")] == ["order"]
        assert [e.name for e in resolver.get_related("order")] == ["product"]
        assert resolver.get_related("product") == []
        assert resolver.get_related("nobody") == []

    def test_get_entity_by_table(self, resolver):
        assert resolver.get_entity_by_table("orders").name == "order"
        assert resolver.get_entity_by_table("audit_log") is None

    def test_get_entities_by_domain(self, resolver):
        assert [e.name for e in resolver.get_entities_by_domain("sales")] == ["customer", "order"]


class TestCaching:
    """Test TTL refresh and invalidation."""

    def test_loads_once_within_ttl(self, resolver, entity_source, clock):
        with patch.object(entity_source, "load", wraps=entity_source.load) as load:
            resolver.get_all_entities()
            clock.advance(299)
            resolver.extract_entities("client")

        assert load.call_count == 1

    def test_reloads_after_ttl(self, resolver, entity_source, clock):
        with patch.object(entity_source, "load", wraps=entity_source.load) as load:
            resolver.get_all_entities()
            clock.advance(300)
            resolver.get_all_entities()

        assert load.call_count == 2

    def test_clear_cache(self, resolver, entity_source):
        with patch.object(entity_source, "load", wraps=entity_source.load) as load:
            resolver.get_all_entities()
            resolver.clear_cache()
            resolver.get_all_entities()

        assert load.call_count == 2


class TestAdministration:
    """Test entity registration and alias management."""

    def test_register_entity(self, resolver):
        resolver.get_all_entities()
        resolver.register_entity(SemanticEntity(name="audit", display_name="Audit Entry", source_table="audit_log"))

        assert resolver.resolve_alias("audit entry").name == "audit"

    def test_register_duplicate_name_rejected(self, resolver):
        with pytest.raises(InvalidRequestError):
            resolver.register_entity(SemanticEntity(name="customer", display_name="Other", source_table="orders"))

    def test_register_unknown_table_rejected(self, resolver):
        with pytest.raises(InvalidRequestError):
            resolver.register_entity(SemanticEntity(name="ghost", display_name="Ghost", source_table="missing"))

    def test_add_alias(self, resolver):
        assert resolver.resolve_alias("patron") is None

        resolver.add_alias("customer", "Patron")

        assert resolver.resolve_alias("patron").name == "customer"
        assert resolver.extract_entities("top patrons")[0].matched_alias == "patron"

    def test_add_alias_unknown_entity(self, resolver):
        with pytest.raises(InvalidRequestError):
            resolver.add_alias("nobody", "someone")


class TestSQLEntitySource:
    """Test entities stored in the database."""

    @pytest.fixture
    def sql_resolver(self, engine, catalog, clock):
        source = SQLEntitySource(engine)
        source.create_tables()
        return EntityResolver({}, source, catalog, cache=TTLCache(300, clock=clock))

    def test_round_trip(self, sql_resolver):
        assert sql_resolver.get_all_entities() == []

        for data in ENTITIES:
            sql_resolver.register_entity(SemanticEntity.from_dict(data))
        sql_resolver.add_alias("product", "merchandise", alias_type="synonym", confidence=0.9)

        customer = sql_resolver.get_entity("customer")
        assert customer.aliases == ["client", "buyer"]
        assert customer.relationships[0].foreign_key == "customer_id"
        assert customer.domain_owner == "sales"
        assert sql_resolver.resolve_alias("merchandise").name == "product"
        assert [e.name for e in sql_resolver.get_related("customer")] == ["order"]

    def test_alias_for_missing_entity(self, engine):
        source = SQLEntitySource(engine)
        source.create_tables()

        with pytest.raises(KeyError):
            source.add_alias(EntityAlias(entity_name="nobody", alias="x"))

    def test_source_must_implement_writes(self):
        class LoadOnlySource(EntitySource):
            def load(self):
                return [], []

        with pytest.raises(TypeError):
            LoadOnlySource()

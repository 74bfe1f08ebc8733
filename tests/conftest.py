"""
Shared fixtures: a small SQLite sales database and a controllable clock.
"""

import pytest
from sqlalchemy import create_engine, text

from semantic_core.cache import TTLCache
from semantic_core.catalog import SchemaCatalog
from semantic_core.semantic import EntityResolver, StaticEntitySource

SCHEMA = [
    """
    CREATE TABLE customers (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT UNIQUE
    )
    """,
    """
    CREATE TABLE products (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        price NUMERIC
    )
    """,
    """
    CREATE TABLE orders (
        id INTEGER PRIMARY KEY,
        customer_id INTEGER REFERENCES customers(id),
        product_id INTEGER REFERENCES products(id),
        total NUMERIC,
        created_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE order_notes (
        id INTEGER PRIMARY KEY,
        order_id INTEGER REFERENCES orders(id),
        note TEXT
    )
    """,
    """
    CREATE TABLE audit_log (
        id INTEGER PRIMARY KEY,
        message TEXT
    )
    """,
]

ROWS = [
    "INSERT INTO customers (id, name, email) VALUES (1, 'Ada', 'ada@example.com')",
    "INSERT INTO customers (id, name, email) VALUES (2, 'Grace', 'grace@example.com')",
    "INSERT INTO customers (id, name, email) VALUES (3, 'Linus', 'linus@example.com')",
    "INSERT INTO products (id, name, price) VALUES (1, 'Widget', 9.5)",
    "INSERT INTO products (id, name, price) VALUES (2, 'Gadget', 20)",
    "INSERT INTO orders (id, customer_id, product_id, total, created_at) VALUES (1, 1, 1, 9.5, '2024-01-02 10:00:00')",
    "INSERT INTO orders (id, customer_id, product_id, total, created_at) VALUES (2, 1, 2, 20, '2024-01-03 11:00:00')",
    "INSERT INTO orders (id, customer_id, product_id, total, created_at) VALUES (3, 2, 1, 19, '2024-02-01 09:30:00')",
    # customer 99 does not exist
    "INSERT INTO orders (id, customer_id, product_id, total, created_at) VALUES (4, 99, 2, 40, '2024-03-01 08:00:00')",
    "INSERT INTO order_notes (id, order_id, note) VALUES (1, 1, 'gift wrap')",
    "INSERT INTO audit_log (id, message) VALUES (1, 'seeded')",
]

ENTITIES = [
    {
        "name": "customer",
        "display_name": "Customer",
        "source_table": "customers",
        "domain_owner": "sales",
        "label_column": "name",
        "aliases": ["client", "buyer"],
        "weight": 1.0,
        "fields": [{"name": "email", "column": "email", "type": "text", "searchable": True}],
        "relationships": [{"target_entity": "order", "relationship_type": "PLACED", "foreign_key": "customer_id"}],
    },
    {
        "name": "order",
        "display_name": "Order",
        "source_table": "orders",
        "domain_owner": "sales",
        "aliases": ["purchase", "sale"],
        "weight": 0.8,
        "relationships": [{"target_entity": "product", "relationship_type": "CONTAINS"}],
    },
    {
        "name": "product",
        "display_name": "Product",
        "source_table": "products",
        "domain_owner": "catalog",
        "aliases": ["item"],
        "weight": 0.6,
    },
]


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'sales.db'}", future=True)
    with engine.begin() as conn:
        for statement in SCHEMA + ROWS:
            conn.execute(text(statement))
    yield engine
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog(engine, clock):
    return SchemaCatalog({}, engine, cache=TTLCache(600, clock=clock, name="schema catalog"))


@pytest.fixture
def entity_source():
    return StaticEntitySource(ENTITIES)


@pytest.fixture
def resolver(entity_source, catalog, clock):
    return EntityResolver({}, entity_source, catalog, cache=TTLCache(300, clock=clock, name="entity resolver"))

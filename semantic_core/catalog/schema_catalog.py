"""
Schema Catalog for introspecting the relational store and discovering join paths.
"""

import logging
from collections import deque
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from ..cache import TTLCache
from .models import (
    CatalogEntry,
    ColumnInfo,
    ForeignKeyRef,
    RelationshipType,
    SchemaDefinition,
    TableDefinition,
    TableRelationship,
)

logger = logging.getLogger(__name__)


class SchemaCatalog:
    """Typed, cached view of the tables, columns and foreign keys of a relational store."""

    def __init__(self, config: Dict[str, Any], engine: Engine, cache: Optional[TTLCache] = None):
        self.config = config
        self.engine = engine
        self.schema_name = config.get("schema")
        self.cache = cache or TTLCache(
            config.get("cache_ttl_seconds", 600),
            name="schema catalog",
        )
        self._row_counts: Dict[str, int] = {}

    def get_schema(self) -> SchemaDefinition:
        """
        Get the cached schema, introspecting the store if the cache is empty or stale.

        A failed refresh keeps serving the previous schema. If there is none yet,
        an empty schema is returned and nothing is cached.

        Returns:
            SchemaDefinition for the configured database schema
        """
        try:
            return self.cache.get_or_refresh(self._introspect)
        except Exception as e:
            logger.error(f"Schema introspection failed with no cached schema: {e}")
            return SchemaDefinition()

    def _introspect(self) -> SchemaDefinition:
        """Read tables, columns and keys through the SQLAlchemy inspector."""
        inspector = inspect(self.engine)
        table_names = sorted(inspector.get_table_names(schema=self.schema_name))

        tables: List[TableDefinition] = []
        relationships: List[TableRelationship] = []

        for table_name in table_names:
            pk = inspector.get_pk_constraint(table_name, schema=self.schema_name) or {}
            primary_key = list(pk.get("constrained_columns") or [])
            foreign_keys = inspector.get_foreign_keys(table_name, schema=self.schema_name)
            unique_sets = [
                set(uc.get("column_names") or [])
                for uc in inspector.get_unique_constraints(table_name, schema=self.schema_name)
            ]

            fk_targets: Dict[str, ForeignKeyRef] = {}
            table_rels: List[TableRelationship] = []
            for fk in foreign_keys:
                referred_table = fk.get("referred_table")
                for from_col, to_col in zip(fk.get("constrained_columns", []), fk.get("referred_columns", [])):
                    fk_targets[from_col] = ForeignKeyRef(table=referred_table, column=to_col)
                    table_rels.append(TableRelationship(
                        from_table=table_name,
                        from_column=from_col,
                        to_table=referred_table,
                        to_column=to_col,
                    ))

            for rel in table_rels:
                rel.relationship_type = self._classify_relationship(
                    rel, primary_key, unique_sets, list(fk_targets)
                )
            relationships.extend(table_rels)

            columns = []
            for col in inspector.get_columns(table_name, schema=self.schema_name):
                default = col.get("default")
                columns.append(ColumnInfo(
                    name=col["name"],
                    data_type=str(col.get("type")),
                    nullable=bool(col.get("nullable", True)),
                    default=str(default) if default is not None else None,
                    is_primary_key=col["name"] in primary_key,
                    foreign_key=fk_targets.get(col["name"]),
                ))

            tables.append(TableDefinition(name=table_name, columns=columns, primary_key=primary_key))

        self._row_counts = {}
        logger.info(f"Introspected {len(tables)} tables and {len(relationships)} relationships")
        return SchemaDefinition.build(tables, relationships)

    @staticmethod
    def _classify_relationship(
        rel: TableRelationship,
        primary_key: List[str],
        unique_sets: List[Set[str]],
        fk_columns: List[str],
    ) -> RelationshipType:
        """Classify cardinality from key structure, defaulting to one-to-many."""
        pk_set = set(primary_key)
        # Junction table: the primary key is made entirely of two or more FK columns
        if len(fk_columns) >= 2 and pk_set and pk_set.issubset(set(fk_columns)) and rel.from_column in pk_set:
            return RelationshipType.MANY_TO_MANY
        if pk_set == {rel.from_column} or {rel.from_column} in unique_sets:
            return RelationshipType.ONE_TO_ONE
        return RelationshipType.ONE_TO_MANY

    def get_table(self, name: str) -> Optional[TableDefinition]:
        """Get a table definition by name, or None if the catalog does not know it."""
        table = self.get_schema().tables.get(name)
        if table is None:
            logger.debug(f"Table not found in catalog: {name}")
        return table

    def get_table_names(self) -> List[str]:
        return list(self.get_schema().tables.keys())

    def get_relationships_for(self, table_name: str) -> List[TableRelationship]:
        """All foreign keys leaving or entering a table, oriented away from it."""
        return list(self.get_schema().adjacency.get(table_name, []))

    def get_join_path(self, from_table: str, to_table: str) -> Optional[List[TableRelationship]]:
        """
        Find the shortest chain of foreign keys connecting two tables.

        Args:
            from_table: Starting table
            to_table: Destination table

        Returns:
            List of hops oriented from ``from_table`` towards ``to_table``; an empty
            list when both are the same table; None when no path exists
        """
        schema = self.get_schema()
        if from_table not in schema.tables or to_table not in schema.tables:
            logger.debug(f"No join path: unknown table in {from_table} -> {to_table}")
            return None
        if from_table == to_table:
            return []

        visited = {from_table}
        queue = deque([(from_table, [])])

        while queue:
            current, path = queue.popleft()
            for rel in schema.adjacency.get(current, []):
                if rel.to_table in visited:
                    continue
                next_path = path + [rel]
                if rel.to_table == to_table:
                    return next_path
                visited.add(rel.to_table)
                queue.append((rel.to_table, next_path))

        logger.debug(f"No join path between {from_table} and {to_table}")
        return None

    def get_row_count(self, table_name: str) -> int:
        """Count rows in a table. Returns 0 on failure or for unknown tables."""
        if table_name in self._row_counts:
            return self._row_counts[table_name]

        if self.get_table(table_name) is None:
            return 0

        preparer = self.engine.dialect.identifier_preparer
        qualified = preparer.quote(table_name)
        if self.schema_name:
            qualified = f"{preparer.quote_schema(self.schema_name)}.{qualified}"

        try:
            with self.engine.connect() as conn:
                count = conn.execute(text(f"SELECT COUNT(*) FROM {qualified}")).scalar() or 0
        except Exception as e:
            logger.warning(f"Failed to count rows in {table_name}: {e}")
            return 0

        self._row_counts[table_name] = int(count)
        return self._row_counts[table_name]

    def find_tables_with_column(self, column_name: str) -> List[str]:
        """Names of tables that have a column with the given name (case-insensitive)."""
        return [
            table.name
            for table in self.get_schema().tables.values()
            if table.get_column(column_name) is not None
        ]

    def get_catalog(self) -> List[CatalogEntry]:
        """Overview of every table with its row count and key structure."""
        schema = self.get_schema()
        entries = []
        for table in schema.tables.values():
            entries.append(CatalogEntry(
                table_name=table.name,
                column_count=len(table.columns),
                row_count=self.get_row_count(table.name),
                primary_key=list(table.primary_key),
                foreign_keys=[r for r in schema.relationships if r.from_table == table.name],
                referenced_by=[r for r in schema.relationships if r.to_table == table.name],
            ))
        return entries

    def generate_join_query(self, tables: List[str], columns: Optional[List[str]] = None) -> Optional[str]:
        """
        Build a SELECT joining the given tables along discovered foreign keys.

        Args:
            tables: Tables to join; the first is the FROM table
            columns: Optional select list, defaults to every column of every table

        Returns:
            SQL string, or None if any table cannot be reached from the first
        """
        if not tables:
            return None
        base = tables[0]
        if self.get_table(base) is None:
            return None

        joined = [base]
        join_clauses = []
        for target in tables[1:]:
            if target in joined:
                continue
            path = self.get_join_path(base, target)
            if path is None:
                logger.debug(f"Cannot join {target} to {base}")
                return None
            for hop in path:
                if hop.to_table in joined:
                    continue
                join_clauses.append(
                    f"LEFT JOIN {hop.to_table} ON {hop.from_table}.{hop.from_column} = {hop.to_table}.{hop.to_column}"
                )
                joined.append(hop.to_table)

        select_list = ", ".join(columns) if columns else ", ".join(f"{t}.*" for t in joined)
        return " ".join([f"SELECT {select_list} FROM {base}"] + join_clauses)

    def clear_cache(self):
        """Force the next access to re-introspect the store."""
        self.cache.invalidate()
        self._row_counts = {}
        logger.info("Schema catalog cache cleared")

"""
Schema Catalog for relational introspection and join-path discovery.
"""

from .schema_catalog import SchemaCatalog
from .models import (
    CatalogEntry,
    ColumnInfo,
    ForeignKeyRef,
    RelationshipType,
    SchemaDefinition,
    TableDefinition,
    TableRelationship,
)

__all__ = [
    "SchemaCatalog",
    "CatalogEntry",
    "ColumnInfo",
    "ForeignKeyRef",
    "RelationshipType",
    "SchemaDefinition",
    "TableDefinition",
    "TableRelationship",
]

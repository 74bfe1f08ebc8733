"""
Data models for the Schema Catalog module.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class RelationshipType(Enum):
    """Cardinality of a foreign-key relationship."""
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"


@dataclass
class ForeignKeyRef:
    """Target of a foreign-key column."""
    table: str
    column: str


@dataclass
class ColumnInfo:
    """Describes a single table column."""
    name: str
    data_type: str
    nullable: bool = True
    default: Optional[str] = None
    is_primary_key: bool = False
    foreign_key: Optional[ForeignKeyRef] = None


@dataclass
class TableDefinition:
    """Describes a table, its columns and its primary key."""
    name: str
    columns: List[ColumnInfo]
    primary_key: List[str] = field(default_factory=list)

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]


@dataclass
class TableRelationship:
    """Directed foreign-key edge from_table.from_column -> to_table.to_column."""
    from_table: str
    from_column: str
    to_table: str
    to_column: str
    relationship_type: RelationshipType = RelationshipType.ONE_TO_MANY

    def reversed(self) -> "TableRelationship":
        """Return the same relationship seen from the other end."""
        return TableRelationship(
            from_table=self.to_table,
            from_column=self.to_column,
            to_table=self.from_table,
            to_column=self.from_column,
            relationship_type=self.relationship_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_table": self.from_table,
            "from_column": self.from_column,
            "to_table": self.to_table,
            "to_column": self.to_column,
            "relationship_type": self.relationship_type.value,
        }


@dataclass
class SchemaDefinition:
    """
    Snapshot of the introspected schema.

    ``adjacency`` maps each table to the relationships leaving it, with both
    directions of every foreign key materialized. Each list keeps the order in
    which relationships were discovered.
    """
    tables: Dict[str, TableDefinition] = field(default_factory=dict)
    relationships: List[TableRelationship] = field(default_factory=list)
    adjacency: Dict[str, List[TableRelationship]] = field(default_factory=dict)

    @classmethod
    def build(cls, tables: List[TableDefinition], relationships: List[TableRelationship]) -> "SchemaDefinition":
        adjacency: Dict[str, List[TableRelationship]] = {table.name: [] for table in tables}
        for rel in relationships:
            adjacency.setdefault(rel.from_table, []).append(rel)
            adjacency.setdefault(rel.to_table, []).append(rel.reversed())
        return cls(
            tables={table.name: table for table in tables},
            relationships=list(relationships),
            adjacency=adjacency,
        )


@dataclass
class CatalogEntry:
    """Overview row for a single table."""
    table_name: str
    column_count: int
    row_count: int
    primary_key: List[str]
    foreign_keys: List[TableRelationship]
    referenced_by: List[TableRelationship]

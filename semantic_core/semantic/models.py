"""
Data models for the semantic entity layer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class FieldType(Enum):
    """Semantic type of an entity field."""
    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    TIMESTAMP = "timestamp"
    IDENTIFIER = "identifier"
    STRUCTURED = "structured"


class MatchType(Enum):
    """How a query mention was matched to an entity."""
    EXACT = "exact"
    ALIAS = "alias"
    FUZZY = "fuzzy"


@dataclass
class SemanticField:
    """A column of the entity's source table with its semantic meaning."""
    name: str
    column: str
    field_type: FieldType = FieldType.TEXT
    searchable: bool = False
    filterable: bool = False
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SemanticField":
        return cls(
            name=data["name"],
            column=data.get("column", data["name"]),
            field_type=FieldType(data.get("type", data.get("field_type", "text"))),
            searchable=bool(data.get("searchable", False)),
            filterable=bool(data.get("filterable", False)),
            description=data.get("description"),
        )


@dataclass
class EntityRelationship:
    """
    A named link from one entity to another.

    ``foreign_key`` is the column on the target entity's table holding this entity's id.
    """
    target_entity: str
    relationship_type: str = "HAS_MANY"
    foreign_key: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityRelationship":
        return cls(
            target_entity=data.get("target_entity", data.get("target")),
            relationship_type=data.get("relationship_type", data.get("type", "HAS_MANY")),
            foreign_key=data.get("foreign_key"),
            description=data.get("description"),
        )


@dataclass
class SemanticEntity:
    """A business concept bound to one backing table."""
    name: str
    display_name: str
    source_table: str
    description: Optional[str] = None
    domain_owner: Optional[str] = None
    fields: List[SemanticField] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)
    relationships: List[EntityRelationship] = field(default_factory=list)
    label_column: Optional[str] = None
    weight: float = 1.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SemanticEntity":
        """Build an entity from a config or database record."""
        return cls(
            name=data["name"],
            display_name=data.get("display_name") or data["name"],
            source_table=data["source_table"],
            description=data.get("description"),
            domain_owner=data.get("domain_owner") or data.get("domain_agent"),
            fields=[SemanticField.from_dict(f) for f in data.get("fields") or []],
            aliases=list(data.get("aliases") or []),
            relationships=[EntityRelationship.from_dict(r) for r in data.get("relationships") or []],
            label_column=data.get("label_column"),
            weight=float(data.get("weight", 1.0)),
        )


@dataclass
class EntityAlias:
    """An alias row loaded from the alias table."""
    entity_name: str
    alias: str
    alias_type: str = "synonym"
    confidence: float = 1.0


@dataclass
class ResolvedEntity:
    """A query mention resolved to an entity. Produced per query, never persisted."""
    entity: SemanticEntity
    matched_alias: str
    confidence: float
    match_type: MatchType

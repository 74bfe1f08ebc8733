"""
Semantic entity layer: business concepts, aliases and entity resolution.
"""

from .entity_resolver import EntityResolver
from .entity_store import EntitySource, SQLEntitySource, StaticEntitySource
from .models import (
    EntityAlias,
    EntityRelationship,
    FieldType,
    MatchType,
    ResolvedEntity,
    SemanticEntity,
    SemanticField,
)

__all__ = [
    "EntityResolver",
    "EntitySource",
    "SQLEntitySource",
    "StaticEntitySource",
    "EntityAlias",
    "EntityRelationship",
    "FieldType",
    "MatchType",
    "ResolvedEntity",
    "SemanticEntity",
    "SemanticField",
]

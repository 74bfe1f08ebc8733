"""
Backing stores for semantic entity and alias definitions.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    insert,
    select,
)
from sqlalchemy.engine import Engine

from .models import EntityAlias, SemanticEntity

logger = logging.getLogger(__name__)

metadata = MetaData()

semantic_entities = Table(
    "semantic_entities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("display_name", String(200), nullable=False),
    Column("description", Text),
    Column("source_table", String(100), nullable=False),
    Column("domain_agent", String(100)),
    Column("fields", JSON),
    Column("aliases", JSON),
    Column("relationships", JSON),
    Column("label_column", String(100)),
    Column("weight", Float, default=1.0),
)

entity_aliases = Table(
    "entity_aliases",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entity_id", Integer, ForeignKey("semantic_entities.id", ondelete="CASCADE"), nullable=False),
    Column("alias", String(200), nullable=False),
    Column("alias_type", String(50), default="synonym"),
    Column("confidence", Float, default=1.0),
)


def _json_value(value: Any) -> Any:
    # Some drivers hand back JSON columns as raw strings
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


class EntitySource(ABC):
    """Source of entity definitions and extra aliases."""

    @abstractmethod
    def load(self) -> Tuple[List[SemanticEntity], List[EntityAlias]]:
        """Load every entity and every alias defined outside the entities themselves."""
        pass

    @abstractmethod
    def add_entity(self, entity: SemanticEntity):
        """Persist a newly registered entity."""
        pass

    @abstractmethod
    def add_alias(self, alias: EntityAlias):
        """Persist an extra alias for an existing entity."""
        pass


class StaticEntitySource(EntitySource):
    """Entities declared in the YAML configuration."""

    def __init__(self, entities: List[Dict[str, Any]]):
        self.entities = [SemanticEntity.from_dict(data) for data in entities]
        self.aliases: List[EntityAlias] = []

    def load(self) -> Tuple[List[SemanticEntity], List[EntityAlias]]:
        return list(self.entities), list(self.aliases)

    def add_entity(self, entity: SemanticEntity):
        self.entities.append(entity)

    def add_alias(self, alias: EntityAlias):
        self.aliases.append(alias)


class SQLEntitySource(EntitySource):
    """Entities stored in the ``semantic_entities`` and ``entity_aliases`` tables."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def create_tables(self):
        """Create the entity and alias tables if they do not exist."""
        metadata.create_all(self.engine)
        logger.info("Ensured semantic_entities and entity_aliases tables exist")

    def load(self) -> Tuple[List[SemanticEntity], List[EntityAlias]]:
        entities: List[SemanticEntity] = []
        names_by_id: Dict[int, str] = {}

        with self.engine.connect() as conn:
            for row in conn.execute(select(semantic_entities).order_by(semantic_entities.c.id)).mappings():
                record = dict(row)
                for key in ("fields", "aliases", "relationships"):
                    record[key] = _json_value(record.get(key))
                if record.get("weight") is None:
                    record["weight"] = 1.0
                entity = SemanticEntity.from_dict(record)
                entities.append(entity)
                names_by_id[row["id"]] = entity.name

            aliases = []
            for row in conn.execute(select(entity_aliases).order_by(entity_aliases.c.id)).mappings():
                entity_name = names_by_id.get(row["entity_id"])
                if entity_name is None:
                    continue
                aliases.append(EntityAlias(
                    entity_name=entity_name,
                    alias=row["alias"],
                    alias_type=row["alias_type"] or "synonym",
                    confidence=row["confidence"] if row["confidence"] is not None else 1.0,
                ))

        logger.debug(f"Loaded {len(entities)} entities and {len(aliases)} aliases from database")
        return entities, aliases

    def add_entity(self, entity: SemanticEntity):
        with self.engine.begin() as conn:
            conn.execute(insert(semantic_entities).values(
                name=entity.name,
                display_name=entity.display_name,
                description=entity.description,
                source_table=entity.source_table,
                domain_agent=entity.domain_owner,
                fields=[
                    {
                        "name": f.name,
                        "column": f.column,
                        "type": f.field_type.value,
                        "searchable": f.searchable,
                        "filterable": f.filterable,
                        "description": f.description,
                    }
                    for f in entity.fields
                ],
                aliases=list(entity.aliases),
                relationships=[
                    {
                        "target_entity": r.target_entity,
                        "relationship_type": r.relationship_type,
                        "foreign_key": r.foreign_key,
                        "description": r.description,
                    }
                    for r in entity.relationships
                ],
                label_column=entity.label_column,
                weight=entity.weight,
            ))

    def add_alias(self, alias: EntityAlias):
        with self.engine.begin() as conn:
            entity_id = conn.execute(
                select(semantic_entities.c.id).where(semantic_entities.c.name == alias.entity_name)
            ).scalar()
            if entity_id is None:
                raise KeyError(alias.entity_name)
            conn.execute(insert(entity_aliases).values(
                entity_id=entity_id,
                alias=alias.alias,
                alias_type=alias.alias_type,
                confidence=alias.confidence,
            ))

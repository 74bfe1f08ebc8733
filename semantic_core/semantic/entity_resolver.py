"""
Entity Resolver for mapping business vocabulary in free text onto semantic entities.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..cache import TTLCache
from ..catalog import SchemaCatalog
from ..errors import InvalidRequestError
from .entity_store import EntitySource
from .models import EntityAlias, MatchType, ResolvedEntity, SemanticEntity

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 1.0
ALIAS_CONFIDENCE = 0.95
FUZZY_CONFIDENCE = 0.7
MIN_FUZZY_TOKEN_LENGTH = 3


@dataclass
class EntityIndex:
    """Snapshot of entities keyed by name and lowercase alias."""
    entities: Dict[str, SemanticEntity] = field(default_factory=dict)
    aliases: Dict[str, str] = field(default_factory=dict)  # lowercase alias -> entity name


class EntityResolver:
    """Resolves free-text mentions to semantic entities with confidence scores."""

    def __init__(
        self,
        config: Dict[str, Any],
        source: EntitySource,
        catalog: Optional[SchemaCatalog] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.config = config
        self.source = source
        self.catalog = catalog
        self.cache = cache or TTLCache(
            config.get("cache_ttl_seconds", 300),
            name="entity resolver",
        )

    def _index(self) -> EntityIndex:
        return self.cache.get_or_refresh(self._load_index)

    def _load_index(self) -> EntityIndex:
        """Read every entity and alias from the source and build a fresh index."""
        entities, extra_aliases = self.source.load()

        known_tables = None
        if self.catalog is not None:
            known_tables = set(self.catalog.get_table_names()) or None

        index = EntityIndex()
        for entity in entities:
            if known_tables is not None and entity.source_table not in known_tables:
                logger.warning(
                    f"Skipping entity {entity.name}: source table {entity.source_table} not in catalog"
                )
                continue
            index.entities[entity.name] = entity
            self._register_alias(index, entity.display_name, entity.name)
            self._register_alias(index, entity.name, entity.name)
            for alias in entity.aliases:
                self._register_alias(index, alias, entity.name)

        for alias in extra_aliases:
            if alias.entity_name in index.entities:
                self._register_alias(index, alias.alias, alias.entity_name)

        logger.info(f"Loaded {len(index.entities)} entities with {len(index.aliases)} aliases")
        return index

    @staticmethod
    def _register_alias(index: EntityIndex, alias: str, entity_name: str):
        key = (alias or "").strip().lower()
        if key:
            index.aliases[key] = entity_name

    def get_all_entities(self) -> List[SemanticEntity]:
        return list(self._index().entities.values())

    def get_entity(self, name: str) -> Optional[SemanticEntity]:
        entity = self._index().entities.get(name)
        if entity is None:
            logger.debug(f"Entity not found: {name}")
        return entity

    def resolve_alias(self, text: str) -> Optional[SemanticEntity]:
        """Resolve an alias, name or display name to its entity (case-insensitive)."""
        index = self._index()
        entity_name = index.aliases.get((text or "").strip().lower())
        if entity_name is None:
            return None
        return index.entities.get(entity_name)

    def get_entity_by_table(self, table_name: str) -> Optional[SemanticEntity]:
        for entity in self._index().entities.values():
            if entity.source_table == table_name:
                return entity
        return None

    def get_entities_by_domain(self, domain_owner: str) -> List[SemanticEntity]:
        return [e for e in self._index().entities.values() if e.domain_owner == domain_owner]

    def get_related(self, entity_name: str) -> List[SemanticEntity]:
        """Entities reachable through the given entity's declared relationships."""
        index = self._index()
        entity = index.entities.get(entity_name)
        if entity is None:
            return []

        related = []
        for rel in entity.relationships:
            target = index.entities.get(rel.target_entity)
            if target is not None and target not in related:
                related.append(target)
        return related

    def extract_entities(self, query: str) -> List[ResolvedEntity]:
        """
        Find the entities mentioned in a query.

        Alias matching runs first; word-level fuzzy matching is only tried when no
        alias matched at all.

        Args:
            query: Free-text user query

        Returns:
            At most one ResolvedEntity per entity, sorted by confidence descending
        """
        if not query or not query.strip():
            return []

        index = self._index()
        query_lower = query.lower()
        matches: Dict[str, ResolvedEntity] = {}

        # Step 1: Alias / exact pass
        for alias, entity_name in index.aliases.items():
            if alias not in query_lower:
                continue
            entity = index.entities[entity_name]
            if alias == entity.name.lower():
                candidate = ResolvedEntity(entity, alias, EXACT_CONFIDENCE, MatchType.EXACT)
            else:
                candidate = ResolvedEntity(entity, alias, ALIAS_CONFIDENCE, MatchType.ALIAS)
            self._keep_best(matches, candidate)

        # Step 2: Fuzzy fallback
        if not matches:
            for token in query_lower.split():
                if len(token) < MIN_FUZZY_TOKEN_LENGTH:
                    continue
                for entity in index.entities.values():
                    name = entity.name.lower()
                    display = entity.display_name.lower()
                    if token in name or name in token or token in display or display in token:
                        self._keep_best(matches, ResolvedEntity(entity, token, FUZZY_CONFIDENCE, MatchType.FUZZY))

        results = sorted(matches.values(), key=lambda r: r.confidence, reverse=True)
        logger.debug(f"Extracted {len(results)} entities from query: {query}")
        return results

    @staticmethod
    def _keep_best(matches: Dict[str, ResolvedEntity], candidate: ResolvedEntity):
        existing = matches.get(candidate.entity.name)
        if existing is None or candidate.confidence > existing.confidence:
            matches[candidate.entity.name] = candidate

    def register_entity(self, entity: SemanticEntity):
        """
        Add a new entity to the backing source and invalidate the cache.

        Raises:
            InvalidRequestError: if the name is taken or the source table is unknown
        """
        if entity.name in self._index().entities:
            raise InvalidRequestError(f"Entity already exists: {entity.name}")
        if self.catalog is not None and self.catalog.get_table(entity.source_table) is None:
            raise InvalidRequestError(f"Unknown source table: {entity.source_table}")

        self.source.add_entity(entity)
        self.clear_cache()
        logger.info(f"Registered entity {entity.name} on {entity.source_table}")

    def add_alias(self, entity_name: str, alias: str, alias_type: str = "synonym", confidence: float = 1.0):
        """Attach an alias to an existing entity and invalidate the cache."""
        if not alias or not alias.strip():
            raise InvalidRequestError("Alias must not be empty")
        if entity_name not in self._index().entities:
            raise InvalidRequestError(f"Unknown entity: {entity_name}")

        self.source.add_alias(EntityAlias(entity_name, alias.strip(), alias_type, confidence))
        self.clear_cache()
        logger.info(f"Added alias '{alias}' for {entity_name}")

    def clear_cache(self):
        self.cache.invalidate()

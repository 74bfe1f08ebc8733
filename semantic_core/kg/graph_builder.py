"""
Knowledge Graph Builder for materializing semantic entities into a typed graph.
"""

import asyncio
import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx
from sqlalchemy import text

from ..catalog import SchemaCatalog, TableDefinition
from ..errors import BuildFailureError, BuildInProgressError
from ..models.embedding_manager import EmbeddingManager
from ..semantic import EntityRelationship, EntityResolver, SemanticEntity
from .graph_store import BaseGraphStore
from .models import (
    BuildResult,
    BuildStats,
    EntityOutcome,
    GraphEdge,
    GraphNode,
    OutcomeStatus,
    coerce_properties,
    make_edge_id,
    make_node_id,
)

logger = logging.getLogger(__name__)

LABEL_CANDIDATES = ["name", "title", "display_name", "label", "email"]

# Rows scanned for one entity: (node, raw row) pairs
ScannedRows = List[Tuple[GraphNode, Dict[str, Any]]]


class KnowledgeGraphBuilder:
    """Builds the knowledge graph from entity rows and replaces the stored graph in one step."""

    def __init__(
        self,
        config: Dict[str, Any],
        catalog: SchemaCatalog,
        resolver: EntityResolver,
        store: BaseGraphStore,
        embedding_manager: Optional[EmbeddingManager] = None,
    ):
        self.config = config
        self.catalog = catalog
        self.resolver = resolver
        self.store = store
        self.embedding_manager = embedding_manager

        self.max_rows_per_entity = config.get("max_rows_per_entity", 10000)
        self.relationship_weights: Dict[str, float] = config.get("relationship_weights", {}) or {}
        importance = config.get("importance", {}) or {}
        self.degree_weight = importance.get("degree_weight", 0.7)
        self.entity_weight = importance.get("entity_weight", 0.3)

        self._build_lock = threading.Lock()
        self._cancel_event = threading.Event()

    @property
    def is_building(self) -> bool:
        return self._build_lock.locked()

    def cancel(self):
        """Ask the running build to stop before it writes anything."""
        if self.is_building:
            logger.info("Cancelling knowledge graph build")
            self._cancel_event.set()

    async def build(self, generate_embeddings: bool = False) -> BuildResult:
        """
        Rebuild the knowledge graph from the current entity data.

        Args:
            generate_embeddings: Whether to embed each node's text description

        Returns:
            BuildResult with the new graph's stats and per-entity outcomes

        Raises:
            BuildInProgressError: if another build is running
            BuildFailureError: if the build was cancelled or the graph could not be written
        """
        if not self._build_lock.acquire(blocking=False):
            raise BuildInProgressError("A knowledge graph build is already running")

        self._cancel_event.clear()
        started = time.monotonic()
        try:
            logger.info("Starting knowledge graph build")

            # Step 1: Scan entity rows into staging
            entities = self.resolver.get_all_entities()
            outcomes: List[EntityOutcome] = []
            scanned: Dict[str, ScannedRows] = {}
            for entity in entities:
                self._check_cancelled()
                try:
                    rows = await asyncio.to_thread(self._scan_entity, entity)
                except Exception as e:
                    logger.warning(f"Skipping entity {entity.name}: {e}")
                    outcomes.append(EntityOutcome(entity.name, OutcomeStatus.SKIPPED, reason=str(e)))
                    continue
                scanned[entity.name] = rows
                outcomes.append(EntityOutcome(entity.name, OutcomeStatus.SUCCESS, node_count=len(rows)))

            nodes = [node for rows in scanned.values() for node, _ in rows]

            # Step 2: Resolve edges between materialized entities
            self._check_cancelled()
            edges, dropped = self._build_edges(entities, scanned, {node.id for node in nodes})

            # Step 3: Score node importance
            self._score_importance(nodes, edges, {e.name: e for e in entities})

            # Step 4: Optional embeddings
            if generate_embeddings:
                await self._embed_nodes(nodes)

            # Step 5: Swap the new graph in
            self._check_cancelled()
            try:
                built_at = await asyncio.to_thread(self.store.replace_graph, nodes, edges)
            except Exception as e:
                logger.error(f"Failed to write knowledge graph: {e}")
                raise BuildFailureError(f"Could not replace knowledge graph: {e}") from e

            result = BuildResult(
                stats=BuildStats.from_graph(nodes, edges, built_at=built_at),
                outcomes=outcomes,
                duration_seconds=time.monotonic() - started,
                dropped_edges=dropped,
            )
            logger.info(
                f"Knowledge graph built: {result.stats.total_nodes} nodes, "
                f"{result.stats.total_edges} edges, {len(result.skipped)} entities skipped"
            )
            return result
        finally:
            self._cancel_event.clear()
            self._build_lock.release()

    def _check_cancelled(self):
        if self._cancel_event.is_set():
            raise BuildFailureError("Knowledge graph build cancelled")

    def _scan_entity(self, entity: SemanticEntity) -> ScannedRows:
        """Read an entity's rows and turn each one into a node."""
        table = self.catalog.get_table(entity.source_table)
        if table is None:
            raise LookupError(f"source table {entity.source_table} not in catalog")

        preparer = self.catalog.engine.dialect.identifier_preparer
        qualified = preparer.quote(table.name)
        if self.catalog.schema_name:
            qualified = f"{preparer.quote_schema(self.catalog.schema_name)}.{qualified}"

        with self.catalog.engine.connect() as conn:
            rows = [
                dict(row)
                for row in conn.execute(
                    text(f"SELECT * FROM {qualified} LIMIT :limit"),
                    {"limit": self.max_rows_per_entity},
                ).mappings()
            ]

        key_columns = self._key_columns(table)
        label_column = self._label_column(entity, table)

        scanned: ScannedRows = []
        for position, row in enumerate(rows):
            if key_columns:
                source_id = ":".join(str(row.get(col)) for col in key_columns)
            else:
                source_id = str(position)
            name = row.get(label_column) if label_column else None
            if name is None or str(name).strip() == "":
                name = f"{entity.display_name} {source_id}"

            properties = coerce_properties({k: v for k, v in row.items() if k != label_column})
            node = GraphNode(
                id=make_node_id(entity.name, source_id),
                type=entity.name,
                name=str(name),
                properties=properties,
                source_table=table.name,
                source_id=source_id,
            )
            scanned.append((node, row))

        logger.debug(f"Scanned {len(scanned)} rows for entity {entity.name}")
        return scanned

    @staticmethod
    def _key_columns(table: TableDefinition) -> List[str]:
        if table.primary_key:
            return list(table.primary_key)
        if table.get_column("id") is not None:
            return [table.get_column("id").name]
        return []

    @staticmethod
    def _label_column(entity: SemanticEntity, table: TableDefinition) -> Optional[str]:
        if entity.label_column and table.get_column(entity.label_column) is not None:
            return table.get_column(entity.label_column).name
        for candidate in LABEL_CANDIDATES:
            column = table.get_column(candidate)
            if column is not None:
                return column.name
        return None

    def _resolve_join(
        self, source: SemanticEntity, target: SemanticEntity, rel: EntityRelationship
    ) -> Optional[Tuple[str, str, str]]:
        """
        Work out how rows of two entities join.

        Returns:
            (holder, fk_column, referenced_column) where ``holder`` is "target" when
            the target table holds the foreign key and "source" when the source does,
            or None if no foreign key links the tables
        """
        relationships = self.catalog.get_schema().relationships

        for fk in relationships:
            if fk.from_table != target.source_table or fk.to_table != source.source_table:
                continue
            if rel.foreign_key is None or fk.from_column == rel.foreign_key:
                return "target", fk.from_column, fk.to_column

        for fk in relationships:
            if fk.from_table != source.source_table or fk.to_table != target.source_table:
                continue
            if rel.foreign_key is None or fk.from_column == rel.foreign_key:
                return "source", fk.from_column, fk.to_column

        if rel.foreign_key:
            # Declared but not enforced by the schema: assume it references the source key
            source_table = self.catalog.get_table(source.source_table)
            if source_table is not None and len(source_table.primary_key) == 1:
                return "target", rel.foreign_key, source_table.primary_key[0]
        return None

    def _build_edges(
        self,
        entities: List[SemanticEntity],
        scanned: Dict[str, ScannedRows],
        node_ids: set,
    ) -> Tuple[List[GraphEdge], int]:
        """Emit one edge per resolvable foreign-key value. Returns the edges and the number dropped."""
        edges: Dict[str, GraphEdge] = {}
        dropped = 0
        entities_by_name = {e.name: e for e in entities}

        for source in entities:
            if source.name not in scanned:
                continue
            for rel in source.relationships:
                target = entities_by_name.get(rel.target_entity)
                if target is None or target.name not in scanned:
                    logger.debug(f"Relationship {source.name} -> {rel.target_entity} has no materialized target")
                    continue

                join = self._resolve_join(source, target, rel)
                if join is None:
                    logger.warning(f"No foreign key links {source.source_table} and {target.source_table}")
                    continue
                holder, fk_column, referenced_column = join
                weight = max(0.0, float(self.relationship_weights.get(rel.relationship_type, 1.0)))

                if holder == "target":
                    lookup = self._value_index(scanned[source.name], referenced_column)
                    pairs = [(lookup.get(self._key(row.get(fk_column))), node.id) for node, row in scanned[target.name]]
                else:
                    lookup = self._value_index(scanned[target.name], referenced_column)
                    pairs = [(node.id, lookup.get(self._key(row.get(fk_column)))) for node, row in scanned[source.name]]

                for source_id, target_id in pairs:
                    if source_id is None or target_id is None or source_id not in node_ids or target_id not in node_ids:
                        dropped += 1
                        continue
                    edge_id = make_edge_id(source_id, rel.relationship_type, target_id)
                    if edge_id not in edges:
                        edges[edge_id] = GraphEdge(
                            id=edge_id,
                            source_id=source_id,
                            target_id=target_id,
                            relationship_type=rel.relationship_type,
                            weight=weight,
                        )

        if dropped:
            logger.info(f"Dropped {dropped} edges with unresolved endpoints")
        return list(edges.values()), dropped

    @staticmethod
    def _key(value: Any) -> Optional[str]:
        return None if value is None else str(value)

    def _value_index(self, rows: ScannedRows, column: str) -> Dict[str, str]:
        index = {}
        for node, row in rows:
            key = self._key(row.get(column))
            if key is not None and key not in index:
                index[key] = node.id
        return index

    def _score_importance(self, nodes: List[GraphNode], edges: List[GraphEdge], entities: Dict[str, SemanticEntity]):
        """
        score = degree_weight * degree / max_degree + entity_weight * min(entity.weight, 1)

        Monotonic in both connectivity and the configured entity weight, clamped to [0, 1].
        """
        graph = nx.Graph()
        graph.add_nodes_from(node.id for node in nodes)
        graph.add_edges_from((edge.source_id, edge.target_id) for edge in edges)

        degrees = dict(graph.degree())
        max_degree = max(degrees.values(), default=0)

        for node in nodes:
            connectivity = degrees.get(node.id, 0) / max_degree if max_degree else 0.0
            entity = entities.get(node.type)
            configured = min(max(entity.weight, 0.0), 1.0) if entity else 0.0
            score = self.degree_weight * connectivity + self.entity_weight * configured
            node.importance_score = round(min(max(score, 0.0), 1.0), 6)

    async def _embed_nodes(self, nodes: List[GraphNode]):
        if self.embedding_manager is None:
            logger.warning("Embeddings requested but no embedding manager configured")
            return

        texts = [f"{node.type}: {node.name}. {json.dumps(node.properties, default=str)}" for node in nodes]
        try:
            vectors = await self.embedding_manager.embed_batch(texts)
        except Exception as e:
            logger.warning(f"Failed to generate node embeddings: {e}")
            return

        for node, vector in zip(nodes, vectors):
            node.embedding = list(vector)
        logger.info(f"Generated embeddings for {len(nodes)} nodes")

    def get_stats(self) -> BuildStats:
        """Stats of the currently persisted graph, without rebuilding."""
        return self.store.get_stats()

    def _load_graph(self) -> nx.Graph:
        nodes, edges = self.store.load()
        graph = nx.Graph()
        for node in nodes:
            graph.add_node(node.id, node=node)
        for edge in edges:
            graph.add_edge(edge.source_id, edge.target_id, edge=edge)
        return graph

    def traverse(self, start_node_id: str, max_depth: int = 2) -> Tuple[List[GraphNode], List[GraphEdge]]:
        """Nodes within ``max_depth`` hops of a node, and the edges among them."""
        graph = self._load_graph()
        if start_node_id not in graph:
            return [], []

        reached = nx.single_source_shortest_path_length(graph, start_node_id, cutoff=max_depth)
        nodes = [graph.nodes[node_id]["node"] for node_id in reached]
        edges = [
            data["edge"]
            for a, b, data in graph.edges(data=True)
            if a in reached and b in reached
        ]
        return nodes, edges

    def find_shortest_path(self, source_node_id: str, target_node_id: str) -> Optional[List[GraphNode]]:
        """Shortest chain of nodes between two nodes, or None if they are not connected."""
        graph = self._load_graph()
        try:
            path = nx.shortest_path(graph, source_node_id, target_node_id)
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return None
        return [graph.nodes[node_id]["node"] for node_id in path]

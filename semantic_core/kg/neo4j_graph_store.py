"""
Neo4j-backed Graph Store.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from neo4j import GraphDatabase

from ..config import resolve_env_vars
from .graph_store import BaseGraphStore
from .models import GraphEdge, GraphNode

logger = logging.getLogger(__name__)


class Neo4jGraphStore(BaseGraphStore):
    """
    Persists the graph as ``:GraphNode`` nodes joined by ``:RELATED`` relationships.

    The relationship type is kept as a property so arbitrary names need no schema
    changes. Node properties are stored as a JSON string because Neo4j does not
    accept nested maps as property values.
    """

    def __init__(self, config: Dict[str, Any], driver=None):
        self.config = config
        self.database = config.get("database", "neo4j")
        if driver is None:
            driver = GraphDatabase.driver(
                resolve_env_vars(config.get("uri", "bolt://localhost:7687")),
                auth=(
                    resolve_env_vars(config.get("username", "neo4j")),
                    resolve_env_vars(config.get("password", "")),
                ),
            )
        self.driver = driver
        logger.info("Neo4j graph store initialized")

    def close(self):
        self.driver.close()

    @staticmethod
    def _replace_tx(tx, nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]], built_at: str):
        tx.run("MATCH (n:GraphNode) DETACH DELETE n")
        tx.run("MATCH (m:GraphMeta) DELETE m")
        tx.run(
            """
            UNWIND $nodes AS node
            CREATE (n:GraphNode)
            SET n = node
            """,
            nodes=nodes,
        )
        tx.run(
            """
            UNWIND $edges AS edge
            MATCH (a:GraphNode {id: edge.source_id}), (b:GraphNode {id: edge.target_id})
            CREATE (a)-[r:RELATED]->(b)
            SET r.id = edge.id,
                r.relationship_type = edge.relationship_type,
                r.weight = edge.weight,
                r.properties = edge.properties
            """,
            edges=edges,
        )
        tx.run("CREATE (:GraphMeta {built_at: $built_at})", built_at=built_at)

    def replace_graph(self, nodes: List[GraphNode], edges: List[GraphEdge]) -> str:
        """Replace the whole graph inside a single write transaction."""
        built_at = datetime.now(timezone.utc).isoformat()
        node_rows = [
            {
                "id": node.id,
                "type": node.type,
                "name": node.name,
                "properties": json.dumps(node.properties),
                "importance_score": node.importance_score,
                "source_table": node.source_table,
                "source_id": node.source_id,
                "embedding": node.embedding,
            }
            for node in nodes
        ]
        edge_rows = [
            {
                "id": edge.id,
                "source_id": edge.source_id,
                "target_id": edge.target_id,
                "relationship_type": edge.relationship_type,
                "weight": edge.weight,
                "properties": json.dumps(edge.properties),
            }
            for edge in edges
        ]

        with self.driver.session(database=self.database) as session:
            session.execute_write(self._replace_tx, node_rows, edge_rows, built_at)

        logger.info(f"Replaced Neo4j graph with {len(nodes)} nodes and {len(edges)} edges")
        return built_at

    @staticmethod
    def _read_tx(tx) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        nodes = [dict(record["n"]) for record in tx.run("MATCH (n:GraphNode) RETURN n")]
        edges = [
            record.data()
            for record in tx.run(
                """
                MATCH (a:GraphNode)-[r:RELATED]->(b:GraphNode)
                RETURN r.id AS id, a.id AS source_id, b.id AS target_id,
                       r.relationship_type AS relationship_type, r.weight AS weight,
                       r.properties AS properties
                """
            )
        ]
        return nodes, edges

    def load(self) -> Tuple[List[GraphNode], List[GraphEdge]]:
        with self.driver.session(database=self.database) as session:
            node_rows, edge_rows = session.execute_read(self._read_tx)

        nodes = []
        for row in node_rows:
            row["properties"] = json.loads(row.get("properties") or "{}")
            nodes.append(GraphNode.from_dict(row))
        edges = []
        for row in edge_rows:
            row["properties"] = json.loads(row.get("properties") or "{}")
            edges.append(GraphEdge.from_dict(row))
        return nodes, edges

    def get_built_at(self) -> Optional[str]:
        with self.driver.session(database=self.database) as session:
            record = session.run("MATCH (m:GraphMeta) RETURN m.built_at AS built_at LIMIT 1").single()
        return record["built_at"] if record else None

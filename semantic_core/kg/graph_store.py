"""
Graph Store for persisting materialized knowledge graphs.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import BuildStats, GraphEdge, GraphNode

logger = logging.getLogger(__name__)


class BaseGraphStore(ABC):
    """Persistence contract for the knowledge graph: whole-graph replace and read."""

    @abstractmethod
    def replace_graph(self, nodes: List[GraphNode], edges: List[GraphEdge]) -> str:
        """
        Atomically replace the persisted graph.

        Returns:
            ISO timestamp recorded for the new graph
        """
        pass

    @abstractmethod
    def load(self) -> Tuple[List[GraphNode], List[GraphEdge]]:
        """Read the persisted graph."""
        pass

    def get_built_at(self) -> Optional[str]:
        return None

    def get_stats(self) -> BuildStats:
        nodes, edges = self.load()
        return BuildStats.from_graph(nodes, edges, built_at=self.get_built_at())


class GraphStore(BaseGraphStore):
    """JSON file storage for graph nodes and edges."""

    def __init__(self, storage_path: Path):
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.graph_file = self.storage_path / "graph.json"

        self.nodes: List[GraphNode] = []
        self.edges: List[GraphEdge] = []
        self.node_index: Dict[str, int] = {}  # id -> index mapping
        self.built_at: Optional[str] = None

        self._load_data()

    def _load_data(self):
        """Load nodes and edges from persistent storage."""
        if not self.graph_file.exists():
            logger.info("No existing graph found")
            return

        try:
            with open(self.graph_file, 'r') as f:
                graph_data = json.load(f)

            self._set_graph(
                [GraphNode.from_dict(n) for n in graph_data.get("nodes", [])],
                [GraphEdge.from_dict(e) for e in graph_data.get("edges", [])],
                graph_data.get("built_at"),
            )
            logger.info(f"Loaded {len(self.nodes)} nodes and {len(self.edges)} edges from storage")

        except Exception as e:
            logger.error(f"Failed to load graph data: {e}")
            self._set_graph([], [], None)

    def _set_graph(self, nodes: List[GraphNode], edges: List[GraphEdge], built_at: Optional[str]):
        self.nodes = nodes
        self.edges = edges
        self.node_index = {node.id: i for i, node in enumerate(nodes)}
        self.built_at = built_at

    def replace_graph(self, nodes: List[GraphNode], edges: List[GraphEdge]) -> str:
        """Write the new graph to a temporary file and swap it into place."""
        built_at = datetime.now(timezone.utc).isoformat()
        graph_data = {
            "built_at": built_at,
            "nodes": [node.to_dict() for node in nodes],
            "edges": [edge.to_dict() for edge in edges],
        }

        fd, tmp_path = tempfile.mkstemp(dir=self.storage_path, prefix=".graph-", suffix=".json")
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(graph_data, f)
            os.replace(tmp_path, self.graph_file)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        self._set_graph(list(nodes), list(edges), built_at)
        logger.info(f"Saved graph with {len(nodes)} nodes and {len(edges)} edges to {self.graph_file}")
        return built_at

    def load(self) -> Tuple[List[GraphNode], List[GraphEdge]]:
        return list(self.nodes), list(self.edges)

    def get_built_at(self) -> Optional[str]:
        return self.built_at

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        """Get a node by ID."""
        if node_id in self.node_index:
            return self.nodes[self.node_index[node_id]]
        return None

    def get_edges_by_node(self, node_id: str) -> List[GraphEdge]:
        """Get all edges touching a specific node."""
        return [
            edge for edge in self.edges
            if edge.source_id == node_id or edge.target_id == node_id
        ]

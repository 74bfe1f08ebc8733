"""
Data models for the Knowledge Graph module.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

NODE_NAMESPACE = uuid.UUID("6f1c1d3e-5b7a-4c2e-9a57-2f0d8c4b9e11")


def make_node_id(node_type: str, source_id: str) -> str:
    """Stable node id derived from the node type and its source row id."""
    return str(uuid.uuid5(NODE_NAMESPACE, f"{node_type}:{source_id}"))


def make_edge_id(source_id: str, relationship_type: str, target_id: str) -> str:
    return str(uuid.uuid5(NODE_NAMESPACE, f"{source_id}-{relationship_type}->{target_id}"))


def coerce_property(value: Any) -> Any:
    """
    Coerce a raw column value into a graph property value.

    Strings, numbers, booleans and None pass through. Timestamps, dates and times
    become ISO-8601 strings, Decimal becomes float, binary data is dropped (None),
    and anything else is stringified.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return None
    return str(value)


def coerce_properties(row: Dict[str, Any]) -> Dict[str, Any]:
    return {str(key): coerce_property(value) for key, value in row.items()}


class OutcomeStatus(Enum):
    """Result of materializing one entity during a build."""
    SUCCESS = "success"
    SKIPPED = "skipped"


@dataclass
class GraphNode:
    """A row materialized as a typed graph node."""
    id: str
    type: str
    name: str
    properties: Dict[str, Any]
    importance_score: float = 0.0
    source_table: Optional[str] = None
    source_id: Optional[str] = None
    embedding: Optional[List[float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphNode":
        return cls(
            id=data["id"],
            type=data["type"],
            name=data["name"],
            properties=data.get("properties") or {},
            importance_score=data.get("importance_score", 0.0),
            source_table=data.get("source_table"),
            source_id=data.get("source_id"),
            embedding=data.get("embedding"),
        )


@dataclass
class GraphEdge:
    """A weighted, typed relationship between two nodes of the same build."""
    id: str
    source_id: str
    target_id: str
    relationship_type: str
    weight: float = 1.0
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphEdge":
        return cls(
            id=data["id"],
            source_id=data["source_id"],
            target_id=data["target_id"],
            relationship_type=data["relationship_type"],
            weight=data.get("weight", 1.0),
            properties=data.get("properties") or {},
        )


@dataclass
class BuildStats:
    """Summary of a graph."""
    total_nodes: int
    total_edges: int
    avg_connections: float
    nodes_by_type: Dict[str, int]
    edges_by_type: Dict[str, int]
    built_at: Optional[str] = None

    @classmethod
    def from_graph(cls, nodes: List[GraphNode], edges: List[GraphEdge], built_at: Optional[str] = None) -> "BuildStats":
        nodes_by_type: Dict[str, int] = {}
        for node in nodes:
            nodes_by_type[node.type] = nodes_by_type.get(node.type, 0) + 1
        edges_by_type: Dict[str, int] = {}
        for edge in edges:
            edges_by_type[edge.relationship_type] = edges_by_type.get(edge.relationship_type, 0) + 1

        return cls(
            total_nodes=len(nodes),
            total_edges=len(edges),
            avg_connections=(2 * len(edges) / len(nodes)) if nodes else 0.0,
            nodes_by_type=nodes_by_type,
            edges_by_type=edges_by_type,
            built_at=built_at,
        )


@dataclass
class EntityOutcome:
    """What happened to one entity during a build."""
    entity: str
    status: OutcomeStatus
    node_count: int = 0
    reason: Optional[str] = None


@dataclass
class BuildResult:
    """Stats of a completed build plus per-entity outcomes."""
    stats: BuildStats
    outcomes: List[EntityOutcome]
    duration_seconds: float
    dropped_edges: int = 0

    @property
    def skipped(self) -> List[EntityOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.SKIPPED]

"""
Knowledge Graph materialization and storage.
"""

from .graph_builder import KnowledgeGraphBuilder
from .graph_store import BaseGraphStore, GraphStore
from .models import (
    BuildResult,
    BuildStats,
    EntityOutcome,
    GraphEdge,
    GraphNode,
    OutcomeStatus,
)

__all__ = [
    "KnowledgeGraphBuilder",
    "BaseGraphStore",
    "GraphStore",
    "BuildResult",
    "BuildStats",
    "EntityOutcome",
    "GraphEdge",
    "GraphNode",
    "OutcomeStatus",
]

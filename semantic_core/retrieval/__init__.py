"""
Unified retrieval across structured, keyword, vector and external backends.
"""

from .agent_config import AgentConfigSource, SQLAgentConfigSource, StaticAgentConfigSource
from .backends import SearchBackend, SQLIndexBackend, keyword_score
from .models import (
    AgentDataSource,
    RetrievalConfig,
    SearchBackendType,
    SearchMode,
    SearchRequest,
    SearchResponse,
    SearchResult,
    StructuredQueryRequest,
    StructuredQueryResult,
)
from .unified_retriever import UnifiedRetriever, validate_select

__all__ = [
    "AgentConfigSource",
    "SQLAgentConfigSource",
    "StaticAgentConfigSource",
    "SearchBackend",
    "SQLIndexBackend",
    "keyword_score",
    "AgentDataSource",
    "RetrievalConfig",
    "SearchBackendType",
    "SearchMode",
    "SearchRequest",
    "SearchResponse",
    "SearchResult",
    "StructuredQueryRequest",
    "StructuredQueryResult",
    "UnifiedRetriever",
    "validate_select",
]

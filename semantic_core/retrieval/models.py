"""
Data models for the Unified Retriever.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..semantic import ResolvedEntity


class SearchMode(Enum):
    """How a search request is matched against indexed content."""
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    KEYWORD = "keyword"


class SearchBackendType(Enum):
    """Which backends a data source searches."""
    POSTGRES = "postgres"
    EXTERNAL = "external"
    BOTH = "both"


@dataclass(frozen=True)
class RetrievalConfig:
    """Per agent and data source retrieval settings. Read-only to the retriever."""
    enable_sql_queries: bool = True
    enable_semantic_search: bool = True
    search_backend: SearchBackendType = SearchBackendType.POSTGRES
    search_mode: SearchMode = SearchMode.HYBRID
    external_index_name: Optional[str] = None
    max_results: int = 10
    similarity_threshold: float = 0.7

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], base: Optional["RetrievalConfig"] = None) -> "RetrievalConfig":
        """Build a config from a record, falling back to ``base`` (or the defaults) per key.

        Both snake_case and camelCase keys are accepted since records are written by
        the admin tooling.
        """
        base = base or cls()
        data = data or {}

        def pick(snake: str, camel: str, default: Any) -> Any:
            if snake in data and data[snake] is not None:
                return data[snake]
            if camel in data and data[camel] is not None:
                return data[camel]
            return default

        return cls(
            enable_sql_queries=bool(pick("enable_sql_queries", "enableSqlQueries", base.enable_sql_queries)),
            enable_semantic_search=bool(pick("enable_semantic_search", "enableSemanticSearch", base.enable_semantic_search)),
            search_backend=SearchBackendType(pick("search_backend", "searchBackend", base.search_backend.value)),
            search_mode=SearchMode(pick("search_mode", "searchMode", base.search_mode.value)),
            external_index_name=pick("external_index_name", "externalIndexName", base.external_index_name),
            max_results=int(pick("max_results", "maxResults", base.max_results)),
            similarity_threshold=float(pick("similarity_threshold", "similarityThreshold", base.similarity_threshold)),
        )


def _json_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    return value if isinstance(value, dict) else {}


@dataclass
class AgentDataSource:
    """A data source attached to an agent."""
    id: str
    agent_id: str
    source_type: str
    source_name: str
    source_config: Dict[str, Any] = field(default_factory=dict)
    embedding_table: Optional[str] = None
    retrieval_config: RetrievalConfig = field(default_factory=RetrievalConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: Optional[RetrievalConfig] = None) -> "AgentDataSource":
        return cls(
            id=str(data["id"]),
            agent_id=str(data["agent_id"]),
            source_type=data.get("source_type", "table"),
            source_name=data.get("source_name", ""),
            source_config=_json_dict(data.get("source_config")),
            embedding_table=data.get("embedding_table"),
            retrieval_config=RetrievalConfig.from_dict(_json_dict(data.get("retrieval_config")), defaults),
        )

    @property
    def allowed_tables(self) -> List[str]:
        tables = []
        if self.source_type in ("table", "view") and self.source_name:
            tables.append(self.source_name)
        for table in self.source_config.get("tables") or []:
            if table not in tables:
                tables.append(table)
        return tables


@dataclass
class SearchRequest:
    """A logical search across the configured backends."""
    query: str
    agent_id: Optional[str] = None
    data_source_id: Optional[str] = None
    mode: Optional[SearchMode] = None
    limit: int = 10
    filters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchResult:
    """A scored match from one backend."""
    id: str
    content: str
    score: float
    source: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchResponse:
    """Merged results plus the backends that failed and the entities found in the query."""
    results: List[SearchResult]
    mode: SearchMode
    degraded_backends: List[str] = field(default_factory=list)
    entities: List[ResolvedEntity] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.degraded_backends)


@dataclass
class StructuredQueryRequest:
    """A read-only SQL statement issued on behalf of an agent."""
    query: str
    agent_id: Optional[str] = None
    data_source_id: Optional[str] = None


@dataclass
class StructuredQueryResult:
    """Rows returned by a structured query."""
    rows: List[Dict[str, Any]]
    row_count: int
    columns: List[str]

"""
Unified Retriever for dispatching one logical search across several backends.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..errors import BackendUnavailableError, InvalidRequestError, PermissionDeniedError
from ..models.embedding_manager import EmbeddingManager
from ..semantic import EntityResolver, ResolvedEntity
from .agent_config import AgentConfigSource
from .backends import SearchBackend
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

logger = logging.getLogger(__name__)

MAX_LIMIT = 100

DANGEROUS_PATTERNS = [
    ";drop",
    ";delete",
    ";truncate",
    ";update",
    ";insert",
    ";alter",
    ";create",
    "--",
    "/*",
]

SQL_TOKEN = re.compile(
    r"""
    (?P<string>'(?:[^']|'')*')
    |(?P<quoted>"(?:[^"]|"")*"|`[^`]*`|\[[^\]]*\])
    |(?P<word>[a-z_][a-z0-9_$]*)
    |(?P<number>\d+(?:\.\d+)?)
    |(?P<punct>\S)
    """,
    re.IGNORECASE | re.VERBOSE,
)

# Words that end a table reference instead of naming its alias
CLAUSE_KEYWORDS = {
    "as", "cross", "except", "fetch", "for", "from", "full", "group", "having", "inner",
    "intersect", "join", "lateral", "left", "limit", "natural", "offset", "on", "order",
    "outer", "right", "select", "union", "using", "where", "window",
}

BACKENDS_BY_TYPE = {
    SearchBackendType.POSTGRES: ["postgres"],
    SearchBackendType.EXTERNAL: ["external"],
    SearchBackendType.BOTH: ["postgres", "external"],
}


def _tokenize_sql(statement: str) -> List[Tuple[str, str]]:
    """Split SQL into (kind, value) tokens. Words are lowercased and quoted identifiers unquoted."""
    tokens = []
    for match in SQL_TOKEN.finditer(statement):
        kind = match.lastgroup
        value = match.group()
        if kind == "quoted":
            value = value[1:-1].replace('""', '"').lower()
        elif kind == "word":
            value = value.lower()
        tokens.append((kind, value))
    return tokens


def _skip_parens(tokens: List[Tuple[str, str]], start: int) -> int:
    """Index just past the parenthesis that closes the one at ``start``."""
    depth = 0
    for i in range(start, len(tokens)):
        if tokens[i] == ("punct", "("):
            depth += 1
        elif tokens[i] == ("punct", ")"):
            depth -= 1
            if depth == 0:
                return i + 1
    return len(tokens)


def _read_table_list(tokens: List[Tuple[str, str]], i: int) -> List[str]:
    """Read the comma-separated table references following FROM or JOIN."""
    names = []
    while True:
        if i < len(tokens) and tokens[i] == ("word", "lateral"):
            i += 1
        if i >= len(tokens):
            raise PermissionDeniedError("Query has a FROM or JOIN without a table", flag="allowed_tables")

        kind, value = tokens[i]
        if (kind, value) == ("punct", "("):
            # Derived table: the tables inside are checked on their own
            i = _skip_parens(tokens, i)
        elif kind in ("word", "quoted"):
            parts = [value]
            i += 1
            while (
                i + 1 < len(tokens)
                and tokens[i] == ("punct", ".")
                and tokens[i + 1][0] in ("word", "quoted")
            ):
                parts.append(tokens[i + 1][1])
                i += 2
            if i < len(tokens) and tokens[i] == ("punct", "("):
                raise PermissionDeniedError(
                    f"Table function {'.'.join(parts)} cannot be checked against allowed tables",
                    flag="allowed_tables",
                )
            names.append(parts[-1])
        else:
            raise PermissionDeniedError(f"Could not identify table reference near '{value}'", flag="allowed_tables")

        if i < len(tokens) and tokens[i] == ("word", "as"):
            i += 1
        if i < len(tokens) and (
            tokens[i][0] == "quoted" or (tokens[i][0] == "word" and tokens[i][1] not in CLAUSE_KEYWORDS)
        ):
            i += 1
        if i < len(tokens) and tokens[i] == ("punct", ","):
            i += 1
            continue
        return names


def referenced_tables(statement: str) -> List[str]:
    """
    Every table a SELECT reads, including comma joins, quoted names and subqueries.

    Schema qualifiers are dropped. FROM inside a function call (EXTRACT, SUBSTRING)
    is not a table clause and is ignored.

    Raises:
        PermissionDeniedError: if a FROM or JOIN target cannot be identified
    """
    tokens = _tokenize_sql(statement)
    tables: List[str] = []
    # One entry per open parenthesis: True when it opens a subquery
    parens: List[bool] = []
    for i, token in enumerate(tokens):
        if token == ("punct", "("):
            parens.append(i + 1 < len(tokens) and tokens[i + 1] == ("word", "select"))
        elif token == ("punct", ")"):
            if parens:
                parens.pop()
        elif token in (("word", "from"), ("word", "join")) and (not parens or parens[-1]):
            tables.extend(_read_table_list(tokens, i + 1))
    return tables


def validate_select(query: str, allowed_tables: Optional[List[str]] = None) -> str:
    """
    Check that a statement is a single read-only SELECT.

    Args:
        query: SQL text supplied by the caller
        allowed_tables: When non-empty, every FROM/JOIN target must be one of these

    Returns:
        The statement with surrounding whitespace and trailing semicolons removed

    Raises:
        InvalidRequestError: for anything other than a single SELECT
        PermissionDeniedError: when the statement reads a table outside ``allowed_tables``
    """
    statement = (query or "").strip().rstrip(";").strip()
    if not statement:
        raise InvalidRequestError("Query must not be empty")

    lowered = statement.lower()
    if not re.match(r"^select\b", lowered):
        raise InvalidRequestError("Only SELECT statements are allowed")

    compact = re.sub(r"\s+", "", lowered)
    for pattern in DANGEROUS_PATTERNS:
        if pattern in compact:
            raise InvalidRequestError(f"Query contains a disallowed pattern: {pattern}")
    if ";" in compact:
        raise InvalidRequestError("Only a single statement is allowed")

    if allowed_tables:
        allowed = {table.lower() for table in allowed_tables}
        for table in referenced_tables(statement):
            if table not in allowed:
                raise PermissionDeniedError(
                    f"Query references table {table} outside this agent's data sources",
                    flag="allowed_tables",
                )

    return statement


class UnifiedRetriever:
    """Routes search and structured queries to backends under per-agent retrieval policy."""

    def __init__(
        self,
        config: Dict[str, Any],
        backends: Dict[str, SearchBackend],
        agent_source: Optional[AgentConfigSource] = None,
        resolver: Optional[EntityResolver] = None,
        embedding_manager: Optional[EmbeddingManager] = None,
        engine: Optional[Engine] = None,
    ):
        self.config = config
        self.backends = backends
        self.agent_source = agent_source
        self.resolver = resolver
        self.embedding_manager = embedding_manager
        self.engine = engine

        self.default_config = RetrievalConfig.from_dict(config.get("defaults"))
        self.backend_timeout = config.get("backend_timeout_seconds", 10)
        self.entity_boost = config.get("entity_boost", 0.0)

        self._agent_sources: Dict[str, List[AgentDataSource]] = {}

    def load_agent_config(self, agent_id: str, data_source_id: Optional[str] = None) -> RetrievalConfig:
        """
        Load an agent's data sources into the retrieval context.

        Args:
            agent_id: Agent whose configuration should be used
            data_source_id: Optional data source to select

        Returns:
            The effective RetrievalConfig for the agent and data source

        Raises:
            BackendUnavailableError: if the configuration store cannot be read
        """
        if self.agent_source is None:
            self._agent_sources[agent_id] = []
        else:
            try:
                self._agent_sources[agent_id] = self.agent_source.get_data_sources(agent_id)
            except Exception as e:
                logger.error(f"Failed to load retrieval config for agent {agent_id}: {e}")
                raise BackendUnavailableError("Agent configuration unavailable", backend="agent_config") from e

        config, _ = self._resolve_context(agent_id, data_source_id)
        return config

    def clear_agent_cache(self, agent_id: Optional[str] = None):
        if agent_id is None:
            self._agent_sources.clear()
        else:
            self._agent_sources.pop(agent_id, None)

    def _resolve_context(
        self, agent_id: Optional[str], data_source_id: Optional[str]
    ) -> Tuple[RetrievalConfig, Optional[AgentDataSource]]:
        """Pick the data source for a request: the requested one, else the agent's first, else defaults."""
        if not agent_id:
            return self.default_config, None
        if agent_id not in self._agent_sources:
            self.load_agent_config(agent_id)

        sources = self._agent_sources.get(agent_id, [])
        if data_source_id is not None:
            for source in sources:
                if source.id == str(data_source_id):
                    return source.retrieval_config, source
            logger.debug(f"Data source {data_source_id} not found for agent {agent_id}")
        if sources:
            return sources[0].retrieval_config, sources[0]
        return self.default_config, None

    def get_allowed_tables(self, agent_id: Optional[str] = None, data_source_id: Optional[str] = None) -> List[str]:
        """Tables an agent may read through structured queries. Empty means unrestricted."""
        if not agent_id:
            return []
        _, selected = self._resolve_context(agent_id, data_source_id)
        sources = self._agent_sources.get(agent_id, [])
        if data_source_id is not None and selected is not None and selected.id == str(data_source_id):
            sources = [selected]

        tables: List[str] = []
        for source in sources:
            for table in source.allowed_tables:
                if table not in tables:
                    tables.append(table)
        return tables

    @staticmethod
    def _validate_request(request: SearchRequest) -> Optional[SearchMode]:
        if not request.query or not request.query.strip():
            raise InvalidRequestError("Query must not be empty")
        if isinstance(request.limit, bool) or not isinstance(request.limit, int) or not 1 <= request.limit <= MAX_LIMIT:
            raise InvalidRequestError(f"limit must be an integer between 1 and {MAX_LIMIT}")
        if request.mode is None or isinstance(request.mode, SearchMode):
            return request.mode
        try:
            return SearchMode(str(request.mode).lower())
        except ValueError:
            raise InvalidRequestError(f"Unsupported search mode: {request.mode}")

    async def search(self, request: SearchRequest) -> List[SearchResult]:
        """Search and return only the merged results."""
        response = await self.search_with_status(request)
        return response.results

    async def search_with_status(self, request: SearchRequest) -> SearchResponse:
        """
        Run a search across the configured backends.

        Args:
            request: Query, caller identity, mode, limit and metadata filters

        Returns:
            SearchResponse with merged results sorted by score, the backends that
            failed, and the entities found in the query

        Raises:
            InvalidRequestError: for an empty query, unknown mode or out-of-range limit
        """
        requested_mode = self._validate_request(request)

        try:
            config, data_source = self._resolve_context(request.agent_id, request.data_source_id)
        except BackendUnavailableError:
            return SearchResponse(results=[], mode=requested_mode or self.default_config.search_mode,
                                  degraded_backends=["agent_config"])

        mode = requested_mode or config.search_mode
        if mode != SearchMode.KEYWORD and not config.enable_semantic_search:
            logger.debug(f"Semantic search disabled, degrading {mode.value} to keyword")
            mode = SearchMode.KEYWORD

        try:
            return await self._dispatch(request, config, data_source, mode)
        except Exception as e:
            logger.error(f"Search failed: {e}")
            return SearchResponse(results=[], mode=mode, degraded_backends=["retriever"])

    async def _dispatch(
        self,
        request: SearchRequest,
        config: RetrievalConfig,
        data_source: Optional[AgentDataSource],
        mode: SearchMode,
    ) -> SearchResponse:
        degraded: List[str] = []
        limit = min(request.limit, config.max_results)

        # Step 1: Ground the query in known entities
        entities = self._extract_entities(request.query)

        # Step 2: Embed the query for semantic branches
        embedding = None
        if mode != SearchMode.KEYWORD:
            embedding = await self._embed_query(request.query)
            if embedding is None:
                degraded.append("embedding")
                mode = SearchMode.KEYWORD

        # Step 3: Fan out to every branch
        branches = []
        for name in BACKENDS_BY_TYPE[config.search_backend]:
            backend = self.backends.get(name)
            if backend is None:
                logger.warning(f"Search backend {name} is not configured")
                degraded.append(name)
                continue
            if "embedding" in degraded and backend.keyword_needs_embedding:
                # The same embedding call would fail inside the backend
                logger.warning(f"Skipping {name} keyword search, it needs the unavailable query embedding")
                degraded.append(name)
                continue
            if mode in (SearchMode.KEYWORD, SearchMode.HYBRID):
                branches.append((name, "keyword", backend.keyword_search(
                    request.query, limit, request.filters, data_source
                )))
            if mode in (SearchMode.SEMANTIC, SearchMode.HYBRID):
                branches.append((name, "semantic", backend.semantic_search(
                    embedding, limit, config.similarity_threshold, request.filters, data_source
                )))

        outcomes = await asyncio.gather(*[self._run_branch(name, kind, call) for name, kind, call in branches])

        # Step 4: Merge by id keeping the best score
        merged: Dict[str, SearchResult] = {}
        for (name, kind, _), results in zip(branches, outcomes):
            if results is None:
                if name not in degraded:
                    degraded.append(name)
                continue
            for result in results:
                if kind == "semantic" and result.score < config.similarity_threshold:
                    continue
                existing = merged.get(result.id)
                if existing is None or result.score > existing.score:
                    merged[result.id] = result

        ranked = self._apply_entity_boost(list(merged.values()), entities)
        ranked.sort(key=lambda r: r.score, reverse=True)

        if degraded:
            logger.warning(f"Search degraded, failed backends: {', '.join(degraded)}")
        return SearchResponse(
            results=ranked[:limit],
            mode=mode,
            degraded_backends=degraded,
            entities=entities,
        )

    async def _run_branch(self, name: str, kind: str, call) -> Optional[List[SearchResult]]:
        try:
            return await asyncio.wait_for(call, timeout=self.backend_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{name} {kind} search timed out after {self.backend_timeout}s")
        except Exception as e:
            logger.warning(f"{name} {kind} search failed: {e}")
        return None

    async def _embed_query(self, query: str) -> Optional[List[float]]:
        if self.embedding_manager is None:
            logger.warning("No embedding manager configured, falling back to keyword search")
            return None
        try:
            return await asyncio.wait_for(self.embedding_manager.embed(query), timeout=self.backend_timeout)
        except Exception as e:
            logger.warning(f"Query embedding failed, falling back to keyword search: {e}")
            return None

    def _extract_entities(self, query: str) -> List[ResolvedEntity]:
        if self.resolver is None:
            return []
        try:
            return self.resolver.extract_entities(query)
        except Exception as e:
            logger.warning(f"Entity extraction failed: {e}")
            return []

    def _apply_entity_boost(self, results: List[SearchResult], entities: List[ResolvedEntity]) -> List[SearchResult]:
        if not self.entity_boost or not entities:
            return results
        tables = {resolved.entity.source_table for resolved in entities}
        for result in results:
            if result.metadata.get("source_table") in tables:
                result.score = min(1.0, round(result.score + self.entity_boost, 6))
        return results

    async def query_structured_data(self, request: StructuredQueryRequest) -> StructuredQueryResult:
        """
        Run a read-only SELECT on behalf of an agent.

        Args:
            request: SQL text and caller identity

        Returns:
            StructuredQueryResult with rows as dicts, the row count and column names

        Raises:
            PermissionDeniedError: if SQL queries are disabled or a table is not allowed
            InvalidRequestError: if the statement is not a single SELECT
            BackendUnavailableError: if the store cannot run the query
        """
        config, _ = self._resolve_context(request.agent_id, request.data_source_id)
        if not config.enable_sql_queries:
            raise PermissionDeniedError("Structured queries are disabled for this agent", flag="enable_sql_queries")

        allowed_tables = self.get_allowed_tables(request.agent_id, request.data_source_id)
        statement = validate_select(request.query, allowed_tables)

        if self.engine is None:
            raise BackendUnavailableError("No relational store configured", backend="sql")

        try:
            columns, rows = await asyncio.to_thread(self._execute_read_only, statement)
        except SQLAlchemyError as e:
            logger.error(f"Structured query failed: {e}")
            raise BackendUnavailableError("Structured query failed", backend="sql") from e

        logger.info(f"Structured query returned {len(rows)} rows")
        return StructuredQueryResult(rows=rows, row_count=len(rows), columns=columns)

    def _execute_read_only(self, statement: str) -> Tuple[List[str], List[Dict[str, Any]]]:
        with self.engine.connect() as conn:
            transaction = conn.begin()
            try:
                result = conn.execute(text(statement))
                columns = list(result.keys())
                rows = [dict(row) for row in result.mappings()]
            finally:
                transaction.rollback()
        return columns, rows

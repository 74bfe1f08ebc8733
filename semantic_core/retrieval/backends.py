"""
Search backends behind the Unified Retriever.
"""

import asyncio
import heapq
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

import numpy as np
from sqlalchemy import JSON, Column, MetaData, String, Table, Text, or_, select
from sqlalchemy.engine import Engine

from .models import AgentDataSource, SearchResult

logger = logging.getLogger(__name__)

DENSITY_WEIGHT = 0.8
POSITION_WEIGHT = 0.2


def tokenize(query: str) -> List[str]:
    """Lowercase word terms of length >= 2, deduplicated in order."""
    terms = []
    for term in re.findall(r"\w+", (query or "").lower()):
        if len(term) >= 2 and term not in terms:
            terms.append(term)
    return terms


def keyword_score(query: str, content: str) -> float:
    """
    Lexical relevance of ``content`` to ``query`` in [0, 1].

    0.8 * share of query terms present + 0.2 * how early the first match appears.
    """
    terms = tokenize(query)
    if not terms or not content:
        return 0.0

    text_lower = content.lower()
    positions = [text_lower.find(term) for term in terms]
    matched = [pos for pos in positions if pos >= 0]
    if not matched:
        return 0.0

    density = len(matched) / len(terms)
    position = 1.0 - (min(matched) / len(text_lower))
    return round(DENSITY_WEIGHT * density + POSITION_WEIGHT * position, 6)


def cosine_similarities(query_embedding: List[float], embeddings: List[List[float]]) -> np.ndarray:
    """Cosine similarity of one vector against each row of a matrix."""
    if not embeddings:
        return np.array([])
    matrix = np.asarray(embeddings, dtype=float)
    query = np.asarray(query_embedding, dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    norms[norms == 0] = np.inf
    return matrix.dot(query) / norms


def matches_filters(metadata: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    if not filters:
        return True
    return all(metadata.get(key) == value for key, value in filters.items())


class SearchBackend(ABC):
    """A retrieval backend that can answer keyword and vector queries."""

    name: str = "backend"
    # Keyword mode embeds the query itself
    keyword_needs_embedding: bool = False

    @abstractmethod
    async def keyword_search(
        self,
        query: str,
        limit: int,
        filters: Optional[Dict[str, Any]] = None,
        data_source: Optional[AgentDataSource] = None,
    ) -> List[SearchResult]:
        pass

    @abstractmethod
    async def semantic_search(
        self,
        embedding: List[float],
        limit: int,
        threshold: float,
        filters: Optional[Dict[str, Any]] = None,
        data_source: Optional[AgentDataSource] = None,
    ) -> List[SearchResult]:
        pass


_chunk_metadata = MetaData()


def chunk_table(name: str) -> Table:
    """Table definition for an embedding table, registered once per name."""
    if name in _chunk_metadata.tables:
        return _chunk_metadata.tables[name]
    return Table(
        name,
        _chunk_metadata,
        Column("id", String(64), primary_key=True),
        Column("content", Text, nullable=False),
        Column("source_table", String(100)),
        Column("embedding", JSON),
        Column("metadata", JSON),
    )


class SQLIndexBackend(SearchBackend):
    """Keyword and vector search over embedding tables in the relational store."""

    name = "postgres"

    def __init__(self, config: Dict[str, Any], engine: Engine):
        self.config = config
        self.engine = engine
        self.default_table = config.get("embedding_table", "document_chunks")
        self.scan_batch_size = config.get("scan_batch_size", 500)

    def create_tables(self, table_name: Optional[str] = None):
        chunk_table(table_name or self.default_table).create(self.engine, checkfirst=True)

    def _table_for(self, data_source: Optional[AgentDataSource]) -> Table:
        name = (data_source.embedding_table if data_source else None) or self.default_table
        return chunk_table(name)

    @staticmethod
    def _row_metadata(row: Dict[str, Any]) -> Dict[str, Any]:
        metadata = row.get("metadata")
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = {}
        metadata = dict(metadata or {})
        if row.get("source_table"):
            metadata.setdefault("source_table", row["source_table"])
        return metadata

    def _scan(self, table: Table, where) -> Iterator[List[Dict[str, Any]]]:
        """Stream every matching row in batches of ``scan_batch_size``."""
        statement = select(table).where(where).execution_options(yield_per=self.scan_batch_size)
        with self.engine.connect() as conn:
            for partition in conn.execute(statement).mappings().partitions():
                yield [dict(row) for row in partition]

    def _keyword_search_sync(self, query, limit, filters, data_source) -> List[SearchResult]:
        table = self._table_for(data_source)
        terms = tokenize(query)
        if not terms:
            return []

        def scored() -> Iterator[SearchResult]:
            where = or_(*[table.c.content.ilike(f"%{term}%") for term in terms])
            for batch in self._scan(table, where):
                for row in batch:
                    metadata = self._row_metadata(row)
                    if not matches_filters(metadata, filters):
                        continue
                    score = keyword_score(query, row["content"])
                    if score > 0:
                        yield SearchResult(
                            id=str(row["id"]),
                            content=row["content"],
                            score=score,
                            source=self.name,
                            metadata=dict(metadata, match="keyword"),
                        )

        # nlargest keeps only the best ``limit`` results and is stable on ties
        return heapq.nlargest(limit, scored(), key=lambda r: r.score)

    def _semantic_search_sync(self, embedding, limit, threshold, filters, data_source) -> List[SearchResult]:
        table = self._table_for(data_source)

        def scored() -> Iterator[SearchResult]:
            for batch in self._scan(table, table.c.embedding.isnot(None)):
                rows = []
                for row in batch:
                    vector = row.get("embedding")
                    if isinstance(vector, str):
                        vector = json.loads(vector)
                    if not vector or len(vector) != len(embedding):
                        continue
                    metadata = self._row_metadata(row)
                    if matches_filters(metadata, filters):
                        rows.append((row, vector, metadata))

                similarities = cosine_similarities(embedding, [vector for _, vector, _ in rows])
                for (row, _, metadata), similarity in zip(rows, similarities):
                    score = float(min(max(similarity, 0.0), 1.0))
                    if score < threshold:
                        continue
                    yield SearchResult(
                        id=str(row["id"]),
                        content=row["content"],
                        score=round(score, 6),
                        source=self.name,
                        metadata=dict(metadata, match="semantic"),
                    )

        return heapq.nlargest(limit, scored(), key=lambda r: r.score)

    async def keyword_search(self, query, limit, filters=None, data_source=None) -> List[SearchResult]:
        return await asyncio.to_thread(self._keyword_search_sync, query, limit, filters, data_source)

    async def semantic_search(self, embedding, limit, threshold, filters=None, data_source=None) -> List[SearchResult]:
        return await asyncio.to_thread(self._semantic_search_sync, embedding, limit, threshold, filters, data_source)

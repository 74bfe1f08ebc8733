"""
Pinecone external index backend.
"""

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from pinecone import Pinecone

from ..config import resolve_env_vars
from ..models.embedding_manager import EmbeddingManager
from .backends import SearchBackend, keyword_score
from .models import AgentDataSource, SearchResult

logger = logging.getLogger(__name__)


class PineconeBackend(SearchBackend):
    """
    Searches a Pinecone index whose vectors carry the chunk text in ``metadata["text"]``.

    Pinecone has no lexical search, so keyword mode pulls a wider vector candidate set
    and re-scores the returned text lexically.
    """

    name = "external"
    keyword_needs_embedding = True

    def __init__(self, config: Dict[str, Any], embedding_manager: Optional[EmbeddingManager] = None, client=None):
        self.config = config
        self.embedding_manager = embedding_manager
        self.default_index = config.get("index_name", "semantic-core")
        self.keyword_candidates = config.get("keyword_candidates", 50)

        if client is None:
            api_key = resolve_env_vars(config.get("api_key") or "") or os.getenv("PINECONE_API_KEY")
            if not api_key:
                raise ValueError("Pinecone API key must be provided")
            client = Pinecone(api_key=api_key)
        self.pc = client
        self._indexes: Dict[str, Any] = {}

    def _index_for(self, data_source: Optional[AgentDataSource]):
        name = self.default_index
        if data_source is not None and data_source.retrieval_config.external_index_name:
            name = data_source.retrieval_config.external_index_name
        if name not in self._indexes:
            self._indexes[name] = self.pc.Index(name)
            logger.info(f"Using Pinecone index: {name}")
        return self._indexes[name]

    async def _query(self, embedding: List[float], top_k: int, filters, data_source) -> List[Any]:
        index = self._index_for(data_source)
        response = await asyncio.to_thread(
            index.query,
            vector=list(embedding),
            top_k=top_k,
            include_metadata=True,
            filter=filters or None,
        )
        return list(response.matches or [])

    def _to_result(self, match, score: float, match_type: str) -> SearchResult:
        metadata = dict(match.metadata or {})
        content = metadata.pop("text", "")
        return SearchResult(
            id=str(match.id),
            content=content,
            score=round(min(max(float(score), 0.0), 1.0), 6),
            source=self.name,
            metadata=dict(metadata, match=match_type),
        )

    async def semantic_search(self, embedding, limit, threshold, filters=None, data_source=None) -> List[SearchResult]:
        matches = await self._query(embedding, limit, filters, data_source)
        results = [self._to_result(m, m.score or 0.0, "semantic") for m in matches]
        return [r for r in results if r.score >= threshold][:limit]

    async def keyword_search(self, query, limit, filters=None, data_source=None) -> List[SearchResult]:
        if self.embedding_manager is None:
            raise RuntimeError("Pinecone keyword search needs an embedding manager")

        embedding = await self.embedding_manager.embed(query)
        matches = await self._query(embedding, max(limit, self.keyword_candidates), filters, data_source)

        results = []
        for match in matches:
            score = keyword_score(query, (match.metadata or {}).get("text", ""))
            if score > 0:
                results.append(self._to_result(match, score, "keyword"))
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

"""
Embedding Manager for handling different embedding model providers.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import resolve_env_vars

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding providers."""
    provider: str
    model: str
    batch_size: int = 32
    api_key: Optional[str] = None

    def __post_init__(self):
        """Resolve environment variables after initialization."""
        if self.api_key:
            self.api_key = resolve_env_vars(self.api_key)


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate one embedding per input text."""
        pass

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding for a single text."""
        embeddings = await self.embed_batch([text])
        return embeddings[0]


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers provider."""

    def __init__(self, config: EmbeddingConfig):
        from sentence_transformers import SentenceTransformer

        self.config = config
        self.model = SentenceTransformer(config.model)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        # encode() is CPU-bound and synchronous
        vectors = await asyncio.to_thread(
            self.model.encode, texts, batch_size=self.config.batch_size
        )
        return [vector.tolist() for vector in vectors]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings provider."""

    def __init__(self, config: EmbeddingConfig):
        from openai import AsyncOpenAI

        self.config = config
        self.api_key = config.api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key not found")
        self.client = AsyncOpenAI(api_key=self.api_key)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            response = await self.client.embeddings.create(model=self.config.model, input=texts)
            return [item.embedding for item in response.data]
        except Exception as e:
            logger.error(f"OpenAI embedding error: {e}")
            raise


DEFAULT_MODELS = {
    "sentence_transformers": "sentence-transformers/all-MiniLM-L6-v2",
    "openai": "text-embedding-3-small",
}


class EmbeddingManager:
    """Manager that owns the configured embedding provider."""

    def __init__(self, config: Dict[str, Any], provider: Optional[EmbeddingProvider] = None):
        self.config = config
        self.batch_size = config.get("batch_size", 32)
        self.provider_name = config.get("provider", "sentence_transformers")
        self.provider = provider or self._initialize_provider()

    def _initialize_provider(self) -> EmbeddingProvider:
        """Initialize the configured embedding provider."""
        embedding_config = EmbeddingConfig(
            provider=self.provider_name,
            model=self.config.get("model", DEFAULT_MODELS.get(self.provider_name, "")),
            batch_size=self.batch_size,
            api_key=self.config.get("api_key"),
        )

        if self.provider_name == "sentence_transformers":
            provider = SentenceTransformerProvider(embedding_config)
        elif self.provider_name == "openai":
            provider = OpenAIEmbeddingProvider(embedding_config)
        else:
            raise ValueError(f"Unsupported embedding provider: {self.provider_name}")

        logger.info(f"Embedding provider {self.provider_name} initialized with model {embedding_config.model}")
        return provider

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding for a single text."""
        return await self.provider.embed(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings in batches of ``batch_size``."""
        embeddings: List[List[float]] = []
        for i in range(0, len(texts), self.batch_size):
            embeddings.extend(await self.provider.embed_batch(texts[i:i + self.batch_size]))
        return embeddings

"""
Embedding model providers.
"""

from .embedding_manager import (
    EmbeddingConfig,
    EmbeddingManager,
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
    SentenceTransformerProvider,
)

__all__ = [
    "EmbeddingConfig",
    "EmbeddingManager",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "SentenceTransformerProvider",
]

"""
Tests for the Embedding Manager.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from semantic_core.models import EmbeddingManager
from semantic_core.models.embedding_manager import (
    EmbeddingConfig,
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
)


class RecordingProvider(EmbeddingProvider):
    """Returns the text length as a one-dimensional vector."""

    def __init__(self):
        self.batches = []

    async def embed_batch(self, texts):
        self.batches.append(list(texts))
        return [[float(len(t))] for t in texts]


class TestEmbeddingManager:
    """Test batching and provider selection."""

    @pytest.mark.asyncio
    async def test_embed_batch_splits_into_batches(self):
        provider = RecordingProvider()
        manager = EmbeddingManager({"batch_size": 2}, provider=provider)

        vectors = await manager.embed_batch(["a", "bb", "ccc", "dddd", "eeeee"])

        assert vectors == [[1.0], [2.0], [3.0], [4.0], [5.0]]
        assert [len(batch) for batch in provider.batches] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_embed_single_text(self):
        manager = EmbeddingManager({}, provider=RecordingProvider())

        assert await manager.embed("refund") == [6.0]

    def test_unsupported_provider(self):
        with pytest.raises(ValueError):
            EmbeddingManager({"provider": "carrier_pigeon"})

    def test_openai_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(ValueError):
            OpenAIEmbeddingProvider(EmbeddingConfig(provider="openai", model="text-embedding-3-small"))

    def test_config_resolves_env_vars(self, monkeypatch):
        monkeypatch.setenv("SC_TEST_EMBED_KEY", "sk-test")

        config = EmbeddingConfig(provider="openai", model="m", api_key="${SC_TEST_EMBED_KEY}")

        assert config.api_key == "sk-test"

    @pytest.mark.asyncio
    async def test_openai_provider(self):
        with patch("openai.AsyncOpenAI") as client_class:
            client = client_class.return_value
            client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[
                SimpleNamespace(embedding=[0.1, 0.2]),
                SimpleNamespace(embedding=[0.3, 0.4]),
            ]))

            manager = EmbeddingManager({"provider": "openai", "api_key": "sk-test"})
            vectors = await manager.embed_batch(["a", "b"])

        assert vectors == [[0.1, 0.2], [0.3, 0.4]]
        client.embeddings.create.assert_awaited_once_with(model="text-embedding-3-small", input=["a", "b"])

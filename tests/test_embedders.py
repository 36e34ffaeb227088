"""Tests for the embedding backends, with the model and network stubbed out."""

from types import SimpleNamespace

import numpy as np
import pytest

from hearth_memory.embeddings import litellm_embedder
from hearth_memory.embeddings.base import Embedder
from hearth_memory.embeddings.litellm_embedder import LiteLLMEmbedder
from hearth_memory.embeddings.text_embedder import TextEmbedder
from hearth_memory.errors import EmbeddingError


class _FakeModel:
    def encode(self, texts, convert_to_numpy=True):
        return np.array([len(texts), 1.0], dtype=np.float32)


def _response(vector):
    return SimpleNamespace(data=[{"embedding": vector}])


def test_embedders_satisfy_protocol():
    assert isinstance(TextEmbedder(), Embedder)
    assert isinstance(LiteLLMEmbedder(), Embedder)


@pytest.mark.asyncio
async def test_text_embedder_generate():
    embedder = TextEmbedder()
    embedder._model = _FakeModel()

    assert await embedder.generate("kitchen") == [7.0, 1.0]


@pytest.mark.asyncio
async def test_text_embedder_wraps_failures():
    class Broken:
        def encode(self, texts, convert_to_numpy=True):
            raise RuntimeError("CUDA out of memory")

    embedder = TextEmbedder()
    embedder._model = Broken()
    with pytest.raises(EmbeddingError, match="CUDA out of memory"):
        await embedder.generate("kitchen")


@pytest.mark.asyncio
async def test_litellm_embedder_generate(monkeypatch):
    calls = []

    async def fake_aembedding(**kwargs):
        calls.append(kwargs)
        return _response([0.25, 0.5])

    monkeypatch.setattr(litellm_embedder.litellm, "aembedding", fake_aembedding)
    embedder = LiteLLMEmbedder(model="ollama/nomic-embed-text", api_base="http://ollama:11434")

    assert await embedder.generate("porch light") == [0.25, 0.5]
    assert calls == [{
        "model": "ollama/nomic-embed-text",
        "input": ["porch light"],
        "api_base": "http://ollama:11434",
    }]


@pytest.mark.asyncio
async def test_litellm_embedder_retries(monkeypatch):
    attempts = []

    async def flaky(**kwargs):
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("connection refused")
        return _response([1.0])

    monkeypatch.setattr(litellm_embedder.litellm, "aembedding", flaky)
    assert await LiteLLMEmbedder(max_retries=3).generate("x") == [1.0]
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_litellm_embedder_gives_up(monkeypatch):
    async def down(**kwargs):
        raise ConnectionError("connection refused")

    monkeypatch.setattr(litellm_embedder.litellm, "aembedding", down)
    with pytest.raises(EmbeddingError, match="connection refused"):
        await LiteLLMEmbedder(max_retries=2).generate("x")


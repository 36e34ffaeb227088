"""Sentence-transformers wrapper for text embeddings.

Runs locally on CPU or GPU. Encoding happens in a worker thread so the
event loop keeps serving state changes while a model call is running.
"""

from __future__ import annotations

import asyncio
import logging

from sentence_transformers import SentenceTransformer

from hearth_memory.config import MEMORY_CONFIG
from hearth_memory.errors import EmbeddingError

logger = logging.getLogger(__name__)


class TextEmbedder:
    """Lazy-loading wrapper around sentence-transformers."""

    def __init__(self, model_name: str | None = None) -> None:
        self._model_name = model_name or MEMORY_CONFIG["text_embedding_model"]
        self._model: SentenceTransformer | None = None

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info("Loading text embedding model: %s", self._model_name)
            self._model = SentenceTransformer(self._model_name)
        return self._model

    def embed(self, text: str) -> list[float]:
        """Embed a single text string. Returns a list of floats."""
        vector = self.model.encode(text, convert_to_numpy=True)
        return vector.tolist()

    async def generate(self, text: str) -> list[float]:
        try:
            return await asyncio.to_thread(self.embed, text)
        except Exception as exc:
            raise EmbeddingError(f"embed text with {self._model_name}: {exc}") from exc

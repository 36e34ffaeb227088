"""Remote embeddings through LiteLLM, with retry.

The default model points at a local Ollama server
(``ollama/nomic-embed-text``); any provider LiteLLM understands works.
"""

from __future__ import annotations

import logging

import litellm

from hearth_memory.config import MEMORY_CONFIG
from hearth_memory.errors import EmbeddingError

logger = logging.getLogger(__name__)

# Suppress litellm's verbose logging
litellm.suppress_debug_info = True


class LiteLLMEmbedder:
    """Embedding client backed by ``litellm.aembedding``."""

    def __init__(
        self,
        model: str | None = None,
        api_base: str | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.model = model or MEMORY_CONFIG["remote_embedding_model"]
        self.api_base = api_base or MEMORY_CONFIG["remote_embedding_api_base"]
        self.max_retries = max_retries or MEMORY_CONFIG["embedding_max_retries"]

    async def generate(self, text: str) -> list[float]:
        """Embed a single text, retrying transient failures."""
        for attempt in range(self.max_retries):
            try:
                response = await litellm.aembedding(
                    model=self.model,
                    input=[text],
                    api_base=self.api_base,
                )
                return [float(x) for x in response.data[0]["embedding"]]
            except Exception as exc:
                if attempt == self.max_retries - 1:
                    raise EmbeddingError(f"embed text with {self.model}: {exc}") from exc
                logger.warning(
                    "Embedding call failed (attempt %d/%d), retrying...",
                    attempt + 1, self.max_retries,
                )

        raise EmbeddingError(f"embed text with {self.model}: no attempts made")

"""Embedder interface consumed by the fact tools and context providers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Embedder(Protocol):
    async def generate(self, text: str) -> list[float]:
        """Embed one text. Raises EmbeddingError on backend failure."""
        ...

"""LLM tool entry points for long-term fact memory."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from hearth_memory.config import MEMORY_CONFIG
from hearth_memory.embeddings.base import Embedder
from hearth_memory.errors import EmbeddingError, InvalidArgumentError, NotFoundError
from hearth_memory.models import FACT_CATEGORIES, Fact
from hearth_memory.storage.fact_store import FactStore
from hearth_memory.tools.arguments import as_int, decode_arguments

logger = logging.getLogger(__name__)


def _format_facts(facts: Sequence[Fact]) -> str:
    return "".join(f"[{f.category}] {f.key} = {f.value}\n" for f in facts)


class FactTools:
    """remember / recall / forget / semantic_recall over a FactStore."""

    def __init__(self, store: FactStore, embedder: Embedder | None = None) -> None:
        self.store = store
        self.embedder = embedder

    async def remember_fact(
        self,
        key: str = "",
        value: str = "",
        category: str = "",
        source: str = "",
        subjects: Sequence[str] | None = None,
    ) -> str:
        category = category or "preference"
        if not key:
            raise InvalidArgumentError("remember_fact: key is required")
        if not value:
            raise InvalidArgumentError("remember_fact: value is required")

        fact = await self.store.set(category, key, value, source, 1.0, subjects)

        # The fact is kept even if embedding fails; the backfill job retries
        if self.embedder is not None:
            try:
                vector = await self.embedder.generate(fact.embedding_text)
                await self.store.set_embedding(fact.id, vector)
            except EmbeddingError as exc:
                logger.warning("Failed to embed fact %s/%s, stored without embedding: %s", category, key, exc)

        return f"Remembered: [{fact.category}] {fact.key} = {fact.value}"

    async def recall_fact(self, category: str = "", key: str = "", query: str = "") -> str:
        if category and key:
            try:
                fact = await self.store.get(category, key)
            except NotFoundError:
                return "Not found"
            return f"[{fact.category}] {fact.key} = {fact.value} (confidence: {fact.confidence:.1f})"

        if category:
            facts = await self.store.get_by_category(category)
            if not facts:
                return f"No facts in category '{category}'"
            return _format_facts(facts)

        if query:
            facts = await self.store.search(query)
            if not facts:
                return f"No facts matching '{query}'"
            return _format_facts(facts)

        stats = await self.store.stats()
        lines = [f"Memory contains {stats['total']} facts:"]
        lines.extend(f"  - {cat}: {count}" for cat, count in sorted(stats["by_category"].items()))
        return "\n".join(lines) + "\n"

    async def forget_fact(self, category: str = "", key: str = "") -> str:
        if not category or not key:
            raise InvalidArgumentError("forget_fact: category and key are required")
        await self.store.delete(category, key)
        return f"Forgot: [{category}] {key}"

    async def semantic_recall(self, query: str = "", limit: int = 0) -> str:
        if not query:
            raise InvalidArgumentError("semantic_recall: query is required")
        if self.embedder is None:
            raise EmbeddingError("semantic_recall: no embedder configured")

        limit = as_int("semantic_recall", "limit", limit)
        if limit <= 0:
            limit = MEMORY_CONFIG["semantic_recall_default_limit"]
        limit = min(limit, MEMORY_CONFIG["semantic_recall_max_limit"])

        vector = await self.embedder.generate(query)
        facts, scores = await self.store.semantic_search(vector, limit)
        if not facts:
            return "No semantically similar facts found"

        lines = [f"Found {len(facts)} relevant facts:\n"]
        lines.extend(
            f"{score:.2f} | [{f.category}] {f.key}: {f.value}"
            for f, score in zip(facts, scores)
        )
        return "\n".join(lines) + "\n"

    async def generate_missing_embeddings(self) -> int:
        """Backfill embeddings for facts stored without one. Returns the count embedded."""
        if self.embedder is None:
            raise EmbeddingError("generate_missing_embeddings: no embedder configured")

        count = 0
        for fact in await self.store.get_facts_without_embeddings():
            try:
                vector = await self.embedder.generate(fact.embedding_text)
                await self.store.set_embedding(fact.id, vector)
            except (EmbeddingError, NotFoundError) as exc:
                logger.warning("Skipping embedding for fact %s/%s: %s", fact.category, fact.key, exc)
                continue
            count += 1

        if count:
            logger.info("Backfilled embeddings for %d facts", count)
        return count

    async def call(self, name: str, arguments: str | dict[str, Any] | None) -> str:
        """Dispatch a tool call by name with JSON (or already-decoded) arguments."""
        handlers = {
            "remember_fact": self.remember_fact,
            "recall_fact": self.recall_fact,
            "forget_fact": self.forget_fact,
            "semantic_recall": self.semantic_recall,
        }
        if name not in handlers:
            raise InvalidArgumentError(f"unknown fact tool: {name}")
        handler = handlers[name]
        return await handler(**decode_arguments(name, arguments, handler))

    @staticmethod
    def definitions() -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": "remember_fact",
                    "description": (
                        "Store a discrete, stable piece of information for later recall. "
                        "Best for user preferences, home layout, device mappings, routines, "
                        "or observed patterns. Each fact should be a single, self-contained "
                        "piece of knowledge."
                    ),
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "category": {
                                "type": "string",
                                "enum": list(FACT_CATEGORIES),
                                "description": (
                                    "Category: user (preferences, habits), home (household, rooms, pets), "
                                    "device (hardware, mappings), routine (schedules, workflows), "
                                    "preference (interaction prefs), architecture (system design decisions)"
                                ),
                            },
                            "key": {
                                "type": "string",
                                "description": "Unique identifier within the category (e.g. 'time_format')",
                            },
                            "value": {"type": "string", "description": "The information to remember"},
                            "source": {
                                "type": "string",
                                "description": "Where this came from (e.g. 'user stated', 'observed')",
                            },
                            "subjects": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": (
                                    "Subject keys this fact relates to, prefixed with their type, "
                                    'e.g. ["entity:binary_sensor.driveway", "zone:driveway"]'
                                ),
                            },
                        },
                        "required": ["key", "value"],
                    },
                },
            },
            {
                "type": "function",
                "function": {
                    "name": "recall_fact",
                    "description": (
                        "Retrieve information from long-term memory. Can look up a specific "
                        "fact, list a category, or search."
                    ),
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "category": {"type": "string", "description": "Category to filter by"},
                            "key": {"type": "string", "description": "Specific key to recall (requires category)"},
                            "query": {"type": "string", "description": "Search term to find matching facts"},
                        },
                    },
                },
            },
            {
                "type": "function",
                "function": {
                    "name": "forget_fact",
                    "description": "Remove a fact from long-term memory.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "category": {"type": "string", "description": "Category of the fact to forget"},
                            "key": {"type": "string", "description": "Key of the fact to forget"},
                        },
                        "required": ["category", "key"],
                    },
                },
            },
            {
                "type": "function",
                "function": {
                    "name": "semantic_recall",
                    "description": (
                        "Search memory using natural language. Finds facts semantically similar "
                        "to the query even when exact keywords don't match."
                    ),
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "query": {"type": "string", "description": "Natural language query"},
                            "limit": {
                                "type": "integer",
                                "description": "Maximum results to return (default 5, max 20)",
                            },
                        },
                        "required": ["query"],
                    },
                },
            },
        ]

"""Context providers that assemble the memory section of the system prompt.

Four providers run for every wake or user message, in a fixed order:
subject-keyed facts, semantically similar facts, the recent state window,
and matched anticipations. ``CompositeContextProvider`` runs them
concurrently and joins whatever they return.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from hearth_memory.config import MEMORY_CONFIG
from hearth_memory.core.matching import format_matched_context
from hearth_memory.core.request_context import subjects_from_context, wake_from_context
from hearth_memory.embeddings.base import Embedder
from hearth_memory.models import Anticipation, WakeContext
from hearth_memory.storage.anticipation_store import AnticipationStore
from hearth_memory.storage.fact_store import FactStore

logger = logging.getLogger(__name__)


@runtime_checkable
class ContextProvider(Protocol):
    async def get_context(self, message: str) -> str: ...


class SubjectFactsProvider:
    """Facts tagged with the subjects bound to the current request."""

    HEADER = "### Subject-Keyed Facts"

    def __init__(self, store: FactStore, max_facts: int = 0) -> None:
        self.store = store
        self.max_facts = max_facts or MEMORY_CONFIG["subject_max_facts"]

    async def get_context(self, message: str = "") -> str:
        subjects = subjects_from_context()
        if not subjects:
            return ""

        facts = (await self.store.get_by_subjects(subjects))[: self.max_facts]
        if not facts:
            return ""

        blocks = []
        for f in facts:
            block = f"**{f.category}/{f.key}**"
            if f.subjects:
                block += f" [{', '.join(f.subjects)}]"
            block += f"\n{f.value}"
            if f.ref:
                block += f"\nFull details: kb:{f.ref}"
            blocks.append(block)

        logger.debug("Subject context injected: subjects=%s facts=%d", subjects, len(facts))
        return f"{self.HEADER}\n\n" + "\n\n".join(blocks)


class SemanticFactsProvider:
    """Facts whose embeddings are close to the user's message."""

    def __init__(
        self,
        store: FactStore,
        embedder: Embedder | None,
        max_facts: int = 0,
        min_score: float | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.max_facts = max_facts or MEMORY_CONFIG["semantic_max_facts"]
        self.min_score = MEMORY_CONFIG["semantic_min_score"] if min_score is None else min_score

    async def get_context(self, message: str = "") -> str:
        if not message or self.embedder is None:
            return ""

        vector = await self.embedder.generate(message)
        facts, scores = await self.store.semantic_search(vector, self.max_facts)

        blocks = [
            f"**{f.category}/{f.key}** ({score * 100:.0f}% relevant)\n{f.value}"
            for f, score in zip(facts, scores)
            if score >= self.min_score
        ]
        return "\n\n".join(blocks)


class AnticipationContextProvider:
    """Matched anticipations for the current wake.

    The wake context comes from the request (``with_wake_context``), else
    the last one handed to ``set_wake_context``, else a bare "now".
    """

    def __init__(self, store: AnticipationStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._last: WakeContext | None = None

    def set_wake_context(self, wake: WakeContext) -> None:
        with self._lock:
            self._last = wake

    def clear_wake_context(self) -> None:
        with self._lock:
            self._last = None

    def current_wake_context(self) -> WakeContext:
        wake = wake_from_context()
        if wake is None:
            with self._lock:
                wake = self._last
        return wake or WakeContext()

    async def get_context(self, message: str = "", matched: Sequence[Anticipation] | None = None) -> str:
        if matched is None:
            matched = await self.store.match(self.current_wake_context())
        return format_matched_context(matched)


class CompositeContextProvider:
    """Runs providers concurrently and joins their output in order.

    A failing provider is logged and its section left out.
    """

    def __init__(self, providers: Sequence[ContextProvider]) -> None:
        self.providers = list(providers)

    def add(self, provider: ContextProvider) -> None:
        self.providers.append(provider)

    async def get_context(self, message: str = "") -> str:
        results = await asyncio.gather(
            *(p.get_context(message) for p in self.providers),
            return_exceptions=True,
        )

        sections = []
        for provider, result in zip(self.providers, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.warning(
                    "Context provider %s failed: %s", type(provider).__name__, result,
                    exc_info=result,
                )
                continue
            if result:
                sections.append(result)
        return "\n\n".join(sections)

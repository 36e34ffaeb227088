"""Memory Manager: wires stores, context providers, tools and the wake bridge.

This is the primary interface for the agent runtime. It owns the single
database connection shared by the fact and anticipation stores.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from contextlib import ExitStack
from datetime import timedelta, tzinfo
from pathlib import Path
from typing import Any

import aiosqlite

from hearth_memory.config import DATA_DIR, MEMORY_CONFIG
from hearth_memory.core.context import (
    AnticipationContextProvider,
    CompositeContextProvider,
    SemanticFactsProvider,
    SubjectFactsProvider,
)
from hearth_memory.core.request_context import use_subjects, use_wake_context
from hearth_memory.core.state_window import StateWindow
from hearth_memory.core.wake import StateFetcher, WakeBridge, WakeCallback
from hearth_memory.embeddings.base import Embedder
from hearth_memory.embeddings.text_embedder import TextEmbedder
from hearth_memory.errors import InvalidArgumentError
from hearth_memory.models import Anticipation, WakeContext
from hearth_memory.storage.anticipation_store import AnticipationStore
from hearth_memory.storage.database import connect
from hearth_memory.storage.fact_store import FactStore
from hearth_memory.tools.anticipation_tools import AnticipationTools
from hearth_memory.tools.fact_tools import FactTools

logger = logging.getLogger(__name__)


class MemoryManager:
    """Top-level orchestrator for facts, anticipations and wake context."""

    def __init__(
        self,
        data_dir: Path | None = None,
        embedder: Embedder | None = None,
        on_wake: WakeCallback | None = None,
        fetch_state: StateFetcher | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self.data_dir = data_dir or DATA_DIR
        self.db_path = self.data_dir / "hearth.db"
        self.config = MEMORY_CONFIG

        # Model loads lazily on first use
        self.embedder: Embedder = embedder or TextEmbedder()

        self._db: aiosqlite.Connection | None = None
        self.facts: FactStore | None = None
        self.anticipations: AnticipationStore | None = None

        self.state_window = StateWindow(
            size=self.config["state_window_size"],
            max_age=timedelta(minutes=self.config["state_window_max_age_minutes"]),
            tz=tz,
        )
        self._on_wake = on_wake
        self._fetch_state = fetch_state

        # Built in initialize() once the stores exist
        self.anticipation_provider: AnticipationContextProvider | None = None
        self.context: CompositeContextProvider | None = None
        self.wake_bridge: WakeBridge | None = None
        self.fact_tools: FactTools | None = None
        self.anticipation_tools: AnticipationTools | None = None

    async def initialize(self) -> None:
        """Open the database and build every component. Call before any operation."""
        self._db = await connect(self.db_path)
        self.facts = FactStore(self.db_path, db=self._db)
        self.anticipations = AnticipationStore(self.db_path, db=self._db)
        await self.facts.initialize()
        await self.anticipations.initialize()

        self.anticipation_provider = AnticipationContextProvider(self.anticipations)
        self.context = CompositeContextProvider([
            SubjectFactsProvider(self.facts),
            SemanticFactsProvider(self.facts, self.embedder),
            self.state_window,
            self.anticipation_provider,
        ])
        self.wake_bridge = WakeBridge(
            self.anticipations,
            provider=self.anticipation_provider,
            on_wake=self._on_wake,
            fetch_state=self._fetch_state,
            cooldown=timedelta(seconds=self.config["anticipation_cooldown_seconds"]),
        )
        self.fact_tools = FactTools(self.facts, self.embedder)
        self.anticipation_tools = AnticipationTools(self.anticipations)
        logger.info("Memory manager initialized at %s", self.db_path)

    async def close(self) -> None:
        if self.wake_bridge:
            await self.wake_bridge.close()
        if self.facts:
            await self.facts.close()
        if self.anticipations:
            await self.anticipations.close()
        if self._db:
            await self._db.close()
            self._db = None

    async def get_context(
        self,
        message: str = "",
        subjects: Sequence[str] | None = None,
        wake: WakeContext | None = None,
    ) -> str:
        """Memory context for the system prompt.

        ``subjects`` and ``wake`` are bound for this call only; when omitted,
        whatever the caller already bound in the request context applies.
        """
        assert self.context is not None, "MemoryManager not initialized — call initialize() first"
        with ExitStack() as stack:
            if subjects is not None:
                stack.enter_context(use_subjects(subjects))
            if wake is not None:
                stack.enter_context(use_wake_context(wake))
            return await self.context.get_context(message)

    async def handle_state_change(self, entity_id: str, old_state: str, new_state: str) -> list[Anticipation]:
        """State-change sink for the external watcher."""
        assert self.wake_bridge is not None, "MemoryManager not initialized — call initialize() first"
        self.state_window.handle_state_change(entity_id, old_state, new_state)
        return await self.wake_bridge.handle_state_change(entity_id, old_state, new_state)

    def tool_definitions(self) -> list[dict[str, Any]]:
        return FactTools.definitions() + AnticipationTools.definitions()

    async def call_tool(self, name: str, arguments: str | dict[str, Any] | None) -> str:
        assert self.fact_tools is not None and self.anticipation_tools is not None, (
            "MemoryManager not initialized — call initialize() first"
        )
        for tools in (self.fact_tools, self.anticipation_tools):
            if name in {d["function"]["name"] for d in tools.definitions()}:
                return await tools.call(name, arguments)
        raise InvalidArgumentError(f"unknown tool: {name}")

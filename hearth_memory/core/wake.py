"""Bridge from entity state changes to anticipation-driven agent wakes.

For every real state change the bridge matches active anticipations,
applies cooldown, records the firing, resolves one-shot anticipations,
and hands a wake message to the agent callback in a background task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta

from hearth_memory.config import MEMORY_CONFIG
from hearth_memory.core.context import AnticipationContextProvider
from hearth_memory.errors import HearthMemoryError
from hearth_memory.models import Anticipation, WakeContext, utc_now
from hearth_memory.storage.anticipation_store import AnticipationStore

logger = logging.getLogger(__name__)

WakeCallback = Callable[[Anticipation, str], Awaitable[None]]
StateFetcher = Callable[[str], Awaitable[str]]


def format_wake_message(
    a: Anticipation, entity_id: str, old_state: str, new_state: str, entity_context: str = "",
) -> str:
    parts = [
        f'Anticipation matched: "{a.description}"\n\n',
        f'Entity {entity_id} changed from "{old_state}" to "{new_state}".\n\n',
    ]
    if a.context:
        parts.append(f"Instructions you left for yourself:\n{a.context}\n")
    if entity_context:
        parts.append(f"\nRelevant entity states:\n{entity_context}")
    return "".join(parts)


class WakeBridge:
    def __init__(
        self,
        store: AnticipationStore,
        provider: AnticipationContextProvider | None = None,
        on_wake: WakeCallback | None = None,
        fetch_state: StateFetcher | None = None,
        cooldown: timedelta | None = None,
        wake_timeout: timedelta | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.on_wake = on_wake
        self.fetch_state = fetch_state
        self.cooldown = cooldown or timedelta(seconds=MEMORY_CONFIG["anticipation_cooldown_seconds"])
        self.wake_timeout = wake_timeout or timedelta(seconds=MEMORY_CONFIG["wake_timeout_seconds"])
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()
        self._last_cleanup = time.monotonic()

    async def handle_state_change(
        self, entity_id: str, old_state: str, new_state: str,
    ) -> list[Anticipation]:
        """Process one state change. Returns the anticipations that fired.

        Wakes run as background tasks so the caller is not held up by an
        agent run; use ``drain()`` to wait for them.
        """
        # Attribute-only updates repeat the same state
        if old_state == new_state:
            return []

        wake = WakeContext(
            time=utc_now(),
            event_type="state_change",
            entity_id=entity_id,
            entity_state=new_state,
        )
        if self.provider is not None:
            self.provider.set_wake_context(wake)

        try:
            matched = await self.store.match(wake)
        except HearthMemoryError:
            logger.exception("Anticipation match failed for %s", entity_id)
            return []

        await self._maybe_cleanup()
        if not matched:
            logger.debug("State change %s: %s -> %s, no anticipation match", entity_id, old_state, new_state)
            return []

        fired = []
        for a in matched:
            if await self._fire(a):
                fired.append(a)
                logger.info(
                    "Anticipation %s matched (%s), triggering wake: %s %s -> %s",
                    a.id, a.description, entity_id, old_state, new_state,
                )
                self._spawn_wake(a, entity_id, old_state, new_state)
        return fired

    @property
    def pending(self) -> int:
        """Number of wakes still running."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every running wake to finish."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel running wakes and wait for them to unwind."""
        for task in list(self._tasks):
            task.cancel()
        await self.drain()

    async def _fire(self, a: Anticipation) -> bool:
        lock = self._locks.setdefault(a.id, asyncio.Lock())
        async with lock:
            try:
                if await self.store.on_cooldown(a.id, self.cooldown):
                    logger.debug("Anticipation %s on cooldown, skipping", a.id)
                    return False
                await self.store.mark_fired(a.id)
                if not a.recurring:
                    await self.store.resolve(a.id)
            except HearthMemoryError:
                logger.exception("Failed to record firing of anticipation %s", a.id)
                return False
        if not a.recurring:
            self._locks.pop(a.id, None)
        return True

    async def _maybe_cleanup(self) -> None:
        """Drop idle locks of anticipations that are no longer active."""
        now = time.monotonic()
        if now - self._last_cleanup < MEMORY_CONFIG["wake_lock_cleanup_seconds"]:
            return
        self._last_cleanup = now
        try:
            active = {a.id for a in await self.store.active()}
        except HearthMemoryError:
            logger.exception("Failed to list active anticipations for lock cleanup")
            return
        for anticipation_id in [k for k, lock in self._locks.items() if k not in active and not lock.locked()]:
            del self._locks[anticipation_id]

    def _spawn_wake(self, a: Anticipation, entity_id: str, old_state: str, new_state: str) -> None:
        if self.on_wake is None:
            return
        task = asyncio.create_task(
            self._run_wake(a, entity_id, old_state, new_state),
            name=f"wake-{a.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_wake(self, a: Anticipation, entity_id: str, old_state: str, new_state: str) -> None:
        try:
            async with asyncio.timeout(self.wake_timeout.total_seconds()):
                entity_context = await self.fetch_entity_context(a, entity_id)
                message = format_wake_message(a, entity_id, old_state, new_state, entity_context)
                await self.on_wake(a, message)
        except TimeoutError:
            logger.error("Anticipation wake for %s timed out after %s", a.id, self.wake_timeout)
        except Exception:
            logger.exception("Anticipation wake failed for %s", a.id)

    async def fetch_entity_context(self, a: Anticipation, trigger_entity_id: str) -> str:
        """Best-effort snapshot of the anticipation's context entities."""
        if self.fetch_state is None:
            return ""

        entities: list[str] = []
        for entity_id in [*a.context_entities, trigger_entity_id]:
            entity_id = entity_id.strip()
            if entity_id and entity_id not in entities:
                entities.append(entity_id)

        parts = []
        for entity_id in entities:
            try:
                state = await self.fetch_state(entity_id)
            except Exception as exc:
                logger.warning("Entity context fetch failed for %s: %s", entity_id, exc)
                state = "(fetch failed)"
            parts.append(f"Entity: {entity_id}\nState: {state}\n")
        return "\n".join(parts)

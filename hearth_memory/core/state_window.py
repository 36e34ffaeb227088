"""Rolling window of recent entity state changes for prompt context.

The window is written from the state-watcher callback (often a separate
thread) and read while building prompts, so the ring buffer sits behind
a readers-writer lock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, tzinfo

from hearth_memory.config import MEMORY_CONFIG
from hearth_memory.models import StateEntry, to_utc, utc_now


class _ReadWriteLock:
    """Many readers or one writer. Waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writing or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class StateWindow:
    """Fixed-capacity ring of the most recent state changes."""

    HEADER = "### Recent State Changes"

    def __init__(
        self,
        size: int = 0,
        max_age: timedelta | None = None,
        tz: tzinfo | None = None,
        now_func: Callable[[], datetime] | None = None,
    ) -> None:
        self.size = size if size > 0 else MEMORY_CONFIG["state_window_size"]
        if not max_age or max_age <= timedelta(0):
            max_age = timedelta(minutes=MEMORY_CONFIG["state_window_max_age_minutes"])
        self.max_age = max_age
        self.tz = tz  # None renders in the local timezone
        self._now = now_func or utc_now

        self._entries: list[StateEntry | None] = [None] * self.size
        self._head = 0
        self._count = 0
        self._lock = _ReadWriteLock()

    def handle_state_change(self, entity_id: str, old_state: str, new_state: str) -> None:
        entry = StateEntry(entity_id, old_state, new_state, to_utc(self._now()))
        with self._lock.write():
            self._entries[self._head] = entry
            self._head = (self._head + 1) % self.size
            self._count = min(self._count + 1, self.size)

    def __len__(self) -> int:
        with self._lock.read():
            return self._count

    def entries(self) -> list[StateEntry]:
        """Snapshot of the buffer, newest first, ignoring age."""
        with self._lock.read():
            return [
                self._entries[(self._head - 1 - i) % self.size]
                for i in range(self._count)
            ]

    def render(self) -> str:
        cutoff = to_utc(self._now()) - self.max_age
        lines = []
        for entry in self.entries():
            if entry.timestamp < cutoff:
                continue
            when = entry.timestamp.astimezone(self.tz).isoformat(timespec="seconds")
            lines.append(f"- {entry.entity_id}: {entry.old_state} → {entry.new_state} ({when})")
        if not lines:
            return ""
        return f"{self.HEADER}\n\n" + "\n".join(lines)

    async def get_context(self, message: str = "") -> str:
        return self.render()

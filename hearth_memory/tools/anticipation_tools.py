"""LLM tool entry points for creating and managing anticipations."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any

from hearth_memory.config import MEMORY_CONFIG
from hearth_memory.errors import InvalidArgumentError
from hearth_memory.models import Anticipation, Trigger, utc_now
from hearth_memory.storage.anticipation_store import AnticipationStore
from hearth_memory.tools.arguments import as_int, decode_arguments

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)([dhms])")
_DURATION = re.compile(r"(?:\d+(?:\.\d+)?[dhms])+")
_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds"}


def parse_duration(text: str) -> timedelta:
    """Parse durations like ``90m``, ``2h``, ``7d`` or ``1h30m``."""
    text = text.strip().lower()
    if not _DURATION.fullmatch(text):
        raise InvalidArgumentError(f"invalid duration {text!r} (expected e.g. 90m, 2h, 7d, 1h30m)")
    total = timedelta()
    for amount, unit in _DURATION_PART.findall(text):
        total += timedelta(**{_UNITS[unit]: float(amount)})
    return total


def _truncate(text: str, max_len: int) -> str:
    return text if len(text) <= max_len else text[: max_len - 3] + "..."


def _short(ts: datetime | None) -> str:
    return ts.strftime("%Y-%m-%d %H:%M") if ts else "unknown"


class AnticipationTools:
    def __init__(self, store: AnticipationStore) -> None:
        self.store = store

    async def create_anticipation(
        self,
        description: str = "",
        context: str = "",
        after_time: str = "",
        entity_id: str = "",
        entity_state: str = "",
        zone: str = "",
        zone_action: str = "",
        event_type: str = "",
        context_entities: list[str] | None = None,
        recurring: bool = False,
        cooldown_seconds: int = 0,
        expires_in: str = "",
    ) -> str:
        if not description or not context:
            raise InvalidArgumentError("create_anticipation: description and context are required")

        trigger = Trigger(
            entity_id=entity_id,
            entity_state=entity_state,
            zone=zone,
            zone_action=zone_action,
            event_type=event_type,
        )
        if after_time:
            try:
                trigger.after_time = datetime.fromisoformat(after_time.replace("Z", "+00:00"))
            except ValueError as exc:
                raise InvalidArgumentError(f"create_anticipation: invalid after_time {after_time!r}") from exc
        cooldown = as_int("create_anticipation", "cooldown_seconds", cooldown_seconds)
        if not trigger.has_conditions():
            raise InvalidArgumentError(
                "create_anticipation: needs at least one trigger condition "
                "(after_time, entity_id, zone, or event_type)"
            )

        a = Anticipation(
            description=description,
            context=context,
            trigger=trigger,
            recurring=bool(recurring),
            cooldown_seconds=cooldown,
            context_entities=[e for e in (context_entities or []) if e][: MEMORY_CONFIG["max_context_entities"]],
        )
        if expires_in:
            a.expires_at = utc_now() + parse_duration(expires_in)

        await self.store.create(a)
        return _describe_created(a)

    async def list_anticipations(self) -> str:
        active = await self.store.active()
        if not active:
            return "No active anticipations."

        lines = [f"Active anticipations: {len(active)}\n"]
        for a in active:
            lines.append(f"**{a.description}** (ID: {a.id})")
            if a.recurring:
                lines.append("  Lifecycle: recurring")
            lines.append(f"  Created: {_short(a.created_at)}")
            if a.expires_at:
                lines.append(f"  Expires: {_short(a.expires_at)}")
            if a.context_entities:
                lines.append(f"  Context entities: {', '.join(a.context_entities)}")
            lines.append(f"  Context: {_truncate(a.context, 100)}\n")
        return "\n".join(lines) + "\n"

    async def resolve_anticipation(self, id: str = "") -> str:
        a = await self._lookup("resolve_anticipation", id)
        await self.store.resolve(id)
        return f"Resolved anticipation: {a.description}"

    async def cancel_anticipation(self, id: str = "") -> str:
        a = await self._lookup("cancel_anticipation", id)
        await self.store.delete(id)
        return f"Cancelled anticipation: {a.description}"

    async def _lookup(self, tool: str, anticipation_id: str) -> Anticipation:
        if not anticipation_id:
            raise InvalidArgumentError(f"{tool}: id is required")
        # NotFoundError carries "anticipation not found: <id>"
        return await self.store.get(anticipation_id)

    async def call(self, name: str, arguments: str | dict[str, Any] | None) -> str:
        handlers = {
            "create_anticipation": self.create_anticipation,
            "list_anticipations": self.list_anticipations,
            "resolve_anticipation": self.resolve_anticipation,
            "cancel_anticipation": self.cancel_anticipation,
        }
        if name not in handlers:
            raise InvalidArgumentError(f"unknown anticipation tool: {name}")
        handler = handlers[name]
        return await handler(**decode_arguments(name, arguments, handler))

    @staticmethod
    def definitions() -> list[dict[str, Any]]:
        id_param = {
            "type": "object",
            "properties": {"id": {"type": "string", "description": "The anticipation ID"}},
            "required": ["id"],
        }
        return [
            {
                "type": "function",
                "function": {
                    "name": "create_anticipation",
                    "description": (
                        "Set up an expectation for a future event. When the trigger conditions "
                        "match a wake, the stored context is injected so you remember why you cared."
                    ),
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "description": {"type": "string", "description": "What you are anticipating"},
                            "context": {
                                "type": "string",
                                "description": "Instructions or context to recall when it triggers",
                            },
                            "after_time": {
                                "type": "string",
                                "description": "Trigger after this time (ISO 8601, e.g. 2026-02-09T14:30:00Z)",
                            },
                            "entity_id": {"type": "string", "description": "Trigger on this entity changing"},
                            "entity_state": {
                                "type": "string",
                                "description": "Only when the entity reaches this state (requires entity_id)",
                            },
                            "zone": {"type": "string", "description": "Trigger on a zone transition"},
                            "zone_action": {
                                "type": "string",
                                "enum": ["enter", "leave"],
                                "description": "Zone transition direction (requires zone)",
                            },
                            "event_type": {
                                "type": "string",
                                "description": "Trigger on this wake event type (e.g. cron, presence)",
                            },
                            "context_entities": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "Entity IDs whose state to include when this fires (max 10)",
                            },
                            "recurring": {
                                "type": "boolean",
                                "description": "Keep firing on every match instead of resolving after the first",
                            },
                            "cooldown_seconds": {
                                "type": "integer",
                                "description": "Minimum seconds between firings (0 uses the global default)",
                            },
                            "expires_in": {
                                "type": "string",
                                "description": "Auto-expire after this duration (e.g. 2h, 90m, 7d)",
                            },
                        },
                        "required": ["description", "context"],
                    },
                },
            },
            {
                "type": "function",
                "function": {
                    "name": "list_anticipations",
                    "description": "List all active anticipations.",
                    "parameters": {"type": "object", "properties": {}},
                },
            },
            {
                "type": "function",
                "function": {
                    "name": "resolve_anticipation",
                    "description": "Mark an anticipation as fulfilled.",
                    "parameters": id_param,
                },
            },
            {
                "type": "function",
                "function": {
                    "name": "cancel_anticipation",
                    "description": "Cancel an anticipation that is no longer needed.",
                    "parameters": id_param,
                },
            },
        ]


def _describe_created(a: Anticipation) -> str:
    lines = [f"Created anticipation: {a.description}", f"ID: {a.id}"]
    if a.recurring:
        lines.append("Lifecycle: recurring (keeps firing on matches)")
    else:
        lines.append("Lifecycle: one-shot (auto-resolved after first wake)")
    if a.cooldown_seconds:
        lines.append(f"Cooldown: {a.cooldown_seconds}s")
    if a.expires_at:
        lines.append(f"Expires: {a.expires_at.isoformat(timespec='seconds')}")

    t = a.trigger
    lines.append("\nTrigger conditions:")
    if t.after_time:
        lines.append(f"  - After: {t.after_time.isoformat(timespec='seconds')}")
    if t.entity_id:
        lines.append(f"  - Entity: {t.entity_id}" + (f" = {t.entity_state}" if t.entity_state else ""))
    if t.zone:
        lines.append(f"  - Zone: {t.zone}" + (f" ({t.zone_action})" if t.zone_action else ""))
    if t.event_type:
        lines.append(f"  - Event type: {t.event_type}")
    if a.context_entities:
        lines.append(f"Context entities: {', '.join(a.context_entities)}")
    return "\n".join(lines) + "\n"

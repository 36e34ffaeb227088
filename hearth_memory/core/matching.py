"""Trigger matching for anticipations, and prompt formatting of matches."""

from __future__ import annotations

from collections.abc import Sequence

from hearth_memory.models import Anticipation, Trigger, WakeContext, to_utc


def _same(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


def trigger_matches(trigger: Trigger, wake: WakeContext) -> bool:
    """True when every condition set on ``trigger`` holds for ``wake``.

    A trigger without conditions never matches. ``expression`` is ignored.
    """
    if not trigger.has_conditions():
        return False

    if trigger.after_time is not None and to_utc(wake.time) < to_utc(trigger.after_time):
        return False

    if trigger.entity_id:
        if wake.entity_id != trigger.entity_id:
            return False
        if trigger.entity_state and not _same(wake.entity_state, trigger.entity_state):
            return False

    if trigger.zone:
        if not _same(wake.zone, trigger.zone):
            return False
        if trigger.zone_action and not _same(wake.zone_action, trigger.zone_action):
            return False

    if trigger.event_type and not _same(wake.event_type, trigger.event_type):
        return False

    return True


def format_matched_context(matched: Sequence[Anticipation]) -> str:
    """Render matched anticipations for injection into the system prompt."""
    if not matched:
        return ""

    lines = [
        "## Active Anticipations\n",
        "You previously set up these anticipations that match the current wake:\n",
    ]
    for a in matched:
        created = a.created_at.strftime("%Y-%m-%d %H:%M") if a.created_at else "unknown"
        lines.append(f"### {a.description}")
        lines.append(f"*Created: {created}*\n")
        lines.append(f"{a.context}\n")
    lines.append("---")
    lines.append("Consider resolving anticipations that have been fulfilled.")
    return "\n".join(lines) + "\n"

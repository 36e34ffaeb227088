"""Data models for the memory and wake-context system."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ulid import ULID

FACT_CATEGORIES = ("user", "home", "device", "routine", "preference", "architecture")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC. Naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    """Render a timestamp as fixed-width RFC 3339 text in UTC.

    Every stored timestamp goes through here, so stored values compare
    correctly as plain strings.
    """
    if value is None:
        return None
    return to_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def new_fact_id() -> str:
    # ULIDs sort by creation time
    return str(ULID())


def new_anticipation_id() -> str:
    return f"ant_{ULID()}"


@dataclass
class Fact:
    category: str = "preference"
    key: str = ""
    value: str = ""
    id: str = field(default_factory=new_fact_id)
    source: str = ""
    confidence: float = 1.0
    subjects: list[str] = field(default_factory=list)
    ref: str = ""
    embedding: list[float] | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    accessed_at: datetime = field(default_factory=utc_now)
    deleted_at: datetime | None = None

    @property
    def embedding_text(self) -> str:
        """Text that gets embedded for semantic search."""
        return f"{self.category}: {self.key} - {self.value}"


@dataclass
class Trigger:
    """Conditions under which an anticipation activates.

    Every field that is set must hold for a match. ``expression`` is
    stored and round-tripped but never evaluated.
    """

    after_time: datetime | None = None
    entity_id: str = ""
    entity_state: str = ""
    zone: str = ""
    zone_action: str = ""  # enter | leave
    event_type: str = ""
    expression: str = ""

    def has_conditions(self) -> bool:
        return bool(self.after_time or self.entity_id or self.zone or self.event_type)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.after_time is not None:
            data["after_time"] = format_timestamp(self.after_time)
        for name in ("entity_id", "entity_state", "zone", "zone_action", "event_type", "expression"):
            value = getattr(self, name)
            if value:
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Trigger:
        data = data or {}
        return cls(
            after_time=parse_timestamp(data.get("after_time")),
            entity_id=data.get("entity_id", ""),
            entity_state=data.get("entity_state", ""),
            zone=data.get("zone", ""),
            zone_action=data.get("zone_action", ""),
            event_type=data.get("event_type", ""),
            expression=data.get("expression", ""),
        )


@dataclass
class Anticipation:
    """Something the agent expects to happen, and why it cares."""

    description: str = ""
    context: str = ""  # injected into the prompt on match
    id: str = ""
    context_entities: list[str] = field(default_factory=list)
    trigger: Trigger = field(default_factory=Trigger)
    recurring: bool = False
    cooldown_seconds: int = 0  # 0 = use the global default
    created_at: datetime | None = None
    expires_at: datetime | None = None
    resolved_at: datetime | None = None
    deleted_at: datetime | None = None
    last_fired_at: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or utc_now()
        if self.resolved_at is not None or self.deleted_at is not None:
            return False
        return self.expires_at is None or to_utc(self.expires_at) > to_utc(now)


@dataclass
class WakeContext:
    """The signals that caused the agent to activate."""

    time: datetime = field(default_factory=utc_now)
    event_type: str = ""  # cron | presence | state_change | ...
    entity_id: str = ""
    entity_state: str = ""
    zone: str = ""
    zone_action: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StateEntry:
    entity_id: str
    old_state: str
    new_state: str
    timestamp: datetime

"""Tests for the anticipation tools."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from hearth_memory.errors import InvalidArgumentError, NotFoundError
from hearth_memory.models import utc_now
from hearth_memory.storage.anticipation_store import AnticipationStore
from hearth_memory.tools.anticipation_tools import AnticipationTools, parse_duration


@pytest_asyncio.fixture
async def store(tmp_path):
    s = AnticipationStore(tmp_path / "test.db")
    await s.initialize()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def tools(store):
    return AnticipationTools(store)


def test_parse_duration():
    assert parse_duration("90m") == timedelta(minutes=90)
    assert parse_duration("2h") == timedelta(hours=2)
    assert parse_duration("7d") == timedelta(days=7)
    assert parse_duration("1h30m") == timedelta(hours=1, minutes=30)
    assert parse_duration("45s") == timedelta(seconds=45)
    assert parse_duration("1.5h") == timedelta(minutes=90)


def test_parse_duration_rejects_garbage():
    for bad in ["", "soon", "2 hours", "h", "10x"]:
        with pytest.raises(InvalidArgumentError):
            parse_duration(bad)


@pytest.mark.asyncio
async def test_create_entity_anticipation(tools, store):
    result = await tools.create_anticipation(
        description="Dan arriving home",
        context="Ask how the trip went.",
        entity_id="person.dan",
        entity_state="home",
    )
    assert result.startswith("Created anticipation: Dan arriving home\nID: ant_")
    assert "Lifecycle: one-shot (auto-resolved after first wake)" in result
    assert "  - Entity: person.dan = home" in result

    [a] = await store.active()
    assert a.trigger.entity_id == "person.dan"
    assert a.recurring is False


@pytest.mark.asyncio
async def test_create_requires_description_and_context(tools):
    with pytest.raises(InvalidArgumentError, match="description and context are required"):
        await tools.create_anticipation(description="x", entity_id="person.dan")


@pytest.mark.asyncio
async def test_create_requires_trigger(tools):
    with pytest.raises(InvalidArgumentError, match="at least one trigger condition"):
        await tools.create_anticipation(description="x", context="y", entity_state="home")


@pytest.mark.asyncio
async def test_create_with_time_and_expiry(tools, store):
    result = await tools.create_anticipation(
        description="Evening check",
        context="Check the garage is closed.",
        after_time="2026-02-09T20:00:00-06:00",
        expires_in="1h30m",
        recurring=True,
        cooldown_seconds=3600,
    )
    assert "Lifecycle: recurring (keeps firing on matches)" in result
    assert "  - After: 2026-02-10T02:00:00+00:00" in result
    assert "Cooldown: 3600s" in result

    [a] = await store.active()
    assert a.trigger.after_time == datetime(2026, 2, 10, 2, 0, tzinfo=timezone.utc)
    assert a.cooldown_seconds == 3600
    remaining = a.expires_at - utc_now()
    assert timedelta(minutes=85) < remaining <= timedelta(minutes=90)


@pytest.mark.asyncio
async def test_create_rejects_bad_after_time(tools):
    with pytest.raises(InvalidArgumentError, match="invalid after_time"):
        await tools.create_anticipation(description="x", context="y", after_time="tomorrow")


@pytest.mark.asyncio
async def test_context_entities_capped(tools, store):
    entities = [f"sensor.s{i}" for i in range(15)] + [""]
    await tools.create_anticipation(
        description="x", context="y", zone="home", zone_action="enter", context_entities=entities,
    )
    [a] = await store.active()
    assert a.context_entities == [f"sensor.s{i}" for i in range(10)]


@pytest.mark.asyncio
async def test_list(tools):
    assert await tools.list_anticipations() == "No active anticipations."

    await tools.create_anticipation(
        description="Nightly", context="Lock up. " * 20, event_type="cron", recurring=True,
        context_entities=["lock.front_door"],
    )
    text = await tools.list_anticipations()
    assert text.startswith("Active anticipations: 1\n\n**Nightly** (ID: ant_")
    assert "  Lifecycle: recurring" in text
    assert "  Context entities: lock.front_door" in text
    context_line = next(line for line in text.splitlines() if line.startswith("  Context: "))
    assert context_line.endswith("...")
    assert len(context_line) == len("  Context: ") + 100


@pytest.mark.asyncio
async def test_resolve_and_cancel(tools, store):
    await tools.create_anticipation(description="A", context="a", event_type="cron")
    await tools.create_anticipation(description="B", context="b", event_type="cron")
    a, b = await store.active()

    assert await tools.resolve_anticipation(id=a.id) == "Resolved anticipation: A"
    assert await tools.cancel_anticipation(id=b.id) == "Cancelled anticipation: B"
    assert await store.active() == []

    with pytest.raises(NotFoundError, match=f"anticipation not found: {b.id}"):
        await tools.cancel_anticipation(id=b.id)


@pytest.mark.asyncio
async def test_resolve_unknown(tools):
    with pytest.raises(NotFoundError, match="anticipation not found: ant_nope"):
        await tools.resolve_anticipation(id="ant_nope")
    with pytest.raises(InvalidArgumentError, match="id is required"):
        await tools.resolve_anticipation()


@pytest.mark.asyncio
async def test_call_dispatch(tools):
    result = await tools.call(
        "create_anticipation",
        '{"description": "Door", "context": "Check it", "entity_id": "lock.front_door"}',
    )
    assert result.startswith("Created anticipation: Door")
    assert (await tools.call("list_anticipations", None)).startswith("Active anticipations: 1")
    with pytest.raises(InvalidArgumentError, match="unknown anticipation tool"):
        await tools.call("snooze_anticipation", {})


@pytest.mark.asyncio
async def test_call_ignores_unknown_arguments(tools, store):
    result = await tools.call(
        "create_anticipation",
        '{"description": "Door", "context": "Check it", "entity_id": "lock.front_door",'
        ' "expression": "state == unlocked", "cooldown_seconds": "600"}',
    )
    assert result.startswith("Created anticipation: Door")
    [a] = await store.active()
    assert a.cooldown_seconds == 600

    with pytest.raises(InvalidArgumentError, match="cooldown_seconds must be an integer"):
        await tools.call(
            "create_anticipation",
            {"description": "x", "context": "y", "event_type": "cron", "cooldown_seconds": "hourly"},
        )


def test_definitions():
    defs = {d["function"]["name"]: d["function"] for d in AnticipationTools.definitions()}
    assert set(defs) == {
        "create_anticipation", "list_anticipations", "resolve_anticipation", "cancel_anticipation",
    }
    assert defs["create_anticipation"]["parameters"]["properties"]["zone_action"]["enum"] == ["enter", "leave"]
    assert defs["cancel_anticipation"]["parameters"]["required"] == ["id"]

"""Tests for the recent state-change window."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from hearth_memory.core.state_window import StateWindow


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 2, 9, 18, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def test_defaults():
    w = StateWindow()
    assert w.size == 50
    assert w.max_age == timedelta(minutes=30)
    assert StateWindow(size=0, max_age=timedelta(0)).size == 50


def test_empty_window_renders_nothing():
    assert StateWindow().render() == ""


def test_format_newest_first():
    clock = _Clock()
    w = StateWindow(size=5, tz=timezone.utc, now_func=clock)
    w.handle_state_change("light.kitchen", "off", "on")
    clock.advance(seconds=30)
    w.handle_state_change("lock.front_door", "locked", "unlocked")

    assert w.render() == (
        "### Recent State Changes\n\n"
        "- lock.front_door: locked → unlocked (2026-02-09T18:00:30+00:00)\n"
        "- light.kitchen: off → on (2026-02-09T18:00:00+00:00)"
    )


def test_renders_in_configured_timezone():
    clock = _Clock()
    w = StateWindow(tz=timezone(timedelta(hours=-6)), now_func=clock)
    w.handle_state_change("light.kitchen", "off", "on")
    assert "(2026-02-09T12:00:00-06:00)" in w.render()


def test_eviction_keeps_most_recent():
    clock = _Clock()
    w = StateWindow(size=3, tz=timezone.utc, now_func=clock)
    for entity in "abcde":
        w.handle_state_change(entity, "off", "on")
        clock.advance(seconds=1)

    assert len(w) == 3
    assert [e.entity_id for e in w.entries()] == ["e", "d", "c"]
    lines = w.render().splitlines()[2:]
    assert [line.split(":")[0] for line in lines] == ["- e", "- d", "- c"]


def test_old_entries_dropped():
    clock = _Clock()
    w = StateWindow(max_age=timedelta(minutes=30), now_func=clock)
    w.handle_state_change("light.old", "off", "on")
    clock.advance(minutes=20)
    w.handle_state_change("light.new", "off", "on")
    clock.advance(minutes=15)

    text = w.render()
    assert "light.new" in text
    assert "light.old" not in text


def test_all_entries_expired_returns_empty():
    clock = _Clock()
    w = StateWindow(max_age=timedelta(minutes=30), now_func=clock)
    w.handle_state_change("light.kitchen", "off", "on")
    clock.advance(hours=1)
    assert w.render() == ""


def test_concurrent_writers():
    w = StateWindow(size=50)

    def write(n: int) -> None:
        for i in range(200):
            w.handle_state_change(f"sensor.{n}_{i}", "a", "b")
            if i % 50 == 0:
                w.render()

    threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(w) == 50
    assert len(w.entries()) == 50


@pytest.mark.asyncio
async def test_get_context_matches_render():
    w = StateWindow()
    w.handle_state_change("light.kitchen", "off", "on")
    assert await w.get_context("anything") == w.render()

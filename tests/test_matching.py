"""Tests for trigger matching and matched-context formatting."""

from datetime import datetime, timedelta, timezone

from hearth_memory.core.matching import format_matched_context, trigger_matches
from hearth_memory.models import Anticipation, Trigger, WakeContext

NOW = datetime(2026, 2, 9, 18, 0, tzinfo=timezone.utc)


def _wake(**kwargs) -> WakeContext:
    defaults = dict(time=NOW)
    defaults.update(kwargs)
    return WakeContext(**defaults)


def test_empty_trigger_never_matches():
    assert not trigger_matches(Trigger(), _wake(entity_id="person.dan", event_type="cron"))
    assert not trigger_matches(Trigger(expression="true"), _wake())


def test_after_time():
    t = Trigger(after_time=NOW - timedelta(minutes=1))
    assert trigger_matches(t, _wake())
    assert trigger_matches(Trigger(after_time=NOW), _wake())
    assert not trigger_matches(Trigger(after_time=NOW + timedelta(seconds=1)), _wake())


def test_after_time_across_offsets():
    minus_six = timezone(timedelta(hours=-6))
    t = Trigger(after_time=datetime(2026, 2, 9, 11, 30, tzinfo=minus_six))  # 17:30 UTC
    assert trigger_matches(t, _wake())


def test_entity_id_is_exact():
    t = Trigger(entity_id="person.dan")
    assert trigger_matches(t, _wake(entity_id="person.dan"))
    assert not trigger_matches(t, _wake(entity_id="Person.Dan"))
    assert not trigger_matches(t, _wake(entity_id="person.ann"))


def test_entity_state_case_insensitive():
    t = Trigger(entity_id="person.dan", entity_state="home")
    assert trigger_matches(t, _wake(entity_id="person.dan", entity_state="HOME"))
    assert not trigger_matches(t, _wake(entity_id="person.dan", entity_state="not_home"))


def test_entity_state_without_entity_id_is_ignored():
    t = Trigger(entity_state="on", event_type="state_change")
    assert trigger_matches(t, _wake(event_type="state_change", entity_state="off"))


def test_zone_and_action():
    t = Trigger(zone="Driveway", zone_action="enter")
    assert trigger_matches(t, _wake(zone="driveway", zone_action="ENTER"))
    assert not trigger_matches(t, _wake(zone="driveway", zone_action="leave"))
    assert not trigger_matches(t, _wake(zone="garden", zone_action="enter"))
    assert trigger_matches(Trigger(zone="driveway"), _wake(zone="driveway", zone_action="leave"))


def test_event_type_case_insensitive():
    assert trigger_matches(Trigger(event_type="cron"), _wake(event_type="CRON"))
    assert not trigger_matches(Trigger(event_type="cron"), _wake(event_type="presence"))


def test_all_conditions_must_hold():
    t = Trigger(entity_id="person.dan", entity_state="home", after_time=NOW + timedelta(hours=1))
    assert not trigger_matches(t, _wake(entity_id="person.dan", entity_state="home"))

    t = Trigger(entity_id="person.dan", event_type="state_change")
    assert trigger_matches(t, _wake(entity_id="person.dan", event_type="state_change"))
    assert not trigger_matches(t, _wake(entity_id="person.dan", event_type="cron"))


def test_format_matched_context():
    matched = [
        Anticipation(
            description="Dan arriving home",
            context="Ask how the trip went.",
            created_at=datetime(2026, 2, 9, 14, 5, tzinfo=timezone.utc),
        ),
    ]
    assert format_matched_context(matched) == (
        "## Active Anticipations\n\n"
        "You previously set up these anticipations that match the current wake:\n\n"
        "### Dan arriving home\n"
        "*Created: 2026-02-09 14:05*\n\n"
        "Ask how the trip went.\n\n"
        "---\n"
        "Consider resolving anticipations that have been fulfilled.\n"
    )


def test_format_matched_context_empty():
    assert format_matched_context([]) == ""

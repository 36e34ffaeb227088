"""Tests for request-scoped subjects and wake context."""

import asyncio
import contextvars

import pytest

from hearth_memory.core.request_context import (
    subjects_from_context,
    use_subjects,
    use_wake_context,
    wake_from_context,
    with_subjects,
    with_wake_context,
)
from hearth_memory.models import WakeContext


def test_with_subjects_round_trip():
    ctx = with_subjects(["entity:light.kitchen", "zone:kitchen"])
    assert subjects_from_context(ctx) == ["entity:light.kitchen", "zone:kitchen"]


def test_empty_subjects_read_as_none():
    assert subjects_from_context(with_subjects([])) is None
    assert subjects_from_context(with_subjects(None)) is None
    assert subjects_from_context(contextvars.Context()) is None


def test_with_subjects_leaves_caller_context_alone():
    with_subjects(["zone:driveway"])
    assert subjects_from_context() is None


def test_with_subjects_layers_on_given_context():
    base = with_subjects(["zone:driveway"])
    layered = with_subjects(["zone:garden"], base)
    assert subjects_from_context(base) == ["zone:driveway"]
    assert subjects_from_context(layered) == ["zone:garden"]


def test_ctx_run_sees_subjects():
    ctx = with_subjects(["entity:lock.front_door"])
    assert ctx.run(subjects_from_context) == ["entity:lock.front_door"]


def test_use_subjects_restores():
    with use_subjects(["zone:driveway"]):
        assert subjects_from_context() == ["zone:driveway"]
        with use_subjects(["zone:garden"]):
            assert subjects_from_context() == ["zone:garden"]
        assert subjects_from_context() == ["zone:driveway"]
    assert subjects_from_context() is None


@pytest.mark.asyncio
async def test_task_context_carries_subjects():
    async def read():
        return subjects_from_context()

    ctx = with_subjects(["entity:light.porch"])
    assert await asyncio.create_task(read(), context=ctx) == ["entity:light.porch"]
    assert await read() is None


@pytest.mark.asyncio
async def test_gathered_tasks_inherit_subjects():
    async def read():
        await asyncio.sleep(0)
        return subjects_from_context()

    with use_subjects(["zone:kitchen"]):
        results = await asyncio.gather(read(), read())
    assert results == [["zone:kitchen"], ["zone:kitchen"]]


def test_wake_context_binding():
    wake = WakeContext(event_type="cron")
    ctx = with_wake_context(wake)
    assert wake_from_context(ctx) is wake
    assert wake_from_context() is None

    with use_wake_context(wake):
        assert wake_from_context() is wake
    assert wake_from_context() is None

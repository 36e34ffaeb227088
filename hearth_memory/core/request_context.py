"""Request-scoped values carried in ``contextvars``.

Subject tags and the current wake context are chosen deep inside the wake
pipeline and read back by the context providers, so they travel with the
asyncio task instead of being threaded through every call.

Two ways to bind a value:

* ``with_subjects(...)`` returns a new ``contextvars.Context``; run work in
  it with ``ctx.run(...)`` or ``asyncio.create_task(coro, context=ctx)``.
* ``use_subjects(...)`` binds for the duration of a ``with`` block in the
  current context.
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from hearth_memory.models import WakeContext

_subjects: contextvars.ContextVar[tuple[str, ...] | None] = contextvars.ContextVar(
    "hearth_memory_subjects", default=None,
)
_wake: contextvars.ContextVar[WakeContext | None] = contextvars.ContextVar(
    "hearth_memory_wake", default=None,
)


def _normalize(subjects: Sequence[str] | None) -> tuple[str, ...] | None:
    return tuple(subjects) if subjects else None


def _bind(var: contextvars.ContextVar, value, ctx: contextvars.Context | None) -> contextvars.Context:
    ctx = (ctx or contextvars.copy_context()).copy()
    ctx.run(var.set, value)
    return ctx


def with_subjects(
    subjects: Sequence[str] | None, ctx: contextvars.Context | None = None,
) -> contextvars.Context:
    """A copy of ``ctx`` (default: the current context) carrying ``subjects``."""
    return _bind(_subjects, _normalize(subjects), ctx)


def subjects_from_context(ctx: contextvars.Context | None = None) -> list[str] | None:
    """Subjects bound in ``ctx`` (default: the current context), or None."""
    value = ctx.get(_subjects) if ctx is not None else _subjects.get()
    return list(value) if value else None


@contextmanager
def use_subjects(subjects: Sequence[str] | None) -> Iterator[None]:
    token = _subjects.set(_normalize(subjects))
    try:
        yield
    finally:
        _subjects.reset(token)


def with_wake_context(
    wake: WakeContext | None, ctx: contextvars.Context | None = None,
) -> contextvars.Context:
    return _bind(_wake, wake, ctx)


def wake_from_context(ctx: contextvars.Context | None = None) -> WakeContext | None:
    return ctx.get(_wake) if ctx is not None else _wake.get()


@contextmanager
def use_wake_context(wake: WakeContext | None) -> Iterator[None]:
    token = _wake.set(wake)
    try:
        yield
    finally:
        _wake.reset(token)

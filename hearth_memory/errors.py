"""Exception hierarchy for the memory and wake-context system.

Cancellation is not modelled here: a cancelled caller sees
``asyncio.CancelledError`` at whichever ``await`` was pending.
"""

from __future__ import annotations


class HearthMemoryError(Exception):
    """Base class for all errors raised by hearth_memory."""


class NotFoundError(HearthMemoryError, LookupError):
    """Addressable row is absent or soft-deleted."""


class ConflictError(HearthMemoryError):
    """Reserved. Not raised internally."""


class InvalidArgumentError(HearthMemoryError, ValueError):
    """Malformed argument (empty key, unknown category, negative limit...)."""


class StorageError(HearthMemoryError):
    """Underlying database fault. The caller decides whether to retry."""


class EmbeddingError(HearthMemoryError):
    """The embedding backend failed to produce a vector."""

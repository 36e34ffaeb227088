"""Decoding of LLM tool-call arguments."""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from typing import Any

from hearth_memory.errors import InvalidArgumentError

logger = logging.getLogger(__name__)


def decode_arguments(
    name: str, arguments: str | dict[str, Any] | None, handler: Callable[..., Any],
) -> dict[str, Any]:
    """Parse JSON arguments and keep only the keys ``handler`` accepts.

    Models routinely invent extra fields; those are dropped rather than
    failing the whole call.
    """
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as exc:
            raise InvalidArgumentError(f"{name}: parse args: {exc}") from exc
    if arguments is None:
        return {}
    if not isinstance(arguments, dict):
        raise InvalidArgumentError(f"{name}: arguments must be a JSON object")

    accepted = inspect.signature(handler).parameters
    unknown = sorted(k for k in arguments if k not in accepted)
    if unknown:
        logger.debug("Ignoring unknown %s arguments: %s", name, ", ".join(unknown))
    return {k: v for k, v in arguments.items() if k in accepted}


def as_int(name: str, field: str, value: Any) -> int:
    """Coerce a numeric tool argument, accepting ``"3"`` as well as ``3``."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise InvalidArgumentError(f"{name}: {field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"{name}: {field} must be an integer, got {value!r}") from exc

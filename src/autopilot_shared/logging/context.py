"""Contextvar-backed correlation fields for log records.

Sweeps bind ``sweep``; services bind ``tenant_id``, ``task_id`` and
``playbook_id`` around a unit of work. Values are stored as strings.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Mapping

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("autopilot_log_context", default={})


def get_context() -> dict[str, str]:
    return dict(_CONTEXT.get())


def bind_context(**values: object) -> None:
    """Add values to the current context, skipping ``None``."""
    updates = {key: str(value) for key, value in values.items() if value is not None}
    if updates:
        _CONTEXT.set({**_CONTEXT.get(), **updates})


def clear_context(*keys: str) -> None:
    """Drop the named keys, or everything when none are named."""
    if keys:
        _CONTEXT.set({k: v for k, v in _CONTEXT.get().items() if k not in keys})
    else:
        _CONTEXT.set({})


@contextmanager
def log_context(values: Mapping[str, object]) -> Iterator[None]:
    """Bind values for the duration of a block and restore the prior context."""
    token = _CONTEXT.set(_CONTEXT.get())
    try:
        bind_context(**values)
        yield
    finally:
        _CONTEXT.reset(token)

"""Structured stdout logging with contextvar-bound correlation fields."""

from .config import ContextFilter, JsonFormatter, PlainFormatter, configure_logging
from .context import bind_context, clear_context, get_context, log_context

__all__ = [
    "ContextFilter",
    "JsonFormatter",
    "PlainFormatter",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_context",
    "log_context",
]

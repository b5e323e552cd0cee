"""Per-task-type execution handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Iterable, Mapping, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandlerOutcome:
    """Result payload from a handler plus optional data needed to undo it."""

    result: dict[str, Any]
    rollback_data: dict[str, Any] | None = None


class TaskHandler(Protocol):
    """Contract implemented by every task-type handler."""

    task_type: str

    def execute(
        self, tenant_id: str, evidence: Mapping[str, Any], simulation: bool
    ) -> HandlerOutcome:
        """Run the work. Raise to signal failure."""

    def rollback(self, tenant_id: str, rollback_data: Mapping[str, Any]) -> None:
        """Undo a previous successful run."""


@dataclass
class StaticResultHandler:
    """Handler that reports a fixed result; stands in for a domain service call."""

    task_type: str
    result: Mapping[str, Any]
    rollbackable: bool = True
    label: str = ""

    def execute(
        self, tenant_id: str, evidence: Mapping[str, Any], simulation: bool
    ) -> HandlerOutcome:
        logger.info(
            "Executing %s task: tenant=%s simulation=%s",
            self.label or self.task_type,
            tenant_id,
            simulation,
        )
        result = dict(self.result)
        if simulation:
            result["simulated"] = True
        rollback_data = None
        if self.rollbackable and not simulation:
            rollback_data = {"taskType": self.task_type, "result": dict(self.result)}
        return HandlerOutcome(result=result, rollback_data=rollback_data)

    def rollback(self, tenant_id: str, rollback_data: Mapping[str, Any]) -> None:
        logger.info("Rolling back %s task: tenant=%s", self.task_type, tenant_id)


@dataclass
class HandlerRegistry:
    """Lookup of handlers keyed by task type."""

    handlers: dict[str, TaskHandler] = field(default_factory=dict)

    def register(self, handler: TaskHandler) -> None:
        self.handlers[handler.task_type] = handler

    def get(self, task_type: str) -> TaskHandler | None:
        return self.handlers.get(task_type)

    def task_types(self) -> tuple[str, ...]:
        return tuple(sorted(self.handlers))


def default_handlers() -> Iterable[TaskHandler]:
    """Handlers for the executable task types."""
    return (
        StaticResultHandler(
            "reconciliation",
            {"transactionsMatched": 5, "transactionsUnmatched": 2},
        ),
        StaticResultHandler("posting", {"documentsPosted": 10}),
        StaticResultHandler("filing", {"filingDraftCreated": True}),
        StaticResultHandler("journal_entry", {"journalEntryCreated": True}, label="journal entry"),
        StaticResultHandler("review", {"reviewCompleted": True}, rollbackable=False),
    )


def build_default_registry() -> HandlerRegistry:
    registry = HandlerRegistry()
    for handler in default_handlers():
        registry.register(handler)
    return registry


__all__ = [
    "HandlerOutcome",
    "HandlerRegistry",
    "StaticResultHandler",
    "TaskHandler",
    "build_default_registry",
    "default_handlers",
]

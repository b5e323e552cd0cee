"""Repository helpers for the task execution audit trail."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from models import TaskExecutionHistory
from time_utils import to_utc, utc_now


@dataclass(frozen=True)
class TaskHistoryCreateInput:
    """Input payload for appending a task history entry."""

    task_id: UUID
    action_type: str
    action_by: str | None = None
    action_method: str | None = None
    previous_status: str | None = None
    new_status: str | None = None
    changes: Mapping[str, Any] | None = None
    reasoning: str | None = None
    error_message: str | None = None
    can_rollback: bool = False
    rollback_data: Mapping[str, Any] | None = None


class TaskHistoryRepository:
    """Read access to task history plus standalone appends."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def append(
        self,
        payload: TaskHistoryCreateInput,
        *,
        now: datetime | None = None,
    ) -> TaskExecutionHistory:
        """Append a history entry in its own transaction."""

        def handler(session: Session) -> TaskExecutionHistory:
            return append_history(session, payload, now=now)

        return self._execute(handler)

    def list_for_task(self, task_id: UUID) -> list[TaskExecutionHistory]:
        """Return history for a task, oldest first."""

        def handler(session: Session) -> list[TaskExecutionHistory]:
            return list(
                session.query(TaskExecutionHistory)
                .filter(TaskExecutionHistory.task_id == task_id)
                .order_by(
                    TaskExecutionHistory.action_timestamp.asc(),
                    TaskExecutionHistory.id.asc(),
                )
                .all()
            )

        return self._execute(handler)

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def append_history(
    session: Session,
    payload: TaskHistoryCreateInput,
    *,
    now: datetime | None = None,
) -> TaskExecutionHistory:
    """Append a history entry using an existing session."""
    entry = TaskExecutionHistory(
        task_id=payload.task_id,
        action_type=payload.action_type,
        action_by=payload.action_by,
        action_method=payload.action_method,
        action_timestamp=to_utc(now or utc_now()),
        previous_status=payload.previous_status,
        new_status=payload.new_status,
        changes=dict(payload.changes) if payload.changes is not None else None,
        reasoning=payload.reasoning,
        error_message=payload.error_message,
        can_rollback=payload.can_rollback,
        rollback_data=dict(payload.rollback_data) if payload.rollback_data is not None else None,
    )
    session.add(entry)
    session.flush()
    return entry


def latest_rollbackable_completion(
    session: Session, task_id: UUID
) -> TaskExecutionHistory | None:
    """Return the most recent rollback-capable ``completed`` entry for a task."""
    return (
        session.query(TaskExecutionHistory)
        .filter(
            TaskExecutionHistory.task_id == task_id,
            TaskExecutionHistory.action_type == "completed",
            TaskExecutionHistory.can_rollback.is_(True),
        )
        .order_by(
            TaskExecutionHistory.action_timestamp.desc(),
            TaskExecutionHistory.id.desc(),
        )
        .first()
    )


__all__ = [
    "TaskHistoryCreateInput",
    "TaskHistoryRepository",
    "append_history",
    "latest_rollbackable_completion",
]

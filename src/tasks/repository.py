"""Repository helpers for autopilot task persistence."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy import and_, func, or_, update
from sqlalchemy.orm import Session

from autopilot_shared.errors import NotFoundError, ValidationError, codes
from models import (
    ACTIVE_TASK_STATUSES,
    TASK_PRIORITIES,
    TASK_TYPES,
    AutopilotTask,
)
from sla.tracker import sla_hours_for_priority
from tasks.status import ensure_transition
from time_utils import to_utc, utc_now

UNSET = object()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskCreateInput:
    """Input payload for creating a task record."""

    tenant_id: str
    task_type: str
    title: str
    priority: str = "medium"
    description: str | None = None
    severity: str = "normal"
    sla_hours: int | None = None
    ai_summary: str | None = None
    source_evidence: Mapping[str, Any] | None = None
    recommended_action: str | None = None
    confidence_score: float | None = None
    playbook_id: UUID | None = None
    created_by: str | None = None


@dataclass(frozen=True)
class TaskUpdateInput:
    """Input payload for updating mutable task fields.

    ``due_date`` and ``status`` are intentionally absent: the due date is
    fixed at creation and status only moves through lifecycle operations.
    """

    title: str | object = UNSET
    description: str | None | object = UNSET
    priority: str | object = UNSET
    ai_summary: str | None | object = UNSET
    recommended_action: str | None | object = UNSET
    confidence_score: float | None | object = UNSET
    escalated: bool | object = UNSET


class TaskRepository:
    """Repository for task CRUD and lifecycle queries."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create(self, payload: TaskCreateInput, *, now: datetime | None = None) -> AutopilotTask:
        """Create and persist a task record."""

        def handler(session: Session) -> AutopilotTask:
            return create_task_record(session, payload, now=now)

        return self._execute(handler)

    def get_by_id(self, task_id: UUID, tenant_id: str | None = None) -> AutopilotTask | None:
        """Fetch a task by ID, optionally scoped to a tenant."""

        def handler(session: Session) -> AutopilotTask | None:
            task = session.get(AutopilotTask, task_id)
            if task is None:
                return None
            if tenant_id is not None and task.tenant_id != tenant_id:
                return None
            return task

        return self._execute(handler)

    def update(
        self,
        task_id: UUID,
        tenant_id: str,
        updates: TaskUpdateInput,
        *,
        now: datetime | None = None,
    ) -> AutopilotTask:
        """Update mutable fields on a task."""

        def handler(session: Session) -> AutopilotTask:
            task = fetch_task(session, task_id, tenant_id)
            _apply_updates(task, updates)
            task.updated_at = to_utc(now or utc_now())
            session.flush()
            return task

        return self._execute(handler)

    def list_for_tenant(
        self,
        tenant_id: str,
        *,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[AutopilotTask]:
        """List tenant tasks ordered by due date, then creation time."""

        def handler(session: Session) -> list[AutopilotTask]:
            query = session.query(AutopilotTask).filter(AutopilotTask.tenant_id == tenant_id)
            if status is not None:
                query = query.filter(AutopilotTask.status == status)
            query = query.order_by(
                AutopilotTask.due_date.asc(),
                AutopilotTask.created_at.asc(),
                AutopilotTask.id.asc(),
            )
            if limit is not None:
                query = query.limit(limit)
            return list(query.all())

        return self._execute(handler)

    def list_pending(
        self,
        *,
        assigned: bool,
        limit: int | None = None,
        after: tuple[datetime, UUID] | None = None,
    ) -> list[AutopilotTask]:
        """List pending tasks across tenants, filtered by assignment state.

        Results are ordered by ``(created_at, id)``; ``after`` is the key of the
        last task of a previous page and restricts results to later tasks.
        """

        def handler(session: Session) -> list[AutopilotTask]:
            query = session.query(AutopilotTask).filter(AutopilotTask.status == "pending")
            if assigned:
                query = query.filter(AutopilotTask.assigned_to.is_not(None))
            else:
                query = query.filter(AutopilotTask.assigned_to.is_(None))
            if after is not None:
                created_at, task_id = after
                query = query.filter(
                    or_(
                        AutopilotTask.created_at > created_at,
                        and_(AutopilotTask.created_at == created_at, AutopilotTask.id > task_id),
                    )
                )
            query = query.order_by(AutopilotTask.created_at.asc(), AutopilotTask.id.asc())
            if limit is not None:
                query = query.limit(limit)
            return list(query.all())

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


def create_task_record(
    session: Session,
    payload: TaskCreateInput,
    *,
    now: datetime | None = None,
) -> AutopilotTask:
    """Create a task using an existing session.

    The due date is derived once from the creation time and SLA hours.
    """
    _validate_create(payload)
    created_at = to_utc(now or utc_now())
    sla_hours = payload.sla_hours or sla_hours_for_priority(payload.priority)
    task = AutopilotTask(
        tenant_id=payload.tenant_id,
        task_type=payload.task_type,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        status="pending",
        severity=payload.severity,
        playbook_id=payload.playbook_id,
        due_date=created_at + timedelta(hours=sla_hours),
        sla_hours=sla_hours,
        ai_summary=payload.ai_summary,
        source_evidence=dict(payload.source_evidence) if payload.source_evidence else None,
        recommended_action=payload.recommended_action,
        confidence_score=payload.confidence_score,
        created_by=payload.created_by,
        created_at=created_at,
        updated_at=created_at,
    )
    session.add(task)
    session.flush()
    return task


def fetch_task(session: Session, task_id: UUID, tenant_id: str) -> AutopilotTask:
    """Return a tenant's task or raise NotFoundError."""
    task = session.get(AutopilotTask, task_id)
    if task is None or task.tenant_id != tenant_id:
        raise NotFoundError(
            f"Task not found: {task_id}",
            code=codes.TASK_NOT_FOUND,
            metadata={"task_id": str(task_id)},
        )
    return task


def claim_task(
    session: Session,
    task_id: UUID,
    tenant_id: str,
    *,
    executed_by: str,
    execution_method: str,
    now: datetime,
) -> bool:
    """Atomically move a pending task to in_progress.

    Returns False when another caller already claimed the task.
    """
    timestamp = to_utc(now)
    result = session.execute(
        update(AutopilotTask)
        .where(
            AutopilotTask.id == task_id,
            AutopilotTask.tenant_id == tenant_id,
            AutopilotTask.status == "pending",
        )
        .values(
            status="in_progress",
            started_at=timestamp,
            executed_by=executed_by,
            execution_method=execution_method,
            updated_at=timestamp,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def transition_task(
    task: AutopilotTask,
    to_status: str,
    *,
    now: datetime,
) -> str:
    """Apply a validated status transition and return the previous status."""
    previous = task.status
    ensure_transition(previous, to_status)
    timestamp = to_utc(now)
    task.status = to_status
    task.updated_at = timestamp
    if to_status in {"completed", "failed"}:
        task.completed_at = timestamp
    return previous


def count_active_by_assignee(session: Session, tenant_id: str) -> dict[str, int]:
    """Return pending plus in-progress task counts keyed by assignee."""
    rows = (
        session.query(AutopilotTask.assigned_to, func.count(AutopilotTask.id))
        .filter(
            AutopilotTask.tenant_id == tenant_id,
            AutopilotTask.assigned_to.is_not(None),
            AutopilotTask.status.in_(ACTIVE_TASK_STATUSES),
        )
        .group_by(AutopilotTask.assigned_to)
        .all()
    )
    return {assignee: int(count) for assignee, count in rows}


def _validate_create(payload: TaskCreateInput) -> None:
    if payload.task_type not in TASK_TYPES:
        raise ValidationError(
            f"Unknown task type: {payload.task_type}",
            metadata={"task_type": payload.task_type},
        )
    if payload.priority not in TASK_PRIORITIES:
        raise ValidationError(
            f"Unknown task priority: {payload.priority}",
            metadata={"priority": payload.priority},
        )
    if not payload.title.strip():
        raise ValidationError("Task title is required.", code=codes.MISSING_REQUIRED_FIELD)


def _apply_updates(task: AutopilotTask, updates: TaskUpdateInput) -> None:
    """Apply updates to a task instance."""
    if updates.priority is not UNSET and updates.priority not in TASK_PRIORITIES:
        raise ValidationError(f"Unknown task priority: {updates.priority}")
    for field_name in (
        "title",
        "description",
        "priority",
        "ai_summary",
        "recommended_action",
        "confidence_score",
        "escalated",
    ):
        value = getattr(updates, field_name)
        if value is not UNSET:
            setattr(task, field_name, value)


__all__ = [
    "TaskCreateInput",
    "TaskRepository",
    "TaskUpdateInput",
    "UNSET",
    "claim_task",
    "count_active_by_assignee",
    "create_task_record",
    "fetch_task",
    "transition_task",
]

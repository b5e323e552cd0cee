"""Task assignment across assignment strategies."""

from __future__ import annotations

from contextlib import closing
import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from assignment.roster import load_candidates, stamp_assignment
from assignment.strategies import (
    AssignmentSuggestion,
    pick_least_loaded,
    pick_round_robin,
    pick_skill_based,
    suggest,
)
from autopilot_shared.errors import ValidationError, codes
from models import ASSIGNMENT_METHODS
from tasks.history import TaskHistoryCreateInput, append_history
from tasks.repository import fetch_task
from time_utils import to_utc, utc_now

logger = logging.getLogger(__name__)

AUTO_ASSIGNMENT_METHODS = frozenset({"auto", "round_robin", "skill_based"})


class AssignmentService:
    """Route tasks to workers and record the assignment."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def assign(
        self,
        task_id: UUID,
        tenant_id: str,
        method: str,
        assigned_by: str,
        preferred_user_id: str | None = None,
        *,
        now: datetime | None = None,
    ) -> str | None:
        """Assign a task and return the assignee, or None when nobody fits."""
        if method not in ASSIGNMENT_METHODS:
            raise ValidationError(
                f"Unknown assignment method: {method}",
                code=codes.UNKNOWN_ASSIGNMENT_METHOD,
                metadata={"method": method},
            )
        if method == "manual" and not preferred_user_id:
            raise ValidationError(
                "Manual assignment requires a user id.",
                code=codes.MISSING_REQUIRED_FIELD,
            )

        def handler(session: Session) -> str | None:
            task = fetch_task(session, task_id, tenant_id)
            assignee = self._select(session, task.task_type, tenant_id, method, preferred_user_id)
            if assignee is None:
                logger.info(
                    "No assignee available: task_id=%s tenant=%s method=%s",
                    task_id,
                    tenant_id,
                    method,
                )
                return None
            timestamp = to_utc(now or utc_now())
            task.assigned_to = assignee
            task.assigned_by = assigned_by
            task.assignment_method = method
            task.auto_assigned = method in AUTO_ASSIGNMENT_METHODS
            task.updated_at = timestamp
            stamp_assignment(session, tenant_id, assignee, timestamp)
            append_history(
                session,
                TaskHistoryCreateInput(
                    task_id=task.id,
                    action_type="assigned",
                    action_by=assigned_by,
                    action_method="ai_autonomous" if method == "auto" else "human",
                    previous_status=task.status,
                    new_status=task.status,
                    changes={"assignedTo": assignee, "method": method},
                    reasoning=f"Task assigned using {method} method",
                ),
                now=timestamp,
            )
            logger.info(
                "Task assigned: task_id=%s assignee=%s method=%s", task_id, assignee, method
            )
            return assignee

        return self._execute(handler)

    def suggest(self, task_id: UUID, tenant_id: str) -> AssignmentSuggestion | None:
        """Return the recommended assignee for a task without assigning it."""

        def handler(session: Session) -> AssignmentSuggestion | None:
            task = fetch_task(session, task_id, tenant_id)
            return suggest(load_candidates(session, tenant_id), task.task_type)

        return self._execute(handler)

    def _select(
        self,
        session: Session,
        task_type: str,
        tenant_id: str,
        method: str,
        preferred_user_id: str | None,
    ) -> str | None:
        if method == "manual":
            return preferred_user_id
        candidates = load_candidates(session, tenant_id)
        if method == "auto":
            chosen = pick_least_loaded(candidates)
        elif method == "round_robin":
            chosen = pick_round_robin(candidates)
        elif method == "skill_based":
            chosen = pick_skill_based(candidates, task_type)
        else:
            suggestion = suggest(candidates, task_type)
            return suggestion.user_id if suggestion is not None else None
        return chosen.user_id if chosen is not None else None

    def _execute(self, handler):
        """Execute assignment work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


__all__ = ["AUTO_ASSIGNMENT_METHODS", "AssignmentService"]

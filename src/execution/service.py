"""Policy-gated task execution with at-most-once claiming."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from autopilot_shared.errors import ValidationError, codes
from autopilot_shared.logging import log_context
from execution.handlers import HandlerOutcome, HandlerRegistry, build_default_registry
from models import EXECUTION_METHODS, AutopilotTask
from policies.engine import PolicyEngine
from sla.tracker import mark_record_completed
from tasks.history import TaskHistoryCreateInput, append_history, latest_rollbackable_completion
from tasks.repository import claim_task, fetch_task, transition_task
from time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    """Structured outcome of an execution attempt."""

    success: bool
    result: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_code: str | None = None


class ExecutionService:
    """Run tasks through their handlers, guarded by policy and a status claim."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        policy_engine: PolicyEngine,
        registry: HandlerRegistry | None = None,
        *,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._policy_engine = policy_engine
        self._registry = registry or build_default_registry()
        self._now = now_provider

    def execute(
        self,
        task_id: UUID,
        tenant_id: str,
        executed_by: str,
        execution_method: str,
        simulation: bool = False,
    ) -> ExecutionResult:
        """Execute a pending task once, or simulate it without writing."""
        if execution_method not in EXECUTION_METHODS:
            raise ValidationError(
                f"Unknown execution method: {execution_method}",
                metadata={"execution_method": execution_method},
            )
        task = self._execute(lambda session: fetch_task(session, task_id, tenant_id))
        evidence = dict(task.source_evidence or {})

        with log_context({"tenant_id": tenant_id, "task_id": task_id}):
            decision = self._policy_engine.evaluate(
                tenant_id,
                executed_by,
                None,
                task.task_type,
                {"executionMethod": execution_method, "taskType": task.task_type, **evidence},
            )
            if decision.action == "block":
                logger.info("Execution blocked by policy: %s", decision.reasoning)
                return ExecutionResult(
                    success=False,
                    error="Action blocked by policy",
                    error_code=codes.POLICY_BLOCKED,
                )
            if decision.action == "require_review" and execution_method == "ai_autonomous":
                logger.info("Execution requires review: %s", decision.reasoning)
                return ExecutionResult(
                    success=False,
                    error="Action requires review before execution",
                    error_code=codes.REVIEW_REQUIRED,
                )

            handler = self._registry.get(task.task_type)
            if handler is None:
                return ExecutionResult(
                    success=False,
                    error=f"Unknown task type: {task.task_type}",
                    error_code=codes.UNKNOWN_TASK_TYPE,
                )

            if simulation:
                try:
                    outcome = handler.execute(tenant_id, evidence, True)
                except Exception as exc:
                    logger.exception("Simulated execution failed")
                    return ExecutionResult(
                        success=False, error=str(exc), error_code=codes.EXECUTION_FAILED
                    )
                return ExecutionResult(success=True, result=outcome.result)

            if not self._claim(task, executed_by, execution_method):
                logger.info("Task already claimed")
                return ExecutionResult(
                    success=False,
                    error="Task is not pending; it was already claimed or finished",
                    error_code=codes.ALREADY_CLAIMED,
                )

            try:
                outcome = handler.execute(tenant_id, evidence, False)
            except Exception as exc:
                logger.exception("Task execution failed")
                if not self._record(
                    self._record_failure,
                    task_id,
                    tenant_id,
                    executed_by,
                    execution_method,
                    str(exc),
                ):
                    return _record_failed_result()
                return ExecutionResult(
                    success=False, error=str(exc), error_code=codes.EXECUTION_FAILED
                )

            if not self._record(
                self._record_success, task_id, tenant_id, executed_by, execution_method, outcome
            ):
                return _record_failed_result()
            logger.info("Task executed: task_type=%s", task.task_type)
            return ExecutionResult(success=True, result=outcome.result)

    def rollback(self, task_id: UUID, tenant_id: str, rolled_back_by: str) -> None:
        """Undo a completed task that recorded rollback data."""

        def handler(session: Session) -> None:
            task = fetch_task(session, task_id, tenant_id)
            entry = latest_rollbackable_completion(session, task.id)
            if entry is None:
                raise ValidationError(
                    "No rollback data available",
                    code=codes.ROLLBACK_UNAVAILABLE,
                    metadata={"task_id": str(task_id)},
                )
            now = self._now()
            previous = transition_task(task, "cancelled", now=now)
            task_handler = self._registry.get(task.task_type)
            if task_handler is not None:
                task_handler.rollback(tenant_id, entry.rollback_data or {})
            append_history(
                session,
                TaskHistoryCreateInput(
                    task_id=task.id,
                    action_type="rolled_back",
                    action_by=rolled_back_by,
                    action_method="human",
                    previous_status=previous,
                    new_status="cancelled",
                    changes={"rollbackData": entry.rollback_data},
                    reasoning="Task execution rolled back",
                ),
                now=now,
            )

        self._execute(handler)
        logger.info("Task rolled back: task_id=%s by=%s", task_id, rolled_back_by)

    def cancel(
        self,
        task_id: UUID,
        tenant_id: str,
        cancelled_by: str,
        reason: str | None = None,
    ) -> AutopilotTask:
        """Cancel a task that has not reached a terminal state."""

        def handler(session: Session) -> AutopilotTask:
            task = fetch_task(session, task_id, tenant_id)
            if task.status not in ("pending", "in_progress"):
                raise ValidationError(
                    f"Only pending or in-progress tasks can be cancelled: {task.status}",
                    code=codes.INVALID_TRANSITION,
                )
            now = self._now()
            previous = transition_task(task, "cancelled", now=now)
            append_history(
                session,
                TaskHistoryCreateInput(
                    task_id=task.id,
                    action_type="cancelled",
                    action_by=cancelled_by,
                    action_method="human",
                    previous_status=previous,
                    new_status="cancelled",
                    reasoning=reason or "Task cancelled",
                ),
                now=now,
            )
            return task

        return self._execute(handler)

    def _claim(self, task: AutopilotTask, executed_by: str, execution_method: str) -> bool:
        def handler(session: Session) -> bool:
            now = self._now()
            claimed = claim_task(
                session,
                task.id,
                task.tenant_id,
                executed_by=executed_by,
                execution_method=execution_method,
                now=now,
            )
            if claimed:
                append_history(
                    session,
                    TaskHistoryCreateInput(
                        task_id=task.id,
                        action_type="started",
                        action_by=executed_by,
                        action_method=execution_method,
                        previous_status="pending",
                        new_status="in_progress",
                        reasoning=f"Task started by {execution_method}",
                    ),
                    now=now,
                )
            return claimed

        return self._execute(handler)

    def _record(self, recorder: Callable[..., None], *args: Any) -> bool:
        """Persist an execution outcome; False when the store rejected it.

        The task then stays ``in_progress`` and no sweep picks it up again.
        Operators find it with ``list_for_tenant(status="in_progress")`` and
        clear it with ``cancel``.
        """
        try:
            recorder(*args)
        except Exception:
            logger.exception("Recording execution outcome failed")
            return False
        return True

    def _record_success(
        self,
        task_id: UUID,
        tenant_id: str,
        executed_by: str,
        execution_method: str,
        outcome: HandlerOutcome,
    ) -> None:
        def handler(session: Session) -> None:
            task = fetch_task(session, task_id, tenant_id)
            now = self._now()
            previous = transition_task(task, "completed", now=now)
            task.execution_result = outcome.result
            mark_record_completed(session, task.id, now)
            append_history(
                session,
                TaskHistoryCreateInput(
                    task_id=task.id,
                    action_type="completed",
                    action_by=executed_by,
                    action_method=execution_method,
                    previous_status=previous,
                    new_status="completed",
                    changes=outcome.result,
                    reasoning=f"Task completed by {execution_method}",
                    can_rollback=outcome.rollback_data is not None,
                    rollback_data=outcome.rollback_data,
                ),
                now=now,
            )

        self._execute(handler)

    def _record_failure(
        self,
        task_id: UUID,
        tenant_id: str,
        executed_by: str,
        execution_method: str,
        error_message: str,
    ) -> None:
        def handler(session: Session) -> None:
            task = fetch_task(session, task_id, tenant_id)
            now = self._now()
            previous = transition_task(task, "failed", now=now)
            task.error_message = error_message
            append_history(
                session,
                TaskHistoryCreateInput(
                    task_id=task.id,
                    action_type="failed",
                    action_by=executed_by,
                    action_method=execution_method,
                    previous_status=previous,
                    new_status="failed",
                    reasoning=f"Task failed under {execution_method}",
                    error_message=error_message,
                ),
                now=now,
            )

        self._execute(handler)

    def _execute(self, handler):
        """Execute work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def _record_failed_result() -> ExecutionResult:
    return ExecutionResult(
        success=False,
        error="Task ran but its outcome could not be recorded",
        error_code=codes.DEPENDENCY_FAILURE,
    )


__all__ = ["ExecutionResult", "ExecutionService"]

"""Unit tests for policy-gated task execution."""

from datetime import datetime, timedelta, timezone

import pytest

from autopilot_shared.errors import ValidationError, codes
from execution.handlers import HandlerOutcome, HandlerRegistry, build_default_registry
from execution.service import ExecutionService
from policies.engine import PolicyEngine
from policies.repository import PolicyCreateInput, PolicyRepository
from sla.tracker import SlaTracker
from tasks.history import TaskHistoryRepository
from tasks.repository import TaskCreateInput, TaskRepository, claim_task, fetch_task


class _ExplodingHandler:
    task_type = "posting"

    def execute(self, tenant_id, evidence, simulation):
        raise RuntimeError("ledger offline")

    def rollback(self, tenant_id, rollback_data):
        return None


class _TickingClock:
    """Clock that advances one second per reading so history order is stable."""

    def __init__(self, start: datetime) -> None:
        self._current = start

    def __call__(self) -> datetime:
        self._current += timedelta(seconds=1)
        return self._current


def _service(session_factory, now, registry=None, *, ticking=True) -> ExecutionService:
    return ExecutionService(
        session_factory,
        PolicyEngine(PolicyRepository(session_factory)),
        registry,
        now_provider=_TickingClock(now) if ticking else (lambda: now),
    )


def _task(session_factory, now, task_type="reconciliation"):
    return TaskRepository(session_factory).create(
        TaskCreateInput(tenant_id="tenant-a", task_type=task_type, title="Work item"),
        now=now,
    )


def _allow(session_factory, action="auto", task_type="reconciliation"):
    PolicyRepository(session_factory).create(
        PolicyCreateInput(
            policy_name=f"{action} {task_type}",
            policy_type=task_type,
            scope="playbook",
            action=action,
            tenant_id="tenant-a",
        )
    )


def test_execute_completes_task_and_records_history(sqlite_session_factory) -> None:
    """A human execution completes the task with its handler result."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)

    result = _service(sqlite_session_factory, now).execute(task.id, "tenant-a", "ann", "human")

    assert result.success is True
    assert result.result == {"transactionsMatched": 5, "transactionsUnmatched": 2}
    stored = TaskRepository(sqlite_session_factory).get_by_id(task.id)
    assert stored.status == "completed"
    assert stored.executed_by == "ann"
    assert stored.execution_result == result.result
    history = TaskHistoryRepository(sqlite_session_factory).list_for_task(task.id)
    assert [entry.action_type for entry in history] == ["started", "completed"]
    assert history[1].can_rollback is True


def test_execute_is_at_most_once(sqlite_session_factory) -> None:
    """A second execution of the same task is rejected as already claimed."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)
    service = _service(sqlite_session_factory, now)

    first = service.execute(task.id, "tenant-a", "ann", "human")
    second = service.execute(task.id, "tenant-a", "bob", "human")

    assert first.success is True
    assert second.success is False
    assert second.error_code == codes.ALREADY_CLAIMED
    history = TaskHistoryRepository(sqlite_session_factory).list_for_task(task.id)
    assert [entry.action_type for entry in history].count("completed") == 1


def test_claim_from_overlapping_sessions_succeeds_once(sqlite_session_factory) -> None:
    """Two sessions that both saw the task pending cannot both claim it."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)
    first = sqlite_session_factory()
    second = sqlite_session_factory()
    try:
        assert fetch_task(first, task.id, "tenant-a").status == "pending"
        assert fetch_task(second, task.id, "tenant-a").status == "pending"

        won = claim_task(
            first, task.id, "tenant-a", executed_by="ann", execution_method="human", now=now
        )
        lost = claim_task(
            second, task.id, "tenant-a", executed_by="bob", execution_method="human", now=now
        )
        first.commit()
        second.commit()
    finally:
        first.close()
        second.close()

    assert (won, lost) == (True, False)
    stored = TaskRepository(sqlite_session_factory).get_by_id(task.id)
    assert stored.status == "in_progress"
    assert stored.executed_by == "ann"


def test_unrecorded_outcome_is_dependency_failure(sqlite_session_factory, monkeypatch) -> None:
    """A store failure after the handler ran returns a structured error."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)
    service = _service(sqlite_session_factory, now)

    def _store_down(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(service, "_record_success", _store_down)

    result = service.execute(task.id, "tenant-a", "ann", "human")

    assert result.success is False
    assert result.error_code == codes.DEPENDENCY_FAILURE
    assert TaskRepository(sqlite_session_factory).get_by_id(task.id).status == "in_progress"
    cancelled = service.cancel(task.id, "tenant-a", "ops", reason="Outcome lost")
    assert cancelled.status == "cancelled"


def test_execute_stops_sla_clock(sqlite_session_factory) -> None:
    """Completing a task stamps its SLA record."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)
    tracker = SlaTracker(sqlite_session_factory)
    tracker.start(task, now=now)

    _service(sqlite_session_factory, now + timedelta(hours=6), ticking=False).execute(
        task.id, "tenant-a", "ann", "human"
    )

    assert tracker.get(task.id).actual_hours == 6.0


def test_simulation_writes_nothing(sqlite_session_factory) -> None:
    """Simulated runs return a flagged result and leave the task pending."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)

    result = _service(sqlite_session_factory, now).execute(
        task.id, "tenant-a", "ann", "human", simulation=True
    )

    assert result.success is True
    assert result.result["simulated"] is True
    assert TaskRepository(sqlite_session_factory).get_by_id(task.id).status == "pending"
    assert TaskHistoryRepository(sqlite_session_factory).list_for_task(task.id) == []


def test_block_policy_prevents_execution(sqlite_session_factory) -> None:
    """Blocked actions never run, whatever the method."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    _allow(sqlite_session_factory, action="block")
    task = _task(sqlite_session_factory, now)

    result = _service(sqlite_session_factory, now).execute(task.id, "tenant-a", "ann", "human")

    assert result.error_code == codes.POLICY_BLOCKED
    assert TaskRepository(sqlite_session_factory).get_by_id(task.id).status == "pending"


def test_review_requirement_only_gates_autonomous_runs(sqlite_session_factory) -> None:
    """Without an auto policy, autonomous runs need review but supervised runs proceed."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    service = _service(sqlite_session_factory, now)
    gated = _task(sqlite_session_factory, now)
    supervised = _task(sqlite_session_factory, now)

    assert (
        service.execute(gated.id, "tenant-a", "autopilot", "ai_autonomous").error_code
        == codes.REVIEW_REQUIRED
    )
    assert service.execute(supervised.id, "tenant-a", "ann", "ai_supervised").success is True


def test_auto_policy_allows_autonomous_runs(sqlite_session_factory) -> None:
    """An auto policy lets the autopilot execute on its own."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    _allow(sqlite_session_factory)
    task = _task(sqlite_session_factory, now)

    result = _service(sqlite_session_factory, now).execute(
        task.id, "tenant-a", "autopilot", "ai_autonomous"
    )

    assert result.success is True


def test_unknown_task_type_has_no_handler(sqlite_session_factory) -> None:
    """Signal-derived types without a handler fail without claiming."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now, task_type="anomaly")

    result = _service(sqlite_session_factory, now).execute(task.id, "tenant-a", "ann", "human")

    assert result.error_code == codes.UNKNOWN_TASK_TYPE
    assert TaskRepository(sqlite_session_factory).get_by_id(task.id).status == "pending"


def test_handler_failure_marks_task_failed(sqlite_session_factory) -> None:
    """Handler exceptions fail the task and record the error."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    registry = HandlerRegistry()
    registry.register(_ExplodingHandler())
    task = _task(sqlite_session_factory, now, task_type="posting")

    result = _service(sqlite_session_factory, now, registry).execute(
        task.id, "tenant-a", "ann", "human"
    )

    assert result.error_code == codes.EXECUTION_FAILED
    assert result.error == "ledger offline"
    stored = TaskRepository(sqlite_session_factory).get_by_id(task.id)
    assert stored.status == "failed"
    assert stored.error_message == "ledger offline"


def test_unknown_execution_method(sqlite_session_factory) -> None:
    """Unknown execution methods are rejected."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)

    with pytest.raises(ValidationError):
        _service(sqlite_session_factory, now).execute(task.id, "tenant-a", "ann", "telepathy")


def test_rollback_cancels_completed_task(sqlite_session_factory) -> None:
    """Rollback moves a completed task to cancelled and records the undo."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)
    service = _service(sqlite_session_factory, now)
    service.execute(task.id, "tenant-a", "ann", "human")

    service.rollback(task.id, "tenant-a", "lead")

    assert TaskRepository(sqlite_session_factory).get_by_id(task.id).status == "cancelled"
    history = TaskHistoryRepository(sqlite_session_factory).list_for_task(task.id)
    assert history[-1].action_type == "rolled_back"
    assert history[-1].changes["rollbackData"]["taskType"] == "reconciliation"


def test_rollback_unavailable_for_review_tasks(sqlite_session_factory) -> None:
    """Review completions carry no undo data."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now, task_type="review")
    service = _service(sqlite_session_factory, now)
    service.execute(task.id, "tenant-a", "ann", "human")

    with pytest.raises(ValidationError) as excinfo:
        service.rollback(task.id, "tenant-a", "lead")

    assert excinfo.value.code == codes.ROLLBACK_UNAVAILABLE
    assert str(excinfo.value) == "No rollback data available"


def test_cancel_pending_task(sqlite_session_factory) -> None:
    """Pending tasks can be cancelled with a reason; finished ones cannot."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    service = _service(sqlite_session_factory, now)
    pending = _task(sqlite_session_factory, now)
    done = _task(sqlite_session_factory, now)
    service.execute(done.id, "tenant-a", "ann", "human")

    cancelled = service.cancel(pending.id, "tenant-a", "lead", "duplicate")

    assert cancelled.status == "cancelled"
    history = TaskHistoryRepository(sqlite_session_factory).list_for_task(pending.id)
    assert history[-1].reasoning == "duplicate"
    with pytest.raises(ValidationError) as excinfo:
        service.cancel(done.id, "tenant-a", "lead")
    assert excinfo.value.code == codes.INVALID_TRANSITION


def test_default_registry_covers_executable_types() -> None:
    """Signal-only task types have no handler."""
    registry = build_default_registry()

    assert registry.task_types() == (
        "filing",
        "journal_entry",
        "posting",
        "reconciliation",
        "review",
    )
    assert registry.get("ingestion") is None
    assert isinstance(
        registry.get("review").execute("tenant-a", {}, False), HandlerOutcome
    )

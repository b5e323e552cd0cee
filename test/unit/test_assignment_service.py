"""Unit tests for task assignment persistence."""

from datetime import datetime, timedelta, timezone

import pytest

from assignment.roster import StaffCreateInput, StaffRepository
from assignment.service import AssignmentService
from autopilot_shared.errors import NotFoundError, ValidationError, codes
from tasks.history import TaskHistoryRepository
from tasks.repository import TaskCreateInput, TaskRepository


def _task(session_factory, now, title="Reconcile"):
    return TaskRepository(session_factory).create(
        TaskCreateInput(tenant_id="tenant-a", task_type="reconciliation", title=title),
        now=now,
    )


def _enroll(session_factory, now, *users, **overrides):
    repo = StaffRepository(session_factory)
    for offset, user_id in enumerate(users):
        repo.create(
            StaffCreateInput(tenant_id="tenant-a", user_id=user_id, **overrides),
            now=now + timedelta(seconds=offset),
        )


def test_auto_assignment_balances_workload(sqlite_session_factory) -> None:
    """Auto assignment spreads tasks to the least-loaded worker."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    _enroll(sqlite_session_factory, now, "ann", "bob")
    service = AssignmentService(sqlite_session_factory)
    first = _task(sqlite_session_factory, now, "one")
    second = _task(sqlite_session_factory, now, "two")

    assert service.assign(first.id, "tenant-a", "auto", "system", now=now) == "ann"
    assert service.assign(second.id, "tenant-a", "auto", "system", now=now) == "bob"

    stored = TaskRepository(sqlite_session_factory).get_by_id(first.id)
    assert stored.assigned_to == "ann"
    assert stored.auto_assigned is True
    assert stored.assignment_method == "auto"


def test_assignment_appends_history(sqlite_session_factory) -> None:
    """Each assignment is recorded on the task's audit trail."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    _enroll(sqlite_session_factory, now, "ann")
    task = _task(sqlite_session_factory, now)

    AssignmentService(sqlite_session_factory).assign(task.id, "tenant-a", "auto", "system", now=now)

    history = TaskHistoryRepository(sqlite_session_factory).list_for_task(task.id)
    assert [entry.action_type for entry in history] == ["assigned"]
    assert history[0].changes == {"assignedTo": "ann", "method": "auto"}
    assert history[0].reasoning == "Task assigned using auto method"


def test_round_robin_rotates(sqlite_session_factory) -> None:
    """Round robin moves on from the most recent assignee."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    _enroll(sqlite_session_factory, now, "ann", "bob")
    service = AssignmentService(sqlite_session_factory)
    tasks = [_task(sqlite_session_factory, now, f"t{i}") for i in range(3)]

    assignees = [
        service.assign(task.id, "tenant-a", "round_robin", "lead", now=now + timedelta(minutes=i))
        for i, task in enumerate(tasks)
    ]

    assert assignees == ["ann", "bob", "ann"]


def test_manual_assignment(sqlite_session_factory) -> None:
    """Manual assignment uses the named user and is not auto-assigned."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)
    service = AssignmentService(sqlite_session_factory)

    assert service.assign(task.id, "tenant-a", "manual", "lead", "dan", now=now) == "dan"
    assert TaskRepository(sqlite_session_factory).get_by_id(task.id).auto_assigned is False


def test_manual_assignment_requires_user(sqlite_session_factory) -> None:
    """Manual assignment without a user is rejected."""
    task = _task(sqlite_session_factory, datetime(2026, 1, 1, tzinfo=timezone.utc))

    with pytest.raises(ValidationError) as excinfo:
        AssignmentService(sqlite_session_factory).assign(task.id, "tenant-a", "manual", "lead")

    assert excinfo.value.code == codes.MISSING_REQUIRED_FIELD


def test_unknown_method_is_rejected(sqlite_session_factory) -> None:
    """Unknown assignment methods raise before touching the task."""
    task = _task(sqlite_session_factory, datetime(2026, 1, 1, tzinfo=timezone.utc))

    with pytest.raises(ValidationError) as excinfo:
        AssignmentService(sqlite_session_factory).assign(task.id, "tenant-a", "lottery", "lead")

    assert excinfo.value.code == codes.UNKNOWN_ASSIGNMENT_METHOD


def test_no_candidates_leaves_task_unassigned(sqlite_session_factory) -> None:
    """Without an eligible worker the task stays unassigned."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    task = _task(sqlite_session_factory, now)

    result = AssignmentService(sqlite_session_factory).assign(
        task.id, "tenant-a", "auto", "system", now=now
    )

    assert result is None
    assert TaskRepository(sqlite_session_factory).get_by_id(task.id).assigned_to is None


def test_assign_missing_task(sqlite_session_factory) -> None:
    """Assigning another tenant's task reports TASK_NOT_FOUND."""
    task = _task(sqlite_session_factory, datetime(2026, 1, 1, tzinfo=timezone.utc))

    with pytest.raises(NotFoundError):
        AssignmentService(sqlite_session_factory).assign(task.id, "tenant-b", "auto", "system")


def test_suggest_returns_skilled_worker(sqlite_session_factory) -> None:
    """Suggestions rank skilled workers first without assigning."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    repo = StaffRepository(sqlite_session_factory)
    repo.create(StaffCreateInput(tenant_id="tenant-a", user_id="ann"), now=now)
    repo.create(
        StaffCreateInput(
            tenant_id="tenant-a", user_id="bob", skill_tags=("reconciliation",)
        ),
        now=now + timedelta(seconds=1),
    )
    task = _task(sqlite_session_factory, now)

    suggestion = AssignmentService(sqlite_session_factory).suggest(task.id, "tenant-a")

    assert suggestion.user_id == "bob"
    assert "Has relevant skills" in suggestion.reasons
    assert TaskRepository(sqlite_session_factory).get_by_id(task.id).assigned_to is None

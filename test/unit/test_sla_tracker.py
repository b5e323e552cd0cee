"""Unit tests for SLA status computation and tracking."""

from contextlib import closing
from datetime import datetime, timedelta, timezone

from models import AutopilotTask
from sla.tracker import SlaTracker, compute_status, sla_hours_for_priority
from tasks.repository import TaskCreateInput, TaskRepository
from time_utils import to_utc


def _create_task(session_factory, now, *, priority="high", title="Prepare VAT"):
    return TaskRepository(session_factory).create(
        TaskCreateInput(
            tenant_id="tenant-a", task_type="deadline", title=title, priority=priority
        ),
        now=now,
    )


def test_priority_hours_defaults() -> None:
    """Default allotments match the priority table."""
    assert sla_hours_for_priority("urgent") == 4
    assert sla_hours_for_priority("high") == 24
    assert sla_hours_for_priority("medium") == 48
    assert sla_hours_for_priority("low") == 168


def test_compute_status_boundaries() -> None:
    """At risk is inclusive at the fraction; breached only after the due time."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    due = now + timedelta(hours=24)

    assert compute_status(now, due, 48) == "at_risk"
    assert compute_status(now - timedelta(seconds=1), due, 48) == "on_track"
    assert compute_status(due, due, 48) == "at_risk"
    assert compute_status(due + timedelta(seconds=1), due, 48) == "breached"


def test_compute_status_is_monotonic_over_time() -> None:
    """A clock never moves back from breached or at risk."""
    start = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    due = start + timedelta(hours=48)
    order = {"on_track": 0, "at_risk": 1, "breached": 2}

    ranks = [
        order[compute_status(start + timedelta(hours=hour), due, 48)] for hour in range(0, 60)
    ]

    assert ranks == sorted(ranks)
    assert ranks[0] == 0
    assert ranks[-1] == 2


def test_start_and_refresh(sqlite_session_factory) -> None:
    """Refresh moves a record through at risk to breached."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    tracker = SlaTracker(sqlite_session_factory)
    task = _create_task(sqlite_session_factory, now)

    record = tracker.start(task, now=now)
    assert record.status == "on_track"
    assert to_utc(record.sla_due_time) == now + timedelta(hours=24)

    assert tracker.refresh(task.id, now + timedelta(hours=13)).status == "at_risk"
    assert tracker.refresh_tenant("tenant-a", now + timedelta(hours=25)) == 1
    assert tracker.get(task.id).status == "breached"
    assert tracker.refresh_tenant("tenant-a", now + timedelta(hours=26)) == 0


def test_mark_completed_is_idempotent(sqlite_session_factory) -> None:
    """A second completion keeps the first timestamp and actual hours."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    tracker = SlaTracker(sqlite_session_factory)
    task = _create_task(sqlite_session_factory, now)
    tracker.start(task, now=now)

    first = tracker.mark_completed(task.id, now + timedelta(hours=2))
    second = tracker.mark_completed(task.id, now + timedelta(hours=9))

    assert first.actual_hours == 2.0
    assert second.actual_hours == 2.0
    assert to_utc(second.completed_at) == now + timedelta(hours=2)
    assert tracker.refresh(task.id, now + timedelta(days=3)).status == "on_track"


def test_missing_records_are_ignored(sqlite_session_factory) -> None:
    """Refreshing or completing an untracked task is a no-op."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    tracker = SlaTracker(sqlite_session_factory)
    task = _create_task(sqlite_session_factory, now)

    assert tracker.refresh(task.id, now) is None
    assert tracker.mark_completed(task.id, now) is None


def test_get_stats_summarizes_window(sqlite_session_factory) -> None:
    """Stats count statuses, completions, and adherence."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    tracker = SlaTracker(sqlite_session_factory)
    done = _create_task(sqlite_session_factory, now, title="done")
    late = _create_task(sqlite_session_factory, now, priority="urgent", title="late")
    tracker.start(done, now=now)
    tracker.start(late, now=now)
    tracker.mark_completed(done.id, now + timedelta(hours=3))
    tracker.refresh_tenant("tenant-a", now + timedelta(hours=5))

    stats = tracker.get_stats("tenant-a", now=now + timedelta(hours=5))

    assert stats.total == 2
    assert stats.breached == 1
    assert stats.completed == 1
    assert stats.completed_within_sla == 1
    assert stats.adherence_rate == 1.0
    assert stats.average_actual_hours == 3.0


def test_at_risk_tasks_exclude_cancelled(sqlite_session_factory) -> None:
    """Only active tasks with at-risk or breached clocks are listed."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    tracker = SlaTracker(sqlite_session_factory)
    urgent = _create_task(sqlite_session_factory, now, priority="urgent", title="urgent")
    cancelled = _create_task(sqlite_session_factory, now, priority="urgent", title="dropped")
    relaxed = _create_task(sqlite_session_factory, now, priority="low", title="relaxed")
    for task in (urgent, cancelled, relaxed):
        tracker.start(task, now=now)
    with closing(sqlite_session_factory()) as session:
        session.get(AutopilotTask, cancelled.id).status = "cancelled"
        session.commit()

    at_risk = tracker.get_at_risk_tasks("tenant-a", now=now + timedelta(hours=3))

    assert [item.task_id for item in at_risk] == [urgent.id]
    assert at_risk[0].sla_status == "at_risk"
    assert at_risk[0].hours_remaining == 1.0

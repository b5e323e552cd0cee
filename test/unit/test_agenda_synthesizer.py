"""Unit tests for daily agenda synthesis."""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from agenda.signals import SignalCollector, detect_open_anomalies
from agenda.synthesizer import AgendaSynthesizer, compute_counters
from autopilot_shared.errors import NotFoundError, codes
from helpers.autopilot_stubs import (
    add_anomalies,
    add_filing,
    add_pending_ingestions,
    add_transactions,
)
from models import AutopilotTask
from sla.tracker import SlaTracker
from tasks.repository import TaskRepository


class _BrokenSummarizer:
    def summarize(self, signal):
        raise RuntimeError("model unavailable")


class _CannedSummarizer:
    def summarize(self, signal):
        return f"{signal.signal_type} needs attention"


def _seed_all_signals(session_factory, now) -> None:
    add_pending_ingestions(session_factory, "tenant-a", 12, when=now - timedelta(hours=2))
    add_filing(session_factory, "tenant-a", due=now - timedelta(days=1))
    add_transactions(session_factory, "tenant-a", 2, when=now - timedelta(days=10))
    add_anomalies(session_factory, "tenant-a", 1, when=now - timedelta(hours=3))


def _synthesizer(session_factory, now, summarizer=None, collector=None) -> AgendaSynthesizer:
    return AgendaSynthesizer(
        session_factory,
        collector or SignalCollector(session_factory),
        summarizer,
        now_provider=lambda: now,
    )


def test_generate_daily_agenda_creates_tasks_and_counters(sqlite_session_factory) -> None:
    """Each signal becomes a tracked task listed on the agenda."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    _seed_all_signals(sqlite_session_factory, now)
    synthesizer = _synthesizer(sqlite_session_factory, now)

    agenda = synthesizer.generate_daily_agenda("tenant-a")

    assert agenda.agenda_date == date(2026, 1, 1)
    assert agenda.total_tasks == 4
    assert agenda.pending_tasks == 4
    assert (agenda.urgent_count, agenda.high_count, agenda.medium_count) == (1, 1, 2)
    assert agenda.on_track_count == 4
    assert agenda.overdue_tasks == 0

    tasks = synthesizer.get_agenda_tasks(agenda.id, "tenant-a")
    assert [task.task_type for task in tasks] == [
        "ingestion",
        "deadline",
        "reconciliation",
        "anomaly",
    ]
    assert tasks[1].title == "Prepare VAT Filing (Due 2025-12-31)"
    assert tasks[1].severity == "critical"
    assert tasks[2].title == "Reconcile 2 Stale Transactions"
    tracker = SlaTracker(sqlite_session_factory)
    assert all(tracker.get(task.id) is not None for task in tasks)


def test_generate_daily_agenda_is_idempotent(sqlite_session_factory) -> None:
    """A second run for the same date returns the stored agenda unchanged."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    _seed_all_signals(sqlite_session_factory, now)
    synthesizer = _synthesizer(sqlite_session_factory, now)

    first = synthesizer.generate_daily_agenda("tenant-a")
    add_anomalies(sqlite_session_factory, "tenant-a", 5, when=now)
    second = synthesizer.generate_daily_agenda("tenant-a", date(2026, 1, 1))

    assert second.id == first.id
    assert len(TaskRepository(sqlite_session_factory).list_for_tenant("tenant-a")) == 4


def test_quiet_tenant_gets_empty_agenda(sqlite_session_factory) -> None:
    """No signals still yields an agenda with zero tasks."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    agenda = _synthesizer(sqlite_session_factory, now).generate_daily_agenda("tenant-a")

    assert agenda.total_tasks == 0
    assert agenda.task_ids == []


def test_summarizer_failure_falls_back_to_template(sqlite_session_factory) -> None:
    """A failing narrative provider never blocks task creation."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    add_anomalies(sqlite_session_factory, "tenant-a", 1, when=now)
    synthesizer = _synthesizer(sqlite_session_factory, now, _BrokenSummarizer())

    agenda = synthesizer.generate_daily_agenda("tenant-a")

    [task] = synthesizer.get_agenda_tasks(agenda.id, "tenant-a")
    assert task.ai_summary == "Automated task generated from anomaly signal. Priority: high."


def test_summarizer_output_is_stored(sqlite_session_factory) -> None:
    """Narratives from the summarizer land on the task."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    add_anomalies(sqlite_session_factory, "tenant-a", 1, when=now)
    collector = SignalCollector(sqlite_session_factory, detectors=(detect_open_anomalies,))
    synthesizer = _synthesizer(sqlite_session_factory, now, _CannedSummarizer(), collector)

    agenda = synthesizer.generate_daily_agenda("tenant-a")

    [task] = synthesizer.get_agenda_tasks(agenda.id, "tenant-a")
    assert task.ai_summary == "anomaly needs attention"


def test_get_agenda_is_tenant_scoped(sqlite_session_factory) -> None:
    """Agendas of other tenants, or unknown ids, are not found."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    synthesizer = _synthesizer(sqlite_session_factory, now)
    agenda = synthesizer.generate_daily_agenda("tenant-a")

    with pytest.raises(NotFoundError) as excinfo:
        synthesizer.get_agenda(agenda.id, "tenant-b")
    assert excinfo.value.code == codes.AGENDA_NOT_FOUND
    with pytest.raises(NotFoundError):
        synthesizer.get_agenda(uuid4(), "tenant-a")


def test_compute_counters_sla_positions() -> None:
    """Tasks at their due time are at risk; past due are breached and overdue."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def task(status, priority, due_offset_hours, sla_hours=4):
        return AutopilotTask(
            status=status,
            priority=priority,
            due_date=now + timedelta(hours=due_offset_hours),
            sla_hours=sla_hours,
        )

    counters = compute_counters(
        [
            task("pending", "urgent", 0),
            task("in_progress", "high", -1),
            task("pending", "low", 100, sla_hours=168),
            task("completed", "medium", -10),
        ],
        now,
    )

    assert counters.total == 4
    assert (counters.pending, counters.in_progress, counters.completed) == (2, 1, 1)
    assert (counters.urgent, counters.high, counters.medium, counters.low) == (1, 1, 1, 1)
    assert (counters.on_track, counters.at_risk, counters.breached) == (1, 1, 1)
    assert counters.overdue == 1

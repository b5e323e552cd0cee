"""Unit tests for the Celery beat wiring of autopilot sweeps."""

from datetime import datetime, timezone

import pytest
from types import SimpleNamespace

import scheduler.celery_app as celery_app
from boot import set_services
from scheduler.sweeps import SweepReport


class _RecordingSweeps:
    """Sweep runner stub capturing which sweep ran and when."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, datetime]] = []

    def _record(self, name: str, now: datetime) -> SweepReport:
        self.calls.append((name, now))
        return SweepReport(processed=2, succeeded=1, failed=1)

    def generate_agendas(self, now):
        return self._record("agenda", now)

    def auto_assign_pending(self, now):
        return self._record("assignment", now)

    def auto_execute_assigned(self, now):
        return self._record("execution", now)

    def refresh_sla(self, now):
        return self._record("sla_refresh", now)

    def run_due_playbooks(self, now):
        return self._record("playbooks", now)


@pytest.fixture
def sweeps():
    """Install a stub service bundle for the duration of a test."""
    stub = _RecordingSweeps()
    set_services(SimpleNamespace(sweeps=stub))
    yield stub
    set_services(None)


def test_beat_schedule_registers_every_sweep() -> None:
    """Each sweep has a beat entry pointing at its task name."""
    schedule = celery_app.celery_app.conf.beat_schedule

    expected = {
        celery_app.AGENDA_TASK_NAME,
        celery_app.ASSIGNMENT_TASK_NAME,
        celery_app.EXECUTION_TASK_NAME,
        celery_app.SLA_REFRESH_TASK_NAME,
        celery_app.PLAYBOOK_TICK_TASK_NAME,
    }
    assert expected <= set(schedule)
    for name in expected:
        assert schedule[name]["task"] == name
        assert schedule[name]["schedule"] > 0
        assert name in celery_app.celery_app.tasks


@pytest.mark.parametrize(
    ("task", "sweep_name"),
    [
        (celery_app.generate_agendas, "agenda"),
        (celery_app.auto_assign, "assignment"),
        (celery_app.auto_execute, "execution"),
        (celery_app.refresh_sla, "sla_refresh"),
        (celery_app.run_due_playbooks, "playbooks"),
    ],
)
def test_tasks_delegate_to_sweeps(sweeps, task, sweep_name) -> None:
    """Tasks run their sweep at the current UTC time and return the report."""
    before = datetime.now(timezone.utc)

    result = task()

    assert result == {"processed": 2, "succeeded": 1, "failed": 1, "skipped": 0}
    [(name, when)] = sweeps.calls
    assert name == sweep_name
    assert when.tzinfo is not None
    assert when >= before

"""Celery entry point for autopilot sweeps."""

from __future__ import annotations

from datetime import datetime, timezone
import logging

from celery import Celery
from celery.exceptions import SoftTimeLimitExceeded

from boot import get_services
from config import settings
from scheduler.sweeps import SweepReport

LOGGER = logging.getLogger(__name__)

_SCHEDULER = settings.scheduler

celery_app = Celery("autopilot.scheduler")
celery_app.conf.broker_url = _SCHEDULER.broker_url
celery_app.conf.result_backend = _SCHEDULER.result_backend
celery_app.conf.task_default_queue = _SCHEDULER.queue_name
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.enable_utc = True
celery_app.conf.timezone = "UTC"

AGENDA_TASK_NAME = "autopilot.generate_agendas"
ASSIGNMENT_TASK_NAME = "autopilot.auto_assign"
EXECUTION_TASK_NAME = "autopilot.auto_execute"
SLA_REFRESH_TASK_NAME = "autopilot.refresh_sla"
PLAYBOOK_TICK_TASK_NAME = "autopilot.run_due_playbooks"

beat_schedule = celery_app.conf.get("beat_schedule")
if beat_schedule is None:
    beat_schedule = {}
beat_schedule[AGENDA_TASK_NAME] = {
    "task": AGENDA_TASK_NAME,
    "schedule": _SCHEDULER.agenda_interval_seconds,
}
beat_schedule[ASSIGNMENT_TASK_NAME] = {
    "task": ASSIGNMENT_TASK_NAME,
    "schedule": _SCHEDULER.assignment_interval_seconds,
}
beat_schedule[EXECUTION_TASK_NAME] = {
    "task": EXECUTION_TASK_NAME,
    "schedule": _SCHEDULER.execution_interval_seconds,
}
beat_schedule[SLA_REFRESH_TASK_NAME] = {
    "task": SLA_REFRESH_TASK_NAME,
    "schedule": _SCHEDULER.sla_refresh_interval_seconds,
}
beat_schedule[PLAYBOOK_TICK_TASK_NAME] = {
    "task": PLAYBOOK_TICK_TASK_NAME,
    "schedule": _SCHEDULER.playbook_tick_seconds,
}
celery_app.conf.beat_schedule = beat_schedule

_SOFT_TIME_LIMIT = _SCHEDULER.sweep_soft_time_limit_seconds


def _run_sweep(name: str, sweep) -> dict[str, int]:
    """Run one sweep at the current time and return its report as a dict."""
    now = datetime.now(timezone.utc)
    try:
        report: SweepReport = sweep(now)
    except SoftTimeLimitExceeded:
        LOGGER.error("Sweep exceeded soft time limit: sweep=%s limit=%ss", name, _SOFT_TIME_LIMIT)
        raise
    return report.as_dict()


@celery_app.task(name=AGENDA_TASK_NAME, soft_time_limit=_SOFT_TIME_LIMIT)
def generate_agendas() -> dict[str, int]:
    """Celery beat job that generates today's agenda for every known tenant."""
    return _run_sweep("agenda", get_services().sweeps.generate_agendas)


@celery_app.task(name=ASSIGNMENT_TASK_NAME, soft_time_limit=_SOFT_TIME_LIMIT)
def auto_assign() -> dict[str, int]:
    """Celery beat job that auto-assigns unassigned pending tasks."""
    return _run_sweep("assignment", get_services().sweeps.auto_assign_pending)


@celery_app.task(name=EXECUTION_TASK_NAME, soft_time_limit=_SOFT_TIME_LIMIT)
def auto_execute() -> dict[str, int]:
    """Celery beat job that autonomously executes assigned pending tasks."""
    return _run_sweep("execution", get_services().sweeps.auto_execute_assigned)


@celery_app.task(name=SLA_REFRESH_TASK_NAME, soft_time_limit=_SOFT_TIME_LIMIT)
def refresh_sla() -> dict[str, int]:
    """Celery beat job that recomputes open SLA records."""
    return _run_sweep("sla_refresh", get_services().sweeps.refresh_sla)


@celery_app.task(name=PLAYBOOK_TICK_TASK_NAME, soft_time_limit=_SOFT_TIME_LIMIT)
def run_due_playbooks() -> dict[str, int]:
    """Celery beat job that runs playbooks whose cadence has elapsed."""
    return _run_sweep("playbooks", get_services().sweeps.run_due_playbooks)

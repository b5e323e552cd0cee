"""Integration tests for agenda generation through execution and SLA closure."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import threading
from uuid import uuid4

import pytest
from sqlalchemy import text

from assignment.roster import StaffCreateInput, StaffRepository
from autopilot_shared.errors import codes
from boot import build_services
from config import settings
from helpers.autopilot_stubs import (
    RecordingEmailSender,
    RecordingReviewTaskCreator,
    add_transactions,
)
from services import database
from services.narrative import TemplateNarrative
from tasks.repository import TaskCreateInput
from time_utils import utc_now


def _ensure_database_ready() -> None:
    """Skip tests when the integration Postgres database is not configured or reachable."""
    url = settings.database.url or ""
    if not url.startswith("postgresql"):
        pytest.skip("Integration DB not configured (set DATABASE_URL or POSTGRES_PASSWORD).")
    try:
        with database.get_sync_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        pytest.skip(f"Integration DB not reachable: {exc}")


def test_agenda_task_is_assigned_executed_and_closes_sla() -> None:
    """A stale-transaction signal flows through assignment and execution once."""
    _ensure_database_ready()
    database.run_migrations_sync()

    factory = database.get_session_factory()
    tenant_id = f"tenant-{uuid4().hex[:12]}"
    add_transactions(factory, tenant_id, 3, when=utc_now() - timedelta(days=30))
    StaffRepository(factory).create(StaffCreateInput(tenant_id=tenant_id, user_id="ann"))
    services = build_services(
        factory,
        email_sender=RecordingEmailSender(),
        review_tasks=RecordingReviewTaskCreator(),
        summarizer=TemplateNarrative(),
    )

    agenda = services.agenda.generate_daily_agenda(tenant_id)
    [task] = services.agenda.get_agenda_tasks(agenda.id, tenant_id)

    assert agenda.total_tasks == 1
    assert task.task_type == "reconciliation"
    assert services.sla.get(task.id).status == "on_track"

    assignee = services.assignment.assign(task.id, tenant_id, "auto", "system")
    result = services.execution.execute(task.id, tenant_id, assignee, "human")
    repeat = services.execution.execute(task.id, tenant_id, assignee, "human")

    assert assignee == "ann"
    assert result.success is True
    assert repeat.error_code == codes.ALREADY_CLAIMED
    assert services.tasks.get_by_id(task.id).status == "completed"
    assert services.sla.get(task.id).completed_at is not None
    history = services.history.list_for_task(task.id)
    assert [entry.action_type for entry in history] == ["assigned", "started", "completed"]


def test_concurrent_executions_claim_task_once() -> None:
    """Two workers racing on one task produce a single completion."""
    _ensure_database_ready()
    database.run_migrations_sync()

    factory = database.get_session_factory()
    tenant_id = f"tenant-{uuid4().hex[:12]}"
    services = build_services(
        factory,
        email_sender=RecordingEmailSender(),
        review_tasks=RecordingReviewTaskCreator(),
        summarizer=TemplateNarrative(),
    )
    task = services.tasks.create(
        TaskCreateInput(tenant_id=tenant_id, task_type="reconciliation", title="Reconcile")
    )
    barrier = threading.Barrier(2)

    def _run(worker: str):
        barrier.wait(timeout=10)
        return services.execution.execute(task.id, tenant_id, worker, "human")

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(_run, ["ann", "bob"]))

    assert sorted(result.success for result in results) == [False, True]
    [lost] = [result for result in results if not result.success]
    assert lost.error_code == codes.ALREADY_CLAIMED
    history = services.history.list_for_task(task.id)
    assert [entry.action_type for entry in history].count("completed") == 1

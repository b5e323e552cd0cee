"""Periodic sweeps driving agenda generation, assignment, execution, and SLA upkeep.

Each sweep walks its items in pages and isolates every item: an exception is
logged and counted, and the sweep moves on to the next item.
"""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, Iterator

from sqlalchemy import union
from sqlalchemy.orm import Session

from agenda.synthesizer import AgendaSynthesizer
from assignment.service import AssignmentService
from autopilot_shared.errors import codes
from autopilot_shared.logging import log_context
from config import settings
from execution.service import ExecutionService
from models import (
    AnomalyDetection,
    AutomationPlaybook,
    AutopilotTask,
    BankTransaction,
    Filing,
    IngestionLogEntry,
    SlaTracking,
)
from playbooks.cadence import CadenceScheduler
from sla.tracker import SlaTracker
from tasks.repository import TaskRepository
from time_utils import to_utc, utc_date

logger = logging.getLogger(__name__)

# Execution outcomes that mean "not this time" rather than a failure.
_SKIP_CODES = frozenset(
    {codes.ALREADY_CLAIMED, codes.POLICY_BLOCKED, codes.REVIEW_REQUIRED, codes.UNKNOWN_TASK_TYPE}
)


@dataclass
class SweepReport:
    """Counts for one sweep pass."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def list_agenda_tenants(session: Session) -> list[str]:
    """Tenants with any signal source row or playbook, sorted."""
    query = union(
        session.query(IngestionLogEntry.tenant_id).distinct().statement,
        session.query(BankTransaction.tenant_id).distinct().statement,
        session.query(AnomalyDetection.tenant_id).distinct().statement,
        session.query(Filing.tenant_id).distinct().statement,
        session.query(AutomationPlaybook.tenant_id).distinct().statement,
    )
    return sorted({row[0] for row in session.execute(query) if row[0]})


def list_open_sla_tenants(session: Session) -> list[str]:
    rows = (
        session.query(SlaTracking.tenant_id)
        .filter(SlaTracking.completed_at.is_(None))
        .distinct()
        .all()
    )
    return sorted(row[0] for row in rows)


class SweepRunner:
    """Batch drivers invoked by the Celery beat schedule."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        tasks: TaskRepository,
        agenda: AgendaSynthesizer,
        assignment: AssignmentService,
        execution: ExecutionService,
        sla: SlaTracker,
        cadence: CadenceScheduler,
        batch_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._tasks = tasks
        self._agenda = agenda
        self._assignment = assignment
        self._execution = execution
        self._sla = sla
        self._cadence = cadence
        self._batch_size = batch_size or settings.scheduler.sweep_batch_size

    def generate_agendas(self, now: datetime) -> SweepReport:
        report = SweepReport()
        agenda_date = utc_date(to_utc(now))
        with closing(self._session_factory()) as session:
            tenants = list_agenda_tenants(session)
        for tenant_id in tenants:
            report.processed += 1
            try:
                self._agenda.generate_daily_agenda(tenant_id, agenda_date)
            except Exception:
                logger.exception("Agenda generation failed: tenant=%s", tenant_id)
                report.failed += 1
            else:
                report.succeeded += 1
        return self._finish("agenda", report)

    def auto_assign_pending(self, now: datetime) -> SweepReport:
        report = SweepReport()
        for task in self._iter_pending(assigned=False):
            report.processed += 1
            try:
                assignee = self._assignment.assign(
                    task.id, task.tenant_id, "auto", "system", now=now
                )
            except Exception:
                logger.exception(
                    "Auto-assignment failed: tenant=%s task_id=%s", task.tenant_id, task.id
                )
                report.failed += 1
                continue
            if assignee is None:
                report.skipped += 1
            else:
                report.succeeded += 1
        return self._finish("assignment", report)

    def auto_execute_assigned(self, now: datetime) -> SweepReport:
        report = SweepReport()
        for task in self._iter_pending(assigned=True):
            report.processed += 1
            try:
                result = self._execution.execute(
                    task.id, task.tenant_id, "autopilot", "ai_autonomous"
                )
            except Exception:
                logger.exception(
                    "Auto-execution failed: tenant=%s task_id=%s", task.tenant_id, task.id
                )
                report.failed += 1
                continue
            if result.success:
                report.succeeded += 1
            elif result.error_code in _SKIP_CODES:
                report.skipped += 1
            else:
                report.failed += 1
        return self._finish("execution", report)

    def refresh_sla(self, now: datetime) -> SweepReport:
        report = SweepReport()
        with closing(self._session_factory()) as session:
            tenants = list_open_sla_tenants(session)
        for tenant_id in tenants:
            report.processed += 1
            try:
                self._sla.refresh_tenant(tenant_id, now)
            except Exception:
                logger.exception("SLA refresh failed: tenant=%s", tenant_id)
                report.failed += 1
            else:
                report.succeeded += 1
        return self._finish("sla_refresh", report)

    def run_due_playbooks(self, now: datetime) -> SweepReport:
        result = self._cadence.run_due_playbooks(now)
        report = SweepReport(
            processed=len(result.runs) + len(result.failed) + len(result.skipped),
            succeeded=len(result.runs),
            failed=len(result.failed),
            skipped=len(result.skipped),
        )
        return self._finish("playbooks", report)

    def _iter_pending(self, *, assigned: bool) -> Iterator[AutopilotTask]:
        """Yield every pending task, one ``(created_at, id)`` keyset page at a time.

        Tasks a sweep leaves pending do not hide newer tasks from the same pass.
        """
        after = None
        while True:
            page = self._tasks.list_pending(
                assigned=assigned, limit=self._batch_size, after=after
            )
            yield from page
            if len(page) < self._batch_size:
                return
            last = page[-1]
            after = (last.created_at, last.id)

    def _finish(self, sweep: str, report: SweepReport) -> SweepReport:
        with log_context({"sweep": sweep}):
            logger.info(
                "Sweep completed: processed=%s succeeded=%s failed=%s skipped=%s",
                report.processed,
                report.succeeded,
                report.failed,
                report.skipped,
            )
        return report


__all__ = ["SweepReport", "SweepRunner", "list_agenda_tenants", "list_open_sla_tenants"]

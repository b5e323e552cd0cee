"""Daily agenda synthesis from detected signals."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agenda.mapping import build_task_input
from agenda.signals import Signal, SignalCollector
from autopilot_shared.errors import NotFoundError, codes
from autopilot_shared.logging import log_context
from config import settings
from models import AutopilotAgenda, AutopilotTask
from services.narrative import NarrativeSummarizer, TemplateNarrative
from sla.tracker import compute_status, start_tracking
from tasks.repository import create_task_record
from time_utils import to_utc, utc_date, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgendaCounters:
    """Status, priority, and SLA counts over an agenda's tasks."""

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    overdue: int = 0
    urgent: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    on_track: int = 0
    at_risk: int = 0
    breached: int = 0


def compute_counters(
    tasks: Sequence[AutopilotTask],
    now: datetime,
    *,
    at_risk_fraction: float | None = None,
) -> AgendaCounters:
    """Count tasks by status, priority, and SLA position at ``now``."""
    fraction = settings.sla.at_risk_fraction if at_risk_fraction is None else at_risk_fraction
    counts = {name: 0 for name in AgendaCounters.__dataclass_fields__}
    counts["total"] = len(tasks)
    for task in tasks:
        if task.status == "pending":
            counts["pending"] += 1
        elif task.status == "in_progress":
            counts["in_progress"] += 1
        elif task.status == "completed":
            counts["completed"] += 1
        if task.priority in ("urgent", "high", "medium", "low"):
            counts[task.priority] += 1
        if task.due_date is None or task.status == "completed":
            continue
        status = compute_status(
            now, task.due_date, task.sla_hours or 0, at_risk_fraction=fraction
        )
        counts[status] += 1
        if status == "breached":
            counts["overdue"] += 1
    return AgendaCounters(**counts)


class AgendaSynthesizer:
    """Turn a tenant's signals into tasks, SLA records, and a daily agenda."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        collector: SignalCollector,
        summarizer: NarrativeSummarizer | None = None,
        *,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._collector = collector
        self._summarizer = summarizer or TemplateNarrative()
        self._fallback = TemplateNarrative()
        self._now = now_provider

    def generate_daily_agenda(
        self, tenant_id: str, agenda_date: date | None = None
    ) -> AutopilotAgenda:
        """Return the tenant's agenda for a date, creating it at most once."""
        now = to_utc(self._now())
        target_date = agenda_date or utc_date(now)
        with log_context({"tenant_id": tenant_id}):
            existing = self._find_existing(tenant_id, target_date)
            if existing is not None:
                logger.info("Agenda already exists: date=%s", target_date)
                return existing

            signals = self._collector.collect(tenant_id, now)
            summaries = [self._summarize(signal) for signal in signals]
            try:
                agenda = self._persist(tenant_id, target_date, now, signals, summaries)
            except IntegrityError:
                winner = self._find_existing(tenant_id, target_date)
                if winner is None:
                    raise
                logger.info("Agenda created concurrently: date=%s", target_date)
                return winner
            logger.info(
                "Agenda generated: date=%s tasks=%s", target_date, agenda.total_tasks
            )
            return agenda

    def get_agenda(self, agenda_id: UUID, tenant_id: str) -> AutopilotAgenda:
        """Fetch an agenda owned by a tenant."""

        def handler(session: Session) -> AutopilotAgenda:
            agenda = session.get(AutopilotAgenda, agenda_id)
            if agenda is None or agenda.tenant_id != tenant_id:
                raise NotFoundError(
                    f"Agenda not found: {agenda_id}",
                    code=codes.AGENDA_NOT_FOUND,
                    metadata={"agenda_id": str(agenda_id)},
                )
            return agenda

        return self._execute(handler)

    def get_agenda_tasks(self, agenda_id: UUID, tenant_id: str) -> list[AutopilotTask]:
        """Return the tasks listed on an agenda in agenda order."""
        agenda = self.get_agenda(agenda_id, tenant_id)
        task_ids = [UUID(value) for value in agenda.task_ids or []]
        if not task_ids:
            return []

        def handler(session: Session) -> list[AutopilotTask]:
            rows = session.query(AutopilotTask).filter(AutopilotTask.id.in_(task_ids)).all()
            by_id = {row.id: row for row in rows}
            return [by_id[task_id] for task_id in task_ids if task_id in by_id]

        return self._execute(handler)

    def _summarize(self, signal: Signal) -> str:
        try:
            summary = self._summarizer.summarize(signal)
        except Exception:
            logger.exception("Narrative summarizer failed: signal_type=%s", signal.signal_type)
            summary = None
        return summary or self._fallback.summarize(signal)

    def _find_existing(self, tenant_id: str, agenda_date: date) -> AutopilotAgenda | None:
        def handler(session: Session) -> AutopilotAgenda | None:
            return (
                session.query(AutopilotAgenda)
                .filter(
                    AutopilotAgenda.tenant_id == tenant_id,
                    AutopilotAgenda.agenda_date == agenda_date,
                )
                .one_or_none()
            )

        return self._execute(handler)

    def _persist(
        self,
        tenant_id: str,
        agenda_date: date,
        now: datetime,
        signals: Sequence[Signal],
        summaries: Sequence[str],
    ) -> AutopilotAgenda:
        def handler(session: Session) -> AutopilotAgenda:
            tasks = []
            for signal, summary in zip(signals, summaries):
                task = create_task_record(
                    session, build_task_input(signal, tenant_id, summary), now=now
                )
                start_tracking(session, task, now=now)
                tasks.append(task)
            counters = compute_counters(tasks, now)
            agenda = AutopilotAgenda(
                tenant_id=tenant_id,
                agenda_date=agenda_date,
                generated_at=now,
                total_tasks=counters.total,
                pending_tasks=counters.pending,
                in_progress_tasks=counters.in_progress,
                completed_tasks=counters.completed,
                overdue_tasks=counters.overdue,
                urgent_count=counters.urgent,
                high_count=counters.high,
                medium_count=counters.medium,
                low_count=counters.low,
                on_track_count=counters.on_track,
                at_risk_count=counters.at_risk,
                breached_count=counters.breached,
                task_ids=[str(task.id) for task in tasks],
            )
            session.add(agenda)
            session.flush()
            return agenda

        return self._execute(handler)

    def _execute(self, handler):
        """Execute agenda work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


__all__ = ["AgendaCounters", "AgendaSynthesizer", "compute_counters"]

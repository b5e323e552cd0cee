"""SLA tracking: status computation, refresh, completion, and statistics."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from config import settings
from models import ACTIVE_TASK_STATUSES, AutopilotTask, SlaTracking
from time_utils import hours_between, to_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlaStats:
    """Aggregate SLA figures for a tenant over a trailing window."""

    total: int
    on_track: int
    at_risk: int
    breached: int
    completed: int
    completed_within_sla: int
    average_actual_hours: float | None
    adherence_rate: float | None


@dataclass(frozen=True)
class AtRiskTask:
    """Open task whose SLA is at risk or breached."""

    task_id: UUID
    title: str
    priority: str
    assigned_to: str | None
    sla_status: str
    sla_due_time: datetime
    hours_remaining: float


def sla_hours_for_priority(priority: str) -> int:
    """Return the SLA allotment in hours for a task priority."""
    hours = settings.sla.priority_hours
    return int(hours.get(priority, hours.get("medium", 48)))


def compute_status(
    now: datetime,
    due: datetime,
    allotted_hours: float,
    *,
    at_risk_fraction: float | None = None,
) -> str:
    """Return the SLA status for a clock at ``now``.

    Breached strictly after the due time; at risk when the remaining time is
    at or below the configured fraction of the allotment.
    """
    fraction = settings.sla.at_risk_fraction if at_risk_fraction is None else at_risk_fraction
    remaining = hours_between(now, due)
    if remaining < 0:
        return "breached"
    if remaining <= allotted_hours * fraction:
        return "at_risk"
    return "on_track"


class SlaTracker:
    """Maintain SLA records for tasks."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        at_risk_fraction: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._at_risk_fraction = (
            settings.sla.at_risk_fraction if at_risk_fraction is None else at_risk_fraction
        )

    def start(self, task: AutopilotTask, *, now: datetime | None = None) -> SlaTracking:
        """Create the SLA record for a task."""

        def handler(session: Session) -> SlaTracking:
            return start_tracking(session, task, now=now)

        return self._execute(handler)

    def get(self, task_id: UUID) -> SlaTracking | None:
        def handler(session: Session) -> SlaTracking | None:
            return _fetch_record(session, task_id)

        return self._execute(handler)

    def refresh(self, task_id: UUID, now: datetime | None = None) -> SlaTracking | None:
        """Recompute status for one task; missing records are ignored."""

        def handler(session: Session) -> SlaTracking | None:
            record = _fetch_record(session, task_id)
            if record is None:
                return None
            refresh_record(record, now or utc_now(), self._at_risk_fraction)
            session.flush()
            return record

        return self._execute(handler)

    def refresh_tenant(self, tenant_id: str, now: datetime | None = None) -> int:
        """Recompute open SLA records for a tenant; return how many changed."""

        def handler(session: Session) -> int:
            timestamp = now or utc_now()
            records = (
                session.query(SlaTracking)
                .filter(
                    SlaTracking.tenant_id == tenant_id,
                    SlaTracking.completed_at.is_(None),
                )
                .all()
            )
            changed = sum(
                1 for record in records if refresh_record(record, timestamp, self._at_risk_fraction)
            )
            session.flush()
            return changed

        return self._execute(handler)

    def mark_completed(self, task_id: UUID, now: datetime | None = None) -> SlaTracking | None:
        """Stop the clock for a task. Idempotent; missing records are ignored."""

        def handler(session: Session) -> SlaTracking | None:
            return mark_record_completed(session, task_id, now or utc_now())

        return self._execute(handler)

    def get_stats(
        self,
        tenant_id: str,
        days: int = 30,
        *,
        now: datetime | None = None,
    ) -> SlaStats:
        """Summarize SLA outcomes for records started in the last ``days`` days."""

        def handler(session: Session) -> SlaStats:
            cutoff = to_utc(now or utc_now()) - timedelta(days=days)
            records = (
                session.query(SlaTracking)
                .filter(
                    SlaTracking.tenant_id == tenant_id,
                    SlaTracking.sla_start_time >= cutoff,
                )
                .all()
            )
            return _build_stats(records)

        return self._execute(handler)

    def get_at_risk_tasks(
        self,
        tenant_id: str,
        limit: int = 20,
        *,
        now: datetime | None = None,
    ) -> list[AtRiskTask]:
        """Return open tasks whose refreshed SLA is at risk or breached."""

        def handler(session: Session) -> list[AtRiskTask]:
            timestamp = to_utc(now or utc_now())
            rows = (
                session.query(SlaTracking, AutopilotTask)
                .join(AutopilotTask, AutopilotTask.id == SlaTracking.task_id)
                .filter(
                    SlaTracking.tenant_id == tenant_id,
                    SlaTracking.completed_at.is_(None),
                    AutopilotTask.status.in_(ACTIVE_TASK_STATUSES),
                )
                .order_by(SlaTracking.sla_due_time.asc(), SlaTracking.id.asc())
                .all()
            )
            results: list[AtRiskTask] = []
            for record, task in rows:
                refresh_record(record, timestamp, self._at_risk_fraction)
                if record.status == "on_track":
                    continue
                results.append(
                    AtRiskTask(
                        task_id=task.id,
                        title=task.title,
                        priority=task.priority,
                        assigned_to=task.assigned_to,
                        sla_status=record.status,
                        sla_due_time=to_utc(record.sla_due_time),
                        hours_remaining=round(hours_between(timestamp, record.sla_due_time), 2),
                    )
                )
            session.flush()
            return results[:limit]

        return self._execute(handler)

    def _execute(self, handler):
        """Execute tracker work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def start_tracking(
    session: Session,
    task: AutopilotTask,
    *,
    now: datetime | None = None,
) -> SlaTracking:
    """Create an SLA record for a task using an existing session."""
    start = to_utc(task.created_at or now or utc_now())
    hours = task.sla_hours or sla_hours_for_priority(task.priority)
    due = to_utc(task.due_date) if task.due_date else start + timedelta(hours=hours)
    record = SlaTracking(
        tenant_id=task.tenant_id,
        task_id=task.id,
        sla_type="completion_time",
        sla_hours=hours,
        sla_start_time=start,
        sla_due_time=due,
        status=compute_status(to_utc(now or start), due, hours),
        created_at=start,
        updated_at=start,
    )
    session.add(record)
    session.flush()
    return record


def refresh_record(record: SlaTracking, now: datetime, at_risk_fraction: float) -> bool:
    """Recompute a record's status in place; return True when it changed."""
    if record.completed_at is not None:
        return False
    status = compute_status(
        now,
        to_utc(record.sla_due_time),
        record.sla_hours,
        at_risk_fraction=at_risk_fraction,
    )
    if status == record.status:
        return False
    logger.info(
        "SLA status changed: task_id=%s %s -> %s", record.task_id, record.status, status
    )
    record.status = status
    record.updated_at = to_utc(now)
    return True


def mark_record_completed(
    session: Session, task_id: UUID, now: datetime
) -> SlaTracking | None:
    """Stamp completion on a task's SLA record using an existing session."""
    record = _fetch_record(session, task_id)
    if record is None or record.completed_at is not None:
        return record
    completed_at = to_utc(now)
    record.completed_at = completed_at
    record.actual_hours = round(hours_between(record.sla_start_time, completed_at), 4)
    record.updated_at = completed_at
    session.flush()
    return record


def _fetch_record(session: Session, task_id: UUID) -> SlaTracking | None:
    return session.query(SlaTracking).filter(SlaTracking.task_id == task_id).one_or_none()


def _build_stats(records: list[SlaTracking]) -> SlaStats:
    completed = [record for record in records if record.completed_at is not None]
    within = [
        record
        for record in completed
        if record.actual_hours is not None and record.actual_hours <= record.sla_hours
    ]
    actuals = [record.actual_hours for record in completed if record.actual_hours is not None]
    return SlaStats(
        total=len(records),
        on_track=sum(1 for record in records if record.status == "on_track"),
        at_risk=sum(1 for record in records if record.status == "at_risk"),
        breached=sum(1 for record in records if record.status == "breached"),
        completed=len(completed),
        completed_within_sla=len(within),
        average_actual_hours=round(sum(actuals) / len(actuals), 2) if actuals else None,
        adherence_rate=round(len(within) / len(completed), 4) if completed else None,
    )


__all__ = [
    "AtRiskTask",
    "SlaStats",
    "SlaTracker",
    "compute_status",
    "mark_record_completed",
    "refresh_record",
    "sla_hours_for_priority",
    "start_tracking",
]

"""Worker roster persistence and workload queries."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from autopilot_shared.errors import ValidationError, codes
from config import settings
from models import StaffMember
from tasks.repository import count_active_by_assignee
from time_utils import to_optional_utc, to_utc, utc_now


@dataclass(frozen=True)
class StaffCreateInput:
    """Input payload for enrolling a worker on a tenant's roster."""

    tenant_id: str
    user_id: str
    name: str | None = None
    role: str = "accountant"
    max_concurrent_tasks: int | None = None
    skill_tags: Sequence[str] = ()
    tasks_completed: int = 0
    sla_adherence_rate: float | None = None
    average_completion_time: float | None = None


@dataclass(frozen=True)
class StaffCandidate:
    """Roster entry joined with its current active workload."""

    staff_id: UUID
    user_id: str
    name: str | None
    role: str
    skill_tags: tuple[str, ...]
    tasks_completed: int
    sla_adherence_rate: float | None
    max_concurrent_tasks: int
    active_tasks: int
    last_assigned_at: datetime | None


class StaffRepository:
    """Repository for roster entries."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create(self, payload: StaffCreateInput, *, now: datetime | None = None) -> StaffMember:
        """Add a worker to a tenant's roster."""
        if not payload.user_id:
            raise ValidationError("Staff user_id is required.", code=codes.MISSING_REQUIRED_FIELD)
        max_tasks = payload.max_concurrent_tasks
        if max_tasks is None:
            max_tasks = settings.assignment.default_max_concurrent_tasks
        if max_tasks < 1:
            raise ValidationError("max_concurrent_tasks must be >= 1.")

        def handler(session: Session) -> StaffMember:
            member = StaffMember(
                tenant_id=payload.tenant_id,
                user_id=payload.user_id,
                name=payload.name,
                role=payload.role,
                max_concurrent_tasks=max_tasks,
                skill_tags=list(payload.skill_tags),
                tasks_completed=payload.tasks_completed,
                sla_adherence_rate=payload.sla_adherence_rate,
                average_completion_time=payload.average_completion_time,
                is_active=True,
                created_at=to_utc(now or utc_now()),
            )
            session.add(member)
            session.flush()
            return member

        return self._execute(handler)

    def list_candidates(self, tenant_id: str) -> list[StaffCandidate]:
        """Return active roster entries with their workload."""

        def handler(session: Session) -> list[StaffCandidate]:
            return load_candidates(session, tenant_id)

        return self._execute(handler)

    def _execute(self, handler):
        """Execute repository work inside a managed session."""
        with closing(self._session_factory()) as session:
            session.expire_on_commit = False
            try:
                result = handler(session)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return result


def load_candidates(session: Session, tenant_id: str) -> list[StaffCandidate]:
    """Return active staff for a tenant in stable roster order."""
    members = (
        session.query(StaffMember)
        .filter(StaffMember.tenant_id == tenant_id, StaffMember.is_active.is_(True))
        .order_by(StaffMember.created_at.asc(), StaffMember.id.asc())
        .all()
    )
    workload = count_active_by_assignee(session, tenant_id)
    return [
        StaffCandidate(
            staff_id=member.id,
            user_id=member.user_id,
            name=member.name,
            role=member.role,
            skill_tags=tuple(member.skill_tags or ()),
            tasks_completed=member.tasks_completed or 0,
            sla_adherence_rate=member.sla_adherence_rate,
            max_concurrent_tasks=member.max_concurrent_tasks,
            active_tasks=workload.get(member.user_id, 0),
            last_assigned_at=to_optional_utc(member.last_assigned_at),
        )
        for member in members
    ]


def stamp_assignment(session: Session, tenant_id: str, user_id: str, now: datetime) -> None:
    """Record the assignment time on the roster entry, if the user is enrolled."""
    member = (
        session.query(StaffMember)
        .filter(StaffMember.tenant_id == tenant_id, StaffMember.user_id == user_id)
        .one_or_none()
    )
    if member is not None:
        member.last_assigned_at = to_utc(now)
        session.flush()


__all__ = [
    "StaffCandidate",
    "StaffCreateInput",
    "StaffRepository",
    "load_candidates",
    "stamp_assignment",
]

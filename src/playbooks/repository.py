"""Repository helpers for playbooks and their runs."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from autopilot_shared.errors import NotFoundError, codes
from models import AutomationPlaybook, AutomationPlaybookRun
from time_utils import to_optional_utc, to_utc, utc_now

UNSET = object()


@dataclass(frozen=True)
class PlaybookView:
    """Playbook state with derived approval backlog."""

    id: UUID
    tenant_id: str
    template_key: str
    name: str
    description: str | None
    status: str
    config: dict[str, Any]
    cadence_minutes: int
    confirmation_required: bool
    last_run_at: datetime | None
    last_run_status: str | None
    last_run_summary: dict[str, Any]
    pending_approvals: int


@dataclass(frozen=True)
class PlaybookCreateInput:
    """Input payload for creating a playbook row."""

    tenant_id: str
    template_key: str
    name: str
    config: Mapping[str, Any]
    cadence_minutes: int
    confirmation_required: bool
    status: str = "active"
    description: str | None = None
    created_by: str | None = None


@dataclass(frozen=True)
class PlaybookUpdateInput:
    """Input payload for updating playbook fields."""

    status: str | object = UNSET
    config: Mapping[str, Any] | object = UNSET
    cadence_minutes: int | object = UNSET
    confirmation_required: bool | object = UNSET


@dataclass(frozen=True)
class PlaybookRunCreateInput:
    """Input payload for recording a playbook run."""

    status: str
    triggered_by: str
    context: Mapping[str, Any]
    action_summary: Mapping[str, Any]
    message: str | None
    completed: bool


class PlaybookRepository:
    """Repository for playbook configuration and run history."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create(self, payload: PlaybookCreateInput, *, now: datetime | None = None) -> PlaybookView:
        def handler(session: Session) -> PlaybookView:
            timestamp = to_utc(now or utc_now())
            playbook = AutomationPlaybook(
                tenant_id=payload.tenant_id,
                template_key=payload.template_key,
                name=payload.name,
                description=payload.description,
                status=payload.status,
                config=dict(payload.config),
                cadence_minutes=payload.cadence_minutes,
                confirmation_required=payload.confirmation_required,
                last_run_summary={},
                created_by=payload.created_by,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(playbook)
            session.flush()
            return _to_view(session, playbook)

        return self._execute(handler)

    def get(self, tenant_id: str, playbook_id: UUID) -> PlaybookView | None:
        def handler(session: Session) -> PlaybookView | None:
            playbook = session.get(AutomationPlaybook, playbook_id)
            if playbook is None or playbook.tenant_id != tenant_id:
                return None
            return _to_view(session, playbook)

        return self._execute(handler)

    def list_for_tenant(self, tenant_id: str) -> list[PlaybookView]:
        """List a tenant's playbooks, newest first."""

        def handler(session: Session) -> list[PlaybookView]:
            rows = (
                session.query(AutomationPlaybook)
                .filter(AutomationPlaybook.tenant_id == tenant_id)
                .order_by(AutomationPlaybook.created_at.desc(), AutomationPlaybook.id.desc())
                .all()
            )
            return [_to_view(session, row) for row in rows]

        return self._execute(handler)

    def list_active(self) -> list[PlaybookView]:
        """List active playbooks across tenants in creation order."""

        def handler(session: Session) -> list[PlaybookView]:
            rows = (
                session.query(AutomationPlaybook)
                .filter(AutomationPlaybook.status == "active")
                .order_by(AutomationPlaybook.created_at.asc(), AutomationPlaybook.id.asc())
                .all()
            )
            return [_to_view(session, row) for row in rows]

        return self._execute(handler)

    def list_tenant_ids(self) -> list[str]:
        def handler(session: Session) -> list[str]:
            rows = session.query(AutomationPlaybook.tenant_id).distinct().all()
            return [row[0] for row in rows]

        return self._execute(handler)

    def update(
        self,
        tenant_id: str,
        playbook_id: UUID,
        updates: PlaybookUpdateInput,
        *,
        now: datetime | None = None,
    ) -> PlaybookView:
        def handler(session: Session) -> PlaybookView:
            playbook = _fetch_playbook(session, tenant_id, playbook_id)
            if updates.status is not UNSET:
                playbook.status = updates.status
            if updates.config is not UNSET:
                playbook.config = dict(updates.config)
            if updates.cadence_minutes is not UNSET:
                playbook.cadence_minutes = updates.cadence_minutes
            if updates.confirmation_required is not UNSET:
                playbook.confirmation_required = updates.confirmation_required
            playbook.updated_at = to_utc(now or utc_now())
            session.flush()
            return _to_view(session, playbook)

        return self._execute(handler)

    def record_run(
        self,
        playbook: PlaybookView,
        payload: PlaybookRunCreateInput,
        *,
        now: datetime | None = None,
    ) -> AutomationPlaybookRun:
        """Insert a run and update the playbook's last-run bookkeeping."""

        def handler(session: Session) -> AutomationPlaybookRun:
            timestamp = to_utc(now or utc_now())
            run = AutomationPlaybookRun(
                playbook_id=playbook.id,
                tenant_id=playbook.tenant_id,
                status=payload.status,
                triggered_by=payload.triggered_by,
                context=dict(payload.context),
                action_summary=dict(payload.action_summary),
                message=payload.message,
                created_at=timestamp,
                completed_at=timestamp if payload.completed else None,
            )
            session.add(run)
            _update_last_run(
                session, playbook.id, payload.status, payload.action_summary, timestamp
            )
            session.flush()
            return run

        return self._execute(handler)

    def get_run(
        self, tenant_id: str, playbook_id: UUID, run_id: UUID
    ) -> AutomationPlaybookRun | None:
        def handler(session: Session) -> AutomationPlaybookRun | None:
            run = session.get(AutomationPlaybookRun, run_id)
            if run is None or run.playbook_id != playbook_id or run.tenant_id != tenant_id:
                return None
            return run

        return self._execute(handler)

    def claim_run(self, tenant_id: str, playbook_id: UUID, run_id: UUID) -> bool:
        """Atomically move an awaiting run to approving.

        Returns False when the run is no longer awaiting approval.
        """

        def handler(session: Session) -> bool:
            result = session.execute(
                update(AutomationPlaybookRun)
                .where(
                    AutomationPlaybookRun.id == run_id,
                    AutomationPlaybookRun.playbook_id == playbook_id,
                    AutomationPlaybookRun.tenant_id == tenant_id,
                    AutomationPlaybookRun.status == "awaiting_approval",
                )
                .values(status="approving")
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

        return self._execute(handler)

    def finalize_run(
        self,
        run_id: UUID,
        *,
        status: str,
        action_summary: Mapping[str, Any],
        message: str,
        now: datetime | None = None,
    ) -> AutomationPlaybookRun:
        """Complete a claimed run in place and update last-run bookkeeping."""

        def handler(session: Session) -> AutomationPlaybookRun:
            run = session.get(AutomationPlaybookRun, run_id)
            if run is None:
                raise NotFoundError(f"Playbook run not found: {run_id}", code=codes.RUN_NOT_FOUND)
            timestamp = to_utc(now or utc_now())
            run.status = status
            run.action_summary = dict(action_summary)
            run.message = message
            run.completed_at = timestamp
            _update_last_run(session, run.playbook_id, status, action_summary, timestamp)
            session.flush()
            return run

        return self._execute(handler)

    def list_runs(
        self, tenant_id: str, playbook_id: UUID, limit: int = 10
    ) -> list[AutomationPlaybookRun]:
        """Return the most recent runs first."""

        def handler(session: Session) -> list[AutomationPlaybookRun]:
            return list(
                session.query(AutomationPlaybookRun)
                .filter(
                    AutomationPlaybookRun.tenant_id == tenant_id,
                    AutomationPlaybookRun.playbook_id == playbook_id,
                )
                .order_by(
                    AutomationPlaybookRun.created_at.desc(),
                    AutomationPlaybookRun.id.desc(),
                )
                .limit(limit)
                .all()
            )

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


def _fetch_playbook(session: Session, tenant_id: str, playbook_id: UUID) -> AutomationPlaybook:
    playbook = session.get(AutomationPlaybook, playbook_id)
    if playbook is None or playbook.tenant_id != tenant_id:
        raise NotFoundError(
            f"Playbook not found: {playbook_id}",
            code=codes.PLAYBOOK_NOT_FOUND,
            metadata={"playbook_id": str(playbook_id)},
        )
    return playbook


def _update_last_run(
    session: Session,
    playbook_id: UUID,
    status: str,
    action_summary: Mapping[str, Any],
    timestamp: datetime,
) -> None:
    playbook = session.get(AutomationPlaybook, playbook_id)
    if playbook is None:
        return
    playbook.last_run_at = timestamp
    playbook.last_run_status = status
    playbook.last_run_summary = dict(action_summary)
    playbook.updated_at = timestamp


def _to_view(session: Session, playbook: AutomationPlaybook) -> PlaybookView:
    pending = (
        session.query(func.count(AutomationPlaybookRun.id))
        .filter(
            AutomationPlaybookRun.playbook_id == playbook.id,
            AutomationPlaybookRun.status == "awaiting_approval",
        )
        .scalar()
        or 0
    )
    return PlaybookView(
        id=playbook.id,
        tenant_id=playbook.tenant_id,
        template_key=playbook.template_key,
        name=playbook.name,
        description=playbook.description,
        status=playbook.status,
        config=dict(playbook.config or {}),
        cadence_minutes=playbook.cadence_minutes,
        confirmation_required=bool(playbook.confirmation_required),
        last_run_at=to_optional_utc(playbook.last_run_at),
        last_run_status=playbook.last_run_status,
        last_run_summary=dict(playbook.last_run_summary or {}),
        pending_approvals=int(pending),
    )


__all__ = [
    "PlaybookCreateInput",
    "PlaybookRepository",
    "PlaybookRunCreateInput",
    "PlaybookUpdateInput",
    "PlaybookView",
    "UNSET",
]

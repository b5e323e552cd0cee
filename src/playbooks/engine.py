"""Playbook orchestration: evaluate, gate on threshold and approval, then act."""

from __future__ import annotations

from contextlib import closing
from datetime import datetime
import logging
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from autopilot_shared.errors import NotFoundError, ValidationError, codes
from autopilot_shared.logging import log_context
from config import settings
from models import PLAYBOOK_STATUSES, AutomationPlaybookRun
from playbooks.actions import PlaybookActions
from playbooks.evaluators import EVALUATORS, Evaluator, PlaybookEvaluation
from playbooks.repository import (
    UNSET,
    PlaybookCreateInput,
    PlaybookRepository,
    PlaybookRunCreateInput,
    PlaybookUpdateInput,
    PlaybookView,
)
from playbooks.templates import (
    PlaybookTemplate,
    list_templates,
    merge_config,
    require_template,
    validate_config,
)
from time_utils import utc_now

logger = logging.getLogger(__name__)


class PlaybookEngine:
    """Create, configure, run, and confirm tenant playbooks."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        repository: PlaybookRepository,
        actions: PlaybookActions,
        *,
        evaluators: Mapping[str, Evaluator] | None = None,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._repository = repository
        self._actions = actions
        self._evaluators = dict(evaluators or EVALUATORS)
        self._now = now_provider

    def list_templates(self) -> list[PlaybookTemplate]:
        return list_templates()

    def create_playbook(
        self,
        tenant_id: str,
        user_id: str,
        template_key: str,
        *,
        name: str | None = None,
        description: str | None = None,
        config: Mapping[str, Any] | None = None,
        cadence_minutes: int | None = None,
        confirmation_required: bool | None = None,
        status: str = "active",
    ) -> PlaybookView:
        """Instantiate a template for a tenant."""
        template = require_template(template_key)
        merged = merge_config(template, config)
        validate_config(template, merged)
        _validate_status(status)
        cadence = cadence_minutes if cadence_minutes is not None else template.cadence_minutes
        _validate_cadence(cadence)
        playbook = self._repository.create(
            PlaybookCreateInput(
                tenant_id=tenant_id,
                template_key=template.key,
                name=name or template.name,
                description=description or template.description,
                config=merged,
                cadence_minutes=cadence,
                confirmation_required=(
                    template.confirmation_required
                    if confirmation_required is None
                    else confirmation_required
                ),
                status=status,
                created_by=user_id,
            ),
            now=self._now(),
        )
        logger.info(
            "Playbook created: tenant=%s playbook_id=%s template=%s",
            tenant_id,
            playbook.id,
            template.key,
        )
        return playbook

    def update_playbook(
        self,
        tenant_id: str,
        playbook_id: UUID,
        *,
        status: str | None = None,
        config: Mapping[str, Any] | None = None,
        cadence_minutes: int | None = None,
        confirmation_required: bool | None = None,
    ) -> PlaybookView:
        """Update status, cadence, approval gating, or config overrides."""
        playbook = self.get_playbook(tenant_id, playbook_id)
        template = require_template(playbook.template_key)
        merged: Mapping[str, Any] | object = UNSET
        if config is not None:
            merged = merge_config(template, playbook.config, config)
            validate_config(template, merged)
        if status is not None:
            _validate_status(status)
        if cadence_minutes is not None:
            _validate_cadence(cadence_minutes)
        return self._repository.update(
            tenant_id,
            playbook_id,
            PlaybookUpdateInput(
                status=status if status is not None else UNSET,
                config=merged,
                cadence_minutes=cadence_minutes if cadence_minutes is not None else UNSET,
                confirmation_required=(
                    confirmation_required if confirmation_required is not None else UNSET
                ),
            ),
            now=self._now(),
        )

    def get_playbook(self, tenant_id: str, playbook_id: UUID) -> PlaybookView:
        playbook = self._repository.get(tenant_id, playbook_id)
        if playbook is None:
            raise NotFoundError(
                f"Playbook not found: {playbook_id}",
                code=codes.PLAYBOOK_NOT_FOUND,
                metadata={"playbook_id": str(playbook_id)},
            )
        return playbook

    def list_playbooks(self, tenant_id: str) -> list[PlaybookView]:
        return self._repository.list_for_tenant(tenant_id)

    def list_runs(
        self, tenant_id: str, playbook_id: UUID, limit: int | None = None
    ) -> list[AutomationPlaybookRun]:
        self.get_playbook(tenant_id, playbook_id)
        return self._repository.list_runs(
            tenant_id, playbook_id, limit or settings.playbooks.run_history_limit
        )

    def run_playbook(
        self,
        playbook: PlaybookView,
        triggered_by: str,
        force: bool = False,
    ) -> AutomationPlaybookRun:
        """Evaluate a playbook and record exactly one run."""
        template = require_template(playbook.template_key)
        with log_context({"tenant_id": playbook.tenant_id, "playbook_id": playbook.id}):
            evaluation = self._evaluate(playbook)
            default_threshold = template.default_config.get("threshold", 1)
            threshold = int(playbook.config.get("threshold", default_threshold))
            if evaluation.match_count < threshold:
                return self._record(
                    playbook,
                    status="skipped",
                    triggered_by=triggered_by,
                    context=evaluation.to_context(settings.playbooks.skipped_context_matches),
                    action_summary={"reason": "threshold_not_met"},
                    message=(
                        f"Only {evaluation.match_count} matches, below threshold of {threshold}"
                    ),
                    completed=True,
                )
            if playbook.confirmation_required and not force:
                logger.info("Playbook requires approval before executing")
                return self._record(
                    playbook,
                    status="awaiting_approval",
                    triggered_by=triggered_by,
                    context=evaluation.to_context(),
                    action_summary={},
                    message="Awaiting approval",
                    completed=False,
                )
            try:
                outcome = self._actions.execute(
                    playbook.template_key,
                    playbook.tenant_id,
                    playbook.config,
                    evaluation,
                    triggered_by,
                )
            except Exception as exc:
                logger.exception("Playbook actions failed")
                return self._record(
                    playbook,
                    status="failed",
                    triggered_by=triggered_by,
                    context=evaluation.to_context(settings.playbooks.success_context_matches),
                    action_summary={"reason": "action_failed"},
                    message=str(exc),
                    completed=True,
                )
            return self._record(
                playbook,
                status="success",
                triggered_by=triggered_by,
                context=evaluation.to_context(settings.playbooks.success_context_matches),
                action_summary=outcome.action_summary,
                message=outcome.message,
                completed=True,
            )

    def run_playbook_by_id(
        self,
        tenant_id: str,
        playbook_id: UUID,
        triggered_by: str,
        force: bool = False,
    ) -> AutomationPlaybookRun:
        return self.run_playbook(self.get_playbook(tenant_id, playbook_id), triggered_by, force)

    def confirm_run(
        self,
        tenant_id: str,
        playbook_id: UUID,
        run_id: UUID,
        user_id: str,
    ) -> AutomationPlaybookRun:
        """Approve an awaiting run and execute its captured actions.

        The run is claimed before any action executes, so concurrent
        confirmations of the same run act at most once.
        """
        run = self._repository.get_run(tenant_id, playbook_id, run_id)
        if run is None:
            raise NotFoundError(
                f"Playbook run not found: {run_id}",
                code=codes.RUN_NOT_FOUND,
                metadata={"run_id": str(run_id)},
            )
        playbook = self.get_playbook(tenant_id, playbook_id)
        if not self._repository.claim_run(tenant_id, playbook_id, run_id):
            current = self._repository.get_run(tenant_id, playbook_id, run_id)
            raise ValidationError(
                "Run is not awaiting approval",
                code=codes.RUN_NOT_AWAITING_APPROVAL,
                metadata={
                    "run_id": str(run_id),
                    "status": current.status if current is not None else run.status,
                },
            )
        evaluation = PlaybookEvaluation.from_context(run.context)
        with log_context({"tenant_id": tenant_id, "playbook_id": playbook_id, "run_id": run_id}):
            try:
                outcome = self._actions.execute(
                    playbook.template_key,
                    tenant_id,
                    playbook.config,
                    evaluation,
                    f"user:{user_id}",
                )
            except Exception as exc:
                logger.exception("Approved playbook actions failed")
                return self._repository.finalize_run(
                    run_id,
                    status="failed",
                    action_summary={"reason": "action_failed"},
                    message=str(exc),
                    now=self._now(),
                )
            confirmed = self._repository.finalize_run(
                run_id,
                status="success",
                action_summary=outcome.action_summary,
                message="Actions approved",
                now=self._now(),
            )
            logger.info("Playbook run approved: user=%s", user_id)
        return confirmed

    def _evaluate(self, playbook: PlaybookView) -> PlaybookEvaluation:
        evaluator = self._evaluators.get(playbook.template_key)
        if evaluator is None:
            raise ValidationError(
                f"Unknown playbook template: {playbook.template_key}",
                code=codes.UNKNOWN_TEMPLATE,
            )
        with closing(self._session_factory()) as session:
            return evaluator(session, playbook.tenant_id, playbook.config, self._now())

    def _record(
        self,
        playbook: PlaybookView,
        *,
        status: str,
        triggered_by: str,
        context: Mapping[str, Any],
        action_summary: Mapping[str, Any],
        message: str,
        completed: bool,
    ) -> AutomationPlaybookRun:
        run = self._repository.record_run(
            playbook,
            PlaybookRunCreateInput(
                status=status,
                triggered_by=triggered_by,
                context=context,
                action_summary=action_summary,
                message=message,
                completed=completed,
            ),
            now=self._now(),
        )
        logger.info("Playbook run recorded: status=%s message=%s", status, message)
        return run


def _validate_status(status: str) -> None:
    if status not in PLAYBOOK_STATUSES:
        raise ValidationError(f"Unknown playbook status: {status}", metadata={"status": status})


def _validate_cadence(cadence_minutes: int) -> None:
    if isinstance(cadence_minutes, bool) or not isinstance(cadence_minutes, int):
        raise ValidationError("cadence_minutes must be a positive integer.")
    if cadence_minutes < 1:
        raise ValidationError("cadence_minutes must be a positive integer.")


__all__ = ["PlaybookEngine"]

"""Side-effecting actions executed by playbook templates."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Mapping

from sqlalchemy import case
from sqlalchemy.orm import Session

from autopilot_shared.errors import ValidationError, codes
from models import TenantContact
from playbooks.evaluators import PlaybookEvaluation
from services.email import EmailSender
from services.review_tasks import ReviewTaskCreator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionOutcome:
    """Summary of actions taken for one run."""

    action_summary: dict[str, Any] = field(default_factory=dict)
    message: str = ""


@dataclass(frozen=True)
class PrimaryContact:
    email: str
    name: str | None


def get_primary_contact(session: Session, tenant_id: str) -> PrimaryContact | None:
    """Return the tenant owner, else the earliest-created contact."""
    contact = (
        session.query(TenantContact)
        .filter(TenantContact.tenant_id == tenant_id)
        .order_by(
            case((TenantContact.role == "owner", 0), else_=1),
            TenantContact.created_at.asc(),
            TenantContact.id.asc(),
        )
        .first()
    )
    if contact is None:
        return None
    return PrimaryContact(email=contact.email, name=contact.name)


class PlaybookActions:
    """Execute the action set of a playbook template."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        review_tasks: ReviewTaskCreator,
        email_sender: EmailSender,
    ) -> None:
        self._session_factory = session_factory
        self._review_tasks = review_tasks
        self._email_sender = email_sender

    def execute(
        self,
        template_key: str,
        tenant_id: str,
        config: Mapping[str, Any],
        evaluation: PlaybookEvaluation,
        triggered_by: str,
    ) -> ActionOutcome:
        if template_key == "reconciliation_backlog":
            return self._reconciliation_backlog(tenant_id, config, evaluation, triggered_by)
        if template_key == "filing_deadline_guard":
            return self._filing_deadline_guard(tenant_id, config, evaluation, triggered_by)
        raise ValidationError(
            f"Unknown playbook template: {template_key}", code=codes.UNKNOWN_TEMPLATE
        )

    def primary_contact(self, tenant_id: str) -> PrimaryContact | None:
        with closing(self._session_factory()) as session:
            return get_primary_contact(session, tenant_id)

    def _reconciliation_backlog(
        self,
        tenant_id: str,
        config: Mapping[str, Any],
        evaluation: PlaybookEvaluation,
        triggered_by: str,
    ) -> ActionOutcome:
        max_actions = int(config.get("maxActions", 5))
        to_process = evaluation.matches[:max_actions]
        created = 0
        for match in to_process:
            self._review_tasks.create_review_task(tenant_id, "transaction", match.id, "high")
            created += 1
        top_reference = to_process[0].reference if to_process else "n/a"
        notified = self._notify(
            tenant_id,
            "Reconciliation backlog requires attention",
            (
                f"<p>There are {evaluation.summary.get('stale', 0)} stale unreconciled "
                "transactions.</p>"
                f"<p>Top pending item: {top_reference}.</p>"
                f"<p>Automation run triggered by {triggered_by}.</p>"
            ),
        )
        return ActionOutcome(
            action_summary={"createdTasks": created, "notifiedUsers": notified},
            message=f"Created {created} review tasks",
        )

    def _filing_deadline_guard(
        self,
        tenant_id: str,
        config: Mapping[str, Any],
        evaluation: PlaybookEvaluation,
        triggered_by: str,
    ) -> ActionOutcome:
        overdue = [match for match in evaluation.matches if match.metadata.get("overdue")]
        notified = self._notify(
            tenant_id,
            "Upcoming HMRC filings",
            (
                f"<p>You have {evaluation.summary.get('total', 0)} filings due within "
                f"{evaluation.summary.get('window', 0)} days.</p>"
                f"<p>Overdue filings: {len(overdue)}.</p>"
                f"<p>Triggered by {triggered_by}.</p>"
            ),
        )
        created = 0
        if int(config.get("createTasksForOverdue", 1)) == 1:
            if "maxActions" in config:
                overdue = overdue[: int(config["maxActions"])]
            for match in overdue:
                self._review_tasks.create_review_task(tenant_id, "filing", match.id, "high")
                created += 1
        return ActionOutcome(
            action_summary={"createdTasks": created, "notifiedUsers": notified},
            message=f"Notified compliance owner and created {created} tasks",
        )

    def _notify(self, tenant_id: str, subject: str, html_body: str) -> int:
        """Best-effort e-mail to the primary contact; return users notified."""
        try:
            contact = self.primary_contact(tenant_id)
            if contact is None or not contact.email:
                return 0
            self._email_sender.send_email(contact.email, subject, html_body)
        except Exception:
            logger.exception(
                "Playbook notification failed: tenant=%s subject=%s", tenant_id, subject
            )
            return 0
        return 1


__all__ = ["ActionOutcome", "PlaybookActions", "PrimaryContact", "get_primary_contact"]

"""Trigger evaluation and action dispatch for automation rules."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import Any, Callable, Mapping, Protocol, Sequence
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from autopilot_shared.errors import (
    DependencyFailure,
    NotFoundError,
    ValidationError,
    codes,
)
from autopilot_shared.logging import log_context
from models import AutomationRule, BankTransaction
from playbooks.actions import get_primary_contact
from policies.conditions import conditions_hold, parse_conditions
from rules.repository import RuleCreateInput, RuleRepository, RuleUpdateInput
from services.email import EmailSender
from services.review_tasks import ReviewTaskCreator
from time_utils import to_utc, utc_now

logger = logging.getLogger(__name__)


class LedgerPoster(Protocol):
    """Contract for posting one double-entry line to the ledger."""

    def post_entry(
        self,
        tenant_id: str,
        *,
        document_id: str,
        entry_type: str,
        account_code: str,
        account_name: str,
        amount: float,
        description: str,
        transaction_date: date,
    ) -> None:
        """Post one ledger entry or raise on failure."""


@dataclass(frozen=True)
class RuleExecutionResult:
    triggered: bool
    executed_actions: tuple[str, ...] = ()
    failed_actions: tuple[str, ...] = ()


def js_weekday(moment: datetime) -> int:
    """Day of week with Sunday as 0."""
    return (moment.weekday() + 1) % 7


def trigger_matches(
    trigger_type: str,
    conditions: Mapping[str, Any],
    context: Mapping[str, Any],
    now: datetime,
) -> bool:
    """Return True when a rule trigger fires for the given context."""
    conditions = conditions or {}
    if trigger_type == "schedule":
        schedule = conditions.get("schedule")
        current = to_utc(now)
        if schedule == "daily":
            return True
        if schedule == "weekly":
            return js_weekday(current) == int(conditions.get("dayOfWeek") or 0)
        if schedule == "monthly":
            return current.day == int(conditions.get("dayOfMonth") or 1)
        return False
    if trigger_type == "transaction":
        if not context.get("transactionId") and not context.get("amount"):
            return False
    elif trigger_type == "document":
        if not context.get("documentId"):
            return False
    elif trigger_type != "condition":
        return False
    return conditions_hold(parse_conditions(conditions), context)


class RuleEngine:
    """Manage automation rules and execute their actions."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        repository: RuleRepository,
        review_tasks: ReviewTaskCreator,
        email_sender: EmailSender,
        ledger_poster: LedgerPoster | None = None,
        *,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._repository = repository
        self._review_tasks = review_tasks
        self._email_sender = email_sender
        self._ledger_poster = ledger_poster
        self._now = now_provider
        self._handlers: dict[str, Callable[[str, Mapping[str, Any], Mapping[str, Any]], None]] = {
            "categorize": self._categorize,
            "post_ledger": self._post_ledger,
            "send_notification": self._send_notification,
            "create_task": self._create_task,
        }

    def create_rule(
        self,
        tenant_id: str,
        name: str,
        trigger_type: str,
        trigger_conditions: Mapping[str, Any] | None = None,
        actions: Sequence[Mapping[str, Any]] = (),
        *,
        description: str | None = None,
        is_active: bool = True,
        priority: int = 0,
    ) -> AutomationRule:
        rule = self._repository.create(
            RuleCreateInput(
                tenant_id=tenant_id,
                name=name,
                trigger_type=trigger_type,
                trigger_conditions=dict(trigger_conditions or {}),
                actions=actions,
                description=description,
                is_active=is_active,
                priority=priority,
            ),
            now=self._now(),
        )
        logger.info("Automation rule created: tenant=%s rule_id=%s", tenant_id, rule.id)
        return rule

    def list_rules(self, tenant_id: str, *, active_only: bool = False) -> list[AutomationRule]:
        return self._repository.list_for_tenant(tenant_id, active_only=active_only)

    def update_rule(
        self, tenant_id: str, rule_id: UUID, updates: RuleUpdateInput
    ) -> AutomationRule:
        return self._repository.update(tenant_id, rule_id, updates, now=self._now())

    def delete_rule(self, tenant_id: str, rule_id: UUID) -> AutomationRule:
        """Soft-delete by deactivating the rule."""
        rule = self._repository.update(
            tenant_id, rule_id, RuleUpdateInput(is_active=False), now=self._now()
        )
        logger.info("Automation rule deactivated: tenant=%s rule_id=%s", tenant_id, rule_id)
        return rule

    def execute_rule(
        self,
        rule_id: UUID,
        tenant_id: str,
        context: Mapping[str, Any] | None = None,
    ) -> RuleExecutionResult:
        """Evaluate a rule's trigger and run its actions in order.

        Inactive rules never trigger. A failing action is logged and the
        remaining actions still run.
        """
        rule = self._repository.get(tenant_id, rule_id)
        if rule is None:
            raise NotFoundError(
                f"Automation rule not found: {rule_id}",
                code=codes.RULE_NOT_FOUND,
                metadata={"rule_id": str(rule_id)},
            )
        context = dict(context or {})
        if not rule.is_active:
            return RuleExecutionResult(triggered=False)
        if not trigger_matches(rule.trigger_type, rule.trigger_conditions, context, self._now()):
            logger.debug("Rule trigger did not match: rule_id=%s", rule_id)
            return RuleExecutionResult(triggered=False)

        executed: list[str] = []
        failed: list[str] = []
        with log_context({"tenant_id": tenant_id, "rule_id": str(rule_id)}):
            for action in rule.actions or []:
                action_type = action.get("type")
                handler = self._handlers.get(action_type)
                if handler is None:
                    logger.warning("Unknown rule action type: %s", action_type)
                    failed.append(str(action_type))
                    continue
                try:
                    handler(tenant_id, action.get("parameters") or {}, context)
                except Exception:
                    logger.exception("Rule action failed: action=%s", action_type)
                    failed.append(action_type)
                else:
                    executed.append(action_type)
            logger.info(
                "Automation rule executed: executed=%s failed=%s", len(executed), len(failed)
            )
        return RuleExecutionResult(
            triggered=True,
            executed_actions=tuple(executed),
            failed_actions=tuple(failed),
        )

    def _categorize(
        self, tenant_id: str, parameters: Mapping[str, Any], context: Mapping[str, Any]
    ) -> None:
        transaction_id = context.get("transactionId")
        category = parameters.get("category")
        if not transaction_id or not category:
            raise ValidationError(
                "categorize requires transactionId and category.",
                code=codes.MISSING_REQUIRED_FIELD,
            )
        with closing(self._session_factory()) as session:
            try:
                result = session.execute(
                    update(BankTransaction)
                    .where(
                        BankTransaction.id == _as_uuid(transaction_id),
                        BankTransaction.tenant_id == tenant_id,
                    )
                    .values(category=str(category), updated_at=to_utc(self._now()))
                    .execution_options(synchronize_session=False)
                )
                session.commit()
            except Exception:
                session.rollback()
                raise
        if result.rowcount != 1:
            raise NotFoundError(
                f"Bank transaction not found: {transaction_id}",
                metadata={"transaction_id": str(transaction_id)},
            )
        logger.info(
            "Transaction categorized: transaction_id=%s category=%s", transaction_id, category
        )

    def _post_ledger(
        self, tenant_id: str, parameters: Mapping[str, Any], context: Mapping[str, Any]
    ) -> None:
        if self._ledger_poster is None:
            raise DependencyFailure(
                "No ledger poster configured.", code=codes.DEPENDENCY_UNAVAILABLE
            )
        document_id = context.get("documentId")
        account_code = parameters.get("accountCode")
        amount = parameters.get("amount") or context.get("amount") or 0
        if not document_id or not account_code or float(amount) <= 0:
            raise ValidationError(
                "post_ledger requires documentId, accountCode, and a positive amount.",
                code=codes.MISSING_REQUIRED_FIELD,
            )
        raw_date = parameters.get("transactionDate")
        transaction_date = (
            date.fromisoformat(str(raw_date)[:10]) if raw_date else to_utc(self._now()).date()
        )
        self._ledger_poster.post_entry(
            tenant_id,
            document_id=str(document_id),
            entry_type=str(parameters.get("entryType") or "debit"),
            account_code=str(account_code),
            account_name=str(parameters.get("accountName") or f"Account {account_code}"),
            amount=float(amount),
            description=str(parameters.get("description") or "Automated posting"),
            transaction_date=transaction_date,
        )
        logger.info("Posted to ledger: document_id=%s account=%s", document_id, account_code)

    def _send_notification(
        self, tenant_id: str, parameters: Mapping[str, Any], context: Mapping[str, Any]
    ) -> None:
        address = parameters.get("email")
        if not address:
            with closing(self._session_factory()) as session:
                contact = get_primary_contact(session, tenant_id)
            if contact is None or not contact.email:
                raise ValidationError(
                    "No notification recipient for tenant.",
                    code=codes.MISSING_REQUIRED_FIELD,
                    metadata={"tenant_id": tenant_id},
                )
            address = contact.email
        subject = str(parameters.get("subject") or "Automation Notification")
        message = str(parameters.get("message") or "An automation rule was triggered")
        self._email_sender.send_email(str(address), subject, f"<p>{message}</p>")
        logger.info("Rule notification sent: tenant=%s", tenant_id)

    def _create_task(
        self, tenant_id: str, parameters: Mapping[str, Any], context: Mapping[str, Any]
    ) -> None:
        entity_id = parameters.get("entityId") or context.get("documentId") or context.get(
            "transactionId"
        )
        if not entity_id:
            raise ValidationError(
                "create_task requires an entity id in parameters or context.",
                code=codes.MISSING_REQUIRED_FIELD,
            )
        entity_type = str(parameters.get("entityType") or "document")
        priority = str(parameters.get("priority") or "medium")
        self._review_tasks.create_review_task(tenant_id, entity_type, str(entity_id), priority)
        logger.info("Review task created by rule: entity=%s/%s", entity_type, entity_id)


def _as_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise ValidationError(
            f"Invalid transaction id: {value}", code=codes.INVALID_ARGUMENT
        ) from exc


__all__ = [
    "LedgerPoster",
    "RuleEngine",
    "RuleExecutionResult",
    "js_weekday",
    "trigger_matches",
]

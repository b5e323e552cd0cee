"""Repository and validation for tenant automation rules."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from autopilot_shared.errors import NotFoundError, ValidationError, codes
from models import RULE_ACTION_TYPES, RULE_TRIGGER_TYPES, AutomationRule
from policies.conditions import parse_conditions
from time_utils import to_utc, utc_now

UNSET = object()
SCHEDULES = ("daily", "weekly", "monthly")


@dataclass(frozen=True)
class RuleCreateInput:
    """Input payload for creating an automation rule."""

    tenant_id: str
    name: str
    trigger_type: str
    trigger_conditions: Mapping[str, Any] = field(default_factory=dict)
    actions: Sequence[Mapping[str, Any]] = ()
    description: str | None = None
    is_active: bool = True
    priority: int = 0


@dataclass(frozen=True)
class RuleUpdateInput:
    """Input payload for updating rule fields."""

    name: str | object = UNSET
    description: str | None | object = UNSET
    trigger_type: str | object = UNSET
    trigger_conditions: Mapping[str, Any] | object = UNSET
    actions: Sequence[Mapping[str, Any]] | object = UNSET
    is_active: bool | object = UNSET
    priority: int | object = UNSET


class RuleRepository:
    """Repository for automation rule rows."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create(self, payload: RuleCreateInput, *, now: datetime | None = None) -> AutomationRule:
        """Validate and insert a rule."""
        if not payload.name or not payload.name.strip():
            raise ValidationError("Rule name is required.", code=codes.MISSING_REQUIRED_FIELD)
        validate_trigger(payload.trigger_type, payload.trigger_conditions)
        actions = normalize_actions(payload.actions)
        _validate_priority(payload.priority)

        def handler(session: Session) -> AutomationRule:
            timestamp = to_utc(now or utc_now())
            rule = AutomationRule(
                tenant_id=payload.tenant_id,
                name=payload.name.strip(),
                description=payload.description,
                trigger_type=payload.trigger_type,
                trigger_conditions=dict(payload.trigger_conditions),
                actions=actions,
                is_active=payload.is_active,
                priority=payload.priority,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(rule)
            session.flush()
            return rule

        return self._execute(handler)

    def get(self, tenant_id: str, rule_id: UUID) -> AutomationRule | None:
        def handler(session: Session) -> AutomationRule | None:
            rule = session.get(AutomationRule, rule_id)
            if rule is None or rule.tenant_id != tenant_id:
                return None
            return rule

        return self._execute(handler)

    def list_for_tenant(
        self, tenant_id: str, *, active_only: bool = False
    ) -> list[AutomationRule]:
        """List rules by descending priority, oldest first within a priority."""

        def handler(session: Session) -> list[AutomationRule]:
            query = session.query(AutomationRule).filter(AutomationRule.tenant_id == tenant_id)
            if active_only:
                query = query.filter(AutomationRule.is_active.is_(True))
            return list(
                query.order_by(
                    AutomationRule.priority.desc(),
                    AutomationRule.created_at.asc(),
                    AutomationRule.id.asc(),
                ).all()
            )

        return self._execute(handler)

    def update(
        self,
        tenant_id: str,
        rule_id: UUID,
        updates: RuleUpdateInput,
        *,
        now: datetime | None = None,
    ) -> AutomationRule:
        def handler(session: Session) -> AutomationRule:
            rule = _fetch_rule(session, tenant_id, rule_id)
            if updates.name is not UNSET:
                if not updates.name or not str(updates.name).strip():
                    raise ValidationError(
                        "Rule name is required.", code=codes.MISSING_REQUIRED_FIELD
                    )
                rule.name = str(updates.name).strip()
            if updates.description is not UNSET:
                rule.description = updates.description
            trigger_type = (
                rule.trigger_type if updates.trigger_type is UNSET else updates.trigger_type
            )
            trigger_conditions = (
                rule.trigger_conditions
                if updates.trigger_conditions is UNSET
                else updates.trigger_conditions
            )
            if updates.trigger_type is not UNSET or updates.trigger_conditions is not UNSET:
                validate_trigger(trigger_type, trigger_conditions or {})
                rule.trigger_type = trigger_type
                rule.trigger_conditions = dict(trigger_conditions or {})
            if updates.actions is not UNSET:
                rule.actions = normalize_actions(updates.actions)
            if updates.is_active is not UNSET:
                rule.is_active = bool(updates.is_active)
            if updates.priority is not UNSET:
                _validate_priority(updates.priority)
                rule.priority = updates.priority
            rule.updated_at = to_utc(now or utc_now())
            session.flush()
            return rule

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


def validate_trigger(trigger_type: str, conditions: Mapping[str, Any]) -> None:
    """Validate a trigger type and its stored conditions."""
    if trigger_type not in RULE_TRIGGER_TYPES:
        raise ValidationError(
            f"Unknown rule trigger type: {trigger_type}",
            metadata={"trigger_type": str(trigger_type)},
        )
    if not isinstance(conditions, Mapping):
        raise ValidationError("Trigger conditions must be a mapping.", code=codes.INVALID_CONDITION)
    if trigger_type != "schedule":
        parse_conditions(conditions)
        return
    schedule = conditions.get("schedule")
    if schedule not in SCHEDULES:
        raise ValidationError(
            f"Schedule trigger requires one of {', '.join(SCHEDULES)}.",
            code=codes.INVALID_CONDITION,
            metadata={"schedule": str(schedule)},
        )
    _validate_day(conditions, "dayOfWeek", 0, 6)
    _validate_day(conditions, "dayOfMonth", 1, 31)


def normalize_actions(actions: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Return actions as plain ``{type, parameters}`` dicts after validation."""
    if isinstance(actions, (str, bytes)) or not isinstance(actions, Sequence):
        raise ValidationError("Rule actions must be a list.")
    normalized = []
    for index, action in enumerate(actions):
        if not isinstance(action, Mapping):
            raise ValidationError(f"Rule action {index} must be a mapping.")
        action_type = action.get("type")
        if action_type not in RULE_ACTION_TYPES:
            raise ValidationError(
                f"Unknown rule action type: {action_type}",
                metadata={"index": index, "type": str(action_type)},
            )
        parameters = action.get("parameters") or {}
        if not isinstance(parameters, Mapping):
            raise ValidationError(f"Rule action {index} parameters must be a mapping.")
        normalized.append({"type": action_type, "parameters": dict(parameters)})
    return normalized


def _validate_day(conditions: Mapping[str, Any], key: str, low: int, high: int) -> None:
    if key not in conditions:
        return
    value = conditions[key]
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ValidationError(
            f"{key} must be an integer in [{low}, {high}].",
            code=codes.INVALID_CONDITION,
            metadata={key: str(value)},
        )


def _validate_priority(priority: Any) -> None:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError("Rule priority must be an integer.")


def _fetch_rule(session: Session, tenant_id: str, rule_id: UUID) -> AutomationRule:
    rule = session.get(AutomationRule, rule_id)
    if rule is None or rule.tenant_id != tenant_id:
        raise NotFoundError(
            f"Automation rule not found: {rule_id}",
            code=codes.RULE_NOT_FOUND,
            metadata={"rule_id": str(rule_id)},
        )
    return rule


__all__ = [
    "RuleCreateInput",
    "RuleRepository",
    "RuleUpdateInput",
    "SCHEDULES",
    "UNSET",
    "normalize_actions",
    "validate_trigger",
]

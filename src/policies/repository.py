"""Repository helpers for autopilot policy persistence."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from autopilot_shared.errors import NotFoundError, ValidationError, codes
from models import POLICY_ACTIONS, POLICY_SCOPES, AutopilotPolicy
from policies.conditions import parse_conditions
from time_utils import to_utc, utc_now


@dataclass(frozen=True)
class PolicyCreateInput:
    """Input payload for creating a policy."""

    policy_name: str
    policy_type: str
    scope: str
    action: str
    tenant_id: str | None = None
    scope_id: str | None = None
    conditions: Mapping[str, Any] | None = None
    risk_threshold: float | None = None
    priority: int = 0
    created_by: str | None = None


class PolicyRepository:
    """Repository for policy CRUD and candidate lookup."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize repository with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def create(self, payload: PolicyCreateInput, *, now: datetime | None = None) -> AutopilotPolicy:
        """Validate and persist a policy."""
        validate_policy(payload)

        def handler(session: Session) -> AutopilotPolicy:
            timestamp = to_utc(now or utc_now())
            policy = AutopilotPolicy(
                tenant_id=payload.tenant_id,
                policy_name=payload.policy_name,
                policy_type=payload.policy_type,
                scope=payload.scope,
                scope_id=payload.scope_id,
                conditions=dict(payload.conditions or {}),
                action=payload.action,
                risk_threshold=payload.risk_threshold,
                priority=payload.priority,
                is_active=True,
                created_by=payload.created_by,
                created_at=timestamp,
                updated_at=timestamp,
            )
            session.add(policy)
            session.flush()
            return policy

        return self._execute(handler)

    def get_by_id(self, policy_id: UUID) -> AutopilotPolicy | None:
        def handler(session: Session) -> AutopilotPolicy | None:
            return session.get(AutopilotPolicy, policy_id)

        return self._execute(handler)

    def set_active(
        self, policy_id: UUID, is_active: bool, *, now: datetime | None = None
    ) -> AutopilotPolicy:
        """Activate or deactivate a policy."""

        def handler(session: Session) -> AutopilotPolicy:
            policy = session.get(AutopilotPolicy, policy_id)
            if policy is None:
                raise NotFoundError(
                    f"Policy not found: {policy_id}", code=codes.POLICY_NOT_FOUND
                )
            policy.is_active = is_active
            policy.updated_at = to_utc(now or utc_now())
            session.flush()
            return policy

        return self._execute(handler)

    def list_candidates(
        self,
        tenant_id: str,
        actor_id: str | None,
        role: str | None,
        action_type: str,
    ) -> list[AutopilotPolicy]:
        """Return active policies whose scope applies to the caller."""

        def handler(session: Session) -> list[AutopilotPolicy]:
            scope_clauses = [
                and_(AutopilotPolicy.scope == "tenant", AutopilotPolicy.scope_id == tenant_id),
                and_(
                    AutopilotPolicy.scope == "playbook",
                    AutopilotPolicy.policy_type == action_type,
                ),
            ]
            if role is not None:
                scope_clauses.append(
                    and_(AutopilotPolicy.scope == "role", AutopilotPolicy.scope_id == role)
                )
            if actor_id is not None:
                scope_clauses.append(
                    and_(AutopilotPolicy.scope == "user", AutopilotPolicy.scope_id == actor_id)
                )
            return list(
                session.query(AutopilotPolicy)
                .filter(
                    AutopilotPolicy.is_active.is_(True),
                    or_(
                        AutopilotPolicy.tenant_id.is_(None),
                        AutopilotPolicy.tenant_id == tenant_id,
                    ),
                    or_(*scope_clauses),
                )
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


def validate_policy(payload: PolicyCreateInput) -> None:
    """Raise ValidationError for malformed policy input."""
    if not payload.policy_name.strip():
        raise ValidationError("Policy name is required.", code=codes.MISSING_REQUIRED_FIELD)
    if not payload.policy_type.strip():
        raise ValidationError("Policy type is required.", code=codes.MISSING_REQUIRED_FIELD)
    if payload.scope not in POLICY_SCOPES:
        raise ValidationError(
            f"Unknown policy scope: {payload.scope}", metadata={"scope": payload.scope}
        )
    if payload.action not in POLICY_ACTIONS:
        raise ValidationError(
            f"Unknown policy action: {payload.action}", metadata={"action": payload.action}
        )
    if payload.scope in {"tenant", "role", "user"} and not payload.scope_id:
        raise ValidationError(
            f"Policy scope '{payload.scope}' requires a scope_id.",
            code=codes.MISSING_REQUIRED_FIELD,
        )
    if isinstance(payload.priority, bool) or not isinstance(payload.priority, int):
        raise ValidationError("Policy priority must be an integer.")
    if payload.risk_threshold is not None and not 0.0 <= payload.risk_threshold <= 1.0:
        raise ValidationError("Policy risk_threshold must be between 0 and 1.")
    parse_conditions(payload.conditions)


__all__ = ["PolicyCreateInput", "PolicyRepository", "validate_policy"]

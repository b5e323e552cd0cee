"""Policy evaluation for autopilot actions."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Mapping, Sequence
from uuid import UUID

from autopilot_shared.errors import AutopilotError
from config import settings
from models import AutopilotPolicy
from policies.conditions import conditions_hold, is_number, parse_conditions
from policies.repository import PolicyCreateInput, PolicyRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of evaluating policies for one action."""

    action: str
    matched_policies: tuple[UUID, ...]
    risk_score: float
    reasoning: str


class PolicyEngine:
    """Select the highest-priority matching policy for an action."""

    def __init__(self, repository: PolicyRepository) -> None:
        self._repository = repository

    def evaluate(
        self,
        tenant_id: str,
        actor_id: str | None,
        role: str | None,
        action_type: str,
        context: Mapping[str, Any] | None = None,
    ) -> PolicyDecision:
        """Return the approval decision for an action in context."""
        context = context or {}
        candidates = self._repository.list_candidates(tenant_id, actor_id, role, action_type)
        if not candidates:
            return _default_decision("No policies found, defaulting to require review")
        decision = select_policy(candidates, context)
        if decision is None:
            return _default_decision("No policies matched conditions")
        logger.debug(
            "Policy matched: tenant=%s action_type=%s decision=%s",
            tenant_id,
            action_type,
            decision.action,
        )
        return decision

    def create_policy(self, payload: PolicyCreateInput) -> AutopilotPolicy:
        """Validate and persist a policy."""
        return self._repository.create(payload)


def select_policy(
    policies: Sequence[AutopilotPolicy],
    context: Mapping[str, Any],
) -> PolicyDecision | None:
    """Return the decision of the first matching policy in priority order."""
    for policy in sort_policies(policies):
        try:
            conditions = parse_conditions(policy.conditions)
        except AutopilotError:
            logger.warning("Skipping policy with invalid conditions: policy_id=%s", policy.id)
            continue
        if conditions_hold(conditions, context):
            return PolicyDecision(
                action=policy.action,
                matched_policies=(policy.id,),
                risk_score=calculate_risk_score(context, policy.risk_threshold),
                reasoning=f"Matched policy: {policy.policy_name}",
            )
    return None


def sort_policies(policies: Sequence[AutopilotPolicy]) -> list[AutopilotPolicy]:
    """Order by priority descending; ties by creation time, then id."""
    return sorted(
        policies,
        key=lambda policy: (-policy.priority, policy.created_at, str(policy.id)),
    )


def calculate_risk_score(context: Mapping[str, Any], threshold: float | None) -> float:
    """Heuristic risk score in [0, 1], capped by the policy threshold."""
    risk = settings.policy.default_risk_score
    amount = context.get("amount")
    if is_number(amount):
        if amount > 10_000:
            risk += 0.2
        if amount > 100_000:
            risk += 0.3
    confidence = context.get("confidenceScore")
    if is_number(confidence):
        risk -= (1 - confidence) * 0.3
    if threshold is not None and risk > threshold:
        risk = threshold
    return max(0.0, min(1.0, round(risk, 6)))


def _default_decision(reasoning: str) -> PolicyDecision:
    return PolicyDecision(
        action=settings.policy.default_action,
        matched_policies=(),
        risk_score=settings.policy.default_risk_score,
        reasoning=reasoning,
    )


__all__ = [
    "PolicyDecision",
    "PolicyEngine",
    "calculate_risk_score",
    "select_policy",
    "sort_policies",
]

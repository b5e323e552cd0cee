"""Pure worker-selection strategies over a stable candidate list.

Every strategy keeps the roster order for ties, so callers must pass
candidates sorted by enrollment time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from assignment.roster import StaffCandidate
from config import settings


@dataclass(frozen=True)
class AssignmentSuggestion:
    """Recommended assignee with explanation."""

    user_id: str
    name: str | None
    role: str
    confidence: float
    reasons: tuple[str, ...]


def pick_least_loaded(candidates: Sequence[StaffCandidate]) -> StaffCandidate | None:
    """Return the worker with the fewest active tasks below their cap."""
    available = [c for c in candidates if c.active_tasks < c.max_concurrent_tasks]
    if not available:
        return None
    return min(available, key=lambda c: c.active_tasks)


def pick_round_robin(candidates: Sequence[StaffCandidate]) -> StaffCandidate | None:
    """Return the worker assigned least recently; never-assigned workers first."""
    if not candidates:
        return None
    never = [c for c in candidates if c.last_assigned_at is None]
    if never:
        return never[0]
    return min(candidates, key=lambda c: c.last_assigned_at)


def pick_skill_based(
    candidates: Sequence[StaffCandidate], task_type: str
) -> StaffCandidate | None:
    """Prefer workers tagged with the task type, then the most experienced."""
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda c: (0 if task_type in c.skill_tags else 1, -c.tasks_completed),
    )


def suggest(
    candidates: Sequence[StaffCandidate], task_type: str
) -> AssignmentSuggestion | None:
    """Rank by skill match, SLA adherence, then workload and explain the pick."""
    if not candidates:
        return None
    best = min(
        candidates,
        key=lambda c: (
            0 if task_type in c.skill_tags else 1,
            c.sla_adherence_rate is None,
            -(c.sla_adherence_rate or 0.0),
            c.active_tasks,
        ),
    )
    config = settings.assignment
    reasons: list[str] = []
    if task_type in best.skill_tags:
        reasons.append("Has relevant skills")
    adherence = best.sla_adherence_rate
    if adherence is not None and adherence > config.suggestion_adherence_threshold:
        reasons.append("High SLA adherence")
    if best.active_tasks < config.suggestion_workload_threshold:
        reasons.append("Low current workload")
    confidence = (
        config.suggestion_confidence_with_reasons
        if reasons
        else config.suggestion_confidence_without_reasons
    )
    return AssignmentSuggestion(
        user_id=best.user_id,
        name=best.name,
        role=best.role,
        confidence=confidence,
        reasons=tuple(reasons),
    )


__all__ = [
    "AssignmentSuggestion",
    "pick_least_loaded",
    "pick_round_robin",
    "pick_skill_based",
    "suggest",
]

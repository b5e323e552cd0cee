"""Task status state machine."""

from __future__ import annotations

from autopilot_shared.errors import ValidationError, codes

_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "failed", "cancelled"}),
    # Reachable only through an explicit rollback.
    "completed": frozenset({"cancelled"}),
    "failed": frozenset(),
    "cancelled": frozenset(),
}


def can_transition(from_status: str, to_status: str) -> bool:
    """Return True if ``from_status -> to_status`` is a legal task transition."""
    return to_status in _ALLOWED_TRANSITIONS.get(from_status, frozenset())


def ensure_transition(from_status: str, to_status: str) -> None:
    """Raise ValidationError when a task transition is not allowed."""
    if not can_transition(from_status, to_status):
        raise ValidationError(
            f"Invalid task status transition: {from_status} -> {to_status}",
            code=codes.INVALID_TRANSITION,
            metadata={"from_status": from_status, "to_status": to_status},
        )


__all__ = ["can_transition", "ensure_transition"]

"""Canonical error types for the autopilot core.

The taxonomy is transport-agnostic: callers above the core (an HTTP layer, a
CLI, a Celery task) translate ``ErrorDetail`` into their own response shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class ErrorCategory(str, Enum):
    """High-level error categories surfaced by core operations."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    POLICY = "policy"
    EXECUTION = "execution"
    DEPENDENCY = "dependency"
    CONFLICT = "conflict"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ErrorDetail:
    """Structured error object with a stable code/message pair."""

    code: str
    message: str
    category: ErrorCategory
    retryable: bool = False
    metadata: Mapping[str, str] = field(default_factory=dict)


class AutopilotError(Exception):
    """Base exception carrying a structured ``ErrorDetail``."""

    category = ErrorCategory.INTERNAL
    default_code = "INTERNAL_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.detail = ErrorDetail(
            code=code or self.default_code,
            message=message,
            category=self.category,
            retryable=self.retryable,
            metadata=dict(metadata or {}),
        )

    @property
    def code(self) -> str:
        return self.detail.code


class ValidationError(AutopilotError):
    """Missing or invalid caller input. Never retried."""

    category = ErrorCategory.VALIDATION
    default_code = "VALIDATION_ERROR"


class NotFoundError(AutopilotError):
    """Referenced record is absent or belongs to another tenant."""

    category = ErrorCategory.NOT_FOUND
    default_code = "NOT_FOUND"


class PolicyDeniedError(AutopilotError):
    """Action blocked by policy or requiring review the caller cannot grant."""

    category = ErrorCategory.POLICY
    default_code = "POLICY_VIOLATION"


class ExecutionFailure(AutopilotError):
    """A task handler raised or reported failure."""

    category = ErrorCategory.EXECUTION
    default_code = "EXECUTION_FAILED"


class DependencyFailure(AutopilotError):
    """The data store or a downstream collaborator failed."""

    category = ErrorCategory.DEPENDENCY
    default_code = "DEPENDENCY_FAILURE"
    retryable = True

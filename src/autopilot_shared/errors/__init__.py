"""Public error API for the autopilot core."""

from . import codes
from .normalize import exception_to_error
from .types import (
    AutopilotError,
    DependencyFailure,
    ErrorCategory,
    ErrorDetail,
    ExecutionFailure,
    NotFoundError,
    PolicyDeniedError,
    ValidationError,
)

__all__ = [
    "AutopilotError",
    "DependencyFailure",
    "ErrorCategory",
    "ErrorDetail",
    "ExecutionFailure",
    "NotFoundError",
    "PolicyDeniedError",
    "ValidationError",
    "codes",
    "exception_to_error",
]

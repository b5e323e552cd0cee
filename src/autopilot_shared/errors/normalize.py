"""Exception normalization into stable error details."""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from . import codes
from .types import AutopilotError, ErrorCategory, ErrorDetail

_DEPENDENCY_MESSAGE = "A dependency failed while processing the request."
_INTERNAL_MESSAGE = "An unexpected error occurred."


def exception_to_error(exc: Exception) -> ErrorDetail:
    """Normalize an exception into an ``ErrorDetail``.

    Store and unexpected failures get generic messages so that driver or SQL
    text is never surfaced to API callers; the exception itself is left to logging.
    """
    if isinstance(exc, AutopilotError):
        return exc.detail

    metadata = {"exception_type": type(exc).__name__}

    if isinstance(exc, SQLAlchemyError):
        return ErrorDetail(
            code=codes.DEPENDENCY_FAILURE,
            message=_DEPENDENCY_MESSAGE,
            category=ErrorCategory.DEPENDENCY,
            retryable=True,
            metadata=metadata,
        )

    if isinstance(exc, TimeoutError):
        return ErrorDetail(
            code=codes.DEPENDENCY_TIMEOUT,
            message=_DEPENDENCY_MESSAGE,
            category=ErrorCategory.DEPENDENCY,
            retryable=True,
            metadata=metadata,
        )

    if isinstance(exc, ConnectionError):
        return ErrorDetail(
            code=codes.DEPENDENCY_UNAVAILABLE,
            message=_DEPENDENCY_MESSAGE,
            category=ErrorCategory.DEPENDENCY,
            retryable=True,
            metadata=metadata,
        )

    if isinstance(exc, ValueError):
        return ErrorDetail(
            code=codes.INVALID_ARGUMENT,
            message=str(exc),
            category=ErrorCategory.VALIDATION,
            metadata=metadata,
        )

    return ErrorDetail(
        code=codes.UNEXPECTED_EXCEPTION,
        message=_INTERNAL_MESSAGE,
        category=ErrorCategory.INTERNAL,
        metadata=metadata,
    )

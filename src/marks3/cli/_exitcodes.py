"""Exit codes for the marks3 CLI."""

from __future__ import annotations

from marks3.errors import (
    EditConflictError,
    IndexContentionError,
    MarkS3Error,
    NotFoundError,
    PageAlreadyExistsError,
    ValidationError,
)

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
EXECUTION_FAILURE = 3
STORAGE_ERROR = 4
NOT_FOUND = 5
CONFLICT = 6
VALIDATION_ERROR = 7


def for_error(error: MarkS3Error) -> int:
    """Map a library error to the exit code a command should return."""
    if isinstance(error, NotFoundError):
        return NOT_FOUND
    if isinstance(error, (EditConflictError, PageAlreadyExistsError, IndexContentionError)):
        return CONFLICT
    if isinstance(error, ValidationError):
        return VALIDATION_ERROR
    return STORAGE_ERROR

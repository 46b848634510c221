"""Structured error types for MarkS3."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from marks3.models import WikiPage


class MarkS3Error(Exception):
    """Base error for all MarkS3 errors."""


# --- Object store classification ---


class NotFoundError(MarkS3Error):
    """Base for anything that is absent from the store or an index."""


class ObjectNotFoundError(NotFoundError):
    """Raised when an object key does not exist in the store."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Object not found: {key}")


class PermissionDeniedError(MarkS3Error):
    """Raised when the store rejects the caller's credentials (403)."""

    def __init__(self, operation: str, key: str | None = None) -> None:
        self.operation = operation
        self.key = key
        target = f" on '{key}'" if key else ""
        super().__init__(f"Permission denied during {operation}{target}")


class PreconditionFailedError(MarkS3Error):
    """Raised when a conditional write loses its compare-and-swap (412/409)."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Precondition failed for {key}")


class TransientStoreError(MarkS3Error):
    """Raised for retryable store failures: 5xx, throttling, timeouts, resets."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Transient store error during {operation}: {detail}")


class FatalStoreError(MarkS3Error):
    """Raised for malformed requests and any 4xx that retrying cannot fix."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store error during {operation}: {detail}")


class StorageBackendError(MarkS3Error):
    """Raised when a storage backend cannot be opened or lacks a required feature."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")


# --- Repository level ---


class PageNotFoundError(NotFoundError):
    """Raised when a wiki page does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Page not found: {path}")


class FileInfoNotFoundError(NotFoundError):
    """Raised when a file id is not present in the file index."""

    def __init__(self, file_id: str) -> None:
        self.file_id = file_id
        super().__init__(f"File not found: {file_id}")


class PageAlreadyExistsError(MarkS3Error):
    """Raised when creating a page at a path that is already taken."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Page already exists: {path}")


class EditConflictError(MarkS3Error):
    """Raised when a page was modified since the caller last read it.

    Carries both sides so the caller can offer merge or overwrite.
    """

    def __init__(self, path: str, current: WikiPage | None, attempted_content: str) -> None:
        self.path = path
        self.current = current
        self.attempted_content = attempted_content
        super().__init__(f"Page '{path}' has been modified by another user")


class IndexContentionError(MarkS3Error):
    """Raised when the index compare-and-swap retry budget is exhausted."""

    def __init__(self, key: str, attempts: int) -> None:
        self.key = key
        self.attempts = attempts
        super().__init__(
            f"Index document '{key}' still contended after {attempts} attempts; please retry"
        )


class ValidationError(MarkS3Error):
    """Raised when caller input fails validation."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class InvalidPagePathError(ValidationError):
    """Raised for empty, malformed or escaping page paths."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid page path '{path}': {reason}")


class FileTooLargeError(ValidationError):
    """Raised when an upload exceeds the configured maximum size."""

    def __init__(self, size: int, max_size: int) -> None:
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"File size ({_mb(size)}MB) exceeds maximum allowed size of {_mb(max_size)}MB"
        )


class InvalidFileTypeError(ValidationError):
    """Raised for nameless uploads and denied extensions."""

    def __init__(self, filename: str, reason: str) -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(reason)


def _mb(size: Any) -> str:
    return f"{int(size) / (1024 * 1024):.1f}"

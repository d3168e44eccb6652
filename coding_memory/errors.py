"""
Exception taxonomy for the memory store.

Every error carries a stable ``code`` that front-ends map onto their own
status vocabulary (see :mod:`coding_memory.api`).
"""

from __future__ import annotations

from typing import Any, Optional


class CodingMemoryError(Exception):
    """Base class for all memory-store errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(CodingMemoryError):
    """Malformed input: filters, patches, import payloads."""

    code = "VALIDATION_ERROR"


class NotFoundError(CodingMemoryError):
    """An id or ledger event does not exist (or is outside the project)."""

    code = "NOT_FOUND"


class ConflictError(CodingMemoryError):
    """The resource exists but the operation is not allowed on it."""

    code = "CONFLICT"


class ConfigLockedError(CodingMemoryError):
    """A configuration key is pinned by an environment variable."""

    code = "LOCKED_BY_ENV"


class StorageError(CodingMemoryError):
    """The backing database failed; invariants can no longer be guaranteed."""

    code = "INTERNAL_ERROR"

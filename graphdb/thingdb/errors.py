"""
Error types for ThingDB.

This module defines the caller-recoverable error kinds raised by the
graph store and the view manager:
- ThingDbError: Base exception
- NotFoundError: View, context entity or target Thing is absent
- AlreadyExistsError: Create on a key that has a live row
- InvalidReferenceError: URL cannot be decomposed into ns/type/id
- VersionConflictError: Compare-and-swap write saw a different version

Storage-layer failures (network, query errors) are NOT part of this
hierarchy; see storage.base.StorageError.

Invariants:
    - All errors inherit from ThingDbError
    - Errors include context for debugging
    - Error messages are actionable
"""

from __future__ import annotations

from typing import Any


class ThingDbError(Exception):
    """Base exception for all ThingDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "THINGDB_ERROR"
        self.details = details or {}


class NotFoundError(ThingDbError):
    """Resource not found.

    Raised when:
    - View document doesn't exist
    - Context entity doesn't exist (or is tombstoned)
    - Update target doesn't exist
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class AlreadyExistsError(ThingDbError):
    """A live (non-tombstoned) Thing already exists for the key."""

    def __init__(self, url: str) -> None:
        super().__init__(
            f"Thing already exists: {url}",
            code="ALREADY_EXISTS",
            details={"url": url},
        )
        self.url = url


class InvalidReferenceError(ThingDbError):
    """URL cannot be decomposed into (ns, type, id)."""

    def __init__(self, url: str, reason: str | None = None) -> None:
        msg = f"Invalid thing URL: {url}"
        if reason:
            msg += f" ({reason})"
        super().__init__(
            msg,
            code="INVALID_REFERENCE",
            details={"url": url, "reason": reason},
        )
        self.url = url


class VersionConflictError(ThingDbError):
    """Caller's assumed version does not match the current version.

    Only raised when a caller passes expected_version to update/delete.
    """

    def __init__(self, url: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Version conflict on {url}: expected {expected}, current is {actual}",
            code="VERSION_CONFLICT",
            details={"url": url, "expected": expected, "actual": actual},
        )
        self.url = url
        self.expected = expected
        self.actual = actual

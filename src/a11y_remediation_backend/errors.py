"""
Error taxonomy and result values shared by the storage and audit layers.

Components never raise across their public boundary. Each operation returns
a ``Result`` holding either a value or one of the errors below, and the
request handlers decide how to present it. Every error carries the HTTP
status it maps to so the handler layer does not need a lookup table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ServiceError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """A required field is missing or malformed."""

    status_code = 400


class NotFoundError(ServiceError):
    """The referenced audit or object key does not exist."""

    status_code = 404


class StorageError(ServiceError):
    """The object store failed or was unreachable."""

    status_code = 500


class RepositoryError(ServiceError):
    """The relational store failed."""

    status_code = 500


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Either a value or a ``ServiceError``.

    Example:
        >>> result = repository.get_audit_with_findings(AuditRef(audit_id=1))
        >>> if not result.ok:
        ...     return error_response(result.error)
        >>> audit = result.value
    """

    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ServiceError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value, raising the carried error if there is one."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

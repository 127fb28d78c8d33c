"""Structured error types for polyadmin."""

from __future__ import annotations

from typing import ClassVar


class AdminError(Exception):
    """Base error for all polyadmin errors.

    ``sub_operation`` names the step that failed when the error escapes a
    multi-item operation (e.g. ``"collection:defaultSku.skuMedia"``).
    """

    kind: ClassVar[str] = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.sub_operation: str | None = None


class NotFoundError(AdminError):
    """Raised when no record, item, or type matches the request."""

    kind = "not_found"

    def __init__(self, what: str, identifier: str | None = None) -> None:
        self.what = what
        self.identifier = identifier
        if identifier is None:
            super().__init__(f"{what} not found")
        else:
            super().__init__(f"{what} '{identifier}' not found")


class SecurityError(AdminError):
    """Raised when the security collaborator denies an operation."""

    kind = "security"

    def __init__(self, operation: str, type_name: str, principal: str | None = None) -> None:
        self.operation = operation
        self.type_name = type_name
        self.principal = principal
        who = principal or "anonymous"
        super().__init__(f"'{who}' is not authorized to {operation} '{type_name}'")


class TypeResolutionError(AdminError):
    """Raised when an item's dynamic type cannot be matched to a declared subtype."""

    kind = "type_resolution"

    def __init__(self, requested: str | None, ceiling: str, allowed: tuple[str, ...]) -> None:
        self.requested = requested
        self.ceiling = ceiling
        self.allowed = allowed
        super().__init__(
            f"Cannot resolve type {requested!r} against '{ceiling}'; "
            f"allowed types: {list(allowed)}"
        )


class ConflictError(AdminError):
    """Raised when a concurrent modification is detected."""

    kind = "conflict"

    def __init__(
        self,
        message: str = "Concurrent modification detected; reload and retry",
        *,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(message)


class ServiceError(AdminError):
    """Raised for backend and persistence failures not otherwise classified."""

    kind = "service"


class ValidationError(ServiceError):
    """Raised when entity state fails domain constraints.

    ``field_errors`` maps property names to messages; the empty key holds
    messages that apply to the entity as a whole.
    """

    kind = "validation"

    def __init__(self, message: str, field_errors: dict[str, list[str]] | None = None) -> None:
        self.field_errors = field_errors or {}
        super().__init__(message)

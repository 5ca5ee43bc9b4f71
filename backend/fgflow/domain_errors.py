"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class NotFound(DomainError):
    """Entity missing at its expected ledger path."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND", details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=404, message=message, details=details)


class InvalidStateTransition(DomainError):
    """Action attempted from a status that does not allow it."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "INVALID_STATE_TRANSITION",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, http_status=409, message=message, details=details)


class MissingReason(DomainError):
    def __init__(self, message: str = "Rejection reason is required", *, details: dict[str, Any] | None = None):
        super().__init__(code="MISSING_REASON", http_status=400, message=message, details=details)


class InvalidPrice(DomainError):
    def __init__(self, message: str = "Price must be a positive number", *, details: dict[str, Any] | None = None):
        super().__init__(code="INVALID_PRICE", http_status=400, message=message, details=details)


class InvalidQuantity(DomainError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(code="INVALID_QUANTITY", http_status=400, message=message, details=details)


class NotReadyForDispatch(DomainError):
    """Dispatch attempted before the request reached its final approval state."""

    def __init__(
        self,
        message: str = "Request is not approved for dispatch",
        *,
        code: str = "REQUEST_NOT_APPROVED_FOR_DISPATCH",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, http_status=409, message=message, details=details)


class PartialDispatchFailure(DomainError):
    """
    A dispatch step failed after the dispatch record was persisted.

    ``details`` carries ``dispatchId``, ``releaseCode``, ``failedStep`` and
    ``completedSteps`` so the caller can resume the dispatch intent.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(code="PARTIAL_DISPATCH_FAILURE", http_status=500, message=message, details=details)


class DispatchNotRecorded(DomainError):
    """The dispatch record could not be written; no stock, tracking or notification was touched."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(code="DISPATCH_NOT_RECORDED", http_status=503, message=message, details=details)

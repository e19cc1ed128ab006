"""Typed domain exceptions for API error mapping.

These exceptions provide stronger API contract guarantees than
string-based error message matching. Each class carries the HTTP status
it maps to, and the application-level exception handler renders every
DomainError as ``{"error": message, "details": details}``.

Usage:
    # In service layer
    raise NotFoundError("Invoice", invoice_id)

    # In route handler (no try/except needed, the app handler maps it)
    invoice = await gateway.get_by_id(invoice_id)
"""

from typing import Any


class DomainError(Exception):
    """Base exception for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Render as the JSON error body returned to clients."""
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class NotAuthenticated(DomainError):
    """No QuickBooks credential is stored. Maps to HTTP 401."""

    status_code = 401

    def __init__(
        self,
        message: str = "Not authenticated with QuickBooks. Visit /auth/quickbooks to connect.",
    ) -> None:
        super().__init__(message)


class TokenRefreshFailed(DomainError):
    """The refresh-token grant was rejected. Maps to HTTP 401.

    Not retried; the user must restart the OAuth authorization flow.
    """

    status_code = 401

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message, details)


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    status_code = 404

    def __init__(
        self, resource_type: str, identifier: str, message: str | None = None
    ) -> None:
        super().__init__(message or f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    status_code = 400


class InvoiceHasPayments(DomainError):
    """Void/delete refused because payments are applied. Maps to HTTP 400."""

    status_code = 400

    def __init__(self, operation: str, total_amount: Any, balance: Any) -> None:
        verb = "void" if operation == "void" else "permanently delete"
        past = "voided" if operation == "void" else "deleted"
        super().__init__(
            f"Cannot {verb} invoice that has payments applied. "
            f"Only fully unpaid invoices can be {past}.",
            details={
                "totalAmount": total_amount,
                "balance": balance,
                "status": "partially_paid",
            },
        )
        self.operation = operation


class ConflictError(DomainError):
    """Resource conflict. Maps to HTTP 409."""

    status_code = 409


class ConcurrencyConflict(ConflictError):
    """Mutation used a stale SyncToken. Re-fetch and retry. Maps to HTTP 409."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message, details)


class UpstreamError(DomainError):
    """QuickBooks, the OAuth provider, or the LLM returned a failure.

    Attributes:
        upstream_status: HTTP status returned by the upstream, if any.
    """

    def __init__(
        self,
        message: str,
        upstream_status: int | None = None,
        details: Any = None,
        status_code: int = 500,
    ) -> None:
        super().__init__(message, details)
        self.upstream_status = upstream_status
        self.status_code = status_code

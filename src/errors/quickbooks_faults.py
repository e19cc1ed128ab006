"""QuickBooks Online Fault translation to InvoiceAgent domain errors.

QuickBooks reports failures as ``{"Fault": {"type": ..., "Error": [...]}}``.
This module extracts the first error entry and maps it to the matching
DomainError subclass so routes and tools see one error taxonomy.
"""

from dataclasses import dataclass
from typing import Any

from src.errors.domain import (
    ConcurrencyConflict,
    DomainError,
    NotFoundError,
    UpstreamError,
)

# QuickBooks error codes with dedicated handling
STALE_OBJECT_CODE = "5010"  # Stale Object Error: SyncToken out of date
OBJECT_NOT_FOUND_CODE = "610"  # Object Not Found
AUTH_FAULT_CODES = frozenset({"100", "3100", "3200"})


@dataclass(frozen=True)
class QuickBooksFault:
    """First error of a QuickBooks Fault payload.

    Attributes:
        type: Fault type (e.g. 'ValidationFault', 'AUTHENTICATION').
        code: QuickBooks error code as a string.
        message: Short error message.
        detail: Longer explanation, often naming the offending value.
        element: Name of the offending request element, if reported.
    """

    type: str | None
    code: str | None
    message: str | None
    detail: str | None
    element: str | None

    def to_details(self) -> dict[str, Any]:
        """Render in the shape returned to API clients."""
        return {
            "type": self.type,
            "code": self.code,
            "message": self.message or self.detail,
            "element": self.element,
        }


def extract_fault(payload: Any) -> QuickBooksFault | None:
    """Extract the first Fault error from a QuickBooks response body.

    Handles both ``Fault`` and the lowercase ``fault`` variant some
    endpoints return.

    Args:
        payload: Parsed JSON response body.

    Returns:
        QuickBooksFault, or None when the body carries no fault.
    """
    if not isinstance(payload, dict):
        return None
    fault = payload.get("Fault") or payload.get("fault")
    if not isinstance(fault, dict):
        return None

    errors = fault.get("Error") or fault.get("error") or []
    first: dict[str, Any] = errors[0] if errors and isinstance(errors[0], dict) else {}
    code = first.get("code")
    return QuickBooksFault(
        type=fault.get("type"),
        code=str(code) if code is not None else None,
        message=first.get("Message") or first.get("message"),
        detail=first.get("Detail") or first.get("detail"),
        element=first.get("element"),
    )


def translate_fault(
    http_status: int,
    payload: Any,
    action: str,
) -> DomainError:
    """Map a failed QuickBooks response to a domain error.

    Args:
        http_status: HTTP status of the failed response.
        payload: Parsed response body (dict, or raw text when not JSON).
        action: Short description used in the fallback message
            (e.g. 'fetch invoice').

    Returns:
        The DomainError to raise.
    """
    fault = extract_fault(payload)

    if fault is None:
        if http_status == 404:
            return NotFoundError("Resource", action, message="Resource not found")
        return UpstreamError(
            f"Failed to {action}",
            upstream_status=http_status,
            details=payload if payload else None,
        )

    if fault.code == STALE_OBJECT_CODE:
        return ConcurrencyConflict(
            "Invoice was modified since it was fetched. Re-fetch and try again.",
            details=fault.to_details(),
        )

    if fault.code == OBJECT_NOT_FOUND_CODE or http_status == 404:
        return NotFoundError(
            "Resource", action, message=fault.message or "Resource not found"
        )

    if fault.code in AUTH_FAULT_CODES or http_status == 401:
        return UpstreamError(
            "QuickBooks rejected the access token",
            upstream_status=http_status,
            details=fault.to_details(),
            status_code=401,
        )

    if http_status == 400 or (fault.type or "").lower() == "validationfault":
        return UpstreamError(
            "QuickBooks validation error",
            upstream_status=http_status,
            details=fault.to_details(),
            status_code=400,
        )

    return UpstreamError(
        f"Failed to {action}",
        upstream_status=http_status,
        details=fault.to_details(),
    )

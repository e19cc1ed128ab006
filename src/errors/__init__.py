"""Error handling framework for InvoiceAgent.

This package provides:
- Typed domain exceptions mapped to HTTP statuses
- QuickBooks Fault payload parsing and translation

Error classes:
- NotAuthenticated / TokenRefreshFailed: credential problems (401)
- ValidationError / InvoiceHasPayments: bad input or precondition (400)
- NotFoundError: missing invoice or customer (404)
- ConcurrencyConflict: stale SyncToken (409)
- UpstreamError: QuickBooks, OAuth or LLM provider failure (500)
"""

from src.errors.domain import (
    ConcurrencyConflict,
    ConflictError,
    DomainError,
    InvoiceHasPayments,
    NotAuthenticated,
    NotFoundError,
    TokenRefreshFailed,
    UpstreamError,
    ValidationError,
)
from src.errors.quickbooks_faults import (
    STALE_OBJECT_CODE,
    QuickBooksFault,
    extract_fault,
    translate_fault,
)

__all__ = [
    # Domain
    "DomainError",
    "NotAuthenticated",
    "TokenRefreshFailed",
    "NotFoundError",
    "ValidationError",
    "InvoiceHasPayments",
    "ConflictError",
    "ConcurrencyConflict",
    "UpstreamError",
    # QuickBooks faults
    "QuickBooksFault",
    "STALE_OBJECT_CODE",
    "extract_fault",
    "translate_fault",
]

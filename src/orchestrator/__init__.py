"""Chat orchestration for InvoiceAgent.

Main Entry Points:
    InvoiceAgent: Tool-calling chat agent over the QuickBooks gateway.
    resolve_display_directive: Decides what the invoice panel shows.
"""

from src.orchestrator.agent.client import ChatResult, InvoiceAgent
from src.orchestrator.display import (
    DisplayDirective,
    extract_invoice_numbers,
    resolve_display_directive,
)

__all__ = [
    "ChatResult",
    "DisplayDirective",
    "InvoiceAgent",
    "extract_invoice_numbers",
    "resolve_display_directive",
]

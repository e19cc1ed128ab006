"""Decide what the invoice panel shows after a chat turn.

Structured tool results take precedence over text heuristics:

1. A successful tool result carrying ``action == "openInvoiceSlider"``
   opens the filtered invoice list and suppresses everything else.
2. Otherwise a successful single-invoice lookup (``getInvoiceById`` /
   ``getInvoiceByNumber``) selects that invoice for the detail view,
   unless the reply mentions more than one invoice number.
3. Otherwise, when the reply mentions exactly one invoice number, that
   number is returned as a hint for the UI to look up.
4. Otherwise nothing is selected.
"""

import re
from dataclasses import dataclass, field
from typing import Any

SLIDER_ACTION = "openInvoiceSlider"
SINGLE_INVOICE_TOOLS = frozenset({"getInvoiceById", "getInvoiceByNumber"})

_INVOICE_NUMBER_PATTERNS = (
    re.compile(r"invoice\s+(?:number\s+)?#?(\d+)", re.IGNORECASE),
    re.compile(r"invoice\s*#(\d+)", re.IGNORECASE),
    re.compile(r"#(\d+)"),
    re.compile(r"\binvoice\s+(\d+)\b", re.IGNORECASE),
)


def extract_invoice_numbers(text: str | None) -> list[str]:
    """Return the unique invoice numbers mentioned in ``text``.

    Matches forms like "invoice 1001", "invoice number 1001", "Invoice
    #1001" and a bare "#1001". Numbers are returned in order of first
    appearance.
    """
    if not text:
        return []
    first_seen: dict[str, int] = {}
    for pattern in _INVOICE_NUMBER_PATTERNS:
        for match in pattern.finditer(text):
            number = match.group(1)
            position = match.start(1)
            if number not in first_seen or position < first_seen[number]:
                first_seen[number] = position
    return sorted(first_seen, key=first_seen.__getitem__)


@dataclass
class DisplayDirective:
    """What the invoice panel should show.

    Attributes:
        kind: 'slider', 'detail', 'hint' or 'none'.
        filter: Slider filter ('all', 'paid', 'unpaid', 'overdue', 'custom').
        invoices: Invoices for the slider, when the tool supplied them.
        search_query: Description of the slider search, if any.
        invoice: Invoice selected for the detail view.
        invoice_number: Number the UI should look up (hint only).
    """

    kind: str = "none"
    filter: str | None = None
    invoices: list[dict[str, Any]] | None = None
    search_query: str | None = None
    invoice: dict[str, Any] | None = None
    invoice_number: str | None = None
    mentioned_numbers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "filter": self.filter,
            "invoices": self.invoices,
            "searchQuery": self.search_query,
            "invoice": self.invoice,
            "invoiceNumber": self.invoice_number,
        }


def _result(call: dict[str, Any]) -> dict[str, Any]:
    result = call.get("result")
    return result if isinstance(result, dict) else {}


def resolve_display_directive(
    tool_calls: list[dict[str, Any]],
    reply_text: str | None,
) -> DisplayDirective:
    """Pick the panel directive for one chat turn.

    Args:
        tool_calls: ``{toolName, args, result}`` entries in call order.
        reply_text: Final assistant text.

    Returns:
        The DisplayDirective.
    """
    numbers = extract_invoice_numbers(reply_text)

    for call in tool_calls:
        result = _result(call)
        if result.get("success") is True and result.get("action") == SLIDER_ACTION:
            return DisplayDirective(
                kind="slider",
                filter=result.get("filter") or "all",
                invoices=result.get("invoices"),
                search_query=result.get("searchQuery"),
                mentioned_numbers=numbers,
            )

    for call in tool_calls:
        if call.get("toolName") not in SINGLE_INVOICE_TOOLS:
            continue
        result = _result(call)
        if result.get("success") and result.get("invoice") and len(numbers) <= 1:
            return DisplayDirective(
                kind="detail",
                invoice=result["invoice"],
                mentioned_numbers=numbers,
            )
        break

    if len(numbers) == 1:
        return DisplayDirective(
            kind="hint", invoice_number=numbers[0], mentioned_numbers=numbers
        )
    return DisplayDirective(mentioned_numbers=numbers)

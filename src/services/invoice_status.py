"""Derived invoice status and plain-text invoice summaries.

Status is computed from a QuickBooks invoice payload, never stored:
``paid`` when Balance <= 0, ``overdue`` when a balance remains and the due
date has passed, otherwise ``unpaid``.
"""

from datetime import UTC, date, datetime, time
from typing import Any

PAID = "paid"
UNPAID = "unpaid"
OVERDUE = "overdue"


def to_amount(value: Any) -> float:
    """Parse a QuickBooks money field; missing or malformed values are 0."""
    if value in (None, ""):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_due_date(value: Any) -> datetime | None:
    """Parse a DueDate value into an aware UTC datetime.

    A date-only value (``YYYY-MM-DD``) is taken as midnight UTC at the start
    of that day. Naive datetimes are treated as UTC.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def invoice_status(invoice: dict[str, Any], now: datetime | None = None) -> str:
    """Compute the derived status of an invoice.

    Args:
        invoice: QuickBooks Invoice object.
        now: Reference instant (defaults to the current UTC time).

    Returns:
        'paid', 'overdue' or 'unpaid'.
    """
    if to_amount(invoice.get("Balance")) <= 0:
        return PAID
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    due = parse_due_date(invoice.get("DueDate"))
    if due is not None and due < now:
        return OVERDUE
    return UNPAID


def format_money(value: Any) -> str:
    return f"{to_amount(value):.2f}"


def customer_name(invoice: dict[str, Any]) -> str:
    ref = invoice.get("CustomerRef") or {}
    return ref.get("name") or "Unknown"


def sales_lines(invoice: dict[str, Any]) -> list[dict[str, Any]]:
    """Return only the SalesItemLineDetail lines (subtotal lines excluded)."""
    return [
        line
        for line in invoice.get("Line") or []
        if line.get("DetailType") == "SalesItemLineDetail"
    ]


def summarize_invoice(invoice: dict[str, Any], now: datetime | None = None) -> str:
    """Render the short plain-text summary the chat agent repeats verbatim.

    Example:
        "Invoice #1037 for Acme is unpaid. Total amount: $500.00, Balance
        due: $500.00. Invoice date: 2025-07-01, Due date: 2025-07-31.
        Items include: Consulting, Hosting and 1 more items."
    """
    status = invoice_status(invoice, now)
    summary = (
        f"Invoice #{invoice.get('DocNumber')} for {customer_name(invoice)} is {status}. "
        f"Total amount: ${format_money(invoice.get('TotalAmt'))}, "
        f"Balance due: ${format_money(invoice.get('Balance'))}. "
        f"Invoice date: {invoice.get('TxnDate')}, "
        f"Due date: {invoice.get('DueDate') or 'Not specified'}."
    )
    lines = sales_lines(invoice)
    if lines:
        main_items = ", ".join(line.get("Description") or "Item" for line in lines[:2])
        more = f" and {len(lines) - 2} more items" if len(lines) > 2 else ""
        summary += f" Items include: {main_items}{more}."
    return summary


def compact_invoice(invoice: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Flatten an invoice into the list shape returned by chat tools."""
    return {
        "id": invoice.get("Id"),
        "number": invoice.get("DocNumber"),
        "customer": customer_name(invoice),
        "amount": to_amount(invoice.get("TotalAmt")),
        "balance": to_amount(invoice.get("Balance")),
        "status": invoice_status(invoice, now),
        "date": invoice.get("TxnDate"),
        "dueDate": invoice.get("DueDate"),
    }

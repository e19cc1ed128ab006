"""Email tool handlers: send chosen invoices, or search then send."""

import logging
from typing import Any

from pydantic import Field

from src.orchestrator.agent.tools.core import ToolArgs, ToolContext, _err, _ok
from src.orchestrator.agent.tools.invoices import (
    SLIDER_ACTION,
    SearchInvoicesArgs,
    _search_descriptions,
    search_invoices,
)
from src.services.email_service import EmailTarget, is_valid_email

logger = logging.getLogger(__name__)


class EmailInvoiceItem(ToolArgs):
    invoice_id: str | None = Field(None, description="QuickBooks invoice ID")
    invoice_number: str | None = Field(None, description="Invoice number (DocNumber)")
    customer_email: str | None = Field(
        None, description="Override recipient; defaults to the customer's email"
    )


class EmailInvoicesArgs(ToolArgs):
    invoices: list[EmailInvoiceItem] = Field(default_factory=list)
    subject: str | None = Field(None, description="Custom email subject")


class SearchAndEmailInvoicesArgs(SearchInvoicesArgs):
    search_query: str = Field(..., min_length=1, description="What the user asked to find")
    email_address: str = Field(..., description="Address that receives every matching invoice")
    subject: str | None = Field(None, description="Custom email subject")
    limit: int = Field(10, ge=1, le=100)


async def email_invoices_tool(args: EmailInvoicesArgs, ctx: ToolContext) -> dict[str, Any]:
    if not args.invoices:
        return _err("At least one invoice must be specified for emailing.")
    items = [item.model_dump(by_alias=True, exclude_none=True) for item in args.invoices]
    return await ctx.email_service.send_batch(items, args.subject)


async def search_and_email_invoices_tool(
    args: SearchAndEmailInvoicesArgs, ctx: ToolContext
) -> dict[str, Any]:
    """Find invoices with the structured filters and email them to one address."""
    if not is_valid_email(args.email_address):
        return _err(f"Invalid email address format: {args.email_address}")

    invoices = await search_invoices(args, ctx)
    if not invoices:
        return _err(f"No invoices found matching: {args.search_query}", found=0)

    criteria = ", ".join(_search_descriptions(args)) or args.search_query
    subject = args.subject or f"Filtered Invoices: {criteria}"
    targets = [
        EmailTarget(
            invoice_id=inv.get("Id"),
            invoice_number=inv.get("DocNumber"),
            email=args.email_address,
            subject=subject,
            customer_name=(inv.get("CustomerRef") or {}).get("name") or "Customer",
        )
        for inv in invoices
    ]
    results = await ctx.email_service.send_multiple_invoice_pdfs(targets)
    emailed = sum(1 for r in results if r["success"])
    failed = len(results) - emailed
    logger.info(
        "Search-and-email sent %d of %d invoices to %s", emailed, len(results), args.email_address
    )

    message = f"Found {len(invoices)} invoices matching: {criteria}. "
    if failed:
        message += f"Emailed {emailed} to {args.email_address}, {failed} failed."
    else:
        message += f"Emailed all {emailed} to {args.email_address}."

    return {
        "success": emailed > 0,
        "action": SLIDER_ACTION,
        "message": message,
        "found": len(invoices),
        "emailed": emailed,
        "failed": failed,
        "searchCriteria": criteria,
        "emailAddress": args.email_address,
        "results": results,
        "invoices": invoices,
        "count": len(invoices),
        "filter": "custom",
        "searchQuery": f"{args.search_query} (emailed to {args.email_address})",
    }

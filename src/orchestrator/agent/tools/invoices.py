"""Invoice tool handlers: list, lookup, search, analyze, create, update, delete."""

import logging
import math
from calendar import monthrange
from datetime import date, datetime, timedelta
from typing import Any, Literal

from pydantic import Field

from src.errors.domain import (
    DomainError,
    InvoiceHasPayments,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from src.orchestrator.agent.tools.core import ToolArgs, ToolContext, _err, _ok, money
from src.services.invoice_query import InvoiceFilters, QueryBuilder
from src.services.invoice_status import (
    OVERDUE,
    compact_invoice,
    customer_name,
    invoice_status,
    parse_due_date,
    summarize_invoice,
    to_amount,
)

logger = logging.getLogger(__name__)

SLIDER_ACTION = "openInvoiceSlider"
ANALYSIS_WINDOW = 100


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------

StatusFilter = Literal["all", "paid", "unpaid", "overdue"]


class GetInvoicesArgs(ToolArgs):
    limit: int = Field(20, ge=1, le=1000, description="Maximum number of invoices to return")
    status: StatusFilter | None = Field(None, description="Filter by payment status")
    date_from: str | None = Field(None, description="Start date (YYYY-MM-DD)")
    date_to: str | None = Field(None, description="End date (YYYY-MM-DD)")


class GetInvoiceByIdArgs(ToolArgs):
    invoice_id: str = Field(..., min_length=1, description="The QuickBooks invoice ID")


class GetInvoiceByNumberArgs(ToolArgs):
    invoice_number: str = Field(
        ..., min_length=1, description="The invoice number (DocNumber), e.g. '1037'"
    )


class SearchInvoicesArgs(ToolArgs):
    query: str | None = Field(None, description="The user's search request, for the result message")
    status: StatusFilter | None = None
    customer_name: str | None = Field(None, description="Customer name or part of it")
    doc_number: str | None = Field(None, description="Exact invoice number")
    min_amount: float | None = Field(None, description="Minimum total amount")
    max_amount: float | None = Field(None, description="Maximum total amount")
    min_balance: float | None = Field(None, description="Minimum open balance")
    max_balance: float | None = Field(None, description="Maximum open balance")
    date_from: str | None = Field(None, description="Invoice date on or after (YYYY-MM-DD)")
    date_to: str | None = Field(None, description="Invoice date on or before (YYYY-MM-DD)")
    due_after: str | None = Field(None, description="Due date after (YYYY-MM-DD)")
    due_before: str | None = Field(None, description="Due date before (YYYY-MM-DD)")
    limit: int = Field(100, ge=1, le=1000)


class OpenInvoiceSliderArgs(ToolArgs):
    filter: StatusFilter = Field("all", description="Filter to apply to the invoice view")
    limit: int = Field(50, ge=1, le=1000, description="Maximum number of invoices")


class AnalyzeInvoicesArgs(ToolArgs):
    analysis_type: Literal["revenue", "unpaid", "overdue", "customer_summary", "all"] = Field(
        ..., description="Type of analysis to perform"
    )


class LineItemArgs(ToolArgs):
    amount: float = Field(..., description="Line item amount")
    description: str | None = Field(None, description="Line item description")
    quantity: float | None = Field(None, description="Quantity (default 1)")


class CreateInvoiceArgs(ToolArgs):
    customer_name: str | None = Field(None, description="Customer name (must exist in QuickBooks)")
    customer_id: str | None = Field(None, description="QuickBooks customer ID")
    amount: float | None = Field(None, description="Total amount (defaults to 500)")
    description: str | None = Field(None, description="What the invoice is for")
    due_date: str | None = Field(None, description="Due date (YYYY-MM-DD), defaults to one month out")
    line_items: list[LineItemArgs] | None = None


class UpdateInvoiceArgs(ToolArgs):
    invoice_id: str | None = Field(None, description="The QuickBooks invoice ID (preferred)")
    invoice_number: str | None = Field(None, description="The invoice number if the ID is not known")
    amount: float | None = Field(None, description="New total amount")
    due_date: str | None = Field(None, description="New due date, e.g. 2025-07-29 or 'July 29, 2025'")
    description: str | None = Field(None, description="New description for the first line")
    line_items: list[LineItemArgs] | None = Field(None, description="Replace all line items")


class InvoiceRef(ToolArgs):
    id: str | None = Field(None, description="QuickBooks invoice ID")
    number: str | None = Field(None, description="Invoice number (DocNumber)")


class DeleteInvoiceArgs(ToolArgs):
    invoices: list[InvoiceRef] = Field(..., min_length=1)
    operation: Literal["delete", "void"] = Field(
        "delete", description="'delete' removes permanently; 'void' only when asked to void"
    )


# ---------------------------------------------------------------------------
# Lookups and listing
# ---------------------------------------------------------------------------


async def get_invoices_tool(args: GetInvoicesArgs, ctx: ToolContext) -> dict[str, Any]:
    """List invoices in the compact shape used for LLM reasoning."""
    now = ctx.now()
    invoices = await ctx.gateway.query(InvoiceFilters(
        status=args.status,
        date_from=args.date_from,
        date_to=args.date_to,
        limit=args.limit,
    ))
    return _ok(
        count=len(invoices),
        invoices=[compact_invoice(inv, now) for inv in invoices],
    )


async def get_invoice_by_id_tool(args: GetInvoiceByIdArgs, ctx: ToolContext) -> dict[str, Any]:
    try:
        invoice = await ctx.gateway.get_by_id(args.invoice_id)
    except NotFoundError:
        return _err("Invoice not found")
    return _ok(invoice=invoice, summary=summarize_invoice(invoice, ctx.now()))


async def get_invoice_by_number_tool(
    args: GetInvoiceByNumberArgs, ctx: ToolContext
) -> dict[str, Any]:
    try:
        invoice = await ctx.gateway.get_by_number(args.invoice_number)
    except NotFoundError:
        return _err(f"Invoice #{args.invoice_number} not found")
    return _ok(invoice=invoice, summary=summarize_invoice(invoice, ctx.now()))


async def open_invoice_slider_tool(
    args: OpenInvoiceSliderArgs, ctx: ToolContext
) -> dict[str, Any]:
    invoices = await ctx.gateway.query(InvoiceFilters(status=args.filter, limit=args.limit))
    label = "" if args.filter == "all" else f"{args.filter} "
    return _ok(
        action=SLIDER_ACTION,
        filter=args.filter,
        count=len(invoices),
        invoices=invoices,
        message=f"Showing {len(invoices)} {label}invoices in the slider view",
    )


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def _search_descriptions(args: SearchInvoicesArgs) -> list[str]:
    parts = []
    if args.status and args.status != "all":
        parts.append(f"{args.status} invoices")
    if args.customer_name:
        parts.append(f"customer {args.customer_name}")
    if args.doc_number:
        parts.append(f"invoice #{args.doc_number}")
    if args.min_amount is not None:
        parts.append(f"amount at least ${money(args.min_amount)}")
    if args.max_amount is not None:
        parts.append(f"amount at most ${money(args.max_amount)}")
    if args.min_balance is not None:
        parts.append(f"balance at least ${money(args.min_balance)}")
    if args.max_balance is not None:
        parts.append(f"balance at most ${money(args.max_balance)}")
    if args.date_from:
        parts.append(f"dated from {args.date_from}")
    if args.date_to:
        parts.append(f"dated to {args.date_to}")
    if args.due_after:
        parts.append(f"due after {args.due_after}")
    if args.due_before:
        parts.append(f"due before {args.due_before}")
    return parts


def _build_search_query(
    args: SearchInvoicesArgs, today: date, customer_ids: list[str] | None = None
) -> str:
    builder = QueryBuilder("Invoice")
    if customer_ids:
        builder.where("CustomerRef", "IN", customer_ids)
    if args.status == "paid":
        builder.where("Balance", "=", 0)
    elif args.status == "unpaid":
        builder.where("Balance", ">", 0)
    elif args.status == "overdue":
        builder.where("Balance", ">", 0).where("DueDate", "<", today)
    if args.doc_number:
        builder.where("DocNumber", "=", args.doc_number)
    if args.min_amount is not None:
        builder.where("TotalAmt", ">=", args.min_amount)
    if args.max_amount is not None:
        builder.where("TotalAmt", "<=", args.max_amount)
    if args.min_balance is not None:
        builder.where("Balance", ">=", args.min_balance)
    if args.max_balance is not None:
        builder.where("Balance", "<=", args.max_balance)
    if args.date_from:
        builder.where("TxnDate", ">=", args.date_from)
    if args.date_to:
        builder.where("TxnDate", "<=", args.date_to)
    if args.due_after:
        builder.where("DueDate", ">", args.due_after)
    if args.due_before:
        builder.where("DueDate", "<", args.due_before)
    return builder.order_by("DocNumber").max_results(args.limit).build()


def matches_search(invoice: dict[str, Any], args: SearchInvoicesArgs, now: datetime) -> bool:
    """Client-side evaluation of the search conditions for one invoice."""
    if args.status and args.status != "all":
        status = invoice_status(invoice, now)
        if args.status == "unpaid":
            if status == "paid":
                return False
        elif status != args.status:
            return False
    if args.customer_name and args.customer_name.lower() not in customer_name(invoice).lower():
        return False
    if args.doc_number and str(invoice.get("DocNumber")) != args.doc_number:
        return False
    total = to_amount(invoice.get("TotalAmt"))
    balance = to_amount(invoice.get("Balance"))
    if args.min_amount is not None and total < args.min_amount:
        return False
    if args.max_amount is not None and total > args.max_amount:
        return False
    if args.min_balance is not None and balance < args.min_balance:
        return False
    if args.max_balance is not None and balance > args.max_balance:
        return False
    txn = invoice.get("TxnDate") or ""
    due = invoice.get("DueDate") or ""
    if args.date_from and not (txn and txn >= args.date_from):
        return False
    if args.date_to and not (txn and txn <= args.date_to):
        return False
    if args.due_after and not (due and due > args.due_after):
        return False
    if args.due_before and not (due and due < args.due_before):
        return False
    return True


async def _matching_customer_ids(name: str, ctx: ToolContext) -> list[str]:
    customers = await ctx.gateway.query_entity(
        "Customer", [("DisplayName", "LIKE", name)], limit=ANALYSIS_WINDOW
    )
    return [str(c["Id"]) for c in customers if c.get("Id") is not None]


async def search_invoices(args: SearchInvoicesArgs, ctx: ToolContext) -> list[dict[str, Any]]:
    """Run a structured search, falling back to client-side filtering.

    A customer name is resolved to customer ids first so the invoice query
    can filter on ``CustomerRef IN (...)``. When QuickBooks rejects either
    query, the most recent invoices are fetched and filtered locally instead.
    """
    now = ctx.now()
    try:
        customer_ids = None
        if args.customer_name:
            customer_ids = await _matching_customer_ids(args.customer_name, ctx)
            if not customer_ids:
                return []
        query = _build_search_query(args, now.date(), customer_ids)
        response = await ctx.gateway.run_query(query, action="search invoices")
        invoices = response.get("Invoice") or []
    except (UpstreamError, ValidationError) as e:
        logger.info("Invoice search query rejected (%s), filtering locally", e.message)
        everything = await ctx.gateway.query_entity(
            "Invoice", order_by=("DocNumber", "ASC"), limit=ANALYSIS_WINDOW
        )
        invoices = [inv for inv in everything if matches_search(inv, args, now)]
    return invoices[: args.limit]


async def search_invoices_tool(args: SearchInvoicesArgs, ctx: ToolContext) -> dict[str, Any]:
    """Search invoices and open the slider with the results."""
    criteria = ", ".join(_search_descriptions(args)) or args.query or "all invoices"
    invoices = await search_invoices(args, ctx)
    if not invoices:
        return _err(f"No invoices found matching: {args.query or criteria}", action="none")
    return _ok(
        action=SLIDER_ACTION,
        filter="custom",
        invoices=invoices,
        count=len(invoices),
        searchQuery=args.query or criteria,
        message=f"Found {len(invoices)} invoices matching: {criteria}",
    )


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def _brief(invoice: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": invoice.get("Id"),
        "number": invoice.get("DocNumber"),
        "customer": customer_name(invoice),
        "amount": to_amount(invoice.get("Balance")),
        "dueDate": invoice.get("DueDate"),
    }


def analyze(invoices: list[dict[str, Any]], analysis_type: str, now: datetime) -> dict[str, Any]:
    """Compute revenue, unpaid, overdue and per-customer figures."""
    data: dict[str, Any] = {}
    wanted = {analysis_type} if analysis_type != "all" else {
        "revenue", "unpaid", "overdue", "customer_summary",
    }

    if "revenue" in wanted:
        total = sum(to_amount(inv.get("TotalAmt")) for inv in invoices)
        paid = sum(
            to_amount(inv.get("TotalAmt"))
            for inv in invoices
            if to_amount(inv.get("Balance")) == 0
        )
        data["revenue"] = {
            "total": round(total, 2),
            "paid": round(paid, 2),
            "pending": round(total - paid, 2),
            "averageInvoice": round(total / len(invoices), 2) if invoices else 0,
        }

    if "unpaid" in wanted:
        unpaid = [inv for inv in invoices if to_amount(inv.get("Balance")) > 0]
        data["unpaid"] = {
            "count": len(unpaid),
            "totalAmount": round(sum(to_amount(inv.get("Balance")) for inv in unpaid), 2),
            "invoices": [_brief(inv) for inv in unpaid[:10]],
        }

    if "overdue" in wanted:
        overdue = [inv for inv in invoices if invoice_status(inv, now) == OVERDUE]
        briefs = []
        for inv in overdue[:10]:
            due = parse_due_date(inv.get("DueDate"))
            brief = _brief(inv)
            brief["daysOverdue"] = math.ceil((now - due) / timedelta(days=1))
            briefs.append(brief)
        data["overdue"] = {
            "count": len(overdue),
            "totalAmount": round(sum(to_amount(inv.get("Balance")) for inv in overdue), 2),
            "invoices": briefs,
        }

    if "customer_summary" in wanted:
        by_customer: dict[str, dict[str, Any]] = {}
        for inv in invoices:
            name = customer_name(inv)
            entry = by_customer.setdefault(
                name,
                {"customer": name, "invoiceCount": 0, "totalAmount": 0.0, "outstanding": 0.0},
            )
            entry["invoiceCount"] += 1
            entry["totalAmount"] += to_amount(inv.get("TotalAmt"))
            entry["outstanding"] += to_amount(inv.get("Balance"))
        customers = sorted(by_customer.values(), key=lambda c: c["totalAmount"], reverse=True)
        for entry in customers:
            entry["totalAmount"] = round(entry["totalAmount"], 2)
            entry["outstanding"] = round(entry["outstanding"], 2)
        data["customerSummary"] = {
            "customerCount": len(customers),
            "topCustomers": customers[:10],
        }

    return data


async def analyze_invoices_tool(args: AnalyzeInvoicesArgs, ctx: ToolContext) -> dict[str, Any]:
    invoices = await ctx.gateway.query_entity(
        "Invoice", order_by=("DocNumber", "ASC"), limit=ANALYSIS_WINDOW
    )
    return _ok(
        analysisType=args.analysis_type,
        period=f"Last {ANALYSIS_WINDOW} invoices",
        data=analyze(invoices, args.analysis_type, ctx.now()),
    )


# ---------------------------------------------------------------------------
# Create / update
# ---------------------------------------------------------------------------


def add_months(day: date, months: int) -> date:
    """Shift a date by whole months, clamping to the last day of the month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, monthrange(year, month)[1]))


def _line_payload(items: list[LineItemArgs], fallback_description: str | None = None) -> list[dict]:
    return [
        {
            "Id": str(index + 1),
            "Amount": item.amount,
            "Description": item.description or fallback_description or f"Item {index + 1}",
            "DetailType": "SalesItemLineDetail",
            "SalesItemLineDetail": {"Qty": item.quantity or 1},
        }
        for index, item in enumerate(items)
    ]


async def create_invoice_tool(args: CreateInvoiceArgs, ctx: ToolContext) -> dict[str, Any]:
    """Create an invoice for an existing customer."""
    if not args.customer_name and not args.customer_id:
        return _err("Either customer name or customer ID is required to create an invoice.")

    customer_id = args.customer_id
    display_name = args.customer_name
    if not customer_id:
        customer = await ctx.gateway.find_customer_by_name(args.customer_name)
        if customer is None:
            return _err(
                f'Customer "{args.customer_name}" does not exist in QuickBooks. '
                "Please create the customer first or use an existing customer."
            )
        customer_id = customer.get("Id")
        display_name = customer.get("DisplayName") or customer.get("Name") or display_name
    elif not display_name:
        try:
            customer = await ctx.gateway.get_customer(customer_id)
        except NotFoundError:
            return _err(f'Customer with ID "{customer_id}" does not exist in QuickBooks.')
        display_name = customer.get("DisplayName") or customer.get("Name")

    items = args.line_items or [
        LineItemArgs(
            amount=args.amount if args.amount is not None else 500,
            description=args.description or "Professional Services",
            quantity=1,
        )
    ]
    today = ctx.now().date()
    txn_date = today.isoformat()
    due_date = args.due_date or add_months(today, 1).isoformat()

    invoice = await ctx.gateway.create({
        "Line": _line_payload(items),
        "CustomerRef": {"value": customer_id},
        "TxnDate": txn_date,
        "DueDate": due_date,
    })
    total = invoice.get("TotalAmt") or sum(item.amount for item in items)
    number = invoice.get("DocNumber")
    line_items = [
        {"amount": item.amount, "description": item.description, "quantity": item.quantity or 1}
        for item in items
    ]
    return _ok(
        message=(
            f"Invoice #{number} for {display_name} was created successfully!\n\n"
            f"Amount: ${money(total)}\nDue Date: {due_date}\nTransaction Date: {txn_date}"
        ),
        invoice={
            "id": invoice.get("Id"),
            "number": number,
            "amount": to_amount(total),
            "customer": display_name,
            "transactionDate": txn_date,
            "dueDate": due_date,
            "lineItems": line_items,
        },
        summary=(
            f"Created invoice #{number} for {display_name}. Amount: ${money(total)}, "
            f"Transaction Date: {txn_date}, Due Date: {due_date}. "
            f"Items: {', '.join(item.description or 'Item' for item in items)}."
        ),
    )


_DUE_DATE_FORMATS = (
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%d %B %Y",
    "%d %b %Y",
)


def parse_due_date_input(raw: str) -> str:
    """Normalize a user-supplied due date to ``YYYY-MM-DD``.

    Accepts ISO dates, month names ("July 29, 2025", "Jul 29 2025") and
    US numeric dates ("7/29/2025").

    Raises:
        ValidationError: If the value matches none of the formats.
    """
    text = raw.strip()
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    for fmt in _DUE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    raise ValidationError(
        f'Invalid date format: "{raw}". Please use formats like "July 29, 2025" or "2025-07-29".'
    )


async def update_invoice_tool(args: UpdateInvoiceArgs, ctx: ToolContext) -> dict[str, Any]:
    """Sparse-update amount, due date, description or line items."""
    if not args.invoice_id and not args.invoice_number:
        return _err("You must provide either invoiceId or invoiceNumber.")
    try:
        if args.invoice_id:
            invoice = await ctx.gateway.get_by_id(args.invoice_id)
        else:
            invoice = await ctx.gateway.get_by_number(args.invoice_number)
    except NotFoundError:
        return _err("Invoice not found in QuickBooks.")

    if args.amount is not None:
        if args.amount < 0:
            return _err(
                f"Invalid amount: ${money(args.amount)}. Invoice amount cannot be negative."
            )
        if args.amount == 0:
            return _err(
                f"Invalid amount: ${money(args.amount)}. Invoice amount must be greater than 0."
            )

    changes: dict[str, Any] = {}
    due_date = None
    if args.due_date:
        due_date = parse_due_date_input(args.due_date)
        txn_date = invoice.get("TxnDate")
        if txn_date and due_date < txn_date:
            return _err(
                f"Invalid due date: {due_date}. Due date cannot be before the "
                f"transaction date ({txn_date})."
            )
        changes["DueDate"] = due_date

    if args.line_items:
        changes["Line"] = _line_payload(args.line_items, args.description)
    elif args.amount is not None or args.description:
        lines = [dict(line) for line in invoice.get("Line") or []]
        sales = [line for line in lines if line.get("DetailType") == "SalesItemLineDetail"]
        if sales:
            first = sales[0]
            if args.amount is not None:
                first["Amount"] = args.amount
            if args.description:
                first["Description"] = args.description
            changes["Line"] = lines

    if not changes:
        return _err("No changes given. Provide amount, dueDate, description or lineItems.")

    updated = await ctx.gateway.update(
        invoice["Id"], changes, sync_token=invoice.get("SyncToken")
    )
    described = []
    if args.amount is not None:
        described.append(f"Amount: ${money(args.amount)}")
    if due_date:
        described.append(f"Due Date: {due_date}")
    if args.description:
        described.append(f"Description: {args.description}")
    suffix = f" ({', '.join(described)})" if described else ""
    return _ok(
        message=f"Invoice #{updated.get('DocNumber')} was updated successfully!{suffix}",
        invoice=updated,
    )


# ---------------------------------------------------------------------------
# Delete / void
# ---------------------------------------------------------------------------


async def _delete_one(ref: InvoiceRef, operation: str, ctx: ToolContext) -> dict[str, Any]:
    label = ref.number or ref.id or "unknown"
    past = "deleted" if operation == "delete" else "voided"
    invoice_id = ref.id
    if not invoice_id and ref.number:
        try:
            invoice_id = (await ctx.gateway.get_by_number(ref.number)).get("Id")
        except NotFoundError:
            return {
                "identifier": ref.number,
                "success": False,
                "error": f"Invoice number {ref.number} not found",
            }
    if not invoice_id:
        return {"identifier": label, "success": False, "error": "No invoice ID or number provided"}

    try:
        if operation == "delete":
            outcome = await ctx.gateway.permanent_delete(invoice_id)
        else:
            outcome = await ctx.gateway.void(invoice_id)
    except InvoiceHasPayments:
        error = (
            f"Invoice {label} cannot be {past} - it has payments applied. "
            f"Only fully unpaid invoices can be {past}."
        )
    except NotFoundError:
        error = f"Invoice {label} not found."
    except DomainError as e:
        error = e.message
    else:
        return {
            "identifier": ref.number or invoice_id,
            "success": True,
            "message": outcome["message"],
            "invoiceId": invoice_id,
        }
    return {"identifier": label, "success": False, "error": error}


async def delete_invoice_tool(args: DeleteInvoiceArgs, ctx: ToolContext) -> dict[str, Any]:
    """Delete or void a batch of invoices, reporting each outcome."""
    results = [await _delete_one(ref, args.operation, ctx) for ref in args.invoices]
    succeeded = sum(1 for r in results if r["success"])
    failed = len(results) - succeeded
    past = "deleted" if args.operation == "delete" else "voided"
    if failed == 0:
        summary = f"Successfully {past} {succeeded} invoice{'s' if succeeded != 1 else ''}"
    else:
        summary = f"{past.capitalize()} {succeeded} invoices, {failed} failed"
    return {
        "success": succeeded > 0,
        "totalProcessed": len(results),
        "successCount": succeeded,
        "failureCount": failed,
        "results": results,
        "summary": summary,
    }

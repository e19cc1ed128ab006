"""Agent tool registration, the canonical entrypoint.

Imports handler functions from submodules and assembles the tool specs
the chat agent exposes to the LLM.
"""

from src.orchestrator.agent.tools.core import ToolContext, ToolRegistry, ToolSpec
from src.orchestrator.agent.tools.customers import (
    CreateCustomerArgs,
    GetCompanyInfoArgs,
    GetCustomersArgs,
    create_customer_tool,
    get_company_info_tool,
    get_customers_tool,
)
from src.orchestrator.agent.tools.email import (
    EmailInvoicesArgs,
    SearchAndEmailInvoicesArgs,
    email_invoices_tool,
    search_and_email_invoices_tool,
)
from src.orchestrator.agent.tools.invoices import (
    AnalyzeInvoicesArgs,
    CreateInvoiceArgs,
    DeleteInvoiceArgs,
    GetInvoiceByIdArgs,
    GetInvoiceByNumberArgs,
    GetInvoicesArgs,
    OpenInvoiceSliderArgs,
    SearchInvoicesArgs,
    UpdateInvoiceArgs,
    analyze_invoices_tool,
    create_invoice_tool,
    delete_invoice_tool,
    get_invoice_by_id_tool,
    get_invoice_by_number_tool,
    get_invoices_tool,
    open_invoice_slider_tool,
    search_invoices_tool,
    update_invoice_tool,
)


def get_all_tool_definitions() -> list[ToolSpec]:
    """Return every tool the chat agent can call.

    Returns:
        List of ToolSpec entries in the order they are offered to the LLM.
    """
    return [
        ToolSpec(
            name="getInvoices",
            description=(
                "Fetch invoices from QuickBooks for analysis. Returns a compact list "
                "(number, customer, amount, balance, status, dates). Use together "
                "with openInvoiceSlider when the user also wants to see them."
            ),
            args_model=GetInvoicesArgs,
            handler=get_invoices_tool,
        ),
        ToolSpec(
            name="getInvoiceById",
            description="Get one invoice by its QuickBooks ID. Returns the invoice and a summary.",
            args_model=GetInvoiceByIdArgs,
            handler=get_invoice_by_id_tool,
        ),
        ToolSpec(
            name="getInvoiceByNumber",
            description=(
                "Get one invoice by its invoice number (e.g. 'show invoice 1037'). "
                "Returns the invoice and a summary."
            ),
            args_model=GetInvoiceByNumberArgs,
            handler=get_invoice_by_number_tool,
        ),
        ToolSpec(
            name="searchInvoices",
            description=(
                "Search invoices by customer, amount, balance, dates or status and "
                "show the matches in the invoice slider. Fill in only the filters "
                "the user asked for and pass their request as 'query'."
            ),
            args_model=SearchInvoicesArgs,
            handler=search_invoices_tool,
        ),
        ToolSpec(
            name="openInvoiceSlider",
            description=(
                "Open the invoice slider panel with all, paid, unpaid or overdue "
                "invoices. Use this first for general requests to show invoices."
            ),
            args_model=OpenInvoiceSliderArgs,
            handler=open_invoice_slider_tool,
        ),
        ToolSpec(
            name="analyzeInvoices",
            description=(
                "Analyze the last 100 invoices: revenue, unpaid, overdue, "
                "customer_summary or all."
            ),
            args_model=AnalyzeInvoicesArgs,
            handler=analyze_invoices_tool,
        ),
        ToolSpec(
            name="createInvoice",
            description=(
                "Create an invoice for an existing customer. Defaults: $500 for "
                "'Professional Services', due one month from today."
            ),
            args_model=CreateInvoiceArgs,
            handler=create_invoice_tool,
        ),
        ToolSpec(
            name="updateInvoice",
            description=(
                "Update an invoice's amount, due date, description or line items. "
                "Identify it by invoiceId or invoiceNumber."
            ),
            args_model=UpdateInvoiceArgs,
            handler=update_invoice_tool,
        ),
        ToolSpec(
            name="deleteInvoice",
            description=(
                "Delete or void one or more unpaid invoices. Use operation 'delete' "
                "for delete/remove/erase requests and 'void' only when the user "
                "says void. Invoices with payments applied are refused."
            ),
            args_model=DeleteInvoiceArgs,
            handler=delete_invoice_tool,
        ),
        ToolSpec(
            name="createCustomer",
            description="Create a new customer in QuickBooks.",
            args_model=CreateCustomerArgs,
            handler=create_customer_tool,
        ),
        ToolSpec(
            name="getCustomers",
            description="List customers from QuickBooks.",
            args_model=GetCustomersArgs,
            handler=get_customers_tool,
        ),
        ToolSpec(
            name="getCompanyInfo",
            description="Get the connected QuickBooks company's name and contact details.",
            args_model=GetCompanyInfoArgs,
            handler=get_company_info_tool,
        ),
        ToolSpec(
            name="emailInvoices",
            description=(
                "Email specific invoices as PDFs. Each invoice goes to its "
                "customer's email unless customerEmail is given."
            ),
            args_model=EmailInvoicesArgs,
            handler=email_invoices_tool,
        ),
        ToolSpec(
            name="searchAndEmailInvoices",
            description=(
                "Search invoices with the same filters as searchInvoices and email "
                "every match to one address."
            ),
            args_model=SearchAndEmailInvoicesArgs,
            handler=search_and_email_invoices_tool,
        ),
    ]


def build_registry() -> ToolRegistry:
    """Create a registry holding every tool definition."""
    registry = ToolRegistry()
    for spec in get_all_tool_definitions():
        registry.register(spec)
    return registry


__all__ = [
    "ToolContext",
    "ToolRegistry",
    "ToolSpec",
    "build_registry",
    "get_all_tool_definitions",
]

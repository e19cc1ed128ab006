"""Tests for the invoice, customer and email tool handlers against FakeQuickBooks."""

from datetime import date

import pytest

from src.errors.domain import ValidationError
from src.orchestrator.agent.tools import build_registry
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
    add_months,
    analyze_invoices_tool,
    create_invoice_tool,
    delete_invoice_tool,
    get_invoice_by_id_tool,
    get_invoice_by_number_tool,
    get_invoices_tool,
    open_invoice_slider_tool,
    parse_due_date_input,
    search_invoices_tool,
    update_invoice_tool,
)
from tests.helpers.fake_quickbooks import fault


def _numbers(invoices: list[dict]) -> list[str]:
    return [inv["DocNumber"] for inv in invoices]


# ============================================================================
# Lookups
# ============================================================================


class TestLookups:

    @pytest.mark.asyncio
    async def test_get_invoices_compact_shape(self, tool_ctx):
        result = await get_invoices_tool(GetInvoicesArgs(), tool_ctx)

        assert result["success"] is True
        assert result["count"] == 4
        by_number = {inv["number"]: inv for inv in result["invoices"]}
        assert by_number["1037"]["status"] == "unpaid"
        assert by_number["1038"]["status"] == "paid"
        assert by_number["1040"] == {
            "id": "104",
            "number": "1040",
            "customer": "Initech",
            "amount": 300.0,
            "balance": 100.0,
            "status": "overdue",
            "date": "2025-06-15",
            "dueDate": "2025-07-10",
        }

    @pytest.mark.asyncio
    async def test_get_invoices_paid_filter(self, tool_ctx):
        result = await get_invoices_tool(GetInvoicesArgs(status="paid"), tool_ctx)
        assert [inv["number"] for inv in result["invoices"]] == ["1038"]

    @pytest.mark.asyncio
    async def test_get_by_number_includes_summary(self, tool_ctx):
        result = await get_invoice_by_number_tool(
            GetInvoiceByNumberArgs(invoice_number="1037"), tool_ctx
        )
        assert result["invoice"]["Id"] == "101"
        assert result["summary"] == (
            "Invoice #1037 for Acme Corp is unpaid. Total amount: $500.00, "
            "Balance due: $500.00. Invoice date: 2025-07-01, Due date: 2025-07-31. "
            "Items include: Consulting, Hosting."
        )

    @pytest.mark.asyncio
    async def test_get_by_number_missing(self, tool_ctx):
        result = await get_invoice_by_number_tool(
            GetInvoiceByNumberArgs(invoice_number="9999"), tool_ctx
        )
        assert result == {"success": False, "error": "Invoice #9999 not found"}

    @pytest.mark.asyncio
    async def test_get_by_id(self, tool_ctx):
        result = await get_invoice_by_id_tool(GetInvoiceByIdArgs(invoice_id="103"), tool_ctx)
        assert result["summary"].startswith("Invoice #1039 for Acme Corp is overdue.")

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, tool_ctx):
        result = await get_invoice_by_id_tool(GetInvoiceByIdArgs(invoice_id="999"), tool_ctx)
        assert result == {"success": False, "error": "Invoice not found"}


# ============================================================================
# Slider and search
# ============================================================================


class TestSlider:

    @pytest.mark.asyncio
    async def test_unpaid_filter(self, tool_ctx):
        result = await open_invoice_slider_tool(OpenInvoiceSliderArgs(filter="unpaid"), tool_ctx)

        assert result["action"] == "openInvoiceSlider"
        assert result["filter"] == "unpaid"
        assert _numbers(result["invoices"]) == ["1037", "1039", "1040"]
        assert result["message"] == "Showing 3 unpaid invoices in the slider view"

    @pytest.mark.asyncio
    async def test_overdue_filter(self, tool_ctx):
        result = await open_invoice_slider_tool(OpenInvoiceSliderArgs(filter="overdue"), tool_ctx)
        assert _numbers(result["invoices"]) == ["1039", "1040"]

    @pytest.mark.asyncio
    async def test_all_filter_message(self, tool_ctx):
        result = await open_invoice_slider_tool(OpenInvoiceSliderArgs(), tool_ctx)
        assert result["message"] == "Showing 4 invoices in the slider view"


class TestSearch:

    @pytest.mark.asyncio
    async def test_customer_name_resolved_to_customer_ids(self, tool_ctx, fake_qb):
        result = await search_invoices_tool(SearchInvoicesArgs(customer_name="acme"), tool_ctx)

        assert result["success"] is True
        assert result["action"] == "openInvoiceSlider"
        assert result["filter"] == "custom"
        assert _numbers(result["invoices"]) == ["1037", "1039"]
        assert result["message"] == "Found 2 invoices matching: customer acme"
        assert "DisplayName LIKE '%acme%'" in fake_qb.queries[0]
        assert "CustomerRef IN ('1')" in fake_qb.queries[-1]

    @pytest.mark.asyncio
    async def test_customer_match_beyond_limit_is_found(self, tool_ctx, fake_qb):
        result = await search_invoices_tool(
            SearchInvoicesArgs(customer_name="Initech", limit=1), tool_ctx
        )

        assert result["success"] is True
        assert _numbers(result["invoices"]) == ["1040"]

    @pytest.mark.asyncio
    async def test_unknown_customer_skips_invoice_query(self, tool_ctx, fake_qb):
        result = await search_invoices_tool(SearchInvoicesArgs(customer_name="Hooli"), tool_ctx)

        assert result["success"] is False
        assert len(fake_qb.queries) == 1

    @pytest.mark.asyncio
    async def test_amount_conditions_go_to_quickbooks(self, tool_ctx, fake_qb):
        result = await search_invoices_tool(
            SearchInvoicesArgs(query="invoices over $600", min_amount=600), tool_ctx
        )
        assert _numbers(result["invoices"]) == ["1038", "1039"]
        assert result["searchQuery"] == "invoices over $600"
        assert "TotalAmt >= 600" in fake_qb.queries[-1]

    @pytest.mark.asyncio
    async def test_no_results(self, tool_ctx):
        result = await search_invoices_tool(SearchInvoicesArgs(min_amount=5000), tool_ctx)
        assert result == {
            "success": False,
            "error": "No invoices found matching: amount at least $5000.00",
            "action": "none",
        }

    @pytest.mark.asyncio
    async def test_rejected_query_falls_back_to_local_filter(self, tool_ctx, fake_qb, monkeypatch):
        original = fake_qb._query

        def reject_filtered(query):
            if " WHERE " in query:
                fake_qb.queries.append(query)
                return fault("4000", "QueryValidationError")
            return original(query)

        monkeypatch.setattr(fake_qb, "_query", reject_filtered)

        result = await search_invoices_tool(SearchInvoicesArgs(status="unpaid"), tool_ctx)

        assert _numbers(result["invoices"]) == ["1037", "1039", "1040"]
        assert len(fake_qb.queries) == 2

    @pytest.mark.asyncio
    async def test_due_date_window(self, tool_ctx):
        result = await search_invoices_tool(
            SearchInvoicesArgs(due_after="2025-06-30", due_before="2025-07-31"), tool_ctx
        )
        assert _numbers(result["invoices"]) == ["1038", "1040"]


# ============================================================================
# Analysis
# ============================================================================


class TestAnalyze:

    @pytest.mark.asyncio
    async def test_revenue(self, tool_ctx):
        result = await analyze_invoices_tool(AnalyzeInvoicesArgs(analysis_type="revenue"), tool_ctx)

        assert result["period"] == "Last 100 invoices"
        assert result["data"] == {
            "revenue": {"total": 2750, "paid": 1200, "pending": 1550, "averageInvoice": 687.5}
        }

    @pytest.mark.asyncio
    async def test_unpaid_and_overdue(self, tool_ctx):
        result = await analyze_invoices_tool(AnalyzeInvoicesArgs(analysis_type="all"), tool_ctx)
        data = result["data"]

        assert data["unpaid"]["count"] == 3
        assert data["unpaid"]["totalAmount"] == 1350
        assert data["overdue"]["count"] == 2
        assert data["overdue"]["totalAmount"] == 850
        assert {i["number"]: i["daysOverdue"] for i in data["overdue"]["invoices"]} == {
            "1039": 45,
            "1040": 6,
        }

    @pytest.mark.asyncio
    async def test_customer_summary_sorted_by_total(self, tool_ctx):
        result = await analyze_invoices_tool(
            AnalyzeInvoicesArgs(analysis_type="customer_summary"), tool_ctx
        )
        summary = result["data"]["customerSummary"]

        assert summary["customerCount"] == 3
        assert summary["topCustomers"][0] == {
            "customer": "Acme Corp",
            "invoiceCount": 2,
            "totalAmount": 1250,
            "outstanding": 1250,
        }
        assert [c["customer"] for c in summary["topCustomers"]] == ["Acme Corp", "Globex", "Initech"]


# ============================================================================
# Create / update
# ============================================================================


class TestCreateInvoice:

    @pytest.mark.asyncio
    async def test_defaults(self, tool_ctx, fake_qb):
        result = await create_invoice_tool(CreateInvoiceArgs(customer_name="Acme Corp"), tool_ctx)

        assert result["success"] is True
        assert result["message"] == (
            "Invoice #1041 for Acme Corp was created successfully!\n\n"
            "Amount: $500.00\nDue Date: 2025-08-15\nTransaction Date: 2025-07-15"
        )
        assert result["invoice"]["lineItems"] == [
            {"amount": 500, "description": "Professional Services", "quantity": 1}
        ]
        created = fake_qb.invoices["200"]
        assert created["CustomerRef"]["value"] == "1"
        assert created["DueDate"] == "2025-08-15"

    @pytest.mark.asyncio
    async def test_line_items(self, tool_ctx, fake_qb):
        result = await create_invoice_tool(
            CreateInvoiceArgs.model_validate({
                "customerId": "3",
                "lineItems": [
                    {"amount": 120, "description": "Toner"},
                    {"amount": 80, "description": "Paper", "quantity": 4},
                ],
                "dueDate": "2025-09-01",
            }),
            tool_ctx,
        )

        assert result["invoice"]["customer"] == "Initech"
        assert result["invoice"]["amount"] == 200
        assert result["summary"].endswith("Items: Toner, Paper.")
        assert [line["Description"] for line in fake_qb.invoices["200"]["Line"]] == ["Toner", "Paper"]

    @pytest.mark.asyncio
    async def test_unknown_customer(self, tool_ctx, fake_qb):
        result = await create_invoice_tool(CreateInvoiceArgs(customer_name="Hooli"), tool_ctx)
        assert result["success"] is False
        assert result["error"].startswith('Customer "Hooli" does not exist in QuickBooks.')
        assert fake_qb.mutating_requests() == []

    @pytest.mark.asyncio
    async def test_unknown_customer_id(self, tool_ctx):
        result = await create_invoice_tool(CreateInvoiceArgs(customer_id="99"), tool_ctx)
        assert result["error"] == 'Customer with ID "99" does not exist in QuickBooks.'

    @pytest.mark.asyncio
    async def test_customer_required(self, tool_ctx):
        result = await create_invoice_tool(CreateInvoiceArgs(), tool_ctx)
        assert result["success"] is False

    @pytest.mark.parametrize("start,months,expected", [
        (date(2025, 7, 15), 1, date(2025, 8, 15)),
        (date(2025, 1, 31), 1, date(2025, 2, 28)),
        (date(2025, 12, 10), 1, date(2026, 1, 10)),
    ])
    def test_add_months(self, start, months, expected):
        assert add_months(start, months) == expected


class TestUpdateInvoice:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount,error", [
        (0, "Invalid amount: $0.00. Invoice amount must be greater than 0."),
        (-5, "Invalid amount: $-5.00. Invoice amount cannot be negative."),
    ])
    async def test_rejects_non_positive_amount(self, tool_ctx, fake_qb, amount, error):
        result = await update_invoice_tool(
            UpdateInvoiceArgs(invoice_number="1037", amount=amount), tool_ctx
        )
        assert result == {"success": False, "error": error}
        assert fake_qb.mutating_requests() == []

    @pytest.mark.asyncio
    async def test_rejects_due_date_before_transaction_date(self, tool_ctx, fake_qb):
        result = await update_invoice_tool(
            UpdateInvoiceArgs(invoice_number="1037", due_date="2025-06-01"), tool_ctx
        )
        assert result["error"] == (
            "Invalid due date: 2025-06-01. Due date cannot be before the "
            "transaction date (2025-07-01)."
        )
        assert fake_qb.mutating_requests() == []

    @pytest.mark.asyncio
    async def test_natural_language_due_date(self, tool_ctx, fake_qb):
        result = await update_invoice_tool(
            UpdateInvoiceArgs(invoice_number="1037", due_date="July 29, 2025"), tool_ctx
        )
        assert result["message"] == (
            "Invoice #1037 was updated successfully! (Due Date: 2025-07-29)"
        )
        assert fake_qb.invoices["101"]["DueDate"] == "2025-07-29"
        assert fake_qb.invoices["101"]["SyncToken"] == "1"

    @pytest.mark.asyncio
    async def test_amount_changes_first_sales_line(self, tool_ctx, fake_qb):
        await update_invoice_tool(
            UpdateInvoiceArgs(invoice_id="101", amount=650, description="Consulting (revised)"),
            tool_ctx,
        )
        first = fake_qb.invoices["101"]["Line"][0]
        assert first["Amount"] == 650
        assert first["Description"] == "Consulting (revised)"
        assert fake_qb.invoices["101"]["Line"][1]["Amount"] == 200

    @pytest.mark.asyncio
    async def test_no_changes(self, tool_ctx):
        result = await update_invoice_tool(UpdateInvoiceArgs(invoice_id="101"), tool_ctx)
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_missing_invoice(self, tool_ctx):
        result = await update_invoice_tool(
            UpdateInvoiceArgs(invoice_number="9999", amount=10), tool_ctx
        )
        assert result == {"success": False, "error": "Invoice not found in QuickBooks."}

    @pytest.mark.asyncio
    async def test_unparseable_due_date_reported_by_registry(self, tool_ctx):
        result = await build_registry().dispatch(
            "updateInvoice", {"invoiceNumber": "1037", "dueDate": "someday"}, tool_ctx
        )
        assert result["success"] is False
        assert result["error"].startswith('Invalid date format: "someday".')

    @pytest.mark.parametrize("raw,expected", [
        ("2025-07-29", "2025-07-29"),
        ("July 29, 2025", "2025-07-29"),
        ("Jul 29 2025", "2025-07-29"),
        ("7/29/2025", "2025-07-29"),
        ("29 July 2025", "2025-07-29"),
    ])
    def test_parse_due_date_input(self, raw, expected):
        assert parse_due_date_input(raw) == expected

    def test_parse_due_date_input_rejects_garbage(self):
        with pytest.raises(ValidationError):
            parse_due_date_input("next tuesday-ish")


# ============================================================================
# Delete / void
# ============================================================================


class TestDeleteInvoice:

    @pytest.mark.asyncio
    async def test_mixed_batch(self, tool_ctx, fake_qb):
        result = await delete_invoice_tool(
            DeleteInvoiceArgs.model_validate({"invoices": [{"number": "1037"}, {"number": "1040"}]}),
            tool_ctx,
        )

        assert result["success"] is True
        assert result["summary"] == "Deleted 1 invoices, 1 failed"
        assert result["successCount"] == 1
        assert result["results"][0]["message"] == "Invoice #1037 permanently deleted from QuickBooks"
        assert result["results"][1] == {
            "identifier": "1040",
            "success": False,
            "error": (
                "Invoice 1040 cannot be deleted - it has payments applied. "
                "Only fully unpaid invoices can be deleted."
            ),
        }
        assert "101" not in fake_qb.invoices
        assert "104" in fake_qb.invoices

    @pytest.mark.asyncio
    async def test_void(self, tool_ctx, fake_qb):
        result = await delete_invoice_tool(
            DeleteInvoiceArgs.model_validate({"invoices": [{"id": "103"}], "operation": "void"}),
            tool_ctx,
        )
        assert result["summary"] == "Successfully voided 1 invoice"
        assert fake_qb.invoices["103"]["Balance"] == 0

    @pytest.mark.asyncio
    async def test_paid_invoice_is_not_touched(self, tool_ctx, fake_qb):
        result = await delete_invoice_tool(
            DeleteInvoiceArgs.model_validate({"invoices": [{"id": "102"}]}), tool_ctx
        )
        assert result["success"] is False
        assert result["summary"] == "Deleted 0 invoices, 1 failed"
        assert fake_qb.mutating_requests() == []

    @pytest.mark.asyncio
    async def test_unknown_number(self, tool_ctx):
        result = await delete_invoice_tool(
            DeleteInvoiceArgs.model_validate({"invoices": [{"number": "9999"}]}), tool_ctx
        )
        assert result["results"][0]["error"] == "Invoice number 9999 not found"

    @pytest.mark.asyncio
    async def test_empty_list_rejected_by_registry(self, tool_ctx):
        result = await build_registry().dispatch("deleteInvoice", {"invoices": []}, tool_ctx)
        assert result["error"] == "Invalid arguments for deleteInvoice"


# ============================================================================
# Customers and company
# ============================================================================


class TestCustomerTools:

    @pytest.mark.asyncio
    async def test_create_customer(self, tool_ctx, fake_qb):
        result = await create_customer_tool(
            CreateCustomerArgs(name="Hooli", email="ap@hooli.example", phone="555-0101"),
            tool_ctx,
        )

        assert result["message"] == 'Customer "Hooli" created successfully!'
        assert result["customer"]["email"] == "ap@hooli.example"
        assert result["summary"] == (
            "Created customer: Hooli (ap@hooli.example). "
            "You can now create invoices for this customer."
        )
        assert fake_qb.customers[result["customer"]["id"]]["PrimaryPhone"] == {
            "FreeFormNumber": "555-0101"
        }

    @pytest.mark.asyncio
    async def test_duplicate_customer_reported(self, tool_ctx):
        result = await build_registry().dispatch("createCustomer", {"name": "Acme Corp"}, tool_ctx)
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_get_customers(self, tool_ctx):
        result = await get_customers_tool(GetCustomersArgs(), tool_ctx)
        assert result["count"] == 3
        assert [c["name"] for c in result["customers"]] == ["Acme Corp", "Globex", "Initech"]
        assert result["customers"][1]["email"] is None

    @pytest.mark.asyncio
    async def test_company_info(self, tool_ctx):
        result = await get_company_info_tool(GetCompanyInfoArgs(), tool_ctx)
        assert result["company"]["name"] == "Sandbox Company_US_1"
        assert result["company"]["address"] == "123 Sierra Way, San Pablo, CA, 87999"


# ============================================================================
# Email
# ============================================================================


class TestEmailTools:

    @pytest.mark.asyncio
    async def test_email_invoices(self, tool_ctx, fake_qb):
        result = await email_invoices_tool(
            EmailInvoicesArgs.model_validate({"invoices": [{"invoiceNumber": "1037"}]}), tool_ctx
        )
        assert result["success"] is True
        assert fake_qb.sent == [("101", "billing@acme.example")]

    @pytest.mark.asyncio
    async def test_email_invoices_requires_one(self, tool_ctx):
        result = await email_invoices_tool(EmailInvoicesArgs(), tool_ctx)
        assert result == {
            "success": False,
            "error": "At least one invoice must be specified for emailing.",
        }

    @pytest.mark.asyncio
    async def test_search_and_email(self, tool_ctx, fake_qb):
        result = await search_and_email_invoices_tool(
            SearchAndEmailInvoicesArgs(
                search_query="overdue", status="overdue", email_address="boss@example.com"
            ),
            tool_ctx,
        )

        assert result["success"] is True
        assert result["action"] == "openInvoiceSlider"
        assert result["emailed"] == 2
        assert result["message"] == (
            "Found 2 invoices matching: overdue invoices. Emailed all 2 to boss@example.com."
        )
        assert result["searchQuery"] == "overdue (emailed to boss@example.com)"
        assert fake_qb.sent == [("103", "boss@example.com"), ("104", "boss@example.com")]

    @pytest.mark.asyncio
    async def test_search_and_email_partial_failure(self, tool_ctx, fake_qb):
        fake_qb.failing_sends.add("104")
        result = await search_and_email_invoices_tool(
            SearchAndEmailInvoicesArgs(
                search_query="overdue", status="overdue", email_address="boss@example.com"
            ),
            tool_ctx,
        )
        assert result["failed"] == 1
        assert result["message"].endswith("Emailed 1 to boss@example.com, 1 failed.")

    @pytest.mark.asyncio
    async def test_search_and_email_invalid_address(self, tool_ctx, fake_qb):
        result = await search_and_email_invoices_tool(
            SearchAndEmailInvoicesArgs(search_query="all", email_address="nope"), tool_ctx
        )
        assert result["error"] == "Invalid email address format: nope"
        assert fake_qb.queries == []

    @pytest.mark.asyncio
    async def test_search_and_email_nothing_found(self, tool_ctx, fake_qb):
        result = await search_and_email_invoices_tool(
            SearchAndEmailInvoicesArgs(
                search_query="huge ones", min_amount=10000, email_address="boss@example.com"
            ),
            tool_ctx,
        )
        assert result == {
            "success": False,
            "error": "No invoices found matching: huge ones",
            "found": 0,
        }
        assert fake_qb.sent == []

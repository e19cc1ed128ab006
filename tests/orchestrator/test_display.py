"""Tests for invoice-number extraction and the display directive precedence."""

import pytest

from src.orchestrator.display import extract_invoice_numbers, resolve_display_directive


def _call(name: str, **result) -> dict:
    return {"toolName": name, "args": {}, "result": {"success": True, **result}}


class TestExtractInvoiceNumbers:

    @pytest.mark.parametrize("text,expected", [
        ("Here is invoice 1037.", ["1037"]),
        ("Invoice #1037 is unpaid", ["1037"]),
        ("invoice number 1040 was updated", ["1040"]),
        ("See #1039", ["1039"]),
        ("Invoice#1001 and invoice 1002", ["1001", "1002"]),
        ("Invoices #1040, #1037 and #1040 again", ["1040", "1037"]),
        ("You have 3 unpaid invoices totalling $1350.00", []),
        ("", []),
        (None, []),
    ])
    def test_extraction(self, text, expected):
        assert extract_invoice_numbers(text) == expected


class TestResolveDisplayDirective:

    def test_slider_wins_over_everything(self):
        invoices = [{"Id": "101", "DocNumber": "1037"}]
        directive = resolve_display_directive(
            [
                _call("getInvoiceByNumber", invoice={"Id": "101"}),
                _call("openInvoiceSlider", action="openInvoiceSlider", filter="unpaid", invoices=invoices),
            ],
            "Showing your unpaid invoices, including invoice #1037.",
        )
        assert directive.kind == "slider"
        assert directive.filter == "unpaid"
        assert directive.invoices == invoices
        assert directive.invoice is None
        assert directive.invoice_number is None

    def test_failed_slider_is_ignored(self):
        call = {
            "toolName": "searchInvoices",
            "result": {"success": False, "action": "none", "error": "No invoices found"},
        }
        directive = resolve_display_directive([call], "Nothing matched.")
        assert directive.kind == "none"

    def test_search_slider_carries_query(self):
        directive = resolve_display_directive(
            [_call("searchInvoices", action="openInvoiceSlider", filter="custom",
                   invoices=[], searchQuery="over $500")],
            "",
        )
        assert directive.to_dict()["searchQuery"] == "over $500"
        assert directive.filter == "custom"

    def test_single_lookup_selects_detail(self):
        invoice = {"Id": "101", "DocNumber": "1037"}
        directive = resolve_display_directive(
            [_call("getInvoiceByNumber", invoice=invoice)],
            "Invoice #1037 for Acme Corp is unpaid.",
        )
        assert directive.kind == "detail"
        assert directive.invoice == invoice

    def test_lookup_with_several_numbers_in_reply_falls_through(self):
        directive = resolve_display_directive(
            [_call("getInvoiceById", invoice={"Id": "101"})],
            "Invoice #1037 replaces invoice #1001.",
        )
        assert directive.kind == "none"
        assert directive.mentioned_numbers == ["1037", "1001"]

    def test_failed_lookup_uses_hint(self):
        call = {"toolName": "getInvoiceByNumber", "result": {"success": False, "error": "x"}}
        directive = resolve_display_directive([call], "I could not find invoice 4242.")
        assert directive.kind == "hint"
        assert directive.invoice_number == "4242"

    def test_text_only_hint(self):
        directive = resolve_display_directive([], "Invoice 1039 is overdue by 44 days.")
        assert directive.to_dict() == {
            "kind": "hint",
            "filter": None,
            "invoices": None,
            "searchQuery": None,
            "invoice": None,
            "invoiceNumber": "1039",
        }

    def test_nothing(self):
        assert resolve_display_directive([], "Your revenue is $2,750.").kind == "none"

"""Invoice email delivery through QuickBooks' native send endpoint.

QuickBooks renders the invoice PDF and emails it itself
(``POST /invoice/{id}/send?sendTo=``). This service resolves invoice
numbers to ids, looks up customer email addresses when none is given,
validates addresses and aggregates batch results.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

from src.errors.domain import DomainError, NotFoundError, ValidationError
from src.services.quickbooks_gateway import QuickBooksGateway

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MISSING_EMAIL_MESSAGE = (
    "No email address found for customer. Please provide customer email "
    "address or update customer record in QuickBooks."
)


def is_valid_email(email: str | None) -> bool:
    """Return True when ``email`` looks like a deliverable address."""
    return bool(email) and EMAIL_PATTERN.match(email) is not None


@dataclass
class EmailTarget:
    """One resolved invoice ready to be sent."""

    invoice_id: str
    invoice_number: str | None
    email: str
    subject: str
    customer_name: str = "Customer"


class QuickBooksEmailService:
    """Sends invoice PDFs through the QuickBooks gateway.

    Args:
        gateway: Gateway used for invoice/customer lookups and sending.
    """

    def __init__(self, gateway: QuickBooksGateway) -> None:
        self._gateway = gateway

    def is_configured(self) -> bool:
        """True when a QuickBooks connection exists."""
        return self._gateway.token_manager.is_connected()

    async def send_invoice_pdf(
        self,
        invoice_id: str,
        email: str,
        subject: str | None = None,
    ) -> dict[str, Any]:
        """Send one invoice PDF. Never raises for per-invoice failures.

        Returns:
            ``{success, message, result}`` on success or
            ``{success: False, message, error}`` on failure.
        """
        if not is_valid_email(email):
            error = f"Invalid email address format: {email}"
            return {"success": False, "message": f"Failed to send invoice PDF: {error}", "error": error}
        try:
            result = await self._gateway.send_invoice(invoice_id, email)
        except DomainError as e:
            logger.warning("Sending invoice %s to %s failed: %s", invoice_id, email, e.message)
            return {
                "success": False,
                "message": f"Failed to send invoice PDF: {e.message}",
                "error": e.message,
            }
        logger.info("Invoice %s emailed to %s (subject %r)", invoice_id, email, subject)
        return {
            "success": True,
            "message": f"Invoice PDF sent successfully to {email}",
            "result": result,
        }

    async def send_multiple_invoice_pdfs(self, targets: list[EmailTarget]) -> list[dict[str, Any]]:
        """Send each target sequentially and collect per-invoice results."""
        results = []
        for target in targets:
            outcome = await self.send_invoice_pdf(target.invoice_id, target.email, target.subject)
            results.append({
                "invoiceId": target.invoice_id,
                "invoiceNumber": target.invoice_number,
                "email": target.email,
                "subject": target.subject,
                "success": outcome["success"],
                "message": outcome["message"],
                "error": None if outcome["success"] else outcome.get("error"),
            })
        return results

    async def resolve_invoice(
        self,
        invoice_id: str | None = None,
        invoice_number: str | None = None,
    ) -> dict[str, Any]:
        """Fetch an invoice by id, or by number when no id is given.

        Raises:
            ValidationError: If neither identifier is provided.
            NotFoundError: If the invoice does not exist.
        """
        if invoice_id:
            return await self._gateway.get_by_id(invoice_id)
        if invoice_number:
            return await self._gateway.get_by_number(invoice_number)
        raise ValidationError("Either invoiceId or invoiceNumber is required")

    async def resolve_customer_email(self, invoice: dict[str, Any]) -> str | None:
        """Look up the primary email of the invoice's customer."""
        customer_id = (invoice.get("CustomerRef") or {}).get("value")
        if not customer_id:
            return None
        try:
            customer = await self._gateway.get_customer(customer_id)
        except NotFoundError:
            return None
        return (customer.get("PrimaryEmailAddr") or {}).get("Address")

    async def prepare_targets(
        self,
        items: list[dict[str, Any]],
        subject: str | None = None,
    ) -> tuple[list[EmailTarget], list[dict[str, Any]]]:
        """Resolve ``{invoiceId?, invoiceNumber?, customerEmail?, subject?}`` items.

        Returns:
            (targets, errors) where errors are ``{invoice, error}`` entries
            for items that could not be resolved.
        """
        targets: list[EmailTarget] = []
        errors: list[dict[str, Any]] = []
        for item in items:
            invoice_id = item.get("invoiceId")
            invoice_number = item.get("invoiceNumber")
            label = invoice_number or invoice_id or "unknown"
            if not invoice_id and not invoice_number:
                errors.append({
                    "invoice": "unknown",
                    "error": "Either invoiceId or invoiceNumber must be provided",
                })
                continue
            try:
                invoice = await self.resolve_invoice(invoice_id, invoice_number)
            except NotFoundError:
                errors.append({"invoice": label, "error": "Invoice not found"})
                continue
            except DomainError as e:
                errors.append({"invoice": label, "error": e.message})
                continue

            doc_number = invoice.get("DocNumber")
            email = item.get("customerEmail") or await self.resolve_customer_email(invoice)
            if not email:
                errors.append({"invoice": doc_number or label, "error": MISSING_EMAIL_MESSAGE})
                continue
            if not is_valid_email(email):
                errors.append({
                    "invoice": doc_number or label,
                    "error": f"Invalid email format: {email}",
                })
                continue

            targets.append(EmailTarget(
                invoice_id=invoice.get("Id") or invoice_id,
                invoice_number=doc_number,
                email=email,
                subject=(
                    item.get("subject")
                    or subject
                    or f"Invoice #{doc_number} from your business"
                ),
                customer_name=(invoice.get("CustomerRef") or {}).get("name") or "Customer",
            ))
        return targets, errors

    async def send_batch(
        self,
        items: list[dict[str, Any]],
        subject: str | None = None,
    ) -> dict[str, Any]:
        """Resolve and send a batch of invoices.

        Returns:
            ``{success, message, results, errors, summary{total, successful,
            failed}}``. ``success`` is True when at least one email went
            out. When nothing could be resolved, ``error`` is set and no
            send is attempted.

        Raises:
            ValidationError: If ``items`` is empty.
        """
        if not items:
            raise ValidationError(
                "Invoices array is required and must contain at least one invoice"
            )
        targets, errors = await self.prepare_targets(items, subject)
        if not targets:
            return {
                "success": False,
                "error": "No valid invoices to email",
                "errors": errors,
                "results": [],
                "summary": {"total": len(items), "successful": 0, "failed": len(errors)},
            }

        results = await self.send_multiple_invoice_pdfs(targets)
        successful = sum(1 for r in results if r["success"])
        failed = len(results) - successful + len(errors)
        if successful and not failed:
            if successful == 1:
                target = targets[0]
                message = (
                    f"Invoice #{target.invoice_number} emailed successfully to "
                    f"{target.customer_name} ({target.email})"
                )
            else:
                message = f"{successful} invoices emailed successfully"
        elif successful:
            message = f"{successful} invoices emailed successfully, {failed} failed"
        else:
            message = f"Failed to email {failed} invoice{'s' if failed != 1 else ''}"

        return {
            "success": successful > 0,
            "message": message,
            "results": results,
            "errors": errors,
            "summary": {"total": len(items), "successful": successful, "failed": failed},
        }

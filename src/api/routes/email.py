"""FastAPI routes for emailing invoice PDFs through QuickBooks.

Delivery uses QuickBooks' own ``/invoice/{id}/send`` endpoint; there is no
SMTP configuration.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.api.schemas import SendInvoiceRequest, SendMultipleInvoicesRequest
from src.errors.domain import NotFoundError
from src.services.email_service import QuickBooksEmailService, is_valid_email
from src.services.service_provider import get_email_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/email", tags=["email"])

NOT_CONNECTED_MESSAGE = "QuickBooks not authenticated. Please connect to QuickBooks first."


def _failure(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


@router.post("/send-invoice")
async def send_invoice(
    payload: SendInvoiceRequest,
    service: QuickBooksEmailService = Depends(get_email_service),
):
    """Email one invoice PDF to the given address or the customer's email."""
    if not payload.invoice_id and not payload.invoice_number:
        return _failure(400, "Either invoiceId or invoiceNumber is required")
    if not service.is_configured():
        return _failure(500, NOT_CONNECTED_MESSAGE)

    try:
        invoice = await service.resolve_invoice(payload.invoice_id, payload.invoice_number)
    except NotFoundError:
        return _failure(404, f"Invoice {payload.invoice_number or payload.invoice_id} not found")
    invoice_id = invoice.get("Id") or payload.invoice_id

    email = payload.customer_email or await service.resolve_customer_email(invoice)
    if not email:
        return _failure(
            400, "Customer email address is required. No email address found for this customer."
        )
    if not is_valid_email(email):
        return _failure(400, f"Invalid email format: {email}")

    subject = payload.subject or f"Invoice {payload.invoice_number or invoice.get('DocNumber') or invoice_id}"
    outcome = await service.send_invoice_pdf(invoice_id, email, subject)
    if not outcome["success"]:
        return _failure(500, outcome["message"], details=outcome.get("error"))

    return {
        "success": True,
        "message": f"Invoice PDF emailed successfully to {email}",
        "details": {
            "invoiceId": invoice_id,
            "invoiceNumber": invoice.get("DocNumber"),
            "customerEmail": email,
            "subject": subject,
            "result": outcome.get("result"),
        },
    }


@router.post("/send-multiple-invoices")
async def send_multiple_invoices(
    payload: SendMultipleInvoicesRequest,
    service: QuickBooksEmailService = Depends(get_email_service),
):
    """Email a batch of invoices, reporting per-invoice results."""
    if not payload.invoices:
        return _failure(400, "Invoices array is required and must contain at least one invoice")
    if not service.is_configured():
        return _failure(500, NOT_CONNECTED_MESSAGE)

    result = await service.send_batch(payload.invoices, payload.default_subject)
    if not result["results"] and result.get("error"):
        return _failure(400, result["error"], errors=result["errors"])
    logger.info("Email batch finished: %s", result["summary"])
    return result


@router.get("/test-config")
def test_config(service: QuickBooksEmailService = Depends(get_email_service)) -> dict:
    configured = service.is_configured()
    return {
        "configured": configured,
        "message": (
            "QuickBooks email service is ready - using direct API calls"
            if configured
            else NOT_CONNECTED_MESSAGE
        ),
        "method": "QuickBooks Direct API",
        "endpoint": "POST /v3/company/{realmId}/invoice/{invoiceId}/send",
    }

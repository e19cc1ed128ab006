"""FastAPI routes for QuickBooks invoices, customers and company data.

Every route goes through the QuickBooksGateway, which obtains a valid
access token first. Domain errors (not connected, not found, payments
applied, stale SyncToken, upstream faults) are rendered by the app-level
exception handler.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse

from src.api.schemas import SendInvoiceEmailRequest, StatusResponse
from src.config import get_settings
from src.errors.domain import DomainError
from src.services.invoice_query import InvoiceFilters
from src.services.quickbooks_auth import TokenManager
from src.services.quickbooks_gateway import QuickBooksGateway
from src.services.service_provider import get_gateway, get_token_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["quickbooks"])


@router.get("/status", response_model=StatusResponse, response_model_exclude_none=True)
async def connection_status(tokens: TokenManager = Depends(get_token_manager)):
    """Report whether a QuickBooks credential is stored and usable."""
    if not tokens.is_connected():
        return StatusResponse(
            status="not_connected",
            message="Not connected to QuickBooks. Visit /auth/quickbooks to authenticate.",
            redirect_uri=get_settings().quickbooks_redirect_uri or None,
        )
    try:
        credential = await tokens.get_valid_credential()
    except DomainError as e:
        logger.warning("Status check failed: %s", e.message)
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "message": "Error checking QuickBooks connection",
                "error": e.message,
            },
        )
    return StatusResponse(
        status="connected",
        message="Connected to QuickBooks",
        **{key: value for key, value in credential.to_status().items()
           if key in ("realmId", "expiresAt")},
    )


@router.get("/company")
async def company_info(gateway: QuickBooksGateway = Depends(get_gateway)) -> dict:
    return await gateway.get_company_info()


@router.get("/dashboard/summary")
async def dashboard_summary(gateway: QuickBooksGateway = Depends(get_gateway)) -> dict:
    """Totals and recent invoices for the dashboard header."""
    return await gateway.dashboard_summary()


# Invoices


@router.get("/invoices")
async def list_invoices(
    limit: int = Query(20),
    status: str | None = None,
    customer: str | None = None,
    min_amount: float | None = Query(None, alias="minAmount"),
    max_amount: float | None = Query(None, alias="maxAmount"),
    date_from: str | None = Query(None, alias="dateFrom"),
    date_to: str | None = Query(None, alias="dateTo"),
    start_position: int | None = Query(None, alias="startPosition"),
    gateway: QuickBooksGateway = Depends(get_gateway),
) -> dict:
    """List invoices with the recognized filters.

    Returns:
        ``{"QueryResponse": {"Invoice": [...]}}``
    """
    invoices = await gateway.query(InvoiceFilters(
        status=status,
        customer=customer,
        min_amount=min_amount,
        max_amount=max_amount,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        start_position=start_position,
    ))
    return {"QueryResponse": {"Invoice": invoices}}


@router.post("/invoices")
async def create_invoice(
    invoice: dict[str, Any] = Body(...),
    gateway: QuickBooksGateway = Depends(get_gateway),
) -> dict:
    return {"Invoice": await gateway.create(invoice)}


@router.get("/invoice/number/{doc_number}")
async def get_invoice_by_number(
    doc_number: str, gateway: QuickBooksGateway = Depends(get_gateway)
) -> dict:
    invoice = await gateway.get_by_number(doc_number)
    return {"QueryResponse": {"Invoice": [invoice]}}


@router.get("/invoices/{invoice_id}")
async def get_invoice(invoice_id: str, gateway: QuickBooksGateway = Depends(get_gateway)) -> dict:
    return {"Invoice": await gateway.get_by_id(invoice_id)}


@router.put("/invoices/{invoice_id}")
async def update_invoice(
    invoice_id: str,
    changes: dict[str, Any] = Body(...),
    gateway: QuickBooksGateway = Depends(get_gateway),
) -> dict:
    """Sparse-update an invoice.

    A ``SyncToken`` in the body is used as-is; without one the current
    token is fetched first.
    """
    body = dict(changes)
    sync_token = body.pop("SyncToken", None)
    body.pop("Id", None)
    body.pop("sparse", None)
    return {"Invoice": await gateway.update(invoice_id, body, sync_token=sync_token)}


@router.delete("/invoices/{invoice_id}")
async def void_invoice(invoice_id: str, gateway: QuickBooksGateway = Depends(get_gateway)) -> dict:
    """Void an invoice that has no payments applied."""
    return await gateway.void(invoice_id)


@router.delete("/invoices/{invoice_id}/permanent-delete")
async def delete_invoice(
    invoice_id: str, gateway: QuickBooksGateway = Depends(get_gateway)
) -> dict:
    """Permanently delete an invoice that has no payments applied."""
    return await gateway.permanent_delete(invoice_id)


@router.post("/invoices/{invoice_id}/send")
async def send_invoice(
    invoice_id: str,
    payload: SendInvoiceEmailRequest | None = None,
    gateway: QuickBooksGateway = Depends(get_gateway),
) -> dict:
    email = payload.email if payload else None
    invoice = await gateway.send_invoice(invoice_id, email)
    target = email or "the customer's email on file"
    return {
        "success": True,
        "message": f"Invoice #{invoice.get('DocNumber', invoice_id)} sent to {target}",
        "invoice": invoice,
    }


# Customers


@router.get("/customers")
async def list_customers(
    limit: int = Query(20),
    active: bool | None = Query(True),
    gateway: QuickBooksGateway = Depends(get_gateway),
) -> dict:
    customers = await gateway.list_customers(limit=limit, active=active)
    return {"QueryResponse": {"Customer": customers}}


@router.get("/customers/{customer_id}")
async def get_customer(customer_id: str, gateway: QuickBooksGateway = Depends(get_gateway)) -> dict:
    return {"Customer": await gateway.get_customer(customer_id)}


@router.post("/customers")
async def create_customer(
    customer: dict[str, Any] = Body(...),
    gateway: QuickBooksGateway = Depends(get_gateway),
) -> dict:
    return {"Customer": await gateway.create_customer(customer)}

"""Authenticated gateway to the QuickBooks Online accounting API.

Every call obtains a valid credential from the TokenManager (refreshing it
when it is inside the expiry margin), issues the request through one shared
httpx client with a bounded timeout, and translates QuickBooks Fault
payloads into domain errors.

Example:
    gateway = QuickBooksGateway(token_manager)
    invoices = await gateway.query(InvoiceFilters(status="unpaid"))
    await gateway.void(invoices[0]["Id"])
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from src.config import Settings, get_settings
from src.errors.domain import (
    InvoiceHasPayments,
    NotFoundError,
    UpstreamError,
)
from src.errors.quickbooks_faults import extract_fault, translate_fault
from src.services.invoice_query import InvoiceFilters, QueryBuilder, build_invoice_query
from src.services.invoice_status import to_amount
from src.services.quickbooks_auth import TokenManager, utc_now

logger = logging.getLogger(__name__)


def _segment(value: Any) -> str:
    """Percent-encode one URL path segment."""
    return quote(str(value), safe="")

Condition = tuple[str, str, Any]


def ensure_unpaid(invoice: dict[str, Any], operation: str) -> None:
    """Refuse void/delete for an invoice that has payments applied.

    Args:
        invoice: Current QuickBooks Invoice object.
        operation: 'void' or 'delete'.

    Raises:
        InvoiceHasPayments: If Balance differs from TotalAmt.
    """
    if to_amount(invoice.get("Balance")) != to_amount(invoice.get("TotalAmt")):
        raise InvoiceHasPayments(
            operation,
            total_amount=invoice.get("TotalAmt"),
            balance=invoice.get("Balance"),
        )


class QuickBooksGateway:
    """Typed operations over the QuickBooks REST API.

    Args:
        token_manager: Source of valid access tokens and the realm id.
        settings: Runtime settings (base URL, timeout).
        http_client: Optional httpx client. When omitted the gateway creates
            and owns one.
        now_fn: Clock used for date-relative filters.
    """

    def __init__(
        self,
        token_manager: TokenManager,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        now_fn: Callable[[], datetime] = utc_now,
    ) -> None:
        self._tokens = token_manager
        self._settings = settings or get_settings()
        self._http = http_client
        self._owns_http = http_client is None
        self._now = now_fn

    @property
    def token_manager(self) -> TokenManager:
        return self._tokens

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._settings.http_timeout)
        return self._http

    async def aclose(self) -> None:
        """Close the owned HTTP client, if any."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Issue one authenticated request against the company endpoint.

        Args:
            method: HTTP method.
            path: Path below ``/v3/company/{realmId}``.
            action: Short description for error messages ('fetch invoice').
            params: Query string parameters.
            json: JSON body for POST requests.

        Returns:
            Parsed JSON response body.

        Raises:
            NotAuthenticated: If no credential is stored.
            TokenRefreshFailed: If the token needed a refresh that failed.
            DomainError: Translated from a QuickBooks Fault or HTTP failure.
        """
        credential = await self._tokens.get_valid_credential()
        url = (
            f"{self._settings.quickbooks_base_url}/v3/company/"
            f"{_segment(credential.realm_id)}{path}"
        )
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/json",
        }
        if json is not None:
            headers["Content-Type"] = "application/json"

        logger.debug("QuickBooks %s %s", method, path)
        try:
            response = await self._client().request(
                method, url, params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error("QuickBooks request failed (%s %s): %s", method, path, e)
            raise UpstreamError(f"Failed to {action}: {e}") from e

        try:
            payload: Any = response.json()
        except ValueError:
            payload = response.text

        if response.status_code >= 400:
            fault = extract_fault(payload)
            logger.warning(
                "QuickBooks %s %s returned %s (fault code %s)",
                method,
                path,
                response.status_code,
                fault.code if fault else None,
            )
            raise translate_fault(response.status_code, payload, action)

        if not isinstance(payload, dict):
            raise UpstreamError(f"Failed to {action}: unexpected response body")
        # Some endpoints report faults with HTTP 200.
        if extract_fault(payload) is not None:
            raise translate_fault(400, payload, action)
        return payload

    # -- queries -----------------------------------------------------------

    async def run_query(self, query: str, action: str = "run query") -> dict[str, Any]:
        """Run a query string produced by QueryBuilder.

        Returns:
            The ``QueryResponse`` object (empty dict when absent).
        """
        payload = await self._request(
            "GET", "/query", action=action, params={"query": query}
        )
        return payload.get("QueryResponse") or {}

    async def query(self, filters: InvoiceFilters | None = None) -> list[dict[str, Any]]:
        """List invoices matching the recognized filters."""
        query = build_invoice_query(filters or InvoiceFilters(), self._now().date())
        logger.info("Executing invoice query: %s", query)
        response = await self.run_query(query, action="fetch invoices")
        return response.get("Invoice") or []

    async def query_entity(
        self,
        entity: str,
        conditions: Iterable[Condition] = (),
        order_by: tuple[str, str] | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        """Run an allow-listed ``SELECT *`` against any supported entity."""
        builder = QueryBuilder(entity)
        for field, op, value in conditions:
            builder.where(field, op, value)
        if order_by is not None:
            builder.order_by(*order_by)
        builder.max_results(limit)
        response = await self.run_query(builder.build(), action=f"fetch {entity.lower()}s")
        return response.get(entity) or []

    async def count(self, entity: str, conditions: Iterable[Condition] = ()) -> int:
        """Return ``SELECT COUNT(*)`` for an entity."""
        builder = QueryBuilder(entity)
        for field, op, value in conditions:
            builder.where(field, op, value)
        response = await self.run_query(
            builder.build_count(), action=f"count {entity.lower()}s"
        )
        return int(response.get("totalCount") or 0)

    # -- invoices ----------------------------------------------------------

    async def get_by_id(self, invoice_id: str) -> dict[str, Any]:
        """Fetch one invoice by QuickBooks id.

        Raises:
            NotFoundError: If the invoice does not exist.
        """
        try:
            payload = await self._request(
                "GET", f"/invoice/{_segment(invoice_id)}", action="fetch invoice"
            )
        except NotFoundError as e:
            raise NotFoundError("Invoice", invoice_id, message="Invoice not found") from e

        invoice = payload.get("Invoice")
        if not invoice:
            invoices = (payload.get("QueryResponse") or {}).get("Invoice") or []
            invoice = invoices[0] if invoices else None
        if not invoice:
            raise NotFoundError("Invoice", invoice_id, message="Invoice not found")
        return invoice

    async def get_by_number(self, doc_number: str) -> dict[str, Any]:
        """Fetch one invoice by its document number.

        Raises:
            NotFoundError: If no invoice has that DocNumber.
        """
        query = (
            QueryBuilder("Invoice")
            .where("DocNumber", "=", str(doc_number))
            .max_results(1)
            .build()
        )
        response = await self.run_query(query, action="fetch invoice")
        invoices = response.get("Invoice") or []
        if not invoices:
            raise NotFoundError(
                "Invoice",
                str(doc_number),
                message=f"Invoice with number {doc_number} not found",
            )
        return invoices[0]

    async def create(self, invoice: dict[str, Any]) -> dict[str, Any]:
        """Create an invoice and return the stored object."""
        payload = await self._request(
            "POST", "/invoice", action="create invoice", json=invoice
        )
        created = payload.get("Invoice") or {}
        logger.info("Created invoice #%s (id %s)", created.get("DocNumber"), created.get("Id"))
        return created

    async def update(
        self,
        invoice_id: str,
        changes: dict[str, Any],
        sync_token: str | None = None,
    ) -> dict[str, Any]:
        """Sparse-update an invoice.

        Args:
            invoice_id: QuickBooks invoice id.
            changes: Fields to change.
            sync_token: Concurrency token from a previous fetch. When
                omitted the current invoice is fetched first.

        Raises:
            ConcurrencyConflict: If the SyncToken is stale.
        """
        if sync_token is None:
            current = await self.get_by_id(invoice_id)
            sync_token = current.get("SyncToken")
        body = {**changes, "Id": invoice_id, "SyncToken": sync_token, "sparse": True}
        payload = await self._request(
            "POST", "/invoice", action="update invoice", json=body
        )
        return payload.get("Invoice") or {}

    async def _mutate_unpaid(self, invoice_id: str, operation: str) -> tuple[dict, dict]:
        invoice = await self.get_by_id(invoice_id)
        ensure_unpaid(invoice, operation)
        payload = await self._request(
            "POST",
            "/invoice",
            action=f"{operation} invoice",
            params={"operation": operation},
            json={"Id": invoice.get("Id", invoice_id), "SyncToken": invoice.get("SyncToken")},
        )
        logger.info(
            "Invoice #%s (id %s) %s", invoice.get("DocNumber"), invoice_id,
            "voided" if operation == "void" else "deleted",
        )
        return invoice, payload

    async def void(self, invoice_id: str) -> dict[str, Any]:
        """Void an unpaid invoice.

        Raises:
            NotFoundError: If the invoice does not exist.
            InvoiceHasPayments: If payments are applied. No mutating call
                is issued in that case.
            ConcurrencyConflict: If the invoice changed after it was fetched.
        """
        invoice, payload = await self._mutate_unpaid(invoice_id, "void")
        return {
            "success": True,
            "message": f"Invoice #{invoice.get('DocNumber')} voided successfully",
            "voidedInvoice": payload.get("Invoice"),
        }

    async def permanent_delete(self, invoice_id: str) -> dict[str, Any]:
        """Permanently delete an unpaid invoice. Same preconditions as void."""
        invoice, payload = await self._mutate_unpaid(invoice_id, "delete")
        return {
            "success": True,
            "message": (
                f"Invoice #{invoice.get('DocNumber')} permanently deleted from QuickBooks"
            ),
            "deletedInvoice": payload.get("Invoice"),
        }

    async def send_invoice(self, invoice_id: str, email: str | None = None) -> dict[str, Any]:
        """Ask QuickBooks to email the invoice PDF.

        Args:
            invoice_id: QuickBooks invoice id.
            email: Recipient; QuickBooks uses the invoice's BillEmail when
                omitted.
        """
        params = {"sendTo": email} if email else None
        payload = await self._request(
            "POST", f"/invoice/{_segment(invoice_id)}/send", action="send invoice", params=params
        )
        return payload.get("Invoice") or {}

    # -- customers and company ---------------------------------------------

    async def get_customer(self, customer_id: str) -> dict[str, Any]:
        try:
            payload = await self._request(
                "GET", f"/customer/{_segment(customer_id)}", action="fetch customer"
            )
        except NotFoundError as e:
            raise NotFoundError("Customer", customer_id, message="Customer not found") from e
        customer = payload.get("Customer")
        if not customer:
            raise NotFoundError("Customer", customer_id, message="Customer not found")
        return customer

    async def list_customers(self, limit: int = 20, active: bool | None = True) -> list[dict[str, Any]]:
        conditions: list[Condition] = []
        if active is not None:
            conditions.append(("Active", "=", active))
        return await self.query_entity(
            "Customer", conditions, order_by=("DisplayName", "ASC"), limit=limit
        )

    async def find_customer_by_name(self, name: str) -> dict[str, Any] | None:
        """Return the customer whose DisplayName matches exactly, or None."""
        customers = await self.query_entity(
            "Customer", [("DisplayName", "=", name)], limit=1
        )
        return customers[0] if customers else None

    async def create_customer(self, customer: dict[str, Any]) -> dict[str, Any]:
        payload = await self._request(
            "POST", "/customer", action="create customer", json=customer
        )
        return payload.get("Customer") or {}

    async def get_company_info(self) -> dict[str, Any]:
        """Return the raw ``companyinfo`` response for the connected realm."""
        credential = await self._tokens.get_valid_credential()
        return await self._request(
            "GET",
            f"/companyinfo/{_segment(credential.realm_id)}",
            action="fetch company info",
        )

    # -- dashboard ---------------------------------------------------------

    async def dashboard_summary(self) -> dict[str, Any]:
        """Totals and the ten most recent invoices, fetched concurrently."""
        invoices, customers, payments, items, recent = await asyncio.gather(
            self.count("Invoice"),
            self.count("Customer", [("Active", "=", True)]),
            self.count("Payment"),
            self.count("Item", [("Active", "=", True)]),
            self.query_entity("Invoice", order_by=("TxnDate", "DESC"), limit=10),
        )
        return {
            "totals": {
                "invoices": invoices,
                "customers": customers,
                "payments": payments,
                "items": items,
            },
            "recentInvoices": recent,
            "lastUpdated": self._now().isoformat(),
        }

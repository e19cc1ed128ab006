"""Customer and company tool handlers."""

from typing import Any

from pydantic import Field

from src.orchestrator.agent.tools.core import ToolArgs, ToolContext, _ok


class CreateCustomerArgs(ToolArgs):
    name: str = Field(..., min_length=1, description="Customer display name")
    email: str | None = Field(None, description="Primary email address")
    phone: str | None = Field(None, description="Primary phone number")
    address: str | None = Field(None, description="Billing address (single line)")
    company: str | None = Field(None, description="Company name, if different from the name")


class GetCustomersArgs(ToolArgs):
    limit: int = Field(20, ge=1, le=1000, description="Maximum number of customers")
    active: bool = Field(True, description="Only return active customers")


class GetCompanyInfoArgs(ToolArgs):
    pass


def _customer_brief(customer: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": customer.get("Id"),
        "name": customer.get("DisplayName") or customer.get("Name"),
        "email": (customer.get("PrimaryEmailAddr") or {}).get("Address"),
        "phone": (customer.get("PrimaryPhone") or {}).get("FreeFormNumber"),
        "active": customer.get("Active"),
    }


async def create_customer_tool(args: CreateCustomerArgs, ctx: ToolContext) -> dict[str, Any]:
    payload: dict[str, Any] = {"Name": args.name, "DisplayName": args.name, "Active": True}
    if args.email:
        payload["PrimaryEmailAddr"] = {"Address": args.email}
    if args.phone:
        payload["PrimaryPhone"] = {"FreeFormNumber": args.phone}
    if args.company and args.company != args.name:
        payload["CompanyName"] = args.company
    if args.address:
        payload["BillAddr"] = {"Line1": args.address}

    customer = await ctx.gateway.create_customer(payload)
    brief = _customer_brief(customer)
    name = brief["name"] or args.name
    contact = f" ({brief['email']})" if brief["email"] else ""
    return _ok(
        message=f'Customer "{name}" created successfully!',
        customer=brief,
        summary=(
            f"Created customer: {name}{contact}. "
            "You can now create invoices for this customer."
        ),
    )


async def get_customers_tool(args: GetCustomersArgs, ctx: ToolContext) -> dict[str, Any]:
    customers = await ctx.gateway.list_customers(limit=args.limit, active=args.active)
    return _ok(count=len(customers), customers=[_customer_brief(c) for c in customers])


async def get_company_info_tool(args: GetCompanyInfoArgs, ctx: ToolContext) -> dict[str, Any]:
    payload = await ctx.gateway.get_company_info()
    info = payload.get("CompanyInfo") or {}
    address = info.get("CompanyAddr") or {}
    return _ok(
        company={
            "name": info.get("CompanyName"),
            "legalName": info.get("LegalName"),
            "email": (info.get("Email") or {}).get("Address"),
            "phone": (info.get("PrimaryPhone") or {}).get("FreeFormNumber"),
            "country": info.get("Country"),
            "address": ", ".join(
                part for part in (
                    address.get("Line1"),
                    address.get("City"),
                    address.get("CountrySubDivisionCode"),
                    address.get("PostalCode"),
                ) if part
            ) or None,
            "fiscalYearStartMonth": info.get("FiscalYearStartMonth"),
        },
    )

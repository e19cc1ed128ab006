"""Pydantic schemas for API request/response validation.

Field names are snake_case in Python and camelCase in JSON, matching the
chat dashboard's payloads.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for request/response bodies with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Status


class StatusResponse(ApiModel):
    """Response for GET /api/status."""

    status: str
    message: str
    realm_id: str | None = None
    expires_at: str | None = None
    redirect_uri: str | None = None


# Chat schemas


class ChatRequest(ApiModel):
    """Request body for the chat endpoints.

    ``message`` is optional here so a missing value produces the
    ``{"error": "Message is required"}`` body rather than a 422.
    """

    message: str | None = None
    session_id: str | None = None


class ChatResponse(ApiModel):
    """Response for POST /api/ai/chat."""

    session_id: str
    message: str
    response: str
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    display: dict[str, Any] | None = None
    timestamp: str
    suggestions: list[str] = Field(default_factory=list)


class AuthRequiredResponse(ApiModel):
    """Chat response when no QuickBooks credential is stored."""

    session_id: str
    message: str
    response: str
    auth_required: bool = True
    auth_url: str = "/auth/quickbooks"


# Conversation schemas


class NewConversationRequest(ApiModel):
    title: str | None = None


class ConversationMessageRequest(ApiModel):
    """Request body for POST /api/conversations/message."""

    user_message: str | None = None
    ai_response: str | dict[str, Any] | None = None
    session_id: str | None = None


# Email schemas


class SendInvoiceRequest(ApiModel):
    invoice_id: str | None = None
    invoice_number: str | None = None
    customer_email: str | None = None
    subject: str | None = None


class SendMultipleInvoicesRequest(ApiModel):
    invoices: list[dict[str, Any]] | None = None
    default_subject: str | None = None


class SendInvoiceEmailRequest(ApiModel):
    """Request body for POST /api/invoices/{id}/send."""

    email: str | None = None

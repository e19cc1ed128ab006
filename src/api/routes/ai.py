"""FastAPI routes for the natural-language invoice chat.

Endpoints:
    POST /ai/chat          - One chat turn, JSON response
    POST /ai/chat/stream   - Same turn, reply streamed as text/plain chunks
    POST /ai/chat/events   - Same turn as Server-Sent Events (text, tool, done)

Every completed turn is appended to the conversation store, and the
conversation history is injected into the agent's system prompt.
"""

import json
import logging
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from sse_starlette.sse import EventSourceResponse

from src.api.schemas import AuthRequiredResponse, ChatRequest, ChatResponse
from src.errors.domain import DomainError
from src.orchestrator.agent.client import ChatResult, InvoiceAgent
from src.orchestrator.agent.tools import ToolContext
from src.orchestrator.display import resolve_display_directive
from src.services.conversation_store import ConversationStore
from src.services.email_service import QuickBooksEmailService
from src.services.quickbooks_auth import TokenManager
from src.services.quickbooks_gateway import QuickBooksGateway
from src.services.service_provider import (
    get_conversation_store,
    get_email_service,
    get_gateway,
    get_llm_client,
    get_token_manager,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])

SUGGESTIONS = [
    "Show me all invoices",
    "What are my unpaid invoices?",
    "Delete invoice 1037",
    "Analyze my revenue",
    "Get customer list",
    "Show overdue invoices",
]

AUTH_REQUIRED_REPLY = (
    "I need to connect to QuickBooks first to help you with invoice management. "
    "Please visit /auth/quickbooks to authenticate."
)


def get_agent() -> InvoiceAgent:
    """Dependency returning a chat agent bound to the shared LLM client."""
    return InvoiceAgent(get_llm_client())


def _message_required() -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Message is required"})


def _auth_required(payload: ChatRequest) -> dict[str, Any]:
    return AuthRequiredResponse(
        session_id=payload.session_id or "default",
        message=payload.message,
        response=AUTH_REQUIRED_REPLY,
    ).model_dump(by_alias=True)


def _turn_context(
    payload: ChatRequest,
    store: ConversationStore,
    gateway: QuickBooksGateway,
    email_service: QuickBooksEmailService,
) -> tuple[ToolContext, str]:
    session_id = payload.session_id or store.get_current_session()["id"]
    history = store.get_context_window(session_id)
    return ToolContext(gateway, email_service, session_id=session_id), history


def _finish_turn(
    payload: ChatRequest,
    ctx: ToolContext,
    result: ChatResult,
    store: ConversationStore,
) -> dict[str, Any]:
    """Persist the exchange and build the chat response body."""
    session_id = store.append_exchange(payload.message, result.to_history(), ctx.session_id)
    display = resolve_display_directive(result.tool_calls, result.text)
    return ChatResponse(
        session_id=session_id,
        message=payload.message,
        response=result.text,
        tool_calls=result.tool_calls,
        display=display.to_dict(),
        timestamp=datetime.now(UTC).isoformat(),
        suggestions=SUGGESTIONS,
    ).model_dump(by_alias=True)


@router.post("/chat")
async def chat(
    payload: ChatRequest,
    tokens: TokenManager = Depends(get_token_manager),
    store: ConversationStore = Depends(get_conversation_store),
    gateway: QuickBooksGateway = Depends(get_gateway),
    email_service: QuickBooksEmailService = Depends(get_email_service),
    agent: InvoiceAgent = Depends(get_agent),
):
    """Run one chat turn and return the reply with tool calls and display directive."""
    if not payload.message:
        return _message_required()
    if not tokens.is_connected():
        return _auth_required(payload)

    ctx, history = _turn_context(payload, store, gateway, email_service)
    logger.info("Chat request for session %s", ctx.session_id)
    result = await agent.run(payload.message, ctx, history)
    return _finish_turn(payload, ctx, result, store)


@router.post("/chat/stream")
async def chat_stream(
    payload: ChatRequest,
    tokens: TokenManager = Depends(get_token_manager),
    store: ConversationStore = Depends(get_conversation_store),
    gateway: QuickBooksGateway = Depends(get_gateway),
    email_service: QuickBooksEmailService = Depends(get_email_service),
    agent: InvoiceAgent = Depends(get_agent),
):
    """Stream the reply text as plain-text chunks."""
    if not payload.message:
        return _message_required()
    if not tokens.is_connected():
        return _auth_required(payload)

    ctx, history = _turn_context(payload, store, gateway, email_service)

    async def text_chunks() -> AsyncGenerator[str, None]:
        try:
            async for event in agent.stream(payload.message, ctx, history):
                if event["type"] == "text":
                    yield event["text"]
                elif event["type"] == "done":
                    _finish_turn(payload, ctx, event["result"], store)
        except DomainError as e:
            logger.error("Streaming chat failed: %s", e.message)
            yield f"Error: {e.message}"

    return StreamingResponse(
        text_chunks(),
        media_type="text/plain; charset=utf-8",
        headers={"Cache-Control": "no-cache"},
    )


@router.post("/chat/events")
async def chat_events(
    payload: ChatRequest,
    tokens: TokenManager = Depends(get_token_manager),
    store: ConversationStore = Depends(get_conversation_store),
    gateway: QuickBooksGateway = Depends(get_gateway),
    email_service: QuickBooksEmailService = Depends(get_email_service),
    agent: InvoiceAgent = Depends(get_agent),
):
    """Stream the turn as SSE: ``text`` deltas, ``tool`` results, then ``done``."""
    if not payload.message:
        return _message_required()
    if not tokens.is_connected():
        return _auth_required(payload)

    ctx, history = _turn_context(payload, store, gateway, email_service)

    async def event_generator() -> AsyncGenerator[dict, None]:
        try:
            async for event in agent.stream(payload.message, ctx, history):
                if event["type"] == "text":
                    yield {"event": "text", "data": json.dumps({"text": event["text"]})}
                elif event["type"] == "tool":
                    call = event["call"]
                    yield {
                        "event": "tool",
                        "data": json.dumps({
                            "toolName": call["toolName"],
                            "args": call["args"],
                            "success": bool(call["result"].get("success")),
                        }, default=str),
                    }
                elif event["type"] == "done":
                    body = _finish_turn(payload, ctx, event["result"], store)
                    yield {"event": "done", "data": json.dumps(body, default=str)}
        except DomainError as e:
            logger.error("SSE chat failed: %s", e.message)
            yield {"event": "error", "data": json.dumps(e.to_dict(), default=str)}

    return EventSourceResponse(event_generator(), media_type="text/event-stream")

"""FastAPI routes for chat conversation sessions.

Endpoints:
    GET    /conversations/sessions              - Session summaries
    GET    /conversations/current               - Current session (created if absent)
    GET    /conversations/context[/{id}]        - LLM history block
    POST   /conversations/new                   - Create and switch to a session
    POST   /conversations/switch/{id}           - Make a session current
    POST   /conversations/message               - Append a user/assistant exchange
    GET    /conversations/{id}                  - One session with messages
    DELETE /conversations/{id}                  - Delete a session
"""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from src.api.schemas import ConversationMessageRequest, NewConversationRequest
from src.services.conversation_store import DEFAULT_CONTEXT_LIMIT, ConversationStore
from src.services.service_provider import get_conversation_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _not_found() -> JSONResponse:
    return JSONResponse(
        status_code=404, content={"success": False, "error": "Conversation not found"}
    )


@router.get("/sessions")
def list_sessions(store: ConversationStore = Depends(get_conversation_store)) -> dict:
    return {"success": True, "sessions": store.list_sessions()}


@router.get("/current")
def current_session(store: ConversationStore = Depends(get_conversation_store)) -> dict:
    return {"success": True, "session": store.get_current_session()}


# Declared before /{session_id} so "context" is not taken as an id.
@router.get("/context")
@router.get("/context/{session_id}")
def conversation_context(
    session_id: str | None = None,
    limit: int = Query(DEFAULT_CONTEXT_LIMIT),
    store: ConversationStore = Depends(get_conversation_store),
) -> dict:
    return {"success": True, "context": store.get_context_window(session_id, limit)}


@router.post("/new")
def new_session(
    payload: NewConversationRequest | None = None,
    store: ConversationStore = Depends(get_conversation_store),
) -> dict:
    session_id = store.create_session(payload.title if payload else None)
    return {"success": True, "sessionId": session_id, "session": store.get_current_session()}


@router.post("/switch/{session_id}")
def switch_session(
    session_id: str, store: ConversationStore = Depends(get_conversation_store)
):
    if not store.switch_session(session_id):
        return _not_found()
    return {"success": True, "sessionId": session_id, "session": store.get_current_session()}


@router.post("/message")
def add_message(
    payload: ConversationMessageRequest,
    store: ConversationStore = Depends(get_conversation_store),
):
    """Record an exchange produced outside the chat endpoint."""
    if not payload.user_message or not payload.ai_response:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Both userMessage and aiResponse are required"},
        )
    session_id = store.append_exchange(
        payload.user_message, payload.ai_response, payload.session_id
    )
    return {"success": True, "sessionId": session_id, "message": "Message added to conversation"}


@router.get("/{session_id}")
def get_session(session_id: str, store: ConversationStore = Depends(get_conversation_store)):
    session = store.get_session(session_id)
    if session is None:
        return _not_found()
    return {"success": True, "session": session}


@router.delete("/{session_id}")
def delete_session(session_id: str, store: ConversationStore = Depends(get_conversation_store)):
    if not store.delete_session(session_id):
        return _not_found()
    return {"success": True, "message": "Conversation deleted successfully"}

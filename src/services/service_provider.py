"""Service provider, the single owner of process-global singletons.

All callers (API routes, agent tools, the chat runner) obtain the token
manager, QuickBooks gateway, email service, conversation store and LLM
client through the accessors here. Routes use them via ``Depends`` so
tests can swap any of them with ``app.dependency_overrides``.
"""

import logging
import threading
from typing import Any

from src.config import get_settings
from src.services.conversation_store import ConversationStore
from src.services.email_service import QuickBooksEmailService
from src.services.quickbooks_auth import QuickBooksOAuthClient, TokenManager
from src.services.quickbooks_gateway import QuickBooksGateway
from src.services.token_store import CredentialStore, InMemoryCredentialStore

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_credential_store: CredentialStore | None = None
_token_manager: TokenManager | None = None
_gateway: QuickBooksGateway | None = None
_email_service: QuickBooksEmailService | None = None
_conversation_store: ConversationStore | None = None
_llm_client: Any = None


def get_credential_store() -> CredentialStore:
    """Get or create the process-global credential store."""
    global _credential_store
    if _credential_store is None:
        with _lock:
            if _credential_store is None:
                _credential_store = InMemoryCredentialStore()
    return _credential_store


def get_token_manager() -> TokenManager:
    """Get or create the process-global TokenManager.

    One instance per process so its refresh lock serializes every caller.
    """
    global _token_manager
    store = get_credential_store()
    if _token_manager is None:
        with _lock:
            if _token_manager is None:
                _token_manager = TokenManager(
                    store, QuickBooksOAuthClient(get_settings())
                )
                logger.info("TokenManager singleton initialized")
    return _token_manager


def get_gateway() -> QuickBooksGateway:
    """Get or create the process-global QuickBooks gateway."""
    global _gateway
    token_manager = get_token_manager()
    if _gateway is None:
        with _lock:
            if _gateway is None:
                _gateway = QuickBooksGateway(token_manager, get_settings())
                logger.info("QuickBooksGateway singleton initialized")
    return _gateway


def get_email_service() -> QuickBooksEmailService:
    global _email_service
    gateway = get_gateway()
    if _email_service is None:
        with _lock:
            if _email_service is None:
                _email_service = QuickBooksEmailService(gateway)
    return _email_service


def get_conversation_store() -> ConversationStore:
    """Get or create the process-global conversation store."""
    global _conversation_store
    if _conversation_store is None:
        with _lock:
            if _conversation_store is None:
                _conversation_store = ConversationStore()
    return _conversation_store


def get_llm_client() -> Any:
    """Get or create the shared AsyncAnthropic client.

    Deferred import keeps the API importable without the SDK configured;
    the client reads ANTHROPIC_API_KEY itself.
    """
    global _llm_client
    if _llm_client is None:
        with _lock:
            if _llm_client is None:
                from anthropic import AsyncAnthropic

                _llm_client = AsyncAnthropic()
                logger.info("AsyncAnthropic client initialized")
    return _llm_client


async def shutdown_services() -> None:
    """Close network clients and drop all singletons. Called on app shutdown."""
    global _credential_store, _token_manager, _gateway
    global _email_service, _conversation_store, _llm_client

    if _gateway is not None:
        try:
            await _gateway.aclose()
        except Exception as e:
            logger.warning("Error closing QuickBooks gateway: %s", e)
    if _llm_client is not None:
        try:
            await _llm_client.close()
        except Exception as e:
            logger.warning("Error closing LLM client: %s", e)

    _credential_store = None
    _token_manager = None
    _gateway = None
    _email_service = None
    _conversation_store = None
    _llm_client = None

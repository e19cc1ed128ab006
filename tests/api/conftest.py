"""Pytest fixtures for API tests.

Provides a TestClient whose service dependencies (token manager, gateway,
email service, conversation store and chat agent) are wired to the
in-process fakes.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.middleware.auth import reset_rate_limiter
from src.api.routes import ai
from src.orchestrator.agent.client import InvoiceAgent
from src.services.conversation_store import ConversationStore
from src.services.email_service import QuickBooksEmailService
from src.services.quickbooks_auth import TokenManager
from src.services.quickbooks_gateway import QuickBooksGateway
from src.services.service_provider import (
    get_conversation_store,
    get_email_service,
    get_gateway,
    get_token_manager,
)
from tests.helpers.fake_llm import FakeAnthropic
from tests.helpers.fake_quickbooks import (
    FakeQuickBooks,
    FakeTokenEndpoint,
    make_credential,
    make_gateway,
    make_token_manager,
)


@pytest.fixture
def token_endpoint() -> FakeTokenEndpoint:
    return FakeTokenEndpoint()


@pytest.fixture
def token_manager(token_endpoint: FakeTokenEndpoint) -> TokenManager:
    """Token manager holding a credential valid for another hour."""
    return make_token_manager(make_credential(), token_endpoint)


@pytest.fixture
def api_gateway(fake_qb: FakeQuickBooks, token_manager: TokenManager) -> QuickBooksGateway:
    return make_gateway(fake_qb, token_manager)


@pytest.fixture
def llm() -> FakeAnthropic:
    """Scripted LLM; tests append responses before calling the chat routes."""
    return FakeAnthropic()


@pytest.fixture
def client(
    token_manager: TokenManager,
    api_gateway: QuickBooksGateway,
    conversation_store: ConversationStore,
    llm: FakeAnthropic,
) -> Generator[TestClient, None, None]:
    """TestClient with every service dependency overridden.

    Yields:
        TestClient configured for testing.
    """
    email_service = QuickBooksEmailService(api_gateway)

    app.dependency_overrides[get_token_manager] = lambda: token_manager
    app.dependency_overrides[get_gateway] = lambda: api_gateway
    app.dependency_overrides[get_email_service] = lambda: email_service
    app.dependency_overrides[get_conversation_store] = lambda: conversation_store
    app.dependency_overrides[ai.get_agent] = lambda: InvoiceAgent(llm, model="test-model")
    reset_rate_limiter()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    reset_rate_limiter()


@pytest.fixture(autouse=True)
def _reset_sse_exit_event() -> Generator[None, None, None]:
    """sse-starlette keeps a module-level exit event bound to the first loop."""
    from sse_starlette.sse import AppStatus

    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None

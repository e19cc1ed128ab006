"""Root-level pytest fixtures for all tests.

Provides:
- An isolated database URL and cleared QuickBooks/agent env vars
- A FakeQuickBooks server with sample invoices and customers
- A connected gateway, email service and tool context on a pinned clock
- An in-memory conversation store
"""

import os
from collections.abc import Generator

# Must be set before src.db.connection is imported anywhere.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.config import reset_settings
from src.db.models import Base
from src.orchestrator.agent.tools import ToolContext
from src.services.conversation_store import ConversationStore
from src.services.email_service import QuickBooksEmailService
from src.services.quickbooks_gateway import QuickBooksGateway
from tests.helpers.fake_quickbooks import (
    FakeQuickBooks,
    fixed_clock,
    make_gateway,
)

_ENV_VARS = (
    "QUICKBOOKS_CLIENT_ID",
    "QUICKBOOKS_CLIENT_SECRET",
    "QUICKBOOKS_REDIRECT_URI",
    "QUICKBOOKS_ENVIRONMENT",
    "QUICKBOOKS_HTTP_TIMEOUT",
    "AGENT_MODEL",
    "ANTHROPIC_MODEL",
    "AGENT_MAX_STEPS",
    "INVOICEAGENT_API_KEY",
)


# ============================================================================
# Environment
# ============================================================================


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run every test against default settings."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


# ============================================================================
# QuickBooks Fixtures
# ============================================================================


@pytest.fixture
def fake_qb() -> FakeQuickBooks:
    return FakeQuickBooks()


@pytest.fixture
def gateway(fake_qb: FakeQuickBooks) -> QuickBooksGateway:
    """Gateway connected to the fake with a non-expiring credential."""
    return make_gateway(fake_qb)


@pytest.fixture
def email_service(gateway: QuickBooksGateway) -> QuickBooksEmailService:
    return QuickBooksEmailService(gateway)


@pytest.fixture
def tool_ctx(gateway: QuickBooksGateway, email_service: QuickBooksEmailService) -> ToolContext:
    return ToolContext(gateway, email_service, now_fn=fixed_clock)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def conversation_store() -> Generator[ConversationStore, None, None]:
    """ConversationStore over a fresh in-memory SQLite database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield ConversationStore(TestingSessionLocal)
    engine.dispose()

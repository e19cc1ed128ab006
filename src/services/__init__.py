"""Service layer for InvoiceAgent.

Provides the QuickBooks credential lifecycle, the authenticated QuickBooks
gateway, invoice email delivery and the conversation store.
"""

from src.services.conversation_store import ConversationStore
from src.services.email_service import QuickBooksEmailService
from src.services.quickbooks_auth import QuickBooksOAuthClient, TokenManager
from src.services.quickbooks_gateway import QuickBooksGateway
from src.services.token_store import Credential, CredentialStore, InMemoryCredentialStore

__all__ = [
    "ConversationStore",
    "Credential",
    "CredentialStore",
    "InMemoryCredentialStore",
    "QuickBooksEmailService",
    "QuickBooksGateway",
    "QuickBooksOAuthClient",
    "TokenManager",
]

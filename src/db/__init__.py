"""Database module for InvoiceAgent conversation persistence."""

from src.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from src.db.models import (
    AppState,
    Base,
    ConversationMessage,
    ConversationSession,
)

__all__ = [
    # Models
    "Base",
    "ConversationSession",
    "ConversationMessage",
    "AppState",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]

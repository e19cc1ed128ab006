"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from src.api.routes import ai, auth, conversations, email, quickbooks

__all__ = [
    "ai",
    "auth",
    "conversations",
    "email",
    "quickbooks",
]

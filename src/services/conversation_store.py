"""Persistent multi-session chat history.

Owns every read and write of conversation sessions and messages. Each
operation runs in its own short transaction, and writes are serialized
with a process-wide lock so read-modify-write steps (sequence numbers,
the current-session pointer, auto-titles) never interleave.

Results are returned as camelCase dicts in the shape the chat UI renders.
"""

import json
import logging
import threading
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.db.connection import SessionLocal
from src.db.models import (
    AppState,
    ConversationMessage,
    ConversationSession,
    MessageRole,
    generate_message_id,
    generate_session_id,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

CURRENT_SESSION_KEY = "current_session_id"
DEFAULT_CONTEXT_LIMIT = 8
DEFAULT_TITLE_PREFIX = "Chat "

# Tools whose successful results list invoices in the history context.
INVOICE_LISTING_TOOLS = frozenset({"searchInvoices", "openInvoiceSlider"})
EMAIL_TOOLS = frozenset({"emailInvoices", "searchAndEmailInvoices"})

CONTEXT_HEADER = (
    "\n\n--- CONVERSATION HISTORY ---\n"
    "Recent conversation context (for understanding references like "
    "\"these invoices\", \"them\", etc.):\n\n"
)
CONTEXT_FOOTER = (
    "--- END CONVERSATION HISTORY ---\n\n"
    "When the user says \"these\", \"them\", \"those invoices\", etc., refer to "
    "the conversation history above to understand what they mean.\n\n"
)


def default_title(now: datetime | None = None) -> str:
    """Title given to new sessions, e.g. 'Chat 7/4/2025'."""
    today = (now or datetime.now()).date()
    return f"{DEFAULT_TITLE_PREFIX}{today.month}/{today.day}/{today.year}"


def generate_title(message: str) -> str:
    """Derive a session title from the first user message.

    Keyword matches map to fixed titles; anything else uses the first
    four words, truncated to 30 characters.
    """
    lowered = message.lower()
    if "invoice" in lowered and "email" in lowered:
        return "Email Invoices"
    if any(word in lowered for word in ("search", "find", "list")):
        return "Search Invoices"
    if "create" in lowered or "new invoice" in lowered:
        return "Create Invoice"
    if "update" in lowered or "modify" in lowered:
        return "Update Invoice"
    words = " ".join(message.split(" ")[:4])
    return words[:30] + "..." if len(words) > 30 else words


def _loads(raw: str | None, message_id: str) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Corrupted JSON column on message %s", message_id)
        return None


def _message_to_dict(message: ConversationMessage) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "timestamp": message.created_at,
    }
    if message.role == MessageRole.assistant:
        data["toolCalls"] = _loads(message.tool_calls_json, message.id) or []
        data["metadata"] = _loads(message.metadata_json, message.id) or {}
    return data


def _session_to_dict(session: ConversationSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "title": session.title,
        "createdAt": session.created_at,
        "updatedAt": session.updated_at,
        "messages": [_message_to_dict(m) for m in session.messages],
    }


class ConversationStore:
    """Session CRUD, exchange logging and LLM context windows.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory
        self._lock = threading.RLock()

    @contextmanager
    def _transaction(self) -> Generator[Session, None, None]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # -- current-session pointer -------------------------------------------

    def _get_current_id(self, db: Session) -> str | None:
        state = db.get(AppState, CURRENT_SESSION_KEY)
        return state.value if state else None

    def _set_current_id(self, db: Session, session_id: str | None) -> None:
        state = db.get(AppState, CURRENT_SESSION_KEY)
        if state is None:
            db.add(AppState(key=CURRENT_SESSION_KEY, value=session_id))
        else:
            state.value = session_id
            state.updated_at = utc_now_iso()

    def _create(self, db: Session, title: str | None) -> ConversationSession:
        session = ConversationSession(
            id=generate_session_id(),
            title=title or default_title(),
        )
        db.add(session)
        self._set_current_id(db, session.id)
        db.flush()
        logger.info("Created conversation session %s", session.id)
        return session

    # -- sessions ------------------------------------------------------------

    def create_session(self, title: str | None = None) -> str:
        """Create a session, make it current, and return its id."""
        with self._lock, self._transaction() as db:
            return self._create(db, title).id

    def get_current_session(self) -> dict[str, Any]:
        """Return the current session, creating one when none exists."""
        with self._lock, self._transaction() as db:
            current_id = self._get_current_id(db)
            session = db.get(ConversationSession, current_id) if current_id else None
            if session is None:
                session = self._create(db, None)
            return _session_to_dict(session)

    def get_current_session_id(self) -> str | None:
        with self._transaction() as db:
            return self._get_current_id(db)

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        """Return one session with its messages, or None."""
        with self._transaction() as db:
            session = db.get(ConversationSession, session_id)
            return _session_to_dict(session) if session else None

    def list_sessions(self) -> list[dict[str, Any]]:
        """List session summaries, most recently updated first."""
        with self._transaction() as db:
            rows = (
                db.query(
                    ConversationSession.id,
                    ConversationSession.title,
                    ConversationSession.created_at,
                    ConversationSession.updated_at,
                    func.count(ConversationMessage.id).label("message_count"),
                )
                .outerjoin(ConversationMessage)
                .group_by(ConversationSession.id)
                .order_by(
                    ConversationSession.updated_at.desc(),
                    ConversationSession.created_at.desc(),
                )
                .all()
            )
            return [
                {
                    "id": row[0],
                    "title": row[1],
                    "createdAt": row[2],
                    "updatedAt": row[3],
                    "messageCount": row[4],
                }
                for row in rows
            ]

    def switch_session(self, session_id: str) -> bool:
        """Point the current-session pointer at ``session_id``.

        Returns:
            False when the session does not exist.
        """
        with self._lock, self._transaction() as db:
            if db.get(ConversationSession, session_id) is None:
                return False
            self._set_current_id(db, session_id)
            return True

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages.

        Returns:
            False when the session does not exist.
        """
        with self._lock, self._transaction() as db:
            session = db.get(ConversationSession, session_id)
            if session is None:
                return False
            db.delete(session)
            if self._get_current_id(db) == session_id:
                self._set_current_id(db, None)
            logger.info("Deleted conversation session %s", session_id)
            return True

    # -- messages ------------------------------------------------------------

    def append_exchange(
        self,
        user_text: str,
        assistant_result: str | dict[str, Any],
        session_id: str | None = None,
    ) -> str:
        """Append a user message and the assistant reply to a session.

        Args:
            user_text: The user's message.
            assistant_result: Reply text, or a dict with ``message``,
                ``toolCalls``, ``successful`` and ``invoicesFound``.
            session_id: Target session; defaults to the current session.
                An unknown id starts a new session.

        Returns:
            Id of the session the exchange was written to.
        """
        if isinstance(assistant_result, dict):
            reply = assistant_result.get("message") or ""
            tool_calls = assistant_result.get("toolCalls") or []
            metadata = {
                "successful": bool(assistant_result.get("successful", False)),
                "invoicesFound": assistant_result.get("invoicesFound"),
            }
        else:
            reply = str(assistant_result)
            tool_calls = []
            metadata = {"successful": False, "invoicesFound": None}

        with self._lock, self._transaction() as db:
            target_id = session_id or self._get_current_id(db)
            session = db.get(ConversationSession, target_id) if target_id else None
            if session is None:
                session = self._create(db, None)

            max_seq = (
                db.query(func.max(ConversationMessage.sequence))
                .filter(ConversationMessage.session_id == session.id)
                .scalar()
            )
            next_seq = (max_seq or 0) + 1
            now = utc_now_iso()

            db.add(ConversationMessage(
                id=generate_message_id(),
                session_id=session.id,
                role=MessageRole.user,
                content=user_text,
                sequence=next_seq,
                created_at=now,
            ))
            db.add(ConversationMessage(
                id=generate_message_id(),
                session_id=session.id,
                role=MessageRole.assistant,
                content=reply,
                tool_calls_json=json.dumps(tool_calls, default=str),
                metadata_json=json.dumps(metadata, default=str),
                sequence=next_seq + 1,
                created_at=now,
            ))
            session.updated_at = now
            if session.title.startswith(DEFAULT_TITLE_PREFIX):
                session.title = generate_title(user_text)
            return session.id

    def get_recent_messages(
        self,
        limit: int = 10,
        session_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return the last ``limit`` messages in chronological order.

        Without ``session_id`` the current session is used (created when
        absent). An unknown ``session_id`` yields an empty list.
        """
        if limit <= 0:
            return []
        if session_id is None:
            session_id = self.get_current_session()["id"]
        with self._transaction() as db:
            messages = (
                db.query(ConversationMessage)
                .filter(ConversationMessage.session_id == session_id)
                .order_by(ConversationMessage.sequence.desc())
                .limit(limit)
                .all()
            )
            return [_message_to_dict(m) for m in reversed(messages)]

    def get_context_window(
        self,
        session_id: str | None = None,
        limit: int = DEFAULT_CONTEXT_LIMIT,
    ) -> str:
        """Format recent messages as a history block for the LLM prompt.

        Returns:
            The framed history text, or '' when there are no messages.
        """
        messages = self.get_recent_messages(limit, session_id)
        if not messages:
            return ""

        parts = [CONTEXT_HEADER]
        for message in messages:
            if message["role"] == MessageRole.user:
                parts.append(f"User: {message['content']}\n")
            else:
                parts.append(f"Assistant: {message['content']}\n")
                for call in message.get("toolCalls") or []:
                    line = _tool_context_line(call)
                    if line:
                        parts.append(line)
            parts.append("\n")
        parts.append(CONTEXT_FOOTER)
        return "".join(parts)


def _tool_context_line(call: dict[str, Any]) -> str | None:
    result = call.get("result")
    if not isinstance(result, dict) or not result.get("success"):
        return None
    name = call.get("toolName")
    if name in INVOICE_LISTING_TOOLS:
        return f"  [Found {len(result.get('invoices') or [])} invoices]\n"
    if name in EMAIL_TOOLS:
        return "  [Emailed invoices successfully]\n"
    return None

"""SQLAlchemy ORM models for InvoiceAgent conversation persistence.

Conversation sessions, their ordered messages, and a small key/value table
for process-wide pointers such as the current session id. Uses SQLAlchemy
2.0 style with Mapped and mapped_column.
"""

import random
import string
import time
from datetime import UTC, datetime

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def _random_suffix(length: int) -> str:
    return "".join(random.choices(_ID_ALPHABET, k=length))


def generate_session_id() -> str:
    """Session id of the form ``session_<epoch ms>_<9 base36 chars>``."""
    return f"session_{int(time.time() * 1000)}_{_random_suffix(9)}"


def generate_message_id() -> str:
    """Message id of the form ``msg_<epoch ms>_<6 base36 chars>``."""
    return f"msg_{int(time.time() * 1000)}_{_random_suffix(6)}"


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format (millisecond precision)."""
    return datetime.now(UTC).isoformat(timespec="milliseconds")


class MessageRole:
    """Roles stored on conversation messages."""

    user = "user"
    assistant = "assistant"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ConversationSession(Base):
    """Persistent chat session.

    Attributes:
        id: ``session_<ms>_<rand>`` primary key.
        title: Display title, auto-derived from the first user message.
        created_at: ISO8601 creation timestamp.
        updated_at: ISO8601 timestamp of the last appended message.
    """

    __tablename__ = "conversation_sessions"
    __table_args__ = (Index("ix_convsess_updated", "updated_at"),)

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_session_id
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    messages: Mapped[list["ConversationMessage"]] = relationship(
        "ConversationMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ConversationMessage.sequence",
    )

    def __repr__(self) -> str:
        return f"<ConversationSession(id={self.id!r}, title={self.title!r})>"


class ConversationMessage(Base):
    """One immutable chat message.

    Attributes:
        id: ``msg_<ms>_<rand>`` primary key.
        session_id: FK to ConversationSession.
        role: 'user' or 'assistant'.
        content: Message text.
        tool_calls_json: JSON list of ``{toolName, args, result}`` (assistant only).
        metadata_json: JSON object with ``{successful, invoicesFound}``.
        sequence: Ordering within the session (monotonically increasing).
        created_at: ISO8601 timestamp.
    """

    __tablename__ = "conversation_messages"
    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_convmsg_session_seq"),
        Index("ix_convmsg_session_seq", "session_id", "sequence"),
    )

    id: Mapped[str] = mapped_column(
        String(64), primary_key=True, default=generate_message_id
    )
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("conversation_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tool_calls_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    session: Mapped["ConversationSession"] = relationship(
        "ConversationSession", back_populates="messages"
    )

    def __repr__(self) -> str:
        return (
            f"<ConversationMessage(id={self.id!r}, role={self.role!r}, "
            f"seq={self.sequence})>"
        )


class AppState(Base):
    """Process-wide key/value pointers (e.g. ``current_session_id``)."""

    __tablename__ = "app_state"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso, onupdate=utc_now_iso
    )

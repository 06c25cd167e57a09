# planbot/entities.py
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, Index, JSON, String
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, validates

from typing import Any, TypeAlias
UUID: TypeAlias = str
Base = declarative_base()

# The only roles a stored transcript message may carry.
MESSAGE_ROLES = ("bot", "user")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(Base):
    """
    One finished intake conversation.

    messages is an ordered list of {"role": "bot"|"user", "content": str, "timestamp": ISO-8601}.
    """
    __tablename__ = "conversation"

    id: Mapped[UUID] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)

    messages: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    __table_args__ = (
        Index("ix_conversation_user_id", "user_id"),
    )

    @validates("user_id")
    def _validate_user_id(self, key, value):
        if value is None or str(value) == "":
            raise ValueError("Conversation.user_id is required")
        return str(value)

    @validates("messages")
    def _validate_messages(self, key, messages):
        normalized = []
        for i, m in enumerate(messages or []):
            role = m.get("role")
            if role not in MESSAGE_ROLES:
                raise ValueError(f"Conversation.messages[{i}]: role must be one of {MESSAGE_ROLES}, got {role!r}")
            content = m.get("content")
            if not isinstance(content, str) or not content:
                raise ValueError(f"Conversation.messages[{i}]: content must be a non-empty string")
            timestamp = m.get("timestamp") or utc_now()
            if isinstance(timestamp, datetime):
                timestamp = timestamp.isoformat()
            normalized.append({"role": role, "content": content, "timestamp": timestamp})
        return normalized

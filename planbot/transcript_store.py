# planbot/transcript_store.py

import logging
from typing import Any, Callable, Dict, Protocol

from sqlalchemy.orm import Session

from planbot.entities import Conversation, utc_now

logger = logging.getLogger("planbot")


class TranscriptStore(Protocol):
    def append(self, record: Dict[str, Any]) -> Any: ...


class SqlTranscriptStore:
    """
    Append-only store of finished conversations, one Conversation row per record.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def append(self, record: Dict[str, Any]) -> str:
        """
        Insert {"user_id", "messages": [{role, content}]} and return the new row id.
        Messages without a timestamp are stamped with the write time.
        """
        written_at = utc_now().isoformat()
        messages = [
            {**m, "timestamp": m.get("timestamp") or written_at}
            for m in record.get("messages") or []
        ]

        session: Session = self.session_factory()
        try:
            conversation = Conversation(
                user_id=record.get("user_id"),
                messages=messages,
            )
            session.add(conversation)
            session.commit()
            return conversation.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

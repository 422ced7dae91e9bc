"""Chat session storage."""

from __future__ import annotations

from typing import List

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from ..core.errors import SessionNotFoundError
from ..core.models import ChatMessage, Conversation, utcnow
from .models import ChatSessionRow


def _to_conversation(row: ChatSessionRow) -> Conversation:
    return Conversation(
        id=row.id,
        user_id=row.user_id,
        repository_id=row.repository_id,
        title=row.title,
        messages=[ChatMessage.from_dict(m) for m in (row.messages or [])],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SessionStore:
    """Stores conversations with their messages inline."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create(self, conversation: Conversation) -> Conversation:
        with self.session_factory() as db:
            db.add(
                ChatSessionRow(
                    id=conversation.id,
                    user_id=conversation.user_id,
                    repository_id=conversation.repository_id,
                    title=conversation.title,
                    messages=[m.to_dict() for m in conversation.messages],
                    created_at=conversation.created_at,
                    updated_at=conversation.updated_at,
                )
            )
            db.commit()
        return conversation

    def get(self, session_id: str, user_id: str) -> Conversation:
        """Load a conversation owned by user_id.

        Raises:
            SessionNotFoundError: If no such conversation exists for the user
        """
        with self.session_factory() as db:
            row = db.get(ChatSessionRow, session_id)
            if row is None or row.user_id != user_id:
                raise SessionNotFoundError(f"chat session {session_id} not found")
            return _to_conversation(row)

    def save(self, conversation: Conversation) -> None:
        with self.session_factory() as db:
            row = db.get(ChatSessionRow, conversation.id)
            if row is None:
                raise SessionNotFoundError(f"chat session {conversation.id} not found")
            row.title = conversation.title
            row.repository_id = conversation.repository_id
            row.messages = [m.to_dict() for m in conversation.messages]
            row.updated_at = utcnow()
            db.commit()

    def list_for_user(self, user_id: str, limit: int = 50) -> List[Conversation]:
        with self.session_factory() as db:
            rows = db.scalars(
                select(ChatSessionRow)
                .where(ChatSessionRow.user_id == user_id)
                .order_by(ChatSessionRow.updated_at.desc())
                .limit(limit)
            )
            return [_to_conversation(row) for row in rows]

    def delete(self, session_id: str, user_id: str) -> None:
        with self.session_factory() as db:
            row = db.get(ChatSessionRow, session_id)
            if row is None or row.user_id != user_id:
                raise SessionNotFoundError(f"chat session {session_id} not found")
            db.delete(row)
            db.commit()

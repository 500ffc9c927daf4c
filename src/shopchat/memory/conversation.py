"""
Conversation Store Implementation.

Append-only message log per conversation id. Content is stored as the
serialized JSON array of content blocks.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from ..domain.entities import StoredMessage
from ..domain.ports import IConversationStore
from ..exceptions import PersistenceError

logger = logging.getLogger(__name__)


CONVERSATION_SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_conversations (
    id TEXT PRIMARY KEY,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS chat_messages (
    id BIGSERIAL PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES chat_conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_chat_messages_conversation
    ON chat_messages (conversation_id, id);
"""


class IAsyncDBPool(Protocol):
    """Protocol for async database pool."""

    def acquire(self): ...
    async def execute(self, query: str, *args) -> str: ...
    async def fetch(self, query: str, *args) -> list[Any]: ...
    async def fetchrow(self, query: str, *args) -> Optional[Any]: ...


class PostgresConversationStore(IConversationStore):
    """PostgreSQL-based conversation store.

    Messages use a BIGSERIAL id, so ordering by id is insertion order.

    Usage:
        store = PostgresConversationStore(db_pool)
        await store.ensure_schema()

        await store.save_message("1700000000000", "user", '[{"type": "text", "text": "hi"}]')
        messages = await store.get_conversation_history("1700000000000")
    """

    def __init__(self, db_pool: IAsyncDBPool):
        """Initialize the conversation store.

        Args:
            db_pool: Async database connection pool
        """
        self.db = db_pool

    async def ensure_schema(self) -> None:
        """Create tables if they do not exist."""
        async with self.db.acquire() as conn:
            await conn.execute(CONVERSATION_SCHEMA)

    async def save_message(
        self, conversation_id: str, role: str, content: str
    ) -> StoredMessage:
        """Append a message, creating the conversation row on first use.

        Raises:
            PersistenceError: If the write fails
        """
        try:
            async with self.db.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO chat_conversations (id) VALUES ($1)
                        ON CONFLICT (id) DO UPDATE SET updated_at = NOW()
                        """,
                        conversation_id,
                    )
                    row = await conn.fetchrow(
                        """
                        INSERT INTO chat_messages (conversation_id, role, content)
                        VALUES ($1, $2, $3)
                        RETURNING id, created_at
                        """,
                        conversation_id,
                        role,
                        content,
                    )
        except Exception as e:
            raise PersistenceError(f"Failed to save message: {e}", cause=e)

        return StoredMessage(
            conversation_id=conversation_id,
            role=role,
            content=content,
            id=row["id"],
            created_at=row["created_at"],
        )

    async def get_conversation_history(
        self, conversation_id: str
    ) -> list[StoredMessage]:
        """Get all messages of a conversation in insertion order."""
        try:
            async with self.db.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, conversation_id, role, content, created_at
                    FROM chat_messages
                    WHERE conversation_id = $1
                    ORDER BY id ASC
                    """,
                    conversation_id,
                )
        except Exception as e:
            raise PersistenceError(f"Failed to load conversation: {e}", cause=e)

        return [
            StoredMessage(
                conversation_id=row["conversation_id"],
                role=row["role"],
                content=row["content"],
                id=row["id"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


class InMemoryConversationStore(IConversationStore):
    """Process-local conversation store (development and tests)."""

    def __init__(self):
        self._messages: dict[str, list[StoredMessage]] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def save_message(
        self, conversation_id: str, role: str, content: str
    ) -> StoredMessage:
        async with self._lock:
            message = StoredMessage(
                conversation_id=conversation_id,
                role=role,
                content=content,
                id=self._next_id,
                created_at=datetime.now(timezone.utc),
            )
            self._next_id += 1
            self._messages.setdefault(conversation_id, []).append(message)
        return message

    async def get_conversation_history(
        self, conversation_id: str
    ) -> list[StoredMessage]:
        return list(self._messages.get(conversation_id, []))

    def conversation_ids(self) -> list[str]:
        return list(self._messages)

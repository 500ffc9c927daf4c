"""
Tests for conversation persistence.

Tests cover:
- In-memory store ordering
- Postgres store queries against a mocked pool
- Customer session store round trip
- ConversationManager fire-and-forget ordering
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.shopchat.domain.entities import (
    CustomerAccountUrls,
    CustomerSession,
    MessageRole,
    TextBlock,
    Turn,
    deserialize_content,
)
from src.shopchat.exceptions import PersistenceError
from src.shopchat.memory import (
    InMemoryConversationStore,
    PostgresConversationStore,
    PostgresCustomerSessionStore,
)
from src.shopchat.orchestrator import ConversationManager


# ============================================
# Helpers
# ============================================


class AsyncContextManager:
    """Helper class to create async context managers for mocking."""

    def __init__(self, return_value):
        self.return_value = return_value

    async def __aenter__(self):
        return self.return_value

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


def text_turn(role, text):
    return Turn(role=role, content=[TextBlock(text=text)])


class SlowFirstStore(InMemoryConversationStore):
    """Store whose first write is slower than the rest."""

    def __init__(self):
        super().__init__()
        self.writes = 0

    async def save_message(self, conversation_id, role, content):
        self.writes += 1
        if self.writes == 1:
            await asyncio.sleep(0.05)
        return await super().save_message(conversation_id, role, content)


# ============================================
# Fixtures
# ============================================


@pytest.fixture
def mock_db_pool():
    """Create a mock database pool."""
    pool = MagicMock()

    mock_conn = AsyncMock()
    mock_conn.execute = AsyncMock()
    mock_conn.fetch = AsyncMock(return_value=[])
    mock_conn.fetchrow = AsyncMock(return_value=None)
    mock_conn.transaction = MagicMock(return_value=AsyncContextManager(None))

    pool.acquire = MagicMock(return_value=AsyncContextManager(mock_conn))
    pool._mock_conn = mock_conn

    return pool


# ============================================
# Stores
# ============================================


class TestInMemoryConversationStore:
    """Tests for InMemoryConversationStore."""

    @pytest.mark.asyncio
    async def test_history_in_insertion_order(self, conversation_store):
        await conversation_store.save_message("c1", "user", "first")
        await conversation_store.save_message("c2", "user", "other")
        await conversation_store.save_message("c1", "assistant", "second")

        history = await conversation_store.get_conversation_history("c1")

        assert [m.content for m in history] == ["first", "second"]
        assert history[0].id < history[1].id
        assert sorted(conversation_store.conversation_ids()) == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_empty(self, conversation_store):
        assert await conversation_store.get_conversation_history("nope") == []


class TestPostgresConversationStore:
    """Tests for PostgresConversationStore with a mocked pool."""

    @pytest.mark.asyncio
    async def test_save_message_upserts_conversation(self, mock_db_pool):
        now = datetime.now(timezone.utc)
        conn = mock_db_pool._mock_conn
        conn.fetchrow = AsyncMock(return_value={"id": 7, "created_at": now})
        store = PostgresConversationStore(mock_db_pool)

        stored = await store.save_message("c1", "user", '[{"type": "text", "text": "hi"}]')

        assert stored.id == 7
        assert stored.created_at == now
        upsert = conn.execute.call_args
        assert "ON CONFLICT (id)" in upsert.args[0]
        assert upsert.args[1] == "c1"
        insert = conn.fetchrow.call_args
        assert "RETURNING id, created_at" in insert.args[0]
        assert insert.args[1:] == ("c1", "user", '[{"type": "text", "text": "hi"}]')
        conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_history_is_ordered_by_id(self, mock_db_pool):
        now = datetime.now(timezone.utc)
        conn = mock_db_pool._mock_conn
        conn.fetch = AsyncMock(
            return_value=[
                {"id": 1, "conversation_id": "c1", "role": "user", "content": "hi", "created_at": now},
                {"id": 2, "conversation_id": "c1", "role": "assistant", "content": "hello", "created_at": now},
            ]
        )
        store = PostgresConversationStore(mock_db_pool)

        history = await store.get_conversation_history("c1")

        assert [m.role for m in history] == ["user", "assistant"]
        assert "ORDER BY id ASC" in conn.fetch.call_args.args[0]

    @pytest.mark.asyncio
    async def test_write_failure_raises_persistence_error(self, mock_db_pool):
        mock_db_pool._mock_conn.execute = AsyncMock(side_effect=ConnectionError("gone"))
        store = PostgresConversationStore(mock_db_pool)

        with pytest.raises(PersistenceError):
            await store.save_message("c1", "user", "hi")

    @pytest.mark.asyncio
    async def test_ensure_schema(self, mock_db_pool):
        await PostgresConversationStore(mock_db_pool).ensure_schema()
        assert "chat_messages" in mock_db_pool._mock_conn.execute.call_args.args[0]


class TestCustomerSessionStores:
    """Tests for customer token and URL storage."""

    @pytest.mark.asyncio
    async def test_in_memory_round_trip(self, session_store):
        session = CustomerSession(conversation_id="c1", access_token="tok")
        urls = CustomerAccountUrls(conversation_id="c1", mcp_api_url="https://acct/mcp")
        await session_store.store_customer_token(session)
        await session_store.store_customer_account_urls(urls)

        assert await session_store.get_customer_token("c1") == session
        assert await session_store.get_customer_account_urls("c1") == urls
        assert await session_store.get_customer_token("c2") is None

    @pytest.mark.asyncio
    async def test_postgres_token_row_mapping(self, mock_db_pool):
        now = datetime.now(timezone.utc)
        mock_db_pool._mock_conn.fetchrow = AsyncMock(
            return_value={
                "conversation_id": "c1",
                "access_token": "tok",
                "refresh_token": None,
                "issued_at": now,
                "expires_at": now - timedelta(seconds=1),
            }
        )
        store = PostgresCustomerSessionStore(mock_db_pool)

        session = await store.get_customer_token("c1")

        assert session.access_token == "tok"
        assert not session.is_usable

    @pytest.mark.asyncio
    async def test_postgres_missing_token(self, mock_db_pool):
        store = PostgresCustomerSessionStore(mock_db_pool)
        assert await store.get_customer_token("c1") is None


# ============================================
# ConversationManager
# ============================================


class TestConversationManager:
    """Tests for history loading and ordered writes."""

    @pytest.mark.asyncio
    async def test_detached_writes_keep_program_order(self):
        store = SlowFirstStore()
        manager = ConversationManager(store)

        manager.persist("c1", text_turn(MessageRole.USER, "one"))
        manager.persist("c1", text_turn(MessageRole.ASSISTANT, "two"))
        manager.persist("c1", text_turn(MessageRole.USER, "three"))
        assert manager.pending == 1

        await manager.drain()

        history = await store.get_conversation_history("c1")
        assert [deserialize_content(m.content)[0].text for m in history] == ["one", "two", "three"]
        assert manager.pending == 0

    @pytest.mark.asyncio
    async def test_save_failure_returns_none(self):
        store = MagicMock()
        store.save_message = AsyncMock(side_effect=PersistenceError("db down"))
        manager = ConversationManager(store)

        assert await manager.save("c1", text_turn(MessageRole.USER, "hi")) is None

    @pytest.mark.asyncio
    async def test_failed_write_does_not_block_later_writes(self, conversation_store):
        calls = []
        original = conversation_store.save_message

        async def flaky(conversation_id, role, content):
            calls.append(role)
            if len(calls) == 1:
                raise ConnectionError("transient")
            return await original(conversation_id, role, content)

        conversation_store.save_message = flaky
        manager = ConversationManager(conversation_store)

        manager.persist("c1", text_turn(MessageRole.USER, "lost"))
        manager.persist("c1", text_turn(MessageRole.ASSISTANT, "kept"))
        await manager.drain()

        history = await conversation_store.get_conversation_history("c1")
        assert [m.role for m in history] == ["assistant"]

    @pytest.mark.asyncio
    async def test_load_history_failure_is_empty(self):
        store = MagicMock()
        store.get_conversation_history = AsyncMock(side_effect=PersistenceError("db down"))

        assert await ConversationManager(store).load_history("c1") == []

    @pytest.mark.asyncio
    async def test_load_history_converts_legacy_rows(self, conversation_store):
        await conversation_store.save_message("c1", "user", "plain legacy text")

        turns = await ConversationManager(conversation_store).load_history("c1")

        assert turns[0].role == MessageRole.USER
        assert turns[0].content == [TextBlock(text="plain legacy text")]

    @pytest.mark.asyncio
    async def test_no_store(self):
        manager = ConversationManager()
        assert manager.persist("c1", text_turn(MessageRole.USER, "hi")) is None
        assert await manager.load_history("c1") == []

"""
Customer Session Store Implementation.

Stores customer access tokens and discovered customer account URLs,
both keyed by conversation id.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..domain.entities import CustomerAccountUrls, CustomerSession
from ..domain.ports import ICustomerSessionStore
from .conversation import IAsyncDBPool

logger = logging.getLogger(__name__)


CUSTOMER_SESSION_SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_customer_tokens (
    conversation_id TEXT PRIMARY KEY,
    access_token TEXT NOT NULL,
    refresh_token TEXT,
    issued_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    expires_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS chat_customer_account_urls (
    conversation_id TEXT PRIMARY KEY,
    mcp_api_url TEXT,
    authorization_url TEXT,
    token_url TEXT,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


class PostgresCustomerSessionStore(ICustomerSessionStore):
    """PostgreSQL-based customer session store.

    Usage:
        store = PostgresCustomerSessionStore(db_pool)
        await store.store_customer_token(session)
        session = await store.get_customer_token(conversation_id)
    """

    def __init__(self, db_pool: IAsyncDBPool):
        self.db = db_pool

    async def ensure_schema(self) -> None:
        """Create tables if they do not exist."""
        async with self.db.acquire() as conn:
            await conn.execute(CUSTOMER_SESSION_SCHEMA)

    async def get_customer_token(
        self, conversation_id: str
    ) -> Optional[CustomerSession]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT conversation_id, access_token, refresh_token, issued_at, expires_at
                FROM chat_customer_tokens
                WHERE conversation_id = $1
                """,
                conversation_id,
            )

        if not row:
            return None

        return CustomerSession(
            conversation_id=row["conversation_id"],
            access_token=row["access_token"],
            issued_at=row["issued_at"],
            expires_at=row["expires_at"],
            refresh_token=row["refresh_token"],
        )

    async def store_customer_token(self, session: CustomerSession) -> None:
        async with self.db.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO chat_customer_tokens (
                    conversation_id, access_token, refresh_token, issued_at, expires_at
                ) VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (conversation_id) DO UPDATE SET
                    access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    issued_at = EXCLUDED.issued_at,
                    expires_at = EXCLUDED.expires_at
                """,
                session.conversation_id,
                session.access_token,
                session.refresh_token,
                session.issued_at,
                session.expires_at,
            )

        logger.debug(f"Stored customer token for conversation {session.conversation_id}")

    async def get_customer_account_urls(
        self, conversation_id: str
    ) -> Optional[CustomerAccountUrls]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT conversation_id, mcp_api_url, authorization_url, token_url
                FROM chat_customer_account_urls
                WHERE conversation_id = $1
                """,
                conversation_id,
            )

        if not row:
            return None

        return CustomerAccountUrls(
            conversation_id=row["conversation_id"],
            mcp_api_url=row["mcp_api_url"],
            authorization_url=row["authorization_url"],
            token_url=row["token_url"],
        )

    async def store_customer_account_urls(self, urls: CustomerAccountUrls) -> None:
        async with self.db.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO chat_customer_account_urls (
                    conversation_id, mcp_api_url, authorization_url, token_url
                ) VALUES ($1, $2, $3, $4)
                ON CONFLICT (conversation_id) DO UPDATE SET
                    mcp_api_url = EXCLUDED.mcp_api_url,
                    authorization_url = EXCLUDED.authorization_url,
                    token_url = EXCLUDED.token_url,
                    updated_at = NOW()
                """,
                urls.conversation_id,
                urls.mcp_api_url,
                urls.authorization_url,
                urls.token_url,
            )


class InMemoryCustomerSessionStore(ICustomerSessionStore):
    """Process-local customer session store (development and tests)."""

    def __init__(self):
        self._tokens: dict[str, CustomerSession] = {}
        self._urls: dict[str, CustomerAccountUrls] = {}

    async def get_customer_token(
        self, conversation_id: str
    ) -> Optional[CustomerSession]:
        return self._tokens.get(conversation_id)

    async def store_customer_token(self, session: CustomerSession) -> None:
        self._tokens[session.conversation_id] = session

    async def get_customer_account_urls(
        self, conversation_id: str
    ) -> Optional[CustomerAccountUrls]:
        return self._urls.get(conversation_id)

    async def store_customer_account_urls(self, urls: CustomerAccountUrls) -> None:
        self._urls[urls.conversation_id] = urls

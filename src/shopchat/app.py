"""FastAPI application for the shop chat agent.

This is the main entry point for the chat API server.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg
import redis.asyncio as redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import create_chat_dependencies
from .api import router as chat_router
from .config import AppConfig
from .domain.entities import SessionContext
from .exceptions import ConfigurationError
from .memory import (
    InMemoryConversationStore,
    InMemoryCustomerSessionStore,
    PostgresConversationStore,
    PostgresCustomerSessionStore,
)
from .orchestrator import (
    AgentConfig,
    AuthorizationGate,
    ChatOrchestrator,
    ConversationManager,
    PromptBuilder,
)
from .providers import AnthropicProvider, LLMProviderConfig
from .security import CustomerAuthService, InMemoryAuthStateStore, RedisAuthStateStore
from .tools import MCPClient, MCPClientConfig

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _build_provider(config: AppConfig) -> Optional[AnthropicProvider]:
    """Create the Anthropic provider, or None if no API key is configured."""
    try:
        api_key = config.api.require_api_key()
    except ConfigurationError as e:
        logger.warning(f"{e} - chat will be unavailable")
        return None

    provider_config = LLMProviderConfig(
        api_key=api_key,
        model=config.api.default_model,
        timeout=config.api.timeout,
        max_retries=config.api.max_retries,
        max_tokens=config.api.max_tokens,
    )
    prompt_builder = PromptBuilder(default_prompt_type=config.api.default_prompt_type)
    logger.info(f"Using Anthropic provider with model: {provider_config.model}")
    return AnthropicProvider(provider_config, prompt_builder)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Initialize database pool, Redis, stores and the orchestrator
    - Shutdown: Drain pending writes, close provider, Redis and database pool
    """
    config: AppConfig = app.state.config
    logger.info("Starting Shop Chat API...")

    db_pool = None
    if config.database_url:
        db_pool = await asyncpg.create_pool(config.database_url, min_size=2, max_size=10)
        conversation_store = PostgresConversationStore(db_pool)
        session_store = PostgresCustomerSessionStore(db_pool)
        await conversation_store.ensure_schema()
        await session_store.ensure_schema()
        logger.info("Database pool initialized")
    else:
        logger.warning("DATABASE_URL not configured - conversations are kept in memory only")
        conversation_store = InMemoryConversationStore()
        session_store = InMemoryCustomerSessionStore()

    redis_client = None
    if config.redis_url:
        try:
            redis_client = redis.from_url(config.redis_url, decode_responses=True)
            await redis_client.ping()
            logger.info(f"Redis connected: {config.redis_url}")
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}")
            redis_client = None
    else:
        logger.warning("REDIS_URL not configured - authorization state is kept in memory only")

    if redis_client:
        state_store = RedisAuthStateStore(redis_client, ttl=config.auth.state_ttl_seconds)
    else:
        state_store = InMemoryAuthStateStore(ttl=config.auth.state_ttl_seconds)

    auth_service = CustomerAuthService(config.auth, state_store, session_store)
    conversations = ConversationManager(conversation_store)
    provider = _build_provider(config)

    def gateway_factory(context: SessionContext) -> MCPClient:
        return MCPClient(
            MCPClientConfig(
                shop_domain=context.shop_domain,
                conversation_id=context.conversation_id,
                shop_id=context.shop_id,
            ),
            session_store,
            auth_service,
        )

    if provider:
        orchestrator = ChatOrchestrator(
            provider=provider,
            gateway_factory=gateway_factory,
            conversations=conversations,
            auth_gate=AuthorizationGate(session_store, auth_service),
            tool_config=config.tools,
            config=AgentConfig(await_persistence=config.await_persistence),
        )
        create_chat_dependencies(orchestrator, auth_service, config)
        logger.info("Chat orchestrator initialized successfully")
    else:
        create_chat_dependencies(None, auth_service, config)

    yield

    # Shutdown (reverse order of initialization)
    logger.info("Shutting down Shop Chat API...")

    await conversations.drain()
    logger.info("Pending conversation writes flushed")

    if provider:
        await provider.close()

    await auth_service.close()

    if redis_client:
        await redis_client.aclose()
        logger.info("Redis connection closed")

    if db_pool:
        await db_pool.close()
        logger.info("Database pool closed")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Application configuration (read from the environment if omitted)
    """
    config = config or AppConfig.from_env()
    _configure_logging(config.log_level)

    app = FastAPI(
        title="Shop Chat Agent API",
        description="Storefront chat assistant backed by Claude and MCP tools.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Authorization", "X-Shopify-Shop-Id"],
    )

    app.include_router(chat_router)
    return app


app = create_app()


# Entry point for running with uvicorn
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.shopchat.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )

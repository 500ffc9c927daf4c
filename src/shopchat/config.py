"""Configuration for the shop chat agent.

Centralizes every configuration value. Values come from the process
environment, with a `.env` file loaded first for local development.

Environment Variables:
- ANTHROPIC_API_KEY / CLAUDE_API_KEY: Anthropic API key (first non-blank wins)
- ANTHROPIC_MODEL: Model name (default: claude-3-5-sonnet-20241022)
- ANTHROPIC_MAX_TOKENS: Max tokens per response (default: 2000)
- DEFAULT_PROMPT_TYPE: System prompt key (default: standardAssistant)
- SHOPIFY_API_KEY: OAuth client id for the customer account API
- CUSTOMER_ACCOUNT_SCOPE: OAuth scope (default: customer-account-mcp-api:full)
- AUTH_REDIRECT_URI: OAuth redirect target (the /auth/callback route)
- AUTH_STATE_TTL_SECONDS: Optional expiry for pending authorization states
- DATABASE_URL: Postgres DSN (in-memory stores when unset)
- REDIS_URL: Redis URL for authorization state (in-memory when unset)
- CORS_ORIGINS: Comma separated allowed origins (default: *)
- AWAIT_PERSISTENCE: Await each message write instead of fire-and-forget
- LOG_LEVEL: Logging level (default: INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass
class ApiConfig:
    """Language-model API settings."""

    api_key: Optional[str] = None
    default_model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = 2000
    default_prompt_type: str = "standardAssistant"
    timeout: float = 60.0
    max_retries: int = 3

    def require_api_key(self) -> str:
        """Return the API key or raise if none is configured."""
        if not self.api_key:
            raise ConfigurationError(
                "Anthropic API key is missing. Set ANTHROPIC_API_KEY in .env"
            )
        return self.api_key


@dataclass
class ErrorMessages:
    """Fixed error strings returned to clients."""

    missing_message: str = "Message is required"
    message_too_long: str = "Message is too long"
    invalid_request: str = "Invalid chat request"
    api_unsupported: str = (
        "This endpoint only supports server-sent events (SSE) requests or history requests."
    )
    auth_failed: str = "Authentication failed with Claude API"
    api_key_error: str = "Please check your API key in environment variables"
    rate_limit_exceeded: str = "Rate limit exceeded"
    rate_limit_details: str = "Please try again later"
    generic_error: str = "Failed to get response from Claude"


@dataclass
class ToolConfig:
    """Tool result handling settings."""

    product_search_name: str = "search_shop_catalog"
    max_products_to_display: int = 3


@dataclass
class AuthConfig:
    """Customer account OAuth settings."""

    client_id: str = ""
    scope: str = "customer-account-mcp-api:full"
    redirect_uri: str = "http://localhost:8000/auth/callback"
    authorization_url_template: str = (
        "https://shopify.com/authentication/{shop_id}/oauth/authorize"
    )
    token_url_template: str = "https://shopify.com/authentication/{shop_id}/oauth/token"
    state_ttl_seconds: Optional[int] = None


@dataclass
class AppConfig:
    """Top-level application configuration."""

    api: ApiConfig = field(default_factory=ApiConfig)
    error_messages: ErrorMessages = field(default_factory=ErrorMessages)
    tools: ToolConfig = field(default_factory=ToolConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    database_url: Optional[str] = None
    redis_url: Optional[str] = None
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    await_persistence: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> AppConfig:
        """Build configuration from environment variables (.env loaded first)."""
        load_dotenv()

        api_key = next(
            (
                key.strip()
                for key in (os.getenv("ANTHROPIC_API_KEY"), os.getenv("CLAUDE_API_KEY"))
                if key and key.strip()
            ),
            None,
        )

        api = ApiConfig(
            api_key=api_key,
            default_model=os.getenv("ANTHROPIC_MODEL", ApiConfig.default_model),
            max_tokens=_env_int("ANTHROPIC_MAX_TOKENS", ApiConfig.max_tokens),
            default_prompt_type=os.getenv(
                "DEFAULT_PROMPT_TYPE", ApiConfig.default_prompt_type
            ),
        )

        auth = AuthConfig(
            client_id=os.getenv("SHOPIFY_API_KEY", ""),
            scope=os.getenv("CUSTOMER_ACCOUNT_SCOPE", AuthConfig.scope),
            redirect_uri=os.getenv("AUTH_REDIRECT_URI", AuthConfig.redirect_uri),
            state_ttl_seconds=_env_int("AUTH_STATE_TTL_SECONDS", None),
        )

        cors_origins = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]

        return cls(
            api=api,
            auth=auth,
            database_url=os.getenv("DATABASE_URL") or None,
            redis_url=os.getenv("REDIS_URL") or None,
            cors_origins=cors_origins or ["*"],
            await_persistence=_env_bool("AWAIT_PERSISTENCE"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

"""
Shop Chat Agent.

A storefront chat assistant that relays a shopper's messages to Claude,
lets the model call storefront and customer account MCP tools, and
gates account-scoped requests behind customer OAuth (PKCE).

Architecture:
- Domain: Core entities and port interfaces
- Providers: Model provider implementation (Anthropic Claude)
- Orchestrator: Turn loop, authorization gate and event emitters
- Tools: MCP client for storefront and customer account tools
- Memory: Conversation and customer session stores
- Security: PKCE, OAuth code exchange and single-use state storage
- API: FastAPI router with SSE streaming
"""

from .config import AppConfig
from .domain.entities import (
    ChatEvent,
    ChatEventType,
    ErrorType,
    MessageRole,
    SessionContext,
    ToolDefinition,
)
from .exceptions import ModelProviderError, ShopChatError
from .orchestrator import (
    AgentConfig,
    BufferedEventEmitter,
    ChatOrchestrator,
    StreamingEventEmitter,
)

__all__ = [
    "AppConfig",
    "ChatEvent",
    "ChatEventType",
    "ErrorType",
    "MessageRole",
    "SessionContext",
    "ToolDefinition",
    "ModelProviderError",
    "ShopChatError",
    "AgentConfig",
    "BufferedEventEmitter",
    "ChatOrchestrator",
    "StreamingEventEmitter",
]

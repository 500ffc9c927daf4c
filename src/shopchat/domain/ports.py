"""
Port interfaces (abstract base classes) for the chat module.

These define the contracts that adapters must implement.
Following the Ports & Adapters (Hexagonal) architecture pattern.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

if TYPE_CHECKING:
    from .entities import (
        AuthorizationState,
        ChatEvent,
        ContentBlock,
        CustomerAccountUrls,
        CustomerSession,
        FinalMessage,
        StoredMessage,
        ToolDefinition,
        ToolUseBlock,
        Turn,
    )


# ============================================
# Model Provider Interface
# ============================================


@dataclass
class StreamHandlers:
    """Callbacks invoked by a model provider while a response streams.

    Attributes:
        on_text: Incremental text delta
        on_content_block: A structural content block finished
        on_message: The complete message (exactly once per invocation)
        on_tool_use: One call per tool_use block, after on_message
    """

    on_text: Optional[Callable[[str], Awaitable[None]]] = None
    on_content_block: Optional[Callable[[ContentBlock], Awaitable[None]]] = None
    on_message: Optional[Callable[[FinalMessage], Awaitable[None]]] = None
    on_tool_use: Optional[Callable[[ToolUseBlock], Awaitable[None]]] = None


class IModelProvider(ABC):
    """Interface for language-model providers.

    One invocation is one streamed model call. Implementations normalize
    their SDK's stream into StreamHandlers callbacks.
    """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier."""
        pass

    @abstractmethod
    async def invoke(
        self,
        history: list[Turn],
        prompt_type: Optional[str],
        tools: list[ToolDefinition],
        handlers: StreamHandlers,
    ) -> FinalMessage:
        """Run one model invocation over the working history.

        Args:
            history: Conversation turns, oldest first
            prompt_type: System prompt key (falls back to the default)
            tools: Tools the model may call
            handlers: Stream callbacks

        Returns:
            The final message of the invocation

        Raises:
            ModelProviderError: On any provider failure
        """
        pass

    async def close(self) -> None:
        """Release provider resources."""
        pass


# ============================================
# Tool Gateway Interface
# ============================================


class IToolGateway(ABC):
    """Interface for the per-session tool gateway (MCP servers)."""

    @property
    @abstractmethod
    def tools(self) -> list[ToolDefinition]:
        """Tools discovered by connect()."""
        pass

    @abstractmethod
    async def connect(self) -> list[ToolDefinition]:
        """Discover tools from every capability domain."""
        pass

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Call a tool.

        Never raises for tool-level failures. The returned envelope holds an
        `error` key (with `type` and optional `data`) on failure, otherwise
        the tool result (typically `content`).
        """
        pass

    async def close(self) -> None:
        """Release gateway resources."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# ============================================
# Event Emitter Interface
# ============================================


class IEventEmitter(ABC):
    """Delivery of client-facing events for one session."""

    @abstractmethod
    async def send(self, event: ChatEvent) -> None:
        """Deliver one event. Must not raise on delivery failure."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Finish delivery. Idempotent."""
        pass

    @abstractmethod
    async def on_error(self, error: BaseException) -> None:
        """Classify a fatal session error and deliver it."""
        pass


# ============================================
# Conversation Store Interface
# ============================================


class IConversationStore(ABC):
    """Interface for conversation persistence (append-only)."""

    @abstractmethod
    async def save_message(
        self, conversation_id: str, role: str, content: str
    ) -> StoredMessage:
        """Append a message with serialized content to a conversation."""
        pass

    @abstractmethod
    async def get_conversation_history(
        self, conversation_id: str
    ) -> list[StoredMessage]:
        """Get all messages of a conversation in insertion order."""
        pass

    async def close(self) -> None:
        pass


# ============================================
# Customer Session Store Interface
# ============================================


class ICustomerSessionStore(ABC):
    """Interface for customer tokens and discovered account URLs."""

    @abstractmethod
    async def get_customer_token(
        self, conversation_id: str
    ) -> Optional[CustomerSession]:
        pass

    @abstractmethod
    async def store_customer_token(self, session: CustomerSession) -> None:
        pass

    @abstractmethod
    async def get_customer_account_urls(
        self, conversation_id: str
    ) -> Optional[CustomerAccountUrls]:
        pass

    @abstractmethod
    async def store_customer_account_urls(self, urls: CustomerAccountUrls) -> None:
        pass


# ============================================
# Authorization State Store Interface
# ============================================


class IAuthStateStore(ABC):
    """Interface for pending PKCE authorization states."""

    @abstractmethod
    async def store_code_verifier(self, state: AuthorizationState) -> None:
        """Store a pending authorization under its state key."""
        pass

    @abstractmethod
    async def consume_code_verifier(
        self, state_key: str
    ) -> Optional[AuthorizationState]:
        """Atomically fetch and delete a pending authorization.

        Returns:
            The state on the first call for a key, None afterwards
        """
        pass

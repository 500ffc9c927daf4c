"""
Domain entities for the shop chat agent.

These are pure domain objects with no infrastructure dependencies.
They define the core data structures used throughout the chat module.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Union


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# Session Context
# ============================================


@dataclass(frozen=True)
class SessionContext:
    """Everything the orchestrator needs to know about one incoming message.

    Attributes:
        conversation_id: Opaque conversation identifier
        user_message: The trimmed, non-empty user message
        prompt_type: System prompt key
        shop_id: Shop identifier (from the X-Shopify-Shop-Id header)
        shop_domain: Storefront origin, e.g. https://example.myshopify.com
    """

    conversation_id: str
    user_message: str
    prompt_type: str
    shop_id: Optional[str] = None
    shop_domain: str = ""

    def __post_init__(self):
        if not self.conversation_id:
            raise ValueError("conversation_id is required")
        if not self.user_message:
            raise ValueError("user_message is required")


def new_conversation_id() -> str:
    """Derive a conversation id from the current time in milliseconds."""
    return str(int(time.time() * 1000))


# ============================================
# Content Blocks
# ============================================


class MessageRole(str, Enum):
    """Role of a turn in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class TextBlock:
    """Plain text content."""

    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool call requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass(frozen=True)
class ToolResultBlock:
    """The outcome of a tool call, fed back to the model.

    Attributes:
        tool_use_id: ID of the ToolUseBlock this answers
        content: Tool output (string or list of MCP content items)
        is_error: True when the tool failed
    """

    tool_use_id: str
    content: Any = None
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        result = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            result["is_error"] = True
        return result


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]
CONTENT_BLOCK_TYPES = (TextBlock, ToolUseBlock, ToolResultBlock)


def parse_content_block(data: dict[str, Any]) -> ContentBlock:
    """Build a content block from its wire (dict) form.

    Raises:
        ValueError: If the block type is not text, tool_use or tool_result
    """
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(text=data.get("text", ""))
    if block_type == "tool_use":
        return ToolUseBlock(
            id=data.get("id", ""),
            name=data.get("name", ""),
            input=data.get("input") or {},
        )
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=data.get("tool_use_id", ""),
            content=data.get("content"),
            is_error=bool(data.get("is_error", False)),
        )
    raise ValueError(f"Unsupported content block type: {block_type!r}")


def normalize_content(content: Any) -> list[ContentBlock]:
    """Normalize any accepted content shape into a list of content blocks.

    Accepts a list of blocks (or their dict form), a single block dict, or a
    plain string. Normalizing an already-normalized list returns an equal list.
    """
    if isinstance(content, list):
        blocks: list[ContentBlock] = []
        for item in content:
            if isinstance(item, CONTENT_BLOCK_TYPES):
                blocks.append(item)
            elif isinstance(item, dict) and item.get("type"):
                blocks.append(parse_content_block(item))
            elif isinstance(item, str):
                blocks.append(TextBlock(text=item))
            else:
                blocks.append(TextBlock(text=json.dumps(item)))
        return blocks

    if isinstance(content, CONTENT_BLOCK_TYPES):
        return [content]

    if isinstance(content, dict) and content.get("type"):
        return [parse_content_block(content)]

    if isinstance(content, str):
        return [TextBlock(text=content)]

    return [TextBlock(text=json.dumps(content) if content is not None else "")]


def serialize_content(content: list[ContentBlock]) -> str:
    """Serialize content blocks to the persisted JSON form."""
    return json.dumps([block.to_dict() for block in content])


def deserialize_content(raw: Any) -> list[ContentBlock]:
    """Rebuild content blocks from persisted content.

    Legacy rows hold a plain string rather than a JSON array; those (and
    strings that happen to parse as JSON scalars) become one TextBlock.
    """
    if not isinstance(raw, str):
        return normalize_content(raw)

    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return [TextBlock(text=raw)]

    if isinstance(parsed, (list, dict)):
        try:
            return normalize_content(parsed)
        except ValueError:
            return [TextBlock(text=raw)]

    return [TextBlock(text=raw)]


# ============================================
# Turns & History
# ============================================


@dataclass
class Turn:
    """One role-tagged message composed of ordered content blocks."""

    role: MessageRole
    content: list[ContentBlock]

    def to_api_format(self) -> dict[str, Any]:
        """Convert to the Anthropic messages format."""
        return {
            "role": self.role.value,
            "content": [block.to_dict() for block in self.content],
        }


@dataclass
class StoredMessage:
    """A persisted turn as returned by a conversation store.

    Attributes:
        conversation_id: Parent conversation ID
        role: Stored role string
        content: Serialized content (JSON array or legacy plain string)
        id: Store-assigned identifier (monotonic within a store)
        created_at: Persistence timestamp
    """

    conversation_id: str
    role: str
    content: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_turn(self) -> Turn:
        role = MessageRole.ASSISTANT if self.role == "assistant" else MessageRole.USER
        return Turn(role=role, content=deserialize_content(self.content))


@dataclass
class WorkingHistory:
    """In-memory copy of a conversation for the duration of one session.

    Seeded from the conversation store, appended to as the model and tools
    produce turns, and discarded when the session ends.
    """

    conversation_id: str
    turns: list[Turn] = field(default_factory=list)

    def append(self, turn: Turn) -> Turn:
        self.turns.append(turn)
        return turn

    def __len__(self) -> int:
        return len(self.turns)


# ============================================
# Model Output
# ============================================


class StopReason(str, Enum):
    """Stop reasons reported by the model."""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    STOP_SEQUENCE = "stop_sequence"


@dataclass
class FinalMessage:
    """The completed message of one model invocation.

    Attributes:
        content: Content blocks of the assistant message
        stop_reason: Raw stop reason string, None if the provider gave none
        role: Always assistant for model output
    """

    content: list[ContentBlock]
    stop_reason: Optional[str] = None
    role: MessageRole = MessageRole.ASSISTANT

    @property
    def is_end_turn(self) -> bool:
        return self.stop_reason == StopReason.END_TURN.value

    def to_turn(self) -> Turn:
        return Turn(role=self.role, content=list(self.content))


# ============================================
# Tool System
# ============================================


@dataclass
class ToolDefinition:
    """Definition of an available tool.

    Attributes:
        name: Tool name (e.g., 'search_shop_catalog')
        description: Human-readable description
        parameters: JSON Schema for parameters
        is_customer_tool: True if served by the authenticated customer domain
    """

    name: str
    description: str
    parameters: dict[str, Any]
    is_customer_tool: bool = False

    def to_anthropic_format(self) -> dict[str, Any]:
        """Convert to Anthropic tool use format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


@dataclass(frozen=True)
class ToolInvocation:
    """A single tool call requested by the model, consumed exactly once."""

    name: str
    arguments: dict[str, Any]
    call_id: str

    @classmethod
    def from_block(cls, block: ToolUseBlock) -> ToolInvocation:
        return cls(name=block.name, arguments=dict(block.input), call_id=block.id)


@dataclass
class ToolSuccess:
    """Successful tool outcome.

    Attributes:
        payload: Content handed back to the model
        display_items: Items the client should render (e.g. products)
    """

    payload: Any
    display_items: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ToolFailure:
    """Failed tool outcome.

    Attributes:
        error_detail: Error content handed back to the model
        error_type: Gateway error classification (e.g. 'auth_required')
    """

    error_detail: Any
    error_type: Optional[str] = None

    @property
    def requires_authorization(self) -> bool:
        return self.error_type == "auth_required"


ToolOutcome = Union[ToolSuccess, ToolFailure]


# ============================================
# Customer Authorization
# ============================================


def authorization_state_key(conversation_id: str, shop_id: Optional[str]) -> str:
    """Composite OAuth state token for a conversation and shop."""
    return f"{conversation_id}-{shop_id}"


@dataclass
class AuthorizationState:
    """A pending PKCE authorization, redeemable once by the OAuth callback."""

    conversation_id: str
    shop_id: Optional[str]
    code_verifier: str
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def state(self) -> str:
        return authorization_state_key(self.conversation_id, self.shop_id)

    def to_json(self) -> str:
        return json.dumps(
            {
                "conversation_id": self.conversation_id,
                "shop_id": self.shop_id,
                "code_verifier": self.code_verifier,
                "created_at": self.created_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, data: str) -> AuthorizationState:
        raw = json.loads(data)
        return cls(
            conversation_id=raw["conversation_id"],
            shop_id=raw.get("shop_id"),
            code_verifier=raw["code_verifier"],
            created_at=datetime.fromisoformat(raw["created_at"]),
        )

    def is_expired(self, max_age_seconds: Optional[int]) -> bool:
        if max_age_seconds is None:
            return False
        return _utcnow() - self.created_at > timedelta(seconds=max_age_seconds)


@dataclass
class CustomerSession:
    """A customer access token bound to a conversation."""

    conversation_id: str
    access_token: str
    issued_at: datetime = field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None

    def is_expired(self) -> bool:
        return self.expires_at is not None and _utcnow() >= self.expires_at

    @property
    def is_usable(self) -> bool:
        return bool(self.access_token) and not self.is_expired()


@dataclass
class CustomerAccountUrls:
    """Customer account endpoints discovered for a shop."""

    conversation_id: str
    mcp_api_url: Optional[str] = None
    authorization_url: Optional[str] = None
    token_url: Optional[str] = None


# ============================================
# Streaming Events
# ============================================


class ChatEventType(str, Enum):
    """Types of client-facing chat events."""

    ID = "id"  # Carries the conversation id
    CHUNK = "chunk"  # Incremental text
    MESSAGE_COMPLETE = "message_complete"  # One assistant message finished
    TOOL_USE = "tool_use"  # Description of an in-flight tool call
    CONTENT_BLOCK_COMPLETE = "content_block_complete"  # Text block finished
    NEW_MESSAGE = "new_message"  # Tool result folded in, more output coming
    AUTH_REQUIRED = "auth_required"  # Customer tool rejected the session
    END_TURN = "end_turn"  # Multi-turn exchange finished
    PRODUCT_RESULTS = "product_results"  # Terminal list of products
    DONE = "done"  # Authorization prompt finished
    ERROR = "error"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


class ErrorType(str, Enum):
    """Classification of fatal session errors."""

    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    GENERIC = "generic"


@dataclass
class ChatEvent:
    """A client-facing chat event.

    Serialized as a flat JSON object `{type, ...payload}`.
    """

    type: ChatEventType
    conversation_id: Optional[str] = None
    chunk: Optional[str] = None
    tool_use_message: Optional[str] = None
    content_block: Optional[dict[str, Any]] = None
    products: Optional[list[dict[str, Any]]] = None
    error: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"type": self.type.value}
        if self.conversation_id is not None:
            result["conversation_id"] = self.conversation_id
        if self.chunk is not None:
            result["chunk"] = self.chunk
        if self.tool_use_message is not None:
            result["tool_use_message"] = self.tool_use_message
        if self.content_block is not None:
            result["content_block"] = self.content_block
        if self.products is not None:
            result["products"] = self.products
        if self.error is not None:
            result["error"] = self.error
        if self.details is not None:
            result["details"] = self.details
        return result

    @classmethod
    def id(cls, conversation_id: str) -> ChatEvent:
        return cls(type=ChatEventType.ID, conversation_id=conversation_id)

    @classmethod
    def text_chunk(cls, text: str) -> ChatEvent:
        return cls(type=ChatEventType.CHUNK, chunk=text)

    @classmethod
    def message_complete(cls) -> ChatEvent:
        return cls(type=ChatEventType.MESSAGE_COMPLETE)

    @classmethod
    def tool_use(cls, name: str, arguments: dict[str, Any]) -> ChatEvent:
        return cls(
            type=ChatEventType.TOOL_USE,
            tool_use_message=f"Calling tool: {name} with arguments: {json.dumps(arguments)}",
        )

    @classmethod
    def content_block_complete(cls, block: ContentBlock) -> ChatEvent:
        return cls(type=ChatEventType.CONTENT_BLOCK_COMPLETE, content_block=block.to_dict())

    @classmethod
    def new_message(cls) -> ChatEvent:
        return cls(type=ChatEventType.NEW_MESSAGE)

    @classmethod
    def auth_required(cls) -> ChatEvent:
        return cls(type=ChatEventType.AUTH_REQUIRED)

    @classmethod
    def end_turn(cls) -> ChatEvent:
        return cls(type=ChatEventType.END_TURN)

    @classmethod
    def product_results(cls, products: list[dict[str, Any]]) -> ChatEvent:
        return cls(type=ChatEventType.PRODUCT_RESULTS, products=list(products))

    @classmethod
    def done(cls) -> ChatEvent:
        return cls(type=ChatEventType.DONE)

    @classmethod
    def error_event(
        cls,
        error: str,
        details: Optional[str] = None,
        error_type: ErrorType = ErrorType.GENERIC,
    ) -> ChatEvent:
        """Create an error event; rate limits get their own event type."""
        event_type = (
            ChatEventType.RATE_LIMIT_EXCEEDED
            if error_type == ErrorType.RATE_LIMIT
            else ChatEventType.ERROR
        )
        return cls(type=event_type, error=error, details=details)

"""Domain entities and port interfaces."""

from .entities import (
    AuthorizationState,
    ChatEvent,
    ChatEventType,
    CustomerAccountUrls,
    CustomerSession,
    ErrorType,
    FinalMessage,
    MessageRole,
    SessionContext,
    StoredMessage,
    TextBlock,
    ToolDefinition,
    ToolFailure,
    ToolInvocation,
    ToolResultBlock,
    ToolSuccess,
    ToolUseBlock,
    Turn,
    WorkingHistory,
    deserialize_content,
    normalize_content,
    serialize_content,
)
from .ports import (
    IAuthStateStore,
    IConversationStore,
    ICustomerSessionStore,
    IEventEmitter,
    IModelProvider,
    IToolGateway,
    StreamHandlers,
)

__all__ = [
    "AuthorizationState",
    "ChatEvent",
    "ChatEventType",
    "CustomerAccountUrls",
    "CustomerSession",
    "ErrorType",
    "FinalMessage",
    "MessageRole",
    "SessionContext",
    "StoredMessage",
    "TextBlock",
    "ToolDefinition",
    "ToolFailure",
    "ToolInvocation",
    "ToolResultBlock",
    "ToolSuccess",
    "ToolUseBlock",
    "Turn",
    "WorkingHistory",
    "deserialize_content",
    "normalize_content",
    "serialize_content",
    "IAuthStateStore",
    "IConversationStore",
    "ICustomerSessionStore",
    "IEventEmitter",
    "IModelProvider",
    "IToolGateway",
    "StreamHandlers",
]

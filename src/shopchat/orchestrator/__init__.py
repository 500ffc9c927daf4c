"""Chat Orchestrator.

The orchestrator coordinates all components of a chat session:
- Authorization gate for account-scoped requests
- Model provider for response generation
- Tool gateway for MCP tool calls
- Conversation persistence
- Event emitters for streaming and buffered delivery
"""

from .agent import AgentConfig, ChatOrchestrator
from .auth_gate import AuthorizationGate, Authorized, NeedsAuthorization
from .conversation_manager import ConversationManager
from .event_streamer import (
    BufferedEventEmitter,
    BufferedResult,
    StreamingEventEmitter,
    classify_error,
)
from .prompt_builder import PromptBuilder
from .tool_executor import ToolExecutor

__all__ = [
    # Main orchestrator
    "ChatOrchestrator",
    "AgentConfig",
    # Gate
    "AuthorizationGate",
    "Authorized",
    "NeedsAuthorization",
    # Core managers
    "ConversationManager",
    "ToolExecutor",
    "PromptBuilder",
    # Emitters
    "StreamingEventEmitter",
    "BufferedEventEmitter",
    "BufferedResult",
    "classify_error",
]

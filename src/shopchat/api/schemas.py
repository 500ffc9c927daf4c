"""
Pydantic schemas for the chat API.

Defines request/response models for the chat endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Constants
# =============================================================================

MAX_MESSAGE_LENGTH = 10000


# =============================================================================
# Chat Schemas
# =============================================================================


class ChatRequest(BaseModel):
    """Request to send a chat message.

    Message emptiness is checked by the route so the client gets the fixed
    `{"error": "Message is required"}` document rather than a 422.
    """

    message: Optional[str] = Field(default=None, max_length=MAX_MESSAGE_LENGTH)
    conversation_id: Optional[str] = None
    prompt_type: Optional[str] = None

    @field_validator("conversation_id", mode="before")
    @classmethod
    def _stringify_conversation_id(cls, value: Any) -> Any:
        # Clients may send the millisecond timestamp id as a number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    class Config:
        json_schema_extra = {
            "example": {
                "message": "Do you have any green tea?",
                "conversation_id": "1700000000000",
                "prompt_type": "standardAssistant",
            }
        }


class ChatResponse(BaseModel):
    """Buffered (non-streaming) chat response."""

    conversation_id: str
    message: str
    products: list[dict[str, Any]] = Field(default_factory=list)
    events: list[dict[str, Any]] = Field(default_factory=list)
    error: Optional[dict[str, Any]] = None


# =============================================================================
# History Schemas
# =============================================================================


class HistoryMessage(BaseModel):
    """A stored message."""

    role: str
    content: list[dict[str, Any]]
    created_at: Optional[datetime] = None


class HistoryResponse(BaseModel):
    """Stored messages of a conversation."""

    conversation_id: str
    messages: list[HistoryMessage] = Field(default_factory=list)


# =============================================================================
# Auth Schemas
# =============================================================================


class AuthCallbackResponse(BaseModel):
    """Result of a successful OAuth callback."""

    status: str = "authorized"
    conversation_id: str
    message: str = "Authorization complete. You can return to the chat."

"""
Base Model Provider Implementation.

Provides common functionality for all model providers.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from ..domain.entities import FinalMessage, ToolDefinition, Turn
from ..domain.ports import IModelProvider, StreamHandlers
from ..orchestrator.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)


@dataclass
class LLMProviderConfig:
    """Configuration for model providers.

    Attributes:
        api_key: API key for the provider
        model: Model name to use
        base_url: Optional custom base URL
        timeout: Request timeout in seconds
        max_retries: Retry attempts performed by the SDK client
        max_tokens: Max tokens per response
    """

    api_key: str
    model: str
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 3
    max_tokens: int = 2000


class BaseModelProvider(IModelProvider, ABC):
    """Base class for model provider implementations.

    Handles system prompt resolution and request formatting.
    Subclasses implement invoke() for a specific API.
    """

    def __init__(
        self,
        config: LLMProviderConfig,
        prompt_builder: Optional[PromptBuilder] = None,
    ):
        """Initialize the provider.

        Args:
            config: Provider configuration
            prompt_builder: System prompt catalog (default catalog if omitted)
        """
        self.config = config
        self.prompt_builder = prompt_builder or PromptBuilder()

    @property
    def model_name(self) -> str:
        """Return the model name."""
        return self.config.model

    def _system_prompt(self, prompt_type: Optional[str]) -> str:
        return self.prompt_builder.build(prompt_type)

    def _format_messages_for_api(self, history: list[Turn]) -> list[dict[str, Any]]:
        """Convert turns to API format.

        Adjacent turns with the same role are merged into one message, since
        tool results are stored one turn per result but the API expects
        alternating roles.
        """
        result: list[dict[str, Any]] = []
        for turn in history:
            api_msg = turn.to_api_format()
            if not api_msg["content"]:
                continue
            if result and result[-1]["role"] == api_msg["role"]:
                result[-1]["content"] = result[-1]["content"] + api_msg["content"]
            else:
                result.append(api_msg)
        return result

    def _format_tools_for_api(
        self, tools: list[ToolDefinition]
    ) -> list[dict[str, Any]]:
        """Convert tool definitions to API format."""
        return [tool.to_anthropic_format() for tool in tools]

    @abstractmethod
    async def invoke(
        self,
        history: list[Turn],
        prompt_type: Optional[str],
        tools: list[ToolDefinition],
        handlers: StreamHandlers,
    ) -> FinalMessage:
        """Run one model invocation. Must be implemented by subclasses."""
        pass

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

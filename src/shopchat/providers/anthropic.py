"""
Anthropic Claude Model Provider.

Implements the IModelProvider interface for Anthropic's Claude models.
One invoke() is one streamed Messages API call; the SDK stream is
normalized into StreamHandlers callbacks.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import anthropic
from anthropic import AsyncAnthropic

from ..domain.entities import (
    ContentBlock,
    FinalMessage,
    TextBlock,
    ToolDefinition,
    ToolUseBlock,
    Turn,
)
from ..domain.ports import StreamHandlers
from ..exceptions import ModelProviderError
from ..orchestrator.prompt_builder import PromptBuilder
from .base import BaseModelProvider, LLMProviderConfig

logger = logging.getLogger(__name__)


def _block_from_sdk(block: Any) -> Optional[ContentBlock]:
    """Convert an SDK content block to a domain block.

    Returns None for block types the chat loop does not use (thinking etc).
    """
    block_type = getattr(block, "type", None)
    if block_type == "text":
        return TextBlock(text=block.text)
    if block_type == "tool_use":
        return ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {}))
    return None


class AnthropicProvider(BaseModelProvider):
    """Anthropic Claude provider implementation.

    Usage:
        config = LLMProviderConfig(
            api_key="sk-ant-...",
            model="claude-3-5-sonnet-20241022",
        )
        provider = AnthropicProvider(config)

        final = await provider.invoke(history, "standardAssistant", tools, handlers)
    """

    DEFAULT_MODEL = "claude-3-5-sonnet-20241022"

    def __init__(
        self,
        config: LLMProviderConfig,
        prompt_builder: Optional[PromptBuilder] = None,
    ):
        """Initialize the Anthropic provider.

        Args:
            config: Provider configuration
            prompt_builder: System prompt catalog
        """
        super().__init__(config, prompt_builder)

        self.client = AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    async def invoke(
        self,
        history: list[Turn],
        prompt_type: Optional[str],
        tools: list[ToolDefinition],
        handlers: StreamHandlers,
    ) -> FinalMessage:
        """Stream one response from Claude.

        Text deltas and finished text blocks are delivered while streaming.
        on_message and on_tool_use run after the stream has completed.

        Args:
            history: Conversation turns
            prompt_type: System prompt key
            tools: Available tools (omitted from the request when empty)
            handlers: Stream callbacks

        Returns:
            FinalMessage for this invocation

        Raises:
            ModelProviderError: If the API call fails
        """
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "system": self._system_prompt(prompt_type),
            "messages": self._format_messages_for_api(history),
        }

        if tools:
            kwargs["tools"] = self._format_tools_for_api(tools)

        try:
            async with self.client.messages.stream(**kwargs) as stream_response:
                async for event in stream_response:
                    event_type = getattr(event, "type", None)

                    if event_type == "text":
                        if handlers.on_text and event.text:
                            await handlers.on_text(event.text)

                    elif event_type == "content_block_stop":
                        block = _block_from_sdk(getattr(event, "content_block", None))
                        if block is not None and handlers.on_content_block:
                            await handlers.on_content_block(block)

                response = await stream_response.get_final_message()

        except anthropic.RateLimitError as e:
            logger.warning(f"Rate limited by Anthropic: {e}")
            raise ModelProviderError(str(e), status_code=e.status_code, cause=e)
        except anthropic.APIStatusError as e:
            logger.error(f"Anthropic API error ({e.status_code}): {e}")
            raise ModelProviderError(str(e), status_code=e.status_code, cause=e)
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise ModelProviderError(str(e), cause=e)
        except Exception as e:
            logger.exception(f"Unexpected error in Anthropic stream: {e}")
            raise ModelProviderError(
                str(e), status_code=getattr(e, "status_code", None), cause=e
            )

        content = [
            block
            for block in (_block_from_sdk(b) for b in response.content)
            if block is not None
        ]
        final = FinalMessage(content=content, stop_reason=response.stop_reason)

        if handlers.on_message:
            await handlers.on_message(final)

        if handlers.on_tool_use:
            for block in content:
                if isinstance(block, ToolUseBlock):
                    await handlers.on_tool_use(block)

        return final

    async def close(self) -> None:
        """Close the client."""
        await self.client.close()

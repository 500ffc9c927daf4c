"""
Prompt Builder for the Chat Orchestrator.

Resolves a prompt-type key to a system prompt. Unknown keys fall back
to the default prompt type.
"""

from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)


STANDARD_ASSISTANT_PROMPT = """You are a helpful shopping assistant for an online store.

You help customers find products, answer questions about the store's catalog and
policies, and manage their cart. When customers ask about their account, orders or
order tracking, use the customer account tools available to you.

Guidelines:
- Use the catalog search tool to find products instead of guessing
- Keep answers short and friendly
- Never invent prices, availability or order details
- If a tool fails, explain the problem briefly and offer an alternative"""

ENTHUSIASTIC_ASSISTANT_PROMPT = """You are an upbeat, enthusiastic shopping assistant for an online store!

You love helping customers discover products they'll adore. Search the store's catalog
to recommend great matches, answer questions about products and policies, and help
customers with their cart, account and orders using the tools available to you.

Guidelines:
- Use the catalog search tool to find products instead of guessing
- Be warm and energetic, but keep answers concise
- Never invent prices, availability or order details
- If a tool fails, apologize briefly and suggest what to try next"""


DEFAULT_PROMPTS: dict[str, str] = {
    "standardAssistant": STANDARD_ASSISTANT_PROMPT,
    "enthusiasticAssistant": ENTHUSIASTIC_ASSISTANT_PROMPT,
}


class PromptBuilder:
    """Manages system prompt selection for the chat agent.

    Usage:
        prompt_builder = PromptBuilder(default_prompt_type="standardAssistant")
        system_prompt = prompt_builder.build("enthusiasticAssistant")
    """

    def __init__(
        self,
        prompts: Optional[dict[str, str]] = None,
        default_prompt_type: str = "standardAssistant",
    ):
        """Initialize the prompt builder.

        Args:
            prompts: Prompt catalog keyed by prompt type
            default_prompt_type: Key used when a requested type is unknown
        """
        self.prompts = dict(prompts if prompts is not None else DEFAULT_PROMPTS)
        if default_prompt_type not in self.prompts:
            raise ValueError(f"Default prompt type not in catalog: {default_prompt_type}")
        self.default_prompt_type = default_prompt_type

    @property
    def prompt_types(self) -> list[str]:
        return list(self.prompts)

    def build(self, prompt_type: Optional[str] = None) -> str:
        """Return the system prompt for a prompt type.

        Args:
            prompt_type: Requested prompt key (None means the default)

        Returns:
            The matching prompt, or the default prompt for unknown keys
        """
        if prompt_type and prompt_type in self.prompts:
            return self.prompts[prompt_type]

        if prompt_type:
            logger.debug(
                f"Unknown prompt type '{prompt_type}', using '{self.default_prompt_type}'"
            )
        return self.prompts[self.default_prompt_type]

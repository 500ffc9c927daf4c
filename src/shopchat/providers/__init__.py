"""Model provider implementations."""

from .base import BaseModelProvider, LLMProviderConfig
from .anthropic import AnthropicProvider

__all__ = [
    "BaseModelProvider",
    "LLMProviderConfig",
    "AnthropicProvider",
]

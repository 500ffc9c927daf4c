"""HTTP API for the shop chat agent."""

from .router import create_chat_dependencies, router

__all__ = ["router", "create_chat_dependencies"]

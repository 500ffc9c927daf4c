"""Persistence for conversations and customer sessions."""

from .conversation import InMemoryConversationStore, PostgresConversationStore
from .customer_sessions import InMemoryCustomerSessionStore, PostgresCustomerSessionStore

__all__ = [
    "InMemoryConversationStore",
    "PostgresConversationStore",
    "InMemoryCustomerSessionStore",
    "PostgresCustomerSessionStore",
]

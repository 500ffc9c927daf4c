"""Fixtures for chat tests."""

import pytest

from fakes import MockRedis
from src.shopchat.config import AuthConfig
from src.shopchat.memory import InMemoryConversationStore, InMemoryCustomerSessionStore
from src.shopchat.security import CustomerAuthService, InMemoryAuthStateStore


@pytest.fixture
def redis():
    """Create a mock Redis client."""
    return MockRedis()


@pytest.fixture
def conversation_store():
    return InMemoryConversationStore()


@pytest.fixture
def session_store():
    return InMemoryCustomerSessionStore()


@pytest.fixture
def state_store():
    return InMemoryAuthStateStore()


@pytest.fixture
def auth_config():
    return AuthConfig(
        client_id="client-123",
        redirect_uri="https://chat.example.com/auth/callback",
    )


@pytest.fixture
def auth_service(auth_config, state_store, session_store):
    return CustomerAuthService(auth_config, state_store, session_store)

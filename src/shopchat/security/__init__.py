"""Customer authorization: PKCE, OAuth code exchange and state storage."""

from .auth_state import InMemoryAuthStateStore, RedisAuthStateStore
from .oauth import CustomerAuthService
from .pkce import generate_code_challenge, generate_code_verifier

__all__ = [
    "CustomerAuthService",
    "InMemoryAuthStateStore",
    "RedisAuthStateStore",
    "generate_code_challenge",
    "generate_code_verifier",
]

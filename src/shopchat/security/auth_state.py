"""
Pending authorization state storage.

Holds the PKCE code verifier of each in-flight customer authorization,
keyed by the OAuth state token. States are single-use: the callback
consumes a state exactly once, even under concurrent redemption.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional, Protocol

from ..domain.entities import AuthorizationState
from ..domain.ports import IAuthStateStore

logger = logging.getLogger(__name__)


class IRedisClient(Protocol):
    """Protocol for Redis client (for dependency injection)."""

    async def set(self, key: str, value: str) -> None:
        """Set a key without expiration."""
        ...

    async def setex(self, key: str, ttl: int, value: str) -> None:
        """Set a key with expiration."""
        ...

    async def getdel(self, key: str) -> Optional[str]:
        """Get and delete a key atomically (Redis 6.2+)."""
        ...

    async def eval(self, script: str, numkeys: int, *keys_and_args) -> Optional[str]:
        """Execute a Lua script atomically."""
        ...


class RedisAuthStateStore(IAuthStateStore):
    """Redis-backed authorization state store.

    Usage:
        store = RedisAuthStateStore(redis, ttl=600)
        await store.store_code_verifier(state)

        # In the OAuth callback
        state = await store.consume_code_verifier(state_key)
        if state is None:
            ...  # unknown or already redeemed
    """

    KEY_PREFIX = "shopchat:auth_state:"

    # Atomic get-and-delete for servers without GETDEL (Redis < 6.2)
    _ATOMIC_GETDEL_SCRIPT = """
    local value = redis.call('GET', KEYS[1])
    if value then
        redis.call('DEL', KEYS[1])
    end
    return value
    """

    def __init__(self, redis: IRedisClient, ttl: Optional[int] = None):
        """Initialize the store.

        Args:
            redis: Redis client
            ttl: Optional expiry in seconds (None keeps states until redeemed)
        """
        self.redis = redis
        self.ttl = ttl

    def _key(self, state_key: str) -> str:
        return f"{self.KEY_PREFIX}{state_key}"

    async def store_code_verifier(self, state: AuthorizationState) -> None:
        key = self._key(state.state)
        if self.ttl:
            await self.redis.setex(key, self.ttl, state.to_json())
        else:
            await self.redis.set(key, state.to_json())

    async def consume_code_verifier(
        self, state_key: str
    ) -> Optional[AuthorizationState]:
        """Atomically fetch and delete a pending authorization.

        Never falls back to a non-atomic GET + DEL; if the client supports
        neither GETDEL nor EVAL the state is treated as unknown.
        """
        if not state_key:
            return None

        key = self._key(state_key)
        data: Optional[str] = None

        try:
            data = await self.redis.getdel(key)
        except Exception as e:
            logger.debug(f"GETDEL unavailable, falling back to Lua: {e}")
            try:
                data = await self.redis.eval(self._ATOMIC_GETDEL_SCRIPT, 1, key)
            except Exception as e:
                logger.error(
                    f"Redis client does not support GETDEL or EVAL - "
                    f"authorization state unavailable: {e}"
                )
                return None

        if not data:
            return None

        try:
            state = AuthorizationState.from_json(data)
        except (json.JSONDecodeError, TypeError, KeyError, ValueError):
            logger.warning(f"Discarding malformed authorization state for {state_key}")
            return None

        if state.is_expired(self.ttl):
            return None

        return state


class InMemoryAuthStateStore(IAuthStateStore):
    """Process-local authorization state store (single worker only)."""

    def __init__(self, ttl: Optional[int] = None):
        self.ttl = ttl
        self._states: dict[str, AuthorizationState] = {}
        self._lock = asyncio.Lock()

    async def store_code_verifier(self, state: AuthorizationState) -> None:
        async with self._lock:
            self._states[state.state] = state

    async def consume_code_verifier(
        self, state_key: str
    ) -> Optional[AuthorizationState]:
        async with self._lock:
            state = self._states.pop(state_key, None)

        if state is None or state.is_expired(self.ttl):
            return None
        return state

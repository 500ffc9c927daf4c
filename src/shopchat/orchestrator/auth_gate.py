"""
Authorization Gate.

Decides, before any model call, whether a message asks for
account-scoped data the conversation is not yet authorized to read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from ..domain.ports import ICustomerSessionStore
from ..security.oauth import CustomerAuthService

logger = logging.getLogger(__name__)


ACCOUNT_KEYWORDS: tuple[str, ...] = (
    "my account",
    "my orders",
    "my order",
    "order history",
    "order status",
    "tracking",
    "track my order",
    "my purchases",
    "my profile",
    "account info",
    "customer info",
    "my details",
    "my information",
    "login",
    "sign in",
)

AUTHORIZATION_PROMPT = (
    "To access your account information, orders, and order tracking, "
    "I need you to authorize access to your customer data. "
    "[Click here to authorize]({url})"
)


@dataclass(frozen=True)
class Authorized:
    """The message may proceed to the model."""


@dataclass(frozen=True)
class NeedsAuthorization:
    """The session must be short-circuited with an authorization prompt."""

    prompt_url: str
    prompt_text: str


GateDecision = Union[Authorized, NeedsAuthorization]


def is_account_request(message: str) -> bool:
    """Return True if the message mentions account-scoped data."""
    lowered = message.lower()
    return any(keyword in lowered for keyword in ACCOUNT_KEYWORDS)


class AuthorizationGate:
    """Keyword-driven authorization gate.

    Usage:
        gate = AuthorizationGate(session_store, auth_service)
        decision = await gate.evaluate(message, conversation_id, shop_id)
        if isinstance(decision, NeedsAuthorization):
            ...
    """

    def __init__(
        self,
        session_store: ICustomerSessionStore,
        auth_service: CustomerAuthService,
    ):
        self.session_store = session_store
        self.auth_service = auth_service

    async def _has_usable_session(self, conversation_id: str) -> bool:
        try:
            session = await self.session_store.get_customer_token(conversation_id)
        except Exception as e:
            logger.error(f"Failed to read customer token for {conversation_id}: {e}")
            return False
        return session is not None and session.is_usable

    async def evaluate(
        self,
        message: str,
        conversation_id: str,
        shop_id: Optional[str] = None,
    ) -> GateDecision:
        """Evaluate a user message.

        Args:
            message: The user message
            conversation_id: Conversation the message belongs to
            shop_id: Shop identifier for the authorization URL

        Returns:
            Authorized, or NeedsAuthorization with the prompt to show
        """
        if not is_account_request(message):
            return Authorized()

        if await self._has_usable_session(conversation_id):
            return Authorized()

        logger.info(f"Conversation {conversation_id} needs customer authorization")
        url = await self.auth_service.generate_auth_url(conversation_id, shop_id)
        return NeedsAuthorization(
            prompt_url=url,
            prompt_text=AUTHORIZATION_PROMPT.format(url=url),
        )

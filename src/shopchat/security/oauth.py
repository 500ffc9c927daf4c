"""
Customer account authorization (OAuth 2.0 authorization code + PKCE).

Issues authorization URLs for conversations that need customer data,
and redeems the callback code for a customer access token.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import aiohttp

from ..config import AuthConfig
from ..domain.entities import AuthorizationState, CustomerSession
from ..domain.ports import IAuthStateStore, ICustomerSessionStore
from ..exceptions import AuthorizationStateError, TokenExchangeError
from .pkce import generate_code_challenge, generate_code_verifier

logger = logging.getLogger(__name__)


class CustomerAuthService:
    """Customer account OAuth service.

    Usage:
        auth = CustomerAuthService(config.auth, state_store, session_store)

        # When a conversation needs customer data
        url = await auth.generate_auth_url(conversation_id, shop_id)

        # In the OAuth callback
        session = await auth.redeem_callback(code, state)
    """

    def __init__(
        self,
        config: AuthConfig,
        state_store: IAuthStateStore,
        session_store: ICustomerSessionStore,
        timeout: float = 30.0,
    ):
        """Initialize the service.

        Args:
            config: OAuth client settings
            state_store: Pending PKCE states
            session_store: Customer tokens and discovered account URLs
            timeout: Token endpoint timeout in seconds
        """
        self.config = config
        self.state_store = state_store
        self.session_store = session_store
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _discovered_url(self, conversation_id: str, attribute: str) -> Optional[str]:
        try:
            urls = await self.session_store.get_customer_account_urls(conversation_id)
        except Exception as e:
            logger.warning(f"Could not read customer account URLs: {e}")
            return None
        return getattr(urls, attribute, None) if urls else None

    async def generate_auth_url(
        self, conversation_id: str, shop_id: Optional[str]
    ) -> str:
        """Create an authorization URL for a conversation.

        A fresh PKCE verifier is stored under the state token
        `{conversation_id}-{shop_id}`. A storage failure is logged and the
        URL is still returned; the callback for it will then be rejected.

        Args:
            conversation_id: Conversation requesting customer data
            shop_id: Shop identifier

        Returns:
            The authorization URL to show to the customer
        """
        verifier = generate_code_verifier()
        pending = AuthorizationState(
            conversation_id=conversation_id,
            shop_id=shop_id,
            code_verifier=verifier,
        )

        try:
            await self.state_store.store_code_verifier(pending)
        except Exception as e:
            logger.error(f"Failed to store code verifier for {pending.state}: {e}")

        params = {
            "client_id": self.config.client_id,
            "scope": self.config.scope,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "state": pending.state,
            "code_challenge": generate_code_challenge(verifier),
            "code_challenge_method": "S256",
        }

        base_url = await self._discovered_url(conversation_id, "authorization_url")
        if not base_url:
            base_url = self.config.authorization_url_template.format(shop_id=shop_id)

        logger.info(f"Issued authorization URL for conversation {conversation_id}")
        return f"{base_url}?{urlencode(params)}"

    async def redeem_callback(self, code: str, state_key: str) -> CustomerSession:
        """Exchange an authorization code for a customer session.

        Args:
            code: Authorization code from the callback
            state_key: State token from the callback

        Returns:
            The stored CustomerSession

        Raises:
            AuthorizationStateError: Unknown, expired or already-used state
            TokenExchangeError: Token endpoint rejected the exchange
        """
        pending = await self.state_store.consume_code_verifier(state_key)
        if pending is None:
            raise AuthorizationStateError(state_key)

        token_url = await self._discovered_url(pending.conversation_id, "token_url")
        if not token_url:
            token_url = self.config.token_url_template.format(shop_id=pending.shop_id)

        form = {
            "grant_type": "authorization_code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "code": code,
            "code_verifier": pending.code_verifier,
        }

        session = await self._get_session()
        try:
            async with session.post(
                token_url,
                data=form,
                headers={"Accept": "application/json"},
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise TokenExchangeError(
                        f"Token exchange failed: {response.status} - {text}",
                        status_code=response.status,
                    )
                data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TokenExchangeError(f"Token endpoint unreachable: {e}", cause=e)

        access_token = (data or {}).get("access_token")
        if not access_token:
            raise TokenExchangeError("Token response did not include an access token")

        now = datetime.now(timezone.utc)
        expires_in = data.get("expires_in")
        customer_session = CustomerSession(
            conversation_id=pending.conversation_id,
            access_token=access_token,
            issued_at=now,
            expires_at=now + timedelta(seconds=int(expires_in)) if expires_in else None,
            refresh_token=data.get("refresh_token"),
        )

        await self.session_store.store_customer_token(customer_session)
        logger.info(f"Stored customer token for conversation {pending.conversation_id}")
        return customer_session

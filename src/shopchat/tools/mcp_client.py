"""
MCP Client for storefront and customer account tools.

Talks JSON-RPC 2.0 over HTTP to two MCP servers:
- the storefront server (public catalog, cart and policy tools)
- the customer account server (orders and account data, needs a
  customer access token)

call_tool() never raises for tool-level failures; errors are returned
as an `{"error": {"type": ..., "data": ...}}` envelope.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

import aiohttp

from ..domain.entities import CustomerAccountUrls, ToolDefinition
from ..domain.ports import ICustomerSessionStore, IToolGateway
from ..exceptions import ToolGatewayError
from ..security.oauth import CustomerAuthService

logger = logging.getLogger(__name__)


def customer_account_host(shop_domain: str) -> str:
    """Return `scheme://host` of a shop's customer account domain."""
    parsed = urlparse(shop_domain if "://" in shop_domain else f"https://{shop_domain}")
    host = parsed.netloc.replace(".myshopify.com", ".account.myshopify.com")
    return f"{parsed.scheme}://{host}"


@dataclass
class MCPClientConfig:
    """Configuration for MCP client.

    Attributes:
        shop_domain: Storefront origin, e.g. https://example.myshopify.com
        conversation_id: Conversation the client serves
        shop_id: Shop identifier (for authorization URLs)
        timeout: Request timeout in seconds
        max_retries: Attempts per request on connection errors
    """

    shop_domain: str
    conversation_id: str
    shop_id: Optional[str] = None
    timeout: float = 30.0
    max_retries: int = 3

    @property
    def storefront_url(self) -> str:
        return f"{self.shop_domain.rstrip('/')}/api/mcp"

    @property
    def default_customer_url(self) -> str:
        return f"{customer_account_host(self.shop_domain)}/customer/api/mcp"


class CustomerAccountDiscovery:
    """Discovers a shop's customer account endpoints.

    Reads `/.well-known/customer-account-api` and
    `/.well-known/openid-configuration` from the shop domain and caches the
    result per conversation in the customer session store.
    """

    def __init__(self, session_store: ICustomerSessionStore):
        self.session_store = session_store

    async def _get_json(
        self, session: aiohttp.ClientSession, url: str
    ) -> Optional[dict[str, Any]]:
        async with session.get(url, headers={"Accept": "application/json"}) as response:
            if response.status != 200:
                logger.debug(f"Discovery document {url} returned {response.status}")
                return None
            return await response.json(content_type=None)

    async def discover(
        self,
        session: aiohttp.ClientSession,
        shop_domain: str,
        conversation_id: str,
    ) -> Optional[CustomerAccountUrls]:
        """Return cached or freshly discovered URLs (None if unavailable)."""
        try:
            cached = await self.session_store.get_customer_account_urls(conversation_id)
        except Exception as e:
            logger.warning(f"Could not read cached customer account URLs: {e}")
            cached = None
        if cached and cached.mcp_api_url:
            return cached

        base = shop_domain.rstrip("/")
        try:
            account_api = await self._get_json(
                session, f"{base}/.well-known/customer-account-api"
            )
            openid = await self._get_json(
                session, f"{base}/.well-known/openid-configuration"
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Customer account discovery failed for {base}: {e}")
            return None

        if not account_api and not openid:
            return None

        urls = CustomerAccountUrls(
            conversation_id=conversation_id,
            mcp_api_url=(account_api or {}).get("mcp_api"),
            authorization_url=(openid or {}).get("authorization_endpoint"),
            token_url=(openid or {}).get("token_endpoint"),
        )

        try:
            await self.session_store.store_customer_account_urls(urls)
        except Exception as e:
            logger.warning(f"Could not cache customer account URLs: {e}")

        return urls


class MCPClient(IToolGateway):
    """Client for the storefront and customer account MCP servers.

    Usage:
        config = MCPClientConfig(
            shop_domain="https://example.myshopify.com",
            conversation_id="1700000000000",
            shop_id="123",
        )
        async with MCPClient(config, session_store, auth_service) as client:
            tools = await client.connect()
            result = await client.call_tool("search_shop_catalog", {"query": "tea"})
    """

    def __init__(
        self,
        config: MCPClientConfig,
        session_store: ICustomerSessionStore,
        auth_service: Optional[CustomerAuthService] = None,
        discovery: Optional[CustomerAccountDiscovery] = None,
    ):
        """Initialize the MCP client.

        Args:
            config: Client configuration
            session_store: Customer tokens and account URLs
            auth_service: Issues authorization URLs when a customer tool is rejected
            discovery: Customer account endpoint discovery
        """
        self.config = config
        self.session_store = session_store
        self.auth_service = auth_service
        self.discovery = discovery or CustomerAccountDiscovery(session_store)
        self.customer_url: str = config.default_customer_url
        self._session: Optional[aiohttp.ClientSession] = None
        self._storefront_tools: list[ToolDefinition] = []
        self._customer_tools: list[ToolDefinition] = []
        self._request_ids = itertools.count(1)

    @property
    def tools(self) -> list[ToolDefinition]:
        return self._storefront_tools + self._customer_tools

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _get_headers(self, access_token: Optional[str] = None) -> dict[str, str]:
        """Build request headers."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if access_token:
            headers["Authorization"] = access_token
        return headers

    async def _access_token(self) -> Optional[str]:
        try:
            session = await self.session_store.get_customer_token(self.config.conversation_id)
        except Exception as e:
            logger.warning(f"Could not read customer token: {e}")
            return None
        return session.access_token if session and session.is_usable else None

    async def _rpc(
        self,
        url: str,
        method: str,
        params: dict[str, Any],
        tool_name: str,
        access_token: Optional[str] = None,
    ) -> dict[str, Any]:
        """Send one JSON-RPC request and return its `result`.

        Raises:
            ToolGatewayError: On HTTP, transport or JSON-RPC errors
        """
        session = await self._get_session()
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "id": next(self._request_ids),
            "params": params,
        }

        for attempt in range(self.config.max_retries):
            try:
                async with session.post(
                    url,
                    headers=self._get_headers(access_token),
                    json=payload,
                ) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise ToolGatewayError(
                            f"{method} failed: {response.status} - {text}",
                            tool_name=tool_name,
                            status_code=response.status,
                        )
                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        raise ToolGatewayError(
                            f"{method} returned a non-JSON body",
                            tool_name=tool_name,
                            cause=e,
                        )

            except aiohttp.InvalidURL as e:
                raise ToolGatewayError(
                    f"Invalid MCP server URL: {url}",
                    tool_name=tool_name,
                    cause=e,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt < self.config.max_retries - 1:
                    wait_time = 2 ** attempt
                    logger.warning(f"Connection error, retrying in {wait_time}s: {e}")
                    await asyncio.sleep(wait_time)
                    continue

                raise ToolGatewayError(
                    f"Failed to connect to MCP server: {e}",
                    tool_name=tool_name,
                    cause=e,
                )

            if not isinstance(data, dict):
                raise ToolGatewayError(
                    f"{method} returned an unexpected body: {type(data).__name__}",
                    tool_name=tool_name,
                )
            if data.get("error"):
                error = data["error"]
                if isinstance(error, dict):
                    error = error.get("message", error)
                raise ToolGatewayError(
                    f"{method} returned error: {error}",
                    tool_name=tool_name,
                )
            return data.get("result") or {}

        raise ToolGatewayError(
            f"{method} failed after {self.config.max_retries} retries",
            tool_name=tool_name,
        )

    @staticmethod
    def _parse_tools(
        result: dict[str, Any], is_customer_tool: bool
    ) -> list[ToolDefinition]:
        return [
            ToolDefinition(
                name=tool["name"],
                description=tool.get("description", ""),
                parameters=tool.get("inputSchema") or {"type": "object", "properties": {}},
                is_customer_tool=is_customer_tool,
            )
            for tool in result.get("tools", [])
        ]

    async def connect_to_storefront_server(self) -> list[ToolDefinition]:
        """Discover storefront tools (empty list on failure)."""
        if not self.config.shop_domain.strip():
            logger.warning("No shop domain for this session, skipping storefront tools")
            return []

        try:
            result = await self._rpc(
                self.config.storefront_url, "tools/list", {}, tool_name="tools/list"
            )
        except ToolGatewayError as e:
            logger.warning(f"Storefront MCP unavailable: {e}")
            return []

        self._storefront_tools = self._parse_tools(result, is_customer_tool=False)
        logger.info(f"Discovered {len(self._storefront_tools)} storefront tools")
        return self._storefront_tools

    async def connect_to_customer_server(self) -> list[ToolDefinition]:
        """Discover customer account tools (empty list on failure)."""
        if not self.config.shop_domain.strip():
            logger.warning("No shop domain for this session, skipping customer account tools")
            return []

        session = await self._get_session()
        urls = await self.discovery.discover(
            session, self.config.shop_domain, self.config.conversation_id
        )
        if urls and urls.mcp_api_url:
            self.customer_url = urls.mcp_api_url

        try:
            result = await self._rpc(
                self.customer_url,
                "tools/list",
                {},
                tool_name="tools/list",
                access_token=await self._access_token(),
            )
        except ToolGatewayError as e:
            logger.warning(f"Customer MCP unavailable: {e}")
            return []

        self._customer_tools = self._parse_tools(result, is_customer_tool=True)
        logger.info(f"Discovered {len(self._customer_tools)} customer tools")
        return self._customer_tools

    async def connect(self) -> list[ToolDefinition]:
        """Discover tools from both servers."""
        await self.connect_to_storefront_server()
        await self.connect_to_customer_server()
        return self.tools

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Call a tool on the server that provides it.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            The JSON-RPC result, or an error envelope
        """
        if any(tool.name == name for tool in self._customer_tools):
            return await self._call_customer_tool(name, arguments)

        if any(tool.name == name for tool in self._storefront_tools):
            return await self._call(self.config.storefront_url, name, arguments)

        logger.warning(f"Tool not found: {name}")
        return {"error": {"type": "tool_not_found", "data": f"Tool {name} not found"}}

    async def _call(
        self,
        url: str,
        name: str,
        arguments: dict[str, Any],
        access_token: Optional[str] = None,
    ) -> dict[str, Any]:
        try:
            return await self._rpc(
                url,
                "tools/call",
                {"name": name, "arguments": arguments},
                tool_name=name,
                access_token=access_token,
            )
        except ToolGatewayError as e:
            logger.error(f"Tool {name} failed: {e}")
            return {"error": {"type": "internal_error", "data": f"Error calling tool {name}: {e}"}}

    async def _call_customer_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        access_token = await self._access_token()
        try:
            return await self._rpc(
                self.customer_url,
                "tools/call",
                {"name": name, "arguments": arguments},
                tool_name=name,
                access_token=access_token,
            )
        except ToolGatewayError as e:
            if e.status_code != 401:
                logger.error(f"Customer tool {name} failed: {e}")
                return {
                    "error": {"type": "internal_error", "data": f"Error calling tool {name}: {e}"}
                }

        logger.info(f"Customer tool {name} requires authorization")
        data = "You need to authorize the app to access your customer data."
        if self.auth_service:
            url = await self.auth_service.generate_auth_url(
                self.config.conversation_id, self.config.shop_id
            )
            data = f"{data} [Click here to authorize]({url})"
        return {"error": {"type": "auth_required", "data": data}}

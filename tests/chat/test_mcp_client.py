"""
Tests for the MCP client: tool discovery, routing and error envelopes.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from fakes import mock_response, mock_session
from src.shopchat.domain.entities import CustomerAccountUrls, CustomerSession
from src.shopchat.exceptions import ToolGatewayError
from src.shopchat.tools import (
    CustomerAccountDiscovery,
    MCPClient,
    MCPClientConfig,
    customer_account_host,
)


@pytest.fixture
def client_config():
    return MCPClientConfig(
        shop_domain="https://example.myshopify.com",
        conversation_id="conv-1",
        shop_id="shop-9",
    )


@pytest.fixture
def client(client_config, session_store, auth_service):
    return MCPClient(client_config, session_store, auth_service)


class TestConfig:
    """Tests for endpoint derivation."""

    def test_storefront_url(self, client_config):
        assert client_config.storefront_url == "https://example.myshopify.com/api/mcp"

    def test_customer_url(self, client_config):
        assert (
            client_config.default_customer_url
            == "https://example.account.myshopify.com/customer/api/mcp"
        )

    def test_customer_account_host_without_scheme(self):
        assert customer_account_host("shop.myshopify.com") == "https://shop.account.myshopify.com"


class TestRpc:
    """Tests for the JSON-RPC transport."""

    @pytest.mark.asyncio
    async def test_request_envelope(self, client):
        response = mock_response(json_data={"jsonrpc": "2.0", "id": 1, "result": {"tools": []}})
        client._session = mock_session(post=response)

        result = await client._rpc(
            "https://example.myshopify.com/api/mcp", "tools/list", {}, tool_name="tools/list",
            access_token="tok",
        )

        assert result == {"tools": []}
        call = client._session.post.call_args
        assert call.kwargs["json"] == {"jsonrpc": "2.0", "method": "tools/list", "id": 1, "params": {}}
        assert call.kwargs["headers"]["Authorization"] == "tok"

    @pytest.mark.asyncio
    async def test_http_error_carries_status(self, client):
        client._session = mock_session(post=mock_response(status=401, text="unauthorized"))

        with pytest.raises(ToolGatewayError) as exc_info:
            await client._rpc("https://x/api/mcp", "tools/call", {}, tool_name="get_orders")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_json_rpc_error(self, client):
        client._session = mock_session(
            post=mock_response(json_data={"error": {"code": -32601, "message": "no such method"}})
        )

        with pytest.raises(ToolGatewayError, match="no such method"):
            await client._rpc("https://x/api/mcp", "tools/call", {}, tool_name="lookup")

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self, client):
        ok = mock_response(json_data={"result": {"ok": True}})
        session = mock_session()
        session.post = MagicMock(side_effect=[aiohttp.ClientConnectionError("reset"), ok])
        client._session = session

        with patch("src.shopchat.tools.mcp_client.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await client._rpc("https://x/api/mcp", "tools/call", {}, tool_name="lookup")

        assert result == {"ok": True}
        sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client):
        session = mock_session()
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("reset"))
        client._session = session

        with patch("src.shopchat.tools.mcp_client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ToolGatewayError, match="Failed to connect"):
                await client._rpc("https://x/api/mcp", "tools/call", {}, tool_name="lookup")

        assert session.post.call_count == 3

    @pytest.mark.asyncio
    async def test_non_json_body(self, client):
        response = mock_response()
        response.json = AsyncMock(side_effect=json.JSONDecodeError("Expecting value", "<html>", 0))
        client._session = mock_session(post=response)

        with pytest.raises(ToolGatewayError, match="non-JSON"):
            await client._rpc("https://x/api/mcp", "tools/call", {}, tool_name="lookup")

    @pytest.mark.parametrize("body", [[1, 2], None, "ok"])
    @pytest.mark.asyncio
    async def test_non_object_body(self, client, body):
        client._session = mock_session(post=mock_response(json_data=body))

        with pytest.raises(ToolGatewayError, match="unexpected body"):
            await client._rpc("https://x/api/mcp", "tools/call", {}, tool_name="lookup")

    @pytest.mark.asyncio
    async def test_string_rpc_error(self, client):
        client._session = mock_session(post=mock_response(json_data={"error": "bad params"}))

        with pytest.raises(ToolGatewayError, match="bad params"):
            await client._rpc("https://x/api/mcp", "tools/call", {}, tool_name="lookup")

    @pytest.mark.asyncio
    async def test_invalid_url_is_not_retried(self, client):
        session = mock_session()
        session.post = MagicMock(side_effect=aiohttp.InvalidURL("/api/mcp"))
        client._session = session

        with patch("src.shopchat.tools.mcp_client.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(ToolGatewayError, match="Invalid MCP server URL"):
                await client._rpc("/api/mcp", "tools/list", {}, tool_name="tools/list")

        assert session.post.call_count == 1
        sleep.assert_not_awaited()


class TestDiscovery:
    """Tests for tool discovery on both servers."""

    @pytest.mark.asyncio
    async def test_connect_lists_both_servers(self, client, session_store):
        await session_store.store_customer_account_urls(
            CustomerAccountUrls(conversation_id="conv-1", mcp_api_url="https://acct.example.com/mcp")
        )
        client._session = mock_session()
        client._rpc = AsyncMock(
            side_effect=[
                {"tools": [{"name": "search_shop_catalog", "description": "Search", "inputSchema": {"type": "object"}}]},
                {"tools": [{"name": "get_orders"}]},
            ]
        )

        tools = await client.connect()

        assert [(t.name, t.is_customer_tool) for t in tools] == [
            ("search_shop_catalog", False),
            ("get_orders", True),
        ]
        assert tools[1].parameters == {"type": "object", "properties": {}}
        assert client._rpc.call_args_list[1].args[0] == "https://acct.example.com/mcp"

    @pytest.mark.asyncio
    async def test_server_failures_yield_no_tools(self, client):
        client._session = mock_session()
        client.discovery.discover = AsyncMock(return_value=None)
        client._rpc = AsyncMock(side_effect=ToolGatewayError("down", tool_name="tools/list"))

        assert await client.connect() == []

    @pytest.mark.asyncio
    async def test_well_known_documents(self, session_store):
        responses = {
            "https://example.myshopify.com/.well-known/customer-account-api": mock_response(
                json_data={"mcp_api": "https://acct.example.com/customer/api/mcp"}
            ),
            "https://example.myshopify.com/.well-known/openid-configuration": mock_response(
                json_data={
                    "authorization_endpoint": "https://acct.example.com/oauth/authorize",
                    "token_endpoint": "https://acct.example.com/oauth/token",
                }
            ),
        }
        session = mock_session(get=lambda url, headers=None: responses[url])

        urls = await CustomerAccountDiscovery(session_store).discover(
            session, "https://example.myshopify.com/", "conv-1"
        )

        assert urls.mcp_api_url == "https://acct.example.com/customer/api/mcp"
        assert urls.token_url == "https://acct.example.com/oauth/token"
        assert await session_store.get_customer_account_urls("conv-1") == urls

    @pytest.mark.asyncio
    async def test_cached_urls_skip_http(self, session_store):
        cached = CustomerAccountUrls(conversation_id="conv-1", mcp_api_url="https://cached/mcp")
        await session_store.store_customer_account_urls(cached)
        session = mock_session()

        urls = await CustomerAccountDiscovery(session_store).discover(
            session, "https://example.myshopify.com", "conv-1"
        )

        assert urls is cached
        session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_shop_domain_makes_no_requests(self, session_store):
        client = MCPClient(MCPClientConfig(shop_domain="", conversation_id="conv-1"), session_store)
        session = mock_session()
        client._session = session
        client.discovery.discover = AsyncMock()

        assert await client.connect() == []

        session.post.assert_not_called()
        client.discovery.discover.assert_not_called()

    @pytest.mark.asyncio
    async def test_bad_storefront_body_keeps_customer_tools(self, client, session_store):
        await session_store.store_customer_account_urls(
            CustomerAccountUrls(conversation_id="conv-1", mcp_api_url="https://acct.example.com/mcp")
        )
        html = mock_response()
        html.json = AsyncMock(side_effect=json.JSONDecodeError("Expecting value", "<html>", 0))
        tools = mock_response(json_data={"result": {"tools": [{"name": "get_orders"}]}})
        session = mock_session()
        session.post = MagicMock(side_effect=[html, tools])
        client._session = session

        discovered = await client.connect()

        assert [(t.name, t.is_customer_tool) for t in discovered] == [("get_orders", True)]


class TestCallTool:
    """Tests for tool routing and error envelopes."""

    @pytest.fixture
    def connected(self, client):
        client._storefront_tools = MCPClient._parse_tools(
            {"tools": [{"name": "search_shop_catalog"}]}, is_customer_tool=False
        )
        client._customer_tools = MCPClient._parse_tools(
            {"tools": [{"name": "get_orders"}]}, is_customer_tool=True
        )
        return client

    @pytest.mark.asyncio
    async def test_storefront_tool(self, connected):
        connected._rpc = AsyncMock(return_value={"content": [{"type": "text", "text": "{}"}]})

        result = await connected.call_tool("search_shop_catalog", {"query": "tea"})

        assert result == {"content": [{"type": "text", "text": "{}"}]}
        args = connected._rpc.call_args
        assert args.args[0] == "https://example.myshopify.com/api/mcp"
        assert args.args[2] == {"name": "search_shop_catalog", "arguments": {"query": "tea"}}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, connected):
        result = await connected.call_tool("launch_rocket", {})
        assert result["error"]["type"] == "tool_not_found"

    @pytest.mark.asyncio
    async def test_storefront_failure_is_internal_error(self, connected):
        connected._rpc = AsyncMock(side_effect=ToolGatewayError("boom", tool_name="search_shop_catalog"))

        result = await connected.call_tool("search_shop_catalog", {})

        assert result["error"]["type"] == "internal_error"
        assert "boom" in result["error"]["data"]

    @pytest.mark.asyncio
    async def test_customer_tool_sends_token(self, connected, session_store):
        await session_store.store_customer_token(
            CustomerSession(conversation_id="conv-1", access_token="cust-token")
        )
        connected._rpc = AsyncMock(return_value={"content": []})

        await connected.call_tool("get_orders", {})

        assert connected._rpc.call_args.kwargs["access_token"] == "cust-token"

    @pytest.mark.asyncio
    async def test_customer_tool_unauthorized(self, connected):
        connected._rpc = AsyncMock(
            side_effect=ToolGatewayError("401", tool_name="get_orders", status_code=401)
        )

        result = await connected.call_tool("get_orders", {})

        assert result["error"]["type"] == "auth_required"
        data = result["error"]["data"]
        assert data.startswith("You need to authorize the app to access your customer data.")
        assert "[Click here to authorize](https://shopify.com/authentication/shop-9/oauth/authorize?" in data

    @pytest.mark.asyncio
    async def test_customer_tool_other_failure(self, connected):
        connected._rpc = AsyncMock(
            side_effect=ToolGatewayError("500", tool_name="get_orders", status_code=500)
        )

        result = await connected.call_tool("get_orders", {})

        assert result["error"]["type"] == "internal_error"

    @pytest.mark.asyncio
    async def test_non_json_tool_response_is_internal_error(self, connected):
        response = mock_response()
        response.json = AsyncMock(side_effect=json.JSONDecodeError("Expecting value", "<html>", 0))
        connected._session = mock_session(post=response)

        result = await connected.call_tool("search_shop_catalog", {})

        assert result["error"]["type"] == "internal_error"

"""Tool gateway: MCP clients for storefront and customer account tools."""

from .mcp_client import (
    CustomerAccountDiscovery,
    MCPClient,
    MCPClientConfig,
    customer_account_host,
)

__all__ = [
    "CustomerAccountDiscovery",
    "MCPClient",
    "MCPClientConfig",
    "customer_account_host",
]

"""
Tool Executor.

Handles execution of tool calls with error handling and result processing.
Every invocation produces exactly one outcome; gateway exceptions are
converted to failures rather than propagating into the turn loop.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from ..config import ToolConfig
from ..domain.entities import ToolFailure, ToolInvocation, ToolOutcome, ToolSuccess
from ..domain.ports import IToolGateway

logger = logging.getLogger(__name__)


def format_product(product: dict[str, Any]) -> dict[str, Any]:
    """Format a catalog search product for display."""
    price = "Price not available"
    price_range = product.get("price_range")
    variants = product.get("variants") or []
    if price_range:
        price = f"{price_range.get('currency', '')} {price_range.get('min', '')}".strip()
    elif variants and variants[0].get("price"):
        price = f"{variants[0].get('currency', '')} {variants[0]['price']}".strip()

    return {
        "id": product.get("product_id") or product.get("id") or "",
        "title": product.get("title") or "Product",
        "price": price,
        "image_url": product.get("image_url") or "",
        "description": product.get("description") or "",
        "url": product.get("url") or "",
    }


def extract_products(payload: Any, limit: int) -> list[dict[str, Any]]:
    """Pull formatted products out of a catalog search result.

    The search tool returns its data as JSON text in the first content
    item. Anything unparseable yields no products.
    """
    content = payload.get("content") if isinstance(payload, dict) else payload
    if not isinstance(content, list) or not content:
        return []

    first = content[0]
    text = first.get("text") if isinstance(first, dict) else None
    if not text:
        return []

    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Catalog search result is not valid JSON")
        return []

    products = data.get("products") if isinstance(data, dict) else None
    if not isinstance(products, list):
        return []

    return [format_product(p) for p in products[:limit] if isinstance(p, dict)]


def result_content(value: Any) -> Any:
    """Coerce tool output into a shape the model accepts (string or list)."""
    if value is None or isinstance(value, (str, list)):
        return value
    return json.dumps(value, default=str)


class ToolExecutor:
    """Executes tool calls against the session's tool gateway.

    Usage:
        executor = ToolExecutor(gateway, tool_config)
        outcome = await executor.execute(invocation)

    Architecture:
        - Delegates to the gateway for the actual call
        - Converts `error` envelopes and exceptions to ToolFailure
        - Extracts display products from catalog search results
    """

    def __init__(self, gateway: IToolGateway, tool_config: Optional[ToolConfig] = None):
        """Initialize the tool executor.

        Args:
            gateway: Tool gateway for this session
            tool_config: Product search tool name and display limit
        """
        self.gateway = gateway
        self.config = tool_config or ToolConfig()

    async def execute(self, invocation: ToolInvocation) -> ToolOutcome:
        """Execute a tool call with error handling.

        Args:
            invocation: Tool call requested by the model

        Returns:
            ToolSuccess or ToolFailure
        """
        logger.info(f"Executing tool: {invocation.name}")

        try:
            response = await self.gateway.call_tool(invocation.name, invocation.arguments)
        except Exception as e:
            logger.error(f"Tool execution failed: {e}")
            return ToolFailure(error_detail=str(e), error_type="internal_error")

        if isinstance(response, dict) and response.get("error"):
            return self._failure(invocation.name, response["error"])

        if isinstance(response, dict) and response.get("isError"):
            logger.warning(f"Tool {invocation.name} reported an error result")
            return ToolFailure(error_detail=result_content(response.get("content")))

        logger.debug(f"Tool {invocation.name} result: {response}")

        payload = response.get("content", response) if isinstance(response, dict) else response
        payload = result_content(payload)
        display_items: list[dict[str, Any]] = []
        if invocation.name == self.config.product_search_name:
            display_items = extract_products(response, self.config.max_products_to_display)

        return ToolSuccess(payload=payload, display_items=display_items)

    def _failure(self, tool_name: str, error: Any) -> ToolFailure:
        if isinstance(error, dict):
            error_type = error.get("type")
            detail = error.get("data", error.get("message", error))
        else:
            error_type = None
            detail = error

        logger.warning(f"Tool {tool_name} failed ({error_type or 'error'}): {detail}")
        return ToolFailure(error_detail=result_content(detail), error_type=error_type)

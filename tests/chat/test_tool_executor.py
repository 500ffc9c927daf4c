"""
Tests for tool execution and catalog product extraction.
"""

import json

import pytest

from fakes import FakeGateway, catalog_tool
from src.shopchat.config import ToolConfig
from src.shopchat.domain.entities import ToolFailure, ToolInvocation, ToolSuccess
from src.shopchat.orchestrator.tool_executor import (
    ToolExecutor,
    extract_products,
    format_product,
    result_content,
)


def search_result(products):
    return {"content": [{"type": "text", "text": json.dumps({"products": products})}]}


class TestFormatProduct:
    """Tests for product display formatting."""

    def test_price_range(self):
        product = format_product(
            {
                "product_id": "p1",
                "title": "Green Tea",
                "price_range": {"min": "4.50", "max": "9.00", "currency": "EUR"},
                "image_url": "https://cdn.example.com/tea.png",
                "description": "Loose leaf",
                "url": "https://example.myshopify.com/products/green-tea",
            }
        )
        assert product == {
            "id": "p1",
            "title": "Green Tea",
            "price": "EUR 4.50",
            "image_url": "https://cdn.example.com/tea.png",
            "description": "Loose leaf",
            "url": "https://example.myshopify.com/products/green-tea",
        }

    def test_variant_price_fallback(self):
        product = format_product({"product_id": "p2", "variants": [{"price": "3.00", "currency": "USD"}]})
        assert product["price"] == "USD 3.00"
        assert product["title"] == "Product"

    def test_missing_price(self):
        assert format_product({})["price"] == "Price not available"


class TestExtractProducts:
    """Tests for catalog search result parsing."""

    def test_limit_is_applied(self):
        payload = search_result([{"product_id": str(i)} for i in range(10)])
        assert [p["id"] for p in extract_products(payload, 3)] == ["0", "1", "2"]

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"content": []},
            {"content": [{"type": "text", "text": "not json"}]},
            {"content": [{"type": "text", "text": '{"items": []}'}]},
        ],
    )
    def test_unusable_payloads_yield_nothing(self, payload):
        assert extract_products(payload, 3) == []


class TestToolExecutor:
    """Tests for ToolExecutor outcomes."""

    @pytest.mark.asyncio
    async def test_catalog_search_success(self):
        gateway = FakeGateway(
            tools=[catalog_tool()],
            results={"search_shop_catalog": search_result([{"product_id": "p1", "title": "Mug"}])},
        )
        executor = ToolExecutor(gateway, ToolConfig())

        outcome = await executor.execute(
            ToolInvocation(call_id="t1", name="search_shop_catalog", arguments={"query": "mug"})
        )

        assert isinstance(outcome, ToolSuccess)
        assert outcome.payload[0]["type"] == "text"
        assert [p["title"] for p in outcome.display_items] == ["Mug"]

    @pytest.mark.asyncio
    async def test_other_tools_have_no_display_items(self):
        gateway = FakeGateway(results={"get_cart": search_result([{"product_id": "p1"}])})
        outcome = await ToolExecutor(gateway).execute(
            ToolInvocation(call_id="t1", name="get_cart", arguments={})
        )

        assert isinstance(outcome, ToolSuccess)
        assert outcome.display_items == []

    @pytest.mark.asyncio
    async def test_structured_error(self):
        gateway = FakeGateway(
            results={"get_orders": {"error": {"type": "auth_required", "data": "Authorize first"}}}
        )
        outcome = await ToolExecutor(gateway).execute(
            ToolInvocation(call_id="t1", name="get_orders", arguments={})
        )

        assert isinstance(outcome, ToolFailure)
        assert outcome.error_detail == "Authorize first"
        assert outcome.requires_authorization

    @pytest.mark.asyncio
    async def test_plain_error(self):
        gateway = FakeGateway(results={"lookup": {"error": "not found"}})
        outcome = await ToolExecutor(gateway).execute(
            ToolInvocation(call_id="t1", name="lookup", arguments={})
        )

        assert isinstance(outcome, ToolFailure)
        assert outcome.error_detail == "not found"
        assert not outcome.requires_authorization

    @pytest.mark.asyncio
    async def test_is_error_result(self):
        content = [{"type": "text", "text": "quantity must be positive"}]
        gateway = FakeGateway(results={"update_cart": {"isError": True, "content": content}})
        outcome = await ToolExecutor(gateway).execute(
            ToolInvocation(call_id="t1", name="update_cart", arguments={"quantity": -1})
        )

        assert isinstance(outcome, ToolFailure)
        assert outcome.error_detail == content

    @pytest.mark.asyncio
    async def test_gateway_exception_becomes_failure(self):
        gateway = FakeGateway(results={"lookup": ConnectionError("connection reset")})
        outcome = await ToolExecutor(gateway).execute(
            ToolInvocation(call_id="t1", name="lookup", arguments={})
        )

        assert isinstance(outcome, ToolFailure)
        assert outcome.error_type == "internal_error"
        assert outcome.error_detail == "connection reset"

    @pytest.mark.asyncio
    async def test_error_without_message_is_serialized(self):
        gateway = FakeGateway(results={"lookup": {"error": {"code": 5}}})
        outcome = await ToolExecutor(gateway).execute(
            ToolInvocation(call_id="t1", name="lookup", arguments={})
        )

        assert isinstance(outcome, ToolFailure)
        assert outcome.error_detail == '{"code": 5}'

    @pytest.mark.asyncio
    async def test_object_result_is_serialized(self):
        gateway = FakeGateway(results={"lookup": {"status": "ok", "count": 2}})
        outcome = await ToolExecutor(gateway).execute(
            ToolInvocation(call_id="t1", name="lookup", arguments={})
        )

        assert isinstance(outcome, ToolSuccess)
        assert json.loads(outcome.payload) == {"status": "ok", "count": 2}


class TestResultContent:
    """Tests for coercing tool output into model-acceptable content."""

    @pytest.mark.parametrize("value", ["text", [{"type": "text", "text": "x"}], None])
    def test_accepted_shapes_pass_through(self, value):
        assert result_content(value) == value

    def test_other_values_become_json(self):
        assert result_content({"code": 5}) == '{"code": 5}'
        assert result_content(42) == "42"

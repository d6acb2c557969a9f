import json

import pytest
from httpx import AsyncClient, MockTransport, Request, Response
from prometheus_client import REGISTRY
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import dispose_engines, ensure_schema, lifespan_session
from services.store_service.app.cart import Cart, ItemSnapshot
from services.store_service.app.errors import ExternalServiceError
from services.store_service.app.ledger import InventoryLedger
from services.store_service.app.models import Base
from services.store_service.app.recommendations import (
    ContextBuilder,
    RecommendationClient,
    RecommendationService,
    parse_recommendations,
    truncate_context,
)
from services.store_service.app.repository import InventoryRepository, OrderRepository
from services.store_service.app.schemas import ClientRecommendation, OwnerRecommendation
from services.store_service.app.services import OrderService


async def _session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'recommendations.db'}"
    return await ensure_schema(database_url, Base.metadata)


async def _stock(session_factory, **fields) -> ItemSnapshot:
    async with lifespan_session(session_factory) as session:
        item = await InventoryLedger(InventoryRepository(session)).create(fields)
        return ItemSnapshot.from_item(item)


async def _context(session_factory, role: str, client_id: str = "client-1", max_chars: int = 12000) -> str:
    async with lifespan_session(session_factory) as session:
        builder = ContextBuilder(OrderRepository(session), InventoryRepository(session), max_chars=max_chars)
        if role == "owner":
            return await builder.build_owner_context()
        return await builder.build_client_context(client_id)


class _StaticClient:
    def __init__(self, content: str | None) -> None:
        self.content = content
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str | None:
        self.prompts.append(prompt)
        return self.content


def _outcome(role: str, outcome: str) -> float:
    return (
        REGISTRY.get_sample_value("store_recommendation_requests_total", {"role": role, "outcome": outcome})
        or 0.0
    )


@pytest.mark.asyncio
async def test_owner_context_without_orders(tmp_path) -> None:
    session_factory = await _session_factory(tmp_path)
    await _stock(
        session_factory, name="Speaker", category="audio", price="40.00", quantity=0, minimumStockThreshold=2
    )
    await _stock(session_factory, name="Cable", category="audio", price="9.99", quantity=2, minimumStockThreshold=5)

    context = await _context(session_factory, "owner")

    assert context == (
        "No sales data yet.\n\n"
        "Current inventory:\n"
        "- Cable (audio): 2 in stock (min: 5) [LOW STOCK] @ $9.99\n"
        "- Speaker (audio): 0 in stock (min: 2) [OUT OF STOCK] @ $40.00"
    )
    await dispose_engines()


@pytest.mark.asyncio
async def test_owner_context_with_sales(tmp_path) -> None:
    session_factory = await _session_factory(tmp_path)
    cable = await _stock(session_factory, name="Cable", category="audio", price="9.99", quantity=10)
    await OrderService(session_factory).place_order(Cart.of([(cable, 2)], "1 Main St"), "client-1")

    context = await _context(session_factory, "owner")

    assert context.startswith(
        "Sales breakdown (by units sold):\n- Cable (audio): 2 units sold, $19.98 revenue\n\nTotal orders: 1\n\n"
    )
    assert context.endswith("- Cable (audio): 8 in stock (min: 0) [OK] @ $9.99")
    await dispose_engines()


@pytest.mark.asyncio
async def test_client_context_lists_history_and_catalog(tmp_path) -> None:
    session_factory = await _session_factory(tmp_path)
    cable = await _stock(
        session_factory, name="Cable", category="audio", price="9.99", quantity=2, description="Braided"
    )
    await _stock(session_factory, name="Amp", category="audio", price="120.00", quantity=0)

    empty = await _context(session_factory, "client")
    assert empty.startswith("No previous purchases.\n\nFull catalog (only recommend in-stock items):\n")

    await OrderService(session_factory).place_order(Cart.of([(cable, 2)], "1 Main St"), "client-1")
    await OrderService(session_factory).place_order(Cart.of([(cable, 1)], "1 Main St"), "client-2")
    context = await _context(session_factory, "client")

    history, catalog = context.split("\n\n")
    assert history == "Customer's purchase history:\n- Cable (audio) x2 @ $9.99"
    catalog_lines = catalog.splitlines()
    assert catalog_lines[0] == "Full catalog (only recommend in-stock items):"
    assert catalog_lines[1].endswith('Amp (audio) - $120.00 - "" - OUT OF STOCK')
    assert catalog_lines[2] == f'- [{cable.id}] Cable (audio) - $9.99 - "Braided" - OUT OF STOCK'
    await dispose_engines()


def test_truncate_context() -> None:
    assert truncate_context("short", 100) == "short"
    truncated = truncate_context("x" * 500, 100)
    assert len(truncated) == 100
    assert truncated.endswith("[context truncated]")


def test_parse_recommendations_accepts_fenced_json() -> None:
    content = '```json\n[{"item_name": "Cable", "item_id": "abc", "reason": "Bought before", "price": 9.99}]\n```'

    [recommendation] = parse_recommendations("client", content)

    assert isinstance(recommendation, ClientRecommendation)
    assert recommendation.item_id == "abc"


def test_parse_recommendations_owner_shape() -> None:
    content = json.dumps(
        [
            {"item_name": "Cable", "reason": "Sold out", "priority": "high", "current_stock": 0, "type": "restock"},
            {"item_name": "Headphones", "reason": "Pairs well", "priority": "low", "current_stock": None},
        ]
    )

    recommendations = parse_recommendations("owner", content)

    assert all(isinstance(item, OwnerRecommendation) for item in recommendations)
    assert [item.type for item in recommendations] == ["restock", None]


def test_parse_recommendations_owner_accepts_fractional_stock() -> None:
    content = '[{"item_name": "Rice", "reason": "Sold by weight", "priority": "medium", "current_stock": 4.0}]'

    [recommendation] = parse_recommendations("owner", content)

    assert recommendation.current_stock == 4.0
    assert recommendation.priority == "medium"


@pytest.mark.parametrize(
    "content",
    [
        None,
        "",
        "Sorry, I cannot help with that.",
        '{"item_name": "Cable"}',
        '[{"item_name": "Cable", "item_id": "abc", "reason": "x", "price": "9.99"}]',
        '[{"item_name": "Cable", "reason": "x"}]',
    ],
)
def test_parse_recommendations_degrades_to_empty(content: str | None) -> None:
    assert parse_recommendations("client", content) == []


@pytest.mark.asyncio
async def test_recommendation_client_posts_chat_completion() -> None:
    captured: dict[str, object] = {}

    def handler(request: Request) -> Response:
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return Response(200, json={"choices": [{"message": {"content": "[]"}}]})

    client = RecommendationClient(
        client=AsyncClient(transport=MockTransport(handler)),
        api_url="https://llm.test/v1/chat/completions",
        api_key="secret",
        model="test-model",
        temperature=0.2,
        max_tokens=50,
    )

    content = await client.complete("hello")
    await client.close()

    assert content == "[]"
    assert captured["auth"] == "Bearer secret"
    assert captured["body"] == {
        "model": "test-model",
        "messages": [{"role": "user", "content": "hello"}],
        "temperature": 0.2,
        "max_tokens": 50,
    }


@pytest.mark.asyncio
async def test_recommendation_client_upstream_errors() -> None:
    def handler(request: Request) -> Response:
        return Response(500, text="overloaded")

    client = RecommendationClient(
        client=AsyncClient(transport=MockTransport(handler)),
        api_url="https://llm.test/v1/chat/completions",
        api_key="secret",
    )
    with pytest.raises(ExternalServiceError) as excinfo:
        await client.complete("hello")
    assert "overloaded" in excinfo.value.message

    unconfigured = RecommendationClient(
        client=AsyncClient(transport=MockTransport(handler)),
        api_url="https://llm.test/v1/chat/completions",
        api_key=None,
    )
    with pytest.raises(ExternalServiceError):
        await unconfigured.complete("hello")
    await client.close()
    await unconfigured.close()


@pytest.mark.asyncio
async def test_recommendation_service_counts_malformed_replies(tmp_path) -> None:
    session_factory = await _session_factory(tmp_path)
    await _stock(session_factory, name="Cable", category="audio", price="9.99", quantity=2)
    malformed_before = _outcome("owner", "malformed")
    generator = _StaticClient("not json at all")

    async with lifespan_session(session_factory) as session:
        builder = ContextBuilder(OrderRepository(session), InventoryRepository(session))
        recommendations = await RecommendationService(builder, generator).recommend("owner", "owner-1")

    assert recommendations == []
    assert "No sales data yet." in generator.prompts[0]
    assert "[LOW STOCK]" not in generator.prompts[0]
    assert _outcome("owner", "malformed") == malformed_before + 1
    await dispose_engines()

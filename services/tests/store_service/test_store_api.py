import asyncio
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from services.common import ServiceSettings, dispose_engines, ensure_schema, lifespan_session
from services.store_service.app.errors import ExternalServiceError
from services.store_service.app.main import create_app
from services.store_service.app.models import Base, Profile

OWNER = {"Authorization": "Bearer owner-token"}
CLIENT = {"Authorization": "Bearer client-token"}
OTHER_CLIENT = {"Authorization": "Bearer other-token"}


def _run(coro):
    return asyncio.run(coro)


class _FakeVerifier:
    tokens = {"owner-token": "owner-1", "client-token": "client-1", "other-token": "client-2"}

    async def verify(self, token: str) -> str | None:
        return self.tokens.get(token)


class _FakeGenerator:
    def __init__(self, content: str | None = "[]", error: str | None = None) -> None:
        self.content = content
        self.error = error

    async def complete(self, prompt: str) -> str | None:
        if self.error is not None:
            raise ExternalServiceError(self.error)
        return self.content


async def _prepare_app(tmp_path, **app_kwargs: Any) -> FastAPI:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'store.db'}"
    async with lifespan_session(await ensure_schema(database_url, Base.metadata)) as session:
        session.add_all(
            [
                Profile(id="owner-1", email="owner@example.com", full_name="Olivia Owner", role="owner"),
                Profile(id="client-1", email="ana@example.com", full_name="Ana Client", role="client"),
                Profile(id="client-2", email="ben@example.com", full_name="", role="client"),
            ]
        )
    await dispose_engines()

    settings = ServiceSettings(
        app_name="Store Service Test",
        enable_metrics=False,
        enable_tracing=False,
        database_url=database_url,
        decrement_backoff_seconds=0.0,
    )
    app_kwargs.setdefault("identity_verifier", _FakeVerifier())
    app_kwargs.setdefault("recommendation_client", _FakeGenerator())
    return create_app(settings, **app_kwargs)


async def _create_item(client: AsyncClient, **overrides: Any) -> dict[str, Any]:
    payload = {"name": "Lamp", "category": "home", "price": "10.00", "quantity": 5, "minimumStockThreshold": 1}
    payload.update(overrides)
    response = await client.post("/inventory", json=payload, headers=OWNER)
    assert response.status_code == 201, response.text
    return response.json()


def _cart_line(item: dict[str, Any], quantity: int) -> dict[str, Any]:
    return {
        "itemId": item["id"],
        "name": item["name"],
        "category": item["category"],
        "unitPrice": item["price"],
        "stockQuantity": item["quantity"],
        "quantity": quantity,
    }


def test_inventory_crud_requires_a_manager(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                payload = {"name": "Lamp", "category": "home", "price": "10.00", "quantity": 5}
                assert (await client.post("/inventory", json=payload)).status_code == 401
                assert (await client.post("/inventory", json=payload, headers=CLIENT)).status_code == 403

                created = await _create_item(client)
                assert created["price"] == "10.00"
                assert created["stockStatus"] == "OK"

                invalid = await client.post(
                    "/inventory", json={**payload, "price": "-1.00"}, headers=OWNER
                )
                assert invalid.status_code == 422

                listing = await client.get("/inventory")
                assert listing.json()["total"] == 1

                patched = await client.patch(
                    f"/inventory/{created['id']}", json={"quantity": 1}, headers=OWNER
                )
                assert patched.status_code == 200
                assert patched.json()["stockStatus"] == "LOW_STOCK"

                stats = await client.get("/inventory/stats", headers=OWNER)
                assert stats.json() == {
                    "itemCount": 1,
                    "totalQuantity": 1,
                    "totalValue": "10.00",
                    "lowStock": 1,
                    "outOfStock": 0,
                }

                deleted = await client.delete(f"/inventory/{created['id']}", headers=OWNER)
                assert deleted.status_code == 204
                missing = await client.get(f"/inventory/{created['id']}")
                assert missing.status_code == 404

    _run(body())
    _run(dispose_engines())


def test_checkout_and_order_views(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                lamp = await _create_item(client)
                bulb = await _create_item(client, name="Bulb", price="5.50")

                empty = await client.post(
                    "/orders", json={"items": [], "shippingAddress": "1 Main St"}, headers=CLIENT
                )
                assert empty.status_code == 400

                placed = await client.post(
                    "/orders",
                    json={"items": [_cart_line(lamp, 2), _cart_line(bulb, 1)], "shippingAddress": "1 Main St"},
                    headers=CLIENT,
                )
                assert placed.status_code == 201, placed.text
                order = placed.json()
                assert order["clientId"] == "client-1"
                assert order["status"] == "pending"
                assert order["totalAmount"] == "25.50"
                assert order["linesComplete"] is True
                assert [line["itemName"] for line in order["items"]] == ["Lamp", "Bulb"]

                stock = await client.get(f"/inventory/{lamp['id']}")
                assert stock.json()["quantity"] == 3

                own = await client.get("/orders", headers=CLIENT)
                assert own.json()["total"] == 1
                assert (await client.get("/orders", headers=OTHER_CLIENT)).json()["total"] == 0
                assert (await client.get(f"/orders/{order['id']}", headers=OTHER_CLIENT)).status_code == 404

                everything = await client.get("/orders", headers=OWNER)
                assert everything.json()["items"][0]["clientName"] == "Ana Client"

                partial = await client.get("/orders/partial", headers=OWNER)
                assert partial.json()["total"] == 0

    _run(body())
    _run(dispose_engines())


def test_order_status_changes(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                lamp = await _create_item(client)
                placed = await client.post(
                    "/orders",
                    json={"items": [_cart_line(lamp, 1)], "shippingAddress": "1 Main St"},
                    headers=CLIENT,
                )
                order_id = placed.json()["id"]

                forbidden = await client.patch(
                    f"/orders/{order_id}/status", json={"status": "shipped"}, headers=CLIENT
                )
                assert forbidden.status_code == 403

                shipped = await client.patch(
                    f"/orders/{order_id}/status", json={"status": "shipped"}, headers=OWNER
                )
                assert shipped.status_code == 200
                assert shipped.json()["status"] == "shipped"

                backwards = await client.patch(
                    f"/orders/{order_id}/status", json={"status": "pending"}, headers=OWNER
                )
                assert backwards.status_code == 409

                unknown = await client.patch(
                    f"/orders/{order_id}/status", json={"status": "lost"}, headers=OWNER
                )
                assert unknown.status_code == 400

                missing = await client.patch(
                    "/orders/missing/status", json={"status": "shipped"}, headers=OWNER
                )
                assert missing.status_code == 404

                events = await client.get(f"/orders/{order_id}/events", headers=OWNER)
                assert [event["type"] for event in events.json()] == ["created", "status_changed"]
                assert events.json()[1]["payload"] == "pending->shipped"

    _run(body())
    _run(dispose_engines())


def test_stock_decrement_boundary(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                lamp = await _create_item(client, quantity=3)
                request = {"items": [{"item_id": lamp["id"], "quantity": 2}]}

                unauthenticated = await client.post("/stock/decrement", json=request)
                assert unauthenticated.status_code == 401
                assert unauthenticated.json() == {"error": "Unauthorized"}

                empty = await client.post("/stock/decrement", json={"items": []}, headers=CLIENT)
                assert empty.status_code == 400
                assert empty.json() == {"error": "No items provided"}

                ok = await client.post("/stock/decrement", json=request, headers=CLIENT)
                assert ok.status_code == 200
                assert ok.json()["success"] is True

                floored = await client.post("/stock/decrement", json=request, headers=CLIENT)
                assert floored.json()["results"][0] == {
                    "itemId": lamp["id"],
                    "previousQuantity": 1,
                    "newQuantity": 0,
                    "shortfall": 1,
                }

                unknown = await client.post(
                    "/stock/decrement",
                    json={"items": [{"item_id": "missing", "quantity": 1}]},
                    headers=CLIENT,
                )
                assert unknown.status_code == 404
                assert "error" in unknown.json()

    _run(body())
    _run(dispose_engines())


def test_reports(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                cable = await _create_item(client, name="Cable", price="9.99", quantity=10)
                for headers in (CLIENT, OTHER_CLIENT):
                    await client.post(
                        "/orders",
                        json={"items": [_cart_line(cable, 1)], "shippingAddress": "1 Main St"},
                        headers=headers,
                    )

                assert (await client.get("/reports/sales", headers=CLIENT)).status_code == 403

                sales = (await client.get("/reports/sales", headers=OWNER)).json()
                assert sales["totalOrders"] == 2
                assert sales["items"] == [
                    {
                        "itemId": cable["id"],
                        "itemName": "Cable",
                        "category": "home",
                        "unitsSold": 2,
                        "revenue": "19.98",
                        "currentStock": 8,
                        "stockStatus": "OK",
                    }
                ]

                report = (await client.get("/reports/transactions", headers=OWNER)).json()
                assert report["totalOrders"] == 2
                assert report["totalRevenue"] == "19.98"
                assert report["pendingOrders"] == 2
                assert report["transactions"][0]["clientName"] == "ben@example.com"

    _run(body())
    _run(dispose_engines())


def test_recommendations_endpoint(tmp_path) -> None:
    reply = '[{"item_name": "Lamp", "item_id": "x", "reason": "Bright", "price": 10}]'
    app = _run(_prepare_app(tmp_path, recommendation_client=_FakeGenerator(reply)))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                await _create_item(client)

                invalid = await client.post("/recommendations", json={"role": "admin"}, headers=CLIENT)
                assert invalid.status_code == 400
                assert invalid.json() == {"error": "Invalid role"}

                assert (await client.post("/recommendations", json={"role": "client"})).status_code == 401
                assert (
                    await client.post("/recommendations", json={"role": "owner"}, headers=CLIENT)
                ).status_code == 403
                assert (
                    await client.post(
                        "/recommendations", json={"role": "client", "userId": "client-2"}, headers=CLIENT
                    )
                ).status_code == 403

                ok = await client.post(
                    "/recommendations", json={"role": "client", "userId": "client-1"}, headers=CLIENT
                )
                assert ok.status_code == 200
                assert ok.json() == {
                    "recommendations": [{"item_name": "Lamp", "item_id": "x", "reason": "Bright", "price": 10.0}],
                    "role": "client",
                }

                owner = await client.post("/recommendations", json={"role": "owner"}, headers=OWNER)
                assert owner.json() == {"recommendations": [], "role": "owner"}

    _run(body())
    _run(dispose_engines())


def test_recommendations_upstream_failure(tmp_path) -> None:
    app = _run(_prepare_app(tmp_path, recommendation_client=_FakeGenerator(error="AI service error: 503")))

    async def body() -> None:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.post("/recommendations", json={"role": "client"}, headers=CLIENT)
                assert response.status_code == 502
                assert response.json() == {"error": "AI service error: 503"}

    _run(body())
    _run(dispose_engines())


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield

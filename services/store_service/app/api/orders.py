"""HTTP routes for checkout and order management."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth import CallerIdentity
from ..cart import Cart, ItemSnapshot
from ..dependencies import (
    as_http_exception,
    get_caller,
    get_elevated_session_factory,
    get_inventory_repository,
    get_order_repository,
    require_roles,
)
from ..errors import StoreError
from ..repository import InventoryRepository, OrderRepository
from ..schemas import (
    CheckoutRequest,
    OrderEventResponse,
    OrderListResponse,
    OrderResponse,
    OrderUpdateStatus,
)
from ..services import OrderQueryService, OrderService, OrderView
from ..workflow import OrderStatusWorkflow

router = APIRouter(prefix="/orders", tags=["orders"])

require_manager = require_roles("owner", "staff")


def _serialize_order(view: OrderView) -> dict[str, object]:
    order = view.order
    return {
        "id": order.id,
        "clientId": order.client_id,
        "clientName": view.client_name,
        "clientEmail": view.client_email,
        "status": order.status,
        "totalAmount": view.total_amount,
        "shippingAddress": order.shipping_address,
        "linesComplete": order.lines_complete,
        "items": [
            {
                "id": line.id,
                "itemId": line.item_id,
                "itemName": line.item_name,
                "quantity": line.quantity,
                "unitPrice": line.unit_price,
                "lineTotal": line.line_total,
                "oversoldQuantity": line.oversold_quantity,
            }
            for line in view.lines
        ],
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
    }


def _cart_from_payload(payload: CheckoutRequest) -> Cart:
    return Cart.of(
        (
            (
                ItemSnapshot(
                    id=line.item_id,
                    name=line.name,
                    price=line.unit_price,
                    quantity=line.stock_quantity,
                    category=line.category,
                    description=line.description,
                ),
                line.quantity,
            )
            for line in payload.items
        ),
        shipping_address=payload.shipping_address,
    )


def _query_service(
    orders: OrderRepository = Depends(get_order_repository),
    inventory: InventoryRepository = Depends(get_inventory_repository),
) -> OrderQueryService:
    return OrderQueryService(orders, inventory)


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: CheckoutRequest,
    request: Request,
    caller: CallerIdentity = Depends(get_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_elevated_session_factory),
    queries: OrderQueryService = Depends(_query_service),
) -> OrderResponse:
    settings = request.app.state.settings
    service = OrderService(
        session_factory,
        mode=settings.checkout_mode,
        decrement_max_attempts=settings.decrement_max_attempts,
        decrement_backoff_seconds=settings.decrement_backoff_seconds,
    )
    try:
        order_id = await service.place_order(_cart_from_payload(payload), caller.user_id)
        view = await queries.get_order(order_id)
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    return OrderResponse.model_validate(_serialize_order(view))


@router.get("", response_model=OrderListResponse)
async def list_orders(
    client_id: str | None = Query(default=None, alias="clientId"),
    caller: CallerIdentity = Depends(get_caller),
    queries: OrderQueryService = Depends(_query_service),
) -> OrderListResponse:
    if not caller.is_manager:
        client_id = caller.user_id
    try:
        views = await queries.list_orders(client_id=client_id, with_clients=caller.is_manager)
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    items = [OrderResponse.model_validate(_serialize_order(view)) for view in views]
    return OrderListResponse(items=items, total=len(items))


@router.get("/partial", response_model=OrderListResponse)
async def list_partial_orders(
    _: CallerIdentity = Depends(require_manager),
    queries: OrderQueryService = Depends(_query_service),
) -> OrderListResponse:
    views = await queries.list_partial_orders()
    items = [OrderResponse.model_validate(_serialize_order(view)) for view in views]
    return OrderListResponse(items=items, total=len(items))


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    caller: CallerIdentity = Depends(get_caller),
    queries: OrderQueryService = Depends(_query_service),
) -> OrderResponse:
    try:
        view = await queries.get_order(order_id)
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    if not caller.is_manager and view.order.client_id != caller.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return OrderResponse.model_validate(_serialize_order(view))


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    payload: OrderUpdateStatus,
    _: CallerIdentity = Depends(require_manager),
    repository: OrderRepository = Depends(get_order_repository),
    queries: OrderQueryService = Depends(_query_service),
) -> OrderResponse:
    try:
        await OrderStatusWorkflow(repository).transition(order_id, payload.status)
        view = await queries.get_order(order_id)
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    return OrderResponse.model_validate(_serialize_order(view))


@router.get("/{order_id}/events", response_model=list[OrderEventResponse])
async def get_order_events(
    order_id: str,
    _: CallerIdentity = Depends(require_manager),
    repository: OrderRepository = Depends(get_order_repository),
):
    order = await repository.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return [
        OrderEventResponse.model_validate(
            {"type": event.type, "payload": event.payload, "createdAt": event.created_at}
        )
        for event in order.events
    ]

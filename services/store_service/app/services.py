"""Service layer for orchestrating checkout and order reads."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from time import perf_counter
from typing import Any, Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session
from services.common.tracing import get_tracer

from .cart import Cart
from .errors import NotFoundError, PartialOrderError, PersistenceError, StoreError, ValidationError
from .ledger import InventoryLedger
from .metrics import STORE_CHECKOUT_SECONDS, STORE_ORDER_LINES_OVERSOLD_TOTAL, STORE_ORDERS_PLACED_TOTAL
from .models import Order, OrderItem, Profile
from .money import from_cents, to_cents
from .repository import InventoryRepository, OrderRepository

logger = logging.getLogger(__name__)

CheckoutMode = Literal["atomic", "two_phase"]

UNKNOWN_ITEM = "Unknown item"
UNKNOWN_CLIENT = "Unknown client"


def display_client_name(profile: Profile | None) -> str:
    if profile is None:
        return UNKNOWN_CLIENT
    if profile.full_name and profile.full_name.strip():
        return profile.full_name
    return profile.email or UNKNOWN_CLIENT


class OrderService:
    """Turns a cart into a durable order, its frozen line items and stock decrements.

    ``atomic`` mode writes header, lines and decrements in one transaction: a
    failure anywhere leaves nothing behind and the checkout may be retried.
    ``two_phase`` mode commits the header first; a failure while writing the
    lines raises :class:`PartialOrderError` and the header stays flagged with
    ``lines_complete = False`` for reconciliation. Decrements then run per
    item, best effort.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        mode: CheckoutMode = "atomic",
        decrement_max_attempts: int = 5,
        decrement_backoff_seconds: float = 0.05,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.session_factory = session_factory
        self.mode = mode
        self._decrement_max_attempts = decrement_max_attempts
        self._decrement_backoff_seconds = decrement_backoff_seconds
        self._sleep = sleep

    def _ledger(self, session: AsyncSession) -> InventoryLedger:
        return InventoryLedger(
            InventoryRepository(session),
            max_attempts=self._decrement_max_attempts,
            backoff_seconds=self._decrement_backoff_seconds,
            sleep=self._sleep,
        )

    async def place_order(self, cart: Cart, client_id: str | None) -> str:
        """Persist ``cart`` as a pending order for ``client_id`` and return its id."""

        shipping_address = (cart.shipping_address or "").strip()
        if cart.is_empty():
            self._count("rejected")
            raise ValidationError("cart is empty")
        if not shipping_address:
            self._count("rejected")
            raise ValidationError("shipping address is required")
        if not client_id or not client_id.strip():
            self._count("rejected")
            raise ValidationError("client id is required")
        if any(line.quantity < 1 for line in cart.lines):
            self._count("rejected")
            raise ValidationError("every cart line needs a quantity of at least 1")

        # Frozen from the cart snapshot, never re-fetched from the catalog.
        lines = [
            {
                "item_id": line.item.id,
                "quantity": line.quantity,
                "unit_price_cents": to_cents(line.item.price),
            }
            for line in cart.lines
        ]
        total_cents = sum(entry["unit_price_cents"] * entry["quantity"] for entry in lines)

        with get_tracer().start_as_current_span("store.place_order") as span:
            span.set_attribute("store.checkout_mode", self.mode)
            span.set_attribute("store.line_count", len(lines))
            started = perf_counter()
            try:
                if self.mode == "two_phase":
                    order_id = await self._place_two_phase(client_id, shipping_address, total_cents, lines)
                else:
                    order_id = await self._place_atomic(client_id, shipping_address, total_cents, lines)
            finally:
                STORE_CHECKOUT_SECONDS.labels(mode=self.mode).observe(perf_counter() - started)
            span.set_attribute("store.order_id", order_id)

        self._count("placed")
        logger.info(
            "Placed order %s for client %s: %s lines, total %s",
            order_id,
            client_id,
            len(lines),
            from_cents(total_cents),
        )
        return order_id

    async def _place_atomic(
        self,
        client_id: str,
        shipping_address: str,
        total_cents: int,
        lines: list[dict[str, Any]],
    ) -> str:
        try:
            async with lifespan_session(self.session_factory) as session:
                orders = OrderRepository(session)
                order = await orders.create_order(
                    client_id=client_id,
                    total_amount_cents=total_cents,
                    shipping_address=shipping_address,
                )
                created = await orders.add_lines(order.id, lines)
                ledger = self._ledger(session)
                for line in created:
                    try:
                        result = await ledger.decrement(line.item_id, line.quantity)
                    except NotFoundError as exc:
                        raise ValidationError(f"item '{line.item_id}' is no longer in the catalog") from exc
                    if result.shortfall:
                        await self._flag_oversold(orders, line, result.shortfall)
                await orders.mark_lines_complete(order)
                await orders.add_event(order.id, event_type="created", payload=str(len(created)))
                return order.id
        except StoreError:
            self._count("failed")
            raise
        except SQLAlchemyError as exc:
            self._count("failed")
            raise PersistenceError(f"checkout failed and was rolled back: {exc.__class__.__name__}") from exc

    async def _place_two_phase(
        self,
        client_id: str,
        shipping_address: str,
        total_cents: int,
        lines: list[dict[str, Any]],
    ) -> str:
        try:
            async with lifespan_session(self.session_factory) as session:
                order = await OrderRepository(session).create_order(
                    client_id=client_id,
                    total_amount_cents=total_cents,
                    shipping_address=shipping_address,
                )
                order_id = order.id
        except SQLAlchemyError as exc:
            self._count("failed")
            raise PersistenceError(f"failed to create order: {exc.__class__.__name__}") from exc

        try:
            async with lifespan_session(self.session_factory) as session:
                orders = OrderRepository(session)
                header = await orders.get_order(order_id)
                if header is None:
                    raise NotFoundError("order", order_id)
                created = await orders.add_lines(order_id, lines)
                await orders.mark_lines_complete(header)
                await orders.add_event(order_id, event_type="created", payload=str(len(created)))
                line_refs = [(line.id, line.item_id, line.quantity) for line in created]
        except asyncio.CancelledError:
            self._count("partial")
            logger.error("Checkout cancelled after order %s header was written; lines incomplete", order_id)
            raise
        except Exception as exc:
            self._count("partial")
            logger.error("Order %s header persisted but line items failed: %s", order_id, exc)
            raise PartialOrderError(order_id, str(exc) or exc.__class__.__name__) from exc

        for line_id, item_id, quantity in line_refs:
            await self._decrement_best_effort(order_id, line_id, item_id, quantity)
        return order_id

    async def _decrement_best_effort(self, order_id: str, line_id: str, item_id: str, quantity: int) -> None:
        try:
            async with lifespan_session(self.session_factory) as session:
                result = await self._ledger(session).decrement(item_id, quantity)
                if result.shortfall:
                    orders = OrderRepository(session)
                    line = await session.get(OrderItem, line_id)
                    if line is not None:
                        await self._flag_oversold(orders, line, result.shortfall)
            return
        except (StoreError, SQLAlchemyError) as exc:
            logger.warning("Stock decrement for order %s item %s failed: %s", order_id, item_id, exc)
            reason = str(exc) or exc.__class__.__name__

        try:
            async with lifespan_session(self.session_factory) as session:
                await OrderRepository(session).add_event(
                    order_id,
                    event_type="stock_decrement_failed",
                    payload=f"{item_id}:{quantity}:{reason}",
                )
        except SQLAlchemyError:
            logger.exception("Could not record failed decrement for order %s", order_id)

    async def _flag_oversold(self, orders: OrderRepository, line: OrderItem, shortfall: int) -> None:
        await orders.flag_oversold(line, shortfall=shortfall)
        await orders.add_event(line.order_id, event_type="line_oversold", payload=f"{line.item_id}:{shortfall}")
        STORE_ORDER_LINES_OVERSOLD_TOTAL.inc()
        logger.warning("Order %s line for %s oversold by %s", line.order_id, line.item_id, shortfall)

    def _count(self, outcome: str) -> None:
        STORE_ORDERS_PLACED_TOTAL.labels(mode=self.mode, outcome=outcome).inc()


@dataclass(slots=True)
class OrderLineView:
    id: str
    item_id: str
    item_name: str
    quantity: int
    unit_price: Decimal
    oversold_quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(slots=True)
class OrderView:
    order: Order
    lines: list[OrderLineView]
    client_name: str | None = None
    client_email: str | None = None

    @property
    def total_amount(self) -> Decimal:
        return from_cents(self.order.total_amount_cents)


class OrderQueryService:
    """Read side: orders with item names and client names resolved at read time."""

    def __init__(self, orders: OrderRepository, inventory: InventoryRepository) -> None:
        self.orders = orders
        self.inventory = inventory

    async def get_order(self, order_id: str) -> OrderView:
        order = await self.orders.get_order(order_id)
        if order is None:
            raise NotFoundError("order", order_id)
        views = await self._describe([order], with_clients=True)
        return views[0]

    async def list_orders(self, *, client_id: str | None = None, with_clients: bool = False) -> list[OrderView]:
        orders = await self.orders.list_orders(client_id=client_id)
        return await self._describe(orders, with_clients=with_clients)

    async def list_partial_orders(self) -> list[OrderView]:
        orders = await self.orders.list_orders(partial_only=True)
        return await self._describe(orders, with_clients=True)

    async def _describe(self, orders: list[Order], *, with_clients: bool) -> list[OrderView]:
        items = await self.inventory.get_items(line.item_id for order in orders for line in order.items)
        profiles: dict[str, Profile] = {}
        if with_clients:
            profiles = await self.orders.get_profiles(order.client_id for order in orders)

        views: list[OrderView] = []
        for order in orders:
            lines = [
                OrderLineView(
                    id=line.id,
                    item_id=line.item_id,
                    item_name=items[line.item_id].name if line.item_id in items else UNKNOWN_ITEM,
                    quantity=line.quantity,
                    unit_price=from_cents(line.unit_price_cents),
                    oversold_quantity=line.oversold_quantity,
                )
                for line in order.items
            ]
            view = OrderView(order=order, lines=lines)
            if with_clients:
                profile = profiles.get(order.client_id)
                view.client_name = display_client_name(profile)
                view.client_email = profile.email if profile is not None else ""
            views.append(view)
        return views

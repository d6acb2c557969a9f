"""Data access helpers for the store service."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import Select, and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import InventoryItem, Order, OrderEvent, OrderItem, Profile


class InventoryRepository:
    """Persistence helpers for inventory items."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_item(
        self,
        *,
        name: str,
        description: str,
        category: str,
        quantity: int,
        price_cents: int,
        minimum_stock_threshold: int,
    ) -> InventoryItem:
        item = InventoryItem(
            name=name,
            description=description,
            category=category,
            quantity=quantity,
            price_cents=price_cents,
            minimum_stock_threshold=minimum_stock_threshold,
        )
        self.session.add(item)
        await self.session.flush()
        await self.session.refresh(item, attribute_names=["created_at", "updated_at"])
        return item

    async def get_item(self, item_id: str) -> InventoryItem | None:
        result = await self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_items(self, *, in_stock_only: bool = False) -> list[InventoryItem]:
        stmt: Select[tuple[InventoryItem]] = select(InventoryItem).order_by(
            InventoryItem.name.asc(), InventoryItem.id.asc()
        )
        if in_stock_only:
            stmt = stmt.where(InventoryItem.quantity > 0)
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars())

    async def get_items(self, item_ids: Iterable[str]) -> dict[str, InventoryItem]:
        ids = set(item_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(InventoryItem).where(InventoryItem.id.in_(ids)).execution_options(populate_existing=True)
        )
        return {item.id: item for item in result.scalars()}

    async def update_item(self, item: InventoryItem, fields: dict[str, Any]) -> InventoryItem:
        for name, value in fields.items():
            setattr(item, name, value)
        await self.session.flush()
        await self.session.refresh(item, attribute_names=["updated_at"])
        return item

    async def delete_item(self, item: InventoryItem) -> None:
        await self.session.delete(item)
        await self.session.flush()

    async def read_quantity(self, item_id: str) -> int | None:
        """Read the committed quantity, bypassing the identity map."""

        result = await self.session.execute(
            select(InventoryItem.quantity).where(InventoryItem.id == item_id)
        )
        return result.scalar_one_or_none()

    async def compare_and_set_quantity(self, item_id: str, *, expected: int, new: int) -> bool:
        """Write ``new`` only if the stored quantity still equals ``expected``."""

        result = await self.session.execute(
            update(InventoryItem)
            .where(InventoryItem.id == item_id, InventoryItem.quantity == expected)
            .values(quantity=new)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def stock_totals(self) -> dict[str, int]:
        stmt = select(
            func.count(InventoryItem.id),
            func.coalesce(func.sum(InventoryItem.quantity), 0),
            func.coalesce(func.sum(InventoryItem.quantity * InventoryItem.price_cents), 0),
            func.coalesce(
                func.sum(
                    case(
                        (
                            and_(
                                InventoryItem.quantity > 0,
                                InventoryItem.quantity <= InventoryItem.minimum_stock_threshold,
                            ),
                            1,
                        ),
                        else_=0,
                    )
                ),
                0,
            ),
            func.coalesce(func.sum(case((InventoryItem.quantity <= 0, 1), else_=0)), 0),
        )
        item_count, total_quantity, total_value_cents, low_stock, out_of_stock = (
            await self.session.execute(stmt)
        ).one()
        return {
            "item_count": int(item_count),
            "total_quantity": int(total_quantity),
            "total_value_cents": int(total_value_cents),
            "low_stock": int(low_stock),
            "out_of_stock": int(out_of_stock),
        }


class OrderRepository:
    """Persistence helpers for orders, line items and their audit trail."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_order(
        self,
        *,
        client_id: str,
        total_amount_cents: int,
        shipping_address: str,
        lines_complete: bool = False,
    ) -> Order:
        order = Order(
            client_id=client_id,
            status="pending",
            total_amount_cents=total_amount_cents,
            shipping_address=shipping_address,
            lines_complete=lines_complete,
        )
        self.session.add(order)
        await self.session.flush()
        await self.session.refresh(order, attribute_names=["created_at", "updated_at"])
        return order

    async def add_lines(self, order_id: str, lines: Sequence[dict[str, Any]]) -> list[OrderItem]:
        created = [
            OrderItem(
                order_id=order_id,
                item_id=entry["item_id"],
                quantity=entry["quantity"],
                unit_price_cents=entry["unit_price_cents"],
                line_number=position,
            )
            for position, entry in enumerate(lines, start=1)
        ]
        self.session.add_all(created)
        await self.session.flush()
        return created

    async def mark_lines_complete(self, order: Order) -> Order:
        order.lines_complete = True
        await self.session.flush()
        return order

    async def flag_oversold(self, line: OrderItem, *, shortfall: int) -> OrderItem:
        line.oversold_quantity = shortfall
        await self.session.flush()
        return line

    async def get_order(self, order_id: str) -> Order | None:
        result = await self.session.execute(
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.events))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_orders(self, *, client_id: str | None = None, partial_only: bool = False) -> list[Order]:
        stmt: Select[tuple[Order]] = select(Order).options(selectinload(Order.items))
        if client_id is not None:
            stmt = stmt.where(Order.client_id == client_id)
        if partial_only:
            stmt = stmt.where(Order.lines_complete.is_(False))
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().unique())

    async def count_orders(self) -> int:
        return (await self.session.execute(select(func.count(Order.id)))).scalar_one()

    async def sales_by_item(self) -> list[tuple[str, int, int]]:
        """Return ``(item_id, units, revenue_cents)`` grouped over every order line."""

        stmt = select(
            OrderItem.item_id,
            func.sum(OrderItem.quantity),
            func.sum(OrderItem.quantity * OrderItem.unit_price_cents),
        ).group_by(OrderItem.item_id)
        result = await self.session.execute(stmt)
        return [(item_id, int(units), int(revenue)) for item_id, units, revenue in result.all()]

    async def lines_for_client(self, client_id: str) -> list[OrderItem]:
        result = await self.session.execute(
            select(OrderItem)
            .join(Order, Order.id == OrderItem.order_id)
            .where(Order.client_id == client_id)
            .order_by(Order.created_at.asc(), OrderItem.order_id, OrderItem.line_number)
        )
        return list(result.scalars())

    async def get_profiles(self, profile_ids: Iterable[str]) -> dict[str, Profile]:
        ids = set(profile_ids)
        if not ids:
            return {}
        result = await self.session.execute(select(Profile).where(Profile.id.in_(ids)))
        return {profile.id: profile for profile in result.scalars()}

    async def get_profile(self, profile_id: str) -> Profile | None:
        result = await self.session.execute(select(Profile).where(Profile.id == profile_id))
        return result.scalar_one_or_none()

    async def add_event(self, order_id: str, *, event_type: str, payload: str) -> OrderEvent:
        entry = OrderEvent(order_id=order_id, type=event_type, payload=payload)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def update_status(self, order: Order, *, status: str) -> Order:
        order.status = status
        await self.session.flush()
        await self.session.refresh(order, attribute_names=["updated_at"])
        return order

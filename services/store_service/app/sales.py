"""Sales aggregation over orders, order lines and the live catalog.

Nothing here is persisted: every call regroups the stored line items and
resolves item names and stock classifications against the current catalog.
Missing data degrades to sentinels ("Unknown", empty summaries), never errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from .models import InventoryItem
from .money import from_cents
from .repository import InventoryRepository, OrderRepository
from .services import display_client_name

UNKNOWN_ITEM_NAME = "Unknown"
UNKNOWN_CATEGORY = "?"


class StockStatus(str, Enum):
    OUT_OF_STOCK = "OUT_OF_STOCK"
    LOW_STOCK = "LOW_STOCK"
    OK = "OK"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


def classify_stock(quantity: int, minimum_stock_threshold: int) -> StockStatus:
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= minimum_stock_threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.OK


def classify_item(item: InventoryItem) -> StockStatus:
    return classify_stock(item.quantity, item.minimum_stock_threshold)


@dataclass(slots=True, frozen=True)
class SalesSummary:
    units_sold: int
    revenue: Decimal


@dataclass(slots=True, frozen=True)
class SalesEntry:
    item_id: str
    item_name: str
    category: str
    units_sold: int
    revenue: Decimal
    current_stock: int | None
    stock_status: StockStatus | None


@dataclass(slots=True)
class TransactionLine:
    item_name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(slots=True)
class Transaction:
    id: str
    client_id: str
    client_name: str
    client_email: str
    status: str
    total_amount: Decimal
    shipping_address: str
    created_at: datetime
    items: list[TransactionLine] = field(default_factory=list)


@dataclass(slots=True)
class TransactionsReport:
    transactions: list[Transaction]
    total_revenue: Decimal
    delivered_revenue: Decimal
    pending_orders: int

    @property
    def total_orders(self) -> int:
        return len(self.transactions)


class SalesAggregator:
    def __init__(self, orders: OrderRepository, inventory: InventoryRepository) -> None:
        self.orders = orders
        self.inventory = inventory

    async def summarize_sales(self) -> dict[str, SalesSummary]:
        """Units sold and revenue per item id over every order line."""

        return {
            item_id: SalesSummary(units_sold=units, revenue=from_cents(revenue_cents))
            for item_id, units, revenue_cents in await self.orders.sales_by_item()
        }

    async def ranked_sales(self) -> list[SalesEntry]:
        """Sales summaries joined with the catalog, best sellers first."""

        summary = await self.summarize_sales()
        if not summary:
            return []
        items = await self.inventory.get_items(summary)

        entries = []
        for item_id, sold in summary.items():
            item = items.get(item_id)
            entries.append(
                SalesEntry(
                    item_id=item_id,
                    item_name=item.name if item is not None else UNKNOWN_ITEM_NAME,
                    category=item.category if item is not None else UNKNOWN_CATEGORY,
                    units_sold=sold.units_sold,
                    revenue=sold.revenue,
                    current_stock=item.quantity if item is not None else None,
                    stock_status=classify_item(item) if item is not None else None,
                )
            )
        entries.sort(key=lambda entry: (-entry.units_sold, entry.item_id))
        return entries

    async def transactions_report(self) -> TransactionsReport:
        orders = await self.orders.list_orders()
        if not orders:
            return TransactionsReport(
                transactions=[],
                total_revenue=Decimal("0.00"),
                delivered_revenue=Decimal("0.00"),
                pending_orders=0,
            )

        items = await self.inventory.get_items(line.item_id for order in orders for line in order.items)
        profiles = await self.orders.get_profiles(order.client_id for order in orders)

        transactions: list[Transaction] = []
        total_cents = delivered_cents = pending = 0
        for order in orders:
            profile = profiles.get(order.client_id)
            transactions.append(
                Transaction(
                    id=order.id,
                    client_id=order.client_id,
                    client_name=display_client_name(profile),
                    client_email=profile.email if profile is not None else "",
                    status=order.status,
                    total_amount=from_cents(order.total_amount_cents),
                    shipping_address=order.shipping_address,
                    created_at=order.created_at,
                    items=[
                        TransactionLine(
                            item_name=items[line.item_id].name if line.item_id in items else UNKNOWN_ITEM_NAME,
                            quantity=line.quantity,
                            unit_price=from_cents(line.unit_price_cents),
                        )
                        for line in order.items
                    ],
                )
            )
            total_cents += order.total_amount_cents
            if order.status == "delivered":
                delivered_cents += order.total_amount_cents
            elif order.status == "pending":
                pending += 1

        return TransactionsReport(
            transactions=transactions,
            total_revenue=from_cents(total_cents),
            delivered_revenue=from_cents(delivered_cents),
            pending_orders=pending,
        )

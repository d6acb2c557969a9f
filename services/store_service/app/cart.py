"""Session-scoped shopping cart.

A ``Cart`` is a plain value object owned by one shopping session and handed
explicitly to checkout. It never touches the database or the network.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from .models import InventoryItem
from .money import from_cents


@dataclass(slots=True, frozen=True)
class ItemSnapshot:
    """Catalog item as it looked when the shopper picked it."""

    id: str
    name: str
    price: Decimal
    quantity: int = 0
    category: str = ""
    description: str = ""

    @classmethod
    def from_item(cls, item: InventoryItem) -> ItemSnapshot:
        return cls(
            id=item.id,
            name=item.name,
            price=from_cents(item.price_cents),
            quantity=item.quantity,
            category=item.category,
            description=item.description,
        )


@dataclass(slots=True)
class CartLine:
    item: ItemSnapshot
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.item.price * self.quantity


def clamp_to_stock(item: ItemSnapshot, qty: int) -> int:
    """Clamp a requested quantity to what the snapshot showed in stock."""

    return max(0, min(qty, item.quantity))


@dataclass(slots=True)
class Cart:
    lines: list[CartLine] = field(default_factory=list)
    shipping_address: str = ""

    @classmethod
    def of(cls, lines: Iterable[tuple[ItemSnapshot, int]], shipping_address: str = "") -> Cart:
        cart = cls(shipping_address=shipping_address)
        for item, qty in lines:
            cart.add(item, qty)
        return cart

    def _find(self, item_id: str) -> CartLine | None:
        return next((line for line in self.lines if line.item.id == item_id), None)

    def add(self, item: ItemSnapshot, qty: int = 1) -> None:
        existing = self._find(item.id)
        if existing is not None:
            existing.quantity += qty
        else:
            self.lines.append(CartLine(item=item, quantity=qty))

    def update_qty(self, item_id: str, qty: int) -> None:
        if qty <= 0:
            self.remove(item_id)
            return
        line = self._find(item_id)
        if line is not None:
            line.quantity = qty

    def remove(self, item_id: str) -> None:
        self.lines = [line for line in self.lines if line.item.id != item_id]

    def set_shipping_address(self, address: str) -> None:
        self.shipping_address = address

    def clear(self) -> None:
        self.lines = []
        self.shipping_address = ""

    def total_amount(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))

    def total_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def is_empty(self) -> bool:
        return not self.lines

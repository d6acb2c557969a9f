"""Inventory ledger: item records and their quantity on hand.

Quantities only ever go down through :meth:`InventoryLedger.decrement`, a
compare-and-swap update retried with bounded exponential backoff. The stored
quantity floors at zero; the amount that could not be covered is reported as
``shortfall`` so callers can flag the oversell instead of hiding it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import SQLAlchemyError

from .errors import NotFoundError, PersistenceError, StockContentionError, ValidationError
from .metrics import STORE_STOCK_DECREMENT_FAILURES_TOTAL, STORE_STOCK_DECREMENT_RETRIES_TOTAL
from .models import InventoryItem
from .money import from_cents, to_cents
from .repository import InventoryRepository
from .schemas import InventoryCreate, InventoryUpdate

logger = logging.getLogger(__name__)

_ITEM = "inventory item"


@dataclass(slots=True, frozen=True)
class DecrementResult:
    item_id: str
    requested: int
    previous_quantity: int
    new_quantity: int

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.previous_quantity)


@dataclass(slots=True, frozen=True)
class InventoryStats:
    item_count: int
    total_quantity: int
    total_value: Decimal
    low_stock: int
    out_of_stock: int


def _describe(exc: SchemaValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'body'}: {error['msg']}" for error in exc.errors()
    )


@asynccontextmanager
async def _storage_errors(action: str) -> AsyncIterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise PersistenceError(f"failed to {action}: {exc.__class__.__name__}") from exc


class InventoryLedger:
    """Owns inventory items; the only writer of ``quantity`` after creation."""

    def __init__(
        self,
        repository: InventoryRepository,
        *,
        max_attempts: int = 5,
        backoff_seconds: float = 0.05,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.repository = repository
        self._max_attempts = max(max_attempts, 1)
        self._backoff_seconds = max(backoff_seconds, 0.0)
        self._sleep = sleep

    async def get_all(self, *, in_stock_only: bool = False) -> list[InventoryItem]:
        return await self.repository.list_items(in_stock_only=in_stock_only)

    async def get(self, item_id: str) -> InventoryItem:
        item = await self.repository.get_item(item_id)
        if item is None:
            raise NotFoundError(_ITEM, item_id)
        return item

    async def create(self, fields: InventoryCreate | Mapping[str, Any]) -> InventoryItem:
        if isinstance(fields, InventoryCreate):
            payload = fields
        else:
            try:
                payload = InventoryCreate.model_validate(dict(fields))
            except SchemaValidationError as exc:
                raise ValidationError(_describe(exc)) from exc

        async with _storage_errors("create inventory item"):
            item = await self.repository.create_item(
                name=payload.name,
                description=payload.description,
                category=payload.category,
                quantity=payload.quantity,
                price_cents=to_cents(payload.price),
                minimum_stock_threshold=payload.minimum_stock_threshold,
            )
        logger.info("Created inventory item %s (%s)", item.id, item.name)
        return item

    async def update(self, item_id: str, fields: InventoryUpdate | Mapping[str, Any]) -> InventoryItem:
        if isinstance(fields, InventoryUpdate):
            payload = fields
        else:
            try:
                payload = InventoryUpdate.model_validate(dict(fields))
            except SchemaValidationError as exc:
                raise ValidationError(_describe(exc)) from exc

        changes = payload.model_dump(exclude_unset=True)
        if "price" in changes:
            changes["price_cents"] = to_cents(changes.pop("price"))

        item = await self.get(item_id)
        if not changes:
            return item
        async with _storage_errors("update inventory item"):
            return await self.repository.update_item(item, changes)

    async def delete(self, item_id: str) -> None:
        item = await self.get(item_id)
        async with _storage_errors("delete inventory item"):
            await self.repository.delete_item(item)
        logger.info("Deleted inventory item %s", item_id)

    async def decrement(self, item_id: str, amount: int) -> DecrementResult:
        """Atomically lower stock by ``amount``, flooring at zero."""

        if amount <= 0:
            msg = "decrement amount must be positive"
            raise ValidationError(msg)

        for attempt in range(1, self._max_attempts + 1):
            async with _storage_errors("decrement stock"):
                current = await self.repository.read_quantity(item_id)
                if current is None:
                    STORE_STOCK_DECREMENT_FAILURES_TOTAL.labels(reason="not_found").inc()
                    raise NotFoundError(_ITEM, item_id)
                new_quantity = max(0, current - amount)
                applied = await self.repository.compare_and_set_quantity(
                    item_id, expected=current, new=new_quantity
                )
            if applied:
                result = DecrementResult(
                    item_id=item_id,
                    requested=amount,
                    previous_quantity=current,
                    new_quantity=new_quantity,
                )
                if result.shortfall:
                    logger.warning(
                        "Stock for %s covered %s of %s requested units; floored at zero",
                        item_id,
                        current,
                        amount,
                    )
                return result

            STORE_STOCK_DECREMENT_RETRIES_TOTAL.inc()
            logger.debug("Decrement of %s lost a race on attempt %s", item_id, attempt)
            if attempt < self._max_attempts:
                await self._sleep(self._backoff_seconds * (2 ** (attempt - 1)))

        STORE_STOCK_DECREMENT_FAILURES_TOTAL.labels(reason="contention").inc()
        raise StockContentionError(item_id, self._max_attempts)

    async def decrement_many(self, entries: Iterable[tuple[str, int]]) -> list[DecrementResult]:
        """Decrement several items; each item is atomic, the batch is not."""

        return [await self.decrement(item_id, amount) for item_id, amount in entries]

    async def inventory_stats(self) -> InventoryStats:
        async with _storage_errors("read inventory totals"):
            totals = await self.repository.stock_totals()
        return InventoryStats(
            item_count=totals["item_count"],
            total_quantity=totals["total_quantity"],
            total_value=from_cents(totals["total_value_cents"]),
            low_stock=totals["low_stock"],
            out_of_stock=totals["out_of_stock"],
        )

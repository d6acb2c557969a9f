"""Order status state machine."""

from __future__ import annotations

import logging
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from .errors import InvalidTransitionError, NotFoundError, PersistenceError, ValidationError
from .metrics import STORE_ORDER_STATUS_TRANSITIONS_TOTAL
from .models import Order
from .repository import OrderRepository

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


INITIAL_STATUS = OrderStatus.PENDING
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

_FORWARD = (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED)


def _build_transitions() -> dict[OrderStatus, frozenset[OrderStatus]]:
    table: dict[OrderStatus, frozenset[OrderStatus]] = {}
    for index, status in enumerate(_FORWARD):
        if status in TERMINAL_STATUSES:
            table[status] = frozenset()
            continue
        table[status] = frozenset(_FORWARD[index + 1 :]) | {OrderStatus.CANCELLED}
    table[OrderStatus.CANCELLED] = frozenset()
    return table


# Forward moves may skip steps; cancelled is reachable from any non-terminal state.
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = _build_transitions()


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value.strip().lower())
    except ValueError as exc:
        allowed = ", ".join(status.value for status in OrderStatus)
        raise ValidationError(f"unknown order status '{value}'; expected one of: {allowed}") from exc


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


class OrderStatusWorkflow:
    """Applies status changes, the only mutation allowed on a placed order."""

    def __init__(self, repository: OrderRepository) -> None:
        self.repository = repository

    async def transition(self, order_id: str, new_status: str | OrderStatus) -> Order:
        target = new_status if isinstance(new_status, OrderStatus) else parse_status(new_status)
        try:
            order = await self.repository.get_order(order_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to load order: {exc.__class__.__name__}") from exc
        if order is None:
            raise NotFoundError("order", order_id)

        current = OrderStatus(order.status)
        if current == target:
            return order
        if not can_transition(current, target):
            STORE_ORDER_STATUS_TRANSITIONS_TOTAL.labels(to_status=target.value, result="rejected").inc()
            raise InvalidTransitionError(current.value, target.value)

        try:
            await self.repository.add_event(
                order.id,
                event_type="status_changed",
                payload=f"{current.value}->{target.value}",
            )
            updated = await self.repository.update_status(order, status=target.value)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to update order status: {exc.__class__.__name__}") from exc

        STORE_ORDER_STATUS_TRANSITIONS_TOTAL.labels(to_status=target.value, result="accepted").inc()
        logger.info("Order %s moved from %s to %s", order.id, current.value, target.value)
        return updated

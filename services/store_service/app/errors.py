"""Error taxonomy for the order lifecycle and inventory ledger.

Every error says whether the failed operation may be retried as a whole.
``retry_safe`` is ``True`` when nothing was persisted ("nothing happened") and
``False`` when some writes are already durable ("partially happened"), in
which case blindly retrying would duplicate data.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for store domain errors."""

    retry_safe = True

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    """Input rejected; the caller can correct it and try again."""


class InvalidTransitionError(ValidationError):
    """Requested order status change is not an edge of the workflow."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"cannot move order from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class NotFoundError(StoreError):
    """Referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class PersistenceError(StoreError):
    """Storage layer failed; no partial state was left behind."""


class StockContentionError(PersistenceError):
    """Compare-and-swap decrement kept losing to concurrent writers."""

    def __init__(self, item_id: str, attempts: int) -> None:
        super().__init__(f"stock for item '{item_id}' still contended after {attempts} attempts")
        self.item_id = item_id
        self.attempts = attempts


class PartialOrderError(StoreError):
    """Order header is durable but its line items are incomplete."""

    retry_safe = False

    def __init__(self, order_id: str, reason: str) -> None:
        super().__init__(f"order '{order_id}' was created without its full line items: {reason}")
        self.order_id = order_id
        self.reason = reason


class ExternalServiceError(StoreError):
    """An upstream collaborator (identity, recommendation generator) failed."""


def http_status_for(exc: StoreError) -> int:
    """HTTP status code a router answers with for ``exc``."""

    if isinstance(exc, InvalidTransitionError):
        return 409
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, PartialOrderError):
        return 409
    if isinstance(exc, ExternalServiceError):
        return 502
    return 503

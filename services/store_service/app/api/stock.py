"""Privileged stock-decrement boundary.

The caller is verified with the restricted credentials first; only then is
the decrement applied through the elevated session factory. Each entry runs
in its own transaction so a failure leaves earlier decrements in place.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session

from ..auth import CallerIdentity
from ..dependencies import get_elevated_session_factory, get_optional_caller
from ..errors import StoreError, http_status_for
from ..ledger import DecrementResult, InventoryLedger
from ..repository import InventoryRepository
from ..schemas import StockDecrementRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stock", tags=["stock"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/decrement")
async def decrement_stock(
    payload: StockDecrementRequest,
    request: Request,
    caller: CallerIdentity | None = Depends(get_optional_caller),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_elevated_session_factory),
):
    if caller is None:
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    if not payload.items:
        return _error(status.HTTP_400_BAD_REQUEST, "No items provided")

    settings = request.app.state.settings
    results: list[DecrementResult] = []
    for entry in payload.items:
        try:
            async with lifespan_session(session_factory) as session:
                ledger = InventoryLedger(
                    InventoryRepository(session),
                    max_attempts=settings.decrement_max_attempts,
                    backoff_seconds=settings.decrement_backoff_seconds,
                )
                results.append(await ledger.decrement(entry.item_id, entry.quantity))
        except StoreError as exc:
            logger.warning("Stock decrement by %s stopped at %s: %s", caller.user_id, entry.item_id, exc)
            return _error(http_status_for(exc), exc.message)

    return {
        "success": True,
        "results": [
            {
                "itemId": result.item_id,
                "previousQuantity": result.previous_quantity,
                "newQuantity": result.new_quantity,
                "shortfall": result.shortfall,
            }
            for result in results
        ],
    }

"""Inventory HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from ..auth import CallerIdentity
from ..dependencies import as_http_exception, get_ledger, require_roles
from ..errors import StoreError
from ..ledger import InventoryLedger
from ..money import from_cents
from ..sales import classify_item
from ..schemas import (
    InventoryCreate,
    InventoryListResponse,
    InventoryResponse,
    InventoryStatsResponse,
    InventoryUpdate,
)

router = APIRouter(prefix="/inventory", tags=["inventory"])

require_manager = require_roles("owner", "staff")


def _serialize_item(item) -> dict[str, object]:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "category": item.category,
        "quantity": item.quantity,
        "price": from_cents(item.price_cents),
        "minimumStockThreshold": item.minimum_stock_threshold,
        "stockStatus": classify_item(item).value,
        "createdAt": item.created_at,
        "updatedAt": item.updated_at,
    }


@router.get("", response_model=InventoryListResponse)
async def list_inventory_items(
    in_stock_only: bool = Query(default=False, alias="inStockOnly"),
    ledger: InventoryLedger = Depends(get_ledger),
) -> InventoryListResponse:
    try:
        items = await ledger.get_all(in_stock_only=in_stock_only)
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    responses = [InventoryResponse.model_validate(_serialize_item(item)) for item in items]
    return InventoryListResponse(items=responses, total=len(responses))


@router.get("/stats", response_model=InventoryStatsResponse)
async def inventory_stats(
    _: CallerIdentity = Depends(require_manager),
    ledger: InventoryLedger = Depends(get_ledger),
) -> InventoryStatsResponse:
    try:
        stats = await ledger.inventory_stats()
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    return InventoryStatsResponse(
        item_count=stats.item_count,
        total_quantity=stats.total_quantity,
        total_value=stats.total_value,
        low_stock=stats.low_stock,
        out_of_stock=stats.out_of_stock,
    )


@router.post("", response_model=InventoryResponse, status_code=status.HTTP_201_CREATED)
async def create_inventory_item(
    payload: InventoryCreate,
    _: CallerIdentity = Depends(require_manager),
    ledger: InventoryLedger = Depends(get_ledger),
) -> InventoryResponse:
    try:
        item = await ledger.create(payload)
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    return InventoryResponse.model_validate(_serialize_item(item))


@router.get("/{item_id}", response_model=InventoryResponse)
async def get_inventory_item(item_id: str, ledger: InventoryLedger = Depends(get_ledger)) -> InventoryResponse:
    try:
        item = await ledger.get(item_id)
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    return InventoryResponse.model_validate(_serialize_item(item))


@router.patch("/{item_id}", response_model=InventoryResponse)
async def update_inventory_item(
    item_id: str,
    payload: InventoryUpdate,
    _: CallerIdentity = Depends(require_manager),
    ledger: InventoryLedger = Depends(get_ledger),
) -> InventoryResponse:
    try:
        item = await ledger.update(item_id, payload)
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    return InventoryResponse.model_validate(_serialize_item(item))


@router.delete("/{item_id}")
async def delete_inventory_item(
    item_id: str,
    _: CallerIdentity = Depends(require_manager),
    ledger: InventoryLedger = Depends(get_ledger),
) -> Response:
    try:
        await ledger.delete(item_id)
    except StoreError as exc:
        raise as_http_exception(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)

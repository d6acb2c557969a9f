"""Pydantic schemas for the store service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, field_validator


def _strip_required(value: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        msg = "value must be non-empty"
        raise ValueError(msg)
    return cleaned


class InventoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=4000)
    category: str = Field(min_length=1, max_length=128)
    quantity: NonNegativeInt = Field(default=0)
    price: Decimal = Field(ge=Decimal("0"), max_digits=12, decimal_places=2)
    minimum_stock_threshold: NonNegativeInt = Field(default=0, alias="minimumStockThreshold")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name", "category")
    @classmethod
    def _strip(cls, value: str) -> str:
        return _strip_required(value)


class InventoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=4000)
    category: str | None = Field(default=None, min_length=1, max_length=128)
    quantity: NonNegativeInt | None = None
    price: Decimal | None = Field(default=None, ge=Decimal("0"), max_digits=12, decimal_places=2)
    minimum_stock_threshold: NonNegativeInt | None = Field(default=None, alias="minimumStockThreshold")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("name", "category")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        if value is None:
            msg = "value must be non-empty"
            raise ValueError(msg)
        return _strip_required(value)

    @field_validator("description", "quantity", "price", "minimum_stock_threshold")
    @classmethod
    def _not_null(cls, value: object) -> object:
        if value is None:
            msg = "value must not be null"
            raise ValueError(msg)
        return value


class InventoryResponse(BaseModel):
    id: str
    name: str
    description: str
    category: str
    quantity: int
    price: Decimal
    minimum_stock_threshold: int = Field(alias="minimumStockThreshold")
    stock_status: str = Field(alias="stockStatus")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class InventoryListResponse(BaseModel):
    items: list[InventoryResponse]
    total: int


class InventoryStatsResponse(BaseModel):
    item_count: int = Field(alias="itemCount")
    total_quantity: int = Field(alias="totalQuantity")
    total_value: Decimal = Field(alias="totalValue")
    low_stock: int = Field(alias="lowStock")
    out_of_stock: int = Field(alias="outOfStock")

    model_config = ConfigDict(populate_by_name=True)


class StockDecrementEntry(BaseModel):
    item_id: str = Field(min_length=1, max_length=36)
    quantity: PositiveInt


class StockDecrementRequest(BaseModel):
    items: list[StockDecrementEntry] = Field(default_factory=list)


class CartLinePayload(BaseModel):
    """Item snapshot captured by the shopper's cart, plus the requested quantity."""

    item_id: str = Field(min_length=1, max_length=36, alias="itemId")
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(default="", max_length=128)
    description: str = Field(default="", max_length=4000)
    unit_price: Decimal = Field(ge=Decimal("0"), max_digits=12, decimal_places=2, alias="unitPrice")
    stock_quantity: NonNegativeInt = Field(default=0, alias="stockQuantity")
    quantity: int

    model_config = ConfigDict(populate_by_name=True)


class CheckoutRequest(BaseModel):
    items: list[CartLinePayload] = Field(default_factory=list)
    shipping_address: str = Field(default="", max_length=2000, alias="shippingAddress")

    model_config = ConfigDict(populate_by_name=True)


class OrderUpdateStatus(BaseModel):
    status: str = Field(min_length=1, max_length=16)


class OrderLineResponse(BaseModel):
    id: str
    item_id: str = Field(alias="itemId")
    item_name: str = Field(alias="itemName")
    quantity: int
    unit_price: Decimal = Field(alias="unitPrice")
    line_total: Decimal = Field(alias="lineTotal")
    oversold_quantity: int = Field(alias="oversoldQuantity")

    model_config = ConfigDict(populate_by_name=True)


class OrderResponse(BaseModel):
    id: str
    client_id: str = Field(alias="clientId")
    client_name: str | None = Field(default=None, alias="clientName")
    client_email: str | None = Field(default=None, alias="clientEmail")
    status: str
    total_amount: Decimal = Field(alias="totalAmount")
    shipping_address: str = Field(alias="shippingAddress")
    lines_complete: bool = Field(alias="linesComplete")
    items: list[OrderLineResponse]
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int


class OrderEventResponse(BaseModel):
    type: str
    payload: str
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class SalesEntryResponse(BaseModel):
    item_id: str = Field(alias="itemId")
    item_name: str = Field(alias="itemName")
    category: str
    units_sold: int = Field(alias="unitsSold")
    revenue: Decimal
    current_stock: int | None = Field(alias="currentStock")
    stock_status: str | None = Field(alias="stockStatus")

    model_config = ConfigDict(populate_by_name=True)


class SalesReportResponse(BaseModel):
    items: list[SalesEntryResponse]
    total_orders: int = Field(alias="totalOrders")

    model_config = ConfigDict(populate_by_name=True)


class TransactionLineResponse(BaseModel):
    item_name: str = Field(alias="itemName")
    quantity: int
    unit_price: Decimal = Field(alias="unitPrice")
    line_total: Decimal = Field(alias="lineTotal")

    model_config = ConfigDict(populate_by_name=True)


class TransactionResponse(BaseModel):
    id: str
    client_id: str = Field(alias="clientId")
    client_name: str = Field(alias="clientName")
    client_email: str = Field(alias="clientEmail")
    status: str
    total_amount: Decimal = Field(alias="totalAmount")
    shipping_address: str = Field(alias="shippingAddress")
    created_at: datetime = Field(alias="createdAt")
    items: list[TransactionLineResponse]

    model_config = ConfigDict(populate_by_name=True)


class TransactionsReportResponse(BaseModel):
    transactions: list[TransactionResponse]
    total_orders: int = Field(alias="totalOrders")
    total_revenue: Decimal = Field(alias="totalRevenue")
    delivered_revenue: Decimal = Field(alias="deliveredRevenue")
    pending_orders: int = Field(alias="pendingOrders")

    model_config = ConfigDict(populate_by_name=True)


class RecommendationRequest(BaseModel):
    role: str
    user_id: str | None = Field(default=None, alias="userId")

    model_config = ConfigDict(populate_by_name=True)


class ClientRecommendation(BaseModel):
    item_name: str
    item_id: str
    reason: str
    price: float

    model_config = ConfigDict(strict=True, extra="ignore")


class OwnerRecommendation(BaseModel):
    item_name: str
    reason: str
    priority: Literal["high", "medium", "low"]
    current_stock: int | float | None
    type: Literal["restock", "new_product"] | None = None

    model_config = ConfigDict(strict=True, extra="ignore")

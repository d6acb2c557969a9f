"""Sales and transaction reports for store managers."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import CallerIdentity
from ..dependencies import get_inventory_repository, get_order_repository, require_roles
from ..repository import InventoryRepository, OrderRepository
from ..sales import SalesAggregator
from ..schemas import SalesEntryResponse, SalesReportResponse, TransactionsReportResponse

router = APIRouter(prefix="/reports", tags=["reports"])


def _aggregator(
    orders: OrderRepository = Depends(get_order_repository),
    inventory: InventoryRepository = Depends(get_inventory_repository),
) -> SalesAggregator:
    return SalesAggregator(orders, inventory)


@router.get("/sales", response_model=SalesReportResponse)
async def sales_report(
    _: CallerIdentity = Depends(require_roles("owner", "staff")),
    aggregator: SalesAggregator = Depends(_aggregator),
) -> SalesReportResponse:
    entries = await aggregator.ranked_sales()
    return SalesReportResponse(
        items=[
            SalesEntryResponse(
                item_id=entry.item_id,
                item_name=entry.item_name,
                category=entry.category,
                units_sold=entry.units_sold,
                revenue=entry.revenue,
                current_stock=entry.current_stock,
                stock_status=entry.stock_status.value if entry.stock_status is not None else None,
            )
            for entry in entries
        ],
        total_orders=await aggregator.orders.count_orders(),
    )


@router.get("/transactions", response_model=TransactionsReportResponse)
async def transactions_report(
    _: CallerIdentity = Depends(require_roles("owner", "staff")),
    aggregator: SalesAggregator = Depends(_aggregator),
) -> TransactionsReportResponse:
    report = await aggregator.transactions_report()
    return TransactionsReportResponse.model_validate(
        {
            "transactions": [
                {
                    "id": entry.id,
                    "clientId": entry.client_id,
                    "clientName": entry.client_name,
                    "clientEmail": entry.client_email,
                    "status": entry.status,
                    "totalAmount": entry.total_amount,
                    "shippingAddress": entry.shipping_address,
                    "createdAt": entry.created_at,
                    "items": [
                        {
                            "itemName": line.item_name,
                            "quantity": line.quantity,
                            "unitPrice": line.unit_price,
                            "lineTotal": line.line_total,
                        }
                        for line in entry.items
                    ],
                }
                for entry in report.transactions
            ],
            "totalOrders": report.total_orders,
            "totalRevenue": report.total_revenue,
            "deliveredRevenue": report.delivered_revenue,
            "pendingOrders": report.pending_orders,
        }
    )

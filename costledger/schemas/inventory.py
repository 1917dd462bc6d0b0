from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict

from costledger.schemas.common import PaginationMeta

StockStatus = Literal["out_of_stock", "low_stock", "overstock", "in_stock"]


class StockBalance(BaseModel):
    inventory_id: str
    item_id: str
    current_stock: int
    reserved_stock: int
    available_stock: int
    reorder_level: int
    max_stock_level: int | None = None
    average_cost: Decimal
    stock_status: StockStatus
    movement_id: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "inventory_id": "inventory-id",
                "item_id": "item-id",
                "current_stock": 150,
                "reserved_stock": 10,
                "available_stock": 140,
                "reorder_level": 20,
                "max_stock_level": 500,
                "average_cost": "13.0000",
                "stock_status": "in_stock",
                "movement_id": "movement-id",
            }
        }
    )


class StockMovementOut(BaseModel):
    id: str
    inventory_id: str
    seq: int
    movement_type: str
    quantity: int
    signed_quantity: int
    stock_before: int
    stock_after: int
    unit_cost: Decimal
    total_cost: Decimal
    reference_id: str | None = None
    notes: str | None = None
    actor_id: str | None = None
    created_at: datetime | None = None


class StockMovementListOut(BaseModel):
    items: list[StockMovementOut]
    pagination: PaginationMeta


class BulkMovementIn(BaseModel):
    inventory_id: str
    movement_type: Literal["in", "out", "adjustment"]
    quantity: int  # new stock value for adjustments
    unit_cost: Decimal | None = None
    reference_id: str | None = None
    notes: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "inventory_id": "inventory-id",
                "movement_type": "in",
                "quantity": 50,
                "unit_cost": 15.0,
                "reference_id": "purchase-line-id",
            }
        }
    )


class MovementTypeSummary(BaseModel):
    count: int
    total_quantity: int


class InventoryStatsOut(BaseModel):
    total_records: int
    low_stock_records: int
    out_of_stock_records: int
    overstock_records: int
    total_stock_quantity: int
    total_reserved_stock: int
    total_stock_value: Decimal
    recent_window_days: int
    recent_movements: dict[str, MovementTypeSummary]

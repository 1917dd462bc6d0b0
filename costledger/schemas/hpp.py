from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ValuationMethod = Literal["current", "latest", "average"]
CostSource = Literal["override", "item_cost", "latest_purchase", "average_purchase", "fallback_item_cost"]


class CostLineOut(BaseModel):
    item_id: str | None = None
    component_product_id: str | None = None
    name: str
    unit: str | None = None
    quantity_needed: Decimal
    resolved_unit_cost: Decimal
    line_total: Decimal
    cost_source: CostSource
    is_critical: bool = False
    path: list[str] = Field(default_factory=list)


class CostBreakdown(BaseModel):
    product_id: str
    method: ValuationMethod
    lines: list[CostLineOut]
    total_hpp: Decimal
    estimated: bool
    calculated_at: datetime

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "product-id",
                "method": "latest",
                "lines": [
                    {
                        "item_id": "item-id",
                        "name": "Arabica beans",
                        "unit": "gram",
                        "quantity_needed": "18.000",
                        "resolved_unit_cost": "0.45",
                        "line_total": "8.10",
                        "cost_source": "latest_purchase",
                        "is_critical": True,
                        "path": ["product-id"],
                    }
                ],
                "total_hpp": "8.10",
                "estimated": False,
                "calculated_at": "2026-10-19T10:00:00Z",
            }
        }
    )


class MethodComparisonOut(BaseModel):
    product_id: str
    product_name: str
    current_cost: Decimal
    current_price: Decimal
    breakdowns: dict[str, CostBreakdown]
    calculated_at: datetime


class HPPStatisticsOut(BaseModel):
    average_hpp: Decimal
    min_hpp: Decimal
    max_hpp: Decimal
    average_margin: Decimal


class HPPDashboardOut(BaseModel):
    total_products: int
    products_with_composition: int
    products_without_composition: int
    statistics: HPPStatisticsOut | None = None

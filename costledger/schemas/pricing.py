from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from costledger.schemas.hpp import ValuationMethod


class PriceSuggestion(BaseModel):
    hpp: Decimal
    markup_percentage: Decimal
    suggested_price: Decimal
    profit_margin: Decimal


class MarkupSuggestion(BaseModel):
    hpp: Decimal
    target_price: Decimal
    markup_percentage: Decimal


class PriceApplyResult(BaseModel):
    product_id: str
    method: ValuationMethod
    hpp: Decimal
    markup_percentage: Decimal
    old_cost: Decimal
    new_cost: Decimal
    old_price: Decimal
    new_price: Decimal
    difference: Decimal
    price_difference: Decimal
    estimated: bool
    applied_at: datetime

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "product-id",
                "method": "current",
                "hpp": "200.00",
                "markup_percentage": "50.00",
                "old_cost": "180.00",
                "new_cost": "200.00",
                "old_price": "250.00",
                "new_price": "300.00",
                "difference": "20.00",
                "price_difference": "50.00",
                "estimated": False,
                "applied_at": "2026-10-19T10:00:00Z",
            }
        }
    )


class CostRecalculationOut(BaseModel):
    product_id: str
    product_name: str
    method: ValuationMethod
    old_cost: Decimal
    new_cost: Decimal
    difference: Decimal
    estimated: bool


class RecalculationFailureOut(BaseModel):
    product_id: str
    code: str
    message: str


class BulkRecalculationOut(BaseModel):
    method: ValuationMethod
    updated: list[CostRecalculationOut]
    failed: list[RecalculationFailureOut]

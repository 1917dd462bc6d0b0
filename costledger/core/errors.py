from typing import Any


class CostLedgerError(Exception):
    """Base class for every failure raised by the ledger and costing services."""

    status_code = 400
    code = "bad_request"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class InvalidQuantity(CostLedgerError):
    status_code = 422
    code = "invalid_quantity"


class InvalidUnitCost(CostLedgerError):
    status_code = 422
    code = "invalid_unit_cost"


class InvalidMovementType(CostLedgerError):
    status_code = 422
    code = "invalid_movement_type"


class InsufficientStock(CostLedgerError):
    status_code = 409
    code = "insufficient_stock"


class ProductNotFound(CostLedgerError):
    status_code = 404
    code = "product_not_found"


class ItemNotFound(CostLedgerError):
    status_code = 404
    code = "item_not_found"


class InventoryNotFound(CostLedgerError):
    status_code = 404
    code = "inventory_not_found"


class PurchaseLineNotFound(CostLedgerError):
    status_code = 404
    code = "purchase_line_not_found"


class PurchaseLineAlreadyReceived(CostLedgerError):
    status_code = 409
    code = "purchase_line_already_received"


class CompositionCycleDetected(CostLedgerError):
    status_code = 422
    code = "composition_cycle_detected"


class InvalidValuationMethod(CostLedgerError):
    status_code = 422
    code = "invalid_valuation_method"


class InvalidHPP(CostLedgerError):
    status_code = 422
    code = "invalid_hpp"


class InvalidMarkup(CostLedgerError):
    status_code = 422
    code = "invalid_markup"


class EstimatedHPP(CostLedgerError):
    status_code = 409
    code = "estimated_hpp"


class ConcurrencyConflict(CostLedgerError):
    """Lock or version contention on a row. Safe to retry the whole operation."""

    status_code = 409
    code = "concurrency_conflict"

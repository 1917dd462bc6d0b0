from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from costledger.core.config import settings
from costledger.core.errors import CostLedgerError, EstimatedHPP, InvalidHPP, InvalidMarkup, ProductNotFound
from costledger.core.money import to_decimal, to_money
from costledger.core.observability import log_error, log_event
from costledger.db.transaction import run_atomic
from costledger.models.product import CompositionLink, Product
from costledger.schemas.pricing import (
    BulkRecalculationOut,
    CostRecalculationOut,
    MarkupSuggestion,
    PriceApplyResult,
    PriceSuggestion,
    RecalculationFailureOut,
)
from costledger.services.audit_service import log_audit_event
from costledger.services.composition_service import products_using_item
from costledger.services.hpp_service import compute_hpp, require_valuation_method

HUNDRED = Decimal("100")


def _as_decimal(value, *, field: str, error: type[CostLedgerError]) -> Decimal:
    try:
        number = to_decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        number = None
    if number is None or not number.is_finite():
        raise error(f"{field} must be a number", details={field: str(value)})
    return number


def _require_markup(markup_percentage) -> Decimal:
    markup = _as_decimal(markup_percentage, field="markup_percentage", error=InvalidMarkup)
    maximum = Decimal(str(settings.pricing_max_markup_percentage))
    if markup < 0 or markup > maximum:
        raise InvalidMarkup(
            f"markup_percentage must be between 0 and {maximum}",
            details={"markup_percentage": str(markup), "max": str(maximum)},
        )
    return markup


def suggest_price(hpp, markup_percentage) -> PriceSuggestion:
    hpp_value = _as_decimal(hpp, field="hpp", error=InvalidHPP)
    if hpp_value < 0:
        raise InvalidHPP("HPP cannot be negative", details={"hpp": str(hpp_value)})
    markup = _require_markup(markup_percentage)

    suggested = to_money(hpp_value * (1 + markup / HUNDRED))
    return PriceSuggestion(
        hpp=to_money(hpp_value),
        markup_percentage=to_money(markup),
        suggested_price=suggested,
        profit_margin=suggested - to_money(hpp_value),
    )


def suggest_markup(hpp, target_price) -> MarkupSuggestion:
    """Markup that turns ``hpp`` into ``target_price``. Negative when the target is below cost."""
    hpp_value = _as_decimal(hpp, field="hpp", error=InvalidHPP)
    if hpp_value <= 0:
        raise InvalidHPP("HPP must be greater than zero to derive a markup", details={"hpp": str(hpp_value)})
    target = _as_decimal(target_price, field="target_price", error=InvalidMarkup)
    if target < 0:
        raise InvalidMarkup("target_price cannot be negative", details={"target_price": str(target)})

    return MarkupSuggestion(
        hpp=to_money(hpp_value),
        target_price=to_money(target),
        markup_percentage=to_money((target - hpp_value) / hpp_value * HUNDRED),
    )


def _lock_product(db: Session, product_id: str) -> Product:
    product = db.execute(
        select(Product)
        .where(Product.id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not product:
        raise ProductNotFound("Product not found", details={"product_id": product_id})
    return product


def apply_to_product(
    db: Session,
    product_id: str,
    method: str,
    *,
    actor_id: str,
    markup_percentage=None,
    target_price=None,
    update_cost: bool = True,
    allow_estimated: bool = True,
) -> PriceApplyResult:
    """
    Price a product from its freshly computed HPP and persist the result.

    Pass exactly one of ``markup_percentage`` or ``target_price``. The product
    row stays locked from HPP computation through commit, and one audit row is
    written with the change.
    """
    require_valuation_method(method)
    if (markup_percentage is None) == (target_price is None):
        raise InvalidMarkup(
            "Provide exactly one of markup_percentage or target_price",
            details={"markup_percentage": markup_percentage, "target_price": target_price},
        )
    if markup_percentage is not None:
        markup_percentage = _require_markup(markup_percentage)
    else:
        target_price = _as_decimal(target_price, field="target_price", error=InvalidMarkup)

    def work() -> PriceApplyResult:
        product = _lock_product(db, product_id)
        breakdown = compute_hpp(db, product_id, method)
        if breakdown.estimated and not allow_estimated:
            raise EstimatedHPP(
                "HPP is estimated from fallback item costs",
                details={"product_id": product_id, "method": method},
            )
        hpp = breakdown.total_hpp

        if markup_percentage is not None:
            suggestion = suggest_price(hpp, markup_percentage)
            new_price, markup = suggestion.suggested_price, suggestion.markup_percentage
        else:
            markup = suggest_markup(hpp, target_price).markup_percentage
            _require_markup(markup)
            new_price = to_money(target_price)

        old_cost = to_money(product.cost or 0)
        old_price = to_money(product.price or 0)
        new_cost = hpp if update_cost else old_cost

        product.cost = new_cost
        product.price = new_price
        product.markup_percentage = markup
        log_audit_event(
            db,
            actor_id=actor_id,
            action="product.pricing.apply",
            target_type="product",
            target_id=product_id,
            metadata_json={
                "method": method,
                "hpp": str(hpp),
                "markup_percentage": str(markup),
                "old_cost": str(old_cost),
                "new_cost": str(new_cost),
                "old_price": str(old_price),
                "new_price": str(new_price),
                "estimated": breakdown.estimated,
            },
        )
        db.flush()
        return PriceApplyResult(
            product_id=product_id,
            method=method,
            hpp=hpp,
            markup_percentage=markup,
            old_cost=old_cost,
            new_cost=new_cost,
            old_price=old_price,
            new_price=new_price,
            difference=new_cost - old_cost,
            price_difference=new_price - old_price,
            estimated=breakdown.estimated,
            applied_at=datetime.now(timezone.utc),
        )

    result = run_atomic(db, work, operation="pricing.apply_to_product")
    log_event(
        "pricing.applied",
        product_id=product_id,
        method=method,
        hpp=result.hpp,
        new_price=result.new_price,
        estimated=result.estimated,
        actor_id=actor_id,
    )
    return result


def recalculate_product_cost(db: Session, product_id: str, method: str, *, actor_id: str) -> CostRecalculationOut:
    require_valuation_method(method)

    def work() -> CostRecalculationOut:
        product = _lock_product(db, product_id)
        breakdown = compute_hpp(db, product_id, method)
        old_cost = to_money(product.cost or 0)
        product.cost = breakdown.total_hpp
        log_audit_event(
            db,
            actor_id=actor_id,
            action="product.cost.recalculate",
            target_type="product",
            target_id=product_id,
            metadata_json={
                "method": method,
                "old_cost": str(old_cost),
                "new_cost": str(breakdown.total_hpp),
                "estimated": breakdown.estimated,
            },
        )
        db.flush()
        return CostRecalculationOut(
            product_id=product.id,
            product_name=product.name,
            method=method,
            old_cost=old_cost,
            new_cost=breakdown.total_hpp,
            difference=breakdown.total_hpp - old_cost,
            estimated=breakdown.estimated,
        )

    result = run_atomic(db, work, operation="pricing.recalculate_product_cost")
    log_event(
        "pricing.cost_recalculated",
        product_id=product_id,
        method=method,
        old_cost=result.old_cost,
        new_cost=result.new_cost,
        actor_id=actor_id,
    )
    return result


def _recalculate_many(
    db: Session,
    products: list[Product],
    method: str,
    *,
    actor_id: str,
) -> BulkRecalculationOut:
    updated: list[CostRecalculationOut] = []
    failed: list[RecalculationFailureOut] = []
    product_ids = [product.id for product in products]
    for product_id in product_ids:
        try:
            updated.append(recalculate_product_cost(db, product_id, method, actor_id=actor_id))
        except CostLedgerError as exc:
            log_error(
                "pricing.cost_recalculation_failed",
                product_id=product_id,
                method=method,
                code=exc.code,
                error=exc.message,
            )
            failed.append(RecalculationFailureOut(product_id=product_id, code=exc.code, message=exc.message))
    return BulkRecalculationOut(method=method, updated=updated, failed=failed)


def recalculate_all_costs(db: Session, method: str | None = None, *, actor_id: str) -> BulkRecalculationOut:
    """
    Recompute the stored cost of every product that has a live composition.

    Products without links are left alone. Each product commits on its own; a
    failure is reported in ``failed`` and does not stop the rest.
    """
    method = require_valuation_method(method or settings.hpp_default_method)
    products = list(
        db.execute(
            select(Product)
            .where(
                Product.id.in_(
                    select(CompositionLink.product_id).where(CompositionLink.deleted_at.is_(None))
                )
            )
            .order_by(Product.id.asc())
        ).scalars()
    )
    result = _recalculate_many(db, products, method, actor_id=actor_id)
    log_event(
        "pricing.costs_recalculated",
        method=method,
        updated=len(result.updated),
        failed=len(result.failed),
        actor_id=actor_id,
    )
    return result


def recalculate_costs_for_item(
    db: Session,
    item_id: str,
    method: str = "latest",
    *,
    actor_id: str,
) -> BulkRecalculationOut:
    """Refresh costs of every product built from ``item_id``, e.g. after a new purchase of it."""
    method = require_valuation_method(method)
    result = _recalculate_many(db, products_using_item(db, item_id), method, actor_id=actor_id)
    log_event(
        "pricing.item_costs_recalculated",
        item_id=item_id,
        method=method,
        updated=len(result.updated),
        failed=len(result.failed),
        actor_id=actor_id,
    )
    return result

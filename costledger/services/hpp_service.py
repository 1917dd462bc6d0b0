from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from costledger.core.errors import InvalidValuationMethod, ItemNotFound
from costledger.core.money import ZERO_MONEY, to_decimal, to_money, to_quantity, to_unit_cost
from costledger.core.observability import log_event
from costledger.models.item import Item, PurchaseLine
from costledger.models.product import CompositionLink, Product
from costledger.schemas.hpp import (
    CostBreakdown,
    CostLineOut,
    HPPDashboardOut,
    HPPStatisticsOut,
    MethodComparisonOut,
)
from costledger.services.composition_service import ExpandedLink, expand, get_product

VALUATION_METHODS = ("current", "latest", "average")
FALLBACK_SOURCE = "fallback_item_cost"


def require_valuation_method(method: str) -> str:
    if method not in VALUATION_METHODS:
        raise InvalidValuationMethod(
            f"Unknown valuation method '{method}'",
            details={"method": method, "allowed": list(VALUATION_METHODS)},
        )
    return method


def latest_purchase_cost(db: Session, item_id: str) -> Decimal | None:
    unit_cost = db.execute(
        select(PurchaseLine.unit_cost)
        .where(PurchaseLine.item_id == item_id)
        .order_by(PurchaseLine.purchased_at.desc(), PurchaseLine.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    return to_decimal(unit_cost)


def average_purchase_cost(db: Session, item_id: str) -> Decimal | None:
    # Plain mean of unit costs, not weighted by quantity.
    average = db.execute(
        select(func.avg(PurchaseLine.unit_cost)).where(PurchaseLine.item_id == item_id)
    ).scalar_one()
    return to_decimal(average)


class _ItemCostResolver:
    """Resolves and caches one unit cost per item for a single rollup."""

    def __init__(self, db: Session, method: str):
        self.db = db
        self.method = method
        self._items: dict[str, Item] = {}
        self._costs: dict[str, tuple[Decimal, str]] = {}

    def item(self, item_id: str) -> Item:
        if item_id not in self._items:
            item = self.db.get(Item, item_id)
            if not item:
                raise ItemNotFound("Item not found", details={"item_id": item_id})
            self._items[item_id] = item
        return self._items[item_id]

    def unit_cost(self, leaf: ExpandedLink) -> tuple[Decimal, str]:
        if self.method == "current":
            if leaf.cost_override is not None:
                return leaf.cost_override, "override"
            return to_decimal(self.item(leaf.item_id).cost_per_unit or 0), "item_cost"

        if leaf.item_id not in self._costs:
            if self.method == "latest":
                cost, source = latest_purchase_cost(self.db, leaf.item_id), "latest_purchase"
            else:
                cost, source = average_purchase_cost(self.db, leaf.item_id), "average_purchase"
            if cost is None:
                cost, source = to_decimal(self.item(leaf.item_id).cost_per_unit or 0), FALLBACK_SOURCE
            self._costs[leaf.item_id] = (cost, source)
        return self._costs[leaf.item_id]


def _pinned_line(db: Session, leaf: ExpandedLink) -> CostLineOut:
    component = get_product(db, leaf.component_product_id)
    line_total = leaf.quantity_needed * leaf.cost_override
    return CostLineOut(
        component_product_id=component.id,
        name=component.name,
        unit=leaf.unit,
        quantity_needed=to_quantity(leaf.quantity_needed),
        resolved_unit_cost=to_unit_cost(leaf.cost_override),
        line_total=to_money(line_total),
        cost_source="override",
        is_critical=leaf.is_critical,
        path=list(leaf.path),
    )


def compute_hpp(db: Session, product_id: str, method: str) -> CostBreakdown:
    """
    Roll up a product's cost of goods from its flattened composition.

    ``current`` uses link overrides, then the item's flat cost. ``latest`` and
    ``average`` read purchase history and fall back to the flat cost when an
    item has none; such a breakdown is flagged ``estimated``. Totals are
    accumulated unrounded, then each line and the total are rounded half-up
    to cents.
    """
    require_valuation_method(method)
    get_product(db, product_id)
    leaves = expand(db, product_id, pin_overrides=(method == "current"))

    resolver = _ItemCostResolver(db, method)
    lines: list[CostLineOut] = []
    total = Decimal("0")
    for leaf in leaves:
        if leaf.pinned:
            line = _pinned_line(db, leaf)
            total += leaf.quantity_needed * leaf.cost_override
            lines.append(line)
            continue

        item = resolver.item(leaf.item_id)
        unit_cost, source = resolver.unit_cost(leaf)
        line_total = leaf.quantity_needed * unit_cost
        total += line_total
        lines.append(
            CostLineOut(
                item_id=item.id,
                name=item.name,
                unit=leaf.unit or item.unit,
                quantity_needed=to_quantity(leaf.quantity_needed),
                resolved_unit_cost=to_unit_cost(unit_cost),
                line_total=to_money(line_total),
                cost_source=source,
                is_critical=leaf.is_critical,
                path=list(leaf.path),
            )
        )

    estimated = not lines or any(line.cost_source == FALLBACK_SOURCE for line in lines)
    return CostBreakdown(
        product_id=product_id,
        method=method,
        lines=lines,
        total_hpp=to_money(total),
        estimated=estimated,
        calculated_at=datetime.now(timezone.utc),
    )


def compare_methods(db: Session, product_id: str) -> MethodComparisonOut:
    product = get_product(db, product_id)
    breakdowns = {method: compute_hpp(db, product_id, method) for method in VALUATION_METHODS}
    return MethodComparisonOut(
        product_id=product.id,
        product_name=product.name,
        current_cost=to_money(product.cost or 0),
        current_price=to_money(product.price or 0),
        breakdowns=breakdowns,
        calculated_at=datetime.now(timezone.utc),
    )


def get_hpp_dashboard(db: Session) -> HPPDashboardOut:
    products = list(db.execute(select(Product).order_by(Product.id.asc())).scalars())
    composed_ids = set(
        db.execute(
            select(CompositionLink.product_id)
            .where(CompositionLink.deleted_at.is_(None))
            .distinct()
        ).scalars()
    )

    hpp_values: list[Decimal] = []
    margins: list[Decimal] = []
    for product in products:
        if product.id not in composed_ids:
            continue
        hpp = compute_hpp(db, product.id, "current").total_hpp
        hpp_values.append(hpp)
        margins.append(to_money(product.price or 0) - hpp)

    statistics = None
    if hpp_values:
        statistics = HPPStatisticsOut(
            average_hpp=to_money(sum(hpp_values, ZERO_MONEY) / len(hpp_values)),
            min_hpp=min(hpp_values),
            max_hpp=max(hpp_values),
            average_margin=to_money(sum(margins, ZERO_MONEY) / len(margins)),
        )

    with_composition = len(hpp_values)
    log_event(
        "hpp.dashboard_computed",
        total_products=len(products),
        products_with_composition=with_composition,
    )
    return HPPDashboardOut(
        total_products=len(products),
        products_with_composition=with_composition,
        products_without_composition=len(products) - with_composition,
        statistics=statistics,
    )

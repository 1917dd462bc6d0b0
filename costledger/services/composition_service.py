from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from costledger.core.config import settings
from costledger.core.errors import CompositionCycleDetected, ProductNotFound
from costledger.core.money import to_decimal
from costledger.models.inventory import InventoryRecord
from costledger.models.product import CompositionLink, Product


@dataclass(frozen=True)
class ExpandedLink:
    """
    One leaf of a flattened bill of materials.

    ``quantity_needed`` is per unit of the root product, already multiplied
    through every sub-assembly on ``path``. A leaf is an item, or a
    sub-assembly whose link pins its cost with an override (``pinned``).
    """

    link_id: str
    item_id: str | None
    component_product_id: str | None
    quantity_needed: Decimal
    unit: str | None
    cost_override: Decimal | None
    is_critical: bool
    path: tuple[str, ...]
    pinned: bool = False


def get_product(db: Session, product_id: str) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise ProductNotFound("Product not found", details={"product_id": product_id})
    return product


def resolve(db: Session, product_id: str, *, live_only: bool) -> list[CompositionLink]:
    """
    Direct composition links of a product.

    ``live_only`` has no default: callers state whether tombstoned links count.
    A product without links resolves to an empty list.
    """
    get_product(db, product_id)
    stmt = select(CompositionLink).where(CompositionLink.product_id == product_id)
    if live_only:
        stmt = stmt.where(CompositionLink.deleted_at.is_(None))
    stmt = stmt.order_by(CompositionLink.created_at.asc(), CompositionLink.id.asc())
    return list(db.execute(stmt).scalars())


def expand(
    db: Session,
    product_id: str,
    *,
    pin_overrides: bool = False,
    max_depth: int | None = None,
) -> list[ExpandedLink]:
    """
    Flatten a product's composition down to items.

    Links to base products are expanded recursively with quantities multiplied
    along the way. With ``pin_overrides`` a sub-assembly link carrying its own
    cost override is kept as a single leaf instead of being expanded.

    Raises ``CompositionCycleDetected`` when a product appears twice on one
    path or the nesting is deeper than ``max_depth``.
    """
    depth_limit = max_depth or settings.composition_max_depth
    leaves: list[ExpandedLink] = []

    def walk(current_id: str, multiplier: Decimal, path: tuple[str, ...]) -> None:
        if len(path) > depth_limit:
            raise CompositionCycleDetected(
                f"Composition of {path[0]} is nested deeper than {depth_limit} levels",
                details={"product_id": path[0], "path": list(path), "max_depth": depth_limit},
            )
        for link in resolve(db, current_id, live_only=True):
            quantity = multiplier * to_decimal(link.quantity_needed)
            override = to_decimal(link.cost_per_unit)
            if link.item_id is not None:
                leaves.append(
                    ExpandedLink(
                        link_id=link.id,
                        item_id=link.item_id,
                        component_product_id=None,
                        quantity_needed=quantity,
                        unit=link.unit,
                        cost_override=override,
                        is_critical=link.is_critical,
                        path=path,
                    )
                )
                continue

            component_id = link.component_product_id
            if component_id in path:
                cycle = list(path) + [component_id]
                raise CompositionCycleDetected(
                    "Composition cycle detected: " + " -> ".join(cycle),
                    details={"product_id": path[0], "cycle": cycle},
                )
            if pin_overrides and override is not None:
                leaves.append(
                    ExpandedLink(
                        link_id=link.id,
                        item_id=None,
                        component_product_id=component_id,
                        quantity_needed=quantity,
                        unit=link.unit,
                        cost_override=override,
                        is_critical=link.is_critical,
                        path=path,
                        pinned=True,
                    )
                )
                continue
            walk(component_id, quantity, path + (component_id,))

    walk(product_id, Decimal("1"), (product_id,))
    return leaves


def products_using_item(db: Session, item_id: str) -> list[Product]:
    """Products whose composition reaches ``item_id`` directly or through base products."""
    frontier = set(
        db.execute(
            select(CompositionLink.product_id).where(
                CompositionLink.item_id == item_id,
                CompositionLink.deleted_at.is_(None),
            )
        ).scalars()
    )
    found: set[str] = set()
    while frontier:
        found |= frontier
        parents = set(
            db.execute(
                select(CompositionLink.product_id).where(
                    CompositionLink.component_product_id.in_(frontier),
                    CompositionLink.deleted_at.is_(None),
                )
            ).scalars()
        )
        frontier = parents - found

    if not found:
        return []
    return list(
        db.execute(
            select(Product).where(Product.id.in_(found)).order_by(Product.name.asc(), Product.id.asc())
        ).scalars()
    )


def producible_quantity(db: Session, product_id: str) -> int:
    """
    Units of a product the available stock can make right now.

    Only critical items limit production when any are flagged; otherwise all
    items do. An item with no inventory record yields 0.
    """
    leaves = [leaf for leaf in expand(db, product_id) if leaf.item_id is not None]
    if not leaves:
        return 0
    limiting = [leaf for leaf in leaves if leaf.is_critical] or leaves

    required: dict[str, Decimal] = {}
    for leaf in limiting:
        required[leaf.item_id] = required.get(leaf.item_id, Decimal("0")) + leaf.quantity_needed

    records = {
        record.item_id: record
        for record in db.execute(
            select(InventoryRecord).where(InventoryRecord.item_id.in_(required.keys()))
        ).scalars()
    }
    portions: list[int] = []
    for item_id, quantity in required.items():
        record = records.get(item_id)
        if record is None:
            return 0
        available = max(record.current_stock - record.reserved_stock, 0)
        portions.append(int(Decimal(available) // quantity))
    return min(portions)

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from costledger.core.errors import CompositionCycleDetected, ProductNotFound
from costledger.core.id_utils import generate_shortuuid
from costledger.models.item import Item
from costledger.models.product import PRODUCT_KIND_BASE, CompositionLink, Product
from costledger.services import composition_service, inventory_service

ACTOR = "actor-1"


def _create_item(db, name: str, *, cost_per_unit: str = "1.00") -> Item:
    item = Item(id=generate_shortuuid(), name=name, unit="gram", cost_per_unit=Decimal(cost_per_unit))
    db.add(item)
    db.commit()
    return item


def _create_product(db, name: str, *, kind: str = "finished") -> Product:
    product = Product(id=generate_shortuuid(), name=name, kind=kind)
    db.add(product)
    db.commit()
    return product


def _link(
    db,
    product: Product,
    *,
    item: Item | None = None,
    component: Product | None = None,
    quantity: str = "1",
    cost_per_unit: str | None = None,
    is_critical: bool = False,
    deleted: bool = False,
) -> CompositionLink:
    link = CompositionLink(
        id=generate_shortuuid(),
        product_id=product.id,
        item_id=item.id if item else None,
        component_product_id=component.id if component else None,
        quantity_needed=Decimal(quantity),
        cost_per_unit=Decimal(cost_per_unit) if cost_per_unit is not None else None,
        is_critical=is_critical,
        deleted_at=datetime.now(timezone.utc) if deleted else None,
    )
    db.add(link)
    db.commit()
    return link


def _stock(db, item: Item, quantity: int) -> None:
    inventory_id = inventory_service.open_inventory(db, item.id, actor_id=ACTOR).inventory_id
    inventory_service.add_stock(db, inventory_id, quantity, "1", actor_id=ACTOR)


def test_resolve_excludes_tombstoned_links_only_when_asked(db):
    latte = _create_product(db, "Latte")
    beans = _create_item(db, "Beans")
    milk = _create_item(db, "Milk")
    syrup = _create_item(db, "Syrup")
    _link(db, latte, item=beans, quantity="18")
    _link(db, latte, item=milk, quantity="200")
    removed = _link(db, latte, item=syrup, quantity="10", deleted=True)

    live = composition_service.resolve(db, latte.id, live_only=True)
    everything = composition_service.resolve(db, latte.id, live_only=False)

    assert {link.item_id for link in live} == {beans.id, milk.id}
    assert len(everything) == 3
    assert removed.id in {link.id for link in everything}


def test_resolve_empty_composition_and_unknown_product(db):
    water = _create_product(db, "Water")
    assert composition_service.resolve(db, water.id, live_only=True) == []

    with pytest.raises(ProductNotFound):
        composition_service.resolve(db, "missing", live_only=True)


def test_expand_multiplies_quantities_through_base_products(db):
    cake = _create_product(db, "Cake")
    dough = _create_product(db, "Dough", kind=PRODUCT_KIND_BASE)
    flour = _create_item(db, "Flour")
    egg = _create_item(db, "Egg")
    cream = _create_item(db, "Cream")
    _link(db, dough, item=flour, quantity="250")
    _link(db, dough, item=egg, quantity="2")
    _link(db, cake, component=dough, quantity="1.5")
    _link(db, cake, item=cream, quantity="100")

    leaves = {leaf.item_id: leaf for leaf in composition_service.expand(db, cake.id)}

    assert leaves[flour.id].quantity_needed == Decimal("375.000")
    assert leaves[egg.id].quantity_needed == Decimal("3.000")
    assert leaves[cream.id].quantity_needed == Decimal("100")
    assert leaves[flour.id].path == (cake.id, dough.id)
    assert leaves[cream.id].path == (cake.id,)


def test_expand_pins_sub_assembly_with_cost_override(db):
    cake = _create_product(db, "Cake")
    dough = _create_product(db, "Dough", kind=PRODUCT_KIND_BASE)
    flour = _create_item(db, "Flour")
    _link(db, dough, item=flour, quantity="250")
    _link(db, cake, component=dough, quantity="2", cost_per_unit="4.00")

    (pinned,) = composition_service.expand(db, cake.id, pin_overrides=True)
    assert pinned.pinned is True
    assert pinned.component_product_id == dough.id
    assert pinned.cost_override == Decimal("4.00")

    (leaf,) = composition_service.expand(db, cake.id)
    assert leaf.item_id == flour.id
    assert leaf.quantity_needed == Decimal("500.000")


def test_expand_detects_cycles(db):
    first = _create_product(db, "First", kind=PRODUCT_KIND_BASE)
    second = _create_product(db, "Second", kind=PRODUCT_KIND_BASE)
    _link(db, first, component=second)
    _link(db, second, component=first)

    with pytest.raises(CompositionCycleDetected) as exc_info:
        composition_service.expand(db, first.id)
    assert exc_info.value.details["cycle"] == [first.id, second.id, first.id]


def test_expand_rejects_nesting_deeper_than_limit(db):
    chain = [_create_product(db, f"Level {index}", kind=PRODUCT_KIND_BASE) for index in range(4)]
    for parent, child in zip(chain, chain[1:]):
        _link(db, parent, component=child)
    _link(db, chain[-1], item=_create_item(db, "Salt"))

    assert len(composition_service.expand(db, chain[0].id, max_depth=4)) == 1
    with pytest.raises(CompositionCycleDetected):
        composition_service.expand(db, chain[0].id, max_depth=3)


def test_products_using_item_walks_up_through_base_products(db):
    flour = _create_item(db, "Flour")
    dough = _create_product(db, "Dough", kind=PRODUCT_KIND_BASE)
    bread = _create_product(db, "Bread")
    pizza = _create_product(db, "Pizza")
    salad = _create_product(db, "Salad")
    retired = _create_product(db, "Retired")
    _link(db, dough, item=flour, quantity="300")
    _link(db, bread, component=dough)
    _link(db, pizza, component=dough)
    _link(db, salad, item=_create_item(db, "Lettuce"))
    _link(db, retired, item=flour, deleted=True)

    names = [product.name for product in composition_service.products_using_item(db, flour.id)]
    assert names == ["Bread", "Dough", "Pizza"]
    assert composition_service.products_using_item(db, "unused-item") == []


def test_producible_quantity_limited_by_critical_items(db):
    coffee = _create_product(db, "Coffee")
    beans = _create_item(db, "Beans")
    cups = _create_item(db, "Cups")
    _link(db, coffee, item=beans, quantity="18", is_critical=True)
    _link(db, coffee, item=cups, quantity="1")
    _stock(db, beans, 100)
    _stock(db, cups, 2)

    # cups are not critical, so only beans limit production
    assert composition_service.producible_quantity(db, coffee.id) == 5


def test_producible_quantity_is_zero_without_stock_records(db):
    tea = _create_product(db, "Tea")
    leaves = _create_item(db, "Leaves")
    water = _create_item(db, "Water")
    _link(db, tea, item=leaves, quantity="3")
    _link(db, tea, item=water, quantity="250")
    _stock(db, leaves, 30)

    assert composition_service.producible_quantity(db, tea.id) == 0
    assert composition_service.producible_quantity(db, _create_product(db, "Empty").id) == 0

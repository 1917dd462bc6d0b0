from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from costledger.core.errors import (
    InsufficientStock,
    InvalidMovementType,
    InvalidQuantity,
    InvalidUnitCost,
    InventoryNotFound,
    ItemNotFound,
    PurchaseLineAlreadyReceived,
    PurchaseLineNotFound,
)
from costledger.core.id_utils import generate_shortuuid
from costledger.models.inventory import InventoryRecord, StockMovement
from costledger.models.item import Item, PurchaseLine
from costledger.schemas.inventory import BulkMovementIn
from costledger.services import inventory_service

ACTOR = "actor-1"


def _create_item(db, *, name: str = "Flour", cost_per_unit: str = "10.00") -> Item:
    item = Item(id=generate_shortuuid(), name=name, unit="kg", cost_per_unit=Decimal(cost_per_unit))
    db.add(item)
    db.commit()
    return item


def _open(db, *, name: str = "Flour", reorder_level: int = 0, max_stock_level: int | None = None) -> str:
    item = _create_item(db, name=name)
    balance = inventory_service.open_inventory(
        db,
        item.id,
        actor_id=ACTOR,
        reorder_level=reorder_level,
        max_stock_level=max_stock_level,
    )
    return balance.inventory_id


def _movement_count(db, inventory_id: str) -> int:
    return db.execute(
        select(func.count(StockMovement.id)).where(StockMovement.inventory_id == inventory_id)
    ).scalar_one()


def test_add_stock_folds_unit_cost_into_moving_average(db):
    inventory_id = _open(db)

    first = inventory_service.add_stock(db, inventory_id, 100, Decimal("12"), actor_id=ACTOR)
    assert first.current_stock == 100
    assert first.average_cost == Decimal("12.0000")

    second = inventory_service.add_stock(db, inventory_id, 50, Decimal("15"), actor_id=ACTOR)
    assert second.current_stock == 150
    assert second.average_cost == Decimal("13.0000")
    assert second.movement_id is not None

    ledger = inventory_service.get_ledger(db, inventory_id)
    assert [movement.movement_type for movement in ledger] == ["in", "in"]
    assert ledger[1].stock_before == 100
    assert ledger[1].stock_after == 150
    assert ledger[1].total_cost == Decimal("750.00")


def test_first_receipt_after_stock_runs_out_resets_average(db):
    inventory_id = _open(db)
    inventory_service.add_stock(db, inventory_id, 10, "20", actor_id=ACTOR)
    inventory_service.remove_stock(db, inventory_id, 10, actor_id=ACTOR)

    balance = inventory_service.add_stock(db, inventory_id, 5, "8", actor_id=ACTOR)
    assert balance.average_cost == Decimal("8.0000")


def test_remove_stock_rejects_overdraw_and_leaves_state_untouched(db):
    inventory_id = _open(db)
    inventory_service.add_stock(db, inventory_id, 5, "10", actor_id=ACTOR)

    with pytest.raises(InsufficientStock) as exc_info:
        inventory_service.remove_stock(db, inventory_id, 6, actor_id=ACTOR)
    assert exc_info.value.code == "insufficient_stock"
    assert exc_info.value.details["current_stock"] == 5

    balance = inventory_service.get_balance(db, inventory_id)
    assert balance.current_stock == 5
    assert _movement_count(db, inventory_id) == 1


def test_remove_stock_records_outflow_at_average_cost(db):
    inventory_id = _open(db)
    inventory_service.add_stock(db, inventory_id, 10, "10", actor_id=ACTOR)
    inventory_service.add_stock(db, inventory_id, 10, "20", actor_id=ACTOR)

    balance = inventory_service.remove_stock(
        db,
        inventory_id,
        4,
        actor_id=ACTOR,
        reference_id="order-1",
        movement_type="damaged",
    )
    assert balance.current_stock == 16

    movement = inventory_service.get_ledger(db, inventory_id)[-1]
    assert movement.movement_type == "damaged"
    assert movement.unit_cost == Decimal("15.0000")
    assert movement.total_cost == Decimal("60.00")
    assert movement.reference_id == "order-1"
    assert inventory_service.signed_quantity(movement) == -4


def test_reserved_stock_cannot_be_removed_without_consuming_reservation(db):
    inventory_id = _open(db)
    inventory_service.add_stock(db, inventory_id, 10, "5", actor_id=ACTOR)
    assert inventory_service.reserve_stock(db, inventory_id, 8, actor_id=ACTOR) is True

    with pytest.raises(InsufficientStock):
        inventory_service.remove_stock(db, inventory_id, 3, actor_id=ACTOR)

    balance = inventory_service.remove_stock(db, inventory_id, 2, actor_id=ACTOR)
    assert balance.current_stock == 8
    assert balance.reserved_stock == 8
    assert balance.available_stock == 0

    fulfilled = inventory_service.remove_stock(db, inventory_id, 5, actor_id=ACTOR, consume_reserved=True)
    assert fulfilled.current_stock == 3
    assert fulfilled.reserved_stock == 3

    with pytest.raises(InsufficientStock):
        inventory_service.remove_stock(db, inventory_id, 4, actor_id=ACTOR, consume_reserved=True)


def test_reserve_and_release_respect_available_and_reserved_bounds(db):
    inventory_id = _open(db)
    inventory_service.add_stock(db, inventory_id, 10, "5", actor_id=ACTOR)

    with pytest.raises(InsufficientStock):
        inventory_service.reserve_stock(db, inventory_id, 11, actor_id=ACTOR)

    inventory_service.reserve_stock(db, inventory_id, 4, actor_id=ACTOR)
    with pytest.raises(InsufficientStock):
        inventory_service.release_reserved_stock(db, inventory_id, 5, actor_id=ACTOR)

    assert inventory_service.release_reserved_stock(db, inventory_id, 4, actor_id=ACTOR) is True
    balance = inventory_service.get_balance(db, inventory_id)
    assert balance.reserved_stock == 0
    assert balance.available_stock == 10
    # reservations are not stock events
    assert _movement_count(db, inventory_id) == 1


def test_adjust_stock_records_absolute_delta_and_clamps_reservations(db):
    inventory_id = _open(db)
    inventory_service.add_stock(db, inventory_id, 20, "5", actor_id=ACTOR)
    inventory_service.reserve_stock(db, inventory_id, 15, actor_id=ACTOR)

    balance = inventory_service.adjust_stock(
        db,
        inventory_id,
        12,
        reason="stock count",
        notes="shelf B",
        actor_id=ACTOR,
    )
    assert balance.current_stock == 12
    assert balance.reserved_stock == 12

    movement = inventory_service.get_ledger(db, inventory_id)[-1]
    assert movement.movement_type == "adjustment"
    assert movement.quantity == 8
    assert inventory_service.signed_quantity(movement) == -8
    assert movement.notes == "stock count: shelf B"

    raised = inventory_service.adjust_stock(db, inventory_id, 30, reason="found pallet", actor_id=ACTOR)
    assert raised.current_stock == 30
    assert inventory_service.get_ledger(db, inventory_id)[-1].quantity == 18


def test_ledger_is_contiguous_and_conserves_quantity(db):
    inventory_id = _open(db)
    inventory_service.add_stock(db, inventory_id, 50, "4", actor_id=ACTOR)
    inventory_service.remove_stock(db, inventory_id, 20, actor_id=ACTOR)
    inventory_service.add_stock(db, inventory_id, 5, "6", actor_id=ACTOR, movement_type="return")
    inventory_service.adjust_stock(db, inventory_id, 31, reason="recount", actor_id=ACTOR)
    inventory_service.remove_stock(db, inventory_id, 1, actor_id=ACTOR, movement_type="expired")

    ledger = inventory_service.get_ledger(db, inventory_id)
    assert [movement.seq for movement in ledger] == [1, 2, 3, 4, 5]
    assert ledger[0].stock_before == 0
    for previous, current in zip(ledger, ledger[1:]):
        assert current.stock_before == previous.stock_after

    record = inventory_service.get_inventory(db, inventory_id)
    assert record.current_stock == ledger[-1].stock_after == 30
    assert record.current_stock == sum(inventory_service.signed_quantity(m) for m in ledger)
    assert record.last_movement_seq == 5


def test_invalid_inputs_are_rejected_before_any_write(db):
    inventory_id = _open(db)

    with pytest.raises(InvalidQuantity):
        inventory_service.add_stock(db, inventory_id, 0, "5", actor_id=ACTOR)
    with pytest.raises(InvalidQuantity):
        inventory_service.add_stock(db, inventory_id, 2.5, "5", actor_id=ACTOR)
    with pytest.raises(InvalidQuantity):
        inventory_service.remove_stock(db, inventory_id, -1, actor_id=ACTOR)
    with pytest.raises(InvalidQuantity):
        inventory_service.adjust_stock(db, inventory_id, -3, reason="typo", actor_id=ACTOR)
    with pytest.raises(InvalidUnitCost):
        inventory_service.add_stock(db, inventory_id, 1, "-0.01", actor_id=ACTOR)
    with pytest.raises(InvalidUnitCost):
        inventory_service.add_stock(db, inventory_id, 1, "abc", actor_id=ACTOR)
    with pytest.raises(InvalidMovementType):
        inventory_service.add_stock(db, inventory_id, 1, "5", actor_id=ACTOR, movement_type="out")
    with pytest.raises(InvalidMovementType):
        inventory_service.remove_stock(db, inventory_id, 1, actor_id=ACTOR, movement_type="return")
    with pytest.raises(InventoryNotFound):
        inventory_service.add_stock(db, "missing", 1, "5", actor_id=ACTOR)

    assert _movement_count(db, inventory_id) == 0


def test_open_inventory_is_idempotent_and_requires_item(db):
    item = _create_item(db)
    first = inventory_service.open_inventory(db, item.id, actor_id=ACTOR)
    second = inventory_service.open_inventory(db, item.id, actor_id=ACTOR, reorder_level=50)

    assert first.inventory_id == second.inventory_id
    assert first.current_stock == 0
    assert second.reorder_level == 5
    assert db.execute(select(func.count(InventoryRecord.id))).scalar_one() == 1

    with pytest.raises(ItemNotFound):
        inventory_service.open_inventory(db, "no-such-item", actor_id=ACTOR)


def test_receive_purchase_line_opens_record_and_adds_stock(db):
    item = _create_item(db, name="Sugar")
    line = PurchaseLine(
        id=generate_shortuuid(),
        item_id=item.id,
        purchase_id="PO-1",
        unit_cost=Decimal("7.50"),
        quantity=40,
    )
    db.add(line)
    db.commit()

    balance = inventory_service.receive_purchase_line(db, line.id, actor_id=ACTOR)
    assert balance.item_id == item.id
    assert balance.current_stock == 40
    assert balance.average_cost == Decimal("7.5000")

    movement = inventory_service.get_ledger(db, balance.inventory_id)[-1]
    assert movement.reference_id == line.id
    assert movement.notes == "purchase PO-1"

    with pytest.raises(PurchaseLineNotFound):
        inventory_service.receive_purchase_line(db, "missing-line", actor_id=ACTOR)


def test_receive_purchase_line_twice_is_rejected(db):
    item = _create_item(db, name="Sugar")
    line = PurchaseLine(id=generate_shortuuid(), item_id=item.id, unit_cost=Decimal("7.50"), quantity=40)
    db.add(line)
    db.commit()

    first = inventory_service.receive_purchase_line(db, line.id, actor_id=ACTOR)

    with pytest.raises(PurchaseLineAlreadyReceived) as exc_info:
        inventory_service.receive_purchase_line(db, line.id, actor_id=ACTOR)
    assert exc_info.value.status_code == 409
    assert exc_info.value.details["movement_id"] == first.movement_id

    balance = inventory_service.get_balance(db, first.inventory_id)
    assert balance.current_stock == 40
    assert balance.average_cost == Decimal("7.5000")
    assert _movement_count(db, first.inventory_id) == 1


def test_manual_movement_with_same_reference_does_not_block_receipt(db):
    inventory_id = _open(db, name="Sugar")
    record = db.get(InventoryRecord, inventory_id)
    line = PurchaseLine(id=generate_shortuuid(), item_id=record.item_id, unit_cost=Decimal("5.00"), quantity=10)
    db.add(line)
    db.commit()
    inventory_service.add_stock(db, inventory_id, 3, "5", actor_id=ACTOR, reference_id=line.id, movement_type="return")

    balance = inventory_service.receive_purchase_line(db, line.id, actor_id=ACTOR)
    assert balance.current_stock == 13


def test_bulk_movements_apply_together_or_not_at_all(db):
    flour = _open(db, name="Flour")
    sugar = _open(db, name="Sugar")
    inventory_service.add_stock(db, sugar, 10, "3", actor_id=ACTOR)

    balances = inventory_service.apply_bulk_movements(
        db,
        [
            BulkMovementIn(inventory_id=flour, movement_type="in", quantity=30, unit_cost=Decimal("2")),
            BulkMovementIn(inventory_id=sugar, movement_type="out", quantity=4),
            BulkMovementIn(inventory_id=flour, movement_type="adjustment", quantity=25),
        ],
        actor_id=ACTOR,
    )
    assert [balance.current_stock for balance in balances] == [30, 6, 25]

    with pytest.raises(InsufficientStock):
        inventory_service.apply_bulk_movements(
            db,
            [
                BulkMovementIn(inventory_id=flour, movement_type="out", quantity=5),
                BulkMovementIn(inventory_id=sugar, movement_type="out", quantity=7),
            ],
            actor_id=ACTOR,
        )

    assert inventory_service.get_balance(db, flour).current_stock == 25
    assert inventory_service.get_balance(db, sugar).current_stock == 6
    assert _movement_count(db, flour) == 2
    assert _movement_count(db, sugar) == 2

    bulk_refs = {movement.reference_id for movement in inventory_service.get_ledger(db, flour)}
    assert len(bulk_refs) == 1
    assert next(iter(bulk_refs)).startswith("BULK-")


def test_bulk_inbound_without_cost_uses_current_average(db):
    inventory_id = _open(db)
    inventory_service.add_stock(db, inventory_id, 10, "9", actor_id=ACTOR)

    (balance,) = inventory_service.apply_bulk_movements(
        db,
        [BulkMovementIn(inventory_id=inventory_id, movement_type="in", quantity=10)],
        actor_id=ACTOR,
    )
    assert balance.current_stock == 20
    assert balance.average_cost == Decimal("9.0000")


def test_stock_status_and_alert_queries(db):
    low = _open(db, name="Yeast", reorder_level=10)
    empty = _open(db, name="Salt", reorder_level=0)
    full = _open(db, name="Butter", reorder_level=2, max_stock_level=50)
    inventory_service.add_stock(db, low, 8, "1", actor_id=ACTOR)
    inventory_service.add_stock(db, full, 60, "1", actor_id=ACTOR)

    assert inventory_service.get_balance(db, low).stock_status == "low_stock"
    assert inventory_service.get_balance(db, empty).stock_status == "out_of_stock"
    assert inventory_service.get_balance(db, full).stock_status == "overstock"
    assert inventory_service.is_low_stock(inventory_service.get_inventory(db, empty)) is True

    assert [b.inventory_id for b in inventory_service.list_low_stock(db)] == [low]
    assert {b.inventory_id for b in inventory_service.list_low_stock(db, threshold=8)} == {low, empty}
    assert [b.inventory_id for b in inventory_service.list_out_of_stock(db)] == [empty]
    assert [b.inventory_id for b in inventory_service.list_overstock(db)] == [full]

    updated = inventory_service.set_stock_levels(
        db,
        full,
        reorder_level=5,
        max_stock_level=None,
        actor_id=ACTOR,
    )
    assert updated.stock_status == "in_stock"
    assert inventory_service.list_overstock(db) == []


def test_inventory_stats_summarize_balances_and_recent_movements(db):
    first = _open(db, name="Milk", reorder_level=5)
    second = _open(db, name="Eggs")
    inventory_service.add_stock(db, first, 4, "2.50", actor_id=ACTOR)
    inventory_service.add_stock(db, second, 10, "1.00", actor_id=ACTOR)
    inventory_service.remove_stock(db, second, 3, actor_id=ACTOR)
    inventory_service.reserve_stock(db, second, 2, actor_id=ACTOR)

    stats = inventory_service.get_inventory_stats(db)
    assert stats.total_records == 2
    assert stats.low_stock_records == 1
    assert stats.out_of_stock_records == 0
    assert stats.total_stock_quantity == 11
    assert stats.total_reserved_stock == 2
    assert stats.total_stock_value == Decimal("17.00")
    assert stats.recent_movements["in"].count == 2
    assert stats.recent_movements["in"].total_quantity == 14
    assert stats.recent_movements["out"].total_quantity == 3


def test_list_movements_filters_and_paginates(db):
    inventory_id = _open(db)
    other = _open(db, name="Cocoa")
    for _ in range(3):
        inventory_service.add_stock(db, inventory_id, 2, "1", actor_id=ACTOR)
    inventory_service.remove_stock(db, inventory_id, 1, actor_id=ACTOR)
    inventory_service.add_stock(db, other, 1, "1", actor_id=ACTOR)

    page = inventory_service.list_movements(db, inventory_id=inventory_id, limit=2)
    assert page.pagination.total == 4
    assert page.pagination.count == 2
    assert page.pagination.has_next is True
    assert [movement.seq for movement in page.items] == [4, 3]

    rest = inventory_service.list_movements(db, inventory_id=inventory_id, limit=2, offset=2)
    assert [movement.seq for movement in rest.items] == [2, 1]
    assert rest.pagination.has_next is False

    outbound = inventory_service.list_movements(db, movement_type="out")
    assert outbound.pagination.total == 1
    assert outbound.items[0].signed_quantity == -1

    with pytest.raises(InvalidMovementType):
        inventory_service.list_movements(db, movement_type="teleport")


def test_list_movements_for_one_record_follows_seq_not_timestamps(db):
    inventory_id = _open(db)
    for _ in range(3):
        inventory_service.add_stock(db, inventory_id, 1, "1", actor_id=ACTOR)

    # clock skew: the newest movement carries the oldest timestamp
    db.execute(
        update(StockMovement)
        .where(StockMovement.inventory_id == inventory_id, StockMovement.seq == 3)
        .values(created_at=datetime.now(timezone.utc) - timedelta(days=1))
    )
    db.commit()

    page = inventory_service.list_movements(db, inventory_id=inventory_id)
    assert [movement.seq for movement in page.items] == [3, 2, 1]

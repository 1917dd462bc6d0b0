from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from costledger.core.config import settings
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
from costledger.core.id_utils import generate_reference_code, generate_shortuuid
from costledger.core.money import ZERO_MONEY, to_decimal, to_money, to_unit_cost
from costledger.core.observability import log_event, log_warning
from costledger.db.transaction import run_atomic
from costledger.models.inventory import (
    INBOUND_MOVEMENT_TYPES,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TYPES,
    OUTBOUND_MOVEMENT_TYPES,
    InventoryRecord,
    StockMovement,
)
from costledger.models.item import Item, PurchaseLine
from costledger.schemas.common import PaginationMeta
from costledger.schemas.inventory import (
    BulkMovementIn,
    InventoryStatsOut,
    MovementTypeSummary,
    StockBalance,
    StockMovementListOut,
    StockMovementOut,
)

MAX_MOVEMENT_PAGE_SIZE = 200


# Derived fields. Computed on demand, never stored.

def available_stock(record: InventoryRecord) -> int:
    return record.current_stock - record.reserved_stock


def is_low_stock(record: InventoryRecord) -> bool:
    return record.current_stock <= record.reorder_level


def stock_status(record: InventoryRecord) -> str:
    if record.current_stock <= 0:
        return "out_of_stock"
    if record.current_stock <= record.reorder_level:
        return "low_stock"
    if record.max_stock_level and record.current_stock >= record.max_stock_level:
        return "overstock"
    return "in_stock"


def signed_quantity(movement: StockMovement) -> int:
    return movement.stock_after - movement.stock_before


def _to_balance(record: InventoryRecord, movement: StockMovement | None = None) -> StockBalance:
    return StockBalance(
        inventory_id=record.id,
        item_id=record.item_id,
        current_stock=record.current_stock,
        reserved_stock=record.reserved_stock,
        available_stock=available_stock(record),
        reorder_level=record.reorder_level,
        max_stock_level=record.max_stock_level,
        average_cost=to_unit_cost(record.average_cost or 0),
        stock_status=stock_status(record),
        movement_id=movement.id if movement is not None else None,
    )


def _to_movement_out(movement: StockMovement) -> StockMovementOut:
    return StockMovementOut(
        id=movement.id,
        inventory_id=movement.inventory_id,
        seq=movement.seq,
        movement_type=movement.movement_type,
        quantity=movement.quantity,
        signed_quantity=signed_quantity(movement),
        stock_before=movement.stock_before,
        stock_after=movement.stock_after,
        unit_cost=to_unit_cost(movement.unit_cost),
        total_cost=to_money(movement.total_cost),
        reference_id=movement.reference_id,
        notes=movement.notes,
        actor_id=movement.actor_id,
        created_at=movement.created_at,
    )


# Validation runs before any row is locked or written.

def _require_positive_quantity(quantity: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity(
            "Quantity must be a whole number",
            details={"quantity": str(quantity)},
        )
    if quantity <= 0:
        raise InvalidQuantity(
            "Quantity must be greater than 0",
            details={"quantity": quantity},
        )
    return quantity


def _require_stock_value(value: int, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidQuantity(
            f"{field} must be a whole number of at least 0",
            details={field: str(value)},
        )
    return value


def _require_unit_cost(unit_cost: Decimal | int | float | str) -> Decimal:
    try:
        value = to_decimal(unit_cost)
    except ArithmeticError as exc:
        raise InvalidUnitCost("Unit cost is not a number", details={"unit_cost": str(unit_cost)}) from exc
    if value is None or not value.is_finite() or value < 0:
        raise InvalidUnitCost(
            "Unit cost must be 0 or greater",
            details={"unit_cost": str(unit_cost)},
        )
    return value


def _require_movement_type(movement_type: str, allowed: frozenset[str]) -> str:
    if movement_type not in allowed:
        raise InvalidMovementType(
            f"Movement type '{movement_type}' is not allowed here",
            details={"movement_type": movement_type, "allowed": sorted(allowed)},
        )
    return movement_type


def _lock_inventory(db: Session, inventory_id: str) -> InventoryRecord:
    record = db.execute(
        select(InventoryRecord)
        .where(InventoryRecord.id == inventory_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not record:
        raise InventoryNotFound("Inventory record not found", details={"inventory_id": inventory_id})
    return record


def _append_movement(
    db: Session,
    record: InventoryRecord,
    *,
    movement_type: str,
    quantity: int,
    stock_before: int,
    unit_cost: Decimal,
    actor_id: str,
    reference_id: str | None,
    notes: str | None,
) -> StockMovement:
    record.last_movement_seq = (record.last_movement_seq or 0) + 1
    record.updated_by = actor_id
    movement = StockMovement(
        id=generate_shortuuid(),
        inventory_id=record.id,
        seq=record.last_movement_seq,
        movement_type=movement_type,
        quantity=quantity,
        stock_before=stock_before,
        stock_after=record.current_stock,
        unit_cost=to_unit_cost(unit_cost),
        total_cost=to_money(unit_cost * quantity),
        reference_id=reference_id,
        notes=notes,
        actor_id=actor_id,
    )
    db.add(movement)
    return movement


def _apply_add(
    db: Session,
    record: InventoryRecord,
    *,
    quantity: int,
    unit_cost: Decimal,
    movement_type: str,
    actor_id: str,
    reference_id: str | None,
    notes: str | None,
) -> StockMovement:
    stock_before = record.current_stock
    if stock_before == 0:
        new_average = unit_cost
    else:
        current_average = to_decimal(record.average_cost or 0)
        new_average = (stock_before * current_average + quantity * unit_cost) / (stock_before + quantity)

    record.average_cost = to_unit_cost(new_average)
    record.current_stock = stock_before + quantity
    record.last_restocked_at = datetime.now(timezone.utc)
    return _append_movement(
        db,
        record,
        movement_type=movement_type,
        quantity=quantity,
        stock_before=stock_before,
        unit_cost=unit_cost,
        actor_id=actor_id,
        reference_id=reference_id,
        notes=notes,
    )


def _apply_remove(
    db: Session,
    record: InventoryRecord,
    *,
    quantity: int,
    movement_type: str,
    consume_reserved: bool,
    actor_id: str,
    reference_id: str | None,
    notes: str | None,
) -> StockMovement:
    stock_before = record.current_stock
    if quantity > stock_before:
        raise InsufficientStock(
            f"Cannot remove {quantity} units, only {stock_before} in stock",
            details={"inventory_id": record.id, "requested": quantity, "current_stock": stock_before},
        )
    if consume_reserved:
        if quantity > record.reserved_stock:
            raise InsufficientStock(
                f"Cannot consume {quantity} reserved units, only {record.reserved_stock} reserved",
                details={"inventory_id": record.id, "requested": quantity, "reserved_stock": record.reserved_stock},
            )
        record.reserved_stock -= quantity
    elif quantity > available_stock(record):
        raise InsufficientStock(
            f"Cannot remove {quantity} units, only {available_stock(record)} available "
            f"({record.reserved_stock} reserved)",
            details={
                "inventory_id": record.id,
                "requested": quantity,
                "available_stock": available_stock(record),
                "reserved_stock": record.reserved_stock,
            },
        )

    record.current_stock = stock_before - quantity
    return _append_movement(
        db,
        record,
        movement_type=movement_type,
        quantity=quantity,
        stock_before=stock_before,
        unit_cost=to_decimal(record.average_cost or 0),
        actor_id=actor_id,
        reference_id=reference_id,
        notes=notes,
    )


def _apply_adjust(
    db: Session,
    record: InventoryRecord,
    *,
    new_stock_value: int,
    actor_id: str,
    reference_id: str | None,
    notes: str | None,
) -> StockMovement:
    stock_before = record.current_stock
    delta = new_stock_value - stock_before
    if new_stock_value < record.reserved_stock:
        log_warning(
            "inventory.reservation_clamped",
            inventory_id=record.id,
            reserved_before=record.reserved_stock,
            reserved_after=new_stock_value,
        )
        record.reserved_stock = new_stock_value

    record.current_stock = new_stock_value
    return _append_movement(
        db,
        record,
        movement_type=MOVEMENT_ADJUSTMENT,
        quantity=abs(delta),
        stock_before=stock_before,
        unit_cost=to_decimal(record.average_cost or 0),
        actor_id=actor_id,
        reference_id=reference_id,
        notes=notes,
    )


def add_stock(
    db: Session,
    inventory_id: str,
    quantity: int,
    unit_cost: Decimal | int | float | str,
    *,
    actor_id: str,
    reference_id: str | None = None,
    notes: str | None = None,
    movement_type: str = MOVEMENT_IN,
) -> StockBalance:
    """
    Receive stock and fold ``unit_cost`` into the moving-average cost.

    ``movement_type`` is ``in`` for receipts or ``return`` for goods coming back.
    Commits the balance and its movement together.
    """
    _require_positive_quantity(quantity)
    cost = _require_unit_cost(unit_cost)
    _require_movement_type(movement_type, INBOUND_MOVEMENT_TYPES)

    def work() -> StockBalance:
        record = _lock_inventory(db, inventory_id)
        movement = _apply_add(
            db,
            record,
            quantity=quantity,
            unit_cost=cost,
            movement_type=movement_type,
            actor_id=actor_id,
            reference_id=reference_id,
            notes=notes,
        )
        db.flush()
        return _to_balance(record, movement)

    balance = run_atomic(db, work, operation="inventory.add_stock")
    log_event(
        "inventory.stock_added",
        inventory_id=inventory_id,
        movement_type=movement_type,
        quantity=quantity,
        unit_cost=cost,
        current_stock=balance.current_stock,
        average_cost=balance.average_cost,
        reference_id=reference_id,
        actor_id=actor_id,
    )
    return balance


def remove_stock(
    db: Session,
    inventory_id: str,
    quantity: int,
    *,
    actor_id: str,
    reference_id: str | None = None,
    notes: str | None = None,
    movement_type: str = MOVEMENT_OUT,
    consume_reserved: bool = False,
) -> StockBalance:
    """
    Take stock out at the current average cost.

    Reserved units are untouchable unless ``consume_reserved`` is set, in which
    case the same quantity of reservation is released with the removal.
    """
    _require_positive_quantity(quantity)
    _require_movement_type(movement_type, OUTBOUND_MOVEMENT_TYPES)

    def work() -> StockBalance:
        record = _lock_inventory(db, inventory_id)
        movement = _apply_remove(
            db,
            record,
            quantity=quantity,
            movement_type=movement_type,
            consume_reserved=consume_reserved,
            actor_id=actor_id,
            reference_id=reference_id,
            notes=notes,
        )
        db.flush()
        return _to_balance(record, movement)

    balance = run_atomic(db, work, operation="inventory.remove_stock")
    log_event(
        "inventory.stock_removed",
        inventory_id=inventory_id,
        movement_type=movement_type,
        quantity=quantity,
        consume_reserved=consume_reserved,
        current_stock=balance.current_stock,
        reference_id=reference_id,
        actor_id=actor_id,
    )
    return balance


def adjust_stock(
    db: Session,
    inventory_id: str,
    new_stock_value: int,
    *,
    reason: str,
    actor_id: str,
    reference_id: str | None = None,
    notes: str | None = None,
) -> StockBalance:
    _require_stock_value(new_stock_value, field="new_stock_value")
    movement_notes = f"{reason}: {notes}" if notes else reason

    def work() -> StockBalance:
        record = _lock_inventory(db, inventory_id)
        movement = _apply_adjust(
            db,
            record,
            new_stock_value=new_stock_value,
            actor_id=actor_id,
            reference_id=reference_id,
            notes=movement_notes,
        )
        db.flush()
        return _to_balance(record, movement)

    balance = run_atomic(db, work, operation="inventory.adjust_stock")
    log_event(
        "inventory.stock_adjusted",
        inventory_id=inventory_id,
        new_stock_value=new_stock_value,
        reason=reason,
        actor_id=actor_id,
    )
    return balance


def reserve_stock(db: Session, inventory_id: str, quantity: int, *, actor_id: str) -> bool:
    """Earmark stock for a pending order. Not a stock event, so no movement is written."""
    _require_positive_quantity(quantity)

    def work() -> bool:
        record = _lock_inventory(db, inventory_id)
        available = available_stock(record)
        if quantity > available:
            raise InsufficientStock(
                f"Cannot reserve {quantity} units, only {available} available",
                details={"inventory_id": inventory_id, "requested": quantity, "available_stock": available},
            )
        record.reserved_stock += quantity
        record.updated_by = actor_id
        db.flush()
        return True

    result = run_atomic(db, work, operation="inventory.reserve_stock")
    log_event("inventory.stock_reserved", inventory_id=inventory_id, quantity=quantity, actor_id=actor_id)
    return result


def release_reserved_stock(db: Session, inventory_id: str, quantity: int, *, actor_id: str) -> bool:
    _require_positive_quantity(quantity)

    def work() -> bool:
        record = _lock_inventory(db, inventory_id)
        if quantity > record.reserved_stock:
            raise InsufficientStock(
                f"Cannot release {quantity} units, only {record.reserved_stock} reserved",
                details={"inventory_id": inventory_id, "requested": quantity, "reserved_stock": record.reserved_stock},
            )
        record.reserved_stock -= quantity
        record.updated_by = actor_id
        db.flush()
        return True

    result = run_atomic(db, work, operation="inventory.release_reserved_stock")
    log_event("inventory.reservation_released", inventory_id=inventory_id, quantity=quantity, actor_id=actor_id)
    return result


def set_stock_levels(
    db: Session,
    inventory_id: str,
    *,
    reorder_level: int,
    max_stock_level: int | None,
    actor_id: str,
) -> StockBalance:
    _require_stock_value(reorder_level, field="reorder_level")
    if max_stock_level is not None:
        _require_positive_quantity(max_stock_level)

    def work() -> StockBalance:
        record = _lock_inventory(db, inventory_id)
        record.reorder_level = reorder_level
        record.max_stock_level = max_stock_level
        record.updated_by = actor_id
        db.flush()
        return _to_balance(record)

    return run_atomic(db, work, operation="inventory.set_stock_levels")


def open_inventory(
    db: Session,
    item_id: str,
    *,
    actor_id: str,
    reorder_level: int | None = None,
    max_stock_level: int | None = None,
) -> StockBalance:
    """Create the zero-balance record for an item. Returns the existing one if already open."""
    if reorder_level is None:
        reorder_level = settings.low_stock_default_threshold
    _require_stock_value(reorder_level, field="reorder_level")
    if max_stock_level is not None:
        _require_positive_quantity(max_stock_level)

    existing = get_inventory_for_item(db, item_id)
    if existing:
        return _to_balance(existing)

    if not db.get(Item, item_id):
        raise ItemNotFound("Item not found", details={"item_id": item_id})

    def work() -> StockBalance:
        record = InventoryRecord(
            id=generate_shortuuid(),
            item_id=item_id,
            current_stock=0,
            reserved_stock=0,
            reorder_level=reorder_level,
            max_stock_level=max_stock_level,
            average_cost=ZERO_MONEY,
            last_movement_seq=0,
            updated_by=actor_id,
        )
        db.add(record)
        db.flush()
        return _to_balance(record)

    try:
        balance = run_atomic(db, work, operation="inventory.open_inventory")
    except IntegrityError:
        # Another request opened the record first.
        existing = get_inventory_for_item(db, item_id)
        if not existing:
            raise
        return _to_balance(existing)

    log_event("inventory.opened", inventory_id=balance.inventory_id, item_id=item_id, actor_id=actor_id)
    return balance


def receive_purchase_line(db: Session, purchase_line_id: str, *, actor_id: str) -> StockBalance:
    """
    Receive a purchase line into its item's inventory record, opening the record if needed.

    A line is received once. The duplicate check runs under the record lock,
    so two concurrent receipts of the same line cannot both add stock.
    """
    line = db.get(PurchaseLine, purchase_line_id)
    if not line:
        raise PurchaseLineNotFound("Purchase line not found", details={"purchase_line_id": purchase_line_id})

    line_id = line.id
    item_id = line.item_id
    quantity = _require_positive_quantity(line.quantity)
    cost = _require_unit_cost(line.unit_cost)
    notes = f"purchase {line.purchase_id}" if line.purchase_id else "purchase receipt"

    record = get_inventory_for_item(db, item_id)
    inventory_id = record.id if record else open_inventory(db, item_id, actor_id=actor_id).inventory_id

    def work() -> StockBalance:
        record = _lock_inventory(db, inventory_id)
        received = db.execute(
            select(StockMovement.id)
            .where(
                StockMovement.inventory_id == record.id,
                StockMovement.movement_type == MOVEMENT_IN,
                StockMovement.reference_id == line_id,
            )
            .limit(1)
        ).scalar_one_or_none()
        if received:
            raise PurchaseLineAlreadyReceived(
                "Purchase line has already been received",
                details={"purchase_line_id": line_id, "movement_id": received},
            )
        movement = _apply_add(
            db,
            record,
            quantity=quantity,
            unit_cost=cost,
            movement_type=MOVEMENT_IN,
            actor_id=actor_id,
            reference_id=line_id,
            notes=notes,
        )
        db.flush()
        return _to_balance(record, movement)

    balance = run_atomic(db, work, operation="inventory.receive_purchase_line")
    log_event(
        "inventory.purchase_line_received",
        inventory_id=inventory_id,
        purchase_line_id=line_id,
        quantity=quantity,
        unit_cost=cost,
        current_stock=balance.current_stock,
        average_cost=balance.average_cost,
        actor_id=actor_id,
    )
    return balance


def apply_bulk_movements(
    db: Session,
    lines: list[BulkMovementIn],
    *,
    actor_id: str,
) -> list[StockBalance]:
    """
    Apply several in/out/adjustment lines as one transaction.

    Records are locked in ascending id order so two bulk calls touching the
    same items cannot deadlock. Any failing line rolls back every line.
    An ``in`` line without a unit cost is received at the record's current
    average cost.
    """
    if not lines:
        return []

    for line in lines:
        if line.movement_type == MOVEMENT_ADJUSTMENT:
            _require_stock_value(line.quantity, field="quantity")
        else:
            _require_positive_quantity(line.quantity)
        if line.unit_cost is not None:
            _require_unit_cost(line.unit_cost)

    batch_reference = generate_reference_code("BULK")

    def work() -> list[StockBalance]:
        records = {
            inventory_id: _lock_inventory(db, inventory_id)
            for inventory_id in sorted({line.inventory_id for line in lines})
        }
        balances: list[StockBalance] = []
        for line in lines:
            record = records[line.inventory_id]
            reference_id = line.reference_id or batch_reference
            if line.movement_type == MOVEMENT_IN:
                cost = line.unit_cost if line.unit_cost is not None else to_decimal(record.average_cost or 0)
                movement = _apply_add(
                    db,
                    record,
                    quantity=line.quantity,
                    unit_cost=to_decimal(cost),
                    movement_type=MOVEMENT_IN,
                    actor_id=actor_id,
                    reference_id=reference_id,
                    notes=line.notes,
                )
            elif line.movement_type == MOVEMENT_OUT:
                movement = _apply_remove(
                    db,
                    record,
                    quantity=line.quantity,
                    movement_type=MOVEMENT_OUT,
                    consume_reserved=False,
                    actor_id=actor_id,
                    reference_id=reference_id,
                    notes=line.notes,
                )
            else:
                movement = _apply_adjust(
                    db,
                    record,
                    new_stock_value=line.quantity,
                    actor_id=actor_id,
                    reference_id=reference_id,
                    notes=line.notes or "bulk adjustment",
                )
            balances.append(_to_balance(record, movement))
        db.flush()
        return balances

    balances = run_atomic(db, work, operation="inventory.apply_bulk_movements")
    log_event(
        "inventory.bulk_applied",
        batch_reference=batch_reference,
        lines=len(lines),
        records=len({line.inventory_id for line in lines}),
        actor_id=actor_id,
    )
    return balances


def get_inventory(db: Session, inventory_id: str) -> InventoryRecord:
    record = db.get(InventoryRecord, inventory_id)
    if not record:
        raise InventoryNotFound("Inventory record not found", details={"inventory_id": inventory_id})
    return record


def get_inventory_for_item(db: Session, item_id: str) -> InventoryRecord | None:
    return db.execute(
        select(InventoryRecord).where(InventoryRecord.item_id == item_id)
    ).scalar_one_or_none()


def get_balance(db: Session, inventory_id: str) -> StockBalance:
    return _to_balance(get_inventory(db, inventory_id))


def get_ledger(db: Session, inventory_id: str) -> list[StockMovement]:
    """Every movement of one record in ledger order."""
    get_inventory(db, inventory_id)
    return list(
        db.execute(
            select(StockMovement)
            .where(StockMovement.inventory_id == inventory_id)
            .order_by(StockMovement.seq.asc())
        ).scalars()
    )


def list_low_stock(db: Session, threshold: int | None = None) -> list[StockBalance]:
    stmt = select(InventoryRecord)
    if threshold is None:
        stmt = stmt.where(
            InventoryRecord.reorder_level > 0,
            InventoryRecord.current_stock <= InventoryRecord.reorder_level,
        )
    else:
        stmt = stmt.where(InventoryRecord.current_stock <= threshold)
    stmt = stmt.order_by(InventoryRecord.current_stock.asc(), InventoryRecord.id.asc())
    return [_to_balance(record) for record in db.execute(stmt).scalars()]


def list_out_of_stock(db: Session) -> list[StockBalance]:
    stmt = (
        select(InventoryRecord)
        .where(InventoryRecord.current_stock <= 0)
        .order_by(InventoryRecord.id.asc())
    )
    return [_to_balance(record) for record in db.execute(stmt).scalars()]


def list_overstock(db: Session) -> list[StockBalance]:
    stmt = (
        select(InventoryRecord)
        .where(
            InventoryRecord.max_stock_level.is_not(None),
            InventoryRecord.max_stock_level > 0,
            InventoryRecord.current_stock >= InventoryRecord.max_stock_level,
        )
        .order_by(InventoryRecord.current_stock.desc(), InventoryRecord.id.asc())
    )
    return [_to_balance(record) for record in db.execute(stmt).scalars()]


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def list_movements(
    db: Session,
    *,
    inventory_id: str | None = None,
    movement_type: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> StockMovementListOut:
    if movement_type is not None:
        _require_movement_type(movement_type, frozenset(MOVEMENT_TYPES))
    limit = max(1, min(limit, MAX_MOVEMENT_PAGE_SIZE))
    offset = max(0, offset)

    count_stmt = select(func.count(StockMovement.id))
    stmt = select(StockMovement)
    filters = []
    if inventory_id:
        get_inventory(db, inventory_id)
        filters.append(StockMovement.inventory_id == inventory_id)
    if movement_type:
        filters.append(StockMovement.movement_type == movement_type)
    if date_from:
        filters.append(StockMovement.created_at >= _day_start(date_from))
    if date_to:
        filters.append(StockMovement.created_at < _day_start(date_to + timedelta(days=1)))
    if filters:
        count_stmt = count_stmt.where(*filters)
        stmt = stmt.where(*filters)

    total = int(db.execute(count_stmt).scalar_one())
    if inventory_id:
        # seq is the ledger order within one record; created_at may tie or skew.
        ordering = (StockMovement.seq.desc(),)
    else:
        ordering = (StockMovement.created_at.desc(), StockMovement.seq.desc())
    stmt = stmt.order_by(*ordering).offset(offset).limit(limit)
    items = [_to_movement_out(row) for row in db.execute(stmt).scalars()]
    count = len(items)
    return StockMovementListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


def get_inventory_stats(db: Session, *, now: datetime | None = None) -> InventoryStatsOut:
    now = now or datetime.now(timezone.utc)
    window_days = settings.recent_movement_days

    total_records, total_quantity, total_reserved, total_value = db.execute(
        select(
            func.count(InventoryRecord.id),
            func.coalesce(func.sum(InventoryRecord.current_stock), 0),
            func.coalesce(func.sum(InventoryRecord.reserved_stock), 0),
            func.coalesce(func.sum(InventoryRecord.current_stock * InventoryRecord.average_cost), 0),
        )
    ).one()

    low_stock_count = db.execute(
        select(func.count(InventoryRecord.id)).where(
            InventoryRecord.reorder_level > 0,
            InventoryRecord.current_stock <= InventoryRecord.reorder_level,
        )
    ).scalar_one()
    out_of_stock_count = db.execute(
        select(func.count(InventoryRecord.id)).where(InventoryRecord.current_stock <= 0)
    ).scalar_one()
    overstock_count = db.execute(
        select(func.count(InventoryRecord.id)).where(
            InventoryRecord.max_stock_level.is_not(None),
            InventoryRecord.max_stock_level > 0,
            InventoryRecord.current_stock >= InventoryRecord.max_stock_level,
        )
    ).scalar_one()

    since = now - timedelta(days=window_days)
    recent_rows = db.execute(
        select(
            StockMovement.movement_type,
            func.count(StockMovement.id),
            func.coalesce(func.sum(StockMovement.quantity), 0),
        )
        .where(StockMovement.created_at >= since)
        .group_by(StockMovement.movement_type)
    ).all()

    return InventoryStatsOut(
        total_records=int(total_records),
        low_stock_records=int(low_stock_count),
        out_of_stock_records=int(out_of_stock_count),
        overstock_records=int(overstock_count),
        total_stock_quantity=int(total_quantity),
        total_reserved_stock=int(total_reserved),
        total_stock_value=to_money(total_value),
        recent_window_days=window_days,
        recent_movements={
            movement_type: MovementTypeSummary(count=int(count), total_quantity=int(quantity))
            for movement_type, count, quantity in recent_rows
        },
    )

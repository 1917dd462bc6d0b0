from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from costledger.db.base import Base

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TRANSFER = "transfer"
MOVEMENT_RETURN = "return"
MOVEMENT_DAMAGED = "damaged"
MOVEMENT_EXPIRED = "expired"

INBOUND_MOVEMENT_TYPES = frozenset({MOVEMENT_IN, MOVEMENT_RETURN})
OUTBOUND_MOVEMENT_TYPES = frozenset({MOVEMENT_OUT, MOVEMENT_TRANSFER, MOVEMENT_DAMAGED, MOVEMENT_EXPIRED})
MOVEMENT_TYPES = (
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_TRANSFER,
    MOVEMENT_RETURN,
    MOVEMENT_DAMAGED,
    MOVEMENT_EXPIRED,
)


class InventoryRecord(Base):
    """
    Current balance of one stocked item. Mutated only through the inventory
    service, which appends a StockMovement for every quantity change.
    """
    __tablename__ = "inventory_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(36), ForeignKey("items.id"), nullable=False, unique=True)

    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reserved_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_stock_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    average_cost: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False, default=0, server_default="0")

    last_restocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_movement_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_inventory_records_current_stock_non_negative"),
        CheckConstraint("reserved_stock >= 0", name="ck_inventory_records_reserved_stock_non_negative"),
        CheckConstraint("reserved_stock <= current_stock", name="ck_inventory_records_available_non_negative"),
        Index("ix_inventory_records_current_reorder", "current_stock", "reorder_level"),
    )


class StockMovement(Base):
    """
    Immutable ledger row. ``quantity`` is always stored non-negative; the signed
    change is ``stock_after - stock_before``.
    """
    __tablename__ = "stock_movements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    inventory_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("inventory_records.id"),
        nullable=False,
        index=True,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_before: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_after: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    reference_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)  # e.g., purchase line or order id
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("inventory_id", "seq", name="uq_stock_movements_inventory_seq"),
        CheckConstraint("quantity >= 0", name="ck_stock_movements_quantity_non_negative"),
        CheckConstraint(
            "movement_type IN ('in', 'out', 'adjustment', 'transfer', 'return', 'damaged', 'expired')",
            name="ck_stock_movements_movement_type",
        ),
        Index("ix_stock_movements_inventory_created_at", "inventory_id", "created_at"),
        Index("ix_stock_movements_type_created_at", "movement_type", "created_at"),
    )

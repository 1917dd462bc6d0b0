from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from costledger.db.base import Base

PRODUCT_KIND_FINISHED = "finished"
PRODUCT_KIND_BASE = "base"


class Product(Base):
    """
    Sellable product or base product (sub-assembly). Catalog CRUD lives in the
    product module; this core only writes cost, price and markup_percentage.
    """
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PRODUCT_KIND_FINISHED,
        server_default=PRODUCT_KIND_FINISHED,
    )
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    markup_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 2), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}


class CompositionLink(Base):
    """
    One bill-of-materials edge: ``product_id`` needs ``quantity_needed`` of either
    an item or another (base) product per unit produced.
    """
    __tablename__ = "composition_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    item_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("items.id"), nullable=True, index=True)
    component_product_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("products.id"),
        nullable=True,
        index=True,
    )

    quantity_needed: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    cost_per_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)  # override
    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Tombstone. Queries must choose live-only or all links explicitly.
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "(item_id IS NULL) <> (component_product_id IS NULL)",
            name="ck_composition_links_one_component",
        ),
        CheckConstraint("quantity_needed > 0", name="ck_composition_links_quantity_positive"),
        Index("ix_composition_links_product_deleted_at", "product_id", "deleted_at"),
    )

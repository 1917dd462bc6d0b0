"""create cost ledger tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


# (table, index name, columns, unique)
_INDEXES = (
    ("purchase_lines", "ix_purchase_lines_item_id", ["item_id"], False),
    ("purchase_lines", "ix_purchase_lines_purchase_id", ["purchase_id"], False),
    ("purchase_lines", "ix_purchase_lines_item_purchased_at", ["item_id", "purchased_at"], False),
    ("composition_links", "ix_composition_links_product_id", ["product_id"], False),
    ("composition_links", "ix_composition_links_item_id", ["item_id"], False),
    ("composition_links", "ix_composition_links_component_product_id", ["component_product_id"], False),
    ("composition_links", "ix_composition_links_product_deleted_at", ["product_id", "deleted_at"], False),
    ("inventory_records", "ix_inventory_records_current_reorder", ["current_stock", "reorder_level"], False),
    ("stock_movements", "ix_stock_movements_inventory_id", ["inventory_id"], False),
    ("stock_movements", "ix_stock_movements_reference_id", ["reference_id"], False),
    ("stock_movements", "ix_stock_movements_inventory_created_at", ["inventory_id", "created_at"], False),
    ("stock_movements", "ix_stock_movements_type_created_at", ["movement_type", "created_at"], False),
    ("audit_logs", "ix_audit_logs_actor_id", ["actor_id"], False),
    ("audit_logs", "ix_audit_logs_target_id", ["target_id"], False),
    ("audit_logs", "ix_audit_logs_action_created_at", ["action", "created_at"], False),
    ("audit_logs", "ix_audit_logs_target_created_at", ["target_type", "target_id", "created_at"], False),
)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    # items, purchase_lines and products may already be owned by the host schema.
    if not _table_exists(inspector, "items"):
        op.create_table(
            "items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("unit", sa.String(length=20), nullable=False),
            sa.Column("cost_per_unit", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    if not _table_exists(inspector, "purchase_lines"):
        op.create_table(
            "purchase_lines",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("item_id", sa.String(length=36), nullable=False),
            sa.Column("purchase_id", sa.String(length=36), nullable=True),
            sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column(
                "purchased_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
            sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False, server_default="finished"),
            sa.Column("cost", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("markup_percentage", sa.Numeric(7, 2), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
            _created_at(),
            _updated_at(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "composition_links"):
        op.create_table(
            "composition_links",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("item_id", sa.String(length=36), nullable=True),
            sa.Column("component_product_id", sa.String(length=36), nullable=True),
            sa.Column("quantity_needed", sa.Numeric(12, 3), nullable=False),
            sa.Column("unit", sa.String(length=20), nullable=True),
            sa.Column("cost_per_unit", sa.Numeric(12, 2), nullable=True),
            sa.Column("is_critical", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            _created_at(),
            sa.CheckConstraint(
                "(item_id IS NULL) <> (component_product_id IS NULL)",
                name="ck_composition_links_one_component",
            ),
            sa.CheckConstraint("quantity_needed > 0", name="ck_composition_links_quantity_positive"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
            sa.ForeignKeyConstraint(["component_product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "inventory_records"):
        op.create_table(
            "inventory_records",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("item_id", sa.String(length=36), nullable=False),
            sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reserved_stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reorder_level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_stock_level", sa.Integer(), nullable=True),
            sa.Column("average_cost", sa.Numeric(14, 4), nullable=False, server_default="0"),
            sa.Column("last_restocked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_movement_seq", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("updated_by", sa.String(length=36), nullable=True),
            _created_at(),
            _updated_at(),
            sa.CheckConstraint("current_stock >= 0", name="ck_inventory_records_current_stock_non_negative"),
            sa.CheckConstraint("reserved_stock >= 0", name="ck_inventory_records_reserved_stock_non_negative"),
            sa.CheckConstraint(
                "reserved_stock <= current_stock",
                name="ck_inventory_records_available_non_negative",
            ),
            sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("item_id"),
        )

    if not _table_exists(inspector, "stock_movements"):
        op.create_table(
            "stock_movements",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("inventory_id", sa.String(length=36), nullable=False),
            sa.Column("seq", sa.Integer(), nullable=False),
            sa.Column("movement_type", sa.String(length=20), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("stock_before", sa.Integer(), nullable=False),
            sa.Column("stock_after", sa.Integer(), nullable=False),
            sa.Column("unit_cost", sa.Numeric(14, 4), nullable=False),
            sa.Column("total_cost", sa.Numeric(14, 2), nullable=False),
            sa.Column("reference_id", sa.String(length=64), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("actor_id", sa.String(length=36), nullable=True),
            _created_at(),
            sa.CheckConstraint("quantity >= 0", name="ck_stock_movements_quantity_non_negative"),
            sa.CheckConstraint(
                "movement_type IN ('in', 'out', 'adjustment', 'transfer', 'return', 'damaged', 'expired')",
                name="ck_stock_movements_movement_type",
            ),
            sa.ForeignKeyConstraint(["inventory_id"], ["inventory_records.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("inventory_id", "seq", name="uq_stock_movements_inventory_seq"),
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("actor_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            _created_at(),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    for table_name, index_name, columns, unique in _INDEXES:
        if not _index_exists(inspector, table_name, index_name):
            op.create_index(index_name, table_name, columns, unique=unique)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name, index_name, _columns, _unique in reversed(_INDEXES):
        if _table_exists(inspector, table_name) and _index_exists(inspector, table_name, index_name):
            op.drop_index(index_name, table_name=table_name)

    for table_name in (
        "audit_logs",
        "stock_movements",
        "inventory_records",
        "composition_links",
        "products",
        "purchase_lines",
        "items",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)

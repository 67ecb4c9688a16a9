"""baseline stock schema: master data / balances / ledger / reservations / documents

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

from typing import List, Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _fk(name: str, target: str, *, nullable: bool = False, ondelete: str = "RESTRICT") -> sa.Column:
    return sa.Column(name, sa.Integer, sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


# ------------ 单据公共列（与 DocumentMixin / LineMixin / EventMixin 对齐） ------------
def _document_columns() -> List[sa.Column]:
    return [
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("number", sa.String(32), nullable=False, unique=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=True, unique=True),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.String(1000), nullable=True),
        sa.Column("created_by", sa.Integer, nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.Column("completed_by", sa.Integer, nullable=True),
        _ts("completed_at", nullable=True),
        sa.Column("canceled_by", sa.Integer, nullable=True),
        _ts("canceled_at", nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
    ]


def _line_columns() -> List[sa.Column]:
    return [
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("line_no", sa.Integer, nullable=False),
        _fk("product_id", "products.id"),
        sa.Column("sku", sa.String(64), nullable=True),
    ]


def _event_table(table: str, parent_col: str, parent: str) -> None:
    op.create_table(
        table,
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("actor_id", sa.Integer, nullable=True),
        sa.Column("note", sa.String(500), nullable=True),
        _ts("created_at"),
        _fk(parent_col, f"{parent}.id", ondelete="CASCADE"),
    )
    op.create_index(f"ix_{table}_{parent_col}", table, [parent_col])


def upgrade() -> None:
    # ---- 主数据 ----
    op.create_table(
        "products",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("sku", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("uom", sa.String(16), nullable=False, server_default="pcs"),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "warehouses",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "locations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _fk("warehouse_id", "warehouses.id"),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("warehouse_id", "code", name="uq_locations_wh_code"),
    )
    op.create_index("ix_locations_warehouse_id", "locations", ["warehouse_id"])

    # ---- 余额 / 汇总 ----
    op.create_table(
        "stock_balances",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _fk("product_id", "products.id"),
        _fk("location_id", "locations.id"),
        _fk("warehouse_id", "warehouses.id"),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reserved", sa.Integer, nullable=False, server_default="0"),
        _ts("updated_at"),
        sa.UniqueConstraint("product_id", "location_id", name="uq_stock_balances_product_location"),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_balances_quantity_nonneg"),
        sa.CheckConstraint("reserved >= 0", name="ck_stock_balances_reserved_nonneg"),
        sa.CheckConstraint("reserved <= quantity", name="ck_stock_balances_reserved_le_quantity"),
    )
    for col in ("product_id", "location_id", "warehouse_id"):
        op.create_index(f"ix_stock_balances_{col}", "stock_balances", [col])

    op.create_table(
        "product_aggregates",
        sa.Column(
            "product_id",
            sa.Integer,
            sa.ForeignKey("products.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
        sa.Column("total_on_hand", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_reserved", sa.Integer, nullable=False, server_default="0"),
        _ts("updated_at"),
    )

    # ---- 台账（只增不改） ----
    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _fk("product_id", "products.id"),
        _fk("location_id", "locations.id"),
        _fk("warehouse_id", "warehouses.id"),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("reference_type", sa.String(32), nullable=False),
        sa.Column("reference_id", sa.Integer, nullable=False),
        sa.Column("reference_number", sa.String(64), nullable=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("balance_before", sa.Integer, nullable=False),
        sa.Column("balance_after", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("total_value", sa.Numeric(18, 4), nullable=True),
        _ts("transaction_date"),
        sa.Column("actor_id", sa.Integer, nullable=True),
        sa.Column("note", sa.String(500), nullable=True),
        sa.CheckConstraint(
            "balance_after = balance_before + quantity", name="ck_stock_movements_balance_math"
        ),
    )
    op.create_index("ix_stock_movements_product_date", "stock_movements", ["product_id", "transaction_date"])
    op.create_index("ix_stock_movements_product_location", "stock_movements", ["product_id", "location_id"])
    op.create_index("ix_stock_movements_warehouse_date", "stock_movements", ["warehouse_id", "transaction_date"])
    op.create_index("ix_stock_movements_reference", "stock_movements", ["reference_type", "reference_id"])
    op.create_index("ix_stock_movements_type_date", "stock_movements", ["transaction_type", "transaction_date"])

    # ---- 预留 ----
    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("reference_type", sa.String(32), nullable=False),
        sa.Column("reference_id", sa.String(64), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=True, unique=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        _ts("expires_at"),
        _ts("released_at", nullable=True),
        sa.Column("release_reason", sa.String(64), nullable=True),
        sa.Column("created_by", sa.Integer, nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_reservations_reference", "reservations", ["reference_type", "reference_id"])
    op.create_index("ix_reservations_status_expires", "reservations", ["status", "expires_at"])

    op.create_table(
        "reservation_lines",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _fk("reservation_id", "reservations.id", ondelete="CASCADE"),
        sa.Column("line_no", sa.Integer, nullable=False),
        _fk("product_id", "products.id"),
        _fk("location_id", "locations.id"),
        _fk("warehouse_id", "warehouses.id"),
        sa.Column("qty", sa.Integer, nullable=False),
    )
    op.create_index("ix_reservation_lines_reservation_id", "reservation_lines", ["reservation_id"])

    # ---- 单号登记 ----
    op.create_table(
        "document_numbers",
        sa.Column("number", sa.String(32), primary_key=True),
        sa.Column("prefix", sa.String(8), nullable=False),
        sa.Column("period", sa.String(6), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_document_numbers_prefix_period", "document_numbers", ["prefix", "period"])

    # ---- 收货单 ----
    op.create_table(
        "receipts",
        *_document_columns(),
        _fk("warehouse_id", "warehouses.id"),
        _fk("location_id", "locations.id", nullable=True),
        sa.Column("supplier_name", sa.String(255), nullable=True),
        sa.Column("external_reference", sa.String(128), nullable=True),
        _ts("expected_date", nullable=True),
        sa.Column("total_expected_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_received_qty", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_receipts_warehouse_id", "receipts", ["warehouse_id"])
    op.create_index("ix_receipts_status_created", "receipts", ["status", "created_at"])
    op.create_table(
        "receipt_lines",
        *_line_columns(),
        _fk("receipt_id", "receipts.id", ondelete="CASCADE"),
        sa.Column("expected_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("received_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
    )
    op.create_index("ix_receipt_lines_receipt_id", "receipt_lines", ["receipt_id"])
    _event_table("receipt_events", "receipt_id", "receipts")

    # ---- 出库单 ----
    op.create_table(
        "delivery_orders",
        *_document_columns(),
        _fk("warehouse_id", "warehouses.id"),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("shipping_address", sa.String(500), nullable=True),
        _ts("scheduled_date", nullable=True),
        sa.Column("create_key", sa.String(128), nullable=True, unique=True),
        _fk("reservation_id", "reservations.id", nullable=True, ondelete="SET NULL"),
        sa.Column("total_ordered_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_reserved_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_picked_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_packed_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_shipped_qty", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_delivery_orders_warehouse_id", "delivery_orders", ["warehouse_id"])
    op.create_index("ix_delivery_orders_status_created", "delivery_orders", ["status", "created_at"])
    op.create_table(
        "delivery_order_lines",
        *_line_columns(),
        _fk("delivery_order_id", "delivery_orders.id", ondelete="CASCADE"),
        _fk("location_id", "locations.id", nullable=True),
        sa.Column("ordered_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reserved_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("picked_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("packed_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("shipped_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
    )
    op.create_index("ix_delivery_order_lines_delivery_order_id", "delivery_order_lines", ["delivery_order_id"])
    op.create_table(
        "delivery_packages",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _fk("delivery_order_id", "delivery_orders.id", ondelete="CASCADE"),
        sa.Column("package_code", sa.String(64), nullable=False),
        sa.Column("weight", sa.Numeric(10, 3), nullable=True),
        sa.Column("tracking_number", sa.String(128), nullable=True),
        sa.Column("carrier", sa.String(64), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_delivery_packages_delivery_order_id", "delivery_packages", ["delivery_order_id"])
    _event_table("delivery_order_events", "delivery_order_id", "delivery_orders")

    # ---- 调拨单 ----
    op.create_table(
        "transfers",
        *_document_columns(),
        _fk("from_location_id", "locations.id"),
        _fk("to_location_id", "locations.id"),
        _fk("from_warehouse_id", "warehouses.id"),
        _fk("to_warehouse_id", "warehouses.id"),
        _ts("scheduled_date", nullable=True),
        sa.Column("total_requested_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_transferred_qty", sa.Integer, nullable=False, server_default="0"),
        sa.CheckConstraint("from_location_id <> to_location_id", name="ck_transfers_distinct_locations"),
    )
    op.create_index("ix_transfers_from_warehouse_id", "transfers", ["from_warehouse_id"])
    op.create_index("ix_transfers_to_warehouse_id", "transfers", ["to_warehouse_id"])
    op.create_index("ix_transfers_status_created", "transfers", ["status", "created_at"])
    op.create_table(
        "transfer_lines",
        *_line_columns(),
        _fk("transfer_id", "transfers.id", ondelete="CASCADE"),
        sa.Column("requested_qty", sa.Integer, nullable=False),
        sa.Column("transferred_qty", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_transfer_lines_transfer_id", "transfer_lines", ["transfer_id"])
    _event_table("transfer_events", "transfer_id", "transfers")

    # ---- 调整单 ----
    op.create_table(
        "adjustments",
        *_document_columns(),
        _fk("warehouse_id", "warehouses.id"),
        sa.Column("reason", sa.String(32), nullable=False),
        sa.Column("total_variance", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_positive_variance", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_negative_variance", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_adjustments_warehouse_id", "adjustments", ["warehouse_id"])
    op.create_index("ix_adjustments_status_created", "adjustments", ["status", "created_at"])
    op.create_table(
        "adjustment_lines",
        *_line_columns(),
        _fk("adjustment_id", "adjustments.id", ondelete="CASCADE"),
        _fk("location_id", "locations.id"),
        sa.Column("system_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("counted_qty", sa.Integer, nullable=False, server_default="0"),
        sa.Column("variance", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
    )
    op.create_index("ix_adjustment_lines_adjustment_id", "adjustment_lines", ["adjustment_id"])
    _event_table("adjustment_events", "adjustment_id", "adjustments")


def downgrade() -> None:
    for table in (
        "adjustment_events",
        "adjustment_lines",
        "adjustments",
        "transfer_events",
        "transfer_lines",
        "transfers",
        "delivery_order_events",
        "delivery_packages",
        "delivery_order_lines",
        "delivery_orders",
        "receipt_events",
        "receipt_lines",
        "receipts",
        "document_numbers",
        "reservation_lines",
        "reservations",
        "stock_movements",
        "product_aggregates",
        "stock_balances",
        "locations",
        "warehouses",
        "products",
    ):
        op.drop_table(table)

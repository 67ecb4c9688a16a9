# wms_stock/models/stock_movement.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from wms_stock.db.base import Base
from wms_stock.utils.time import utc_now


class StockMovement(Base):
    """
    库存台账（只增不改）

    - balance_after = balance_before + quantity
    - balance_before 必须等于写入前余额行的 quantity（余额行加锁后读取）
    - 冲正：新增一条 transaction_type='reversal'、quantity 取反、引用同一单据的记录
    """

    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    product_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    location_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )

    transaction_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    reference_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    reference_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reference_number: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)

    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    unit_price: Mapped[Decimal | None] = mapped_column(sa.Numeric(14, 4), nullable=True)
    total_value: Mapped[Decimal | None] = mapped_column(sa.Numeric(18, 4), nullable=True)

    transaction_date: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    actor_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)

    __table_args__ = (
        sa.CheckConstraint("balance_after = balance_before + quantity", name="ck_stock_movements_balance_math"),
        sa.Index("ix_stock_movements_product_date", "product_id", "transaction_date"),
        sa.Index("ix_stock_movements_product_location", "product_id", "location_id"),
        sa.Index("ix_stock_movements_warehouse_date", "warehouse_id", "transaction_date"),
        sa.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        sa.Index("ix_stock_movements_type_date", "transaction_type", "transaction_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.transaction_type} product={self.product_id} "
            f"loc={self.location_id} qty={self.quantity} "
            f"{self.balance_before}->{self.balance_after} ref={self.reference_number}>"
        )

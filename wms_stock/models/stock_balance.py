# wms_stock/models/stock_balance.py
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from wms_stock.db.base import Base
from wms_stock.utils.time import utc_now


class StockBalance(Base):
    """
    余额（物化视图）：(product_id, location_id) → quantity / reserved

    - quantity 只能由台账 post 修改；reserved 只能由预留管理修改
    - 首次有库存流入时惰性创建，0 是合法的静止状态，不删除
    """

    __tablename__ = "stock_balances"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    product_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    location_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    reserved: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        sa.UniqueConstraint("product_id", "location_id", name="uq_stock_balances_product_location"),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_balances_quantity_nonneg"),
        sa.CheckConstraint("reserved >= 0", name="ck_stock_balances_reserved_nonneg"),
        sa.CheckConstraint("reserved <= quantity", name="ck_stock_balances_reserved_le_quantity"),
    )

    @property
    def available(self) -> int:
        return int(self.quantity or 0) - int(self.reserved or 0)

    def __repr__(self) -> str:
        return (
            f"<StockBalance product={self.product_id} loc={self.location_id} "
            f"qty={self.quantity} reserved={self.reserved}>"
        )

# wms_stock/models/product_aggregate.py
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from wms_stock.db.base import Base
from wms_stock.utils.time import utc_now


class ProductAggregate(Base):
    """
    商品级汇总（缓存）：total_on_hand = Σ balance.quantity，total_reserved = Σ balance.reserved

    热路径增量维护；可随时由 recompute_aggregate 从 stock_balances 重算自愈。
    """

    __tablename__ = "product_aggregates"

    product_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("products.id", ondelete="RESTRICT"), primary_key=True
    )
    total_on_hand: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_reserved: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    @property
    def total_available(self) -> int:
        return int(self.total_on_hand or 0) - int(self.total_reserved or 0)

    def __repr__(self) -> str:
        return (
            f"<ProductAggregate product={self.product_id} "
            f"on_hand={self.total_on_hand} reserved={self.total_reserved}>"
        )

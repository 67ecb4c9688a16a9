# wms_stock/models/product.py
from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from wms_stock.db.base import Base


class Product(Base):
    """商品主数据（只读边界：id + sku/name/is_deleted 查询）"""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    sku: Mapped[str] = mapped_column(sa.String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    uom: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="pcs")
    is_deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r}>"

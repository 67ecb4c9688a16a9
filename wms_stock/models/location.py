# wms_stock/models/location.py
from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from wms_stock.db.base import Base


class Location(Base):
    """库位：归属于某个仓库；(warehouse_id, code) 唯一"""

    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer,
        sa.ForeignKey("warehouses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)

    __table_args__ = (sa.UniqueConstraint("warehouse_id", "code", name="uq_locations_wh_code"),)

    def __repr__(self) -> str:
        return f"<Location id={self.id} wh={self.warehouse_id} code={self.code!r}>"

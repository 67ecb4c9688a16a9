# wms_stock/models/delivery_order.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wms_stock.db.base import Base
from wms_stock.models.document_base import DocumentEventMixin, DocumentLineMixin, DocumentMixin
from wms_stock.utils.time import utc_now


class DeliveryOrder(DocumentMixin, Base):
    """
    出库单：draft → waiting → picking → packed → ready → done / canceled

    - reserve：按行预留 ordered_qty（库位指定或自动分配）
    - validate：ready 且 total_packed_qty > 0；先消耗本单预留，再按行 -packed_qty
    """

    __tablename__ = "delivery_orders"

    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    customer_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    shipping_address: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)
    scheduled_date: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    # 建单请求的幂等键（稀疏唯一）；与终态动作的 idempotency_key 互不干扰
    create_key: Mapped[str | None] = mapped_column(sa.String(128), nullable=True, unique=True)

    # 最近一次预留（release / 消耗后保留引用，便于追溯）
    reservation_id: Mapped[int | None] = mapped_column(
        sa.Integer, sa.ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True
    )

    total_ordered_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_reserved_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_picked_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_packed_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_shipped_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    lines: Mapped[List["DeliveryOrderLine"]] = relationship(
        "DeliveryOrderLine",
        back_populates="delivery_order",
        cascade="all, delete-orphan",
        order_by="DeliveryOrderLine.line_no",
        lazy="selectin",
    )
    packages: Mapped[List["DeliveryPackage"]] = relationship(
        "DeliveryPackage",
        back_populates="delivery_order",
        cascade="all, delete-orphan",
        order_by="DeliveryPackage.id",
        lazy="selectin",
    )
    events: Mapped[List["DeliveryOrderEvent"]] = relationship(
        "DeliveryOrderEvent",
        back_populates="delivery_order",
        cascade="all, delete-orphan",
        order_by="DeliveryOrderEvent.id",
        lazy="selectin",
    )

    __table_args__ = (sa.Index("ix_delivery_orders_status_created", "status", "created_at"),)

    def recompute_totals(self) -> None:
        lines = list(self.lines)
        self.total_ordered_qty = sum(int(ln.ordered_qty or 0) for ln in lines)
        self.total_reserved_qty = sum(int(ln.reserved_qty or 0) for ln in lines)
        self.total_picked_qty = sum(int(ln.picked_qty or 0) for ln in lines)
        self.total_packed_qty = sum(int(ln.packed_qty or 0) for ln in lines)
        self.total_shipped_qty = sum(int(ln.shipped_qty or 0) for ln in lines)

    def __repr__(self) -> str:
        return f"<DeliveryOrder {self.number} status={self.status}>"


class DeliveryOrderLine(DocumentLineMixin, Base):
    __tablename__ = "delivery_order_lines"

    delivery_order_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("delivery_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # 出库库位；为空时 validate 自动选择单一足量库位
    location_id: Mapped[int | None] = mapped_column(
        sa.Integer, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True
    )
    ordered_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    reserved_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    picked_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    packed_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    shipped_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    unit_price: Mapped[Decimal | None] = mapped_column(sa.Numeric(14, 4), nullable=True)

    delivery_order: Mapped[DeliveryOrder] = relationship("DeliveryOrder", back_populates="lines")


class DeliveryPackage(Base):
    __tablename__ = "delivery_packages"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    delivery_order_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("delivery_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    package_code: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    weight: Mapped[Decimal | None] = mapped_column(sa.Numeric(10, 3), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(sa.String(128), nullable=True)
    carrier: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    delivery_order: Mapped[DeliveryOrder] = relationship("DeliveryOrder", back_populates="packages")


class DeliveryOrderEvent(DocumentEventMixin, Base):
    __tablename__ = "delivery_order_events"

    delivery_order_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("delivery_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )

    delivery_order: Mapped[DeliveryOrder] = relationship("DeliveryOrder", back_populates="events")

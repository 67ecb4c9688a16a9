# wms_stock/models/reservation.py
from __future__ import annotations

from datetime import datetime
from typing import List

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wms_stock.db.base import Base
from wms_stock.utils.time import utc_now


class Reservation(Base):
    """
    预留（软占用）头表

    status: active → released（显式释放）/ expired（TTL 到期）
    两条出路都把 reserved 恰好归还一次；非 active 的预留再释放为 no-op。
    """

    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    reference_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    reference_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(sa.String(128), nullable=True, unique=True)

    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="active")
    expires_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    released_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    release_reason: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)

    created_by: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    lines: Mapped[List["ReservationLine"]] = relationship(
        "ReservationLine",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationLine.line_no",
        lazy="selectin",
    )

    __table_args__ = (
        sa.Index("ix_reservations_reference", "reference_type", "reference_id"),
        sa.Index("ix_reservations_status_expires", "status", "expires_at"),
    )

    @property
    def total_qty(self) -> int:
        return sum(int(ln.qty or 0) for ln in (self.lines or []))

    def __repr__(self) -> str:
        return (
            f"<Reservation id={self.id} ref={self.reference_type}:{self.reference_id} "
            f"status={self.status}>"
        )


class ReservationLine(Base):
    """预留行：已解析到具体库位的占用数量（自动分配可能拆成多行）"""

    __tablename__ = "reservation_lines"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    reservation_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_no: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    product_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    location_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )
    qty: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    reservation: Mapped[Reservation] = relationship("Reservation", back_populates="lines")

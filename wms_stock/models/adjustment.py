# wms_stock/models/adjustment.py
from __future__ import annotations

from decimal import Decimal
from typing import List

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wms_stock.db.base import Base
from wms_stock.models.document_base import DocumentEventMixin, DocumentLineMixin, DocumentMixin


class Adjustment(DocumentMixin, Base):
    """
    库存调整单：draft → applied / canceled

    apply：每行 variance = counted_qty - system_qty，非 0 时记一条带符号台账
    """

    __tablename__ = "adjustments"

    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    reason: Mapped[str] = mapped_column(sa.String(32), nullable=False)

    total_variance: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_positive_variance: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_negative_variance: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    lines: Mapped[List["AdjustmentLine"]] = relationship(
        "AdjustmentLine",
        back_populates="adjustment",
        cascade="all, delete-orphan",
        order_by="AdjustmentLine.line_no",
        lazy="selectin",
    )
    events: Mapped[List["AdjustmentEvent"]] = relationship(
        "AdjustmentEvent",
        back_populates="adjustment",
        cascade="all, delete-orphan",
        order_by="AdjustmentEvent.id",
        lazy="selectin",
    )

    __table_args__ = (sa.Index("ix_adjustments_status_created", "status", "created_at"),)

    def recompute_totals(self) -> None:
        total = pos = neg = 0
        for ln in self.lines:
            ln.variance = int(ln.counted_qty or 0) - int(ln.system_qty or 0)
            total += ln.variance
            if ln.variance > 0:
                pos += ln.variance
            elif ln.variance < 0:
                neg += ln.variance
        self.total_variance = total
        self.total_positive_variance = pos
        self.total_negative_variance = neg

    def __repr__(self) -> str:
        return f"<Adjustment {self.number} status={self.status} reason={self.reason}>"


class AdjustmentLine(DocumentLineMixin, Base):
    __tablename__ = "adjustment_lines"

    adjustment_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("adjustments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    location_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    system_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    counted_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    variance: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    unit_price: Mapped[Decimal | None] = mapped_column(sa.Numeric(14, 4), nullable=True)
    notes: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)

    adjustment: Mapped[Adjustment] = relationship("Adjustment", back_populates="lines")


class AdjustmentEvent(DocumentEventMixin, Base):
    __tablename__ = "adjustment_events"

    adjustment_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("adjustments.id", ondelete="CASCADE"), nullable=False, index=True
    )

    adjustment: Mapped[Adjustment] = relationship("Adjustment", back_populates="events")

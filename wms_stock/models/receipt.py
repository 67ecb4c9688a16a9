# wms_stock/models/receipt.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wms_stock.db.base import Base
from wms_stock.models.document_base import DocumentEventMixin, DocumentLineMixin, DocumentMixin


class Receipt(DocumentMixin, Base):
    """
    收货单：draft → waiting → ready → done / canceled

    - validate：ready 且 total_received_qty > 0，按行在收货库位 +received_qty
    - done 后只允许管理员取消（冲正）
    """

    __tablename__ = "receipts"

    warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    # 指定收货库位；为空时 validate 自动解析
    location_id: Mapped[int | None] = mapped_column(
        sa.Integer, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True
    )
    supplier_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    external_reference: Mapped[str | None] = mapped_column(sa.String(128), nullable=True)
    expected_date: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    total_expected_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_received_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    lines: Mapped[List["ReceiptLine"]] = relationship(
        "ReceiptLine",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="ReceiptLine.line_no",
        lazy="selectin",
    )
    events: Mapped[List["ReceiptEvent"]] = relationship(
        "ReceiptEvent",
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="ReceiptEvent.id",
        lazy="selectin",
    )

    __table_args__ = (sa.Index("ix_receipts_status_created", "status", "created_at"),)

    def recompute_totals(self) -> None:
        self.total_expected_qty = sum(int(ln.expected_qty or 0) for ln in self.lines)
        self.total_received_qty = sum(int(ln.received_qty or 0) for ln in self.lines)

    def __repr__(self) -> str:
        return f"<Receipt {self.number} status={self.status}>"


class ReceiptLine(DocumentLineMixin, Base):
    __tablename__ = "receipt_lines"

    receipt_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expected_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    received_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    unit_price: Mapped[Decimal | None] = mapped_column(sa.Numeric(14, 4), nullable=True)
    notes: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)

    receipt: Mapped[Receipt] = relationship("Receipt", back_populates="lines")


class ReceiptEvent(DocumentEventMixin, Base):
    __tablename__ = "receipt_events"

    receipt_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    receipt: Mapped[Receipt] = relationship("Receipt", back_populates="events")

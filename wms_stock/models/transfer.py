# wms_stock/models/transfer.py
from __future__ import annotations

from datetime import datetime
from typing import List

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wms_stock.db.base import Base
from wms_stock.models.document_base import DocumentEventMixin, DocumentLineMixin, DocumentMixin


class Transfer(DocumentMixin, Base):
    """
    调拨单：draft → pending → in_transit → completed / canceled

    execute：每行两条台账（from 库位 transfer_out -qty，to 库位 transfer_in +qty）
    """

    __tablename__ = "transfers"

    from_location_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    to_location_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    from_warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    to_warehouse_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    scheduled_date: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    total_requested_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_transferred_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    lines: Mapped[List["TransferLine"]] = relationship(
        "TransferLine",
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="TransferLine.line_no",
        lazy="selectin",
    )
    events: Mapped[List["TransferEvent"]] = relationship(
        "TransferEvent",
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="TransferEvent.id",
        lazy="selectin",
    )

    __table_args__ = (
        sa.CheckConstraint("from_location_id <> to_location_id", name="ck_transfers_distinct_locations"),
        sa.Index("ix_transfers_status_created", "status", "created_at"),
    )

    def recompute_totals(self) -> None:
        self.total_requested_qty = sum(int(ln.requested_qty or 0) for ln in self.lines)
        self.total_transferred_qty = sum(int(ln.transferred_qty or 0) for ln in self.lines)

    def __repr__(self) -> str:
        return f"<Transfer {self.number} status={self.status}>"


class TransferLine(DocumentLineMixin, Base):
    __tablename__ = "transfer_lines"

    transfer_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requested_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    transferred_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    transfer: Mapped[Transfer] = relationship("Transfer", back_populates="lines")


class TransferEvent(DocumentEventMixin, Base):
    __tablename__ = "transfer_events"

    transfer_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False, index=True
    )

    transfer: Mapped[Transfer] = relationship("Transfer", back_populates="events")

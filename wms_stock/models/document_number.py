# wms_stock/models/document_number.py
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from wms_stock.db.base import Base
from wms_stock.utils.time import utc_now


class DocumentNumber(Base):
    """
    单号登记表：所有单据号先在此“抢占”（主键唯一），再写入单据表。

    并发下两条事务算出同一个号时，后者在主键上冲突，回滚 SAVEPOINT 后重算。
    """

    __tablename__ = "document_numbers"

    number: Mapped[str] = mapped_column(sa.String(32), primary_key=True)
    prefix: Mapped[str] = mapped_column(sa.String(8), nullable=False)
    period: Mapped[str] = mapped_column(sa.String(6), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (sa.Index("ix_document_numbers_prefix_period", "prefix", "period"),)

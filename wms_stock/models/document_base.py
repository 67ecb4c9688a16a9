# wms_stock/models/document_base.py
"""
四类单据（收货 / 出库 / 调拨 / 调整）共享的表结构片段：

- DocumentMixin：单号 / 状态 / 幂等键 / 软删 / 操作人与时间戳
- DocumentLineMixin：行号 + 商品引用
- DocumentEventMixin：只增不改的事件流（前后状态、操作人、备注）
"""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from wms_stock.utils.time import utc_now


class DocumentMixin:
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)

    # PREFIX-YYYYMM-00001，首次持久化时分配，之后不再改变
    number: Mapped[str] = mapped_column(sa.String(32), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="draft")

    # 终态动作的幂等键（稀疏唯一）
    idempotency_key: Mapped[str | None] = mapped_column(sa.String(128), nullable=True, unique=True)

    is_deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(sa.String(1000), nullable=True)

    created_by: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

    completed_by: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    canceled_by: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)

    def recompute_totals(self) -> None:
        """由行重算汇总字段；每次持久化前调用"""
        raise NotImplementedError


class DocumentLineMixin:
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    line_no: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    @declared_attr
    def product_id(cls) -> Mapped[int]:
        return mapped_column(
            sa.Integer, sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
        )

    sku: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)


class DocumentEventMixin:
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    from_status: Mapped[str | None] = mapped_column(sa.String(16), nullable=True)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    actor_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utc_now
    )

# wms_stock/schemas/adjustment.py
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from wms_stock.models.enums import AdjustmentReason
from wms_stock.schemas.common import DocumentHeaderOut, EventOut, OrmOut


class AdjustmentLineIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: int
    sku: Optional[str] = None
    location_id: int
    # 为空时取当前余额
    system_qty: Optional[int] = Field(default=None, ge=0)
    counted_qty: int = Field(ge=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class AdjustmentCreateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    warehouse_id: int
    reason: AdjustmentReason
    notes: Optional[str] = None
    lines: List[AdjustmentLineIn] = Field(min_length=1)


class AdjustmentUpdateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reason: Optional[AdjustmentReason] = None
    notes: Optional[str] = None
    lines: Optional[List[AdjustmentLineIn]] = Field(default=None, min_length=1)


class AdjustmentLineOut(OrmOut):
    id: int
    line_no: int
    product_id: int
    sku: Optional[str] = None
    location_id: int
    system_qty: int
    counted_qty: int
    variance: int
    unit_price: Optional[Decimal] = None
    notes: Optional[str] = None


class AdjustmentOut(DocumentHeaderOut):
    warehouse_id: int
    reason: str

    total_variance: int
    total_positive_variance: int
    total_negative_variance: int

    lines: List[AdjustmentLineOut] = Field(default_factory=list)
    events: List[EventOut] = Field(default_factory=list)


class AdjustmentListOut(BaseModel):
    items: List[AdjustmentOut]
    total: int


class AdjustmentActionOut(BaseModel):
    adjustment: AdjustmentOut
    already_applied: bool = False
    ledger_entries: int = 0

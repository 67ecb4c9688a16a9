# wms_stock/schemas/receipt.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from wms_stock.schemas.common import DocumentHeaderOut, EventOut, OrmOut


class ReceiptLineIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: int
    sku: Optional[str] = None
    expected_qty: int = Field(ge=0)
    received_qty: int = Field(default=0, ge=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class ReceiptCreateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    warehouse_id: int
    location_id: Optional[int] = None
    supplier_name: Optional[str] = None
    external_reference: Optional[str] = None
    expected_date: Optional[datetime] = None
    notes: Optional[str] = None
    lines: List[ReceiptLineIn] = Field(min_length=1)


class ReceiptUpdateIn(BaseModel):
    """只允许 draft / waiting；lines 给出时整体替换"""

    model_config = ConfigDict(extra="ignore")

    location_id: Optional[int] = None
    supplier_name: Optional[str] = None
    external_reference: Optional[str] = None
    expected_date: Optional[datetime] = None
    notes: Optional[str] = None
    lines: Optional[List[ReceiptLineIn]] = Field(default=None, min_length=1)


class ReceivedQtyLineIn(BaseModel):
    line_no: int
    received_qty: int = Field(ge=0)


class ReceivedQtyIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lines: List[ReceivedQtyLineIn] = Field(min_length=1)
    note: Optional[str] = None


class ReceiptLineOut(OrmOut):
    id: int
    line_no: int
    product_id: int
    sku: Optional[str] = None
    expected_qty: int
    received_qty: int
    unit_price: Optional[Decimal] = None
    notes: Optional[str] = None


class ReceiptOut(DocumentHeaderOut):
    warehouse_id: int
    location_id: Optional[int] = None
    supplier_name: Optional[str] = None
    external_reference: Optional[str] = None
    expected_date: Optional[datetime] = None

    total_expected_qty: int
    total_received_qty: int

    lines: List[ReceiptLineOut] = Field(default_factory=list)
    events: List[EventOut] = Field(default_factory=list)


class ReceiptListOut(BaseModel):
    items: List[ReceiptOut]
    total: int


class ReceiptActionOut(BaseModel):
    receipt: ReceiptOut
    already_applied: bool = False
    ledger_entries: int = 0

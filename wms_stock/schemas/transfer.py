# wms_stock/schemas/transfer.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from wms_stock.schemas.common import DocumentHeaderOut, EventOut, OrmOut


class TransferLineIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: int
    sku: Optional[str] = None
    requested_qty: int = Field(gt=0)


class TransferCreateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    from_location_id: int
    to_location_id: int
    scheduled_date: Optional[datetime] = None
    notes: Optional[str] = None
    lines: List[TransferLineIn] = Field(min_length=1)

    @model_validator(mode="after")
    def _distinct_locations(self) -> "TransferCreateIn":
        if self.from_location_id == self.to_location_id:
            raise ValueError("from_location_id and to_location_id must differ")
        return self


class TransferUpdateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    scheduled_date: Optional[datetime] = None
    notes: Optional[str] = None
    lines: Optional[List[TransferLineIn]] = Field(default=None, min_length=1)


class TransferLineOut(OrmOut):
    id: int
    line_no: int
    product_id: int
    sku: Optional[str] = None
    requested_qty: int
    transferred_qty: int


class TransferOut(DocumentHeaderOut):
    from_location_id: int
    to_location_id: int
    from_warehouse_id: int
    to_warehouse_id: int
    scheduled_date: Optional[datetime] = None

    total_requested_qty: int
    total_transferred_qty: int

    lines: List[TransferLineOut] = Field(default_factory=list)
    events: List[EventOut] = Field(default_factory=list)


class TransferListOut(BaseModel):
    items: List[TransferOut]
    total: int


class TransferActionOut(BaseModel):
    transfer: TransferOut
    already_applied: bool = False
    ledger_entries: int = 0

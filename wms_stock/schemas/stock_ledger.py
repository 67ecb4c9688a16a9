# wms_stock/schemas/stock_ledger.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from wms_stock.schemas.common import OrmOut


class MovementOut(OrmOut):
    id: int
    product_id: int
    location_id: int
    warehouse_id: int
    transaction_type: str
    reference_type: str
    reference_id: int
    reference_number: Optional[str] = None
    quantity: int
    balance_before: int
    balance_after: int
    unit_price: Optional[Decimal] = None
    total_value: Optional[Decimal] = None
    transaction_date: datetime
    actor_id: Optional[int] = None
    note: Optional[str] = None


class MovementListOut(BaseModel):
    items: List[MovementOut]
    total: int
    limit: int
    offset: int


class TypeSummaryOut(BaseModel):
    transaction_type: str
    count: int
    total_qty: int


class ProductHistoryOut(BaseModel):
    product_id: int
    items: List[MovementOut]
    total: int
    summary: List[TypeSummaryOut]


class RunningBalanceRowOut(MovementOut):
    running_balance: int


class RunningBalanceOut(BaseModel):
    product_id: int
    location_id: Optional[int] = None
    rows: List[RunningBalanceRowOut]

# wms_stock/schemas/delivery_order.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from wms_stock.schemas.common import DocumentHeaderOut, EventOut, OrmOut


class DeliveryOrderLineIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: int
    sku: Optional[str] = None
    location_id: Optional[int] = None
    ordered_qty: int = Field(gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)


class DeliveryOrderCreateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    warehouse_id: int
    customer_name: Optional[str] = None
    shipping_address: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    notes: Optional[str] = None
    lines: List[DeliveryOrderLineIn] = Field(min_length=1)

    # 创建即预留；预留失败不影响建单，只返回 warning
    auto_reserve: bool = False
    # 建单幂等键；auto_reserve 时也作为预留的幂等键
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class DeliveryOrderUpdateIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    customer_name: Optional[str] = None
    shipping_address: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    notes: Optional[str] = None
    lines: Optional[List[DeliveryOrderLineIn]] = Field(default=None, min_length=1)


class DeliveryReserveIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ttl_minutes: Optional[int] = Field(default=None, gt=0)
    idempotency_key: Optional[str] = Field(default=None, max_length=128)


class PickLineIn(BaseModel):
    line_no: int
    qty: int = Field(gt=0)
    location_id: Optional[int] = None


class PickIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lines: List[PickLineIn] = Field(min_length=1)
    note: Optional[str] = None


class PackLineIn(BaseModel):
    line_no: int
    qty: int = Field(gt=0)


class PackageIn(BaseModel):
    package_code: str = Field(min_length=1, max_length=64)
    weight: Optional[Decimal] = Field(default=None, ge=0)
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


class PackIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lines: List[PackLineIn] = Field(min_length=1)
    packages: List[PackageIn] = Field(default_factory=list)
    note: Optional[str] = None


class DeliveryOrderLineOut(OrmOut):
    id: int
    line_no: int
    product_id: int
    sku: Optional[str] = None
    location_id: Optional[int] = None
    ordered_qty: int
    reserved_qty: int
    picked_qty: int
    packed_qty: int
    shipped_qty: int
    unit_price: Optional[Decimal] = None


class DeliveryPackageOut(OrmOut):
    id: int
    package_code: str
    weight: Optional[Decimal] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    created_at: datetime


class DeliveryOrderOut(DocumentHeaderOut):
    warehouse_id: int
    customer_name: Optional[str] = None
    shipping_address: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    reservation_id: Optional[int] = None

    total_ordered_qty: int
    total_reserved_qty: int
    total_picked_qty: int
    total_packed_qty: int
    total_shipped_qty: int

    lines: List[DeliveryOrderLineOut] = Field(default_factory=list)
    packages: List[DeliveryPackageOut] = Field(default_factory=list)
    events: List[EventOut] = Field(default_factory=list)


class DeliveryOrderListOut(BaseModel):
    items: List[DeliveryOrderOut]
    total: int


class DeliveryOrderActionOut(BaseModel):
    delivery_order: DeliveryOrderOut
    already_applied: bool = False
    ledger_entries: int = 0
    warnings: List[Dict[str, Any]] = Field(default_factory=list)

# wms_stock/schemas/stock.py
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from wms_stock.schemas.common import OrmOut


class BalanceOut(OrmOut):
    product_id: int
    location_id: int
    warehouse_id: int
    location_code: Optional[str] = None
    quantity: int
    reserved: int
    available: int


class StockRowOut(BaseModel):
    product_id: int
    sku: str
    product_name: str
    warehouse_id: int
    warehouse_code: Optional[str] = None
    location_id: int
    location_code: Optional[str] = None
    quantity: int
    reserved: int
    available: int


class StockListOut(BaseModel):
    items: List[StockRowOut]
    total: int
    limit: int
    offset: int


class AggregateOut(OrmOut):
    product_id: int
    total_on_hand: int
    total_reserved: int
    total_available: int


class ProductStockOut(BaseModel):
    product_id: int
    sku: str
    name: str
    aggregate: AggregateOut
    locations: List[BalanceOut]


class WarehouseAvailabilityOut(BaseModel):
    warehouse_id: int
    warehouse_code: Optional[str] = None
    quantity: int
    reserved: int
    available: int


class FulfillmentOut(BaseModel):
    warehouse_id: int
    qty: int


class AvailabilityOut(BaseModel):
    product_id: int
    requested_qty: int
    total_available: int
    is_available: bool
    shortfall: int
    warehouses: List[WarehouseAvailabilityOut]
    fulfillment: List[FulfillmentOut]


class BalanceDriftOut(BaseModel):
    product_id: int
    location_id: int
    balance_quantity: int
    ledger_quantity: int


class AggregateDriftOut(BaseModel):
    product_id: int
    aggregate_on_hand: int
    balance_on_hand: int
    aggregate_reserved: int
    balance_reserved: int


class ConsistencyOut(BaseModel):
    ok: bool
    balance_mismatches: List[BalanceDriftOut]
    aggregate_mismatches: List[AggregateDriftOut]

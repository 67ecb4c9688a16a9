# wms_stock/api/routers/stock.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.api.deps import Actor, get_actor, write_tx
from wms_stock.db.session import get_session
from wms_stock.schemas.stock import (
    AggregateOut,
    AvailabilityOut,
    ConsistencyOut,
    ProductStockOut,
    StockListOut,
    StockRowOut,
)
from wms_stock.services.master_data import MasterDataService
from wms_stock.services.stock_balance_service import StockBalanceService
from wms_stock.services.stock_consistency import verify_consistency
from wms_stock.services.stock_query_service import check_availability, get_stock_by_product, list_stock

router = APIRouter(prefix="/stock", tags=["stock"])


# 注意：固定路径必须声明在 /{product_id} 之前


@router.get("", response_model=StockListOut)
async def stock_list(
    product_id: Optional[int] = Query(None),
    sku: Optional[str] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None),
    available_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> StockListOut:
    """跨仓 / 库位余额列表；location_id 优先于 warehouse_id"""
    items, total = await list_stock(
        session,
        product_id=product_id,
        sku=sku,
        warehouse_id=warehouse_id,
        location_id=location_id,
        available_only=available_only,
        limit=limit,
        offset=offset,
    )
    return StockListOut(items=[StockRowOut(**x) for x in items], total=total, limit=limit, offset=offset)


@router.get("/availability", response_model=AvailabilityOut)
async def availability(
    product_id: int = Query(...),
    qty: int = Query(..., gt=0),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityOut:
    return AvailabilityOut(**await check_availability(session, product_id, qty))


@router.get("/consistency", response_model=ConsistencyOut)
async def consistency(
    product_id: Optional[int] = Query(None),
    session: AsyncSession = Depends(get_session),
) -> ConsistencyOut:
    return ConsistencyOut(**await verify_consistency(session, product_id))


@router.get("/{product_id}", response_model=ProductStockOut)
async def product_stock(product_id: int, session: AsyncSession = Depends(get_session)) -> ProductStockOut:
    return ProductStockOut(**await get_stock_by_product(session, product_id))


@router.post("/{product_id}/recompute", response_model=AggregateOut)
async def recompute_aggregate(
    product_id: int,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> AggregateOut:
    """以余额表为准重算商品汇总"""
    async with write_tx(session):
        await MasterDataService.require_product(session, product_id)
        agg = await StockBalanceService.recompute_aggregate(session, product_id)
    return AggregateOut.model_validate(agg)

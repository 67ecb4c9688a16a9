# wms_stock/services/stock_query_service.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.models.location import Location
from wms_stock.models.product import Product
from wms_stock.models.product_aggregate import ProductAggregate
from wms_stock.models.stock_balance import StockBalance
from wms_stock.models.warehouse import Warehouse
from wms_stock.services.master_data import MasterDataService
from wms_stock.services.stock_errors import ValidationFailed


async def get_stock_by_product(session: AsyncSession, product_id: int) -> Dict[str, Any]:
    """逐库位余额 + 商品汇总（只读，不加锁）"""
    product = await MasterDataService.require_product(session, product_id)

    rows = (
        await session.execute(
            select(StockBalance, Location.code)
            .join(Location, Location.id == StockBalance.location_id)
            .where(StockBalance.product_id == product.id)
            .order_by(StockBalance.warehouse_id.asc(), StockBalance.location_id.asc())
        )
    ).all()

    agg = await session.get(ProductAggregate, product.id)
    on_hand = int(agg.total_on_hand) if agg is not None else 0
    reserved = int(agg.total_reserved) if agg is not None else 0

    return {
        "product_id": product.id,
        "sku": product.sku,
        "name": product.name,
        "aggregate": {
            "product_id": product.id,
            "total_on_hand": on_hand,
            "total_reserved": reserved,
            "total_available": on_hand - reserved,
        },
        "locations": [
            {
                "product_id": bal.product_id,
                "location_id": bal.location_id,
                "warehouse_id": bal.warehouse_id,
                "location_code": code,
                "quantity": int(bal.quantity),
                "reserved": int(bal.reserved),
                "available": bal.available,
            }
            for bal, code in rows
        ],
    }


async def check_availability(session: AsyncSession, product_id: int, qty: int) -> Dict[str, Any]:
    """
    可用量检查：

    - 按仓汇总 available，降序；
    - 贪心给出履约建议（大仓先出），不足部分记为 shortfall。
    """
    if int(qty) <= 0:
        raise ValidationFailed("qty must be positive", context={"qty": qty})
    product = await MasterDataService.require_product(session, product_id)

    rows = (
        await session.execute(
            select(
                StockBalance.warehouse_id,
                Warehouse.code,
                func.coalesce(func.sum(StockBalance.quantity), 0),
                func.coalesce(func.sum(StockBalance.reserved), 0),
            )
            .join(Warehouse, Warehouse.id == StockBalance.warehouse_id)
            .join(Location, Location.id == StockBalance.location_id)
            .where(StockBalance.product_id == product.id)
            .where(Location.is_deleted.is_(False))
            .where(Warehouse.is_deleted.is_(False))
            .group_by(StockBalance.warehouse_id, Warehouse.code)
        )
    ).all()

    warehouses: List[Dict[str, Any]] = [
        {
            "warehouse_id": int(wid),
            "warehouse_code": code,
            "quantity": int(q),
            "reserved": int(r),
            "available": int(q) - int(r),
        }
        for wid, code, q, r in rows
    ]
    warehouses.sort(key=lambda w: (-w["available"], w["warehouse_id"]))

    total_available = sum(max(w["available"], 0) for w in warehouses)

    remaining = int(qty)
    fulfillment: List[Dict[str, int]] = []
    for w in warehouses:
        if remaining <= 0:
            break
        take = min(w["available"], remaining)
        if take <= 0:
            continue
        fulfillment.append({"warehouse_id": w["warehouse_id"], "qty": take})
        remaining -= take

    return {
        "product_id": product.id,
        "requested_qty": int(qty),
        "total_available": total_available,
        "is_available": total_available >= int(qty),
        "shortfall": max(remaining, 0),
        "warehouses": warehouses,
        "fulfillment": fulfillment,
    }


async def list_stock(
    session: AsyncSession,
    *,
    product_id: Optional[int] = None,
    sku: Optional[str] = None,
    warehouse_id: Optional[int] = None,
    location_id: Optional[int] = None,
    available_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    跨仓 / 库位的余额列表（分页）：

    - sku 大小写不敏感，找不到商品直接返回空列表；
    - location_id 优先；只给 warehouse_id 时取该仓未删除的库位；
    - available_only：只返回 quantity > reserved 的行。
    """
    conds = []
    if product_id is not None:
        conds.append(StockBalance.product_id == product_id)
    if sku:
        pid = (
            await session.execute(select(Product.id).where(Product.sku == sku.strip().upper()))
        ).scalar_one_or_none()
        if pid is None:
            return [], 0
        conds.append(StockBalance.product_id == pid)
    if location_id is not None:
        conds.append(StockBalance.location_id == location_id)
    elif warehouse_id is not None:
        conds.append(StockBalance.warehouse_id == warehouse_id)
        conds.append(Location.is_deleted.is_(False))
    if available_only:
        conds.append(StockBalance.quantity > StockBalance.reserved)

    base = (
        select(StockBalance, Product.sku, Product.name, Location.code, Warehouse.code)
        .join(Product, Product.id == StockBalance.product_id)
        .join(Location, Location.id == StockBalance.location_id)
        .join(Warehouse, Warehouse.id == StockBalance.warehouse_id)
        .where(*conds)
    )
    count_stmt = (
        select(func.count(StockBalance.id))
        .join(Location, Location.id == StockBalance.location_id)
        .where(*conds)
    )
    total = int((await session.execute(count_stmt)).scalar_one())
    rows = (
        await session.execute(
            base.order_by(StockBalance.product_id.asc(), StockBalance.location_id.asc())
            .limit(limit)
            .offset(offset)
        )
    ).all()

    items = [
        {
            "product_id": bal.product_id,
            "sku": p_sku,
            "product_name": p_name,
            "warehouse_id": bal.warehouse_id,
            "warehouse_code": wh_code,
            "location_id": bal.location_id,
            "location_code": loc_code,
            "quantity": int(bal.quantity),
            "reserved": int(bal.reserved),
            "available": bal.available,
        }
        for bal, p_sku, p_name, loc_code, wh_code in rows
    ]
    return items, total

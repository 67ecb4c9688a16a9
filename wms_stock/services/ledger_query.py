# wms_stock/services/ledger_query.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.models.location import Location
from wms_stock.models.product import Product
from wms_stock.models.stock_movement import StockMovement
from wms_stock.models.warehouse import Warehouse


def _conditions(
    *,
    product_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    location_id: Optional[int] = None,
    transaction_type: Optional[str] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> list:
    conds = []
    if product_id is not None:
        conds.append(StockMovement.product_id == int(product_id))
    if warehouse_id is not None:
        conds.append(StockMovement.warehouse_id == int(warehouse_id))
    if location_id is not None:
        conds.append(StockMovement.location_id == int(location_id))
    if transaction_type:
        conds.append(StockMovement.transaction_type == transaction_type)
    if reference_type:
        conds.append(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        conds.append(StockMovement.reference_id == int(reference_id))
    if date_from is not None:
        conds.append(StockMovement.transaction_date >= date_from)
    if date_to is not None:
        conds.append(StockMovement.transaction_date <= date_to)
    return conds


async def list_movements(
    session: AsyncSession,
    *,
    limit: int = 50,
    offset: int = 0,
    **filters: Any,
) -> Tuple[List[StockMovement], int]:
    """台账查询：按 transaction_date 倒序分页"""
    conds = _conditions(**filters)
    total = (
        await session.execute(select(func.count()).select_from(StockMovement).where(*conds))
    ).scalar_one()
    stmt = (
        select(StockMovement)
        .where(*conds)
        .order_by(StockMovement.transaction_date.desc(), StockMovement.id.desc())
        .limit(limit)
        .offset(offset)
    )
    rows = list((await session.execute(stmt)).scalars().all())
    return rows, int(total)


async def product_history(
    session: AsyncSession,
    product_id: int,
    *,
    limit: int = 50,
    offset: int = 0,
    **filters: Any,
) -> Dict[str, Any]:
    """单品台账 + 按 transaction_type 汇总 {count, total_qty}"""
    items, total = await list_movements(session, product_id=product_id, limit=limit, offset=offset, **filters)

    conds = _conditions(product_id=product_id, **filters)
    summary_rows = (
        await session.execute(
            select(
                StockMovement.transaction_type,
                func.count(StockMovement.id),
                func.coalesce(func.sum(StockMovement.quantity), 0),
            )
            .where(*conds)
            .group_by(StockMovement.transaction_type)
            .order_by(StockMovement.transaction_type.asc())
        )
    ).all()

    return {
        "product_id": int(product_id),
        "items": items,
        "total": total,
        "summary": [
            {"transaction_type": t, "count": int(c), "total_qty": int(q)} for t, c, q in summary_rows
        ],
    }


async def running_balance(
    session: AsyncSession,
    product_id: int,
    *,
    location_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """按时间正序重放台账，附带累计 running_balance"""
    conds = _conditions(product_id=product_id, location_id=location_id, date_from=date_from, date_to=date_to)
    stmt = (
        select(StockMovement)
        .where(*conds)
        .order_by(StockMovement.transaction_date.asc(), StockMovement.id.asc())
    )

    opening = 0
    if date_from is not None:
        opening_q = select(func.coalesce(func.sum(StockMovement.quantity), 0)).where(
            *_conditions(product_id=product_id, location_id=location_id),
            StockMovement.transaction_date < date_from,
        )
        opening = int((await session.execute(opening_q)).scalar_one())

    rows: List[Dict[str, Any]] = []
    running = opening
    for mv in (await session.execute(stmt)).scalars().all():
        running += int(mv.quantity)
        rows.append({"movement": mv, "running_balance": running})
    return rows


EXPORT_LIMIT = 10_000


async def export_movements(session: AsyncSession, **filters: Any) -> List[Tuple[StockMovement, str, str, str, str]]:
    """导出用：过滤同 list_movements，按时间倒序，最多 EXPORT_LIMIT 行；附带 sku / 品名 / 仓 / 库位编码"""
    stmt = (
        select(StockMovement, Product.sku, Product.name, Warehouse.code, Location.code)
        .join(Product, Product.id == StockMovement.product_id)
        .join(Warehouse, Warehouse.id == StockMovement.warehouse_id)
        .join(Location, Location.id == StockMovement.location_id)
        .where(*_conditions(**filters))
        .order_by(StockMovement.transaction_date.desc(), StockMovement.id.desc())
        .limit(EXPORT_LIMIT)
    )
    return [tuple(r) for r in (await session.execute(stmt)).all()]

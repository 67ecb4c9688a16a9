# wms_stock/api/routers/ledger.py
from __future__ import annotations

import csv
from datetime import datetime
from io import StringIO
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.db.session import get_session
from wms_stock.schemas.stock_ledger import (
    MovementListOut,
    MovementOut,
    ProductHistoryOut,
    RunningBalanceOut,
    RunningBalanceRowOut,
)
from wms_stock.services import ledger_query
from wms_stock.services.master_data import MasterDataService
from wms_stock.utils.time import as_utc, utc_now

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get("", response_model=MovementListOut)
async def list_ledger(
    product_id: Optional[int] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None),
    transaction_type: Optional[str] = Query(None),
    reference_type: Optional[str] = Query(None),
    reference_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> MovementListOut:
    rows, total = await ledger_query.list_movements(
        session,
        limit=limit,
        offset=offset,
        product_id=product_id,
        warehouse_id=warehouse_id,
        location_id=location_id,
        transaction_type=transaction_type,
        reference_type=reference_type,
        reference_id=reference_id,
        date_from=date_from,
        date_to=date_to,
    )
    return MovementListOut(
        items=[MovementOut.model_validate(x) for x in rows], total=total, limit=limit, offset=offset
    )


EXPORT_COLUMNS = [
    "transaction_date",
    "sku",
    "product_name",
    "warehouse",
    "location",
    "transaction_type",
    "reference_type",
    "reference_number",
    "quantity",
    "balance_before",
    "balance_after",
    "unit_price",
    "total_value",
    "actor_id",
    "note",
]


def build_export_csv(rows) -> tuple[StringIO, str]:
    buf = StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for m, sku, name, wh_code, loc_code in rows:
        writer.writerow(
            [
                as_utc(m.transaction_date).isoformat(),
                sku,
                name,
                wh_code,
                loc_code,
                m.transaction_type,
                m.reference_type,
                m.reference_number or "",
                m.quantity,
                m.balance_before,
                m.balance_after,
                "" if m.unit_price is None else m.unit_price,
                "" if m.total_value is None else m.total_value,
                "" if m.actor_id is None else m.actor_id,
                m.note or "",
            ]
        )

    buf.seek(0)
    filename = f"stock_ledger_{utc_now().strftime('%Y%m%d_%H%M%S')}.csv"
    return buf, filename


@router.get("/export")
async def export_ledger(
    product_id: Optional[int] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    location_id: Optional[int] = Query(None),
    transaction_type: Optional[str] = Query(None),
    reference_type: Optional[str] = Query(None),
    reference_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    session: AsyncSession = Depends(get_session),
):
    """
    导出台账 CSV：

    - 过滤条件与 GET /ledger 一致；
    - 按 transaction_date 倒序，最多 ledger_query.EXPORT_LIMIT 行。
    """
    rows = await ledger_query.export_movements(
        session,
        product_id=product_id,
        warehouse_id=warehouse_id,
        location_id=location_id,
        transaction_type=transaction_type,
        reference_type=reference_type,
        reference_id=reference_id,
        date_from=date_from,
        date_to=date_to,
    )
    buf, filename = build_export_csv(rows)
    return StreamingResponse(
        buf,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/products/{product_id}", response_model=ProductHistoryOut)
async def product_history(
    product_id: int,
    warehouse_id: Optional[int] = Query(None),
    transaction_type: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> ProductHistoryOut:
    await MasterDataService.require_product(session, product_id)
    data = await ledger_query.product_history(
        session,
        product_id,
        limit=limit,
        offset=offset,
        warehouse_id=warehouse_id,
        transaction_type=transaction_type,
        date_from=date_from,
        date_to=date_to,
    )
    data["items"] = [MovementOut.model_validate(x) for x in data["items"]]
    return ProductHistoryOut(**data)


@router.get("/products/{product_id}/running-balance", response_model=RunningBalanceOut)
async def product_running_balance(
    product_id: int,
    location_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    session: AsyncSession = Depends(get_session),
) -> RunningBalanceOut:
    await MasterDataService.require_product(session, product_id)
    rows = await ledger_query.running_balance(
        session, product_id, location_id=location_id, date_from=date_from, date_to=date_to
    )
    return RunningBalanceOut(
        product_id=product_id,
        location_id=location_id,
        rows=[
            RunningBalanceRowOut(
                **MovementOut.model_validate(r["movement"]).model_dump(),
                running_balance=r["running_balance"],
            )
            for r in rows
        ],
    )

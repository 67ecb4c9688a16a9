# wms_stock/services/ledger_writer.py
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.metrics import LEDGER_POSTINGS
from wms_stock.models.enums import ReferenceType, TransactionType
from wms_stock.models.stock_movement import StockMovement
from wms_stock.services.stock_balance_service import StockBalanceService
from wms_stock.services.stock_errors import ValidationFailed
from wms_stock.utils.time import utc_now

logger = logging.getLogger(__name__)


async def post(
    session: AsyncSession,
    *,
    product_id: int,
    location_id: int,
    transaction_type: TransactionType | str,
    reference_type: ReferenceType | str,
    reference_id: int,
    reference_number: Optional[str],
    quantity: int,
    unit_price: Optional[Decimal] = None,
    actor_id: Optional[int] = None,
    note: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> StockMovement:
    """
    台账唯一写入口：

    1) 锁定 (product, location) 余额行，记录 balance_before；
    2) StockBalanceService.adjust_quantity（连带 ProductAggregate）；
    3) 写入 StockMovement（balance_after = balance_before + quantity）。

    事务由调用方控制；本函数只 flush。
    """
    qty = int(quantity)
    if qty == 0:
        raise ValidationFailed("ledger quantity must be non-zero")

    try:
        ttype = TransactionType(transaction_type).value
        rtype = ReferenceType(reference_type).value
    except ValueError as e:
        raise ValidationFailed(str(e)) from e

    bal, before, after = await StockBalanceService.adjust_quantity(
        session, product_id, location_id, qty
    )

    price = Decimal(unit_price) if unit_price is not None else None
    mv = StockMovement(
        product_id=int(product_id),
        location_id=int(location_id),
        warehouse_id=int(bal.warehouse_id),
        transaction_type=ttype,
        reference_type=rtype,
        reference_id=int(reference_id),
        reference_number=reference_number,
        quantity=qty,
        balance_before=before,
        balance_after=after,
        unit_price=price,
        total_value=(price * abs(qty)) if price is not None else None,
        transaction_date=occurred_at or utc_now(),
        actor_id=actor_id,
        note=note,
    )
    session.add(mv)
    await session.flush()

    LEDGER_POSTINGS.labels(transaction_type=ttype).inc()
    logger.debug(
        "ledger post %s product=%s loc=%s qty=%s %s->%s ref=%s",
        ttype,
        product_id,
        location_id,
        qty,
        before,
        after,
        reference_number,
    )
    return mv

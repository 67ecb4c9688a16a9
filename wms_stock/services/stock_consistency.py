# wms_stock/services/stock_consistency.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.models.product_aggregate import ProductAggregate
from wms_stock.models.stock_balance import StockBalance
from wms_stock.models.stock_movement import StockMovement

logger = logging.getLogger(__name__)


async def verify_consistency(session: AsyncSession, product_id: Optional[int] = None) -> Dict[str, Any]:
    """
    三本账一致性检查（只读）：

    1) 台账 vs 余额：每个 (product, location) 的 Σ movement.quantity == balance.quantity
       （任一侧缺行按 0 处理）；
    2) 汇总 vs 余额：每个 product 的 aggregate.total_on_hand / total_reserved
       == Σ balance.quantity / Σ balance.reserved。
    """
    led_q = select(
        StockMovement.product_id,
        StockMovement.location_id,
        func.sum(StockMovement.quantity),
    ).group_by(StockMovement.product_id, StockMovement.location_id)
    bal_q = select(StockBalance.product_id, StockBalance.location_id, StockBalance.quantity)
    if product_id is not None:
        led_q = led_q.where(StockMovement.product_id == int(product_id))
        bal_q = bal_q.where(StockBalance.product_id == int(product_id))

    ledger = {(int(p), int(loc)): int(q or 0) for p, loc, q in (await session.execute(led_q)).all()}
    balances = {(int(p), int(loc)): int(q or 0) for p, loc, q in (await session.execute(bal_q)).all()}

    balance_mismatches: List[Dict[str, int]] = []
    for key in sorted(set(ledger) | set(balances)):
        lq, bq = ledger.get(key, 0), balances.get(key, 0)
        if lq != bq:
            balance_mismatches.append(
                {"product_id": key[0], "location_id": key[1], "balance_quantity": bq, "ledger_quantity": lq}
            )

    sums_q = select(
        StockBalance.product_id,
        func.sum(StockBalance.quantity),
        func.sum(StockBalance.reserved),
    ).group_by(StockBalance.product_id)
    agg_q = select(ProductAggregate)
    if product_id is not None:
        sums_q = sums_q.where(StockBalance.product_id == int(product_id))
        agg_q = agg_q.where(ProductAggregate.product_id == int(product_id))

    sums = {int(p): (int(q or 0), int(r or 0)) for p, q, r in (await session.execute(sums_q)).all()}
    aggs = {int(a.product_id): a for a in (await session.execute(agg_q)).scalars().all()}

    aggregate_mismatches: List[Dict[str, int]] = []
    for pid in sorted(set(sums) | set(aggs)):
        on_hand, reserved = sums.get(pid, (0, 0))
        agg = aggs.get(pid)
        a_on_hand = int(agg.total_on_hand) if agg is not None else 0
        a_reserved = int(agg.total_reserved) if agg is not None else 0
        if (a_on_hand, a_reserved) != (on_hand, reserved):
            aggregate_mismatches.append(
                {
                    "product_id": pid,
                    "aggregate_on_hand": a_on_hand,
                    "balance_on_hand": on_hand,
                    "aggregate_reserved": a_reserved,
                    "balance_reserved": reserved,
                }
            )

    ok = not balance_mismatches and not aggregate_mismatches
    if not ok:
        logger.warning(
            "stock consistency check failed: balance=%d aggregate=%d",
            len(balance_mismatches),
            len(aggregate_mismatches),
        )
    return {
        "ok": ok,
        "balance_mismatches": balance_mismatches,
        "aggregate_mismatches": aggregate_mismatches,
    }

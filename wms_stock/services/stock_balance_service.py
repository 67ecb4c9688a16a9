# wms_stock/services/stock_balance_service.py
from __future__ import annotations

import logging
from typing import Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.models.product_aggregate import ProductAggregate
from wms_stock.models.stock_balance import StockBalance
from wms_stock.services.master_data import MasterDataService
from wms_stock.services.stock_errors import NegativeBalance, OverReservation
from wms_stock.utils.time import utc_now

logger = logging.getLogger(__name__)


def _insert_for(session: AsyncSession, model):
    """按方言选择带 ON CONFLICT 的 insert 构造"""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


class StockBalanceService:
    """
    余额存储 + 商品汇总：

    - get_or_create：(product, location) 行不存在时以 0 创建（ON CONFLICT DO NOTHING），
      然后 SELECT ... FOR UPDATE 取回，保证同一 key 上的读改写串行；
    - adjust_quantity：仅供台账 post 调用；
    - adjust_reserved：仅供预留管理调用；
    - 两者都在同一事务内同步增量更新 ProductAggregate，不可拆开。
    """

    @staticmethod
    async def select_balance(
        session: AsyncSession, product_id: int, location_id: int, *, lock: bool
    ) -> StockBalance | None:
        stmt = (
            select(StockBalance)
            .where(StockBalance.product_id == int(product_id))
            .where(StockBalance.location_id == int(location_id))
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalars().first()

    @classmethod
    async def get_or_create(
        cls, session: AsyncSession, product_id: int, location_id: int, *, lock: bool = True
    ) -> StockBalance:
        bal = await cls.select_balance(session, product_id, location_id, lock=lock)
        if bal is not None:
            return bal

        loc = await MasterDataService.require_location(session, location_id)
        stmt = (
            _insert_for(session, StockBalance)
            .values(
                product_id=int(product_id),
                location_id=int(location_id),
                warehouse_id=int(loc.warehouse_id),
                quantity=0,
                reserved=0,
                updated_at=utc_now(),
            )
            .on_conflict_do_nothing(index_elements=["product_id", "location_id"])
        )
        await session.execute(stmt)

        bal = await cls.select_balance(session, product_id, location_id, lock=lock)
        assert bal is not None
        return bal

    @staticmethod
    async def find_balance(
        session: AsyncSession, product_id: int, location_id: int
    ) -> StockBalance | None:
        """只读查询，不加锁、不创建"""
        stmt = (
            select(StockBalance)
            .where(StockBalance.product_id == int(product_id))
            .where(StockBalance.location_id == int(location_id))
        )
        return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def get_or_create_aggregate(
        session: AsyncSession, product_id: int, *, lock: bool = True
    ) -> ProductAggregate:
        stmt = (
            _insert_for(session, ProductAggregate)
            .values(product_id=int(product_id), total_on_hand=0, total_reserved=0, updated_at=utc_now())
            .on_conflict_do_nothing(index_elements=["product_id"])
        )
        await session.execute(stmt)

        q = (
            select(ProductAggregate)
            .where(ProductAggregate.product_id == int(product_id))
            .execution_options(populate_existing=True)
        )
        if lock:
            q = q.with_for_update()
        return (await session.execute(q)).scalars().one()

    @classmethod
    async def adjust_quantity(
        cls, session: AsyncSession, product_id: int, location_id: int, delta: int
    ) -> Tuple[StockBalance, int, int]:
        """
        quantity += delta，返回 (balance, before, after)。

        - after < 0           → NegativeBalance
        - after < reserved    → OverReservation（已被预留的数量不能被扣走）
        """
        bal = await cls.get_or_create(session, product_id, location_id, lock=True)
        before = int(bal.quantity)
        after = before + int(delta)

        if after < 0:
            raise NegativeBalance(
                f"quantity would become negative: product={product_id} location={location_id}",
                context={
                    "product_id": product_id,
                    "location_id": location_id,
                    "quantity": before,
                    "delta": int(delta),
                },
            )
        if after < int(bal.reserved):
            raise OverReservation(
                f"reserved quantity would exceed on-hand: product={product_id} location={location_id}",
                context={
                    "product_id": product_id,
                    "location_id": location_id,
                    "quantity": before,
                    "reserved": int(bal.reserved),
                    "delta": int(delta),
                },
            )

        agg = await cls.get_or_create_aggregate(session, product_id, lock=True)

        now = utc_now()
        bal.quantity = after
        bal.updated_at = now
        agg.total_on_hand = int(agg.total_on_hand) + int(delta)
        agg.updated_at = now
        await session.flush()
        return bal, before, after

    @classmethod
    async def adjust_reserved(
        cls, session: AsyncSession, product_id: int, location_id: int, delta: int
    ) -> StockBalance:
        bal = await cls.get_or_create(session, product_id, location_id, lock=True)
        new_reserved = int(bal.reserved) + int(delta)

        if new_reserved < 0:
            raise OverReservation(
                f"reserved would become negative: product={product_id} location={location_id}",
                context={"product_id": product_id, "location_id": location_id, "reserved": int(bal.reserved)},
            )
        if new_reserved > int(bal.quantity):
            raise OverReservation(
                f"reserved would exceed quantity: product={product_id} location={location_id}",
                context={
                    "product_id": product_id,
                    "location_id": location_id,
                    "quantity": int(bal.quantity),
                    "reserved": int(bal.reserved),
                    "delta": int(delta),
                },
            )

        agg = await cls.get_or_create_aggregate(session, product_id, lock=True)

        now = utc_now()
        bal.reserved = new_reserved
        bal.updated_at = now
        agg.total_reserved = int(agg.total_reserved) + int(delta)
        agg.updated_at = now
        await session.flush()
        return bal

    @classmethod
    async def recompute_aggregate(cls, session: AsyncSession, product_id: int) -> ProductAggregate:
        """自愈：ProductAggregate 以 stock_balances 为准重算"""
        agg = await cls.get_or_create_aggregate(session, product_id, lock=True)
        row = (
            await session.execute(
                select(
                    func.coalesce(func.sum(StockBalance.quantity), 0),
                    func.coalesce(func.sum(StockBalance.reserved), 0),
                ).where(StockBalance.product_id == int(product_id))
            )
        ).one()
        on_hand, reserved = int(row[0]), int(row[1])

        if on_hand != int(agg.total_on_hand) or reserved != int(agg.total_reserved):
            logger.warning(
                "aggregate drift healed: product=%s on_hand %s->%s reserved %s->%s",
                product_id,
                agg.total_on_hand,
                on_hand,
                agg.total_reserved,
                reserved,
            )
        agg.total_on_hand = on_hand
        agg.total_reserved = reserved
        agg.updated_at = utc_now()
        await session.flush()
        return agg

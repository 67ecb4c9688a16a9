# tests/services/test_concurrency_pg.py
"""
并发用例：依赖 PostgreSQL 行锁 / 唯一索引阻塞语义，SQLite 下跳过。
"""
from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tests.helpers.stock import assert_books_consistent, balance_of, movement_count, seed_stock
from wms_stock.models.enums import ReferenceType, TransactionType
from wms_stock.services import ledger_writer
from wms_stock.services.document_numbering import allocate_number
from wms_stock.services.reservation_service import ReservationService, ReserveLine
from wms_stock.services.stock_errors import StockError

pytestmark = [pytest.mark.asyncio, pytest.mark.pg]

PARALLEL = 8


async def _deduct_one(maker: async_sessionmaker[AsyncSession], n: int) -> bool:
    async with maker() as sess:
        try:
            await ledger_writer.post(
                sess,
                product_id=1,
                location_id=2,
                transaction_type=TransactionType.DELIVERY,
                reference_type=ReferenceType.DELIVERY_ORDER,
                reference_id=1000 + n,
                reference_number=f"DO-PAR-{n}",
                quantity=-1,
            )
            await sess.commit()
            return True
        except StockError:
            await sess.rollback()
            return False


async def test_parallel_deductions_never_oversell(session: AsyncSession, async_session_maker):
    await seed_stock(session, 1, 2, 3)

    results = await asyncio.gather(*[_deduct_one(async_session_maker, i) for i in range(PARALLEL)])

    assert sum(results) == 3
    assert await balance_of(session, 1, 2) == (0, 0)
    assert await movement_count(session, transaction_type="delivery") == 3
    await assert_books_consistent(session)


async def test_parallel_number_allocation_is_unique(async_session_maker):
    async def _one() -> str:
        async with async_session_maker() as sess:
            number = await allocate_number(sess, "PAR", max_retries=PARALLEL + 1)
            await sess.commit()
            return number

    numbers = await asyncio.gather(*[_one() for _ in range(PARALLEL)])
    assert len(set(numbers)) == PARALLEL


async def test_parallel_reservations_respect_available(session: AsyncSession, async_session_maker):
    await seed_stock(session, 1, 2, 5)
    svc = ReservationService()

    async def _one(n: int) -> bool:
        async with async_session_maker() as sess:
            try:
                await svc.reserve(
                    sess,
                    reference_type="other",
                    reference_id=f"PAR-{n}",
                    lines=[ReserveLine(product_id=1, qty=2, location_id=2)],
                )
                await sess.commit()
                return True
            except StockError:
                await sess.rollback()
                return False

    results = await asyncio.gather(*[_one(i) for i in range(PARALLEL)])

    assert sum(results) == 2
    assert await balance_of(session, 1, 2) == (5, 4)

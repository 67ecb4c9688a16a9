# tests/services/test_reservation_ttl.py
from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.helpers.stock import aggregate_of, balance_of, seed_stock
from wms_stock.jobs.reserve_ttl import run_once
from wms_stock.services.reservation_service import ReservationService, ReserveLine
from wms_stock.services.reservation_ttl import sweep_expired_reservations
from wms_stock.utils.time import utc_now

pytestmark = pytest.mark.asyncio

svc = ReservationService()


async def _reserve(session: AsyncSession, qty: int, *, minutes_ago: int, ttl: int = 30) -> int:
    res = await svc.reserve(
        session,
        reference_type="other",
        reference_id=f"TTL-{qty}-{minutes_ago}",
        lines=[ReserveLine(product_id=1, qty=qty, location_id=2)],
        ttl_minutes=ttl,
        now=utc_now() - timedelta(minutes=minutes_ago),
    )
    await session.commit()
    return res.reservation.id


async def test_sweep_expires_only_stale_active(session: AsyncSession):
    """
    场景：
      - 三张已过期的 active 预留（跨多个批次）
      - 一张未过期
      - 一张已过期但先被显式释放
    期望：
      - sweep 返回 3，只归还过期那三张的 reserved
      - 再跑一次返回 0（幂等）
    """
    await seed_stock(session, 1, 2, 100)
    stale = [await _reserve(session, q, minutes_ago=120) for q in (1, 2, 3)]
    fresh = await _reserve(session, 10, minutes_ago=0)
    released = await _reserve(session, 20, minutes_ago=120)
    await svc.release(session, reservation_id=released)
    await session.commit()

    n = await sweep_expired_reservations(session, batch_size=2)
    await session.commit()
    assert n == 3
    assert await balance_of(session, 1, 2) == (100, 10)
    assert await aggregate_of(session, 1) == (100, 10)

    for rid in stale:
        assert (await svc.get(session, rid)).status == "expired"
    assert (await svc.get(session, fresh)).status == "active"
    assert (await svc.get(session, released)).status == "released"

    assert await sweep_expired_reservations(session) == 0


async def test_expire_one_requires_past_deadline(session: AsyncSession):
    await seed_stock(session, 1, 2, 10)
    rid = await _reserve(session, 4, minutes_ago=0, ttl=30)

    assert await svc.expire_one(session, rid) is False
    assert await svc.expire_one(session, rid, now=utc_now() + timedelta(hours=1)) is True
    assert await svc.expire_one(session, rid, now=utc_now() + timedelta(hours=1)) is False
    await session.commit()
    assert await balance_of(session, 1, 2) == (10, 0)


async def test_job_run_once_commits(session: AsyncSession, async_session_maker):
    await seed_stock(session, 1, 2, 10)
    await _reserve(session, 5, minutes_ago=90)

    async with async_session_maker() as job_session:
        assert await run_once(job_session) == 1

    assert await balance_of(session, 1, 2) == (10, 0)

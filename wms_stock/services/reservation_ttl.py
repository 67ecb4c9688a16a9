# wms_stock/services/reservation_ttl.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.models.enums import ReservationStatus
from wms_stock.models.reservation import Reservation
from wms_stock.services.reservation_service import ReservationService
from wms_stock.utils.time import utc_now


async def find_expired(
    session: AsyncSession, *, now: datetime, limit: int, after_id: int = 0
) -> List[int]:
    stmt = (
        select(Reservation.id)
        .where(Reservation.status == ReservationStatus.ACTIVE.value)
        .where(Reservation.expires_at < now)
        .where(Reservation.id > int(after_id))
        .order_by(Reservation.id.asc())
        .limit(limit)
    )
    return [int(x) for x in (await session.execute(stmt)).scalars().all()]


async def sweep_expired_reservations(
    session: AsyncSession,
    *,
    now: Optional[datetime] = None,
    batch_size: int = 100,
) -> int:
    """
    扫描并回收 TTL 过期的预留。

    语义：
      - 仅处理 status='active' AND expires_at < now；
      - 对每个候选 id 调用 ReservationService.expire_one（行锁 + 状态复核）：
          * 首次：active → expired，归还 reserved
          * 已被 release / 读时惰性过期处理过：no-op
      - 不写台账（预留不是实物移动）。

    返回：本次真正 active → expired 的数量。
    """
    if now is None:
        now = utc_now()

    svc = ReservationService()
    total_expired = 0
    cursor = 0

    while True:
        ids = await find_expired(session, now=now, limit=batch_size, after_id=cursor)
        if not ids:
            break

        for rid in ids:
            if await svc.expire_one(session, rid, now=now):
                total_expired += 1
        cursor = ids[-1]

        if len(ids) < batch_size:
            break

    return total_expired

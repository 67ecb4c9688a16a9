# wms_stock/api/routers/reservations.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.api.deps import Actor, get_actor, get_idempotency_header, pick_idempotency_key, write_tx
from wms_stock.core.config import get_settings
from wms_stock.db.session import get_session
from wms_stock.schemas.reservation import (
    ReleaseIn,
    ReleaseOut,
    ReservationOut,
    ReserveIn,
    ReserveOut,
    SweepOut,
)
from wms_stock.services.reservation_service import ReservationService, ReserveLine
from wms_stock.services.reservation_ttl import sweep_expired_reservations

router = APIRouter(tags=["reservations"])

svc = ReservationService()


@router.post("/stock/reserve", response_model=ReserveOut, status_code=201)
async def reserve_stock(
    payload: ReserveIn,
    header_key: Optional[str] = Depends(get_idempotency_header),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> ReserveOut:
    """
    软占用库存：

    - 指定 location_id 的行要求该库位 available ≥ qty；
    - 未指定库位按 available 从大到小自动分配；
    - 满足不了的行进入 errors；一行都满足不了 → 400 NO_STOCK_RESERVABLE。
    """
    async with write_tx(session):
        res = await svc.reserve(
            session,
            reference_type=payload.reference_type.value,
            reference_id=payload.reference_id,
            lines=[ReserveLine(product_id=x.product_id, qty=x.qty, location_id=x.location_id) for x in payload.lines],
            ttl_minutes=payload.ttl_minutes,
            idempotency_key=pick_idempotency_key(payload.idempotency_key, header_key),
            actor_id=actor.id,
        )
    return ReserveOut(
        reservation=ReservationOut.model_validate(res.reservation),
        already_applied=res.already_applied,
        errors=res.errors,
    )


@router.post("/stock/release", response_model=ReleaseOut)
async def release_stock(
    payload: ReleaseIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> ReleaseOut:
    async with write_tx(session):
        released = await svc.release(
            session,
            reservation_id=payload.reservation_id,
            reference_id=payload.reference_id,
            reference_type=payload.reference_type.value if payload.reference_type else None,
            reason=payload.reason or "released",
        )
    return ReleaseOut(released=[ReservationOut.model_validate(x) for x in released])


@router.get("/reservations", response_model=List[ReservationOut])
async def list_reservations(
    status: Optional[str] = Query(None),
    reference_type: Optional[str] = Query(None),
    reference_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> List[ReservationOut]:
    # 读时惰性过期会写库，需要提交
    async with write_tx(session):
        items = await svc.list(
            session,
            status=status,
            reference_type=reference_type,
            reference_id=reference_id,
            limit=limit,
            offset=offset,
        )
    return [ReservationOut.model_validate(x) for x in items]


@router.get("/reservations/{reservation_id}", response_model=ReservationOut)
async def get_reservation(reservation_id: int, session: AsyncSession = Depends(get_session)) -> ReservationOut:
    async with write_tx(session):
        rsv = await svc.get(session, reservation_id)
    return ReservationOut.model_validate(rsv)


@router.post("/reservations/sweep", response_model=SweepOut)
async def sweep_reservations(
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> SweepOut:
    """手动触发一次 TTL 回收（与 jobs.reserve_ttl 同一逻辑）"""
    async with write_tx(session):
        n = await sweep_expired_reservations(session, batch_size=get_settings().RESERVATION_SWEEP_BATCH_SIZE)
    return SweepOut(expired=n)

# wms_stock/api/routers/delivery_orders.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.api.deps import Actor, get_actor, get_idempotency_header, pick_idempotency_key, write_tx
from wms_stock.db.session import get_session
from wms_stock.schemas.common import CancelIn, TerminalActionIn
from wms_stock.schemas.delivery_order import (
    DeliveryOrderActionOut,
    DeliveryOrderCreateIn,
    DeliveryOrderListOut,
    DeliveryOrderOut,
    DeliveryOrderUpdateIn,
    DeliveryReserveIn,
    PackIn,
    PickIn,
)
from wms_stock.services.delivery_order_service import DeliveryOrderService

router = APIRouter(prefix="/delivery-orders", tags=["delivery-orders"])

svc = DeliveryOrderService()


def _out(doc, *, already_applied: bool = False, ledger_entries: int = 0, warnings=None) -> DeliveryOrderActionOut:
    return DeliveryOrderActionOut(
        delivery_order=DeliveryOrderOut.model_validate(doc),
        already_applied=already_applied,
        ledger_entries=ledger_entries,
        warnings=list(warnings or []),
    )


@router.post("", response_model=DeliveryOrderActionOut, status_code=201)
async def create_delivery_order(
    payload: DeliveryOrderCreateIn,
    header_key: Optional[str] = Depends(get_idempotency_header),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> DeliveryOrderActionOut:
    """建出库单；auto_reserve=true 时同时预留，预留失败只返回 warnings；同 key 重试返回首单"""
    payload.idempotency_key = pick_idempotency_key(payload.idempotency_key, header_key)
    async with write_tx(session):
        doc, warnings, replayed = await svc.create(session, payload, actor_id=actor.id)
    return _out(doc, already_applied=replayed, warnings=warnings)


@router.get("", response_model=DeliveryOrderListOut)
async def list_delivery_orders(
    status: Optional[str] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> DeliveryOrderListOut:
    items, total = await svc.list(
        session,
        status=status,
        warehouse_id=warehouse_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return DeliveryOrderListOut(items=[DeliveryOrderOut.model_validate(x) for x in items], total=total)


@router.get("/{order_id}", response_model=DeliveryOrderOut)
async def get_delivery_order(order_id: int, session: AsyncSession = Depends(get_session)) -> DeliveryOrderOut:
    return DeliveryOrderOut.model_validate(await svc.get(session, order_id))


@router.put("/{order_id}", response_model=DeliveryOrderOut)
async def update_delivery_order(
    order_id: int,
    payload: DeliveryOrderUpdateIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> DeliveryOrderOut:
    async with write_tx(session):
        doc = await svc.update(session, order_id, payload, actor_id=actor.id)
    return DeliveryOrderOut.model_validate(doc)


@router.post("/{order_id}/reserve", response_model=DeliveryOrderActionOut)
async def reserve_delivery_order(
    order_id: int,
    payload: Optional[DeliveryReserveIn] = None,
    header_key: Optional[str] = Depends(get_idempotency_header),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> DeliveryOrderActionOut:
    payload = payload or DeliveryReserveIn()
    async with write_tx(session):
        doc, res = await svc.reserve(
            session,
            order_id,
            actor_id=actor.id,
            ttl_minutes=payload.ttl_minutes,
            idempotency_key=pick_idempotency_key(payload.idempotency_key, header_key),
        )
    return _out(doc, already_applied=res.already_applied, warnings=res.errors)


@router.post("/{order_id}/pick", response_model=DeliveryOrderOut)
async def pick_delivery_order(
    order_id: int,
    payload: PickIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> DeliveryOrderOut:
    async with write_tx(session):
        doc = await svc.pick(session, order_id, payload, actor_id=actor.id)
    return DeliveryOrderOut.model_validate(doc)


@router.post("/{order_id}/pack", response_model=DeliveryOrderOut)
async def pack_delivery_order(
    order_id: int,
    payload: PackIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> DeliveryOrderOut:
    async with write_tx(session):
        doc = await svc.pack(session, order_id, payload, actor_id=actor.id)
    return DeliveryOrderOut.model_validate(doc)


@router.post("/{order_id}/validate", response_model=DeliveryOrderActionOut)
async def validate_delivery_order(
    order_id: int,
    payload: Optional[TerminalActionIn] = None,
    header_key: Optional[str] = Depends(get_idempotency_header),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> DeliveryOrderActionOut:
    """终态动作：消耗本单预留 → 按行出库记账 → done"""
    payload = payload or TerminalActionIn()
    async with write_tx(session):
        res = await svc.validate(
            session,
            order_id,
            actor_id=actor.id,
            idempotency_key=pick_idempotency_key(payload.idempotency_key, header_key),
            note=payload.note,
        )
    return _out(res.document, already_applied=res.already_applied, ledger_entries=res.ledger_entries)


@router.post("/{order_id}/cancel", response_model=DeliveryOrderActionOut)
async def cancel_delivery_order(
    order_id: int,
    payload: Optional[CancelIn] = None,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> DeliveryOrderActionOut:
    payload = payload or CancelIn()
    async with write_tx(session):
        res = await svc.cancel(session, order_id, actor_id=actor.id, reason=payload.reason)
    return _out(res.document)

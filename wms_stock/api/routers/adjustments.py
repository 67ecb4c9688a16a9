# wms_stock/api/routers/adjustments.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.api.deps import Actor, get_actor, get_idempotency_header, pick_idempotency_key, write_tx
from wms_stock.db.session import get_session
from wms_stock.schemas.adjustment import (
    AdjustmentActionOut,
    AdjustmentCreateIn,
    AdjustmentListOut,
    AdjustmentOut,
    AdjustmentUpdateIn,
)
from wms_stock.schemas.common import CancelIn, TerminalActionIn
from wms_stock.services.adjustment_service import AdjustmentService

router = APIRouter(prefix="/adjustments", tags=["adjustments"])

svc = AdjustmentService()


@router.post("", response_model=AdjustmentOut, status_code=201)
async def create_adjustment(
    payload: AdjustmentCreateIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    async with write_tx(session):
        doc = await svc.create(session, payload, actor_id=actor.id)
    return AdjustmentOut.model_validate(doc)


@router.get("", response_model=AdjustmentListOut)
async def list_adjustments(
    status: Optional[str] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentListOut:
    items, total = await svc.list(
        session,
        status=status,
        warehouse_id=warehouse_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return AdjustmentListOut(items=[AdjustmentOut.model_validate(x) for x in items], total=total)


@router.get("/{adjustment_id}", response_model=AdjustmentOut)
async def get_adjustment(adjustment_id: int, session: AsyncSession = Depends(get_session)) -> AdjustmentOut:
    return AdjustmentOut.model_validate(await svc.get(session, adjustment_id))


@router.put("/{adjustment_id}", response_model=AdjustmentOut)
async def update_adjustment(
    adjustment_id: int,
    payload: AdjustmentUpdateIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentOut:
    async with write_tx(session):
        doc = await svc.update(session, adjustment_id, payload, actor_id=actor.id)
    return AdjustmentOut.model_validate(doc)


@router.post("/{adjustment_id}/apply", response_model=AdjustmentActionOut)
async def apply_adjustment(
    adjustment_id: int,
    payload: Optional[TerminalActionIn] = None,
    header_key: Optional[str] = Depends(get_idempotency_header),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentActionOut:
    """终态动作：按行记 counted - system 的带符号台账 → applied"""
    payload = payload or TerminalActionIn()
    async with write_tx(session):
        res = await svc.apply(
            session,
            adjustment_id,
            actor_id=actor.id,
            idempotency_key=pick_idempotency_key(payload.idempotency_key, header_key),
            note=payload.note,
        )
    return AdjustmentActionOut(
        adjustment=AdjustmentOut.model_validate(res.document),
        already_applied=res.already_applied,
        ledger_entries=res.ledger_entries,
    )


@router.post("/{adjustment_id}/cancel", response_model=AdjustmentActionOut)
async def cancel_adjustment(
    adjustment_id: int,
    payload: Optional[CancelIn] = None,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> AdjustmentActionOut:
    payload = payload or CancelIn()
    async with write_tx(session):
        res = await svc.cancel(session, adjustment_id, actor_id=actor.id, reason=payload.reason)
    return AdjustmentActionOut(adjustment=AdjustmentOut.model_validate(res.document))

# wms_stock/api/routers/receipts.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.api.deps import Actor, get_actor, get_idempotency_header, pick_idempotency_key, write_tx
from wms_stock.db.session import get_session
from wms_stock.schemas.common import CancelIn, TerminalActionIn, TransitionIn
from wms_stock.schemas.receipt import (
    ReceiptActionOut,
    ReceiptCreateIn,
    ReceiptListOut,
    ReceiptOut,
    ReceiptUpdateIn,
    ReceivedQtyIn,
)
from wms_stock.services.receipt_service import ReceiptService

router = APIRouter(prefix="/receipts", tags=["receipts"])

svc = ReceiptService()


@router.post("", response_model=ReceiptOut, status_code=201)
async def create_receipt(
    payload: ReceiptCreateIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> ReceiptOut:
    """建收货单（draft），不影响库存"""
    async with write_tx(session):
        doc = await svc.create(session, payload, actor_id=actor.id)
    return ReceiptOut.model_validate(doc)


@router.get("", response_model=ReceiptListOut)
async def list_receipts(
    status: Optional[str] = Query(None),
    warehouse_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> ReceiptListOut:
    items, total = await svc.list(
        session,
        status=status,
        warehouse_id=warehouse_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return ReceiptListOut(items=[ReceiptOut.model_validate(x) for x in items], total=total)


@router.get("/{receipt_id}", response_model=ReceiptOut)
async def get_receipt(receipt_id: int, session: AsyncSession = Depends(get_session)) -> ReceiptOut:
    return ReceiptOut.model_validate(await svc.get(session, receipt_id))


@router.put("/{receipt_id}", response_model=ReceiptOut)
async def update_receipt(
    receipt_id: int,
    payload: ReceiptUpdateIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> ReceiptOut:
    async with write_tx(session):
        doc = await svc.update(session, receipt_id, payload, actor_id=actor.id)
    return ReceiptOut.model_validate(doc)


@router.post("/{receipt_id}/transition", response_model=ReceiptOut)
async def transition_receipt(
    receipt_id: int,
    payload: TransitionIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> ReceiptOut:
    async with write_tx(session):
        doc = await svc.transition(session, receipt_id, payload.status, actor_id=actor.id, note=payload.note)
    return ReceiptOut.model_validate(doc)


@router.post("/{receipt_id}/update-qty", response_model=ReceiptOut)
async def update_received_qty(
    receipt_id: int,
    payload: ReceivedQtyIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> ReceiptOut:
    async with write_tx(session):
        doc = await svc.update_received_qty(session, receipt_id, payload, actor_id=actor.id)
    return ReceiptOut.model_validate(doc)


@router.post("/{receipt_id}/validate", response_model=ReceiptActionOut)
async def validate_receipt(
    receipt_id: int,
    payload: Optional[TerminalActionIn] = None,
    header_key: Optional[str] = Depends(get_idempotency_header),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> ReceiptActionOut:
    """
    终态动作：ready 且有实收 → 收货库位入账，状态 done。
    同一幂等键重放返回首次结果（already_applied=true，ledger_entries=0）。
    """
    payload = payload or TerminalActionIn()
    async with write_tx(session):
        res = await svc.validate(
            session,
            receipt_id,
            actor_id=actor.id,
            idempotency_key=pick_idempotency_key(payload.idempotency_key, header_key),
            note=payload.note,
        )
    return ReceiptActionOut(
        receipt=ReceiptOut.model_validate(res.document),
        already_applied=res.already_applied,
        ledger_entries=res.ledger_entries,
    )


@router.post("/{receipt_id}/cancel", response_model=ReceiptActionOut)
async def cancel_receipt(
    receipt_id: int,
    payload: Optional[CancelIn] = None,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> ReceiptActionOut:
    """取消；done 的收货单仅管理员可取消（冲正入账）"""
    payload = payload or CancelIn()
    async with write_tx(session):
        res = await svc.cancel(
            session, receipt_id, actor_id=actor.id, reason=payload.reason, is_admin=actor.is_admin
        )
    return ReceiptActionOut(
        receipt=ReceiptOut.model_validate(res.document),
        already_applied=False,
        ledger_entries=res.ledger_entries,
    )

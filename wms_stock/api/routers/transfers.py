# wms_stock/api/routers/transfers.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.api.deps import Actor, get_actor, get_idempotency_header, pick_idempotency_key, write_tx
from wms_stock.db.session import get_session
from wms_stock.schemas.common import CancelIn, TerminalActionIn
from wms_stock.schemas.transfer import (
    TransferActionOut,
    TransferCreateIn,
    TransferListOut,
    TransferOut,
    TransferUpdateIn,
)
from wms_stock.services.transfer_service import TransferService

router = APIRouter(prefix="/transfers", tags=["transfers"])

svc = TransferService()


@router.post("", response_model=TransferOut, status_code=201)
async def create_transfer(
    payload: TransferCreateIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> TransferOut:
    async with write_tx(session):
        doc = await svc.create(session, payload, actor_id=actor.id)
    return TransferOut.model_validate(doc)


@router.get("", response_model=TransferListOut)
async def list_transfers(
    status: Optional[str] = Query(None),
    warehouse_id: Optional[int] = Query(None, description="按调出仓过滤"),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> TransferListOut:
    items, total = await svc.list(
        session,
        status=status,
        warehouse_id=warehouse_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return TransferListOut(items=[TransferOut.model_validate(x) for x in items], total=total)


@router.get("/{transfer_id}", response_model=TransferOut)
async def get_transfer(transfer_id: int, session: AsyncSession = Depends(get_session)) -> TransferOut:
    return TransferOut.model_validate(await svc.get(session, transfer_id))


@router.put("/{transfer_id}", response_model=TransferOut)
async def update_transfer(
    transfer_id: int,
    payload: TransferUpdateIn,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> TransferOut:
    async with write_tx(session):
        doc = await svc.update(session, transfer_id, payload, actor_id=actor.id)
    return TransferOut.model_validate(doc)


@router.post("/{transfer_id}/submit", response_model=TransferOut)
async def submit_transfer(
    transfer_id: int,
    payload: Optional[TerminalActionIn] = None,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> TransferOut:
    """draft → pending（校验源库位可用量）"""
    note = payload.note if payload else None
    async with write_tx(session):
        doc = await svc.submit(session, transfer_id, actor_id=actor.id, note=note)
    return TransferOut.model_validate(doc)


@router.post("/{transfer_id}/dispatch", response_model=TransferOut)
async def dispatch_transfer(
    transfer_id: int,
    payload: Optional[TerminalActionIn] = None,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> TransferOut:
    """pending → in_transit"""
    note = payload.note if payload else None
    async with write_tx(session):
        doc = await svc.dispatch(session, transfer_id, actor_id=actor.id, note=note)
    return TransferOut.model_validate(doc)


@router.post("/{transfer_id}/execute", response_model=TransferActionOut)
async def execute_transfer(
    transfer_id: int,
    payload: Optional[TerminalActionIn] = None,
    header_key: Optional[str] = Depends(get_idempotency_header),
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> TransferActionOut:
    """终态动作：每行 transfer_out + transfer_in 两条台账 → completed"""
    payload = payload or TerminalActionIn()
    async with write_tx(session):
        res = await svc.execute(
            session,
            transfer_id,
            actor_id=actor.id,
            idempotency_key=pick_idempotency_key(payload.idempotency_key, header_key),
            note=payload.note,
        )
    return TransferActionOut(
        transfer=TransferOut.model_validate(res.document),
        already_applied=res.already_applied,
        ledger_entries=res.ledger_entries,
    )


@router.post("/{transfer_id}/cancel", response_model=TransferActionOut)
async def cancel_transfer(
    transfer_id: int,
    payload: Optional[CancelIn] = None,
    actor: Actor = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
) -> TransferActionOut:
    payload = payload or CancelIn()
    async with write_tx(session):
        res = await svc.cancel(session, transfer_id, actor_id=actor.id, reason=payload.reason)
    return TransferActionOut(transfer=TransferOut.model_validate(res.document))

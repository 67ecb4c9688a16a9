# wms_stock/services/transfer_service.py
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.models.enums import (
    DocumentEventType,
    ReferenceType,
    ReservationReferenceType,
    TransactionType,
    TransferStatus,
)
from wms_stock.models.location import Location
from wms_stock.models.stock_movement import StockMovement
from wms_stock.models.transfer import Transfer, TransferEvent, TransferLine
from wms_stock.schemas.transfer import TransferCreateIn, TransferLineIn, TransferUpdateIn
from wms_stock.services import ledger_writer
from wms_stock.services.document_workflow import DocumentWorkflow, TerminalResult
from wms_stock.services.master_data import MasterDataService
from wms_stock.services.stock_balance_service import StockBalanceService
from wms_stock.services.stock_errors import InsufficientStock, ValidationFailed

logger = logging.getLogger(__name__)

S = TransferStatus


class TransferService(DocumentWorkflow[Transfer]):
    """
    调拨单：draft → pending → in_transit → completed / canceled

    execute 可从 pending 或 in_transit 发起；每行先 from 库位 -qty 再 to 库位 +qty。
    """

    model = Transfer
    event_model = TransferEvent
    prefix = "TRF"
    label = "transfer"
    reference_type = ReferenceType.TRANSFER
    reservation_reference_type = ReservationReferenceType.TRANSFER.value

    transitions = {
        S.DRAFT.value: frozenset({S.PENDING.value}),
        S.PENDING.value: frozenset({S.IN_TRANSIT.value}),
    }
    editable = frozenset({S.DRAFT.value, S.PENDING.value})
    cancelable = frozenset({S.DRAFT.value, S.PENDING.value, S.IN_TRANSIT.value})
    terminal_from = frozenset({S.PENDING.value, S.IN_TRANSIT.value})
    terminal_status = S.COMPLETED.value
    terminal_event = DocumentEventType.EXECUTED.value

    def warehouse_column(self):
        return Transfer.from_warehouse_id

    async def _locations(
        self, session: AsyncSession, from_location_id: int, to_location_id: int
    ) -> tuple[Location, Location]:
        if int(from_location_id) == int(to_location_id):
            raise ValidationFailed(
                "from and to locations must differ",
                context={"location_id": from_location_id},
            )
        src = await MasterDataService.require_location(session, from_location_id)
        dst = await MasterDataService.require_location(session, to_location_id)
        return src, dst

    async def _build_lines(self, session: AsyncSession, lines: Sequence[TransferLineIn]) -> List[TransferLine]:
        out: List[TransferLine] = []
        for i, ln in enumerate(lines, start=1):
            product = await MasterDataService.require_product(session, ln.product_id)
            out.append(
                TransferLine(
                    line_no=i,
                    product_id=product.id,
                    sku=ln.sku or product.sku,
                    requested_qty=ln.requested_qty,
                    transferred_qty=0,
                )
            )
        return out

    async def create(self, session: AsyncSession, data: TransferCreateIn, *, actor_id: Optional[int]) -> Transfer:
        src, dst = await self._locations(session, data.from_location_id, data.to_location_id)
        doc = Transfer(
            from_location_id=src.id,
            to_location_id=dst.id,
            from_warehouse_id=src.warehouse_id,
            to_warehouse_id=dst.warehouse_id,
            scheduled_date=data.scheduled_date,
            notes=data.notes,
            status=S.DRAFT.value,
            lines=await self._build_lines(session, data.lines),
            events=[],
        )
        return await self.persist_new(session, doc, actor_id=actor_id)

    async def update(
        self, session: AsyncSession, transfer_id: int, data: TransferUpdateIn, *, actor_id: Optional[int]
    ) -> Transfer:
        doc = await self.get(session, transfer_id, lock=True)
        self.ensure_editable(doc)

        fields = data.model_dump(exclude_unset=True, exclude={"lines"})
        if "from_location_id" in fields or "to_location_id" in fields:
            src, dst = await self._locations(
                session,
                fields.get("from_location_id") or doc.from_location_id,
                fields.get("to_location_id") or doc.to_location_id,
            )
            doc.from_location_id, doc.to_location_id = src.id, dst.id
            doc.from_warehouse_id, doc.to_warehouse_id = src.warehouse_id, dst.warehouse_id
        for name in ("scheduled_date", "notes"):
            if name in fields:
                setattr(doc, name, fields[name])
        if data.lines is not None:
            doc.lines = await self._build_lines(session, data.lines)

        self.add_event(doc, DocumentEventType.EDITED, actor_id=actor_id, note="transfer edited", from_status=doc.status)
        return await self.save(session, doc)

    async def _check_source(self, session: AsyncSession, doc: Transfer) -> None:
        """源库位逐行可用量校验（同商品多行累计）"""
        need: dict[int, int] = {}
        for ln in doc.lines:
            need[ln.product_id] = need.get(ln.product_id, 0) + int(ln.requested_qty)
        for product_id, qty in need.items():
            bal = await StockBalanceService.find_balance(session, product_id, doc.from_location_id)
            available = bal.available if bal is not None else 0
            if available < qty:
                raise InsufficientStock(
                    f"insufficient stock at source location for product {product_id}",
                    requested=qty,
                    available=available,
                    context={"product_id": product_id, "location_id": doc.from_location_id},
                )

    async def submit(
        self, session: AsyncSession, transfer_id: int, *, actor_id: Optional[int], note: Optional[str] = None
    ) -> Transfer:
        doc = await self.get(session, transfer_id, lock=True)
        self.require_status(doc, frozenset({S.DRAFT.value}), "submit")
        await self._check_source(session, doc)
        self.change_status(
            doc, S.PENDING.value, actor_id=actor_id, event_type=DocumentEventType.SUBMITTED, note=note or "transfer submitted"
        )
        return await self.save(session, doc)

    async def dispatch(
        self, session: AsyncSession, transfer_id: int, *, actor_id: Optional[int], note: Optional[str] = None
    ) -> Transfer:
        return await self.transition(
            session,
            transfer_id,
            S.IN_TRANSIT.value,
            actor_id=actor_id,
            note=note or "transfer in transit",
            event_type=DocumentEventType.IN_TRANSIT,
        )

    async def post_entries(
        self, session: AsyncSession, doc: Transfer, *, actor_id: Optional[int]
    ) -> List[StockMovement]:
        entries: List[StockMovement] = []
        for ln in doc.lines:
            qty = int(ln.requested_qty or 0)
            if qty <= 0:
                continue
            bal = await StockBalanceService.select_balance(session, ln.product_id, doc.from_location_id, lock=True)
            available = bal.available if bal is not None else 0
            if available < qty:
                raise InsufficientStock(
                    f"insufficient stock at source location for line {ln.line_no}",
                    requested=qty,
                    available=available,
                    context={"line_no": ln.line_no, "product_id": ln.product_id, "location_id": doc.from_location_id},
                )
            common = dict(
                session=session,
                product_id=ln.product_id,
                reference_type=self.reference_type,
                reference_id=doc.id,
                reference_number=doc.number,
                actor_id=actor_id,
            )
            entries.append(
                await ledger_writer.post(
                    location_id=doc.from_location_id,
                    transaction_type=TransactionType.TRANSFER_OUT,
                    quantity=-qty,
                    **common,
                )
            )
            entries.append(
                await ledger_writer.post(
                    location_id=doc.to_location_id,
                    transaction_type=TransactionType.TRANSFER_IN,
                    quantity=qty,
                    **common,
                )
            )
        return entries

    def on_terminal(self, doc: Transfer) -> None:
        for ln in doc.lines:
            ln.transferred_qty = int(ln.requested_qty or 0)

    async def execute(
        self,
        session: AsyncSession,
        transfer_id: int,
        *,
        actor_id: Optional[int],
        idempotency_key: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TerminalResult[Transfer]:
        return await self.run_terminal(
            session, transfer_id, actor_id=actor_id, idempotency_key=idempotency_key, note=note
        )

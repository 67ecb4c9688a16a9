# wms_stock/services/receipt_service.py
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.core.config import get_settings
from wms_stock.core.tx import atomic
from wms_stock.metrics import TERMINAL_ACTIONS
from wms_stock.models.enums import DocumentEventType, ReceiptStatus, ReferenceType, TransactionType
from wms_stock.models.location import Location
from wms_stock.models.receipt import Receipt, ReceiptEvent, ReceiptLine
from wms_stock.models.stock_movement import StockMovement
from wms_stock.schemas.receipt import ReceiptCreateIn, ReceiptLineIn, ReceiptUpdateIn, ReceivedQtyIn
from wms_stock.services import ledger_writer
from wms_stock.services.document_workflow import DocumentWorkflow, TerminalResult
from wms_stock.services.master_data import MasterDataService
from wms_stock.services.stock_errors import (
    InvalidState,
    NotFound,
    PermissionDenied,
    StockError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

S = ReceiptStatus


class ReceiptService(DocumentWorkflow[Receipt]):
    """
    收货单：draft → waiting → ready → done / canceled

    - validate 需 ready 且 total_received_qty > 0
    - done 的收货单只能由管理员取消：按原 receipt 台账逐条冲正（reversal）
    """

    model = Receipt
    event_model = ReceiptEvent
    prefix = "RCP"
    label = "receipt"
    reference_type = ReferenceType.RECEIPT

    transitions = {
        S.DRAFT.value: frozenset({S.WAITING.value, S.READY.value}),
        S.WAITING.value: frozenset({S.DRAFT.value, S.READY.value}),
        S.READY.value: frozenset({S.WAITING.value}),
    }
    editable = frozenset({S.DRAFT.value, S.WAITING.value})
    cancelable = frozenset({S.DRAFT.value, S.WAITING.value, S.READY.value})
    terminal_from = frozenset({S.READY.value})
    terminal_status = S.DONE.value
    terminal_event = DocumentEventType.VALIDATED.value

    # ------------------------------------------------------------------ #
    # 建单 / 编辑
    # ------------------------------------------------------------------ #

    async def _build_lines(self, session: AsyncSession, lines: Sequence[ReceiptLineIn]) -> List[ReceiptLine]:
        out: List[ReceiptLine] = []
        for i, ln in enumerate(lines, start=1):
            product = await MasterDataService.require_product(session, ln.product_id)
            out.append(
                ReceiptLine(
                    line_no=i,
                    product_id=product.id,
                    sku=ln.sku or product.sku,
                    expected_qty=ln.expected_qty,
                    received_qty=ln.received_qty,
                    unit_price=ln.unit_price,
                    notes=ln.notes,
                )
            )
        return out

    async def _check_location(self, session: AsyncSession, warehouse_id: int, location_id: Optional[int]) -> None:
        if location_id is None:
            return
        loc = await MasterDataService.require_location(session, location_id)
        if int(loc.warehouse_id) != int(warehouse_id):
            raise ValidationFailed(
                "location does not belong to receipt warehouse",
                context={"location_id": location_id, "warehouse_id": warehouse_id},
            )

    async def create(self, session: AsyncSession, data: ReceiptCreateIn, *, actor_id: Optional[int]) -> Receipt:
        await MasterDataService.require_warehouse(session, data.warehouse_id)
        await self._check_location(session, data.warehouse_id, data.location_id)

        doc = Receipt(
            warehouse_id=data.warehouse_id,
            location_id=data.location_id,
            supplier_name=data.supplier_name,
            external_reference=data.external_reference,
            expected_date=data.expected_date,
            notes=data.notes,
            status=S.DRAFT.value,
            lines=await self._build_lines(session, data.lines),
            events=[],
        )
        return await self.persist_new(session, doc, actor_id=actor_id)

    async def update(
        self, session: AsyncSession, receipt_id: int, data: ReceiptUpdateIn, *, actor_id: Optional[int]
    ) -> Receipt:
        doc = await self.get(session, receipt_id, lock=True)
        self.ensure_editable(doc)

        fields = data.model_dump(exclude_unset=True, exclude={"lines"})
        if "location_id" in fields:
            await self._check_location(session, doc.warehouse_id, fields["location_id"])
        for name, value in fields.items():
            setattr(doc, name, value)
        if data.lines is not None:
            doc.lines = await self._build_lines(session, data.lines)

        self.add_event(doc, DocumentEventType.EDITED, actor_id=actor_id, note="receipt edited", from_status=doc.status)
        return await self.save(session, doc)

    async def update_received_qty(
        self, session: AsyncSession, receipt_id: int, data: ReceivedQtyIn, *, actor_id: Optional[int]
    ) -> Receipt:
        doc = await self.get(session, receipt_id, lock=True)
        if doc.status in (S.DONE.value, S.CANCELED.value):
            raise InvalidState(
                f"cannot update quantities for {doc.status} receipt",
                current=doc.status,
                required=[S.DRAFT.value, S.WAITING.value, S.READY.value],
            )

        by_no = {ln.line_no: ln for ln in doc.lines}
        for item in data.lines:
            line = by_no.get(item.line_no)
            if line is None:
                raise ValidationFailed(f"receipt line not found: {item.line_no}", context={"line_no": item.line_no})
            line.received_qty = item.received_qty

        self.add_event(
            doc,
            DocumentEventType.QTY_UPDATED,
            actor_id=actor_id,
            note=data.note or "received quantities updated",
            from_status=doc.status,
        )
        return await self.save(session, doc)

    # ------------------------------------------------------------------ #
    # validate
    # ------------------------------------------------------------------ #

    def check_terminal(self, doc: Receipt) -> None:
        super().check_terminal(doc)
        if int(doc.total_received_qty or 0) <= 0:
            raise InvalidState(
                "receipt must be in 'ready' status with received quantities to validate",
                current=doc.status,
                required=[S.READY.value],
                context={"total_received_qty": int(doc.total_received_qty or 0)},
            )

    async def resolve_receiving_location(self, session: AsyncSession, doc: Receipt) -> Location:
        """header.location_id → 仓内 RECEIVING 库位 → 仓内任一未删库位 → NotFound"""
        if doc.location_id is not None:
            return await MasterDataService.require_location(session, doc.location_id)

        loc = await MasterDataService.find_location_by_code(
            session, doc.warehouse_id, get_settings().RECEIVING_LOCATION_CODE
        )
        if loc is None:
            loc = await MasterDataService.first_location(session, doc.warehouse_id)
        if loc is None:
            raise NotFound(
                "no location found in warehouse",
                context={"warehouse_id": doc.warehouse_id},
            )
        return loc

    async def post_entries(
        self, session: AsyncSession, doc: Receipt, *, actor_id: Optional[int]
    ) -> List[StockMovement]:
        loc = await self.resolve_receiving_location(session, doc)
        entries: List[StockMovement] = []
        for ln in doc.lines:
            if int(ln.received_qty or 0) <= 0:
                continue
            entries.append(
                await ledger_writer.post(
                    session,
                    product_id=ln.product_id,
                    location_id=loc.id,
                    transaction_type=TransactionType.RECEIPT,
                    reference_type=self.reference_type,
                    reference_id=doc.id,
                    reference_number=doc.number,
                    quantity=int(ln.received_qty),
                    unit_price=ln.unit_price,
                    actor_id=actor_id,
                )
            )
        return entries

    async def validate(
        self,
        session: AsyncSession,
        receipt_id: int,
        *,
        actor_id: Optional[int],
        idempotency_key: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TerminalResult[Receipt]:
        return await self.run_terminal(
            session, receipt_id, actor_id=actor_id, idempotency_key=idempotency_key, note=note
        )

    # ------------------------------------------------------------------ #
    # cancel（含 done 冲正）
    # ------------------------------------------------------------------ #

    async def cancel(
        self,
        session: AsyncSession,
        doc_id: int,
        *,
        actor_id: Optional[int],
        reason: Optional[str] = None,
        is_admin: bool = False,
    ) -> TerminalResult[Receipt]:
        doc = await self.get(session, doc_id, lock=True)
        if doc.status != S.DONE.value:
            return await super().cancel(session, doc_id, actor_id=actor_id, reason=reason)

        if not is_admin:
            raise PermissionDenied(
                "only admins can cancel validated receipts", context={"receipt": doc.number}
            )
        return await self._reverse(session, doc, actor_id=actor_id, reason=reason)

    async def _reverse(
        self, session: AsyncSession, doc: Receipt, *, actor_id: Optional[int], reason: Optional[str]
    ) -> TerminalResult[Receipt]:
        doc_id = doc.id
        entries: List[StockMovement] = []
        try:
            async with atomic(session):
                originals = (
                    await session.execute(
                        select(StockMovement)
                        .where(StockMovement.reference_type == self.reference_type.value)
                        .where(StockMovement.reference_id == doc.id)
                        .where(StockMovement.transaction_type == TransactionType.RECEIPT.value)
                        .order_by(StockMovement.id.asc())
                    )
                ).scalars().all()

                for mv in originals:
                    entries.append(
                        await ledger_writer.post(
                            session,
                            product_id=mv.product_id,
                            location_id=mv.location_id,
                            transaction_type=TransactionType.REVERSAL,
                            reference_type=self.reference_type,
                            reference_id=doc.id,
                            reference_number=doc.number,
                            quantity=-int(mv.quantity),
                            unit_price=mv.unit_price,
                            actor_id=actor_id,
                            note=f"reversal of receipt {doc.number}. {reason or ''}".strip(),
                        )
                    )

                self.mark_canceled(doc, actor_id=actor_id, reason=reason or "receipt reversed")
                await self.save(session, doc)
        except StockError:
            TERMINAL_ACTIONS.labels(document=self.label, outcome="error").inc()
            logger.warning("receipt reversal failed: id=%s", doc_id)
            raise

        TERMINAL_ACTIONS.labels(document=self.label, outcome="reversed").inc()
        logger.info("receipt reversed: %s entries=%d actor=%s", doc.number, len(entries), actor_id)
        return TerminalResult(document=doc, entries=entries)

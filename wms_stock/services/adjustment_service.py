# wms_stock/services/adjustment_service.py
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.models.adjustment import Adjustment, AdjustmentEvent, AdjustmentLine
from wms_stock.models.enums import AdjustmentStatus, DocumentEventType, ReferenceType, TransactionType
from wms_stock.models.stock_movement import StockMovement
from wms_stock.schemas.adjustment import AdjustmentCreateIn, AdjustmentLineIn, AdjustmentUpdateIn
from wms_stock.services import ledger_writer
from wms_stock.services.document_workflow import DocumentWorkflow, TerminalResult
from wms_stock.services.master_data import MasterDataService
from wms_stock.services.stock_balance_service import StockBalanceService
from wms_stock.services.stock_errors import ValidationFailed

logger = logging.getLogger(__name__)

S = AdjustmentStatus


class AdjustmentService(DocumentWorkflow[Adjustment]):
    """
    库存调整单：draft → applied / canceled

    - system_qty 未给出时取当前余额
    - apply：variance = counted - system（持久化时重算），variance 为 0 的行不记账
    """

    model = Adjustment
    event_model = AdjustmentEvent
    prefix = "ADJ"
    label = "adjustment"
    reference_type = ReferenceType.ADJUSTMENT

    editable = frozenset({S.DRAFT.value})
    cancelable = frozenset({S.DRAFT.value})
    terminal_from = frozenset({S.DRAFT.value})
    terminal_status = S.APPLIED.value
    terminal_event = DocumentEventType.APPLIED.value

    async def _build_lines(
        self, session: AsyncSession, warehouse_id: int, lines: Sequence[AdjustmentLineIn]
    ) -> List[AdjustmentLine]:
        out: List[AdjustmentLine] = []
        for i, ln in enumerate(lines, start=1):
            product = await MasterDataService.require_product(session, ln.product_id)
            loc = await MasterDataService.require_location(session, ln.location_id)
            if int(loc.warehouse_id) != int(warehouse_id):
                raise ValidationFailed(
                    "location does not belong to adjustment warehouse",
                    context={"line_no": i, "location_id": ln.location_id, "warehouse_id": warehouse_id},
                )
            system_qty = ln.system_qty
            if system_qty is None:
                bal = await StockBalanceService.find_balance(session, product.id, loc.id)
                system_qty = int(bal.quantity) if bal is not None else 0
            out.append(
                AdjustmentLine(
                    line_no=i,
                    product_id=product.id,
                    sku=ln.sku or product.sku,
                    location_id=loc.id,
                    system_qty=system_qty,
                    counted_qty=ln.counted_qty,
                    unit_price=ln.unit_price,
                    notes=ln.notes,
                )
            )
        return out

    async def create(self, session: AsyncSession, data: AdjustmentCreateIn, *, actor_id: Optional[int]) -> Adjustment:
        await MasterDataService.require_warehouse(session, data.warehouse_id)
        doc = Adjustment(
            warehouse_id=data.warehouse_id,
            reason=data.reason.value,
            notes=data.notes,
            status=S.DRAFT.value,
            lines=await self._build_lines(session, data.warehouse_id, data.lines),
            events=[],
        )
        return await self.persist_new(session, doc, actor_id=actor_id)

    async def update(
        self, session: AsyncSession, adjustment_id: int, data: AdjustmentUpdateIn, *, actor_id: Optional[int]
    ) -> Adjustment:
        doc = await self.get(session, adjustment_id, lock=True)
        self.ensure_editable(doc)

        if data.reason is not None:
            doc.reason = data.reason.value
        if "notes" in data.model_fields_set:
            doc.notes = data.notes
        if data.lines is not None:
            doc.lines = await self._build_lines(session, doc.warehouse_id, data.lines)

        self.add_event(doc, DocumentEventType.EDITED, actor_id=actor_id, note="adjustment edited", from_status=doc.status)
        return await self.save(session, doc)

    async def post_entries(
        self, session: AsyncSession, doc: Adjustment, *, actor_id: Optional[int]
    ) -> List[StockMovement]:
        doc.recompute_totals()
        entries: List[StockMovement] = []
        for ln in doc.lines:
            if int(ln.variance) == 0:
                continue
            entries.append(
                await ledger_writer.post(
                    session,
                    product_id=ln.product_id,
                    location_id=ln.location_id,
                    transaction_type=TransactionType.ADJUSTMENT,
                    reference_type=self.reference_type,
                    reference_id=doc.id,
                    reference_number=doc.number,
                    quantity=int(ln.variance),
                    unit_price=ln.unit_price,
                    actor_id=actor_id,
                    note=f"{doc.reason}: counted {ln.counted_qty}, system {ln.system_qty}",
                )
            )
        return entries

    async def apply(
        self,
        session: AsyncSession,
        adjustment_id: int,
        *,
        actor_id: Optional[int],
        idempotency_key: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TerminalResult[Adjustment]:
        return await self.run_terminal(
            session, adjustment_id, actor_id=actor_id, idempotency_key=idempotency_key, note=note
        )

# wms_stock/services/delivery_order_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.core.config import get_settings
from wms_stock.models.delivery_order import (
    DeliveryOrder,
    DeliveryOrderEvent,
    DeliveryOrderLine,
    DeliveryPackage,
)
from wms_stock.models.enums import (
    DeliveryOrderStatus,
    DocumentEventType,
    ReferenceType,
    ReservationReferenceType,
    TransactionType,
)
from wms_stock.models.location import Location
from wms_stock.models.reservation import Reservation
from wms_stock.models.stock_balance import StockBalance
from wms_stock.models.stock_movement import StockMovement
from wms_stock.schemas.delivery_order import (
    DeliveryOrderCreateIn,
    DeliveryOrderLineIn,
    DeliveryOrderUpdateIn,
    PackIn,
    PickIn,
)
from wms_stock.services import ledger_writer
from wms_stock.services.document_workflow import DocumentWorkflow, TerminalResult
from wms_stock.services.idempotency import find_by_key, normalize_key, run_idempotent
from wms_stock.services.master_data import MasterDataService
from wms_stock.services.reservation_service import ReserveLine, ReserveResult
from wms_stock.services.stock_balance_service import StockBalanceService
from wms_stock.services.stock_errors import (
    Conflict,
    InsufficientStock,
    InvalidState,
    StockError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

S = DeliveryOrderStatus


class DeliveryOrderService(DocumentWorkflow[DeliveryOrder]):
    """
    出库单：draft → waiting → picking → packed → ready → done / canceled

    - reserve：draft / waiting，且本单没有 active 预留
    - pick：draft / waiting / picking → picking
    - pack：picking / packed；全部打包完 → ready，否则 packed
    - validate：ready 且 total_packed_qty > 0；先消耗本单预留，再按行 -packed_qty
      行无库位时，只在本仓内选择“单一库位 available ≥ packed_qty”的库位，不拆分
    """

    model = DeliveryOrder
    event_model = DeliveryOrderEvent
    prefix = "DO"
    label = "delivery_order"
    reference_type = ReferenceType.DELIVERY_ORDER
    reservation_reference_type = ReservationReferenceType.DELIVERY_ORDER.value

    editable = frozenset({S.DRAFT.value, S.WAITING.value})
    reservable = frozenset({S.DRAFT.value, S.WAITING.value})
    pickable = frozenset({S.DRAFT.value, S.WAITING.value, S.PICKING.value})
    packable = frozenset({S.PICKING.value, S.PACKED.value})
    cancelable = frozenset(
        {S.DRAFT.value, S.WAITING.value, S.PICKING.value, S.PACKED.value, S.READY.value}
    )
    terminal_from = frozenset({S.READY.value})
    terminal_status = S.DONE.value
    terminal_event = DocumentEventType.VALIDATED.value

    # ------------------------------------------------------------------ #
    # 建单 / 编辑
    # ------------------------------------------------------------------ #

    async def _build_lines(
        self, session: AsyncSession, warehouse_id: int, lines: Sequence[DeliveryOrderLineIn]
    ) -> List[DeliveryOrderLine]:
        out: List[DeliveryOrderLine] = []
        for i, ln in enumerate(lines, start=1):
            product = await MasterDataService.require_product(session, ln.product_id)
            if ln.location_id is not None:
                loc = await MasterDataService.require_location(session, ln.location_id)
                if int(loc.warehouse_id) != int(warehouse_id):
                    raise ValidationFailed(
                        "location does not belong to delivery order warehouse",
                        context={"line_no": i, "location_id": ln.location_id},
                    )
            out.append(
                DeliveryOrderLine(
                    line_no=i,
                    product_id=product.id,
                    sku=ln.sku or product.sku,
                    location_id=ln.location_id,
                    ordered_qty=ln.ordered_qty,
                    unit_price=ln.unit_price,
                )
            )
        return out

    async def create(
        self, session: AsyncSession, data: DeliveryOrderCreateIn, *, actor_id: Optional[int]
    ) -> Tuple[DeliveryOrder, List[Dict[str, Any]], bool]:
        """
        建单；auto_reserve 时尝试预留，失败只返回 warning，不影响建单

        带 idempotency_key 时按 create_key 去重：重试直接返回首次建出的单据
        （already_applied=True），不再新建，也不再预留。
        返回 (doc, warnings, already_applied)。
        """
        key = normalize_key(data.idempotency_key)
        warnings: List[Dict[str, Any]] = []

        async def _apply() -> DeliveryOrder:
            await MasterDataService.require_warehouse(session, data.warehouse_id)
            doc = DeliveryOrder(
                warehouse_id=data.warehouse_id,
                customer_name=data.customer_name,
                shipping_address=data.shipping_address,
                scheduled_date=data.scheduled_date,
                notes=data.notes,
                create_key=key,
                status=S.DRAFT.value,
                lines=await self._build_lines(session, data.warehouse_id, data.lines),
                packages=[],
                events=[],
            )
            await self.persist_new(session, doc, actor_id=actor_id)

            if data.auto_reserve:
                try:
                    _, res = await self.reserve(session, doc.id, actor_id=actor_id, idempotency_key=key)
                    warnings.extend(res.errors)
                except StockError as e:
                    logger.warning("auto reserve failed for %s: %s", doc.number, e.message)
                    warnings.append({"error": e.message, "code": e.code, "details": e.details})
            return doc

        res = await run_idempotent(
            session, model=DeliveryOrder, key=key, apply=_apply, label="delivery_order.create", column="create_key"
        )
        return res.value, warnings, res.already_applied

    async def update(
        self, session: AsyncSession, order_id: int, data: DeliveryOrderUpdateIn, *, actor_id: Optional[int]
    ) -> DeliveryOrder:
        doc = await self.get(session, order_id, lock=True)
        self.ensure_editable(doc)

        if data.lines is not None:
            active = await self.reservations.active_ids_for_reference(
                session, reference_id=str(doc.id), reference_type=self.reservation_reference_type
            )
            if active:
                raise Conflict(
                    "release the active reservation before changing lines",
                    context={"reservation_ids": active},
                )

        for name, value in data.model_dump(exclude_unset=True, exclude={"lines"}).items():
            setattr(doc, name, value)
        if data.lines is not None:
            doc.lines = await self._build_lines(session, doc.warehouse_id, data.lines)

        self.add_event(doc, DocumentEventType.EDITED, actor_id=actor_id, note="delivery order edited", from_status=doc.status)
        return await self.save(session, doc)

    # ------------------------------------------------------------------ #
    # reserve / pick / pack
    # ------------------------------------------------------------------ #

    async def reserve(
        self,
        session: AsyncSession,
        order_id: int,
        *,
        actor_id: Optional[int],
        ttl_minutes: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Tuple[DeliveryOrder, ReserveResult]:
        key = normalize_key(idempotency_key)
        existing = await find_by_key(session, Reservation, key)
        if existing is not None:
            doc = await self.get(session, order_id)
            return doc, ReserveResult(reservation=existing, already_applied=True)

        doc = await self.get(session, order_id, lock=True)
        self.require_status(doc, self.reservable, "reserve")

        active = await self.reservations.active_ids_for_reference(
            session, reference_id=str(doc.id), reference_type=self.reservation_reference_type
        )
        if active:
            raise Conflict(
                f"delivery order {doc.number} already has an active reservation",
                context={"reservation_ids": active},
            )

        res = await self.reservations.reserve(
            session,
            reference_type=self.reservation_reference_type,
            reference_id=str(doc.id),
            lines=[
                ReserveLine(
                    product_id=ln.product_id,
                    qty=int(ln.ordered_qty),
                    location_id=ln.location_id,
                    warehouse_id=doc.warehouse_id,
                )
                for ln in doc.lines
            ],
            ttl_minutes=ttl_minutes or get_settings().DELIVERY_RESERVATION_TTL_MINUTES,
            idempotency_key=key,
            actor_id=actor_id,
        )
        if res.already_applied:
            return doc, res

        failed = {int(e["line"]) for e in res.errors if "line" in e}
        for idx, ln in enumerate(doc.lines, start=1):
            ln.reserved_qty = 0 if idx in failed else int(ln.ordered_qty)

        doc.reservation_id = res.reservation.id
        prev = doc.status
        doc.status = S.WAITING.value
        self.add_event(
            doc,
            DocumentEventType.RESERVED,
            actor_id=actor_id,
            note=f"stock reserved ({res.reservation.total_qty} units)",
            from_status=prev,
        )
        await self.save(session, doc)
        return doc, res

    def _line(self, doc: DeliveryOrder, line_no: int) -> DeliveryOrderLine:
        for ln in doc.lines:
            if ln.line_no == line_no:
                return ln
        raise ValidationFailed(f"delivery order line not found: {line_no}", context={"line_no": line_no})

    async def pick(
        self, session: AsyncSession, order_id: int, data: PickIn, *, actor_id: Optional[int]
    ) -> DeliveryOrder:
        doc = await self.get(session, order_id, lock=True)
        self.require_status(doc, self.pickable, "pick")

        for item in data.lines:
            ln = self._line(doc, item.line_no)
            if int(ln.picked_qty) + item.qty > int(ln.ordered_qty):
                raise ValidationFailed(
                    "picked quantity exceeds ordered quantity",
                    context={"line_no": ln.line_no, "ordered": ln.ordered_qty, "picked": ln.picked_qty, "qty": item.qty},
                )
            if item.location_id is not None:
                loc = await MasterDataService.require_location(session, item.location_id)
                if int(loc.warehouse_id) != int(doc.warehouse_id):
                    raise ValidationFailed(
                        "location does not belong to delivery order warehouse",
                        context={"line_no": ln.line_no, "location_id": item.location_id},
                    )
                ln.location_id = loc.id
            ln.picked_qty = int(ln.picked_qty) + item.qty

        prev = doc.status
        doc.status = S.PICKING.value
        self.add_event(doc, DocumentEventType.PICKED, actor_id=actor_id, note=data.note or "items picked", from_status=prev)
        return await self.save(session, doc)

    async def pack(
        self, session: AsyncSession, order_id: int, data: PackIn, *, actor_id: Optional[int]
    ) -> DeliveryOrder:
        doc = await self.get(session, order_id, lock=True)
        self.require_status(doc, self.packable, "pack")

        for item in data.lines:
            ln = self._line(doc, item.line_no)
            if int(ln.packed_qty) + item.qty > int(ln.picked_qty):
                raise ValidationFailed(
                    "packed quantity exceeds picked quantity",
                    context={"line_no": ln.line_no, "picked": ln.picked_qty, "packed": ln.packed_qty, "qty": item.qty},
                )
            ln.packed_qty = int(ln.packed_qty) + item.qty

        for pkg in data.packages:
            doc.packages.append(
                DeliveryPackage(
                    package_code=pkg.package_code,
                    weight=pkg.weight,
                    tracking_number=pkg.tracking_number,
                    carrier=pkg.carrier,
                )
            )

        doc.recompute_totals()
        prev = doc.status
        doc.status = S.READY.value if doc.total_packed_qty >= doc.total_ordered_qty else S.PACKED.value
        self.add_event(doc, DocumentEventType.PACKED, actor_id=actor_id, note=data.note or "items packed", from_status=prev)
        return await self.save(session, doc)

    # ------------------------------------------------------------------ #
    # validate
    # ------------------------------------------------------------------ #

    def check_terminal(self, doc: DeliveryOrder) -> None:
        super().check_terminal(doc)
        if int(doc.total_packed_qty or 0) <= 0:
            raise InvalidState(
                "delivery order must be 'ready' with packed quantities to validate",
                current=doc.status,
                required=[S.READY.value],
                context={"total_packed_qty": int(doc.total_packed_qty or 0)},
            )

    async def _resolve_location(self, session: AsyncSession, doc: DeliveryOrder, ln: DeliveryOrderLine) -> int:
        qty = int(ln.packed_qty)
        if ln.location_id is not None:
            bal = await StockBalanceService.select_balance(session, ln.product_id, ln.location_id, lock=True)
            available = bal.available if bal is not None else 0
            if available < qty:
                raise InsufficientStock(
                    f"insufficient stock for line {ln.line_no}",
                    requested=qty,
                    available=available,
                    context={"line_no": ln.line_no, "product_id": ln.product_id, "location_id": ln.location_id},
                )
            return int(ln.location_id)

        avail = StockBalance.quantity - StockBalance.reserved
        stmt = (
            select(StockBalance)
            .join(Location, Location.id == StockBalance.location_id)
            .where(StockBalance.product_id == ln.product_id)
            .where(StockBalance.warehouse_id == doc.warehouse_id)
            .where(Location.is_deleted.is_(False))
            .where(avail >= qty)
            .order_by(avail.desc(), StockBalance.location_id.asc())
            .limit(1)
            .with_for_update(of=StockBalance)
            .execution_options(populate_existing=True)
        )
        bal = (await session.execute(stmt)).scalars().first()
        if bal is None:
            best = (
                await session.execute(
                    select(func.coalesce(func.max(avail), 0))
                    .where(StockBalance.product_id == ln.product_id)
                    .where(StockBalance.warehouse_id == doc.warehouse_id)
                )
            ).scalar_one()
            raise InsufficientStock(
                f"no single location has enough stock for line {ln.line_no}",
                requested=qty,
                available=int(best or 0),
                context={"line_no": ln.line_no, "product_id": ln.product_id, "warehouse_id": doc.warehouse_id},
            )
        return int(bal.location_id)

    async def post_entries(
        self, session: AsyncSession, doc: DeliveryOrder, *, actor_id: Optional[int]
    ) -> List[StockMovement]:
        entries: List[StockMovement] = []
        for ln in doc.lines:
            qty = int(ln.packed_qty or 0)
            if qty <= 0:
                continue
            location_id = await self._resolve_location(session, doc, ln)
            ln.location_id = location_id
            entries.append(
                await ledger_writer.post(
                    session,
                    product_id=ln.product_id,
                    location_id=location_id,
                    transaction_type=TransactionType.DELIVERY,
                    reference_type=self.reference_type,
                    reference_id=doc.id,
                    reference_number=doc.number,
                    quantity=-qty,
                    unit_price=ln.unit_price,
                    actor_id=actor_id,
                )
            )
        return entries

    def on_terminal(self, doc: DeliveryOrder) -> None:
        for ln in doc.lines:
            ln.shipped_qty = int(ln.packed_qty or 0)
            ln.reserved_qty = 0

    async def validate(
        self,
        session: AsyncSession,
        order_id: int,
        *,
        actor_id: Optional[int],
        idempotency_key: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TerminalResult[DeliveryOrder]:
        return await self.run_terminal(
            session, order_id, actor_id=actor_id, idempotency_key=idempotency_key, note=note
        )

    def mark_canceled(self, doc: DeliveryOrder, *, actor_id: Optional[int], reason: Optional[str]) -> None:
        for ln in doc.lines:
            ln.reserved_qty = 0
        super().mark_canceled(doc, actor_id=actor_id, reason=reason)

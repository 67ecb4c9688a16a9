# wms_stock/services/document_workflow.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, FrozenSet, Generic, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.metrics import TERMINAL_ACTIONS
from wms_stock.models.enums import DocumentEventType, ReferenceType
from wms_stock.models.stock_movement import StockMovement
from wms_stock.services.document_numbering import allocate_number
from wms_stock.services.idempotency import AlreadyApplied, normalize_key, run_idempotent
from wms_stock.services.reservation_service import ReservationService
from wms_stock.services.stock_errors import InvalidState, NotFound, StockError
from wms_stock.utils.time import utc_now

logger = logging.getLogger(__name__)

DocT = TypeVar("DocT")


@dataclass
class TerminalResult(Generic[DocT]):
    document: DocT
    already_applied: bool = False
    entries: List[StockMovement] = field(default_factory=list)

    @property
    def ledger_entries(self) -> int:
        return len(self.entries)


class DocumentWorkflow(Generic[DocT]):
    """
    四类单据共用的状态机骨架。

    子类提供：
      - model / event_model / prefix / reference_type
      - transitions：手工状态流转表 {from: {to, ...}}
      - editable / cancelable / terminal_from / terminal_status
      - post_entries()：终态动作的台账形状（一行一条或两条）

    终态动作（run_terminal）统一流程：
      1) 带幂等键先查，命中直接返回 already_applied（先于任何校验）；
      2) 行锁单据，校验状态与前置条件；
      3) SAVEPOINT 内按行过账；任一行失败 → 整块回滚，状态不变；
      4) 全部成功后才切终态、记操作人/时间、写终态事件、落幂等键。
    """

    model: ClassVar[Type[Any]]
    event_model: ClassVar[Type[Any]]
    prefix: ClassVar[str]
    label: ClassVar[str]
    reference_type: ClassVar[ReferenceType]

    transitions: ClassVar[Dict[str, FrozenSet[str]]] = {}
    editable: ClassVar[FrozenSet[str]] = frozenset()
    cancelable: ClassVar[FrozenSet[str]] = frozenset()
    terminal_from: ClassVar[FrozenSet[str]] = frozenset()
    terminal_status: ClassVar[str]
    terminal_event: ClassVar[str]
    canceled_status: ClassVar[str] = "canceled"

    # 非空时：取消 / 终态动作会释放以本单为引用的 active 预留
    reservation_reference_type: ClassVar[Optional[str]] = None

    def __init__(self) -> None:
        self.reservations = ReservationService()

    # ------------------------------------------------------------------ #
    # 读取
    # ------------------------------------------------------------------ #

    async def get(self, session: AsyncSession, doc_id: int, *, lock: bool = False) -> DocT:
        if lock:
            obj = await session.get(
                self.model, int(doc_id), with_for_update=True, populate_existing=True
            )
        else:
            obj = await session.get(self.model, int(doc_id))
        if obj is None or obj.is_deleted:
            raise NotFound(f"{self.label} not found: {doc_id}", context={"id": doc_id})
        return obj

    def warehouse_column(self):
        return getattr(self.model, "warehouse_id", None)

    async def list(
        self,
        session: AsyncSession,
        *,
        status: Optional[str] = None,
        warehouse_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[DocT], int]:
        M = self.model
        conds = [M.is_deleted.is_(False)]
        if status:
            conds.append(M.status == status)
        col = self.warehouse_column()
        if warehouse_id is not None and col is not None:
            conds.append(col == int(warehouse_id))
        if date_from is not None:
            conds.append(M.created_at >= date_from)
        if date_to is not None:
            conds.append(M.created_at <= date_to)

        total = (await session.execute(select(func.count()).select_from(M).where(*conds))).scalar_one()
        stmt = select(M).where(*conds).order_by(M.created_at.desc(), M.id.desc()).limit(limit).offset(offset)
        items = list((await session.execute(stmt)).scalars().all())
        return items, int(total)

    # ------------------------------------------------------------------ #
    # 事件 / 状态
    # ------------------------------------------------------------------ #

    def add_event(
        self,
        doc: DocT,
        event_type: DocumentEventType | str,
        *,
        actor_id: Optional[int],
        note: Optional[str] = None,
        from_status: Optional[str] = None,
    ) -> None:
        doc.events.append(
            self.event_model(
                event_type=DocumentEventType(event_type).value,
                from_status=from_status,
                status=doc.status,
                actor_id=actor_id,
                note=note,
                created_at=utc_now(),
            )
        )

    def require_status(self, doc: DocT, allowed: FrozenSet[str] | set, action: str) -> None:
        if doc.status not in allowed:
            raise InvalidState(
                f"cannot {action} {self.label} in '{doc.status}' status; "
                f"required: {', '.join(sorted(allowed))}",
                current=doc.status,
                required=sorted(allowed),
            )

    def change_status(
        self,
        doc: DocT,
        new_status: str,
        *,
        actor_id: Optional[int],
        event_type: DocumentEventType | str = DocumentEventType.STATUS_CHANGED,
        note: Optional[str] = None,
    ) -> None:
        prev = doc.status
        doc.status = new_status
        self.add_event(
            doc,
            event_type,
            actor_id=actor_id,
            note=note or f"status changed from {prev} to {new_status}",
            from_status=prev,
        )

    async def transition(
        self,
        session: AsyncSession,
        doc_id: int,
        to_status: str,
        *,
        actor_id: Optional[int],
        note: Optional[str] = None,
        event_type: DocumentEventType | str = DocumentEventType.STATUS_CHANGED,
    ) -> DocT:
        """按 transitions 表做手工状态流转（终态 / 取消走专用动作）"""
        doc = await self.get(session, doc_id, lock=True)
        allowed = self.transitions.get(doc.status, frozenset())
        if to_status not in allowed:
            sources = sorted(s for s, targets in self.transitions.items() if to_status in targets)
            raise InvalidState(
                f"cannot move {self.label} from '{doc.status}' to '{to_status}'",
                current=doc.status,
                required=sources,
                context={"target_status": to_status},
            )
        self.change_status(doc, to_status, actor_id=actor_id, event_type=event_type, note=note)
        await self.save(session, doc)
        return doc

    # ------------------------------------------------------------------ #
    # 持久化
    # ------------------------------------------------------------------ #

    async def persist_new(
        self, session: AsyncSession, doc: DocT, *, actor_id: Optional[int], note: Optional[str] = None
    ) -> DocT:
        """首次持久化：分配单号（只分配一次）、重算汇总、写 created 事件"""
        if not doc.number:
            doc.number = await allocate_number(session, self.prefix)
        now = utc_now()
        doc.created_by = actor_id
        doc.created_at = now
        doc.updated_at = now
        doc.recompute_totals()
        self.add_event(doc, DocumentEventType.CREATED, actor_id=actor_id, note=note or f"{self.label} created")
        session.add(doc)
        await session.flush()
        logger.info("%s created: %s", self.label, doc.number)
        return doc

    async def save(self, session: AsyncSession, doc: DocT) -> DocT:
        doc.recompute_totals()
        doc.updated_at = utc_now()
        await session.flush()
        return doc

    def ensure_editable(self, doc: DocT) -> None:
        self.require_status(doc, self.editable, "edit")

    # ------------------------------------------------------------------ #
    # 终态动作
    # ------------------------------------------------------------------ #

    def check_terminal(self, doc: DocT) -> None:
        if doc.status == self.terminal_status:
            raise InvalidState(
                f"{self.label} {doc.number} is already {self.terminal_status}",
                current=doc.status,
                required=sorted(self.terminal_from),
            )
        self.require_status(doc, self.terminal_from, self.terminal_event)

    async def post_entries(
        self, session: AsyncSession, doc: DocT, *, actor_id: Optional[int]
    ) -> List[StockMovement]:
        raise NotImplementedError

    def on_terminal(self, doc: DocT) -> None:
        """终态前的行字段收尾（如 shipped_qty / transferred_qty）"""

    async def run_terminal(
        self,
        session: AsyncSession,
        doc_id: int,
        *,
        actor_id: Optional[int],
        idempotency_key: Optional[str] = None,
        note: Optional[str] = None,
    ) -> TerminalResult[DocT]:
        key = normalize_key(idempotency_key)
        entries: List[StockMovement] = []

        async def _apply() -> DocT:
            doc = await self.get(session, doc_id, lock=True)
            if key is not None and doc.idempotency_key == key:
                # 并发同 key：先行请求已落地，加锁后按回放返回
                raise AlreadyApplied(doc)
            self.check_terminal(doc)

            if self.reservation_reference_type:
                await self.reservations.release_for_reference(
                    session,
                    reference_id=str(doc.id),
                    reference_type=self.reservation_reference_type,
                    reason="consumed",
                )

            entries.extend(await self.post_entries(session, doc, actor_id=actor_id))
            self.on_terminal(doc)

            doc.completed_by = actor_id
            doc.completed_at = utc_now()
            if key is not None:
                doc.idempotency_key = key
            self.change_status(
                doc,
                self.terminal_status,
                actor_id=actor_id,
                event_type=self.terminal_event,
                note=note or f"{self.label} {self.terminal_event}",
            )
            await self.save(session, doc)
            return doc

        try:
            res = await run_idempotent(
                session, model=self.model, key=key, apply=_apply, label=f"{self.label}.{self.terminal_event}"
            )
        except StockError as e:
            TERMINAL_ACTIONS.labels(document=self.label, outcome="error").inc()
            logger.warning("%s %s failed: id=%s code=%s %s", self.label, self.terminal_event, doc_id, e.code, e.message)
            raise

        if res.already_applied:
            TERMINAL_ACTIONS.labels(document=self.label, outcome="replay").inc()
            return TerminalResult(document=res.value, already_applied=True, entries=[])

        doc = res.value
        TERMINAL_ACTIONS.labels(document=self.label, outcome="ok").inc()
        logger.info(
            "%s %s: %s entries=%d actor=%s", self.label, self.terminal_event, doc.number, len(entries), actor_id
        )
        return TerminalResult(document=doc, already_applied=False, entries=entries)

    # ------------------------------------------------------------------ #
    # 取消
    # ------------------------------------------------------------------ #

    async def cancel(
        self,
        session: AsyncSession,
        doc_id: int,
        *,
        actor_id: Optional[int],
        reason: Optional[str] = None,
        is_admin: bool = False,
    ) -> TerminalResult[DocT]:
        """非终态取消：无台账影响；若有本单 active 预留则一并释放"""
        doc = await self.get(session, doc_id, lock=True)
        if doc.status == self.canceled_status:
            raise InvalidState(
                f"{self.label} {doc.number} is already canceled",
                current=doc.status,
                required=sorted(self.cancelable),
            )
        self.require_status(doc, self.cancelable, "cancel")

        if self.reservation_reference_type:
            released = await self.reservations.release_for_reference(
                session,
                reference_id=str(doc.id),
                reference_type=self.reservation_reference_type,
                reason="document_canceled",
            )
            if released:
                logger.info("%s %s cancel released reservations %s", self.label, doc.number, released)

        self.mark_canceled(doc, actor_id=actor_id, reason=reason)
        await self.save(session, doc)
        return TerminalResult(document=doc)

    def mark_canceled(self, doc: DocT, *, actor_id: Optional[int], reason: Optional[str]) -> None:
        doc.canceled_by = actor_id
        doc.canceled_at = utc_now()
        doc.cancel_reason = reason
        self.change_status(
            doc,
            self.canceled_status,
            actor_id=actor_id,
            event_type=DocumentEventType.CANCELED,
            note=reason or f"{self.label} canceled",
        )

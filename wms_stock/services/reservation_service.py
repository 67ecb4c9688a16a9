# wms_stock/services/reservation_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.core.config import get_settings
from wms_stock.metrics import RESERVATION_EVENTS
from wms_stock.models.enums import ReservationReferenceType, ReservationStatus
from wms_stock.models.location import Location
from wms_stock.models.reservation import Reservation, ReservationLine
from wms_stock.models.stock_balance import StockBalance
from wms_stock.services.idempotency import normalize_key, run_idempotent
from wms_stock.services.master_data import MasterDataService
from wms_stock.services.stock_balance_service import StockBalanceService
from wms_stock.services.stock_errors import (
    InsufficientStock,
    NoStockReservable,
    NotFound,
    StockError,
    ValidationFailed,
)
from wms_stock.utils.time import as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ReserveLine:
    product_id: int
    qty: int
    location_id: Optional[int] = None
    # 自动分配时限定仓库（None 为全部仓库）
    warehouse_id: Optional[int] = None


@dataclass
class ReserveResult:
    reservation: Reservation
    errors: List[Dict[str, Any]] = field(default_factory=list)
    already_applied: bool = False


@dataclass
class _Allocation:
    product_id: int
    location_id: int
    warehouse_id: int
    qty: int


class ReservationService:
    """
    预留管理（软占用）：

    - reserve：逐行解析库位；指定库位要求 available ≥ qty，未指定按 available 从大到小贪心分配；
      无法完整满足的行只报错、不做部分预留；一行都满足不了 → NoStockReservable，且无副作用。
    - release / expire：把每行 reserved 恰好归还一次；非 active 的预留为 no-op。
    - 读取（get / list）时对已过期的 active 预留做惰性过期。
    """

    # ------------------------------------------------------------------ #
    # reserve
    # ------------------------------------------------------------------ #

    async def reserve(
        self,
        session: AsyncSession,
        *,
        reference_type: str,
        reference_id: str,
        lines: Sequence[ReserveLine],
        ttl_minutes: Optional[int] = None,
        idempotency_key: Optional[str] = None,
        actor_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ReserveResult:
        key = normalize_key(idempotency_key)
        errors: List[Dict[str, Any]] = []

        async def _apply() -> Reservation:
            try:
                rtype = ReservationReferenceType(reference_type).value
            except ValueError as e:
                raise ValidationFailed(f"invalid reference_type: {reference_type}") from e
            if not lines:
                raise ValidationFailed("at least one line item is required")

            ttl = int(ttl_minutes or get_settings().RESERVATION_TTL_MINUTES)
            if ttl <= 0:
                raise ValidationFailed("ttl_minutes must be positive")

            resolved: List[_Allocation] = []
            for idx, ln in enumerate(lines, start=1):
                try:
                    allocs = await self._resolve_line(session, ln)
                except StockError as e:
                    errors.append(
                        {
                            "line": idx,
                            "product_id": ln.product_id,
                            "location_id": ln.location_id,
                            "error": e.message,
                            **e.context,
                        }
                    )
                    continue
                for a in allocs:
                    await StockBalanceService.adjust_reserved(session, a.product_id, a.location_id, a.qty)
                resolved.extend(allocs)

            if not resolved:
                RESERVATION_EVENTS.labels(event="rejected").inc()
                logger.warning(
                    "no stock reservable: ref=%s:%s errors=%s", rtype, reference_id, len(errors)
                )
                raise NoStockReservable(
                    "no stock could be reserved",
                    context={"reference_type": rtype, "reference_id": str(reference_id)},
                    details=errors,
                )

            ts = now or utc_now()
            rsv = Reservation(
                reference_type=rtype,
                reference_id=str(reference_id),
                idempotency_key=key,
                status=ReservationStatus.ACTIVE.value,
                expires_at=ts + timedelta(minutes=ttl),
                created_by=actor_id,
                created_at=ts,
                lines=[
                    ReservationLine(
                        line_no=i,
                        product_id=a.product_id,
                        location_id=a.location_id,
                        warehouse_id=a.warehouse_id,
                        qty=a.qty,
                    )
                    for i, a in enumerate(resolved, start=1)
                ],
            )
            session.add(rsv)
            await session.flush()
            return rsv

        res = await run_idempotent(
            session, model=Reservation, key=key, apply=_apply, label="reservation"
        )
        if res.already_applied:
            RESERVATION_EVENTS.labels(event="replay").inc()
            return ReserveResult(reservation=res.value, errors=[], already_applied=True)

        rsv: Reservation = res.value
        RESERVATION_EVENTS.labels(event="reserved").inc()
        logger.info(
            "reservation created: id=%s ref=%s:%s lines=%d qty=%d",
            rsv.id,
            rsv.reference_type,
            rsv.reference_id,
            len(rsv.lines),
            rsv.total_qty,
        )
        return ReserveResult(reservation=rsv, errors=errors, already_applied=False)

    async def _resolve_line(self, session: AsyncSession, ln: ReserveLine) -> List[_Allocation]:
        qty = int(ln.qty)
        if qty <= 0:
            raise ValidationFailed("qty must be positive", context={"requested": qty})

        await MasterDataService.require_product(session, ln.product_id)

        if ln.location_id is not None:
            loc = await MasterDataService.require_location(session, ln.location_id)
            bal = await StockBalanceService.select_balance(
                session, ln.product_id, ln.location_id, lock=True
            )
            available = bal.available if bal is not None else 0
            if available < qty:
                raise InsufficientStock(
                    "insufficient stock at location", requested=qty, available=available
                )
            return [_Allocation(ln.product_id, int(loc.id), int(loc.warehouse_id), qty)]

        # 自动分配：available 从大到小
        stmt = (
            select(StockBalance)
            .join(Location, Location.id == StockBalance.location_id)
            .where(StockBalance.product_id == int(ln.product_id))
            .where(Location.is_deleted.is_(False))
            .where(StockBalance.quantity > StockBalance.reserved)
            .order_by((StockBalance.quantity - StockBalance.reserved).desc(), StockBalance.location_id.asc())
            .with_for_update(of=StockBalance)
            .execution_options(populate_existing=True)
        )
        if ln.warehouse_id is not None:
            stmt = stmt.where(StockBalance.warehouse_id == int(ln.warehouse_id))
        balances = (await session.execute(stmt)).scalars().all()

        allocs: List[_Allocation] = []
        remaining = qty
        for bal in balances:
            if remaining <= 0:
                break
            take = min(bal.available, remaining)
            if take <= 0:
                continue
            allocs.append(_Allocation(ln.product_id, int(bal.location_id), int(bal.warehouse_id), take))
            remaining -= take

        if remaining > 0:
            raise InsufficientStock(
                "insufficient total stock",
                requested=qty,
                available=qty - remaining,
                context={"shortfall": remaining},
            )
        return allocs

    # ------------------------------------------------------------------ #
    # release / expire
    # ------------------------------------------------------------------ #

    async def _return_lines(self, session: AsyncSession, rsv: Reservation) -> None:
        for ln in rsv.lines:
            await StockBalanceService.adjust_reserved(session, ln.product_id, ln.location_id, -int(ln.qty))

    async def _lock(self, session: AsyncSession, reservation_id: int) -> Reservation | None:
        stmt = (
            select(Reservation)
            .where(Reservation.id == int(reservation_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalars().first()

    async def release_one(
        self,
        session: AsyncSession,
        reservation_id: int,
        *,
        reason: str = "released",
        now: Optional[datetime] = None,
    ) -> bool:
        """释放单个预留；已非 active → False（no-op）"""
        rsv = await self._lock(session, reservation_id)
        if rsv is None or rsv.status != ReservationStatus.ACTIVE.value:
            return False
        await self._return_lines(session, rsv)
        rsv.status = ReservationStatus.RELEASED.value
        rsv.released_at = now or utc_now()
        rsv.release_reason = reason
        await session.flush()
        RESERVATION_EVENTS.labels(event="released").inc()
        logger.info("reservation released: id=%s reason=%s", rsv.id, reason)
        return True

    async def expire_one(
        self, session: AsyncSession, reservation_id: int, *, now: Optional[datetime] = None
    ) -> bool:
        """TTL 到期回收；仅 active 且 expires_at < now 才生效，重复调用为 no-op"""
        now = now or utc_now()
        rsv = await self._lock(session, reservation_id)
        if rsv is None or rsv.status != ReservationStatus.ACTIVE.value:
            return False
        if as_utc(rsv.expires_at) >= now:
            return False
        await self._return_lines(session, rsv)
        rsv.status = ReservationStatus.EXPIRED.value
        rsv.released_at = now
        rsv.release_reason = "expired"
        await session.flush()
        RESERVATION_EVENTS.labels(event="expired").inc()
        logger.info("reservation expired: id=%s", rsv.id)
        return True

    async def active_ids_for_reference(
        self, session: AsyncSession, *, reference_id: str, reference_type: Optional[str] = None
    ) -> List[int]:
        stmt = (
            select(Reservation.id)
            .where(Reservation.reference_id == str(reference_id))
            .where(Reservation.status == ReservationStatus.ACTIVE.value)
            .order_by(Reservation.id.asc())
        )
        if reference_type:
            stmt = stmt.where(Reservation.reference_type == reference_type)
        return [int(x) for x in (await session.execute(stmt)).scalars().all()]

    async def release_for_reference(
        self,
        session: AsyncSession,
        *,
        reference_id: str,
        reference_type: Optional[str] = None,
        reason: str = "released",
        now: Optional[datetime] = None,
    ) -> List[int]:
        """释放某个引用方的全部 active 预留，返回真正释放的 id（没有则为空，不报错）"""
        released: List[int] = []
        for rid in await self.active_ids_for_reference(
            session, reference_id=reference_id, reference_type=reference_type
        ):
            if await self.release_one(session, rid, reason=reason, now=now):
                released.append(rid)
        return released

    async def release(
        self,
        session: AsyncSession,
        *,
        reservation_id: Optional[int] = None,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        reason: str = "released",
    ) -> List[Reservation]:
        """显式释放（按 reservation_id 或 reference_id）；一个都没释放 → NotFound"""
        if reservation_id is None and not reference_id:
            raise ValidationFailed("reservation_id or reference_id is required")

        if reservation_id is not None:
            ids = [int(reservation_id)] if await self.release_one(session, reservation_id, reason=reason) else []
        else:
            ids = await self.release_for_reference(
                session, reference_id=str(reference_id), reference_type=reference_type, reason=reason
            )

        if not ids:
            raise NotFound(
                "no active reservation found",
                context={"reservation_id": reservation_id, "reference_id": reference_id},
            )
        stmt = select(Reservation).where(Reservation.id.in_(ids)).order_by(Reservation.id.asc())
        return list((await session.execute(stmt)).scalars().all())

    # ------------------------------------------------------------------ #
    # query
    # ------------------------------------------------------------------ #

    async def get(
        self, session: AsyncSession, reservation_id: int, *, now: Optional[datetime] = None
    ) -> Reservation:
        rsv = await session.get(Reservation, int(reservation_id))
        if rsv is None:
            raise NotFound(f"reservation not found: {reservation_id}")
        now = now or utc_now()
        if rsv.status == ReservationStatus.ACTIVE.value and as_utc(rsv.expires_at) < now:
            await self.expire_one(session, rsv.id, now=now)
        return rsv

    async def list(
        self,
        session: AsyncSession,
        *,
        status: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> List[Reservation]:
        now = now or utc_now()

        # 惰性过期：先把命中条件里已到期的 active 预留处理掉
        stale = select(Reservation.id).where(
            Reservation.status == ReservationStatus.ACTIVE.value, Reservation.expires_at < now
        )
        if reference_type:
            stale = stale.where(Reservation.reference_type == reference_type)
        if reference_id:
            stale = stale.where(Reservation.reference_id == str(reference_id))
        for rid in (await session.execute(stale)).scalars().all():
            await self.expire_one(session, rid, now=now)

        stmt = select(Reservation)
        if status:
            stmt = stmt.where(Reservation.status == status)
        else:
            stmt = stmt.where(Reservation.status != ReservationStatus.EXPIRED.value)
        if reference_type:
            stmt = stmt.where(Reservation.reference_type == reference_type)
        if reference_id:
            stmt = stmt.where(Reservation.reference_id == str(reference_id))
        stmt = stmt.order_by(Reservation.id.desc()).limit(limit).offset(offset)
        return list((await session.execute(stmt)).scalars().all())
